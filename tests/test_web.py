"""Tests for the JSON API, run against an in-memory database."""

from datetime import timedelta

import pytest

import match_service
from conftest import ADMIN_PASSWORD, BASE_DATE, match_payload
from models import Match, Player, PlayerStats, db


def add_match(players, team1, team2, team1_score, team2_score, days_ago=0):
    return match_service.create_match(
        match_payload([players[n] for n in team1], [players[n] for n in team2], team1_score, team2_score),
        date=BASE_DATE - timedelta(days=days_ago),
    )


def test_index(client) -> None:
    response = client.get('/')
    assert response.status_code == 200
    assert 'running' in response.get_json()['message']


def test_wrong_password_is_rejected(client) -> None:
    response = client.post('/api/auth', json={'password': 'nope'})
    assert response.status_code == 401
    assert response.get_json()['success'] is False


def test_repeated_failures_block_the_client(client) -> None:
    for _ in range(4):
        assert client.post('/api/auth', json={'password': 'nope'}).status_code == 401
    response = client.post('/api/auth', json={'password': 'nope'})
    assert response.status_code == 429
    assert 'Retry-After' in response.headers

    # Even the right password is refused while blocked
    response = client.post('/api/auth', json={'password': ADMIN_PASSWORD})
    assert response.status_code == 429


def test_writes_require_login(client, players) -> None:
    response = client.post('/api/v1/players', json={'name': 'Ron'})
    assert response.status_code == 401

    payload = match_payload([players['Larry'], players['Zach']], [players['Dustin'], players['Phil']], 11, 5)
    assert client.post('/api/v1/matches', json=payload).status_code == 401


def test_logout_ends_the_session(admin_client) -> None:
    admin_client.post('/api/logout')
    assert admin_client.post('/api/v1/players', json={'name': 'Ron'}).status_code == 401


def test_create_player_defaults_avatar(admin_client) -> None:
    response = admin_client.post('/api/v1/players', json={'name': 'Ron Swanson'})
    assert response.status_code == 201
    player = response.get_json()['player']
    assert player['name'] == 'Ron Swanson'
    assert player['profilePicture'].startswith('https://ui-avatars.com/api/?name=Ron%20Swanson')
    assert player['isArchived'] is False

    duplicate = admin_client.post('/api/v1/players', json={'name': 'Ron Swanson'})
    assert duplicate.status_code == 400


def test_list_players_hides_archived(admin_client, players) -> None:
    response = admin_client.put(f"/api/v1/players/{players['Dan'].id}", json={'isArchived': True})
    assert response.status_code == 200

    names = [p['name'] for p in admin_client.get('/api/v1/players').get_json()['data']]
    assert 'Dan' not in names
    assert len(names) == 5

    names = [p['name'] for p in admin_client.get('/api/v1/players?includeArchived=true').get_json()['data']]
    assert 'Dan' in names


def test_archive_flag_must_be_a_boolean(admin_client, players) -> None:
    response = admin_client.put(f"/api/v1/players/{players['Dan'].id}", json={'isArchived': 'false'})
    assert response.status_code == 400
    assert 'isArchived' in response.get_json()['error']
    assert db.session.get(Player, players['Dan'].id).is_archived is False


def test_rename_regenerates_the_generated_avatar(admin_client) -> None:
    player_id = admin_client.post('/api/v1/players', json={'name': 'Ron'}).get_json()['player']['id']
    response = admin_client.put(f'/api/v1/players/{player_id}', json={'name': 'Ronald'})
    assert response.status_code == 200
    assert response.get_json()['player']['profilePicture'].startswith('https://ui-avatars.com/api/?name=Ronald&')

    custom = admin_client.post('/api/v1/players', json={'name': 'Tammy', 'profilePicture': 'http://img/tammy.png'})
    custom_id = custom.get_json()['player']['id']
    response = admin_client.put(f'/api/v1/players/{custom_id}', json={'name': 'Tammy Two'})
    assert response.get_json()['player']['profilePicture'] == 'http://img/tammy.png'


def test_update_unknown_player_is_404(admin_client) -> None:
    response = admin_client.put('/api/v1/players/missing', json={'name': 'Ghost'})
    assert response.status_code == 404


def test_record_match_updates_cached_stats(admin_client, players) -> None:
    payload = match_payload([players['Larry'], players['Zach']], [players['Dustin'], players['Phil']], 11, 7)
    response = admin_client.post('/api/v1/matches', json=payload)
    assert response.status_code == 201
    match = response.get_json()['match']
    assert match['winningTeam'] == 1
    assert match['team1PlayerA']['name'] == 'Larry'

    larry = db.session.get(PlayerStats, players['Larry'].id)
    assert (larry.total_matches, larry.wins, larry.losses) == (1, 1, 0)
    assert larry.points_scored == 11
    assert larry.points_conceded == 7
    assert larry.win_rate == pytest.approx(100.0)

    phil = db.session.get(PlayerStats, players['Phil'].id)
    assert (phil.wins, phil.losses, phil.points_scored) == (0, 1, 7)


@pytest.mark.parametrize('changes, message', [
    ({'team2PlayerAId': 'SAME'}, 'once'),
    ({'team1ScoreB': 9}, 'must match'),
    ({'winningTeam': 2}, 'does not match'),
    ({'team1PlayerAId': None}, 'required'),
])
def test_invalid_matches_are_rejected(admin_client, players, changes, message) -> None:
    payload = match_payload([players['Larry'], players['Zach']], [players['Dustin'], players['Phil']], 11, 7)
    if changes.get('team2PlayerAId') == 'SAME':
        changes = {'team2PlayerAId': players['Larry'].id}
    payload.update(changes)
    response = admin_client.post('/api/v1/matches', json=payload)
    assert response.status_code == 400
    assert message in response.get_json()['error']
    assert Match.query.count() == 0


def test_match_with_unknown_player_is_404(admin_client, players) -> None:
    payload = match_payload([players['Larry'], players['Zach']], [players['Dustin'], players['Phil']], 11, 7)
    payload['team2PlayerBId'] = 'nobody'
    assert admin_client.post('/api/v1/matches', json=payload).status_code == 404


def test_archived_players_cannot_be_entered(admin_client, players) -> None:
    players['Phil'].is_archived = True
    db.session.commit()
    payload = match_payload([players['Larry'], players['Zach']], [players['Dustin'], players['Phil']], 11, 7)
    assert admin_client.post('/api/v1/matches', json=payload).status_code == 400


def test_team_score_shorthand(admin_client, players) -> None:
    payload = {
        'team1PlayerAId': players['Larry'].id,
        'team1PlayerBId': players['Zach'].id,
        'team2PlayerAId': players['Dustin'].id,
        'team2PlayerBId': players['Phil'].id,
        'team1Score': 4,
        'team2Score': 11,
    }
    response = admin_client.post('/api/v1/matches', json=payload)
    assert response.status_code == 201
    match = response.get_json()['match']
    assert match['winningTeam'] == 2
    assert match['team2ScoreA'] == match['team2ScoreB'] == 11


def test_player_profile(client, players) -> None:
    add_match(players, ('Larry', 'Zach'), ('Dustin', 'Phil'), 11, 7, days_ago=0)
    add_match(players, ('Larry', 'Zach'), ('Phil', 'Dustin'), 9, 11, days_ago=1)
    add_match(players, ('Larry', 'Matt'), ('Dustin', 'Dan'), 11, 2, days_ago=2)

    response = client.get(f"/api/players/{players['Larry'].id}")
    assert response.status_code == 200
    player = response.get_json()['player']
    assert player['name'] == 'Larry'
    assert player['stats'] == {
        'totalMatches': 3,
        'wins': 2,
        'losses': 1,
        'winRate': pytest.approx(200 / 3),
        'pointsScored': 31,
        'pointsConceded': 20,
        'last10Record': '2-1',
        'currentStreak': 'W1',
    }
    partners = player['commonPartners']
    assert partners[0]['player']['name'] == 'Zach'
    assert partners[0]['matches'] == 2
    assert partners[0]['winPercentage'] == pytest.approx(50.0)

    opponent_teams = player['topOpponentTeams']
    assert opponent_teams[0]['matches'] == 2
    assert {p['name'] for p in opponent_teams[0]['players']} == {'Dustin', 'Phil'}

    opponents = {o['player']['name']: o['matches'] for o in player['topOpponents']}
    assert opponents['Dustin'] == 3
    assert [m['date'][:10] for m in player['recentMatches']] == ['2026-05-01', '2026-04-30', '2026-04-29']

    # v1 path serves the same profile
    assert client.get(f"/api/v1/players/{players['Larry'].id}").get_json()['player']['stats']['wins'] == 2


def test_player_profile_unknown_player(client) -> None:
    response = client.get('/api/players/missing')
    assert response.status_code == 404
    assert response.get_json()['success'] is False


def test_player_without_matches_has_empty_profile(client, players) -> None:
    player = client.get(f"/api/players/{players['Dan'].id}").get_json()['player']
    assert player['stats']['currentStreak'] == 'None'
    assert player['stats']['last10Record'] == '0-0'
    assert player['commonPartners'] == []
    assert player['topOpponents'] == []
    assert player['topOpponentTeams'] == []


def test_stats_compare_with_head_to_head(client, players) -> None:
    add_match(players, ('Larry', 'Zach'), ('Dustin', 'Phil'), 11, 7, days_ago=0)
    add_match(players, ('Larry', 'Dustin'), ('Zach', 'Phil'), 11, 3, days_ago=1)
    add_match(players, ('Dustin', 'Matt'), ('Larry', 'Dan'), 11, 8, days_ago=2)

    larry, dustin = players['Larry'].id, players['Dustin'].id
    response = client.get(f'/api/stats?players={larry},{dustin}')
    assert response.status_code == 200
    data = response.get_json()
    assert [s['player']['name'] for s in data['stats']] == ['Larry', 'Dustin']
    assert data['stats'][0]['wins'] == 2
    assert len(data['headToHead']) == 2
    assert data['headToHeadRecord']['matches'] == 2
    assert data['headToHeadRecord']['wins'] == {larry: 1, dustin: 1}


def test_stats_requires_players(client, players) -> None:
    assert client.get('/api/stats').status_code == 400
    ids = ','.join(p.id for p in players.values())
    assert client.get(f'/api/stats?players={ids}').status_code == 400


def test_streaks_endpoint(client, players) -> None:
    add_match(players, ('Larry', 'Zach'), ('Dustin', 'Phil'), 11, 7, days_ago=0)
    add_match(players, ('Zach', 'Larry'), ('Matt', 'Dan'), 11, 9, days_ago=1)
    add_match(players, ('Matt', 'Dan'), ('Dustin', 'Phil'), 11, 6, days_ago=2)

    streaks = client.get('/api/stats/streaks').get_json()['data']
    assert streaks[0]['streak'] == 2
    assert streaks[0]['active'] is True
    assert {p['name'] for p in streaks[0]['players']} == {'Larry', 'Zach'}
    assert streaks[0]['lastWinDate'].startswith('2026-05-01')
    # Dustin & Phil lost their latest match; Matt & Dan lost theirs too
    assert len(streaks) == 1

    # An older loss means Larry & Zach are no longer unbeaten
    add_match(players, ('Larry', 'Zach'), ('Dustin', 'Phil'), 5, 11, days_ago=3)
    assert client.get('/api/stats/streaks').get_json()['data'] == []


def test_delete_match_recomputes_cache(admin_client, players) -> None:
    first = add_match(players, ('Larry', 'Zach'), ('Dustin', 'Phil'), 11, 7, days_ago=1)
    add_match(players, ('Larry', 'Zach'), ('Dustin', 'Phil'), 4, 11, days_ago=0)

    response = admin_client.delete(f'/api/v1/matches/{first.id}')
    assert response.status_code == 200

    larry = db.session.get(PlayerStats, players['Larry'].id)
    assert (larry.total_matches, larry.wins, larry.losses) == (1, 0, 1)
    assert larry.points_scored == 4
    assert admin_client.delete(f'/api/v1/matches/{first.id}').status_code == 404


def test_list_matches_newest_first(client, players) -> None:
    for day in range(3):
        add_match(players, ('Larry', 'Zach'), ('Dustin', 'Phil'), 11, day, days_ago=day)
    data = client.get('/api/v1/matches?limit=2').get_json()['data']
    assert [m['team2ScoreA'] for m in data] == [0, 1]
    assert client.get('/api/v1/matches?limit=abc').status_code == 400


def test_leaderboard(client, players) -> None:
    add_match(players, ('Larry', 'Zach'), ('Dustin', 'Phil'), 11, 7)
    players['Zach'].is_archived = True
    db.session.commit()

    board = client.get('/api/leaderboard').get_json()['data']
    names = [row['player']['name'] for row in board]
    assert names[0] == 'Larry'
    assert 'Zach' not in names
    assert len(names) == 5


def test_rebuild_all_player_stats(app, players) -> None:
    add_match(players, ('Larry', 'Zach'), ('Dustin', 'Phil'), 11, 7)
    stats = db.session.get(PlayerStats, players['Larry'].id)
    stats.wins = 40
    db.session.commit()

    assert match_service.rebuild_all_player_stats() == len(players)
    assert db.session.get(PlayerStats, players['Larry'].id).wins == 1
    assert Player.query.count() == 6

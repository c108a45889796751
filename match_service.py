"""
Database access for matches and players.

Loads matches as MatchRecords for stats_calculator, records and deletes
matches, and keeps the PlayerStats cache in step.
"""
import logging
from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.orm import joinedload

from models import db, Player, Match, PlayerStats, default_avatar
from stats_calculator import compute_player_stats

logger = logging.getLogger(__name__)


class ValidationError(ValueError):
    """Bad player or match input; reported to API clients as a 400."""


class NotFoundError(LookupError):
    pass


def _with_players(query):
    return query.options(
        joinedload(Match.team1_player_a),
        joinedload(Match.team1_player_b),
        joinedload(Match.team2_player_a),
        joinedload(Match.team2_player_b),
    )


def load_player_matches(player_id):
    """All matches the player took part in, newest first, as MatchRecords"""
    query = Match.query.filter(or_(
        Match.team1_player_a_id == player_id,
        Match.team1_player_b_id == player_id,
        Match.team2_player_a_id == player_id,
        Match.team2_player_b_id == player_id,
    ))
    matches = _with_players(query).order_by(Match.date.desc()).all()
    return [m.to_record() for m in matches]


def load_all_matches():
    matches = _with_players(Match.query).order_by(Match.date.desc()).all()
    return [m.to_record() for m in matches]


def recent_matches(limit=10):
    return _with_players(Match.query).order_by(Match.date.desc()).limit(limit).all()


def get_player(player_id):
    player = db.session.get(Player, player_id)
    if player is None:
        raise NotFoundError(f"Player {player_id} not found")
    return player


def list_players(include_archived=False):
    query = Player.query
    if not include_archived:
        query = query.filter_by(is_archived=False)
    return query.order_by(Player.name).all()


def create_player(name, profile_picture=None):
    name = (name or '').strip()
    if not name:
        raise ValidationError("Name is required")
    if Player.query.filter_by(name=name).first():
        raise ValidationError(f"Player '{name}' already exists")

    player = Player(name=name, profile_picture=profile_picture or default_avatar(name))
    player.stats = _empty_stats()
    db.session.add(player)
    db.session.commit()
    logger.info(f"Created player {player.name} ({player.id})")
    return player


def update_player(player_id, name=None, profile_picture=None, is_archived=None):
    player = get_player(player_id)
    if is_archived is not None and not isinstance(is_archived, bool):
        raise ValidationError("isArchived must be true or false")
    if name is not None:
        name = name.strip()
        if not name:
            raise ValidationError("Name is required")
        clash = Player.query.filter(Player.name == name, Player.id != player.id).first()
        if clash:
            raise ValidationError(f"Player '{name}' already exists")
        # Generated avatars follow the name; uploaded pictures are kept
        if not profile_picture and player.profile_picture == default_avatar(player.name):
            player.profile_picture = default_avatar(name)
        player.name = name
    if profile_picture:
        player.profile_picture = profile_picture
    if is_archived is not None:
        player.is_archived = is_archived
    db.session.commit()
    return player


def _parse_score(data, key):
    value = data.get(key)
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a whole number")
    try:
        score = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be a whole number")
    if score < 0:
        raise ValidationError(f"{key} cannot be negative")
    return score


def _team_score(data, team):
    """Read a team's score from teamNScore or from the matching A/B pair"""
    if data.get(f'team{team}Score') is not None:
        return _parse_score(data, f'team{team}Score')
    score_a = _parse_score(data, f'team{team}ScoreA')
    score_b = _parse_score(data, f'team{team}ScoreB')
    if score_a != score_b:
        raise ValidationError(
            f"team{team}ScoreA and team{team}ScoreB must match ({score_a} != {score_b})")
    return score_a


def parse_match_payload(data):
    """
    Validate a match submission. Returns a dict of Match column values.

    Player ids may be given as teamNPlayerXId or as teamNPlayerX objects
    with an id.
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    slots = ['team1PlayerA', 'team1PlayerB', 'team2PlayerA', 'team2PlayerB']
    player_ids = []
    for slot in slots:
        value = data.get(slot + 'Id')
        if value is None and isinstance(data.get(slot), dict):
            value = data[slot].get('id')
        if not value:
            raise ValidationError("All player IDs are required")
        player_ids.append(str(value))

    if len(set(player_ids)) != 4:
        raise ValidationError("A player can only appear once in a match")

    team1_score = _team_score(data, 1)
    team2_score = _team_score(data, 2)

    winning_team = data.get('winningTeam')
    if isinstance(winning_team, str) and winning_team.strip().isdigit():
        winning_team = int(winning_team)
    if winning_team is None and team1_score != team2_score:
        winning_team = 1 if team1_score > team2_score else 2
    if isinstance(winning_team, bool) or winning_team not in (1, 2):
        raise ValidationError("winningTeam must be 1 or 2")
    if team1_score != team2_score and (team1_score > team2_score) != (winning_team == 1):
        raise ValidationError("winningTeam does not match the scores")

    return {
        'team1_player_a_id': player_ids[0],
        'team1_player_b_id': player_ids[1],
        'team2_player_a_id': player_ids[2],
        'team2_player_b_id': player_ids[3],
        'team1_score_a': team1_score,
        'team1_score_b': team1_score,
        'team2_score_a': team2_score,
        'team2_score_b': team2_score,
        'winning_team': winning_team,
    }


def _empty_stats():
    return PlayerStats(total_matches=0, wins=0, losses=0, win_rate=0.0,
                       points_scored=0, points_conceded=0)


def _stats_row(player_id):
    stats = db.session.get(PlayerStats, player_id)
    if stats is None:
        stats = _empty_stats()
        stats.player_id = player_id
        db.session.add(stats)
    return stats


def _apply_result(player_id, won, scored, conceded):
    stats = _stats_row(player_id)
    stats.total_matches += 1
    stats.wins += 1 if won else 0
    stats.losses += 0 if won else 1
    stats.points_scored += scored
    stats.points_conceded += conceded
    stats.win_rate = 100 * stats.wins / stats.total_matches


def create_match(data, date=None):
    """Record a match and update the four players' cached stats in one transaction"""
    values = parse_match_payload(data)

    players = Player.query.filter(Player.id.in_([
        values['team1_player_a_id'], values['team1_player_b_id'],
        values['team2_player_a_id'], values['team2_player_b_id'],
    ])).all()
    found = {p.id: p for p in players}
    for key in ('team1_player_a_id', 'team1_player_b_id', 'team2_player_a_id', 'team2_player_b_id'):
        player = found.get(values[key])
        if player is None:
            raise NotFoundError(f"Player {values[key]} not found")
        if player.is_archived:
            raise ValidationError(f"Player {player.name} is archived")

    match = Match(date=date or datetime.utcnow(), **values)
    try:
        db.session.add(match)
        team1_won = match.winning_team == 1
        for player_id in (match.team1_player_a_id, match.team1_player_b_id):
            _apply_result(player_id, team1_won, match.team1_score_a, match.team2_score_a)
        for player_id in (match.team2_player_a_id, match.team2_player_b_id):
            _apply_result(player_id, not team1_won, match.team2_score_a, match.team1_score_a)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(f"Recorded match {match.id}: {match.team1_score_a}-{match.team2_score_a}, team {match.winning_team} won")
    return match


def refresh_player_stats(player_ids):
    """Recompute cached stats for the given players from their matches"""
    for player_id in player_ids:
        snapshot = compute_player_stats(player_id, load_player_matches(player_id))
        stats = _stats_row(player_id)
        stats.total_matches = snapshot.total_matches
        stats.wins = snapshot.wins
        stats.losses = snapshot.losses
        stats.win_rate = snapshot.win_rate
        stats.points_scored = snapshot.points_scored
        stats.points_conceded = snapshot.points_conceded


def delete_match(match_id):
    match = db.session.get(Match, match_id)
    if match is None:
        raise NotFoundError(f"Match {match_id} not found")

    player_ids = match.player_ids
    try:
        db.session.delete(match)
        db.session.flush()
        refresh_player_stats(player_ids)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info(f"Deleted match {match_id}")


def rebuild_all_player_stats():
    """Recompute every player's cached stats. Returns the number of players updated."""
    players = Player.query.all()
    try:
        refresh_player_stats([p.id for p in players])
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return len(players)

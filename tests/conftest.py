from datetime import datetime, timedelta

import pytest

import match_service
import security
from models import db
from pickleball_web import create_app
from stats_calculator import MatchRecord, PlayerRef

ADMIN_PASSWORD = 'let-me-in'
BASE_DATE = datetime(2026, 5, 1, 18, 0, 0)


@pytest.fixture(autouse=True)
def clear_login_state():
    security.reset_all()
    yield
    security.reset_all()


@pytest.fixture
def app():
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SECRET_KEY': 'test-secret',
        'ADMIN_PASSWORD': ADMIN_PASSWORD,
        'RATELIMIT_ENABLED': False,
        'LOG_LEVEL': 'WARNING',
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_client(client):
    response = client.post('/api/auth', json={'password': ADMIN_PASSWORD})
    assert response.status_code == 200
    return client


@pytest.fixture
def players(app):
    """Six players keyed by name"""
    names = ['Larry', 'Zach', 'Dustin', 'Phil', 'Matt', 'Dan']
    return {name: match_service.create_player(name) for name in names}


def match_payload(team1, team2, team1_score, team2_score, winning_team=None):
    data = {
        'team1PlayerAId': team1[0].id,
        'team1PlayerBId': team1[1].id,
        'team2PlayerAId': team2[0].id,
        'team2PlayerBId': team2[1].id,
        'team1ScoreA': team1_score,
        'team1ScoreB': team1_score,
        'team2ScoreA': team2_score,
        'team2ScoreB': team2_score,
    }
    if winning_team is not None:
        data['winningTeam'] = winning_team
    return data


def record(match_id, days_ago, team1, team2, winning_team, team1_score=None, team2_score=None):
    """A MatchRecord between two pairs of player ids; None marks a missing slot"""
    if team1_score is None:
        team1_score = 11 if winning_team == 1 else 7
    if team2_score is None:
        team2_score = 11 if winning_team == 2 else 7

    def ref(player_id):
        return PlayerRef(id=player_id, name=player_id.upper()) if player_id else None

    return MatchRecord(
        id=match_id,
        date=BASE_DATE - timedelta(days=days_ago),
        team1_player_a=ref(team1[0]),
        team1_player_b=ref(team1[1]),
        team2_player_a=ref(team2[0]),
        team2_player_b=ref(team2[1]),
        team1_score_a=team1_score,
        team1_score_b=team1_score,
        team2_score_a=team2_score,
        team2_score_b=team2_score,
        winning_team=winning_team,
    )

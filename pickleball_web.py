#!/usr/bin/env python3
import logging
import os
from datetime import timedelta
from functools import wraps
from flask import Blueprint, Flask, jsonify, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

import match_service
import security
from match_service import ValidationError, NotFoundError
from models import db
from stats_calculator import (
    compute_head_to_head_record,
    compute_leaderboard,
    compute_player_stats,
    compute_rankings,
    compute_team_streaks,
    find_head_to_head,
)

logger = logging.getLogger(__name__)

BASE_DIR = os.path.abspath(os.path.dirname(__file__))
DEFAULT_DB_PATH = os.path.join(BASE_DIR, 'instance', 'pickleball.db')

MAX_COMPARE_PLAYERS = 4
RECENT_MATCHES = 10
MAX_MATCHES_PAGE = 100

# Initialize rate limiter; storage comes from RATELIMIT_STORAGE_URI
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["1000 per day", "200 per hour"],
)

# Stricter rate limiting for authentication attempts
auth_limiter = limiter.shared_limit(
    "5 per minute",
    scope="auth",
    error_message="Too many login attempts. Please try again later."
)

api = Blueprint('api', __name__)


def configure_logging(level):
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)


def load_config():
    """Settings from the environment"""
    return {
        'SQLALCHEMY_DATABASE_URI': os.environ.get('DATABASE_URL', f'sqlite:///{DEFAULT_DB_PATH}'),
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SECRET_KEY': os.environ.get('FLASK_SECRET_KEY', 'pickleball-tracker-secret-key'),
        'ADMIN_PASSWORD': os.environ.get('ADMIN_PASSWORD'),
        'RATELIMIT_STORAGE_URI': os.environ.get('RATELIMIT_STORAGE_URI', 'memory://'),
        'RATELIMIT_HEADERS_ENABLED': True,
        'LOG_LEVEL': os.environ.get('LOG_LEVEL', 'INFO'),
        'PERMANENT_SESSION_LIFETIME': timedelta(seconds=security.SESSION_TIMEOUT),
        'SESSION_COOKIE_HTTPONLY': True,
        'SESSION_COOKIE_SAMESITE': 'Strict',
    }


def create_app(test_config=None):
    app = Flask(__name__)
    app.config.update(load_config())
    if test_config:
        app.config.update(test_config)

    configure_logging(app.config['LOG_LEVEL'])

    if not app.config.get('ADMIN_PASSWORD'):
        logger.warning("ADMIN_PASSWORD is not set; admin endpoints are locked")

    if app.config['SQLALCHEMY_DATABASE_URI'] == f'sqlite:///{DEFAULT_DB_PATH}':
        os.makedirs(os.path.dirname(DEFAULT_DB_PATH), exist_ok=True)

    db.init_app(app)
    limiter.init_app(app)
    app.register_blueprint(api)
    return app


def success_response(status=200, **data):
    return jsonify({"success": True, **data}), status


def error_response(message, status=500):
    return jsonify({"success": False, "error": message}), status


def handle_errors(action):
    """Map service errors to JSON responses"""
    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except ValidationError as e:
                return error_response(str(e), 400)
            except NotFoundError as e:
                return error_response(str(e), 404)
            except Exception:
                logger.exception(f"Failed to {action}")
                return error_response(f"Failed to {action}")
        return decorated
    return decorator


def player_summary(player, matches):
    data = player.to_dict()
    data['stats'] = compute_player_stats(player.id, matches).to_dict()
    return data


@api.route('/')
def index():
    return jsonify({"message": "Pickleball Stats API is running"})


@api.route('/api/auth', methods=['POST'])
@auth_limiter
def auth():
    data = request.get_json(silent=True) or {}
    return security.login(data.get('password'))


@api.route('/api/logout', methods=['POST'])
def logout():
    security.logout()
    return success_response(message="Logged out")


@api.route('/api/v1/players', methods=['GET'])
@handle_errors("fetch players")
def list_players():
    include_archived = request.args.get('includeArchived', '').lower() in ('1', 'true', 'yes')
    players = match_service.list_players(include_archived=include_archived)
    if not players:
        return success_response(data=[], message="No players found in database. Try running init_db.py.")

    matches = match_service.load_all_matches()
    return success_response(data=[player_summary(p, matches) for p in players])


@api.route('/api/v1/players', methods=['POST'])
@security.requires_auth
@handle_errors("create player")
def create_player():
    data = request.get_json(silent=True) or {}
    player = match_service.create_player(data.get('name'), data.get('profilePicture'))
    return success_response(201, message="Player created successfully", player=player.to_dict())


@api.route('/api/players/<player_id>', methods=['GET'])
@api.route('/api/v1/players/<player_id>', methods=['GET'])
@handle_errors("fetch player")
def get_player(player_id):
    """Player profile: stats, partners, opponents and recent matches"""
    player = match_service.get_player(player_id)
    matches = match_service.load_player_matches(player_id)
    rankings = compute_rankings(player_id, matches)

    data = player.to_dict()
    data['stats'] = compute_player_stats(player_id, matches).to_dict()
    for name, entries in rankings.items():
        data[name] = [entry.to_dict() for entry in entries]
    data['recentMatches'] = [m.to_dict() for m in matches[:RECENT_MATCHES]]
    return success_response(player=data)


@api.route('/api/v1/players/<player_id>', methods=['PUT'])
@security.requires_auth
@handle_errors("update player")
def update_player(player_id):
    data = request.get_json(silent=True) or {}
    if 'name' in data and not data['name']:
        return error_response("Name is required", 400)
    player = match_service.update_player(
        player_id,
        name=data.get('name'),
        profile_picture=data.get('profilePicture'),
        is_archived=data.get('isArchived'),
    )
    return success_response(message="Player updated successfully", player=player.to_dict())


@api.route('/api/v1/matches', methods=['GET'])
@handle_errors("fetch matches")
def list_matches():
    try:
        limit = int(request.args.get('limit', RECENT_MATCHES))
    except ValueError:
        return error_response("limit must be a number", 400)
    limit = max(1, min(limit, MAX_MATCHES_PAGE))
    matches = match_service.recent_matches(limit)
    return success_response(data=[m.to_dict() for m in matches])


@api.route('/api/v1/matches', methods=['POST'])
@security.requires_auth
@handle_errors("create match")
def create_match():
    match = match_service.create_match(request.get_json(silent=True))
    return success_response(201, match=match.to_dict())


@api.route('/api/v1/matches/<match_id>', methods=['DELETE'])
@security.requires_auth
@handle_errors("delete match")
def delete_match(match_id):
    match_service.delete_match(match_id)
    return success_response(message="Match deleted successfully")


@api.route('/api/stats', methods=['GET'])
@handle_errors("fetch player statistics")
def stats():
    """Stats for up to four players, plus head-to-head when exactly two are given"""
    player_ids = []
    for player_id in request.args.get('players', '').split(','):
        player_id = player_id.strip()
        if player_id and player_id not in player_ids:
            player_ids.append(player_id)

    if not player_ids:
        return error_response("Please select at least one player to view stats", 400)
    if len(player_ids) > MAX_COMPARE_PLAYERS:
        return error_response(f"Select at most {MAX_COMPARE_PLAYERS} players", 400)

    results = []
    matches_by_player = {}
    for player_id in player_ids:
        player = match_service.get_player(player_id)
        matches = matches_by_player[player_id] = match_service.load_player_matches(player_id)
        entry = compute_player_stats(player_id, matches).to_dict()
        entry['player'] = player.to_ref().to_dict()
        results.append(entry)

    head_to_head = []
    head_to_head_record = None
    if len(player_ids) == 2:
        first, second = player_ids
        matches = matches_by_player[first]
        head_to_head = [m.to_dict() for m in find_head_to_head(first, second, matches)]
        head_to_head_record = compute_head_to_head_record(first, second, matches)

    return success_response(
        stats=results,
        headToHead=head_to_head,
        headToHeadRecord=head_to_head_record,
    )


@api.route('/api/stats/streaks', methods=['GET'])
@handle_errors("fetch team streaks")
def team_streaks():
    streaks = compute_team_streaks(match_service.load_all_matches())
    return success_response(data=[s.to_dict() for s in streaks])


@api.route('/api/leaderboard', methods=['GET'])
@handle_errors("fetch leaderboard")
def leaderboard():
    board = compute_leaderboard(match_service.list_players(), match_service.load_all_matches())
    return success_response(data=[
        {'player': row['player'].to_dict(), 'stats': row['stats'].to_dict()}
        for row in board
    ])


if __name__ == '__main__':
    app = create_app()
    app.run(debug=True, port=int(os.environ.get('PORT', 5000)))

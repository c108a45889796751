#!/usr/bin/env python3
import json
import logging
import os

from match_service import create_player
from models import db, Player
from pickleball_web import create_app

logger = logging.getLogger(__name__)

DEFAULT_PLAYERS = ["Larry", "Zach", "Dustin", "Phil", "Matt", "Dan"]


def load_roster(path):
    """Player names from a JSON file of the form {"players": [...]}, or the defaults"""
    if not os.path.exists(path):
        return DEFAULT_PLAYERS
    with open(path, 'r') as f:
        data = json.load(f)
    return data.get('players', [])


def init_db(app=None, roster_file=None):
    """Create all tables and seed the roster if the database is empty"""
    app = app or create_app()
    roster_file = roster_file or os.path.join(os.path.dirname(os.path.abspath(__file__)), 'players.json')

    with app.app_context():
        db.create_all()

        if Player.query.first() is not None:
            logger.info("Database already contains players. No seeding needed.")
            return 0

        names = load_roster(roster_file)
        for name in names:
            create_player(name)
        logger.info(f"Database initialized with {len(names)} players")
        return len(names)


if __name__ == '__main__':
    init_db()

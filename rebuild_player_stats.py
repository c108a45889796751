#!/usr/bin/env python3
"""
Recompute the cached PlayerStats rows from the matches table.

The cache is updated incrementally when matches are recorded and can drift
(imports, manual edits); this brings it back in line with the numbers the
API computes on demand.
"""
import logging
import sys

from match_service import rebuild_all_player_stats
from pickleball_web import create_app

logger = logging.getLogger(__name__)


def main():
    app = create_app()
    with app.app_context():
        try:
            count = rebuild_all_player_stats()
        except Exception:
            logger.exception("Rebuilding player stats failed")
            return 1
    logger.info(f"Rebuilt stats for {count} players")
    return 0


if __name__ == '__main__':
    sys.exit(main())

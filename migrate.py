#!/usr/bin/env python3
import sys

from flask_migrate import Migrate, init, migrate as migrate_cmd, upgrade, stamp

from models import db
from pickleball_web import create_app

app = create_app()
migrate = Migrate(app, db)

USAGE = """Usage:
  Initialize migrations: python migrate.py db init
  Create migration: python migrate.py db migrate -m 'message'
  Apply migrations: python migrate.py db upgrade
  Stamp current DB state: python migrate.py db stamp"""


def main(argv):
    if len(argv) < 3 or argv[1] != 'db':
        print(USAGE)
        return 1

    command = argv[2]
    with app.app_context():
        if command == 'init':
            init()
        elif command == 'migrate':
            message = argv[4] if len(argv) > 4 and argv[3] == '-m' else 'auto migration'
            migrate_cmd(message=message)
        elif command == 'upgrade':
            upgrade()
        elif command == 'stamp':
            stamp()
        else:
            print(USAGE)
            return 1
    return 0


if __name__ == '__main__':
    sys.exit(main(sys.argv))

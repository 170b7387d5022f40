import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from crudhub.broadcaster import Broadcaster
from crudhub.database import Database, resolve_database_path
from crudhub.errors import ConflictError, ValidationError
from crudhub.service import RecordService


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a crudhub user record")
    parser.add_argument("name", help="Display name for the user")
    parser.add_argument("email", help="Email address (unique among active users)")
    parser.add_argument("age", type=int, help="Age in years (0-150)")
    parser.add_argument("--phone", default=None, help="Optional phone number")
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to CRUDHUB_DB_PATH or data/crudhub.sqlite3)",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    db_env = args.db_path or os.getenv("CRUDHUB_DB_PATH")
    database = Database(resolve_database_path(db_env))
    database.initialize()
    service = RecordService(database, Broadcaster())

    try:
        user = service.create(name=args.name, email=args.email, age=args.age, phone=args.phone)
    except ValidationError as exc:
        for violation in exc.violations:
            print(f"Error: {violation.field}: {violation.message}", file=sys.stderr)
        return 1
    except ConflictError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Created user #{user.id}: {user.name} <{user.email}>")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

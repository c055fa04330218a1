"""Apply, inspect or roll back database migrations."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from storybible import create_app
from storybible.config import Config
from storybible.errors import InvalidOperationError
from storybible.migrations import MigrationRunner


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Manage the story bible database schema.")
    action = parser.add_mutually_exclusive_group()
    action.add_argument("--status", action="store_true", help="Show applied and pending migrations.")
    action.add_argument("--rollback", action="store_true", help="Roll back the most recent migration.")
    parser.add_argument("--database-url", help="Database to operate on (defaults to DATABASE_URL).")
    return parser.parse_args()


def main() -> int:
    args = parse_args()

    class MigrateConfig(Config):
        AUTO_MIGRATE = False

    if args.database_url:
        MigrateConfig.SQLALCHEMY_DATABASE_URI = args.database_url

    app = create_app(MigrateConfig)
    with app.app_context():
        runner = MigrationRunner()

        if args.status:
            status = runner.get_status()
            print(f"Current version: {status.current_version}")
            print(f"Applied: {', '.join(map(str, status.applied)) or 'none'}")
            print(f"Pending: {', '.join(map(str, status.pending)) or 'none'}")
            return 0

        if args.rollback:
            try:
                result = runner.rollback_last()
            except InvalidOperationError as exc:
                print(f"Rollback failed: {exc.message}")
                return 1
            print(f"Rolled back migration {result.version}: {result.description}")
            return 0

        results = runner.run_migrations()
        if not results:
            print("Database is up to date.")
            return 0
        for result in results:
            if result.success:
                print(f"Applied migration {result.version}: {result.description} ({result.duration_ms:.1f} ms)")
            else:
                print(f"Migration {result.version} failed: {result.error}")
                return 1
        return 0


if __name__ == "__main__":
    sys.exit(main())

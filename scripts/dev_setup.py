"""Prepare a local storybible checkout.

Writes the settings given on the command line into ``.env``, applies the
pending schema migrations and, with ``--seed``, loads a demo story.
"""
from __future__ import annotations

import argparse
import shutil
import sys
from pathlib import Path
from typing import Dict, Optional

from dotenv import dotenv_values, set_key

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from storybible import create_app
from storybible.config import Config
from storybible.migrations import MigrationRunner
from storybible.seed import SEED_LANGUAGES, run_seed

# command line option -> .env key
ENV_OPTIONS = {
    "secret_key": "SECRET_KEY",
    "openai_api_key": "OPENAI_API_KEY",
    "openai_model": "OPENAI_MODEL",
    "database_url": "DATABASE_URL",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Configure .env and the database for local development.")
    parser.add_argument("--secret-key", help="Flask SECRET_KEY; the existing value is kept when omitted.")
    parser.add_argument("--openai-api-key", help="OpenAI key for the intake pipeline.")
    parser.add_argument("--openai-model", help="OpenAI model for the intake pipeline, e.g. gpt-4o-mini.")
    parser.add_argument("--database-url", help="SQLAlchemy database URL; defaults to the instance SQLite file.")
    parser.add_argument("--env-path", type=Path, default=REPO_ROOT / ".env", help="The .env file to write.")
    parser.add_argument("--skip-db", action="store_true", help="Write .env only; leave the database alone.")
    parser.add_argument("--seed", choices=SEED_LANGUAGES, help="Load the demo story in this language.")
    return parser


def update_env_file(env_path: Path, args: argparse.Namespace) -> Dict[str, Optional[str]]:
    if env_path.exists():
        backup = env_path.with_name(env_path.name + ".bak")
        shutil.copy(env_path, backup)
        print(f"Backed up {env_path.name} to {backup.name}")
    else:
        env_path.touch()

    updates = {"FLASK_APP": "storybible:create_app"}
    for option, key in ENV_OPTIONS.items():
        value = getattr(args, option)
        if value:
            updates[key] = value

    for key, value in updates.items():
        set_key(str(env_path), key, value, quote_mode="never")
    print(f"Wrote {len(updates)} setting(s) to {env_path}")
    return dotenv_values(env_path)


def migrate_database(database_url: Optional[str], seed_lang: Optional[str]) -> bool:
    class SetupConfig(Config):
        AUTO_MIGRATE = False

    if database_url:
        SetupConfig.SQLALCHEMY_DATABASE_URI = database_url

    app = create_app(SetupConfig)
    with app.app_context():
        results = MigrationRunner().run_migrations()
        if not results:
            print("Schema already up to date.")
        for result in results:
            outcome = "applied" if result.success else f"failed: {result.error}"
            print(f"  {result.version:03d} {result.description} ... {outcome}")
        if not all(result.success for result in results):
            return False

        if seed_lang:
            counts = run_seed(seed_lang)
            print(f"Seeded the {seed_lang} demo story: " + ", ".join(f"{k}={v}" for k, v in counts.items()))
    return True


def masked(key: str, value: Optional[str]) -> str:
    if value and key.endswith("_KEY"):
        return value[:4] + "..."
    return value or ""


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    env_values = update_env_file(args.env_path, args)

    if args.skip_db:
        print("Skipping database setup.")
    elif not migrate_database(args.database_url, args.seed):
        print("Database migration failed.", file=sys.stderr)
        return 1

    print("\nCurrent .env:")
    for key in sorted(env_values):
        print(f"  {key}={masked(key, env_values[key])}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

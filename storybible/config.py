import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _default_sqlite_uri() -> str:
    instance_path = BASE_DIR / "instance"
    instance_path.mkdir(exist_ok=True)
    return f"sqlite:///{instance_path / 'storybible.db'}"


class Config:
    """Base configuration shared across environments."""

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", _default_sqlite_uri())
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    AUTO_MIGRATE = True
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY", "")
    OPENAI_MODEL = os.environ.get("OPENAI_MODEL", "gpt-4o-mini")
    PROMPT_CONFIG_PATH = str(BASE_DIR / "prompt_config.json")

    INTAKE_MAX_TEXT_LENGTH = 500_000
    SEARCH_DEFAULT_LIMIT = 20
    SEARCH_MAX_LIMIT = 100

    # model context window minus the output and prompt reserves
    AI_CONTEXT_TOKEN_BUDGET = int(os.environ.get("AI_CONTEXT_TOKEN_BUDGET", 1_000_000 - 4_000 - 2_000))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    OPENAI_API_KEY = ""
    LOG_LEVEL = "DEBUG"

from __future__ import annotations

from pathlib import Path

from flask import Flask
from dotenv import load_dotenv

from .cli import register_cli
from .config import Config
from .extensions import db
from .migrations import ensure_database_schema
from .responses import register_error_handlers
from .services import init_services

__version__ = "0.1.0"

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")


def create_app(config_class: type[Config] = Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)
    app.config.setdefault("PROMPT_CONFIG_PATH", str(BASE_DIR / "prompt_config.json"))
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    register_extensions(app)
    register_blueprints(app)
    register_error_handlers(app)
    register_cli(app)
    init_services(app)

    if app.config.get("AUTO_MIGRATE", True):
        with app.app_context():
            results = ensure_database_schema()
            if results:
                app.logger.info("Applied %d database migration(s)", len(results))

    return app


def register_extensions(app: Flask) -> None:
    db.init_app(app)


def register_blueprints(app: Flask) -> None:
    from .ai import bp as ai_bp
    from .bible import bp as bible_bp
    from .exports import bp as exports_bp
    from .intake import bp as intake_bp
    from .main import bp as main_bp
    from .writing import bp as writing_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(bible_bp)
    app.register_blueprint(writing_bp)
    app.register_blueprint(exports_bp)
    app.register_blueprint(intake_bp)
    app.register_blueprint(ai_bp)

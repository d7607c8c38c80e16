# backend/posengine/__init__.py
import logging

from flask import Flask, current_app, jsonify
from werkzeug.exceptions import HTTPException

from .config import Config
from .errors import EngineError
from .extensions import db, migrate

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logger = logging.getLogger(__name__)
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(EngineError)
    def handle_engine_error(exc: EngineError):
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc
        current_app.logger.exception("Unhandled error")
        return jsonify({"error": "Internal server error"}), 500


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    _configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .engine import build_engine
    app.extensions["posengine"] = build_engine(
        db.session,
        variance_threshold_cents=app.config["POS_VARIANCE_THRESHOLD_CENTS"],
        max_discount_pct=app.config["POS_MAX_DISCOUNT_PCT"],
    )

    _register_error_handlers(app)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app

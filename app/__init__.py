from flask import Flask, jsonify
from flask_migrate import Migrate
import os
from datetime import datetime, timezone
from urllib.parse import urlparse, urlunparse
from pathlib import Path
from sqlalchemy.pool import QueuePool, StaticPool

from .routes.internal import internal_bp
from .models import db
from .utils.logger import configure_logging
from .cli import register_cli_commands
from config import Config, get_database_uri_from_env


migrate = Migrate()


def _mask_database_uri(uri: str) -> str:
    try:
        parsed = urlparse(uri)
        if parsed.password:
            netloc = parsed.netloc.replace(parsed.password, "***")
            parsed = parsed._replace(netloc=netloc)
        return urlunparse(parsed)
    except Exception:
        return "<unavailable>"


def _is_truthy_env(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes"}


def _engine_options(app: Flask) -> dict:
    engine_defaults = {
        "pool_size": 5,
        "max_overflow": 5,
        "pool_pre_ping": True,
        "pool_recycle": 280,
    }
    existing_engine_options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS", {}))
    engine_defaults.update(existing_engine_options)

    database_uri = app.config.get("SQLALCHEMY_DATABASE_URI", "") or ""

    if database_uri.startswith("sqlite"):
        # SQLite (especially :memory:) does not accept pool sizing parameters.
        for key in ("pool_size", "max_overflow", "pool_recycle"):
            engine_defaults.pop(key, None)

    poolclass = engine_defaults.get("poolclass")
    if poolclass:
        try:
            is_static_pool = issubclass(poolclass, StaticPool)
            is_queue_pool = issubclass(poolclass, QueuePool)
        except TypeError:
            is_static_pool = False
            is_queue_pool = False

        if is_static_pool:
            # StaticPool does not accept queue sizing parameters.
            for key in ("pool_size", "max_overflow", "pool_recycle"):
                engine_defaults.pop(key, None)
        elif not is_queue_pool:
            engine_defaults.pop("pool_size", None)
            engine_defaults.pop("max_overflow", None)

    return engine_defaults


def create_app(config_overrides: dict | None = None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)
    app.config.setdefault("DATA_DIR", Config.DATA_DIR)
    app.config.setdefault(
        "WORKER_HEARTBEAT_INTERVAL", int(os.getenv("WORKER_HEARTBEAT_INTERVAL", "30"))
    )

    configure_logging(app.config.get("LOG_DIR"))
    app.logger.info(
        "[BOOT] Logging configured. Writing to %s",
        Path(app.config.get("LOG_DIR", "logs")) / "gamification.log",
    )

    app.config["ALEMBIC_RUNNING"] = _is_truthy_env(os.getenv("ALEMBIC_RUNNING"))
    app.config["START_TIME"] = datetime.now(timezone.utc)

    override_database_uri = None
    if config_overrides and "SQLALCHEMY_DATABASE_URI" in config_overrides:
        override_database_uri = config_overrides["SQLALCHEMY_DATABASE_URI"]

    if override_database_uri:
        app.config["SQLALCHEMY_DATABASE_URI"] = override_database_uri
        app.logger.info(
            "[BOOT] SQLALCHEMY_DATABASE_URI configured via overrides: %s",
            _mask_database_uri(override_database_uri),
        )
    else:
        database_url, database_source = get_database_uri_from_env()
        if database_url:
            app.config["SQLALCHEMY_DATABASE_URI"] = database_url
            app.logger.info(
                "[BOOT] SQLALCHEMY_DATABASE_URI resolved from %s: %s",
                database_source,
                _mask_database_uri(database_url),
            )
        else:
            app.logger.warning(
                "[BOOT] DATABASE_URL not set. Falling back to default SQLALCHEMY_DATABASE_URI from Config."
            )
            app.config["SQLALCHEMY_DATABASE_URI"] = Config.SQLALCHEMY_DATABASE_URI

    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = _engine_options(app)

    if not app.config.get("CRON_SECRET") and not app.config.get("TESTING"):
        app.logger.warning("[BOOT] CRON_SECRET not set; /internal/cron endpoints will refuse requests")

    db.init_app(app)
    migrate.init_app(app, db)

    app.register_blueprint(internal_bp)
    register_cli_commands(app)

    @app.route("/healthz")
    def healthz():
        return jsonify({"ok": True, "build": app.config.get("BUILD_SHA") or None})

    return app

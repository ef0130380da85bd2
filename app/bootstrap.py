"""Startup helpers for database migrations."""

from __future__ import annotations

import logging
from pathlib import Path

from flask import Flask
from flask_migrate import upgrade as migrate_upgrade
from sqlalchemy.exc import SQLAlchemyError

from .models import db

logger = logging.getLogger(__name__)

_MIGRATIONS_DIRNAME = "migrations"


def _migrations_directory(app: Flask) -> Path:
    return Path(app.root_path).parent / _MIGRATIONS_DIRNAME


def ensure_schema(app: Flask, log: logging.Logger | None = None) -> None:
    """Create any missing tables straight from the models."""

    logger_to_use = log or logger
    try:
        with app.app_context():
            db.create_all()
    except SQLAlchemyError as exc:
        logger_to_use.error("[BOOT] create_all failed: %s", exc)
        raise
    logger_to_use.info("[BOOT] Schema ensured via create_all")


def init_db(app: Flask) -> bool:
    """Run database migrations idempotently before serving traffic.

    Returns ``False`` when the Alembic upgrade failed and the schema was
    created from the models instead.
    """

    if app is None:  # pragma: no cover - sanity check
        raise ValueError("init_db requires a Flask application instance")

    log = app.logger if app.logger else logger  # type: ignore[assignment]
    log.info("[BOOT] Running database initialization (Flask-Migrate upgrade head)...")

    migrations_dir = _migrations_directory(app)

    try:
        with app.app_context():
            if not (migrations_dir / "env.py").exists():
                raise FileNotFoundError(f"migrations environment missing at {migrations_dir}")
            migrate_upgrade(directory=str(migrations_dir))
    except Exception as exc:  # pragma: no cover - exercised only against broken deployments
        log.exception("[BOOT] Database migration failed: %s", exc)
        log.warning("[BOOT] Falling back to create_all")
        ensure_schema(app, log)
        return False
    else:
        log.info("[BOOT] Alembic upgrade head OK")
        return True

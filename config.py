import os
from typing import Optional, Tuple

from dotenv import load_dotenv

load_dotenv()


DATABASE_ENV_PRIORITY = (
    "INTERNAL_DATABASE_URL",
    "DATABASE_URL",
    "EXTERNAL_DATABASE_URL",
)


def normalize_database_uri(uri: Optional[str]) -> Optional[str]:
    if not uri:
        return uri

    if uri.startswith("postgres://"):
        return "postgresql+psycopg2://" + uri[len("postgres://"):]

    if uri.startswith("postgresql://") and not uri.startswith("postgresql+psycopg2://"):
        return "postgresql+psycopg2://" + uri[len("postgresql://"):]

    return uri


def get_database_uri_from_env(default: Optional[str] = None) -> Tuple[Optional[str], Optional[str]]:
    for key in DATABASE_ENV_PRIORITY:
        value = os.getenv(key)
        if value:
            return normalize_database_uri(value), key

    if default is not None:
        return normalize_database_uri(default), "default"

    return None, None


DEFAULT_SQLITE_URI = "sqlite:///gamification.db"
RESOLVED_DATABASE_URI, RESOLVED_DATABASE_SOURCE = get_database_uri_from_env(DEFAULT_SQLITE_URI)


def _resolve_push_provider() -> str:
    """Return the normalized push provider name from environment variables."""

    provider = (os.getenv("PUSH_PROVIDER") or "").strip().lower()
    if provider in {"fcm", "log"}:
        return provider
    if os.getenv("FCM_SERVER_KEY"):
        return "fcm"
    return "log"


def _env_int(name: str, default: int) -> int:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except (TypeError, ValueError):
        return default


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev")
    SQLALCHEMY_DATABASE_URI = RESOLVED_DATABASE_URI or DEFAULT_SQLITE_URI
    SQLALCHEMY_DATABASE_URI_SOURCE = RESOLVED_DATABASE_SOURCE
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # Stale pooled connections are replaced on checkout instead of failing
    # halfway through a batch.
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": _env_int("SQLALCHEMY_POOL_RECYCLE", 280),
        "pool_size": _env_int("SQLALCHEMY_POOL_SIZE", 5),
        "max_overflow": _env_int("SQLALCHEMY_MAX_OVERFLOW", 5),
    }

    CRON_SECRET = os.getenv("CRON_SECRET", "")
    CRON_RUN_RETENTION_DAYS = _env_int("CRON_RUN_RETENTION_DAYS", 30)

    # Missions
    MISSION_TIMEZONE = os.getenv("MISSION_TIMEZONE", "UTC")
    WEEKLY_ANCHOR_WEEKDAY = _env_int("WEEKLY_ANCHOR_WEEKDAY", 0)  # Monday

    # Streaks
    STREAK_MAX_WORKERS = _env_int("STREAK_MAX_WORKERS", 4)
    NOTIFICATION_MAX_WORKERS = _env_int("NOTIFICATION_MAX_WORKERS", 4)

    # Push notifications
    PUSH_PROVIDER = _resolve_push_provider()
    FCM_SERVER_KEY = os.getenv("FCM_SERVER_KEY", "")
    FCM_ENDPOINT = os.getenv("FCM_ENDPOINT", "https://fcm.googleapis.com/fcm/send")

    # Scheduler (worker process)
    GAMIFICATION_CRON = os.getenv("GAMIFICATION_CRON", "0 0 * * *")
    STREAK_CRON = os.getenv("STREAK_CRON", "")
    WORKER_HEARTBEAT_INTERVAL = _env_int("WORKER_HEARTBEAT_INTERVAL", 30)
    DISABLE_SCHEDULER = (os.getenv("DISABLE_SCHEDULER") or "").strip().lower() in {"1", "true", "yes"}

    BUILD_SHA = os.getenv("RENDER_GIT_COMMIT", "")
    LOG_DIR = os.getenv("LOG_DIR", "logs")
    DATA_DIR = os.getenv("DATA_DIR", "/var/tmp")

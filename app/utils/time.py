"""Time-related helpers shared by the mission and streak services."""
from __future__ import annotations

from datetime import datetime, time, timezone, tzinfo
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.utils.logger import get_logger

logger = get_logger(__name__)

UTC = timezone.utc


def ensure_utc(dt: datetime) -> datetime:
    """Return ``dt`` as an aware UTC datetime; naive values are taken as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp (``Z`` suffix accepted) into aware UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str):
        return None

    raw = value.strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(raw))
    except ValueError:
        return None


def to_iso_utc(ts: datetime | None) -> str | None:
    """Serialize a timestamp to ISO-8601 with a UTC ``Z`` suffix."""
    if ts is None:
        return None
    return ensure_utc(ts).isoformat().replace("+00:00", "Z")


def resolve_timezone(name: str | None) -> tzinfo:
    """Return the zone for an IANA identifier, UTC when missing or unknown."""
    if not name:
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        logger.debug("Unknown timezone %r, falling back to UTC", name)
        return UTC


def local_midnight(now: datetime, tz: tzinfo) -> datetime:
    """Midnight of the local calendar day of ``now`` in ``tz`` (aware)."""
    local_now = ensure_utc(now).astimezone(tz)
    return datetime.combine(local_now.date(), time.min, tzinfo=tz)


__all__ = [
    "UTC",
    "ensure_utc",
    "local_midnight",
    "parse_timestamp",
    "resolve_timezone",
    "to_iso_utc",
]

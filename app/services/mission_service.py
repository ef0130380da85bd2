"""Mission lifecycle: selection, assignment and expiry."""

from __future__ import annotations

import random
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, tzinfo
from typing import TYPE_CHECKING, Any, Sequence

from dateutil.relativedelta import relativedelta

from app.services.mission_catalog import (
    DAILY,
    MISSION_PERIODS,
    MONTHLY,
    SELECTION_SIZES,
    WEEKLY,
    MissionTemplate,
    get_catalog,
)
from app.utils.logger import get_logger
from app.utils.time import UTC, ensure_utc, local_midnight

if TYPE_CHECKING:  # pragma: no cover - typing only
    from app.services.store import GamificationStore

logger = get_logger(__name__)

MONDAY = 0


@dataclass(frozen=True)
class ScheduledMission:
    """A catalog template stamped with a concrete ``[start_date, end_date)`` window."""

    template: MissionTemplate
    start_date: datetime
    end_date: datetime
    id: str | None = None

    @property
    def period(self) -> str:
        return self.template.period

    @property
    def category(self) -> str:
        return self.template.category

    @property
    def title(self) -> str:
        return self.template.title

    @property
    def target_value(self) -> int:
        return self.template.target_value

    @property
    def xp_reward(self) -> int:
        return self.template.xp_reward

    def with_id(self, mission_id: str) -> "ScheduledMission":
        return replace(self, id=mission_id)

    def to_record(self) -> dict[str, Any]:
        return {
            "type": self.period,
            "category": self.category,
            "title": self.title,
            "description": self.template.description,
            "target_value": self.target_value,
            "xp_reward": self.xp_reward,
            "criteria_json": self.template.criteria_document(),
            "start_date": ensure_utc(self.start_date),
            "end_date": ensure_utc(self.end_date),
        }


@dataclass(frozen=True)
class Assignment:
    """One (user, mission) pair to persist as a ``user_missions`` row."""

    user_id: str
    mission_id: str
    assigned_at: datetime
    progress: int = 0
    status: str = "active"


@dataclass
class AssignmentResult:
    missions: list[ScheduledMission] = field(default_factory=list)
    users: int = 0
    assignments: int = 0


def mission_window(period: str, now: datetime, tz: tzinfo = UTC) -> tuple[datetime, datetime]:
    """Return ``(start_date, end_date)`` for a mission generated at ``now``.

    The window opens at local midnight of ``now`` in ``tz``. Monthly windows
    add one calendar month, clamping the day (Jan 31 -> Feb 28/29).
    """
    start = local_midnight(now, tz)
    if period == DAILY:
        end = start + timedelta(days=1)
    elif period == WEEKLY:
        end = start + timedelta(days=7)
    elif period == MONTHLY:
        end = start + relativedelta(months=1)
    else:
        raise ValueError(f"unknown mission period: {period}")
    return start, end


def periods_due(
    now: datetime,
    tz: tzinfo = UTC,
    *,
    weekly_anchor: int = MONDAY,
) -> list[str]:
    """Periods whose missions must be generated on the local day of ``now``."""
    local_day = ensure_utc(now).astimezone(tz).date()
    due = [DAILY]
    if local_day.weekday() == weekly_anchor:
        due.append(WEEKLY)
    if local_day.day == 1:
        due.append(MONTHLY)
    return due


def select_missions(
    period: str,
    now: datetime,
    *,
    rng: random.Random | None = None,
    tz: tzinfo = UTC,
    catalog: Sequence[MissionTemplate] | None = None,
    size: int | None = None,
) -> list[ScheduledMission]:
    """Pick a random subset of the period's catalog and stamp its window.

    The catalog is shuffled and its first ``size`` entries kept, so the
    result never exceeds the catalog and never repeats a template.
    """
    rng = rng or random.Random()
    templates = list(catalog if catalog is not None else get_catalog(period))
    limit = SELECTION_SIZES[period] if size is None else size
    limit = max(0, min(limit, len(templates)))

    rng.shuffle(templates)
    start, end = mission_window(period, now, tz)
    return [
        ScheduledMission(template=template, start_date=start, end_date=end)
        for template in templates[:limit]
    ]


def generate_missions(
    now: datetime,
    *,
    rng: random.Random | None = None,
    tz: tzinfo = UTC,
    weekly_anchor: int = MONDAY,
) -> dict[str, list[ScheduledMission]]:
    """Select missions for every period due at ``now``.

    Periods that are not due map to an empty list so callers can report
    zero counts for them.
    """
    rng = rng or random.Random()
    due = set(periods_due(now, tz, weekly_anchor=weekly_anchor))
    generated: dict[str, list[ScheduledMission]] = {}
    for period in MISSION_PERIODS:
        if period in due:
            generated[period] = select_missions(period, now, rng=rng, tz=tz)
            logger.info(
                "[MISSIONS] Generated %d %s missions", len(generated[period]), period
            )
        else:
            generated[period] = []
    return generated


def assign_missions(
    store: "GamificationStore",
    missions: Sequence[ScheduledMission],
    now: datetime,
) -> AssignmentResult:
    """Persist ``missions`` and assign each one to every active user.

    Not idempotent: running it twice for the same window inserts a second set
    of missions and assignments. Store errors propagate to the caller.
    """
    if not missions:
        logger.info("[MISSIONS] No missions selected; assignment skipped")
        return AssignmentResult()

    now = ensure_utc(now)
    persisted = store.insert_missions(list(missions))
    logger.info("[MISSIONS] Inserted %d missions", len(persisted))

    users = store.list_active_users()
    assignments = [
        Assignment(user_id=user.id, mission_id=mission.id, assigned_at=now)
        for user in users
        for mission in persisted
    ]
    if assignments:
        store.insert_user_missions(assignments)
        logger.info(
            "[MISSIONS] Assigned %d missions to %d users",
            len(assignments),
            len(users),
        )

    return AssignmentResult(
        missions=list(persisted),
        users=len(users),
        assignments=len(assignments),
    )


def expire_missions(store: "GamificationStore", now: datetime) -> int:
    """Mark active user missions whose window ended before ``now`` as expired."""
    expired = store.expire_user_missions(ensure_utc(now))
    logger.info("[MISSIONS] Expired %d user missions", expired)
    return expired


__all__ = [
    "Assignment",
    "AssignmentResult",
    "ScheduledMission",
    "assign_missions",
    "expire_missions",
    "generate_missions",
    "mission_window",
    "periods_due",
    "select_missions",
]

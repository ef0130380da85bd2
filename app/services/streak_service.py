"""Daily streak evaluation for every user profile."""

from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Iterable

from app.errors import PersistenceError
from app.services.notification_service import NotificationOutbox, build_streak_reminder
from app.utils.logger import get_logger
from app.utils.time import ensure_utc, local_midnight, resolve_timezone

if TYPE_CHECKING:  # pragma: no cover - typing only
    from app.services.store import GamificationStore, ProfileSnapshot

logger = get_logger(__name__)

MAINTAINED = "maintained"
INCREMENTED = "incremented"
BROKEN = "broken"

ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class StreakTransition:
    """Outcome of evaluating one profile at a given instant."""

    user_id: str
    kind: str
    previous_streak: int
    current_streak: int
    longest_streak: int
    # math.inf when the user never worked out
    days_since_last_workout: int | float

    @property
    def should_notify(self) -> bool:
        return self.kind == BROKEN and self.previous_streak > 0


@dataclass
class StreakStats:
    total_users: int = 0
    maintained: int = 0
    incremented: int = 0
    broken: int = 0
    updated: int = 0
    failed: int = 0
    transitions: list[StreakTransition] = field(default_factory=list, repr=False)

    def record(self, transition: StreakTransition) -> None:
        if transition.kind == MAINTAINED:
            self.maintained += 1
        elif transition.kind == INCREMENTED:
            self.incremented += 1
        else:
            self.broken += 1
        self.updated += 1
        self.transitions.append(transition)

    def to_dict(self) -> dict[str, int]:
        return {
            "total_users": self.total_users,
            "maintained": self.maintained,
            "incremented": self.incremented,
            "broken": self.broken,
            "updated": self.updated,
            "failed": self.failed,
        }


def days_since_last_workout(
    now: datetime,
    last_workout_date: datetime | None,
    timezone_name: str | None,
) -> int | float:
    """Whole days between the user's local midnight and the last workout.

    Returns ``math.inf`` when the user never worked out. Unknown timezones
    fall back to UTC.
    """
    if last_workout_date is None:
        return math.inf
    midnight = local_midnight(now, resolve_timezone(timezone_name))
    return math.floor((midnight - ensure_utc(last_workout_date)) / ONE_DAY)


def evaluate_streak(
    *,
    user_id: str,
    current_streak: int,
    longest_streak: int,
    last_workout_date: datetime | None,
    timezone_name: str | None,
    now: datetime,
) -> StreakTransition:
    """Apply the streak state machine to one profile.

    A workout at or after local midnight counts as today (maintained), the
    previous local day increments the streak, anything older or missing
    breaks it. ``longest_streak`` never decreases.
    """
    previous = max(0, int(current_streak or 0))
    days = days_since_last_workout(now, last_workout_date, timezone_name)

    if days <= 0:
        kind, new_streak = MAINTAINED, previous
    elif days == 1:
        kind, new_streak = INCREMENTED, previous + 1
    else:
        kind, new_streak = BROKEN, 0

    longest = max(int(longest_streak or 0), new_streak)
    return StreakTransition(
        user_id=user_id,
        kind=kind,
        previous_streak=previous,
        current_streak=new_streak,
        longest_streak=longest,
        days_since_last_workout=days,
    )


def evaluate_profile(profile: "ProfileSnapshot", now: datetime) -> StreakTransition:
    return evaluate_streak(
        user_id=profile.id,
        current_streak=profile.current_streak,
        longest_streak=profile.longest_streak,
        last_workout_date=profile.last_workout_date,
        timezone_name=profile.timezone,
        now=now,
    )


def _process_profile(
    store: "GamificationStore",
    profile: "ProfileSnapshot",
    now: datetime,
    outbox: NotificationOutbox | None,
) -> StreakTransition | None:
    transition = evaluate_profile(profile, now)
    try:
        store.update_profile_streak(
            profile.id,
            transition.current_streak,
            transition.longest_streak,
            now,
        )
    except PersistenceError:
        logger.exception("[STREAKS] Failed to update user %s", profile.id)
        return None

    if transition.should_notify and outbox is not None:
        outbox.submit(build_streak_reminder(profile.id, transition.previous_streak))
    return transition


def evaluate_streaks(
    store: "GamificationStore",
    profiles: Iterable["ProfileSnapshot"],
    now: datetime,
    *,
    outbox: NotificationOutbox | None = None,
    max_workers: int = 1,
) -> StreakStats:
    """Evaluate and persist every profile, isolating per-user failures.

    With ``max_workers`` above one the profiles are processed on a bounded
    thread pool; otherwise inline in the calling thread.
    """
    now = ensure_utc(now)
    profiles = list(profiles)
    stats = StreakStats(total_users=len(profiles))
    if not profiles:
        logger.info("[STREAKS] No users to process")
        return stats

    logger.info("[STREAKS] Processing %d users...", len(profiles))
    if max_workers <= 1:
        results = [_process_profile(store, profile, now, outbox) for profile in profiles]
    else:
        with ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="streak-eval"
        ) as executor:
            results = list(
                executor.map(
                    lambda profile: _process_profile(store, profile, now, outbox),
                    profiles,
                )
            )

    for transition in results:
        if transition is None:
            stats.failed += 1
        else:
            stats.record(transition)

    logger.info(
        "[STREAKS] Complete: maintained=%d incremented=%d broken=%d updated=%d failed=%d",
        stats.maintained,
        stats.incremented,
        stats.broken,
        stats.updated,
        stats.failed,
    )
    return stats


__all__ = [
    "BROKEN",
    "INCREMENTED",
    "MAINTAINED",
    "StreakStats",
    "StreakTransition",
    "days_since_last_workout",
    "evaluate_profile",
    "evaluate_streak",
    "evaluate_streaks",
]

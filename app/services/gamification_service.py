"""Daily gamification cycle: missions first, then streaks."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Any

from flask import Flask

from app.errors import ConfigurationError, GamificationError
from app.services.mission_catalog import MISSION_PERIODS
from app.services.mission_service import (
    MONDAY,
    assign_missions,
    expire_missions,
    generate_missions,
)
from app.services.notification_service import (
    DispatchStats,
    LoggingNotifier,
    NotificationOutbox,
    Notifier,
)
from app.services.push_service import FcmNotifier
from app.services.store import GamificationStore, SqlAlchemyStore
from app.services.streak_service import StreakStats, evaluate_streaks
from app.utils.logger import get_logger
from app.utils.time import UTC, ensure_utc, resolve_timezone, to_iso_utc

logger = get_logger(__name__)

JOB_GAMIFICATION = "gamification"
JOB_MISSIONS = "missions"
JOB_STREAKS = "streaks"
JOB_TYPES = (JOB_GAMIFICATION, JOB_MISSIONS, JOB_STREAKS)

# Phases are named after the single-phase job that runs them.
PHASE_MISSIONS = JOB_MISSIONS
PHASE_STREAKS = JOB_STREAKS
JOB_PHASES = {
    JOB_GAMIFICATION: (PHASE_MISSIONS, PHASE_STREAKS),
    JOB_MISSIONS: (PHASE_MISSIONS,),
    JOB_STREAKS: (PHASE_STREAKS,),
}


def job_for_phases(phases) -> str:
    """Job type that runs exactly ``phases``."""
    wanted = tuple(phase for phase in (PHASE_MISSIONS, PHASE_STREAKS) if phase in phases)
    for job_type, job_phases in JOB_PHASES.items():
        if job_phases == wanted:
            return job_type
    raise ValueError(f"no job runs phases {phases!r}")


@dataclass
class RunSummary:
    timestamp: datetime
    success: bool = True
    error: str | None = None
    error_type: str | None = None
    missions_ok: bool = False
    streaks_ok: bool = False
    missions_generated: dict[str, int] = field(
        default_factory=lambda: {period: 0 for period in MISSION_PERIODS}
    )
    users_assigned: int = 0
    assignments_created: int = 0
    missions_expired: int = 0
    streaks: StreakStats = field(default_factory=StreakStats)
    notifications: DispatchStats = field(default_factory=DispatchStats)

    @property
    def total_missions(self) -> int:
        return sum(self.missions_generated.values())

    @property
    def completed_phases(self) -> list[str]:
        flags = ((PHASE_MISSIONS, self.missions_ok), (PHASE_STREAKS, self.streaks_ok))
        return [phase for phase, done in flags if done]

    def fail(self, exc: BaseException) -> None:
        self.success = False
        self.error = str(exc) or exc.__class__.__name__
        self.error_type = exc.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "timestamp": to_iso_utc(self.timestamp),
            "missions_generated": {**self.missions_generated, "total": self.total_missions},
            "users_assigned": self.users_assigned,
            "assignments_created": self.assignments_created,
            "missions_expired": self.missions_expired,
            "streaks": self.streaks.to_dict(),
            "notifications": self.notifications.to_dict(),
            "completed_phases": self.completed_phases,
        }
        if not self.success:
            data["error"] = self.error
            data["error_type"] = self.error_type
        return data


@dataclass
class GamificationComponents:
    """Collaborators and settings one run needs, resolved from app config."""

    store: GamificationStore
    notifier: Notifier
    tz: tzinfo = UTC
    weekly_anchor: int = MONDAY
    streak_workers: int = 1
    notification_workers: int = 1


def _mission_phase(
    summary: RunSummary,
    store: GamificationStore,
    now: datetime,
    *,
    rng: random.Random | None,
    tz: tzinfo,
    weekly_anchor: int,
) -> bool:
    try:
        generated = generate_missions(now, rng=rng, tz=tz, weekly_anchor=weekly_anchor)
        for period, missions in generated.items():
            summary.missions_generated[period] = len(missions)

        selected = [mission for period in MISSION_PERIODS for mission in generated[period]]
        result = assign_missions(store, selected, now)
        summary.users_assigned = result.users
        summary.assignments_created = result.assignments
        # Missions are in place; a retry must not insert them again.
        summary.missions_ok = True

        summary.missions_expired = expire_missions(store, now)
    except GamificationError as exc:
        logger.error("[MISSIONS] Mission phase aborted: %s", exc)
        summary.fail(exc)
        return False
    return True


def _streak_phase(
    summary: RunSummary,
    store: GamificationStore,
    notifier: Notifier,
    now: datetime,
    *,
    max_workers: int,
    notification_workers: int,
) -> bool:
    try:
        profiles = store.list_all_user_profiles()
    except GamificationError as exc:
        logger.error("[STREAKS] Could not list user profiles: %s", exc)
        summary.fail(exc)
        return False

    with NotificationOutbox(notifier, max_workers=notification_workers) as outbox:
        summary.streaks = evaluate_streaks(
            store, profiles, now, outbox=outbox, max_workers=max_workers
        )
    summary.notifications = outbox.stats
    summary.streaks_ok = True
    return True


def run_daily_gamification_cycle(
    now: datetime,
    *,
    store: GamificationStore,
    notifier: Notifier | None = None,
    rng: random.Random | None = None,
    tz: tzinfo = UTC,
    weekly_anchor: int = MONDAY,
    max_workers: int = 1,
    notification_workers: int = 1,
    include_streaks: bool = True,
) -> RunSummary:
    """Generate, assign and expire missions, then evaluate every streak.

    A failure in the mission phase aborts the run before streaks are
    touched. Per-user streak failures only show up in the counters.
    """
    now = ensure_utc(now)
    summary = RunSummary(timestamp=now)
    logger.info("[CRON] Daily gamification cycle started at %s", to_iso_utc(now))

    if not _mission_phase(summary, store, now, rng=rng, tz=tz, weekly_anchor=weekly_anchor):
        return summary

    if include_streaks:
        _streak_phase(
            summary,
            store,
            notifier or LoggingNotifier(),
            now,
            max_workers=max_workers,
            notification_workers=notification_workers,
        )

    logger.info(
        "[CRON] Cycle finished success=%s missions=%d assignments=%d expired=%d",
        summary.success,
        summary.total_missions,
        summary.assignments_created,
        summary.missions_expired,
    )
    return summary


def run_mission_cycle(
    now: datetime,
    *,
    store: GamificationStore,
    rng: random.Random | None = None,
    tz: tzinfo = UTC,
    weekly_anchor: int = MONDAY,
) -> RunSummary:
    return run_daily_gamification_cycle(
        now,
        store=store,
        rng=rng,
        tz=tz,
        weekly_anchor=weekly_anchor,
        include_streaks=False,
    )


def run_streak_cycle(
    now: datetime,
    *,
    store: GamificationStore,
    notifier: Notifier | None = None,
    max_workers: int = 1,
    notification_workers: int = 1,
) -> RunSummary:
    """Evaluate every streak without touching missions."""
    now = ensure_utc(now)
    summary = RunSummary(timestamp=now)
    _streak_phase(
        summary,
        store,
        notifier or LoggingNotifier(),
        now,
        max_workers=max_workers,
        notification_workers=notification_workers,
    )
    return summary


def build_notifier(app: Flask) -> Notifier:
    provider = (app.config.get("PUSH_PROVIDER") or "log").lower()
    if provider == "log":
        return LoggingNotifier()
    if provider == "fcm":
        server_key = app.config.get("FCM_SERVER_KEY")
        if not server_key:
            raise ConfigurationError("FCM_SERVER_KEY is required when PUSH_PROVIDER=fcm")
        return FcmNotifier(app, server_key, app.config.get("FCM_ENDPOINT"))
    raise ConfigurationError(f"unsupported PUSH_PROVIDER: {provider!r}")


def fit_worker_pools(
    streak_workers: int, notification_workers: int, capacity: int | None
) -> tuple[int, int]:
    """Shrink both executors so they never need more connections than the pool has.

    Every worker may hold one connection at a time and the calling thread
    keeps one for itself.
    """
    streak_workers = max(1, streak_workers)
    notification_workers = max(1, notification_workers)
    if capacity is None:
        return streak_workers, notification_workers
    budget = max(2, capacity - 1)
    if streak_workers + notification_workers <= budget:
        return streak_workers, notification_workers
    notification_workers = max(1, min(notification_workers, budget // 2))
    streak_workers = max(1, budget - notification_workers)
    return streak_workers, notification_workers


def _pool_capacity(app: Flask) -> int | None:
    options = app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {}
    if "pool_size" not in options:
        return None
    return int(options["pool_size"]) + max(0, int(options.get("max_overflow", 0)))


def build_components(app: Flask) -> GamificationComponents:
    if not app.config.get("SQLALCHEMY_DATABASE_URI"):
        raise ConfigurationError("SQLALCHEMY_DATABASE_URI is not configured")

    anchor = int(app.config.get("WEEKLY_ANCHOR_WEEKDAY", MONDAY))
    if not 0 <= anchor <= 6:
        raise ConfigurationError(f"WEEKLY_ANCHOR_WEEKDAY must be 0-6, got {anchor}")

    requested = (
        int(app.config.get("STREAK_MAX_WORKERS", 1)),
        int(app.config.get("NOTIFICATION_MAX_WORKERS", 1)),
    )
    streak_workers, notification_workers = fit_worker_pools(*requested, _pool_capacity(app))
    if (streak_workers, notification_workers) != requested:
        logger.warning(
            "[CRON] Worker counts %s exceed the database pool; using streaks=%d notifications=%d",
            requested,
            streak_workers,
            notification_workers,
        )

    return GamificationComponents(
        store=SqlAlchemyStore(app),
        notifier=build_notifier(app),
        tz=resolve_timezone(app.config.get("MISSION_TIMEZONE")),
        weekly_anchor=anchor,
        streak_workers=streak_workers,
        notification_workers=notification_workers,
    )


def run_job(
    app: Flask,
    job_type: str,
    now: datetime | None = None,
    *,
    rng: random.Random | None = None,
) -> RunSummary:
    """Run ``job_type`` against the app's database and push provider.

    Configuration problems are reported as a failed summary rather than
    raised, so every entry point can log the run the same way.
    """
    now = ensure_utc(now or datetime.now(timezone.utc))
    if job_type not in JOB_TYPES:
        raise ValueError(f"unknown job type: {job_type}")

    try:
        components = build_components(app)
    except ConfigurationError as exc:
        logger.error("[CRON] Configuration error: %s", exc)
        summary = RunSummary(timestamp=now)
        summary.fail(exc)
        return summary

    if job_type == JOB_STREAKS:
        return run_streak_cycle(
            now,
            store=components.store,
            notifier=components.notifier,
            max_workers=components.streak_workers,
            notification_workers=components.notification_workers,
        )
    return run_daily_gamification_cycle(
        now,
        store=components.store,
        notifier=components.notifier,
        rng=rng,
        tz=components.tz,
        weekly_anchor=components.weekly_anchor,
        max_workers=components.streak_workers,
        notification_workers=components.notification_workers,
        include_streaks=job_type == JOB_GAMIFICATION,
    )


__all__ = [
    "GamificationComponents",
    "JOB_GAMIFICATION",
    "JOB_MISSIONS",
    "JOB_STREAKS",
    "JOB_PHASES",
    "JOB_TYPES",
    "PHASE_MISSIONS",
    "PHASE_STREAKS",
    "RunSummary",
    "build_components",
    "build_notifier",
    "fit_worker_pools",
    "job_for_phases",
    "run_daily_gamification_cycle",
    "run_job",
    "run_mission_cycle",
    "run_streak_cycle",
]

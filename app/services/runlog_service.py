"""Helpers for persisting cron run logs and guarding against repeated runs."""
from __future__ import annotations

import traceback
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from time import perf_counter
from typing import Any

from flask import Flask
from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError

from app.models import db
from app.models.cron_run import CronRun
from app.services.gamification_service import (
    JOB_PHASES,
    PHASE_MISSIONS,
    PHASE_STREAKS,
    RunSummary,
    job_for_phases,
    run_job,
)
from app.utils.logger import get_logger
from app.utils.time import ensure_utc, resolve_timezone

logger = get_logger(__name__)

_JSON_FIELDS = {"payload"}
SKIPPED_ALREADY_RAN = "already_ran_today"


def sanitize_json_value(value: Any) -> Any:
    """
    Recursively sanitize values for JSON serialization.

    Converts datetime objects to ISO strings, handles nested structures,
    and ensures all values are JSON-serializable.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(key): sanitize_json_value(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [sanitize_json_value(item) for item in value]
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, bytes):
        return value.hex()
    if isinstance(value, float) and value != value:
        return None
    return value


def _sanitize_json_fields(payload: dict) -> dict:
    sanitized = dict(payload)
    for field in _JSON_FIELDS:
        if field in sanitized and sanitized[field] is not None:
            sanitized[field] = sanitize_json_value(sanitized[field])
    return sanitized


def _purge_old_runs(retention_days: int) -> None:
    if retention_days <= 0:
        return
    cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
    db.session.execute(CronRun.__table__.delete().where(CronRun.started_at < cutoff))


def log_cron_run(
    payload: dict,
    *,
    retention_days: int = 30,
    commit: bool = True,
) -> CronRun:
    """Persist a cron run using the Flask SQLAlchemy session."""
    if payload.get("started_at") is None:
        payload["started_at"] = datetime.now(timezone.utc)
    if payload.get("finished_at") is None:
        payload["finished_at"] = payload.get("started_at")
    if payload.get("status") is None and payload.get("ok") is not None:
        payload["status"] = "success" if payload.get("ok") else "error"
    payload = _sanitize_json_fields(payload)
    run = CronRun(**payload)
    try:
        db.session.add(run)
        if commit:
            db.session.commit()
            _purge_old_runs(retention_days)
            db.session.commit()
        return run
    except SQLAlchemyError:
        db.session.rollback()
        raise


def completed_phases_on(run_date: date) -> set[str]:
    """Phases that some logged run already completed for ``run_date``."""
    stmt = (
        select(CronRun.missions_ok, CronRun.streaks_ok)
        .where(CronRun.run_date == run_date)
        .where(or_(CronRun.missions_ok.is_(True), CronRun.streaks_ok.is_(True)))
    )
    done: set[str] = set()
    for missions_ok, streaks_ok in db.session.execute(stmt).all():
        if missions_ok:
            done.add(PHASE_MISSIONS)
        if streaks_ok:
            done.add(PHASE_STREAKS)
    return done


def run_date_for(app: Flask, now: datetime) -> date:
    """Calendar day a run at ``now`` belongs to, in ``MISSION_TIMEZONE``."""
    tz = resolve_timezone(app.config.get("MISSION_TIMEZONE"))
    return ensure_utc(now).astimezone(tz).date()


def summary_to_run_payload(
    job_type: str,
    summary: RunSummary,
    *,
    run_date: date | None = None,
    started_at: datetime,
    finished_at: datetime,
    duration_ms: float,
    request_id: str | None = None,
) -> dict[str, Any]:
    streaks = summary.streaks
    return {
        "job_type": job_type,
        "run_date": run_date,
        "ok": summary.success,
        "status": "success" if summary.success else "error",
        "missions_ok": summary.missions_ok,
        "streaks_ok": summary.streaks_ok,
        "started_at": started_at,
        "finished_at": finished_at,
        "duration_ms": duration_ms,
        "missions_generated": summary.total_missions,
        "assignments_created": summary.assignments_created,
        "missions_expired": summary.missions_expired,
        "users_processed": streaks.total_users,
        "streaks_broken": streaks.broken,
        "notifications_sent": summary.notifications.sent,
        "error_type": summary.error_type,
        "error_message": summary.error,
        "request_id": request_id,
        "payload": summary.to_dict(),
    }


@dataclass
class JobOutcome:
    job_type: str
    summary: RunSummary | None = None
    skipped: str | None = None
    run_id: int | None = None
    phases: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.skipped is not None or bool(self.summary and self.summary.success)

    def to_dict(self) -> dict[str, Any]:
        if self.skipped:
            return {"ok": True, "job_type": self.job_type, "skipped": self.skipped}
        data = {
            "ok": self.ok,
            "job_type": self.job_type,
            "run_id": self.run_id,
            "phases": list(self.phases),
        }
        if self.summary is not None:
            data["summary"] = self.summary.to_dict()
            if not self.summary.success:
                data["error"] = self.summary.error
        return data


def run_logged_job(
    app: Flask,
    job_type: str,
    now: datetime | None = None,
    *,
    force: bool = False,
    request_id: str | None = None,
    rng=None,
) -> JobOutcome:
    """Run a gamification job and record it in ``cron_runs``.

    Each phase (missions, streaks) runs at most once per run day, whichever
    job type completed it: phases already completed for the day of ``now``
    are left out, and the job is skipped when nothing is left. ``force``
    runs every phase of the job regardless. Unexpected exceptions are
    recorded with their traceback and re-raised.
    """
    if job_type not in JOB_PHASES:
        raise ValueError(f"unknown job type: {job_type}")

    started_at = datetime.now(timezone.utc)
    effective_now = ensure_utc(now) if now is not None else started_at
    run_date = run_date_for(app, effective_now)
    retention_days = int(app.config.get("CRON_RUN_RETENTION_DAYS", 30))

    phases = JOB_PHASES[job_type]
    if not force:
        with app.app_context():
            done = completed_phases_on(run_date)
        phases = tuple(phase for phase in phases if phase not in done)
        if not phases:
            logger.info("[CRON] %s already ran for %s; skipping", job_type, run_date)
            return JobOutcome(job_type=job_type, skipped=SKIPPED_ALREADY_RAN)
        if phases != JOB_PHASES[job_type]:
            logger.info(
                "[CRON] %s: %s already done for %s; running %s only",
                job_type,
                ", ".join(sorted(done)),
                run_date,
                ", ".join(phases),
            )

    tick = perf_counter()
    try:
        summary = run_job(app, job_for_phases(phases), effective_now, rng=rng)
    except Exception as exc:
        finished_at = datetime.now(timezone.utc)
        with app.app_context():
            log_cron_run(
                {
                    "job_type": job_type,
                    "run_date": run_date,
                    "ok": False,
                    "started_at": started_at,
                    "finished_at": finished_at,
                    "duration_ms": (perf_counter() - tick) * 1000,
                    "error_type": exc.__class__.__name__,
                    "error_message": str(exc),
                    "traceback": traceback.format_exc(),
                    "request_id": request_id,
                },
                retention_days=retention_days,
            )
        logger.exception("[CRON] %s crashed", job_type)
        raise

    finished_at = datetime.now(timezone.utc)
    payload = summary_to_run_payload(
        job_type,
        summary,
        run_date=run_date,
        started_at=started_at,
        finished_at=finished_at,
        duration_ms=(perf_counter() - tick) * 1000,
        request_id=request_id,
    )
    with app.app_context():
        run = log_cron_run(payload, retention_days=retention_days)
        run_id = run.id

    logger.info("[CRON] %s finished ok=%s run_id=%s", job_type, summary.success, run_id)
    return JobOutcome(job_type=job_type, summary=summary, run_id=run_id, phases=phases)


__all__ = [
    "JobOutcome",
    "SKIPPED_ALREADY_RAN",
    "completed_phases_on",
    "log_cron_run",
    "run_date_for",
    "run_logged_job",
    "sanitize_json_value",
    "summary_to_run_payload",
]

"""Database model for cron/automation run logs."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from . import db


class CronRun(db.Model):
    __tablename__ = "cron_runs"
    __table_args__ = (
        db.Index("ix_cron_runs_job_type_started_at", "job_type", "started_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=db.func.now(),
    )
    job_type = db.Column(db.String(32), nullable=False, index=True)
    run_date = db.Column(db.Date, nullable=True, index=True)
    ok = db.Column(db.Boolean, nullable=False, default=False, server_default=db.text("false"))
    status = db.Column(db.String(16), nullable=True)
    reason = db.Column(db.String(255), nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    finished_at = db.Column(db.DateTime(timezone=True), nullable=True)
    duration_ms = db.Column(db.Float, nullable=True)
    missions_ok = db.Column(db.Boolean, nullable=False, default=False, server_default=db.text("false"))
    streaks_ok = db.Column(db.Boolean, nullable=False, default=False, server_default=db.text("false"))

    missions_generated = db.Column(db.Integer, nullable=True)
    assignments_created = db.Column(db.Integer, nullable=True)
    missions_expired = db.Column(db.Integer, nullable=True)
    users_processed = db.Column(db.Integer, nullable=True)
    streaks_broken = db.Column(db.Integer, nullable=True)
    notifications_sent = db.Column(db.Integer, nullable=True)

    error_type = db.Column(db.String(120), nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    traceback = db.Column(db.Text, nullable=True)

    request_id = db.Column(db.String(128), nullable=True)
    payload = db.Column(db.JSON, nullable=True)

    def serialize(self, *, include_payload: bool = False) -> dict[str, Any]:
        data = {
            "id": self.id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "job_type": self.job_type,
            "run_date": self.run_date.isoformat() if self.run_date else None,
            "ok": bool(self.ok),
            "status": self.status,
            "reason": self.reason,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
            "missions_ok": bool(self.missions_ok),
            "streaks_ok": bool(self.streaks_ok),
            "missions_generated": self.missions_generated,
            "assignments_created": self.assignments_created,
            "missions_expired": self.missions_expired,
            "users_processed": self.users_processed,
            "streaks_broken": self.streaks_broken,
            "notifications_sent": self.notifications_sent,
            "error_type": self.error_type,
            "error_message": self.error_message,
            "traceback": self.traceback,
            "request_id": self.request_id,
        }
        if include_payload:
            data["payload"] = self.payload
        return data

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return (
            f"<CronRun id={self.id} job_type={self.job_type!r} ok={self.ok} "
            f"created_at={self.created_at}>"
        )


__all__ = ["CronRun"]

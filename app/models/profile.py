"""User profile fields consumed by the gamification engine."""

from datetime import datetime, timezone
from uuid import uuid4

from . import db

class UserProfile(db.Model):
    __tablename__ = "profiles"
    __table_args__ = (
        db.CheckConstraint("current_streak >= 0", name="ck_profiles_current_streak_non_negative"),
        db.CheckConstraint(
            "longest_streak >= current_streak",
            name="ck_profiles_longest_streak_covers_current",
        ),
        db.CheckConstraint(
            "status IN ('active', 'inactive')", name="ck_profiles_status_valid"
        ),
        db.Index("ix_profiles_status", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid4()))
    email = db.Column(db.String(255), unique=True, nullable=True)
    status = db.Column(
        db.String(16),
        nullable=False,
        default="active",
        server_default="active",
    )
    current_streak = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    longest_streak = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    last_workout_date = db.Column(db.DateTime(timezone=True), nullable=True)
    timezone = db.Column(db.String(64), nullable=True, default="UTC", server_default="UTC")
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return (
            f"<UserProfile id={self.id} status={self.status} "
            f"streak={self.current_streak}/{self.longest_streak}>"
        )


__all__ = ["UserProfile"]

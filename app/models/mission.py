"""Mission and per-user mission models for gamification."""

from datetime import datetime, timezone
from uuid import uuid4

from . import db

USER_MISSION_STATUSES = ("active", "completed", "expired")


class Mission(db.Model):
    """A concrete, time-boxed mission generated from a catalog template."""

    __tablename__ = "missions"
    __table_args__ = (
        db.Index("ix_missions_type", "type"),
        db.Index("ix_missions_end_date", "end_date"),
        db.CheckConstraint("target_value > 0", name="ck_missions_target_positive"),
        db.CheckConstraint("xp_reward > 0", name="ck_missions_xp_positive"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid4()))
    period = db.Column("type", db.String(16), nullable=False)
    category = db.Column(db.String(32), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False)
    target_value = db.Column(db.Integer, nullable=False)
    xp_reward = db.Column(db.Integer, nullable=False)
    criteria = db.Column("criteria_json", db.JSON, nullable=True)
    start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    end_date = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Mission id={self.id} type={self.period} title={self.title!r}>"


class UserMission(db.Model):
    """Tracks a mission assigned to one user."""

    __tablename__ = "user_missions"
    __table_args__ = (
        db.UniqueConstraint("user_id", "mission_id", name="uq_user_missions_user_mission"),
        db.CheckConstraint("progress >= 0", name="ck_user_missions_progress_non_negative"),
        db.CheckConstraint(
            "status IN ('active', 'completed', 'expired')",
            name="ck_user_missions_status_valid",
        ),
        db.Index("ix_user_missions_user_id", "user_id"),
        db.Index("ix_user_missions_mission_id", "mission_id"),
        db.Index("ix_user_missions_status", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id = db.Column(
        db.String(36), db.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    mission_id = db.Column(
        db.String(36), db.ForeignKey("missions.id", ondelete="CASCADE"), nullable=False
    )
    progress = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    status = db.Column(
        db.String(16), nullable=False, default="active", server_default="active"
    )
    assigned_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=db.func.now(),
    )
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    mission = db.relationship("Mission", backref="assignments")
    user = db.relationship("UserProfile", backref="missions")

    def __repr__(self) -> str:
        return (
            f"<UserMission id={self.id} user_id={self.user_id} "
            f"mission_id={self.mission_id} status={self.status}>"
        )

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    @property
    def is_expired(self) -> bool:
        return self.status == "expired"

    @property
    def is_active(self) -> bool:
        return self.status == "active"


__all__ = ["Mission", "USER_MISSION_STATUSES", "UserMission"]

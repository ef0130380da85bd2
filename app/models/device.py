"""Registered push devices (FCM tokens) per user."""

from datetime import datetime, timezone
from uuid import uuid4

from . import db


class UserDevice(db.Model):
    __tablename__ = "user_devices"
    __table_args__ = (
        db.Index("ix_user_devices_user_id", "user_id"),
        db.Index("ix_user_devices_active", "is_active"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id = db.Column(
        db.String(36), db.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    fcm_token = db.Column(db.Text, unique=True, nullable=False)
    device_type = db.Column(db.String(16), nullable=True)  # ios | android
    device_name = db.Column(db.String(255), nullable=True)
    is_active = db.Column(
        db.Boolean, nullable=False, default=True, server_default=db.text("true")
    )
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=db.func.now(),
    )

    user = db.relationship("UserProfile", backref="devices")

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<UserDevice user_id={self.user_id} type={self.device_type} active={self.is_active}>"


__all__ = ["UserDevice"]

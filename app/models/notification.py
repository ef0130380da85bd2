"""In-app notification log written whenever a push is dispatched."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from . import db


class Notification(db.Model):
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_user_id", "user_id"),
        db.Index("ix_notifications_is_read", "is_read"),
        db.Index("ix_notifications_type", "type"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id = db.Column(
        db.String(36), db.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    type = db.Column(db.String(32), nullable=False)
    title = db.Column(db.Text, nullable=False)
    body = db.Column(db.Text, nullable=False)
    data = db.Column(db.JSON, nullable=False, default=dict)
    is_read = db.Column(
        db.Boolean, nullable=False, default=False, server_default=db.text("false")
    )
    sent_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=db.func.now(),
    )
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=db.func.now(),
    )

    def serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "title": self.title,
            "body": self.body,
            "data": self.data or {},
            "is_read": bool(self.is_read),
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "read_at": self.read_at.isoformat() if self.read_at else None,
        }

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Notification id={self.id} user_id={self.user_id} type={self.type!r}>"


__all__ = ["Notification"]

"""Push notifier backed by FCM and the ``user_devices`` table."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Sequence

from flask import Flask
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from app.errors import NotificationDispatchError
from app.models import db
from app.models.device import UserDevice
from app.models.notification import Notification
from app.services.notification_service import (
    DispatchResult,
    normalize_recipients,
    validate_notification,
)
from app.utils.logger import get_logger
from app.utils.time import to_iso_utc
from push import notifier as fcm

logger = get_logger(__name__)


class FcmNotifier:
    """Deliver a notification to every active device of one or more users.

    Devices are read in one short transaction and the database connection
    is back in the pool before the first FCM request. Invalid tokens are
    then deactivated and one ``notifications`` row per recipient is written
    in a second transaction. Recipients without any active device get no
    push and no row.
    """

    def __init__(self, app: Flask, server_key: str, endpoint: str | None = None) -> None:
        self.app = app
        self.server_key = server_key
        self.endpoint = endpoint or fcm.FCM_ENDPOINT

    def _active_tokens(self, user_ids: Sequence[str]) -> list[str]:
        stmt = (
            select(UserDevice.fcm_token)
            .where(UserDevice.user_id.in_(list(user_ids)))
            .where(UserDevice.is_active.is_(True))
            .order_by(UserDevice.created_at.asc())
        )
        with self.app.app_context():
            try:
                tokens = list(db.session.execute(stmt).scalars().all())
            except SQLAlchemyError as exc:
                db.session.rollback()
                raise NotificationDispatchError(f"failed to load devices: {exc}") from exc
            finally:
                db.session.close()
        return tokens

    def _record(
        self,
        user_ids: Sequence[str],
        type: str,
        title: str,
        body: str,
        data: dict[str, Any],
        invalid: Sequence[str],
        sent_at: datetime,
    ) -> None:
        with self.app.app_context():
            try:
                if invalid:
                    db.session.execute(
                        update(UserDevice)
                        .where(UserDevice.fcm_token.in_(list(invalid)))
                        .values(is_active=False, updated_at=sent_at)
                        .execution_options(synchronize_session=False)
                    )
                db.session.add_all(
                    [
                        Notification(
                            user_id=user_id,
                            type=type,
                            title=title,
                            body=body,
                            data=dict(data),
                            sent_at=sent_at,
                            is_read=False,
                        )
                        for user_id in user_ids
                    ]
                )
                db.session.commit()
            except SQLAlchemyError as exc:
                db.session.rollback()
                raise NotificationDispatchError(
                    f"failed to record notification: {exc}"
                ) from exc

    def notify(
        self,
        user_id: str,
        type: str,
        title: str,
        body: str,
        payload: dict[str, Any] | None = None,
        *,
        image_url: str | None = None,
        action_url: str | None = None,
    ) -> DispatchResult:
        return self.notify_many(
            [user_id], type, title, body, payload, image_url=image_url, action_url=action_url
        )

    def notify_many(
        self,
        user_ids: Sequence[str],
        type: str,
        title: str,
        body: str,
        payload: dict[str, Any] | None = None,
        *,
        image_url: str | None = None,
        action_url: str | None = None,
    ) -> DispatchResult:
        validate_notification(type, title, body)
        recipients = normalize_recipients(user_ids)
        data = dict(payload or {})
        sent_at = datetime.now(timezone.utc)

        tokens = self._active_tokens(recipients)
        if not tokens:
            logger.info("[PUSH] No active devices for users %s", ", ".join(recipients))
            return DispatchResult()

        message = fcm.build_fcm_payload(
            title,
            body,
            notification_type=type,
            data=data,
            timestamp=to_iso_utc(sent_at),
            image_url=image_url,
            action_url=action_url,
        )
        sent = 0
        invalid: list[str] = []
        for token in tokens:
            outcome = fcm.send_fcm_message(
                self.server_key, token, message, endpoint=self.endpoint
            )
            if outcome.success:
                sent += 1
            elif outcome.invalid_token:
                invalid.append(token)

        self._record(recipients, type, title, body, data, invalid, sent_at)

        result = DispatchResult(
            total_devices=len(tokens),
            sent=sent,
            failed=len(tokens) - sent,
            invalid_tokens_removed=len(invalid),
        )
        if invalid:
            logger.info("[PUSH] Deactivated %d invalid tokens", len(invalid))
        logger.info(
            "[PUSH] %s -> %d user(s): sent=%d failed=%d",
            type,
            len(recipients),
            result.sent,
            result.failed,
        )
        return result


__all__ = ["DispatchResult", "FcmNotifier"]

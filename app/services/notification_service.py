"""Notification intents and the outbox that hands them to a notifier."""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

from app.errors import InvalidNotificationError, NotificationDispatchError
from app.utils.logger import get_logger

logger = get_logger(__name__)

STREAK_REMINDER = "streak_reminder"
NOTIFICATION_TYPES = (
    STREAK_REMINDER,
    "mission_completed",
    "badge_unlocked",
    "challenge_invite",
    "social_interaction",
)

STREAK_REMINDER_BODY = "Complete a quick workout to keep your streak alive."


@dataclass(frozen=True)
class NotificationIntent:
    user_id: str
    type: str
    title: str
    body: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DispatchResult:
    """Device-level outcome of one notify call."""

    total_devices: int = 0
    sent: int = 0
    failed: int = 0
    invalid_tokens_removed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total_devices": self.total_devices,
            "sent_count": self.sent,
            "failed_count": self.failed,
            "invalid_tokens_removed": self.invalid_tokens_removed,
        }


class Notifier(Protocol):
    def notify(
        self,
        user_id: str,
        type: str,
        title: str,
        body: str,
        payload: dict[str, Any] | None = None,
    ) -> DispatchResult | None:
        ...

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
    ) -> DispatchResult | None:
        ...


def validate_notification(type: str, title: str, body: str) -> None:
    if type not in NOTIFICATION_TYPES:
        raise InvalidNotificationError(f"unsupported notification type: {type!r}")
    if not (title or "").strip() or not (body or "").strip():
        raise InvalidNotificationError("title and body are required")


def normalize_recipients(user_ids: Sequence[str]) -> list[str]:
    """Distinct, non-empty user ids in request order."""
    recipients = list(dict.fromkeys(str(user_id) for user_id in user_ids if user_id))
    if not recipients:
        raise InvalidNotificationError("at least one user id is required")
    return recipients


class LoggingNotifier:
    """Notifier that only writes the notification to the log.

    Returns ``None``: nothing was delivered, but nothing failed either.
    """

    def notify(self, user_id, type, title, body, payload=None):
        return self.notify_many([user_id], type, title, body, payload)

    def notify_many(
        self, user_ids, type, title, body, payload=None, *, image_url=None, action_url=None
    ):
        validate_notification(type, title, body)
        for user_id in normalize_recipients(user_ids):
            logger.info("[PUSH] (log-only) %s -> %s: %s", type, user_id, title)
        return None


def build_streak_reminder(user_id: str, lost_streak: int) -> NotificationIntent:
    """Reminder sent when a streak of ``lost_streak`` days has just been broken."""
    return NotificationIntent(
        user_id=user_id,
        type=STREAK_REMINDER,
        title=f"Don't lose your {lost_streak}-day streak!",
        body=STREAK_REMINDER_BODY,
        payload={"type": STREAK_REMINDER, "current_streak": lost_streak},
    )


SENT = "sent"
FAILED = "failed"
SKIPPED = "skipped"


@dataclass
class DispatchStats:
    requested: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "requested": self.requested,
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
        }


def classify_result(result: DispatchResult | None) -> str:
    """``sent`` when at least one device took the push, ``skipped`` when the
    user has no device, ``failed`` otherwise. ``None`` means a notifier
    without devices (log-only) accepted it."""
    if result is None or result.sent > 0:
        return SENT
    if result.total_devices == 0:
        return SKIPPED
    return FAILED


class NotificationOutbox:
    """Queue of notification intents dispatched off the caller's thread.

    ``submit`` never blocks on delivery and never raises for delivery
    problems; ``close`` waits for outstanding dispatches and returns the
    counters.
    """

    def __init__(self, notifier: Notifier, *, max_workers: int = 4) -> None:
        self.notifier = notifier
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers), thread_name_prefix="notify"
        )
        self._futures: list[Future] = []
        self._lock = threading.Lock()
        self.stats = DispatchStats()
        self._closed = False

    def __enter__(self) -> "NotificationOutbox":
        return self

    def __exit__(self, *_exc) -> None:
        self.close()

    def submit(self, intent: NotificationIntent) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("outbox already closed")
            self.stats.requested += 1
            self._futures.append(self._executor.submit(self._dispatch, intent))

    def _dispatch(self, intent: NotificationIntent) -> None:
        try:
            result = self.notifier.notify(
                intent.user_id,
                intent.type,
                intent.title,
                intent.body,
                dict(intent.payload),
            )
        except NotificationDispatchError as exc:
            logger.error("[PUSH] Failed to notify user %s: %s", intent.user_id, exc)
            self._count(FAILED)
            return
        except Exception:
            logger.exception("[PUSH] Unexpected error notifying user %s", intent.user_id)
            self._count(FAILED)
            return

        outcome = classify_result(result)
        if outcome == SENT:
            logger.info("[PUSH] Sent %s to user %s", intent.type, intent.user_id)
        elif outcome == SKIPPED:
            logger.info("[PUSH] User %s has no active device; %s not sent", intent.user_id, intent.type)
        else:
            logger.warning("[PUSH] No device of user %s accepted %s", intent.user_id, intent.type)
        self._count(outcome)

    def _count(self, outcome: str) -> None:
        with self._lock:
            setattr(self.stats, outcome, getattr(self.stats, outcome) + 1)

    def close(self) -> DispatchStats:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=True)
        return self.stats


__all__ = [
    "DispatchResult",
    "DispatchStats",
    "LoggingNotifier",
    "NOTIFICATION_TYPES",
    "NotificationIntent",
    "NotificationOutbox",
    "Notifier",
    "STREAK_REMINDER",
    "build_streak_reminder",
    "classify_result",
    "normalize_recipients",
    "validate_notification",
]

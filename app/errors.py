"""Error taxonomy for the gamification engine."""

from __future__ import annotations


class GamificationError(Exception):
    """Base class for errors raised by the gamification engine."""


class ConfigurationError(GamificationError):
    """Backend settings are missing or invalid; nothing can run."""


class PersistenceError(GamificationError):
    """A read or write against the persistence store failed."""

    def __init__(self, operation: str, message: str | None = None) -> None:
        self.operation = operation
        super().__init__(message or f"{operation} failed")


class NotificationDispatchError(GamificationError):
    """A notification could not be handed over or delivered."""


class InvalidNotificationError(NotificationDispatchError):
    """The notification request itself is malformed (type, text or recipients)."""


__all__ = [
    "ConfigurationError",
    "GamificationError",
    "InvalidNotificationError",
    "NotificationDispatchError",
    "PersistenceError",
]

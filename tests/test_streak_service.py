"""Tests for the streak state machine and broken-streak reminders."""

import math
import threading
from datetime import datetime, timedelta, timezone

import pytest

from app.errors import NotificationDispatchError, PersistenceError
from app.services.notification_service import (
    DispatchResult,
    NotificationOutbox,
    STREAK_REMINDER,
    build_streak_reminder,
)
from app.services.store import ProfileSnapshot
from app.services.streak_service import (
    BROKEN,
    INCREMENTED,
    MAINTAINED,
    days_since_last_workout,
    evaluate_streak,
    evaluate_streaks,
)

UTC = timezone.utc
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)
TODAY = datetime(2026, 3, 10, tzinfo=UTC)


def _evaluate(current, last, longest=None, tz="UTC", now=NOW):
    return evaluate_streak(
        user_id="user-1",
        current_streak=current,
        longest_streak=current if longest is None else longest,
        last_workout_date=last,
        timezone_name=tz,
        now=now,
    )


def _profile(user_id, current, last, longest=None, tz="UTC"):
    return ProfileSnapshot(
        id=user_id,
        status="active",
        current_streak=current,
        longest_streak=current if longest is None else longest,
        last_workout_date=last,
        timezone=tz,
    )


class FakeStore:
    def __init__(self, failing=()):
        self.failing = set(failing)
        self.updates = {}
        self._lock = threading.Lock()

    def update_profile_streak(self, user_id, current_streak, longest_streak, updated_at):
        if user_id in self.failing:
            raise PersistenceError("update_profile_streak", "row locked")
        with self._lock:
            self.updates[user_id] = (current_streak, longest_streak, updated_at)


class RecordingNotifier:
    def __init__(self, error=None):
        self.error = error
        self.calls = []
        self._lock = threading.Lock()

    def notify(self, user_id, type, title, body, payload=None):
        if self.error is not None:
            raise self.error
        with self._lock:
            self.calls.append(
                {"user_id": user_id, "type": type, "title": title, "body": body, "payload": payload}
            )


def test_workout_today_maintains_streak():
    transition = _evaluate(4, TODAY)
    assert transition.kind == MAINTAINED
    assert transition.current_streak == 4
    assert transition.days_since_last_workout == 0

    later_today = _evaluate(4, TODAY + timedelta(hours=9))
    assert later_today.kind == MAINTAINED
    assert later_today.current_streak == 4


def test_workout_yesterday_increments_streak():
    transition = _evaluate(4, TODAY - timedelta(days=1))
    assert transition.kind == INCREMENTED
    assert transition.current_streak == 5
    assert transition.longest_streak == 5


def test_missed_days_break_streak_and_notify():
    transition = _evaluate(5, TODAY - timedelta(days=3))
    assert transition.kind == BROKEN
    assert transition.current_streak == 0
    assert transition.longest_streak == 5
    assert transition.previous_streak == 5
    assert transition.should_notify is True


def test_never_worked_out_breaks_without_notification():
    transition = _evaluate(0, None)
    assert transition.kind == BROKEN
    assert transition.current_streak == 0
    assert math.isinf(transition.days_since_last_workout)
    assert transition.should_notify is False


def test_longest_streak_never_decreases():
    assert _evaluate(2, TODAY - timedelta(days=1), longest=10).longest_streak == 10
    assert _evaluate(2, TODAY - timedelta(days=4), longest=10).longest_streak == 10
    assert _evaluate(9, TODAY - timedelta(days=1), longest=9).longest_streak == 10


def test_midnight_is_computed_in_user_timezone():
    # 2026-03-09 15:00 UTC is midnight of 2026-03-10 in Tokyo.
    last = datetime(2026, 3, 9, 15, tzinfo=UTC)
    now = datetime(2026, 3, 10, 16, tzinfo=UTC)

    assert _evaluate(3, last, tz="Asia/Tokyo", now=now).kind == INCREMENTED
    assert _evaluate(3, last, tz="UTC", now=now).kind == MAINTAINED


def test_unknown_timezone_falls_back_to_utc():
    last = TODAY - timedelta(days=1)
    assert _evaluate(3, last, tz="Mars/Olympus_Mons") == _evaluate(3, last, tz="UTC")
    assert _evaluate(3, last, tz=None) == _evaluate(3, last, tz="UTC")


def test_naive_last_workout_is_treated_as_utc():
    naive = datetime(2026, 3, 9)
    assert days_since_last_workout(NOW, naive, "UTC") == 1


def test_streak_reminder_references_lost_streak():
    intent = build_streak_reminder("user-9", 12)
    assert intent.type == STREAK_REMINDER
    assert "12-day" in intent.title
    assert intent.body
    assert intent.payload == {"type": STREAK_REMINDER, "current_streak": 12}


def test_evaluate_streaks_isolates_failures_and_notifies_broken():
    store = FakeStore(failing={"u-fail"})
    notifier = RecordingNotifier()
    profiles = [
        _profile("u-broken", 5, TODAY - timedelta(days=3)),
        _profile("u-new", 0, None),
        _profile("u-yesterday", 2, TODAY - timedelta(days=1)),
        _profile("u-fail", 7, TODAY - timedelta(days=5)),
    ]

    with NotificationOutbox(notifier, max_workers=2) as outbox:
        stats = evaluate_streaks(store, profiles, NOW, outbox=outbox)

    assert stats.total_users == 4
    assert stats.broken == 2
    assert stats.incremented == 1
    assert stats.maintained == 0
    assert stats.updated == 3
    assert stats.failed == 1

    assert store.updates["u-broken"][:2] == (0, 5)
    assert store.updates["u-new"][:2] == (0, 0)
    assert store.updates["u-yesterday"][:2] == (3, 3)
    assert store.updates["u-broken"][2] == NOW
    assert "u-fail" not in store.updates

    assert [call["user_id"] for call in notifier.calls] == ["u-broken"]
    assert notifier.calls[0]["payload"]["current_streak"] == 5
    assert "5-day" in notifier.calls[0]["title"]
    assert outbox.stats.to_dict() == {"requested": 1, "sent": 1, "failed": 0, "skipped": 0}


def test_evaluate_streaks_in_parallel():
    store = FakeStore()
    profiles = [_profile(f"u-{i}", i, TODAY - timedelta(days=1)) for i in range(25)]

    stats = evaluate_streaks(store, profiles, NOW, max_workers=4)

    assert stats.incremented == 25
    assert stats.failed == 0
    assert {user_id: update[0] for user_id, update in store.updates.items()} == {
        f"u-{i}": i + 1 for i in range(25)
    }


def test_dispatch_failures_do_not_affect_evaluation():
    store = FakeStore()
    notifier = RecordingNotifier(error=NotificationDispatchError("gateway down"))
    profiles = [_profile("u-1", 3, None), _profile("u-2", 4, None)]

    with NotificationOutbox(notifier, max_workers=1) as outbox:
        stats = evaluate_streaks(store, profiles, NOW, outbox=outbox)

    assert stats.broken == 2
    assert stats.updated == 2
    assert outbox.stats.to_dict() == {"requested": 2, "sent": 0, "failed": 2, "skipped": 0}


def test_outbox_rejects_submissions_after_close():
    outbox = NotificationOutbox(RecordingNotifier(), max_workers=1)
    outbox.close()
    with pytest.raises(RuntimeError):
        outbox.submit(build_streak_reminder("u-1", 3))


def test_no_profiles_is_a_noop():
    stats = evaluate_streaks(FakeStore(), [], NOW)
    assert stats.to_dict() == {
        "total_users": 0,
        "maintained": 0,
        "incremented": 0,
        "broken": 0,
        "updated": 0,
        "failed": 0,
    }


class ResultNotifier:
    def __init__(self, results):
        self.results = results

    def notify(self, user_id, type, title, body, payload=None):
        return self.results[user_id]


def test_outbox_counts_only_delivered_pushes_as_sent():
    notifier = ResultNotifier(
        {
            "u-delivered": DispatchResult(total_devices=2, sent=1, failed=1),
            "u-no-device": DispatchResult(),
            "u-rejected": DispatchResult(total_devices=1, sent=0, failed=1, invalid_tokens_removed=1),
            "u-log-only": None,
        }
    )

    with NotificationOutbox(notifier, max_workers=2) as outbox:
        for user_id in notifier.results:
            outbox.submit(build_streak_reminder(user_id, 4))

    assert outbox.stats.to_dict() == {"requested": 4, "sent": 2, "failed": 1, "skipped": 1}


def test_days_since_last_workout_is_whole_days_or_infinite():
    assert days_since_last_workout(NOW, None, "UTC") == math.inf
    days = days_since_last_workout(NOW, TODAY - timedelta(days=2), "UTC")
    assert days == 2
    assert isinstance(days, int)

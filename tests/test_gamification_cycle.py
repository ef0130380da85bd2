"""Tests for the daily gamification run orchestrator."""

import os
import random
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "test-secret-key")

from app import create_app
from app.errors import ConfigurationError, PersistenceError
from app.models import db
from app.models.mission import Mission, UserMission
from app.models.profile import UserProfile
from app.services.gamification_service import (
    JOB_GAMIFICATION,
    JOB_MISSIONS,
    JOB_STREAKS,
    build_components,
    fit_worker_pools,
    job_for_phases,
    run_daily_gamification_cycle,
    run_job,
    run_mission_cycle,
    run_streak_cycle,
)
from app.services.notification_service import LoggingNotifier
from app.services.store import SqlAlchemyStore

UTC = timezone.utc
MONDAY_FIRST = datetime(2026, 6, 1, 0, 5, tzinfo=UTC)
TUESDAY = datetime(2026, 6, 2, 0, 5, tzinfo=UTC)


def _config(**overrides):
    config = {
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "SQLALCHEMY_ENGINE_OPTIONS": {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        },
        "PUSH_PROVIDER": "log",
        "STREAK_MAX_WORKERS": 1,
        "NOTIFICATION_MAX_WORKERS": 1,
    }
    config.update(overrides)
    return config


@pytest.fixture
def app():
    app = create_app(_config())
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def store(app):
    return SqlAlchemyStore(app)


def _profile(status="active", current=0, longest=None, last=None):
    profile = UserProfile(
        status=status,
        current_streak=current,
        longest_streak=current if longest is None else longest,
        last_workout_date=last,
    )
    db.session.add(profile)
    db.session.commit()
    return profile.id


def test_monday_first_generates_every_period(store):
    for _ in range(2):
        _profile()
    _profile(status="inactive")

    summary = run_daily_gamification_cycle(
        MONDAY_FIRST, store=store, notifier=LoggingNotifier(), rng=random.Random(9)
    )

    assert summary.success is True
    assert summary.missions_generated == {"daily": 3, "weekly": 3, "monthly": 2}
    assert summary.total_missions == 8
    assert summary.users_assigned == 2
    assert summary.assignments_created == 16
    assert summary.streaks.total_users == 3

    db.session.expire_all()
    assert Mission.query.count() == 8
    assert UserMission.query.count() == 16

    data = summary.to_dict()
    assert data["missions_generated"]["total"] == 8
    assert data["timestamp"] == "2026-06-01T00:05:00Z"
    assert "error" not in data


def test_regular_day_generates_daily_only_and_expires(store):
    user_id = _profile()
    old = Mission(
        period="daily",
        category="workout",
        title="Yesterday",
        description="Ended before this run",
        target_value=1,
        xp_reward=10,
        start_date=TUESDAY - timedelta(days=1, minutes=5),
        end_date=TUESDAY - timedelta(minutes=5),
    )
    db.session.add(old)
    db.session.commit()
    db.session.add(UserMission(user_id=user_id, mission_id=old.id))
    db.session.commit()

    summary = run_daily_gamification_cycle(TUESDAY, store=store, rng=random.Random(1))

    assert summary.success is True
    assert summary.missions_generated == {"daily": 3, "weekly": 0, "monthly": 0}
    assert summary.missions_expired == 1
    assert summary.assignments_created == 3


def test_streak_phase_updates_profiles(store):
    broken = _profile(current=5, last=TUESDAY - timedelta(days=3))
    kept = _profile(current=2, longest=6, last=datetime(2026, 6, 1, tzinfo=UTC))

    summary = run_streak_cycle(TUESDAY, store=store, notifier=LoggingNotifier())

    assert summary.success is True
    assert summary.streaks.broken == 1
    assert summary.streaks.incremented == 1
    assert summary.notifications.requested == 1
    assert summary.notifications.sent == 1
    assert summary.total_missions == 0

    db.session.expire_all()
    broken_row = db.session.get(UserProfile, broken)
    assert (broken_row.current_streak, broken_row.longest_streak) == (0, 5)
    kept_row = db.session.get(UserProfile, kept)
    assert (kept_row.current_streak, kept_row.longest_streak) == (3, 6)
    assert Mission.query.count() == 0


def test_mission_cycle_skips_streaks(store):
    _profile(current=4, last=None)

    summary = run_mission_cycle(TUESDAY, store=store, rng=random.Random(3))

    assert summary.success is True
    assert summary.streaks.total_users == 0
    db.session.expire_all()
    assert UserProfile.query.first().current_streak == 4


class _BrokenStore:
    def __init__(self, fail_on):
        self.fail_on = fail_on
        self.calls = []

    def _maybe_fail(self, operation):
        self.calls.append(operation)
        if operation == self.fail_on:
            raise PersistenceError(operation, f"{operation} failed: database is gone")

    def insert_missions(self, missions):
        self._maybe_fail("insert_missions")
        return [mission.with_id(f"m-{i}") for i, mission in enumerate(missions)]

    def list_active_users(self):
        self._maybe_fail("list_active_users")
        return []

    def insert_user_missions(self, assignments):
        self._maybe_fail("insert_user_missions")
        return len(assignments)

    def expire_user_missions(self, before):
        self._maybe_fail("expire_user_missions")
        return 0

    def list_all_user_profiles(self):
        self._maybe_fail("list_all_user_profiles")
        return []

    def update_profile_streak(self, user_id, current_streak, longest_streak, updated_at):
        self._maybe_fail("update_profile_streak")


def test_mission_failure_aborts_run():
    store = _BrokenStore(fail_on="insert_missions")

    summary = run_daily_gamification_cycle(TUESDAY, store=store, rng=random.Random(0))

    assert summary.success is False
    assert "database is gone" in summary.error
    assert summary.error_type == "PersistenceError"
    assert "list_all_user_profiles" not in store.calls
    assert "expire_user_missions" not in store.calls
    assert summary.to_dict()["error"] == summary.error


def test_profile_listing_failure_is_fatal():
    store = _BrokenStore(fail_on="list_all_user_profiles")

    summary = run_daily_gamification_cycle(TUESDAY, store=store, rng=random.Random(0))

    assert summary.success is False
    assert summary.missions_generated["daily"] == 3
    assert summary.streaks.total_users == 0


def test_build_components_rejects_bad_configuration():
    fcm_app = create_app(_config(PUSH_PROVIDER="fcm", FCM_SERVER_KEY=""))
    with pytest.raises(ConfigurationError):
        build_components(fcm_app)

    anchor_app = create_app(_config(WEEKLY_ANCHOR_WEEKDAY=9))
    with pytest.raises(ConfigurationError):
        build_components(anchor_app)


def test_run_job_reports_configuration_errors():
    fcm_app = create_app(_config(PUSH_PROVIDER="fcm", FCM_SERVER_KEY=""))

    summary = run_job(fcm_app, JOB_GAMIFICATION, TUESDAY)

    assert summary.success is False
    assert summary.error_type == "ConfigurationError"


def test_run_job_uses_app_configuration(app):
    _profile()

    summary = run_job(app, JOB_GAMIFICATION, MONDAY_FIRST, rng=random.Random(4))

    assert summary.success is True
    assert summary.total_missions == 8
    assert summary.assignments_created == 8
    assert summary.streaks.total_users == 1


def test_summary_records_completed_phases(store):
    _profile()

    full = run_daily_gamification_cycle(TUESDAY, store=store, rng=random.Random(5))
    assert (full.missions_ok, full.streaks_ok) == (True, True)
    assert full.to_dict()["completed_phases"] == ["missions", "streaks"]

    missions_only = run_mission_cycle(TUESDAY, store=store, rng=random.Random(5))
    assert missions_only.completed_phases == ["missions"]


def test_missions_stay_completed_when_profile_listing_fails():
    store = _BrokenStore(fail_on="list_all_user_profiles")

    summary = run_daily_gamification_cycle(TUESDAY, store=store, rng=random.Random(0))

    assert summary.success is False
    assert summary.missions_ok is True
    assert summary.streaks_ok is False


def test_job_for_phases():
    assert job_for_phases(("missions", "streaks")) == JOB_GAMIFICATION
    assert job_for_phases(("streaks",)) == JOB_STREAKS
    assert job_for_phases(("missions",)) == JOB_MISSIONS
    with pytest.raises(ValueError):
        job_for_phases(())


@pytest.mark.parametrize(
    "requested, capacity, expected",
    [
        ((4, 4), 10, (4, 4)),
        ((8, 4), 10, (5, 4)),
        ((8, 4), 3, (1, 1)),
        ((8, 4), None, (8, 4)),
        ((0, 0), 10, (1, 1)),
    ],
)
def test_fit_worker_pools(requested, capacity, expected):
    streak_workers, notification_workers = fit_worker_pools(*requested, capacity)
    assert (streak_workers, notification_workers) == expected
    if capacity is not None:
        assert streak_workers + notification_workers < max(capacity, 3)


def test_build_components_keeps_workers_within_the_pool():
    app = create_app(_config(STREAK_MAX_WORKERS=8, NOTIFICATION_MAX_WORKERS=4))
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {"pool_size": 5, "max_overflow": 5}

    components = build_components(app)

    assert components.streak_workers + components.notification_workers <= 9
    assert components.notification_workers == 4

"""Tests for the internal cron endpoints, run log and CLI commands."""

import json
import os
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "test-secret-key")

from app import create_app
from app.errors import PersistenceError
from app.models import db
from app.models.cron_run import CronRun
from app.models.device import UserDevice
from app.models.mission import Mission
from app.models.notification import Notification
from app.models.profile import UserProfile
from app.services import push_service, runlog_service
from app.services.gamification_service import RunSummary
from app.services.runlog_service import log_cron_run, sanitize_json_value
from app.services.store import SqlAlchemyStore
from push.notifier import FcmSendResult


@pytest.fixture
def app(tmp_path):
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "SQLALCHEMY_ENGINE_OPTIONS": {
                "connect_args": {"check_same_thread": False},
                "poolclass": StaticPool,
            },
            "CRON_SECRET": "test-secret",
            "PUSH_PROVIDER": "log",
            "STREAK_MAX_WORKERS": 1,
            "NOTIFICATION_MAX_WORKERS": 1,
            "DATA_DIR": str(tmp_path),
        }
    )
    with app.app_context():
        db.create_all()
        db.session.add(UserProfile(current_streak=3, longest_streak=3))
        db.session.commit()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def test_cron_requires_key(client):
    assert client.post("/internal/cron/gamification").status_code == 403
    assert client.post("/internal/cron/gamification?key=wrong").status_code == 403
    assert client.post("/internal/cron/streaks?key=wrong").status_code == 403
    assert CronRun.query.count() == 0


def test_cron_without_secret_is_unavailable(app):
    app.config["CRON_SECRET"] = ""
    response = app.test_client().post("/internal/cron/gamification?key=")

    assert response.status_code == 503
    assert response.get_json()["error"] == "cron_secret_not_configured"


def test_gamification_cron_persists_cron_run(client):
    response = client.post(
        "/internal/cron/gamification?key=test-secret&now=2026-06-02T00:05:00Z",
        headers={"X-Request-ID": "req-1"},
    )

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["ok"] is True
    assert payload["job_type"] == "gamification"
    summary = payload["summary"]
    assert summary["missions_generated"] == {"daily": 3, "weekly": 0, "monthly": 0, "total": 3}
    assert summary["assignments_created"] == 3
    assert summary["streaks"]["broken"] == 1
    assert summary["notifications"]["requested"] == 1

    db.session.expire_all()
    run = CronRun.query.filter_by(job_type="gamification").one()
    assert run.id == payload["run_id"]
    assert run.ok is True
    assert run.status == "success"
    assert run.request_id == "req-1"
    assert run.missions_generated == 3
    assert run.users_processed == 1
    assert run.streaks_broken == 1
    assert run.duration_ms is not None
    assert isinstance(run.started_at, datetime)
    assert isinstance(run.payload, dict)
    assert run.payload["timestamp"] == "2026-06-02T00:05:00Z"


def test_second_run_same_day_is_skipped_unless_forced(client):
    url = "/internal/cron/gamification?key=test-secret&now=2026-06-02T00:05:00Z"
    assert client.post(url).status_code == 200

    skipped = client.post(url)
    assert skipped.status_code == 200
    assert skipped.get_json() == {
        "ok": True,
        "job_type": "gamification",
        "skipped": "already_ran_today",
    }
    db.session.expire_all()
    assert Mission.query.count() == 3

    forced = client.post(url + "&force=1")
    assert forced.status_code == 200
    assert "skipped" not in forced.get_json()
    db.session.expire_all()
    assert Mission.query.count() == 6
    assert CronRun.query.filter_by(job_type="gamification").count() == 2


def test_streak_cron_runs_once_per_day(client):
    profile = UserProfile.query.one()
    profile.last_workout_date = datetime(2026, 6, 1, 18, tzinfo=timezone.utc)
    db.session.commit()
    profile_id = profile.id
    url = "/internal/cron/streaks?key=test-secret&now=2026-06-02T00:05:00Z"

    first = client.post(url)
    assert first.status_code == 200
    assert first.get_json()["summary"]["streaks"]["incremented"] == 1

    second = client.post(url)
    assert second.status_code == 200
    assert second.get_json()["skipped"] == "already_ran_today"

    db.session.expire_all()
    assert db.session.get(UserProfile, profile_id).current_streak == 4
    assert CronRun.query.filter_by(job_type="streaks").count() == 1
    assert Mission.query.count() == 0

    forced = client.post(url + "&force=1")
    assert forced.status_code == 200
    assert forced.get_json()["phases"] == ["streaks"]


def test_missions_only_run_then_full_run_adds_only_streaks(client):
    base = "/internal/cron/gamification?key=test-secret&now=2026-06-02T00:05:00Z"

    missions_only = client.post(base + "&skip_streaks=1")
    assert missions_only.status_code == 200
    assert missions_only.get_json()["job_type"] == "missions"

    full = client.post(base)
    assert full.status_code == 200
    payload = full.get_json()
    assert "skipped" not in payload
    assert payload["phases"] == ["streaks"]
    assert payload["summary"]["missions_generated"]["total"] == 0
    assert payload["summary"]["streaks"]["total_users"] == 1

    db.session.expire_all()
    assert Mission.query.count() == 3

    assert client.post(base).get_json()["skipped"] == "already_ran_today"
    assert client.post(base + "&skip_streaks=1").get_json()["skipped"] == "already_ran_today"


def test_retry_after_streak_failure_does_not_duplicate_missions(client, monkeypatch):
    original = SqlAlchemyStore.list_all_user_profiles
    calls = []

    def flaky_listing(self):
        calls.append(1)
        if len(calls) == 1:
            raise PersistenceError("list_all_user_profiles", "connection reset")
        return original(self)

    monkeypatch.setattr(SqlAlchemyStore, "list_all_user_profiles", flaky_listing)
    url = "/internal/cron/gamification?key=test-secret&now=2026-06-02T00:05:00Z"

    failed = client.post(url)
    assert failed.status_code == 500

    db.session.expire_all()
    run = CronRun.query.one()
    assert run.status == "error"
    assert (run.missions_ok, run.streaks_ok) == (True, False)
    assert run.run_date == date(2026, 6, 2)

    retried = client.post(url)
    assert retried.status_code == 200
    assert retried.get_json()["phases"] == ["streaks"]

    db.session.expire_all()
    assert Mission.query.count() == 3
    assert CronRun.query.filter_by(streaks_ok=True).count() == 1


def test_guard_uses_the_requested_day(client):
    first = client.post("/internal/cron/gamification?key=test-secret&now=2026-06-02T00:05:00Z")
    assert first.status_code == 200

    next_day = client.post("/internal/cron/gamification?key=test-secret&now=2026-06-03T00:05:00Z")
    assert next_day.status_code == 200
    assert "skipped" not in next_day.get_json()

    db.session.expire_all()
    assert Mission.query.count() == 6
    assert sorted(run.run_date for run in CronRun.query.all()) == [
        date(2026, 6, 2),
        date(2026, 6, 3),
    ]


def test_invalid_now_is_rejected(client):
    response = client.post("/internal/cron/gamification?key=test-secret&now=yesterday")
    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_now"


def test_failed_summary_returns_500_and_is_logged(client, monkeypatch):
    def fake_run_job(app, job_type, now, rng=None):
        summary = RunSummary(timestamp=now)
        summary.fail(RuntimeError("insert_missions failed: database is gone"))
        return summary

    monkeypatch.setattr(runlog_service, "run_job", fake_run_job)

    response = client.post("/internal/cron/gamification?key=test-secret")

    assert response.status_code == 500
    payload = response.get_json()
    assert payload["ok"] is False
    assert "database is gone" in payload["error"]

    db.session.expire_all()
    run = CronRun.query.one()
    assert run.ok is False
    assert run.status == "error"
    assert run.error_type == "RuntimeError"


def test_crash_is_logged_with_traceback(client, monkeypatch):
    def exploding_run_job(*_args, **_kwargs):
        raise KeyError("boom")

    monkeypatch.setattr(runlog_service, "run_job", exploding_run_job)

    response = client.post("/internal/cron/streaks?key=test-secret")

    assert response.status_code == 500
    db.session.expire_all()
    run = CronRun.query.one()
    assert run.ok is False
    assert run.error_type == "KeyError"
    assert "Traceback" in run.traceback


def test_old_runs_are_purged(app):
    old = datetime.now(timezone.utc) - timedelta(days=45)
    log_cron_run({"job_type": "streaks", "ok": True, "started_at": old}, retention_days=0)
    db.session.expire_all()
    assert CronRun.query.count() == 1

    log_cron_run({"job_type": "streaks", "ok": True}, retention_days=30)

    db.session.expire_all()
    runs = CronRun.query.all()
    assert len(runs) == 1
    assert runs[0].status == "success"
    assert runs[0].started_at.year == datetime.now(timezone.utc).year


def test_sanitize_json_value_handles_nested_values():
    value = {"when": datetime(2026, 1, 1, 12), "items": (1, 2), "nan": float("nan")}
    assert sanitize_json_value(value) == {
        "when": "2026-01-01T12:00:00+00:00",
        "items": [1, 2],
        "nan": None,
    }


def test_worker_health_reads_heartbeat(app, client, tmp_path):
    assert client.get("/internal/worker/health").status_code == 503

    heartbeat = tmp_path / "worker-heartbeat.json"
    heartbeat.write_text(
        json.dumps({"pid": 42, "timestamp": datetime.now(timezone.utc).isoformat()}),
        encoding="utf-8",
    )
    response = client.get("/internal/worker/health")
    assert response.status_code == 200
    assert response.get_json()["pid"] == 42

    stale = datetime.now(timezone.utc) - timedelta(hours=1)
    heartbeat.write_text(json.dumps({"pid": 42, "timestamp": stale.isoformat()}), encoding="utf-8")
    assert client.get("/internal/worker/health").status_code == 503


def test_cli_run_gamification(app):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["run-gamification", "--now", "2026-06-01T00:05:00Z"])

    assert result.exit_code == 0, result.output
    output = json.loads(result.output)
    assert output["ok"] is True
    assert output["summary"]["missions_generated"]["total"] == 8

    skipped = runner.invoke(args=["run-gamification", "--now", "2026-06-01T00:05:00Z"])
    assert skipped.exit_code == 0
    assert json.loads(skipped.output)["skipped"] == "already_ran_today"


def test_cli_run_streaks_rejects_bad_timestamp(app):
    result = app.test_cli_runner().invoke(args=["run-streaks", "--now", "soon"])
    assert result.exit_code != 0


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.get_json()["ok"] is True


def _notification_body(**overrides):
    body = {
        "type": "mission_completed",
        "title": "Mission complete",
        "body": "You closed today's mission.",
        "data": {"mission_id": "m-1"},
    }
    body.update(overrides)
    return body


def test_notification_endpoint_requires_key(client):
    response = client.post("/internal/notifications", json=_notification_body(user_id="u-1"))
    assert response.status_code == 403


def test_notification_endpoint_validates_request(client):
    url = "/internal/notifications?key=test-secret"

    missing = client.post(url, json=_notification_body())
    assert missing.status_code == 400
    assert missing.get_json()["error"] == "Either user_id or user_ids must be provided"

    bad_type = client.post(url, json=_notification_body(user_id="u-1", type="lottery"))
    assert bad_type.status_code == 400

    bad_data = client.post(url, json=_notification_body(user_id="u-1", data=["x"]))
    assert bad_data.status_code == 400

    not_json = client.post(url, data="hello", content_type="text/plain")
    assert not_json.status_code == 400


def test_notification_endpoint_with_log_provider(client):
    response = client.post(
        "/internal/notifications?key=test-secret",
        json=_notification_body(user_ids=["u-1", "u-2"]),
    )

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["ok"] is True
    assert payload["stats"] is None
    assert Notification.query.count() == 0


def test_notification_endpoint_delivers_through_fcm(app, client, monkeypatch):
    app.config.update(PUSH_PROVIDER="fcm", FCM_SERVER_KEY="server-key")
    user_id = UserProfile.query.one().id
    db.session.add(UserDevice(user_id=user_id, fcm_token="token-a", device_type="android"))
    db.session.commit()

    messages = []

    def fake_send(server_key, token, message, **_kwargs):
        messages.append((token, message))
        return FcmSendResult(success=True, status_code=200)

    monkeypatch.setattr(push_service.fcm, "send_fcm_message", fake_send)

    response = client.post(
        "/internal/notifications?key=test-secret",
        json=_notification_body(
            user_id=user_id,
            image_url="https://cdn.example.com/badge.png",
            action_url="app://missions/m-1",
        ),
    )

    assert response.status_code == 200
    assert response.get_json()["stats"] == {
        "total_devices": 1,
        "sent_count": 1,
        "failed_count": 0,
        "invalid_tokens_removed": 0,
    }
    assert messages[0][0] == "token-a"
    assert messages[0][1]["notification"]["image"] == "https://cdn.example.com/badge.png"
    assert messages[0][1]["data"]["action_url"] == "app://missions/m-1"

    db.session.expire_all()
    row = Notification.query.one()
    assert row.user_id == user_id
    assert row.type == "mission_completed"


def test_notification_endpoint_without_fcm_key_is_unavailable(app, client):
    app.config.update(PUSH_PROVIDER="fcm", FCM_SERVER_KEY="")

    response = client.post(
        "/internal/notifications?key=test-secret",
        json=_notification_body(user_id="u-1"),
    )

    assert response.status_code == 503

"""Internal-only cron and health endpoints."""

from __future__ import annotations

import hmac
import json
import uuid
from datetime import datetime, timezone
from pathlib import Path

from flask import Blueprint, current_app, jsonify, request

from app.errors import ConfigurationError, InvalidNotificationError, NotificationDispatchError
from app.services.gamification_service import (
    JOB_GAMIFICATION,
    JOB_MISSIONS,
    JOB_STREAKS,
    build_notifier,
)
from app.services.runlog_service import run_logged_job
from app.utils.time import parse_timestamp, to_iso_utc


internal_bp = Blueprint("internal", __name__, url_prefix="/internal")

HEARTBEAT_FILE_NAME = "worker-heartbeat.json"
_TRUTHY = {"1", "true", "yes", "on"}


def _check_cron_key():
    """Return an error response when the cron secret is missing or wrong."""
    secret = current_app.config.get("CRON_SECRET") or ""
    if not secret:
        current_app.logger.error("[CRON] CRON_SECRET is not configured")
        return jsonify({"ok": False, "error": "cron_secret_not_configured"}), 503

    provided = request.args.get("key") or request.headers.get("X-Cron-Key") or ""
    if not hmac.compare_digest(provided.encode("utf-8"), secret.encode("utf-8")):
        return jsonify({"ok": False, "error": "forbidden"}), 403
    return None


def _run(job_type: str):
    denied = _check_cron_key()
    if denied is not None:
        return denied

    now_raw = request.args.get("now")
    now = None
    if now_raw:
        now = parse_timestamp(now_raw)
        if now is None:
            return jsonify({"ok": False, "error": "invalid_now"}), 400

    force = (request.args.get("force") or "").strip().lower() in _TRUTHY
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex

    try:
        outcome = run_logged_job(
            current_app._get_current_object(),
            job_type,
            now,
            force=force,
            request_id=request_id,
        )
    except Exception as exc:
        current_app.logger.exception("[CRON] %s failed", job_type)
        return jsonify({"ok": False, "error": str(exc) or exc.__class__.__name__}), 500

    return jsonify(outcome.to_dict()), (200 if outcome.ok else 500)


@internal_bp.route("/cron/gamification", methods=["POST"])
def cron_gamification():
    skip_streaks = (request.args.get("skip_streaks") or "").strip().lower() in _TRUTHY
    job_type = JOB_MISSIONS if skip_streaks else JOB_GAMIFICATION
    return _run(job_type)


@internal_bp.route("/cron/streaks", methods=["POST"])
def cron_streaks():
    return _run(JOB_STREAKS)


@internal_bp.route("/notifications", methods=["POST"])
def send_notification():
    denied = _check_cron_key()
    if denied is not None:
        return denied

    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return jsonify({"ok": False, "error": "invalid_json"}), 400

    user_ids = body.get("user_ids")
    if user_ids is None and body.get("user_id"):
        user_ids = [body["user_id"]]
    if not isinstance(user_ids, list) or not user_ids:
        return jsonify({"ok": False, "error": "Either user_id or user_ids must be provided"}), 400

    data = body.get("data") or {}
    if not isinstance(data, dict):
        return jsonify({"ok": False, "error": "data must be an object"}), 400

    try:
        notifier = build_notifier(current_app._get_current_object())
    except ConfigurationError as exc:
        current_app.logger.error("[PUSH] %s", exc)
        return jsonify({"ok": False, "error": str(exc)}), 503

    try:
        result = notifier.notify_many(
            user_ids,
            body.get("type"),
            body.get("title"),
            body.get("body"),
            data,
            image_url=body.get("image_url") or None,
            action_url=body.get("action_url") or None,
        )
    except InvalidNotificationError as exc:
        return jsonify({"ok": False, "error": str(exc)}), 400
    except NotificationDispatchError as exc:
        current_app.logger.error("[PUSH] Notification request failed: %s", exc)
        return jsonify({"ok": False, "error": str(exc)}), 500

    stats = result.to_dict() if result is not None else None
    return jsonify({"ok": True, "stats": stats, "timestamp": to_iso_utc(datetime.now(timezone.utc))})


@internal_bp.route("/worker/health", methods=["GET"])
def worker_health():
    data_dir = Path(current_app.config.get("DATA_DIR", "/var/tmp"))
    heartbeat_path = data_dir / HEARTBEAT_FILE_NAME

    if not heartbeat_path.exists():
        return jsonify({"ok": False, "error": "missing_heartbeat"}), 503

    try:
        payload = json.loads(heartbeat_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        current_app.logger.warning("[WORKER] Invalid heartbeat payload: %s", exc)
        return jsonify({"ok": False, "error": "invalid_payload"}), 500

    timestamp_raw = payload.get("timestamp")
    if not timestamp_raw:
        return jsonify({"ok": False, "error": "missing_timestamp"}), 500

    beat_ts = parse_timestamp(timestamp_raw)
    if beat_ts is None:
        return jsonify({"ok": False, "error": "invalid_timestamp"}), 500

    age_seconds = (datetime.now(timezone.utc) - beat_ts).total_seconds()
    tolerance = int(current_app.config.get("WORKER_HEARTBEAT_INTERVAL", 30)) * 3
    healthy = age_seconds <= tolerance

    status_code = 200 if healthy else 503
    return (
        jsonify(
            {
                "ok": healthy,
                "age_seconds": age_seconds,
                "heartbeat_timestamp": beat_ts.isoformat(),
                "pid": payload.get("pid"),
            }
        ),
        status_code,
    )

"""Utilities for sending push notifications through Firebase Cloud Messaging."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from requests import RequestException, Response

from app.utils.logger import get_logger

logger = get_logger(__name__)

FCM_ENDPOINT = "https://fcm.googleapis.com/fcm/send"
DEFAULT_TIMEOUT = 10
MAX_RETRIES = 3
INITIAL_BACKOFF = 1.0
MAX_BACKOFF = 30.0

INVALID_TOKEN_ERRORS = frozenset({"InvalidRegistration", "NotRegistered"})


@dataclass(frozen=True)
class FcmSendResult:
    success: bool
    invalid_token: bool = False
    error: Optional[str] = None
    status_code: Optional[int] = None


def build_fcm_payload(
    title: str,
    body: str,
    *,
    notification_type: str,
    data: Optional[Dict[str, Any]] = None,
    timestamp: Optional[str] = None,
    image_url: Optional[str] = None,
    action_url: Optional[str] = None,
) -> Dict[str, Any]:
    """Legacy FCM body (without the ``to`` field) for one notification.

    ``image_url`` becomes the notification image; ``action_url`` travels in
    the data block for the client to open on tap.
    """
    message_data: Dict[str, Any] = {"type": notification_type}
    if data:
        message_data.update(data)
    if action_url:
        message_data["action_url"] = action_url
    if timestamp:
        message_data["timestamp"] = timestamp
    notification: Dict[str, Any] = {"title": title, "body": body}
    if image_url:
        notification["image"] = image_url
    notification.update({"sound": "default", "badge": "1"})
    return {
        "notification": notification,
        "data": message_data,
        "priority": "high",
        "content_available": True,
    }


def _should_retry(response: Response) -> bool:
    return response.status_code == 429 or 500 <= response.status_code < 600


def _result_error(response: Response) -> Optional[str]:
    """Per-message error of a delivered response, if FCM reported one."""
    try:
        document = response.json()
    except ValueError:
        return "InvalidResponse"
    if not isinstance(document, dict):
        return "InvalidResponse"
    results = document.get("results") or []
    if results and isinstance(results[0], dict) and results[0].get("error"):
        return str(results[0]["error"])
    if document.get("failure"):
        return "Unknown"
    return None


def send_fcm_message(
    server_key: str,
    token: str,
    payload: Dict[str, Any],
    *,
    endpoint: str = FCM_ENDPOINT,
) -> FcmSendResult:
    """Send one message to one device token via the legacy FCM HTTP API.

    Retries on rate-limit (HTTP 429), transient server errors and connection
    errors with exponential backoff, respecting ``Retry-After`` when present.
    A token is reported invalid only when a delivered (2xx) response carries
    ``InvalidRegistration`` or ``NotRegistered`` for the message; transport
    failures never mark a token invalid.
    """

    if not server_key or not token:
        logger.warning("[PUSH] Server key or device token missing: nothing sent")
        return FcmSendResult(success=False, error="MissingCredentials")

    headers = {
        "Content-Type": "application/json",
        "Authorization": f"key={server_key}",
    }
    body = {"to": token, **payload}

    backoff = INITIAL_BACKOFF

    for attempt in range(1, MAX_RETRIES + 1):
        try:
            response = requests.post(endpoint, json=body, headers=headers, timeout=DEFAULT_TIMEOUT)
        except RequestException as exc:
            logger.error("[PUSH] Error contacting FCM (attempt %s/%s): %s",
                         attempt, MAX_RETRIES, exc)
            if attempt == MAX_RETRIES:
                return FcmSendResult(success=False, error="ConnectionError")
            time.sleep(min(backoff, MAX_BACKOFF))
            backoff = min(backoff * 2, MAX_BACKOFF)
            continue

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            if attempt == MAX_RETRIES:
                logger.error("[PUSH] FCM rate limit hit after %s attempts", attempt)
                return FcmSendResult(success=False, error="RateLimited", status_code=429)
            try:
                wait_seconds = float(retry_after) if retry_after is not None else backoff
            except (TypeError, ValueError):
                wait_seconds = backoff
            wait_seconds = max(wait_seconds, 0.5)
            logger.warning("[PUSH] FCM rate limit. Retrying in %s seconds.", wait_seconds)
            time.sleep(min(wait_seconds, MAX_BACKOFF))
            backoff = min(backoff * 2, MAX_BACKOFF)
            continue

        if _should_retry(response):
            logger.error("[PUSH] FCM server error %s on attempt %s/%s",
                         response.status_code, attempt, MAX_RETRIES)
            if attempt == MAX_RETRIES:
                return FcmSendResult(
                    success=False, error="ServerError", status_code=response.status_code
                )
            time.sleep(min(backoff, MAX_BACKOFF))
            backoff = min(backoff * 2, MAX_BACKOFF)
            continue

        try:
            response.raise_for_status()
        except RequestException as exc:
            logger.error("[PUSH] FCM rejected the request: %s", exc)
            return FcmSendResult(
                success=False, error="HttpError", status_code=response.status_code
            )

        error = _result_error(response)
        if error is not None:
            invalid = error in INVALID_TOKEN_ERRORS
            logger.warning("[PUSH] FCM reported %s for token %s...", error, token[:12])
            return FcmSendResult(
                success=False,
                invalid_token=invalid,
                error=error,
                status_code=response.status_code,
            )

        return FcmSendResult(success=True, status_code=response.status_code)

    return FcmSendResult(success=False, error="RetriesExhausted")


__all__ = [
    "FCM_ENDPOINT",
    "FcmSendResult",
    "INVALID_TOKEN_ERRORS",
    "build_fcm_payload",
    "send_fcm_message",
]

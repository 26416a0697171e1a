from __future__ import annotations

import json
import threading
from typing import Any, Callable, Optional
from urllib import error, request

from otscan.config import NotificationSettings
from otscan.log import get_logger
from otscan.models import PollEvent

logger = get_logger("notify")


def _post_json(url: str, data: dict) -> None:
    req = request.Request(
        url,
        data=json.dumps(data).encode("utf-8"),
        headers={"Content-Type": "application/json", "User-Agent": "otscan/0.1"},
    )
    try:
        with request.urlopen(req, timeout=5):
            pass
    except error.URLError as e:
        logger.warning("notification to %s failed: %s", url, e)


def format_message(event_type: str, payload: dict[str, Any]) -> str:
    message = f"[{event_type.upper()}] "
    if event_type == "completed":
        message += (
            f"Scan {payload.get('task_id')} complete: found {payload.get('hosts', 0)} hosts "
            f"in {payload.get('duration_seconds', 0):.2f}s"
        )
    elif event_type == "failed":
        message += f"Scan {payload.get('task_id')} failed: {payload.get('error')}"
    else:
        message += str(payload)
    return message


def send_notification(
    event_type: str,
    payload: dict[str, Any],
    settings: NotificationSettings,
) -> list[threading.Thread]:
    """
    Post a notification to every configured webhook.
    Each post runs in a background thread so polling is never blocked.
    """
    if not settings.enabled:
        return []

    message = format_message(event_type, payload)
    targets = []
    if settings.discord_webhook:
        targets.append((settings.discord_webhook, {"content": message, "username": "otscan"}))
    if settings.slack_webhook:
        targets.append((settings.slack_webhook, {"text": message}))
    if settings.webhook_url:
        targets.append((settings.webhook_url, {"event": event_type, "payload": payload, "message": message}))

    threads = []
    for url, body in targets:
        t = threading.Thread(target=_post_json, args=(url, body), daemon=True)
        t.start()
        threads.append(t)
    return threads


def notification_listener(settings: Optional[NotificationSettings]) -> Callable[[PollEvent], None]:
    """Session listener that notifies on completed and failed scans."""
    settings = settings or NotificationSettings()

    def _listener(event: PollEvent) -> None:
        if event.type == "completed":
            send_notification("completed", {
                "task_id": event.task_id,
                "hosts": len(event.results),
                "duration_seconds": event.duration_seconds or 0.0,
            }, settings)
        elif event.type == "failed":
            send_notification("failed", {
                "task_id": event.task_id,
                "error": event.error,
                "kind": event.error_kind,
            }, settings)

    return _listener

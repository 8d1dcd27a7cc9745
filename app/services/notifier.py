"""Alert delivery channels."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)

_LEVELS = {"success": logging.INFO, "warning": logging.WARNING, "error": logging.ERROR}


class Notifier(Protocol):
    def send(self, kind: str, message: str) -> bool: ...


class LogNotifier:
    def send(self, kind: str, message: str) -> bool:
        logger.log(_LEVELS.get(kind, logging.INFO), "BACKUP ALERT [%s]: %s", kind.upper(), message)
        return True


class WebhookNotifier:
    """Posts alerts as JSON to a Slack-compatible incoming webhook."""

    colors = {"success": "#36a64f", "warning": "#daa520", "error": "#dc3545"}

    def __init__(self, webhook_url: str, timeout: float = 10.0):
        self.webhook_url = webhook_url
        self.timeout = timeout

    def send(self, kind: str, message: str) -> bool:
        payload = {
            "text": f"[{kind.upper()}] {message}",
            "attachments": [{"color": self.colors.get(kind, "#36a64f"), "text": message}],
        }
        try:
            resp = httpx.post(self.webhook_url, json=payload, timeout=self.timeout)
        except httpx.HTTPError:
            logger.exception("Failed to deliver backup alert to webhook")
            return False
        if resp.status_code >= 300:
            logger.warning("Alert webhook returned %d: %s", resp.status_code, resp.text[:500])
            return False
        return True


def get_notifier() -> Notifier:
    from app.config import settings

    if settings.alert_webhook_url:
        return WebhookNotifier(settings.alert_webhook_url)
    return LogNotifier()

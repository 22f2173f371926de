"""Operator notification sinks."""

from __future__ import annotations

from typing import Optional, Protocol

import requests

from alttext import logging_manager as log_mgr
from alttext.errors import redact_secrets
from alttext.llm_client import USER_AGENT

logger = log_mgr.get_logger().getChild("notifications")


class NotificationSink(Protocol):
    def notify(self, subject: str, body: str) -> None:
        ...


class LoggingNotifier:
    """Emit notifications as log records."""

    def notify(self, subject: str, body: str) -> None:
        logger.info(
            "%s: %s",
            subject,
            body,
            extra={"event": "notification", "subject": subject},
        )


class WebhookNotifier:
    """POST notifications as JSON to a webhook URL."""

    def __init__(
        self,
        url: str,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._session = session or requests.Session()
        self._timeout = timeout

    def notify(self, subject: str, body: str) -> None:
        response = self._session.post(
            self._url,
            json={"subject": subject, "body": body, "text": f"{subject}\n\n{body}"},
            headers={"User-Agent": USER_AGENT},
            timeout=self._timeout,
        )
        response.raise_for_status()


def notify_safely(sink: Optional[NotificationSink], subject: str, body: str) -> bool:
    """Deliver a notification without letting sink failures escape.

    Returns ``True`` when the sink accepted the notification.
    """

    if sink is None:
        return False
    try:
        sink.notify(subject, redact_secrets(body))
    except Exception as exc:
        logger.error(
            "Failed to deliver notification %r: %s",
            subject,
            redact_secrets(str(exc)),
            extra={"event": "notification.failed"},
        )
        return False
    return True


def build_notifier(webhook_url: Optional[str]) -> NotificationSink:
    if webhook_url:
        return WebhookNotifier(webhook_url)
    return LoggingNotifier()


__all__ = [
    "LoggingNotifier",
    "NotificationSink",
    "WebhookNotifier",
    "build_notifier",
    "notify_safely",
]

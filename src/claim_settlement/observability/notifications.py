"""Notification sinks for critical errors and batch summaries."""

import logging
from typing import Any, Optional

import requests

from claim_settlement.utils.retry import with_retry

logger = logging.getLogger(__name__)


class LoggingNotificationSink:
    """Delivers notifications to the application log."""

    def __init__(self, name: str = "claim_settlement.notifications"):
        self._logger = logging.getLogger(name)

    def notify(
        self, subject: str, body: str, severity: str, context: Optional[dict[str, Any]] = None
    ) -> None:
        level = logging.ERROR if severity == "critical" else logging.INFO
        self._logger.log(level, "[notification] %s: %s", subject, body, extra={"extra_data": context or {}})


class WebhookNotificationSink:
    """Posts notifications as JSON to a webhook URL, retrying transient failures."""

    def __init__(self, url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    @with_retry(max_attempts=3, min_wait=0.5, max_wait=4.0)
    def notify(
        self, subject: str, body: str, severity: str, context: Optional[dict[str, Any]] = None
    ) -> None:
        resp = self.session.post(
            self.url,
            json={"subject": subject, "body": body, "severity": severity, "context": context or {}},
            timeout=self.timeout,
        )
        resp.raise_for_status()

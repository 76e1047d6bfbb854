"""
Notification and audit sink implementations.

Provides:
- LoggingNotificationSink / LoggingAuditSink: write to the application log
- WebhookNotificationSink: POST notifications as HMAC-signed JSON
- RecordingNotificationSink / RecordingAuditSink: keep calls in memory
"""

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from booking_sync.models.enums import NotificationSeverity, NotificationType

logger = logging.getLogger(__name__)

# Delivery configuration
WEBHOOK_TIMEOUT = 10.0  # seconds
MAX_RETRIES = 3
RETRY_DELAYS = [1, 5, 30]  # seconds between retries

_LOG_LEVELS = {
    NotificationSeverity.INFO: logging.INFO,
    NotificationSeverity.WARNING: logging.WARNING,
    NotificationSeverity.ERROR: logging.ERROR,
}


def generate_signature(payload: str, secret: str) -> str:
    """
    Generate HMAC-SHA256 signature for webhook payload.

    Args:
        payload: JSON string payload
        secret: Webhook secret

    Returns:
        Hex-encoded signature
    """
    return hmac.new(
        secret.encode("utf-8"),
        payload.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


class LoggingNotificationSink:
    """Writes notifications to the log at a level matching their severity."""

    def send(
        self,
        property_id: Optional[str],
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        severity: NotificationSeverity,
    ) -> None:
        logger.log(
            _LOG_LEVELS.get(severity, logging.INFO),
            f"[{type.value}] user={user_id} property={property_id}: {title} - {message}",
        )


class LoggingAuditSink:
    """Writes audit entries to the log."""

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        actor_id: Optional[str],
        property_id: Optional[str],
        details: dict[str, Any],
    ) -> None:
        logger.info(
            f"AUDIT {action} {entity_type}={entity_id} actor={actor_id} "
            f"property={property_id} details={json.dumps(details, default=str)}"
        )


class WebhookNotificationSink:
    """
    Delivers notifications to an HTTP endpoint.

    Each request carries X-Webhook-Signature (HMAC-SHA256 of the body),
    X-Webhook-Event and X-Webhook-Timestamp headers. Non-2xx responses and
    transport errors are retried; the final failure is raised to the caller.
    """

    def __init__(
        self,
        url: str,
        secret: str,
        client: Optional[httpx.Client] = None,
        retry_delays: Optional[list[float]] = None,
    ):
        self.url = url
        self.secret = secret
        self._client = client or httpx.Client(timeout=WEBHOOK_TIMEOUT)
        self._retry_delays = RETRY_DELAYS if retry_delays is None else retry_delays

    def send(
        self,
        property_id: Optional[str],
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        severity: NotificationSeverity,
    ) -> None:
        timestamp = datetime.now(timezone.utc).isoformat()
        payload_json = json.dumps(
            {
                "event_type": type.value,
                "timestamp": timestamp,
                "data": {
                    "property_id": property_id,
                    "user_id": user_id,
                    "title": title,
                    "message": message,
                    "severity": severity.value,
                },
            }
        )
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-Signature": generate_signature(payload_json, self.secret),
            "X-Webhook-Event": type.value,
            "X-Webhook-Timestamp": timestamp,
        }

        last_error = None
        for attempt in range(MAX_RETRIES):
            try:
                response = self._client.post(self.url, content=payload_json, headers=headers)
                if 200 <= response.status_code < 300:
                    logger.debug(f"Webhook notification delivered (status {response.status_code})")
                    return
                last_error = f"HTTP {response.status_code}: {response.text[:200]}"
            except httpx.TimeoutException:
                last_error = "Request timed out"
            except httpx.RequestError as e:
                last_error = str(e)

            logger.warning(
                f"Webhook notification failed (attempt {attempt + 1}): {last_error}"
            )
            if attempt < MAX_RETRIES - 1 and attempt < len(self._retry_delays):
                time.sleep(self._retry_delays[attempt])

        raise RuntimeError(
            f"Webhook delivery to {self.url} failed after {MAX_RETRIES} attempts: {last_error}"
        )


@dataclass
class SentNotification:
    property_id: Optional[str]
    user_id: str
    type: NotificationType
    title: str
    message: str
    severity: NotificationSeverity


@dataclass
class RecordingNotificationSink:
    """Keeps every notification in memory, for tests and dry runs."""

    sent: list[SentNotification] = field(default_factory=list)

    def send(
        self,
        property_id: Optional[str],
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        severity: NotificationSeverity,
    ) -> None:
        self.sent.append(SentNotification(property_id, user_id, type, title, message, severity))

    def of_type(self, notification_type: NotificationType) -> list[SentNotification]:
        return [n for n in self.sent if n.type == notification_type]


@dataclass
class AuditEntry:
    action: str
    entity_type: str
    entity_id: str
    actor_id: Optional[str]
    property_id: Optional[str]
    details: dict[str, Any]


@dataclass
class RecordingAuditSink:
    """Keeps every audit entry in memory, for tests and dry runs."""

    entries: list[AuditEntry] = field(default_factory=list)

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        actor_id: Optional[str],
        property_id: Optional[str],
        details: dict[str, Any],
    ) -> None:
        self.entries.append(
            AuditEntry(action, entity_type, entity_id, actor_id, property_id, dict(details))
        )

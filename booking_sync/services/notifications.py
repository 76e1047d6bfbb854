"""
Notification dispatch.

Applies each user's stored NotificationPreference before handing a
notification to the configured sink. Delivery is fire-and-forget: sink
failures are logged and never reach the caller.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from booking_sync.integrations.base import NotificationSink
from booking_sync.models.enums import NotificationSeverity, NotificationType
from booking_sync.models.preferences import NotificationPreference

logger = logging.getLogger(__name__)


def get_preferences(session: Session, user_id: str) -> Optional[NotificationPreference]:
    """Get a user's notification preferences, or None if never set."""
    stmt = select(NotificationPreference).where(NotificationPreference.user_id == user_id)
    return session.execute(stmt).scalars().first()


def update_preferences(session: Session, user_id: str, **flags: bool) -> NotificationPreference:
    """
    Create or update a user's notification preferences.

    Args:
        session: Database session
        user_id: User to update
        **flags: NotificationType values mapped to on/off

    Returns:
        The persisted preferences

    Raises:
        ValueError: If a flag does not name a notification type
    """
    valid = {t.value for t in NotificationType}
    unknown = set(flags) - valid
    if unknown:
        raise ValueError(f"Unknown notification types: {', '.join(sorted(unknown))}")

    preferences = get_preferences(session, user_id)
    if preferences is None:
        preferences = NotificationPreference(user_id=user_id)
        session.add(preferences)
    for name, enabled in flags.items():
        setattr(preferences, name, bool(enabled))
    session.commit()
    return preferences


class NotificationDispatcher:
    """Routes notifications through user preferences to a sink."""

    def __init__(self, sink: NotificationSink):
        self._sink = sink

    def is_enabled(
        self,
        session: Session,
        user_id: str,
        notification_type: NotificationType,
    ) -> bool:
        preferences = get_preferences(session, user_id)
        return preferences is None or preferences.allows(notification_type)

    def notify(
        self,
        session: Session,
        user_id: str,
        property_id: Optional[str],
        notification_type: NotificationType,
        title: str,
        message: str,
        severity: NotificationSeverity = NotificationSeverity.INFO,
    ) -> bool:
        """
        Send a notification if the user wants it.

        Returns:
            True if the sink accepted the notification
        """
        try:
            if not self.is_enabled(session, user_id, notification_type):
                logger.debug(f"User {user_id} opted out of {notification_type.value}")
                return False
            self._sink.send(
                property_id=property_id,
                user_id=user_id,
                type=notification_type,
                title=title,
                message=message,
                severity=severity,
            )
            return True
        except Exception as e:
            logger.warning(
                f"Failed to send {notification_type.value} notification to {user_id}: {e}"
            )
            return False

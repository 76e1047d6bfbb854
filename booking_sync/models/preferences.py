"""
Notification preference model.

Entities:
- NotificationPreference: Per-user switches for each notification type
"""

from sqlalchemy import String, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column

from booking_sync.models.base import BaseModel
from booking_sync.models.enums import NotificationType


class NotificationPreference(BaseModel):
    """
    Which notifications a user wants to receive.

    A user without a row receives everything.
    """

    __tablename__ = "notification_preferences"

    user_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        doc="User these preferences belong to"
    )

    new_booking: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    modified_booking: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    cancelled_booking: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    conflict_detected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sync_failure: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    connection_change: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("uq_notification_preference_user", "user_id", unique=True),
    )

    def allows(self, notification_type: NotificationType) -> bool:
        """Check whether the user opted in to a notification type."""
        return bool(getattr(self, notification_type.value))

    def __repr__(self) -> str:
        return f"<NotificationPreference(user_id='{self.user_id}')>"

"""
Feed connection model.

Entities:
- FeedConnection: One external calendar feed registered for a property
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional, TYPE_CHECKING

from sqlalchemy import String, Text, Integer, DateTime, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from booking_sync.models.base import BaseModel, ensure_utc, utcnow
from booking_sync.models.enums import ConnectionStatus, Platform, enum_column

if TYPE_CHECKING:
    from booking_sync.models.events import Event


class FeedConnection(BaseModel):
    """
    An iCalendar feed published by a distribution platform for one property.

    State machine:
    - active <-> error: driven by sync and test outcomes
    - active/error -> inactive: deactivation by the owner
    - inactive -> active: reactivation
    - any -> deleted: hard delete (row removed) or soft delete (deleted_at set)

    At most one non-deleted, non-inactive connection exists per
    (property_id, platform).
    """

    __tablename__ = "feed_connections"

    property_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        doc="Property the feed describes"
    )

    user_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        doc="Owner who registered the feed"
    )

    platform: Mapped[Platform] = mapped_column(
        enum_column(Platform),
        nullable=False,
        doc="Distribution platform publishing the feed"
    )

    feed_url: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        doc="iCalendar feed URL"
    )

    sync_frequency: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=60,
        doc="Minutes between scheduled syncs"
    )

    status: Mapped[ConnectionStatus] = mapped_column(
        enum_column(ConnectionStatus),
        nullable=False,
        default=ConnectionStatus.ACTIVE,
        doc="Health state: 'active', 'error', 'inactive'"
    )

    error_message: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Message of the most recent failure (NULL when healthy)"
    )

    last_synced: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="Completion time of the last successful sync (UTC)"
    )

    last_error_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="Time of the most recent sync or test failure (UTC)"
    )

    sync_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        doc="Number of successful syncs"
    )

    sync_lease_until: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="A sync holds this connection until this time (UTC)"
    )

    events: Mapped[list["Event"]] = relationship(
        "Event",
        back_populates="connection",
        passive_deletes=True,
        doc="Events imported from this feed"
    )

    __table_args__ = (
        Index("idx_connection_property", "property_id"),
        Index("idx_connection_user", "user_id"),
        Index("idx_connection_status", "status"),
        Index("idx_connection_deleted", "deleted_at"),
        Index(
            "uq_connection_property_platform_live",
            "property_id",
            "platform",
            unique=True,
            sqlite_where=text("deleted_at IS NULL AND status <> 'inactive'"),
            postgresql_where=text("deleted_at IS NULL AND status <> 'inactive'"),
        ),
    )

    @property
    def is_syncable(self) -> bool:
        """Scheduled syncs pick up active and errored connections."""
        return not self.is_deleted and self.status != ConnectionStatus.INACTIVE

    def next_sync_at(self) -> Optional[datetime]:
        """
        When the connection is next due.

        The interval counts from the later of the last success and the
        last failure, so errored connections retry on their own schedule.

        Returns:
            None if the connection never synced or failed (due immediately)
        """
        attempts = [
            t for t in (ensure_utc(self.last_synced), ensure_utc(self.last_error_time))
            if t is not None
        ]
        if not attempts:
            return None
        return max(attempts) + timedelta(minutes=self.sync_frequency)

    def is_due(self, now: Optional[datetime] = None) -> bool:
        """Check whether the connection's own interval has elapsed."""
        due_at = self.next_sync_at()
        return due_at is None or due_at <= (now or utcnow())

    def record_success(self, now: Optional[datetime] = None) -> None:
        """Mark a completed sync. Inactive connections stay inactive."""
        self.last_synced = now or utcnow()
        if self.status != ConnectionStatus.INACTIVE:
            self.status = ConnectionStatus.ACTIVE
        self.error_message = None
        self.sync_count = (self.sync_count or 0) + 1

    def record_failure(self, message: str, now: Optional[datetime] = None) -> None:
        """Mark a failed sync or test. Inactive connections stay inactive."""
        if self.status != ConnectionStatus.INACTIVE:
            self.status = ConnectionStatus.ERROR
        self.error_message = message
        self.last_error_time = now or utcnow()

    def __repr__(self) -> str:
        return (
            f"<FeedConnection(property_id='{self.property_id}', "
            f"platform='{self.platform.value}', status='{self.status.value}')>"
        )

"""
Event model.

Entities:
- Event: A booking, block or maintenance window on a property's calendar
"""

import uuid
from datetime import date, datetime
from typing import Optional, TYPE_CHECKING

from sqlalchemy import String, Text, Boolean, Date, DateTime, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from booking_sync.models.base import BaseModel
from booking_sync.models.enums import EventStatus, EventType, Platform, enum_column

if TYPE_CHECKING:
    from booking_sync.models.connections import FeedConnection


class Event(BaseModel):
    """
    A dated entry on a property's calendar.

    Events are either imported from a feed connection (connection_id and
    external_uid set) or created manually (both NULL, platform 'manual').

    Dates are calendar days with half-open semantics: a stay from
    2025-06-01 to 2025-06-05 occupies the nights of the 1st through the 4th
    and leaves the 5th free for the next check-in.

    Retirement:
    - status 'cancelled' keeps the row active so a reappearing feed entry
      can revive it
    - is_active False removes it from every active query
    """

    __tablename__ = "events"

    property_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        doc="Property this event belongs to"
    )

    connection_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("feed_connections.id", ondelete="SET NULL"),
        nullable=True,
        doc="Owning feed connection (NULL for manual events)"
    )

    platform: Mapped[Platform] = mapped_column(
        enum_column(Platform),
        nullable=False,
        default=Platform.MANUAL,
        doc="Platform the event came from"
    )

    external_uid: Mapped[Optional[str]] = mapped_column(
        String(512),
        nullable=True,
        doc="Feed UID, unique per connection among active events"
    )

    summary: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        default="",
        doc="Event summary as published by the feed"
    )

    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Free-text description"
    )

    start_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        doc="First day (inclusive)"
    )

    end_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        doc="Last day (exclusive)"
    )

    event_type: Mapped[EventType] = mapped_column(
        enum_column(EventType),
        nullable=False,
        default=EventType.BOOKING,
        doc="Category: 'booking', 'blocked', 'maintenance'"
    )

    status: Mapped[EventStatus] = mapped_column(
        enum_column(EventStatus),
        nullable=False,
        default=EventStatus.CONFIRMED,
        doc="Status: 'confirmed', 'tentative', 'cancelled'"
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        doc="False once the event is retired"
    )

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="When the event was cancelled (UTC)"
    )

    created_by: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        doc="User who created a manual event"
    )

    connection: Mapped[Optional["FeedConnection"]] = relationship(
        "FeedConnection",
        back_populates="events",
        doc="Owning feed connection"
    )

    __table_args__ = (
        Index("idx_event_property_dates", "property_id", "start_date", "end_date"),
        Index("idx_event_connection", "connection_id"),
        Index("idx_event_status", "status"),
        Index("idx_event_deleted", "deleted_at"),
        Index(
            "uq_event_connection_uid_active",
            "connection_id",
            "external_uid",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    @property
    def duration_days(self) -> int:
        """Number of nights covered."""
        return (self.end_date - self.start_date).days

    @property
    def is_manual(self) -> bool:
        """Check if the event is not owned by a feed."""
        return self.connection_id is None and self.external_uid is None

    @property
    def counts_for_conflicts(self) -> bool:
        """Only active, confirmed events take part in conflict detection."""
        return (
            self.is_active
            and self.deleted_at is None
            and self.status == EventStatus.CONFIRMED
        )

    def cancel(self, when: datetime) -> None:
        """Mark the event cancelled without retiring the row."""
        self.status = EventStatus.CANCELLED
        self.cancelled_at = when

    def deactivate(self, when: datetime) -> None:
        """Retire the event and mark it cancelled."""
        self.is_active = False
        if self.status != EventStatus.CANCELLED:
            self.cancel(when)

    def __repr__(self) -> str:
        return (
            f"<Event(property_id='{self.property_id}', "
            f"{self.start_date.isoformat()}..{self.end_date.isoformat()}, "
            f"status='{self.status.value}')>"
        )

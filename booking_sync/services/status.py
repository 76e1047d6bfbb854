"""
Sync status and health reporting.

Read-only views over connections, events and conflicts:
- Per-property sync status with per-connection event counts
- Per-user sync health with failures, upcoming syncs and a platform breakdown
"""

from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from booking_sync.models.base import ensure_utc, utcnow
from booking_sync.models.connections import FeedConnection
from booking_sync.models.enums import ConnectionStatus, EventStatus, EventType
from booking_sync.models.events import Event
from booking_sync.schemas import (
    ConnectionStatusEntry,
    EventCounts,
    PlatformHealth,
    PropertySyncStatus,
    RecentFailure,
    SyncHealth,
    UpcomingSync,
)
from booking_sync.services import queries

RECENT_FAILURE_WINDOW = timedelta(hours=24)
MAX_LISTED = 5


def health_percentage(connections: Sequence[FeedConnection]) -> int:
    """Share of connections that are ACTIVE, as a rounded percentage."""
    if not connections:
        return 0
    active = sum(1 for c in connections if c.status == ConnectionStatus.ACTIVE)
    return round(active / len(connections) * 100)


def health_status_text(percentage: int) -> str:
    if percentage >= 90:
        return "Excellent"
    if percentage >= 75:
        return "Good"
    if percentage >= 50:
        return "Fair"
    return "Poor"


def overall_status(connections: Sequence[FeedConnection]) -> str:
    """
    Summarize a property's connections.

    - no_connections: nothing registered
    - error: every syncing connection is failing
    - degraded: some syncing connections are failing
    - healthy: otherwise
    """
    if not connections:
        return "no_connections"
    syncing = [c for c in connections if c.status != ConnectionStatus.INACTIVE]
    failing = [c for c in syncing if c.status == ConnectionStatus.ERROR]
    if failing and len(failing) == len(syncing):
        return "error"
    if failing:
        return "degraded"
    return "healthy"


def _event_counts(session: Session, connection_id) -> EventCounts:
    stmt = (
        select(Event.event_type, func.count(Event.id))
        .where(
            Event.connection_id == connection_id,
            Event.is_active.is_(True),
            Event.deleted_at.is_(None),
            Event.status != EventStatus.CANCELLED,
        )
        .group_by(Event.event_type)
    )
    by_type = {event_type: count for event_type, count in session.execute(stmt).all()}
    return EventCounts(
        total=sum(by_type.values()),
        bookings=by_type.get(EventType.BOOKING, 0),
        blocked=by_type.get(EventType.BLOCKED, 0),
        maintenance=by_type.get(EventType.MAINTENANCE, 0),
    )


class SyncStatusService:
    """Reports sync status per property and sync health per user."""

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock

    def get_property_sync_status(self, property_id: str) -> PropertySyncStatus:
        """
        Get the sync state of every connection of a property.

        Args:
            property_id: Property to report on

        Returns:
            PropertySyncStatus (overall_status ``no_connections`` when empty)
        """
        with self._session_factory() as session:
            connections = queries.get_connections_for_property(session, property_id)
            entries = [
                ConnectionStatusEntry(
                    connection_id=c.id,
                    platform=c.platform,
                    status=c.status,
                    sync_frequency=c.sync_frequency,
                    last_synced=ensure_utc(c.last_synced),
                    next_sync=c.next_sync_at(),
                    error_message=c.error_message,
                    events=_event_counts(session, c.id),
                )
                for c in connections
            ]
            synced = [e.last_synced for e in entries if e.last_synced is not None]

            return PropertySyncStatus(
                property_id=property_id,
                overall_status=overall_status(connections),
                health_percentage=health_percentage(connections),
                connections=entries,
                last_synced=max(synced) if synced else None,
                open_conflicts=queries.count_open_conflicts(session, property_id),
            )

    def get_sync_health(self, user_id: str) -> SyncHealth:
        """
        Summarize the health of every connection a user registered.

        Health is the share of ACTIVE connections: 90% and up is Excellent,
        75% Good, 50% Fair, anything lower Poor.
        """
        now = self._clock()
        with self._session_factory() as session:
            connections = list(queries.get_connections_for_user(session, user_id))

        if not connections:
            return SyncHealth(user_id=user_id, health_percentage=100, health_status="No connections")

        platforms: dict = {}
        for c in connections:
            row = platforms.setdefault(c.platform, PlatformHealth(platform=c.platform))
            row.total += 1
            if c.status == ConnectionStatus.ACTIVE:
                row.active += 1
            elif c.status == ConnectionStatus.ERROR:
                row.error += 1
            else:
                row.inactive += 1

        failures = sorted(
            (
                c for c in connections
                if c.status == ConnectionStatus.ERROR
                and c.last_error_time is not None
                and ensure_utc(c.last_error_time) >= now - RECENT_FAILURE_WINDOW
            ),
            key=lambda c: ensure_utc(c.last_error_time),
            reverse=True,
        )
        upcoming = sorted(
            (c for c in connections if c.status == ConnectionStatus.ACTIVE and c.last_synced),
            key=lambda c: c.next_sync_at(),
        )

        percentage = health_percentage(connections)
        return SyncHealth(
            user_id=user_id,
            total_connections=len(connections),
            active_connections=sum(1 for c in connections if c.status == ConnectionStatus.ACTIVE),
            error_connections=sum(1 for c in connections if c.status == ConnectionStatus.ERROR),
            inactive_connections=sum(1 for c in connections if c.status == ConnectionStatus.INACTIVE),
            health_percentage=percentage,
            health_status=health_status_text(percentage),
            platforms=sorted(platforms.values(), key=lambda p: p.platform.value),
            recent_failures=[
                RecentFailure(
                    connection_id=c.id,
                    property_id=c.property_id,
                    platform=c.platform,
                    error_message=c.error_message,
                    last_error_time=ensure_utc(c.last_error_time),
                )
                for c in failures[:MAX_LISTED]
            ],
            upcoming_syncs=[
                UpcomingSync(
                    connection_id=c.id,
                    property_id=c.property_id,
                    platform=c.platform,
                    next_sync=c.next_sync_at(),
                )
                for c in upcoming[:MAX_LISTED]
            ],
        )

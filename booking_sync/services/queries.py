"""
Common database queries.

Provides reusable query functions for:
- Feed connections (by id, property, user, due for sync)
- Events (active per connection, overlapping a date range)
- Conflicts (open per property, touching given events)
"""

import uuid
from datetime import date, datetime
from typing import Iterable, Optional, Sequence

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from booking_sync.models.conflicts import Conflict
from booking_sync.models.connections import FeedConnection
from booking_sync.models.enums import ConflictStatus, ConnectionStatus, EventStatus, Platform
from booking_sync.models.events import Event


# =============================================================================
# Connection Queries
# =============================================================================


def get_connection_by_id(
    session: Session,
    connection_id: uuid.UUID,
    include_deleted: bool = False,
) -> Optional[FeedConnection]:
    """
    Get a connection by ID.

    Args:
        session: Database session
        connection_id: Connection UUID
        include_deleted: Return soft-deleted connections as well

    Returns:
        FeedConnection or None if not found
    """
    connection = session.get(FeedConnection, connection_id)
    if connection is None or (connection.is_deleted and not include_deleted):
        return None
    return connection


def get_connections_for_property(
    session: Session,
    property_id: str,
    include_inactive: bool = True,
) -> Sequence[FeedConnection]:
    """Get the non-deleted connections of a property, ordered by platform."""
    conditions = [
        FeedConnection.property_id == property_id,
        FeedConnection.deleted_at.is_(None),
    ]
    if not include_inactive:
        conditions.append(FeedConnection.status != ConnectionStatus.INACTIVE)

    stmt = select(FeedConnection).where(and_(*conditions)).order_by(
        FeedConnection.platform, FeedConnection.created_at
    )
    return session.execute(stmt).scalars().all()


def get_connections_for_user(
    session: Session,
    user_id: str,
    include_inactive: bool = True,
) -> Sequence[FeedConnection]:
    """Get the non-deleted connections registered by a user."""
    conditions = [
        FeedConnection.user_id == user_id,
        FeedConnection.deleted_at.is_(None),
    ]
    if not include_inactive:
        conditions.append(FeedConnection.status != ConnectionStatus.INACTIVE)

    stmt = select(FeedConnection).where(and_(*conditions)).order_by(
        FeedConnection.property_id, FeedConnection.platform
    )
    return session.execute(stmt).scalars().all()


def find_platform_connection(
    session: Session,
    property_id: str,
    platform: Platform,
    exclude_id: Optional[uuid.UUID] = None,
) -> Optional[FeedConnection]:
    """
    Find the live connection for a (property, platform) pair.

    Inactive and deleted connections do not count.
    """
    conditions = [
        FeedConnection.property_id == property_id,
        FeedConnection.platform == platform,
        FeedConnection.deleted_at.is_(None),
        FeedConnection.status != ConnectionStatus.INACTIVE,
    ]
    if exclude_id is not None:
        conditions.append(FeedConnection.id != exclude_id)

    stmt = select(FeedConnection).where(and_(*conditions)).limit(1)
    return session.execute(stmt).scalars().first()


def get_syncable_connections(session: Session) -> Sequence[FeedConnection]:
    """Get every connection eligible for scheduled syncs (active or error)."""
    stmt = select(FeedConnection).where(
        and_(
            FeedConnection.deleted_at.is_(None),
            FeedConnection.status.in_([ConnectionStatus.ACTIVE, ConnectionStatus.ERROR]),
        )
    ).order_by(FeedConnection.last_synced)
    return session.execute(stmt).scalars().all()


def get_due_connections(session: Session, now: datetime) -> list[FeedConnection]:
    """
    Get syncable connections whose own sync interval has elapsed.

    Connections that never synced come first.
    """
    connections = get_syncable_connections(session)
    due = [c for c in connections if c.is_due(now)]
    due.sort(key=lambda c: (c.next_sync_at() is not None, c.next_sync_at() or now))
    return due


# =============================================================================
# Event Queries
# =============================================================================


def get_active_connection_events(
    session: Session,
    connection_id: uuid.UUID,
) -> Sequence[Event]:
    """Get every active (not retired) event owned by a connection, any status."""
    stmt = select(Event).where(
        and_(
            Event.connection_id == connection_id,
            Event.is_active.is_(True),
            Event.deleted_at.is_(None),
        )
    ).order_by(Event.start_date, Event.created_at)
    return session.execute(stmt).scalars().all()


def get_connection_event_ids(session: Session, connection_id: uuid.UUID) -> list[uuid.UUID]:
    """Get the ids of all events owned by a connection, retired ones included."""
    stmt = select(Event.id).where(Event.connection_id == connection_id)
    return list(session.execute(stmt).scalars().all())


def get_conflict_candidates(session: Session, property_id: str) -> Sequence[Event]:
    """
    Get the events of a property that take part in conflict detection.

    Active, not deleted and CONFIRMED; ordered by start date so that
    pairwise scans are deterministic.
    """
    stmt = select(Event).where(
        and_(
            Event.property_id == property_id,
            Event.is_active.is_(True),
            Event.deleted_at.is_(None),
            Event.status == EventStatus.CONFIRMED,
        )
    ).order_by(Event.start_date, Event.end_date, Event.created_at, Event.id)
    return session.execute(stmt).scalars().all()


def find_overlapping_events(
    session: Session,
    property_id: str,
    start: date,
    end: date,
    exclude_event_id: Optional[uuid.UUID] = None,
) -> Sequence[Event]:
    """
    Find active CONFIRMED events overlapping a half-open date range.

    Args:
        session: Database session
        property_id: Property to search
        start: Range start (inclusive)
        end: Range end (exclusive)
        exclude_event_id: Event to leave out (the one being checked)

    Returns:
        Overlapping events ordered by start date
    """
    conditions = [
        Event.property_id == property_id,
        Event.is_active.is_(True),
        Event.deleted_at.is_(None),
        Event.status == EventStatus.CONFIRMED,
        Event.start_date < end,
        Event.end_date > start,
    ]
    if exclude_event_id is not None:
        conditions.append(Event.id != exclude_event_id)

    stmt = select(Event).where(and_(*conditions)).order_by(
        Event.start_date, Event.created_at, Event.id
    )
    return session.execute(stmt).scalars().all()


def get_events_by_ids(session: Session, event_ids: Iterable[str | uuid.UUID]) -> dict[str, Event]:
    """
    Load events by id.

    Returns:
        Mapping of string id to Event; missing ids are absent
    """
    ids = [uuid.UUID(str(event_id)) for event_id in event_ids]
    if not ids:
        return {}
    stmt = select(Event).where(Event.id.in_(ids))
    return {str(event.id): event for event in session.execute(stmt).scalars().all()}


# =============================================================================
# Conflict Queries
# =============================================================================


def get_open_conflicts(
    session: Session,
    property_id: Optional[str] = None,
) -> Sequence[Conflict]:
    """Get unresolved conflicts, optionally for one property, oldest first."""
    conditions = [
        Conflict.is_active.is_(True),
        Conflict.deleted_at.is_(None),
        Conflict.status != ConflictStatus.RESOLVED,
    ]
    if property_id is not None:
        conditions.append(Conflict.property_id == property_id)

    stmt = select(Conflict).where(and_(*conditions)).order_by(
        Conflict.detected_at, Conflict.created_at
    )
    return session.execute(stmt).scalars().all()


def get_open_conflicts_touching(
    session: Session,
    event_ids: Iterable[str | uuid.UUID],
    property_id: Optional[str] = None,
) -> list[Conflict]:
    """
    Get unresolved conflicts that reference any of the given events.

    Membership is stored as JSON, so the filter runs in Python.
    """
    wanted = {str(event_id) for event_id in event_ids}
    if not wanted:
        return []
    return [
        conflict
        for conflict in get_open_conflicts(session, property_id)
        if wanted.intersection(conflict.event_ids or [])
    ]


def count_open_conflicts(session: Session, property_id: str) -> int:
    return len(get_open_conflicts(session, property_id))

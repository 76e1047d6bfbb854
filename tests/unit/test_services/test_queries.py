"""
Unit tests for the queries service.

Tests connection, event and conflict query functions.
"""

from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

import pytest

from booking_sync.models.conflicts import Conflict
from booking_sync.models.enums import (
    ConflictSeverity,
    ConflictType,
    ConnectionStatus,
    EventStatus,
    Platform,
    ResolutionMethod,
)
from booking_sync.services.queries import (
    count_open_conflicts,
    find_overlapping_events,
    find_platform_connection,
    get_active_connection_events,
    get_conflict_candidates,
    get_connection_by_id,
    get_connection_event_ids,
    get_connections_for_property,
    get_connections_for_user,
    get_due_connections,
    get_events_by_ids,
    get_open_conflicts,
    get_open_conflicts_touching,
    get_syncable_connections,
)

FIXED_NOW = datetime(2025, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def connections(make_connection):
    """One connection per status on the default property."""
    return {
        "airbnb": make_connection(Platform.AIRBNB),
        "vrbo": make_connection(Platform.VRBO, status=ConnectionStatus.ERROR),
        "booking": make_connection(Platform.BOOKING, status=ConnectionStatus.INACTIVE),
    }


class TestConnectionQueries:
    """Test connection lookups."""

    def test_get_by_id(self, db_session, connections):
        airbnb = connections["airbnb"]
        assert get_connection_by_id(db_session, airbnb.id) is airbnb
        assert get_connection_by_id(db_session, uuid4()) is None

    def test_get_by_id_excludes_deleted(self, db_session, connections):
        airbnb = connections["airbnb"]
        airbnb.soft_delete()
        db_session.commit()

        assert get_connection_by_id(db_session, airbnb.id) is None
        assert get_connection_by_id(db_session, airbnb.id, include_deleted=True) is airbnb

    def test_for_property(self, db_session, connections, make_connection):
        make_connection(Platform.AIRBNB, property_id="property-2")

        all_connections = get_connections_for_property(db_session, "property-1")
        live = get_connections_for_property(db_session, "property-1", include_inactive=False)

        assert len(all_connections) == 3
        assert {c.platform for c in live} == {Platform.AIRBNB, Platform.VRBO}

    def test_for_user(self, db_session, connections, make_connection):
        make_connection(Platform.AIRBNB, property_id="property-2", user_id="someone-else")
        assert len(get_connections_for_user(db_session, "owner-1")) == 3
        assert len(get_connections_for_user(db_session, "owner-1", include_inactive=False)) == 2

    def test_find_platform_connection(self, db_session, connections):
        """Inactive connections do not hold their platform."""
        airbnb = connections["airbnb"]
        assert find_platform_connection(db_session, "property-1", Platform.AIRBNB) is airbnb
        assert find_platform_connection(
            db_session, "property-1", Platform.AIRBNB, exclude_id=airbnb.id
        ) is None
        assert find_platform_connection(db_session, "property-1", Platform.BOOKING) is None

    def test_syncable_connections(self, db_session, connections):
        """Scheduled syncs cover active and errored connections."""
        syncable = get_syncable_connections(db_session)
        assert {c.status for c in syncable} == {ConnectionStatus.ACTIVE, ConnectionStatus.ERROR}

    def test_due_connections(self, db_session, make_connection):
        """Never-synced connections come first, then by next due time."""
        overdue = make_connection(
            Platform.AIRBNB, sync_frequency=60, last_synced=FIXED_NOW - timedelta(hours=3)
        )
        never = make_connection(Platform.VRBO)
        make_connection(
            Platform.BOOKING, sync_frequency=60, last_synced=FIXED_NOW - timedelta(minutes=10)
        )
        make_connection(Platform.EXPEDIA, status=ConnectionStatus.INACTIVE)

        due = get_due_connections(db_session, FIXED_NOW)

        assert [c.id for c in due] == [never.id, overdue.id]


class TestEventQueries:
    """Test event lookups."""

    def test_active_connection_events(self, db_session, connections, make_event):
        airbnb = connections["airbnb"]
        cancelled = make_event(
            date(2025, 6, 10), date(2025, 6, 12), connection=airbnb, uid="b", status=EventStatus.CANCELLED
        )
        first = make_event(date(2025, 6, 1), date(2025, 6, 5), connection=airbnb, uid="a")
        retired = make_event(date(2025, 6, 1), date(2025, 6, 5), connection=airbnb, uid="c", is_active=False)
        make_event(date(2025, 6, 1), date(2025, 6, 5))

        events = get_active_connection_events(db_session, airbnb.id)

        assert [e.id for e in events] == [first.id, cancelled.id]
        assert set(get_connection_event_ids(db_session, airbnb.id)) == {first.id, cancelled.id, retired.id}

    def test_conflict_candidates(self, db_session, make_event):
        later = make_event(date(2025, 6, 10), date(2025, 6, 12))
        earlier = make_event(date(2025, 6, 1), date(2025, 6, 5))
        make_event(date(2025, 6, 1), date(2025, 6, 5), status=EventStatus.TENTATIVE)
        make_event(date(2025, 6, 1), date(2025, 6, 5), is_active=False)

        candidates = get_conflict_candidates(db_session, "property-1")

        assert [e.id for e in candidates] == [earlier.id, later.id]

    def test_find_overlapping_half_open(self, db_session, make_event):
        """Events ending on the range start or starting on its end do not overlap."""
        inside = make_event(date(2025, 6, 3), date(2025, 6, 6))
        make_event(date(2025, 5, 28), date(2025, 6, 1))
        make_event(date(2025, 6, 10), date(2025, 6, 12))

        found = find_overlapping_events(db_session, "property-1", date(2025, 6, 1), date(2025, 6, 10))

        assert [e.id for e in found] == [inside.id]
        assert find_overlapping_events(
            db_session, "property-1", date(2025, 6, 1), date(2025, 6, 10), exclude_event_id=inside.id
        ) == []

    def test_events_by_ids(self, db_session, make_event):
        event = make_event(date(2025, 6, 1), date(2025, 6, 5))

        loaded = get_events_by_ids(db_session, [event.id, str(uuid4())])

        assert list(loaded) == [str(event.id)]
        assert get_events_by_ids(db_session, []) == {}


class TestConflictQueries:
    """Test conflict lookups."""

    def _conflict(self, db_session, event_ids, property_id="property-1"):
        conflict = Conflict(
            property_id=property_id,
            event_ids=event_ids,
            conflict_type=ConflictType.OVERLAP,
            severity=ConflictSeverity.HIGH,
            start_date=date(2025, 6, 1),
            end_date=date(2025, 6, 7),
            description="overlap",
        )
        db_session.add(conflict)
        db_session.commit()
        return conflict

    def test_open_conflicts(self, db_session):
        open_conflict = self._conflict(db_session, ["a", "b"])
        resolved = self._conflict(db_session, ["c", "d"])
        resolved.resolve(ResolutionMethod.MANUAL)
        self._conflict(db_session, ["e", "f"], property_id="property-2")
        db_session.commit()

        assert [c.id for c in get_open_conflicts(db_session, "property-1")] == [open_conflict.id]
        assert len(get_open_conflicts(db_session)) == 2
        assert count_open_conflicts(db_session, "property-1") == 1

    def test_open_conflicts_touching(self, db_session):
        ab = self._conflict(db_session, ["a", "b"])
        self._conflict(db_session, ["c", "d"])

        assert [c.id for c in get_open_conflicts_touching(db_session, ["b", "x"])] == [ab.id]
        assert get_open_conflicts_touching(db_session, []) == []

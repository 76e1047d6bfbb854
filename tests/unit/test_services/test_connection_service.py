"""
Unit tests for feed connection management.
"""

import uuid
from datetime import date

import pytest
from sqlalchemy import select

from booking_sync.exceptions import NotFoundError, ValidationError
from booking_sync.models.connections import FeedConnection
from booking_sync.models.enums import ConnectionStatus, Platform
from booking_sync.services import queries
from booking_sync.services.connections import ConnectionService

URL = "https://feeds.example.com/listing-1/airbnb.ics"
VRBO_URL = "https://feeds.example.com/listing-1/vrbo.ics"


@pytest.fixture
def service(session_factory, feed_client, properties, audit_sink, settings):
    return ConnectionService(
        session_factory,
        feed_client,
        properties=properties,
        audit=audit_sink,
        settings=settings,
    )


@pytest.fixture
def valid_feeds(feed_server, ics):
    document = ics.calendar(ics.event("a", date(2025, 6, 1), date(2025, 6, 5)))
    feed_server.feeds[URL] = document
    feed_server.feeds[VRBO_URL] = document
    return feed_server


class TestRegisterConnection:
    """Test connection registration."""

    def test_register(self, db_session, service, valid_feeds, audit_sink):
        result = service.register_connection("property-1", "owner-1", "Airbnb", URL)

        assert result.success is True
        assert result.message == "Airbnb calendar connected"
        connection = result.connection
        assert connection.platform == Platform.AIRBNB
        assert connection.status == ConnectionStatus.ACTIVE
        assert connection.sync_frequency == 60
        assert db_session.get(FeedConnection, connection.id) is not None

        [entry] = audit_sink.entries
        assert entry.action == "connection.created"
        assert entry.details["platform"] == "airbnb"

    def test_webcal_url_stored_as_https(self, service, valid_feeds):
        result = service.register_connection(
            "property-1", "owner-1", Platform.AIRBNB, URL.replace("https://", "webcal://")
        )
        assert result.connection.feed_url == URL

    def test_custom_frequency(self, service, valid_feeds):
        result = service.register_connection("property-1", "owner-1", "vrbo", VRBO_URL, sync_frequency=30)
        assert result.connection.sync_frequency == 30

    def test_frequency_below_minimum(self, service, valid_feeds):
        with pytest.raises(ValidationError, match="at least 15"):
            service.register_connection("property-1", "owner-1", "airbnb", URL, sync_frequency=5)

    def test_duplicate_platform(self, service, valid_feeds):
        service.register_connection("property-1", "owner-1", "airbnb", URL)

        with pytest.raises(ValidationError, match="already exists"):
            service.register_connection("property-1", "owner-1", "airbnb", VRBO_URL)

    def test_inactive_connection_frees_platform(self, service, valid_feeds, make_connection):
        make_connection(Platform.AIRBNB, status=ConnectionStatus.INACTIVE)
        result = service.register_connection("property-1", "owner-1", "airbnb", URL)
        assert result.success is True

    def test_concurrent_duplicate_rejected_by_database(
        self, db_session, service, valid_feeds, make_connection, monkeypatch
    ):
        """A duplicate that slips past the lookup is still refused on commit."""
        existing = make_connection(Platform.AIRBNB, feed_url=URL)
        monkeypatch.setattr(queries, "find_platform_connection", lambda *args, **kwargs: None)

        with pytest.raises(ValidationError, match="already exists") as exc_info:
            service.register_connection("property-1", "owner-1", "airbnb", VRBO_URL)

        assert exc_info.value.original_error is not None
        db_session.expire_all()
        assert db_session.execute(select(FeedConnection.id)).scalars().all() == [existing.id]

    @pytest.mark.parametrize("platform", ["manual", "myspace"])
    def test_rejected_platforms(self, service, valid_feeds, platform):
        with pytest.raises(ValidationError):
            service.register_connection("property-1", "owner-1", platform, URL)

    def test_invalid_feed(self, db_session, service, feed_server):
        """Feeds that cannot be fetched are not registered."""
        with pytest.raises(ValidationError, match="Invalid iCal feed"):
            service.register_connection("property-1", "owner-1", "airbnb", URL)
        assert db_session.query(FeedConnection).count() == 0

    def test_unsupported_scheme(self, service):
        with pytest.raises(ValidationError):
            service.register_connection("property-1", "owner-1", "airbnb", "ftp://example.com/a.ics")

    def test_unknown_property(self, service, valid_feeds):
        with pytest.raises(NotFoundError):
            service.register_connection("property-9", "owner-1", "airbnb", URL)

    def test_not_owner(self, service, valid_feeds):
        """Other users' properties look like they do not exist."""
        with pytest.raises(NotFoundError):
            service.register_connection("property-1", "intruder", "airbnb", URL)


class TestUpdateConnection:
    """Test connection edits."""

    def test_update_frequency(self, service, valid_feeds, make_connection, audit_sink):
        connection = make_connection(Platform.AIRBNB, feed_url=URL)

        result = service.update_connection(connection.id, user_id="owner-1", sync_frequency=120)

        assert result.message == "Connection updated"
        assert result.connection.sync_frequency == 120
        assert audit_sink.entries[-1].details == {"sync_frequency": 120}

    def test_no_changes(self, service, make_connection, audit_sink):
        connection = make_connection(Platform.AIRBNB, feed_url=URL)

        result = service.update_connection(connection.id, sync_frequency=60, feed_url=URL)

        assert result.message == "No changes"
        assert audit_sink.entries == []

    def test_new_url_validated(self, db_session, service, make_connection):
        connection = make_connection(Platform.AIRBNB, feed_url=URL)

        with pytest.raises(ValidationError, match="Invalid iCal feed"):
            service.update_connection(connection.id, feed_url="https://feeds.example.com/missing.ics")

        db_session.expire_all()
        assert db_session.get(FeedConnection, connection.id).feed_url == URL

    def test_platform_change_checks_duplicates(self, service, make_connection):
        make_connection(Platform.VRBO)
        connection = make_connection(Platform.AIRBNB)

        with pytest.raises(ValidationError, match="already exists"):
            service.update_connection(connection.id, platform="vrbo")

    def test_platform_change_rejected_by_database(self, db_session, service, make_connection, monkeypatch):
        make_connection(Platform.VRBO)
        connection = make_connection(Platform.AIRBNB)
        monkeypatch.setattr(queries, "find_platform_connection", lambda *args, **kwargs: None)

        with pytest.raises(ValidationError, match="already exists"):
            service.update_connection(connection.id, platform="vrbo")

        db_session.expire_all()
        assert db_session.get(FeedConnection, connection.id).platform == Platform.AIRBNB

    def test_platform_change(self, service, make_connection):
        connection = make_connection(Platform.AIRBNB)
        result = service.update_connection(connection.id, platform="booking.com")
        assert result.connection.platform == Platform.BOOKING

    def test_wrong_property(self, service, make_connection):
        connection = make_connection(Platform.AIRBNB)
        with pytest.raises(NotFoundError):
            service.update_connection(connection.id, property_id="property-2", sync_frequency=30)


class TestTestConnection:
    """Test connection health checks."""

    def test_valid_feed_marks_active(self, db_session, service, valid_feeds, make_connection):
        connection = make_connection(Platform.AIRBNB, feed_url=URL, status=ConnectionStatus.ERROR)

        result = service.test_connection(connection.id)

        assert result.success is True
        assert result.status == ConnectionStatus.ACTIVE
        assert result.entry_count == 1
        assert result.message == "iCal URL is valid and accessible"
        db_session.expire_all()
        refreshed = db_session.get(FeedConnection, connection.id)
        assert refreshed.error_message is None
        # Testing does not count as a sync
        assert refreshed.sync_count == 0

    def test_invalid_feed_marks_error(self, db_session, service, make_connection):
        connection = make_connection(Platform.AIRBNB, feed_url=URL)

        result = service.test_connection(connection.id)

        assert result.success is False
        assert result.code == "fetch_failed"
        assert result.status == ConnectionStatus.ERROR
        db_session.expire_all()
        assert "404" in db_session.get(FeedConnection, connection.id).error_message

    def test_inactive_keeps_status(self, db_session, service, make_connection):
        connection = make_connection(Platform.AIRBNB, feed_url=URL, status=ConnectionStatus.INACTIVE)

        result = service.test_connection(connection.id)

        assert result.status == ConnectionStatus.INACTIVE
        db_session.expire_all()
        refreshed = db_session.get(FeedConnection, connection.id)
        assert refreshed.status == ConnectionStatus.INACTIVE
        assert refreshed.error_message is not None

    def test_unknown_connection(self, service):
        with pytest.raises(NotFoundError):
            service.test_connection(uuid.uuid4())


class TestLookups:
    """Test connection lookups."""

    def test_get_connection(self, service, make_connection):
        connection = make_connection(Platform.AIRBNB)
        assert service.get_connection(connection.id).id == connection.id
        with pytest.raises(NotFoundError):
            service.get_connection(connection.id, property_id="property-2")

    def test_list_connections(self, service, make_connection):
        make_connection(Platform.AIRBNB)
        make_connection(Platform.VRBO, status=ConnectionStatus.INACTIVE)
        make_connection(Platform.AIRBNB, property_id="property-2")

        assert len(service.list_connections("property-1")) == 2
        assert len(service.list_user_connections("owner-1")) == 3

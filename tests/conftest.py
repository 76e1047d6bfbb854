"""
Pytest configuration and fixtures for Booking Sync tests.

Provides database fixtures, recording collaborators, feed builders and
factories for connections and events.
"""

from datetime import date, datetime, timezone
from types import SimpleNamespace
from typing import Callable, Generator, Optional

import httpx
import pytest
import sqlalchemy as sa
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from tenacity import wait_none

from booking_sync.config import Settings
from booking_sync.integrations.feeds.client import FeedClient
from booking_sync.integrations.sinks import RecordingAuditSink, RecordingNotificationSink
from booking_sync.models.base import Base
from booking_sync.models.connections import FeedConnection
from booking_sync.models.enums import (
    ConnectionStatus,
    EventStatus,
    EventType,
    Platform,
)
from booking_sync.models.events import Event
from booking_sync.services.conflicts import ConflictEngine
from booking_sync.services.notifications import NotificationDispatcher
from booking_sync.services.reconciler import FeedReconciler


# Reference "now" for scenarios using 2025 dates
FIXED_NOW = datetime(2025, 5, 1, 12, 0, tzinfo=timezone.utc)

PROPERTY_ID = "property-1"
OWNER_ID = "owner-1"


# Configure SQLite to enforce foreign key constraints in tests
@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    """Enable foreign key constraints for SQLite connections."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(scope="function")
def engine(tmp_path) -> Generator[Engine, None, None]:
    """
    File-backed SQLite engine, created fresh for each test.

    A file database lets sync workers use their own connections from
    background threads.
    """
    db_engine = create_engine(
        f"sqlite:///{tmp_path / 'booking_sync.db'}",
        echo=False,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=db_engine)
    try:
        yield db_engine
    finally:
        with db_engine.begin() as connection:
            connection.execute(sa.text("PRAGMA foreign_keys=OFF"))
        Base.metadata.drop_all(bind=db_engine)
        db_engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    """
    Database session for direct model and engine tests.

    Yields:
        Session: SQLAlchemy session for database operations
    """
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# =============================================================================
# Settings and collaborators
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from any local .env file."""
    return Settings(
        _env_file=None,
        sync_max_workers=1,
        sync_batch_size=50,
        feed_max_retries=3,
        timezone="UTC",
    )


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def notification_sink() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def dispatcher(notification_sink) -> NotificationDispatcher:
    return NotificationDispatcher(notification_sink)


@pytest.fixture
def conflict_engine() -> ConflictEngine:
    return ConflictEngine()


class FakePropertyDirectory:
    """Property directory backed by a dict of property id to owner id."""

    def __init__(self, owners: Optional[dict[str, str]] = None):
        self.owners = owners if owners is not None else {PROPERTY_ID: OWNER_ID}

    def property_exists(self, property_id: str) -> bool:
        return property_id in self.owners

    def is_owner(self, property_id: str, user_id: str) -> bool:
        return self.owners.get(property_id) == user_id


@pytest.fixture
def properties() -> FakePropertyDirectory:
    return FakePropertyDirectory()


# =============================================================================
# Feeds
# =============================================================================


def build_vevent(
    uid: Optional[str],
    start: date,
    end: Optional[date] = None,
    summary: str = "Reserved",
    status: Optional[str] = None,
) -> str:
    """Render one all-day VEVENT block."""
    lines = ["BEGIN:VEVENT"]
    if uid is not None:
        lines.append(f"UID:{uid}")
    lines.append(f"DTSTART;VALUE=DATE:{start.strftime('%Y%m%d')}")
    if end is not None:
        lines.append(f"DTEND;VALUE=DATE:{end.strftime('%Y%m%d')}")
    lines.append(f"SUMMARY:{summary}")
    if status is not None:
        lines.append(f"STATUS:{status}")
    lines.append("END:VEVENT")
    return "\r\n".join(lines)


def build_feed(*vevents: str) -> str:
    """Wrap VEVENT blocks into a calendar document."""
    return "\r\n".join(
        [
            "BEGIN:VCALENDAR",
            "VERSION:2.0",
            "PRODID:-//Test//Booking Sync//EN",
            *vevents,
            "END:VCALENDAR",
            "",
        ]
    )


@pytest.fixture
def ics() -> SimpleNamespace:
    """Feed document builders: ``ics.event(...)`` and ``ics.calendar(...)``."""
    return SimpleNamespace(event=build_vevent, calendar=build_feed)


class FeedServer:
    """
    In-memory feed host served through httpx.MockTransport.

    ``feeds`` maps URL to document text; ``responses`` maps URL to a list of
    status codes returned before the document (for retry tests).
    """

    def __init__(self):
        self.feeds: dict[str, str] = {}
        self.responses: dict[str, list[int]] = {}
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        queued = self.responses.get(url)
        if queued:
            return httpx.Response(queued.pop(0), text="error")
        if url not in self.feeds:
            return httpx.Response(404, text="not found")
        return httpx.Response(
            200,
            text=self.feeds[url],
            headers={"Content-Type": "text/calendar; charset=utf-8"},
        )

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def feed_server() -> FeedServer:
    return FeedServer()


@pytest.fixture
def feed_client(feed_server, settings) -> Generator[FeedClient, None, None]:
    client = FeedClient(settings=settings, transport=feed_server.transport(), wait=wait_none())
    try:
        yield client
    finally:
        client.close()


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_connection(db_session) -> Callable[..., FeedConnection]:
    """Factory persisting FeedConnection rows."""

    def _make(
        platform: Platform = Platform.AIRBNB,
        property_id: str = PROPERTY_ID,
        user_id: str = OWNER_ID,
        feed_url: Optional[str] = None,
        status: ConnectionStatus = ConnectionStatus.ACTIVE,
        sync_frequency: int = 60,
        last_synced: Optional[datetime] = None,
    ) -> FeedConnection:
        connection = FeedConnection(
            property_id=property_id,
            user_id=user_id,
            platform=platform,
            feed_url=feed_url or f"https://feeds.example.com/{property_id}/{platform.value}.ics",
            status=status,
            sync_frequency=sync_frequency,
            last_synced=last_synced,
        )
        db_session.add(connection)
        db_session.commit()
        return connection

    return _make


@pytest.fixture
def make_event(db_session) -> Callable[..., Event]:
    """Factory persisting Event rows."""

    def _make(
        start: date,
        end: date,
        property_id: str = PROPERTY_ID,
        connection: Optional[FeedConnection] = None,
        uid: Optional[str] = None,
        summary: str = "Reserved",
        event_type: EventType = EventType.BOOKING,
        status: EventStatus = EventStatus.CONFIRMED,
        is_active: bool = True,
    ) -> Event:
        event = Event(
            property_id=property_id,
            connection_id=connection.id if connection else None,
            platform=connection.platform if connection else Platform.MANUAL,
            external_uid=uid,
            summary=summary,
            start_date=start,
            end_date=end,
            event_type=event_type,
            status=status,
            is_active=is_active,
        )
        db_session.add(event)
        db_session.commit()
        return event

    return _make


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def reconciler(session_factory, feed_client, conflict_engine, dispatcher, settings, clock):
    """FeedReconciler wired to the in-memory feed server and recording sinks."""
    return FeedReconciler(
        session_factory,
        feed_client,
        conflict_engine,
        dispatcher,
        settings=settings,
        clock=clock,
    )

"""
Integration test fixtures for Booking Sync.

Wires every service against one feed server and database so workflows run
through the same collaborators a worker would use.
"""

from types import SimpleNamespace

import pytest

from booking_sync.services.connections import ConnectionService
from booking_sync.services.events import EventService
from booking_sync.services.lifecycle import ConnectionLifecycle
from booking_sync.services.status import SyncStatusService


@pytest.fixture
def app(
    session_factory,
    feed_client,
    reconciler,
    conflict_engine,
    dispatcher,
    properties,
    audit_sink,
    settings,
    clock,
):
    """All services sharing one set of collaborators."""
    return SimpleNamespace(
        connections=ConnectionService(
            session_factory, feed_client, properties=properties, audit=audit_sink, settings=settings
        ),
        events=EventService(session_factory, conflict_engine, properties=properties, audit=audit_sink),
        lifecycle=ConnectionLifecycle(
            session_factory,
            conflict_engine,
            dispatcher,
            audit=audit_sink,
            properties=properties,
            reconciler=reconciler,
        ),
        status=SyncStatusService(session_factory, clock=clock),
        reconciler=reconciler,
        conflicts=conflict_engine,
    )


@pytest.fixture
def publish(feed_server, ics):
    """Serve the given VEVENT blocks at a URL."""

    def _publish(url, *vevents):
        feed_server.feeds[url] = ics.calendar(*vevents)

    return _publish

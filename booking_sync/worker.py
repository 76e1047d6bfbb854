"""
Sync worker entry point.

Wires the engine together and runs the periodic sync triggers until
interrupted:

    python -m booking_sync
"""

import logging
import signal
import threading
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import sessionmaker

from booking_sync.config import Settings, get_settings
from booking_sync.integrations.feeds import FeedClient
from booking_sync.integrations.sinks import LoggingNotificationSink, WebhookNotificationSink
from booking_sync.services.conflicts import ConflictEngine
from booking_sync.services.notifications import NotificationDispatcher
from booking_sync.services.reconciler import FeedReconciler
from booking_sync.services.scheduler import SyncScheduler

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


@dataclass
class Worker:
    """The wired components of a running worker."""

    feed_client: FeedClient
    reconciler: FeedReconciler
    scheduler: SyncScheduler

    def close(self) -> None:
        self.scheduler.stop()
        self.feed_client.close()


def build_worker(
    session_factory: sessionmaker,
    settings: Optional[Settings] = None,
) -> Worker:
    """Create the feed client, sinks, engine, reconciler and scheduler."""
    settings = settings or get_settings()

    if settings.uses_webhooks:
        sink = WebhookNotificationSink(settings.webhook_url, settings.webhook_secret)
    else:
        sink = LoggingNotificationSink()

    feed_client = FeedClient(settings=settings)
    reconciler = FeedReconciler(
        session_factory=session_factory,
        feed_client=feed_client,
        conflict_engine=ConflictEngine(),
        notifications=NotificationDispatcher(sink),
        settings=settings,
    )
    scheduler = SyncScheduler(reconciler, settings=settings)
    return Worker(feed_client=feed_client, reconciler=reconciler, scheduler=scheduler)


def main() -> None:
    settings = get_settings()
    configure_logging(settings)

    # Importing the database module creates the engine from settings
    from booking_sync.database import SessionLocal, check_connection, init_db

    if settings.is_development and not settings.uses_postgresql:
        init_db()
    if not check_connection():
        raise SystemExit(1)

    worker = build_worker(SessionLocal, settings)
    stopped = threading.Event()

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stopped.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    worker.scheduler.start()
    try:
        stopped.wait()
    finally:
        worker.close()


if __name__ == "__main__":
    main()

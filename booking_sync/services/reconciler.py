"""
Feed reconciliation.

Makes the stored events of one feed connection match the feed's current
contents:

1. fetch and normalize the feed (entries ending before today are skipped)
2. diff against the connection's active events by external UID
3. apply creates, updates and cancels in bounded batches
4. notify the owner about new, modified and cancelled bookings
5. record connection health
6. rescan the property's conflicts, whatever happened before

Scheduled and manual syncs share sync_connection(). A connection is never
synced twice at once: each run first claims a lease on the connection row
with a conditional UPDATE and releases it when done.
"""

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Iterator, Optional, Sequence, TypeVar
from zoneinfo import ZoneInfo

from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from booking_sync.config import Settings, get_settings
from booking_sync.exceptions import BookingSyncError, NotFoundError
from booking_sync.integrations.feeds.client import FeedClient
from booking_sync.integrations.feeds.normalizer import EventNormalizer, NormalizedEvent
from booking_sync.models.base import utcnow
from booking_sync.models.connections import FeedConnection
from booking_sync.models.enums import (
    ConflictType,
    ConnectionStatus,
    EventStatus,
    EventType,
    NotificationSeverity,
    NotificationType,
)
from booking_sync.models.events import Event
from booking_sync.schemas import (
    ConnectionSyncResult,
    PropertySyncResult,
    ScheduledSyncResult,
    UserSyncResult,
)
from booking_sync.services import queries
from booking_sync.services.conflicts import ConflictEngine
from booking_sync.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

T = TypeVar("T")

def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most ``size`` items."""
    for start in range(0, len(items), size):
        yield items[start:start + size]


# =============================================================================
# Planning
# =============================================================================


@dataclass
class EventUpdate:
    """A stored event and the fields that differ from the feed."""

    event: Event
    changes: dict


@dataclass
class ReconciliationPlan:
    """Create/update/cancel sets for one connection."""

    creates: list[NormalizedEvent] = field(default_factory=list)
    updates: list[EventUpdate] = field(default_factory=list)
    cancels: list[Event] = field(default_factory=list)
    unchanged: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.creates or self.updates or self.cancels)


def _diff(stored: Event, remote: NormalizedEvent) -> dict:
    changes = {}
    if (stored.summary or "") != remote.summary:
        changes["summary"] = remote.summary
        if stored.event_type != remote.event_type:
            changes["event_type"] = remote.event_type
    if stored.start_date != remote.start_date:
        changes["start_date"] = remote.start_date
    if stored.end_date != remote.end_date:
        changes["end_date"] = remote.end_date
    if stored.status != remote.status:
        changes["status"] = remote.status
    return changes


def plan_reconciliation(
    remote: Sequence[NormalizedEvent],
    stored: Sequence[Event],
    frozen_before: Optional[date] = None,
) -> ReconciliationPlan:
    """
    Diff a feed against the stored events of its connection.

    Args:
        remote: Normalized feed events (unique UIDs)
        stored: Active events of the connection, any status
        frozen_before: Stored events ending before this day are left alone

    Returns:
        ReconciliationPlan
    """
    plan = ReconciliationPlan()
    by_uid = {event.external_uid: event for event in stored if event.external_uid}
    seen: set[str] = set()

    for item in remote:
        seen.add(item.external_uid)
        existing = by_uid.get(item.external_uid)
        if existing is None:
            plan.creates.append(item)
            continue
        if frozen_before is not None and existing.end_date < frozen_before:
            plan.unchanged += 1
            continue
        changes = _diff(existing, item)
        if changes:
            plan.updates.append(EventUpdate(existing, changes))
        else:
            plan.unchanged += 1

    for uid, event in by_uid.items():
        if uid in seen or event.status == EventStatus.CANCELLED:
            continue
        if frozen_before is not None and event.end_date < frozen_before:
            continue
        plan.cancels.append(event)

    return plan


@dataclass
class ApplyOutcome:
    created: list[Event] = field(default_factory=list)
    updated: list[Event] = field(default_factory=list)
    cancelled: list[Event] = field(default_factory=list)
    failed_writes: int = 0

    @property
    def touched_ids(self) -> set[str]:
        return {str(e.id) for e in self.created + self.updated}


# =============================================================================
# Reconciler
# =============================================================================


class FeedReconciler:
    """
    Runs reconciliation for connections, on demand or on schedule.

    Each connection sync uses its own session from ``session_factory`` so
    syncs can run on worker threads.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        feed_client: FeedClient,
        conflict_engine: ConflictEngine,
        notifications: NotificationDispatcher,
        normalizer: Optional[EventNormalizer] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._feed_client = feed_client
        self._conflict_engine = conflict_engine
        self._notifications = notifications
        self._settings = settings or get_settings()
        self._normalizer = normalizer or EventNormalizer(timezone=self._settings.timezone)
        self._clock = clock
        self._zone = ZoneInfo(self._settings.timezone)

    def today(self) -> date:
        """Current day in the configured timezone."""
        return self._clock().astimezone(self._zone).date()

    # -------------------------------------------------------------------------
    # Leases
    # -------------------------------------------------------------------------

    def _claim_lease(self, connection_id: uuid.UUID) -> bool:
        now = self._clock()
        with self._session_factory() as session:
            result = session.execute(
                update(FeedConnection)
                .where(
                    FeedConnection.id == connection_id,
                    or_(
                        FeedConnection.sync_lease_until.is_(None),
                        FeedConnection.sync_lease_until < now,
                    ),
                )
                .values(sync_lease_until=now + timedelta(seconds=self._settings.sync_lease_seconds))
                .execution_options(synchronize_session=False)
            )
            session.commit()
            return result.rowcount == 1

    def _release_lease(self, connection_id: uuid.UUID) -> None:
        try:
            with self._session_factory() as session:
                session.execute(
                    update(FeedConnection)
                    .where(FeedConnection.id == connection_id)
                    .values(sync_lease_until=None)
                    .execution_options(synchronize_session=False)
                )
                session.commit()
        except SQLAlchemyError:
            # An unreleased lease expires on its own
            logger.exception(f"Failed to release sync lease for connection {connection_id}")

    # -------------------------------------------------------------------------
    # Single connection
    # -------------------------------------------------------------------------

    def sync_connection(self, connection_id: uuid.UUID) -> ConnectionSyncResult:
        """
        Sync one connection.

        Feed and validation errors are reported in the result; the
        connection is marked ERROR and the property rescan still runs.
        Unexpected errors are recorded the same way and re-raised.
        Inactive connections are not synced; they resume only through
        reactivation.

        Args:
            connection_id: Connection to sync

        Returns:
            ConnectionSyncResult (skipped=True if the connection is inactive
            or another sync holds it)

        Raises:
            NotFoundError: If the connection does not exist or is deleted
        """
        with self._session_factory() as session:
            connection = queries.get_connection_by_id(session, connection_id)
            if connection is None:
                raise NotFoundError(f"Connection {connection_id} not found")
            if connection.status == ConnectionStatus.INACTIVE:
                return self._inactive_result(connection)
            skipped = ConnectionSyncResult(
                connection_id=connection.id,
                property_id=connection.property_id,
                platform=connection.platform,
                skipped=True,
                code="sync_in_progress",
                message="Connection is already being synced",
            )

        if not self._claim_lease(connection_id):
            logger.info(f"Skipping connection {connection_id}: sync already in progress")
            return skipped

        try:
            with self._session_factory() as session:
                connection = session.get(FeedConnection, connection_id)
                # Deactivated while waiting for the lease
                if connection.status == ConnectionStatus.INACTIVE:
                    return self._inactive_result(connection)
                return self._run(session, connection)
        finally:
            self._release_lease(connection_id)

    @staticmethod
    def _inactive_result(connection: FeedConnection) -> ConnectionSyncResult:
        logger.info(f"Skipping connection {connection.id}: connection is inactive")
        return ConnectionSyncResult(
            connection_id=connection.id,
            property_id=connection.property_id,
            platform=connection.platform,
            skipped=True,
            success=False,
            code="connection_inactive",
            message=f"{connection.platform.label} connection is inactive; reactivate it to sync",
        )

    def _run(self, session: Session, connection: FeedConnection) -> ConnectionSyncResult:
        property_id = connection.property_id
        user_id = connection.user_id
        platform = connection.platform
        result = ConnectionSyncResult(
            connection_id=connection.id,
            property_id=property_id,
            platform=platform,
        )
        outcome = ApplyOutcome()
        logger.info(f"Syncing {platform.value} feed for property {property_id} ({connection.id})")

        try:
            try:
                today = self.today() if self._settings.skip_past_events else None
                entries = self._feed_client.fetch_entries(connection.feed_url)
                remote = self._normalizer.normalize(entries, platform, not_ending_before=today)
                stored = queries.get_active_connection_events(session, connection.id)
                plan = plan_reconciliation(remote, stored, frozen_before=today)

                outcome = self._apply(session, connection, plan)
                self._notify_changes(session, user_id, property_id, platform.label, outcome)

                connection.record_success(self._clock())
                session.commit()

                result.events_created = len(outcome.created)
                result.events_updated = len(outcome.updated)
                result.events_cancelled = len(outcome.cancelled)
                result.events_unchanged = plan.unchanged
                result.failed_writes = outcome.failed_writes
                result.message = (
                    f"Synced {platform.label}: {result.events_created} created, "
                    f"{result.events_updated} updated, {result.events_cancelled} cancelled"
                )
                logger.info(f"{result.message} (property {property_id})")

            except BookingSyncError as e:
                session.rollback()
                self._record_failure(session, connection, e.message)
                result.success = False
                result.code = e.code
                result.message = e.message
                self._notify_failure(session, user_id, property_id, platform.label, e.message)

            except Exception as e:
                session.rollback()
                logger.exception(f"Unexpected failure syncing connection {connection.id}")
                self._record_failure(session, connection, str(e) or type(e).__name__)
                self._notify_failure(session, user_id, property_id, platform.label, str(e))
                raise

        finally:
            self._rescan(session, property_id, user_id, outcome, result)

        return result

    def _apply(
        self,
        session: Session,
        connection: FeedConnection,
        plan: ReconciliationPlan,
    ) -> ApplyOutcome:
        """Write the plan in batches; a failed batch is logged and skipped."""
        outcome = ApplyOutcome()
        size = self._settings.sync_batch_size
        now = self._clock()
        connection_id = connection.id
        property_id = connection.property_id
        platform = connection.platform

        for batch in chunked(plan.creates, size):
            events = [
                Event(
                    property_id=property_id,
                    connection_id=connection_id,
                    platform=platform,
                    external_uid=item.external_uid,
                    summary=item.summary,
                    description=item.description,
                    start_date=item.start_date,
                    end_date=item.end_date,
                    event_type=item.event_type,
                    status=item.status,
                    cancelled_at=now if item.status == EventStatus.CANCELLED else None,
                )
                for item in batch
            ]
            if self._commit_batch(session, "create", connection_id, events, lambda: session.add_all(events)):
                outcome.created.extend(events)
            else:
                outcome.failed_writes += len(batch)

        for batch in chunked(plan.updates, size):
            def write_updates(batch=batch):
                for item in batch:
                    for name, value in item.changes.items():
                        setattr(item.event, name, value)
                    if "status" in item.changes:
                        item.event.cancelled_at = (
                            now if item.changes["status"] == EventStatus.CANCELLED else None
                        )
                    item.event.updated_at = now

            events = [item.event for item in batch]
            if self._commit_batch(session, "update", connection_id, events, write_updates):
                outcome.updated.extend(events)
            else:
                outcome.failed_writes += len(batch)

        for batch in chunked(plan.cancels, size):
            def write_cancels(batch=batch):
                for event in batch:
                    event.cancel(now)
                    event.updated_at = now

            if self._commit_batch(session, "cancel", connection_id, list(batch), write_cancels):
                outcome.cancelled.extend(batch)
            else:
                outcome.failed_writes += len(batch)

        return outcome

    @staticmethod
    def _commit_batch(
        session: Session,
        kind: str,
        connection_id: uuid.UUID,
        events: list[Event],
        write: Callable[[], None],
    ) -> bool:
        try:
            write()
            session.commit()
            return True
        except SQLAlchemyError:
            session.rollback()
            for event in events:
                if event in session.new:
                    session.expunge(event)
            logger.exception(
                f"Failed to {kind} a batch of {len(events)} events for connection {connection_id}"
            )
            return False

    def _record_failure(self, session: Session, connection: FeedConnection, message: str) -> None:
        try:
            connection.record_failure(message, self._clock())
            session.commit()
            logger.warning(f"Connection {connection.id} marked as error: {message}")
        except SQLAlchemyError:
            session.rollback()
            logger.exception(f"Failed to record sync failure for connection {connection.id}")

    def _rescan(
        self,
        session: Session,
        property_id: str,
        user_id: str,
        outcome: ApplyOutcome,
        result: ConnectionSyncResult,
    ) -> None:
        try:
            rescan = self._conflict_engine.rescan_property(session, property_id)
        except Exception:
            logger.exception(f"Conflict rescan failed after syncing property {property_id}")
            return

        result.conflicts_detected = rescan.total_conflicts
        touched = outcome.touched_ids
        if not touched or not rescan.overlap_conflicts:
            return

        involved = [
            conflict
            for conflict in queries.get_open_conflicts(session, property_id)
            if conflict.conflict_type == ConflictType.OVERLAP and touched.intersection(conflict.event_ids)
        ]
        if involved:
            self._notifications.notify(
                session,
                user_id,
                property_id,
                NotificationType.CONFLICT_DETECTED,
                "Booking conflict detected",
                f"{len(involved)} overlapping booking(s) found after the latest calendar sync.",
                NotificationSeverity.WARNING,
            )

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    def _notify_changes(
        self,
        session: Session,
        user_id: str,
        property_id: str,
        platform_label: str,
        outcome: ApplyOutcome,
    ) -> None:
        cap = self._settings.new_booking_notification_cap
        bookings = [
            e for e in outcome.created
            if e.event_type == EventType.BOOKING and e.status != EventStatus.CANCELLED
        ]

        for event in bookings[:cap]:
            self._notifications.notify(
                session,
                user_id,
                property_id,
                NotificationType.NEW_BOOKING,
                f"New {platform_label} booking",
                f"{event.summary or 'Booking'}: "
                f"{event.start_date.isoformat()} to {event.end_date.isoformat()}",
            )
        if len(bookings) > cap:
            self._notifications.notify(
                session,
                user_id,
                property_id,
                NotificationType.NEW_BOOKING,
                f"{len(bookings) - cap} more new {platform_label} bookings",
                f"{len(bookings)} new bookings were imported in total.",
            )

        if outcome.updated:
            self._notifications.notify(
                session,
                user_id,
                property_id,
                NotificationType.MODIFIED_BOOKING,
                f"{platform_label} bookings modified",
                f"{len(outcome.updated)} booking(s) changed in the latest sync.",
            )
        if outcome.cancelled:
            self._notifications.notify(
                session,
                user_id,
                property_id,
                NotificationType.CANCELLED_BOOKING,
                f"{platform_label} bookings cancelled",
                f"{len(outcome.cancelled)} booking(s) no longer appear in the feed.",
                NotificationSeverity.WARNING,
            )

    def _notify_failure(
        self,
        session: Session,
        user_id: str,
        property_id: str,
        platform_label: str,
        message: str,
    ) -> None:
        self._notifications.notify(
            session,
            user_id,
            property_id,
            NotificationType.SYNC_FAILURE,
            f"{platform_label} sync failed",
            message,
            NotificationSeverity.ERROR,
        )

    # -------------------------------------------------------------------------
    # Multiple connections
    # -------------------------------------------------------------------------

    def _sync_safely(self, connection: FeedConnection) -> ConnectionSyncResult:
        try:
            return self.sync_connection(connection.id)
        except Exception as e:
            code = e.code if isinstance(e, BookingSyncError) else "internal_error"
            return ConnectionSyncResult(
                connection_id=connection.id,
                property_id=connection.property_id,
                platform=connection.platform,
                success=False,
                code=code,
                message=str(e) or type(e).__name__,
            )

    def _sync_many(self, connections: Sequence[FeedConnection]) -> list[ConnectionSyncResult]:
        if not connections:
            return []
        workers = min(self._settings.sync_max_workers, len(connections))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="feed-sync") as pool:
            return list(pool.map(self._sync_safely, connections))

    def sync_property(self, property_id: str, user_id: Optional[str] = None) -> PropertySyncResult:
        """
        Sync every active or errored connection of a property.

        Args:
            property_id: Property to sync
            user_id: If given, only that user's connections

        Returns:
            PropertySyncResult with one row per connection
        """
        with self._session_factory() as session:
            connections = [
                c for c in queries.get_connections_for_property(session, property_id, include_inactive=False)
                if user_id is None or c.user_id == user_id
            ]

        if not connections:
            return PropertySyncResult(
                property_id=property_id,
                code="no_connections",
                message="No active calendar connections for this property",
            )

        results = self._sync_many(connections)
        summary = PropertySyncResult(property_id=property_id, results=results)
        summary.success = summary.failed_syncs == 0
        summary.code = None if summary.success else "partial_failure"
        summary.message = (
            f"{summary.successful_syncs}/{summary.connections_processed} connections synced"
        )
        return summary

    def sync_user(self, user_id: str) -> UserSyncResult:
        """Sync every active or errored connection a user registered."""
        with self._session_factory() as session:
            connections = list(
                queries.get_connections_for_user(session, user_id, include_inactive=False)
            )

        if not connections:
            return UserSyncResult(
                user_id=user_id,
                code="no_connections",
                message="No active calendar connections",
            )

        summary = UserSyncResult(user_id=user_id, results=self._sync_many(connections))
        summary.success = summary.failed_syncs == 0
        summary.code = None if summary.success else "partial_failure"
        summary.message = (
            f"{summary.successful_syncs}/{summary.connections_processed} connections synced "
            f"across {summary.properties_synced} properties"
        )
        return summary

    def sync_due_connections(
        self,
        trigger_minutes: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ScheduledSyncResult:
        """
        Sync every connection whose own interval has elapsed.

        Args:
            trigger_minutes: Cadence of the trigger that fired (for logging)
            now: Reference time (defaults to the clock)

        Returns:
            ScheduledSyncResult
        """
        now = now or self._clock()
        with self._session_factory() as session:
            connections = queries.get_due_connections(session, now)

        results = self._sync_many(connections)
        summary = ScheduledSyncResult(trigger_minutes=trigger_minutes, results=results)
        summary.success = summary.failed_syncs == 0
        summary.message = (
            f"Scheduled sync: {summary.successful_syncs}/{summary.connections_processed} "
            f"connections synced"
        )
        if connections:
            logger.info(f"[{trigger_minutes or 'manual'}m trigger] {summary.message}")
        return summary

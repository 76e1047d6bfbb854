"""
Connection lifecycle orchestration.

Coordinates what happens when a connection is deactivated, removed or
reactivated:

1. persist the connection state change
2. apply the chosen disposition to the connection's events
3. clean up conflicts that referenced those events
4. notify the owner
5. write an audit entry

Each step commits on its own. A failing step is logged and reported in the
result without undoing earlier steps; notification and audit failures are
never reported as failures of the operation.
"""

import logging
import uuid
from typing import Literal, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from booking_sync.exceptions import StateConflictError, ValidationError
from booking_sync.integrations.base import AuditSink, PropertyDirectory
from booking_sync.models.base import utcnow
from booking_sync.models.connections import FeedConnection
from booking_sync.models.enums import (
    ConnectionStatus,
    EventDisposition,
    NotificationSeverity,
    NotificationType,
    Platform,
)
from booking_sync.models.events import Event
from booking_sync.schemas import LifecycleResult
from booking_sync.services import queries
from booking_sync.services.conflicts import ConflictEngine
from booking_sync.services.connections import (
    commit_connection,
    ensure_property_access,
    load_connection,
    safe_audit,
)
from booking_sync.services.notifications import NotificationDispatcher
from booking_sync.services.reconciler import FeedReconciler

logger = logging.getLogger(__name__)

_DISPOSITION_TEXT = {
    EventDisposition.DELETE: "deleted",
    EventDisposition.DEACTIVATE: "deactivated",
    EventDisposition.CONVERT: "converted to manual events",
    EventDisposition.KEEP: "kept unchanged",
}


class ConnectionLifecycle:
    """Deactivates, removes and reactivates feed connections."""

    def __init__(
        self,
        session_factory: sessionmaker,
        conflict_engine: ConflictEngine,
        notifications: NotificationDispatcher,
        audit: Optional[AuditSink] = None,
        properties: Optional[PropertyDirectory] = None,
        reconciler: Optional[FeedReconciler] = None,
    ):
        self._session_factory = session_factory
        self._conflict_engine = conflict_engine
        self._notifications = notifications
        self._audit = audit
        self._properties = properties
        self._reconciler = reconciler

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    def deactivate_connection(
        self,
        connection_id: uuid.UUID,
        property_id: Optional[str] = None,
        user_id: Optional[str] = None,
        disposition: EventDisposition = EventDisposition.KEEP,
        preserve_history: bool = True,
    ) -> LifecycleResult:
        """
        Stop syncing a connection and apply ``disposition`` to its events.

        Raises:
            NotFoundError: Unknown connection or property
            StateConflictError: Connection already inactive
        """
        return self._retire(
            "deactivated", connection_id, property_id, user_id,
            disposition, preserve_history, hard_delete=False,
        )

    def remove_connection(
        self,
        connection_id: uuid.UUID,
        property_id: Optional[str] = None,
        user_id: Optional[str] = None,
        disposition: EventDisposition = EventDisposition.KEEP,
        preserve_history: bool = True,
        hard_delete: bool = True,
    ) -> LifecycleResult:
        """
        Delete a connection and apply ``disposition`` to its events.

        Args:
            connection_id: Connection to remove
            property_id: Expected property
            user_id: Acting user (ownership check and notification recipient)
            disposition: What happens to the connection's events
            preserve_history: With DELETE, deactivate events instead of deleting rows
            hard_delete: Remove the row (True) or soft-delete it (False)

        Raises:
            NotFoundError: Unknown connection or property
        """
        return self._retire(
            "removed", connection_id, property_id, user_id,
            disposition, preserve_history, hard_delete=hard_delete,
        )

    def reactivate_connection(
        self,
        connection_id: uuid.UUID,
        property_id: Optional[str] = None,
        user_id: Optional[str] = None,
        sync_now: bool = False,
    ) -> LifecycleResult:
        """
        Resume syncing an inactive connection.

        Args:
            sync_now: Run a sync immediately after reactivation

        Raises:
            NotFoundError: Unknown connection or property
            StateConflictError: Connection is not inactive
            ValidationError: Another live connection uses the same platform
        """
        with self._session_factory() as session:
            connection = load_connection(session, connection_id, property_id)
            ensure_property_access(self._properties, connection.property_id, user_id)
            if connection.status != ConnectionStatus.INACTIVE:
                raise StateConflictError(f"Connection {connection_id} is not inactive")
            if queries.find_platform_connection(
                session, connection.property_id, connection.platform, exclude_id=connection.id
            ):
                raise ValidationError(
                    f"A connection for {connection.platform.label} already exists for this property"
                )

            connection.status = ConnectionStatus.ACTIVE
            connection.error_message = None
            commit_connection(session, connection.platform)

            owner = connection.user_id
            platform = connection.platform
            result = LifecycleResult(
                connection_id=connection.id,
                action="reactivated",
                message=f"{platform.label} connection reactivated",
            )
            self._announce(session, owner, connection.property_id, platform, result, user_id)

        if sync_now and self._reconciler is not None:
            sync = self._reconciler.sync_connection(connection_id)
            result.message = f"{result.message}; {sync.message}"
        return result

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _retire(
        self,
        action: Literal["deactivated", "removed"],
        connection_id: uuid.UUID,
        property_id: Optional[str],
        user_id: Optional[str],
        disposition: EventDisposition,
        preserve_history: bool,
        hard_delete: bool,
    ) -> LifecycleResult:
        disposition = EventDisposition(disposition)

        with self._session_factory() as session:
            connection = load_connection(session, connection_id, property_id)
            ensure_property_access(self._properties, connection.property_id, user_id)
            if action == "deactivated" and connection.status == ConnectionStatus.INACTIVE:
                raise StateConflictError(f"Connection {connection_id} is already inactive")

            owner = connection.user_id
            connection_property = connection.property_id
            platform = connection.platform
            event_ids = [e.id for e in queries.get_active_connection_events(session, connection.id)]

            result = LifecycleResult(
                connection_id=connection.id,
                action=action,
                disposition=disposition,
                events_affected=len(event_ids),
            )

            # 1. connection state
            self._persist_state(session, connection, action, hard_delete)

            # 2. events
            try:
                self._apply_disposition(session, event_ids, disposition, preserve_history, result)
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                logger.exception(f"Failed to apply {disposition.value} to events of {connection_id}")
                result.success = False
                result.code = "disposition_failed"
                result.message = f"Connection {action}, but its events could not be updated: {e}"
                result.events_deleted = result.events_deactivated = result.events_converted = 0

            # 3. conflicts
            try:
                result.cleanup = self._conflict_engine.cleanup_after_removal(
                    session, event_ids, connection_property
                )
            except Exception:
                logger.exception(f"Conflict cleanup failed after connection {connection_id} was {action}")
                if result.success:
                    result.success = False
                    result.code = "cleanup_failed"
                    result.message = (
                        f"Connection {action}, but conflicts could not be cleaned up; "
                        f"they will be corrected by the next rescan"
                    )

            if result.success:
                result.message = (
                    f"{platform.label} connection {action}; "
                    f"{len(event_ids)} event(s) {_DISPOSITION_TEXT[disposition]}"
                )

            # 4 + 5. notification and audit
            self._announce(session, owner, connection_property, platform, result, user_id)

        logger.info(f"Connection {connection_id} {action} with disposition {disposition.value}")
        return result

    @staticmethod
    def _persist_state(
        session: Session,
        connection: FeedConnection,
        action: str,
        hard_delete: bool,
    ) -> None:
        if action == "deactivated":
            connection.status = ConnectionStatus.INACTIVE
        elif hard_delete:
            session.execute(
                update(Event)
                .where(Event.connection_id == connection.id)
                .values(connection_id=None)
                .execution_options(synchronize_session="fetch")
            )
            session.delete(connection)
        else:
            connection.status = ConnectionStatus.INACTIVE
            connection.soft_delete()
        session.commit()

    @staticmethod
    def _apply_disposition(
        session: Session,
        event_ids: list[uuid.UUID],
        disposition: EventDisposition,
        preserve_history: bool,
        result: LifecycleResult,
    ) -> None:
        if disposition == EventDisposition.KEEP:
            result.events_kept = len(event_ids)
            return

        now = utcnow()
        for event_id in event_ids:
            event = session.get(Event, event_id)
            if event is None:
                continue
            if disposition == EventDisposition.DELETE and not preserve_history:
                session.delete(event)
                result.events_deleted += 1
            elif disposition in (EventDisposition.DELETE, EventDisposition.DEACTIVATE):
                event.deactivate(now)
                result.events_deactivated += 1
            else:
                event.connection_id = None
                event.external_uid = None
                event.platform = Platform.MANUAL
                result.events_converted += 1

    def _announce(
        self,
        session: Session,
        owner: str,
        property_id: str,
        platform: Platform,
        result: LifecycleResult,
        actor_id: Optional[str],
    ) -> None:
        self._notifications.notify(
            session,
            owner,
            property_id,
            NotificationType.CONNECTION_CHANGE,
            f"{platform.label} calendar {result.action}",
            result.message,
            NotificationSeverity.INFO if result.success else NotificationSeverity.WARNING,
        )
        safe_audit(
            self._audit,
            action=f"connection.{result.action}",
            entity_type="feed_connection",
            entity_id=str(result.connection_id),
            actor_id=actor_id,
            property_id=property_id,
            details={
                "platform": platform.value,
                "disposition": result.disposition.value if result.disposition else None,
                "events_affected": result.events_affected,
                "events_deleted": result.events_deleted,
                "events_deactivated": result.events_deactivated,
                "events_converted": result.events_converted,
                "success": result.success,
            },
        )

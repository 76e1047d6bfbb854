"""
Feed connection management.

Provides:
- Registration with feed validation and one-connection-per-platform checks
- Updates of URL, platform and sync frequency
- Connection tests that record health without syncing
- Lookups by id, property and user
"""

import logging
import uuid
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from booking_sync.config import Settings, get_settings
from booking_sync.exceptions import NotFoundError, ValidationError
from booking_sync.integrations.base import AuditSink, PropertyDirectory
from booking_sync.integrations.feeds.client import FeedClient, normalize_feed_url
from booking_sync.models.connections import FeedConnection
from booking_sync.models.enums import ConnectionStatus, Platform
from booking_sync.schemas import ConnectionResult, ConnectionSummary, ConnectionTestResult
from booking_sync.services import queries

logger = logging.getLogger(__name__)


def ensure_property_access(
    properties: Optional[PropertyDirectory],
    property_id: str,
    user_id: Optional[str],
) -> None:
    """
    Check that a property exists and belongs to ``user_id``.

    Skipped when no directory is configured or no user is given.

    Raises:
        NotFoundError: If the property is unknown or owned by someone else
    """
    if properties is None:
        return
    if not properties.property_exists(property_id):
        raise NotFoundError(f"Property {property_id} not found")
    if user_id is not None and not properties.is_owner(property_id, user_id):
        # Not revealing that the property exists
        raise NotFoundError(f"Property {property_id} not found")


def load_connection(
    session: Session,
    connection_id: uuid.UUID,
    property_id: Optional[str] = None,
) -> FeedConnection:
    """
    Get a non-deleted connection, optionally scoped to a property.

    Raises:
        NotFoundError: If it does not exist
    """
    connection = queries.get_connection_by_id(session, connection_id)
    if connection is None or (property_id is not None and connection.property_id != property_id):
        raise NotFoundError(f"Calendar connection {connection_id} not found")
    return connection


def commit_connection(session: Session, platform: Platform) -> None:
    """
    Commit a connection insert or change.

    Raises:
        ValidationError: If another live connection for the platform was
            committed first
    """
    try:
        session.commit()
    except IntegrityError as e:
        session.rollback()
        raise ValidationError(
            f"A connection for {platform.label} already exists for this property",
            original_error=e,
        )


def safe_audit(audit: Optional[AuditSink], **entry) -> None:
    """Write an audit entry, logging instead of raising on failure."""
    if audit is None:
        return
    try:
        audit.record(**entry)
    except Exception as e:
        logger.warning(f"Failed to write audit entry {entry.get('action')}: {e}")


class ConnectionService:
    """Registers, edits, tests and looks up feed connections."""

    def __init__(
        self,
        session_factory: sessionmaker,
        feed_client: FeedClient,
        properties: Optional[PropertyDirectory] = None,
        audit: Optional[AuditSink] = None,
        settings: Optional[Settings] = None,
    ):
        self._session_factory = session_factory
        self._feed_client = feed_client
        self._properties = properties
        self._audit = audit
        self._settings = settings or get_settings()

    # -------------------------------------------------------------------------
    # Validation helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _parse_platform(platform: str | Platform) -> Platform:
        try:
            parsed = Platform.parse(platform)
        except ValueError as e:
            raise ValidationError(str(e), original_error=e)
        if parsed == Platform.MANUAL:
            raise ValidationError("Manual events do not come from a feed connection")
        return parsed

    def _check_frequency(self, sync_frequency: int) -> int:
        if sync_frequency < self._settings.min_sync_frequency:
            raise ValidationError(
                f"Sync frequency must be at least {self._settings.min_sync_frequency} minutes"
            )
        return sync_frequency

    def _check_feed(self, url: str) -> None:
        validation = self._feed_client.validate(url)
        if not validation.valid:
            raise ValidationError(f"Invalid iCal feed: {validation.message}")

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def register_connection(
        self,
        property_id: str,
        user_id: str,
        platform: str | Platform,
        feed_url: str,
        sync_frequency: Optional[int] = None,
    ) -> ConnectionResult:
        """
        Register a feed for a property.

        Args:
            property_id: Property the feed describes
            user_id: Owner registering the feed
            platform: Publishing platform
            feed_url: iCalendar URL (webcal:// accepted)
            sync_frequency: Minutes between syncs (defaults to configuration)

        Returns:
            ConnectionResult with the new connection

        Raises:
            ValidationError: Bad platform, frequency or URL, duplicate platform,
                or a feed that cannot be fetched and parsed
            NotFoundError: Unknown property or not owned by the user
        """
        platform = self._parse_platform(platform)
        frequency = self._check_frequency(
            sync_frequency if sync_frequency is not None else self._settings.default_sync_frequency
        )
        url = normalize_feed_url(feed_url)
        ensure_property_access(self._properties, property_id, user_id)

        with self._session_factory() as session:
            if queries.find_platform_connection(session, property_id, platform):
                raise ValidationError(
                    f"A connection for {platform.label} already exists for this property"
                )

            self._check_feed(url)

            connection = FeedConnection(
                property_id=property_id,
                user_id=user_id,
                platform=platform,
                feed_url=url,
                sync_frequency=frequency,
                status=ConnectionStatus.ACTIVE,
            )
            session.add(connection)
            commit_connection(session, platform)
            summary = ConnectionSummary.model_validate(connection)

        logger.info(f"Registered {platform.value} connection {summary.id} for property {property_id}")
        safe_audit(
            self._audit,
            action="connection.created",
            entity_type="feed_connection",
            entity_id=str(summary.id),
            actor_id=user_id,
            property_id=property_id,
            details={"platform": platform.value, "sync_frequency": frequency},
        )
        return ConnectionResult(
            message=f"{platform.label} calendar connected",
            connection=summary,
        )

    def update_connection(
        self,
        connection_id: uuid.UUID,
        property_id: Optional[str] = None,
        user_id: Optional[str] = None,
        feed_url: Optional[str] = None,
        platform: Optional[str | Platform] = None,
        sync_frequency: Optional[int] = None,
    ) -> ConnectionResult:
        """
        Edit a connection. A new URL is validated before it is saved.

        Raises:
            NotFoundError: Unknown connection or property
            ValidationError: Bad input, duplicate platform or invalid feed
        """
        with self._session_factory() as session:
            connection = load_connection(session, connection_id, property_id)
            ensure_property_access(self._properties, connection.property_id, user_id)
            changes: dict = {}

            if platform is not None:
                new_platform = self._parse_platform(platform)
                if new_platform != connection.platform:
                    if queries.find_platform_connection(
                        session, connection.property_id, new_platform, exclude_id=connection.id
                    ):
                        raise ValidationError(
                            f"A connection for {new_platform.label} already exists for this property"
                        )
                    changes["platform"] = new_platform

            if sync_frequency is not None and sync_frequency != connection.sync_frequency:
                changes["sync_frequency"] = self._check_frequency(sync_frequency)

            if feed_url is not None:
                url = normalize_feed_url(feed_url)
                if url != connection.feed_url:
                    self._check_feed(url)
                    changes["feed_url"] = url

            for name, value in changes.items():
                setattr(connection, name, value)
            commit_connection(session, connection.platform)
            summary = ConnectionSummary.model_validate(connection)

        if changes:
            safe_audit(
                self._audit,
                action="connection.updated",
                entity_type="feed_connection",
                entity_id=str(summary.id),
                actor_id=user_id,
                property_id=summary.property_id,
                details={
                    name: value.value if isinstance(value, Platform) else value
                    for name, value in changes.items()
                },
            )
        return ConnectionResult(
            message="Connection updated" if changes else "No changes",
            connection=summary,
        )

    def test_connection(
        self,
        connection_id: uuid.UUID,
        property_id: Optional[str] = None,
    ) -> ConnectionTestResult:
        """
        Fetch and parse a connection's feed and record the outcome.

        A passing test marks the connection ACTIVE; a failing one marks it
        ERROR. Inactive connections keep their status and only record the
        error message.

        Raises:
            NotFoundError: Unknown connection
        """
        with self._session_factory() as session:
            connection = load_connection(session, connection_id, property_id)
            validation = self._feed_client.validate(connection.feed_url)
            inactive = connection.status == ConnectionStatus.INACTIVE

            if validation.valid:
                connection.error_message = None
                if not inactive:
                    connection.status = ConnectionStatus.ACTIVE
            else:
                connection.record_failure(validation.message)

            session.commit()
            logger.info(
                f"Tested connection {connection.id}: "
                f"{'valid' if validation.valid else 'invalid'} ({validation.message})"
            )
            return ConnectionTestResult(
                success=validation.valid,
                code=validation.code,
                message=(
                    "iCal URL is valid and accessible" if validation.valid else validation.message
                ),
                connection_id=connection.id,
                status=connection.status,
                entry_count=validation.entry_count,
            )

    def get_connection(
        self,
        connection_id: uuid.UUID,
        property_id: Optional[str] = None,
    ) -> ConnectionSummary:
        """
        Get one connection.

        Raises:
            NotFoundError: Unknown connection
        """
        with self._session_factory() as session:
            return ConnectionSummary.model_validate(
                load_connection(session, connection_id, property_id)
            )

    def list_connections(self, property_id: str) -> list[ConnectionSummary]:
        """List a property's connections, inactive ones included."""
        with self._session_factory() as session:
            return [
                ConnectionSummary.model_validate(c)
                for c in queries.get_connections_for_property(session, property_id)
            ]

    def list_user_connections(self, user_id: str) -> list[ConnectionSummary]:
        """List every connection a user registered."""
        with self._session_factory() as session:
            return [
                ConnectionSummary.model_validate(c)
                for c in queries.get_connections_for_user(session, user_id)
            ]

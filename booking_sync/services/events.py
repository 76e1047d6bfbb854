"""
Manual event management.

Provides:
- Creating and editing events that do not come from a feed
- Removing events (deactivation or hard delete) with conflict cleanup
- Availability checks for a date range
- Detaching feed events into manual ownership
"""

import logging
import uuid
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session, sessionmaker

from booking_sync.exceptions import DateRangeConflictError, NotFoundError, ValidationError
from booking_sync.integrations.base import AuditSink, PropertyDirectory
from booking_sync.models.base import utcnow
from booking_sync.models.enums import EventStatus, EventType, Platform
from booking_sync.models.events import Event
from booking_sync.schemas import AvailabilityResult, EventResult, EventSummary
from booking_sync.services import queries
from booking_sync.services.conflicts import ConflictEngine
from booking_sync.services.connections import ensure_property_access, safe_audit

logger = logging.getLogger(__name__)


def _check_range(start_date: date, end_date: date) -> None:
    if start_date >= end_date:
        raise ValidationError("Start date must be before end date")


class EventService:
    """Manual event operations on a property's calendar."""

    def __init__(
        self,
        session_factory: sessionmaker,
        conflict_engine: ConflictEngine,
        properties: Optional[PropertyDirectory] = None,
        audit: Optional[AuditSink] = None,
    ):
        self._session_factory = session_factory
        self._conflict_engine = conflict_engine
        self._properties = properties
        self._audit = audit

    @staticmethod
    def _load(session: Session, event_id: uuid.UUID, property_id: Optional[str]) -> Event:
        event = session.get(Event, event_id)
        if event is None or event.is_deleted or (
            property_id is not None and event.property_id != property_id
        ):
            raise NotFoundError(f"Event {event_id} not found")
        return event

    @staticmethod
    def _reject_overlaps(
        session: Session,
        property_id: str,
        start_date: date,
        end_date: date,
        exclude_event_id: Optional[uuid.UUID] = None,
    ) -> None:
        blocking = queries.find_overlapping_events(
            session, property_id, start_date, end_date, exclude_event_id=exclude_event_id
        )
        if blocking:
            raise DateRangeConflictError(
                f"Date range conflict: {len(blocking)} confirmed event(s) already "
                f"occupy {start_date.isoformat()}..{end_date.isoformat()}",
                conflicting_event_ids=[str(e.id) for e in blocking],
            )

    def create_manual_event(
        self,
        property_id: str,
        start_date: date,
        end_date: date,
        summary: str = "",
        event_type: EventType = EventType.BOOKING,
        status: EventStatus = EventStatus.CONFIRMED,
        description: Optional[str] = None,
        user_id: Optional[str] = None,
        allow_overlap: bool = False,
    ) -> EventResult:
        """
        Add an event that no feed owns.

        Args:
            property_id: Property calendar
            start_date: First day (inclusive)
            end_date: Last day (exclusive)
            summary: Short description
            event_type: Booking, blocked or maintenance
            status: Initial status
            description: Free text
            user_id: Creating user (ownership check)
            allow_overlap: Accept ranges overlapping confirmed events

        Returns:
            EventResult with the new event and any conflict it created

        Raises:
            ValidationError: start_date not before end_date
            DateRangeConflictError: overlap with confirmed events
            NotFoundError: Unknown property
        """
        _check_range(start_date, end_date)
        ensure_property_access(self._properties, property_id, user_id)

        with self._session_factory() as session:
            if not allow_overlap:
                self._reject_overlaps(session, property_id, start_date, end_date)

            event = Event(
                property_id=property_id,
                platform=Platform.MANUAL,
                summary=summary,
                description=description,
                start_date=start_date,
                end_date=end_date,
                event_type=EventType(event_type),
                status=EventStatus(status),
                created_by=user_id,
            )
            session.add(event)
            session.commit()

            conflict = self._conflict_engine.detect_for_event(session, event)
            result = EventResult(
                message="Event created",
                event=EventSummary.model_validate(event),
                conflict_id=conflict.id if conflict else None,
            )

        safe_audit(
            self._audit,
            action="event.created",
            entity_type="event",
            entity_id=str(result.event.id),
            actor_id=user_id,
            property_id=property_id,
            details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )
        return result

    def update_event(
        self,
        event_id: uuid.UUID,
        property_id: Optional[str] = None,
        user_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        summary: Optional[str] = None,
        description: Optional[str] = None,
        event_type: Optional[EventType] = None,
        status: Optional[EventStatus] = None,
        allow_overlap: bool = False,
    ) -> EventResult:
        """
        Edit an event. Feed-owned events may be edited but the next sync
        overwrites summary, dates and status.

        Raises:
            NotFoundError: Unknown event
            ValidationError: Resulting range is empty
            DateRangeConflictError: New range overlaps confirmed events
        """
        with self._session_factory() as session:
            event = self._load(session, event_id, property_id)
            ensure_property_access(self._properties, event.property_id, user_id)

            new_start = start_date or event.start_date
            new_end = end_date or event.end_date
            _check_range(new_start, new_end)
            dates_changed = (new_start, new_end) != (event.start_date, event.end_date)
            new_status = EventStatus(status) if status is not None else event.status

            if dates_changed and not allow_overlap and new_status == EventStatus.CONFIRMED:
                self._reject_overlaps(
                    session, event.property_id, new_start, new_end, exclude_event_id=event.id
                )

            previous_status = event.status
            event.start_date = new_start
            event.end_date = new_end
            if summary is not None:
                event.summary = summary
            if description is not None:
                event.description = description
            if event_type is not None:
                event.event_type = EventType(event_type)
            if status is not None:
                event.status = new_status
                event.cancelled_at = utcnow() if new_status == EventStatus.CANCELLED else None
            session.commit()

            if event.counts_for_conflicts:
                conflict = self._conflict_engine.detect_for_event(session, event)
            else:
                conflict = None
            if dates_changed or previous_status != event.status:
                self._conflict_engine.cleanup_after_removal(
                    session, [event.id], event.property_id
                )

            result = EventResult(
                message="Event updated",
                event=EventSummary.model_validate(event),
                conflict_id=conflict.id if conflict else None,
            )

        safe_audit(
            self._audit,
            action="event.updated",
            entity_type="event",
            entity_id=str(event_id),
            actor_id=user_id,
            property_id=result.event.property_id,
            details={"dates_changed": dates_changed},
        )
        return result

    def remove_event(
        self,
        event_id: uuid.UUID,
        property_id: Optional[str] = None,
        user_id: Optional[str] = None,
        preserve_history: bool = True,
    ) -> EventResult:
        """
        Remove an event and clean up the conflicts it was part of.

        Args:
            preserve_history: Deactivate and mark cancelled instead of deleting the row

        Raises:
            NotFoundError: Unknown event
        """
        with self._session_factory() as session:
            event = self._load(session, event_id, property_id)
            ensure_property_access(self._properties, event.property_id, user_id)
            event_property = event.property_id

            if preserve_history:
                event.deactivate(utcnow())
                summary = EventSummary.model_validate(event)
            else:
                summary = EventSummary.model_validate(event)
                session.delete(event)
            session.commit()

            cleanup = self._conflict_engine.cleanup_after_removal(
                session, [event_id], event_property
            )

        logger.info(
            f"Removed event {event_id} ({'deactivated' if preserve_history else 'deleted'}); "
            f"{cleanup.conflicts_resolved} conflict(s) resolved"
        )
        safe_audit(
            self._audit,
            action="event.removed",
            entity_type="event",
            entity_id=str(event_id),
            actor_id=user_id,
            property_id=event_property,
            details={"preserve_history": preserve_history},
        )
        return EventResult(
            message="Event deactivated" if preserve_history else "Event deleted",
            event=summary,
        )

    def transfer_to_manual(
        self,
        event_id: uuid.UUID,
        property_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> EventResult:
        """
        Detach a feed event so future syncs no longer touch it.

        Raises:
            NotFoundError: Unknown event
        """
        with self._session_factory() as session:
            event = self._load(session, event_id, property_id)
            ensure_property_access(self._properties, event.property_id, user_id)
            event.connection_id = None
            event.external_uid = None
            event.platform = Platform.MANUAL
            session.commit()
            return EventResult(
                message="Event converted to a manual event",
                event=EventSummary.model_validate(event),
            )

    def check_availability(
        self,
        property_id: str,
        start_date: date,
        end_date: date,
        exclude_event_id: Optional[uuid.UUID] = None,
    ) -> AvailabilityResult:
        """
        Check whether a date range is free of confirmed events.

        Raises:
            ValidationError: start_date not before end_date
        """
        _check_range(start_date, end_date)
        with self._session_factory() as session:
            blocking = queries.find_overlapping_events(
                session, property_id, start_date, end_date, exclude_event_id=exclude_event_id
            )
            return AvailabilityResult(
                property_id=property_id,
                start_date=start_date,
                end_date=end_date,
                available=not blocking,
                message="Dates are available" if not blocking else "Dates are not available",
                conflicting_events=[EventSummary.model_validate(e) for e in blocking],
            )

    def list_events(
        self,
        property_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        include_inactive: bool = False,
    ) -> list[EventSummary]:
        """List a property's events, optionally within a date window."""
        with self._session_factory() as session:
            stmt = session.query(Event).filter(
                Event.property_id == property_id,
                Event.deleted_at.is_(None),
            )
            if not include_inactive:
                stmt = stmt.filter(Event.is_active.is_(True))
            if start_date is not None:
                stmt = stmt.filter(Event.end_date > start_date)
            if end_date is not None:
                stmt = stmt.filter(Event.start_date < end_date)
            return [
                EventSummary.model_validate(e)
                for e in stmt.order_by(Event.start_date, Event.created_at).all()
            ]

"""
Conflict detection and resolution.

Provides:
- Date-range predicates (half-open overlap, same-day turnover, union span)
- Targeted detection after one event changes
- Full property rescan (delete and rebuild in one transaction)
- Manual and automatic resolution
- Cleanup of conflicts whose member events were removed

Rescans and resolutions for the same property never interleave: both run
under a per-property lock, and a rescan commits its delete and rebuild
together or not at all.

Full rescans compare every pair of candidate events. Pairs are visited in
start-date order and the inner loop stops once later events start after the
current one ends, but a property with many long overlapping events is still
quadratic in its number of active confirmed events.
"""

import logging
import uuid
from datetime import date
from typing import Iterable, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from booking_sync.exceptions import NotFoundError, StateConflictError, ValidationError
from booking_sync.models.base import utcnow
from booking_sync.models.conflicts import Conflict
from booking_sync.models.enums import (
    ConflictSeverity,
    ConflictStatus,
    ConflictType,
    ResolutionMethod,
    ResolutionStrategy,
)
from booking_sync.models.events import Event
from booking_sync.schemas import CleanupResult, RescanResult, ResolutionResult
from booking_sync.services import queries
from booking_sync.services.locks import KeyedLocks

logger = logging.getLogger(__name__)


# =============================================================================
# Date-range predicates
# =============================================================================


def ranges_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """Half-open overlap: the ranges share at least one night."""
    return a_start < b_end and b_start < a_end


def events_overlap(a: Event, b: Event) -> bool:
    return ranges_overlap(a.start_date, a.end_date, b.start_date, b.end_date)


def is_turnover(a: Event, b: Event) -> bool:
    """One event checks out on the day the other checks in."""
    if events_overlap(a, b):
        return False
    return a.end_date == b.start_date or b.end_date == a.start_date


def union_span(events: Iterable[Event]) -> tuple[date, date]:
    """Earliest start and latest end of a group of events."""
    events = list(events)
    if not events:
        raise ValueError("union_span requires at least one event")
    return min(e.start_date for e in events), max(e.end_date for e in events)


def _has_clash(events: Sequence[Event], conflict_type: ConflictType) -> bool:
    predicate = events_overlap if conflict_type == ConflictType.OVERLAP else is_turnover
    return any(
        predicate(a, b)
        for i, a in enumerate(events)
        for b in events[i + 1:]
    )


def _describe(conflict_type: ConflictType, events: Sequence[Event]) -> str:
    start, end = union_span(events)
    labels = ", ".join(
        f"{e.summary or e.event_type.value} ({e.platform.label}, "
        f"{e.start_date.isoformat()}..{e.end_date.isoformat()})"
        for e in events
    )
    if conflict_type == ConflictType.OVERLAP:
        return f"{len(events)} bookings overlap between {start.isoformat()} and {end.isoformat()}: {labels}"
    return f"Same-day turnover on {start.isoformat()}..{end.isoformat()}: {labels}"


class ConflictEngine:
    """
    Materializes and resolves Conflict records.

    Every public method is a unit of work: it commits on success and rolls
    back on failure.
    """

    def __init__(self, locks: Optional[KeyedLocks] = None):
        self._locks = locks or KeyedLocks()

    @property
    def locks(self) -> KeyedLocks:
        return self._locks

    # -------------------------------------------------------------------------
    # Detection
    # -------------------------------------------------------------------------

    def detect_for_event(self, session: Session, event: Event) -> Optional[Conflict]:
        """
        Targeted detection after ``event`` was created or updated.

        Finds the other active CONFIRMED events overlapping it. Open OVERLAP
        conflicts whose members are all part of the new group are merged: the
        oldest is refreshed in place and the rest are resolved as merged. An
        open conflict already covering the whole group is returned with its
        span recomputed from its members.

        Args:
            session: Database session
            event: Changed event (persisted)

        Returns:
            The conflict now covering the event, or None if it overlaps nothing
        """
        if not event.counts_for_conflicts:
            return None

        with self._locks.hold(event.property_id):
            try:
                conflict = self._detect_for_event(session, event)
                session.commit()
                return conflict
            except Exception:
                session.rollback()
                raise

    def _detect_for_event(self, session: Session, event: Event) -> Optional[Conflict]:
        others = queries.find_overlapping_events(
            session,
            event.property_id,
            event.start_date,
            event.end_date,
            exclude_event_id=event.id,
        )
        if not others:
            return None

        group = sorted([event, *others], key=lambda e: (e.start_date, e.end_date, str(e.id)))
        member_ids = [str(e.id) for e in group]
        member_set = set(member_ids)
        start, end = union_span(group)
        now = utcnow()

        open_overlaps = [
            c for c in queries.get_open_conflicts(session, event.property_id)
            if c.conflict_type == ConflictType.OVERLAP
        ]

        for existing in open_overlaps:
            if member_set.issubset(existing.event_ids):
                members = queries.get_events_by_ids(session, existing.event_ids).values()
                existing.start_date, existing.end_date = union_span(members or group)
                session.flush()
                return existing

        subsets = [c for c in open_overlaps if set(c.event_ids).issubset(member_set)]
        if subsets:
            target, merged = subsets[0], subsets[1:]
            target.event_ids = member_ids
            target.start_date = start
            target.end_date = end
            target.severity = ConflictSeverity.HIGH
            target.description = _describe(ConflictType.OVERLAP, group)
            target.detected_at = now
            for conflict in merged:
                conflict.resolve(
                    ResolutionMethod.MERGED,
                    notes=f"Merged into conflict {target.id}",
                    when=now,
                )
            logger.info(
                f"Extended conflict {target.id} on property {event.property_id} "
                f"to {len(member_ids)} events ({len(merged)} merged)"
            )
            session.flush()
            return target

        conflict = Conflict(
            property_id=event.property_id,
            event_ids=member_ids,
            conflict_type=ConflictType.OVERLAP,
            severity=ConflictSeverity.HIGH,
            status=ConflictStatus.NEW,
            start_date=start,
            end_date=end,
            description=_describe(ConflictType.OVERLAP, group),
            detected_at=now,
        )
        session.add(conflict)
        session.flush()
        logger.info(
            f"Detected overlap conflict {conflict.id} on property {event.property_id} "
            f"({len(member_ids)} events)"
        )
        return conflict

    def rescan_property(self, session: Session, property_id: str) -> RescanResult:
        """
        Rebuild every conflict of a property from its current events.

        Existing conflicts are deleted, then every pair of active CONFIRMED
        events is compared: overlapping pairs become OVERLAP conflicts
        (severity high), touching pairs become TURNOVER conflicts (severity
        medium).

        Args:
            session: Database session
            property_id: Property to rescan

        Returns:
            RescanResult with conflict counts
        """
        with self._locks.hold(property_id):
            try:
                result = self._rescan(session, property_id)
                session.commit()
            except Exception:
                session.rollback()
                logger.exception(f"Conflict rescan failed for property {property_id}")
                raise

        logger.info(
            f"Rescanned property {property_id}: {result.events_scanned} events, "
            f"{result.overlap_conflicts} overlaps, {result.turnover_conflicts} turnovers"
        )
        return result

    def _rescan(self, session: Session, property_id: str) -> RescanResult:
        removed = session.execute(
            delete(Conflict)
            .where(Conflict.property_id == property_id)
            .execution_options(synchronize_session="fetch")
        ).rowcount or 0

        events = list(queries.get_conflict_candidates(session, property_id))
        now = utcnow()
        overlaps = 0
        turnovers = 0

        for i, a in enumerate(events):
            for b in events[i + 1:]:
                if b.start_date > a.end_date:
                    break
                if events_overlap(a, b):
                    conflict_type, severity = ConflictType.OVERLAP, ConflictSeverity.HIGH
                    overlaps += 1
                elif is_turnover(a, b):
                    conflict_type, severity = ConflictType.TURNOVER, ConflictSeverity.MEDIUM
                    turnovers += 1
                else:
                    continue

                start, end = union_span((a, b))
                session.add(
                    Conflict(
                        property_id=property_id,
                        event_ids=[str(a.id), str(b.id)],
                        conflict_type=conflict_type,
                        severity=severity,
                        status=ConflictStatus.NEW,
                        start_date=start,
                        end_date=end,
                        description=_describe(conflict_type, (a, b)),
                        detected_at=now,
                    )
                )

        session.flush()
        return RescanResult(
            property_id=property_id,
            message="Conflict rescan complete",
            conflicts_removed=removed,
            overlap_conflicts=overlaps,
            turnover_conflicts=turnovers,
            events_scanned=len(events),
        )

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def get_conflict(
        self,
        session: Session,
        conflict_id: uuid.UUID,
        property_id: Optional[str] = None,
    ) -> Conflict:
        """
        Get a conflict, optionally checking it belongs to ``property_id``.

        Raises:
            NotFoundError: If the conflict does not exist
        """
        conflict = session.get(Conflict, conflict_id)
        if conflict is None or conflict.is_deleted or (
            property_id is not None and conflict.property_id != property_id
        ):
            raise NotFoundError(f"Conflict {conflict_id} not found")
        return conflict

    def list_conflicts(
        self,
        session: Session,
        property_id: str,
        status: Optional[ConflictStatus] = None,
    ) -> list[Conflict]:
        """List a property's conflicts, newest first."""
        stmt = select(Conflict).where(
            Conflict.property_id == property_id,
            Conflict.deleted_at.is_(None),
        )
        if status is not None:
            stmt = stmt.where(Conflict.status == status)
        stmt = stmt.order_by(Conflict.detected_at.desc(), Conflict.created_at.desc())
        return list(session.execute(stmt).scalars().all())

    def resolve_conflict(
        self,
        session: Session,
        conflict_id: uuid.UUID,
        keep_event_ids: Iterable[str | uuid.UUID],
        strategy: ResolutionStrategy = ResolutionStrategy.DEACTIVATE,
        property_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ResolutionResult:
        """
        Resolve a conflict by keeping a subset of its events.

        Members not kept are hard-deleted (DELETE) or deactivated and marked
        cancelled (DEACTIVATE). Other conflicts referencing removed events
        are cleaned up afterwards.

        Args:
            session: Database session
            conflict_id: Conflict to resolve
            keep_event_ids: Member events to keep
            strategy: What to do with the other members
            property_id: Expected property (ownership check)
            notes: Resolution notes

        Returns:
            ResolutionResult

        Raises:
            NotFoundError: If the conflict does not exist
            StateConflictError: If it is already resolved
            ValidationError: If a kept id is not a member, or nothing would be removed
        """
        conflict = self.get_conflict(session, conflict_id, property_id)

        with self._locks.hold(conflict.property_id):
            try:
                session.refresh(conflict)
                result = self._resolve(
                    session,
                    conflict,
                    [str(event_id) for event_id in keep_event_ids],
                    strategy,
                    ResolutionMethod.MANUAL,
                    notes,
                )
                session.commit()
                return result
            except Exception:
                session.rollback()
                raise

    def auto_resolve_conflict(
        self,
        session: Session,
        conflict_id: uuid.UUID,
        strategy: ResolutionStrategy = ResolutionStrategy.DEACTIVATE,
        property_id: Optional[str] = None,
    ) -> ResolutionResult:
        """
        Resolve a conflict by keeping its longest event.

        Durations are compared in nights; ties go to the member listed first.
        A conflict with fewer than two surviving members is resolved without
        removing anything.

        Raises:
            NotFoundError: If the conflict does not exist
            StateConflictError: If it is already resolved
        """
        conflict = self.get_conflict(session, conflict_id, property_id)

        with self._locks.hold(conflict.property_id):
            try:
                session.refresh(conflict)
                self._ensure_open(conflict)
                loaded = queries.get_events_by_ids(session, conflict.event_ids)
                members = [
                    loaded[event_id]
                    for event_id in conflict.event_ids
                    if event_id in loaded and loaded[event_id].is_active
                ]

                if len(members) < 2:
                    conflict.resolve(
                        ResolutionMethod.AUTOMATIC,
                        notes="Fewer than two active events remained",
                    )
                    session.commit()
                    return ResolutionResult(
                        conflict_id=conflict.id,
                        message="Conflict resolved; fewer than two active events remained",
                        method=ResolutionMethod.AUTOMATIC,
                        strategy=strategy,
                        kept_event_ids=[str(e.id) for e in members],
                    )

                winner = max(members, key=lambda e: e.duration_days)
                result = self._resolve(
                    session,
                    conflict,
                    [str(winner.id)],
                    strategy,
                    ResolutionMethod.AUTOMATIC,
                    f"Kept longest event ({winner.duration_days} nights)",
                )
                session.commit()
                return result
            except Exception:
                session.rollback()
                raise

    @staticmethod
    def _ensure_open(conflict: Conflict) -> None:
        if not conflict.is_open:
            raise StateConflictError(f"Conflict {conflict.id} is already resolved")

    def _resolve(
        self,
        session: Session,
        conflict: Conflict,
        keep_ids: list[str],
        strategy: ResolutionStrategy,
        method: ResolutionMethod,
        notes: Optional[str],
    ) -> ResolutionResult:
        self._ensure_open(conflict)

        members = list(conflict.event_ids)
        unknown = [event_id for event_id in keep_ids if event_id not in members]
        if unknown:
            raise ValidationError(
                f"Events {', '.join(unknown)} are not part of conflict {conflict.id}"
            )

        removed_ids = [event_id for event_id in members if event_id not in keep_ids]
        if not removed_ids:
            raise ValidationError("Resolution must remove at least one event from the conflict")

        now = utcnow()
        loaded = queries.get_events_by_ids(session, removed_ids)
        for event_id in removed_ids:
            event = loaded.get(event_id)
            if event is None:
                continue
            if strategy == ResolutionStrategy.DELETE:
                session.delete(event)
            else:
                event.deactivate(now)

        conflict.resolve(method, notes=notes, when=now)
        session.flush()

        cleanup = self._cleanup(session, removed_ids, conflict.property_id)
        logger.info(
            f"Resolved conflict {conflict.id} ({method.value}, {strategy.value}): "
            f"kept {len(keep_ids)}, removed {len(removed_ids)}"
        )
        return ResolutionResult(
            conflict_id=conflict.id,
            message=f"Conflict resolved; {len(removed_ids)} event(s) removed",
            method=method,
            strategy=strategy,
            kept_event_ids=keep_ids,
            removed_event_ids=removed_ids,
            cleanup=cleanup,
        )

    # -------------------------------------------------------------------------
    # Cleanup
    # -------------------------------------------------------------------------

    def cleanup_after_removal(
        self,
        session: Session,
        event_ids: Iterable[str | uuid.UUID],
        property_id: Optional[str] = None,
    ) -> CleanupResult:
        """
        Recompute or resolve open conflicts touching events that changed.

        For each open conflict referencing one of ``event_ids``, the members
        that still take part in conflict detection are kept. With fewer than
        two left the conflict is resolved. Otherwise its members and span are
        recomputed if they still clash, and it is resolved if they no longer do.

        Args:
            session: Database session
            event_ids: Events that were deleted, deactivated, converted or kept
            property_id: Limit to one property

        Returns:
            CleanupResult with per-outcome counts
        """
        ids = [str(event_id) for event_id in event_ids]
        if not ids:
            return CleanupResult(message="No events to clean up")

        if property_id is None:
            return self._cleanup(session, ids, None, commit=True)

        with self._locks.hold(property_id):
            return self._cleanup(session, ids, property_id, commit=True)

    def _cleanup(
        self,
        session: Session,
        event_ids: list[str],
        property_id: Optional[str],
        commit: bool = False,
    ) -> CleanupResult:
        try:
            result = self._cleanup_conflicts(session, event_ids, property_id)
            if commit:
                session.commit()
            return result
        except Exception:
            if commit:
                session.rollback()
            raise

    def _cleanup_conflicts(
        self,
        session: Session,
        event_ids: list[str],
        property_id: Optional[str],
    ) -> CleanupResult:
        result = CleanupResult(message="Conflict cleanup complete")
        now = utcnow()

        for conflict in queries.get_open_conflicts_touching(session, event_ids, property_id):
            result.conflicts_checked += 1
            loaded = queries.get_events_by_ids(session, conflict.event_ids)
            remaining = [
                loaded[event_id]
                for event_id in conflict.event_ids
                if event_id in loaded and loaded[event_id].counts_for_conflicts
            ]
            if conflict.conflict_type == ConflictType.OVERLAP:
                # Members edited out of the overlap drop out of the group
                remaining = [
                    e for e in remaining
                    if any(events_overlap(e, other) for other in remaining if other is not e)
                ]
            gone = len(conflict.event_ids) - len(remaining)

            if len(remaining) <= 1:
                conflict.resolve(
                    ResolutionMethod.CLEANUP,
                    notes=f"{gone} member event(s) removed; no conflict remains",
                    when=now,
                )
                result.conflicts_resolved += 1
                continue

            if not _has_clash(remaining, conflict.conflict_type):
                conflict.resolve(
                    ResolutionMethod.CLEANUP,
                    notes="Remaining events no longer clash",
                    when=now,
                )
                result.conflicts_resolved += 1
                continue

            remaining_ids = [str(e.id) for e in remaining]
            start, end = union_span(remaining)
            if (
                remaining_ids == list(conflict.event_ids)
                and (start, end) == (conflict.start_date, conflict.end_date)
            ):
                result.conflicts_unchanged += 1
                continue

            conflict.event_ids = remaining_ids
            conflict.start_date = start
            conflict.end_date = end
            conflict.description = _describe(conflict.conflict_type, remaining)
            conflict.detected_at = now
            result.conflicts_updated += 1

        session.flush()
        if result.conflicts_checked:
            logger.info(
                f"Conflict cleanup: {result.conflicts_checked} checked, "
                f"{result.conflicts_resolved} resolved, {result.conflicts_updated} updated"
            )
        return result

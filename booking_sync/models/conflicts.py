"""
Conflict model.

Entities:
- Conflict: A group of two or more events that clash on a property's calendar
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import String, Text, Boolean, Date, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from booking_sync.models.base import BaseModel, get_json_type, utcnow
from booking_sync.models.enums import (
    ConflictSeverity,
    ConflictStatus,
    ConflictType,
    ResolutionMethod,
    enum_column,
)


class Conflict(BaseModel):
    """
    Derived record grouping clashing events.

    Conflict types:
    - overlap: member events share at least one night (severity high)
    - turnover: one member checks out the day another checks in (severity medium)

    Lifecycle:
    1. new: created by detection
    2. resolved: manual or automatic resolution, cleanup after events
       disappeared, or merged into a larger conflict

    event_ids holds non-owning references in detection order. A conflict is
    recomputed or resolved whenever one of its members is removed.
    """

    __tablename__ = "conflicts"

    property_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        doc="Property the conflicting events belong to"
    )

    event_ids: Mapped[list] = mapped_column(
        get_json_type(),
        nullable=False,
        default=list,
        doc="Member event IDs (string form), at least two"
    )

    conflict_type: Mapped[ConflictType] = mapped_column(
        enum_column(ConflictType),
        nullable=False,
        doc="Conflict type: 'overlap', 'turnover'"
    )

    severity: Mapped[ConflictSeverity] = mapped_column(
        enum_column(ConflictSeverity),
        nullable=False,
        doc="Severity: 'low', 'medium', 'high', 'critical'"
    )

    status: Mapped[ConflictStatus] = mapped_column(
        enum_column(ConflictStatus),
        nullable=False,
        default=ConflictStatus.NEW,
        doc="Status: 'new', 'resolved'"
    )

    start_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        doc="Earliest member start"
    )

    end_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        doc="Latest member end"
    )

    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
        doc="Human-readable conflict description"
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        doc="False once resolved"
    )

    detected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        doc="Timestamp of the last detection pass that produced this conflict (UTC)"
    )

    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="Timestamp when conflict was resolved (UTC)"
    )

    resolution_method: Mapped[Optional[ResolutionMethod]] = mapped_column(
        enum_column(ResolutionMethod),
        nullable=True,
        doc="Resolution method: 'manual', 'automatic', 'cleanup', 'merged'"
    )

    resolution_notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Additional notes about the resolution"
    )

    __table_args__ = (
        Index("idx_conflict_property", "property_id"),
        Index("idx_conflict_status", "status"),
        Index("idx_conflict_type", "conflict_type"),
        Index("idx_conflict_deleted", "deleted_at"),
        Index("idx_conflict_property_active", "property_id", "is_active"),
    )

    @property
    def is_open(self) -> bool:
        """Check whether the conflict still needs attention."""
        return self.is_active and self.status != ConflictStatus.RESOLVED

    def involves(self, event_id) -> bool:
        """Check whether an event is a member."""
        return str(event_id) in (self.event_ids or [])

    def resolve(
        self,
        method: ResolutionMethod,
        notes: Optional[str] = None,
        when: Optional[datetime] = None,
    ) -> None:
        """
        Mark the conflict resolved.

        Args:
            method: How the conflict was resolved
            notes: Optional resolution notes
            when: Resolution time (defaults to now)
        """
        self.status = ConflictStatus.RESOLVED
        self.is_active = False
        self.resolved_at = when or utcnow()
        self.resolution_method = method
        if notes:
            self.resolution_notes = notes

    def __repr__(self) -> str:
        return (
            f"<Conflict(type='{self.conflict_type.value}', "
            f"severity='{self.severity.value}', status='{self.status.value}')>"
        )

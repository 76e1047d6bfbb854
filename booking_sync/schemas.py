"""
Pydantic result models returned by the engine's operations.

Every synchronous operation reports success or failure with a human-readable
message and a machine-readable code. Batch operations report one row per
connection plus aggregate counts.
"""

import uuid
from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from booking_sync.models.enums import (
    ConflictSeverity,
    ConflictStatus,
    ConflictType,
    ConnectionStatus,
    EventDisposition,
    EventStatus,
    EventType,
    Platform,
    ResolutionMethod,
    ResolutionStrategy,
)


class OperationResult(BaseModel):
    """Common envelope for operation outcomes."""

    success: bool = True
    code: Optional[str] = Field(None, description="Machine-readable outcome code")
    message: str = ""


# =============================================================================
# Entity summaries
# =============================================================================


class ConnectionSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    property_id: str
    user_id: str
    platform: Platform
    feed_url: str
    sync_frequency: int
    status: ConnectionStatus
    error_message: Optional[str] = None
    last_synced: Optional[datetime] = None
    last_error_time: Optional[datetime] = None
    sync_count: int = 0


class EventSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    property_id: str
    connection_id: Optional[uuid.UUID] = None
    platform: Platform
    external_uid: Optional[str] = None
    summary: str
    start_date: date
    end_date: date
    event_type: EventType
    status: EventStatus
    is_active: bool


class ConflictSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    property_id: str
    event_ids: list[str]
    conflict_type: ConflictType
    severity: ConflictSeverity
    status: ConflictStatus
    start_date: date
    end_date: date
    description: str
    detected_at: datetime
    resolved_at: Optional[datetime] = None
    resolution_method: Optional[ResolutionMethod] = None


# =============================================================================
# Sync results
# =============================================================================


class ConnectionSyncResult(OperationResult):
    """Outcome of syncing one connection."""

    connection_id: uuid.UUID
    property_id: str
    platform: Platform
    skipped: bool = False
    events_created: int = 0
    events_updated: int = 0
    events_cancelled: int = 0
    events_unchanged: int = 0
    failed_writes: int = 0
    conflicts_detected: Optional[int] = Field(
        None,
        description="Conflicts after the property rescan (None if the rescan failed)",
    )


class BatchSyncResult(OperationResult):
    """Outcome of syncing several connections."""

    results: list[ConnectionSyncResult] = Field(default_factory=list)

    @computed_field
    @property
    def connections_processed(self) -> int:
        return len(self.results)

    @computed_field
    @property
    def successful_syncs(self) -> int:
        return sum(1 for r in self.results if r.success and not r.skipped)

    @computed_field
    @property
    def failed_syncs(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @computed_field
    @property
    def skipped_syncs(self) -> int:
        return sum(1 for r in self.results if r.skipped)

    @computed_field
    @property
    def events_created(self) -> int:
        return sum(r.events_created for r in self.results)

    @computed_field
    @property
    def events_updated(self) -> int:
        return sum(r.events_updated for r in self.results)

    @computed_field
    @property
    def events_cancelled(self) -> int:
        return sum(r.events_cancelled for r in self.results)

    @computed_field
    @property
    def conflicts_detected(self) -> int:
        # One rescan per property; the latest row for a property is authoritative
        per_property: dict[str, int] = {}
        for r in self.results:
            if r.conflicts_detected is not None:
                per_property[r.property_id] = r.conflicts_detected
        return sum(per_property.values())


class PropertySyncResult(BatchSyncResult):
    property_id: str


class UserSyncResult(BatchSyncResult):
    user_id: str

    @computed_field
    @property
    def properties_synced(self) -> int:
        return len({r.property_id for r in self.results})


class ScheduledSyncResult(BatchSyncResult):
    trigger_minutes: Optional[int] = None


# =============================================================================
# Conflict results
# =============================================================================


class RescanResult(OperationResult):
    property_id: str
    conflicts_removed: int = 0
    overlap_conflicts: int = 0
    turnover_conflicts: int = 0
    events_scanned: int = 0

    @computed_field
    @property
    def total_conflicts(self) -> int:
        return self.overlap_conflicts + self.turnover_conflicts


class CleanupResult(OperationResult):
    conflicts_checked: int = 0
    conflicts_resolved: int = 0
    conflicts_updated: int = 0
    conflicts_unchanged: int = 0


class ResolutionResult(OperationResult):
    conflict_id: uuid.UUID
    method: ResolutionMethod
    strategy: ResolutionStrategy
    kept_event_ids: list[str] = Field(default_factory=list)
    removed_event_ids: list[str] = Field(default_factory=list)
    cleanup: Optional[CleanupResult] = None


# =============================================================================
# Connection results
# =============================================================================


class ConnectionResult(OperationResult):
    connection: Optional[ConnectionSummary] = None


class ConnectionTestResult(OperationResult):
    connection_id: uuid.UUID
    status: ConnectionStatus
    entry_count: int = 0


class LifecycleResult(OperationResult):
    connection_id: uuid.UUID
    action: Literal["deactivated", "reactivated", "removed"]
    disposition: Optional[EventDisposition] = None
    events_affected: int = 0
    events_deleted: int = 0
    events_deactivated: int = 0
    events_converted: int = 0
    events_kept: int = 0
    cleanup: Optional[CleanupResult] = None


# =============================================================================
# Event results
# =============================================================================


class EventResult(OperationResult):
    event: Optional[EventSummary] = None
    conflict_id: Optional[uuid.UUID] = None


class AvailabilityResult(OperationResult):
    property_id: str
    start_date: date
    end_date: date
    available: bool
    conflicting_events: list[EventSummary] = Field(default_factory=list)


# =============================================================================
# Status and health
# =============================================================================


class EventCounts(BaseModel):
    total: int = 0
    bookings: int = 0
    blocked: int = 0
    maintenance: int = 0


class ConnectionStatusEntry(BaseModel):
    connection_id: uuid.UUID
    platform: Platform
    status: ConnectionStatus
    sync_frequency: int
    last_synced: Optional[datetime] = None
    next_sync: Optional[datetime] = None
    error_message: Optional[str] = None
    events: EventCounts = Field(default_factory=EventCounts)


class PropertySyncStatus(BaseModel):
    property_id: str
    overall_status: Literal["healthy", "degraded", "error", "no_connections"]
    health_percentage: int
    connections: list[ConnectionStatusEntry] = Field(default_factory=list)
    last_synced: Optional[datetime] = None
    open_conflicts: int = 0


class PlatformHealth(BaseModel):
    platform: Platform
    total: int = 0
    active: int = 0
    error: int = 0
    inactive: int = 0


class RecentFailure(BaseModel):
    connection_id: uuid.UUID
    property_id: str
    platform: Platform
    error_message: Optional[str] = None
    last_error_time: datetime


class UpcomingSync(BaseModel):
    connection_id: uuid.UUID
    property_id: str
    platform: Platform
    next_sync: Optional[datetime] = None


class SyncHealth(BaseModel):
    user_id: str
    total_connections: int = 0
    active_connections: int = 0
    error_connections: int = 0
    inactive_connections: int = 0
    health_percentage: int = 0
    health_status: Literal["Excellent", "Good", "Fair", "Poor", "No connections"]
    platforms: list[PlatformHealth] = Field(default_factory=list)
    recent_failures: list[RecentFailure] = Field(default_factory=list)
    upcoming_syncs: list[UpcomingSync] = Field(default_factory=list)

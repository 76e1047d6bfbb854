"""
Service layer for Booking Sync.

Provides the engine's operations:
- Feed reconciliation (manual and scheduled syncs)
- Conflict detection, resolution and cleanup
- Connection registration and lifecycle
- Manual events and availability
- Sync status and health reporting
"""

from booking_sync.services import queries
from booking_sync.services.locks import KeyedLocks
from booking_sync.services.notifications import (
    NotificationDispatcher,
    get_preferences,
    update_preferences,
)
from booking_sync.services.conflicts import (
    ConflictEngine,
    events_overlap,
    is_turnover,
    ranges_overlap,
)
from booking_sync.services.reconciler import (
    FeedReconciler,
    ReconciliationPlan,
    plan_reconciliation,
)
from booking_sync.services.connections import ConnectionService
from booking_sync.services.lifecycle import ConnectionLifecycle
from booking_sync.services.events import EventService
from booking_sync.services.status import SyncStatusService
from booking_sync.services.scheduler import SyncScheduler, SyncTrigger, cron_for_minutes

__all__ = [
    "queries",
    "KeyedLocks",
    "NotificationDispatcher",
    "get_preferences",
    "update_preferences",
    "ConflictEngine",
    "events_overlap",
    "is_turnover",
    "ranges_overlap",
    "FeedReconciler",
    "ReconciliationPlan",
    "plan_reconciliation",
    "ConnectionService",
    "ConnectionLifecycle",
    "EventService",
    "SyncStatusService",
    "SyncScheduler",
    "SyncTrigger",
    "cron_for_minutes",
]

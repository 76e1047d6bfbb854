"""
Database models for Booking Sync.

Import all models here so SQLAlchemy and Alembic see every table.
"""

from booking_sync.models.base import Base, BaseModel, GUID
from booking_sync.models.enums import (
    ConflictSeverity,
    ConflictStatus,
    ConflictType,
    ConnectionStatus,
    EventDisposition,
    EventStatus,
    EventType,
    NotificationSeverity,
    NotificationType,
    Platform,
    ResolutionMethod,
    ResolutionStrategy,
)
from booking_sync.models.connections import FeedConnection
from booking_sync.models.events import Event
from booking_sync.models.conflicts import Conflict
from booking_sync.models.preferences import NotificationPreference

__all__ = [
    "Base",
    "BaseModel",
    "GUID",
    "FeedConnection",
    "Event",
    "Conflict",
    "NotificationPreference",
    "ConflictSeverity",
    "ConflictStatus",
    "ConflictType",
    "ConnectionStatus",
    "EventDisposition",
    "EventStatus",
    "EventType",
    "NotificationSeverity",
    "NotificationType",
    "Platform",
    "ResolutionMethod",
    "ResolutionStrategy",
]

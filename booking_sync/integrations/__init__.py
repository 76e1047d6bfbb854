"""
External integrations for Booking Sync.

Provides feed access and the collaborator interfaces the engine depends on.
"""

from booking_sync.integrations.base import (
    AuditSink,
    NotificationSink,
    PropertyDirectory,
    RawFeedEntry,
)

__all__ = [
    "AuditSink",
    "NotificationSink",
    "PropertyDirectory",
    "RawFeedEntry",
]

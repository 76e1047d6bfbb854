"""
Feed records and collaborator protocols.

Defines the raw entry format produced by feed parsing and the interfaces of
the external collaborators (notification delivery, audit log, property and
user directories) the engine calls but does not implement.
"""

from abc import abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Optional, Protocol, Union

from booking_sync.models.enums import NotificationSeverity, NotificationType


@dataclass
class RawFeedEntry:
    """
    One VEVENT as found in a feed, before normalization.

    Date values keep the feed's own type: a date for all-day entries, a
    datetime (aware or floating) otherwise.
    """

    uid: Optional[str]
    summary: str
    start: Union[date, datetime]
    end: Optional[Union[date, datetime]] = None
    duration: Optional[timedelta] = None
    description: Optional[str] = None
    status: Optional[str] = None


class NotificationSink(Protocol):
    """
    Delivers user notifications.

    Fire-and-forget: implementations may raise, callers log and carry on.
    """

    @abstractmethod
    def send(
        self,
        property_id: Optional[str],
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        severity: NotificationSeverity,
    ) -> None:
        ...


class AuditSink(Protocol):
    """Best-effort audit trail."""

    @abstractmethod
    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        actor_id: Optional[str],
        property_id: Optional[str],
        details: dict[str, Any],
    ) -> None:
        ...


class PropertyDirectory(Protocol):
    """Read-only property lookups used for ownership checks."""

    @abstractmethod
    def property_exists(self, property_id: str) -> bool:
        ...

    @abstractmethod
    def is_owner(self, property_id: str, user_id: str) -> bool:
        ...

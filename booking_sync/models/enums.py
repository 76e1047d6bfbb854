"""
Closed enumerations shared by models and services.

Values are stored as plain strings. Free text coming from feeds is mapped onto
these members once, in the normalizer; nothing downstream re-parses text.
"""

from enum import Enum

from sqlalchemy import Enum as SAEnum


class Platform(str, Enum):
    """Distribution platform a connection or event originates from."""

    AIRBNB = "airbnb"
    BOOKING = "booking"
    VRBO = "vrbo"
    EXPEDIA = "expedia"
    TRIPADVISOR = "tripadvisor"
    MANUAL = "manual"
    OTHER = "other"

    @property
    def label(self) -> str:
        """Display name used in notifications."""
        return _PLATFORM_LABELS[self]

    @classmethod
    def parse(cls, value: "str | Platform") -> "Platform":
        """
        Look up a platform by value or common alias, case-insensitively.

        Raises:
            ValueError: If the platform is unknown
        """
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        key = _PLATFORM_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown platform: {value!r}") from None


_PLATFORM_LABELS = {
    Platform.AIRBNB: "Airbnb",
    Platform.BOOKING: "Booking.com",
    Platform.VRBO: "VRBO",
    Platform.EXPEDIA: "Expedia",
    Platform.TRIPADVISOR: "TripAdvisor",
    Platform.MANUAL: "Manual",
    Platform.OTHER: "Other",
}

_PLATFORM_ALIASES = {
    "booking.com": "booking",
    "bookingcom": "booking",
    "homeaway": "vrbo",
}


class ConnectionStatus(str, Enum):
    """Health state of a feed connection."""

    ACTIVE = "active"
    ERROR = "error"
    INACTIVE = "inactive"


class EventType(str, Enum):
    """Category inferred for an event."""

    BOOKING = "booking"
    BLOCKED = "blocked"
    MAINTENANCE = "maintenance"


class EventStatus(str, Enum):
    """Lifecycle status of an event."""

    CONFIRMED = "confirmed"
    TENTATIVE = "tentative"
    CANCELLED = "cancelled"


class ConflictType(str, Enum):
    """Kind of clash between member events."""

    OVERLAP = "overlap"
    TURNOVER = "turnover"


class ConflictSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ConflictStatus(str, Enum):
    NEW = "new"
    RESOLVED = "resolved"


class ResolutionMethod(str, Enum):
    """How a conflict reached the RESOLVED state."""

    MANUAL = "manual"
    AUTOMATIC = "automatic"
    CLEANUP = "cleanup"
    MERGED = "merged"


class ResolutionStrategy(str, Enum):
    """What happens to member events that are not kept when resolving."""

    DELETE = "delete"
    DEACTIVATE = "deactivate"


class EventDisposition(str, Enum):
    """Policy applied to a connection's events when it is removed or deactivated."""

    DELETE = "delete"
    DEACTIVATE = "deactivate"
    CONVERT = "convert"
    KEEP = "keep"


class NotificationType(str, Enum):
    NEW_BOOKING = "new_booking"
    MODIFIED_BOOKING = "modified_booking"
    CANCELLED_BOOKING = "cancelled_booking"
    CONFLICT_DETECTED = "conflict_detected"
    SYNC_FAILURE = "sync_failure"
    CONNECTION_CHANGE = "connection_change"


class NotificationSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


def enum_column(enum_cls: type[Enum], length: int = 20) -> SAEnum:
    """
    Column type storing an enum by value in a VARCHAR.

    Args:
        enum_cls: Enumeration class
        length: Column length

    Returns:
        Non-native SQLAlchemy Enum type
    """
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )

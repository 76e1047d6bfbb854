"""
Exceptions raised by the synchronization engine.

Every error carries a human-readable message, a machine-readable code and a
retryable flag so callers can turn failures into structured results.
"""


class BookingSyncError(Exception):
    """Base exception for synchronization and conflict operations."""

    code: str = "internal_error"
    retryable: bool = False

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class FetchError(BookingSyncError):
    """
    Feed could not be downloaded.

    Causes:
    - DNS or connection failure
    - Timeout
    - Non-2xx HTTP response
    - Response larger than the configured limit

    Timeouts, transport errors, 429 and 5xx responses are retryable.
    """

    code = "fetch_failed"

    def __init__(
        self,
        message: str,
        original_error: Exception | None = None,
        status_code: int | None = None,
        retryable: bool = False,
    ):
        super().__init__(message, original_error=original_error)
        self.status_code = status_code
        self.retryable = retryable


class ParseError(BookingSyncError):
    """Feed was downloaded but is not a well-formed iCalendar document."""

    code = "parse_failed"


class EmptyFeedError(BookingSyncError):
    """Feed parsed correctly but contains no events."""

    code = "empty_feed"


class ValidationError(BookingSyncError):
    """
    Input rejected before any state change.

    Causes:
    - start date not before end date
    - duplicate platform registration for a property
    - unsupported URL scheme or sync frequency
    """

    code = "validation_failed"


class DateRangeConflictError(ValidationError):
    """Requested date range overlaps existing confirmed events."""

    code = "date_range_conflict"

    def __init__(
        self,
        message: str,
        conflicting_event_ids: list[str] | None = None,
        original_error: Exception | None = None,
    ):
        super().__init__(message, original_error=original_error)
        self.conflicting_event_ids = conflicting_event_ids or []


class NotFoundError(BookingSyncError):
    """Connection, event or conflict does not exist (or is not visible to the caller)."""

    code = "not_found"


class StateConflictError(BookingSyncError):
    """
    Operation is not valid for the entity's current state.

    Examples:
    - resolving an already-resolved conflict
    - reactivating a connection that is already active
    """

    code = "state_conflict"

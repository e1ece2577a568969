"""
Error taxonomy for calendar operations.

Workflow functions raise these internally and convert them to a ``Result``
at their public boundary. Infrastructure failures (database unreachable,
programming errors) are not part of this family and propagate unchanged.
"""


class CalendarError(Exception):
    """Base exception for calendar operations."""

    code: str = "calendar_error"
    retryable: bool = False

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class ValidationError(CalendarError):
    """
    Bad input shape or range.

    Causes:
    - end before start
    - travel without an origin or destination
    - unknown home
    """

    code = "validation_error"


class NotFoundError(CalendarError):
    """Event or source is missing or soft-deleted."""

    code = "not_found"


class InvalidStateError(CalendarError):
    """Transition not allowed from the event's current status."""

    code = "invalid_state"


class ForbiddenError(CalendarError):
    """
    Actor lacks permission.

    Covers self-confirmation, non-guardian confirmers and any attempt to
    mutate a read-only imported event.
    """

    code = "forbidden"


class ConflictError(CalendarError):
    """
    Lost a concurrent state race.

    Another guardian confirmed or rejected the proposal first.
    The caller should refresh and retry.
    """

    code = "conflict"
    retryable = True


class UpstreamFetchError(CalendarError):
    """
    External calendar could not be fetched or parsed.

    Always scoped to one source; never fatal to a sync batch.
    """

    code = "upstream_fetch_error"
    retryable = True


class ConfigurationError(CalendarError):
    """Missing or malformed configuration, such as the encryption key."""

    code = "configuration_error"

"""
ICS subscription errors.

Each failure carries a stable code and the message shown to the user on
the source's "last sync failed" line.
"""

from typing import Optional

from homes_calendar.exceptions import UpstreamFetchError

UNREACHABLE = "unreachable"
EXPIRED = "expired"
AUTH_REQUIRED = "auth_required"
INVALID_FORMAT = "invalid_format"
TOO_LARGE = "too_large"
TOO_MANY_EVENTS = "too_many_events"
TIMEOUT = "timeout"
UNKNOWN = "unknown"

ICS_ERROR_MESSAGES = {
    UNREACHABLE: "Calendar link unreachable",
    EXPIRED: "Calendar link expired, replace it",
    AUTH_REQUIRED: "Calendar requires login, use a public iCloud link",
    INVALID_FORMAT: "Invalid calendar format",
    TOO_LARGE: "Calendar file too large",
    TOO_MANY_EVENTS: "Too many recurring events. Use a smaller calendar.",
    TIMEOUT: "Calendar took too long to load",
    UNKNOWN: "Could not sync calendar",
}


class IcsSyncError(UpstreamFetchError):
    """
    An ICS feed could not be fetched or understood.

    ``code`` is one of the module constants; unknown codes fall back to
    the generic message.
    """

    def __init__(self, code: str, original_error: Optional[Exception] = None):
        super().__init__(ICS_ERROR_MESSAGES.get(code, ICS_ERROR_MESSAGES[UNKNOWN]), original_error)
        self.code = code if code in ICS_ERROR_MESSAGES else UNKNOWN
        self.retryable = self.code in (UNREACHABLE, TIMEOUT)

"""
Custom exceptions for Google Calendar operations.

All of them are upstream fetch failures: they are reported on the
source's sync status and never abort a batch. ``code`` is what lands in
``last_sync_error_code``.
"""

from homes_calendar.exceptions import UpstreamFetchError


class GoogleCalendarError(UpstreamFetchError):
    """Base exception for Google Calendar operations."""

    code = "google_error"
    retryable = False


class GoogleCalendarAuthError(GoogleCalendarError):
    """
    Authentication or authorization failure.

    Causes:
    - Access revoked by the user in their Google account
    - Refresh token expired or missing
    - Calendar no longer shared with the account
    """

    code = "auth_required"
    retryable = False


class GoogleCalendarQuotaError(GoogleCalendarError):
    """
    API quota exceeded.

    Retryable after backoff.
    """

    code = "quota_exceeded"
    retryable = True


class GoogleCalendarNotFoundError(GoogleCalendarError):
    """Calendar was deleted or the calendar ID is invalid."""

    code = "not_found"
    retryable = False


class GoogleCalendarRateLimitError(GoogleCalendarError):
    """
    Rate limit hit (429 response).

    Retryable after exponential backoff.
    """

    code = "rate_limited"
    retryable = True


class GoogleSyncTokenExpiredError(GoogleCalendarError):
    """
    Incremental sync token rejected (410 Gone).

    The caller drops the token and performs a full sync.
    """

    code = "sync_token_expired"
    retryable = False


class GoogleCalendarServerError(GoogleCalendarError):
    """Google returned a 5xx; retryable."""

    code = "unreachable"
    retryable = True

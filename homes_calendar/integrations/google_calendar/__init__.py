"""Google Calendar integration (read-only import)."""

from homes_calendar.integrations.google_calendar.adapter import GoogleCalendarAdapter
from homes_calendar.integrations.google_calendar.client import GoogleCalendarClient
from homes_calendar.integrations.google_calendar.exceptions import (
    GoogleCalendarError,
    GoogleCalendarAuthError,
    GoogleCalendarQuotaError,
    GoogleCalendarNotFoundError,
    GoogleCalendarRateLimitError,
    GoogleCalendarServerError,
    GoogleSyncTokenExpiredError,
)
from homes_calendar.integrations.google_calendar.oauth import (
    CALENDAR_SCOPES,
    GoogleOAuthFlow,
    GoogleUserInfo,
    OAuthTokens,
)
from homes_calendar.integrations.google_calendar.sync import (
    GoogleCalendarSyncer,
    add_google_source,
    disconnect_google,
)

__all__ = [
    "GoogleCalendarAdapter",
    "GoogleCalendarClient",
    "GoogleCalendarError",
    "GoogleCalendarAuthError",
    "GoogleCalendarQuotaError",
    "GoogleCalendarNotFoundError",
    "GoogleCalendarRateLimitError",
    "GoogleCalendarServerError",
    "GoogleSyncTokenExpiredError",
    "CALENDAR_SCOPES",
    "GoogleOAuthFlow",
    "GoogleUserInfo",
    "OAuthTokens",
    "GoogleCalendarSyncer",
    "add_google_source",
    "disconnect_google",
]

"""
Read-only Google Calendar API client with retry and error handling.

Wraps the Google Calendar API v3 events and calendarList resources.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build, Resource
from googleapiclient.errors import HttpError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception,
)

from homes_calendar.integrations.google_calendar.exceptions import (
    GoogleCalendarError,
    GoogleCalendarAuthError,
    GoogleCalendarQuotaError,
    GoogleCalendarNotFoundError,
    GoogleCalendarRateLimitError,
    GoogleCalendarServerError,
    GoogleSyncTokenExpiredError,
)

logger = logging.getLogger(__name__)

PAGE_SIZE = 250


def _is_retryable_error(exception: Exception) -> bool:
    """Check if an exception should trigger a retry."""
    if isinstance(exception, GoogleCalendarError):
        return exception.retryable
    if isinstance(exception, HttpError):
        return exception.resp.status in (429, 500, 503)
    return False


def _handle_http_error(error: HttpError) -> None:
    """Convert HttpError to appropriate GoogleCalendarError."""
    status = error.resp.status
    message = str(error)

    if status == 401:
        raise GoogleCalendarAuthError(
            "Authentication failed - credentials may be invalid or expired",
            original_error=error,
        )
    elif status == 403:
        if "quota" in message.lower() or "rate limit" in message.lower():
            raise GoogleCalendarQuotaError(
                "API quota exceeded",
                original_error=error,
            )
        raise GoogleCalendarAuthError(
            "Access denied - check calendar sharing permissions",
            original_error=error,
        )
    elif status == 404:
        raise GoogleCalendarNotFoundError(
            "Calendar not found",
            original_error=error,
        )
    elif status == 410:
        raise GoogleSyncTokenExpiredError(
            "Sync token expired",
            original_error=error,
        )
    elif status == 429:
        raise GoogleCalendarRateLimitError(
            "Rate limit exceeded - too many requests",
            original_error=error,
        )
    elif status >= 500:
        raise GoogleCalendarServerError(
            f"Google Calendar API error ({status})",
            original_error=error,
        )
    else:
        raise GoogleCalendarError(
            f"Google Calendar API error ({status}): {message}",
            original_error=error,
        )


@dataclass
class EventPage:
    """All pages of one events.list call."""

    items: list[dict]
    next_sync_token: Optional[str]


class GoogleCalendarClient:
    """
    Read-only wrapper around Google Calendar API v3.

    Provides:
    - Automatic retry with exponential backoff
    - Consistent error handling
    - Pagination handling for list operations
    """

    def __init__(self, credentials: Credentials):
        self._service: Resource = build(
            "calendar",
            "v3",
            credentials=credentials,
            cache_discovery=False,
        )

    @classmethod
    def from_access_token(cls, access_token: str) -> "GoogleCalendarClient":
        """Client authorised with a bare access token (refresh is handled upstream)."""
        return cls(Credentials(token=access_token))

    @property
    def service(self) -> Resource:
        """Get the underlying Google API service."""
        return self._service

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception(_is_retryable_error),
        reraise=True,
    )
    def list_events(
        self,
        calendar_id: str,
        time_min: Optional[str] = None,
        time_max: Optional[str] = None,
        sync_token: Optional[str] = None,
        page_token: Optional[str] = None,
        max_results: int = PAGE_SIZE,
    ) -> dict:
        """
        Fetch one page of events.

        With ``sync_token`` Google returns only changes since that token
        (including cancelled events) and rejects time bounds, so
        ``time_min``/``time_max`` are only sent on a full listing.

        Raises:
            GoogleSyncTokenExpiredError: The sync token is no longer valid
        """
        params = {
            "calendarId": calendar_id,
            "singleEvents": True,
            "maxResults": max_results,
        }
        if sync_token:
            params["syncToken"] = sync_token
        else:
            params["timeMin"] = time_min
            params["timeMax"] = time_max
        if page_token:
            params["pageToken"] = page_token

        try:
            return self._service.events().list(**params).execute()
        except HttpError as e:
            _handle_http_error(e)

    def list_all_events(
        self,
        calendar_id: str,
        time_min: Optional[str] = None,
        time_max: Optional[str] = None,
        sync_token: Optional[str] = None,
    ) -> EventPage:
        """
        List all events with automatic pagination.

        Returns:
            Every item plus the ``nextSyncToken`` from the last page
        """
        all_events = []
        page_token = None
        next_sync_token = None

        while True:
            response = self.list_events(
                calendar_id=calendar_id,
                time_min=time_min,
                time_max=time_max,
                sync_token=sync_token,
                page_token=page_token,
            )

            all_events.extend(response.get("items", []))
            next_sync_token = response.get("nextSyncToken") or next_sync_token

            page_token = response.get("nextPageToken")
            if not page_token:
                break

        logger.debug(f"Listed {len(all_events)} events from {calendar_id}")
        return EventPage(items=all_events, next_sync_token=next_sync_token)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception(_is_retryable_error),
        reraise=True,
    )
    def list_calendars(self) -> list[dict]:
        """
        Calendars visible to the account, for the picker.

        Returns:
            Dicts with id, summary, primary, access_role and background_color
        """
        calendars = []
        page_token = None
        try:
            while True:
                response = self._service.calendarList().list(pageToken=page_token).execute()
                for item in response.get("items", []):
                    calendars.append({
                        "id": item["id"],
                        "summary": item.get("summaryOverride") or item.get("summary", item["id"]),
                        "primary": item.get("primary", False),
                        "access_role": item.get("accessRole"),
                        "background_color": item.get("backgroundColor"),
                    })
                page_token = response.get("nextPageToken")
                if not page_token:
                    break
        except HttpError as e:
            _handle_http_error(e)
        return calendars

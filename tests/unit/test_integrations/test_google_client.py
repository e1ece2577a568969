"""Tests for the read-only Google Calendar API client."""

from unittest.mock import MagicMock, patch

import pytest
from googleapiclient.errors import HttpError

from homes_calendar.integrations.google_calendar.client import (
    GoogleCalendarClient,
    _handle_http_error,
    _is_retryable_error,
)
from homes_calendar.integrations.google_calendar.exceptions import (
    GoogleCalendarAuthError,
    GoogleCalendarError,
    GoogleCalendarNotFoundError,
    GoogleCalendarQuotaError,
    GoogleCalendarRateLimitError,
    GoogleCalendarServerError,
    GoogleSyncTokenExpiredError,
)


def make_http_error(status: int, message: str = "Error") -> HttpError:
    """Create a mock HttpError for testing."""
    resp = MagicMock()
    resp.status = status
    resp.reason = "Error"
    return HttpError(resp=resp, content=message.encode())


class TestIsRetryableError:
    """Tests for retry decision logic."""

    def test_retryable_google_calendar_error(self):
        assert _is_retryable_error(GoogleCalendarQuotaError("Quota exceeded")) is True
        assert _is_retryable_error(GoogleCalendarServerError("Down")) is True

    def test_non_retryable_google_calendar_error(self):
        assert _is_retryable_error(GoogleCalendarAuthError("Auth failed")) is False
        assert _is_retryable_error(GoogleSyncTokenExpiredError("Gone")) is False

    def test_http_status_codes(self):
        for status in [429, 500, 503]:
            assert _is_retryable_error(make_http_error(status)) is True
        for status in [400, 401, 403, 404, 410]:
            assert _is_retryable_error(make_http_error(status)) is False

    def test_other_exceptions(self):
        assert _is_retryable_error(ValueError("test")) is False


class TestHandleHttpError:
    """Tests for HTTP error to exception mapping."""

    @pytest.mark.parametrize(
        "status,message,expected,code",
        [
            (401, "Error", GoogleCalendarAuthError, "auth_required"),
            (403, "quota exceeded", GoogleCalendarQuotaError, "quota_exceeded"),
            (403, "rate limit", GoogleCalendarQuotaError, "quota_exceeded"),
            (403, "forbidden", GoogleCalendarAuthError, "auth_required"),
            (404, "Error", GoogleCalendarNotFoundError, "not_found"),
            (410, "Error", GoogleSyncTokenExpiredError, "sync_token_expired"),
            (429, "Error", GoogleCalendarRateLimitError, "rate_limited"),
            (502, "Error", GoogleCalendarServerError, "unreachable"),
        ],
    )
    def test_status_mapping(self, status, message, expected, code):
        with pytest.raises(expected) as exc_info:
            _handle_http_error(make_http_error(status, message))

        assert exc_info.value.code == code
        assert exc_info.value.original_error is not None

    def test_generic_error(self):
        with pytest.raises(GoogleCalendarError) as exc_info:
            _handle_http_error(make_http_error(400, "Bad request"))

        assert type(exc_info.value) is GoogleCalendarError
        assert "400" in exc_info.value.message


class TestGoogleCalendarClient:
    """Tests for GoogleCalendarClient operations."""

    @pytest.fixture
    def mock_service(self):
        """Create mock Google Calendar service."""
        with patch("homes_calendar.integrations.google_calendar.client.build") as mock_build:
            service = MagicMock()
            mock_build.return_value = service
            yield service

    @pytest.fixture
    def client(self, mock_service):
        return GoogleCalendarClient(MagicMock())

    def test_full_listing_sends_time_bounds(self, client, mock_service):
        mock_service.events().list().execute.return_value = {"items": []}

        client.list_events(
            calendar_id="cal-123",
            time_min="2026-10-01T00:00:00Z",
            time_max="2026-12-01T00:00:00Z",
        )

        kwargs = mock_service.events().list.call_args.kwargs
        assert kwargs["calendarId"] == "cal-123"
        assert kwargs["singleEvents"] is True
        assert kwargs["timeMin"] == "2026-10-01T00:00:00Z"
        assert kwargs["timeMax"] == "2026-12-01T00:00:00Z"
        assert "syncToken" not in kwargs

    def test_incremental_listing_sends_only_sync_token(self, client, mock_service):
        """Test Google's sync token replaces the time bounds."""
        mock_service.events().list().execute.return_value = {"items": []}

        client.list_events(
            calendar_id="cal-123",
            time_min="2026-10-01T00:00:00Z",
            time_max="2026-12-01T00:00:00Z",
            sync_token="tok-1",
        )

        kwargs = mock_service.events().list.call_args.kwargs
        assert kwargs["syncToken"] == "tok-1"
        assert "timeMin" not in kwargs
        assert "timeMax" not in kwargs

    def test_list_all_events_pagination(self, client, mock_service):
        """Test pages are concatenated and the last sync token kept."""
        mock_service.events().list().execute.side_effect = [
            {"items": [{"id": "event-1"}], "nextPageToken": "page-2"},
            {"items": [{"id": "event-2"}], "nextSyncToken": "sync-9"},
        ]

        page = client.list_all_events(calendar_id="cal-123", time_min="a", time_max="b")

        assert [item["id"] for item in page.items] == ["event-1", "event-2"]
        assert page.next_sync_token == "sync-9"
        assert mock_service.events().list.call_args.kwargs["pageToken"] == "page-2"

    def test_http_error_converted(self, client, mock_service):
        mock_service.events().list().execute.side_effect = make_http_error(404, "Not Found")

        with pytest.raises(GoogleCalendarNotFoundError):
            client.list_events(calendar_id="missing")

    def test_expired_sync_token(self, client, mock_service):
        mock_service.events().list().execute.side_effect = make_http_error(410, "Gone")

        with pytest.raises(GoogleSyncTokenExpiredError):
            client.list_events(calendar_id="cal-123", sync_token="stale")

    def test_server_error_retried(self, client, mock_service):
        """Test a transient 503 is retried before succeeding."""
        mock_service.events().list().execute.side_effect = [
            make_http_error(503, "Unavailable"),
            {"items": [{"id": "event-1"}]},
        ]

        with patch("time.sleep"):
            response = client.list_events(calendar_id="cal-123")

        assert response["items"] == [{"id": "event-1"}]
        assert mock_service.events().list().execute.call_count == 2

    def test_list_calendars(self, client, mock_service):
        mock_service.calendarList().list().execute.side_effect = [
            {
                "items": [
                    {
                        "id": "primary@example.com",
                        "summary": "Alex",
                        "primary": True,
                        "accessRole": "owner",
                        "backgroundColor": "#9fe1e7",
                    },
                ],
                "nextPageToken": "more",
            },
            {
                "items": [
                    {"id": "school@group.calendar.google.com", "summary": "School", "summaryOverride": "Robin's school"},
                ],
            },
        ]

        calendars = client.list_calendars()

        assert calendars == [
            {
                "id": "primary@example.com",
                "summary": "Alex",
                "primary": True,
                "access_role": "owner",
                "background_color": "#9fe1e7",
            },
            {
                "id": "school@group.calendar.google.com",
                "summary": "Robin's school",
                "primary": False,
                "access_role": None,
                "background_color": None,
            },
        ]

    def test_list_calendars_auth_error(self, client, mock_service):
        mock_service.calendarList().list().execute.side_effect = make_http_error(401)

        with pytest.raises(GoogleCalendarAuthError):
            client.list_calendars()

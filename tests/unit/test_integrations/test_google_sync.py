"""Tests for Google token storage and source sync."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from sqlalchemy import select

from homes_calendar.config import Settings
from homes_calendar.exceptions import ConflictError, ForbiddenError
from homes_calendar.integrations.google_calendar.client import EventPage
from homes_calendar.integrations.google_calendar.exceptions import (
    GoogleCalendarAuthError,
    GoogleCalendarNotFoundError,
    GoogleSyncTokenExpiredError,
)
from homes_calendar.integrations.google_calendar.oauth import GoogleUserInfo, OAuthTokens
from homes_calendar.integrations.google_calendar.sync import (
    GoogleCalendarSyncer,
    add_google_source,
    disconnect_google,
)
from homes_calendar.integrations.google_calendar.token_storage import (
    get_connection,
    get_valid_access_token,
    save_connection,
)
from homes_calendar.models import CalendarEventRecord
from homes_calendar.models.tokens import GoogleCalendarConnection

SETTINGS = Settings(_env_file=None, timezone="UTC")


def tokens(access: str = "access-1", refresh: str | None = "refresh-1") -> OAuthTokens:
    return OAuthTokens(
        access_token=access,
        refresh_token=refresh,
        expires_in=3600,
        token_type="Bearer",
        scope="https://www.googleapis.com/auth/calendar.readonly",
    )


def google_item(event_id: str, title: str, day: int = 20) -> dict:
    return {
        "id": event_id,
        "summary": title,
        "start": {"dateTime": f"2026-10-{day:02d}T16:00:00Z"},
        "end": {"dateTime": f"2026-10-{day:02d}T17:00:00Z"},
    }


@pytest.fixture
def connection(db_session, cipher, parent_a):
    return save_connection(
        db_session, cipher, parent_a.id, tokens(), GoogleUserInfo(email="alex@example.com")
    )


@pytest.fixture
def google_source(db_session, connection, child):
    return add_google_source(db_session, connection, child.id, "family@group.calendar.google.com", "Family")


def syncer_for(db_session, cipher, *pages):
    client = MagicMock()
    client.list_all_events.side_effect = list(pages)
    factory = MagicMock(return_value=client)
    syncer = GoogleCalendarSyncer(db_session, cipher, client_factory=factory, settings=SETTINGS)
    return syncer, client, factory


def live_titles(db_session, source):
    stmt = (
        select(CalendarEventRecord.title)
        .where(
            CalendarEventRecord.external_source_id == source.id,
            CalendarEventRecord.is_deleted.is_(False),
        )
        .order_by(CalendarEventRecord.start_at)
        .execution_options(populate_existing=True)
    )
    return list(db_session.scalars(stmt))


class TestTokenStorage:
    """Tests for saving and refreshing Google tokens."""

    def test_save_encrypts_tokens(self, db_session, cipher, connection, parent_a):
        assert connection.access_token_encrypted != "access-1"
        assert cipher.decrypt(connection.access_token_encrypted) == "access-1"
        assert cipher.decrypt(connection.refresh_token_encrypted) == "refresh-1"
        assert get_connection(db_session, parent_a.id) is connection

    def test_reconnect_keeps_refresh_token(self, db_session, cipher, connection, parent_a):
        """Test a reconnect without a new refresh token keeps the old one and clears revocation."""
        connection.revoked_at = datetime(2026, 10, 1, tzinfo=timezone.utc)

        again = save_connection(
            db_session, cipher, parent_a.id, tokens("access-2", None), GoogleUserInfo(email="alex@example.com")
        )

        assert again.id == connection.id
        assert again.revoked_at is None
        assert cipher.decrypt(again.access_token_encrypted) == "access-2"
        assert cipher.decrypt(again.refresh_token_encrypted) == "refresh-1"

    def test_get_connection_by_email(self, db_session, connection, parent_a):
        assert get_connection(db_session, parent_a.id, email="alex@example.com") is connection
        assert get_connection(db_session, parent_a.id, email="other@example.com") is None

    @pytest.mark.asyncio
    async def test_fresh_token_returned(self, db_session, cipher, connection):
        assert await get_valid_access_token(db_session, connection, cipher) == "access-1"

    @pytest.mark.asyncio
    async def test_expiring_token_refreshed(self, db_session, cipher, connection):
        connection.token_expiry = datetime.now(timezone.utc) + timedelta(minutes=1)
        flow = MagicMock()
        flow.refresh_token = AsyncMock(return_value=tokens("access-2", "refresh-2"))

        token = await get_valid_access_token(db_session, connection, cipher, flow)

        assert token == "access-2"
        flow.refresh_token.assert_awaited_once_with("refresh-1")
        assert cipher.decrypt(connection.access_token_encrypted) == "access-2"
        assert cipher.decrypt(connection.refresh_token_encrypted) == "refresh-2"

    @pytest.mark.asyncio
    async def test_refresh_failure_needs_reconnect(self, db_session, cipher, connection):
        connection.token_expiry = datetime.now(timezone.utc) - timedelta(hours=1)
        flow = MagicMock()
        flow.refresh_token = AsyncMock(side_effect=httpx.HTTPError("invalid_grant"))

        with pytest.raises(GoogleCalendarAuthError):
            await get_valid_access_token(db_session, connection, cipher, flow)

    @pytest.mark.asyncio
    async def test_expired_without_refresh_token(self, db_session, cipher, connection):
        connection.token_expiry = datetime.now(timezone.utc) - timedelta(hours=1)
        connection.refresh_token_encrypted = None

        with pytest.raises(GoogleCalendarAuthError):
            await get_valid_access_token(db_session, connection, cipher)

    @pytest.mark.asyncio
    async def test_revoked_connection(self, db_session, cipher, connection):
        connection.revoked_at = datetime(2026, 10, 1, tzinfo=timezone.utc)

        with pytest.raises(GoogleCalendarAuthError):
            await get_valid_access_token(db_session, connection, cipher)


class TestAddGoogleSource:
    """Tests for subscribing a child to a Google calendar."""

    def test_adds_source(self, google_source, connection, parent_a):
        assert google_source.provider == "google"
        assert google_source.owner_id == parent_a.id
        assert google_source.connection_id == connection.id
        assert google_source.calendar_id == "family@group.calendar.google.com"

    def test_duplicate_calendar(self, db_session, connection, child, google_source):
        with pytest.raises(ConflictError):
            add_google_source(db_session, connection, child.id, "family@group.calendar.google.com", "Again")

    def test_non_guardian(self, db_session, cipher, child, nanny):
        nanny_connection = save_connection(
            db_session, cipher, nanny.id, tokens(), GoogleUserInfo(email="casey@example.com")
        )

        with pytest.raises(ForbiddenError):
            add_google_source(db_session, nanny_connection, child.id, "primary", "Casey")


class TestGoogleCalendarSyncer:
    """Tests for GoogleCalendarSyncer.sync."""

    @pytest.mark.asyncio
    async def test_first_sync_is_full(self, db_session, cipher, google_source):
        syncer, client, factory = syncer_for(
            db_session,
            cipher,
            EventPage(items=[google_item("a", "Swim"), google_item("b", "Weekend at Dad's", 24)], next_sync_token="tok-1"),
        )

        result = await syncer.sync(google_source)

        assert result.ok is True
        assert result.created == 2
        assert result.candidates == 1
        factory.assert_called_once_with("access-1")
        kwargs = client.list_all_events.call_args.kwargs
        assert kwargs["calendar_id"] == "family@group.calendar.google.com"
        assert kwargs["sync_token"] is None
        assert kwargs["time_min"].endswith("Z")
        assert google_source.sync_token == "tok-1"
        assert google_source.last_sync_status == "ok"
        assert live_titles(db_session, google_source) == ["Swim", "Weekend at Dad's"]

    @pytest.mark.asyncio
    async def test_incremental_sync_applies_delta(self, db_session, cipher, google_source):
        """Test a delta only touches the events it mentions."""
        syncer, client, _ = syncer_for(
            db_session,
            cipher,
            EventPage(items=[google_item("a", "Swim"), google_item("b", "Piano", 21)], next_sync_token="tok-1"),
            EventPage(items=[{"id": "a", "status": "cancelled"}], next_sync_token="tok-2"),
        )
        await syncer.sync(google_source)

        result = await syncer.sync(google_source)

        assert result.deleted == 1
        assert client.list_all_events.call_args.kwargs["sync_token"] == "tok-1"
        assert google_source.sync_token == "tok-2"
        assert live_titles(db_session, google_source) == ["Piano"]

    @pytest.mark.asyncio
    async def test_expired_sync_token_falls_back_to_full(self, db_session, cipher, google_source):
        google_source.sync_token = "stale"
        syncer, client, _ = syncer_for(
            db_session,
            cipher,
            GoogleSyncTokenExpiredError("Sync token expired"),
            EventPage(items=[google_item("a", "Swim")], next_sync_token="fresh"),
        )

        result = await syncer.sync(google_source)

        assert result.ok is True
        assert [c.kwargs["sync_token"] for c in client.list_all_events.call_args_list] == ["stale", None]
        assert google_source.sync_token == "fresh"

    @pytest.mark.asyncio
    async def test_force_full_ignores_token(self, db_session, cipher, google_source):
        google_source.sync_token = "tok-1"
        syncer, client, _ = syncer_for(db_session, cipher, EventPage(items=[], next_sync_token="tok-2"))

        await syncer.sync(google_source, full=True)

        assert client.list_all_events.call_args.kwargs["sync_token"] is None

    @pytest.mark.asyncio
    async def test_upstream_error_recorded(self, db_session, cipher, google_source):
        syncer, _, _ = syncer_for(db_session, cipher, GoogleCalendarNotFoundError("Calendar not found"))

        result = await syncer.sync(google_source)

        assert result.ok is False
        assert result.error_code == "not_found"
        assert google_source.last_sync_status == "error"
        assert google_source.last_sync_error == "Calendar not found"

    @pytest.mark.asyncio
    async def test_revoked_connection_recorded(self, db_session, cipher, connection, google_source):
        connection.revoked_at = datetime(2026, 10, 1, tzinfo=timezone.utc)
        syncer, _, factory = syncer_for(db_session, cipher)

        result = await syncer.sync(google_source)

        assert result.error_code == "auth_required"
        factory.assert_not_called()


class TestDisconnectGoogle:
    """Tests for disconnecting a Google account."""

    @pytest.mark.asyncio
    async def test_disconnect_hides_every_source(self, db_session, cipher, connection, google_source):
        syncer, _, _ = syncer_for(
            db_session, cipher, EventPage(items=[google_item("a", "Swim")], next_sync_token=None)
        )
        await syncer.sync(google_source)

        removed = disconnect_google(db_session, connection)

        assert removed == 1
        assert connection.revoked_at is not None
        assert google_source.is_active is False
        assert live_titles(db_session, google_source) == []
        assert db_session.scalars(select(GoogleCalendarConnection)).one() is connection

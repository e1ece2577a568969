"""
Google Calendar source sync.

Pulls a Google calendar into the child's calendar as read-only rows.
The first pass lists the whole sync window; later passes use Google's
sync token and only apply the delta. A rejected token (410) falls back
to a full listing.
"""

import asyncio
import logging
import uuid
from functools import partial
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from homes_calendar.calendar.roster import Roster, SQLAlchemyRoster
from homes_calendar.config import Settings, get_settings
from homes_calendar.crypto import Cipher
from homes_calendar.exceptions import ConflictError, ForbiddenError
from homes_calendar.integrations.base import (
    SyncResult,
    record_sync_outcome,
    sync_window,
)
from homes_calendar.integrations.google_calendar.adapter import (
    GoogleCalendarAdapter,
    format_rfc3339,
)
from homes_calendar.integrations.google_calendar.client import EventPage, GoogleCalendarClient
from homes_calendar.integrations.google_calendar.exceptions import (
    GoogleCalendarAuthError,
    GoogleCalendarError,
    GoogleSyncTokenExpiredError,
)
from homes_calendar.integrations.google_calendar.oauth import GoogleOAuthFlow
from homes_calendar.integrations.google_calendar.token_storage import (
    get_valid_access_token,
    revoke_connection,
)
from homes_calendar.integrations.reconcile import deactivate_source, reconcile_source
from homes_calendar.models.base import utcnow
from homes_calendar.models.sources import ExternalCalendarSource
from homes_calendar.models.tokens import GoogleCalendarConnection

logger = logging.getLogger(__name__)


class GoogleCalendarSyncer:
    """
    ``SourceSyncer`` for Google Calendar sources.

    The Google client is synchronous; listings run in the default
    executor under ``sync_fetch_timeout_seconds``.
    """

    provider = "google"

    def __init__(
        self,
        session: Session,
        cipher: Cipher,
        roster: Optional[Roster] = None,
        oauth_flow: Optional[GoogleOAuthFlow] = None,
        client_factory: Callable[[str], GoogleCalendarClient] = GoogleCalendarClient.from_access_token,
        settings: Optional[Settings] = None,
    ):
        self.session = session
        self.cipher = cipher
        self.roster = roster or SQLAlchemyRoster(session)
        self.oauth_flow = oauth_flow
        self.client_factory = client_factory
        self.settings = settings or get_settings()

    async def _list(
        self,
        client: GoogleCalendarClient,
        source: ExternalCalendarSource,
        sync_token: Optional[str],
    ) -> EventPage:
        time_min, time_max = sync_window(settings=self.settings)
        call = partial(
            client.list_all_events,
            calendar_id=source.calendar_id,
            time_min=format_rfc3339(time_min),
            time_max=format_rfc3339(time_max),
            sync_token=sync_token,
        )
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(
            loop.run_in_executor(None, call),
            timeout=self.settings.sync_fetch_timeout_seconds,
        )

    async def sync(self, source: ExternalCalendarSource, full: bool = False) -> SyncResult:
        """
        Sync one Google source.

        Args:
            source: A source with ``provider == 'google'``
            full: Ignore the stored sync token

        Returns:
            SyncResult; upstream failures are reported, not raised
        """
        result = SyncResult(source_id=source.id)
        try:
            connection = self.session.get(GoogleCalendarConnection, source.connection_id) \
                if source.connection_id else None
            if connection is None:
                raise GoogleCalendarAuthError("Google account is not connected")

            access_token = await get_valid_access_token(
                self.session, connection, self.cipher, self.oauth_flow
            )
            client = self.client_factory(access_token)

            sync_token = None if full else source.sync_token
            try:
                page = await self._list(client, source, sync_token)
            except GoogleSyncTokenExpiredError:
                logger.info(f"Sync token expired for source {source.id}, running full sync")
                sync_token = None
                source.sync_token = None
                page = await self._list(client, source, None)

            events = [GoogleCalendarAdapter.from_google_event(item) for item in page.items]
            homes = self.roster.homes_for_child(source.child_id)
            result = reconcile_source(
                self.session,
                source,
                events,
                homes,
                full=sync_token is None,
                provider=self.provider,
            )
            source.sync_token = page.next_sync_token
        except GoogleCalendarError as e:
            logger.warning(f"Google sync failed for source {source.id}: {e.message}")
            result.ok = False
            result.error = e.message
            result.error_code = e.code
        except asyncio.TimeoutError:
            logger.warning(f"Google sync timed out for source {source.id}")
            result.ok = False
            result.error = "Calendar took too long to load"
            result.error_code = "timeout"

        record_sync_outcome(source, result, utcnow())
        self.session.flush()
        return result


def add_google_source(
    session: Session,
    connection: GoogleCalendarConnection,
    child_id: uuid.UUID,
    calendar_id: str,
    display_name: str,
    roster: Optional[Roster] = None,
) -> ExternalCalendarSource:
    """
    Subscribe a child to one of the connection's Google calendars.

    Raises:
        ForbiddenError: The connection owner is not a guardian of the child
        ConflictError: The calendar is already imported for this child
    """
    roster = roster or SQLAlchemyRoster(session)
    if connection.profile_id not in roster.guardian_ids(child_id):
        raise ForbiddenError("Only a guardian can import a calendar for this child")

    existing = session.scalars(
        select(ExternalCalendarSource).where(
            ExternalCalendarSource.child_id == child_id,
            ExternalCalendarSource.provider == "google",
            ExternalCalendarSource.calendar_id == calendar_id,
            ExternalCalendarSource.revoked_at.is_(None),
        )
    ).first()
    if existing is not None:
        raise ConflictError("This calendar is already connected")

    source = ExternalCalendarSource(
        provider="google",
        child_id=child_id,
        owner_id=connection.profile_id,
        display_name=display_name,
        connection_id=connection.id,
        calendar_id=calendar_id,
    )
    session.add(source)
    session.flush()
    logger.info(f"Added Google source {source.id} for child {child_id}")
    return source


def disconnect_google(session: Session, connection: GoogleCalendarConnection) -> int:
    """
    Revoke a Google connection and deactivate every source using it.

    Returns:
        Number of imported rows soft-deleted
    """
    revoke_connection(session, connection)
    sources = session.scalars(
        select(ExternalCalendarSource).where(
            ExternalCalendarSource.connection_id == connection.id,
            ExternalCalendarSource.revoked_at.is_(None),
        )
    ).all()
    return sum(deactivate_source(session, source) for source in sources)

"""
Apple / ICS subscription sync.

Connect, replace and disconnect subscription links, and pull a feed into
the child's calendar as read-only rows. The link is stored encrypted;
only its hash (for dedupe) and a masked form (for display) are kept in
the clear.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from homes_calendar.calendar.roster import Roster, SQLAlchemyRoster
from homes_calendar.config import Settings, get_settings
from homes_calendar.crypto import (
    Cipher,
    hash_string,
    mask_ics_url,
    normalize_ics_url,
    validate_ics_url,
)
from homes_calendar.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from homes_calendar.integrations.apple_calendar.exceptions import TIMEOUT, UNKNOWN, IcsSyncError
from homes_calendar.integrations.apple_calendar.fetch import IcsFetcher
from homes_calendar.integrations.apple_calendar.ics_parser import parse_ics
from homes_calendar.integrations.base import SyncResult, record_sync_outcome, sync_window
from homes_calendar.integrations.reconcile import deactivate_source, reconcile_source
from homes_calendar.models.base import utcnow
from homes_calendar.models.sources import ExternalCalendarSource

logger = logging.getLogger(__name__)

PROVIDER = "ics"
DEFAULT_DISPLAY_NAME = "Apple Calendar"


class IcsCalendarSyncer:
    """``SourceSyncer`` for ICS subscriptions (iCloud public calendars and others)."""

    provider = PROVIDER

    def __init__(
        self,
        session: Session,
        cipher: Cipher,
        roster: Optional[Roster] = None,
        fetcher: Optional[IcsFetcher] = None,
        settings: Optional[Settings] = None,
    ):
        self.session = session
        self.cipher = cipher
        self.roster = roster or SQLAlchemyRoster(session)
        self.settings = settings or get_settings()
        self.fetcher = fetcher or IcsFetcher(
            timeout_seconds=self.settings.sync_fetch_timeout_seconds,
            max_bytes=self.settings.ics_max_response_bytes,
        )

    async def sync(self, source: ExternalCalendarSource, full: bool = False) -> SyncResult:
        """
        Fetch and reconcile one ICS source.

        Args:
            source: A source with ``provider == 'ics'``
            full: Skip the conditional-GET validators

        Returns:
            SyncResult; feed failures are reported with the user-facing
            message, not raised
        """
        result = SyncResult(source_id=source.id)
        try:
            try:
                url = self.cipher.decrypt(source.encrypted_url or "")
            except ValueError as e:
                raise IcsSyncError(UNKNOWN, original_error=e)

            fetched = await asyncio.wait_for(
                self.fetcher.fetch(
                    url,
                    etag=None if full else source.etag,
                    last_modified=None if full else source.last_modified,
                ),
                timeout=self.settings.sync_fetch_timeout_seconds,
            )

            if fetched.not_modified:
                logger.info(f"ICS source {source.id} not modified")
                result.not_modified = True
            else:
                window_start, window_end = sync_window(settings=self.settings)
                parsed = parse_ics(
                    fetched.body,
                    window_start,
                    window_end,
                    default_timezone=self.settings.timezone,
                    max_occurrences=self.settings.ics_max_occurrences,
                )
                homes = self.roster.homes_for_child(source.child_id)
                result = reconcile_source(
                    self.session,
                    source,
                    parsed.events,
                    homes,
                    full=True,
                    provider=self.provider,
                )
                if parsed.skipped:
                    result.warnings.append(f"{parsed.skipped} events could not be read")

            source.etag = fetched.etag
            source.last_modified = fetched.last_modified
        except IcsSyncError as e:
            logger.error(f"ICS sync failed for source {source.id}: {e.message}")
            result.ok = False
            result.error = e.message
            result.error_code = e.code
        except asyncio.TimeoutError as e:
            error = IcsSyncError(TIMEOUT, original_error=e)
            logger.error(f"ICS sync failed for source {source.id}: {error.message}")
            result.ok = False
            result.error = error.message
            result.error_code = error.code

        record_sync_outcome(source, result, utcnow())
        self.session.flush()
        return result


def _require_guardian(roster: Roster, child_id: uuid.UUID, user_id: uuid.UUID) -> None:
    if user_id not in roster.guardian_ids(child_id):
        logger.warning(f"User {user_id} is not a guardian of child {child_id}")
        raise ForbiddenError("Only a guardian can connect a calendar for this child")


def _owned_source(session: Session, source_id: uuid.UUID, actor_id: uuid.UUID) -> ExternalCalendarSource:
    source = session.get(ExternalCalendarSource, source_id)
    if source is None or source.provider != PROVIDER or source.owner_id != actor_id:
        raise NotFoundError("Calendar not found")
    return source


def connect_ics_source(
    session: Session,
    cipher: Cipher,
    child_id: uuid.UUID,
    owner_id: uuid.UUID,
    url: str,
    display_name: Optional[str] = None,
    roster: Optional[Roster] = None,
    settings: Optional[Settings] = None,
) -> tuple[ExternalCalendarSource, Optional[str]]:
    """
    Subscribe a child to an ICS link.

    The link is normalised and hashed before the duplicate check, so
    ``webcal://host/a`` and ``https://HOST/a/`` are the same calendar.
    A previously disconnected subscription to the same link is revived.

    Returns:
        (source, warning) where warning flags an unusual-looking link

    Raises:
        ValidationError: The link is not a calendar subscription URL
        ForbiddenError: The owner is not a guardian of the child
        ConflictError: The link is already connected for this child
    """
    settings = settings or get_settings()
    roster = roster or SQLAlchemyRoster(session)

    warning = validate_ics_url(url)
    _require_guardian(roster, child_id, owner_id)

    normalized = normalize_ics_url(url)
    url_hash = hash_string(normalized)

    source = session.scalars(
        select(ExternalCalendarSource).where(
            ExternalCalendarSource.child_id == child_id,
            ExternalCalendarSource.url_hash == url_hash,
        )
    ).first()

    if source is not None and source.revoked_at is None:
        raise ConflictError("This calendar is already connected")

    if source is None:
        source = ExternalCalendarSource(
            provider=PROVIDER,
            child_id=child_id,
            url_hash=url_hash,
        )
        session.add(source)

    source.owner_id = owner_id
    source.display_name = (display_name or "").strip() or DEFAULT_DISPLAY_NAME
    source.encrypted_url = cipher.encrypt(normalized)
    source.masked_url = mask_ics_url(normalized)
    source.refresh_interval_minutes = settings.ics_default_refresh_minutes
    source.etag = None
    source.last_modified = None
    source.is_active = True
    source.revoked_at = None
    source.next_run_at = None
    source.last_sync_status = "never"
    source.last_sync_error = None
    source.last_sync_error_code = None
    session.flush()

    logger.info(f"Connected ICS source {source.id} for child {child_id}")
    return source, warning


def replace_ics_url(
    session: Session,
    cipher: Cipher,
    source_id: uuid.UUID,
    actor_id: uuid.UUID,
    new_url: str,
) -> tuple[ExternalCalendarSource, Optional[str]]:
    """
    Point an existing subscription at a new link (e.g. after it expired).

    Validators are cleared and the source becomes due immediately.

    Raises:
        ValidationError: The new link is not usable
        NotFoundError: Not the actor's ICS source
        ConflictError: The child already has another source for that link
    """
    warning = validate_ics_url(new_url)
    source = _owned_source(session, source_id, actor_id)

    normalized = normalize_ics_url(new_url)
    url_hash = hash_string(normalized)
    clash = session.scalars(
        select(ExternalCalendarSource).where(
            ExternalCalendarSource.child_id == source.child_id,
            ExternalCalendarSource.url_hash == url_hash,
            ExternalCalendarSource.id != source.id,
        )
    ).first()
    if clash is not None:
        raise ConflictError("This calendar is already connected")

    source.encrypted_url = cipher.encrypt(normalized)
    source.url_hash = url_hash
    source.masked_url = mask_ics_url(normalized)
    source.etag = None
    source.last_modified = None
    source.next_run_at = None
    source.last_sync_status = "never"
    source.last_sync_error = None
    source.last_sync_error_code = None
    session.flush()

    logger.info(f"Replaced URL of ICS source {source.id}")
    return source, warning


def disconnect_ics_source(session: Session, source_id: uuid.UUID, actor_id: uuid.UUID) -> int:
    """
    Revoke a subscription and hide everything it imported.

    Returns:
        Number of imported rows soft-deleted

    Raises:
        NotFoundError: Not the actor's ICS source
    """
    source = _owned_source(session, source_id, actor_id)
    return deactivate_source(session, source)


def check_manual_sync_allowed(
    session: Session,
    source_id: uuid.UUID,
    actor_id: uuid.UUID,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
) -> ExternalCalendarSource:
    """
    Gate a user-triggered "sync now".

    Raises:
        NotFoundError: Not the actor's ICS source, or it was disconnected
        ValidationError: Synced less than the minimum interval ago
    """
    settings = settings or get_settings()
    now = now or utcnow()
    source = _owned_source(session, source_id, actor_id)

    if source.revoked_at is not None or not source.is_active:
        raise NotFoundError("Calendar not found")

    min_interval = timedelta(minutes=settings.ics_min_sync_interval_minutes)
    if source.last_sync_at is not None and now - source.last_sync_at < min_interval:
        raise ValidationError("Please wait a few minutes before syncing again")
    return source

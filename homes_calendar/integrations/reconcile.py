"""
Reconcile upstream events into local read-only rows.

One pass per source:
- new upstream event       -> insert row + mapping
- changed upstream event   -> update the mapped row
- unchanged upstream event -> nothing
- cancelled upstream event -> soft-delete the mapped row
- missing upstream event   -> soft-delete (full passes only)

Inserts are keyed by ``(source_id, external_event_id)`` in
``calendar_event_mappings``, so a retried or repeated pass never creates
a second row for the same upstream event.
"""

import logging
import uuid
from datetime import datetime
from typing import Iterable, Optional, Sequence

from sqlalchemy import select, update, and_, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from homes_calendar.calendar.roster import HomeRef
from homes_calendar.integrations.base import ExternalEvent, SyncResult
from homes_calendar.integrations.candidates import classify_home_stay
from homes_calendar.models.base import utcnow
from homes_calendar.models.events import CalendarEventRecord
from homes_calendar.models.sources import CalendarEventMapping, ExternalCalendarSource

logger = logging.getLogger(__name__)


def _fit_columns(values: dict) -> dict:
    """Cut upstream strings to their column's declared length."""
    columns = CalendarEventRecord.__table__.c
    for key, value in values.items():
        length = getattr(columns[key].type, "length", None)
        if isinstance(value, str) and length and len(value) > length:
            values[key] = value[:length]
    return values


def _row_values(
    source: ExternalCalendarSource,
    event: ExternalEvent,
    homes: Sequence[HomeRef],
    provider: str,
) -> dict:
    candidate = classify_home_stay(event, homes)
    return _fit_columns({
        "title": event.title or "Untitled Event",
        "description": event.description,
        "start_at": event.start_at,
        "end_at": event.end_at,
        "all_day": event.all_day,
        "timezone": event.timezone,
        "external_html_link": event.html_link,
        "external_updated_at": event.updated_at,
        "recurrence_rule": event.recurrence_rule,
        "is_home_stay_candidate": candidate.is_candidate,
        "candidate_reason": candidate.reason,
        "candidate_home_id": candidate.home_id,
        "external_calendar_id": source.calendar_id or source.masked_url,
        "external_provider": provider,
    })


def _soft_delete_rows(session: Session, event_ids: Iterable[uuid.UUID], at: datetime) -> int:
    ids = [event_id for event_id in event_ids if event_id is not None]
    if not ids:
        return 0
    stmt = (
        update(CalendarEventRecord)
        .where(
            and_(
                CalendarEventRecord.id.in_(ids),
                CalendarEventRecord.is_deleted.is_(False),
            )
        )
        .values(is_deleted=True, deleted_at=at)
    )
    return session.execute(stmt).rowcount


def reconcile_source(
    session: Session,
    source: ExternalCalendarSource,
    events: Sequence[ExternalEvent],
    homes: Sequence[HomeRef],
    full: bool = True,
    provider: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SyncResult:
    """
    Apply one upstream snapshot (or delta) to a source's local rows.

    All writes happen inside a savepoint. If any of them fails, only this
    source's changes are rolled back and the session stays usable for
    other sources; the database error is re-raised.

    Args:
        session: Database session; changes are flushed, not committed
        source: The source being synced
        events: Upstream events, already normalised
        homes: The child's homes, for candidate detection
        full: ``events`` is the complete upstream window, so anything
            mapped but absent is stale. False for incremental deltas.
        provider: Value for ``source`` / ``external_provider`` on rows
        now: Timestamp for soft deletes

    Returns:
        SyncResult with created/updated/unchanged/deleted counts
    """
    try:
        with session.begin_nested():
            return _apply_snapshot(
                session,
                source,
                events,
                homes,
                provider or source.provider,
                now or utcnow(),
                full,
            )
    except SQLAlchemyError as e:
        logger.error(f"Rolled back reconcile of source {source.id}: {e}")
        raise


def _apply_snapshot(
    session: Session,
    source: ExternalCalendarSource,
    events: Sequence[ExternalEvent],
    homes: Sequence[HomeRef],
    provider: str,
    now: datetime,
    full: bool,
) -> SyncResult:
    result = SyncResult(source_id=source.id)

    mappings = {
        mapping.external_event_id: mapping
        for mapping in session.scalars(
            select(CalendarEventMapping).where(CalendarEventMapping.source_id == source.id)
        )
    }
    mapped_ids = [m.event_id for m in mappings.values() if m.event_id is not None]
    rows = {
        row.id: row
        for row in session.scalars(
            select(CalendarEventRecord)
            .where(CalendarEventRecord.id.in_(mapped_ids))
            .execution_options(populate_existing=True)
        )
    } if mapped_ids else {}

    seen: set[str] = set()
    cancelled_ids: list[uuid.UUID] = []

    for event in events:
        if event.external_id in seen:
            continue
        seen.add(event.external_id)
        mapping = mappings.get(event.external_id)
        row = rows.get(mapping.event_id) if mapping and mapping.event_id else None

        if event.cancelled:
            if row is not None and not row.is_deleted:
                cancelled_ids.append(row.id)
            continue

        digest = event.content_hash()
        values = _row_values(source, event, homes, provider)
        if row is not None and row.candidate_dismissed:
            values["is_home_stay_candidate"] = False
        if values["is_home_stay_candidate"]:
            result.candidates += 1

        if row is not None:
            if mapping.content_hash == digest and not row.is_deleted:
                result.unchanged += 1
                continue
            for key, value in values.items():
                setattr(row, key, value)
            row.is_deleted = False
            row.deleted_at = None
            mapping.content_hash = digest
            result.updated += 1
            continue

        row = CalendarEventRecord(
            id=uuid.uuid4(),
            child_id=source.child_id,
            event_type="event",
            status="confirmed",
            source=provider,
            external_event_id=event.external_id,
            external_source_id=source.id,
            is_read_only=True,
            created_by=source.owner_id,
            **values,
        )
        session.add(row)

        if mapping is None:
            mapping = CalendarEventMapping(
                source_id=source.id,
                external_event_id=event.external_id,
            )
            session.add(mapping)
            mappings[event.external_id] = mapping
        mapping.event_id = row.id
        mapping.content_hash = digest
        result.created += 1

    session.flush()

    result.deleted += _soft_delete_rows(session, cancelled_ids, now)

    if full:
        stale = [
            mapping.event_id
            for external_id, mapping in mappings.items()
            if external_id not in seen and mapping.event_id is not None
        ]
        result.deleted += _soft_delete_rows(session, stale, now)

    source.events_count = session.scalar(
        select(func.count(CalendarEventRecord.id)).where(
            and_(
                CalendarEventRecord.external_source_id == source.id,
                CalendarEventRecord.is_deleted.is_(False),
            )
        )
    )

    logger.info(
        f"Reconciled source {source.id}: created={result.created} updated={result.updated} "
        f"unchanged={result.unchanged} deleted={result.deleted} candidates={result.candidates}"
    )
    return result


def deactivate_source(
    session: Session,
    source: ExternalCalendarSource,
    now: Optional[datetime] = None,
) -> int:
    """
    Disconnect a source: stop syncing it and hide everything it imported.

    Returns:
        Number of rows soft-deleted
    """
    now = now or utcnow()
    source.revoked_at = now
    source.is_active = False
    source.sync_token = None
    stmt = (
        update(CalendarEventRecord)
        .where(
            and_(
                CalendarEventRecord.external_source_id == source.id,
                CalendarEventRecord.is_deleted.is_(False),
            )
        )
        .values(is_deleted=True, deleted_at=now)
    )
    deleted = session.execute(stmt).rowcount
    source.events_count = 0
    session.flush()
    logger.info(f"Deactivated source {source.id}, hid {deleted} imported events")
    return deleted

"""
Scheduled sync of due external calendar sources.

One run picks up to ``sync_max_sources_per_run`` active sources whose
``next_run_at`` has passed and syncs them concurrently. A failure in one
source is recorded on that source and never stops the others.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from homes_calendar.config import Settings, get_settings
from homes_calendar.integrations.base import SourceSyncer, SyncResult, record_sync_outcome
from homes_calendar.models.base import utcnow
from homes_calendar.models.sources import ExternalCalendarSource

logger = logging.getLogger(__name__)


@dataclass
class BatchReport:
    """Per-source results of one scheduled run."""

    results: list[SyncResult] = field(default_factory=list)

    @property
    def synced(self) -> int:
        return sum(1 for result in self.results if result.ok)

    @property
    def failed(self) -> int:
        return sum(1 for result in self.results if not result.ok)

    def to_dict(self) -> dict:
        return {
            "processed": len(self.results),
            "synced": self.synced,
            "failed": self.failed,
            "results": [
                {
                    "source_id": str(result.source_id),
                    "ok": result.ok,
                    "created": result.created,
                    "updated": result.updated,
                    "deleted": result.deleted,
                    "not_modified": result.not_modified,
                    "error": result.error,
                }
                for result in self.results
            ],
        }


def select_due_sources(
    session: Session,
    now: Optional[datetime] = None,
    limit: int = 10,
) -> list[ExternalCalendarSource]:
    """Active, non-revoked sources that are due, least recently synced first."""
    now = now or utcnow()
    stmt = (
        select(ExternalCalendarSource)
        .where(
            ExternalCalendarSource.is_active.is_(True),
            ExternalCalendarSource.revoked_at.is_(None),
            or_(
                ExternalCalendarSource.next_run_at.is_(None),
                ExternalCalendarSource.next_run_at <= now,
            ),
        )
        .order_by(
            ExternalCalendarSource.next_run_at.is_(None).desc(),
            ExternalCalendarSource.next_run_at,
        )
        .limit(limit)
    )
    return list(session.scalars(stmt))


async def _run_one(syncer: SourceSyncer, source: ExternalCalendarSource) -> SyncResult:
    try:
        return await syncer.sync(source)
    except Exception as e:
        # Syncers report upstream failures themselves; anything reaching
        # here is a bug or infrastructure fault in that one source
        logger.error(f"Unexpected error syncing source {source.id}: {e}", exc_info=True)
        result = SyncResult(
            source_id=source.id,
            ok=False,
            error="Could not sync calendar",
            error_code="unknown",
        )
        record_sync_outcome(source, result)
        return result


async def sync_due_sources(
    session: Session,
    syncers: Mapping[str, SourceSyncer],
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
) -> BatchReport:
    """
    Sync every due source once.

    Args:
        session: Database session; committed by the caller
        syncers: Syncer per provider name ('google', 'ics')
        settings: Limits; defaults to the cached settings
        now: Reference time for due-ness

    Returns:
        BatchReport with one result per attempted source
    """
    settings = settings or get_settings()
    sources = select_due_sources(session, now, settings.sync_max_sources_per_run)
    logger.info(f"Scheduled sync: {len(sources)} sources due")

    tasks = []
    skipped = []
    for source in sources:
        syncer = syncers.get(source.provider)
        if syncer is None:
            logger.warning(f"No syncer for provider '{source.provider}' (source {source.id})")
            skipped.append(source)
            continue
        tasks.append(_run_one(syncer, source))

    results = list(await asyncio.gather(*tasks))

    for source in skipped:
        result = SyncResult(
            source_id=source.id,
            ok=False,
            error="Could not sync calendar",
            error_code="unknown",
        )
        record_sync_outcome(source, result, now)
        results.append(result)

    session.flush()
    report = BatchReport(results=results)
    logger.info(f"Scheduled sync finished: {report.synced} ok, {report.failed} failed")
    return report

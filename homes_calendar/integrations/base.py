"""
Shared types for external calendar sync.

Provider adapters (Google, ICS) normalise upstream events into
``ExternalEvent`` and hand them to ``reconcile`` which owns all writes of
read-only rows.
"""

import hashlib
import json
import uuid
from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Protocol

from dateutil.relativedelta import relativedelta

from homes_calendar.config import Settings, get_settings
from homes_calendar.models.base import utcnow
from homes_calendar.models.sources import ExternalCalendarSource


@dataclass
class ExternalEvent:
    """
    Normalized event representation across calendar providers.

    ``external_id`` is unique within one source; for expanded recurring
    events it includes the occurrence start.
    """

    external_id: str
    title: str
    start_at: datetime
    end_at: datetime
    all_day: bool = False
    description: Optional[str] = None
    location: Optional[str] = None
    timezone: Optional[str] = None
    html_link: Optional[str] = None
    recurrence_rule: Optional[str] = None
    updated_at: Optional[datetime] = None
    cancelled: bool = False
    series_id: Optional[str] = None

    @property
    def duration_hours(self) -> float:
        return (self.end_at - self.start_at).total_seconds() / 3600

    @property
    def is_recurring(self) -> bool:
        return bool(self.recurrence_rule or self.series_id)

    def content_hash(self) -> str:
        """Stable digest of every field copied into the local row."""
        payload = {
            "title": self.title,
            "start_at": self.start_at.isoformat(),
            "end_at": self.end_at.isoformat(),
            "all_day": self.all_day,
            "description": self.description,
            "location": self.location,
            "timezone": self.timezone,
            "html_link": self.html_link,
            "recurrence_rule": self.recurrence_rule,
        }
        encoded = json.dumps(payload, sort_keys=True).encode("utf-8")
        return hashlib.sha256(encoded).hexdigest()


@dataclass
class SyncResult:
    """Outcome of syncing one source."""

    source_id: uuid.UUID
    ok: bool = True
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    candidates: int = 0
    not_modified: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None
    warnings: list[str] = field(default_factory=list)


class SourceSyncer(Protocol):
    """
    Protocol for provider sync adapters.

    Implementations:
    - GoogleCalendarSyncer: Google Calendar API v3
    - IcsCalendarSyncer: Apple/iCloud and other ICS subscriptions

    ``sync`` must not raise for upstream failures; it reports them in the
    returned ``SyncResult`` so one bad source never stops a batch.
    """

    provider: str

    @abstractmethod
    async def sync(self, source: ExternalCalendarSource, full: bool = False) -> SyncResult:
        """
        Pull the upstream calendar and reconcile it into local rows.

        Args:
            source: Source to sync
            full: Ignore incremental state (sync tokens, HTTP validators)

        Returns:
            Counts of created/updated/deleted rows, or the failure
        """
        ...


def inclusive_all_day_end(exclusive_end: datetime) -> datetime:
    """
    Last instant of an all-day span whose upstream end is the next midnight.

    Google and iCalendar give all-day ends as the exclusive following date;
    stored all-day events end at 23:59:59.999999 of their last day.
    """
    return exclusive_end - timedelta(microseconds=1)


def sync_window(
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> tuple[datetime, datetime]:
    """Window of upstream events kept locally: N months back, M months ahead."""
    settings = settings or get_settings()
    now = now or utcnow()
    return (
        now - relativedelta(months=settings.sync_past_months),
        now + relativedelta(months=settings.sync_future_months),
    )


def record_sync_outcome(
    source: ExternalCalendarSource,
    result: SyncResult,
    at: Optional[datetime] = None,
) -> None:
    """Stamp a source with the outcome of its latest sync attempt and schedule the next one."""
    at = at or utcnow()
    source.last_sync_at = at
    source.next_run_at = at + timedelta(minutes=source.refresh_interval_minutes or 30)
    if result.ok:
        source.last_sync_status = "ok"
        source.last_sync_error = None
        source.last_sync_error_code = None
    else:
        source.last_sync_status = "error"
        source.last_sync_error = result.error
        source.last_sync_error_code = result.error_code

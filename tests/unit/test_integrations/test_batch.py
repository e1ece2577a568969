"""Tests for the scheduled sync batch."""

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select

from homes_calendar.config import Settings
from homes_calendar.integrations.base import ExternalEvent, SyncResult
from homes_calendar.integrations.batch import BatchReport, select_due_sources, sync_due_sources
from homes_calendar.integrations.reconcile import reconcile_source
from homes_calendar.models import CalendarEventRecord, ExternalCalendarSource

NOW = datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)
START = datetime(2026, 10, 24, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_source(db_session, child, parent_a):
    def _make(name: str, provider: str = "ics", next_run_at=None, **overrides) -> ExternalCalendarSource:
        source = ExternalCalendarSource(
            provider=provider,
            child_id=child.id,
            owner_id=parent_a.id,
            display_name=name,
            next_run_at=next_run_at,
            **overrides,
        )
        db_session.add(source)
        db_session.flush()
        return source

    return _make


def syncer_returning(provider: str, side_effect=None) -> MagicMock:
    syncer = MagicMock()
    syncer.provider = provider
    if side_effect is None:
        syncer.sync = AsyncMock(side_effect=lambda source: SyncResult(source_id=source.id, created=1))
    else:
        syncer.sync = AsyncMock(side_effect=side_effect)
    return syncer


class TestSelectDueSources:
    """Tests for picking due sources."""

    def test_never_synced_first_then_oldest(self, db_session, make_source):
        late = make_source("late", next_run_at=NOW - timedelta(minutes=5))
        early = make_source("early", next_run_at=NOW - timedelta(hours=2))
        fresh = make_source("fresh")
        make_source("future", next_run_at=NOW + timedelta(minutes=10))

        due = select_due_sources(db_session, NOW, limit=10)

        assert [source.id for source in due] == [fresh.id, early.id, late.id]

    def test_inactive_and_revoked_skipped(self, db_session, make_source):
        make_source("off", is_active=False)
        make_source("gone", revoked_at=NOW - timedelta(days=1))
        active = make_source("on")

        assert select_due_sources(db_session, NOW) == [active]

    def test_limit(self, db_session, make_source):
        for index in range(5):
            make_source(f"s{index}", next_run_at=NOW - timedelta(minutes=index))

        assert len(select_due_sources(db_session, NOW, limit=3)) == 3


class TestSyncDueSources:
    """Tests for running one scheduled batch."""

    @pytest.mark.asyncio
    async def test_failure_isolated_per_source(self, db_session, make_source):
        """Test one source blowing up never stops the others."""
        good = make_source("good")
        bad = make_source("bad", provider="google")
        ics = syncer_returning("ics")
        google = syncer_returning("google", side_effect=RuntimeError("boom"))

        report = await sync_due_sources(
            db_session, {"ics": ics, "google": google}, Settings(_env_file=None), now=NOW
        )

        assert report.synced == 1
        assert report.failed == 1
        ics.sync.assert_awaited_once_with(good)
        assert bad.last_sync_status == "error"
        assert bad.last_sync_error_code == "unknown"
        assert bad.next_run_at is not None

    @pytest.mark.asyncio
    async def test_missing_syncer_recorded(self, db_session, make_source):
        source = make_source("orphan", provider="google")

        report = await sync_due_sources(db_session, {}, Settings(_env_file=None), now=NOW)

        assert report.failed == 1
        assert source.last_sync_status == "error"
        assert source.next_run_at == NOW + timedelta(minutes=source.refresh_interval_minutes)

    @pytest.mark.asyncio
    async def test_respects_batch_size(self, db_session, make_source):
        for index in range(4):
            make_source(f"s{index}")
        ics = syncer_returning("ics")

        report = await sync_due_sources(
            db_session, {"ics": ics}, Settings(_env_file=None, sync_max_sources_per_run=2), now=NOW
        )

        assert len(report.results) == 2
        assert ics.sync.await_count == 2

    @pytest.mark.asyncio
    async def test_database_error_rolls_back_one_source(self, db_session, make_source, roster, child):
        """Test a rejected write in one source leaves the shared session committable."""
        good = make_source("good")
        bad = make_source("bad")
        homes = roster.homes_for_child(child.id)

        async def write_rows(source):
            end = START - timedelta(hours=1) if source.id == bad.id else START + timedelta(hours=1)
            event = ExternalEvent(external_id="swim", title="Swim", start_at=START, end_at=end)
            return reconcile_source(db_session, source, [event], homes)

        report = await sync_due_sources(
            db_session, {"ics": syncer_returning("ics", side_effect=write_rows)},
            Settings(_env_file=None), now=NOW,
        )
        db_session.commit()

        assert report.synced == 1
        assert report.failed == 1
        assert good.events_count == 1
        assert bad.last_sync_status == "error"
        rows = db_session.scalars(select(CalendarEventRecord)).all()
        assert [row.external_source_id for row in rows] == [good.id]


class TestBatchReport:
    """Tests for the cron response payload."""

    def test_to_dict(self):
        report = BatchReport(results=[
            SyncResult(source_id=uuid.UUID(int=1), created=2),
        ])
        payload = report.to_dict()

        assert payload["processed"] == 1
        assert payload["synced"] == 1
        assert payload["failed"] == 0
        assert payload["results"][0]["source_id"] == "00000000-0000-0000-0000-000000000001"
        assert payload["results"][0]["created"] == 2

"""Tests for reconciling upstream events into read-only rows."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from homes_calendar.integrations.base import ExternalEvent, SyncResult, record_sync_outcome, sync_window
from homes_calendar.integrations.reconcile import deactivate_source, reconcile_source
from homes_calendar.config import Settings
from homes_calendar.models import CalendarEventMapping, CalendarEventRecord

START = datetime(2026, 10, 24, tzinfo=timezone.utc)


def upstream(external_id: str, title: str = "Swim practice", **overrides) -> ExternalEvent:
    values = dict(
        external_id=external_id,
        title=title,
        start_at=START,
        end_at=START + timedelta(hours=1),
    )
    values.update(overrides)
    return ExternalEvent(**values)


@pytest.fixture
def homes(roster, child):
    return roster.homes_for_child(child.id)


def live_rows(db_session, source):
    stmt = select(CalendarEventRecord).where(
        CalendarEventRecord.external_source_id == source.id,
        CalendarEventRecord.is_deleted.is_(False),
    ).execution_options(populate_existing=True)
    return list(db_session.scalars(stmt))


class TestReconcileSource:
    """Tests for reconcile_source."""

    def test_new_events_inserted_read_only(self, db_session, ics_source, homes, parent_a):
        """Test imported rows are confirmed, read-only and tagged with the source."""
        result = reconcile_source(db_session, ics_source, [upstream("a"), upstream("b")], homes)

        assert result.created == 2
        rows = live_rows(db_session, ics_source)
        assert len(rows) == 2
        row = rows[0]
        assert row.is_read_only is True
        assert row.status == "confirmed"
        assert row.event_type == "event"
        assert row.source == "ics"
        assert row.created_by == parent_a.id
        assert ics_source.events_count == 2

    def test_repeat_pass_is_idempotent(self, db_session, ics_source, homes):
        """Test the same snapshot twice creates nothing new."""
        events = [upstream("a"), upstream("b")]
        reconcile_source(db_session, ics_source, events, homes)

        second = reconcile_source(db_session, ics_source, events, homes)

        assert second.created == 0
        assert second.unchanged == 2
        assert len(live_rows(db_session, ics_source)) == 2
        mappings = db_session.scalars(select(CalendarEventMapping)).all()
        assert len(mappings) == 2

    def test_duplicate_ids_in_one_pass(self, db_session, ics_source, homes):
        result = reconcile_source(db_session, ics_source, [upstream("a"), upstream("a")], homes)
        assert result.created == 1

    def test_changed_event_updated(self, db_session, ics_source, homes):
        reconcile_source(db_session, ics_source, [upstream("a")], homes)

        result = reconcile_source(db_session, ics_source, [upstream("a", title="Swim meet")], homes)

        assert result.updated == 1
        assert [row.title for row in live_rows(db_session, ics_source)] == ["Swim meet"]

    def test_missing_event_deleted_on_full_pass(self, db_session, ics_source, homes):
        reconcile_source(db_session, ics_source, [upstream("a"), upstream("b")], homes)

        result = reconcile_source(db_session, ics_source, [upstream("a")], homes)

        assert result.deleted == 1
        assert [row.external_event_id for row in live_rows(db_session, ics_source)] == ["a"]
        assert ics_source.events_count == 1

    def test_missing_event_kept_on_delta(self, db_session, ics_source, homes):
        """Test incremental passes only touch the events they carry."""
        reconcile_source(db_session, ics_source, [upstream("a"), upstream("b")], homes)

        result = reconcile_source(db_session, ics_source, [upstream("a")], homes, full=False)

        assert result.deleted == 0
        assert len(live_rows(db_session, ics_source)) == 2

    def test_cancelled_event_deleted(self, db_session, ics_source, homes):
        reconcile_source(db_session, ics_source, [upstream("a")], homes)

        result = reconcile_source(db_session, ics_source, [upstream("a", cancelled=True)], homes, full=False)

        assert result.deleted == 1
        assert live_rows(db_session, ics_source) == []

    def test_reappearing_event_restored(self, db_session, ics_source, homes):
        """Test an event deleted upstream and later restored comes back on the same row."""
        reconcile_source(db_session, ics_source, [upstream("a")], homes)
        first_id = live_rows(db_session, ics_source)[0].id
        reconcile_source(db_session, ics_source, [], homes)

        result = reconcile_source(db_session, ics_source, [upstream("a")], homes)

        assert result.updated == 1
        assert [row.id for row in live_rows(db_session, ics_source)] == [first_id]

    def test_candidates_flagged(self, db_session, ics_source, homes, dad_home):
        """Test home-stay candidates are flagged, never turned into home days."""
        result = reconcile_source(
            db_session, ics_source, [upstream("a", title="Weekend at Dad's", all_day=True)], homes
        )

        assert result.candidates == 1
        row = live_rows(db_session, ics_source)[0]
        assert row.is_home_stay_candidate is True
        assert row.candidate_reason == "home_name_match"
        assert row.candidate_home_id == dad_home.id
        assert row.event_type == "event"

    def test_dismissed_candidate_stays_dismissed(self, db_session, ics_source, homes, store):
        """Test an ignored candidate is not flagged again when upstream changes it."""
        reconcile_source(db_session, ics_source, [upstream("a", title="Weekend at Dad's", all_day=True)], homes)
        row = live_rows(db_session, ics_source)[0]
        store.dismiss_candidates([row.id])

        result = reconcile_source(
            db_session, ics_source, [upstream("a", title="Long weekend at Dad's", all_day=True)], homes
        )

        assert result.updated == 1
        assert result.candidates == 0
        row = live_rows(db_session, ics_source)[0]
        assert row.title == "Long weekend at Dad's"
        assert row.is_home_stay_candidate is False

    def test_empty_title_gets_placeholder(self, db_session, ics_source, homes):
        reconcile_source(db_session, ics_source, [upstream("a", title="")], homes)
        assert live_rows(db_session, ics_source)[0].title == "Untitled Event"

    def test_long_title_cut_to_column(self, db_session, ics_source, homes):
        """Test oversized upstream text is trimmed to fit the table."""
        reconcile_source(db_session, ics_source, [upstream("a", title="x" * 400)], homes)
        assert len(live_rows(db_session, ics_source)[0].title) == 300

    def test_failed_write_rolls_back_only_this_pass(self, db_session, ics_source, homes):
        """Test a rejected row leaves the session usable and earlier imports intact."""
        reconcile_source(db_session, ics_source, [upstream("a")], homes)
        backwards = upstream("b", start_at=START, end_at=START - timedelta(hours=1))

        with pytest.raises(IntegrityError):
            reconcile_source(db_session, ics_source, [upstream("a"), backwards], homes)

        db_session.commit()
        assert [row.external_event_id for row in live_rows(db_session, ics_source)] == ["a"]


class TestDeactivateSource:
    """Tests for disconnecting a source."""

    def test_hides_imported_rows(self, db_session, ics_source, homes):
        reconcile_source(db_session, ics_source, [upstream("a"), upstream("b")], homes)

        removed = deactivate_source(db_session, ics_source)

        assert removed == 2
        assert ics_source.is_active is False
        assert ics_source.revoked_at is not None
        assert ics_source.events_count == 0
        assert live_rows(db_session, ics_source) == []


class TestSyncHelpers:
    """Tests for window and outcome bookkeeping."""

    def test_sync_window(self):
        now = datetime(2026, 10, 16, tzinfo=timezone.utc)
        start, end = sync_window(now, Settings(_env_file=None, sync_past_months=1, sync_future_months=2))

        assert start == datetime(2026, 9, 16, tzinfo=timezone.utc)
        assert end == datetime(2026, 12, 16, tzinfo=timezone.utc)

    def test_record_failure_then_success(self, ics_source):
        at = datetime(2026, 10, 16, tzinfo=timezone.utc)
        record_sync_outcome(
            ics_source, SyncResult(source_id=ics_source.id, ok=False, error="Gone", error_code="x"), at
        )

        assert ics_source.last_sync_status == "error"
        assert ics_source.last_sync_error == "Gone"
        assert ics_source.next_run_at == at + timedelta(minutes=ics_source.refresh_interval_minutes)

        record_sync_outcome(ics_source, SyncResult(source_id=ics_source.id), at)

        assert ics_source.last_sync_status == "ok"
        assert ics_source.last_sync_error is None

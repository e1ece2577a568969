"""
Unit tests for the calendar view controller.
"""

import asyncio
import uuid
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock

import pytest

from homes_calendar.calendar.controller import (
    ActionsBackend,
    CalendarController,
    CalendarFilters,
    CalendarViewState,
    EventsLoaded,
    RefreshFailed,
    RefreshStarted,
    SetChild,
    SetFilters,
    ShiftMonth,
    reduce,
    visible_range,
)
from homes_calendar.calendar.types import (
    CalendarEvent,
    CalendarEventDisplay,
    CreateHomeDayPayload,
    Result,
)

TODAY = date(2026, 10, 16)


def display(start: datetime, end: datetime) -> CalendarEventDisplay:
    return CalendarEventDisplay(
        event=CalendarEvent(
            id=uuid.uuid4(),
            child_id=uuid.uuid4(),
            title="x",
            start_at=start,
            end_at=end,
        )
    )


def mock_backend(events=None, pending=0) -> AsyncMock:
    backend = AsyncMock()
    backend.list_events.return_value = Result.success(events or [])
    backend.count_pending.return_value = Result.success(pending)
    return backend


class TestReduce:
    """Tests for the pure state transitions."""

    def _state(self, **overrides) -> CalendarViewState:
        values = dict(viewer_id=uuid.uuid4(), current_date=TODAY)
        values.update(overrides)
        return CalendarViewState(**values)

    def test_shift_month(self):
        state = reduce(self._state(current_date=date(2026, 1, 31)), ShiftMonth(1))
        assert state.current_date == date(2026, 2, 28)

    def test_set_child_clears_loaded_state(self):
        """Test switching child drops events and selection."""
        loaded = self._state(events=(display(datetime.now(timezone.utc), datetime.now(timezone.utc)),))
        loaded = reduce(loaded, SetChild(uuid.uuid4()))

        assert loaded.events == ()
        assert loaded.selected_event_id is None

    def test_set_filters(self):
        state = reduce(self._state(), SetFilters({"show_travel": False}))
        assert state.filters.show_travel is False
        assert state.filters.event_types() == ["home_day", "event"]

    def test_unknown_filter_rejected(self):
        with pytest.raises(ValueError):
            reduce(self._state(), SetFilters({"show_everything": True}))

    def test_stale_load_discarded(self):
        """Test a response for an older refresh is ignored."""
        state = reduce(self._state(), RefreshStarted(2))
        stale = reduce(state, EventsLoaded(1, (display(datetime.now(timezone.utc), datetime.now(timezone.utc)),), 5))

        assert stale.events == ()
        assert stale.is_loading is True

    def test_failed_refresh_sets_error(self):
        state = reduce(self._state(), RefreshStarted(1))
        state = reduce(state, RefreshFailed(1, "boom"))
        assert state.error == "boom"
        assert state.is_loading is False

    def test_selection_dropped_when_event_gone(self):
        item = display(datetime.now(timezone.utc), datetime.now(timezone.utc))
        state = self._state(events=(item,), selected_event_id=item.id, generation=1)

        state = reduce(state, EventsLoaded(1, (), 0))

        assert state.selected_event_id is None


class TestFilters:
    """Tests for filter to query mapping."""

    def test_default_hides_rejected(self):
        assert CalendarFilters().statuses() == ["confirmed", "proposed"]

    def test_show_rejected(self):
        filters = CalendarFilters(show_pending=False, show_rejected=True)
        assert filters.statuses() == ["confirmed", "rejected"]


class TestVisibleRange:
    def test_spans_three_months(self):
        start, end = visible_range(TODAY)
        assert start.date() == date(2026, 9, 1)
        assert end.date() == date(2026, 11, 30)


class TestCalendarController:
    """Tests for the async controller."""

    @pytest.mark.asyncio
    async def test_refresh_loads_events_and_count(self):
        """Test refresh queries the visible range and the pending count."""
        child_id = uuid.uuid4()
        item = display(datetime(2026, 10, 16, 9, tzinfo=timezone.utc), datetime(2026, 10, 16, 10, tzinfo=timezone.utc))
        backend = mock_backend([item], pending=2)
        controller = CalendarController(backend, uuid.uuid4(), child_id=child_id, today=lambda: TODAY)

        state = await controller.refresh()

        assert state.events == (item,)
        assert state.pending_count == 2
        assert state.is_loading is False
        filters = backend.list_events.call_args.args[0]
        assert filters.child_id == child_id
        assert filters.statuses == ["confirmed", "proposed"]

    @pytest.mark.asyncio
    async def test_refresh_without_child_is_empty(self):
        backend = mock_backend()
        controller = CalendarController(backend, uuid.uuid4(), today=lambda: TODAY)

        state = await controller.refresh()

        assert state.events == ()
        backend.list_events.assert_not_called()

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_error(self):
        backend = mock_backend()
        backend.list_events.return_value = Result(ok=False, error="Database down", error_code="x")
        controller = CalendarController(backend, uuid.uuid4(), child_id=uuid.uuid4(), today=lambda: TODAY)

        state = await controller.refresh()

        assert state.error == "Database down"
        backend.count_pending.assert_not_called()

    @pytest.mark.asyncio
    async def test_all_types_hidden_skips_query(self):
        backend = mock_backend()
        controller = CalendarController(backend, uuid.uuid4(), child_id=uuid.uuid4(), today=lambda: TODAY)
        controller._state = reduce(
            controller.state,
            SetFilters({"show_home_days": False, "show_travel": False, "show_events": False}),
        )

        state = await controller.refresh()

        assert state.events == ()
        backend.list_events.assert_not_called()

    @pytest.mark.asyncio
    async def test_navigation_debounces_refresh(self):
        """Test rapid navigation results in a single fetch."""
        backend = mock_backend()
        controller = CalendarController(
            backend, uuid.uuid4(), child_id=uuid.uuid4(), today=lambda: TODAY, debounce_seconds=0.01
        )

        controller.go_to_next()
        controller.go_to_next()
        controller.go_to_next()
        await controller._pending_refresh

        assert controller.state.current_date == date(2027, 1, 16)
        assert backend.list_events.await_count == 1

    @pytest.mark.asyncio
    async def test_view_change_does_not_refresh(self):
        backend = mock_backend()
        controller = CalendarController(backend, uuid.uuid4(), child_id=uuid.uuid4(), today=lambda: TODAY)

        controller.set_view("agenda")
        await asyncio.sleep(0)

        assert controller.state.view == "agenda"
        assert controller._pending_refresh is None

    @pytest.mark.asyncio
    async def test_mutation_refreshes_on_success(self):
        backend = mock_backend()
        backend.confirm_home_day.return_value = Result.success(None)
        controller = CalendarController(backend, uuid.uuid4(), child_id=uuid.uuid4(), today=lambda: TODAY)

        result = await controller.confirm(uuid.uuid4())

        assert result.ok is True
        assert backend.list_events.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_mutation_skips_refresh(self):
        backend = mock_backend()
        backend.confirm_home_day.return_value = Result(ok=False, error="nope", error_code="forbidden")
        controller = CalendarController(backend, uuid.uuid4(), child_id=uuid.uuid4(), today=lambda: TODAY)

        result = await controller.confirm(uuid.uuid4())

        assert result.error_code == "forbidden"
        backend.list_events.assert_not_called()

    def test_events_for_date(self):
        controller = CalendarController(mock_backend(), uuid.uuid4(), today=lambda: TODAY)
        on_day = display(datetime(2026, 10, 16, 9, tzinfo=timezone.utc), datetime(2026, 10, 17, 9, tzinfo=timezone.utc))
        other = display(datetime(2026, 10, 20, 9, tzinfo=timezone.utc), datetime(2026, 10, 20, 10, tzinfo=timezone.utc))
        controller._state = CalendarViewState(viewer_id=uuid.uuid4(), current_date=TODAY, events=(on_day, other))

        assert controller.events_for_date(date(2026, 10, 17)) == [on_day]


class TestActionsBackend:
    """Tests for the controller against the real workflow."""

    @pytest.mark.asyncio
    async def test_proposal_appears_after_refresh(self, actions, child, dad_home, parent_a, parent_b):
        """Test a proposal shows up for the other parent with a pending badge."""
        proposer = CalendarController(ActionsBackend(actions), parent_a.id, child_id=child.id, today=lambda: TODAY)
        reviewer = CalendarController(ActionsBackend(actions), parent_b.id, child_id=child.id, today=lambda: TODAY)

        outcome = await proposer.propose_home_day(CreateHomeDayPayload(
            child_id=child.id,
            home_id=dad_home.id,
            start_at=datetime(2026, 10, 24, tzinfo=timezone.utc),
            end_at=datetime(2026, 10, 25, tzinfo=timezone.utc),
        ))
        state = await reviewer.refresh()

        assert outcome.ok is True
        assert proposer.state.pending_count == 0
        assert len(proposer.state.events) == 1
        assert state.pending_count == 1
        assert state.events[0].can_confirm is True

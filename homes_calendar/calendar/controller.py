"""
Calendar view controller.

Client-side state for a calendar screen: visible month, view mode,
filters, selected event and the loaded event list.

- ``CalendarViewState`` is an immutable snapshot
- ``reduce`` is the synchronous state transition function
- ``CalendarController`` owns the async side: it fetches through a
  ``CalendarBackend``, debounces refresh requests, and after every
  mutation re-fetches the visible range instead of patching local state

A refresh that finishes after a newer one started is discarded, so the
list always reflects the latest request.
"""

import asyncio
import logging
import uuid
from abc import abstractmethod
from dataclasses import dataclass, field, replace
from datetime import date, datetime, tzinfo
from typing import Any, Callable, Literal, Optional, Protocol, Union

from dateutil.relativedelta import relativedelta

from homes_calendar.calendar.actions import CalendarActions
from homes_calendar.calendar.dates import day_bounds, month_end, month_start, overlaps
from homes_calendar.calendar.types import (
    CalendarEventDisplay,
    CreateEventPayload,
    CreateHomeDayPayload,
    CreateTravelPayload,
    EventStatus,
    EventType,
    ListEventsFilter,
    ProposeOutcome,
    Result,
    UpdateEventPayload,
)

logger = logging.getLogger(__name__)

CalendarView = Literal["month", "agenda"]


# =============================================================================
# Backend
# =============================================================================


class CalendarBackend(Protocol):
    """Async access to the workflow operations for one viewer."""

    @abstractmethod
    async def list_events(self, filters: ListEventsFilter, viewer_id: uuid.UUID) -> Result[list[CalendarEventDisplay]]:
        ...

    @abstractmethod
    async def count_pending(self, viewer_id: uuid.UUID, child_id: Optional[uuid.UUID]) -> Result[int]:
        ...

    @abstractmethod
    async def propose_home_day(self, payload: CreateHomeDayPayload, actor_id: uuid.UUID) -> Result[ProposeOutcome]:
        ...

    @abstractmethod
    async def propose_from_candidate(
        self, event_id: uuid.UUID, actor_id: uuid.UUID, home_id: Optional[uuid.UUID]
    ) -> Result[ProposeOutcome]:
        ...

    @abstractmethod
    async def confirm_home_day(self, event_id: uuid.UUID, actor_id: uuid.UUID) -> Result[CalendarEventDisplay]:
        ...

    @abstractmethod
    async def reject_home_day(
        self, event_id: uuid.UUID, actor_id: uuid.UUID, reason: Optional[str]
    ) -> Result[CalendarEventDisplay]:
        ...

    @abstractmethod
    async def create_event(self, payload: CreateEventPayload, actor_id: uuid.UUID) -> Result[CalendarEventDisplay]:
        ...

    @abstractmethod
    async def create_travel(self, payload: CreateTravelPayload, actor_id: uuid.UUID) -> Result[CalendarEventDisplay]:
        ...

    @abstractmethod
    async def update_event(
        self, event_id: uuid.UUID, patch: UpdateEventPayload, actor_id: uuid.UUID
    ) -> Result[CalendarEventDisplay]:
        ...

    @abstractmethod
    async def delete_event(self, event_id: uuid.UUID, actor_id: uuid.UUID) -> Result[None]:
        ...


class ActionsBackend:
    """``CalendarBackend`` calling a ``CalendarActions`` in-process."""

    def __init__(self, actions: CalendarActions):
        self.actions = actions

    async def list_events(self, filters, viewer_id):
        return self.actions.list_events(filters, viewer_id)

    async def count_pending(self, viewer_id, child_id):
        return self.actions.count_pending(viewer_id, child_id)

    async def propose_home_day(self, payload, actor_id):
        return self.actions.propose_home_day(payload, actor_id)

    async def propose_from_candidate(self, event_id, actor_id, home_id):
        return self.actions.propose_from_candidate(event_id, actor_id, home_id)

    async def confirm_home_day(self, event_id, actor_id):
        return self.actions.confirm_home_day(event_id, actor_id)

    async def reject_home_day(self, event_id, actor_id, reason):
        return self.actions.reject_home_day(event_id, actor_id, reason)

    async def create_event(self, payload, actor_id):
        return self.actions.create_event(payload, actor_id)

    async def create_travel(self, payload, actor_id):
        return self.actions.create_travel(payload, actor_id)

    async def update_event(self, event_id, patch, actor_id):
        return self.actions.update_event(event_id, patch, actor_id)

    async def delete_event(self, event_id, actor_id):
        return self.actions.delete_event(event_id, actor_id)


# =============================================================================
# State
# =============================================================================


@dataclass(frozen=True)
class CalendarFilters:
    """Independent toggles, AND-combined with the date-range query."""

    show_home_days: bool = True
    show_travel: bool = True
    show_events: bool = True
    show_pending: bool = True
    show_rejected: bool = False

    def event_types(self) -> list[EventType]:
        types: list[EventType] = []
        if self.show_home_days:
            types.append("home_day")
        if self.show_travel:
            types.append("travel")
        if self.show_events:
            types.append("event")
        return types

    def statuses(self) -> list[EventStatus]:
        statuses: list[EventStatus] = ["confirmed"]
        if self.show_pending:
            statuses.append("proposed")
        if self.show_rejected:
            statuses.append("rejected")
        return statuses


@dataclass(frozen=True)
class CalendarViewState:
    viewer_id: uuid.UUID
    current_date: date
    child_id: Optional[uuid.UUID] = None
    view: CalendarView = "month"
    filters: CalendarFilters = field(default_factory=CalendarFilters)
    events: tuple[CalendarEventDisplay, ...] = ()
    selected_event_id: Optional[uuid.UUID] = None
    pending_count: int = 0
    is_loading: bool = False
    error: Optional[str] = None
    # Id of the newest refresh; older responses are dropped
    generation: int = 0

    @property
    def selected_event(self) -> Optional[CalendarEventDisplay]:
        if self.selected_event_id is None:
            return None
        for display in self.events:
            if display.id == self.selected_event_id:
                return display
        return None


# Messages accepted by ``reduce``


@dataclass(frozen=True)
class SetView:
    view: CalendarView


@dataclass(frozen=True)
class SetDate:
    current_date: date


@dataclass(frozen=True)
class ShiftMonth:
    months: int


@dataclass(frozen=True)
class SetChild:
    child_id: Optional[uuid.UUID]


@dataclass(frozen=True)
class SetFilters:
    changes: dict[str, bool]


@dataclass(frozen=True)
class SelectEvent:
    event_id: Optional[uuid.UUID]


@dataclass(frozen=True)
class RefreshStarted:
    generation: int


@dataclass(frozen=True)
class EventsLoaded:
    generation: int
    events: tuple[CalendarEventDisplay, ...]
    pending_count: int


@dataclass(frozen=True)
class RefreshFailed:
    generation: int
    error: str


ViewAction = Union[
    SetView, SetDate, ShiftMonth, SetChild, SetFilters, SelectEvent,
    RefreshStarted, EventsLoaded, RefreshFailed,
]


def reduce(state: CalendarViewState, action: ViewAction) -> CalendarViewState:
    """Apply one message to the view state. Pure; performs no I/O."""
    if isinstance(action, SetView):
        return replace(state, view=action.view)

    if isinstance(action, SetDate):
        return replace(state, current_date=action.current_date)

    if isinstance(action, ShiftMonth):
        return replace(state, current_date=state.current_date + relativedelta(months=action.months))

    if isinstance(action, SetChild):
        return replace(
            state,
            child_id=action.child_id,
            events=(),
            selected_event_id=None,
            pending_count=0,
            error=None,
        )

    if isinstance(action, SetFilters):
        unknown = set(action.changes) - set(CalendarFilters.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown filters: {sorted(unknown)}")
        return replace(state, filters=replace(state.filters, **action.changes))

    if isinstance(action, SelectEvent):
        return replace(state, selected_event_id=action.event_id)

    if isinstance(action, RefreshStarted):
        return replace(state, generation=action.generation, is_loading=True, error=None)

    if isinstance(action, EventsLoaded):
        if action.generation != state.generation:
            return state
        ids = {display.id for display in action.events}
        selected = state.selected_event_id if state.selected_event_id in ids else None
        return replace(
            state,
            events=action.events,
            pending_count=action.pending_count,
            selected_event_id=selected,
            is_loading=False,
            error=None,
        )

    if isinstance(action, RefreshFailed):
        if action.generation != state.generation:
            return state
        return replace(state, is_loading=False, error=action.error)

    raise TypeError(f"Unknown view action: {action!r}")


def visible_range(current_date: date, zone: Optional[tzinfo] = None) -> tuple[datetime, datetime]:
    """Fetch window: the visible month plus one month either side."""
    start, _ = day_bounds(month_start(current_date - relativedelta(months=1)), zone)
    _, end = day_bounds(month_end(current_date + relativedelta(months=1)), zone)
    return start, end


# Changes to these fields invalidate the loaded event list
_QUERY_FIELDS = ("child_id", "filters")


def _needs_refresh(before: CalendarViewState, after: CalendarViewState) -> bool:
    if any(getattr(before, name) != getattr(after, name) for name in _QUERY_FIELDS):
        return True
    return visible_range(before.current_date) != visible_range(after.current_date)


# =============================================================================
# Controller
# =============================================================================


class CalendarController:
    """
    Drives a ``CalendarViewState`` against a backend.

    Navigation and filter methods update state synchronously and schedule
    a debounced refresh; they must be called from a running event loop.
    Mutations await the backend, then await a full refresh before
    returning, so the caller sees server truth.
    """

    def __init__(
        self,
        backend: CalendarBackend,
        viewer_id: uuid.UUID,
        child_id: Optional[uuid.UUID] = None,
        today: Optional[Callable[[], date]] = None,
        zone: Optional[tzinfo] = None,
        debounce_seconds: float = 0.25,
    ):
        self.backend = backend
        self.zone = zone
        self.debounce_seconds = debounce_seconds
        self._today = today or date.today
        self._state = CalendarViewState(
            viewer_id=viewer_id,
            current_date=self._today(),
            child_id=child_id,
        )
        self._pending_refresh: Optional[asyncio.Task] = None

    @property
    def state(self) -> CalendarViewState:
        return self._state

    def dispatch(self, action: ViewAction) -> CalendarViewState:
        """Apply ``action``; schedule a refresh if the query changed."""
        before = self._state
        self._state = reduce(before, action)
        if _needs_refresh(before, self._state):
            self.request_refresh()
        return self._state

    # Navigation -------------------------------------------------------------

    def set_view(self, view: CalendarView) -> None:
        self.dispatch(SetView(view))

    def go_to_today(self) -> None:
        self.dispatch(SetDate(self._today()))

    def go_to_prev(self) -> None:
        self.dispatch(ShiftMonth(-1))

    def go_to_next(self) -> None:
        self.dispatch(ShiftMonth(1))

    def set_child(self, child_id: Optional[uuid.UUID]) -> None:
        self.dispatch(SetChild(child_id))

    def set_filters(self, **changes: bool) -> None:
        self.dispatch(SetFilters(changes))

    def select_event(self, event_id: Optional[uuid.UUID]) -> None:
        self.dispatch(SelectEvent(event_id))

    def events_for_date(self, day: date) -> list[CalendarEventDisplay]:
        """Loaded events overlapping ``day``."""
        day_start, day_end = day_bounds(day, self.zone)
        return [
            display
            for display in self._state.events
            if overlaps(display.event.start_at, display.event.end_at, day_start, day_end)
        ]

    # Refresh ----------------------------------------------------------------

    def request_refresh(self) -> asyncio.Task:
        """
        Schedule a refresh after the debounce delay.

        A request arriving before the delay elapses replaces the earlier one.
        """
        if self._pending_refresh is not None and not self._pending_refresh.done():
            self._pending_refresh.cancel()
        self._pending_refresh = asyncio.get_running_loop().create_task(self._debounced_refresh())
        return self._pending_refresh

    async def _debounced_refresh(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        await self.refresh()

    async def refresh(self) -> CalendarViewState:
        """Re-fetch the visible range and the pending count."""
        state = self._state
        generation = state.generation + 1
        self._state = reduce(state, RefreshStarted(generation))

        if state.child_id is None:
            self._state = reduce(self._state, EventsLoaded(generation, (), 0))
            return self._state

        event_types = state.filters.event_types()
        if event_types:
            range_start, range_end = visible_range(state.current_date, self.zone)
            listed = await self.backend.list_events(
                ListEventsFilter(
                    child_id=state.child_id,
                    range_start=range_start,
                    range_end=range_end,
                    event_types=event_types,
                    statuses=state.filters.statuses(),
                ),
                state.viewer_id,
            )
        else:
            listed = Result.success([])

        if not listed.ok:
            logger.warning(f"Calendar refresh failed: {listed.error}")
            self._state = reduce(self._state, RefreshFailed(generation, listed.error or "Failed to load events"))
            return self._state

        pending = await self.backend.count_pending(state.viewer_id, state.child_id)
        pending_count = pending.value if pending.ok else self._state.pending_count

        self._state = reduce(self._state, EventsLoaded(generation, tuple(listed.value), pending_count))
        return self._state

    # Mutations --------------------------------------------------------------

    async def _mutate(self, call) -> Result[Any]:
        result = await call
        if result.ok:
            await self.refresh()
        return result

    async def propose_home_day(self, payload: CreateHomeDayPayload) -> Result[ProposeOutcome]:
        return await self._mutate(self.backend.propose_home_day(payload, self._state.viewer_id))

    async def propose_from_candidate(
        self, event_id: uuid.UUID, home_id: Optional[uuid.UUID] = None
    ) -> Result[ProposeOutcome]:
        return await self._mutate(
            self.backend.propose_from_candidate(event_id, self._state.viewer_id, home_id)
        )

    async def confirm(self, event_id: uuid.UUID) -> Result[CalendarEventDisplay]:
        return await self._mutate(self.backend.confirm_home_day(event_id, self._state.viewer_id))

    async def reject(self, event_id: uuid.UUID, reason: Optional[str] = None) -> Result[CalendarEventDisplay]:
        return await self._mutate(self.backend.reject_home_day(event_id, self._state.viewer_id, reason))

    async def add_event(self, payload: CreateEventPayload) -> Result[CalendarEventDisplay]:
        return await self._mutate(self.backend.create_event(payload, self._state.viewer_id))

    async def add_travel(self, payload: CreateTravelPayload) -> Result[CalendarEventDisplay]:
        return await self._mutate(self.backend.create_travel(payload, self._state.viewer_id))

    async def edit(self, event_id: uuid.UUID, patch: UpdateEventPayload) -> Result[CalendarEventDisplay]:
        return await self._mutate(self.backend.update_event(event_id, patch, self._state.viewer_id))

    async def remove(self, event_id: uuid.UUID) -> Result[None]:
        return await self._mutate(self.backend.delete_event(event_id, self._state.viewer_id))

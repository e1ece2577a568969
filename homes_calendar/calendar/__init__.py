"""
Shared calendar for a child's homes.

- types: domain model, payloads and the Result wrapper
- dates: month/week math, display formatting, home colours
- store / roster: persistence and identity collaborators
- actions: the home-day confirmation workflow
- controller: view state and refresh logic for a calendar screen
"""

from homes_calendar.calendar.actions import CalendarActions
from homes_calendar.calendar.controller import CalendarController, CalendarFilters, CalendarViewState
from homes_calendar.calendar.roster import HomeRef, Roster, SQLAlchemyRoster
from homes_calendar.calendar.store import EventStore, SQLAlchemyEventStore
from homes_calendar.calendar.types import (
    CalendarEvent,
    CalendarEventDisplay,
    CreateEventPayload,
    CreateHomeDayPayload,
    CreateHomeStayRulePayload,
    CreateTravelPayload,
    HomeStayRule,
    ListEventsFilter,
    Result,
    UpdateEventPayload,
    row_to_event,
)

__all__ = [
    "CalendarActions",
    "CalendarController",
    "CalendarFilters",
    "CalendarViewState",
    "HomeRef",
    "Roster",
    "SQLAlchemyRoster",
    "EventStore",
    "SQLAlchemyEventStore",
    "CalendarEvent",
    "CalendarEventDisplay",
    "CreateEventPayload",
    "CreateHomeDayPayload",
    "CreateHomeStayRulePayload",
    "CreateTravelPayload",
    "HomeStayRule",
    "ListEventsFilter",
    "Result",
    "UpdateEventPayload",
    "row_to_event",
]

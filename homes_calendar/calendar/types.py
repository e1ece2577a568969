"""
Calendar domain types.

Events share one storage table but are modelled here as a tagged union:
``CalendarEvent.details`` is exactly one of ``HomeDay``, ``Travel`` or
``PlainEvent`` and callers dispatch on ``details.kind``.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, Literal, Mapping, Optional, TypeVar, Union

from dateutil.parser import isoparse

from homes_calendar.exceptions import CalendarError

EventType = Literal["home_day", "travel", "event"]
EventStatus = Literal["confirmed", "proposed", "rejected"]
EventSource = Literal["manual", "google", "apple", "outlook", "ics"]
MatchType = Literal["event_id", "title_exact", "title_contains"]

MATCH_TYPES = ("event_id", "title_exact", "title_contains")

T = TypeVar("T")


# =============================================================================
# Event variants
# =============================================================================


@dataclass(frozen=True)
class HomeDay:
    """The child stays at ``home_id`` for the event span."""

    home_id: Optional[uuid.UUID]
    kind: Literal["home_day"] = "home_day"


@dataclass(frozen=True)
class Travel:
    """
    A transition between two places.

    Each endpoint is a known home, a free-text location, or (for rows read
    back from storage) both missing.
    """

    from_home_id: Optional[uuid.UUID] = None
    to_home_id: Optional[uuid.UUID] = None
    from_location: Optional[str] = None
    to_location: Optional[str] = None
    travel_with: Optional[str] = None
    kind: Literal["travel"] = "travel"


@dataclass(frozen=True)
class PlainEvent:
    """A generic calendar item with no location semantics."""

    kind: Literal["event"] = "event"


EventDetails = Union[HomeDay, Travel, PlainEvent]


@dataclass
class CalendarEvent:
    """A calendar event as seen by the workflow engine."""

    id: uuid.UUID
    child_id: uuid.UUID
    title: str
    start_at: datetime
    end_at: datetime
    details: EventDetails = field(default_factory=PlainEvent)
    description: Optional[str] = None
    all_day: bool = False
    timezone: Optional[str] = None
    status: EventStatus = "confirmed"

    # Proposal/confirmation tracking
    proposed_by: Optional[uuid.UUID] = None
    confirmed_by: Optional[uuid.UUID] = None
    confirmed_at: Optional[datetime] = None
    rejected_by: Optional[uuid.UUID] = None
    rejected_at: Optional[datetime] = None
    proposal_reason: Optional[str] = None

    # Provenance
    source: EventSource = "manual"
    external_provider: Optional[str] = None
    external_calendar_id: Optional[str] = None
    external_event_id: Optional[str] = None
    external_html_link: Optional[str] = None
    external_source_id: Optional[uuid.UUID] = None
    recurrence_rule: Optional[str] = None
    is_read_only: bool = False

    # Home-stay candidate flags
    is_home_stay_candidate: bool = False
    candidate_reason: Optional[str] = None
    candidate_home_id: Optional[uuid.UUID] = None

    # Audit
    created_by: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def event_type(self) -> EventType:
        return self.details.kind

    @property
    def home_id(self) -> Optional[uuid.UUID]:
        """Home of a home_day; None for every other variant."""
        if isinstance(self.details, HomeDay):
            return self.details.home_id
        return None

    @property
    def is_pending(self) -> bool:
        return self.event_type == "home_day" and self.status == "proposed"


@dataclass
class EligibleConfirmer:
    user_id: uuid.UUID
    name: str


@dataclass
class CalendarEventDisplay:
    """
    An event enriched for one viewer.

    The ``can_*`` flags are presentation hints only; every mutation
    re-checks permissions itself.
    """

    event: CalendarEvent

    home_name: Optional[str] = None
    home_color: Optional[str] = None
    from_home_name: Optional[str] = None
    from_home_color: Optional[str] = None
    to_home_name: Optional[str] = None
    to_home_color: Optional[str] = None

    created_by_name: Optional[str] = None
    proposed_by_name: Optional[str] = None
    confirmed_by_name: Optional[str] = None
    rejected_by_name: Optional[str] = None

    can_confirm: bool = False
    can_reject: bool = False
    can_edit: bool = False
    can_delete: bool = False
    eligible_confirmers: list[EligibleConfirmer] = field(default_factory=list)

    @property
    def id(self) -> uuid.UUID:
        return self.event.id


# =============================================================================
# Payloads
# =============================================================================


@dataclass
class CreateEventPayload:
    child_id: uuid.UUID
    title: str
    start_at: datetime
    end_at: datetime
    description: Optional[str] = None
    all_day: bool = True
    timezone: Optional[str] = None


@dataclass
class CreateHomeDayPayload:
    """Proposal that ``child_id`` stays at ``home_id``; title defaults to the home name."""

    child_id: uuid.UUID
    home_id: uuid.UUID
    start_at: datetime
    end_at: datetime
    all_day: bool = True
    title: Optional[str] = None
    proposal_reason: Optional[str] = None
    timezone: Optional[str] = None


@dataclass
class CreateTravelPayload:
    child_id: uuid.UUID
    start_at: datetime
    end_at: datetime
    from_home_id: Optional[uuid.UUID] = None
    to_home_id: Optional[uuid.UUID] = None
    from_location: Optional[str] = None
    to_location: Optional[str] = None
    travel_with: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    all_day: bool = False
    timezone: Optional[str] = None


@dataclass
class UpdateEventPayload:
    """Partial update; ``None`` leaves a field unchanged, an empty description clears it."""

    title: Optional[str] = None
    description: Optional[str] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    all_day: Optional[bool] = None

    def changes(self) -> dict[str, Any]:
        return {
            name: value
            for name, value in (
                ("title", self.title),
                ("description", self.description),
                ("start_at", self.start_at),
                ("end_at", self.end_at),
                ("all_day", self.all_day),
            )
            if value is not None
        }


@dataclass
class CreateHomeStayRulePayload:
    """
    Rule turning matching candidates of ``child_id`` into stays at ``home_id``.

    ``match_value`` is an upstream event id for 'event_id' and a title
    (compared case-insensitively) for the title match types.
    """

    child_id: uuid.UUID
    home_id: uuid.UUID
    match_type: str
    match_value: str
    source_id: Optional[uuid.UUID] = None


@dataclass
class ListEventsFilter:
    child_id: uuid.UUID
    range_start: datetime
    range_end: datetime
    event_types: Optional[list[EventType]] = None
    statuses: Optional[list[EventStatus]] = None
    include_rejected: bool = False


# =============================================================================
# Results
# =============================================================================


@dataclass
class Result(Generic[T]):
    """
    Tagged success/error result returned by every workflow operation.

    Attributes:
        ok: Whether the operation succeeded
        value: Payload on success
        error: Human-readable message on failure
        error_code: Stable code from the error taxonomy (e.g. 'forbidden')
    """

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: CalendarError) -> "Result[T]":
        return cls(ok=False, error=error.message, error_code=error.code)


@dataclass
class ProposeOutcome:
    """A created home day and whether it skipped the confirmation step."""

    event: CalendarEventDisplay
    auto_confirmed: bool


@dataclass
class HomeStayRule:
    id: uuid.UUID
    child_id: uuid.UUID
    home_id: uuid.UUID
    match_type: MatchType
    match_value: str
    source_id: Optional[uuid.UUID] = None
    created_by: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None


@dataclass
class RuleOutcome:
    """A saved rule, the proposals it made, and the matches it could not propose."""

    rule: HomeStayRule
    proposed: list[ProposeOutcome] = field(default_factory=list)
    skipped: int = 0


# =============================================================================
# Row mapping
# =============================================================================


def _as_uuid(value: Any) -> Optional[uuid.UUID]:
    if value is None or value == "":
        return None
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def _as_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return isoparse(str(value))


def _details_from_row(row: Mapping[str, Any]) -> EventDetails:
    event_type = row.get("event_type") or "event"
    if event_type == "home_day":
        return HomeDay(home_id=_as_uuid(row.get("home_id")))
    if event_type == "travel":
        return Travel(
            from_home_id=_as_uuid(row.get("from_home_id")),
            to_home_id=_as_uuid(row.get("to_home_id")),
            from_location=row.get("from_location"),
            to_location=row.get("to_location"),
            travel_with=row.get("travel_with"),
        )
    return PlainEvent()


def row_to_event(row: Mapping[str, Any]) -> CalendarEvent:
    """
    Map a storage row to a ``CalendarEvent``.

    Only ``id``, ``child_id``, ``start_at`` and ``end_at`` are required
    (a missing one raises ``KeyError``); every optional column falls back to
    its default. Timestamps may be datetimes or ISO-8601 strings.
    """
    source = row.get("source") or "manual"
    return CalendarEvent(
        id=_as_uuid(row["id"]),
        child_id=_as_uuid(row["child_id"]),
        title=row.get("title") or "",
        start_at=_as_datetime(row["start_at"]),
        end_at=_as_datetime(row["end_at"]),
        details=_details_from_row(row),
        description=row.get("description"),
        all_day=bool(row.get("all_day", False)),
        timezone=row.get("timezone"),
        status=row.get("status") or "confirmed",
        proposed_by=_as_uuid(row.get("proposed_by")),
        confirmed_by=_as_uuid(row.get("confirmed_by")),
        confirmed_at=_as_datetime(row.get("confirmed_at")),
        rejected_by=_as_uuid(row.get("rejected_by")),
        rejected_at=_as_datetime(row.get("rejected_at")),
        proposal_reason=row.get("proposal_reason"),
        source=source,
        external_provider=row.get("external_provider"),
        external_calendar_id=row.get("external_calendar_id"),
        external_event_id=row.get("external_event_id"),
        external_html_link=row.get("external_html_link"),
        external_source_id=_as_uuid(row.get("external_source_id")),
        recurrence_rule=row.get("recurrence_rule"),
        is_read_only=bool(row.get("is_read_only") or False),
        is_home_stay_candidate=bool(row.get("is_home_stay_candidate") or False),
        candidate_reason=row.get("candidate_reason"),
        candidate_home_id=_as_uuid(row.get("candidate_home_id")),
        created_by=_as_uuid(row.get("created_by")),
        created_at=_as_datetime(row.get("created_at")),
        updated_at=_as_datetime(row.get("updated_at")),
    )


def event_to_row(event: CalendarEvent) -> dict[str, Any]:
    """Flatten an event into storage columns (inverse of ``row_to_event``)."""
    details = event.details
    row: dict[str, Any] = {
        "id": event.id,
        "child_id": event.child_id,
        "title": event.title,
        "description": event.description,
        "start_at": event.start_at,
        "end_at": event.end_at,
        "all_day": event.all_day,
        "timezone": event.timezone,
        "event_type": details.kind,
        "home_id": None,
        "from_home_id": None,
        "to_home_id": None,
        "from_location": None,
        "to_location": None,
        "travel_with": None,
        "status": event.status,
        "proposed_by": event.proposed_by,
        "confirmed_by": event.confirmed_by,
        "confirmed_at": event.confirmed_at,
        "rejected_by": event.rejected_by,
        "rejected_at": event.rejected_at,
        "proposal_reason": event.proposal_reason,
        "source": event.source,
        "external_provider": event.external_provider,
        "external_calendar_id": event.external_calendar_id,
        "external_event_id": event.external_event_id,
        "external_html_link": event.external_html_link,
        "external_source_id": event.external_source_id,
        "recurrence_rule": event.recurrence_rule,
        "is_read_only": event.is_read_only,
        "is_home_stay_candidate": event.is_home_stay_candidate,
        "candidate_reason": event.candidate_reason,
        "candidate_home_id": event.candidate_home_id,
        "created_by": event.created_by,
    }
    if isinstance(details, HomeDay):
        row["home_id"] = details.home_id
    elif isinstance(details, Travel):
        row["from_home_id"] = details.from_home_id
        row["to_home_id"] = details.to_home_id
        row["from_location"] = details.from_location
        row["to_location"] = details.to_location
        row["travel_with"] = details.travel_with
    return row

"""
Pydantic request and response models for the Homes Calendar API.
"""

import dataclasses
import uuid
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from homes_calendar.calendar.types import CalendarEventDisplay, HomeStayRule, RuleOutcome, Travel
from homes_calendar.integrations.base import SyncResult
from homes_calendar.integrations.candidates import CandidateGroup
from homes_calendar.models.sources import ExternalCalendarSource


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive timestamps from clients are taken to be UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# =============================================================================
# Request Models
# =============================================================================


class TimedRequest(BaseModel):
    """Shared start/end handling."""

    start_at: datetime = Field(..., description="Start (ISO 8601)")
    end_at: datetime = Field(..., description="End (ISO 8601)")
    timezone: Optional[str] = Field(
        None,
        description="IANA zone the event was authored in; defaults to the family zone",
    )

    @field_validator("start_at", "end_at")
    @classmethod
    def ensure_aware(cls, v: datetime) -> datetime:
        return as_utc(v)


class CreateEventRequest(TimedRequest):
    """Request to add a plain calendar event."""

    title: str = Field(..., min_length=1, max_length=300)
    description: Optional[str] = Field(None, max_length=5000)
    all_day: bool = True

    @field_validator("title")
    @classmethod
    def validate_title_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Title cannot be empty")
        return v.strip()


class CreateHomeDayRequest(TimedRequest):
    """Proposal that the child stays at a home."""

    home_id: uuid.UUID = Field(..., description="Home the child stays at")
    all_day: bool = True
    title: Optional[str] = Field(None, max_length=300, description="Defaults to the home name")
    proposal_reason: Optional[str] = Field(None, max_length=1000)


class CreateTravelRequest(TimedRequest):
    """
    A trip between two places.

    Each end is either a home (``*_home_id``) or free text (``*_location``).
    """

    from_home_id: Optional[uuid.UUID] = None
    to_home_id: Optional[uuid.UUID] = None
    from_location: Optional[str] = Field(None, max_length=300)
    to_location: Optional[str] = Field(None, max_length=300)
    travel_with: Optional[str] = Field(None, max_length=200, description="Who accompanies the child")
    title: Optional[str] = Field(None, max_length=300)
    description: Optional[str] = Field(None, max_length=5000)
    all_day: bool = False


class UpdateEventRequest(BaseModel):
    """Partial update; omitted fields are left unchanged, a null or empty description clears it."""

    title: Optional[str] = Field(None, max_length=300)
    description: Optional[str] = Field(None, max_length=5000)
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    all_day: Optional[bool] = None

    @field_validator("start_at", "end_at")
    @classmethod
    def ensure_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


class RejectHomeDayRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000, description="Shown to the proposer")


class ProposeFromCandidateRequest(BaseModel):
    home_id: Optional[uuid.UUID] = Field(
        None,
        description="Home of the stay; defaults to the home suggested by the import",
    )


class IgnoreCandidatesRequest(BaseModel):
    event_ids: list[uuid.UUID] = Field(..., min_length=1)


class IgnoreCandidatesByTitleRequest(BaseModel):
    """Ignore every candidate with this title, optionally within one source."""

    title: str = Field(..., min_length=1, max_length=300)
    source_id: Optional[uuid.UUID] = None


class CreateHomeStayRuleRequest(BaseModel):
    """
    Rule turning matching candidates into proposed home days.

    Use a candidate group's `suggested_match_type` and
    `suggested_match_value` to cover the whole group.
    """

    home_id: uuid.UUID
    match_type: Literal["event_id", "title_exact", "title_contains"]
    match_value: str = Field(..., min_length=1, max_length=1024)
    source_id: Optional[uuid.UUID] = None


class ConnectIcsRequest(BaseModel):
    """Subscribe a child to an ICS link (webcal://, https:// or http://)."""

    child_id: uuid.UUID
    url: str = Field(..., min_length=1, max_length=2048)
    display_name: Optional[str] = Field(None, max_length=200)


class ReplaceIcsUrlRequest(BaseModel):
    url: str = Field(..., min_length=1, max_length=2048)


class AddGoogleSourceRequest(BaseModel):
    """Import one of the connected account's Google calendars."""

    child_id: uuid.UUID
    calendar_id: str = Field(..., min_length=1, max_length=500)
    display_name: str = Field(..., min_length=1, max_length=200)
    email: Optional[str] = Field(None, description="Google account, when several are connected")


# =============================================================================
# Response Models
# =============================================================================


class EligibleConfirmerResponse(BaseModel):
    user_id: uuid.UUID
    name: str


class EventResponse(BaseModel):
    """An event as shown to the requesting user."""

    id: uuid.UUID
    child_id: uuid.UUID
    event_type: Literal["home_day", "travel", "event"]
    title: str
    description: Optional[str] = None
    start_at: datetime
    end_at: datetime
    all_day: bool
    timezone: Optional[str] = None
    status: Literal["confirmed", "proposed", "rejected"]

    home_id: Optional[uuid.UUID] = None
    home_name: Optional[str] = None
    home_color: Optional[str] = None

    from_home_id: Optional[uuid.UUID] = None
    from_home_name: Optional[str] = None
    from_home_color: Optional[str] = None
    to_home_id: Optional[uuid.UUID] = None
    to_home_name: Optional[str] = None
    to_home_color: Optional[str] = None
    from_location: Optional[str] = None
    to_location: Optional[str] = None
    travel_with: Optional[str] = None

    proposed_by: Optional[uuid.UUID] = None
    proposed_by_name: Optional[str] = None
    confirmed_by: Optional[uuid.UUID] = None
    confirmed_by_name: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    rejected_by: Optional[uuid.UUID] = None
    rejected_by_name: Optional[str] = None
    rejected_at: Optional[datetime] = None
    proposal_reason: Optional[str] = None

    source: str = "manual"
    is_read_only: bool = False
    external_html_link: Optional[str] = None
    recurrence_rule: Optional[str] = None
    is_home_stay_candidate: bool = False
    candidate_reason: Optional[str] = None
    candidate_home_id: Optional[uuid.UUID] = None

    created_by: Optional[uuid.UUID] = None
    created_by_name: Optional[str] = None

    can_confirm: bool = False
    can_reject: bool = False
    can_edit: bool = False
    can_delete: bool = False
    eligible_confirmers: list[EligibleConfirmerResponse] = Field(default_factory=list)

    @classmethod
    def from_display(cls, display: CalendarEventDisplay) -> "EventResponse":
        event = display.event
        travel = event.details if isinstance(event.details, Travel) else Travel()
        return cls(
            id=event.id,
            child_id=event.child_id,
            event_type=event.event_type,
            title=event.title,
            description=event.description,
            start_at=event.start_at,
            end_at=event.end_at,
            all_day=event.all_day,
            timezone=event.timezone,
            status=event.status,
            home_id=event.home_id,
            home_name=display.home_name,
            home_color=display.home_color,
            from_home_id=travel.from_home_id,
            from_home_name=display.from_home_name,
            from_home_color=display.from_home_color,
            to_home_id=travel.to_home_id,
            to_home_name=display.to_home_name,
            to_home_color=display.to_home_color,
            from_location=travel.from_location,
            to_location=travel.to_location,
            travel_with=travel.travel_with,
            proposed_by=event.proposed_by,
            proposed_by_name=display.proposed_by_name,
            confirmed_by=event.confirmed_by,
            confirmed_by_name=display.confirmed_by_name,
            confirmed_at=event.confirmed_at,
            rejected_by=event.rejected_by,
            rejected_by_name=display.rejected_by_name,
            rejected_at=event.rejected_at,
            proposal_reason=event.proposal_reason,
            source=event.source,
            is_read_only=event.is_read_only,
            external_html_link=event.external_html_link,
            recurrence_rule=event.recurrence_rule,
            is_home_stay_candidate=event.is_home_stay_candidate,
            candidate_reason=event.candidate_reason,
            candidate_home_id=event.candidate_home_id,
            created_by=event.created_by,
            created_by_name=display.created_by_name,
            can_confirm=display.can_confirm,
            can_reject=display.can_reject,
            can_edit=display.can_edit,
            can_delete=display.can_delete,
            eligible_confirmers=[
                EligibleConfirmerResponse(user_id=c.user_id, name=c.name)
                for c in display.eligible_confirmers
            ],
        )


class EventListResponse(BaseModel):
    """Response for listing events."""

    events: list[EventResponse] = Field(..., description="Events overlapping the range")
    total: int = Field(..., description="Number of events returned")


class ProposeHomeDayResponse(BaseModel):
    event: EventResponse
    auto_confirmed: bool = Field(
        ...,
        description="True when the proposer is the only guardian and no confirmation was needed",
    )


class PendingCountResponse(BaseModel):
    count: int


class DeleteEventResponse(BaseModel):
    success: bool
    event_id: uuid.UUID


class CandidateGroupResponse(BaseModel):
    """Imported home-stay candidates sharing a title, for bulk review."""

    title: str
    source_id: Optional[uuid.UUID] = None
    event_ids: list[uuid.UUID]
    home_id: Optional[uuid.UUID] = None
    recurrence: Optional[str] = None
    suggested_match_type: str
    suggested_match_value: str

    @classmethod
    def from_group(cls, group: CandidateGroup) -> "CandidateGroupResponse":
        return cls(
            title=group.title,
            source_id=group.source_id,
            event_ids=group.event_ids,
            home_id=group.home_id,
            recurrence=group.recurrence,
            suggested_match_type=group.suggested_match_type,
            suggested_match_value=group.suggested_match_value,
        )


class IgnoreCandidatesResponse(BaseModel):
    ignored: int


class HomeStayRuleResponse(BaseModel):
    id: uuid.UUID
    child_id: uuid.UUID
    home_id: uuid.UUID
    match_type: str
    match_value: str
    source_id: Optional[uuid.UUID] = None
    created_by: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_rule(cls, rule: HomeStayRule) -> "HomeStayRuleResponse":
        return cls(**dataclasses.asdict(rule))


class CreateHomeStayRuleResponse(BaseModel):
    rule: HomeStayRuleResponse
    proposed: list[ProposeHomeDayResponse]
    skipped: int

    @classmethod
    def from_outcome(cls, outcome: RuleOutcome) -> "CreateHomeStayRuleResponse":
        return cls(
            rule=HomeStayRuleResponse.from_rule(outcome.rule),
            proposed=[
                ProposeHomeDayResponse(
                    event=EventResponse.from_display(item.event),
                    auto_confirmed=item.auto_confirmed,
                )
                for item in outcome.proposed
            ],
            skipped=outcome.skipped,
        )


class SourceResponse(BaseModel):
    """An external calendar feeding a child's calendar. Never exposes the raw URL."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    provider: str
    child_id: uuid.UUID
    display_name: str
    calendar_id: Optional[str] = None
    masked_url: Optional[str] = None
    is_active: bool
    last_sync_at: Optional[datetime] = None
    last_sync_status: str
    last_sync_error: Optional[str] = None
    events_count: int = 0

    @classmethod
    def from_source(cls, source: ExternalCalendarSource) -> "SourceResponse":
        return cls.model_validate(source)


class SyncResultResponse(BaseModel):
    """Outcome of one source sync."""

    source_id: uuid.UUID
    ok: bool
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    candidates: int = 0
    not_modified: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: SyncResult) -> "SyncResultResponse":
        return cls(
            source_id=result.source_id,
            ok=result.ok,
            created=result.created,
            updated=result.updated,
            unchanged=result.unchanged,
            deleted=result.deleted,
            candidates=result.candidates,
            not_modified=result.not_modified,
            error=result.error,
            error_code=result.error_code,
            warnings=list(result.warnings),
        )

class ConnectIcsResponse(BaseModel):
    source: SourceResponse
    warning: Optional[str] = Field(None, description="Set when the link looks unusual")
    sync: Optional[SyncResultResponse] = Field(None, description="Outcome of the first sync")


class DisconnectResponse(BaseModel):
    success: bool
    events_removed: int


class GoogleLoginResponse(BaseModel):
    """Response with OAuth authorization URL."""

    authorization_url: str
    state: str


class GoogleCallbackResponse(BaseModel):
    """Response after successful OAuth callback."""

    success: bool
    email: str
    message: str


class GoogleCalendarEntry(BaseModel):
    id: str
    summary: str
    primary: bool = False
    access_role: Optional[str] = None
    background_color: Optional[str] = None


class GoogleCalendarListResponse(BaseModel):
    email: str
    calendars: list[GoogleCalendarEntry]


class ErrorResponse(BaseModel):
    """Error information for failed requests."""

    error_type: str = Field(..., description="Stable error code, e.g. 'forbidden'")
    message: str = Field(..., description="Human-readable error message")
    retryable: bool = Field(default=False, description="Whether request can be retried")


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["healthy", "unhealthy"] = Field(..., description="Health status")
    version: str = Field(..., description="API version")
    database_connected: bool = Field(..., description="Database connection status")
    integrations_configured: bool = Field(..., description="Encryption key loaded")

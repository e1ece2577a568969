"""
FastAPI application for Homes Calendar.

This is the main entry point for the HTTP API, providing:
- Calendar event endpoints (list, create, edit, delete)
- Home-day proposal, confirmation and rejection
- Health and status endpoints

Integration and scheduled sync endpoints live in ``integration_routes``.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from homes_calendar import __version__
from homes_calendar.api.dependencies import (
    cipher_ready,
    get_actions,
    get_current_user_id,
    get_db_session,
    init_cipher,
)
from homes_calendar.api.errors import from_calendar_error, unwrap
from homes_calendar.api.integration_routes import cron_router, router as integrations_router
from homes_calendar.api.middleware import RequestLoggingMiddleware
from homes_calendar.api.models import (
    CandidateGroupResponse,
    CreateEventRequest,
    CreateHomeDayRequest,
    CreateHomeStayRuleRequest,
    CreateHomeStayRuleResponse,
    CreateTravelRequest,
    DeleteEventResponse,
    EventListResponse,
    ErrorResponse,
    EventResponse,
    HealthResponse,
    HomeStayRuleResponse,
    IgnoreCandidatesByTitleRequest,
    IgnoreCandidatesRequest,
    IgnoreCandidatesResponse,
    PendingCountResponse,
    ProposeFromCandidateRequest,
    ProposeHomeDayResponse,
    RejectHomeDayRequest,
    UpdateEventRequest,
    as_utc,
)
from homes_calendar.calendar.actions import CalendarActions
from homes_calendar.calendar.types import (
    CreateEventPayload,
    CreateHomeDayPayload,
    CreateHomeStayRulePayload,
    CreateTravelPayload,
    ListEventsFilter,
    UpdateEventPayload,
)
from homes_calendar.config import get_settings
from homes_calendar.database import check_connection, init_db
from homes_calendar.exceptions import CalendarError
from homes_calendar.integrations.candidates import group_candidates

logger = logging.getLogger(__name__)


# =============================================================================
# Application Lifecycle
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    logger.info("Starting Homes Calendar API")
    logging.getLogger("homes_calendar").setLevel(settings.log_level)
    settings.validate_production_config()
    init_cipher(settings)
    if settings.is_development:
        init_db()
    logger.info("Homes Calendar API started")

    yield

    logger.info("Shutting down Homes Calendar API")


# =============================================================================
# FastAPI Application
# =============================================================================


app = FastAPI(
    title="Homes Calendar API",
    description="""
# Homes Calendar API

Shared calendar for children who live across several homes.

## Core Workflows

### Home days
1. **POST /children/{child_id}/home-days** - A guardian proposes where the child stays
2. Another guardian **confirms** or **rejects** it
   (`POST /events/{event_id}/confirm`, `POST /events/{event_id}/reject`)
3. A proposal by a child's only guardian is confirmed immediately

### Imported calendars
Google calendars and ICS subscriptions are imported read-only. Imported
events that look like a stay at one of the child's homes are flagged as
candidates; **POST /events/{event_id}/propose-home-day** turns one into a
normal proposal, a **home-stay rule** proposes a whole group, and
**POST /home-stay-candidates/ignore** dismisses them.

## Identity

The acting user is read from the `X-User-ID` header.

## Error Handling

- **400** - Invalid input
- **403** - Not allowed for this user
- **404** - Event or calendar not found
- **409** - Not allowed in the current state, or lost a race with another guardian
- **502** - Upstream calendar failed
- **503** - Service not configured
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    responses={status: {"model": ErrorResponse} for status in (400, 401, 403, 404, 409, 502)},
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(integrations_router)
app.include_router(cron_router)


# =============================================================================
# Exception Handlers
# =============================================================================


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    """Handle HTTP exceptions with consistent format."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_type": getattr(exc, "error_type", "http_error"),
            "message": exc.detail,
            "retryable": getattr(exc, "retryable", exc.status_code >= 500),
        },
    )


@app.exception_handler(CalendarError)
async def calendar_exception_handler(request, exc: CalendarError):
    """Handle domain errors raised by integration functions."""
    return await http_exception_handler(request, from_calendar_error(exc))


@app.exception_handler(Exception)
async def general_exception_handler(request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error_type": "internal_error",
            "message": "An unexpected error occurred",
            "retryable": True,
        },
    )


# =============================================================================
# Health & Status Endpoints
# =============================================================================


@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    tags=["System"],
)
def health_check():
    """Check API health status."""
    database_connected = check_connection()
    return HealthResponse(
        status="healthy" if database_connected else "unhealthy",
        version=__version__,
        database_connected=database_connected,
        integrations_configured=cipher_ready(),
    )


# =============================================================================
# Child Calendar Endpoints
# =============================================================================


@app.get(
    "/children/{child_id}/events",
    response_model=EventListResponse,
    summary="List events",
    description="Events for a child overlapping `[start, end]`. Rejected home days are hidden by default.",
    tags=["Events"],
)
def list_events(
    child_id: uuid.UUID,
    start: datetime = Query(..., description="Range start (ISO 8601)"),
    end: datetime = Query(..., description="Range end (ISO 8601)"),
    event_type: Optional[list[str]] = Query(None, description="Filter: home_day, travel, event"),
    status: Optional[list[str]] = Query(None, description="Filter: confirmed, proposed, rejected"),
    include_rejected: bool = Query(False),
    user_id: uuid.UUID = Depends(get_current_user_id),
    actions: CalendarActions = Depends(get_actions),
) -> EventListResponse:
    filters = ListEventsFilter(
        child_id=child_id,
        range_start=as_utc(start),
        range_end=as_utc(end),
        event_types=event_type,
        statuses=status,
        include_rejected=include_rejected,
    )
    events = unwrap(actions.list_events(filters, user_id))
    return EventListResponse(
        events=[EventResponse.from_display(display) for display in events],
        total=len(events),
    )


@app.post(
    "/children/{child_id}/events",
    response_model=EventResponse,
    status_code=201,
    summary="Add a plain event",
    tags=["Events"],
)
def create_event(
    child_id: uuid.UUID,
    request: CreateEventRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    actions: CalendarActions = Depends(get_actions),
    db: Session = Depends(get_db_session),
) -> EventResponse:
    payload = CreateEventPayload(
        child_id=child_id,
        title=request.title,
        start_at=request.start_at,
        end_at=request.end_at,
        description=request.description,
        all_day=request.all_day,
        timezone=request.timezone,
    )
    display = unwrap(actions.create_event(payload, user_id))
    db.commit()
    return EventResponse.from_display(display)


@app.post(
    "/children/{child_id}/home-days",
    response_model=ProposeHomeDayResponse,
    status_code=201,
    summary="Propose a home day",
    description="""
Propose that the child stays at a home for a span of days.

The proposal waits for another guardian. When the proposer is the child's
only guardian it is confirmed immediately and `auto_confirmed` is true.
    """,
    responses={
        400: {"description": "Invalid range, unknown home, or overlaps a confirmed stay elsewhere when overlaps are refused"},
        403: {"description": "Not a guardian of the child"},
    },
    tags=["Home days"],
)
def propose_home_day(
    child_id: uuid.UUID,
    request: CreateHomeDayRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    actions: CalendarActions = Depends(get_actions),
    db: Session = Depends(get_db_session),
) -> ProposeHomeDayResponse:
    payload = CreateHomeDayPayload(
        child_id=child_id,
        home_id=request.home_id,
        start_at=request.start_at,
        end_at=request.end_at,
        all_day=request.all_day,
        title=request.title,
        proposal_reason=request.proposal_reason,
        timezone=request.timezone,
    )
    outcome = unwrap(actions.propose_home_day(payload, user_id))
    db.commit()
    return ProposeHomeDayResponse(
        event=EventResponse.from_display(outcome.event),
        auto_confirmed=outcome.auto_confirmed,
    )


@app.post(
    "/children/{child_id}/travel",
    response_model=EventResponse,
    status_code=201,
    summary="Add travel",
    tags=["Events"],
)
def create_travel(
    child_id: uuid.UUID,
    request: CreateTravelRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    actions: CalendarActions = Depends(get_actions),
    db: Session = Depends(get_db_session),
) -> EventResponse:
    payload = CreateTravelPayload(
        child_id=child_id,
        start_at=request.start_at,
        end_at=request.end_at,
        from_home_id=request.from_home_id,
        to_home_id=request.to_home_id,
        from_location=request.from_location,
        to_location=request.to_location,
        travel_with=request.travel_with,
        title=request.title,
        description=request.description,
        all_day=request.all_day,
        timezone=request.timezone,
    )
    display = unwrap(actions.create_travel(payload, user_id))
    db.commit()
    return EventResponse.from_display(display)


@app.get(
    "/children/{child_id}/pending",
    response_model=EventListResponse,
    summary="Proposals awaiting the user",
    description="Every proposed home day for the child that the user may confirm, regardless of date.",
    tags=["Home days"],
)
def list_pending(
    child_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    actions: CalendarActions = Depends(get_actions),
) -> EventListResponse:
    pending = unwrap(actions.list_pending_for_viewer(user_id, child_id))
    return EventListResponse(
        events=[EventResponse.from_display(display) for display in pending],
        total=len(pending),
    )


@app.get(
    "/children/{child_id}/pending-count",
    response_model=PendingCountResponse,
    summary="Number of proposals awaiting the user",
    tags=["Home days"],
)
def pending_count(
    child_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    actions: CalendarActions = Depends(get_actions),
) -> PendingCountResponse:
    return PendingCountResponse(count=unwrap(actions.count_pending(user_id, child_id)))


@app.get(
    "/children/{child_id}/home-stay-candidates",
    response_model=list[CandidateGroupResponse],
    summary="Imported events that look like home stays",
    description="Candidates in the range grouped by title and source, largest group first.",
    tags=["Home days"],
)
def list_candidates(
    child_id: uuid.UUID,
    start: datetime = Query(...),
    end: datetime = Query(...),
    user_id: uuid.UUID = Depends(get_current_user_id),
    actions: CalendarActions = Depends(get_actions),
) -> list[CandidateGroupResponse]:
    filters = ListEventsFilter(
        child_id=child_id,
        range_start=as_utc(start),
        range_end=as_utc(end),
        event_types=["event"],
    )
    events = unwrap(actions.list_events(filters, user_id))
    groups = group_candidates(display.event for display in events)
    return [CandidateGroupResponse.from_group(group) for group in groups]


# =============================================================================
# Event Endpoints
# =============================================================================


@app.patch(
    "/events/{event_id}",
    response_model=EventResponse,
    summary="Edit an event",
    description="Imported events are read-only. Editing a proposal keeps it proposed.",
    tags=["Events"],
)
def update_event(
    event_id: uuid.UUID,
    request: UpdateEventRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    actions: CalendarActions = Depends(get_actions),
    db: Session = Depends(get_db_session),
) -> EventResponse:
    changes = request.model_dump(exclude_unset=True)
    if "description" in changes and changes["description"] is None:
        changes["description"] = ""
    patch = UpdateEventPayload(**changes)
    display = unwrap(actions.update_event(event_id, patch, user_id))
    db.commit()
    return EventResponse.from_display(display)


@app.delete(
    "/events/{event_id}",
    response_model=DeleteEventResponse,
    summary="Delete an event",
    tags=["Events"],
)
def delete_event(
    event_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    actions: CalendarActions = Depends(get_actions),
    db: Session = Depends(get_db_session),
) -> DeleteEventResponse:
    unwrap(actions.delete_event(event_id, user_id))
    db.commit()
    return DeleteEventResponse(success=True, event_id=event_id)


@app.post(
    "/events/{event_id}/confirm",
    response_model=EventResponse,
    summary="Confirm a proposed home day",
    description="""
Confirm another guardian's proposal.

## Concurrency
If another guardian confirmed or rejected the proposal first the request
fails with 409 and the client should refresh.
    """,
    responses={
        403: {"description": "Proposer or non-guardian"},
        404: {"description": "Event not found"},
        409: {"description": "Not a pending proposal, or lost the race"},
    },
    tags=["Home days"],
)
def confirm_home_day(
    event_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    actions: CalendarActions = Depends(get_actions),
    db: Session = Depends(get_db_session),
) -> EventResponse:
    display = unwrap(actions.confirm_home_day(event_id, user_id))
    db.commit()
    return EventResponse.from_display(display)


@app.post(
    "/events/{event_id}/reject",
    response_model=EventResponse,
    summary="Reject a proposed home day",
    tags=["Home days"],
)
def reject_home_day(
    event_id: uuid.UUID,
    request: Optional[RejectHomeDayRequest] = Body(None),
    user_id: uuid.UUID = Depends(get_current_user_id),
    actions: CalendarActions = Depends(get_actions),
    db: Session = Depends(get_db_session),
) -> EventResponse:
    reason = request.reason if request else None
    display = unwrap(actions.reject_home_day(event_id, user_id, reason))
    db.commit()
    return EventResponse.from_display(display)


@app.post(
    "/events/{event_id}/propose-home-day",
    response_model=ProposeHomeDayResponse,
    status_code=201,
    summary="Propose a home day from an imported candidate",
    tags=["Home days"],
)
def propose_from_candidate(
    event_id: uuid.UUID,
    request: Optional[ProposeFromCandidateRequest] = Body(None),
    user_id: uuid.UUID = Depends(get_current_user_id),
    actions: CalendarActions = Depends(get_actions),
    db: Session = Depends(get_db_session),
) -> ProposeHomeDayResponse:
    home_id = request.home_id if request else None
    outcome = unwrap(actions.propose_from_candidate(event_id, user_id, home_id))
    db.commit()
    return ProposeHomeDayResponse(
        event=EventResponse.from_display(outcome.event),
        auto_confirmed=outcome.auto_confirmed,
    )


# =============================================================================
# Candidate Review Endpoints
# =============================================================================


@app.post(
    "/home-stay-candidates/ignore",
    response_model=IgnoreCandidatesResponse,
    summary="Ignore imported candidates",
    description="The events stay imported but are no longer suggested as home stays, also after later syncs.",
    tags=["Home days"],
)
def ignore_candidates(
    request: IgnoreCandidatesRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    actions: CalendarActions = Depends(get_actions),
    db: Session = Depends(get_db_session),
) -> IgnoreCandidatesResponse:
    count = unwrap(actions.ignore_candidates(request.event_ids, user_id))
    db.commit()
    return IgnoreCandidatesResponse(ignored=count)


@app.post(
    "/children/{child_id}/home-stay-candidates/ignore-title",
    response_model=IgnoreCandidatesResponse,
    summary="Ignore every candidate with a title",
    tags=["Home days"],
)
def ignore_candidates_by_title(
    child_id: uuid.UUID,
    request: IgnoreCandidatesByTitleRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    actions: CalendarActions = Depends(get_actions),
    db: Session = Depends(get_db_session),
) -> IgnoreCandidatesResponse:
    count = unwrap(
        actions.ignore_candidates_by_title(child_id, request.title, user_id, request.source_id)
    )
    db.commit()
    return IgnoreCandidatesResponse(ignored=count)


@app.post(
    "/children/{child_id}/home-stay-rules",
    response_model=CreateHomeStayRuleResponse,
    status_code=201,
    summary="Create a home-stay rule",
    description="""
Turn every current candidate matching the rule into a proposed home day.

Match types: `event_id` (upstream event id), `title_exact` and
`title_contains` (both case-insensitive). Proposals wait for another
guardian as usual; matches that cannot be proposed are counted in `skipped`.
    """,
    tags=["Home days"],
)
def create_home_stay_rule(
    child_id: uuid.UUID,
    request: CreateHomeStayRuleRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    actions: CalendarActions = Depends(get_actions),
    db: Session = Depends(get_db_session),
) -> CreateHomeStayRuleResponse:
    payload = CreateHomeStayRulePayload(
        child_id=child_id,
        home_id=request.home_id,
        match_type=request.match_type,
        match_value=request.match_value,
        source_id=request.source_id,
    )
    outcome = unwrap(actions.create_home_stay_rule(payload, user_id))
    db.commit()
    return CreateHomeStayRuleResponse.from_outcome(outcome)


@app.get(
    "/children/{child_id}/home-stay-rules",
    response_model=list[HomeStayRuleResponse],
    summary="Active home-stay rules",
    tags=["Home days"],
)
def list_home_stay_rules(
    child_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    actions: CalendarActions = Depends(get_actions),
) -> list[HomeStayRuleResponse]:
    rules = unwrap(actions.list_home_stay_rules(child_id, user_id))
    return [HomeStayRuleResponse.from_rule(rule) for rule in rules]


@app.delete(
    "/home-stay-rules/{rule_id}",
    status_code=204,
    summary="Delete a home-stay rule",
    description="Home days the rule already proposed are kept.",
    tags=["Home days"],
)
def delete_home_stay_rule(
    rule_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    actions: CalendarActions = Depends(get_actions),
    db: Session = Depends(get_db_session),
) -> Response:
    unwrap(actions.delete_home_stay_rule(rule_id, user_id))
    db.commit()
    return Response(status_code=204)


# =============================================================================
# Run with Uvicorn
# =============================================================================


def run_server(host: Optional[str] = None, port: Optional[int] = None, reload: bool = False):
    """Run the API server with Uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "homes_calendar.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
    )


if __name__ == "__main__":
    run_server(reload=True)

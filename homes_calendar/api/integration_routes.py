"""
Calendar integration API routes.

Google Calendar (OAuth 2.0 authorization code flow):
1. /integrations/google/login - Start OAuth flow (returns Google's consent URL)
2. /integrations/google/callback - Exchange the code and store encrypted tokens
3. /integrations/google/calendars - Calendars the connected account can see
4. /integrations/google/sources - Import one of them for a child
5. /integrations/google/sources/{source_id}/sync - Sync now

ICS subscriptions (Apple/iCloud public calendars and others):
- POST /integrations/ics - Connect a link
- PUT /integrations/ics/{source_id} - Replace an expired link
- POST /integrations/ics/{source_id}/sync - Sync now (rate limited)
- DELETE /integrations/ics/{source_id} - Disconnect

Scheduled sync:
- /cron/sync-calendars - Sync every due source; guarded by CRON_SECRET
"""

import asyncio
import logging
import secrets
import time
import uuid
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from homes_calendar.api.dependencies import (
    get_cipher,
    get_current_user_id,
    get_db_session,
    get_google_syncer,
    get_ics_syncer,
    get_oauth_flow,
    verify_cron_secret,
)
from homes_calendar.api.errors import ApiError
from homes_calendar.api.models import (
    AddGoogleSourceRequest,
    ConnectIcsRequest,
    ConnectIcsResponse,
    DisconnectResponse,
    GoogleCalendarEntry,
    GoogleCalendarListResponse,
    GoogleCallbackResponse,
    GoogleLoginResponse,
    ReplaceIcsUrlRequest,
    SourceResponse,
    SyncResultResponse,
)
from homes_calendar.calendar.roster import SQLAlchemyRoster
from homes_calendar.crypto import Cipher
from homes_calendar.exceptions import ForbiddenError, NotFoundError
from homes_calendar.integrations.apple_calendar import (
    IcsCalendarSyncer,
    check_manual_sync_allowed,
    connect_ics_source,
    disconnect_ics_source,
    replace_ics_url,
)
from homes_calendar.integrations.base import SyncResult
from homes_calendar.integrations.batch import sync_due_sources
from homes_calendar.integrations.google_calendar import (
    GoogleCalendarClient,
    GoogleCalendarSyncer,
    GoogleOAuthFlow,
    add_google_source,
    disconnect_google,
)
from homes_calendar.integrations.google_calendar.token_storage import (
    get_connection,
    get_valid_access_token,
    save_connection,
)
from homes_calendar.models.sources import ExternalCalendarSource
from homes_calendar.models.tokens import GoogleCalendarConnection

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations", tags=["Integrations"])
cron_router = APIRouter(prefix="/cron", tags=["System"])

# In-memory state storage (use a shared store when running several workers)
STATE_TTL_SECONDS = 600
_oauth_states: dict[str, tuple[uuid.UUID, float]] = {}


def _prune_states(now: float) -> None:
    """Drop state tokens whose login was never completed."""
    expired = [state for state, (_, issued) in _oauth_states.items() if now - issued > STATE_TTL_SECONDS]
    for state in expired:
        del _oauth_states[state]


def _generate_state(user_id: uuid.UUID) -> str:
    """Generate a random state token and store the user_id mapping."""
    now = time.monotonic()
    _prune_states(now)
    state = secrets.token_urlsafe(32)
    _oauth_states[state] = (user_id, now)
    return state


def _validate_state(state: str) -> Optional[uuid.UUID]:
    """Validate state token and return user_id if valid and not expired."""
    entry = _oauth_states.pop(state, None)
    if entry is None:
        return None
    user_id, issued = entry
    if time.monotonic() - issued > STATE_TTL_SECONDS:
        return None
    return user_id


def _run_async(coro):
    """
    Run a coroutine to completion from a sync route.

    Routes that use the database are plain ``def`` so FastAPI runs them in
    its threadpool; the async upstream calls get their own event loop there
    and the sync session never blocks the server's loop.
    """
    return asyncio.run(coro)


async def _authorize(oauth_flow: GoogleOAuthFlow, code: str):
    tokens = await oauth_flow.exchange_code(code)
    user_info = await oauth_flow.get_user_info(tokens.access_token)
    return tokens, user_info


def _sync_response(db: Session, result: SyncResult) -> SyncResultResponse:
    """Commit the recorded outcome; failed syncs surface as 502."""
    db.commit()
    if not result.ok:
        raise ApiError(502, result.error_code or "upstream_fetch_error", result.error or "Could not sync calendar")
    return SyncResultResponse.from_result(result)


def _require_connection(db: Session, user_id: uuid.UUID, email: Optional[str] = None) -> GoogleCalendarConnection:
    connection = get_connection(db, user_id, email)
    if connection is None:
        raise NotFoundError("Google account is not connected")
    return connection


# =============================================================================
# Sources
# =============================================================================


@router.get("/sources", response_model=list[SourceResponse])
def list_sources(
    child_id: uuid.UUID = Query(...),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db_session),
) -> list[SourceResponse]:
    """Connected calendars for a child, visible to its guardians."""
    if user_id not in SQLAlchemyRoster(db).guardian_ids(child_id):
        raise ForbiddenError("Only a guardian can view this child's calendars")
    sources = db.scalars(
        select(ExternalCalendarSource)
        .where(
            ExternalCalendarSource.child_id == child_id,
            ExternalCalendarSource.revoked_at.is_(None),
        )
        .order_by(ExternalCalendarSource.created_at)
    )
    return [SourceResponse.from_source(source) for source in sources]


# =============================================================================
# Google Calendar
# =============================================================================


@router.get("/google/login", response_model=GoogleLoginResponse)
async def google_login(
    user_id: uuid.UUID = Depends(get_current_user_id),
    oauth_flow: GoogleOAuthFlow = Depends(get_oauth_flow),
) -> GoogleLoginResponse:
    """
    Start the Google OAuth flow.

    Returns the authorization URL that the client should redirect to.
    The state parameter prevents CSRF and maps the callback to the user.
    """
    if not oauth_flow.client_id or not oauth_flow.client_secret:
        raise HTTPException(status_code=503, detail="Google Calendar is not configured")

    state = _generate_state(user_id)
    logger.info(f"Generated OAuth URL for user {user_id}")
    return GoogleLoginResponse(
        authorization_url=oauth_flow.get_authorization_url(state),
        state=state,
    )


@router.get("/google/callback", response_model=GoogleCallbackResponse)
def google_callback(
    code: Optional[str] = Query(None, description="Authorization code from Google"),
    state: str = Query(..., description="State token for CSRF protection"),
    error: Optional[str] = Query(None, description="Error from Google OAuth"),
    db: Session = Depends(get_db_session),
    cipher: Cipher = Depends(get_cipher),
    oauth_flow: GoogleOAuthFlow = Depends(get_oauth_flow),
) -> GoogleCallbackResponse:
    """
    Handle the Google OAuth callback.

    On success, exchanges the authorization code for tokens and stores
    them encrypted.
    """
    if error:
        logger.warning(f"OAuth error: {error}")
        raise HTTPException(status_code=400, detail=f"OAuth authorization failed: {error}")

    user_id = _validate_state(state)
    if not user_id:
        logger.warning("Invalid or expired OAuth state token")
        raise HTTPException(
            status_code=400,
            detail="Invalid or expired state token. Please restart the OAuth flow.",
        )
    if not code:
        raise HTTPException(status_code=400, detail="Missing authorization code")

    try:
        tokens, user_info = _run_async(_authorize(oauth_flow, code))
    except httpx.HTTPError as e:
        logger.error(f"OAuth callback failed for user {user_id}: {e}")
        raise ApiError(502, "upstream_fetch_error", "Failed to complete Google authorization", True)

    save_connection(db, cipher, user_id, tokens, user_info)
    db.commit()

    logger.info(f"Stored Google tokens for user {user_id} ({user_info.email})")
    return GoogleCallbackResponse(
        success=True,
        email=user_info.email,
        message="Successfully connected Google Calendar",
    )


@router.get("/google/calendars", response_model=GoogleCalendarListResponse)
def google_calendars(
    email: Optional[str] = Query(None),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db_session),
    cipher: Cipher = Depends(get_cipher),
    oauth_flow: GoogleOAuthFlow = Depends(get_oauth_flow),
) -> GoogleCalendarListResponse:
    """List the calendars of the user's connected Google account."""
    connection = _require_connection(db, user_id, email)
    access_token = _run_async(get_valid_access_token(db, connection, cipher, oauth_flow))
    db.commit()

    client = GoogleCalendarClient.from_access_token(access_token)
    calendars = client.list_calendars()
    return GoogleCalendarListResponse(
        email=connection.email,
        calendars=[GoogleCalendarEntry(**calendar) for calendar in calendars],
    )


@router.post("/google/sources", response_model=SourceResponse, status_code=201)
def google_add_source(
    request: AddGoogleSourceRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db_session),
) -> SourceResponse:
    """Import one of the connected account's calendars for a child."""
    connection = _require_connection(db, user_id, request.email)
    source = add_google_source(
        db,
        connection,
        request.child_id,
        request.calendar_id,
        request.display_name,
    )
    db.commit()
    return SourceResponse.from_source(source)


@router.post("/google/sources/{source_id}/sync", response_model=SyncResultResponse)
def google_sync_source(
    source_id: uuid.UUID,
    full: bool = Query(False, description="Ignore the stored sync token"),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db_session),
    syncer: GoogleCalendarSyncer = Depends(get_google_syncer),
) -> SyncResultResponse:
    """Sync one Google source now."""
    source = db.get(ExternalCalendarSource, source_id)
    if (
        source is None
        or source.provider != "google"
        or source.owner_id != user_id
        or source.revoked_at is not None
    ):
        raise NotFoundError("Calendar not found")

    result = _run_async(syncer.sync(source, full=full))
    return _sync_response(db, result)


@router.delete("/google", response_model=DisconnectResponse)
def google_disconnect(
    email: Optional[str] = Query(None),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db_session),
) -> DisconnectResponse:
    """Revoke the Google connection and hide everything it imported."""
    connection = _require_connection(db, user_id, email)
    removed = disconnect_google(db, connection)
    db.commit()
    logger.info(f"User {user_id} disconnected Google Calendar")
    return DisconnectResponse(success=True, events_removed=removed)


# =============================================================================
# ICS subscriptions
# =============================================================================


@router.post("/ics", response_model=ConnectIcsResponse, status_code=201)
def ics_connect(
    request: ConnectIcsRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db_session),
    cipher: Cipher = Depends(get_cipher),
    syncer: IcsCalendarSyncer = Depends(get_ics_syncer),
) -> ConnectIcsResponse:
    """
    Connect an ICS link and run the first sync.

    The connection is kept even when the first sync fails; the failure is
    reported in ``sync`` and on the source.
    """
    source, warning = connect_ics_source(
        db,
        cipher,
        request.child_id,
        user_id,
        request.url,
        display_name=request.display_name,
    )
    result = _run_async(syncer.sync(source))
    db.commit()
    return ConnectIcsResponse(
        source=SourceResponse.from_source(source),
        warning=warning,
        sync=SyncResultResponse.from_result(result),
    )


@router.put("/ics/{source_id}", response_model=ConnectIcsResponse)
def ics_replace_url(
    source_id: uuid.UUID,
    request: ReplaceIcsUrlRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db_session),
    cipher: Cipher = Depends(get_cipher),
) -> ConnectIcsResponse:
    """Point a subscription at a new link; it syncs on the next run."""
    source, warning = replace_ics_url(db, cipher, source_id, user_id, request.url)
    db.commit()
    return ConnectIcsResponse(source=SourceResponse.from_source(source), warning=warning)


@router.post("/ics/{source_id}/sync", response_model=SyncResultResponse)
def ics_sync_source(
    source_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db_session),
    syncer: IcsCalendarSyncer = Depends(get_ics_syncer),
) -> SyncResultResponse:
    """Sync one ICS source now; refused within a few minutes of the last sync."""
    source = check_manual_sync_allowed(db, source_id, user_id)
    result = _run_async(syncer.sync(source))
    return _sync_response(db, result)


@router.delete("/ics/{source_id}", response_model=DisconnectResponse)
def ics_disconnect(
    source_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db_session),
) -> DisconnectResponse:
    """Disconnect a subscription and hide everything it imported."""
    removed = disconnect_ics_source(db, source_id, user_id)
    db.commit()
    return DisconnectResponse(success=True, events_removed=removed)


# =============================================================================
# Scheduled sync
# =============================================================================


@cron_router.api_route("/sync-calendars", methods=["GET", "POST"], dependencies=[Depends(verify_cron_secret)])
def sync_calendars(
    db: Session = Depends(get_db_session),
    google_syncer: GoogleCalendarSyncer = Depends(get_google_syncer),
    ics_syncer: IcsCalendarSyncer = Depends(get_ics_syncer),
) -> dict:
    """Sync every due source once. One failing source never fails the run."""
    report = _run_async(sync_due_sources(
        db,
        {google_syncer.provider: google_syncer, ics_syncer.provider: ics_syncer},
    ))
    db.commit()
    return report.to_dict()

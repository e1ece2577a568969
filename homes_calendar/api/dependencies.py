"""
FastAPI dependency injection providers.

Provides database sessions, the acting user, the URL/token cipher and the
workflow and sync services built on top of them.
"""

import logging
import secrets
import uuid
from typing import Generator, Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from homes_calendar.calendar.actions import CalendarActions
from homes_calendar.calendar.roster import SQLAlchemyRoster
from homes_calendar.calendar.store import SQLAlchemyEventStore
from homes_calendar.config import Settings, get_settings
from homes_calendar.crypto import Cipher
from homes_calendar.database import get_db
from homes_calendar.integrations.apple_calendar import IcsCalendarSyncer
from homes_calendar.integrations.google_calendar import GoogleCalendarSyncer, GoogleOAuthFlow

logger = logging.getLogger(__name__)

# Set by init_cipher() at startup
_cipher: Optional[Cipher] = None


def init_cipher(settings: Optional[Settings] = None) -> None:
    """
    Initialize the cipher at application startup.

    A missing key is logged and leaves integration endpoints answering 503;
    a malformed key raises ``ConfigurationError``.
    """
    global _cipher
    settings = settings or get_settings()
    if not settings.encryption_key:
        logger.warning("ENCRYPTION_KEY not set; calendar integrations are disabled")
        _cipher = None
        return
    _cipher = Cipher.from_settings(settings)
    logger.info("Cipher initialized")


def get_cipher() -> Cipher:
    """
    Dependency injection for the cipher.

    Raises:
        HTTPException: 503 if no encryption key is configured
    """
    if _cipher is None:
        raise HTTPException(
            status_code=503,
            detail="Calendar integrations are not configured",
        )
    return _cipher


def cipher_ready() -> bool:
    return _cipher is not None


def get_db_session() -> Generator[Session, None, None]:
    """Request-scoped session; committed when the handler returns normally."""
    yield from get_db()


def get_current_user_id(
    x_user_id: Optional[str] = Header(None, description="Acting user (profile id)"),
) -> uuid.UUID:
    """
    Extract the acting user from the ``X-User-ID`` header.

    Raises:
        HTTPException: 401 if the header is missing, 400 if it is not a UUID
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-ID header is required")
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="X-User-ID must be a UUID")


def get_actions(
    db: Session = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> CalendarActions:
    return CalendarActions(
        SQLAlchemyEventStore(db),
        SQLAlchemyRoster(db),
        overlap_policy=settings.home_day_overlap_policy,
        default_timezone=settings.timezone,
    )


def get_oauth_flow() -> GoogleOAuthFlow:
    return GoogleOAuthFlow()


def get_ics_syncer(
    db: Session = Depends(get_db_session),
    cipher: Cipher = Depends(get_cipher),
) -> IcsCalendarSyncer:
    return IcsCalendarSyncer(db, cipher)


def get_google_syncer(
    db: Session = Depends(get_db_session),
    cipher: Cipher = Depends(get_cipher),
    oauth_flow: GoogleOAuthFlow = Depends(get_oauth_flow),
) -> GoogleCalendarSyncer:
    return GoogleCalendarSyncer(db, cipher, oauth_flow=oauth_flow)


def verify_cron_secret(
    authorization: Optional[str] = Header(None),
    x_cron_secret: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Guard the scheduled sync endpoint.

    Accepts ``Authorization: Bearer <secret>`` or ``X-Cron-Secret``.

    Raises:
        HTTPException: 503 if no secret is configured, 401 on mismatch
    """
    if not settings.cron_secret:
        logger.error("CRON_SECRET not configured; refusing scheduled sync")
        raise HTTPException(status_code=503, detail="Scheduled sync is not configured")

    provided = x_cron_secret
    if authorization and authorization.lower().startswith("bearer "):
        provided = authorization[len("bearer "):].strip()

    if not provided or not secrets.compare_digest(provided, settings.cron_secret):
        logger.warning("Rejected scheduled sync call with a bad secret")
        raise HTTPException(status_code=401, detail="Unauthorized")

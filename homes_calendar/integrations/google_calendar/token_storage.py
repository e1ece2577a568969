"""
Token storage and retrieval for Google OAuth tokens.

Tokens are encrypted with ``Cipher`` before they reach the database and
refreshed automatically when within five minutes of expiry.
"""

import logging
import uuid
from typing import Optional

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from homes_calendar.crypto import Cipher
from homes_calendar.integrations.google_calendar.exceptions import GoogleCalendarAuthError
from homes_calendar.integrations.google_calendar.oauth import (
    GoogleOAuthFlow,
    GoogleUserInfo,
    OAuthTokens,
)
from homes_calendar.models.base import utcnow
from homes_calendar.models.tokens import GoogleCalendarConnection

logger = logging.getLogger(__name__)


def get_connection(
    session: Session,
    profile_id: uuid.UUID,
    email: Optional[str] = None,
) -> Optional[GoogleCalendarConnection]:
    """
    Get a caregiver's active Google connection.

    Args:
        session: Database session
        profile_id: The caregiver's profile ID
        email: Pick a specific Google account when several are connected

    Returns:
        GoogleCalendarConnection if found, None otherwise
    """
    stmt = select(GoogleCalendarConnection).where(
        GoogleCalendarConnection.profile_id == profile_id,
        GoogleCalendarConnection.revoked_at.is_(None),
    )
    if email:
        stmt = stmt.where(GoogleCalendarConnection.email == email)
    return session.scalars(stmt.order_by(GoogleCalendarConnection.created_at.desc())).first()


def save_connection(
    session: Session,
    cipher: Cipher,
    profile_id: uuid.UUID,
    tokens: OAuthTokens,
    user_info: GoogleUserInfo,
) -> GoogleCalendarConnection:
    """
    Save or update a caregiver's OAuth tokens.

    Reconnecting the same Google account replaces the tokens and clears
    ``revoked_at``; the refresh token is kept when Google omits it.
    """
    existing = session.scalars(
        select(GoogleCalendarConnection).where(
            GoogleCalendarConnection.profile_id == profile_id,
            GoogleCalendarConnection.email == user_info.email,
        )
    ).first()

    if existing:
        existing.access_token_encrypted = cipher.encrypt(tokens.access_token)
        if tokens.refresh_token:
            existing.refresh_token_encrypted = cipher.encrypt(tokens.refresh_token)
        existing.token_expiry = tokens.expiry
        existing.scopes = tokens.scope
        existing.revoked_at = None
        session.flush()
        logger.info(f"Updated Google connection for profile {profile_id}")
        return existing

    connection = GoogleCalendarConnection(
        profile_id=profile_id,
        email=user_info.email,
        access_token_encrypted=cipher.encrypt(tokens.access_token),
        refresh_token_encrypted=cipher.encrypt(tokens.refresh_token) if tokens.refresh_token else None,
        token_expiry=tokens.expiry,
        scopes=tokens.scope,
    )
    session.add(connection)
    session.flush()
    logger.info(f"Created Google connection for profile {profile_id}")
    return connection


def revoke_connection(session: Session, connection: GoogleCalendarConnection) -> None:
    """Mark a connection revoked; its sources stop syncing."""
    connection.revoked_at = utcnow()
    session.flush()
    logger.info(f"Revoked Google connection {connection.id}")


async def get_valid_access_token(
    session: Session,
    connection: GoogleCalendarConnection,
    cipher: Cipher,
    flow: Optional[GoogleOAuthFlow] = None,
) -> str:
    """
    Get a usable access token, refreshing it if close to expiry.

    Raises:
        GoogleCalendarAuthError: If the connection is revoked, has no
            refresh token, or Google refuses the refresh
    """
    if connection.revoked_at is not None:
        raise GoogleCalendarAuthError("Google Calendar access was revoked")

    if not connection.needs_refresh:
        return cipher.decrypt(connection.access_token_encrypted)

    if not connection.refresh_token_encrypted:
        raise GoogleCalendarAuthError("Token expired and no refresh token. Please reconnect.")

    flow = flow or GoogleOAuthFlow()
    try:
        tokens = await flow.refresh_token(cipher.decrypt(connection.refresh_token_encrypted))
    except httpx.HTTPError as e:
        logger.error(f"Failed to refresh token for connection {connection.id}: {e}")
        raise GoogleCalendarAuthError(
            "Failed to refresh Google token. Please reconnect.",
            original_error=e,
        )

    connection.access_token_encrypted = cipher.encrypt(tokens.access_token)
    connection.token_expiry = tokens.expiry
    if tokens.refresh_token:
        connection.refresh_token_encrypted = cipher.encrypt(tokens.refresh_token)
    session.flush()
    logger.info(f"Refreshed access token for connection {connection.id}")
    return tokens.access_token

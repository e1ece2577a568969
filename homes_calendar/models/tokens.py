"""
OAuth token storage models.

Stores Google OAuth tokens for caregivers who connected a calendar.
Tokens are encrypted at rest and refreshed when close to expiry.
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import String, Text, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from homes_calendar.models.base import BaseModel, utcnow

REFRESH_BUFFER = timedelta(minutes=5)


class GoogleCalendarConnection(BaseModel):
    """
    A caregiver's Google account authorization.

    Attributes:
        profile_id: Caregiver who authorized access
        email: Google account email
        access_token_encrypted: Encrypted current access token
        refresh_token_encrypted: Encrypted refresh token
        token_expiry: When the access token expires
        scopes: OAuth scopes granted (space-separated)
        revoked_at: Set when the caregiver disconnects
    """

    __tablename__ = "google_calendar_connections"

    profile_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )

    email: Mapped[str] = mapped_column(String(255), nullable=False)

    access_token_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    token_expiry: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    scopes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    revoked_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    __table_args__ = (
        Index("ix_google_connections_profile_email", "profile_id", "email", unique=True),
    )

    @property
    def needs_refresh(self) -> bool:
        """Check if token should be refreshed (expired or expiring soon)."""
        if self.token_expiry is None:
            return False
        return utcnow() >= (self.token_expiry - REFRESH_BUFFER)

    def __repr__(self) -> str:
        return f"<GoogleCalendarConnection(profile_id={self.profile_id}, email={self.email})>"

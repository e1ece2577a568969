"""
Google OAuth 2.0 authorization code flow for read-only calendar import.

The consent screen asks for ``calendar.readonly`` plus the account email;
the email identifies which Google account a connection belongs to. Token
endpoint failures surface as ``httpx.HTTPStatusError`` and are mapped by
the callers (callback route, token storage).
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode

import httpx

from homes_calendar.config import Settings, get_settings

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

# Events are imported, never written back
CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/userinfo.email",
]


@dataclass
class OAuthTokens:
    """Token endpoint response."""

    access_token: str
    refresh_token: Optional[str]
    expires_in: int
    token_type: str = "Bearer"
    scope: str = ""

    @property
    def expiry(self) -> datetime:
        return datetime.now(timezone.utc) + timedelta(seconds=self.expires_in)

    @classmethod
    def from_response(cls, payload: dict, refresh_token: Optional[str] = None) -> "OAuthTokens":
        return cls(
            access_token=payload["access_token"],
            # A refresh grant only returns a refresh token when Google rotates it
            refresh_token=payload.get("refresh_token") or refresh_token,
            expires_in=int(payload.get("expires_in", 3600)),
            token_type=payload.get("token_type", "Bearer"),
            scope=payload.get("scope", ""),
        )


@dataclass
class GoogleUserInfo:
    email: str
    name: Optional[str] = None


class GoogleOAuthFlow:
    """
    Client for Google's OAuth endpoints.

    Typical callback handling::

        flow = GoogleOAuthFlow()
        url = flow.get_authorization_url(state)
        tokens = await flow.exchange_code(code)
        user = await flow.get_user_info(tokens.access_token)

    ``transport`` is handed to ``httpx.AsyncClient`` so tests can use
    ``httpx.MockTransport``.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = settings or get_settings()
        self.client_id = settings.google_oauth_client_id
        self.client_secret = settings.google_oauth_client_secret
        self.redirect_uri = settings.google_oauth_redirect_uri
        self.timeout = settings.sync_fetch_timeout_seconds
        self._transport = transport

        if not self.client_id or not self.client_secret:
            logger.warning(
                "Google OAuth not configured; set GOOGLE_OAUTH_CLIENT_ID and "
                "GOOGLE_OAUTH_CLIENT_SECRET to enable Google Calendar import"
            )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.timeout)

    def get_authorization_url(self, state: str) -> str:
        """
        Build the consent URL.

        ``access_type=offline`` with ``prompt=consent`` makes Google return a
        refresh token on every grant, including reconnects.
        """
        query = urlencode({
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(CALENDAR_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
            "state": state,
        })
        return f"{GOOGLE_AUTH_URL}?{query}"

    async def _token_request(self, grant: dict) -> dict:
        form = {"client_id": self.client_id, "client_secret": self.client_secret, **grant}
        async with self._client() as client:
            response = await client.post(GOOGLE_TOKEN_URL, data=form)
            response.raise_for_status()
            return response.json()

    async def exchange_code(self, code: str) -> OAuthTokens:
        """Trade an authorization code for tokens."""
        payload = await self._token_request({
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri,
        })
        logger.info("Exchanged Google authorization code")
        return OAuthTokens.from_response(payload)

    async def refresh_token(self, refresh_token: str) -> OAuthTokens:
        """
        Get a fresh access token.

        The returned tokens keep ``refresh_token`` unless Google rotated it.
        A revoked grant answers 400 ``invalid_grant``.
        """
        payload = await self._token_request({
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        })
        logger.debug("Refreshed Google access token")
        return OAuthTokens.from_response(payload, refresh_token=refresh_token)

    async def get_user_info(self, access_token: str) -> GoogleUserInfo:
        async with self._client() as client:
            response = await client.get(
                GOOGLE_USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
            )
            response.raise_for_status()
            profile = response.json()

        return GoogleUserInfo(email=profile["email"], name=profile.get("name"))

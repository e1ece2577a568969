"""Tests for the Google OAuth flow."""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from homes_calendar.config import Settings
from homes_calendar.integrations.google_calendar.oauth import (
    CALENDAR_SCOPES,
    GOOGLE_TOKEN_URL,
    GoogleOAuthFlow,
)

SETTINGS = Settings(
    _env_file=None,
    google_oauth_client_id="client-id",
    google_oauth_client_secret="client-secret",
    google_oauth_redirect_uri="http://localhost:8000/integrations/google/callback",
)


def flow_for(handler) -> GoogleOAuthFlow:
    return GoogleOAuthFlow(settings=SETTINGS, transport=httpx.MockTransport(handler))


class TestAuthorizationUrl:
    def test_requests_offline_read_only_access(self):
        url = GoogleOAuthFlow(settings=SETTINGS).get_authorization_url("state-123")
        query = parse_qs(urlparse(url).query)

        assert query["client_id"] == ["client-id"]
        assert query["state"] == ["state-123"]
        assert query["access_type"] == ["offline"]
        assert query["prompt"] == ["consent"]
        assert query["scope"] == [" ".join(CALENDAR_SCOPES)]


class TestTokenEndpoint:
    """Tests for code exchange and refresh."""

    @pytest.mark.asyncio
    async def test_exchange_code(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={
                "access_token": "access-1",
                "refresh_token": "refresh-1",
                "expires_in": 3599,
                "scope": CALENDAR_SCOPES[0],
            })

        tokens = await flow_for(handler).exchange_code("auth-code")

        assert seen["url"] == GOOGLE_TOKEN_URL
        assert seen["form"]["grant_type"] == ["authorization_code"]
        assert seen["form"]["code"] == ["auth-code"]
        assert seen["form"]["client_secret"] == ["client-secret"]
        assert tokens.access_token == "access-1"
        assert tokens.refresh_token == "refresh-1"
        assert tokens.token_type == "Bearer"

    @pytest.mark.asyncio
    async def test_refresh_keeps_refresh_token(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"access_token": "access-2", "expires_in": 3600})

        tokens = await flow_for(handler).refresh_token("refresh-1")

        assert tokens.access_token == "access-2"
        assert tokens.refresh_token == "refresh-1"

    @pytest.mark.asyncio
    async def test_refresh_takes_rotated_token(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={
                "access_token": "access-2",
                "refresh_token": "refresh-2",
                "expires_in": 3600,
            })

        tokens = await flow_for(handler).refresh_token("refresh-1")

        assert tokens.refresh_token == "refresh-2"

    @pytest.mark.asyncio
    async def test_revoked_grant_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "invalid_grant"})

        with pytest.raises(httpx.HTTPStatusError):
            await flow_for(handler).refresh_token("refresh-1")


class TestUserInfo:
    @pytest.mark.asyncio
    async def test_sends_bearer_token(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["Authorization"] == "Bearer access-1"
            return httpx.Response(200, json={"email": "alex@example.com", "name": "Alex"})

        user = await flow_for(handler).get_user_info("access-1")

        assert user.email == "alex@example.com"
        assert user.name == "Alex"

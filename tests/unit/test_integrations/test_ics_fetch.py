"""Tests for ICS feed fetching."""

import httpx
import pytest

from homes_calendar.integrations.apple_calendar.exceptions import IcsSyncError
from homes_calendar.integrations.apple_calendar.fetch import USER_AGENT, IcsFetcher

FEED = "BEGIN:VCALENDAR\r\nVERSION:2.0\r\nEND:VCALENDAR\r\n"


def fetcher_for(handler, **kwargs) -> IcsFetcher:
    return IcsFetcher(transport=httpx.MockTransport(handler), **kwargs)


class TestIcsFetcher:
    """Tests for IcsFetcher.fetch."""

    @pytest.mark.asyncio
    async def test_success_returns_body_and_validators(self):
        """Test webcal links are fetched over https with our headers."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["agent"] = request.headers["User-Agent"]
            return httpx.Response(
                200,
                content=FEED.encode(),
                headers={"ETag": '"v1"', "Last-Modified": "Fri, 16 Oct 2026 10:00:00 GMT"},
            )

        result = await fetcher_for(handler).fetch("webcal://example.com/kid.ics")

        assert seen["url"] == "https://example.com/kid.ics"
        assert seen["agent"] == USER_AGENT
        assert result.body == FEED
        assert result.etag == '"v1"'
        assert result.last_modified == "Fri, 16 Oct 2026 10:00:00 GMT"
        assert result.not_modified is False

    @pytest.mark.asyncio
    async def test_conditional_get_not_modified(self):
        """Test stored validators are sent and a 304 keeps them."""
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["If-None-Match"] == '"v1"'
            assert request.headers["If-Modified-Since"] == "yesterday"
            return httpx.Response(304)

        result = await fetcher_for(handler).fetch(
            "https://example.com/kid.ics", etag='"v1"', last_modified="yesterday"
        )

        assert result.not_modified is True
        assert result.body is None
        assert result.etag == '"v1"'
        assert result.last_modified == "yesterday"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,code",
        [
            (401, "auth_required"),
            (403, "auth_required"),
            (404, "expired"),
            (410, "expired"),
            (500, "unreachable"),
            (503, "unreachable"),
            (418, "unknown"),
        ],
    )
    async def test_http_errors_mapped(self, status, code):
        fetcher = fetcher_for(lambda request: httpx.Response(status))

        with pytest.raises(IcsSyncError) as exc_info:
            await fetcher.fetch("https://example.com/kid.ics")

        assert exc_info.value.code == code

    @pytest.mark.asyncio
    async def test_expired_message(self):
        fetcher = fetcher_for(lambda request: httpx.Response(404))

        with pytest.raises(IcsSyncError) as exc_info:
            await fetcher.fetch("https://example.com/kid.ics")

        assert exc_info.value.message == "Calendar link expired, replace it"
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_too_large(self):
        fetcher = fetcher_for(lambda request: httpx.Response(200, content=b"x" * 100), max_bytes=10)

        with pytest.raises(IcsSyncError) as exc_info:
            await fetcher.fetch("https://example.com/kid.ics")

        assert exc_info.value.code == "too_large"

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(IcsSyncError) as exc_info:
            await fetcher_for(handler).fetch("https://example.com/kid.ics")

        assert exc_info.value.code == "timeout"
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(IcsSyncError) as exc_info:
            await fetcher_for(handler).fetch("https://example.com/kid.ics")

        assert exc_info.value.code == "unreachable"
        assert exc_info.value.message == "Calendar link unreachable"

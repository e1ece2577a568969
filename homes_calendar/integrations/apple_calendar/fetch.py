"""
ICS feed fetching.

Conditional GET with the stored ETag / Last-Modified validators, a hard
size limit and a bounded timeout. Every failure is raised as an
``IcsSyncError`` carrying the user-facing message.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from homes_calendar.crypto import normalize_ics_url
from homes_calendar.integrations.apple_calendar.exceptions import (
    AUTH_REQUIRED,
    EXPIRED,
    TIMEOUT,
    TOO_LARGE,
    UNKNOWN,
    UNREACHABLE,
    IcsSyncError,
)

logger = logging.getLogger(__name__)

USER_AGENT = "Homes.kids/1.0 (Calendar Sync)"
ACCEPT = "text/calendar, application/ics"


@dataclass
class IcsFetchResult:
    """Body and validators of one fetch; ``body`` is None when not modified."""

    body: Optional[str]
    etag: Optional[str]
    last_modified: Optional[str]
    not_modified: bool = False


def _status_error(status: int) -> str:
    if status in (401, 403):
        return AUTH_REQUIRED
    if status in (404, 410):
        return EXPIRED
    if status >= 500:
        return UNREACHABLE
    return UNKNOWN


class IcsFetcher:
    """
    Fetches ICS feeds over HTTP.

    ``transport`` is handed to ``httpx.AsyncClient`` so tests can use
    ``httpx.MockTransport``.
    """

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        max_bytes: int = 5 * 1024 * 1024,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.max_bytes = max_bytes
        self._transport = transport

    async def fetch(
        self,
        url: str,
        etag: Optional[str] = None,
        last_modified: Optional[str] = None,
    ) -> IcsFetchResult:
        """
        GET a feed.

        Args:
            url: Plain subscription URL (webcal:// is accepted)
            etag: Validator from the previous successful fetch
            last_modified: Validator from the previous successful fetch

        Returns:
            IcsFetchResult; ``not_modified`` on 304

        Raises:
            IcsSyncError: On any HTTP, network, size or timeout failure
        """
        headers = {"User-Agent": USER_AGENT, "Accept": ACCEPT}
        if etag:
            headers["If-None-Match"] = etag
        if last_modified:
            headers["If-Modified-Since"] = last_modified

        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=self.timeout_seconds,
                follow_redirects=True,
            ) as client:
                async with client.stream("GET", normalize_ics_url(url), headers=headers) as response:
                    if response.status_code == 304:
                        return IcsFetchResult(
                            body=None,
                            etag=response.headers.get("ETag") or etag,
                            last_modified=response.headers.get("Last-Modified") or last_modified,
                            not_modified=True,
                        )

                    if response.status_code >= 400:
                        logger.warning(f"ICS fetch returned HTTP {response.status_code}")
                        raise IcsSyncError(_status_error(response.status_code))

                    declared = response.headers.get("Content-Length")
                    if declared and declared.isdigit() and int(declared) > self.max_bytes:
                        raise IcsSyncError(TOO_LARGE)

                    chunks = []
                    received = 0
                    async for chunk in response.aiter_bytes():
                        received += len(chunk)
                        if received > self.max_bytes:
                            raise IcsSyncError(TOO_LARGE)
                        chunks.append(chunk)

                    body = b"".join(chunks).decode(response.encoding or "utf-8", errors="replace")
                    return IcsFetchResult(
                        body=body,
                        etag=response.headers.get("ETag"),
                        last_modified=response.headers.get("Last-Modified"),
                    )
        except httpx.TimeoutException as e:
            logger.warning(f"ICS fetch timed out after {self.timeout_seconds}s")
            raise IcsSyncError(TIMEOUT, original_error=e)
        except httpx.HTTPError as e:
            logger.warning(f"ICS fetch failed: {e}")
            raise IcsSyncError(UNREACHABLE, original_error=e)

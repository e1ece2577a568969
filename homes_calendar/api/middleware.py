"""
FastAPI middleware for request tracking.

Every request gets a short id, echoed back as ``X-Request-ID`` and kept in
a context variable so log lines from deeper layers can include it.
"""

import logging
import time
import uuid
from contextvars import ContextVar

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def get_request_id() -> str:
    """Get current request ID from context."""
    return request_id_ctx.get()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs method, path, status and elapsed time per request.

    An incoming ``X-Request-ID`` is reused so ids line up with the caller's
    logs; otherwise a short random id is generated.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        req_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())[:8]
        token = request_id_ctx.set(req_id)

        logger.info(
            f"[{req_id}] {request.method} {request.url.path}",
            extra={
                "request_id": req_id,
                "method": request.method,
                "path": request.url.path,
            },
        )

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            elapsed = time.perf_counter() - start_time
            logger.error(
                f"[{req_id}] Request failed after {elapsed:.2f}s: {e}",
                extra={"request_id": req_id, "elapsed_ms": elapsed * 1000},
                exc_info=True,
            )
            raise
        finally:
            request_id_ctx.reset(token)

        elapsed = time.perf_counter() - start_time
        logger.info(
            f"[{req_id}] {response.status_code} in {elapsed:.2f}s",
            extra={
                "request_id": req_id,
                "status_code": response.status_code,
                "elapsed_ms": elapsed * 1000,
            },
        )

        response.headers[REQUEST_ID_HEADER] = req_id
        return response

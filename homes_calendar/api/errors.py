"""
HTTP error mapping.

Workflow operations return ``Result`` objects and integration functions
raise ``CalendarError`` subclasses; both end up here and become the same
JSON error body.
"""

from typing import Optional, TypeVar

from fastapi import HTTPException

from homes_calendar.calendar.types import Result
from homes_calendar.exceptions import CalendarError, UpstreamFetchError

T = TypeVar("T")

ERROR_STATUS = {
    "validation_error": 400,
    "not_found": 404,
    "invalid_state": 409,
    "forbidden": 403,
    "conflict": 409,
    "upstream_fetch_error": 502,
    "configuration_error": 503,
}


class ApiError(HTTPException):
    """HTTPException carrying a stable ``error_type`` for the response body."""

    def __init__(self, status_code: int, error_type: str, message: str, retryable: bool = False):
        super().__init__(status_code=status_code, detail=message)
        self.error_type = error_type
        self.retryable = retryable


def status_for(error_code: Optional[str]) -> int:
    return ERROR_STATUS.get(error_code or "", 400)


def from_calendar_error(error: CalendarError) -> ApiError:
    if isinstance(error, UpstreamFetchError):
        status_code = 502
    else:
        status_code = status_for(error.code)
    return ApiError(status_code, error.code, error.message, error.retryable)


def unwrap(result: Result[T]) -> T:
    """
    Return the value of a successful result.

    Raises:
        ApiError: With the status mapped from ``result.error_code``
    """
    if result.ok:
        return result.value
    code = result.error_code or "validation_error"
    raise ApiError(status_for(code), code, result.error or "Request failed", code == "conflict")

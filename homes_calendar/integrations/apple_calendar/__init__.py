"""Apple / ICS subscription integration (read-only import)."""

from homes_calendar.integrations.apple_calendar.exceptions import ICS_ERROR_MESSAGES, IcsSyncError
from homes_calendar.integrations.apple_calendar.fetch import IcsFetcher, IcsFetchResult
from homes_calendar.integrations.apple_calendar.ics_parser import IcsParseResult, parse_ics
from homes_calendar.integrations.apple_calendar.sync import (
    IcsCalendarSyncer,
    check_manual_sync_allowed,
    connect_ics_source,
    disconnect_ics_source,
    replace_ics_url,
)

__all__ = [
    "ICS_ERROR_MESSAGES",
    "IcsSyncError",
    "IcsFetcher",
    "IcsFetchResult",
    "IcsParseResult",
    "parse_ics",
    "IcsCalendarSyncer",
    "check_manual_sync_allowed",
    "connect_ics_source",
    "disconnect_ics_source",
    "replace_ics_url",
]

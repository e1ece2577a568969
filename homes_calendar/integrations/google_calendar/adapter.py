"""
Mapping from Google Calendar API events to ``ExternalEvent``.

Handles:
- dateTime vs. date (all-day) start/end
- exclusive all-day ends and zero-length timed events
- cancelled instances from incremental syncs
- recurrence rule extraction
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from dateutil.parser import isoparse, parse as parse_datetime

from homes_calendar.integrations.base import ExternalEvent, inclusive_all_day_end


class GoogleCalendarAdapter:
    """Maps Google Calendar API events to the provider-neutral form."""

    @staticmethod
    def from_google_event(google_event: dict) -> ExternalEvent:
        """
        Convert a Google Calendar event to an ``ExternalEvent``.

        All-day ends are exclusive in Google; an end that is not after the
        start is bumped by one day. Timed events whose end is not after the
        start get a one-hour duration.
        """
        if google_event.get("status") == "cancelled" and "start" not in google_event:
            # Incremental syncs send cancelled instances as bare ids
            epoch = datetime.fromtimestamp(0, tz=timezone.utc)
            return ExternalEvent(
                external_id=google_event["id"],
                title="",
                start_at=epoch,
                end_at=epoch,
                cancelled=True,
            )

        start_data = google_event.get("start", {})
        end_data = google_event.get("end", {}) or start_data

        if "date" in start_data:
            start_at = _parse_date(start_data["date"])
            end_at = _parse_date(end_data.get("date", start_data["date"]))
            if end_at <= start_at:
                end_at = start_at + timedelta(days=1)
            end_at = inclusive_all_day_end(end_at)
            all_day = True
        else:
            start_at = _parse_datetime(start_data["dateTime"])
            end_at = _parse_datetime(end_data.get("dateTime", start_data["dateTime"]))
            if end_at <= start_at:
                end_at = start_at + timedelta(hours=1)
            all_day = False

        recurrence_rule = None
        for rule in google_event.get("recurrence", []) or []:
            if rule.startswith("RRULE:"):
                recurrence_rule = rule[6:]  # Strip "RRULE:" prefix
                break

        return ExternalEvent(
            external_id=google_event["id"],
            title=google_event.get("summary") or "Untitled Event",
            start_at=start_at,
            end_at=end_at,
            all_day=all_day,
            description=google_event.get("description"),
            location=google_event.get("location"),
            timezone=start_data.get("timeZone"),
            html_link=google_event.get("htmlLink"),
            recurrence_rule=recurrence_rule,
            updated_at=_parse_optional(google_event.get("updated")),
            cancelled=google_event.get("status") == "cancelled",
            series_id=google_event.get("recurringEventId"),
        )


def format_rfc3339(dt: datetime) -> str:
    """Format datetime to RFC 3339 in UTC for Google API query bounds."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_datetime(dt_str: str) -> datetime:
    """Parse an RFC 3339 datetime into aware UTC."""
    dt = parse_datetime(dt_str)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_date(date_str: str) -> datetime:
    """Parse a YYYY-MM-DD all-day date as midnight UTC."""
    return datetime.strptime(date_str, "%Y-%m-%d").replace(tzinfo=timezone.utc)


def _parse_optional(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return isoparse(value)
    except ValueError:
        return None

"""
Recurrence expansion service.

Imported calendars carry RRULEs on master events; sync expands them into
discrete instances inside the sync window. Local events never recur.

Uses python-dateutil for RRULE parsing and expansion.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from dateutil.rrule import rrulestr, rruleset

WEEKDAY_LABELS = {
    "MO": "Mon",
    "TU": "Tue",
    "WE": "Wed",
    "TH": "Thu",
    "FR": "Fri",
    "SA": "Sat",
    "SU": "Sun",
}


class TooManyOccurrences(Exception):
    """Expansion exceeded the configured instance cap."""


@dataclass
class RecurrenceInstance:
    """Represents a single occurrence of a recurring event."""

    instance_start: datetime
    instance_end: datetime
    recurrence_id: str


def _strip_prefix(rrule_string: str) -> str:
    rule = rrule_string.strip()
    if rule.upper().startswith("RRULE:"):
        rule = rule[len("RRULE:"):]
    return rule


def parse_rrule(
    rrule_string: str,
    dtstart: datetime,
    exdates: Iterable[datetime] = (),
) -> Optional[rruleset]:
    """
    Parse an RRULE string into a dateutil rule set.

    Args:
        rrule_string: iCalendar RRULE string (e.g., 'FREQ=WEEKLY;BYDAY=MO,WE,FR')
        dtstart: Start datetime for the recurrence (aware or naive)
        exdates: Occurrence starts to exclude

    Returns:
        rruleset or None if parsing fails
    """
    if not rrule_string:
        return None

    try:
        rules = rrulestr(_strip_prefix(rrule_string), dtstart=dtstart, forceset=True)
    except (ValueError, TypeError):
        return None

    for exdate in exdates:
        rules.exdate(exdate)
    return rules


def expand_recurrence(
    rrule_string: str,
    dtstart: datetime,
    duration: timedelta,
    window_start: datetime,
    window_end: datetime,
    max_instances: int = 2000,
    exdates: Iterable[datetime] = (),
) -> list[RecurrenceInstance]:
    """
    Expand a recurring event into instances overlapping a time window.

    Args:
        rrule_string: iCalendar RRULE string
        dtstart: Original event start time
        duration: Event duration (end - start)
        window_start: Start of the window
        window_end: End of the window
        max_instances: Cap on generated instances
        exdates: Excluded occurrence starts

    Returns:
        Instances in start order; empty if the rule cannot be parsed

    Raises:
        TooManyOccurrences: If more than ``max_instances`` fall in the window
    """
    rule = parse_rrule(rrule_string, dtstart, exdates)
    if rule is None:
        return []

    instances = []
    try:
        # Start one duration early so spans already in progress are kept
        for occurrence in rule.xafter(window_start - duration, inc=True):
            if occurrence > window_end:
                break
            if len(instances) >= max_instances:
                raise TooManyOccurrences(
                    f"More than {max_instances} occurrences between {window_start} and {window_end}"
                )
            instances.append(
                RecurrenceInstance(
                    instance_start=occurrence,
                    instance_end=occurrence + duration,
                    recurrence_id=format_recurrence_id(occurrence),
                )
            )
    except (ValueError, OverflowError, TypeError):
        # Invalid ranges or aware/naive mixes inside the rule
        return []

    return instances


def format_recurrence_id(dt: datetime) -> str:
    """
    Format a datetime as a recurrence ID (iCalendar RECURRENCE-ID format).

    Returns:
        String in YYYYMMDDTHHMMSS format
    """
    return dt.strftime("%Y%m%dT%H%M%S")


def describe_recurrence(rrule_string: Optional[str]) -> Optional[str]:
    """
    Short human label for an RRULE.

    Examples:
        FREQ=WEEKLY;BYDAY=MO,WE -> "Every Mon, Wed"
        FREQ=DAILY              -> "Every day"
    """
    if not rrule_string:
        return None

    parts = {}
    for part in _strip_prefix(rrule_string).split(";"):
        if "=" in part:
            key, value = part.split("=", 1)
            parts[key.strip().upper()] = value.strip().upper()

    freq = parts.get("FREQ")
    if freq == "WEEKLY" and parts.get("BYDAY"):
        days = [WEEKDAY_LABELS.get(day[-2:], day) for day in parts["BYDAY"].split(",")]
        return "Every " + ", ".join(days)
    if freq == "DAILY":
        return "Every day"
    if freq == "WEEKLY":
        return "Every week"
    if freq == "MONTHLY":
        return "Every month"
    if freq == "YEARLY":
        return "Every year"
    return "Recurring"


def validate_rrule(rrule_string: str) -> tuple[bool, Optional[str]]:
    """
    Validate an RRULE string.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not rrule_string or not rrule_string.strip():
        return False, "RRULE string is empty"

    if "FREQ=" not in rrule_string.upper():
        return False, "RRULE must contain FREQ component"

    dummy_start = datetime(2020, 1, 1, 12, 0, 0)
    rule = parse_rrule(rrule_string, dummy_start)
    if rule is None:
        return False, "Failed to parse RRULE"

    if rule.after(dummy_start, inc=True) is None:
        return False, "RRULE generates no occurrences"

    return True, None

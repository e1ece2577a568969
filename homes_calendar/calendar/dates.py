"""
Date math and display helpers for the calendar views.

All helpers are pure. Weeks start on Sunday. Functions taking aware
datetimes convert them to ``tz`` (default: UTC) before looking at the
calendar date, so a 23:30 UTC event can land on the next local day.
"""

from datetime import date, datetime, time, timedelta, tzinfo
from typing import Optional

from dateutil import tz as dateutil_tz
from dateutil.relativedelta import relativedelta

HOME_COLORS = {
    "default": "#4CA1AF",  # teal
    "daddy": "#3B82F6",    # blue
    "mommy": "#EC4899",    # pink
    "grandma": "#8B5CF6",  # purple
    "grandpa": "#F59E0B",  # amber
}

# Checked in order; the first category with a matching substring wins
_HOME_COLOR_KEYWORDS = (
    ("daddy", ("dad", "daddy", "father")),
    ("mommy", ("mom", "mommy", "mother")),
    ("grandma", ("grandma", "grandmother", "nana")),
    ("grandpa", ("grandpa", "grandfather", "papa")),
)


def get_home_color(home_name: Optional[str]) -> str:
    """
    Color for a home based on its display name.

    Two homes in the same category (e.g. two "dad" homes) share a color.
    """
    name = (home_name or "").lower()
    for category, keywords in _HOME_COLOR_KEYWORDS:
        if any(keyword in name for keyword in keywords):
            return HOME_COLORS[category]
    return HOME_COLORS["default"]


def resolve_tz(name: Optional[str]) -> tzinfo:
    """IANA name to tzinfo; unknown or empty names fall back to UTC."""
    zone = dateutil_tz.gettz(name) if name else None
    return zone or dateutil_tz.UTC


def to_local(value: datetime, zone: Optional[tzinfo] = None) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(zone or dateutil_tz.UTC)


def month_start(day: date) -> date:
    return day.replace(day=1)


def month_end(day: date) -> date:
    return month_start(day) + relativedelta(months=1, days=-1)


def week_start(day: date) -> date:
    """Sunday on or before ``day``."""
    # isoweekday: Monday=1 .. Sunday=7
    return day - timedelta(days=day.isoweekday() % 7)


def week_end(day: date) -> date:
    """Saturday on or after ``day``."""
    return week_start(day) + timedelta(days=6)


def is_same_day(first: datetime, second: datetime, zone: Optional[tzinfo] = None) -> bool:
    return to_local(first, zone).date() == to_local(second, zone).date()


def day_bounds(day: date, zone: Optional[tzinfo] = None) -> tuple[datetime, datetime]:
    """Start-of-day and end-of-day instants for a calendar date in ``zone``."""
    zone = zone or dateutil_tz.UTC
    start = datetime.combine(day, time.min, tzinfo=zone)
    end = datetime.combine(day, time.max, tzinfo=zone)
    return start, end


def month_range(day: date, zone: Optional[tzinfo] = None) -> tuple[datetime, datetime]:
    """Instants spanning the whole month containing ``day``."""
    start, _ = day_bounds(month_start(day), zone)
    _, end = day_bounds(month_end(day), zone)
    return start, end


def get_days_in_month(day: date) -> list[date]:
    """
    Day grid for a month view.

    Includes leading days from the previous month and trailing days from
    the next so the grid starts on a Sunday and ends on a Saturday. The
    length is always a multiple of 7.
    """
    first = month_start(day)
    last = month_end(day)

    current = week_start(first)
    stop = week_end(last)
    days = []
    while current <= stop:
        days.append(current)
        current += timedelta(days=1)
    return days


def _format_day(value: datetime) -> str:
    return f"{value:%b} {value.day}"


def _format_time(value: datetime) -> str:
    hour = value.hour % 12 or 12
    meridiem = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {meridiem}"


def format_date_range(
    start: datetime,
    end: datetime,
    all_day: bool,
    zone: Optional[tzinfo] = None,
) -> str:
    """
    Human-readable label for an event span.

    Examples:
        Jan 10                        single all-day
        Jan 10, 9:00 AM - 10:30 AM    single timed
        Jan 10 - Jan 12               multi-day, never with times
    """
    local_start = to_local(start, zone)
    local_end = to_local(end, zone)
    start_label = _format_day(local_start)

    if local_start.date() == local_end.date():
        if all_day:
            return start_label
        return f"{start_label}, {_format_time(local_start)} - {_format_time(local_end)}"

    return f"{start_label} - {_format_day(local_end)}"


def normalize_all_day(
    start: datetime,
    end: datetime,
    zone: Optional[tzinfo] = None,
) -> tuple[datetime, datetime]:
    """
    Snap an all-day span to start-of-day and end-of-day in ``zone``.

    Clock times carry no meaning for all-day events; this keeps stored
    values comparable across authors in different timezones.
    """
    day_start, _ = day_bounds(to_local(start, zone).date(), zone)
    _, day_end = day_bounds(to_local(end, zone).date(), zone)
    return day_start, day_end


def overlaps(
    start: datetime,
    end: datetime,
    range_start: datetime,
    range_end: datetime,
) -> bool:
    """Inclusive overlap test used by listings and day lookups."""
    return end >= range_start and start <= range_end

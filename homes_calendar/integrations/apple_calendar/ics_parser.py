"""
ICS parser for subscribed calendars.

Reads VEVENT components with icalendar and expands recurring series into
discrete occurrences inside the sync window with python-dateutil.

Handles:
- TZID, UTC and floating times (floating uses X-WR-TIMEZONE, then the
  family default)
- all-day VALUE=DATE events
- DTEND, DURATION, or neither (all-day +1 day, timed +1 hour)
- EXDATE and RECURRENCE-ID overrides
- STATUS:CANCELLED
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional, Union

from icalendar import Calendar

from homes_calendar.calendar.dates import resolve_tz
from homes_calendar.integrations.apple_calendar.exceptions import (
    INVALID_FORMAT,
    TOO_MANY_EVENTS,
    IcsSyncError,
)
from homes_calendar.integrations.base import ExternalEvent, inclusive_all_day_end
from homes_calendar.services.recurrence import TooManyOccurrences, expand_recurrence

logger = logging.getLogger(__name__)

_UNTIL = re.compile(r"UNTIL=([0-9T]+)(Z?)", re.IGNORECASE)


@dataclass
class IcsParseResult:
    """Parsed feed: events inside the window plus calendar metadata."""

    events: list[ExternalEvent] = field(default_factory=list)
    calendar_name: Optional[str] = None
    timezone: Optional[str] = None
    skipped: int = 0


def occurrence_id(uid: str, start: datetime) -> str:
    """External id of one occurrence of a recurring series."""
    return f"{uid}_{start.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')}"


def _text(component, name: str) -> Optional[str]:
    value = component.get(name)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _is_all_day(value: Union[date, datetime]) -> bool:
    return isinstance(value, date) and not isinstance(value, datetime)


def _localize(value: Union[date, datetime], floating: tzinfo) -> datetime:
    """Aware datetime in the value's own zone (all-day dates become naive midnight)."""
    if _is_all_day(value):
        return datetime(value.year, value.month, value.day)
    if value.tzinfo is None:
        return value.replace(tzinfo=floating)
    return value


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        # All-day occurrences are anchored at midnight UTC
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _align_until(rule: str, aware: bool) -> str:
    """
    Make UNTIL agree with DTSTART's awareness.

    dateutil refuses a UTC UNTIL on a naive DTSTART and vice versa.
    """
    match = _UNTIL.search(rule)
    if not match:
        return rule
    value, utc_marker = match.group(1), match.group(2)
    if aware and not utc_marker:
        if len(value) == 8:
            value += "T235959"
        return rule[:match.start()] + f"UNTIL={value}Z" + rule[match.end():]
    if not aware and utc_marker:
        return rule[:match.start()] + f"UNTIL={value}" + rule[match.end():]
    return rule


def _exdates(component, floating: tzinfo) -> list[datetime]:
    raw = component.get("exdate")
    if raw is None:
        return []
    groups = raw if isinstance(raw, list) else [raw]
    values = []
    for group in groups:
        for item in getattr(group, "dts", []):
            values.append(_localize(item.dt, floating))
    return values


@dataclass
class _Vevent:
    uid: str
    title: str
    start: datetime
    end: datetime
    all_day: bool
    description: Optional[str]
    location: Optional[str]
    timezone: Optional[str]
    rrule: Optional[str]
    exdates: list[datetime]
    last_modified: Optional[datetime]
    cancelled: bool
    recurrence_id: Optional[datetime]

    def to_event(self, external_id: str, start: datetime, end: datetime) -> ExternalEvent:
        return ExternalEvent(
            external_id=external_id,
            title=self.title,
            start_at=_to_utc(start),
            end_at=inclusive_all_day_end(_to_utc(end)) if self.all_day else _to_utc(end),
            all_day=self.all_day,
            description=self.description,
            location=self.location,
            timezone=self.timezone,
            recurrence_rule=self.rrule,
            updated_at=self.last_modified,
            cancelled=self.cancelled,
            series_id=self.uid if (self.rrule or self.recurrence_id) else None,
        )


def _read_vevent(component, floating: tzinfo, calendar_tz: Optional[str]) -> Optional[_Vevent]:
    uid = _text(component, "uid")
    dtstart_prop = component.get("dtstart")
    if not uid or dtstart_prop is None:
        return None

    raw_start = dtstart_prop.dt
    all_day = _is_all_day(raw_start)
    start = _localize(raw_start, floating)

    if component.get("dtend") is not None:
        end = _localize(component.get("dtend").dt, floating)
    elif component.get("duration") is not None:
        end = start + component.get("duration").dt
    else:
        end = start

    if end <= start:
        end = start + (timedelta(days=1) if all_day else timedelta(hours=1))

    rrule = None
    raw_rule = component.get("rrule")
    if raw_rule is not None:
        if isinstance(raw_rule, list):
            raw_rule = raw_rule[0]
        rrule = raw_rule.to_ical().decode("utf-8")

    recurrence_id = None
    if component.get("recurrence-id") is not None:
        recurrence_id = _localize(component.get("recurrence-id").dt, floating)

    last_modified = None
    if component.get("last-modified") is not None:
        last_modified = component.get("last-modified").dt

    tzid = dtstart_prop.params.get("TZID") if hasattr(dtstart_prop, "params") else None

    return _Vevent(
        uid=uid,
        title=_text(component, "summary") or "Untitled Event",
        start=start,
        end=end,
        all_day=all_day,
        description=_text(component, "description"),
        location=_text(component, "location"),
        timezone=tzid or calendar_tz,
        rrule=rrule,
        exdates=_exdates(component, floating),
        last_modified=last_modified,
        cancelled=(_text(component, "status") or "").upper() == "CANCELLED",
        recurrence_id=recurrence_id,
    )


def _in_window(start: datetime, end: datetime, window_start: datetime, window_end: datetime) -> bool:
    return _to_utc(end) >= window_start and _to_utc(start) <= window_end


def _expand_series(
    master: _Vevent,
    overrides: dict[str, _Vevent],
    window_start: datetime,
    window_end: datetime,
    max_occurrences: int,
) -> list[ExternalEvent]:
    aware = master.start.tzinfo is not None
    if aware:
        local_window = (window_start, window_end)
    else:
        local_window = (window_start.replace(tzinfo=None), window_end.replace(tzinfo=None))

    instances = expand_recurrence(
        _align_until(master.rrule, aware),
        master.start,
        master.end - master.start,
        local_window[0],
        local_window[1],
        max_instances=max_occurrences,
        exdates=master.exdates,
    )

    events = []
    for instance in instances:
        key = occurrence_id(master.uid, _to_utc(instance.instance_start))
        override = overrides.pop(key, None)
        if override is not None:
            if not override.cancelled and _in_window(override.start, override.end, window_start, window_end):
                events.append(override.to_event(key, override.start, override.end))
            continue
        events.append(master.to_event(key, instance.instance_start, instance.instance_end))
    return events


def parse_ics(
    content: Union[str, bytes],
    window_start: datetime,
    window_end: datetime,
    default_timezone: Optional[str] = None,
    max_occurrences: int = 2000,
) -> IcsParseResult:
    """
    Parse an ICS feed into events overlapping ``[window_start, window_end]``.

    Args:
        content: Raw feed body
        window_start: Aware lower bound of the sync window
        window_end: Aware upper bound of the sync window
        default_timezone: Zone for floating times when the feed names none
        max_occurrences: Cap on produced events, recurring or not

    Returns:
        IcsParseResult with one ExternalEvent per occurrence

    Raises:
        IcsSyncError: INVALID_FORMAT if the body is not an iCalendar
            document, TOO_MANY_EVENTS if the cap is exceeded
    """
    try:
        calendar = Calendar.from_ical(content)
    except (ValueError, IndexError) as e:
        raise IcsSyncError(INVALID_FORMAT, original_error=e)
    if calendar.name != "VCALENDAR":
        raise IcsSyncError(INVALID_FORMAT)

    calendar_name = _text(calendar, "x-wr-calname")
    calendar_tz = _text(calendar, "x-wr-timezone")
    floating = resolve_tz(calendar_tz or default_timezone)

    result = IcsParseResult(calendar_name=calendar_name, timezone=calendar_tz)
    masters: dict[str, _Vevent] = {}
    overrides: dict[str, dict[str, _Vevent]] = {}
    singles: list[_Vevent] = []

    for component in calendar.walk("VEVENT"):
        try:
            vevent = _read_vevent(component, floating, calendar_tz)
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            logger.warning(f"Skipping malformed VEVENT: {e}")
            result.skipped += 1
            continue
        if vevent is None:
            result.skipped += 1
            continue

        if vevent.recurrence_id is not None:
            key = occurrence_id(vevent.uid, _to_utc(vevent.recurrence_id))
            overrides.setdefault(vevent.uid, {})[key] = vevent
        elif vevent.rrule:
            masters[vevent.uid] = vevent
        else:
            singles.append(vevent)

    events: list[ExternalEvent] = []
    for vevent in singles:
        if _in_window(vevent.start, vevent.end, window_start, window_end):
            events.append(vevent.to_event(vevent.uid, vevent.start, vevent.end))

    try:
        for uid, master in masters.items():
            remaining = max_occurrences - len(events)
            events.extend(
                _expand_series(master, overrides.get(uid, {}), window_start, window_end, max(remaining, 0))
            )
    except TooManyOccurrences as e:
        raise IcsSyncError(TOO_MANY_EVENTS, original_error=e)

    # Overrides moved into the window, or whose series is not in the feed
    for uid, leftovers in overrides.items():
        for key, override in leftovers.items():
            if not override.cancelled and _in_window(override.start, override.end, window_start, window_end):
                events.append(override.to_event(key, override.start, override.end))

    if len(events) > max_occurrences:
        raise IcsSyncError(TOO_MANY_EVENTS)

    result.events = events
    logger.debug(f"Parsed {len(events)} events from ICS feed ({result.skipped} skipped)")
    return result

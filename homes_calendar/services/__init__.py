"""
Service layer helpers.

- Recurrence expansion (RRULE handling) for imported calendars
"""

from homes_calendar.services.recurrence import (
    RecurrenceInstance,
    TooManyOccurrences,
    parse_rrule,
    expand_recurrence,
    format_recurrence_id,
    describe_recurrence,
    validate_rrule,
)

__all__ = [
    "RecurrenceInstance",
    "TooManyOccurrences",
    "parse_rrule",
    "expand_recurrence",
    "format_recurrence_id",
    "describe_recurrence",
    "validate_rrule",
]

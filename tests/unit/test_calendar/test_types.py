"""
Unit tests for calendar types and row mapping.
"""

import uuid
from datetime import datetime, timezone

import pytest

from homes_calendar.calendar.types import (
    CalendarEvent,
    HomeDay,
    PlainEvent,
    Result,
    Travel,
    UpdateEventPayload,
    event_to_row,
    row_to_event,
)
from homes_calendar.exceptions import ForbiddenError


def minimal_row(**overrides) -> dict:
    row = {
        "id": str(uuid.uuid4()),
        "child_id": str(uuid.uuid4()),
        "start_at": "2026-10-20T00:00:00+00:00",
        "end_at": "2026-10-20T23:59:59+00:00",
    }
    row.update(overrides)
    return row


class TestRowToEvent:
    """Tests for mapping storage rows to events."""

    def test_minimal_row_uses_defaults(self):
        """Test only the required columns are needed."""
        event = row_to_event(minimal_row())

        assert event.title == ""
        assert event.status == "confirmed"
        assert event.source == "manual"
        assert event.event_type == "event"
        assert isinstance(event.details, PlainEvent)
        assert event.is_read_only is False
        assert event.all_day is False

    def test_iso_strings_parsed(self):
        """Test string timestamps become aware datetimes."""
        event = row_to_event(minimal_row())
        assert event.start_at == datetime(2026, 10, 20, tzinfo=timezone.utc)

    def test_home_day_row(self):
        """Test home_id lands on the HomeDay variant."""
        home_id = uuid.uuid4()
        event = row_to_event(minimal_row(event_type="home_day", home_id=str(home_id), status="proposed"))

        assert isinstance(event.details, HomeDay)
        assert event.home_id == home_id
        assert event.is_pending is True

    def test_travel_row(self):
        """Test travel columns land on the Travel variant."""
        event = row_to_event(minimal_row(
            event_type="travel",
            from_location="School",
            to_home_id=uuid.uuid4(),
            travel_with="Grandpa",
        ))

        assert isinstance(event.details, Travel)
        assert event.details.from_location == "School"
        assert event.details.travel_with == "Grandpa"
        assert event.home_id is None

    def test_missing_required_column_raises(self):
        """Test a row without child_id is rejected."""
        row = minimal_row()
        del row["child_id"]
        with pytest.raises(KeyError):
            row_to_event(row)

    def test_blank_uuid_treated_as_missing(self):
        """Test empty strings map to None."""
        event = row_to_event(minimal_row(proposed_by="", candidate_home_id=None))
        assert event.proposed_by is None
        assert event.candidate_home_id is None


class TestEventToRow:
    """Tests for flattening events into columns."""

    def test_travel_columns_filled(self):
        """Test only travel columns are set for travel."""
        event = CalendarEvent(
            id=uuid.uuid4(),
            child_id=uuid.uuid4(),
            title="Travel",
            start_at=datetime(2026, 10, 20, tzinfo=timezone.utc),
            end_at=datetime(2026, 10, 20, 1, tzinfo=timezone.utc),
            details=Travel(from_location="A", to_location="B"),
        )

        row = event_to_row(event)

        assert row["event_type"] == "travel"
        assert row["from_location"] == "A"
        assert row["home_id"] is None

    def test_row_survives_mapping_back(self):
        """Test a home day maps back to an equal event."""
        event = CalendarEvent(
            id=uuid.uuid4(),
            child_id=uuid.uuid4(),
            title="Dad's",
            start_at=datetime(2026, 10, 20, tzinfo=timezone.utc),
            end_at=datetime(2026, 10, 21, tzinfo=timezone.utc),
            details=HomeDay(home_id=uuid.uuid4()),
            status="proposed",
            proposed_by=uuid.uuid4(),
        )

        assert row_to_event(event_to_row(event)) == event


class TestResult:
    """Tests for the Result wrapper."""

    def test_failure_carries_code(self):
        """Test failures keep the error code and message."""
        result = Result.failure(ForbiddenError("nope"))

        assert result.ok is False
        assert result.error == "nope"
        assert result.error_code == "forbidden"
        assert result.value is None

    def test_success(self):
        result = Result.success(3)
        assert result.ok is True
        assert result.value == 3


class TestUpdatePayload:
    """Tests for partial updates."""

    def test_changes_skip_unset_fields(self):
        """Test None fields are not part of the change set."""
        patch = UpdateEventPayload(title="New", all_day=False)
        assert patch.changes() == {"title": "New", "all_day": False}

"""Tests for API request/response models."""

import uuid
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from homes_calendar.api.models import (
    CreateEventRequest,
    CreateHomeDayRequest,
    SyncResultResponse,
    UpdateEventRequest,
    as_utc,
)
from homes_calendar.integrations.base import SyncResult


class TestTimestamps:
    """Tests for timestamp normalisation."""

    def test_naive_taken_as_utc(self):
        assert as_utc(datetime(2026, 10, 16, 9, 0)) == datetime(2026, 10, 16, 9, 0, tzinfo=timezone.utc)

    def test_aware_untouched(self):
        value = datetime(2026, 10, 16, 9, 0, tzinfo=timezone.utc)
        assert as_utc(value) is value
        assert as_utc(None) is None

    def test_request_fields_made_aware(self):
        request = CreateHomeDayRequest(
            home_id=uuid.uuid4(),
            start_at="2026-10-24T00:00:00",
            end_at="2026-10-26T00:00:00",
        )

        assert request.start_at.tzinfo is not None
        assert request.all_day is True


class TestCreateEventRequest:
    """Tests for CreateEventRequest validation."""

    def test_title_stripped(self):
        request = CreateEventRequest(
            title="  Dentist ", start_at="2026-10-20T15:00:00Z", end_at="2026-10-20T16:00:00Z"
        )
        assert request.title == "Dentist"

    def test_blank_title(self):
        with pytest.raises(ValidationError):
            CreateEventRequest(title="   ", start_at="2026-10-20T15:00:00Z", end_at="2026-10-20T16:00:00Z")


class TestUpdateEventRequest:
    def test_only_sent_fields_dumped(self):
        request = UpdateEventRequest(title="Swim meet")
        assert request.model_dump(exclude_unset=True) == {"title": "Swim meet"}


class TestSyncResultResponse:
    def test_from_result(self):
        source_id = uuid.uuid4()
        response = SyncResultResponse.from_result(
            SyncResult(source_id=source_id, created=3, warnings=["Skipped 1 event"])
        )

        assert response.source_id == source_id
        assert response.created == 3
        assert response.warnings == ["Skipped 1 event"]

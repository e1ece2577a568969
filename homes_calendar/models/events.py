"""
Calendar event storage.

One denormalised table holds every event variant (home_day, travel, event);
``homes_calendar.calendar.types`` maps rows to the tagged application type.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, Boolean, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from homes_calendar.models.base import BaseModel

EVENT_TYPES = ("home_day", "travel", "event")
EVENT_STATUSES = ("confirmed", "proposed", "rejected")
EVENT_SOURCES = ("manual", "google", "apple", "outlook", "ics")


class CalendarEventRecord(BaseModel):
    """
    A row in the shared calendar.

    Key features:
    - Status workflow (proposed -> confirmed/rejected), home_day only
    - Provenance columns identifying the upstream record of imported rows
    - Soft deletion (rows stay for audit and are excluded from listings)
    """

    __tablename__ = "calendar_events"

    child_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("children.id", ondelete="CASCADE"),
        nullable=False,
        doc="Owning child"
    )

    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timing
    start_at: Mapped[datetime] = mapped_column(nullable=False, doc="Start (UTC)")
    end_at: Mapped[datetime] = mapped_column(nullable=False, doc="End (UTC)")
    all_day: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    timezone: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        doc="IANA timezone the event was authored in"
    )

    event_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="event",
        doc="'home_day', 'travel' or 'event'"
    )

    # home_day
    home_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("homes.id", ondelete="SET NULL"),
        nullable=True,
    )

    # travel
    from_home_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("homes.id", ondelete="SET NULL"),
        nullable=True,
    )
    to_home_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("homes.id", ondelete="SET NULL"),
        nullable=True,
    )
    from_location: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    to_location: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    travel_with: Mapped[Optional[str]] = mapped_column(
        String(200),
        nullable=True,
        doc="Who accompanies the child"
    )

    # Confirmation workflow
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="confirmed",
        doc="'confirmed', 'proposed' or 'rejected'"
    )
    proposed_by: Mapped[Optional[uuid.UUID]] = mapped_column(nullable=True)
    confirmed_by: Mapped[Optional[uuid.UUID]] = mapped_column(nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    rejected_by: Mapped[Optional[uuid.UUID]] = mapped_column(nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    proposal_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Provenance
    source: Mapped[str] = mapped_column(String(20), nullable=False, default="manual")
    external_provider: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    external_calendar_id: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    external_event_id: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    external_html_link: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    external_source_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("external_calendar_sources.id", ondelete="SET NULL"),
        nullable=True,
    )
    external_updated_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    recurrence_rule: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Upstream RRULE, kept for display only"
    )
    is_read_only: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Home-stay candidate flags (imported rows only, never auto-applied)
    is_home_stay_candidate: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    candidate_reason: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    candidate_home_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("homes.id", ondelete="SET NULL"),
        nullable=True,
    )
    candidate_dismissed: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        doc="Ignored by a guardian or handled by a rule; later syncs leave it unflagged"
    )

    # Audit and soft delete
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    deleted_by: Mapped[Optional[uuid.UUID]] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint("end_at >= start_at", name="ck_calendar_events_range"),
        Index("idx_calendar_events_child_range", "child_id", "start_at", "end_at"),
        Index("idx_calendar_events_status", "status"),
        Index("idx_calendar_events_source", "external_source_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<CalendarEventRecord(title='{self.title}', type={self.event_type}, "
            f"status={self.status})>"
        )

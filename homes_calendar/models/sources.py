"""
External calendar source models.

Entities:
- ExternalCalendarSource: One subscribed upstream calendar feeding one child
- CalendarEventMapping: Upstream event id -> local event row, per source
- HomeStayRuleRecord: Turns matching imported candidates into proposals
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, Boolean, Integer, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from homes_calendar.models.base import BaseModel


class ExternalCalendarSource(BaseModel):
    """
    An upstream calendar imported read-only into a child's calendar.

    Google sources reference a connection and a Google calendar id;
    ICS sources carry the encrypted subscription URL and HTTP cache
    validators. A source with ``revoked_at`` set is disconnected.
    """

    __tablename__ = "external_calendar_sources"

    provider: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        doc="'google' or 'ics'"
    )

    child_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("children.id", ondelete="CASCADE"),
        nullable=False,
    )

    owner_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        doc="Caregiver who connected the calendar"
    )

    display_name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Google
    connection_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("google_calendar_connections.id", ondelete="CASCADE"),
        nullable=True,
    )
    calendar_id: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    sync_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # ICS
    encrypted_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    url_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    masked_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    etag: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    last_modified: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    refresh_interval_minutes: Mapped[int] = mapped_column(Integer, default=30, nullable=False)

    # Sync state
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    revoked_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    next_run_at: Mapped[Optional[datetime]] = mapped_column(
        nullable=True,
        doc="Earliest time the scheduled batch picks the source up again; NULL means due"
    )
    last_sync_status: Mapped[str] = mapped_column(
        String(20),
        default="never",
        nullable=False,
        doc="'never', 'ok' or 'error'"
    )
    last_sync_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_sync_error_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    events_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index("ix_sources_child_url_hash", "child_id", "url_hash", unique=True),
        Index("ix_sources_due", "is_active", "next_run_at"),
    )

    def __repr__(self) -> str:
        return f"<ExternalCalendarSource(provider={self.provider}, name='{self.display_name}')>"


class CalendarEventMapping(BaseModel):
    """
    Links an upstream event to at most one local event row.

    The (source_id, external_event_id) key makes re-running a sync
    idempotent.
    """

    __tablename__ = "calendar_event_mappings"

    source_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("external_calendar_sources.id", ondelete="CASCADE"),
        nullable=False,
    )

    external_event_id: Mapped[str] = mapped_column(String(1024), nullable=False)

    event_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("calendar_events.id", ondelete="SET NULL"),
        nullable=True,
    )

    content_hash: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        doc="Hash of the mapped upstream fields; unchanged hash skips the update"
    )

    __table_args__ = (
        UniqueConstraint("source_id", "external_event_id", name="uq_mapping_source_event"),
    )


class HomeStayRuleRecord(BaseModel):
    """
    A guardian's standing answer for a family of imported candidates.

    Matching candidates become proposed home days at ``home_id``. A rule
    with ``source_id`` unset matches candidates from every source of the
    child. Deleting a rule deactivates it; proposals it made are kept.
    """

    __tablename__ = "home_stay_rules"

    child_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("children.id", ondelete="CASCADE"),
        nullable=False,
    )

    source_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("external_calendar_sources.id", ondelete="CASCADE"),
        nullable=True,
    )

    match_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        doc="'event_id', 'title_exact' or 'title_contains'"
    )
    match_value: Mapped[str] = mapped_column(String(1024), nullable=False)

    home_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("homes.id", ondelete="CASCADE"),
        nullable=False,
    )

    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index("ix_home_stay_rules_child", "child_id", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<HomeStayRuleRecord(match_type={self.match_type}, value='{self.match_value}')>"

"""
Event storage boundary.

``EventStore`` is what the workflow engine needs from persistence;
``SQLAlchemyEventStore`` implements it over the ``calendar_events`` table.
Status transitions are conditional updates checked by affected-row count,
so two guardians racing on one proposal cannot both win.
"""

import uuid
from abc import abstractmethod
from datetime import datetime
from typing import Any, Iterable, Optional, Protocol, Sequence

from sqlalchemy import func, select, update, and_
from sqlalchemy.orm import Session

from homes_calendar.calendar.types import CalendarEvent, HomeStayRule, event_to_row, row_to_event
from homes_calendar.models.events import CalendarEventRecord
from homes_calendar.models.sources import HomeStayRuleRecord


class EventStore(Protocol):
    """Persistence operations used by ``CalendarActions``."""

    @abstractmethod
    def get(self, event_id: uuid.UUID, include_deleted: bool = False) -> Optional[CalendarEvent]:
        ...

    @abstractmethod
    def insert(self, event: CalendarEvent) -> CalendarEvent:
        ...

    @abstractmethod
    def update_fields(self, event_id: uuid.UUID, changes: dict[str, Any]) -> bool:
        """Patch a live, locally-authored event. Returns False if no row matched."""
        ...

    @abstractmethod
    def transition_status(
        self,
        event_id: uuid.UUID,
        to_status: str,
        actor_id: uuid.UUID,
        at: datetime,
        reason: Optional[str] = None,
    ) -> bool:
        """
        Move a proposed home day to ``confirmed`` or ``rejected``.

        Returns:
            True if this call applied the transition, False if the row was
            no longer proposed (another caller got there first)
        """
        ...

    @abstractmethod
    def soft_delete(self, event_id: uuid.UUID, actor_id: uuid.UUID, at: datetime) -> bool:
        ...

    @abstractmethod
    def list_range(
        self,
        child_id: uuid.UUID,
        range_start: datetime,
        range_end: datetime,
        event_types: Optional[Sequence[str]] = None,
        statuses: Optional[Sequence[str]] = None,
        exclude_statuses: Optional[Sequence[str]] = None,
    ) -> list[CalendarEvent]:
        ...

    @abstractmethod
    def list_pending(self, child_ids: Iterable[uuid.UUID]) -> list[CalendarEvent]:
        """Proposed home days for the given children, regardless of date."""
        ...

    @abstractmethod
    def find_confirmed_home_days(
        self,
        child_id: uuid.UUID,
        start: datetime,
        end: datetime,
        exclude_event_id: Optional[uuid.UUID] = None,
    ) -> list[CalendarEvent]:
        """Confirmed home days strictly overlapping ``(start, end)``."""
        ...

    @abstractmethod
    def find_candidates(
        self,
        child_id: uuid.UUID,
        match_type: str,
        match_value: str,
        source_id: Optional[uuid.UUID] = None,
    ) -> list[CalendarEvent]:
        """Live imported rows still flagged as home-stay candidates that match."""
        ...

    @abstractmethod
    def dismiss_candidates(self, event_ids: Iterable[uuid.UUID]) -> int:
        """Unflag imported candidates for good. Returns the number of rows changed."""
        ...

    @abstractmethod
    def insert_rule(self, rule: HomeStayRule) -> HomeStayRule:
        ...

    @abstractmethod
    def get_rule(self, rule_id: uuid.UUID) -> Optional[HomeStayRule]:
        """An active rule, or None."""
        ...

    @abstractmethod
    def list_rules(self, child_id: uuid.UUID) -> list[HomeStayRule]:
        """Active rules for a child, newest first."""
        ...

    @abstractmethod
    def deactivate_rule(self, rule_id: uuid.UUID) -> bool:
        ...


def _record_to_event(record: CalendarEventRecord) -> CalendarEvent:
    return row_to_event(record.to_dict())


def _record_to_rule(record: HomeStayRuleRecord) -> HomeStayRule:
    return HomeStayRule(
        id=record.id,
        child_id=record.child_id,
        home_id=record.home_id,
        match_type=record.match_type,
        match_value=record.match_value,
        source_id=record.source_id,
        created_by=record.created_by,
        created_at=record.created_at,
    )


class SQLAlchemyEventStore:
    """
    ``EventStore`` backed by a SQLAlchemy session.

    Writes are flushed, not committed; the caller's session scope
    (``get_db`` / ``get_db_context``) owns the transaction.
    """

    def __init__(self, session: Session):
        self.session = session

    def _select_one(self, event_id: uuid.UUID) -> Optional[CalendarEventRecord]:
        stmt = (
            select(CalendarEventRecord)
            .where(CalendarEventRecord.id == event_id)
            .execution_options(populate_existing=True)
        )
        return self.session.scalars(stmt).first()

    def get(self, event_id: uuid.UUID, include_deleted: bool = False) -> Optional[CalendarEvent]:
        record = self._select_one(event_id)
        if record is None or (record.is_deleted and not include_deleted):
            return None
        return _record_to_event(record)

    def insert(self, event: CalendarEvent) -> CalendarEvent:
        record = CalendarEventRecord(**event_to_row(event))
        self.session.add(record)
        self.session.flush()
        return _record_to_event(record)

    def update_fields(self, event_id: uuid.UUID, changes: dict[str, Any]) -> bool:
        if not changes:
            return self.get(event_id) is not None
        stmt = (
            update(CalendarEventRecord)
            .where(
                and_(
                    CalendarEventRecord.id == event_id,
                    CalendarEventRecord.is_deleted.is_(False),
                    CalendarEventRecord.is_read_only.is_(False),
                )
            )
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def transition_status(
        self,
        event_id: uuid.UUID,
        to_status: str,
        actor_id: uuid.UUID,
        at: datetime,
        reason: Optional[str] = None,
    ) -> bool:
        if to_status == "confirmed":
            values: dict[str, Any] = {
                "status": "confirmed",
                "confirmed_by": actor_id,
                "confirmed_at": at,
            }
        elif to_status == "rejected":
            values = {"status": "rejected", "rejected_by": actor_id, "rejected_at": at}
            if reason:
                values["proposal_reason"] = reason
        else:
            raise ValueError(f"Unsupported status transition: {to_status}")

        stmt = (
            update(CalendarEventRecord)
            .where(
                and_(
                    CalendarEventRecord.id == event_id,
                    CalendarEventRecord.status == "proposed",
                    CalendarEventRecord.event_type == "home_day",
                    CalendarEventRecord.is_deleted.is_(False),
                    CalendarEventRecord.is_read_only.is_(False),
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def soft_delete(self, event_id: uuid.UUID, actor_id: uuid.UUID, at: datetime) -> bool:
        stmt = (
            update(CalendarEventRecord)
            .where(
                and_(
                    CalendarEventRecord.id == event_id,
                    CalendarEventRecord.is_deleted.is_(False),
                    CalendarEventRecord.is_read_only.is_(False),
                )
            )
            .values(is_deleted=True, deleted_at=at, deleted_by=actor_id)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def list_range(
        self,
        child_id: uuid.UUID,
        range_start: datetime,
        range_end: datetime,
        event_types: Optional[Sequence[str]] = None,
        statuses: Optional[Sequence[str]] = None,
        exclude_statuses: Optional[Sequence[str]] = None,
    ) -> list[CalendarEvent]:
        conditions = [
            CalendarEventRecord.child_id == child_id,
            CalendarEventRecord.is_deleted.is_(False),
            # Events that overlap with the range
            CalendarEventRecord.end_at >= range_start,
            CalendarEventRecord.start_at <= range_end,
        ]
        if event_types:
            conditions.append(CalendarEventRecord.event_type.in_(list(event_types)))
        if statuses:
            conditions.append(CalendarEventRecord.status.in_(list(statuses)))
        if exclude_statuses:
            conditions.append(CalendarEventRecord.status.not_in(list(exclude_statuses)))

        stmt = (
            select(CalendarEventRecord)
            .where(and_(*conditions))
            .order_by(CalendarEventRecord.start_at)
            .execution_options(populate_existing=True)
        )
        return [_record_to_event(record) for record in self.session.scalars(stmt)]

    def list_pending(self, child_ids: Iterable[uuid.UUID]) -> list[CalendarEvent]:
        ids = list(child_ids)
        if not ids:
            return []
        stmt = (
            select(CalendarEventRecord)
            .where(
                and_(
                    CalendarEventRecord.child_id.in_(ids),
                    CalendarEventRecord.event_type == "home_day",
                    CalendarEventRecord.status == "proposed",
                    CalendarEventRecord.is_deleted.is_(False),
                )
            )
            .order_by(CalendarEventRecord.start_at)
            .execution_options(populate_existing=True)
        )
        return [_record_to_event(record) for record in self.session.scalars(stmt)]

    def find_confirmed_home_days(
        self,
        child_id: uuid.UUID,
        start: datetime,
        end: datetime,
        exclude_event_id: Optional[uuid.UUID] = None,
    ) -> list[CalendarEvent]:
        conditions = [
            CalendarEventRecord.child_id == child_id,
            CalendarEventRecord.event_type == "home_day",
            CalendarEventRecord.status == "confirmed",
            CalendarEventRecord.is_deleted.is_(False),
            CalendarEventRecord.start_at < end,
            CalendarEventRecord.end_at > start,
        ]
        if exclude_event_id is not None:
            conditions.append(CalendarEventRecord.id != exclude_event_id)
        stmt = select(CalendarEventRecord).where(and_(*conditions))
        return [_record_to_event(record) for record in self.session.scalars(stmt)]

    def find_candidates(
        self,
        child_id: uuid.UUID,
        match_type: str,
        match_value: str,
        source_id: Optional[uuid.UUID] = None,
    ) -> list[CalendarEvent]:
        value = match_value.strip()
        conditions = [
            CalendarEventRecord.child_id == child_id,
            CalendarEventRecord.is_home_stay_candidate.is_(True),
            CalendarEventRecord.is_read_only.is_(True),
            CalendarEventRecord.is_deleted.is_(False),
        ]
        if source_id is not None:
            conditions.append(CalendarEventRecord.external_source_id == source_id)
        if match_type == "event_id":
            conditions.append(CalendarEventRecord.external_event_id == value)
        elif match_type == "title_exact":
            conditions.append(func.lower(CalendarEventRecord.title) == value.lower())
        else:
            conditions.append(func.lower(CalendarEventRecord.title).contains(value.lower(), autoescape=True))

        stmt = (
            select(CalendarEventRecord)
            .where(and_(*conditions))
            .order_by(CalendarEventRecord.start_at)
            .execution_options(populate_existing=True)
        )
        return [_record_to_event(record) for record in self.session.scalars(stmt)]

    def dismiss_candidates(self, event_ids: Iterable[uuid.UUID]) -> int:
        ids = list(event_ids)
        if not ids:
            return 0
        stmt = (
            update(CalendarEventRecord)
            .where(
                and_(
                    CalendarEventRecord.id.in_(ids),
                    CalendarEventRecord.is_read_only.is_(True),
                )
            )
            .values(is_home_stay_candidate=False, candidate_dismissed=True)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount

    def insert_rule(self, rule: HomeStayRule) -> HomeStayRule:
        record = HomeStayRuleRecord(
            id=rule.id,
            child_id=rule.child_id,
            home_id=rule.home_id,
            match_type=rule.match_type,
            match_value=rule.match_value,
            source_id=rule.source_id,
            created_by=rule.created_by,
        )
        self.session.add(record)
        self.session.flush()
        return _record_to_rule(record)

    def get_rule(self, rule_id: uuid.UUID) -> Optional[HomeStayRule]:
        record = self.session.get(HomeStayRuleRecord, rule_id, populate_existing=True)
        if record is None or not record.is_active:
            return None
        return _record_to_rule(record)

    def list_rules(self, child_id: uuid.UUID) -> list[HomeStayRule]:
        stmt = (
            select(HomeStayRuleRecord)
            .where(
                HomeStayRuleRecord.child_id == child_id,
                HomeStayRuleRecord.is_active.is_(True),
            )
            .order_by(HomeStayRuleRecord.created_at.desc())
        )
        return [_record_to_rule(record) for record in self.session.scalars(stmt)]

    def deactivate_rule(self, rule_id: uuid.UUID) -> bool:
        stmt = (
            update(HomeStayRuleRecord)
            .where(
                HomeStayRuleRecord.id == rule_id,
                HomeStayRuleRecord.is_active.is_(True),
            )
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

"""
Home-day confirmation workflow.

``CalendarActions`` is the only code path that mutates calendar events.
Every public method returns a ``Result``; domain failures never raise
past this module. Infrastructure errors (database unreachable) do.

State machine for home days:

    proposed --confirm--> confirmed
    proposed --reject---> rejected

``confirmed`` and ``rejected`` are terminal. The confirming or rejecting
guardian must differ from the proposer. A proposal made by a child's only
guardian is confirmed on creation.
"""

import dataclasses
import functools
import logging
import uuid
from datetime import datetime
from typing import Callable, Iterable, Literal, Optional, Sequence

from homes_calendar.calendar.dates import (
    day_bounds,
    get_home_color,
    normalize_all_day,
    resolve_tz,
    to_local,
)
from homes_calendar.calendar.roster import Roster
from homes_calendar.calendar.store import EventStore
from homes_calendar.calendar.types import (
    CalendarEvent,
    CalendarEventDisplay,
    CreateEventPayload,
    CreateHomeDayPayload,
    CreateHomeStayRulePayload,
    CreateTravelPayload,
    EligibleConfirmer,
    HomeDay,
    HomeStayRule,
    ListEventsFilter,
    MATCH_TYPES,
    PlainEvent,
    ProposeOutcome,
    Result,
    RuleOutcome,
    Travel,
    UpdateEventPayload,
)
from homes_calendar.exceptions import (
    CalendarError,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from homes_calendar.models.base import utcnow

logger = logging.getLogger(__name__)

OverlapPolicy = Literal["allow", "reject"]


def returns_result(func: Callable) -> Callable:
    """Convert ``CalendarError`` raised by ``func`` into a failed ``Result``."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> Result:
        try:
            return func(*args, **kwargs)
        except CalendarError as e:
            logger.info(f"{func.__name__} failed: [{e.code}] {e.message}")
            return Result.failure(e)

    return wrapper


def _validate_range(start_at: datetime, end_at: datetime) -> None:
    if start_at is None or end_at is None:
        raise ValidationError("Start and end times are required")
    if end_at < start_at:
        raise ValidationError("End time must be after start time")


def _clean(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    text = text.strip()
    return text or None


class CalendarActions:
    """
    Workflow operations over an ``EventStore`` and a ``Roster``.

    Args:
        store: Event persistence
        roster: Guardian and display-name lookups
        overlap_policy: 'allow' lets confirmed home days at different homes
            overlap; 'reject' refuses proposals and confirmations that clash
        default_timezone: Zone used to snap all-day spans to whole days
        clock: Returns the current aware UTC time
    """

    def __init__(
        self,
        store: EventStore,
        roster: Roster,
        overlap_policy: OverlapPolicy = "allow",
        default_timezone: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.roster = roster
        self.overlap_policy = overlap_policy
        self.default_timezone = default_timezone
        self.clock = clock

    # =========================================================================
    # Internal helpers
    # =========================================================================

    def _load(self, event_id: uuid.UUID) -> CalendarEvent:
        event = self.store.get(event_id)
        if event is None:
            raise NotFoundError("Event not found")
        return event

    def _timing(
        self,
        start_at: datetime,
        end_at: datetime,
        all_day: bool,
        timezone: Optional[str],
    ) -> tuple[datetime, datetime]:
        _validate_range(start_at, end_at)
        if all_day:
            return normalize_all_day(start_at, end_at, resolve_tz(timezone or self.default_timezone))
        return start_at, end_at

    def _home_name(self, home_id: uuid.UUID) -> str:
        names = self.roster.home_names([home_id])
        if home_id not in names:
            raise ValidationError("Unknown home")
        return names[home_id]

    def _check_overlap(self, event: CalendarEvent, home_id: uuid.UUID) -> None:
        if self.overlap_policy != "reject":
            return
        clashes = [
            other
            for other in self.store.find_confirmed_home_days(
                event.child_id, event.start_at, event.end_at, exclude_event_id=event.id
            )
            if other.home_id != home_id
        ]
        if clashes:
            raise ValidationError(
                "Overlaps a confirmed stay at another home on the same dates"
            )

    def _eligible_confirmers(self, child_id: uuid.UUID, proposer_id: Optional[uuid.UUID]) -> set[uuid.UUID]:
        return self.roster.guardian_ids(child_id) - {proposer_id}

    def _enrich(self, events: list[CalendarEvent], viewer_id: uuid.UUID) -> list[CalendarEventDisplay]:
        """Attach names, colors and per-viewer permission flags."""
        if not events:
            return []

        home_ids: set[uuid.UUID] = set()
        user_ids: set[uuid.UUID] = set()
        guardians_by_child: dict[uuid.UUID, set[uuid.UUID]] = {}

        for event in events:
            details = event.details
            if isinstance(details, HomeDay) and details.home_id:
                home_ids.add(details.home_id)
            elif isinstance(details, Travel):
                home_ids.update(h for h in (details.from_home_id, details.to_home_id) if h)
            user_ids.update(
                u for u in (event.created_by, event.proposed_by, event.confirmed_by, event.rejected_by) if u
            )
            if event.child_id not in guardians_by_child:
                guardians_by_child[event.child_id] = self.roster.guardian_ids(event.child_id)

        for guardians in guardians_by_child.values():
            user_ids.update(guardians)

        home_names = self.roster.home_names(home_ids)
        user_names = self.roster.display_names(user_ids)

        return [
            self._display(event, viewer_id, guardians_by_child[event.child_id], home_names, user_names)
            for event in events
        ]

    @staticmethod
    def _display(
        event: CalendarEvent,
        viewer_id: uuid.UUID,
        guardians: set[uuid.UUID],
        home_names: dict[uuid.UUID, str],
        user_names: dict[uuid.UUID, str],
    ) -> CalendarEventDisplay:
        is_guardian = viewer_id in guardians
        display = CalendarEventDisplay(
            event=event,
            created_by_name=user_names.get(event.created_by),
            proposed_by_name=user_names.get(event.proposed_by),
            confirmed_by_name=user_names.get(event.confirmed_by),
            rejected_by_name=user_names.get(event.rejected_by),
            can_edit=not event.is_read_only and (event.created_by == viewer_id or is_guardian),
            can_delete=not event.is_read_only and is_guardian,
        )

        details = event.details
        if isinstance(details, HomeDay) and details.home_id:
            display.home_name = home_names.get(details.home_id)
            display.home_color = get_home_color(display.home_name)
        elif isinstance(details, Travel):
            if details.from_home_id:
                display.from_home_name = home_names.get(details.from_home_id)
                display.from_home_color = get_home_color(display.from_home_name)
            if details.to_home_id:
                display.to_home_name = home_names.get(details.to_home_id)
                display.to_home_color = get_home_color(display.to_home_name)

        if event.is_pending and not event.is_read_only:
            eligible = guardians - {event.proposed_by}
            display.eligible_confirmers = sorted(
                (EligibleConfirmer(user_id=u, name=user_names.get(u, "Unknown")) for u in eligible),
                key=lambda confirmer: confirmer.name.lower(),
            )
            may_decide = viewer_id in eligible
            display.can_confirm = may_decide
            display.can_reject = may_decide

        return display

    def _enrich_one(self, event: CalendarEvent, viewer_id: uuid.UUID) -> CalendarEventDisplay:
        return self._enrich([event], viewer_id)[0]

    # =========================================================================
    # Listing
    # =========================================================================

    @returns_result
    def list_events(self, filters: ListEventsFilter, viewer_id: uuid.UUID) -> Result[list[CalendarEventDisplay]]:
        """
        Non-deleted events for a child overlapping the range.

        Rejected home days are hidden unless ``include_rejected`` is set or
        ``statuses`` names them explicitly.
        """
        _validate_range(filters.range_start, filters.range_end)

        exclude = None
        if not filters.statuses and not filters.include_rejected:
            exclude = ["rejected"]

        events = self.store.list_range(
            filters.child_id,
            filters.range_start,
            filters.range_end,
            event_types=filters.event_types,
            statuses=filters.statuses,
            exclude_statuses=exclude,
        )
        return Result.success(self._enrich(events, viewer_id))

    @returns_result
    def list_pending_for_viewer(
        self,
        viewer_id: uuid.UUID,
        child_id: Optional[uuid.UUID] = None,
    ) -> Result[list[CalendarEventDisplay]]:
        """
        Proposals the viewer can act on, across all dates.

        Not limited to the visible month; this backs the pending badge.
        """
        if child_id is not None:
            child_ids: Iterable[uuid.UUID] = [child_id]
        else:
            child_ids = self.roster.children_for_guardian(viewer_id)

        pending = self._enrich(self.store.list_pending(child_ids), viewer_id)
        return Result.success([display for display in pending if display.can_confirm])

    @returns_result
    def count_pending(self, viewer_id: uuid.UUID, child_id: Optional[uuid.UUID] = None) -> Result[int]:
        result = self.list_pending_for_viewer(viewer_id, child_id)
        if not result.ok:
            return Result(ok=False, error=result.error, error_code=result.error_code)
        return Result.success(len(result.value))

    # =========================================================================
    # Home days
    # =========================================================================

    @returns_result
    def propose_home_day(
        self,
        payload: CreateHomeDayPayload,
        proposer_id: uuid.UUID,
    ) -> Result[ProposeOutcome]:
        """
        Propose that a child stays at a home.

        If no other guardian could confirm, the stay is confirmed
        immediately and ``auto_confirmed`` is True.
        """
        start_at, end_at = self._timing(
            payload.start_at, payload.end_at, payload.all_day, payload.timezone
        )
        home_name = self._home_name(payload.home_id)

        guardians = self.roster.guardian_ids(payload.child_id)
        if proposer_id not in guardians:
            raise ForbiddenError("Only a guardian can propose a home day")

        auto_confirmed = not (guardians - {proposer_id})

        event = CalendarEvent(
            id=uuid.uuid4(),
            child_id=payload.child_id,
            title=_clean(payload.title) or home_name or "Home",
            start_at=start_at,
            end_at=end_at,
            details=HomeDay(home_id=payload.home_id),
            all_day=payload.all_day,
            timezone=payload.timezone or self.default_timezone,
            status="confirmed" if auto_confirmed else "proposed",
            proposed_by=None if auto_confirmed else proposer_id,
            proposal_reason=_clean(payload.proposal_reason),
            source="manual",
            created_by=proposer_id,
        )
        self._check_overlap(event, payload.home_id)

        stored = self.store.insert(event)
        if auto_confirmed:
            logger.info(f"Home day {stored.id} auto-confirmed (sole guardian {proposer_id})")
        else:
            logger.info(f"Home day {stored.id} proposed by {proposer_id}")

        return Result.success(
            ProposeOutcome(event=self._enrich_one(stored, proposer_id), auto_confirmed=auto_confirmed)
        )

    def _decide(
        self,
        event_id: uuid.UUID,
        actor_id: uuid.UUID,
        to_status: Literal["confirmed", "rejected"],
        reason: Optional[str] = None,
    ) -> CalendarEventDisplay:
        verb = "confirm" if to_status == "confirmed" else "reject"

        event = self._load(event_id)
        if event.event_type != "home_day":
            raise InvalidStateError(f"Only home days can be {to_status}")
        if event.status != "proposed":
            raise InvalidStateError(f"This home day is already {event.status}")
        if event.is_read_only:
            raise ForbiddenError("Imported events cannot be changed")
        if actor_id == event.proposed_by:
            raise ForbiddenError(f"You cannot {verb} your own proposal")
        if actor_id not in self._eligible_confirmers(event.child_id, event.proposed_by):
            raise ForbiddenError(f"Only another guardian of this child can {verb} this home day")

        if to_status == "confirmed":
            self._check_overlap(event, event.home_id)

        applied = self.store.transition_status(
            event_id, to_status, actor_id, self.clock(), reason=_clean(reason)
        )
        if not applied:
            raise ConflictError(
                "This proposal was already answered by someone else. Refresh and try again."
            )

        logger.info(f"Home day {event_id} {to_status} by {actor_id}")
        return self._enrich_one(self._load(event_id), actor_id)

    @returns_result
    def confirm_home_day(self, event_id: uuid.UUID, confirmer_id: uuid.UUID) -> Result[CalendarEventDisplay]:
        return Result.success(self._decide(event_id, confirmer_id, "confirmed"))

    @returns_result
    def reject_home_day(
        self,
        event_id: uuid.UUID,
        rejecter_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> Result[CalendarEventDisplay]:
        return Result.success(self._decide(event_id, rejecter_id, "rejected", reason=reason))

    @returns_result
    def propose_from_candidate(
        self,
        event_id: uuid.UUID,
        proposer_id: uuid.UUID,
        home_id: Optional[uuid.UUID] = None,
    ) -> Result[ProposeOutcome]:
        """
        Turn an imported home-stay candidate into an ordinary proposal.

        The imported row stays read-only and stops being a candidate; the
        new home day goes through the normal confirmation workflow.
        """
        candidate = self._load(event_id)
        if not candidate.is_home_stay_candidate:
            raise InvalidStateError("Event is not a home-stay candidate")

        target_home = home_id or candidate.candidate_home_id
        if target_home is None:
            raise ValidationError("Choose which home this stay is at")

        start_at, end_at = candidate.start_at, candidate.end_at
        if candidate.all_day:
            # Imported all-day rows carry UTC calendar dates; keep the same days locally
            zone = resolve_tz(candidate.timezone or self.default_timezone)
            start_at, _ = day_bounds(to_local(candidate.start_at).date(), zone)
            _, end_at = day_bounds(to_local(candidate.end_at).date(), zone)

        payload = CreateHomeDayPayload(
            child_id=candidate.child_id,
            home_id=target_home,
            start_at=start_at,
            end_at=end_at,
            all_day=candidate.all_day,
            proposal_reason=f"From {candidate.source} calendar: {candidate.title}",
            timezone=candidate.timezone,
        )
        result = self.propose_home_day(payload, proposer_id)
        if result.ok:
            self.store.dismiss_candidates([candidate.id])
        return result

    # =========================================================================
    # Candidate review
    # =========================================================================

    def _require_guardian(self, child_id: uuid.UUID, actor_id: uuid.UUID) -> None:
        if actor_id not in self.roster.guardian_ids(child_id):
            raise ForbiddenError("Only a guardian can review home-stay candidates")

    @returns_result
    def ignore_candidates(self, event_ids: Sequence[uuid.UUID], actor_id: uuid.UUID) -> Result[int]:
        """Stop suggesting these imports as home stays, including after later syncs."""
        ids = list(dict.fromkeys(event_ids))
        if not ids:
            raise ValidationError("Choose at least one candidate")
        for event_id in ids:
            event = self._load(event_id)
            if not event.is_home_stay_candidate:
                raise InvalidStateError("Event is not a home-stay candidate")
            self._require_guardian(event.child_id, actor_id)

        count = self.store.dismiss_candidates(ids)
        logger.info(f"{count} candidates ignored by {actor_id}")
        return Result.success(count)

    @returns_result
    def ignore_candidates_by_title(
        self,
        child_id: uuid.UUID,
        title: str,
        actor_id: uuid.UUID,
        source_id: Optional[uuid.UUID] = None,
    ) -> Result[int]:
        """Ignore every candidate of the child with this title (case-insensitive)."""
        self._require_guardian(child_id, actor_id)
        title = _clean(title)
        if not title:
            raise ValidationError("Title is required")

        matches = self.store.find_candidates(child_id, "title_exact", title, source_id)
        count = self.store.dismiss_candidates([event.id for event in matches])
        logger.info(f"{count} candidates titled '{title}' ignored by {actor_id}")
        return Result.success(count)

    @returns_result
    def create_home_stay_rule(
        self,
        payload: CreateHomeStayRulePayload,
        actor_id: uuid.UUID,
    ) -> Result[RuleOutcome]:
        """
        Save a rule and apply it to the child's current candidates.

        Each match is proposed through ``propose_from_candidate``, so it
        waits for another guardian like any other proposal. Matches that
        cannot be proposed (a clash under the 'reject' overlap policy)
        stay flagged and are counted in ``skipped``.
        """
        if payload.match_type not in MATCH_TYPES:
            raise ValidationError(f"Unknown match type '{payload.match_type}'")
        match_value = _clean(payload.match_value)
        if not match_value:
            raise ValidationError("Match value is required")
        self._require_guardian(payload.child_id, actor_id)
        self._home_name(payload.home_id)

        rule = self.store.insert_rule(
            HomeStayRule(
                id=uuid.uuid4(),
                child_id=payload.child_id,
                home_id=payload.home_id,
                match_type=payload.match_type,
                match_value=match_value,
                source_id=payload.source_id,
                created_by=actor_id,
            )
        )

        outcome = RuleOutcome(rule=rule)
        matches = self.store.find_candidates(rule.child_id, rule.match_type, rule.match_value, rule.source_id)
        for candidate in matches:
            result = self.propose_from_candidate(candidate.id, actor_id, rule.home_id)
            if result.ok:
                outcome.proposed.append(result.value)
            else:
                logger.info(f"Rule {rule.id} skipped candidate {candidate.id}: {result.error}")
                outcome.skipped += 1

        logger.info(
            f"Rule {rule.id} ({rule.match_type} '{rule.match_value}') created by {actor_id}: "
            f"{len(outcome.proposed)} proposed, {outcome.skipped} skipped"
        )
        return Result.success(outcome)

    @returns_result
    def list_home_stay_rules(self, child_id: uuid.UUID, viewer_id: uuid.UUID) -> Result[list[HomeStayRule]]:
        self._require_guardian(child_id, viewer_id)
        return Result.success(self.store.list_rules(child_id))

    @returns_result
    def delete_home_stay_rule(self, rule_id: uuid.UUID, actor_id: uuid.UUID) -> Result[None]:
        """Deactivate a rule. Home days it already proposed are left as they are."""
        rule = self.store.get_rule(rule_id)
        if rule is None:
            raise NotFoundError("Rule not found")
        self._require_guardian(rule.child_id, actor_id)

        if not self.store.deactivate_rule(rule_id):
            raise NotFoundError("Rule not found")
        logger.info(f"Rule {rule_id} deleted by {actor_id}")
        return Result.success(None)

    # =========================================================================
    # Plain events and travel
    # =========================================================================

    @returns_result
    def create_event(self, payload: CreateEventPayload, actor_id: uuid.UUID) -> Result[CalendarEventDisplay]:
        title = _clean(payload.title)
        if not title:
            raise ValidationError("Title is required")
        start_at, end_at = self._timing(payload.start_at, payload.end_at, payload.all_day, payload.timezone)

        event = CalendarEvent(
            id=uuid.uuid4(),
            child_id=payload.child_id,
            title=title,
            start_at=start_at,
            end_at=end_at,
            details=PlainEvent(),
            description=_clean(payload.description),
            all_day=payload.all_day,
            timezone=payload.timezone or self.default_timezone,
            status="confirmed",
            source="manual",
            created_by=actor_id,
        )
        stored = self.store.insert(event)
        logger.info(f"Event {stored.id} created by {actor_id}")
        return Result.success(self._enrich_one(stored, actor_id))

    @returns_result
    def create_travel(self, payload: CreateTravelPayload, actor_id: uuid.UUID) -> Result[CalendarEventDisplay]:
        """
        Create a travel segment. Travel is always confirmed on creation.

        Each endpoint needs a known home or a non-empty location, not both.
        """
        from_location = _clean(payload.from_location)
        to_location = _clean(payload.to_location)

        if not payload.from_home_id and not from_location:
            raise ValidationError("Travel needs a starting home or location")
        if not payload.to_home_id and not to_location:
            raise ValidationError("Travel needs a destination home or location")
        if payload.from_home_id and from_location:
            raise ValidationError("Choose a home or a location for the start, not both")
        if payload.to_home_id and to_location:
            raise ValidationError("Choose a home or a location for the destination, not both")

        start_at, end_at = self._timing(payload.start_at, payload.end_at, payload.all_day, payload.timezone)

        from_name = self._home_name(payload.from_home_id) if payload.from_home_id else from_location
        to_name = self._home_name(payload.to_home_id) if payload.to_home_id else to_location

        event = CalendarEvent(
            id=uuid.uuid4(),
            child_id=payload.child_id,
            title=_clean(payload.title) or f"Travel: {from_name or 'Unknown'} → {to_name or 'Unknown'}",
            start_at=start_at,
            end_at=end_at,
            details=Travel(
                from_home_id=payload.from_home_id,
                to_home_id=payload.to_home_id,
                from_location=from_location,
                to_location=to_location,
                travel_with=_clean(payload.travel_with),
            ),
            description=_clean(payload.description),
            all_day=payload.all_day,
            timezone=payload.timezone or self.default_timezone,
            status="confirmed",
            source="manual",
            created_by=actor_id,
        )
        stored = self.store.insert(event)
        logger.info(f"Travel {stored.id} created by {actor_id}")
        return Result.success(self._enrich_one(stored, actor_id))

    # =========================================================================
    # Update and delete
    # =========================================================================

    @returns_result
    def update_event(
        self,
        event_id: uuid.UUID,
        patch: UpdateEventPayload,
        actor_id: uuid.UUID,
    ) -> Result[CalendarEventDisplay]:
        """Patch title, description or timing of a locally-authored event."""
        event = self._load(event_id)
        if event.is_read_only:
            raise ForbiddenError("Imported events are read-only")
        if event.created_by != actor_id and actor_id not in self.roster.guardian_ids(event.child_id):
            raise ForbiddenError("Only the creator or a guardian can edit this event")

        changes = patch.changes()
        if "title" in changes:
            changes["title"] = _clean(changes["title"])
            if not changes["title"]:
                raise ValidationError("Title cannot be empty")
        if "description" in changes:
            # An empty description clears it
            changes["description"] = _clean(changes["description"])

        if {"start_at", "end_at", "all_day"} & changes.keys():
            all_day = changes.get("all_day", event.all_day)
            start_at, end_at = self._timing(
                changes.get("start_at", event.start_at),
                changes.get("end_at", event.end_at),
                all_day,
                event.timezone,
            )
            changes["start_at"] = start_at
            changes["end_at"] = end_at
            if event.event_type == "home_day" and event.status == "confirmed":
                self._check_overlap(
                    dataclasses.replace(event, start_at=start_at, end_at=end_at, all_day=all_day),
                    event.home_id,
                )

        if not self.store.update_fields(event_id, changes):
            raise NotFoundError("Event not found")

        logger.info(f"Event {event_id} updated by {actor_id}: {sorted(changes)}")
        return Result.success(self._enrich_one(self._load(event_id), actor_id))

    @returns_result
    def delete_event(self, event_id: uuid.UUID, actor_id: uuid.UUID) -> Result[None]:
        """Soft-delete a locally-authored event."""
        event = self._load(event_id)
        if event.is_read_only:
            raise ForbiddenError("Imported events are read-only")
        if actor_id not in self.roster.guardian_ids(event.child_id):
            raise ForbiddenError("Only a guardian can delete events")

        if not self.store.soft_delete(event_id, actor_id, self.clock()):
            raise NotFoundError("Event not found")

        logger.info(f"Event {event_id} deleted by {actor_id}")
        return Result.success(None)

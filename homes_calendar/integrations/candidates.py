"""
Home-stay candidate detection.

Flags imported events that probably describe a child staying somewhere
("Weekend at Dad's", an all-day block, a recurring custody pattern).
Flags are suggestions only: a guardian turns one into a home-day
proposal with ``CalendarActions.propose_from_candidate`` (or a home-stay
rule for a whole group), or dismisses it with ``ignore_candidates``.
"""

import re
import uuid
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from typing import Iterable, Optional, Sequence

from homes_calendar.calendar.roster import HomeRef
from homes_calendar.integrations.base import ExternalEvent
from homes_calendar.services.recurrence import describe_recurrence

HOME_STAY_KEYWORDS = (
    # Parent names
    "daddy", "dad", "father", "papa", "dada",
    "mommy", "mom", "mother", "mama", "mummy", "mum",
    # Grandparents
    "grandma", "grandmother", "nana", "granny", "oma",
    "grandpa", "grandfather", "gramps", "granddad", "opa",
    # Other family
    "aunt", "auntie", "uncle",
    # Generic
    "home", "house", "stay", "custody",
)

# Words that say nothing about which home is meant
_FILLER_TOKENS = {"the", "a", "at", "s", "home", "house", "place", "apartment", "flat"}

HOME_MATCH_THRESHOLD = 0.8
TOKEN_MATCH_THRESHOLD = 0.85


@dataclass(frozen=True)
class HomeStayCandidate:
    """
    Classification of one imported event.

    reason is one of 'home_name_match', 'title_match', 'all_day',
    'multi_day', 'recurring', or None when not a candidate.
    """

    is_candidate: bool
    reason: Optional[str] = None
    home_id: Optional[uuid.UUID] = None
    confidence: float = 0.0


NOT_A_CANDIDATE = HomeStayCandidate(is_candidate=False)


def _tokens(text: str) -> list[str]:
    words = re.findall(r"[a-z0-9]+(?:'[a-z]+)?", text.lower())
    return [re.sub(r"'s$", "", word) for word in words]


def _similarity(a: str, b: str) -> float:
    return SequenceMatcher(None, a, b).ratio()


def home_match_score(text: str, home: HomeRef) -> float:
    """
    How strongly ``text`` refers to ``home``, from 0.0 to 1.0.

    An exact (case-insensitive) mention of the full name or street address
    scores 1.0; otherwise the share of the name's distinctive words that
    fuzzy-match a word in the text.
    """
    haystack = " ".join(_tokens(text))
    if not haystack:
        return 0.0

    name = " ".join(_tokens(home.name))
    if name and name in haystack:
        return 1.0

    if home.address:
        street = home.address.split(",")[0].strip().lower()
        if street and street in text.lower():
            return 1.0

    name_tokens = [token for token in _tokens(home.name) if token not in _FILLER_TOKENS]
    if not name_tokens:
        return 0.0

    text_tokens = set(_tokens(text))
    matched = sum(
        1
        for name_token in name_tokens
        if any(_similarity(name_token, text_token) >= TOKEN_MATCH_THRESHOLD for text_token in text_tokens)
    )
    return matched / len(name_tokens)


def best_home_match(text: str, homes: Iterable[HomeRef]) -> tuple[Optional[HomeRef], float]:
    """Highest-scoring home for ``text``; ties keep the first home."""
    best: Optional[HomeRef] = None
    best_score = 0.0
    for home in homes:
        score = home_match_score(text, home)
        if score > best_score:
            best, best_score = home, score
    return best, best_score


def classify_home_stay(event: ExternalEvent, homes: Sequence[HomeRef]) -> HomeStayCandidate:
    """
    Decide whether an imported event looks like a home stay.

    Checked in order, first hit wins:
    1. title or location names one of the child's homes
    2. title contains a family/home keyword
    3. all-day event
    4. spans 24 hours or more
    5. recurring
    """
    text = " ".join(part for part in (event.title, event.location) if part)

    home, score = best_home_match(text, homes)
    if home is not None and score >= HOME_MATCH_THRESHOLD:
        return HomeStayCandidate(True, "home_name_match", home.id, round(score, 2))

    title_tokens = set(_tokens(event.title or ""))
    if title_tokens & set(HOME_STAY_KEYWORDS):
        return HomeStayCandidate(True, "title_match", None, 0.6)

    if event.all_day:
        return HomeStayCandidate(True, "all_day", None, 0.4)

    if event.duration_hours >= 24:
        return HomeStayCandidate(True, "multi_day", None, 0.4)

    if event.is_recurring:
        return HomeStayCandidate(True, "recurring", None, 0.3)

    return NOT_A_CANDIDATE


@dataclass
class CandidateGroup:
    """Candidates sharing a title within one source, for bulk review."""

    title: str
    source_id: Optional[uuid.UUID]
    event_ids: list[uuid.UUID]
    home_id: Optional[uuid.UUID]
    recurrence: Optional[str] = None
    external_event_ids: list[str] = field(default_factory=list)

    @property
    def suggested_match_type(self) -> str:
        """'title_exact' when the title repeats, else 'event_id'."""
        return "title_exact" if len(self.event_ids) > 1 else "event_id"

    @property
    def suggested_match_value(self) -> str:
        """Value for a home-stay rule of ``suggested_match_type``."""
        if self.suggested_match_type == "event_id" and self.external_event_ids:
            return self.external_event_ids[0]
        return self.title


def group_candidates(events) -> list[CandidateGroup]:
    """
    Group candidate events by (title, source), largest group first.

    Accepts ``CalendarEvent`` objects; non-candidates are ignored.
    """
    groups: dict[tuple[str, Optional[uuid.UUID]], CandidateGroup] = {}
    for event in events:
        if not event.is_home_stay_candidate:
            continue
        key = (event.title, event.external_source_id)
        group = groups.get(key)
        if group is None:
            group = groups[key] = CandidateGroup(
                title=event.title,
                source_id=event.external_source_id,
                event_ids=[],
                home_id=event.candidate_home_id,
            )
        group.event_ids.append(event.id)
        if event.external_event_id:
            group.external_event_ids.append(event.external_event_id)
        if group.home_id is None:
            group.home_id = event.candidate_home_id
        if group.recurrence is None:
            group.recurrence = describe_recurrence(event.recurrence_rule)
    return sorted(groups.values(), key=lambda group: (-len(group.event_ids), group.title))

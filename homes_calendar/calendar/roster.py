"""
Identity and roster lookups.

The workflow engine asks the roster who the guardians of a child are and
how to label users and homes. ``SQLAlchemyRoster`` reads the family tables.
"""

import uuid
from abc import abstractmethod
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from homes_calendar.models.family import ChildGuardian, ChildHome, Home, Profile


@dataclass(frozen=True)
class HomeRef:
    id: uuid.UUID
    name: str
    address: Optional[str] = None


class Roster(Protocol):
    """Read-only view of guardians, display names and homes."""

    @abstractmethod
    def guardian_ids(self, child_id: uuid.UUID) -> set[uuid.UUID]:
        ...

    @abstractmethod
    def children_for_guardian(self, user_id: uuid.UUID) -> list[uuid.UUID]:
        ...

    @abstractmethod
    def display_names(self, user_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, str]:
        ...

    @abstractmethod
    def home_names(self, home_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, str]:
        ...

    @abstractmethod
    def homes_for_child(self, child_id: uuid.UUID) -> list[HomeRef]:
        ...


class SQLAlchemyRoster:
    """``Roster`` over the profiles/children/homes tables."""

    def __init__(self, session: Session):
        self.session = session

    def guardian_ids(self, child_id: uuid.UUID) -> set[uuid.UUID]:
        stmt = select(ChildGuardian.profile_id).where(ChildGuardian.child_id == child_id)
        return set(self.session.scalars(stmt))

    def children_for_guardian(self, user_id: uuid.UUID) -> list[uuid.UUID]:
        stmt = select(ChildGuardian.child_id).where(ChildGuardian.profile_id == user_id)
        return list(self.session.scalars(stmt))

    def display_names(self, user_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, str]:
        ids = {user_id for user_id in user_ids if user_id is not None}
        if not ids:
            return {}
        profiles = self.session.scalars(select(Profile).where(Profile.id.in_(ids)))
        return {profile.id: profile.label for profile in profiles}

    def home_names(self, home_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, str]:
        ids = {home_id for home_id in home_ids if home_id is not None}
        if not ids:
            return {}
        rows = self.session.execute(select(Home.id, Home.name).where(Home.id.in_(ids)))
        return {home_id: name for home_id, name in rows}

    def homes_for_child(self, child_id: uuid.UUID) -> list[HomeRef]:
        stmt = (
            select(Home)
            .join(ChildHome, ChildHome.home_id == Home.id)
            .where(ChildHome.child_id == child_id)
            .order_by(Home.name)
        )
        return [
            HomeRef(id=home.id, name=home.name, address=home.address)
            for home in self.session.scalars(stmt)
        ]

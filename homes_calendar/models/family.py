"""
Family roster models.

Entities:
- Profile: A caregiver account (parent, step-parent, nanny, ...)
- Child: A child whose calendar is shared between homes
- Home: A place a child stays
- ChildGuardian: Grants a profile guardian-level access to a child
- ChildHome: Links a child to the homes they stay at
- HomeMembership: Caregivers who live at or manage a home

These tables are owned by the roster screens; the calendar core only reads
them through ``homes_calendar.calendar.roster``.
"""

import uuid
from typing import Optional

from sqlalchemy import String, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from homes_calendar.models.base import BaseModel


class Profile(BaseModel):
    """A caregiver identity with a display name."""

    __tablename__ = "profiles"

    display_name: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        doc="Name shown on events (falls back to email local part)"
    )

    email: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
        doc="Login email"
    )

    @property
    def label(self) -> str:
        """Best available human-readable name."""
        if self.display_name:
            return self.display_name
        if self.email:
            return self.email.split("@")[0]
        return "Unknown"

    def __repr__(self) -> str:
        return f"<Profile(display_name='{self.display_name}')>"


class Child(BaseModel):
    """A child; every calendar event belongs to exactly one child."""

    __tablename__ = "children"

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        doc="Child's name"
    )

    def __repr__(self) -> str:
        return f"<Child(name='{self.name}')>"


class Home(BaseModel):
    """A home a child stays at (e.g. "Dad's house")."""

    __tablename__ = "homes"

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        doc="Display name; also drives the home's calendar color"
    )

    address: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        doc="Street address, used by the home-stay heuristic"
    )

    def __repr__(self) -> str:
        return f"<Home(name='{self.name}')>"


class ChildGuardian(BaseModel):
    """
    Guardian-level access to a child.

    Guardians may propose, confirm and reject home days and delete events.
    Helpers such as nannies get no row here.
    """

    __tablename__ = "child_guardians"

    child_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("children.id", ondelete="CASCADE"),
        nullable=False,
    )

    profile_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )

    guardian_role: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="parent",
        doc="'parent', 'step_parent' or 'guardian'"
    )

    __table_args__ = (
        UniqueConstraint("child_id", "profile_id", name="uq_child_guardian"),
        Index("idx_child_guardian_profile", "profile_id"),
    )


class ChildHome(BaseModel):
    """A home the child stays at."""

    __tablename__ = "child_homes"

    child_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("children.id", ondelete="CASCADE"),
        nullable=False,
    )

    home_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("homes.id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("child_id", "home_id", name="uq_child_home"),
    )


class HomeMembership(BaseModel):
    """A caregiver attached to a home."""

    __tablename__ = "home_memberships"

    home_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("homes.id", ondelete="CASCADE"),
        nullable=False,
    )

    profile_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("home_id", "profile_id", name="uq_home_membership"),
    )

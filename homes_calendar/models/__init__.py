"""
SQLAlchemy models for Homes Calendar.

Importing this package registers every table on ``Base.metadata`` so
Alembic autogenerate and ``init_db`` see them.
"""

from homes_calendar.models.base import Base, BaseModel, GUID, UTCDateTime, utcnow

from homes_calendar.models.family import (
    Profile,
    Child,
    Home,
    ChildGuardian,
    ChildHome,
    HomeMembership,
)
from homes_calendar.models.tokens import GoogleCalendarConnection
from homes_calendar.models.sources import ExternalCalendarSource, CalendarEventMapping, HomeStayRuleRecord
from homes_calendar.models.events import CalendarEventRecord

__all__ = [
    # Base classes
    "Base",
    "BaseModel",
    "GUID",
    "UTCDateTime",
    "utcnow",
    # Roster
    "Profile",
    "Child",
    "Home",
    "ChildGuardian",
    "ChildHome",
    "HomeMembership",
    # Integrations
    "GoogleCalendarConnection",
    "ExternalCalendarSource",
    "CalendarEventMapping",
    "HomeStayRuleRecord",
    # Events
    "CalendarEventRecord",
]

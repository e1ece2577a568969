"""
Pytest configuration and fixtures for Homes Calendar tests.

Provides database session fixtures and a small family to test against:
two parents who share a child, a nanny with no guardianship, and the
child's two homes.
"""

import os

# database.py builds its engine at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from datetime import datetime, timezone
from typing import Generator

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from homes_calendar.calendar.actions import CalendarActions
from homes_calendar.calendar.roster import SQLAlchemyRoster
from homes_calendar.calendar.store import SQLAlchemyEventStore
from homes_calendar.crypto import Cipher, ics_url_hash, mask_ics_url
from homes_calendar.models import (
    Base,
    Child,
    ChildGuardian,
    ChildHome,
    ExternalCalendarSource,
    Home,
    Profile,
)

FIXED_NOW = datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)


# Configure SQLite to enforce foreign key constraints in tests
@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    """Enable foreign key constraints for SQLite connections."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """
    Create a clean database session for each test.

    Uses an in-memory SQLite database shared by every thread (the API
    tests run handlers in a worker thread) and torn down after each test.

    Yields:
        Session: SQLAlchemy session for database operations
    """
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Let SQLAlchemy emit BEGIN so SAVEPOINT rollbacks work
    @event.listens_for(engine, "connect")
    def autocommit_driver(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
    )
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.rollback()
        session.close()
        # Disable foreign key constraints for drop operations
        # (outside a transaction, where SQLite ignores the pragma)
        raw = engine.raw_connection()
        try:
            raw.cursor().execute("PRAGMA foreign_keys=OFF")
        finally:
            raw.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


# =============================================================================
# Family
# =============================================================================


@pytest.fixture
def parent_a(db_session: Session) -> Profile:
    profile = Profile(display_name="Alex", email="alex@example.com")
    db_session.add(profile)
    db_session.flush()
    return profile


@pytest.fixture
def parent_b(db_session: Session) -> Profile:
    profile = Profile(display_name="Blair", email="blair@example.com")
    db_session.add(profile)
    db_session.flush()
    return profile


@pytest.fixture
def nanny(db_session: Session) -> Profile:
    """A helper who can add events but is not a guardian."""
    profile = Profile(display_name="Casey", email="casey@example.com")
    db_session.add(profile)
    db_session.flush()
    return profile


@pytest.fixture
def dad_home(db_session: Session) -> Home:
    home = Home(name="Dad's house", address="1 Oak Street")
    db_session.add(home)
    db_session.flush()
    return home


@pytest.fixture
def mom_home(db_session: Session) -> Home:
    home = Home(name="Mom's house", address="2 Elm Street")
    db_session.add(home)
    db_session.flush()
    return home


@pytest.fixture
def child(
    db_session: Session,
    parent_a: Profile,
    parent_b: Profile,
    dad_home: Home,
    mom_home: Home,
) -> Child:
    """A child with both parents as guardians and two homes."""
    kid = Child(name="Robin")
    db_session.add(kid)
    db_session.flush()

    db_session.add_all([
        ChildGuardian(child_id=kid.id, profile_id=parent_a.id, guardian_role="parent"),
        ChildGuardian(child_id=kid.id, profile_id=parent_b.id, guardian_role="parent"),
        ChildHome(child_id=kid.id, home_id=dad_home.id),
        ChildHome(child_id=kid.id, home_id=mom_home.id),
    ])
    db_session.flush()
    return kid


@pytest.fixture
def solo_child(db_session: Session, parent_a: Profile, dad_home: Home) -> Child:
    """A child with a single guardian."""
    kid = Child(name="Sam")
    db_session.add(kid)
    db_session.flush()

    db_session.add_all([
        ChildGuardian(child_id=kid.id, profile_id=parent_a.id, guardian_role="parent"),
        ChildHome(child_id=kid.id, home_id=dad_home.id),
    ])
    db_session.flush()
    return kid


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def store(db_session: Session) -> SQLAlchemyEventStore:
    return SQLAlchemyEventStore(db_session)


@pytest.fixture
def roster(db_session: Session) -> SQLAlchemyRoster:
    return SQLAlchemyRoster(db_session)


@pytest.fixture
def actions(store: SQLAlchemyEventStore, roster: SQLAlchemyRoster) -> CalendarActions:
    return CalendarActions(store, roster, default_timezone="UTC", clock=lambda: FIXED_NOW)


@pytest.fixture
def cipher() -> Cipher:
    return Cipher(os.urandom(32))


@pytest.fixture
def ics_source(db_session: Session, child: Child, parent_a: Profile, cipher: Cipher) -> ExternalCalendarSource:
    """An ICS subscription owned by parent_a."""
    url = "https://calendar.example.com/feeds/robin.ics?token=abc123"
    source = ExternalCalendarSource(
        provider="ics",
        child_id=child.id,
        owner_id=parent_a.id,
        display_name="School calendar",
        encrypted_url=cipher.encrypt(url),
        url_hash=ics_url_hash(url),
        masked_url=mask_ics_url(url),
    )
    db_session.add(source)
    db_session.flush()
    return source

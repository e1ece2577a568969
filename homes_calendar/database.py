"""
Database configuration and session management.

Provides:
- Engine creation with per-dialect configuration
- SessionLocal factory for creating database sessions
- get_db() dependency for FastAPI request-scoped sessions
- get_db_context() for scripts and the scheduled sync job
- Database initialization utilities
"""

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from homes_calendar.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

if settings.is_production:
    settings.validate_production_config()


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine configured for the target database.

    SQLite gets a static pool and foreign keys; PostgreSQL gets a
    recycled, pre-pinged connection pool.
    """
    if "sqlite" in database_url.lower():
        db_engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},  # FastAPI threadpool
            poolclass=StaticPool,
            echo=echo,
        )

        @event.listens_for(db_engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            """Enable foreign key constraints in SQLite."""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
            # Let SQLAlchemy emit BEGIN so SAVEPOINT rollbacks work
            dbapi_conn.isolation_level = None

        @event.listens_for(db_engine, "begin")
        def do_begin(conn):
            conn.exec_driver_sql("BEGIN")

        return db_engine

    return create_engine(
        database_url,
        pool_size=5,
        pool_recycle=3600,
        pool_pre_ping=True,
        echo=echo,
    )


engine = create_db_engine(settings.database_url, echo=settings.log_level == "DEBUG")

# Session factory
SessionLocal = sessionmaker(
    autocommit=False,  # Explicit commits required
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
)


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency for request-scoped database sessions.

    Commits when the request succeeds and rolls back on exception.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """
    Context manager for database sessions outside FastAPI.

    Usage for scripts or background sync runs:
        with get_db_context() as db:
            source = db.get(ExternalCalendarSource, source_id)
            # Automatic commit on context exit

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db() -> None:
    """
    Create all tables.

    Development and test convenience; production uses `alembic upgrade head`.
    """
    from homes_calendar.models.base import Base
    import homes_calendar.models  # noqa: F401  register all tables

    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")


def check_connection() -> bool:
    """
    Test database connection.

    Returns:
        bool: True if connection successful, False otherwise
    """
    try:
        with get_db_context() as db:
            db.execute(text("SELECT 1"))
        logger.info("Database connection successful")
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False

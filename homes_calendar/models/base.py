"""
Base model definitions for SQLAlchemy.

Provides:
- GUID TypeDecorator for UUID support across SQLite and PostgreSQL
- UTCDateTime TypeDecorator so timestamps always come back timezone-aware
- BaseModel declarative base with id and audit timestamps
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, TypeDecorator, func
from sqlalchemy.dialects.postgresql import UUID as PostgreSQL_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import CHAR


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class GUID(TypeDecorator):
    """
    Platform-independent GUID type.

    Uses PostgreSQL's UUID type on PostgreSQL databases.
    Uses CHAR(32) on SQLite databases (stores hex representation).
    """

    impl = CHAR(32)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        """Load the appropriate type for the dialect."""
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PostgreSQL_UUID())
        return dialect.type_descriptor(CHAR(32))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value

        if dialect.name == "postgresql":
            return str(value)
        if isinstance(value, uuid.UUID):
            return value.hex
        return uuid.UUID(value).hex if value else None

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(value)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp stored as UTC.

    SQLite drops tzinfo on the way in and out; binding converts to UTC and
    loading re-attaches UTC, so comparisons behave the same on both
    databases. Naive values are taken to already be UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base for all models."""

    type_annotation_map = {
        uuid.UUID: GUID,
        datetime: UTCDateTime,
    }


class BaseModel(Base):
    """
    Base model with common fields for all entities.

    Provides:
    - id: UUID primary key
    - created_at: Timestamp of record creation (UTC)
    - updated_at: Timestamp of last update (UTC, auto-updates)
    """

    __abstract__ = True

    id: Mapped[uuid.UUID] = mapped_column(
        GUID,
        primary_key=True,
        default=uuid.uuid4,
        doc="Unique identifier (UUID)"
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        doc="Timestamp of record creation (UTC)"
    )

    updated_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        onupdate=utcnow,
        nullable=True,
        doc="Timestamp of last update (UTC)"
    )

    def to_dict(self) -> dict:
        """
        Convert model instance to dictionary.

        Returns:
            Dictionary with all column values (excludes relationships)
        """
        return {
            column.name: getattr(self, column.name)
            for column in self.__table__.columns
        }

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(id={self.id})>"

"""
Declarative base, shared columns and column types.

Every table gets a UUID primary key stored portably (native UUID on
PostgreSQL, 32-character hex on SQLite), creation/update timestamps and a
nullable deleted_at used for soft deletion. Timestamps are always UTC.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, JSON, TypeDecorator, func
from sqlalchemy.dialects.postgresql import JSONB, UUID as PostgreSQL_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import CHAR

from booking_sync.config import get_settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes read back from the database.

    SQLite drops tzinfo on DateTime(timezone=True) columns; values are always
    written as UTC, so a naive value is UTC.
    """
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class GUID(TypeDecorator):
    """UUID column: native on PostgreSQL, CHAR(32) hex elsewhere."""

    impl = CHAR(32)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PostgreSQL_UUID())
        return dialect.type_descriptor(CHAR(32))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, uuid.UUID):
            value = uuid.UUID(str(value))
        return str(value) if dialect.name == "postgresql" else value.hex

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(value)


def get_json_type():
    """JSONB when the configured database is PostgreSQL, plain JSON otherwise."""
    if "postgres" in get_settings().database_url.lower():
        return JSONB
    return JSON


class Base(DeclarativeBase):
    type_annotation_map = {
        uuid.UUID: GUID,
    }


class BaseModel(Base):
    """
    Abstract parent of every table.

    Columns:
    - id: UUID primary key, generated client-side
    - created_at: set by the database on insert
    - updated_at: refreshed on every ORM update
    - deleted_at: set by soft_delete(); rows stay in place
    """

    __abstract__ = True

    id: Mapped[uuid.UUID] = mapped_column(
        GUID,
        primary_key=True,
        default=uuid.uuid4,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        onupdate=utcnow,
        nullable=True,
    )

    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=None,
    )

    def to_dict(self) -> dict:
        """Column values keyed by column name (relationships excluded)."""
        return {column.name: getattr(self, column.name) for column in self.__table__.columns}

    def soft_delete(self, now: Optional[datetime] = None) -> None:
        self.deleted_at = now or utcnow()

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id}>"

"""SQLAlchemy declarative base with common mixins and portable column types."""
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import JSON, DateTime, TypeDecorator, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from uuid6 import uuid7

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JsonType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Current wall-clock time as an aware UTC datetime."""
    return datetime.now(UTC)


class TZDateTime(TypeDecorator):
    """
    Timezone-aware DateTime that always round-trips as UTC.

    PostgreSQL keeps the offset natively; SQLite drops it, so naive values
    read back are re-labelled as UTC. Values are normalised to UTC on write.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class UUIDv7Mixin:
    """
    Mixin providing a UUIDv7 primary key.

    UUIDv7 is time-ordered, so ids sort by creation time and index locality
    stays good for append-only tables like version history.
    """

    id: Mapped[UUID] = mapped_column(Uuid(), primary_key=True, default=uuid7)


class TimestampMixin:
    """
    Mixin that adds created_at and updated_at columns.

    Timestamps are generated application-side so they are identical across
    PostgreSQL and SQLite and reflect wall-clock time rather than
    transaction start time.
    """

    created_at: Mapped[datetime] = mapped_column(
        TZDateTime(),
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        TZDateTime(),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
        index=True,  # Index for "sort by recently updated" queries
    )

"""Rollback and comparison records built on top of version history."""
from datetime import datetime
from enum import StrEnum
from uuid import UUID

from sqlalchemy import Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, JsonType, TZDateTime, UUIDv7Mixin, utcnow


class RollbackType(StrEnum):
    """What a rollback replaces."""

    FULL = "full"  # Canvas metadata and the element set
    ELEMENTS_ONLY = "elements_only"  # Element set only, canvas untouched


class RollbackStatus(StrEnum):
    """
    Rollback state machine.

    PENDING -> PROCESSING -> {CONFLICT | COMPLETED | FAILED | CANCELLED}
    CONFLICT -> {COMPLETED | CANCELLED} once a resolution is supplied.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    CONFLICT = "conflict"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_ROLLBACK_STATUSES = frozenset({
    RollbackStatus.COMPLETED.value,
    RollbackStatus.FAILED.value,
    RollbackStatus.CANCELLED.value,
})


class ConflictResolution(StrEnum):
    """Caller's choice when a rollback detects conflicts."""

    CANCEL = "cancel"
    MANUAL = "manual"
    FORCE_OVERWRITE = "force_overwrite"


class ComparisonType(StrEnum):
    """Scope of a version comparison."""

    FULL = "full"
    ELEMENTS_ONLY = "elements_only"
    CANVAS_ONLY = "canvas_only"


class WhiteboardVersionRollback(Base, UUIDv7Mixin):
    """
    A rollback operation record.

    Rollback records are kept for audit; they never mutate version rows.
    backup_version_id points at the forced snapshot taken before any change.
    """

    __tablename__ = "whiteboard_version_rollbacks"

    whiteboard_id: Mapped[UUID] = mapped_column(
        Uuid(),
        ForeignKey("whiteboards.id", ondelete="CASCADE"),
        nullable=False,
    )
    source_version_id: Mapped[UUID] = mapped_column(
        Uuid(), ForeignKey("whiteboard_versions.id"), nullable=False,
    )
    target_version_id: Mapped[UUID] = mapped_column(
        Uuid(), ForeignKey("whiteboard_versions.id"), nullable=False,
    )
    backup_version_id: Mapped[UUID | None] = mapped_column(
        Uuid(), ForeignKey("whiteboard_versions.id"), nullable=True,
    )
    rollback_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RollbackStatus.PENDING.value,
    )
    conflict_resolution: Mapped[str | None] = mapped_column(String(20), nullable=True)
    conflicts_data: Mapped[list] = mapped_column(JsonType, nullable=False, default=list)

    # Operation counts: size of the source -> target delta
    total_operations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_operations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    user_id: Mapped[UUID] = mapped_column(Uuid(), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    processing_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(TZDateTime(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(TZDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(TZDateTime(), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_whiteboard_rollbacks_status", "whiteboard_id", "status"),
        Index("ix_whiteboard_rollbacks_target", "target_version_id"),
    )


class WhiteboardVersionComparison(Base, UUIDv7Mixin):
    """Cached comparison between two versions, valid until expires_at."""

    __tablename__ = "whiteboard_version_comparisons"

    whiteboard_id: Mapped[UUID] = mapped_column(
        Uuid(),
        ForeignKey("whiteboards.id", ondelete="CASCADE"),
        nullable=False,
    )
    version_a_id: Mapped[UUID] = mapped_column(
        Uuid(), ForeignKey("whiteboard_versions.id", ondelete="CASCADE"), nullable=False,
    )
    version_b_id: Mapped[UUID] = mapped_column(
        Uuid(), ForeignKey("whiteboard_versions.id", ondelete="CASCADE"), nullable=False,
    )
    comparison_type: Mapped[str] = mapped_column(String(20), nullable=False)
    diff_summary: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)
    detailed_diff: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)
    diff_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    similarity_score: Mapped[float] = mapped_column(Float, nullable=False)
    processing_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_by: Mapped[UUID] = mapped_column(Uuid(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(TZDateTime(), nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(TZDateTime(), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "version_a_id",
            "version_b_id",
            "comparison_type",
            name="uq_version_comparison",
        ),
        Index("ix_whiteboard_comparisons_expires", "expires_at"),
    )

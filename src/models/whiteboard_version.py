"""Version history models: versions, delta operations and branch heads."""
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, JsonType, TimestampMixin, TZDateTime, UUIDv7Mixin, utcnow

if TYPE_CHECKING:
    from models.whiteboard import Whiteboard


class VersionType(StrEnum):
    """How a version's payload is stored."""

    SNAPSHOT = "snapshot"  # Full, self-contained document state
    DELTA = "delta"  # Ordered operations against the parent's state


class ChangeType(StrEnum):
    """Caller-supplied classification of a version."""

    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"
    AUTO_SAVE = "auto_save"
    MANUAL = "manual"
    TEMPLATE = "template"
    ROLLBACK = "rollback"
    MERGE = "merge"


class OperationType(StrEnum):
    """Kind of change a delta operation applies."""

    CANVAS = "canvas"
    CREATE = "create"
    DELETE = "delete"
    UPDATE = "update"
    MOVE = "move"
    STYLE = "style"


DEFAULT_BRANCH = "main"


class WhiteboardVersion(Base, UUIDv7Mixin):
    """
    One node in a whiteboard's append-only history tree.

    Exactly one payload is populated, selected by version_type:
    - SNAPSHOT: snapshot_data (raw JSON) or compressed_data (gzip of the
      canonical JSON when it exceeds the compression threshold)
    - DELTA: rows in whiteboard_version_deltas, replayed against the parent

    Versions are never updated after creation except for creation_time_ms,
    which is recorded once the insert completes.
    """

    __tablename__ = "whiteboard_versions"

    whiteboard_id: Mapped[UUID] = mapped_column(
        Uuid(),
        ForeignKey("whiteboards.id", ondelete="CASCADE"),
        nullable=False,
    )
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    parent_version_id: Mapped[UUID | None] = mapped_column(
        Uuid(),
        ForeignKey("whiteboard_versions.id"),
        nullable=True,
    )
    version_type: Mapped[str] = mapped_column(String(20), nullable=False)
    change_type: Mapped[str] = mapped_column(String(20), nullable=False)
    commit_message: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_automatic: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    branch_name: Mapped[str] = mapped_column(String(100), nullable=False, default=DEFAULT_BRANCH)
    # Metadata only; does not make the source a second parent
    merge_source_id: Mapped[UUID | None] = mapped_column(Uuid(), nullable=True)
    is_milestone: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tags: Mapped[list] = mapped_column(JsonType, nullable=False, default=list)

    # Payload
    snapshot_data: Mapped[dict | None] = mapped_column(JsonType, nullable=True)
    compressed_data: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    compression_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    data_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    compressed_size: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Change detection
    canvas_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    elements_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # Accounting (tallies of the parent -> this version delta)
    element_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_changes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    elements_added: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    elements_modified: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    elements_deleted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    creation_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Whiteboard revision counter at capture time
    whiteboard_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    metadata_: Mapped[dict] = mapped_column("metadata", JsonType, nullable=False, default=dict)

    created_by: Mapped[UUID] = mapped_column(Uuid(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(TZDateTime(), nullable=False, default=utcnow)
    # Retention boundary; see tasks.cleanup
    expires_at: Mapped[datetime | None] = mapped_column(TZDateTime(), nullable=True)

    whiteboard: Mapped["Whiteboard"] = relationship(back_populates="versions")
    deltas: Mapped[list["WhiteboardVersionDelta"]] = relationship(
        back_populates="version",
        cascade="all, delete-orphan",
        order_by="WhiteboardVersionDelta.operation_order",
    )

    __table_args__ = (
        # Prevents duplicate version numbers from concurrent creation
        UniqueConstraint(
            "whiteboard_id",
            "version_number",
            name="uq_whiteboard_version_number",
        ),
        Index("ix_whiteboard_versions_parent", "parent_version_id"),
        Index("ix_whiteboard_versions_branch", "whiteboard_id", "branch_name"),
        Index("ix_whiteboard_versions_created", "whiteboard_id", "created_at"),
        Index("ix_whiteboard_versions_expires", "expires_at"),
    )


class WhiteboardVersionDelta(Base, UUIDv7Mixin):
    """
    One atomic change inside a DELTA version.

    `patch` is an RFC 6902 JSON Patch rooted at the whole document state.
    `old_data`/`new_data` hold the affected element (or canvas) so replay can
    fall back to whole-value replacement if the patch no longer applies.
    """

    __tablename__ = "whiteboard_version_deltas"

    version_id: Mapped[UUID] = mapped_column(
        Uuid(),
        ForeignKey("whiteboard_versions.id", ondelete="CASCADE"),
        nullable=False,
    )
    operation_type: Mapped[str] = mapped_column(String(20), nullable=False)
    element_id: Mapped[str | None] = mapped_column(String(64), nullable=True)  # None for canvas
    operation_order: Mapped[int] = mapped_column(Integer, nullable=False)
    old_data: Mapped[dict | None] = mapped_column(JsonType, nullable=True)
    new_data: Mapped[dict | None] = mapped_column(JsonType, nullable=True)
    patch: Mapped[list] = mapped_column(JsonType, nullable=False, default=list)
    operation_metadata: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(TZDateTime(), nullable=False, default=utcnow)

    version: Mapped["WhiteboardVersion"] = relationship(back_populates="deltas")

    __table_args__ = (
        UniqueConstraint("version_id", "operation_order", name="uq_version_delta_order"),
        Index("ix_whiteboard_version_deltas_element", "element_id"),
    )


class WhiteboardVersionBranch(Base, UUIDv7Mixin, TimestampMixin):
    """Named branch pointer: (whiteboard, branch_name) -> head version."""

    __tablename__ = "whiteboard_version_branches"

    whiteboard_id: Mapped[UUID] = mapped_column(
        Uuid(),
        ForeignKey("whiteboards.id", ondelete="CASCADE"),
        nullable=False,
    )
    branch_name: Mapped[str] = mapped_column(String(100), nullable=False)
    head_version_id: Mapped[UUID] = mapped_column(
        Uuid(),
        ForeignKey("whiteboard_versions.id"),
        nullable=False,
    )
    # Version the branch forked from (None for the branch holding the root)
    base_version_id: Mapped[UUID | None] = mapped_column(
        Uuid(),
        ForeignKey("whiteboard_versions.id"),
        nullable=True,
    )
    created_by: Mapped[UUID] = mapped_column(Uuid(), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "whiteboard_id",
            "branch_name",
            name="uq_whiteboard_branch_name",
        ),
    )

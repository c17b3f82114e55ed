"""Whiteboard, element and session models (the live, mutable document)."""
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, JsonType, TimestampMixin, TZDateTime, UUIDv7Mixin, utcnow

if TYPE_CHECKING:
    from models.whiteboard_version import WhiteboardVersion


class Whiteboard(Base, UUIDv7Mixin, TimestampMixin):
    """
    A canvas document: canvas-level metadata plus a set of elements.

    `version` is the document's internal revision counter. It is bumped by
    every state replacement (rollback) so clients can detect stale views.
    """

    __tablename__ = "whiteboards"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    canvas_data: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    created_by: Mapped[UUID] = mapped_column(Uuid(), nullable=False)
    last_modified_by: Mapped[UUID] = mapped_column(Uuid(), nullable=False)

    # Soft delete
    deleted_at: Mapped[datetime | None] = mapped_column(
        TZDateTime(), nullable=True, default=None, index=True,
    )

    elements: Mapped[list["WhiteboardElement"]] = relationship(
        back_populates="whiteboard",
        cascade="all, delete-orphan",
    )
    versions: Mapped[list["WhiteboardVersion"]] = relationship(
        back_populates="whiteboard",
        cascade="all, delete-orphan",
    )


class WhiteboardElement(Base, TimestampMixin):
    """
    A positioned, styled element on a whiteboard.

    The primary key is a surrogate row id: rollback soft-deletes the live
    element rows and re-inserts the target set, so the same `element_id`
    can appear on several (deleted) rows over time.
    """

    __tablename__ = "whiteboard_elements"

    row_id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    element_id: Mapped[str] = mapped_column(String(64), nullable=False)
    whiteboard_id: Mapped[UUID] = mapped_column(
        Uuid(),
        ForeignKey("whiteboards.id", ondelete="CASCADE"),
        nullable=False,
    )
    element_type: Mapped[str] = mapped_column(String(50), nullable=False)
    # Geometry lives here, including position: {"x": ..., "y": ...}
    element_data: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)
    layer_index: Mapped[int] = mapped_column(nullable=False, default=0)
    parent_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    visible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    style_data: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)
    metadata_: Mapped[dict] = mapped_column("metadata", JsonType, nullable=False, default=dict)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    created_by: Mapped[UUID] = mapped_column(Uuid(), nullable=False)
    last_modified_by: Mapped[UUID] = mapped_column(Uuid(), nullable=False)

    deleted_at: Mapped[datetime | None] = mapped_column(
        TZDateTime(), nullable=True, default=None,
    )

    whiteboard: Mapped["Whiteboard"] = relationship(back_populates="elements")

    __table_args__ = (
        # Live element lookup for state capture
        Index("ix_whiteboard_elements_live", "whiteboard_id", "deleted_at"),
        Index("ix_whiteboard_elements_element_id", "whiteboard_id", "element_id"),
    )


class WhiteboardSession(Base, UUIDv7Mixin):
    """A collaborative editing session; only counted by the version engine."""

    __tablename__ = "whiteboard_sessions"

    whiteboard_id: Mapped[UUID] = mapped_column(
        Uuid(),
        ForeignKey("whiteboards.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[UUID] = mapped_column(Uuid(), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    started_at: Mapped[datetime] = mapped_column(TZDateTime(), nullable=False, default=utcnow)
    last_activity_at: Mapped[datetime] = mapped_column(
        TZDateTime(), nullable=False, default=utcnow,
    )
    ended_at: Mapped[datetime | None] = mapped_column(TZDateTime(), nullable=True)

    __table_args__ = (
        Index("ix_whiteboard_sessions_active", "whiteboard_id", "is_active"),
    )

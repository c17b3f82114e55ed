"""SQLAlchemy models."""
from models.base import Base, TimestampMixin, UUIDv7Mixin
from models.whiteboard import Whiteboard, WhiteboardElement, WhiteboardSession
from models.whiteboard_version import (
    WhiteboardVersion,
    WhiteboardVersionBranch,
    WhiteboardVersionDelta,
)
from models.version_operation import WhiteboardVersionComparison, WhiteboardVersionRollback

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDv7Mixin",
    "Whiteboard",
    "WhiteboardElement",
    "WhiteboardSession",
    "WhiteboardVersion",
    "WhiteboardVersionBranch",
    "WhiteboardVersionComparison",
    "WhiteboardVersionDelta",
    "WhiteboardVersionRollback",
]

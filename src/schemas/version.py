"""Pydantic schemas for version, rollback and comparison endpoints."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.version_operation import (
    ComparisonType,
    ConflictResolution,
    RollbackStatus,
    RollbackType,
)
from models.whiteboard_version import DEFAULT_BRANCH, ChangeType, VersionType


def _require_aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        raise ValueError("datetime must include a timezone offset")
    return value


class VersionCreate(BaseModel):
    """Request to record a new version of a whiteboard."""

    change_type: ChangeType = ChangeType.MANUAL
    commit_message: str | None = Field(default=None, max_length=500)
    branch_name: str = Field(default=DEFAULT_BRANCH, min_length=1, max_length=100)
    tags: list[str] = Field(default_factory=list)
    is_milestone: bool = False
    force_snapshot: bool = False
    merge_source_id: UUID | None = None  # Recorded only; never a second parent
    expires_at: datetime | None = None
    state: dict | None = Field(
        default=None,
        description="Document state to record. If omitted, the whiteboard's live state is captured.",
    )

    @field_validator("expires_at")
    @classmethod
    def check_expires_at_aware(cls, value: datetime | None) -> datetime | None:
        """Reject naive datetimes; retention compares against UTC."""
        return _require_aware(value)

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, value: list[str]) -> list[str]:
        """Strip, drop empties and de-duplicate while keeping order."""
        seen: dict[str, None] = {}
        for tag in value:
            tag = tag.strip()
            if tag:
                seen.setdefault(tag, None)
        return list(seen)


class VersionFilter(BaseModel):
    """Filters for version history. Range checks happen in the service before any query."""

    branch_name: str | None = None
    change_types: list[ChangeType] | None = None
    created_by: UUID | None = None
    is_milestone: bool | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None


class VersionResponse(BaseModel):
    """Schema for a single version (payload excluded)."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    whiteboard_id: UUID
    version_number: int
    parent_version_id: UUID | None
    version_type: VersionType
    change_type: ChangeType
    commit_message: str | None
    is_automatic: bool
    branch_name: str
    merge_source_id: UUID | None
    is_milestone: bool
    tags: list[str]
    canvas_hash: str
    elements_hash: str
    element_count: int
    total_changes: int
    elements_added: int
    elements_modified: int
    elements_deleted: int
    data_size: int | None
    compressed_size: int | None
    compression_type: str | None
    creation_time_ms: int | None
    whiteboard_version: int
    metadata: dict = Field(default_factory=dict, validation_alias="metadata_")
    created_by: UUID
    created_at: datetime
    expires_at: datetime | None


class VersionListResponse(BaseModel):
    """Schema for paginated version history."""

    items: list[VersionResponse]
    total: int  # Total count matching the filters (before pagination)
    offset: int
    limit: int
    has_more: bool


class VersionStateResponse(BaseModel):
    """Reconstructed document state at a version."""

    version_id: UUID
    version_number: int
    state: dict
    warnings: list[str] | None = None  # Replacement fallbacks used during replay


class BranchResponse(BaseModel):
    """Schema for a branch pointer."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    branch_name: str
    head_version_id: UUID
    base_version_id: UUID | None
    created_by: UUID
    created_at: datetime
    updated_at: datetime


class RollbackRequest(BaseModel):
    """Request to roll a whiteboard back to an earlier version."""

    target_version_id: UUID
    rollback_type: RollbackType = RollbackType.FULL
    conflict_resolution: ConflictResolution | None = None


class ResolveConflictRequest(BaseModel):
    """Resolution for a rollback waiting in conflict status."""

    resolution: ConflictResolution


class RollbackResponse(BaseModel):
    """Schema for a rollback record."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    whiteboard_id: UUID
    source_version_id: UUID
    target_version_id: UUID
    backup_version_id: UUID | None
    rollback_type: RollbackType
    status: RollbackStatus
    conflict_resolution: ConflictResolution | None
    conflicts_data: list[dict]
    total_operations: int
    completed_operations: int
    user_id: UUID
    error_message: str | None
    processing_time_ms: int | None
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime


class ComparisonRequest(BaseModel):
    """Request to compare two versions of a whiteboard."""

    version_a_id: UUID
    version_b_id: UUID
    comparison_type: ComparisonType = ComparisonType.FULL


class ComparisonResponse(BaseModel):
    """Schema for a (possibly cached) comparison."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    whiteboard_id: UUID
    version_a_id: UUID
    version_b_id: UUID
    comparison_type: ComparisonType
    diff_summary: dict
    detailed_diff: dict
    diff_size: int
    similarity_score: float
    processing_time_ms: int | None
    created_by: UUID
    created_at: datetime
    expires_at: datetime

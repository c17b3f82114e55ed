"""
Add whiteboard and version history tables.

Revision ID: 5c1e9a7d2b40
Revises:
Create Date: 2026-10-19 10:12:44.518203
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "5c1e9a7d2b40"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "whiteboards",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("canvas_data", JSON, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_by", sa.Uuid(), nullable=False),
        sa.Column("last_modified_by", sa.Uuid(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_whiteboards_deleted_at"), "whiteboards", ["deleted_at"])
    op.create_index(op.f("ix_whiteboards_updated_at"), "whiteboards", ["updated_at"])

    op.create_table(
        "whiteboard_elements",
        sa.Column("row_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("element_id", sa.String(length=64), nullable=False),
        sa.Column("whiteboard_id", sa.Uuid(), nullable=False),
        sa.Column("element_type", sa.String(length=50), nullable=False),
        sa.Column("element_data", JSON, nullable=False),
        sa.Column("layer_index", sa.Integer(), nullable=False),
        sa.Column("parent_id", sa.String(length=64), nullable=True),
        sa.Column("locked", sa.Boolean(), nullable=False),
        sa.Column("visible", sa.Boolean(), nullable=False),
        sa.Column("style_data", JSON, nullable=False),
        sa.Column("metadata", JSON, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_by", sa.Uuid(), nullable=False),
        sa.Column("last_modified_by", sa.Uuid(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["whiteboard_id"], ["whiteboards.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("row_id"),
    )
    op.create_index(
        "ix_whiteboard_elements_live", "whiteboard_elements", ["whiteboard_id", "deleted_at"],
    )
    op.create_index(
        "ix_whiteboard_elements_element_id",
        "whiteboard_elements",
        ["whiteboard_id", "element_id"],
    )
    op.create_index(
        op.f("ix_whiteboard_elements_updated_at"), "whiteboard_elements", ["updated_at"],
    )

    op.create_table(
        "whiteboard_sessions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("whiteboard_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["whiteboard_id"], ["whiteboards.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_whiteboard_sessions_active", "whiteboard_sessions", ["whiteboard_id", "is_active"],
    )

    op.create_table(
        "whiteboard_versions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("whiteboard_id", sa.Uuid(), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("parent_version_id", sa.Uuid(), nullable=True),
        sa.Column("version_type", sa.String(length=20), nullable=False),
        sa.Column("change_type", sa.String(length=20), nullable=False),
        sa.Column("commit_message", sa.String(length=500), nullable=True),
        sa.Column("is_automatic", sa.Boolean(), nullable=False),
        sa.Column("branch_name", sa.String(length=100), nullable=False),
        sa.Column("merge_source_id", sa.Uuid(), nullable=True),
        sa.Column("is_milestone", sa.Boolean(), nullable=False),
        sa.Column("tags", JSON, nullable=False),
        sa.Column("snapshot_data", JSON, nullable=True),
        sa.Column("compressed_data", sa.LargeBinary(), nullable=True),
        sa.Column("compression_type", sa.String(length=20), nullable=True),
        sa.Column("data_size", sa.Integer(), nullable=True),
        sa.Column("compressed_size", sa.Integer(), nullable=True),
        sa.Column("canvas_hash", sa.String(length=64), nullable=False),
        sa.Column("elements_hash", sa.String(length=64), nullable=False),
        sa.Column("element_count", sa.Integer(), nullable=False),
        sa.Column("total_changes", sa.Integer(), nullable=False),
        sa.Column("elements_added", sa.Integer(), nullable=False),
        sa.Column("elements_modified", sa.Integer(), nullable=False),
        sa.Column("elements_deleted", sa.Integer(), nullable=False),
        sa.Column("creation_time_ms", sa.Integer(), nullable=True),
        sa.Column("whiteboard_version", sa.Integer(), nullable=False),
        sa.Column("metadata", JSON, nullable=False),
        sa.Column("created_by", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["whiteboard_id"], ["whiteboards.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["parent_version_id"], ["whiteboard_versions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "whiteboard_id", "version_number", name="uq_whiteboard_version_number",
        ),
    )
    op.create_index("ix_whiteboard_versions_parent", "whiteboard_versions", ["parent_version_id"])
    op.create_index(
        "ix_whiteboard_versions_branch", "whiteboard_versions", ["whiteboard_id", "branch_name"],
    )
    op.create_index(
        "ix_whiteboard_versions_created", "whiteboard_versions", ["whiteboard_id", "created_at"],
    )
    op.create_index("ix_whiteboard_versions_expires", "whiteboard_versions", ["expires_at"])

    op.create_table(
        "whiteboard_version_deltas",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("version_id", sa.Uuid(), nullable=False),
        sa.Column("operation_type", sa.String(length=20), nullable=False),
        sa.Column("element_id", sa.String(length=64), nullable=True),
        sa.Column("operation_order", sa.Integer(), nullable=False),
        sa.Column("old_data", JSON, nullable=True),
        sa.Column("new_data", JSON, nullable=True),
        sa.Column("patch", JSON, nullable=False),
        sa.Column("operation_metadata", JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["version_id"], ["whiteboard_versions.id"], ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("version_id", "operation_order", name="uq_version_delta_order"),
    )
    op.create_index(
        "ix_whiteboard_version_deltas_element", "whiteboard_version_deltas", ["element_id"],
    )

    op.create_table(
        "whiteboard_version_branches",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("whiteboard_id", sa.Uuid(), nullable=False),
        sa.Column("branch_name", sa.String(length=100), nullable=False),
        sa.Column("head_version_id", sa.Uuid(), nullable=False),
        sa.Column("base_version_id", sa.Uuid(), nullable=True),
        sa.Column("created_by", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["whiteboard_id"], ["whiteboards.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["head_version_id"], ["whiteboard_versions.id"]),
        sa.ForeignKeyConstraint(["base_version_id"], ["whiteboard_versions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("whiteboard_id", "branch_name", name="uq_whiteboard_branch_name"),
    )
    op.create_index(
        op.f("ix_whiteboard_version_branches_updated_at"),
        "whiteboard_version_branches",
        ["updated_at"],
    )

    op.create_table(
        "whiteboard_version_rollbacks",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("whiteboard_id", sa.Uuid(), nullable=False),
        sa.Column("source_version_id", sa.Uuid(), nullable=False),
        sa.Column("target_version_id", sa.Uuid(), nullable=False),
        sa.Column("backup_version_id", sa.Uuid(), nullable=True),
        sa.Column("rollback_type", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("conflict_resolution", sa.String(length=20), nullable=True),
        sa.Column("conflicts_data", JSON, nullable=False),
        sa.Column("total_operations", sa.Integer(), nullable=False),
        sa.Column("completed_operations", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("processing_time_ms", sa.Integer(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["whiteboard_id"], ["whiteboards.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["source_version_id"], ["whiteboard_versions.id"]),
        sa.ForeignKeyConstraint(["target_version_id"], ["whiteboard_versions.id"]),
        sa.ForeignKeyConstraint(["backup_version_id"], ["whiteboard_versions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_whiteboard_rollbacks_status",
        "whiteboard_version_rollbacks",
        ["whiteboard_id", "status"],
    )
    op.create_index(
        "ix_whiteboard_rollbacks_target", "whiteboard_version_rollbacks", ["target_version_id"],
    )

    op.create_table(
        "whiteboard_version_comparisons",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("whiteboard_id", sa.Uuid(), nullable=False),
        sa.Column("version_a_id", sa.Uuid(), nullable=False),
        sa.Column("version_b_id", sa.Uuid(), nullable=False),
        sa.Column("comparison_type", sa.String(length=20), nullable=False),
        sa.Column("diff_summary", JSON, nullable=False),
        sa.Column("detailed_diff", JSON, nullable=False),
        sa.Column("diff_size", sa.Integer(), nullable=False),
        sa.Column("similarity_score", sa.Float(), nullable=False),
        sa.Column("processing_time_ms", sa.Integer(), nullable=True),
        sa.Column("created_by", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["whiteboard_id"], ["whiteboards.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["version_a_id"], ["whiteboard_versions.id"], ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["version_b_id"], ["whiteboard_versions.id"], ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "version_a_id", "version_b_id", "comparison_type", name="uq_version_comparison",
        ),
    )
    op.create_index(
        "ix_whiteboard_comparisons_expires", "whiteboard_version_comparisons", ["expires_at"],
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_whiteboard_comparisons_expires", table_name="whiteboard_version_comparisons")
    op.drop_table("whiteboard_version_comparisons")
    op.drop_index("ix_whiteboard_rollbacks_target", table_name="whiteboard_version_rollbacks")
    op.drop_index("ix_whiteboard_rollbacks_status", table_name="whiteboard_version_rollbacks")
    op.drop_table("whiteboard_version_rollbacks")
    op.drop_index(
        op.f("ix_whiteboard_version_branches_updated_at"),
        table_name="whiteboard_version_branches",
    )
    op.drop_table("whiteboard_version_branches")
    op.drop_index(
        "ix_whiteboard_version_deltas_element", table_name="whiteboard_version_deltas",
    )
    op.drop_table("whiteboard_version_deltas")
    op.drop_index("ix_whiteboard_versions_expires", table_name="whiteboard_versions")
    op.drop_index("ix_whiteboard_versions_created", table_name="whiteboard_versions")
    op.drop_index("ix_whiteboard_versions_branch", table_name="whiteboard_versions")
    op.drop_index("ix_whiteboard_versions_parent", table_name="whiteboard_versions")
    op.drop_table("whiteboard_versions")
    op.drop_index("ix_whiteboard_sessions_active", table_name="whiteboard_sessions")
    op.drop_table("whiteboard_sessions")
    op.drop_index(op.f("ix_whiteboard_elements_updated_at"), table_name="whiteboard_elements")
    op.drop_index("ix_whiteboard_elements_element_id", table_name="whiteboard_elements")
    op.drop_index("ix_whiteboard_elements_live", table_name="whiteboard_elements")
    op.drop_table("whiteboard_elements")
    op.drop_index(op.f("ix_whiteboards_updated_at"), table_name="whiteboards")
    op.drop_index(op.f("ix_whiteboards_deleted_at"), table_name="whiteboards")
    op.drop_table("whiteboards")

"""
Scheduled cleanup task.

This module provides time-based cleanup of expired versions and cached
comparisons. Designed to run as a cron job (e.g., daily at 3 AM).

Usage:
    python -m tasks.cleanup

The task:
1. Deletes versions past their expires_at that nothing depends on
2. Deletes cached comparisons past their expires_at
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from db.session import async_session_factory
from models.version_operation import WhiteboardVersionComparison, WhiteboardVersionRollback
from models.whiteboard_version import (
    WhiteboardVersion,
    WhiteboardVersionBranch,
    WhiteboardVersionDelta,
)

logger = logging.getLogger(__name__)


@dataclass
class CleanupStats:
    """Statistics from a cleanup run."""

    expired_versions_deleted: int = 0
    expired_comparisons_deleted: int = 0
    protected_versions_kept: int = 0  # Expired but still needed by another record

    def to_dict(self) -> dict[str, int]:
        """Convert to simple dict for logging/return."""
        return {
            "expired_versions_deleted": self.expired_versions_deleted,
            "expired_comparisons_deleted": self.expired_comparisons_deleted,
            "protected_versions_kept": self.protected_versions_kept,
        }


def _deletable_expired_versions(now: datetime):  # noqa: ANN202
    """
    Select expired versions that no other record depends on.

    A version is kept while it is another version's parent (its descendants
    must stay reconstructible), a branch head or fork base, or referenced by
    a rollback record.
    """
    child = aliased(WhiteboardVersion)
    has_child = select(child.id).where(child.parent_version_id == WhiteboardVersion.id).exists()
    is_branch_pointer = (
        select(WhiteboardVersionBranch.id)
        .where(
            or_(
                WhiteboardVersionBranch.head_version_id == WhiteboardVersion.id,
                WhiteboardVersionBranch.base_version_id == WhiteboardVersion.id,
            ),
        )
        .exists()
    )
    in_rollback = (
        select(WhiteboardVersionRollback.id)
        .where(
            or_(
                WhiteboardVersionRollback.source_version_id == WhiteboardVersion.id,
                WhiteboardVersionRollback.target_version_id == WhiteboardVersion.id,
                WhiteboardVersionRollback.backup_version_id == WhiteboardVersion.id,
            ),
        )
        .exists()
    )
    return select(WhiteboardVersion.id).where(
        WhiteboardVersion.expires_at.is_not(None),
        WhiteboardVersion.expires_at <= now,
        ~has_child,
        ~is_branch_pointer,
        ~in_rollback,
    )


async def _delete_versions(db: AsyncSession, version_ids: list[UUID]) -> None:
    """Delete versions with their deltas and cached comparisons (application-level cascade)."""
    await db.execute(
        delete(WhiteboardVersionComparison).where(
            or_(
                WhiteboardVersionComparison.version_a_id.in_(version_ids),
                WhiteboardVersionComparison.version_b_id.in_(version_ids),
            ),
        ),
    )
    await db.execute(
        delete(WhiteboardVersionDelta).where(WhiteboardVersionDelta.version_id.in_(version_ids)),
    )
    await db.execute(delete(WhiteboardVersion).where(WhiteboardVersion.id.in_(version_ids)))


async def cleanup_expired_versions(
    db: AsyncSession,
    now: datetime | None = None,
) -> CleanupStats:
    """
    Delete versions whose expires_at has passed and that nothing depends on.

    Deleting a leaf can free its parent, so selection repeats until no
    further version qualifies.

    Args:
        db: Database session.
        now: Current time for the expiry check. Defaults to datetime.now(UTC).
             Inject a specific time for testing boundary conditions.

    Returns:
        CleanupStats with expired_versions_deleted and protected_versions_kept.
    """
    if now is None:
        now = datetime.now(UTC)

    stats = CleanupStats()

    while True:
        result = await db.execute(_deletable_expired_versions(now))
        version_ids = list(result.scalars().all())
        if not version_ids:
            break
        await _delete_versions(db, version_ids)
        stats.expired_versions_deleted += len(version_ids)

    remaining = await db.execute(
        select(WhiteboardVersion.id).where(
            WhiteboardVersion.expires_at.is_not(None),
            WhiteboardVersion.expires_at <= now,
        ),
    )
    stats.protected_versions_kept = len(remaining.scalars().all())

    if stats.expired_versions_deleted > 0:
        logger.info(
            "Deleted %d expired versions (%d expired versions kept as dependencies)",
            stats.expired_versions_deleted,
            stats.protected_versions_kept,
        )

    await db.commit()
    return stats


async def cleanup_expired_comparisons(
    db: AsyncSession,
    now: datetime | None = None,
) -> CleanupStats:
    """
    Delete cached comparisons whose expires_at has passed.

    Args:
        db: Database session.
        now: Current time for the expiry check. Defaults to datetime.now(UTC).

    Returns:
        CleanupStats with expired_comparisons_deleted.
    """
    if now is None:
        now = datetime.now(UTC)

    stats = CleanupStats()
    result = await db.execute(
        delete(WhiteboardVersionComparison).where(WhiteboardVersionComparison.expires_at <= now),
    )
    stats.expired_comparisons_deleted = result.rowcount

    if stats.expired_comparisons_deleted > 0:
        logger.info(
            "Deleted %d expired comparisons (cutoff=%s)",
            stats.expired_comparisons_deleted,
            now.isoformat(),
        )

    await db.commit()
    return stats


async def run_cleanup(
    db: AsyncSession | None = None,
    now: datetime | None = None,
) -> CleanupStats:
    """
    Run all cleanup tasks.

    Args:
        db: Database session. If None, creates one from async_session_factory.
        now: Current time for the expiry check. Defaults to datetime.now(UTC).

    Returns:
        Combined CleanupStats from all cleanup operations.
    """
    logger.info("Starting cleanup task")

    async def _run(session: AsyncSession) -> CleanupStats:
        # Versions first: deleting them also removes comparisons that reference them
        version_stats = await cleanup_expired_versions(session, now=now)
        comparison_stats = await cleanup_expired_comparisons(session, now=now)

        return CleanupStats(
            expired_versions_deleted=version_stats.expired_versions_deleted,
            expired_comparisons_deleted=comparison_stats.expired_comparisons_deleted,
            protected_versions_kept=version_stats.protected_versions_kept,
        )

    if db is not None:
        stats = await _run(db)
    else:
        async with async_session_factory() as session:
            stats = await _run(session)

    logger.info("Cleanup complete: %s", stats.to_dict())
    return stats


def main() -> None:
    """Entry point for running cleanup as a script."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(run_cleanup())


if __name__ == "__main__":
    main()

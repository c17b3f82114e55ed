"""
Rollback of a whiteboard to an earlier version.

State machine:
    PENDING -> PROCESSING -> {CONFLICT | COMPLETED | FAILED | CANCELLED}
    CONFLICT -> {COMPLETED | CANCELLED} via resolve_conflict()

Every rollback first records a forced-snapshot backup of the live state, so
a rollback is itself always recoverable. The state replacement runs in one
savepoint: either canvas and elements are both replaced, or neither is.
"""
import asyncio
import logging
import time
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from core.config import get_settings
from core.request_context import RequestContext, RequestSource
from db.unit_of_work import UnitOfWork
from models.base import utcnow
from models.version_operation import (
    ConflictResolution,
    RollbackStatus,
    RollbackType,
    WhiteboardVersionRollback,
)
from models.whiteboard import Whiteboard
from models.whiteboard_version import ChangeType, WhiteboardVersion
from schemas.version import RollbackRequest, VersionCreate
from services.delta_codec import CANVAS_KEY, ELEMENTS_KEY, content_hash, create_delta
from services.exceptions import (
    InvalidStateError,
    OperationTimeoutError,
    RollbackNotFoundError,
    TransactionFailedError,
    VersionNotFoundError,
)
from services.reconstructor import Reconstructor, reconstructor
from services.version_service import VersionService, version_service
from services.whiteboard_service import WhiteboardService, whiteboard_service

logger = logging.getLogger(__name__)

# More active sessions than this means someone else may be editing
MAX_UNCONFLICTED_SESSIONS = 1


def detect_conflicts(active_sessions: int) -> list[dict]:
    """
    Coarse conflict signal: other collaborators are connected.

    This is not field-level conflict detection; it only warns that a
    rollback may discard work someone else is doing right now.
    """
    if active_sessions <= MAX_UNCONFLICTED_SESSIONS:
        return []
    return [{
        "type": "active_sessions",
        "description": (
            f"{active_sessions} active sessions on this whiteboard; "
            "rolling back may discard other collaborators' changes"
        ),
        "severity": "warning",
    }]


class RollbackService:
    """Coordinates backup, conflict detection and atomic state replacement."""

    def __init__(
        self,
        provider: WhiteboardService | None = None,
        versions: VersionService | None = None,
        state_reconstructor: Reconstructor | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self.provider = provider or whiteboard_service
        self.versions = versions or version_service
        self.reconstructor = state_reconstructor or reconstructor
        self.timeout_seconds = timeout_seconds or get_settings().rollback_timeout_seconds

    async def rollback_to_version(
        self,
        uow: UnitOfWork,
        whiteboard_id: UUID,
        user_id: UUID,
        request: RollbackRequest,
    ) -> WhiteboardVersionRollback:
        """
        Roll a whiteboard back to the state recorded by a target version.

        A rollback that meets unresolved conflicts is returned in CONFLICT
        status rather than raised; the caller resolves it explicitly.

        Args:
            uow: Unit of work.
            whiteboard_id: Whiteboard to roll back.
            user_id: User performing the rollback.
            request: Target version, rollback type and optional conflict resolution.

        Returns:
            The rollback record in COMPLETED, CONFLICT or CANCELLED status.

        Raises:
            WhiteboardNotFoundError: If the whiteboard doesn't exist.
            VersionNotFoundError: If the target (or any current version) is missing.
            TransactionFailedError: If the state replacement failed. The rollback
                is persisted as FAILED and the whiteboard is unchanged.
            OperationTimeoutError: If the replacement exceeded its time bound.
        """
        start = time.perf_counter()
        whiteboard = await self.provider.get_whiteboard(uow, whiteboard_id, for_update=True)
        target = await self.versions.get_version(uow, whiteboard_id, request.target_version_id)
        source = await self.versions.get_latest_version(uow, whiteboard_id)
        if source is None:
            # Target exists, so the whiteboard has versions; this is unreachable in practice
            raise VersionNotFoundError(request.target_version_id)

        rollback = WhiteboardVersionRollback(
            whiteboard_id=whiteboard_id,
            source_version_id=source.id,
            target_version_id=target.id,
            rollback_type=request.rollback_type.value,
            status=RollbackStatus.PENDING.value,
            conflict_resolution=(
                request.conflict_resolution.value if request.conflict_resolution else None
            ),
            user_id=user_id,
        )
        await uow.write(rollback)

        rollback.status = RollbackStatus.PROCESSING.value
        rollback.started_at = utcnow()
        await uow.write(rollback)

        source_state = await self.provider.get_current_state(uow, whiteboard_id)
        target_state = (await self.reconstructor.reconstruct(uow, target.id, whiteboard_id)).state
        rollback.total_operations = len(create_delta(source_state, target_state))

        backup = await self._backup(
            uow, whiteboard_id, user_id, target, source.branch_name, source_state,
        )
        rollback.backup_version_id = backup.id

        conflicts = detect_conflicts(await self.provider.count_active_sessions(uow, whiteboard_id))
        rollback.conflicts_data = conflicts
        await uow.write(rollback)

        if conflicts:
            logger.warning(
                "Rollback %s of whiteboard %s detected %d conflicts",
                rollback.id,
                whiteboard_id,
                len(conflicts),
            )
            resolution = request.conflict_resolution
            if resolution == ConflictResolution.CANCEL:
                return await self._finish(uow, rollback, RollbackStatus.CANCELLED, start)
            if resolution is None or resolution == ConflictResolution.MANUAL:
                rollback.status = RollbackStatus.CONFLICT.value
                rollback.processing_time_ms = _elapsed_ms(start)
                await uow.write(rollback)
                return rollback

        await self._replace_state(
            uow, rollback, whiteboard, target_state, user_id, request.rollback_type, start,
        )
        logger.info(
            "Rolled back whiteboard %s from version %d to version %d (%s, %d operations)",
            whiteboard_id,
            source.version_number,
            target.version_number,
            request.rollback_type,
            rollback.total_operations,
        )
        return rollback

    async def resolve_conflict(
        self,
        uow: UnitOfWork,
        whiteboard_id: UUID,
        rollback_id: UUID,
        user_id: UUID,
        resolution: ConflictResolution,
    ) -> WhiteboardVersionRollback:
        """
        Resolve a rollback waiting in CONFLICT status.

        FORCE_OVERWRITE applies the rollback, CANCEL cancels it and MANUAL
        leaves it in CONFLICT. Collaborators may have kept editing while the
        rollback waited, so FORCE_OVERWRITE backs up the live state again
        when it no longer matches the original backup.

        Raises:
            RollbackNotFoundError: If the rollback doesn't exist.
            InvalidStateError: If the rollback is not in CONFLICT status.
            TransactionFailedError: If the forced replacement failed.
            OperationTimeoutError: If the forced replacement timed out.
        """
        start = time.perf_counter()
        rollback = await self.get_rollback(uow, whiteboard_id, rollback_id)
        if rollback.status != RollbackStatus.CONFLICT:
            raise InvalidStateError(
                f"Rollback {rollback_id} is {rollback.status}, not awaiting conflict resolution",
            )

        rollback.conflict_resolution = resolution.value
        if resolution == ConflictResolution.MANUAL:
            await uow.write(rollback)
            return rollback
        if resolution == ConflictResolution.CANCEL:
            return await self._finish(uow, rollback, RollbackStatus.CANCELLED, start)

        whiteboard = await self.provider.get_whiteboard(uow, whiteboard_id, for_update=True)
        target = await self.versions.get_version(uow, whiteboard_id, rollback.target_version_id)
        live_state = await self.provider.get_current_state(uow, whiteboard_id)
        target_state = (await self.reconstructor.reconstruct(uow, target.id, whiteboard_id)).state

        backup = None
        if rollback.backup_version_id is not None:
            backup = await self.versions.get_version(uow, whiteboard_id, rollback.backup_version_id)
        if backup is None or not _matches(backup, live_state):
            latest = await self.versions.get_latest_version(uow, whiteboard_id)
            backup = await self._backup(
                uow,
                whiteboard_id,
                user_id,
                target,
                latest.branch_name if latest is not None else target.branch_name,
                live_state,
            )
            logger.info(
                "Rollback %s: live state changed while in conflict, backed up as version %d",
                rollback_id,
                backup.version_number,
            )
        rollback.backup_version_id = backup.id
        rollback.total_operations = len(create_delta(live_state, target_state))

        await self._replace_state(
            uow,
            rollback,
            whiteboard,
            target_state,
            user_id,
            RollbackType(rollback.rollback_type),
            start,
        )
        logger.info(
            "Rollback %s of whiteboard %s force-applied after conflict",
            rollback_id,
            whiteboard_id,
        )
        return rollback

    async def get_rollback(
        self,
        uow: UnitOfWork,
        whiteboard_id: UUID,
        rollback_id: UUID,
    ) -> WhiteboardVersionRollback:
        """
        Get a rollback record.

        Raises:
            RollbackNotFoundError: If missing or belonging to another whiteboard.
        """
        result = await uow.read(
            select(WhiteboardVersionRollback).where(
                WhiteboardVersionRollback.id == rollback_id,
                WhiteboardVersionRollback.whiteboard_id == whiteboard_id,
            ),
        )
        rollback = result.scalar_one_or_none()
        if rollback is None:
            raise RollbackNotFoundError(rollback_id)
        return rollback

    async def _replace_state(
        self,
        uow: UnitOfWork,
        rollback: WhiteboardVersionRollback,
        whiteboard: Whiteboard,
        target_state: dict,
        user_id: UUID,
        rollback_type: RollbackType,
        start: float,
    ) -> None:
        """
        Replace the whiteboard's state inside a savepoint, bounded by the timeout.

        On failure the savepoint is rolled back, the rollback is marked FAILED
        and the unit of work is committed so the record and backup persist.
        """
        try:
            async with asyncio.timeout(self.timeout_seconds):
                async with uow.atomic():
                    await self.provider.replace_state(
                        uow,
                        whiteboard,
                        target_state,
                        user_id,
                        replace_canvas=rollback_type == RollbackType.FULL,
                    )
        except TimeoutError as e:
            await self._fail(uow, rollback, f"timed out after {self.timeout_seconds:g}s", start)
            raise OperationTimeoutError("rollback", self.timeout_seconds) from e
        except (SQLAlchemyError, ValueError, KeyError) as e:
            await self._fail(uow, rollback, str(e), start)
            raise TransactionFailedError(rollback.id, str(e)) from e

        rollback.completed_operations = rollback.total_operations
        await self._finish(uow, rollback, RollbackStatus.COMPLETED, start)

    async def _backup(
        self,
        uow: UnitOfWork,
        whiteboard_id: UUID,
        user_id: UUID,
        target: WhiteboardVersion,
        branch_name: str,
        state: dict,
    ) -> WhiteboardVersion:
        """Record a forced-snapshot ROLLBACK version of `state`."""
        return await self.versions.create_version(
            uow,
            whiteboard_id,
            user_id,
            VersionCreate(
                change_type=ChangeType.ROLLBACK,
                commit_message=f"Backup before rollback to version {target.version_number}",
                branch_name=branch_name,
                force_snapshot=True,
            ),
            state=state,
            context=RequestContext(user_id=user_id, source=RequestSource.SYSTEM),
            is_automatic=True,
        )

    async def _finish(
        self,
        uow: UnitOfWork,
        rollback: WhiteboardVersionRollback,
        status: RollbackStatus,
        start: float,
    ) -> WhiteboardVersionRollback:
        rollback.status = status.value
        rollback.processing_time_ms = _elapsed_ms(start)
        rollback.completed_at = utcnow()
        await uow.write(rollback)
        return rollback

    async def _fail(
        self,
        uow: UnitOfWork,
        rollback: WhiteboardVersionRollback,
        reason: str,
        start: float,
    ) -> None:
        logger.error("Rollback %s failed: %s", rollback.id, reason)
        rollback.error_message = reason
        await self._finish(uow, rollback, RollbackStatus.FAILED, start)
        await uow.commit()


def _matches(version: WhiteboardVersion, state: dict) -> bool:
    """True if `version` recorded exactly `state`."""
    return (
        version.canvas_hash == content_hash(state[CANVAS_KEY])
        and version.elements_hash == content_hash(state[ELEMENTS_KEY])
    )


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


# Singleton instance for use throughout the application
rollback_service = RollbackService()

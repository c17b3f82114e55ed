"""Rebuilds the document state recorded by any version."""
import asyncio
import copy
import logging
import zlib
from collections import defaultdict
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import select

from core.config import get_settings
from db.unit_of_work import UnitOfWork
from models.whiteboard_version import VersionType, WhiteboardVersion, WhiteboardVersionDelta
from services.delta_codec import DeltaOperation, apply_delta_chain
from services.exceptions import (
    CorruptHistoryError,
    CyclicHistoryError,
    HistoryDepthExceededError,
    OperationTimeoutError,
    PatchApplicationFailedError,
    VersionNotFoundError,
)
from services.snapshot_policy import decode_snapshot

logger = logging.getLogger(__name__)


@dataclass
class ReconstructionResult:
    """Result of reconstructing a version's state."""

    state: dict
    chain_length: int  # Versions visited, including the anchoring snapshot
    warnings: list[str] = field(default_factory=list)  # Patch fallbacks during replay


class Reconstructor:
    """
    Walks parent pointers from a version back to its nearest snapshot and
    replays the intervening deltas oldest first.

    The walk is iterative: a version seen twice fails with CyclicHistoryError
    and a chain longer than max_depth fails with HistoryDepthExceededError.
    Reconstruction is read-only and safe to run concurrently.
    """

    def __init__(
        self,
        max_depth: int | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        settings = get_settings()
        self.max_depth = max_depth or settings.max_reconstruction_depth
        self.timeout_seconds = timeout_seconds or settings.reconstruction_timeout_seconds

    async def reconstruct(
        self,
        uow: UnitOfWork,
        version_id: UUID,
        whiteboard_id: UUID | None = None,
    ) -> ReconstructionResult:
        """
        Reconstruct the state recorded by a version.

        Args:
            uow: Unit of work to read through.
            version_id: Version to reconstruct.
            whiteboard_id: If given, the version must belong to this whiteboard.

        Returns:
            ReconstructionResult with the state and any replay warnings.

        Raises:
            VersionNotFoundError: If the version doesn't exist (or belongs elsewhere).
            CorruptHistoryError: If the chain is missing required data.
            HistoryDepthExceededError: If the chain exceeds max_depth.
            CyclicHistoryError: If a version is its own ancestor.
            PatchApplicationFailedError: If a delta in the chain cannot be replayed;
                names the failing version.
            OperationTimeoutError: If reconstruction exceeds timeout_seconds.
        """
        try:
            async with asyncio.timeout(self.timeout_seconds):
                return await self._reconstruct(uow, version_id, whiteboard_id)
        except TimeoutError as e:
            logger.error(
                "Reconstruction of version %s timed out after %ss",
                version_id,
                self.timeout_seconds,
            )
            raise OperationTimeoutError("reconstruction", self.timeout_seconds) from e

    async def _reconstruct(
        self,
        uow: UnitOfWork,
        version_id: UUID,
        whiteboard_id: UUID | None,
    ) -> ReconstructionResult:
        target = await self._load_version(uow, version_id)
        if target is None or (whiteboard_id is not None and target.whiteboard_id != whiteboard_id):
            raise VersionNotFoundError(version_id)

        chain = await self._collect_chain(uow, target)
        anchor = chain[-1]
        state = self._snapshot_state(anchor)

        delta_versions = list(reversed(chain[:-1]))  # Oldest first
        operations = await self._load_operations(uow, [v.id for v in delta_versions])

        warnings: list[str] = []
        for version in delta_versions:
            try:
                result = apply_delta_chain(state, operations.get(version.id, []))
            except PatchApplicationFailedError as e:
                raise PatchApplicationFailedError(
                    e.operation_type,
                    e.element_id,
                    e.reason,
                    version_id=version.id,
                    version_number=version.version_number,
                ) from e
            warnings.extend(f"v{version.version_number}: {w}" for w in result.warnings)
            state = result.state

        if warnings:
            logger.warning(
                "Reconstruction of version %s used %d replacement fallbacks",
                version_id,
                len(warnings),
            )
        return ReconstructionResult(state=state, chain_length=len(chain), warnings=warnings)

    async def _collect_chain(
        self,
        uow: UnitOfWork,
        target: WhiteboardVersion,
    ) -> list[WhiteboardVersion]:
        """Return [target, parent, ..., nearest snapshot]."""
        chain: list[WhiteboardVersion] = []
        visited: set[UUID] = set()
        current = target

        while True:
            if current.id in visited:
                raise CyclicHistoryError(current.id)
            visited.add(current.id)
            chain.append(current)
            if len(chain) > self.max_depth:
                raise HistoryDepthExceededError(target.id, self.max_depth)

            if current.version_type == VersionType.SNAPSHOT:
                return chain
            if current.version_type != VersionType.DELTA:
                raise CorruptHistoryError(
                    current.id, f"unknown version type {current.version_type!r}",
                )
            if current.parent_version_id is None:
                raise CorruptHistoryError(current.id, "delta version has no parent")

            parent = await self._load_version(uow, current.parent_version_id)
            if parent is None:
                raise CorruptHistoryError(
                    current.id, f"parent version {current.parent_version_id} is missing",
                )
            current = parent

    @staticmethod
    def _snapshot_state(version: WhiteboardVersion) -> dict:
        try:
            state = decode_snapshot(
                version.snapshot_data,
                version.compressed_data,
                version.compression_type,
            )
        except (ValueError, OSError, EOFError, zlib.error) as e:
            raise CorruptHistoryError(version.id, f"unreadable snapshot payload: {e}") from e
        if state is None:
            raise CorruptHistoryError(version.id, "snapshot version has no payload")
        return copy.deepcopy(state)

    @staticmethod
    async def _load_version(uow: UnitOfWork, version_id: UUID) -> WhiteboardVersion | None:
        result = await uow.read(
            select(WhiteboardVersion).where(WhiteboardVersion.id == version_id),
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _load_operations(
        uow: UnitOfWork,
        version_ids: list[UUID],
    ) -> dict[UUID, list[DeltaOperation]]:
        """Load delta operations for several versions in one query."""
        if not version_ids:
            return {}
        result = await uow.read(
            select(WhiteboardVersionDelta)
            .where(WhiteboardVersionDelta.version_id.in_(version_ids))
            .order_by(WhiteboardVersionDelta.operation_order),
        )
        operations: dict[UUID, list[DeltaOperation]] = defaultdict(list)
        for row in result.scalars().all():
            operations[row.version_id].append(DeltaOperation.from_record(row))
        return operations


# Singleton instance for use throughout the application
reconstructor = Reconstructor()

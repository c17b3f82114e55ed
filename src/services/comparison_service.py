"""Element-level comparison of two versions, cached for a limited time."""
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from core.config import get_settings
from db.unit_of_work import UnitOfWork
from models.base import utcnow
from models.version_operation import ComparisonType, WhiteboardVersionComparison
from schemas.version import ComparisonRequest
from services.delta_codec import CANVAS_KEY, ELEMENTS_KEY, canonical_json
from services.reconstructor import Reconstructor, reconstructor
from services.version_service import VersionService, version_service

logger = logging.getLogger(__name__)


@dataclass
class StateDiff:
    """Differences between two document states (A -> B)."""

    canvas_changed: bool = False
    added: list[str] = field(default_factory=list)  # Element ids only in B
    removed: list[str] = field(default_factory=list)  # Element ids only in A
    modified: list[str] = field(default_factory=list)  # In both, content differs
    changed_fields: dict[str, list[str]] = field(default_factory=dict)  # id -> field names
    similarity_score: float = 1.0

    def summary(self) -> dict:
        """Counts suitable for a compact diff summary."""
        return {
            "canvas_changed": self.canvas_changed,
            "added": len(self.added),
            "removed": len(self.removed),
            "modified": len(self.modified),
            "total_changes": (
                len(self.added) + len(self.removed) + len(self.modified) + int(self.canvas_changed)
            ),
        }

    def details(self) -> dict:
        """Element ids and changed field names."""
        return {
            "added": self.added,
            "removed": self.removed,
            "modified": self.modified,
            "changed_fields": self.changed_fields,
        }


def similarity(ids_a: set[str], ids_b: set[str]) -> float:
    """
    Jaccard index of two element-id sets.

    1.0 when both are empty; 0.0 when exactly one is empty.
    """
    if not ids_a and not ids_b:
        return 1.0
    union = ids_a | ids_b
    return len(ids_a & ids_b) / len(union)


def diff_states(
    state_a: dict,
    state_b: dict,
    comparison_type: ComparisonType = ComparisonType.FULL,
) -> StateDiff:
    """
    Compare two document states.

    CANVAS_ONLY skips the element sets; ELEMENTS_ONLY ignores canvas metadata.
    """
    diff = StateDiff()

    if comparison_type != ComparisonType.ELEMENTS_ONLY:
        diff.canvas_changed = canonical_json(state_a.get(CANVAS_KEY) or {}) != canonical_json(
            state_b.get(CANVAS_KEY) or {},
        )
    if comparison_type == ComparisonType.CANVAS_ONLY:
        return diff

    elements_a = state_a.get(ELEMENTS_KEY) or {}
    elements_b = state_b.get(ELEMENTS_KEY) or {}
    ids_a, ids_b = set(elements_a), set(elements_b)

    diff.added = sorted(ids_b - ids_a)
    diff.removed = sorted(ids_a - ids_b)
    for element_id in sorted(ids_a & ids_b):
        old, new = elements_a[element_id], elements_b[element_id]
        if canonical_json(old) == canonical_json(new):
            continue
        diff.modified.append(element_id)
        diff.changed_fields[element_id] = sorted(
            key for key in old.keys() | new.keys()
            if canonical_json(old.get(key)) != canonical_json(new.get(key))
        )
    diff.similarity_score = similarity(ids_a, ids_b)
    return diff


class ComparisonService:
    """Compares versions, caching results per (version A, version B, type)."""

    def __init__(
        self,
        versions: VersionService | None = None,
        state_reconstructor: Reconstructor | None = None,
        ttl_hours: int | None = None,
    ) -> None:
        self.versions = versions or version_service
        self.reconstructor = state_reconstructor or reconstructor
        self.ttl = timedelta(hours=ttl_hours or get_settings().comparison_cache_ttl_hours)

    async def compare_versions(
        self,
        uow: UnitOfWork,
        whiteboard_id: UUID,
        user_id: UUID,
        request: ComparisonRequest,
    ) -> WhiteboardVersionComparison:
        """
        Compare two versions of a whiteboard.

        An unexpired cached comparison is returned as-is. Otherwise both
        states are reconstructed, diffed and the result cached. The cache is
        advisory: a concurrent writer caching the same key first is not an
        error.

        Raises:
            VersionNotFoundError: If either version is missing.
            CorruptHistoryError: If either version chain is broken.
        """
        start = time.perf_counter()
        version_a = await self.versions.get_version(uow, whiteboard_id, request.version_a_id)
        version_b = await self.versions.get_version(uow, whiteboard_id, request.version_b_id)
        comparison_type = request.comparison_type

        now = utcnow()
        cached = await self._get_cached(uow, version_a.id, version_b.id, comparison_type)
        if cached is not None:
            if cached.expires_at > now:
                logger.debug("Comparison cache hit for %s -> %s", version_a.id, version_b.id)
                return cached
            await uow.write(
                delete(WhiteboardVersionComparison).where(
                    WhiteboardVersionComparison.id == cached.id,
                ),
            )

        state_a = (await self.reconstructor.reconstruct(uow, version_a.id, whiteboard_id)).state
        state_b = (await self.reconstructor.reconstruct(uow, version_b.id, whiteboard_id)).state
        diff = diff_states(state_a, state_b, comparison_type)
        detailed = diff.details()

        comparison = WhiteboardVersionComparison(
            whiteboard_id=whiteboard_id,
            version_a_id=version_a.id,
            version_b_id=version_b.id,
            comparison_type=comparison_type.value,
            diff_summary=diff.summary(),
            detailed_diff=detailed,
            diff_size=len(canonical_json(detailed)),
            similarity_score=diff.similarity_score,
            processing_time_ms=int((time.perf_counter() - start) * 1000),
            created_by=user_id,
            expires_at=now + self.ttl,
        )

        try:
            async with uow.atomic():
                await uow.write(comparison)
        except IntegrityError:
            logger.warning(
                "Comparison %s -> %s (%s) cached concurrently; using existing entry",
                version_a.id,
                version_b.id,
                comparison_type,
            )
            existing = await self._get_cached(uow, version_a.id, version_b.id, comparison_type)
            if existing is not None:
                return existing
            raise

        logger.info(
            "Compared versions %d and %d of whiteboard %s: similarity %.3f",
            version_a.version_number,
            version_b.version_number,
            whiteboard_id,
            comparison.similarity_score,
        )
        return comparison

    @staticmethod
    async def _get_cached(
        uow: UnitOfWork,
        version_a_id: UUID,
        version_b_id: UUID,
        comparison_type: ComparisonType,
    ) -> WhiteboardVersionComparison | None:
        result = await uow.read(
            select(WhiteboardVersionComparison).where(
                WhiteboardVersionComparison.version_a_id == version_a_id,
                WhiteboardVersionComparison.version_b_id == version_b_id,
                WhiteboardVersionComparison.comparison_type == comparison_type.value,
            ),
        )
        return result.scalar_one_or_none()


# Singleton instance for use throughout the application
comparison_service = ComparisonService()

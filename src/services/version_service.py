"""Service layer for recording and browsing whiteboard version history."""
import logging
import time
from dataclasses import asdict, dataclass
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from core.config import get_settings
from core.request_context import RequestContext
from db.unit_of_work import UnitOfWork
from models.whiteboard import Whiteboard
from models.whiteboard_version import (
    ChangeType,
    VersionType,
    WhiteboardVersion,
    WhiteboardVersionBranch,
    WhiteboardVersionDelta,
)
from schemas.version import VersionCreate, VersionFilter
from services.delta_codec import (
    CANVAS_KEY,
    ELEMENTS_KEY,
    canonical_json,
    change_counts,
    content_hash,
    create_delta,
    empty_state,
    normalize_state,
)
from services.exceptions import VersionNotFoundError, VersionValidationError
from services.reconstructor import ReconstructionResult, Reconstructor, reconstructor
from services.snapshot_policy import encode_snapshot, should_snapshot
from services.whiteboard_service import WhiteboardService, validate_state, whiteboard_service

logger = logging.getLogger(__name__)

MAX_HISTORY_LIMIT = 100

# Constraint names that identify a version-number collision across backends
VERSION_COLLISION_MARKERS = (
    "uq_whiteboard_version_number",  # PostgreSQL reports the constraint name
    "whiteboard_versions.version_number",  # SQLite reports the columns
)


@dataclass
class PaginatedVersions:
    """A page of version history."""

    items: list[WhiteboardVersion]
    total: int  # Count matching the filters, before pagination
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        """True if versions exist beyond this page."""
        return self.offset + len(self.items) < self.total


def is_version_collision(error: IntegrityError) -> bool:
    """True if an IntegrityError is a duplicate (whiteboard, version_number)."""
    message = str(error)
    return any(marker in message for marker in VERSION_COLLISION_MARKERS)


def validate_history_query(
    filters: VersionFilter | None,
    limit: int,
    offset: int,
) -> None:
    """
    Validate history query parameters before any I/O.

    Raises:
        VersionValidationError: If pagination or the date range is malformed.
    """
    if not 1 <= limit <= MAX_HISTORY_LIMIT:
        raise VersionValidationError(f"limit must be between 1 and {MAX_HISTORY_LIMIT}")
    if offset < 0:
        raise VersionValidationError("offset must be non-negative")
    if filters is None:
        return
    for name, value in (("date_from", filters.date_from), ("date_to", filters.date_to)):
        if value is not None and value.tzinfo is None:
            raise VersionValidationError(f"{name} must include a timezone offset")
    if (
        filters.date_from is not None
        and filters.date_to is not None
        and filters.date_from > filters.date_to
    ):
        raise VersionValidationError("date_from must not be after date_to")


class VersionService:
    """
    Records versions and maintains the per-whiteboard version graph.

    Every version has a parent (except a whiteboard's first version), a
    strictly increasing version number shared across branches, and a
    payload that is either a full snapshot or a delta against its parent.
    """

    def __init__(
        self,
        provider: WhiteboardService | None = None,
        state_reconstructor: Reconstructor | None = None,
    ) -> None:
        settings = get_settings()
        self.provider = provider or whiteboard_service
        self.reconstructor = state_reconstructor or reconstructor
        self.snapshot_interval = settings.snapshot_interval
        self.compression_threshold = settings.snapshot_compression_threshold
        self.autosave_element_threshold = settings.autosave_element_threshold

    async def create_version(
        self,
        uow: UnitOfWork,
        whiteboard_id: UUID,
        user_id: UUID,
        request: VersionCreate,
        state: dict | None = None,
        context: RequestContext | None = None,
        is_automatic: bool | None = None,
    ) -> WhiteboardVersion:
        """
        Record a new version of a whiteboard.

        The whiteboard row is locked for the rest of the transaction, which
        serializes version creation per whiteboard on PostgreSQL. The insert
        itself runs in a savepoint and is retried when a concurrent writer
        took the same version number.

        Args:
            uow: Unit of work.
            whiteboard_id: Whiteboard to version.
            user_id: Author of the version.
            request: Version metadata.
            state: Document state to record. Falls back to request.state,
                then to the whiteboard's live state.
            context: Request context; its source is stored in metadata.
            is_automatic: Override for is_automatic (defaults to True only
                for auto-saves).

        Returns:
            The new version, or the existing branch head when an auto-save
            found no significant change.

        Raises:
            WhiteboardNotFoundError: If the whiteboard doesn't exist.
            VersionValidationError: If the supplied state is malformed.
            IntegrityError: If max retries exceeded on version collision.
        """
        start = time.perf_counter()
        whiteboard = await self.provider.get_whiteboard(uow, whiteboard_id, for_update=True)

        if state is None:
            state = request.state
        if state is None:
            state = await self.provider.get_current_state(uow, whiteboard_id)
        else:
            try:
                state = normalize_state(state)
            except (ValueError, AttributeError) as e:
                raise VersionValidationError(f"Invalid document state: {e}") from e
            # A recorded state must stay restorable by a rollback
            validate_state(state)

        if is_automatic is None:
            is_automatic = request.change_type == ChangeType.AUTO_SAVE
        metadata = {"source": context.source.value} if context is not None else {}

        max_retries = 3
        version: WhiteboardVersion | None = None
        created = False

        for attempt in range(max_retries):
            try:
                async with uow.atomic():  # Creates savepoint
                    version, created = await self._create_version_impl(
                        uow, whiteboard, user_id, request, state, is_automatic, metadata,
                    )
                break  # Success - exit retry loop
            except IntegrityError as e:
                # Only retry on version uniqueness violations
                if not is_version_collision(e):
                    raise
                # Savepoint rolled back, outer transaction intact
                if attempt == max_retries - 1:
                    raise
                logger.warning(
                    "Version number collision on whiteboard %s (attempt %d), retrying",
                    whiteboard_id,
                    attempt + 1,
                )

        if version is None:
            # Should not reach here, but satisfy type checker
            raise RuntimeError("Unexpected state in create_version")

        if created:
            version.creation_time_ms = int((time.perf_counter() - start) * 1000)
            await uow.write(version)
            logger.info(
                "Created version %d (%s) of whiteboard %s on branch %s: "
                "+%d ~%d -%d elements in %dms",
                version.version_number,
                version.version_type,
                whiteboard_id,
                version.branch_name,
                version.elements_added,
                version.elements_modified,
                version.elements_deleted,
                version.creation_time_ms,
            )
        return version

    async def _create_version_impl(
        self,
        uow: UnitOfWork,
        whiteboard: Whiteboard,
        user_id: UUID,
        request: VersionCreate,
        state: dict,
        is_automatic: bool,
        metadata: dict,
    ) -> tuple[WhiteboardVersion, bool]:
        """Internal implementation of create_version. Returns (version, created)."""
        whiteboard_id = whiteboard.id
        branch = await self._get_branch(uow, whiteboard_id, request.branch_name)

        fork_base_id: UUID | None = None
        if branch is not None:
            head = await self._get_version_row(uow, branch.head_version_id)
        else:
            # A new branch forks from the latest version; the first version is the root
            head = await self.get_latest_version(uow, whiteboard_id)
            fork_base_id = head.id if head is not None else None

        canvas_hash = content_hash(state[CANVAS_KEY])
        elements_hash = content_hash(state[ELEMENTS_KEY])
        element_count = len(state[ELEMENTS_KEY])

        if (
            request.change_type == ChangeType.AUTO_SAVE
            and not request.force_snapshot
            and head is not None
            and head.elements_hash == elements_hash
            and abs(head.element_count - element_count) <= self.autosave_element_threshold
        ):
            logger.debug(
                "Auto-save on whiteboard %s skipped: no significant change since version %d",
                whiteboard_id,
                head.version_number,
            )
            return head, False

        version_number = await self._next_version_number(uow, whiteboard_id)
        is_snapshot = should_snapshot(
            request.change_type,
            version_number,
            force_snapshot=request.force_snapshot,
            has_parent=head is not None,
            interval=self.snapshot_interval,
        )

        if head is not None:
            parent_state = (await self.reconstructor.reconstruct(uow, head.id)).state
        else:
            parent_state = empty_state()
        operations = create_delta(parent_state, state)
        counts = change_counts(operations)

        version = WhiteboardVersion(
            whiteboard_id=whiteboard_id,
            version_number=version_number,
            parent_version_id=head.id if head is not None else None,
            version_type=VersionType.SNAPSHOT.value if is_snapshot else VersionType.DELTA.value,
            change_type=request.change_type.value,
            commit_message=request.commit_message,
            is_automatic=is_automatic,
            branch_name=request.branch_name,
            merge_source_id=request.merge_source_id,
            is_milestone=request.is_milestone,
            tags=list(request.tags),
            canvas_hash=canvas_hash,
            elements_hash=elements_hash,
            element_count=element_count,
            total_changes=counts.total,
            elements_added=counts.added,
            elements_modified=counts.modified,
            elements_deleted=counts.deleted,
            whiteboard_version=whiteboard.version,
            metadata_=dict(metadata),
            created_by=user_id,
            expires_at=request.expires_at,
        )

        if is_snapshot:
            payload = encode_snapshot(state, self.compression_threshold)
            version.snapshot_data = payload.snapshot_data
            version.compressed_data = payload.compressed_data
            version.compression_type = payload.compression_type
            version.data_size = payload.data_size
            version.compressed_size = payload.compressed_size
        else:
            version.data_size = len(canonical_json([asdict(op) for op in operations]))
            version.deltas = [
                WhiteboardVersionDelta(
                    operation_type=op.operation_type,
                    element_id=op.element_id,
                    operation_order=op.operation_order,
                    old_data=op.old_data,
                    new_data=op.new_data,
                    patch=op.patch,
                    operation_metadata=op.operation_metadata,
                )
                for op in operations
            ]

        await uow.write(version)

        if branch is None:
            branch = WhiteboardVersionBranch(
                whiteboard_id=whiteboard_id,
                branch_name=request.branch_name,
                head_version_id=version.id,
                base_version_id=fork_base_id,
                created_by=user_id,
            )
        else:
            branch.head_version_id = version.id
        await uow.write(branch)

        return version, True

    async def get_version_history(
        self,
        uow: UnitOfWork,
        whiteboard_id: UUID,
        filters: VersionFilter | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> PaginatedVersions:
        """
        Get a page of a whiteboard's versions, newest first.

        Args:
            uow: Unit of work.
            whiteboard_id: Whiteboard whose history to list.
            filters: Optional branch, change type, author, milestone and
                created_at range filters (date range inclusive).
            limit: Maximum versions to return (1-100).
            offset: Number of versions to skip.

        Raises:
            VersionValidationError: If parameters are malformed (checked before any query).
            WhiteboardNotFoundError: If the whiteboard doesn't exist.
        """
        validate_history_query(filters, limit, offset)
        await self.provider.get_whiteboard(uow, whiteboard_id)

        conditions = [WhiteboardVersion.whiteboard_id == whiteboard_id]
        if filters is not None:
            if filters.branch_name is not None:
                conditions.append(WhiteboardVersion.branch_name == filters.branch_name)
            if filters.change_types:
                conditions.append(
                    WhiteboardVersion.change_type.in_([c.value for c in filters.change_types]),
                )
            if filters.created_by is not None:
                conditions.append(WhiteboardVersion.created_by == filters.created_by)
            if filters.is_milestone is not None:
                conditions.append(WhiteboardVersion.is_milestone.is_(filters.is_milestone))
            if filters.date_from is not None:
                conditions.append(WhiteboardVersion.created_at >= filters.date_from)
            if filters.date_to is not None:
                conditions.append(WhiteboardVersion.created_at <= filters.date_to)

        count_stmt = select(func.count()).select_from(WhiteboardVersion).where(*conditions)
        total = (await uow.read(count_stmt)).scalar_one()

        stmt = (
            select(WhiteboardVersion)
            .where(*conditions)
            .order_by(WhiteboardVersion.version_number.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await uow.read(stmt)
        return PaginatedVersions(
            items=list(result.scalars().all()),
            total=total,
            limit=limit,
            offset=offset,
        )

    async def get_version(
        self,
        uow: UnitOfWork,
        whiteboard_id: UUID,
        version_id: UUID,
    ) -> WhiteboardVersion:
        """
        Get a single version of a whiteboard.

        Raises:
            VersionNotFoundError: If missing or belonging to another whiteboard.
        """
        version = await self._get_version_row(uow, version_id)
        if version is None or version.whiteboard_id != whiteboard_id:
            raise VersionNotFoundError(version_id)
        return version

    async def get_latest_version(
        self,
        uow: UnitOfWork,
        whiteboard_id: UUID,
    ) -> WhiteboardVersion | None:
        """Get the whiteboard's highest-numbered version across all branches."""
        result = await uow.read(
            select(WhiteboardVersion)
            .where(WhiteboardVersion.whiteboard_id == whiteboard_id)
            .order_by(WhiteboardVersion.version_number.desc())
            .limit(1),
        )
        return result.scalar_one_or_none()

    async def get_version_state(
        self,
        uow: UnitOfWork,
        whiteboard_id: UUID,
        version_id: UUID,
    ) -> tuple[WhiteboardVersion, ReconstructionResult]:
        """
        Reconstruct the document state recorded by a version.

        Raises:
            VersionNotFoundError: If missing or belonging to another whiteboard.
            CorruptHistoryError: If the version chain is broken.
            CyclicHistoryError: If the version chain loops.
        """
        version = await self.get_version(uow, whiteboard_id, version_id)
        result = await self.reconstructor.reconstruct(uow, version.id, whiteboard_id)
        return version, result

    async def list_branches(
        self,
        uow: UnitOfWork,
        whiteboard_id: UUID,
    ) -> list[WhiteboardVersionBranch]:
        """List a whiteboard's branches by name."""
        await self.provider.get_whiteboard(uow, whiteboard_id)
        result = await uow.read(
            select(WhiteboardVersionBranch)
            .where(WhiteboardVersionBranch.whiteboard_id == whiteboard_id)
            .order_by(WhiteboardVersionBranch.branch_name),
        )
        return list(result.scalars().all())

    @staticmethod
    async def _get_branch(
        uow: UnitOfWork,
        whiteboard_id: UUID,
        branch_name: str,
    ) -> WhiteboardVersionBranch | None:
        result = await uow.read(
            select(WhiteboardVersionBranch).where(
                WhiteboardVersionBranch.whiteboard_id == whiteboard_id,
                WhiteboardVersionBranch.branch_name == branch_name,
            ),
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _get_version_row(uow: UnitOfWork, version_id: UUID) -> WhiteboardVersion | None:
        result = await uow.read(
            select(WhiteboardVersion).where(WhiteboardVersion.id == version_id),
        )
        return result.scalar_one_or_none()

    async def _next_version_number(self, uow: UnitOfWork, whiteboard_id: UUID) -> int:
        """Next version number for a whiteboard (1 if it has none), shared by all branches."""
        result = await uow.read(
            select(func.max(WhiteboardVersion.version_number)).where(
                WhiteboardVersion.whiteboard_id == whiteboard_id,
            ),
        )
        return (result.scalar_one_or_none() or 0) + 1


# Singleton instance for use throughout the application
version_service = VersionService()

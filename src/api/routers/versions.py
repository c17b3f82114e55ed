"""Version history, rollback and comparison endpoints for a whiteboard."""
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from api.dependencies import get_request_context, get_unit_of_work
from core.request_context import RequestContext
from db.unit_of_work import UnitOfWork
from models.whiteboard_version import ChangeType
from schemas.version import (
    BranchResponse,
    ComparisonRequest,
    ComparisonResponse,
    ResolveConflictRequest,
    RollbackRequest,
    RollbackResponse,
    VersionCreate,
    VersionFilter,
    VersionListResponse,
    VersionResponse,
    VersionStateResponse,
)
from services.comparison_service import comparison_service
from services.rollback_service import rollback_service
from services.version_service import MAX_HISTORY_LIMIT, version_service

router = APIRouter(prefix="/whiteboards/{whiteboard_id}", tags=["versions"])


@router.post(
    "/versions",
    response_model=VersionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_version(
    whiteboard_id: UUID,
    data: VersionCreate,
    context: RequestContext = Depends(get_request_context),
    uow: UnitOfWork = Depends(get_unit_of_work),
) -> VersionResponse:
    """
    Record a version of the whiteboard.

    Captures the live state unless `state` is supplied. An auto-save with no
    significant change returns the current branch head instead of a new version.
    """
    version = await version_service.create_version(
        uow, whiteboard_id, context.user_id, data, context=context,
    )
    return VersionResponse.model_validate(version)


@router.get("/versions", response_model=VersionListResponse)
async def get_version_history(
    whiteboard_id: UUID,
    branch_name: str | None = Query(default=None),
    change_type: list[ChangeType] | None = Query(default=None),
    created_by: UUID | None = Query(default=None),
    is_milestone: bool | None = Query(default=None),
    date_from: datetime | None = Query(default=None),
    date_to: datetime | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=MAX_HISTORY_LIMIT),
    offset: int = Query(default=0, ge=0),
    _context: RequestContext = Depends(get_request_context),
    uow: UnitOfWork = Depends(get_unit_of_work),
) -> VersionListResponse:
    """List the whiteboard's versions, newest first."""
    filters = VersionFilter(
        branch_name=branch_name,
        change_types=change_type,
        created_by=created_by,
        is_milestone=is_milestone,
        date_from=date_from,
        date_to=date_to,
    )
    page = await version_service.get_version_history(uow, whiteboard_id, filters, limit, offset)
    return VersionListResponse(
        items=[VersionResponse.model_validate(v) for v in page.items],
        total=page.total,
        offset=page.offset,
        limit=page.limit,
        has_more=page.has_more,
    )


@router.get("/versions/{version_id}", response_model=VersionResponse)
async def get_version(
    whiteboard_id: UUID,
    version_id: UUID,
    _context: RequestContext = Depends(get_request_context),
    uow: UnitOfWork = Depends(get_unit_of_work),
) -> VersionResponse:
    """Get a single version's metadata."""
    version = await version_service.get_version(uow, whiteboard_id, version_id)
    return VersionResponse.model_validate(version)


@router.get("/versions/{version_id}/state", response_model=VersionStateResponse)
async def get_version_state(
    whiteboard_id: UUID,
    version_id: UUID,
    _context: RequestContext = Depends(get_request_context),
    uow: UnitOfWork = Depends(get_unit_of_work),
) -> VersionStateResponse:
    """Reconstruct the document state recorded by a version."""
    version, result = await version_service.get_version_state(uow, whiteboard_id, version_id)
    return VersionStateResponse(
        version_id=version.id,
        version_number=version.version_number,
        state=result.state,
        warnings=result.warnings or None,
    )


@router.get("/branches", response_model=list[BranchResponse])
async def list_branches(
    whiteboard_id: UUID,
    _context: RequestContext = Depends(get_request_context),
    uow: UnitOfWork = Depends(get_unit_of_work),
) -> list[BranchResponse]:
    """List the whiteboard's branches."""
    branches = await version_service.list_branches(uow, whiteboard_id)
    return [BranchResponse.model_validate(b) for b in branches]


@router.post("/rollbacks", response_model=RollbackResponse)
async def rollback_to_version(
    whiteboard_id: UUID,
    data: RollbackRequest,
    context: RequestContext = Depends(get_request_context),
    uow: UnitOfWork = Depends(get_unit_of_work),
) -> RollbackResponse:
    """
    Roll the whiteboard back to a version.

    Returns 200 with status "conflict" when other sessions are active and no
    resolution was supplied; resolve it via the resolve endpoint.
    """
    rollback = await rollback_service.rollback_to_version(
        uow, whiteboard_id, context.user_id, data,
    )
    return RollbackResponse.model_validate(rollback)


@router.get("/rollbacks/{rollback_id}", response_model=RollbackResponse)
async def get_rollback(
    whiteboard_id: UUID,
    rollback_id: UUID,
    _context: RequestContext = Depends(get_request_context),
    uow: UnitOfWork = Depends(get_unit_of_work),
) -> RollbackResponse:
    """Get a rollback record."""
    rollback = await rollback_service.get_rollback(uow, whiteboard_id, rollback_id)
    return RollbackResponse.model_validate(rollback)


@router.post("/rollbacks/{rollback_id}/resolve", response_model=RollbackResponse)
async def resolve_rollback_conflict(
    whiteboard_id: UUID,
    rollback_id: UUID,
    data: ResolveConflictRequest,
    context: RequestContext = Depends(get_request_context),
    uow: UnitOfWork = Depends(get_unit_of_work),
) -> RollbackResponse:
    """Resolve a rollback waiting in conflict status."""
    rollback = await rollback_service.resolve_conflict(
        uow, whiteboard_id, rollback_id, context.user_id, data.resolution,
    )
    return RollbackResponse.model_validate(rollback)


@router.post("/comparisons", response_model=ComparisonResponse)
async def compare_versions(
    whiteboard_id: UUID,
    data: ComparisonRequest,
    context: RequestContext = Depends(get_request_context),
    uow: UnitOfWork = Depends(get_unit_of_work),
) -> ComparisonResponse:
    """Compare two versions of the whiteboard (cached for 24 hours)."""
    comparison = await comparison_service.compare_versions(
        uow, whiteboard_id, context.user_id, data,
    )
    return ComparisonResponse.model_validate(comparison)

"""Milestone router: creation, closure and progress."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from milestone_tracker.constants.constants import PermissionAction
from milestone_tracker.core.database import aget_db
from milestone_tracker.core.security import get_current_actor, require_permission
from milestone_tracker.schemas.milestoneSchema import (
    CascadeJobResponse,
    ClosureResponse,
    MilestoneCreateRequest,
    MilestoneResponse,
)
from milestone_tracker.schemas.progressSchema import ProgressSnapshot
from milestone_tracker.services import AssociationService, ClosureService, ProgressService

router = APIRouter(prefix="/milestones", tags=["milestones"])


@router.post("", response_model=MilestoneResponse, status_code=status.HTTP_201_CREATED)
async def create_milestone(
    milestone_data: MilestoneCreateRequest,
    actor: str = Depends(get_current_actor),
    db: AsyncSession = Depends(aget_db)
):
    """
    Create a milestone in exactly one project or group.
    Titles are unique within the owning project or group.
    """
    milestone = await AssociationService.create_milestone(
        db,
        title=milestone_data.title,
        description=milestone_data.description,
        start_date=milestone_data.start_date,
        due_date=milestone_data.due_date,
        project_id=milestone_data.project_id,
        group_id=milestone_data.group_id,
    )
    return milestone


@router.get("/{milestone_id}", response_model=MilestoneResponse)
async def get_milestone(
    milestone_id: str,
    db: AsyncSession = Depends(aget_db)
):
    return await AssociationService.get_milestone(db, milestone_id)


@router.post("/{milestone_id}/close", response_model=ClosureResponse)
async def close_milestone(
    milestone_id: str,
    actor: str = Depends(require_permission(PermissionAction.close)),
    db: AsyncSession = Depends(aget_db)
):
    """
    Close an active milestone.
    Large milestones return with the cascade still pending; it completes in the background.
    """
    return await ClosureService.close_milestone(db, milestone_id, actor)


@router.get("/{milestone_id}/progress", response_model=ProgressSnapshot)
async def get_milestone_progress(
    milestone_id: str,
    db: AsyncSession = Depends(aget_db)
):
    """Get the completion progress of a milestone."""
    return await ProgressService.get_progress(db, milestone_id)


@router.get("/{milestone_id}/cascade", response_model=CascadeJobResponse)
async def get_milestone_cascade(
    milestone_id: str,
    db: AsyncSession = Depends(aget_db)
):
    """Get the closure cascade job of a closed milestone."""
    return await ClosureService.get_cascade_job(db, milestone_id)

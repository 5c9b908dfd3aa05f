"""Release router: registration and milestone association."""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from milestone_tracker.constants.constants import PermissionAction
from milestone_tracker.core.database import aget_db
from milestone_tracker.core.security import PermissionChecker, get_current_actor, get_permission_checker
from milestone_tracker.schemas.releaseSchema import (
    AssociationResponse,
    ReleaseAssociateRequest,
    ReleaseCreateRequest,
    ReleaseResponse,
)
from milestone_tracker.services import AssociationService

router = APIRouter(prefix="/releases", tags=["releases"])


@router.post("", response_model=ReleaseResponse, status_code=status.HTTP_201_CREATED)
async def create_release(
    release_data: ReleaseCreateRequest,
    actor: str = Depends(get_current_actor),
    db: AsyncSession = Depends(aget_db)
):
    return await AssociationService.create_release(
        db,
        project_id=release_data.project_id,
        tag=release_data.tag,
        description=release_data.description,
        released_at=release_data.released_at,
    )


@router.get("/{release_id}", response_model=ReleaseResponse)
async def get_release(
    release_id: str,
    db: AsyncSession = Depends(aget_db)
):
    return await AssociationService.get_release(db, release_id)


@router.post("/{release_id}/milestone", response_model=AssociationResponse)
async def associate_release(
    release_id: str,
    association: ReleaseAssociateRequest,
    actor: str = Depends(get_current_actor),
    checker: PermissionChecker = Depends(get_permission_checker),
    db: AsyncSession = Depends(aget_db)
):
    """
    Link a release to a milestone.
    A release already linked to a milestone is rejected, never relinked.
    """
    if not await checker.is_authorized(actor, association.milestone_id, PermissionAction.associate):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Not allowed to associate releases with milestone {association.milestone_id}"
        )

    return await AssociationService.associate_release(db, release_id, association.milestone_id)

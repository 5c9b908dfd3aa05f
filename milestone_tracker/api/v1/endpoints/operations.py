"""Operations router: cascade failures needing attention."""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from milestone_tracker.core.cache import progress_cache
from milestone_tracker.core.database import aget_db
from milestone_tracker.core.security import get_current_actor
from milestone_tracker.schemas.milestoneSchema import CascadeJobResponse
from milestone_tracker.services import ClosureService

router = APIRouter(prefix="/operations", tags=["operations"])


@router.get("/cascade-failures", response_model=List[CascadeJobResponse])
async def list_cascade_failures(
    actor: str = Depends(get_current_actor),
    db: AsyncSession = Depends(aget_db)
):
    """List closure cascades that failed and are waiting on a retry or an operator."""
    return await ClosureService.list_cascade_failures(db)


@router.post("/cascade-jobs/{job_id}/retry", response_model=CascadeJobResponse)
async def retry_cascade_job(
    job_id: str,
    actor: str = Depends(get_current_actor),
    db: AsyncSession = Depends(aget_db)
):
    return await ClosureService.retry_cascade(db, job_id)


@router.get("/cache")
async def get_cache_stats(actor: str = Depends(get_current_actor)):
    return progress_cache.stats()

"""Issue tracker sync router: dependent entity state and per-scope progress settings."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from milestone_tracker.core.database import aget_db
from milestone_tracker.core.security import get_current_actor
from milestone_tracker.schemas.dependentSchema import IssueSyncRequest, MergeRequestSyncRequest
from milestone_tracker.schemas.milestoneSchema import ScopeSettingRequest
from milestone_tracker.services import DependentEntitySync

router = APIRouter(tags=["sync"])


@router.put("/issues/{issue_id}")
async def sync_issue(
    issue_id: str,
    issue_data: IssueSyncRequest,
    actor: str = Depends(get_current_actor),
    db: AsyncSession = Depends(aget_db)
):
    issue = await DependentEntitySync.upsert_issue(
        db,
        issue_id=issue_id,
        project_id=issue_data.project_id,
        milestone_id=issue_data.milestone_id,
        title=issue_data.title,
        state=issue_data.state,
        weight=issue_data.weight,
    )
    return {
        "issue_id": issue.issue_id,
        "milestone_id": issue.milestone_id,
        "state": issue.state,
        "weight": issue.weight,
    }


@router.put("/merge-requests/{merge_request_id}")
async def sync_merge_request(
    merge_request_id: str,
    merge_request_data: MergeRequestSyncRequest,
    actor: str = Depends(get_current_actor),
    db: AsyncSession = Depends(aget_db)
):
    merge_request = await DependentEntitySync.upsert_merge_request(
        db,
        merge_request_id=merge_request_id,
        project_id=merge_request_data.project_id,
        milestone_id=merge_request_data.milestone_id,
        title=merge_request_data.title,
        state=merge_request_data.state,
    )
    return {
        "merge_request_id": merge_request.merge_request_id,
        "milestone_id": merge_request.milestone_id,
        "state": merge_request.state,
    }


@router.put("/scope-settings")
async def update_scope_setting(
    setting_data: ScopeSettingRequest,
    actor: str = Depends(get_current_actor),
    db: AsyncSession = Depends(aget_db)
):
    """Enable or disable weighted progress for a project or group."""
    setting = await DependentEntitySync.set_weighted_progress(
        db,
        enabled=setting_data.weighted_progress_enabled,
        project_id=setting_data.project_id,
        group_id=setting_data.group_id,
    )
    return {
        "scope_key": setting.scope_key,
        "weighted_progress_enabled": setting.weighted_progress_enabled,
    }

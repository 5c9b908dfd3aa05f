"""Ingestion of issue and merge request changes reported by the issue tracker."""

import logging
from typing import Optional, Set

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from milestone_tracker.constants.constants import (
    IssueState,
    MergeRequestState,
    MilestoneState,
    scope_key_for,
)
from milestone_tracker.core.cache import progress_cache
from milestone_tracker.core.exceptions import InvalidScope, MilestoneNotFound
from milestone_tracker.models.base import utcnow
from milestone_tracker.models.issue import Issue
from milestone_tracker.models.mergerequest import MergeRequest
from milestone_tracker.models.milestones import Milestone
from milestone_tracker.models.scopesetting import ScopeSetting

logger = logging.getLogger(__name__)


async def _bump_versions(db: AsyncSession, milestone_ids: Set[str]) -> None:
    if not milestone_ids:
        return
    await db.execute(
        update(Milestone)
        .where(Milestone.milestone_id.in_(milestone_ids))
        .values(progress_version=Milestone.progress_version + 1)
        .execution_options(synchronize_session=False)
    )


async def _closed_at_of(db: AsyncSession, milestone_id: Optional[str]):
    """Closure timestamp to stamp on a dependent joining an already closed milestone."""
    if milestone_id is None:
        return None
    result = await db.execute(
        select(Milestone.state, Milestone.closed_at).where(Milestone.milestone_id == milestone_id)
    )
    row = result.one_or_none()
    if row is None:
        raise MilestoneNotFound(f"Milestone {milestone_id} not found")
    state, closed_at = row
    return closed_at if state == MilestoneState.closed else None


async def _commit_and_evict(db: AsyncSession, touched: Set[str]) -> None:
    await db.commit()
    await progress_cache.invalidate(*touched)


async def upsert_issue(
    db: AsyncSession,
    issue_id: str,
    project_id: str,
    milestone_id: Optional[str],
    title: str,
    state: IssueState = IssueState.opened,
    weight: Optional[int] = None,
) -> Issue:
    """
    Record the current state of an issue.

    Both the milestone the issue leaves and the one it joins get their
    progress version bumped and their cached progress evicted.
    """
    milestone_closed_at = await _closed_at_of(db, milestone_id)
    issue = await db.get(Issue, issue_id, populate_existing=True)

    touched = {milestone_id} - {None}
    if issue is None:
        issue = Issue(issue_id=issue_id)
        db.add(issue)
    else:
        if issue.milestone_id is not None:
            touched.add(issue.milestone_id)
        if issue.milestone_id == milestone_id:
            milestone_closed_at = issue.milestone_closed_at or milestone_closed_at

    if state == IssueState.closed and issue.closed_at is None:
        issue.closed_at = utcnow()
    elif state == IssueState.opened:
        issue.closed_at = None

    issue.project_id = project_id
    issue.milestone_id = milestone_id
    issue.title = title
    issue.state = state
    issue.weight = weight
    issue.milestone_closed_at = milestone_closed_at

    await _bump_versions(db, touched)
    await _commit_and_evict(db, touched)
    logger.debug(f"Issue {issue_id} synced ({state.value}) for milestones {sorted(touched)}")
    return issue


async def upsert_merge_request(
    db: AsyncSession,
    merge_request_id: str,
    project_id: str,
    milestone_id: Optional[str],
    title: str,
    state: MergeRequestState = MergeRequestState.opened,
) -> MergeRequest:
    """Record the current state of a merge request."""
    milestone_closed_at = await _closed_at_of(db, milestone_id)
    merge_request = await db.get(MergeRequest, merge_request_id, populate_existing=True)

    touched = {milestone_id} - {None}
    if merge_request is None:
        merge_request = MergeRequest(merge_request_id=merge_request_id)
        db.add(merge_request)
    else:
        if merge_request.milestone_id is not None:
            touched.add(merge_request.milestone_id)
        if merge_request.milestone_id == milestone_id:
            milestone_closed_at = merge_request.milestone_closed_at or milestone_closed_at

    merge_request.project_id = project_id
    merge_request.milestone_id = milestone_id
    merge_request.title = title
    merge_request.state = state
    merge_request.milestone_closed_at = milestone_closed_at

    await _bump_versions(db, touched)
    await _commit_and_evict(db, touched)
    logger.debug(f"Merge request {merge_request_id} synced ({state.value}) for milestones {sorted(touched)}")
    return merge_request


async def set_weighted_progress(
    db: AsyncSession,
    enabled: bool,
    project_id: Optional[str] = None,
    group_id: Optional[str] = None,
) -> ScopeSetting:
    """Switch weighted progress for one project or group."""
    if (project_id is None) == (group_id is None):
        raise InvalidScope()

    scope_key = scope_key_for(project_id=project_id, group_id=group_id)
    setting = await db.get(ScopeSetting, scope_key, populate_existing=True)
    if setting is None:
        setting = ScopeSetting(scope_key=scope_key)
        db.add(setting)
    setting.weighted_progress_enabled = enabled

    result = await db.execute(select(Milestone.milestone_id).where(Milestone.scope_key == scope_key))
    touched = set(result.scalars().all())
    await _bump_versions(db, touched)
    await db.commit()
    await progress_cache.invalidate(*touched)

    logger.info(f"⚖️ Weighted progress {'enabled' if enabled else 'disabled'} for {scope_key}")
    return setting

"""Milestone progress computation backed by the progress cache."""

import logging
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from milestone_tracker.constants.constants import (
    IssueState,
    MergeRequestState,
    MilestoneState,
    ReleaseStatus,
)
from milestone_tracker.core.cache import progress_cache
from milestone_tracker.core.config import settings
from milestone_tracker.core.exceptions import InconsistentState, MilestoneNotFound
from milestone_tracker.models.base import utcnow
from milestone_tracker.models.issue import Issue
from milestone_tracker.models.mergerequest import MergeRequest
from milestone_tracker.models.milestones import Milestone
from milestone_tracker.models.release import Release
from milestone_tracker.models.scopesetting import ScopeSetting
from milestone_tracker.schemas.progressSchema import ProgressSnapshot, ReleaseProgress

logger = logging.getLogger(__name__)


def ratio(completed: int, total: int) -> float:
    """Completion ratio in [0, 1]; 0 when there is nothing to complete."""
    if not total:
        return 0.0
    return completed / total


def day_span(start_date: date, due_date: date, today: date) -> tuple[int, int]:
    """
    Elapsed and total days of a milestone window.

    Returns:
        tuple: (elapsed_days, total_days), elapsed clamped to [0, total_days]
    """
    total_days = max((due_date - start_date).days, 0)
    elapsed = (min(today, due_date) - start_date).days
    return min(max(elapsed, 0), total_days), total_days


async def is_weighted_enabled(db: AsyncSession, scope_key: str) -> bool:
    result = await db.execute(
        select(ScopeSetting.weighted_progress_enabled).where(ScopeSetting.scope_key == scope_key)
    )
    enabled = result.scalar_one_or_none()
    if enabled is None:
        return settings.WEIGHTED_PROGRESS_DEFAULT
    return bool(enabled)


def release_status(released_at: Optional[datetime], now: datetime) -> ReleaseStatus:
    if released_at is None or released_at > now:
        return ReleaseStatus.upcoming
    return ReleaseStatus.released


async def _release_statuses(db: AsyncSession, milestone_id: str, now: datetime) -> List[ReleaseProgress]:
    result = await db.execute(
        select(Release.release_id, Release.tag, Release.released_at)
        .where(Release.milestone_id == milestone_id)
        .order_by(Release.tag)
    )
    return [
        ReleaseProgress(
            release_id=release_id,
            tag=tag,
            released_at=released_at,
            status=release_status(released_at, now),
        )
        for release_id, tag, released_at in result.all()
    ]


def _as_served(snapshot: ProgressSnapshot, now: datetime) -> ProgressSnapshot:
    """Copy of a snapshot with release statuses derived against ``now``."""
    served = snapshot.model_copy(deep=True)
    for release in served.releases:
        release.status = release_status(release.released_at, now)
    return served


async def compute_snapshot(
    db: AsyncSession,
    milestone: Milestone,
    today: date,
    now: Optional[datetime] = None,
) -> ProgressSnapshot:
    """Compute a fresh snapshot from the store; the cache is not consulted."""
    milestone_id = milestone.milestone_id
    weighted = await is_weighted_enabled(db, milestone.scope_key)

    is_closed = Issue.state == IssueState.closed
    weight = func.coalesce(Issue.weight, 1)
    issue_result = await db.execute(
        select(
            func.count(Issue.issue_id),
            func.coalesce(func.sum(case((is_closed, 1), else_=0)), 0),
            func.coalesce(func.sum(weight), 0),
            func.coalesce(func.sum(case((is_closed, weight), else_=0)), 0),
            func.coalesce(func.sum(case((Issue.milestone_closed_at.is_(None), 1), else_=0)), 0),
        ).where(Issue.milestone_id == milestone_id)
    )
    total_issues, completed_issues, total_weight, completed_weight, unstamped_issues = issue_result.one()

    mr_result = await db.execute(
        select(
            func.count(MergeRequest.merge_request_id),
            func.coalesce(
                func.sum(case((MergeRequest.state == MergeRequestState.merged, 1), else_=0)), 0
            ),
            func.coalesce(
                func.sum(case((MergeRequest.milestone_closed_at.is_(None), 1), else_=0)), 0
            ),
        ).where(MergeRequest.milestone_id == milestone_id)
    )
    total_mrs, merged_mrs, unstamped_mrs = mr_result.one()

    # Dependents the closure cascade has not reached yet
    unstamped_dependents = 0
    if milestone.state == MilestoneState.closed:
        unstamped_dependents = int(unstamped_issues) + int(unstamped_mrs)

    elapsed_days, total_days = day_span(milestone.start_date, milestone.due_date, today)

    snapshot = ProgressSnapshot(
        milestone_id=milestone_id,
        state=milestone.state,
        completed_issues=int(completed_issues),
        total_issues=int(total_issues),
        progress_percent=ratio(int(completed_issues), int(total_issues)),
        merged_merge_requests=int(merged_mrs),
        total_merge_requests=int(total_mrs),
        unstamped_dependents=unstamped_dependents,
        elapsed_days=elapsed_days,
        total_days=total_days,
        releases=await _release_statuses(db, milestone_id, now or utcnow()),
        version=milestone.progress_version,
        as_of=today,
    )
    if weighted:
        snapshot.weighted_enabled = True
        snapshot.completed_weight = int(completed_weight)
        snapshot.total_weight = int(total_weight)
        snapshot.weighted_progress_percent = ratio(int(completed_weight), int(total_weight))
    return snapshot


def _check_bounds(snapshot: ProgressSnapshot) -> None:
    problems = []
    if not 0 <= snapshot.completed_issues <= snapshot.total_issues:
        problems.append(f"completed_issues={snapshot.completed_issues} total_issues={snapshot.total_issues}")
    if snapshot.weighted_enabled and not 0 <= snapshot.completed_weight <= snapshot.total_weight:
        problems.append(f"completed_weight={snapshot.completed_weight} total_weight={snapshot.total_weight}")
    if not 0 <= snapshot.merged_merge_requests <= snapshot.total_merge_requests:
        problems.append(
            f"merged_merge_requests={snapshot.merged_merge_requests} "
            f"total_merge_requests={snapshot.total_merge_requests}"
        )
    if problems:
        raise InconsistentState(
            f"Progress for milestone {snapshot.milestone_id} out of bounds: {', '.join(problems)}"
        )


async def get_progress(
    db: AsyncSession,
    milestone_id: str,
    today: Optional[date] = None,
) -> ProgressSnapshot:
    """
    Return the progress snapshot of a milestone.

    A cached snapshot is served only when it carries the milestone's current
    progress_version and was computed for the same day. Anything else is a
    miss: the snapshot is recomputed from the store and written back, tagged
    with the version read before the counts were taken. Release statuses are
    derived from ``released_at`` on every read, cached or not, and callers get
    a copy of the cached entry.

    Raises:
        MilestoneNotFound: the milestone does not exist.
        InconsistentState: the recomputed snapshot breaks its own bounds, or a
            verified cache hit disagrees with the store.
    """
    now = utcnow()
    today = today or now.date()

    milestone = await db.get(Milestone, milestone_id, populate_existing=True)
    if milestone is None:
        raise MilestoneNotFound(f"Milestone {milestone_id} not found")
    version = milestone.progress_version

    cached = await progress_cache.get(milestone_id)
    cache_hit = cached is not None and cached.version == version and cached.as_of == today
    if cache_hit and not settings.PROGRESS_VERIFY_CACHE:
        return _as_served(cached.snapshot, now)

    snapshot = await compute_snapshot(db, milestone, today, now)
    try:
        _check_bounds(snapshot)
        if cache_hit and _as_served(cached.snapshot, now).store_fields() != snapshot.store_fields():
            raise InconsistentState(
                f"Cached progress for milestone {milestone_id} at version {version} "
                f"disagrees with the store"
            )
    except InconsistentState as e:
        logger.error(f"❌ {e.detail}")
        await progress_cache.invalidate(milestone_id)
        raise

    await progress_cache.set(milestone_id, version, today, snapshot)
    return snapshot.model_copy(deep=True)

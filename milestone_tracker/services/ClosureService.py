"""Milestone closure and its cascade onto dependent issues and merge requests."""

import logging
from datetime import timedelta
from typing import AsyncContextManager, Callable, List, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from milestone_tracker.constants.constants import (
    CascadeMode,
    CascadeStatus,
    MilestoneEvent,
    MilestoneState,
)
from milestone_tracker.core.cache import progress_cache
from milestone_tracker.core.config import settings
from milestone_tracker.core.exceptions import (
    AsyncCascadeFailed,
    CascadeJobNotFound,
    CascadeNotRetryable,
    MilestoneNotFound,
    NotActive,
)
from milestone_tracker.models.base import utcnow
from milestone_tracker.models.cascadejob import ClosureCascadeJob
from milestone_tracker.models.issue import Issue
from milestone_tracker.models.mergerequest import MergeRequest
from milestone_tracker.models.milestones import Milestone
from milestone_tracker.schemas.milestoneSchema import ClosureResponse
from milestone_tracker.services import MilestoneNotifications
from milestone_tracker.services.MilestoneNotifications import MilestoneNotifier

logger = logging.getLogger(__name__)
# Failures that do not reach the caller: cascade errors and jobs needing attention
operations_logger = logging.getLogger("milestone_tracker.operations")

RETRYABLE = (CascadeStatus.pending, CascadeStatus.failed)


def _bump_version():
    return Milestone.progress_version + 1


async def count_dependents(db: AsyncSession, milestone_id: str) -> int:
    issues = await db.execute(
        select(func.count(Issue.issue_id)).where(Issue.milestone_id == milestone_id)
    )
    merge_requests = await db.execute(
        select(func.count(MergeRequest.merge_request_id)).where(MergeRequest.milestone_id == milestone_id)
    )
    return issues.scalar_one() + merge_requests.scalar_one()


async def close_milestone(
    db: AsyncSession,
    milestone_id: str,
    actor: Optional[str],
    notifier: Optional[MilestoneNotifier] = None,
) -> ClosureResponse:
    """
    Close an active milestone.

    The state flip is one conditional UPDATE guarded by ``state = 'active'``
    and commits together with the durable cascade job. The cached progress is
    evicted before returning, so a later read observes the closed state.

    Milestones with more dependents than ASYNC_CLOSURE_THRESHOLD leave the
    cascade to the worker; smaller ones run it inline. Either way a cascade
    failure never reopens the milestone.

    Raises:
        MilestoneNotFound: the milestone does not exist.
        NotActive: the milestone is already closed.
    """
    closed_at = utcnow()
    result = await db.execute(
        update(Milestone)
        .where(Milestone.milestone_id == milestone_id, Milestone.state == MilestoneState.active)
        .values(state=MilestoneState.closed, closed_at=closed_at, progress_version=_bump_version())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # Nothing was written; ends the transaction without expiring loaded objects
        await db.commit()
        milestone = await db.get(Milestone, milestone_id, populate_existing=True)
        if milestone is None:
            raise MilestoneNotFound(f"Milestone {milestone_id} not found")
        raise NotActive(f"Milestone {milestone_id} is {milestone.state.value}")

    dependent_count = await count_dependents(db, milestone_id)
    is_async = dependent_count > settings.ASYNC_CLOSURE_THRESHOLD
    job = ClosureCascadeJob(
        milestone_id=milestone_id,
        actor=actor,
        mode=CascadeMode.async_ if is_async else CascadeMode.sync,
        status=CascadeStatus.pending,
        dependent_count=dependent_count,
        max_attempts=settings.CASCADE_MAX_ATTEMPTS,
        # Inline cascades are left to the worker only if this process never gets to them
        next_attempt_at=closed_at if is_async else closed_at + timedelta(seconds=settings.CASCADE_LEASE_SECONDS),
    )
    db.add(job)
    await db.commit()
    job_id = job.job_id
    await progress_cache.invalidate(milestone_id)

    logger.info(
        f"🔒 Milestone {milestone_id} closed by {actor} "
        f"({dependent_count} dependents, {job.mode.value} cascade)"
    )

    cascade_status = CascadeStatus.pending
    if not is_async:
        finished = await run_cascade(db, job_id, notifier=notifier, due_only=False)
        if finished is not None:
            cascade_status = finished.status

    return ClosureResponse(
        milestone_id=milestone_id,
        state=MilestoneState.closed,
        closed_at=closed_at,
        job_id=job_id,
        cascade_mode=job.mode,
        cascade_status=cascade_status,
        dependent_count=dependent_count,
    )


async def _claim(db: AsyncSession, job_id: str, due_only: bool) -> bool:
    """Move a job to running; only one caller can win the claim."""
    now = utcnow()
    lease_cutoff = now - timedelta(seconds=settings.CASCADE_LEASE_SECONDS)

    claimable = ClosureCascadeJob.status.in_(RETRYABLE)
    if due_only:
        claimable = and_(claimable, ClosureCascadeJob.next_attempt_at <= now)
    stale = and_(
        ClosureCascadeJob.status == CascadeStatus.running,
        ClosureCascadeJob.claimed_at < lease_cutoff,
    )

    result = await db.execute(
        update(ClosureCascadeJob)
        .where(ClosureCascadeJob.job_id == job_id, or_(claimable, stale))
        .values(
            status=CascadeStatus.running,
            claimed_at=now,
            attempts=ClosureCascadeJob.attempts + 1,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1


async def _mark_dependents(db: AsyncSession, job: ClosureCascadeJob) -> None:
    """Stamp the milestone closure on dependents not yet stamped."""
    milestone = await db.get(Milestone, job.milestone_id, populate_existing=True)
    if milestone is None:
        raise MilestoneNotFound(f"Milestone {job.milestone_id} not found")

    issues = await db.execute(
        update(Issue)
        .where(Issue.milestone_id == milestone.milestone_id, Issue.milestone_closed_at.is_(None))
        .values(milestone_closed_at=milestone.closed_at)
        .execution_options(synchronize_session=False)
    )
    merge_requests = await db.execute(
        update(MergeRequest)
        .where(
            MergeRequest.milestone_id == milestone.milestone_id,
            MergeRequest.milestone_closed_at.is_(None),
        )
        .values(milestone_closed_at=milestone.closed_at)
        .execution_options(synchronize_session=False)
    )
    if issues.rowcount or merge_requests.rowcount:
        await db.execute(
            update(Milestone)
            .where(Milestone.milestone_id == milestone.milestone_id)
            .values(progress_version=_bump_version())
            .execution_options(synchronize_session=False)
        )
    job.issues_marked += issues.rowcount
    job.merge_requests_marked += merge_requests.rowcount
    await db.commit()
    await progress_cache.invalidate(milestone.milestone_id)


async def _record_failure(db: AsyncSession, job_id: str, error: Exception) -> ClosureCascadeJob:
    await db.rollback()
    job = await db.get(ClosureCascadeJob, job_id, populate_existing=True)
    final = job.attempts >= job.max_attempts

    job.status = CascadeStatus.needs_attention if final else CascadeStatus.failed
    job.last_error = f"{type(error).__name__}: {error}"[:2000]
    job.next_attempt_at = utcnow() + timedelta(
        seconds=settings.CASCADE_RETRY_BASE_SECONDS * 2 ** max(job.attempts - 1, 0)
    )
    await db.commit()

    failure = AsyncCascadeFailed(
        milestone_id=job.milestone_id,
        job_id=job.job_id,
        attempts=job.attempts,
        reason=job.last_error,
        final=final,
    )
    operations_logger.error(f"❌ {failure.error}: {failure.detail}")
    return job


async def run_cascade(
    db: AsyncSession,
    job_id: str,
    notifier: Optional[MilestoneNotifier] = None,
    due_only: bool = True,
) -> Optional[ClosureCascadeJob]:
    """
    Execute one attempt of a closure cascade.

    Every step is idempotent: dependents already stamped are skipped and the
    notification is not re-sent once ``notified_at`` is recorded. A failure
    schedules a retry with exponential back-off until ``max_attempts``, after
    which the job stays in ``needs_attention``.

    Returns:
        The job after the attempt, or None when another worker holds it.
    """
    notifier = notifier or MilestoneNotifications.notifier

    if not await _claim(db, job_id, due_only):
        logger.debug(f"Cascade job {job_id} not claimable")
        return None

    job = await db.get(ClosureCascadeJob, job_id, populate_existing=True)
    if job is None:
        raise CascadeJobNotFound(f"Cascade job {job_id} not found")

    try:
        await _mark_dependents(db, job)

        if job.notified_at is None:
            await notifier.notify(MilestoneEvent.milestone_closed, job.milestone_id)
            job.notified_at = utcnow()
            await db.commit()

        job.status = CascadeStatus.succeeded
        job.completed_at = utcnow()
        job.last_error = None
        await db.commit()
    except Exception as e:
        return await _record_failure(db, job_id, e)

    logger.info(
        f"✅ Cascade {job_id} for milestone {job.milestone_id} done "
        f"({job.issues_marked} issues, {job.merge_requests_marked} merge requests)"
    )
    return job


async def due_cascade_jobs(db: AsyncSession, limit: int) -> List[str]:
    now = utcnow()
    lease_cutoff = now - timedelta(seconds=settings.CASCADE_LEASE_SECONDS)
    result = await db.execute(
        select(ClosureCascadeJob.job_id)
        .where(
            or_(
                and_(
                    ClosureCascadeJob.status.in_(RETRYABLE),
                    ClosureCascadeJob.next_attempt_at <= now,
                ),
                and_(
                    ClosureCascadeJob.status == CascadeStatus.running,
                    ClosureCascadeJob.claimed_at < lease_cutoff,
                ),
            )
        )
        .order_by(ClosureCascadeJob.next_attempt_at)
        .limit(limit)
    )
    return list(result.scalars().all())


async def run_due_cascades(
    session_scope: Callable[[], AsyncContextManager[AsyncSession]],
    limit: Optional[int] = None,
    notifier: Optional[MilestoneNotifier] = None,
) -> List[ClosureCascadeJob]:
    """One worker sweep: attempt every due cascade job, each in its own session."""
    async with session_scope() as db:
        job_ids = await due_cascade_jobs(db, limit or settings.CASCADE_BATCH_SIZE)

    processed = []
    for job_id in job_ids:
        async with session_scope() as db:
            job = await run_cascade(db, job_id, notifier=notifier)
        if job is not None:
            processed.append(job)
    return processed


async def get_cascade_job(db: AsyncSession, milestone_id: str) -> ClosureCascadeJob:
    result = await db.execute(
        select(ClosureCascadeJob).where(ClosureCascadeJob.milestone_id == milestone_id)
    )
    job = result.scalar_one_or_none()
    if job is None:
        raise CascadeJobNotFound(f"No cascade job for milestone {milestone_id}")
    return job


async def list_cascade_failures(db: AsyncSession) -> List[ClosureCascadeJob]:
    """Jobs waiting on a retry or on an operator."""
    result = await db.execute(
        select(ClosureCascadeJob)
        .where(ClosureCascadeJob.status.in_((CascadeStatus.failed, CascadeStatus.needs_attention)))
        .order_by(ClosureCascadeJob.updated_at.desc())
    )
    return list(result.scalars().all())


async def retry_cascade(db: AsyncSession, job_id: str) -> ClosureCascadeJob:
    """Re-arm a failed job with a fresh attempt budget."""
    result = await db.execute(
        update(ClosureCascadeJob)
        .where(
            ClosureCascadeJob.job_id == job_id,
            ClosureCascadeJob.status.in_((CascadeStatus.failed, CascadeStatus.needs_attention)),
        )
        .values(
            status=CascadeStatus.pending,
            attempts=0,
            max_attempts=settings.CASCADE_MAX_ATTEMPTS,
            next_attempt_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.commit()
        job = await db.get(ClosureCascadeJob, job_id, populate_existing=True)
        if job is None:
            raise CascadeJobNotFound(f"Cascade job {job_id} not found")
        raise CascadeNotRetryable(f"Cascade job {job_id} is {job.status.value}")

    await db.commit()
    job = await db.get(ClosureCascadeJob, job_id, populate_existing=True)
    logger.info(f"🔄 Cascade job {job_id} re-armed for milestone {job.milestone_id}")
    return job

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select, update

from conftest import RecordingNotifier, add_issues, add_merge_requests, make_milestone
from milestone_tracker.constants.constants import (
    CascadeMode,
    CascadeStatus,
    MilestoneEvent,
    MilestoneState,
)
from milestone_tracker.core.cache import progress_cache
from milestone_tracker.core.config import settings
from milestone_tracker.core.exceptions import (
    CascadeJobNotFound,
    CascadeNotRetryable,
    MilestoneNotFound,
    NotActive,
)
from milestone_tracker.models.base import utcnow
from milestone_tracker.models.cascadejob import ClosureCascadeJob
from milestone_tracker.models.issue import Issue
from milestone_tracker.models.mergerequest import MergeRequest
from milestone_tracker.services import AssociationService, ClosureService, ProgressService
from milestone_tracker.utils.schedulers.closurecascadeworker import closure_cascade_worker


@pytest.fixture(autouse=True)
def cascade_settings(monkeypatch):
    monkeypatch.setattr(settings, "ASYNC_CLOSURE_THRESHOLD", 5)
    monkeypatch.setattr(settings, "CASCADE_MAX_ATTEMPTS", 3)
    monkeypatch.setattr(settings, "CASCADE_RETRY_BASE_SECONDS", 0)


async def _make_due(db, job_id):
    await db.execute(
        update(ClosureCascadeJob)
        .where(ClosureCascadeJob.job_id == job_id)
        .values(next_attempt_at=utcnow() - timedelta(seconds=1))
    )
    await db.commit()


async def test_small_milestone_closes_with_inline_cascade(db, notifier):
    milestone = await make_milestone(db)
    await add_issues(db, milestone.milestone_id, total=5, closed=2)
    await ProgressService.get_progress(db, milestone.milestone_id)

    result = await ClosureService.close_milestone(db, milestone.milestone_id, "alice", notifier=notifier)

    assert result.state == MilestoneState.closed
    assert result.closed_at is not None
    assert result.cascade_mode == CascadeMode.sync
    assert result.cascade_status == CascadeStatus.succeeded
    assert result.dependent_count == 5
    assert notifier.events == [(MilestoneEvent.milestone_closed, milestone.milestone_id)]

    stored = await AssociationService.get_milestone(db, milestone.milestone_id)
    assert stored.state == MilestoneState.closed
    assert stored.closed_at == result.closed_at

    issues = (await db.execute(
        select(Issue)
        .where(Issue.milestone_id == milestone.milestone_id)
        .execution_options(populate_existing=True)
    )).scalars().all()
    assert all(issue.milestone_closed_at == result.closed_at for issue in issues)

    snapshot = await ProgressService.get_progress(db, milestone.milestone_id)
    assert snapshot.state == MilestoneState.closed
    assert snapshot.unstamped_dependents == 0
    assert snapshot.completed_issues == 2


async def test_closing_twice_is_rejected(db, notifier):
    milestone = await make_milestone(db)
    release = await AssociationService.create_release(db, "P1", "v1.0")
    first = await ClosureService.close_milestone(db, milestone.milestone_id, "alice", notifier=notifier)

    with pytest.raises(NotActive):
        await ClosureService.close_milestone(db, milestone.milestone_id, "bob", notifier=notifier)
    assert release.tag == "v1.0"

    stored = await AssociationService.get_milestone(db, milestone.milestone_id)
    assert stored.state == MilestoneState.closed
    assert stored.closed_at == first.closed_at


async def test_closing_missing_milestone(db, notifier):
    with pytest.raises(MilestoneNotFound):
        await ClosureService.close_milestone(db, "missing", "alice", notifier=notifier)


async def test_closure_evicts_cached_progress_before_returning(db, notifier):
    milestone = await make_milestone(db)
    before = await ProgressService.get_progress(db, milestone.milestone_id)
    assert before.state == MilestoneState.active

    await ClosureService.close_milestone(db, milestone.milestone_id, "alice", notifier=notifier)

    after = await ProgressService.get_progress(db, milestone.milestone_id)
    assert after.state == MilestoneState.closed
    assert after.version > before.version


async def test_large_milestone_defers_cascade_to_worker(database, db, notifier):
    milestone = await make_milestone(db)
    await add_issues(db, milestone.milestone_id, total=4, closed=1)
    await add_merge_requests(db, milestone.milestone_id, total=2)

    result = await ClosureService.close_milestone(db, milestone.milestone_id, "alice", notifier=notifier)

    assert result.cascade_mode == CascadeMode.async_
    assert result.cascade_status == CascadeStatus.pending
    assert result.dependent_count == 6
    assert notifier.events == []

    # Readers see the closed state before the cascade reaches dependents
    pending = await ProgressService.get_progress(db, milestone.milestone_id)
    assert pending.state == MilestoneState.closed
    assert pending.unstamped_dependents == 6

    processed = await ClosureService.run_due_cascades(database.get_session, notifier=notifier)
    assert [job.status for job in processed] == [CascadeStatus.succeeded]
    assert processed[0].issues_marked == 4
    assert processed[0].merge_requests_marked == 2
    assert notifier.events == [(MilestoneEvent.milestone_closed, milestone.milestone_id)]

    done = await ProgressService.get_progress(db, milestone.milestone_id)
    assert done.unstamped_dependents == 0
    assert done.version > pending.version

    merge_requests = (await db.execute(
        select(MergeRequest).execution_options(populate_existing=True)
    )).scalars().all()
    assert all(mr.milestone_closed_at == result.closed_at for mr in merge_requests)


async def test_failed_cascade_keeps_milestone_closed_and_retries(database, db):
    flaky = RecordingNotifier(failures=1)
    milestone = await make_milestone(db)
    await add_issues(db, milestone.milestone_id, total=6)

    await ClosureService.close_milestone(db, milestone.milestone_id, "alice", notifier=flaky)
    first = await ClosureService.run_due_cascades(database.get_session, notifier=flaky)

    assert first[0].status == CascadeStatus.failed
    assert first[0].attempts == 1
    assert "webhook unavailable" in first[0].last_error
    # Dependents were stamped before the notification failed
    assert first[0].issues_marked == 6
    stored = await AssociationService.get_milestone(db, milestone.milestone_id)
    assert stored.state == MilestoneState.closed

    failures = await ClosureService.list_cascade_failures(db)
    assert [job.job_id for job in failures] == [first[0].job_id]

    second = await ClosureService.run_due_cascades(database.get_session, notifier=flaky)
    assert second[0].status == CascadeStatus.succeeded
    assert second[0].attempts == 2
    assert second[0].issues_marked == 6
    assert flaky.events == [(MilestoneEvent.milestone_closed, milestone.milestone_id)]


async def test_cascade_needs_attention_after_max_attempts(database, db):
    broken = RecordingNotifier(failures=100)
    milestone = await make_milestone(db)
    await add_issues(db, milestone.milestone_id, total=6)
    await ClosureService.close_milestone(db, milestone.milestone_id, "alice", notifier=broken)

    for _ in range(settings.CASCADE_MAX_ATTEMPTS):
        await ClosureService.run_due_cascades(database.get_session, notifier=broken)

    job = await ClosureService.get_cascade_job(db, milestone.milestone_id)
    await db.refresh(job)
    assert job.status == CascadeStatus.needs_attention
    assert job.attempts == settings.CASCADE_MAX_ATTEMPTS
    assert await ClosureService.run_due_cascades(database.get_session, notifier=broken) == []

    rearmed = await ClosureService.retry_cascade(db, job.job_id)
    assert rearmed.status == CascadeStatus.pending
    assert rearmed.attempts == 0

    healed = RecordingNotifier()
    processed = await ClosureService.run_due_cascades(database.get_session, notifier=healed)
    assert processed[0].status == CascadeStatus.succeeded
    assert len(healed.events) == 1


async def test_retry_is_only_for_failed_jobs(db, notifier):
    milestone = await make_milestone(db)
    result = await ClosureService.close_milestone(db, milestone.milestone_id, "alice", notifier=notifier)

    with pytest.raises(CascadeNotRetryable):
        await ClosureService.retry_cascade(db, result.job_id)
    with pytest.raises(CascadeJobNotFound):
        await ClosureService.retry_cascade(db, "missing")


async def test_rerunning_a_cascade_does_not_renotify(db, notifier):
    milestone = await make_milestone(db)
    await add_issues(db, milestone.milestone_id, total=2)
    result = await ClosureService.close_milestone(db, milestone.milestone_id, "alice", notifier=notifier)

    # Simulate a worker that crashed after finishing but before recording it
    await db.execute(
        update(ClosureCascadeJob)
        .where(ClosureCascadeJob.job_id == result.job_id)
        .values(status=CascadeStatus.pending)
    )
    await db.commit()
    await _make_due(db, result.job_id)

    job = await ClosureService.run_cascade(db, result.job_id, notifier=notifier)

    assert job.status == CascadeStatus.succeeded
    assert job.issues_marked == 2
    assert len(notifier.events) == 1


async def test_stale_running_job_is_reclaimed(database, db, notifier, monkeypatch):
    milestone = await make_milestone(db)
    await add_issues(db, milestone.milestone_id, total=6)
    result = await ClosureService.close_milestone(db, milestone.milestone_id, "alice", notifier=notifier)

    await db.execute(
        update(ClosureCascadeJob)
        .where(ClosureCascadeJob.job_id == result.job_id)
        .values(status=CascadeStatus.running, claimed_at=utcnow() - timedelta(hours=1), attempts=1)
    )
    await db.commit()

    monkeypatch.setattr(settings, "CASCADE_LEASE_SECONDS", 60)
    processed = await ClosureService.run_due_cascades(database.get_session, notifier=notifier)

    assert processed[0].status == CascadeStatus.succeeded
    assert processed[0].attempts == 2


async def test_claimed_job_is_not_run_twice(db, notifier):
    milestone = await make_milestone(db)
    await add_issues(db, milestone.milestone_id, total=6)
    result = await ClosureService.close_milestone(db, milestone.milestone_id, "alice", notifier=notifier)

    first = await ClosureService.run_cascade(db, result.job_id, notifier=notifier)
    second = await ClosureService.run_cascade(db, result.job_id, notifier=notifier)

    assert first.status == CascadeStatus.succeeded
    assert second is None
    assert len(notifier.events) == 1


async def test_concurrent_close_yields_one_success(database, notifier):
    async with database.session_factory() as session:
        milestone = await make_milestone(session)

    async def close(actor):
        async with database.session_factory() as session:
            return await ClosureService.close_milestone(session, milestone.milestone_id, actor, notifier=notifier)

    results = await asyncio.gather(close("alice"), close("bob"), return_exceptions=True)

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], NotActive)
    assert len(notifier.events) == 1


async def test_closed_milestone_stays_closed_through_later_writes(db, notifier):
    milestone = await make_milestone(db)
    await ClosureService.close_milestone(db, milestone.milestone_id, "alice", notifier=notifier)

    await add_issues(db, milestone.milestone_id, total=1, prefix="late")
    release = await AssociationService.create_release(db, "P1", "v9")
    await AssociationService.associate_release(db, release.release_id, milestone.milestone_id)

    stored = await AssociationService.get_milestone(db, milestone.milestone_id)
    assert stored.state == MilestoneState.closed
    late = await db.get(Issue, f"late-{milestone.milestone_id}-0")
    assert late.milestone_closed_at == stored.closed_at
    assert progress_cache.stats()["entries"] == 0


async def test_worker_sweeps_pending_cascades_until_cancelled(db, notifier):
    milestone = await make_milestone(db)
    await add_issues(db, milestone.milestone_id, total=6)
    await ClosureService.close_milestone(db, milestone.milestone_id, "alice", notifier=notifier)

    worker = asyncio.create_task(closure_cascade_worker(poll_interval=0.05, notifier=notifier))
    for _ in range(100):
        status = (await db.execute(
            select(ClosureCascadeJob.status).where(ClosureCascadeJob.milestone_id == milestone.milestone_id)
        )).scalar_one()
        if status == CascadeStatus.succeeded:
            break
        await asyncio.sleep(0.05)
    worker.cancel()
    with pytest.raises(asyncio.CancelledError):
        await worker

    job = await ClosureService.get_cascade_job(db, milestone.milestone_id)
    await db.refresh(job)
    assert job.status == CascadeStatus.succeeded
    assert notifier.events == [(MilestoneEvent.milestone_closed, milestone.milestone_id)]

"""Milestone creation and release association."""

import logging
import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from milestone_tracker.constants.constants import scope_key_for
from milestone_tracker.core.cache import progress_cache
from milestone_tracker.core.exceptions import (
    AlreadyAssociated,
    DuplicateTag,
    DuplicateTitle,
    InvalidDateRange,
    InvalidScope,
    InvalidTitle,
    MilestoneNotFound,
    ReleaseNotFound,
    ScopeMismatch,
)
from milestone_tracker.models.base import as_naive_utc
from milestone_tracker.models.milestones import Milestone
from milestone_tracker.models.project import Project
from milestone_tracker.models.release import Release
from milestone_tracker.schemas.releaseSchema import AssociationResponse

logger = logging.getLogger(__name__)


async def get_milestone(db: AsyncSession, milestone_id: str) -> Milestone:
    milestone = await db.get(Milestone, milestone_id, populate_existing=True)
    if milestone is None:
        raise MilestoneNotFound(f"Milestone {milestone_id} not found")
    return milestone


async def get_release(db: AsyncSession, release_id: str) -> Release:
    release = await db.get(Release, release_id, populate_existing=True)
    if release is None:
        raise ReleaseNotFound(f"Release {release_id} not found")
    return release


async def create_milestone(
    db: AsyncSession,
    title: str,
    description: Optional[str],
    start_date: date,
    due_date: date,
    project_id: Optional[str] = None,
    group_id: Optional[str] = None,
) -> Milestone:
    """
    Create an active milestone in exactly one project or group.

    The (scope, title) unique index decides concurrent creations: the second
    writer hits an IntegrityError. Only the insert's savepoint is rolled back,
    so objects the session already loaded stay usable, and the error is
    reported as DuplicateTitle.

    Raises:
        InvalidScope: both or neither of project_id/group_id given.
        InvalidDateRange: start_date is after due_date.
        InvalidTitle: the title is blank.
        DuplicateTitle: the scope already has a milestone with this title.
    """
    if (project_id is None) == (group_id is None):
        raise InvalidScope()
    if start_date > due_date:
        raise InvalidDateRange(f"start_date {start_date} is after due_date {due_date}")

    title = (title or "").strip()
    if not title:
        raise InvalidTitle()

    scope_key = scope_key_for(project_id=project_id, group_id=group_id)
    milestone = Milestone(
        milestone_id=str(uuid.uuid4()),
        title=title,
        description=description,
        start_date=start_date,
        due_date=due_date,
        project_id=project_id,
        group_id=group_id,
        scope_key=scope_key,
    )

    try:
        async with db.begin_nested():
            db.add(milestone)
            await db.flush()
    except IntegrityError:
        logger.info(f"Duplicate milestone title '{title}' rejected in {scope_key}")
        raise DuplicateTitle(f"Milestone '{title}' already exists in {scope_key}")

    await db.commit()
    await db.refresh(milestone)
    logger.info(f"✅ Milestone {milestone.milestone_id} '{title}' created in {scope_key}")
    return milestone


async def create_release(
    db: AsyncSession,
    project_id: str,
    tag: str,
    description: Optional[str] = None,
    released_at: Optional[datetime] = None,
) -> Release:
    """Register an unlinked release; (project, tag) is unique. released_at is stored as naive UTC."""
    release = Release(
        release_id=str(uuid.uuid4()),
        project_id=project_id,
        tag=tag,
        description=description,
        released_at=as_naive_utc(released_at),
    )
    try:
        async with db.begin_nested():
            db.add(release)
            await db.flush()
    except IntegrityError:
        raise DuplicateTag(f"Release '{tag}' already exists in project {project_id}")

    await db.commit()
    await db.refresh(release)
    logger.info(f"Release {release.release_id} '{tag}' created in project {project_id}")
    return release


async def _check_scope(db: AsyncSession, release: Release, milestone: Milestone) -> None:
    """A project milestone takes releases of that project, a group milestone releases of its projects."""
    if milestone.project_id is not None:
        if release.project_id != milestone.project_id:
            raise ScopeMismatch(
                f"Release {release.release_id} belongs to project {release.project_id}, "
                f"milestone {milestone.milestone_id} to project {milestone.project_id}"
            )
        return

    result = await db.execute(
        select(Project.group_id).where(Project.project_id == release.project_id)
    )
    release_group = result.scalar_one_or_none()
    if release_group != milestone.group_id:
        raise ScopeMismatch(
            f"Project {release.project_id} is not part of group {milestone.group_id}"
        )


async def associate_release(db: AsyncSession, release_id: str, milestone_id: str) -> AssociationResponse:
    """
    Link a release to a milestone.

    The link is a single conditional UPDATE guarded by ``milestone_id IS NULL``,
    so of two concurrent calls on the same release only one can apply. The
    milestone's progress version is bumped in the same transaction and its
    cached snapshot is evicted after commit.

    Raises:
        ReleaseNotFound, MilestoneNotFound, ScopeMismatch, AlreadyAssociated
    """
    release = await get_release(db, release_id)
    milestone = await get_milestone(db, milestone_id)

    if release.milestone_id is not None:
        raise AlreadyAssociated(
            f"Release {release_id} is already linked to milestone {release.milestone_id}"
        )
    await _check_scope(db, release, milestone)

    try:
        async with db.begin_nested():
            result = await db.execute(
                update(Release)
                .where(Release.release_id == release_id, Release.milestone_id.is_(None))
                .values(milestone_id=milestone_id)
                .execution_options(synchronize_session=False)
            )
            linked = result.rowcount == 1
            if linked:
                await db.execute(
                    update(Milestone)
                    .where(Milestone.milestone_id == milestone_id)
                    .values(progress_version=Milestone.progress_version + 1)
                    .execution_options(synchronize_session=False)
                )
                version_result = await db.execute(
                    select(Milestone.progress_version).where(Milestone.milestone_id == milestone_id)
                )
                progress_version = version_result.scalar_one()
    except IntegrityError:
        raise MilestoneNotFound(f"Milestone {milestone_id} not found")

    # Ends the transaction without expiring objects the caller holds
    await db.commit()
    if not linked:
        current = await db.get(Release, release_id, populate_existing=True)
        if current is None:
            raise ReleaseNotFound(f"Release {release_id} not found")
        raise AlreadyAssociated(
            f"Release {release_id} is already linked to milestone {current.milestone_id}"
        )

    await progress_cache.invalidate(milestone_id)
    logger.info(f"🔗 Release {release_id} ({release.tag}) linked to milestone {milestone_id}")

    return AssociationResponse(
        release_id=release_id,
        milestone_id=milestone_id,
        tag=release.tag,
        progress_version=progress_version,
    )

from datetime import date
from typing import List, Optional

import pytest
import pytest_asyncio

from milestone_tracker.constants.constants import IssueState, MergeRequestState
from milestone_tracker.core.cache import progress_cache
from milestone_tracker.core.database import session_manager
from milestone_tracker.services import AssociationService, DependentEntitySync


class RecordingNotifier:
    """Notifier double: records events and fails the first ``failures`` calls."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.events: List[tuple] = []
        self.calls = 0

    async def notify(self, event, milestone_id):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError("webhook unavailable")
        self.events.append((event, milestone_id))


@pytest_asyncio.fixture
async def database(tmp_path):
    await session_manager.init(f"sqlite+aiosqlite:///{tmp_path / 'milestones.db'}")
    await progress_cache.clear()
    yield session_manager
    await session_manager.close()
    await progress_cache.clear()


@pytest_asyncio.fixture
async def db(database):
    async with database.session_factory() as session:
        yield session


@pytest.fixture
def notifier():
    return RecordingNotifier()


async def make_milestone(
    db,
    title: str = "Beta",
    project_id: Optional[str] = "P1",
    group_id: Optional[str] = None,
    start_date: date = date(2024, 1, 1),
    due_date: date = date(2024, 3, 1),
):
    return await AssociationService.create_milestone(
        db,
        title=title,
        description=None,
        start_date=start_date,
        due_date=due_date,
        project_id=None if group_id else project_id,
        group_id=group_id,
    )


async def add_issues(db, milestone_id: str, total: int, closed: int = 0, weights=None, prefix: str = "I"):
    for index in range(total):
        await DependentEntitySync.upsert_issue(
            db,
            issue_id=f"{prefix}-{milestone_id}-{index}",
            project_id="P1",
            milestone_id=milestone_id,
            title=f"Issue {index}",
            state=IssueState.closed if index < closed else IssueState.opened,
            weight=weights[index] if weights else None,
        )


async def add_merge_requests(db, milestone_id: str, total: int, merged: int = 0):
    for index in range(total):
        await DependentEntitySync.upsert_merge_request(
            db,
            merge_request_id=f"MR-{milestone_id}-{index}",
            project_id="P1",
            milestone_id=milestone_id,
            title=f"Merge request {index}",
            state=MergeRequestState.merged if index < merged else MergeRequestState.opened,
        )

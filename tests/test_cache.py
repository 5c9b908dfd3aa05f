from datetime import date

from milestone_tracker.constants.constants import MilestoneState
from milestone_tracker.core.cache import ProgressCache
from milestone_tracker.schemas.progressSchema import ProgressSnapshot


def _snapshot(milestone_id: str, version: int) -> ProgressSnapshot:
    return ProgressSnapshot(
        milestone_id=milestone_id,
        state=MilestoneState.active,
        completed_issues=0,
        total_issues=0,
        progress_percent=0.0,
        elapsed_days=0,
        total_days=10,
        version=version,
        as_of=date(2024, 1, 1),
    )


async def test_older_version_never_replaces_newer():
    cache = ProgressCache(max_size=4)
    await cache.set("m", 3, date(2024, 1, 1), _snapshot("m", 3))
    await cache.set("m", 2, date(2024, 1, 1), _snapshot("m", 2))

    entry = await cache.get("m")
    assert entry.version == 3


async def test_oldest_entry_is_evicted_when_full():
    cache = ProgressCache(max_size=2)
    for milestone_id in ("a", "b", "c"):
        await cache.set(milestone_id, 1, date(2024, 1, 1), _snapshot(milestone_id, 1))

    assert await cache.get("a") is None
    assert (await cache.get("c")).version == 1
    assert cache.stats()["entries"] == 2


async def test_invalidate_and_clear():
    cache = ProgressCache()
    await cache.set("a", 1, date(2024, 1, 1), _snapshot("a", 1))
    await cache.set("b", 1, date(2024, 1, 1), _snapshot("b", 1))

    await cache.invalidate("a", "missing")
    assert await cache.get("a") is None
    assert await cache.get("b") is not None

    await cache.clear()
    assert cache.stats() == {"entries": 0, "hits": 0, "misses": 0}

"""In-process memoizing cache for milestone progress snapshots."""

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date
from typing import Dict, Optional

from milestone_tracker.core.config import settings
from milestone_tracker.schemas.progressSchema import ProgressSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachedProgress:
    version: int
    as_of: date
    snapshot: ProgressSnapshot


class ProgressCache:
    """
    Derived copy of ProgressSnapshot keyed by milestone id.

    Entries are tagged with the milestone's progress_version and the day they
    were computed for; callers treat any mismatch as a miss. Clearing the cache
    is always safe.
    """

    def __init__(self, max_size: int = 1024):
        self.max_size = max_size
        self._entries: "OrderedDict[str, CachedProgress]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    async def get(self, milestone_id: str) -> Optional[CachedProgress]:
        with self._lock:
            entry = self._entries.get(milestone_id)
            if entry is None:
                self.misses += 1
                return None
            self.hits += 1
            self._entries.move_to_end(milestone_id)
            return entry

    async def set(self, milestone_id: str, version: int, as_of: date, snapshot: ProgressSnapshot) -> None:
        with self._lock:
            current = self._entries.get(milestone_id)
            # Never replace a newer version with an older one
            if current is not None and current.version > version:
                return
            self._entries[milestone_id] = CachedProgress(version=version, as_of=as_of, snapshot=snapshot)
            self._entries.move_to_end(milestone_id)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    async def invalidate(self, *milestone_ids: str) -> None:
        with self._lock:
            for milestone_id in milestone_ids:
                if self._entries.pop(milestone_id, None) is not None:
                    logger.debug(f"Evicted cached progress for milestone {milestone_id}")

    async def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def stats(self) -> Dict[str, int]:
        return {"entries": len(self._entries), "hits": self.hits, "misses": self.misses}


progress_cache = ProgressCache(max_size=settings.PROGRESS_CACHE_SIZE)

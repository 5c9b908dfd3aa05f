from datetime import date, datetime
from typing import List, Optional
from pydantic import BaseModel

from milestone_tracker.constants.constants import MilestoneState, ReleaseStatus


class ReleaseProgress(BaseModel):
    """Status of one release linked to a milestone."""
    release_id: str
    tag: str
    released_at: Optional[datetime] = None
    status: ReleaseStatus


class ProgressSnapshot(BaseModel):
    """Derived completion summary of a milestone."""
    milestone_id: str
    state: MilestoneState
    completed_issues: int
    total_issues: int
    progress_percent: float
    weighted_enabled: bool = False
    completed_weight: Optional[int] = None
    total_weight: Optional[int] = None
    weighted_progress_percent: Optional[float] = None
    merged_merge_requests: int = 0
    total_merge_requests: int = 0
    unstamped_dependents: int = 0
    elapsed_days: int
    total_days: int
    releases: List[ReleaseProgress] = []
    version: int
    as_of: date

    def store_fields(self) -> dict:
        """Fields derivable from the store alone, used to verify cached copies."""
        return self.model_dump(exclude={"version"})

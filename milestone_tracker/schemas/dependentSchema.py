from typing import Optional
from pydantic import BaseModel, Field

from milestone_tracker.constants.constants import IssueState, MergeRequestState


class IssueSyncRequest(BaseModel):
    """Issue state reported by the issue tracker."""
    project_id: str
    milestone_id: Optional[str] = None
    title: str = Field(..., min_length=1)
    state: IssueState = IssueState.opened
    weight: Optional[int] = Field(None, ge=0)


class MergeRequestSyncRequest(BaseModel):
    """Merge request state reported by the issue tracker."""
    project_id: str
    milestone_id: Optional[str] = None
    title: str = Field(..., min_length=1)
    state: MergeRequestState = MergeRequestState.opened

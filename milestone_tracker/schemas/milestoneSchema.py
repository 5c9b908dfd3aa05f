from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, Field

from milestone_tracker.constants.constants import CascadeMode, CascadeStatus, MilestoneState


class MilestoneCreateRequest(BaseModel):
    """Request schema for creating a new milestone."""
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    start_date: date
    due_date: date
    project_id: Optional[str] = None
    group_id: Optional[str] = None


class MilestoneResponse(BaseModel):
    milestone_id: str
    title: str
    description: Optional[str]
    start_date: date
    due_date: date
    project_id: Optional[str]
    group_id: Optional[str]
    state: MilestoneState
    closed_at: Optional[datetime]
    progress_version: int

    class Config:
        from_attributes = True


class ClosureResponse(BaseModel):
    """Outcome of closing a milestone."""
    milestone_id: str
    state: MilestoneState
    closed_at: datetime
    job_id: str
    cascade_mode: CascadeMode
    cascade_status: CascadeStatus
    dependent_count: int


class CascadeJobResponse(BaseModel):
    job_id: str
    milestone_id: str
    actor: Optional[str]
    mode: CascadeMode
    status: CascadeStatus
    dependent_count: int
    attempts: int
    max_attempts: int
    next_attempt_at: datetime
    last_error: Optional[str]
    issues_marked: int
    merge_requests_marked: int
    notified_at: Optional[datetime]
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


class ScopeSettingRequest(BaseModel):
    """Request schema for per-scope progress configuration."""
    project_id: Optional[str] = None
    group_id: Optional[str] = None
    weighted_progress_enabled: bool

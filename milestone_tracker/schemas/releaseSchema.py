from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class ReleaseCreateRequest(BaseModel):
    """Request schema for registering a release."""
    project_id: str = Field(..., min_length=1)
    tag: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    released_at: Optional[datetime] = None


class ReleaseAssociateRequest(BaseModel):
    milestone_id: str = Field(..., min_length=1)


class ReleaseResponse(BaseModel):
    release_id: str
    project_id: str
    tag: str
    description: Optional[str]
    released_at: Optional[datetime]
    milestone_id: Optional[str]

    class Config:
        from_attributes = True


class AssociationResponse(BaseModel):
    """Confirmation of a release linked to a milestone."""
    release_id: str
    milestone_id: str
    tag: str
    progress_version: int

"""Merge request projection read by progress computation."""

from sqlalchemy import Column, DateTime, Enum as SQLEnum, ForeignKey, String
from sqlalchemy.orm import relationship
from milestone_tracker.constants.constants import MergeRequestState
from milestone_tracker.models.base import Base, TimestampMixin


class MergeRequest(Base, TimestampMixin):
    """Model representing the progress-relevant fields of a merge request."""

    __tablename__ = "merge_requests"
    merge_request_id = Column(String, primary_key=True, index=True)
    project_id = Column(String, nullable=False)
    milestone_id = Column(String, ForeignKey("milestones.milestone_id"), nullable=True, index=True)
    title = Column(String, nullable=False)
    state = Column(SQLEnum(MergeRequestState), default=MergeRequestState.opened, nullable=False)
    milestone_closed_at = Column(DateTime, nullable=True)
    milestone = relationship("Milestone", back_populates="merge_requests")

"""Issue projection read by progress computation."""

from sqlalchemy import Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from milestone_tracker.constants.constants import IssueState
from milestone_tracker.models.base import Base, TimestampMixin


class Issue(Base, TimestampMixin):
    """Model representing the progress-relevant fields of an issue."""

    __tablename__ = "issues"
    issue_id = Column(String, primary_key=True, index=True)
    project_id = Column(String, nullable=False)
    milestone_id = Column(String, ForeignKey("milestones.milestone_id"), nullable=True, index=True)
    title = Column(String, nullable=False)
    state = Column(SQLEnum(IssueState), default=IssueState.opened, nullable=False)
    weight = Column(Integer, nullable=True)
    closed_at = Column(DateTime, nullable=True)
    milestone_closed_at = Column(DateTime, nullable=True)
    milestone = relationship("Milestone", back_populates="issues")

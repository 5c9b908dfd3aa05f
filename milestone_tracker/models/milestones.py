"""Milestone model for project and group milestones."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SQLEnum,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from milestone_tracker.constants.constants import MilestoneState
from milestone_tracker.models.base import Base, TimestampMixin


class Milestone(Base, TimestampMixin):
    """Model representing a milestone owned by exactly one project or group."""

    __tablename__ = "milestones"
    __table_args__ = (
        UniqueConstraint("scope_key", "title", name="uq_milestones_scope_title"),
        CheckConstraint(
            "(project_id IS NULL) <> (group_id IS NULL)",
            name="ck_milestones_single_scope",
        ),
        CheckConstraint("start_date <= due_date", name="ck_milestones_date_range"),
    )

    milestone_id = Column(String, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    start_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    project_id = Column(String, nullable=True, index=True)
    group_id = Column(String, nullable=True, index=True)
    scope_key = Column(String, nullable=False)
    state = Column(SQLEnum(MilestoneState), default=MilestoneState.active, nullable=False)
    closed_at = Column(DateTime, nullable=True)
    # Bumped by every write that changes progress inputs
    progress_version = Column(Integer, default=1, nullable=False)

    releases = relationship("Release", back_populates="milestone")
    issues = relationship("Issue", back_populates="milestone")
    merge_requests = relationship("MergeRequest", back_populates="milestone")

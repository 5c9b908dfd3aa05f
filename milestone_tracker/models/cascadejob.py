"""Durable task record for milestone closure cascades."""

import uuid
from sqlalchemy import Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from milestone_tracker.constants.constants import CascadeMode, CascadeStatus
from milestone_tracker.models.base import Base, TimestampMixin, utcnow


class ClosureCascadeJob(Base, TimestampMixin):
    """Model representing the deferred side effects of closing a milestone."""

    __tablename__ = "closure_cascade_jobs"

    job_id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    # One cascade per milestone; closure is terminal
    milestone_id = Column(String, ForeignKey("milestones.milestone_id"), nullable=False, unique=True)
    actor = Column(String, nullable=True)
    mode = Column(SQLEnum(CascadeMode), nullable=False)
    status = Column(SQLEnum(CascadeStatus), default=CascadeStatus.pending, nullable=False, index=True)
    dependent_count = Column(Integer, default=0, nullable=False)

    # Retry bookkeeping
    attempts = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, nullable=False)
    next_attempt_at = Column(DateTime, default=utcnow, nullable=False)
    claimed_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)

    # Progress of the cascade itself
    issues_marked = Column(Integer, default=0, nullable=False)
    merge_requests_marked = Column(Integer, default=0, nullable=False)
    notified_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    milestone = relationship("Milestone")

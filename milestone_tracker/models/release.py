"""Release model for tagged project releases."""

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from milestone_tracker.models.base import Base, TimestampMixin


class Release(Base, TimestampMixin):
    """Model representing a release, linked to at most one milestone."""

    __tablename__ = "releases"
    __table_args__ = (
        UniqueConstraint("project_id", "tag", name="uq_releases_project_tag"),
    )

    release_id = Column(String, primary_key=True, index=True)
    project_id = Column(String, nullable=False, index=True)
    tag = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    released_at = Column(DateTime, nullable=True)
    milestone_id = Column(String, ForeignKey("milestones.milestone_id"), nullable=True, index=True)
    milestone = relationship("Milestone", back_populates="releases")

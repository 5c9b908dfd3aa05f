"""Project model: the lightweight projection used to resolve milestone scope."""

from sqlalchemy import Column, String
from milestone_tracker.models.base import Base, TimestampMixin


class Project(Base, TimestampMixin):
    """Model representing a project and the group it belongs to."""

    __tablename__ = "projects"
    project_id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    group_id = Column(String, nullable=True, index=True)

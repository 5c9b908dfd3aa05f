from sqlalchemy import Boolean, Column, String
from milestone_tracker.models.base import Base, TimestampMixin


class ScopeSetting(Base, TimestampMixin):
    """Per-scope progress configuration."""

    __tablename__ = "scope_settings"
    scope_key = Column(String, primary_key=True)
    weighted_progress_enabled = Column(Boolean, default=False, nullable=False)

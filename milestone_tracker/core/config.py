import logging
from dotenv import load_dotenv
from pydantic import Field, computed_field
from pydantic_settings import BaseSettings
from typing import ClassVar, List

# Load environment variables from .env file
load_dotenv(".env", override=False)
logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Class to store all the settings of the milestone tracker service."""

    # ------------------------------
    # Database
    # ------------------------------
    DATABASE_URL: str = Field(default="sqlite+aiosqlite:///./milestone_tracker.db")
    DATABASE_ECHO: bool = Field(default=False)

    # ------------------------------
    # Environment
    # ------------------------------
    ENVIRONMENT: str = Field(default="development")
    LOG_LEVEL: str = Field(default="INFO")

    # ------------------------------
    # Auth
    # ------------------------------
    SECRET_KEY: str = Field(default="dev-secret-key")
    ALGORITHM: str = Field(default="HS256")
    READ_ONLY_ACTORS: List[str] = Field(default_factory=list)

    # ------------------------------
    # Closure cascade
    # ------------------------------
    ASYNC_CLOSURE_THRESHOLD: int = Field(default=100, ge=0)
    CASCADE_MAX_ATTEMPTS: int = Field(default=5, ge=1)
    CASCADE_RETRY_BASE_SECONDS: int = Field(default=30, ge=0)
    CASCADE_LEASE_SECONDS: int = Field(default=300, ge=1)
    CASCADE_POLL_INTERVAL_SECONDS: float = Field(default=15.0, gt=0)
    CASCADE_BATCH_SIZE: int = Field(default=10, ge=1)
    CASCADE_WORKER_ENABLED: bool = Field(default=True)

    # ------------------------------
    # Progress
    # ------------------------------
    PROGRESS_CACHE_SIZE: int = Field(default=1024, ge=1)
    PROGRESS_VERIFY_CACHE: bool = Field(default=False)
    WEIGHTED_PROGRESS_DEFAULT: bool = Field(default=False)

    # ------------------------------
    # Notifications - Optional
    # ------------------------------
    NOTIFICATION_WEBHOOK_URL: str = Field(default="")
    NOTIFICATION_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)

    # ------------------------------
    # API
    # ------------------------------
    RATE_LIMIT_DEFAULT: str = Field(default="120/minute")

    # ------------------------------
    # Database models
    # ------------------------------
    DB_MODELS: ClassVar[List[str]] = [
        "milestone_tracker.models.project",
        "milestone_tracker.models.milestones",
        "milestone_tracker.models.release",
        "milestone_tracker.models.issue",
        "milestone_tracker.models.mergerequest",
        "milestone_tracker.models.scopesetting",
        "milestone_tracker.models.cascadejob",
    ]

    # ------------------------------
    # Computed Fields
    # ------------------------------
    @computed_field
    @property
    def IS_SQLITE(self) -> bool:
        """Whether the configured database is SQLite (tests and local runs)."""
        return self.DATABASE_URL.startswith("sqlite")

    class Config:
        """Configuration for the settings class."""
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


# Instantiate the settings
settings = Settings()

"""Typed errors raised by the milestone tracker services."""

from typing import Optional


class MilestoneTrackerError(Exception):
    """Base class for every error surfaced by the milestone services."""

    status_code: int = 400
    default_detail: str = "Milestone tracker error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    @property
    def error(self) -> str:
        return type(self).__name__


# ------------------------------
# Validation errors - nothing is persisted
# ------------------------------
class ValidationFailed(MilestoneTrackerError):
    status_code = 422
    default_detail = "Invalid input"


class InvalidScope(ValidationFailed):
    default_detail = "Exactly one of project_id or group_id must be provided"


class InvalidDateRange(ValidationFailed):
    default_detail = "start_date must be on or before due_date"


class InvalidTitle(ValidationFailed):
    default_detail = "Title must not be blank"


# ------------------------------
# Conflict errors - a conditional write did not apply
# ------------------------------
class Conflict(MilestoneTrackerError):
    status_code = 409
    default_detail = "Conflicting state"


class DuplicateTitle(Conflict):
    default_detail = "A milestone with this title already exists in this scope"


class DuplicateTag(Conflict):
    default_detail = "A release with this tag already exists in this project"


class AlreadyAssociated(Conflict):
    default_detail = "Release is already linked to a milestone"


class NotActive(Conflict):
    default_detail = "Milestone is not active"


class ScopeMismatch(Conflict):
    default_detail = "Release project is outside the milestone scope"


class CascadeNotRetryable(Conflict):
    default_detail = "Cascade job is not in a retryable state"


# ------------------------------
# Not-found errors
# ------------------------------
class NotFound(MilestoneTrackerError):
    status_code = 404
    default_detail = "Not found"


class MilestoneNotFound(NotFound):
    default_detail = "Milestone not found"


class ReleaseNotFound(NotFound):
    default_detail = "Release not found"


class CascadeJobNotFound(NotFound):
    default_detail = "Cascade job not found"


# ------------------------------
# Consistency errors - operational channel
# ------------------------------
class ConsistencyError(MilestoneTrackerError):
    status_code = 500
    default_detail = "Consistency error"


class InconsistentState(ConsistencyError):
    default_detail = "Cached progress disagrees with the store"


class AsyncCascadeFailed(ConsistencyError):
    default_detail = "Milestone closure cascade failed"

    def __init__(self, milestone_id: str, job_id: str, attempts: int, reason: str, final: bool = False):
        self.milestone_id = milestone_id
        self.job_id = job_id
        self.attempts = attempts
        self.reason = reason
        self.final = final
        super().__init__(
            f"Cascade {job_id} for milestone {milestone_id} failed "
            f"(attempt {attempts}{', giving up' if final else ''}): {reason}"
        )

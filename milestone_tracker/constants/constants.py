"""Constants for milestone states, dependent entity states, release statuses and cascade jobs."""

from enum import Enum


class MilestoneState(str, Enum):
    """Enumeration of milestone lifecycle states."""

    active = "active"
    closed = "closed"


class ScopeType(str, Enum):
    """Owning container of a milestone."""

    project = "project"
    group = "group"


class IssueState(str, Enum):
    """Enumeration of issue states relevant to progress."""

    opened = "opened"
    closed = "closed"


class MergeRequestState(str, Enum):
    """Enumeration of merge request states relevant to progress."""

    opened = "opened"
    merged = "merged"
    closed = "closed"


class ReleaseStatus(str, Enum):
    """Status of a release as reported in progress snapshots."""

    upcoming = "upcoming"
    released = "released"


class CascadeMode(str, Enum):
    """How a closure cascade is executed."""

    sync = "sync"
    async_ = "async"


class CascadeStatus(str, Enum):
    """Enumeration of closure cascade job statuses."""

    pending = "pending"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"
    needs_attention = "needs_attention"


class MilestoneEvent(str, Enum):
    """Events dispatched to the notification collaborator."""

    milestone_closed = "milestone_closed"


class PermissionAction(str, Enum):
    """Actions checked against the permission collaborator."""

    close = "close"
    associate = "associate"


def scope_key_for(project_id: str = None, group_id: str = None) -> str:
    """Build the scope key used by the (scope, title) uniqueness index."""
    if project_id is not None:
        return f"{ScopeType.project.value}:{project_id}"
    return f"{ScopeType.group.value}:{group_id}"

"""Task model - a requester's errand or commission."""

from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from runnergate.models.enums import TaskKind, TaskStatus


def category_tokens(label: str | None) -> list[str]:
    """Split a category label into normalized tokens.

    Commission categories are stored as a comma-separated list, errands carry
    a single label. Both normalize the same way.
    """
    if not label:
        return []
    return [part.strip().lower() for part in label.split(",") if part.strip()]


class Task(BaseModel):
    """Errand or commission awaiting (or past) dispatch.

    ``notified_at`` doubles as the optimistic version token for every dispatch
    write; ``dispatch_version`` is bumped alongside it so a task that was
    cleared and re-notified can never be mistaken for its earlier self.
    """

    # Identity
    task_id: UUID
    kind: TaskKind = TaskKind.ERRAND
    requester_id: str

    # Description
    title: str = ""
    category: str = ""

    # Lifecycle
    status: TaskStatus = TaskStatus.OPEN

    # Dispatch state
    notified_runner_id: Optional[str] = None
    notified_at: Optional[datetime] = None
    excluded_runner_ids: list[str] = Field(default_factory=list)
    declined_runner_id: Optional[str] = None  # commissions only
    dispatch_version: int = 0

    # Sweep rotation; cleared whenever a runner is notified
    last_evaluated_at: Optional[datetime] = None

    # Acceptance
    assigned_runner_id: Optional[str] = None

    # Timestamps
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None

    @property
    def tokens(self) -> list[str]:
        return category_tokens(self.category)

    def is_terminal(self) -> bool:
        """Check if task is in a terminal state."""
        return self.status.is_terminal()

    def is_dispatchable(self) -> bool:
        return self.status.is_dispatchable()

    def notification_elapsed(self, now: datetime) -> Optional[timedelta]:
        """Time since the current runner was notified, or None if nobody is."""
        if self.notified_at is None:
            return None
        return now - self.notified_at

    def is_timed_out(self, now: datetime, timeout_seconds: float) -> bool:
        """Check whether the notified runner's response window has closed."""
        elapsed = self.notification_elapsed(now)
        if elapsed is None or self.status != TaskStatus.NOTIFIED:
            return False
        return elapsed >= timedelta(seconds=timeout_seconds)

    def blocked_runner_ids(self) -> set[str]:
        """Runners that must not be offered this task right now."""
        blocked = set(self.excluded_runner_ids)
        if self.notified_runner_id:
            blocked.add(self.notified_runner_id)
        if self.kind == TaskKind.COMMISSION and self.declined_runner_id:
            blocked.add(self.declined_runner_id)
        return blocked

    def can_transition_to(self, new_status: TaskStatus) -> bool:
        """Check if transition to new status is valid per state machine."""
        valid_transitions: dict[TaskStatus, set[TaskStatus]] = {
            TaskStatus.OPEN: {TaskStatus.NOTIFIED, TaskStatus.CANCELLED},
            TaskStatus.NOTIFIED: {
                TaskStatus.NOTIFIED,  # Reassignment on timeout
                TaskStatus.OPEN,  # Cleared or declined
                TaskStatus.ASSIGNED,
                TaskStatus.CANCELLED,
            },
            TaskStatus.ASSIGNED: {TaskStatus.COMPLETED, TaskStatus.CANCELLED},
            TaskStatus.COMPLETED: set(),
            TaskStatus.CANCELLED: set(),
        }
        return new_status in valid_transitions.get(self.status, set())


class TaskSummary(BaseModel):
    """Lightweight task view for runner feeds."""

    task_id: UUID
    kind: TaskKind
    title: str
    category: str
    status: TaskStatus
    requester_id: str
    notified_at: Optional[datetime] = None

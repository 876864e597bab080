"""RunnerGate enumerations."""

from enum import Enum


class TaskKind(str, Enum):
    """Task variant discriminant."""

    ERRAND = "errand"
    COMMISSION = "commission"


class TaskStatus(str, Enum):
    """Task lifecycle status."""

    OPEN = "open"
    NOTIFIED = "notified"
    ASSIGNED = "assigned"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def dispatchable_states(cls) -> set["TaskStatus"]:
        """Return states the dispatch coordinator evaluates."""
        return {cls.OPEN, cls.NOTIFIED}

    @classmethod
    def terminal_states(cls) -> set["TaskStatus"]:
        """Return terminal states."""
        return {cls.COMPLETED, cls.CANCELLED}

    def is_dispatchable(self) -> bool:
        return self in self.dispatchable_states()

    def is_terminal(self) -> bool:
        """Check if status is terminal."""
        return self in self.terminal_states()


class ParticipantRole(str, Enum):
    """Role of a participant in the coordinate store."""

    REQUESTER = "requester"
    RUNNER = "runner"


class LocationSource(str, Enum):
    """Where a resolved coordinate came from."""

    GPS = "gps"
    STORED = "stored"


class DispatchOutcome(str, Enum):
    """Result of one coordinator evaluation."""

    NOOP = "noop"
    NOTIFIED = "notified"
    REASSIGNED = "reassigned"
    CLEARED = "cleared"
    SKIPPED = "skipped"
    ERROR = "error"

"""RunnerGate data models."""

from runnergate.models.enums import (
    DispatchOutcome,
    LocationSource,
    ParticipantRole,
    TaskKind,
    TaskStatus,
)
from runnergate.models.candidate import (
    Coordinates,
    GeolocationResult,
    LocationFix,
    RunnerCandidate,
    ScoredCandidate,
)
from runnergate.models.participant import Participant
from runnergate.models.task import Task, TaskSummary, category_tokens

__all__ = [
    "Coordinates",
    "DispatchOutcome",
    "GeolocationResult",
    "LocationFix",
    "LocationSource",
    "Participant",
    "ParticipantRole",
    "RunnerCandidate",
    "ScoredCandidate",
    "Task",
    "TaskKind",
    "TaskStatus",
    "TaskSummary",
    "category_tokens",
]

"""RunnerGate database layer."""

from runnergate.db.base import Base, get_session, init_db
from runnergate.db.repositories import ParticipantRepository, TaskRepository
from runnergate.db.tables import ParticipantTable, TaskTable

__all__ = [
    "Base",
    "get_session",
    "init_db",
    "ParticipantRepository",
    "ParticipantTable",
    "TaskRepository",
    "TaskTable",
]

"""RunnerGate engine - ranking, geolocation and the dispatch state machine."""

from runnergate.engine.affinity import AffinityScorer
from runnergate.engine.candidates import CandidatePool, CandidatePoolSnapshot
from runnergate.engine.coordinator import BatchReport, DispatchCoordinator, DispatchResult
from runnergate.engine.distance import distance_meters, distance_score
from runnergate.engine.errors import (
    ConcurrentModification,
    InvalidStateTransition,
    LocationUnavailable,
    NotificationExpired,
    NotNotifiedRunner,
    ParticipantNotFound,
    RunnerGateError,
    TaskNotFound,
    UpstreamUnavailable,
)
from runnergate.engine.geolocator import Geolocator, LiveLocationReader
from runnergate.engine.ranking import RankingEngine, rating_score

__all__ = [
    "AffinityScorer",
    "BatchReport",
    "CandidatePool",
    "CandidatePoolSnapshot",
    "ConcurrentModification",
    "DispatchCoordinator",
    "DispatchResult",
    "Geolocator",
    "InvalidStateTransition",
    "LiveLocationReader",
    "LocationUnavailable",
    "NotificationExpired",
    "NotNotifiedRunner",
    "ParticipantNotFound",
    "RankingEngine",
    "RunnerGateError",
    "TaskNotFound",
    "UpstreamUnavailable",
    "distance_meters",
    "distance_score",
    "rating_score",
]

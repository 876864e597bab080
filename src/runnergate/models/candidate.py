"""Ephemeral ranking-pass models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from runnergate.models.enums import LocationSource


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class LocationFix:
    """One raw reading from a live location source."""

    latitude: float
    longitude: float
    accuracy_m: float
    read_at: Optional[datetime] = None


@dataclass(frozen=True)
class GeolocationResult:
    """Accepted position for a subject plus where it came from."""

    coordinates: Coordinates
    source: LocationSource
    accuracy_m: Optional[float] = None
    attempts: int = 0


@dataclass
class RunnerCandidate:
    """Runner under consideration for one task, rebuilt every evaluation."""

    runner_id: str
    coordinates: Optional[Coordinates]
    rating: Optional[float]
    location_updated_at: Optional[datetime]
    history: list[str] = field(default_factory=list)
    is_available: bool = True


@dataclass
class ScoredCandidate:
    """A candidate with every score the ranking pass computed for it."""

    candidate: RunnerCandidate
    distance_meters: float
    distance_score: float
    rating_score: float
    affinity_score: float
    final_score: float

    @property
    def runner_id(self) -> str:
        return self.candidate.runner_id

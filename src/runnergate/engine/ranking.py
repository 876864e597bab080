"""Weighted runner ranking."""

from typing import Iterable, Optional

from runnergate.config import settings
from runnergate.engine.affinity import AffinityScorer
from runnergate.engine.distance import distance_meters, distance_score
from runnergate.models import Coordinates, RunnerCandidate, ScoredCandidate

MAX_RATING = 5.0


def rating_score(rating: Optional[float]) -> float:
    """Rating on a 0-5 scale mapped to [0, 1]; unrated counts as 0."""
    return (rating or 0.0) / MAX_RATING


class RankingEngine:
    """Orders candidates by a weighted blend of distance, rating and affinity.

    Ties on the final score go to the nearer runner, then to the smaller
    runner ID, so the same inputs always produce the same order.
    """

    def __init__(
        self,
        distance_weight: Optional[float] = None,
        rating_weight: Optional[float] = None,
        affinity_weight: Optional[float] = None,
        max_distance_meters: Optional[float] = None,
    ):
        self.distance_weight = (
            settings.distance_weight if distance_weight is None else distance_weight
        )
        self.rating_weight = settings.rating_weight if rating_weight is None else rating_weight
        self.affinity_weight = (
            settings.affinity_weight if affinity_weight is None else affinity_weight
        )
        self.max_distance_meters = (
            settings.max_distance_meters if max_distance_meters is None else max_distance_meters
        )

    def rank(
        self,
        candidates: list[RunnerCandidate],
        task_tokens: Iterable[str],
        origin: Coordinates,
    ) -> list[ScoredCandidate]:
        located = [c for c in candidates if c.coordinates is not None]
        affinity = AffinityScorer({c.runner_id: c.history for c in located})
        tokens = list(task_tokens)

        scored = []
        for candidate in located:
            meters = distance_meters(origin, candidate.coordinates)
            d_score = distance_score(meters, self.max_distance_meters)
            r_score = rating_score(candidate.rating)
            a_score = affinity.score(candidate.runner_id, tokens)
            scored.append(
                ScoredCandidate(
                    candidate=candidate,
                    distance_meters=meters,
                    distance_score=d_score,
                    rating_score=r_score,
                    affinity_score=a_score,
                    final_score=(
                        self.distance_weight * d_score
                        + self.rating_weight * r_score
                        + self.affinity_weight * a_score
                    ),
                )
            )

        scored.sort(key=lambda s: (-s.final_score, s.distance_meters, s.runner_id))
        return scored

    def select(
        self,
        candidates: list[RunnerCandidate],
        task_tokens: Iterable[str],
        origin: Coordinates,
    ) -> Optional[ScoredCandidate]:
        """Top-ranked candidate, or None for an empty pool."""
        ranked = self.rank(candidates, task_tokens, origin)
        return ranked[0] if ranked else None

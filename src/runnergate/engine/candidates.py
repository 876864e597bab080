"""Eligible runner pool for a single task evaluation."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from runnergate.config import settings
from runnergate.db.repositories import ParticipantRepository, TaskRepository
from runnergate.engine.distance import distance_meters, within_range
from runnergate.engine.errors import LocationUnavailable
from runnergate.engine.geolocator import Geolocator
from runnergate.models import Coordinates, Participant, ParticipantRole, RunnerCandidate, Task
from runnergate.observability.metrics import metrics

logger = logging.getLogger(__name__)


@dataclass
class CandidatePoolSnapshot:
    """Requester position plus the runners eligible for one evaluation."""

    origin: Coordinates
    candidates: list[RunnerCandidate] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.candidates


class CandidatePool:
    """Filters the runner population down to those who may be offered a task."""

    def __init__(
        self,
        session: AsyncSession,
        geolocator: Geolocator,
        presence_window_seconds: Optional[float] = None,
        max_distance_meters: Optional[float] = None,
    ):
        self.participants = ParticipantRepository(session)
        self.tasks = TaskRepository(session)
        self.geolocator = geolocator
        self.presence_window = timedelta(
            seconds=settings.presence_window_seconds
            if presence_window_seconds is None
            else presence_window_seconds
        )
        self.max_distance_meters = (
            settings.max_distance_meters if max_distance_meters is None else max_distance_meters
        )

    def is_present(self, candidate: RunnerCandidate, now: datetime) -> bool:
        """Available and reported a location within the presence window."""
        if not candidate.is_available or candidate.location_updated_at is None:
            return False
        return now - candidate.location_updated_at <= self.presence_window

    def eligible(
        self,
        task: Task,
        candidates: list[RunnerCandidate],
        origin: Coordinates,
        now: datetime,
    ) -> list[RunnerCandidate]:
        """Apply every eligibility rule; order of the input is preserved."""
        blocked = task.blocked_runner_ids()
        result = []
        for candidate in candidates:
            if candidate.runner_id in blocked:
                continue
            if not self.is_present(candidate, now):
                continue
            if candidate.coordinates is None:
                continue
            if not within_range(
                distance_meters(origin, candidate.coordinates), self.max_distance_meters
            ):
                continue
            result.append(candidate)
        return result

    async def build(self, task: Task, now: datetime) -> CandidatePoolSnapshot:
        """
        Load, locate and filter runners for ``task``.

        Raises LocationUnavailable when the requester cannot be located. A
        runner that cannot be located is left out of the pool.
        """
        requester = await self.participants.get(task.requester_id)
        if requester is None:
            raise LocationUnavailable(task.requester_id)
        origin = (await self.geolocator.acquire(requester)).coordinates

        blocked = task.blocked_runner_ids()
        runners = [
            runner
            for runner in await self.participants.list_runners(available_only=True)
            if runner.role == ParticipantRole.RUNNER and runner.participant_id not in blocked
        ]

        present = [
            runner
            for runner in runners
            if runner.location_updated_at is not None
            and now - runner.location_updated_at <= self.presence_window
        ]
        positions = await asyncio.gather(*(self._locate_runner(r) for r in present))
        located: list[tuple[Participant, Coordinates]] = [
            (runner, position) for runner, position in zip(present, positions) if position is not None
        ]

        history = await self.tasks.completed_categories([r.participant_id for r, _ in located])
        candidates = [
            RunnerCandidate(
                runner_id=runner.participant_id,
                coordinates=coordinates,
                rating=runner.average_rating,
                location_updated_at=runner.location_updated_at,
                history=history.get(runner.participant_id, []),
                is_available=runner.is_available,
            )
            for runner, coordinates in located
        ]

        eligible = self.eligible(task, candidates, origin, now)
        metrics.observe("candidates.pool.size", len(eligible))
        logger.debug(
            f"Task {task.task_id}: {len(eligible)} eligible of {len(runners)} available runners"
        )
        return CandidatePoolSnapshot(origin=origin, candidates=eligible)

    async def _locate_runner(self, runner: Participant) -> Optional[Coordinates]:
        """
        One live read, then the stored position.

        The presence filter already vouches for the stored position, so
        runners get a single attempt without backoff. The full retry budget
        is reserved for the requester.
        """
        try:
            position = await self.geolocator.acquire(runner, max_attempts=1)
        except LocationUnavailable:
            metrics.inc_counter("candidates.runner.unlocated")
            return None
        return position.coordinates

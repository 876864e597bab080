"""Bounded-retry position acquisition with a stored-coordinate fallback."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol

from runnergate.config import settings
from runnergate.engine.errors import LocationUnavailable
from runnergate.models import (
    Coordinates,
    GeolocationResult,
    LocationFix,
    LocationSource,
    Participant,
)
from runnergate.observability.metrics import metrics

logger = logging.getLogger(__name__)


class LiveLocationReader(Protocol):
    """Source of live device fixes; returns None when it has no fix."""

    async def read(self, subject_id: str) -> Optional[LocationFix]: ...


SleepFunc = Callable[[float], Awaitable[None]]


class Geolocator:
    """
    Resolve a subject's coordinates.

    Up to ``max_attempts`` live reads are made. Attempt ``n`` (counting from
    zero) first waits ``n * backoff_ms``. A fix less accurate than the
    threshold is discarded while attempts remain; on the last attempt it is
    taken as is. A read that raises or yields nothing uses up its attempt.
    When every attempt is spent, the stored coordinates are used if both are
    numeric, otherwise LocationUnavailable is raised. Without a live reader
    the stored coordinates are the only source.
    """

    def __init__(
        self,
        reader: Optional[LiveLocationReader] = None,
        max_attempts: Optional[int] = None,
        backoff_ms: Optional[int] = None,
        accuracy_threshold_meters: Optional[float] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.reader = reader
        self.max_attempts = (
            settings.geolocation_max_attempts if max_attempts is None else max_attempts
        )
        self.backoff_ms = settings.geolocation_backoff_ms if backoff_ms is None else backoff_ms
        self.accuracy_threshold_meters = (
            settings.geolocation_accuracy_threshold_meters
            if accuracy_threshold_meters is None
            else accuracy_threshold_meters
        )
        self._sleep = sleep

    async def acquire(
        self, subject: Participant, max_attempts: Optional[int] = None
    ) -> GeolocationResult:
        """Resolve ``subject``; ``max_attempts`` overrides the configured budget."""
        budget = self.max_attempts if max_attempts is None else max_attempts
        attempts = 0
        if self.reader is not None:
            for attempt in range(budget):
                if attempt > 0:
                    await self._sleep(self.backoff_ms * attempt / 1000)
                attempts += 1

                fix = await self._read(subject.participant_id, attempt)
                if fix is None:
                    continue

                is_last = attempt == budget - 1
                if fix.accuracy_m > self.accuracy_threshold_meters and not is_last:
                    logger.debug(
                        f"Discarding fix for {subject.participant_id} on attempt {attempt + 1}: "
                        f"accuracy {fix.accuracy_m:.0f}m"
                    )
                    metrics.inc_counter("geolocation.fix.discarded")
                    continue

                metrics.inc_counter("geolocation.source.gps")
                metrics.observe("geolocation.attempts", attempts)
                return GeolocationResult(
                    coordinates=Coordinates(fix.latitude, fix.longitude),
                    source=LocationSource.GPS,
                    accuracy_m=fix.accuracy_m,
                    attempts=attempts,
                )

        if subject.has_stored_coordinates():
            metrics.inc_counter("geolocation.source.stored")
            return GeolocationResult(
                coordinates=Coordinates(subject.latitude, subject.longitude),
                source=LocationSource.STORED,
                accuracy_m=subject.location_accuracy_m,
                attempts=attempts,
            )

        metrics.inc_counter("geolocation.unavailable")
        raise LocationUnavailable(subject.participant_id)

    async def _read(self, subject_id: str, attempt: int) -> Optional[LocationFix]:
        try:
            return await self.reader.read(subject_id)
        except Exception as e:
            logger.debug(f"Location read for {subject_id} failed on attempt {attempt + 1}: {e}")
            metrics.inc_counter("geolocation.read.failed")
            return None

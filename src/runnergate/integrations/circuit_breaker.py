"""Circuit breaker guarding calls to the live location service."""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from runnergate.observability.metrics import metrics
from runnergate.utils.time import utc_now

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # calls pass through
    OPEN = "open"  # calls fail fast
    HALF_OPEN = "half_open"  # probing for recovery


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker configuration."""

    failure_threshold: int = 5
    timeout_seconds: int = 30
    half_open_max_calls: int = 3
    success_threshold: int = 2


@dataclass
class CircuitBreakerStats:
    """Point-in-time circuit breaker counters."""

    state: CircuitState
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    half_open_calls: int = 0
    opened_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    total_calls: int = 0
    total_failures: int = 0
    rejected_calls: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "consecutive_failures": self.consecutive_failures,
            "consecutive_successes": self.consecutive_successes,
            "total_calls": self.total_calls,
            "total_failures": self.total_failures,
            "rejected_calls": self.rejected_calls,
            "opened_at": self.opened_at.isoformat() if self.opened_at else None,
            "last_failure_at": self.last_failure_at.isoformat() if self.last_failure_at else None,
        }


class CircuitBreakerOpen(Exception):
    """Raised when a call is rejected without reaching the service."""

    def __init__(self, service_name: str, retry_after: int):
        self.service_name = service_name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker open for {service_name}, retry after {retry_after}s")


class CircuitBreaker:
    """
    Failure-counting breaker for one external dependency.

    CLOSED opens after ``failure_threshold`` consecutive failures. OPEN moves
    to HALF_OPEN once ``timeout_seconds`` have passed since it opened.
    HALF_OPEN admits at most ``half_open_max_calls`` probes, closes after
    ``success_threshold`` consecutive successes and reopens on any failure.
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._stats = CircuitBreakerStats(state=CircuitState.CLOSED)
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._stats.state

    @property
    def stats(self) -> CircuitBreakerStats:
        return replace(self._stats)

    async def call(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """Run ``func`` if the circuit admits it; record the outcome."""
        await self._admit()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            await self._record_failure(e)
            raise
        await self._record_success()
        return result

    async def reset(self) -> None:
        async with self._lock:
            logger.info(f"Circuit {self.name} manually reset")
            self._move_to(CircuitState.CLOSED)

    async def _admit(self) -> None:
        async with self._lock:
            self._stats.total_calls += 1

            if self._stats.state == CircuitState.OPEN:
                if not self._half_open_due():
                    self._reject()
                self._move_to(CircuitState.HALF_OPEN)

            if self._stats.state == CircuitState.HALF_OPEN:
                if self._stats.half_open_calls >= self.config.half_open_max_calls:
                    self._reject()
                self._stats.half_open_calls += 1

    def _reject(self) -> None:
        self._stats.rejected_calls += 1
        metrics.inc_counter(f"circuit.{self.name}.rejected")
        raise CircuitBreakerOpen(self.name, self._seconds_until_half_open())

    async def _record_success(self) -> None:
        async with self._lock:
            self._stats.consecutive_failures = 0
            self._stats.consecutive_successes += 1
            if (
                self._stats.state == CircuitState.HALF_OPEN
                and self._stats.consecutive_successes >= self.config.success_threshold
            ):
                self._move_to(CircuitState.CLOSED)

    async def _record_failure(self, error: Exception) -> None:
        async with self._lock:
            self._stats.consecutive_successes = 0
            self._stats.consecutive_failures += 1
            self._stats.total_failures += 1
            self._stats.last_failure_at = self._clock()

            logger.warning(
                f"Circuit {self.name} failure "
                f"({self._stats.consecutive_failures}/{self.config.failure_threshold}): {error}"
            )

            if self._stats.state == CircuitState.HALF_OPEN:
                self._move_to(CircuitState.OPEN)
            elif self._stats.consecutive_failures >= self.config.failure_threshold:
                self._move_to(CircuitState.OPEN)

    def _move_to(self, state: CircuitState) -> None:
        previous = self._stats.state
        self._stats.state = state
        self._stats.half_open_calls = 0
        self._stats.consecutive_successes = 0

        if state == CircuitState.OPEN:
            self._stats.opened_at = self._clock()
            logger.error(f"Circuit {self.name} opened after {self._stats.consecutive_failures} failures")
        elif state == CircuitState.CLOSED:
            self._stats.opened_at = None
            self._stats.consecutive_failures = 0
            logger.info(f"Circuit {self.name} closed")
        else:
            self._stats.consecutive_failures = 0
            logger.info(f"Circuit {self.name} half-open")

        if previous != state:
            metrics.inc_counter(f"circuit.{self.name}.{state.value}")

    def _half_open_due(self) -> bool:
        if not self._stats.opened_at:
            return True
        elapsed = (self._clock() - self._stats.opened_at).total_seconds()
        return elapsed >= self.config.timeout_seconds

    def _seconds_until_half_open(self) -> int:
        if not self._stats.opened_at:
            return 0
        elapsed = (self._clock() - self._stats.opened_at).total_seconds()
        return int(max(0.0, self.config.timeout_seconds - elapsed))

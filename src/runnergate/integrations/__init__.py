"""External service integrations and resilience patterns."""

from runnergate.integrations.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerOpen,
    CircuitBreakerStats,
    CircuitState,
)
from runnergate.integrations.location_client import (
    LocationServiceClient,
    build_geolocator,
    get_location_client,
)

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerOpen",
    "CircuitBreakerStats",
    "CircuitState",
    "LocationServiceClient",
    "build_geolocator",
    "get_location_client",
]

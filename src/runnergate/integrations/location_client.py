"""Live location service client with circuit breaker protection."""

import logging
from datetime import datetime
from typing import Any, Optional

import httpx

from runnergate.config import settings
from runnergate.engine.errors import UpstreamUnavailable
from runnergate.engine.geolocator import Geolocator
from runnergate.integrations.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerOpen,
)
from runnergate.models.candidate import LocationFix
from runnergate.utils.time import ensure_utc

logger = logging.getLogger(__name__)


class LocationServiceClient:
    """
    Reads the latest device fix for a participant from the location service.

    Usage:
        client = LocationServiceClient("https://locations.internal")
        fix = await client.read("runner-42")

    ``read`` returns None when the service has no fix for the subject and
    raises UpstreamUnavailable when the service cannot be reached or the
    circuit is open.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout_ms: int = 2000,
        circuit_breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout_ms / 1000
        self._circuit_breaker = circuit_breaker
        self._transport = transport

    async def read(self, subject_id: str) -> Optional[LocationFix]:
        try:
            if self._circuit_breaker:
                return await self._circuit_breaker.call(self._fetch, subject_id)
            return await self._fetch(subject_id)
        except CircuitBreakerOpen as e:
            raise UpstreamUnavailable("location service", str(e)) from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailable("location service", str(e)) from e

    async def _fetch(self, subject_id: str) -> Optional[LocationFix]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(
                f"{self.base_url}/v1/locations/{subject_id}", headers=headers
            )
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return _parse_fix(response.json())

    def get_circuit_stats(self) -> Optional[dict[str, Any]]:
        if not self._circuit_breaker:
            return None
        return self._circuit_breaker.stats.as_dict()


def _parse_fix(data: dict[str, Any]) -> Optional[LocationFix]:
    latitude = data.get("latitude")
    longitude = data.get("longitude")
    if latitude is None or longitude is None:
        return None

    read_at = data.get("read_at")
    return LocationFix(
        latitude=float(latitude),
        longitude=float(longitude),
        accuracy_m=float(data.get("accuracy_m") or 0.0),
        read_at=ensure_utc(datetime.fromisoformat(read_at)) if read_at else None,
    )


def build_location_circuit_breaker() -> Optional[CircuitBreaker]:
    if not settings.location_circuit_breaker_enabled:
        logger.info("Location service circuit breaker disabled")
        return None

    return CircuitBreaker(
        "location_service",
        CircuitBreakerConfig(
            failure_threshold=settings.location_circuit_breaker_failure_threshold,
            timeout_seconds=settings.location_circuit_breaker_timeout_seconds,
            half_open_max_calls=settings.location_circuit_breaker_half_open_max_calls,
            success_threshold=settings.location_circuit_breaker_success_threshold,
        ),
    )


# Singleton instance
_location_client: Optional[LocationServiceClient] = None


def get_location_client() -> Optional[LocationServiceClient]:
    """Get or create the location client; None when no service is configured."""
    global _location_client
    if not settings.location_service_url:
        return None
    if _location_client is None:
        _location_client = LocationServiceClient(
            settings.location_service_url,
            token=settings.location_service_token,
            timeout_ms=settings.location_service_timeout_ms,
            circuit_breaker=build_location_circuit_breaker(),
        )
    return _location_client


def build_geolocator() -> Geolocator:
    """Geolocator reading from the configured location service, if any."""
    return Geolocator(reader=get_location_client())

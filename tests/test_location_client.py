"""
Location service client.
"""

import httpx
import pytest

from runnergate.engine.errors import UpstreamUnavailable
from runnergate.integrations.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from runnergate.integrations.location_client import LocationServiceClient

from conftest import NOW


def _client(handler, breaker=None, token=None) -> LocationServiceClient:
    return LocationServiceClient(
        "http://locations.test/",
        token=token,
        circuit_breaker=breaker,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_read_parses_fix():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "latitude": 7.11,
                "longitude": 125.61,
                "accuracy_m": 12.5,
                "read_at": "2026-03-02T09:30:00+00:00",
            },
        )

    fix = await _client(handler, token="tok").read("runner-a")

    assert fix.latitude == 7.11
    assert fix.longitude == 125.61
    assert fix.accuracy_m == 12.5
    assert fix.read_at == NOW
    assert seen[0].url.path == "/v1/locations/runner-a"
    assert seen[0].headers["Authorization"] == "Bearer tok"


@pytest.mark.asyncio
async def test_unknown_subject_returns_none():
    fix = await _client(lambda request: httpx.Response(404)).read("ghost")
    assert fix is None


@pytest.mark.asyncio
async def test_payload_without_coordinates_returns_none():
    fix = await _client(lambda request: httpx.Response(200, json={"accuracy_m": 3})).read("r")
    assert fix is None


@pytest.mark.asyncio
async def test_server_error_is_upstream_unavailable():
    with pytest.raises(UpstreamUnavailable):
        await _client(lambda request: httpx.Response(500)).read("runner-a")


@pytest.mark.asyncio
async def test_breaker_opens_and_short_circuits():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503)

    breaker = CircuitBreaker(
        "location_service", CircuitBreakerConfig(failure_threshold=2, timeout_seconds=60)
    )
    client = _client(handler, breaker=breaker)

    for _ in range(2):
        with pytest.raises(UpstreamUnavailable):
            await client.read("runner-a")
    assert breaker.state == CircuitState.OPEN

    with pytest.raises(UpstreamUnavailable):
        await client.read("runner-a")

    assert len(calls) == 2
    assert client.get_circuit_stats()["rejected_calls"] == 1


@pytest.mark.asyncio
async def test_circuit_stats_without_breaker():
    client = _client(lambda request: httpx.Response(404))
    assert client.get_circuit_stats() is None

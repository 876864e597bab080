"""
HTTP API tests.
"""

from uuid import uuid4

import pytest

from runnergate.config import settings

from conftest import ORIGIN, north_of


async def _register(client, participant_id, role, position, **extra):
    response = await client.put(
        f"/v1/participants/{participant_id}", json={"role": role, **extra}
    )
    assert response.status_code == 200
    response = await client.post(
        f"/v1/participants/{participant_id}/location",
        json={"latitude": position[0], "longitude": position[1], "accuracy_m": 8.0},
    )
    assert response.status_code == 200
    return response.json()


async def _seed_people(client):
    await _register(client, "req-1", "requester", ORIGIN)
    await _register(
        client, "runner-a", "runner", north_of(ORIGIN, 90.0), is_available=True, average_rating=4.0
    )
    await _register(
        client, "runner-b", "runner", north_of(ORIGIN, 240.0), is_available=True, average_rating=4.0
    )


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/v1/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_config_exposes_dispatch_constants(client):
    response = await client.get("/v1/config")
    assert response.status_code == 200
    body = response.json()
    assert body["notification_timeout_seconds"] == 60.0
    assert body["max_distance_meters"] == 500.0
    assert body["weights"] == {"distance": 0.40, "rating": 0.35, "affinity": 0.25}


@pytest.mark.asyncio
async def test_participant_location_updates_presence(client):
    await client.put("/v1/participants/runner-x", json={"role": "runner"})
    body = await _register(client, "runner-x", "runner", ORIGIN)

    assert body["latitude"] == ORIGIN[0]
    assert body["location_updated_at"] is not None

    response = await client.post(
        "/v1/participants/runner-x/availability", json={"is_available": True}
    )
    assert response.status_code == 200
    assert response.json()["is_available"] is True


@pytest.mark.asyncio
async def test_location_for_unknown_participant(client):
    response = await client.post(
        "/v1/participants/ghost/location", json={"latitude": 1.0, "longitude": 1.0}
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_location_validation(client):
    await client.put("/v1/participants/runner-y", json={"role": "runner"})
    response = await client.post(
        "/v1/participants/runner-y/location", json={"latitude": 123.0, "longitude": 1.0}
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_task_dispatches_to_nearest(client):
    await _seed_people(client)

    response = await client.post(
        "/v1/tasks",
        json={"requester_id": "req-1", "title": "Buy rice", "category": "groceries"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["dispatch"]["outcome"] == "notified"
    assert body["dispatch"]["runner_id"] == "runner-a"
    assert body["task"]["status"] == "notified"
    assert body["task"]["notified_runner_id"] == "runner-a"


@pytest.mark.asyncio
async def test_create_without_dispatch_stays_open(client):
    await _seed_people(client)

    response = await client.post(
        "/v1/tasks", json={"requester_id": "req-1", "category": "groceries", "dispatch": False}
    )

    assert response.status_code == 201
    assert response.json()["dispatch"] is None
    assert response.json()["task"]["status"] == "open"


@pytest.mark.asyncio
async def test_full_lifecycle(client):
    await _seed_people(client)
    created = (
        await client.post(
            "/v1/tasks",
            json={"requester_id": "req-1", "kind": "commission", "category": "printing"},
        )
    ).json()
    task_id = created["task"]["task_id"]

    # Wrong runner cannot accept
    response = await client.post(f"/v1/tasks/{task_id}/accept", json={"runner_id": "runner-b"})
    assert response.status_code == 403

    # First runner declines; the task moves to the next one
    response = await client.post(f"/v1/tasks/{task_id}/decline", json={"runner_id": "runner-a"})
    assert response.status_code == 200
    assert response.json()["outcome"] == "notified"
    assert response.json()["runner_id"] == "runner-b"

    feed = (await client.get("/v1/runners/runner-b/feed")).json()
    assert task_id in [t["task_id"] for t in feed["tasks"]]

    response = await client.post(f"/v1/tasks/{task_id}/accept", json={"runner_id": "runner-b"})
    assert response.status_code == 200
    assert response.json()["status"] == "assigned"

    response = await client.post(f"/v1/tasks/{task_id}/complete", json={"runner_id": "runner-b"})
    assert response.status_code == 200
    task = response.json()
    assert task["status"] == "completed"
    assert task["declined_runner_id"] == "runner-a"
    assert task["excluded_runner_ids"] == ["runner-a"]

    # Terminal tasks cannot be cancelled
    response = await client.post(f"/v1/tasks/{task_id}/cancel")
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_get_and_list_tasks(client):
    await _seed_people(client)
    ids = []
    for category in ("groceries", "pharmacy", "laundry"):
        created = await client.post(
            "/v1/tasks",
            json={"requester_id": "req-1", "category": category, "dispatch": False},
        )
        ids.append(created.json()["task"]["task_id"])

    response = await client.get(f"/v1/tasks/{ids[0]}")
    assert response.status_code == 200
    assert response.json()["category"] == "groceries"

    response = await client.get("/v1/tasks", params={"status": "open", "limit": 2})
    body = response.json()
    assert len(body["tasks"]) == 2
    assert body["next_cursor"] is not None

    response = await client.get(f"/v1/tasks/{uuid4()}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_evaluate_endpoint(client):
    await _seed_people(client)
    created = await client.post(
        "/v1/tasks", json={"requester_id": "req-1", "category": "groceries", "dispatch": False}
    )
    task_id = created.json()["task"]["task_id"]

    response = await client.post(f"/v1/tasks/{task_id}/evaluate")
    assert response.status_code == 200
    assert response.json()["outcome"] == "notified"

    # Second evaluation inside the window changes nothing
    response = await client.post(f"/v1/tasks/{task_id}/evaluate")
    assert response.json()["outcome"] == "noop"

    response = await client.post(f"/v1/tasks/{uuid4()}/evaluate")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_sweep_endpoint(client):
    await _seed_people(client)
    for _ in range(2):
        await client.post(
            "/v1/tasks", json={"requester_id": "req-1", "category": "food", "dispatch": False}
        )

    response = await client.post("/v1/dispatch/sweep", params={"limit": 5})

    assert response.status_code == 200
    body = response.json()
    assert body["evaluated"] == 2
    assert body["notified"] == 2


@pytest.mark.asyncio
async def test_feed_triggers_evaluation(client):
    await _seed_people(client)
    created = await client.post(
        "/v1/tasks", json={"requester_id": "req-1", "category": "food", "dispatch": False}
    )
    task_id = created.json()["task"]["task_id"]

    feed = (await client.get("/v1/runners/runner-a/feed")).json()

    assert feed["evaluated"] == 1
    assert [t["task_id"] for t in feed["tasks"]] == [task_id]


@pytest.mark.asyncio
async def test_metrics_endpoint(client):
    await client.get("/v1/health")
    response = await client.get("/v1/metrics")
    assert response.status_code == 200
    assert set(response.json()) == {"counters", "histograms"}


@pytest.mark.asyncio
async def test_api_key_is_enforced_when_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "api_key", "s3cret")

    assert (await client.get("/v1/health")).status_code == 401
    assert (
        await client.get("/v1/health", headers={"Authorization": "Bearer wrong"})
    ).status_code == 401
    assert (
        await client.get("/v1/health", headers={"Authorization": "Bearer s3cret"})
    ).status_code == 200
    assert (await client.get("/v1/health", headers={"X-API-Key": "s3cret"})).status_code == 200


@pytest.mark.asyncio
async def test_create_task_for_unknown_requester(client):
    response = await client.post("/v1/tasks", json={"requester_id": "ghost", "category": "food"})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_metrics_report_evaluation_latency(client):
    await _seed_people(client)
    await client.post("/v1/tasks", json={"requester_id": "req-1", "category": "food"})

    histograms = (await client.get("/v1/metrics")).json()["histograms"]

    latency = histograms["dispatch.evaluate.duration_ms"]
    assert latency["count"] >= 1
    assert latency["p50"] <= latency["p95"] <= latency["max"]

#!/usr/bin/env python3
"""Golden path demo for RunnerGate: notify, decline, reassign, accept, complete."""

from __future__ import annotations

import json
import os
import sys
from typing import Any
from urllib.error import HTTPError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

# Roughly 111 m per 0.001 degrees of latitude
REQUESTER_POSITION = (7.1100, 125.6100)
RUNNER_POSITIONS = {
    "demo-runner-near": (7.1109, 125.6100),
    "demo-runner-far": (7.1118, 125.6100),
}


def _env(name: str, default: str | None = None) -> str | None:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value


class HttpClient:
    def __init__(self, base_url: str, api_key: str | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers: dict[str, str] = {"Content-Type": "application/json"}
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"

    def request_json(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        query: dict[str, Any] | None = None,
        timeout: float = 10.0,
    ) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        if query:
            query = {k: v for k, v in query.items() if v is not None}
            if query:
                url = f"{url}?{urlencode(query)}"

        data = None
        if payload is not None:
            data = json.dumps(payload, default=str).encode("utf-8")

        req = Request(url, data=data, method=method)
        for key, value in self.headers.items():
            req.add_header(key, value)

        try:
            with urlopen(req, timeout=timeout) as response:
                raw = response.read()
        except HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise RuntimeError(f"{method} {url} failed: {exc.code} {exc.reason}: {detail}") from None

        if not raw:
            return {}
        return json.loads(raw.decode("utf-8"))


def _register(client: HttpClient, participant_id: str, role: str, position: tuple[float, float], **extra: Any) -> None:
    client.request_json("PUT", f"/v1/participants/{participant_id}", payload={"role": role, **extra})
    client.request_json(
        "POST",
        f"/v1/participants/{participant_id}/location",
        payload={"latitude": position[0], "longitude": position[1], "accuracy_m": 10},
    )


def main() -> int:
    base_url = _env("RUNNERGATE_URL", "http://localhost:8080")
    api_key = _env("RUNNERGATE_API_KEY")
    requester_id = _env("RUNNERGATE_REQUESTER_ID", "demo-requester")

    client = HttpClient(base_url, api_key=api_key)

    print("Checking health...")
    health = client.request_json("GET", "/v1/health")
    if health.get("status") != "healthy":
        raise RuntimeError(f"Unexpected health response: {health}")

    print("Registering participants...")
    _register(client, requester_id, "requester", REQUESTER_POSITION)
    for runner_id, position in RUNNER_POSITIONS.items():
        _register(client, runner_id, "runner", position, is_available=True, average_rating=4.5)

    print("Creating task...")
    created = client.request_json(
        "POST",
        "/v1/tasks",
        payload={
            "requester_id": requester_id,
            "kind": "errand",
            "title": "Golden path demo errand",
            "category": "groceries",
        },
    )
    task_id = created["task"]["task_id"]
    first = (created.get("dispatch") or {}).get("runner_id")
    if first != "demo-runner-near":
        raise RuntimeError(f"Expected nearest runner to be notified first: {created}")
    print(f"Task {task_id} notified {first}")

    print("Declining with the first runner...")
    declined = client.request_json(
        "POST", f"/v1/tasks/{task_id}/decline", payload={"runner_id": first}
    )
    second = declined.get("runner_id")
    if declined.get("outcome") != "notified" or second != "demo-runner-far":
        raise RuntimeError(f"Expected the task to move to the next runner: {declined}")
    print(f"Task {task_id} now notified to {second}")

    feed = client.request_json("GET", f"/v1/runners/{second}/feed")
    if task_id not in {t.get("task_id") for t in feed.get("tasks", [])}:
        raise RuntimeError(f"Task missing from {second}'s feed: {feed}")

    print("Accepting and completing...")
    client.request_json("POST", f"/v1/tasks/{task_id}/accept", payload={"runner_id": second})
    task = client.request_json("POST", f"/v1/tasks/{task_id}/complete", payload={"runner_id": second})
    if task.get("status") != "completed":
        raise RuntimeError(f"Task not completed: {task}")
    if first not in task.get("excluded_runner_ids", []):
        raise RuntimeError(f"Declining runner missing from exclusions: {task}")

    print("Golden path complete: notified, declined, reassigned, accepted, completed.")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        raise

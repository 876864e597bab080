"""
Batch evaluation and background sweep tests.
"""

import asyncio
from datetime import timedelta

import pytest

from runnergate.config import settings
from runnergate.db.repositories import TaskRepository
from runnergate.engine import DispatchCoordinator, Geolocator
from runnergate.models import DispatchOutcome, LocationFix, TaskStatus
from runnergate.tasks import sweep
from runnergate.utils.time import utc_now

from conftest import NOW, ORIGIN


@pytest.mark.asyncio
async def test_batch_reports_each_outcome(coordinator, seed, session):
    await seed.requester()
    await seed.requester("req-blind", position=None)
    await seed.runner("r1", meters=50.0)
    await seed.runner("r2", meters=100.0)

    timed_out = await seed.task(
        status=TaskStatus.NOTIFIED,
        notified_runner_id="r1",
        notified_at=NOW - timedelta(seconds=90),
        dispatch_version=1,
    )
    fresh = await seed.task(
        status=TaskStatus.NOTIFIED,
        notified_runner_id="r2",
        notified_at=NOW - timedelta(seconds=10),
        dispatch_version=1,
    )
    open_task = await seed.task(updated_at=NOW - timedelta(minutes=3))
    blind = await seed.task(requester_id="req-blind", updated_at=NOW - timedelta(minutes=2))
    await session.commit()

    report = await coordinator.evaluate_batch(limit=10)

    assert report.as_dict() == {
        "evaluated": 3,
        "notified": 1,
        "reassigned": 1,
        "cleared": 0,
        "skipped": 1,
        "errored": 0,
        "noop": 0,
    }
    # Timed-out notifications first, then open tasks oldest first
    assert [r.task_id for r in report.results] == [timed_out, open_task, blind]

    repo = TaskRepository(session)
    assert (await repo.get(timed_out)).notified_runner_id == "r2"
    assert (await repo.get(fresh)).dispatch_version == 1


@pytest.mark.asyncio
async def test_one_failing_task_does_not_abort_batch(coordinator, seed, session):
    await seed.requester()
    await seed.runner("r1", meters=50.0)
    first = await seed.task(updated_at=NOW - timedelta(minutes=3))
    broken = await seed.task(updated_at=NOW - timedelta(minutes=2))
    last = await seed.task(updated_at=NOW - timedelta(minutes=1))
    await session.commit()

    original_build = coordinator.pool.build

    async def flaky_build(task, now):
        if task.task_id == broken:
            raise RuntimeError("coordinate store unreachable")
        return await original_build(task, now)

    coordinator.pool.build = flaky_build

    report = await coordinator.evaluate_batch(limit=10)

    assert report.evaluated == 3
    assert report.errored == 1
    assert report.notified == 2

    repo = TaskRepository(session)
    assert (await repo.get(first)).status == TaskStatus.NOTIFIED
    assert (await repo.get(last)).status == TaskStatus.NOTIFIED
    broken_task = await repo.get(broken)
    assert broken_task.status == TaskStatus.OPEN
    assert broken_task.dispatch_version == 0


@pytest.mark.asyncio
async def test_batch_respects_limit(coordinator, seed, session):
    await seed.requester()
    for _ in range(3):
        await seed.task()
    await session.commit()

    report = await coordinator.evaluate_batch(limit=2)

    assert report.evaluated == 2


@pytest.mark.asyncio
async def test_run_sweep_once_uses_fresh_session(engine, seed, session):
    await seed.requester()
    task_id = await seed.task(
        status=TaskStatus.NOTIFIED,
        notified_runner_id="r-gone",
        notified_at=utc_now() - timedelta(minutes=5),
        dispatch_version=1,
    )
    await session.commit()

    report = await sweep.run_sweep_once(limit=5)

    assert report.cleared == 1
    task = await TaskRepository(session).get(task_id)
    assert task.status == TaskStatus.OPEN
    assert task.excluded_runner_ids == ["r-gone"]


def test_jittered_interval_stays_within_twenty_percent():
    for _ in range(200):
        assert 8.0 <= sweep.jittered_interval(10.0) <= 12.0


@pytest.mark.asyncio
async def test_sweep_loop_starts_and_stops(engine, monkeypatch):
    monkeypatch.setattr(settings, "sweep_interval_seconds", 0.05)

    await sweep.start_dispatch_sweep()
    await asyncio.sleep(0.15)
    await sweep.stop_dispatch_sweep()

    assert sweep._sweep_task is None
    assert sweep._shutdown_event is None


# ============================================================================
# Batch rotation
# ============================================================================


@pytest.mark.asyncio
async def test_stuck_open_tasks_do_not_hold_every_slot(coordinator, seed, session):
    # Nobody is anywhere near this requester
    await seed.requester("req-remote", position=(7.2500, 125.8000))
    await seed.requester()
    await seed.runner("r1", meters=50.0)

    stuck = [
        await seed.task(requester_id="req-remote", updated_at=NOW - timedelta(minutes=m))
        for m in (30, 20)
    ]
    placeable = await seed.task(updated_at=NOW - timedelta(minutes=1))
    await session.commit()

    first = await coordinator.evaluate_batch(limit=2, now=NOW)
    assert [r.task_id for r in first.results] == stuck
    assert first.noop == 2

    second = await coordinator.evaluate_batch(limit=2, now=NOW + timedelta(seconds=10))
    assert second.results[0].task_id == placeable
    assert second.results[0].outcome == DispatchOutcome.NOTIFIED

    task = await TaskRepository(session).get(placeable)
    assert task.status == TaskStatus.NOTIFIED
    assert task.notified_runner_id == "r1"
    assert task.last_evaluated_at is None
    assert (await TaskRepository(session).get(stuck[0])).last_evaluated_at == NOW


@pytest.mark.asyncio
async def test_skipped_timeouts_do_not_starve_open_tasks(coordinator, seed, session):
    await seed.requester("req-blind", position=None)
    await seed.requester()
    await seed.runner("r1", meters=50.0)

    for minutes in (9, 8, 7):
        await seed.task(
            requester_id="req-blind",
            status=TaskStatus.NOTIFIED,
            notified_runner_id="r-old",
            notified_at=NOW - timedelta(minutes=minutes),
            dispatch_version=1,
        )
    open_task = await seed.task()
    await session.commit()

    outcomes = []
    for sweep_number in range(3):
        report = await coordinator.evaluate_batch(
            limit=2, now=NOW + timedelta(seconds=sweep_number)
        )
        outcomes.extend((r.task_id, r.outcome) for r in report.results)

    assert (open_task, DispatchOutcome.NOTIFIED) in outcomes
    assert (await TaskRepository(session).get(open_task)).notified_runner_id == "r1"


@pytest.mark.asyncio
async def test_stamped_tasks_come_after_unstamped_ones(session, seed):
    await seed.requester()
    stamped = await seed.task(
        updated_at=NOW - timedelta(hours=1), last_evaluated_at=NOW - timedelta(seconds=30)
    )
    fresh = await seed.task(updated_at=NOW - timedelta(minutes=1))
    await session.commit()

    batch = await TaskRepository(session).list_sweep_batch(NOW, 60.0, limit=1)

    assert batch == [fresh]
    assert stamped not in batch


# ============================================================================
# Live location reads during evaluation
# ============================================================================


class RequesterOnlyReader:
    """Live service that knows the requester's device and nobody else's."""

    def __init__(self, requester_id: str):
        self.requester_id = requester_id
        self.calls = []

    async def read(self, subject_id):
        self.calls.append(subject_id)
        if subject_id == self.requester_id:
            return LocationFix(latitude=ORIGIN[0], longitude=ORIGIN[1], accuracy_m=10.0)
        return None


@pytest.mark.asyncio
async def test_runner_lookups_do_not_back_off(seed, session):
    await seed.requester()
    for index in range(10):
        await seed.runner(f"r{index:02d}", meters=40.0 + 30.0 * index)
    task_id = await seed.task()
    await session.commit()

    delays = []

    async def record_sleep(seconds):
        delays.append(seconds)

    reader = RequesterOnlyReader("req-1")
    coordinator = DispatchCoordinator(
        session,
        geolocator=Geolocator(
            reader=reader, max_attempts=3, backoff_ms=500, sleep=record_sleep
        ),
        clock=lambda: NOW,
    )

    result = await coordinator.evaluate(task_id)

    assert result.outcome == DispatchOutcome.NOTIFIED
    # Runners fell back to their stored positions after one read each
    assert result.runner_id == "r00"
    assert sum(delays) == 0
    assert sorted(reader.calls) == sorted(["req-1", *(f"r{i:02d}" for i in range(10))])

"""
Dispatch coordinator - the task dispatch state machine.

One evaluation routine serves every trigger: the background sweep, the
runner feed poll and explicit API calls. There is no in-process lock.
Each transition is one conditional write keyed on the task's
``notified_at`` and ``dispatch_version`` as read at the start of the
evaluation, so when two triggers race on the same task exactly one write
lands and the other becomes a no-op.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from runnergate.config import settings
from runnergate.db.repositories import TaskRepository
from runnergate.engine.candidates import CandidatePool
from runnergate.engine.errors import (
    ConcurrentModification,
    InvalidStateTransition,
    LocationUnavailable,
    NotificationExpired,
    NotNotifiedRunner,
    ParticipantNotFound,
    TaskNotFound,
)
from runnergate.engine.geolocator import Geolocator
from runnergate.engine.ranking import RankingEngine
from runnergate.models import DispatchOutcome, ParticipantRole, Task, TaskKind, TaskStatus
from runnergate.observability.metrics import metrics
from runnergate.utils.time import utc_now

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    """Outcome of evaluating one task."""

    task_id: UUID
    outcome: DispatchOutcome
    runner_id: Optional[str] = None
    previous_runner_id: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class BatchReport:
    """Per-outcome counts for a batch evaluation."""

    evaluated: int = 0
    notified: int = 0
    reassigned: int = 0
    cleared: int = 0
    skipped: int = 0
    errored: int = 0
    noop: int = 0
    results: list[DispatchResult] = field(default_factory=list)

    def record(self, result: DispatchResult) -> None:
        self.evaluated += 1
        if result.outcome == DispatchOutcome.NOTIFIED:
            self.notified += 1
        elif result.outcome == DispatchOutcome.REASSIGNED:
            self.reassigned += 1
        elif result.outcome == DispatchOutcome.CLEARED:
            self.cleared += 1
        elif result.outcome == DispatchOutcome.SKIPPED:
            self.skipped += 1
        elif result.outcome == DispatchOutcome.ERROR:
            self.errored += 1
        else:
            self.noop += 1
        self.results.append(result)

    def as_dict(self) -> dict[str, int]:
        return {
            "evaluated": self.evaluated,
            "notified": self.notified,
            "reassigned": self.reassigned,
            "cleared": self.cleared,
            "skipped": self.skipped,
            "errored": self.errored,
            "noop": self.noop,
        }


def _with_excluded(excluded: list[str], runner_id: Optional[str]) -> list[str]:
    """Exclusion list with ``runner_id`` appended; entries are never removed."""
    if runner_id is None or runner_id in excluded:
        return list(excluded)
    return [*excluded, runner_id]


class DispatchCoordinator:
    """
    Drives tasks through open -> notified -> assigned -> completed.

    The coordinator writes through the session it is given and leaves
    committing to the caller, except where an operation spans more than one
    unit of work: ``evaluate_batch`` commits after every task, and
    ``create_task`` and ``decline`` commit their own write before evaluating.
    """

    def __init__(
        self,
        session: AsyncSession,
        geolocator: Optional[Geolocator] = None,
        ranking: Optional[RankingEngine] = None,
        timeout_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session = session
        self.tasks = TaskRepository(session)
        self.geolocator = geolocator or Geolocator()
        self.pool = CandidatePool(session, self.geolocator)
        self.ranking = ranking or RankingEngine()
        self.timeout_seconds = (
            settings.notification_timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        self._clock = clock

    # =========================================================================
    # Evaluation
    # =========================================================================

    async def evaluate(self, task_id: UUID, now: Optional[datetime] = None) -> DispatchResult:
        """
        Evaluate one task and apply at most one state transition.

        Never raises for an individual task: a missing location becomes
        ``skipped`` and any other failure rolls the session back and becomes
        ``error``, leaving the task as it was for the next trigger.
        """
        now = now or self._clock()
        started = time.perf_counter()
        try:
            result = await self._evaluate(task_id, now)
        except LocationUnavailable as e:
            logger.info(f"Skipping task {task_id}: {e.message}")
            result = DispatchResult(task_id, DispatchOutcome.SKIPPED, reason=e.code)
        except TaskNotFound as e:
            result = DispatchResult(task_id, DispatchOutcome.ERROR, reason=e.code)
        except Exception as e:
            logger.error(f"Error evaluating task {task_id}: {e}", exc_info=True)
            await self.session.rollback()
            result = DispatchResult(task_id, DispatchOutcome.ERROR, reason=str(e) or type(e).__name__)

        metrics.inc_counter(f"dispatch.outcome.{result.outcome.value}")
        metrics.observe("dispatch.evaluate.duration_ms", (time.perf_counter() - started) * 1000.0)
        return result

    async def evaluate_batch(
        self,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> BatchReport:
        """
        Evaluate up to ``limit`` tasks, committing each independently.

        Selected tasks are stamped and committed before any is evaluated,
        so a task that cannot move this pass yields its slot to the next
        batch. A failure on one task is counted and the batch moves on.
        """
        now = now or self._clock()
        limit = settings.sweep_batch_size if limit is None else limit
        report = BatchReport()

        task_ids = await self.tasks.list_sweep_batch(now, self.timeout_seconds, limit)
        await self.tasks.mark_evaluated(task_ids, now)
        await self.session.commit()

        for task_id in task_ids:
            result = await self.evaluate(task_id, now)
            if result.outcome != DispatchOutcome.ERROR:
                try:
                    await self.session.commit()
                except Exception as e:
                    logger.error(f"Commit failed for task {task_id}: {e}", exc_info=True)
                    await self.session.rollback()
                    result = DispatchResult(task_id, DispatchOutcome.ERROR, reason="commit_failed")
            report.record(result)

        if report.evaluated:
            logger.info(f"Dispatch batch: {report.as_dict()}")
        return report

    async def _evaluate(self, task_id: UUID, now: datetime) -> DispatchResult:
        task = await self.tasks.get(task_id)
        if task is None:
            raise TaskNotFound(str(task_id))

        if not task.is_dispatchable():
            return DispatchResult(task_id, DispatchOutcome.NOOP, reason="not_dispatchable")

        if task.status == TaskStatus.NOTIFIED:
            if not task.is_timed_out(now, self.timeout_seconds):
                return DispatchResult(
                    task_id,
                    DispatchOutcome.NOOP,
                    runner_id=task.notified_runner_id,
                    reason="awaiting_response",
                )
            return await self._reassign(task, now)

        return await self._notify(task, now)

    async def _notify(self, task: Task, now: datetime) -> DispatchResult:
        snapshot = await self.pool.build(task, now)
        top = self.ranking.select(snapshot.candidates, task.tokens, snapshot.origin)
        if top is None:
            return DispatchResult(task.task_id, DispatchOutcome.NOOP, reason="pool_empty")

        won = await self.tasks.compare_and_set(
            task.task_id,
            expected_notified_at=None,
            expected_version=task.dispatch_version,
            values={
                "status": TaskStatus.NOTIFIED,
                "notified_runner_id": top.runner_id,
                "notified_at": now,
                "last_evaluated_at": None,
                "updated_at": now,
            },
        )
        if not won:
            return self._contention(task)

        logger.info(
            f"Task {task.task_id} notified runner {top.runner_id} "
            f"(score {top.final_score:.3f}, {top.distance_meters:.0f}m)"
        )
        return DispatchResult(task.task_id, DispatchOutcome.NOTIFIED, runner_id=top.runner_id)

    async def _reassign(self, task: Task, now: datetime) -> DispatchResult:
        previous = task.notified_runner_id
        excluded = _with_excluded(task.excluded_runner_ids, previous)

        snapshot = await self.pool.build(task, now)
        top = self.ranking.select(snapshot.candidates, task.tokens, snapshot.origin)

        if top is not None:
            values: dict[str, Any] = {
                "status": TaskStatus.NOTIFIED,
                "excluded_runner_ids": excluded,
                "notified_runner_id": top.runner_id,
                "notified_at": now,
                "last_evaluated_at": None,
                "updated_at": now,
            }
        else:
            values = {
                "status": TaskStatus.OPEN,
                "excluded_runner_ids": excluded,
                "notified_runner_id": None,
                "notified_at": None,
                "updated_at": now,
            }

        won = await self.tasks.compare_and_set(
            task.task_id,
            expected_notified_at=task.notified_at,
            expected_version=task.dispatch_version,
            values=values,
        )
        if not won:
            return self._contention(task)

        if top is None:
            logger.warning(
                f"Task {task.task_id} cleared after timeout of runner {previous}: "
                f"no eligible runners ({len(excluded)} excluded)"
            )
            return DispatchResult(
                task.task_id, DispatchOutcome.CLEARED, previous_runner_id=previous, reason="pool_empty"
            )

        logger.info(f"Task {task.task_id} reassigned from runner {previous} to {top.runner_id}")
        return DispatchResult(
            task.task_id,
            DispatchOutcome.REASSIGNED,
            runner_id=top.runner_id,
            previous_runner_id=previous,
        )

    def _contention(self, task: Task) -> DispatchResult:
        logger.debug(f"Task {task.task_id} changed since version {task.dispatch_version}, skipping")
        metrics.inc_counter("dispatch.contention")
        return DispatchResult(task.task_id, DispatchOutcome.NOOP, reason="contention")

    # =========================================================================
    # Collaborator transitions
    # =========================================================================

    async def create_task(
        self,
        requester_id: str,
        kind: TaskKind = TaskKind.ERRAND,
        title: str = "",
        category: str = "",
        dispatch: bool = True,
    ) -> tuple[Task, Optional[DispatchResult]]:
        """Create an open task and, by default, run a first evaluation."""
        requester = await self.pool.participants.get(requester_id)
        if requester is None or requester.role != ParticipantRole.REQUESTER:
            raise ParticipantNotFound(requester_id)

        task = await self.tasks.create(requester_id, kind=kind, title=title, category=category)
        metrics.inc_counter("tasks.created")
        if not dispatch:
            return task, None

        await self.session.commit()
        result = await self.evaluate(task.task_id)
        return await self._require(task.task_id), result

    async def accept(self, task_id: UUID, runner_id: str, now: Optional[datetime] = None) -> Task:
        """The notified runner takes the task inside its response window."""
        now = now or self._clock()
        task = await self._require(task_id)

        if task.status != TaskStatus.NOTIFIED:
            raise InvalidStateTransition(task.status.value, TaskStatus.ASSIGNED.value)
        if task.notified_runner_id != runner_id:
            raise NotNotifiedRunner(str(task_id), runner_id)
        if task.is_timed_out(now, self.timeout_seconds):
            raise NotificationExpired(str(task_id), runner_id)

        await self._write(
            task,
            {
                "status": TaskStatus.ASSIGNED,
                "assigned_runner_id": runner_id,
                "notified_runner_id": None,
                "notified_at": None,
                "updated_at": now,
            },
        )
        logger.info(f"Task {task_id} accepted by runner {runner_id}")
        return await self._require(task_id)

    async def decline(
        self,
        task_id: UUID,
        runner_id: str,
        now: Optional[datetime] = None,
    ) -> DispatchResult:
        """
        The notified runner turns the task down.

        The runner joins the exclusion list (and, for commissions, becomes
        ``declined_runner_id``), the task returns to open and is evaluated
        again straight away. Returns the result of that evaluation.
        """
        now = now or self._clock()
        task = await self._require(task_id)

        if task.status != TaskStatus.NOTIFIED:
            raise InvalidStateTransition(task.status.value, TaskStatus.OPEN.value)
        if task.notified_runner_id != runner_id:
            raise NotNotifiedRunner(str(task_id), runner_id)

        values: dict[str, Any] = {
            "status": TaskStatus.OPEN,
            "excluded_runner_ids": _with_excluded(task.excluded_runner_ids, runner_id),
            "notified_runner_id": None,
            "notified_at": None,
            "updated_at": now,
        }
        if task.kind == TaskKind.COMMISSION:
            values["declined_runner_id"] = runner_id

        await self._write(task, values)
        await self.session.commit()
        logger.info(f"Task {task_id} declined by runner {runner_id}")
        metrics.inc_counter("tasks.declined")

        return await self.evaluate(task_id, now)

    async def complete(self, task_id: UUID, runner_id: str, now: Optional[datetime] = None) -> Task:
        now = now or self._clock()
        task = await self._require(task_id)

        if task.status != TaskStatus.ASSIGNED:
            raise InvalidStateTransition(task.status.value, TaskStatus.COMPLETED.value)
        if task.assigned_runner_id != runner_id:
            raise NotNotifiedRunner(str(task_id), runner_id)

        await self._write(
            task,
            {"status": TaskStatus.COMPLETED, "completed_at": now, "updated_at": now},
        )
        metrics.inc_counter("tasks.completed")
        return await self._require(task_id)

    async def cancel(self, task_id: UUID, now: Optional[datetime] = None) -> Task:
        now = now or self._clock()
        task = await self._require(task_id)

        if not task.can_transition_to(TaskStatus.CANCELLED):
            raise InvalidStateTransition(task.status.value, TaskStatus.CANCELLED.value)

        await self._write(
            task,
            {
                "status": TaskStatus.CANCELLED,
                "notified_runner_id": None,
                "notified_at": None,
                "updated_at": now,
            },
        )
        metrics.inc_counter("tasks.cancelled")
        return await self._require(task_id)

    async def _require(self, task_id: UUID) -> Task:
        task = await self.tasks.get(task_id)
        if task is None:
            raise TaskNotFound(str(task_id))
        return task

    async def _write(self, task: Task, values: dict[str, Any]) -> None:
        won = await self.tasks.compare_and_set(
            task.task_id,
            expected_notified_at=task.notified_at,
            expected_version=task.dispatch_version,
            values=values,
        )
        if not won:
            metrics.inc_counter("dispatch.contention")
            raise ConcurrentModification(str(task.task_id))

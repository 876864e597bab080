"""Database repositories for RunnerGate entities."""

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import and_, case, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from runnergate.db.tables import ParticipantTable, TaskTable
from runnergate.models import (
    Participant,
    ParticipantRole,
    Task,
    TaskKind,
    TaskStatus,
    TaskSummary,
    category_tokens,
)
from runnergate.utils.time import ensure_utc, utc_now


class TaskRepository:
    """Repository for task operations.

    Every dispatch write goes through ``compare_and_set``. Plain ``update``
    calls against the tasks table outside this class would break the
    single-winner guarantee the coordinator relies on.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        requester_id: str,
        kind: TaskKind = TaskKind.ERRAND,
        title: str = "",
        category: str = "",
    ) -> Task:
        """Create a new open task."""
        now = utc_now()

        task_row = TaskTable(
            task_id=uuid4(),
            kind=kind,
            requester_id=requester_id,
            title=title,
            category=category,
            status=TaskStatus.OPEN,
            notified_runner_id=None,
            notified_at=None,
            excluded_runner_ids=[],
            declined_runner_id=None,
            dispatch_version=0,
            created_at=now,
            updated_at=now,
        )

        self.session.add(task_row)
        await self.session.flush()
        return self._row_to_model(task_row)

    async def get(self, task_id: UUID) -> Task | None:
        """Get a task by ID."""
        result = await self.session.execute(
            select(TaskTable)
            .where(TaskTable.task_id == task_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def list_tasks(
        self,
        status: TaskStatus | None = None,
        requester_id: str | None = None,
        limit: int = 50,
        cursor: str | None = None,
    ) -> tuple[list[Task], str | None]:
        """List tasks with optional filtering."""
        query = select(TaskTable)

        if status:
            query = query.where(TaskTable.status == status)
        if requester_id:
            query = query.where(TaskTable.requester_id == requester_id)

        # Cursor-based pagination
        if cursor:
            cursor_time = datetime.fromisoformat(cursor)
            query = query.where(TaskTable.created_at < cursor_time)

        query = (
            query.order_by(TaskTable.created_at.desc())
            .limit(limit + 1)
            .execution_options(populate_existing=True)
        )

        result = await self.session.execute(query)
        rows = list(result.scalars().all())

        next_cursor = None
        if len(rows) > limit:
            rows = rows[:limit]
            next_cursor = rows[-1].created_at.isoformat()

        return [self._row_to_model(r) for r in rows], next_cursor

    async def compare_and_set(
        self,
        task_id: UUID,
        expected_notified_at: datetime | None,
        expected_version: int,
        values: dict[str, Any],
    ) -> bool:
        """
        Apply ``values`` only if the row still carries the expected version.

        The match is on both the ``notified_at`` token and ``dispatch_version``.
        The version is bumped on every successful write, so a task that was
        cleared and then re-notified never matches a stale read. Returns True
        when exactly this call changed the row.
        """
        if expected_notified_at is None:
            notified_match = TaskTable.notified_at.is_(None)
        else:
            notified_match = TaskTable.notified_at == expected_notified_at

        values = dict(values)
        values["dispatch_version"] = expected_version + 1
        values.setdefault("updated_at", utc_now())

        result = await self.session.execute(
            update(TaskTable)
            .where(
                TaskTable.task_id == task_id,
                notified_match,
                TaskTable.dispatch_version == expected_version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_sweep_batch(
        self,
        now: datetime,
        timeout_seconds: float,
        limit: int,
    ) -> list[UUID]:
        """
        Select task IDs the sweep should evaluate.

        Candidates are timed-out notifications and open tasks. Tasks never
        picked up since their last notification come first, then the least
        recently evaluated, so tasks that stay stuck rotate to the back
        instead of holding every slot. Within a tier timed-out notifications
        lead (oldest notification first), then open tasks (least recently
        touched first).
        """
        if limit <= 0:
            return []

        cutoff = now - timedelta(seconds=timeout_seconds)
        is_timed_out = and_(
            TaskTable.status == TaskStatus.NOTIFIED,
            TaskTable.notified_at <= cutoff,
        )
        result = await self.session.execute(
            select(TaskTable.task_id)
            .where(or_(is_timed_out, TaskTable.status == TaskStatus.OPEN))
            .order_by(
                TaskTable.last_evaluated_at.asc().nulls_first(),
                case((TaskTable.status == TaskStatus.NOTIFIED, 0), else_=1),
                TaskTable.notified_at.asc(),
                TaskTable.updated_at.asc(),
            )
            .limit(limit)
        )
        return list(result.scalars().all())

    async def mark_evaluated(self, task_ids: list[UUID], now: datetime) -> None:
        """Stamp tasks picked up by a batch so the next batch moves past them."""
        if not task_ids:
            return
        await self.session.execute(
            update(TaskTable)
            .where(TaskTable.task_id.in_(task_ids))
            .values(last_evaluated_at=now)
            .execution_options(synchronize_session=False)
        )

    async def list_for_runner(self, runner_id: str, limit: int = 50) -> list[TaskSummary]:
        """Tasks currently offered to or held by a runner."""
        result = await self.session.execute(
            select(TaskTable)
            .where(
                or_(
                    and_(
                        TaskTable.status == TaskStatus.NOTIFIED,
                        TaskTable.notified_runner_id == runner_id,
                    ),
                    and_(
                        TaskTable.status == TaskStatus.ASSIGNED,
                        TaskTable.assigned_runner_id == runner_id,
                    ),
                )
            )
            .order_by(TaskTable.updated_at.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return [
            TaskSummary(
                task_id=row.task_id,
                kind=row.kind,
                title=row.title,
                category=row.category,
                status=row.status,
                requester_id=row.requester_id,
                notified_at=ensure_utc(row.notified_at),
            )
            for row in result.scalars().all()
        ]

    async def completed_categories(self, runner_ids: list[str]) -> dict[str, list[str]]:
        """
        History store: category tokens of every completed task per runner.

        Runners with no completed tasks are present with an empty list.
        """
        history: dict[str, list[str]] = {runner_id: [] for runner_id in runner_ids}
        if not runner_ids:
            return history

        result = await self.session.execute(
            select(TaskTable.assigned_runner_id, TaskTable.category).where(
                TaskTable.status == TaskStatus.COMPLETED,
                TaskTable.assigned_runner_id.in_(runner_ids),
            )
        )

        collected: dict[str, list[str]] = defaultdict(list)
        for runner_id, category in result.all():
            collected[runner_id].extend(category_tokens(category))
        history.update(collected)
        return history

    def _row_to_model(self, row: TaskTable) -> Task:
        """Convert database row to model."""
        return Task(
            task_id=row.task_id,
            kind=row.kind,
            requester_id=row.requester_id,
            title=row.title,
            category=row.category,
            status=row.status,
            notified_runner_id=row.notified_runner_id,
            notified_at=ensure_utc(row.notified_at),
            excluded_runner_ids=list(row.excluded_runner_ids or []),
            declined_runner_id=row.declined_runner_id,
            dispatch_version=row.dispatch_version,
            last_evaluated_at=ensure_utc(row.last_evaluated_at),
            assigned_runner_id=row.assigned_runner_id,
            created_at=ensure_utc(row.created_at),
            updated_at=ensure_utc(row.updated_at),
            completed_at=ensure_utc(row.completed_at),
        )


class ParticipantRepository:
    """Repository for the coordinate and presence store."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, participant_id: str) -> Participant | None:
        result = await self.session.execute(
            select(ParticipantTable)
            .where(ParticipantTable.participant_id == participant_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def upsert(
        self,
        participant_id: str,
        role: ParticipantRole,
        average_rating: float | None = None,
        is_available: bool | None = None,
    ) -> Participant:
        """Create or update a participant's profile fields."""
        now = utc_now()

        result = await self.session.execute(
            select(ParticipantTable)
            .where(ParticipantTable.participant_id == participant_id)
            .execution_options(populate_existing=True)
        )
        existing = result.scalar_one_or_none()

        if existing:
            existing.role = role
            existing.last_seen_at = now
            if average_rating is not None:
                existing.average_rating = average_rating
            if is_available is not None:
                existing.is_available = is_available
        else:
            existing = ParticipantTable(
                participant_id=participant_id,
                role=role,
                average_rating=average_rating,
                is_available=bool(is_available),
                last_seen_at=now,
            )
            self.session.add(existing)

        await self.session.flush()
        return self._row_to_model(existing)

    async def report_location(
        self,
        participant_id: str,
        latitude: float,
        longitude: float,
        accuracy_m: float | None = None,
        reported_at: datetime | None = None,
    ) -> Participant | None:
        """Store a participant's latest position and refresh presence."""
        now = reported_at or utc_now()
        result = await self.session.execute(
            update(ParticipantTable)
            .where(ParticipantTable.participant_id == participant_id)
            .values(
                latitude=latitude,
                longitude=longitude,
                location_accuracy_m=accuracy_m,
                location_updated_at=now,
                last_seen_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        return await self.get(participant_id)

    async def set_availability(self, participant_id: str, is_available: bool) -> Participant | None:
        result = await self.session.execute(
            update(ParticipantTable)
            .where(ParticipantTable.participant_id == participant_id)
            .values(is_available=is_available, last_seen_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        return await self.get(participant_id)

    async def list_runners(self, available_only: bool = True) -> list[Participant]:
        """Runners in the store, ordered by ID for stable iteration."""
        query = select(ParticipantTable).where(ParticipantTable.role == ParticipantRole.RUNNER)
        if available_only:
            query = query.where(ParticipantTable.is_available.is_(True))
        query = query.order_by(ParticipantTable.participant_id.asc())
        query = query.execution_options(populate_existing=True)

        result = await self.session.execute(query)
        return [self._row_to_model(r) for r in result.scalars().all()]

    def _row_to_model(self, row: ParticipantTable) -> Participant:
        """Convert database row to model."""
        return Participant(
            participant_id=row.participant_id,
            role=row.role,
            latitude=row.latitude,
            longitude=row.longitude,
            location_accuracy_m=row.location_accuracy_m,
            location_updated_at=ensure_utc(row.location_updated_at),
            is_available=row.is_available,
            last_seen_at=ensure_utc(row.last_seen_at),
            average_rating=row.average_rating,
        )

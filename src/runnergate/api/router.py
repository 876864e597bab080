"""REST API router."""

from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from runnergate import __version__
from runnergate.api.deps import get_coordinator, get_db_session, verify_api_key
from runnergate.api.schemas import (
    AvailabilityRequest,
    ConfigResponse,
    CreateTaskRequest,
    CreateTaskResponse,
    DispatchResultResponse,
    HealthResponse,
    ListTasksResponse,
    ParticipantResponse,
    ReportLocationRequest,
    RunnerActionRequest,
    RunnerFeedResponse,
    SweepResponse,
    TaskResponse,
    TaskSummarySchema,
    UpsertParticipantRequest,
)
from runnergate.config import settings
from runnergate.db.repositories import ParticipantRepository, TaskRepository
from runnergate.engine import (
    ConcurrentModification,
    DispatchCoordinator,
    DispatchResult,
    InvalidStateTransition,
    NotificationExpired,
    NotNotifiedRunner,
    ParticipantNotFound,
    TaskNotFound,
)
from runnergate.models import Participant, Task, TaskStatus
from runnergate.observability.metrics import metrics

router = APIRouter(prefix="/v1", dependencies=[Depends(verify_api_key)])


def _task_response(task: Task) -> TaskResponse:
    return TaskResponse(**task.model_dump())


def _participant_response(participant: Participant) -> ParticipantResponse:
    return ParticipantResponse(**participant.model_dump())


def _dispatch_response(result: DispatchResult) -> DispatchResultResponse:
    return DispatchResultResponse(
        task_id=result.task_id,
        outcome=result.outcome.value,
        runner_id=result.runner_id,
        previous_runner_id=result.previous_runner_id,
        reason=result.reason,
    )


# ============================================================================
# Health & Config
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=__version__)


@router.get("/config", response_model=ConfigResponse)
async def get_config():
    """Get the dispatch parameters this server runs with."""
    return ConfigResponse(
        notification_timeout_seconds=settings.notification_timeout_seconds,
        presence_window_seconds=settings.presence_window_seconds,
        max_distance_meters=settings.max_distance_meters,
        weights={
            "distance": settings.distance_weight,
            "rating": settings.rating_weight,
            "affinity": settings.affinity_weight,
        },
        geolocation={
            "max_attempts": settings.geolocation_max_attempts,
            "backoff_ms": settings.geolocation_backoff_ms,
            "accuracy_threshold_meters": settings.geolocation_accuracy_threshold_meters,
        },
        sweep_interval_seconds=settings.sweep_interval_seconds,
        sweep_batch_size=settings.sweep_batch_size,
        location_service_configured=bool(settings.location_service_url),
        version=__version__,
    )


@router.get("/metrics")
async def get_metrics() -> dict[str, Any]:
    """In-process counters and histograms."""
    return metrics.snapshot()


# ============================================================================
# Tasks
# ============================================================================


@router.post("/tasks", response_model=CreateTaskResponse, status_code=201)
async def create_task(
    request: CreateTaskRequest,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    """Create a task and, unless told otherwise, try to dispatch it at once."""
    try:
        task, result = await coordinator.create_task(
            requester_id=request.requester_id,
            kind=request.kind,
            title=request.title,
            category=request.category,
            dispatch=request.dispatch,
        )
    except ParticipantNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)
    return CreateTaskResponse(
        task=_task_response(task),
        dispatch=_dispatch_response(result) if result else None,
    )


@router.get("/tasks/{task_id}", response_model=TaskResponse)
async def get_task(
    task_id: UUID,
    session: AsyncSession = Depends(get_db_session),
):
    """Get a task by ID."""
    task = await TaskRepository(session).get(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail=f"Task not found: {task_id}")
    return _task_response(task)


@router.get("/tasks", response_model=ListTasksResponse)
async def list_tasks(
    status: Optional[TaskStatus] = Query(None),
    requester_id: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1),
    cursor: Optional[str] = Query(None),
    session: AsyncSession = Depends(get_db_session),
):
    """List tasks, newest first."""
    limit_value = min(
        settings.default_list_limit if limit is None else limit, settings.max_list_limit
    )
    tasks, next_cursor = await TaskRepository(session).list_tasks(
        status=status,
        requester_id=requester_id,
        limit=limit_value,
        cursor=cursor,
    )
    return ListTasksResponse(tasks=[_task_response(t) for t in tasks], next_cursor=next_cursor)


@router.post("/tasks/{task_id}/evaluate", response_model=DispatchResultResponse)
async def evaluate_task(
    task_id: UUID,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    """Run one dispatch evaluation for a task."""
    if await coordinator.tasks.get(task_id) is None:
        raise HTTPException(status_code=404, detail=f"Task not found: {task_id}")
    return _dispatch_response(await coordinator.evaluate(task_id))


@router.post("/tasks/{task_id}/accept", response_model=TaskResponse)
async def accept_task(
    task_id: UUID,
    request: RunnerActionRequest,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    """Notified runner accepts the task."""
    try:
        task = await coordinator.accept(task_id, request.runner_id)
    except TaskNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)
    except NotNotifiedRunner as e:
        raise HTTPException(status_code=403, detail=e.message)
    except (InvalidStateTransition, NotificationExpired, ConcurrentModification) as e:
        raise HTTPException(status_code=409, detail=e.message)
    return _task_response(task)


@router.post("/tasks/{task_id}/decline", response_model=DispatchResultResponse)
async def decline_task(
    task_id: UUID,
    request: RunnerActionRequest,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    """Notified runner declines; the task is re-evaluated immediately."""
    try:
        result = await coordinator.decline(task_id, request.runner_id)
    except TaskNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)
    except NotNotifiedRunner as e:
        raise HTTPException(status_code=403, detail=e.message)
    except (InvalidStateTransition, ConcurrentModification) as e:
        raise HTTPException(status_code=409, detail=e.message)
    return _dispatch_response(result)


@router.post("/tasks/{task_id}/complete", response_model=TaskResponse)
async def complete_task(
    task_id: UUID,
    request: RunnerActionRequest,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    """Assigned runner marks the task done."""
    try:
        task = await coordinator.complete(task_id, request.runner_id)
    except TaskNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)
    except NotNotifiedRunner as e:
        raise HTTPException(status_code=403, detail=e.message)
    except (InvalidStateTransition, ConcurrentModification) as e:
        raise HTTPException(status_code=409, detail=e.message)
    return _task_response(task)


@router.post("/tasks/{task_id}/cancel", response_model=TaskResponse)
async def cancel_task(
    task_id: UUID,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    """Cancel a task that has not finished."""
    try:
        task = await coordinator.cancel(task_id)
    except TaskNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)
    except (InvalidStateTransition, ConcurrentModification) as e:
        raise HTTPException(status_code=409, detail=e.message)
    return _task_response(task)


# ============================================================================
# Dispatch
# ============================================================================


@router.post("/dispatch/sweep", response_model=SweepResponse)
async def sweep(
    limit: Optional[int] = Query(None, ge=1, le=1000),
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    """Evaluate one batch now, the same way the background sweep does."""
    report = await coordinator.evaluate_batch(limit=limit)
    return SweepResponse(**report.as_dict())


@router.get("/runners/{runner_id}/feed", response_model=RunnerFeedResponse)
async def runner_feed(
    runner_id: str,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    """
    Runner poll.

    Polling doubles as the on-demand dispatch trigger: a bounded batch is
    evaluated first so a runner whose predecessor timed out sees the task
    without waiting for the next sweep.
    """
    evaluated = 0
    if settings.feed_evaluation_limit > 0:
        report = await coordinator.evaluate_batch(limit=settings.feed_evaluation_limit)
        evaluated = report.evaluated

    summaries = await coordinator.tasks.list_for_runner(runner_id)
    return RunnerFeedResponse(
        runner_id=runner_id,
        tasks=[TaskSummarySchema(**s.model_dump()) for s in summaries],
        evaluated=evaluated,
    )


# ============================================================================
# Participants
# ============================================================================


@router.put("/participants/{participant_id}", response_model=ParticipantResponse)
async def upsert_participant(
    participant_id: str,
    request: UpsertParticipantRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """Register a requester or runner, or update its profile."""
    participant = await ParticipantRepository(session).upsert(
        participant_id,
        role=request.role,
        average_rating=request.average_rating,
        is_available=request.is_available,
    )
    return _participant_response(participant)


@router.post("/participants/{participant_id}/location", response_model=ParticipantResponse)
async def report_location(
    participant_id: str,
    request: ReportLocationRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """Store a participant's latest position; this also refreshes presence."""
    participant = await ParticipantRepository(session).report_location(
        participant_id,
        latitude=request.latitude,
        longitude=request.longitude,
        accuracy_m=request.accuracy_m,
    )
    if participant is None:
        raise HTTPException(status_code=404, detail=f"Participant not found: {participant_id}")
    return _participant_response(participant)


@router.post("/participants/{participant_id}/availability", response_model=ParticipantResponse)
async def set_availability(
    participant_id: str,
    request: AvailabilityRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """Runner goes on or off duty."""
    participant = await ParticipantRepository(session).set_availability(
        participant_id, request.is_available
    )
    if participant is None:
        raise HTTPException(status_code=404, detail=f"Participant not found: {participant_id}")
    return _participant_response(participant)

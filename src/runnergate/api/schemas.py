"""API request/response schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from runnergate.models import ParticipantRole, TaskKind, TaskStatus


# ============================================================================
# Task schemas
# ============================================================================


class CreateTaskRequest(BaseModel):
    """Create task request."""

    requester_id: str = Field(..., min_length=1, description="Requester participant ID")
    kind: TaskKind = Field(TaskKind.ERRAND, description="errand or commission")
    title: str = Field("", max_length=255)
    category: str = Field(
        "", max_length=255, description="Category label; commissions may list several, comma-separated"
    )
    dispatch: bool = Field(True, description="Evaluate the task immediately after creation")


class TaskResponse(BaseModel):
    """Task response."""

    task_id: UUID
    kind: TaskKind
    requester_id: str
    title: str
    category: str
    status: TaskStatus
    notified_runner_id: Optional[str] = None
    notified_at: Optional[datetime] = None
    excluded_runner_ids: list[str] = Field(default_factory=list)
    declined_runner_id: Optional[str] = None
    assigned_runner_id: Optional[str] = None
    dispatch_version: int
    last_evaluated_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class ListTasksResponse(BaseModel):
    """List tasks response."""

    tasks: list[TaskResponse]
    next_cursor: Optional[str] = None


class RunnerActionRequest(BaseModel):
    """Accept, decline or complete on behalf of a runner."""

    runner_id: str = Field(..., min_length=1)


# ============================================================================
# Dispatch schemas
# ============================================================================


class DispatchResultResponse(BaseModel):
    """Outcome of one task evaluation."""

    task_id: UUID
    outcome: str
    runner_id: Optional[str] = None
    previous_runner_id: Optional[str] = None
    reason: Optional[str] = None


class CreateTaskResponse(BaseModel):
    """Create task response."""

    task: TaskResponse
    dispatch: Optional[DispatchResultResponse] = None


class SweepResponse(BaseModel):
    """Batch evaluation counts."""

    evaluated: int
    notified: int
    reassigned: int
    cleared: int
    skipped: int
    errored: int
    noop: int


class TaskSummarySchema(BaseModel):
    task_id: UUID
    kind: TaskKind
    title: str
    category: str
    status: TaskStatus
    requester_id: str
    notified_at: Optional[datetime] = None


class RunnerFeedResponse(BaseModel):
    """Tasks currently offered to or held by a runner."""

    runner_id: str
    tasks: list[TaskSummarySchema]
    evaluated: int = Field(0, description="Tasks evaluated by this poll before listing")


# ============================================================================
# Participant schemas
# ============================================================================


class UpsertParticipantRequest(BaseModel):
    role: ParticipantRole
    average_rating: Optional[float] = Field(None, ge=0, le=5)
    is_available: Optional[bool] = None


class ReportLocationRequest(BaseModel):
    """Latest device position for a participant."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy_m: Optional[float] = Field(None, ge=0)


class AvailabilityRequest(BaseModel):
    is_available: bool


class ParticipantResponse(BaseModel):
    """Participant response."""

    participant_id: str
    role: ParticipantRole
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_accuracy_m: Optional[float] = None
    location_updated_at: Optional[datetime] = None
    is_available: bool
    last_seen_at: Optional[datetime] = None
    average_rating: Optional[float] = None


# ============================================================================
# System schemas
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str


class ConfigResponse(BaseModel):
    """Config response."""

    notification_timeout_seconds: float
    presence_window_seconds: float
    max_distance_meters: float
    weights: dict[str, float]
    geolocation: dict[str, float]
    sweep_interval_seconds: float
    sweep_batch_size: int
    location_service_configured: bool
    version: str

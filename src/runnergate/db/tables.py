"""SQLAlchemy table definitions."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    Index,
    Integer,
    String,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from runnergate.db.base import Base
from runnergate.models.enums import ParticipantRole, TaskKind, TaskStatus

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


def _enum(enum_cls, name: str) -> Enum:
    """Enum column storing the lower-case values the migration declares."""
    return Enum(enum_cls, name=name, values_callable=_enum_values)


class TaskTable(Base):
    """Tasks table - errands and commissions, one row per task instance."""

    __tablename__ = "tasks"

    task_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True)

    # Variant and ownership
    kind: Mapped[TaskKind] = mapped_column(
        _enum(TaskKind, "taskkind"), nullable=False, default=TaskKind.ERRAND
    )
    requester_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    # Description
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    category: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    # Status
    status: Mapped[TaskStatus] = mapped_column(
        _enum(TaskStatus, "taskstatus"), nullable=False, default=TaskStatus.OPEN
    )

    # Dispatch state; written only through TaskRepository.compare_and_set
    notified_runner_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    excluded_runner_ids: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    declined_runner_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    dispatch_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Set when a sweep batch picks the task up, cleared on notify
    last_evaluated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Acceptance
    assigned_runner_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        # Sweep: least recently evaluated first
        Index("idx_tasks_status_evaluated", "status", "last_evaluated_at"),
        Index("idx_tasks_status_notified", "status", "notified_at"),
        Index("idx_tasks_status_updated", "status", "updated_at"),
        # Runner feed and history
        Index("idx_tasks_notified_runner", "notified_runner_id"),
        Index("idx_tasks_assigned_runner", "assigned_runner_id", "status"),
    )


class ParticipantTable(Base):
    """Participants table - coordinate, presence, and rating store."""

    __tablename__ = "participants"

    participant_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    role: Mapped[ParticipantRole] = mapped_column(
        _enum(ParticipantRole, "participantrole"), nullable=False
    )

    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_accuracy_m: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    average_rating: Mapped[float | None] = mapped_column(Float, nullable=True)

    __table_args__ = (
        Index("idx_participants_dispatchable", "role", "is_available", "location_updated_at"),
    )

"""
Pytest fixtures for RunnerGate tests.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Ensure test config is set before importing runnergate modules.
os.environ["RUNNERGATE_ENV"] = "development"
os.environ["RUNNERGATE_SWEEP_ENABLED"] = "false"
os.environ.pop("RUNNERGATE_API_KEY", None)
os.environ.pop("RUNNERGATE_LOCATION_SERVICE_URL", None)
os.environ.pop("LOCATION_SERVICE_URL", None)
os.environ.setdefault(
    "RUNNERGATE_DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'runnergate_test.db')}",
)

from runnergate.db.base import Base
from runnergate.db.tables import ParticipantTable, TaskTable
from runnergate.engine import DispatchCoordinator, Geolocator
from runnergate.models import ParticipantRole, TaskKind, TaskStatus

# Fixed evaluation clock for engine tests
NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)

# Requester position used across scenarios (Davao City)
ORIGIN = (7.1100, 125.6100)

# Meters per degree of latitude on the 6371 km sphere
METERS_PER_DEGREE = 6371000.0 * 3.141592653589793 / 180.0


def north_of(origin: tuple[float, float], meters: float) -> tuple[float, float]:
    """Point ``meters`` due north of ``origin``."""
    return origin[0] + meters / METERS_PER_DEGREE, origin[1]


class Seeder:
    """Writes participants and tasks straight into the tables."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def requester(
        self,
        participant_id: str = "req-1",
        position: tuple[float, float] | None = ORIGIN,
    ) -> str:
        self.session.add(
            ParticipantTable(
                participant_id=participant_id,
                role=ParticipantRole.REQUESTER,
                latitude=position[0] if position else None,
                longitude=position[1] if position else None,
                location_updated_at=NOW if position else None,
                is_available=False,
            )
        )
        await self.session.flush()
        return participant_id

    async def runner(
        self,
        participant_id: str,
        meters: float = 100.0,
        rating: float | None = None,
        available: bool = True,
        seen_at: datetime | None = None,
        position: tuple[float, float] | None = None,
    ) -> str:
        latitude, longitude = position or north_of(ORIGIN, meters)
        self.session.add(
            ParticipantTable(
                participant_id=participant_id,
                role=ParticipantRole.RUNNER,
                latitude=latitude,
                longitude=longitude,
                location_accuracy_m=10.0,
                location_updated_at=seen_at or NOW - timedelta(seconds=10),
                is_available=available,
                average_rating=rating,
                last_seen_at=seen_at or NOW - timedelta(seconds=10),
            )
        )
        await self.session.flush()
        return participant_id

    async def task(
        self,
        requester_id: str = "req-1",
        kind: TaskKind = TaskKind.ERRAND,
        category: str = "groceries",
        status: TaskStatus = TaskStatus.OPEN,
        notified_runner_id: str | None = None,
        notified_at: datetime | None = None,
        excluded_runner_ids: list[str] | None = None,
        assigned_runner_id: str | None = None,
        dispatch_version: int = 0,
        updated_at: datetime | None = None,
        last_evaluated_at: datetime | None = None,
    ):
        row = TaskTable(
            task_id=uuid4(),
            kind=kind,
            requester_id=requester_id,
            title=f"{category} run",
            category=category,
            status=status,
            notified_runner_id=notified_runner_id,
            notified_at=notified_at,
            excluded_runner_ids=excluded_runner_ids or [],
            declined_runner_id=None,
            dispatch_version=dispatch_version,
            last_evaluated_at=last_evaluated_at,
            assigned_runner_id=assigned_runner_id,
            created_at=NOW - timedelta(minutes=5),
            updated_at=updated_at or NOW - timedelta(minutes=5),
        )
        self.session.add(row)
        await self.session.flush()
        return row.task_id

    async def history(self, runner_id: str, *categories: str) -> None:
        """Completed tasks for ``runner_id``, one per category label."""
        for category in categories:
            await self.task(
                requester_id="history-requester",
                category=category,
                status=TaskStatus.COMPLETED,
                assigned_runner_id=runner_id,
            )


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite engine wired into runnergate.db.base."""
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'runnergate.db'}"
    engine = create_async_engine(database_url, connect_args={"check_same_thread": False})

    from runnergate.db import base as db_base

    original_engine = db_base.engine
    original_factory = db_base.async_session_factory
    db_base.engine = engine
    db_base.async_session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    db_base.engine = original_engine
    db_base.async_session_factory = original_factory
    await engine.dispose()


@pytest.fixture
async def session(engine):
    """Provide a clean database session per test."""
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture
def seed(session) -> Seeder:
    return Seeder(session)


@pytest.fixture
def coordinator(session) -> DispatchCoordinator:
    """Coordinator on the test session with stored-coordinate geolocation only."""
    return DispatchCoordinator(
        session,
        geolocator=Geolocator(reader=None),
        clock=lambda: NOW,
    )


@pytest.fixture
async def client(session):
    """Async test client with overridden dependencies."""
    from runnergate.api.deps import get_db_session
    from runnergate.main import app

    async def override_get_db_session():
        yield session

    app.dependency_overrides[get_db_session] = override_get_db_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()

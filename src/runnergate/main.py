"""RunnerGate main application."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from runnergate import __version__
from runnergate.api import router
from runnergate.config import settings
from runnergate.db.base import close_db, init_db
from runnergate.tasks.sweep import start_dispatch_sweep, stop_dispatch_sweep

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("runnergate")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting RunnerGate server...")
    logger.info(f"Environment: {settings.env.value}")
    logger.info(
        f"Dispatch: timeout {settings.notification_timeout_seconds}s, "
        f"radius {settings.max_distance_meters}m, "
        f"presence window {settings.presence_window_seconds}s"
    )
    if not settings.api_key:
        logger.warning("No RUNNERGATE_API_KEY set; API authentication is disabled")
    if not settings.location_service_url:
        logger.info("No location service configured; using stored coordinates only")

    await init_db()
    logger.info("Database initialized")

    if settings.sweep_enabled:
        await start_dispatch_sweep()
        logger.info("Dispatch sweep task started")

    yield

    logger.info("Shutting down RunnerGate server...")
    if settings.sweep_enabled:
        await stop_dispatch_sweep()
    await close_db()
    logger.info("Shutdown complete")


app = FastAPI(
    title="RunnerGate",
    description="Proximity-ranked task dispatch with timeout-driven reassignment",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allowed_methods,
    allow_headers=settings.cors_allowed_headers,
)

app.include_router(router)


def main():
    """Entry point for the application."""
    uvicorn.run(
        "runnergate.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()

"""Dispatch sweep background task."""

import asyncio
import logging
import random
from typing import Optional

from runnergate.config import settings
from runnergate.db import base as db_base
from runnergate.engine import BatchReport, DispatchCoordinator
from runnergate.integrations.location_client import build_geolocator

logger = logging.getLogger("runnergate.sweep")

_sweep_task: Optional[asyncio.Task] = None
_shutdown_event: Optional[asyncio.Event] = None


def jittered_interval(base_interval: float) -> float:
    """Base interval randomized by +/-20% so instances do not sweep in lockstep."""
    return base_interval * random.uniform(0.8, 1.2)


async def run_sweep_once(limit: Optional[int] = None) -> BatchReport:
    """Evaluate one batch of timed-out and open tasks in a fresh session."""
    async with db_base.async_session_factory() as session:
        coordinator = DispatchCoordinator(session, geolocator=build_geolocator())
        report = await coordinator.evaluate_batch(limit=limit)
        await session.commit()
        return report


async def dispatch_sweep_loop():
    """
    Background loop that re-evaluates tasks needing dispatch.

    Each pass picks notifications whose response window has closed
    (reassign or clear) and open tasks (notify), bounded by the batch size.
    The on-demand feed trigger runs the same evaluation, so a pass that
    loses a race to it simply records a no-op.
    """
    base_interval = settings.sweep_interval_seconds
    logger.info(f"Dispatch sweep loop started (base interval: {base_interval}s with ±20% jitter)")

    while not _shutdown_event.is_set():
        try:
            report = await run_sweep_once()
            if report.reassigned or report.cleared or report.notified:
                logger.info(
                    f"Sweep notified {report.notified}, reassigned {report.reassigned}, "
                    f"cleared {report.cleared} of {report.evaluated} tasks"
                )
            if report.errored:
                logger.warning(f"Sweep hit {report.errored} task errors")
        except Exception as e:
            logger.error(f"Dispatch sweep error: {e}", exc_info=True)

        try:
            await asyncio.wait_for(
                _shutdown_event.wait(),
                timeout=jittered_interval(base_interval),
            )
        except asyncio.TimeoutError:
            pass

    logger.info("Dispatch sweep loop stopped")


async def start_dispatch_sweep():
    """Start the dispatch sweep background task."""
    global _sweep_task, _shutdown_event

    _shutdown_event = asyncio.Event()
    _sweep_task = asyncio.create_task(dispatch_sweep_loop())


async def stop_dispatch_sweep():
    """Stop the dispatch sweep background task."""
    global _sweep_task, _shutdown_event

    if _shutdown_event:
        _shutdown_event.set()

    if _sweep_task:
        try:
            await asyncio.wait_for(_sweep_task, timeout=10.0)
        except asyncio.TimeoutError:
            logger.warning("Dispatch sweep task did not stop gracefully, cancelling")
            _sweep_task.cancel()
            try:
                await _sweep_task
            except asyncio.CancelledError:
                pass

    _sweep_task = None
    _shutdown_event = None

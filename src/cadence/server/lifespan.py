"""Application lifespan management."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI

from cadence.jobs.errors import SchedulerInitError

logger = logging.getLogger("cadence.server")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown hooks for cadence."""
    settings = app.state.settings
    job_scheduler = app.state.job_scheduler
    timer_scheduler = app.state.timer_scheduler

    # --- Startup ---
    logger.info(
        "Cadence server starting: host=%s, port=%d",
        settings.server.host,
        settings.server.port,
    )

    timer_scheduler.start()
    if settings.timers.autostart_presets:
        timer_scheduler.start_all_presets()

    # Job endpoints answer 503 until this finishes
    async def _init_jobs() -> None:
        try:
            await job_scheduler.initialize()
        except SchedulerInitError:
            logger.exception("Job scheduler failed to start; job endpoints stay unavailable")
        except Exception:
            logger.exception("Job scheduler initialization crashed")

    init_task = asyncio.create_task(_init_jobs())
    app.state.job_init_task = init_task
    app.state.started_at = datetime.now(UTC)

    yield

    # --- Shutdown ---
    if not init_task.done():
        init_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await init_task

    await job_scheduler.shutdown()
    timer_scheduler.shutdown()
    logger.info("Cadence server shutting down.")

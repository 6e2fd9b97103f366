"""FastAPI application factory."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import FastAPI

from cadence import __version__
from cadence.jobs.engine import JobScheduler
from cadence.jobs.handlers import register_builtin_handlers
from cadence.server.lifespan import lifespan
from cadence.server.routes.health import health_router
from cadence.server.routes.jobs import jobs_router
from cadence.server.routes.timers import timers_router
from cadence.timers.engine import TimerScheduler

if TYPE_CHECKING:
    from cadence.config.settings import Settings

logger = logging.getLogger("cadence.server")


def create_app(
    settings: Settings,
    job_scheduler: JobScheduler | None = None,
    timer_scheduler: TimerScheduler | None = None,
) -> FastAPI:
    """Build the HTTP adapter around one job scheduler and one timer scheduler.

    Both are created from *settings* unless passed in. The lifespan starts
    them; routes only translate requests and map errors to status codes.
    """
    app = FastAPI(
        title="Cadence",
        version=__version__,
        description="Durable MongoDB-backed jobs and in-process cron timers",
        lifespan=lifespan,
    )

    if job_scheduler is None:
        job_scheduler = JobScheduler(settings)
        register_builtin_handlers(job_scheduler.registry)
    if timer_scheduler is None:
        timer_scheduler = TimerScheduler(timezone=settings.timers.timezone)

    app.state.settings = settings
    app.state.job_scheduler = job_scheduler
    app.state.timer_scheduler = timer_scheduler

    app.include_router(health_router)
    app.include_router(jobs_router, prefix="/api/v1/agenda")
    app.include_router(timers_router, prefix="/api/v1/cron")

    logger.debug(
        "Application created with %d job handler(s)", len(job_scheduler.registry)
    )
    return app

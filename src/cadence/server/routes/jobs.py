"""Durable job endpoints (mounted under /api/v1/agenda)."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from cadence.jobs.engine import FAILED_QUERY, RUNNING_QUERY, JobScheduler
from cadence.jobs.errors import (
    InvalidScheduleError,
    JobNotFoundError,
    JobRunningError,
    MalformedJobError,
)
from cadence.jobs.models import JobRecord
from cadence.server.schemas import (
    ApiResponse,
    ScheduleAtRequest,
    ScheduleNowRequest,
    ScheduleRecurringRequest,
    TestJobRequest,
)

jobs_router = APIRouter(tags=["Jobs"])

NOT_READY_MESSAGE = "Job scheduler is initializing. Please wait a moment and try again."


def ready_job_scheduler(request: Request) -> JobScheduler:
    scheduler: JobScheduler = request.app.state.job_scheduler
    if not scheduler.is_ready():
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, NOT_READY_MESSAGE)
    return scheduler


Scheduler = Annotated[JobScheduler, Depends(ready_job_scheduler)]


def _not_found(job_id: str) -> HTTPException:
    return HTTPException(status.HTTP_404_NOT_FOUND, f"Job {job_id} not found")


def _job_list(jobs: list[JobRecord]) -> dict:
    return {"jobs": [job.to_snapshot() for job in jobs], "count": len(jobs)}


@jobs_router.post("/jobs/now", response_model=ApiResponse, status_code=201)
async def schedule_job_now(body: ScheduleNowRequest, scheduler: Scheduler) -> ApiResponse:
    try:
        job = await scheduler.schedule_now(body.job_name, body.data)
    except InvalidScheduleError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(exc)) from exc
    return ApiResponse(message="Job scheduled to run now", data=job.to_snapshot())


@jobs_router.post("/jobs", response_model=ApiResponse, status_code=201)
async def schedule_job(body: ScheduleAtRequest, scheduler: Scheduler) -> ApiResponse:
    try:
        job = await scheduler.schedule_at(body.job_name, body.when, body.data)
    except InvalidScheduleError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(exc)) from exc
    return ApiResponse(message="Job scheduled successfully", data=job.to_snapshot())


@jobs_router.post("/jobs/recurring", response_model=ApiResponse, status_code=201)
async def schedule_recurring_job(
    body: ScheduleRecurringRequest, scheduler: Scheduler
) -> ApiResponse:
    try:
        job = await scheduler.schedule_recurring(body.job_name, body.interval, body.data)
    except InvalidScheduleError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(exc)) from exc
    return ApiResponse(message="Recurring job scheduled successfully", data=job.to_snapshot())


@jobs_router.get("/jobs", response_model=ApiResponse)
async def list_jobs(
    scheduler: Scheduler,
    name: str | None = None,
    job_status: Annotated[Literal["running", "failed"] | None, Query(alias="status")] = None,
) -> ApiResponse:
    query: dict = {}
    if name:
        query["name"] = name
    if job_status == "running":
        query.update(RUNNING_QUERY)
    elif job_status == "failed":
        query.update(FAILED_QUERY)
    jobs = await scheduler.list_jobs(query)
    return ApiResponse(message="Jobs retrieved successfully", data=_job_list(jobs))


@jobs_router.get("/jobs/running", response_model=ApiResponse)
async def list_running_jobs(scheduler: Scheduler) -> ApiResponse:
    jobs = await scheduler.list_running()
    return ApiResponse(message="Running jobs retrieved successfully", data=_job_list(jobs))


@jobs_router.get("/jobs/failed", response_model=ApiResponse)
async def list_failed_jobs(scheduler: Scheduler) -> ApiResponse:
    jobs = await scheduler.list_failed()
    return ApiResponse(message="Failed jobs retrieved successfully", data=_job_list(jobs))


@jobs_router.get("/jobs/name/{name}", response_model=ApiResponse)
async def list_jobs_by_name(name: str, scheduler: Scheduler) -> ApiResponse:
    jobs = await scheduler.list_by_name(name)
    return ApiResponse(message=f"Jobs named {name} retrieved successfully", data=_job_list(jobs))


@jobs_router.get("/jobs/{job_id}", response_model=ApiResponse)
async def get_job(job_id: str, scheduler: Scheduler) -> ApiResponse:
    try:
        job = await scheduler.get_job(job_id)
    except MalformedJobError as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc)) from exc
    if job is None:
        raise _not_found(job_id)
    return ApiResponse(message="Job retrieved successfully", data=job.to_snapshot())


@jobs_router.post("/jobs/{job_id}/cancel", response_model=ApiResponse)
async def cancel_job(job_id: str, scheduler: Scheduler) -> ApiResponse:
    try:
        await scheduler.cancel_job(job_id)
    except JobNotFoundError as exc:
        raise _not_found(job_id) from exc
    return ApiResponse(message="Job cancelled successfully", data={"id": job_id})


@jobs_router.post("/jobs/{job_id}/retry", response_model=ApiResponse)
async def retry_job(job_id: str, scheduler: Scheduler) -> ApiResponse:
    try:
        job = await scheduler.retry_job(job_id)
    except JobNotFoundError as exc:
        raise _not_found(job_id) from exc
    except JobRunningError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, str(exc)) from exc
    except MalformedJobError as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc)) from exc
    return ApiResponse(message="Job retried successfully", data=job.to_snapshot())


@jobs_router.post("/test", response_model=ApiResponse)
async def schedule_test_job(body: TestJobRequest, scheduler: Scheduler) -> ApiResponse:
    """Queue a job flagged as a test run; watch the server log for its execution."""
    data = {**body.data, "test": True, "scheduledAt": datetime.now(UTC).isoformat()}
    try:
        job = await scheduler.schedule_now(body.job_name, data)
    except InvalidScheduleError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(exc)) from exc
    return ApiResponse(
        message="Test job scheduled successfully",
        data={"jobId": job.id, "jobName": job.name, "nextRunAt": job.next_run_at},
    )


@jobs_router.get("/status", response_model=ApiResponse)
async def job_scheduler_status(scheduler: Scheduler) -> ApiResponse:
    stats = await scheduler.stats()
    return ApiResponse(
        message="Job scheduler status retrieved successfully",
        data={
            "initialized": True,
            "workerId": scheduler.worker_id,
            "handlers": scheduler.registry.names(),
            "totalJobs": stats["total"],
            "dueJobs": stats["due"],
            "runningJobs": stats["running"],
            "failedJobs": stats["failed"],
            "inFlight": stats["in_flight"],
        },
    )

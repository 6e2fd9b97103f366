"""Timer endpoints (mounted under /api/v1/cron)."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status

from cadence.server.schemas import ApiResponse, CustomTimerRequest
from cadence.timers.engine import TimerScheduler
from cadence.timers.errors import InvalidCronExpressionError, TaskNameConflictError
from cadence.timers.models import PRESETS_BY_ID

logger = logging.getLogger("cadence.server")

timers_router = APIRouter(tags=["Timers"])


def get_timer_scheduler(request: Request) -> TimerScheduler:
    return request.app.state.timer_scheduler


Timers = Annotated[TimerScheduler, Depends(get_timer_scheduler)]


def _not_found(task_id: str) -> HTTPException:
    return HTTPException(status.HTTP_404_NOT_FOUND, f"Cron task {task_id} not found")


@timers_router.get("/status", response_model=ApiResponse)
async def get_tasks_status(timers: Timers) -> ApiResponse:
    data = {
        task_id: task_status.model_dump(by_alias=True, mode="json")
        for task_id, task_status in timers.get_tasks_status().items()
    }
    return ApiResponse(message="Cron tasks status retrieved successfully", data=data)


@timers_router.post("/initialize", response_model=ApiResponse)
async def initialize_all_tasks(timers: Timers) -> ApiResponse:
    timers.start_all_presets()
    return ApiResponse(message="All cron tasks initialized successfully")


@timers_router.post("/stop-all", response_model=ApiResponse)
async def stop_all_tasks(timers: Timers) -> ApiResponse:
    timers.stop_all_tasks()
    return ApiResponse(message="All cron tasks stopped successfully")


@timers_router.post("/task/{task_id}/start", response_model=ApiResponse)
async def start_task(task_id: str, timers: Timers) -> ApiResponse:
    if timers.get_task(task_id) is not None:
        timers.start_task(task_id)
    elif task_id in PRESETS_BY_ID:
        timers.start_preset(task_id)
    else:
        raise _not_found(task_id)
    return ApiResponse(message=f"Cron task {task_id} started successfully", data={"taskId": task_id})


@timers_router.post("/task/{task_id}/stop", response_model=ApiResponse)
async def stop_task(task_id: str, timers: Timers) -> ApiResponse:
    if not timers.stop_task(task_id):
        raise _not_found(task_id)
    return ApiResponse(message=f"Cron task {task_id} stopped successfully", data={"taskId": task_id})


@timers_router.post("/task/{task_id}/resume", response_model=ApiResponse)
async def resume_task(task_id: str, timers: Timers) -> ApiResponse:
    if not timers.start_task(task_id):
        raise _not_found(task_id)
    return ApiResponse(message=f"Cron task {task_id} resumed successfully", data={"taskId": task_id})


@timers_router.delete("/task/{task_id}", response_model=ApiResponse)
async def remove_task(task_id: str, timers: Timers) -> ApiResponse:
    if not timers.remove_task(task_id):
        raise _not_found(task_id)
    return ApiResponse(message=f"Cron task {task_id} removed successfully", data={"taskId": task_id})


@timers_router.post("/custom", response_model=ApiResponse, status_code=201)
async def create_custom_task(body: CustomTimerRequest, timers: Timers) -> ApiResponse:
    name = body.task_name
    description = body.description or "No description"

    def announce() -> None:
        logger.info("Custom task %s executed: %s", name, description)

    try:
        timers.start_custom_task(body.cron_expression, name, announce, body.description)
    except InvalidCronExpressionError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(exc)) from exc
    except TaskNameConflictError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, str(exc)) from exc
    return ApiResponse(
        message="Custom cron task created successfully",
        data={"cronExpression": body.cron_expression, "taskName": name},
    )

"""In-process cron timers on APScheduler, with fire times computed by croniter."""

from __future__ import annotations

import contextlib
import inspect
import logging
from datetime import UTC, datetime, tzinfo
from zoneinfo import ZoneInfo

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from croniter import croniter

from cadence.jobs.intervals import to_croniter_expression
from cadence.timers.errors import (
    InvalidCronExpressionError,
    TaskNameConflictError,
    UnknownTimerTaskError,
)
from cadence.timers.models import (
    PRESETS,
    PRESETS_BY_ID,
    TaskExecution,
    TaskStatus,
    TimerCallback,
    TimerPreset,
    TimerTask,
)

logger = logging.getLogger("cadence.timers.engine")


def normalize_expression(expression: str) -> str:
    """Validate a 5/6-field cron expression and return its croniter form."""
    normalized = to_croniter_expression(expression) if isinstance(expression, str) else None
    if normalized is None:
        raise InvalidCronExpressionError(expression)
    return normalized


class CroniterTrigger(BaseTrigger):
    """APScheduler trigger backed by croniter.

    Day-of-week follows standard cron (0 and 7 are Sunday) and six-field
    expressions take seconds first.
    """

    def __init__(self, expression: str, timezone: tzinfo | str = UTC) -> None:
        self.expression = expression
        self._croniter_expression = normalize_expression(expression)
        self.timezone = ZoneInfo(timezone) if isinstance(timezone, str) else timezone

    def get_next_fire_time(
        self, previous_fire_time: datetime | None, now: datetime
    ) -> datetime | None:
        base = previous_fire_time if previous_fire_time is not None else now
        return croniter(self._croniter_expression, base.astimezone(self.timezone)).get_next(
            datetime
        )

    def __str__(self) -> str:
        return f"cron[{self.expression}]"

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} ({self.expression!r}, timezone={self.timezone!s})>"


class TimerScheduler:
    """Named cron timers held in memory.

    Stopping a task disarms it but keeps it registered (and listed) so it can
    be resumed; removing it forgets it. Run counters survive removal.
    """

    def __init__(self, timezone: str = "UTC") -> None:
        self._timezone = ZoneInfo(timezone)
        self._scheduler = AsyncIOScheduler(timezone=self._timezone)
        self._tasks: dict[str, TimerTask] = {}
        self._executions: dict[str, TaskExecution] = {}

    # -- Lifecycle -------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Timer scheduler started (timezone=%s)", self._timezone.key)

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Timer scheduler stopped")

    # -- Registration ----------------------------------------------------------

    def register_task(
        self,
        task_id: str,
        expression: str,
        callback: TimerCallback,
        description: str = "",
        *,
        preset: bool = False,
    ) -> TimerTask:
        """Arm *callback* on *expression* under *task_id*.

        An already armed id is left untouched; a disarmed one is re-armed with
        the new expression and callback.
        """
        normalize_expression(expression)

        existing = self._tasks.get(task_id)
        if existing is not None and existing.running:
            logger.warning("Timer task %s already running", task_id)
            return existing

        task = TimerTask(
            id=task_id,
            expression=expression,
            callback=callback,
            description=description,
            preset=preset,
        )
        self._tasks[task_id] = task
        self._executions.setdefault(task_id, TaskExecution())
        self._arm(task)
        logger.info("Timer task %s started (%s)", task_id, expression)
        return task

    def start_preset(self, preset_id: str, callback: TimerCallback | None = None) -> TimerTask:
        preset = PRESETS_BY_ID.get(preset_id)
        if preset is None:
            raise UnknownTimerTaskError(preset_id)
        return self.register_task(
            preset.id,
            preset.expression,
            callback or _log_preset(preset),
            preset.description,
            preset=True,
        )

    def start_all_presets(self) -> list[TimerTask]:
        logger.info("Initializing all preset timer tasks")
        started = [self.start_preset(preset.id) for preset in PRESETS]
        logger.info("All %d preset timer tasks initialized", len(started))
        return started

    def start_custom_task(
        self,
        expression: str,
        name: str,
        callback: TimerCallback,
        description: str = "",
    ) -> TimerTask:
        if not name:
            raise ValueError("Task name must not be empty")
        if name in PRESETS_BY_ID:
            raise TaskNameConflictError(name)
        return self.register_task(name, expression, callback, description or "Custom task")

    # -- Control ---------------------------------------------------------------

    def stop_task(self, task_id: str) -> bool:
        """Disarm a task. Returns False if no such task is registered."""
        task = self._tasks.get(task_id)
        if task is None:
            logger.warning("Timer task not found: %s", task_id)
            return False
        self._disarm(task)
        logger.info("Timer task stopped: %s", task_id)
        return True

    def start_task(self, task_id: str) -> bool:
        """Re-arm a registered task. Returns False if no such task is registered."""
        task = self._tasks.get(task_id)
        if task is None:
            logger.warning("Timer task not found: %s", task_id)
            return False
        if not task.running:
            self._arm(task)
            logger.info("Timer task resumed: %s", task_id)
        return True

    def remove_task(self, task_id: str) -> bool:
        task = self._tasks.pop(task_id, None)
        if task is None:
            logger.warning("Timer task not found: %s", task_id)
            return False
        self._disarm(task)
        logger.info("Timer task removed: %s", task_id)
        return True

    def stop_all_tasks(self) -> int:
        """Disarm and forget every task. Returns how many were registered."""
        tasks = list(self._tasks.values())
        for task in tasks:
            self._disarm(task)
        self._tasks.clear()
        logger.info("All timer tasks stopped (%d)", len(tasks))
        return len(tasks)

    def get_task(self, task_id: str) -> TimerTask | None:
        return self._tasks.get(task_id)

    # -- Status ----------------------------------------------------------------

    def get_tasks_status(self) -> dict[str, TaskStatus]:
        """Every preset, armed or not, plus every registered custom task."""
        status: dict[str, TaskStatus] = {}
        for preset in PRESETS:
            task = self._tasks.get(preset.id)
            status[preset.id] = self._status(
                preset.id,
                preset.expression,
                task.description if task else preset.description,
                task,
            )
        for task in self._tasks.values():
            if task.id not in status:
                status[task.id] = self._status(task.id, task.expression, task.description, task)
        return status

    def _status(
        self, task_id: str, expression: str, description: str, task: TimerTask | None
    ) -> TaskStatus:
        execution = self._executions.get(task_id) or TaskExecution()
        next_run = None
        if task is not None and task.running:
            job = self._scheduler.get_job(task.job_id)
            next_run = getattr(job, "next_run_time", None)
        return TaskStatus(
            running=task is not None and task.running,
            expression=expression,
            description=description,
            last_execution=execution.last_execution,
            execution_count=execution.execution_count,
            next_run=next_run,
        )

    # -- Internal helpers ------------------------------------------------------

    def _arm(self, task: TimerTask) -> None:
        self._scheduler.add_job(
            self._fire,
            trigger=CroniterTrigger(task.expression, self._timezone),
            args=[task.id],
            id=task.job_id,
            name=task.description or task.id,
            replace_existing=True,
            coalesce=True,
        )
        task.running = True

    def _disarm(self, task: TimerTask) -> None:
        with contextlib.suppress(JobLookupError):
            self._scheduler.remove_job(task.job_id)
        task.running = False

    async def _fire(self, task_id: str) -> None:
        """Called by APScheduler on every tick of a task."""
        task = self._tasks.get(task_id)
        if task is None or not task.running:
            return

        execution = self._executions.setdefault(task_id, TaskExecution())
        execution.last_execution = datetime.now(UTC)
        execution.execution_count += 1

        try:
            result = task.callback()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Timer task %s failed", task_id)


def _log_preset(preset: TimerPreset) -> TimerCallback:
    def callback() -> None:
        logger.info(preset.message)

    return callback

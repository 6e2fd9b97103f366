"""Timer task models and the predefined cron presets."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

TimerCallback = Callable[[], Awaitable[None] | None]


@dataclass(frozen=True)
class TimerPreset:
    id: str
    expression: str
    description: str
    message: str


PRESETS: tuple[TimerPreset, ...] = (
    TimerPreset(
        "minute",
        "* * * * *",
        "Runs every minute",
        "Running task every minute - Example: Health check",
    ),
    TimerPreset(
        "five-minute",
        "*/5 * * * *",
        "Runs every 5 minutes",
        "Running task every 5 minutes - Example: Cache refresh",
    ),
    TimerPreset(
        "hourly",
        "0 * * * *",
        "Runs every hour at minute 0",
        "Running task every hour - Example: Hourly report generation",
    ),
    TimerPreset(
        "daily",
        "0 0 * * *",
        "Runs daily at midnight",
        "Running task daily at midnight - Example: Daily backup",
    ),
    TimerPreset(
        "scheduled-daily",
        "30 2 * * *",
        "Runs daily at 2:30 AM",
        "Running task daily at 2:30 AM - Example: Maintenance window",
    ),
    TimerPreset(
        "weekday",
        "0 9 * * 1-5",
        "Runs Monday to Friday at 9 AM",
        "Running task on weekdays at 9 AM - Example: Business hours notification",
    ),
    TimerPreset(
        "weekly",
        "0 0 * * 0",
        "Runs every Sunday at midnight",
        "Running task every Sunday at midnight - Example: Weekly report",
    ),
    TimerPreset(
        "monthly",
        "0 0 1 * *",
        "Runs on the 1st of every month",
        "Running task on 1st of every month - Example: Monthly billing",
    ),
    TimerPreset(
        "thirty-second",
        "*/30 * * * * *",
        "Runs every 30 seconds",
        "Running task every 30 seconds - Example: Real-time monitoring",
    ),
    TimerPreset(
        "multiple-daily",
        "0 9,12,15,18 * * *",
        "Runs at 9 AM, 12 PM, 3 PM and 6 PM",
        "Running task at 9 AM, 12 PM, 3 PM, 6 PM - Example: Scheduled notifications",
    ),
    TimerPreset(
        "business-hours",
        "*/10 9-17 * * 1-5",
        "Runs every 10 minutes during business hours",
        "Running task every 10 minutes during business hours - Example: Business monitoring",
    ),
)

PRESETS_BY_ID: dict[str, TimerPreset] = {preset.id: preset for preset in PRESETS}


@dataclass
class TimerTask:
    """A registered timer. ``running`` is False while the task is disarmed."""

    id: str
    expression: str
    callback: TimerCallback
    description: str = ""
    preset: bool = False
    running: bool = False

    @property
    def job_id(self) -> str:
        return f"timer:{self.id}"


@dataclass
class TaskExecution:
    """Process-local run counters, kept after the task is removed."""

    last_execution: datetime | None = None
    execution_count: int = 0


class TaskStatus(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    running: bool
    expression: str | None = None
    description: str = ""
    last_execution: datetime | None = None
    execution_count: int = 0
    next_run: datetime | None = None

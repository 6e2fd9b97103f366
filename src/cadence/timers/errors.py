"""Exceptions raised by the in-process timer scheduler."""

from __future__ import annotations


class TimerError(Exception):
    """Base class for timer scheduler errors."""


class InvalidCronExpressionError(TimerError, ValueError):
    def __init__(self, expression: str) -> None:
        super().__init__(f"Invalid cron expression: {expression}")
        self.expression = expression


class UnknownTimerTaskError(TimerError, KeyError):
    def __init__(self, task_id: str) -> None:
        super().__init__(task_id)
        self.task_id = task_id

    def __str__(self) -> str:
        return f"Timer task {self.task_id} not found"


class TaskNameConflictError(TimerError, ValueError):
    """A custom task name collides with a preset id."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Task name {name!r} is reserved for a preset")
        self.name = name

"""Exceptions raised by the durable job scheduler."""

from __future__ import annotations


class SchedulerError(Exception):
    """Base class for job scheduler errors."""


class SchedulerInitError(SchedulerError):
    """The scheduler could not connect to its backing store in time."""


class SchedulerNotInitializedError(SchedulerError):
    """An operation was attempted before ``initialize()`` succeeded."""

    def __init__(self) -> None:
        super().__init__("Job scheduler not initialized. Call initialize() first.")


class JobNotFoundError(SchedulerError, LookupError):
    """No job record exists with the given id."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class JobRunningError(SchedulerError):
    """The job currently holds a live lock and cannot be retried."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job is currently running: {job_id}")
        self.job_id = job_id


class InvalidScheduleError(SchedulerError, ValueError):
    """A time specification or repeat interval could not be understood."""


class UnknownHandlerError(SchedulerError):
    """A job was dispatched for a name with no registered handler."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Undefined job handler: {name}")
        self.name = name


class MalformedJobError(SchedulerError):
    """A stored record does not match the job document layout."""

    def __init__(self, job_id: str, reason: str) -> None:
        super().__init__(f"Malformed job record {job_id}: {reason}")
        self.job_id = job_id
        self.reason = reason

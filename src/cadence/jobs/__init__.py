"""Durable job scheduling: records in MongoDB, claimed and run by a poller."""

from cadence.jobs.engine import JobScheduler
from cadence.jobs.models import JobRecord, JobStatus, JobType
from cadence.jobs.registry import JobDefinition, JobRegistry
from cadence.jobs.store import JobStore

__all__ = [
    "JobDefinition",
    "JobRecord",
    "JobRegistry",
    "JobScheduler",
    "JobStatus",
    "JobStore",
    "JobType",
]

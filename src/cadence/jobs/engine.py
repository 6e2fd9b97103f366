"""Durable job scheduler: MongoDB-backed records, polled and dispatched via APScheduler."""

from __future__ import annotations

import asyncio
import logging
import os
import secrets
import socket
from collections import Counter
from collections.abc import Awaitable, Mapping
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from pymongo.errors import PyMongoError

from cadence.jobs.errors import (
    InvalidScheduleError,
    JobNotFoundError,
    JobRunningError,
    MalformedJobError,
    SchedulerInitError,
    SchedulerNotInitializedError,
    UnknownHandlerError,
)
from cadence.jobs.intervals import next_run_at, resolve_when, validate_interval
from cadence.jobs.models import JobMeta, JobRecord, utcnow
from cadence.jobs.registry import JobDefinition, JobRegistry
from cadence.jobs.store import JobStore

if TYPE_CHECKING:
    from cadence.config.settings import Settings

logger = logging.getLogger("cadence.jobs.engine")

POLL_JOB_ID = "__job_poll__"
STATUS_JOB_ID = "__job_status__"

RUNNING_QUERY: dict[str, Any] = {"lockedAt": {"$ne": None}}
FAILED_QUERY: dict[str, Any] = {"failedAt": {"$ne": None}}


def _make_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{secrets.token_hex(3)}"


class JobScheduler:
    """Schedules jobs into MongoDB and executes them from a background poll.

    One instance per process, created at startup and handed to whatever needs
    it. Each poll cycle claims due records with a single atomic update per
    record, so several processes can share one collection. Handlers run as
    asyncio tasks, bounded per job name and globally.
    """

    def __init__(
        self,
        settings: Settings,
        registry: JobRegistry | None = None,
        store: JobStore | None = None,
    ) -> None:
        self._settings = settings
        self._config = settings.jobs
        self._registry = registry or JobRegistry(
            default_concurrency=self._config.default_concurrency,
            default_lock_lifetime=timedelta(seconds=self._config.default_lock_lifetime_seconds),
        )
        self._store = store
        self._owns_store = store is None
        self._scheduler: AsyncIOScheduler | None = None
        self._ready = False
        self._worker_id = _make_worker_id()
        self._running_by_name: Counter[str] = Counter()
        self._running_total = 0
        self._inflight: set[asyncio.Task] = set()

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    @property
    def worker_id(self) -> str:
        return self._worker_id

    # -- Lifecycle -------------------------------------------------------------

    async def initialize(self) -> None:
        """Connect to the backing store, then start polling.

        Raises SchedulerInitError if the store is unreachable or does not
        answer within ``ready_timeout_seconds``.
        """
        if self._ready:
            logger.warning("Job scheduler already initialized")
            return

        logger.info("Starting job scheduler initialization")
        store = self._store
        if store is None:
            if not self._settings.mongodb_url:
                raise SchedulerInitError("MONGODB_URL environment variable is not defined")
            store = JobStore.connect(self._settings)

        timeout = self._config.ready_timeout_seconds
        try:
            await asyncio.wait_for(self._prepare(store), timeout=timeout)
        except TimeoutError as exc:
            self._discard(store)
            raise SchedulerInitError(
                f"Job scheduler ready timeout after {timeout:g} seconds"
            ) from exc
        except PyMongoError as exc:
            self._discard(store)
            raise SchedulerInitError(f"Job scheduler could not reach MongoDB: {exc}") from exc
        except asyncio.CancelledError:
            self._discard(store)
            raise

        self._store = store
        self._start_polling()
        self._ready = True
        logger.info(
            "Job scheduler ready (worker=%s, every=%gs, max_concurrency=%d, handlers=%s)",
            self._worker_id,
            self._config.process_every_seconds,
            self._config.max_concurrency,
            ", ".join(self._registry.names()) or "none",
        )

    async def _prepare(self, store: JobStore) -> None:
        await store.ping()
        await store.create_indexes()

    def _discard(self, store: JobStore) -> None:
        if self._owns_store:
            store.close()

    def _start_polling(self) -> None:
        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.process_jobs,
            trigger=IntervalTrigger(seconds=self._config.process_every_seconds),
            id=POLL_JOB_ID,
            name="Job poll",
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.add_job(
            self._log_status,
            trigger=IntervalTrigger(seconds=self._config.status_log_interval_seconds),
            id=STATUS_JOB_ID,
            name="Job status log",
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()

    def is_ready(self) -> bool:
        return self._ready and self._store is not None

    async def shutdown(self) -> None:
        """Stop polling, let in-flight handlers finish, release our locks."""
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None

        if not self._ready:
            return
        self._ready = False

        grace = self._config.shutdown_grace_seconds
        if not await self.wait_idle(grace):
            logger.warning(
                "%d job(s) still running after %gs; releasing their locks",
                len(self._inflight),
                grace,
            )

        try:
            released = await self._store.release_locks(self._worker_id, utcnow())
        except PyMongoError:
            logger.exception("Failed to release job locks for %s", self._worker_id)
        else:
            if released:
                logger.info("Released %d job lock(s) held by %s", released, self._worker_id)

        leftover = list(self._inflight)
        for task in leftover:
            task.cancel()
        if leftover:
            await asyncio.gather(*leftover, return_exceptions=True)

        if self._owns_store:
            self._store.close()
            self._store = None
        logger.info("Job scheduler stopped")

    def _ensure_ready(self) -> JobStore:
        if not self.is_ready():
            raise SchedulerNotInitializedError()
        return self._store

    # -- Scheduling ------------------------------------------------------------

    async def schedule_now(self, name: str, data: Mapping[str, Any] | None = None) -> JobRecord:
        """Create a job that is due immediately."""
        return await self.schedule_at(name, utcnow(), data)

    async def schedule_at(
        self,
        name: str,
        when: datetime | int | float | str,
        data: Mapping[str, Any] | None = None,
    ) -> JobRecord:
        """Create a one-shot job due at *when* (absolute, seconds, or "in N units")."""
        store = self._ensure_ready()
        if not name:
            raise InvalidScheduleError("Job name is required")

        now = utcnow()
        run_at = resolve_when(when, now)
        job = JobRecord(
            name=name,
            data=dict(data or {}),
            next_run_at=run_at,
            last_modified_at=now,
            meta=JobMeta(created_at=now),
        )
        await store.insert(job)
        logger.info("Scheduled job %s (%s) for %s", job.id, name, run_at.isoformat())
        self._warn_if_undefined(job)
        return job

    async def schedule_recurring(
        self, name: str, interval: str, data: Mapping[str, Any] | None = None
    ) -> JobRecord:
        """Run *name* every *interval*, starting now.

        There is one recurring record per name; calling again updates its
        interval and data instead of adding a second record.
        """
        store = self._ensure_ready()
        if not name:
            raise InvalidScheduleError("Job name is required")

        interval = validate_interval(interval)
        job = await store.upsert_recurring(name, interval, dict(data or {}), utcnow())
        logger.info(
            "Recurring job %s (%s) every %s, next run %s",
            job.id,
            name,
            interval,
            job.next_run_at.isoformat() if job.next_run_at else "none",
        )
        self._warn_if_undefined(job)
        return job

    def _warn_if_undefined(self, job: JobRecord) -> None:
        if job.name not in self._registry:
            logger.warning(
                "Job definition %s not found; job %s will not execute (available: %s)",
                job.name,
                job.id,
                ", ".join(self._registry.names()) or "none",
            )

    # -- Queries ---------------------------------------------------------------

    async def list_jobs(self, query: Mapping[str, Any] | None = None) -> list[JobRecord]:
        return await self._ensure_ready().find(query)

    async def get_job(self, job_id: str) -> JobRecord | None:
        return await self._ensure_ready().get(job_id)

    async def list_running(self) -> list[JobRecord]:
        return await self.list_jobs(RUNNING_QUERY)

    async def list_failed(self) -> list[JobRecord]:
        return await self.list_jobs(FAILED_QUERY)

    async def list_by_name(self, name: str) -> list[JobRecord]:
        return await self.list_jobs({"name": name})

    async def stats(self) -> dict[str, int]:
        """Record counts plus handlers in flight in this process."""
        store = self._ensure_ready()
        now = utcnow()
        return {
            "total": await store.count(),
            "due": await store.count(
                JobStore.claimable(now, now - self._lock_lifetime(None))
            ),
            "running": await store.count(RUNNING_QUERY),
            "failed": await store.count(FAILED_QUERY),
            "in_flight": self._running_total,
        }

    # -- Management ------------------------------------------------------------

    async def cancel_job(self, job_id: str) -> bool:
        """Delete the record. A handler already running is not interrupted."""
        store = self._ensure_ready()
        if not await store.remove(job_id):
            raise JobNotFoundError(job_id)
        logger.info("Cancelled job %s", job_id)
        return True

    async def retry_job(self, job_id: str) -> JobRecord:
        """Clear failure state and run the job now, without waiting for a poll."""
        store = self._ensure_ready()
        existing = await store.get(job_id)
        if existing is None:
            raise JobNotFoundError(job_id)

        definition = self._registry.get(existing.name)
        now = utcnow()
        lock_expired_before = now - self._lock_lifetime(definition)

        reset = await store.reset_for_retry(job_id, now, lock_expired_before)
        if reset is None:
            if await store.get(job_id) is None:
                raise JobNotFoundError(job_id)
            raise JobRunningError(job_id)
        logger.info("Retrying job %s (%s)", job_id, reset.name)

        claimed = await store.claim(job_id, now, lock_expired_before, self._worker_id)
        if claimed is None:
            logger.info("Job %s was claimed by another poller before retry dispatch", job_id)
            return reset

        self._reserve(claimed.name)
        try:
            await self._execute(claimed, definition)
        finally:
            self._release(claimed.name)
        return await store.get(job_id) or claimed

    def _lock_lifetime(self, definition: JobDefinition | None) -> timedelta:
        if definition is not None:
            return definition.lock_lifetime
        return timedelta(seconds=self._config.default_lock_lifetime_seconds)

    # -- Polling ---------------------------------------------------------------

    async def process_jobs(self) -> int:
        """Run one poll cycle. Returns the number of jobs dispatched."""
        store = self._ensure_ready()
        now = utcnow()
        dispatched = 0

        for definition in self._registry:
            lock_expired_before = now - definition.lock_lifetime
            while self._has_capacity(definition):
                self._reserve(definition.name)
                try:
                    job = await store.claim_next(
                        definition.name, now, lock_expired_before, self._worker_id
                    )
                except MalformedJobError as exc:
                    self._release(definition.name)
                    logger.error("Failed unreadable %s job: %s", definition.name, exc)
                    continue
                except Exception:
                    self._release(definition.name)
                    logger.exception("Poll cycle aborted while claiming %s jobs", definition.name)
                    return dispatched
                if job is None:
                    self._release(definition.name)
                    break
                self._dispatch(job, definition)
                dispatched += 1

        if dispatched:
            logger.debug("Poll cycle dispatched %d job(s)", dispatched)
        return dispatched

    async def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait for dispatched handlers to finish. False if *timeout* expired first."""
        if not self._inflight:
            return True
        _, pending = await asyncio.wait(set(self._inflight), timeout=timeout)
        return not pending

    def _has_capacity(self, definition: JobDefinition) -> bool:
        return (
            self._running_total < self._config.max_concurrency
            and self._running_by_name[definition.name] < definition.concurrency
        )

    def _reserve(self, name: str) -> None:
        self._running_by_name[name] += 1
        self._running_total += 1

    def _release(self, name: str) -> None:
        self._running_by_name[name] -= 1
        if self._running_by_name[name] <= 0:
            del self._running_by_name[name]
        self._running_total -= 1

    def _dispatch(self, job: JobRecord, definition: JobDefinition) -> None:
        task = asyncio.create_task(self._run_claimed(job, definition), name=f"job-{job.id}")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _run_claimed(self, job: JobRecord, definition: JobDefinition) -> None:
        try:
            await self._execute(job, definition)
        finally:
            self._release(definition.name)

    async def _execute(self, job: JobRecord, definition: JobDefinition | None) -> None:
        """Invoke the handler and write the outcome back. Never raises handler errors."""
        started_at = job.last_run_at or utcnow()
        logger.info("Job %s (%s) started", job.id, job.name)

        try:
            if definition is None:
                raise UnknownHandlerError(job.name)
            await definition.handler(dict(job.data))
            following = None
            if job.repeat_interval:
                following = next_run_at(job.repeat_interval, job.next_run_at, utcnow())
        except Exception as exc:
            finished_at = utcnow()
            reason = str(exc) or exc.__class__.__name__
            logger.error(
                "Job %s (%s) failed after %d ms: %s",
                job.id,
                job.name,
                _elapsed_ms(started_at, finished_at),
                reason,
            )
            await self._record(
                job,
                self._store.mark_failed(job.id, self._worker_id, started_at, finished_at, reason),
            )
            return

        finished_at = utcnow()
        await self._record(
            job,
            self._store.mark_completed(
                job.id, self._worker_id, started_at, finished_at, following
            ),
        )
        logger.info(
            "Job %s (%s) completed in %d ms%s",
            job.id,
            job.name,
            _elapsed_ms(started_at, finished_at),
            f", next run {following.isoformat()}" if following else "",
        )

    async def _record(self, job: JobRecord, write: Awaitable[bool]) -> None:
        try:
            written = await write
        except PyMongoError:
            logger.exception("Failed to record result for job %s (%s)", job.id, job.name)
            return
        if not written:
            logger.warning(
                "Job %s (%s) was removed or re-locked while running; result dropped",
                job.id,
                job.name,
            )

    async def _log_status(self) -> None:
        try:
            stats = await self.stats()
        except (PyMongoError, SchedulerNotInitializedError):
            logger.debug("Skipping job status check", exc_info=True)
            return
        if stats["due"] or stats["running"]:
            logger.info(
                "Job status: %d due, %d running, %d failed, %d in flight here",
                stats["due"],
                stats["running"],
                stats["failed"],
                stats["in_flight"],
            )


def _elapsed_ms(started_at: datetime, finished_at: datetime) -> int:
    return int((finished_at - started_at).total_seconds() * 1000)

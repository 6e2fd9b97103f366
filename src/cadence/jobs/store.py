"""MongoDB persistence for job records (Motor driver)."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import TYPE_CHECKING, Any

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient
from pydantic import ValidationError
from pymongo import ASCENDING, ReturnDocument

from cadence.jobs.errors import MalformedJobError
from cadence.jobs.models import JobRecord, JobStatus, JobType

if TYPE_CHECKING:
    from cadence.config.settings import Settings

logger = logging.getLogger("cadence.jobs.store")


def id_filter(job_id: str) -> dict[str, Any]:
    """Match *job_id* whether the record was keyed by a string or an ObjectId."""
    if ObjectId.is_valid(job_id):
        return {"_id": {"$in": [job_id, ObjectId(job_id)]}}
    return {"_id": job_id}


def _parse(doc: Mapping[str, Any]) -> JobRecord:
    try:
        return JobRecord.from_document(doc)
    except ValidationError as exc:
        raise MalformedJobError(str(doc.get("_id")), _summarize(exc)) from exc


def _summarize(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first["loc"]) or "record"
    return f"{location}: {first['msg']}"


class JobStore:
    """Job records in a single collection.

    Every state transition is one single-document update that writes the
    timestamp fields and ``meta.status`` together. Claiming is a conditional
    ``find_one_and_update``, so two pollers can never both win the same record.
    """

    def __init__(self, collection: Any) -> None:
        self._col = collection

    @classmethod
    def connect(cls, settings: Settings) -> JobStore:
        """Open a dedicated client for the job collection."""
        client = AsyncIOMotorClient(
            settings.mongodb_url,
            tz_aware=True,
            serverSelectionTimeoutMS=int(settings.jobs.ready_timeout_seconds * 1000),
        )
        return cls(client[settings.db_name][settings.jobs.collection])

    # -- Connection ------------------------------------------------------------

    async def ping(self) -> None:
        await self._col.database.command("ping")

    async def create_indexes(self) -> None:
        """Create the claim-scan and status indexes. Idempotent."""
        await self._col.create_index(
            [("name", ASCENDING), ("nextRunAt", ASCENDING), ("lockedAt", ASCENDING), ("disabled", ASCENDING)],
            name="findAndLockNextJobIndex",
        )
        await self._col.create_index("meta.status", name="metaStatusIndex")

    def close(self) -> None:
        self._col.database.client.close()

    # -- CRUD ------------------------------------------------------------------

    async def insert(self, job: JobRecord) -> JobRecord:
        await self._col.insert_one(job.to_document())
        return job

    async def upsert_recurring(
        self, name: str, interval: str, data: dict[str, Any], now: datetime
    ) -> JobRecord:
        """Create or update the single recurring record for *name*.

        A new record is due immediately; an existing one keeps its schedule.
        """
        fresh = JobRecord(
            name=name,
            type=JobType.SINGLE,
            next_run_at=now,
            repeat_interval=interval,
            data=data,
            last_modified_at=now,
        ).to_document()
        changes = {
            "data": data,
            "repeatInterval": interval,
            "disabled": False,
            "lastModifiedAt": now,
        }
        on_insert = {
            k: v for k, v in fresh.items() if k not in changes and k not in ("name", "type")
        }
        doc = await self._col.find_one_and_update(
            {"name": name, "type": JobType.SINGLE.value},
            {"$set": changes, "$setOnInsert": on_insert},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return JobRecord.from_document(doc)

    async def get(self, job_id: str) -> JobRecord | None:
        doc = await self._col.find_one(id_filter(job_id))
        return _parse(doc) if doc else None

    async def find(self, query: Mapping[str, Any] | None = None) -> list[JobRecord]:
        cursor = self._col.find(dict(query or {})).sort("meta.createdAt", ASCENDING)
        jobs = []
        async for doc in cursor:
            try:
                jobs.append(_parse(doc))
            except MalformedJobError as exc:
                logger.warning("Skipping %s", exc)
        return jobs

    async def count(self, query: Mapping[str, Any] | None = None) -> int:
        return await self._col.count_documents(dict(query or {}))

    async def remove(self, job_id: str) -> bool:
        """Delete a record regardless of its lock. Returns True if it existed."""
        result = await self._col.delete_one(id_filter(job_id))
        return result.deleted_count == 1

    # -- Lifecycle transitions -------------------------------------------------

    @staticmethod
    def claimable(now: datetime, lock_expired_before: datetime) -> dict[str, Any]:
        return {
            "nextRunAt": {"$lte": now},
            "disabled": {"$ne": True},
            "$or": [{"lockedAt": None}, {"lockedAt": {"$lte": lock_expired_before}}],
        }

    @staticmethod
    def _claim_update(now: datetime, worker_id: str) -> dict[str, Any]:
        return {
            "$set": {
                "lockedAt": now,
                "lockedBy": worker_id,
                "lastRunAt": now,
                "lastModifiedAt": now,
                "meta.status": JobStatus.IN_PROGRESS.value,
                "meta.startedAt": now,
            }
        }

    async def claim_next(
        self, name: str, now: datetime, lock_expired_before: datetime, worker_id: str
    ) -> JobRecord | None:
        """Atomically lock the most overdue claimable record for *name*."""
        doc = await self._col.find_one_and_update(
            {"name": name, **self.claimable(now, lock_expired_before)},
            self._claim_update(now, worker_id),
            sort=[("nextRunAt", ASCENDING)],
            return_document=ReturnDocument.AFTER,
        )
        return await self._parse_claimed(doc, worker_id, now)

    async def claim(
        self, job_id: str, now: datetime, lock_expired_before: datetime, worker_id: str
    ) -> JobRecord | None:
        """Atomically lock one specific record if it is claimable."""
        doc = await self._col.find_one_and_update(
            {**id_filter(job_id), **self.claimable(now, lock_expired_before)},
            self._claim_update(now, worker_id),
            return_document=ReturnDocument.AFTER,
        )
        return await self._parse_claimed(doc, worker_id, now)

    async def _parse_claimed(
        self, doc: Mapping[str, Any] | None, worker_id: str, now: datetime
    ) -> JobRecord | None:
        """Parse a freshly locked record, failing it in place if it is unreadable."""
        if doc is None:
            return None
        try:
            return _parse(doc)
        except MalformedJobError as exc:
            reason = f"Malformed job record: {exc.reason}"
            await self._col.update_one(
                {"_id": doc["_id"], "lockedBy": worker_id},
                {
                    "$set": {
                        "lockedAt": None,
                        "lockedBy": None,
                        "nextRunAt": None,
                        "lastFinishedAt": now,
                        "lastModifiedAt": now,
                        "failedAt": now,
                        "failReason": reason,
                        "meta.status": JobStatus.ERROR.value,
                        "meta.errorAt": now,
                        "meta.errorMessage": reason,
                    }
                },
            )
            raise

    async def mark_completed(
        self,
        job_id: str,
        worker_id: str,
        started_at: datetime,
        finished_at: datetime,
        next_run_at: datetime | None,
    ) -> bool:
        """Release the lock after a successful run. False if the lock was lost."""
        status = JobStatus.PENDING if next_run_at is not None else JobStatus.COMPLETED
        result = await self._col.update_one(
            {**id_filter(job_id), "lockedBy": worker_id},
            {
                "$set": {
                    "lockedAt": None,
                    "lockedBy": None,
                    "nextRunAt": next_run_at,
                    "lastFinishedAt": finished_at,
                    "lastModifiedAt": finished_at,
                    "meta.status": status.value,
                    "meta.completedAt": finished_at,
                    "meta.durationMs": _duration_ms(started_at, finished_at),
                }
            },
        )
        return result.matched_count == 1

    async def mark_failed(
        self,
        job_id: str,
        worker_id: str,
        started_at: datetime,
        finished_at: datetime,
        reason: str,
    ) -> bool:
        """Record a failed run and release the lock. The job is not rescheduled."""
        result = await self._col.update_one(
            {**id_filter(job_id), "lockedBy": worker_id},
            {
                "$set": {
                    "lockedAt": None,
                    "lockedBy": None,
                    "nextRunAt": None,
                    "lastFinishedAt": finished_at,
                    "lastModifiedAt": finished_at,
                    "failedAt": finished_at,
                    "failReason": reason,
                    "meta.status": JobStatus.ERROR.value,
                    "meta.errorAt": finished_at,
                    "meta.errorMessage": reason,
                    "meta.durationMs": _duration_ms(started_at, finished_at),
                },
                "$inc": {"failCount": 1},
            },
        )
        return result.matched_count == 1

    async def reset_for_retry(
        self, job_id: str, now: datetime, lock_expired_before: datetime
    ) -> JobRecord | None:
        """Clear failure fields and make the record due now.

        Returns None when the record is missing or holds a live lock.
        """
        doc = await self._col.find_one_and_update(
            {
                **id_filter(job_id),
                "$or": [{"lockedAt": None}, {"lockedAt": {"$lte": lock_expired_before}}],
            },
            {
                "$set": {
                    "failedAt": None,
                    "failCount": 0,
                    "failReason": None,
                    "nextRunAt": now,
                    "lockedAt": None,
                    "lockedBy": None,
                    "lastModifiedAt": now,
                    "meta.status": JobStatus.PENDING.value,
                    "meta.errorAt": None,
                    "meta.errorMessage": None,
                }
            },
            return_document=ReturnDocument.AFTER,
        )
        return _parse(doc) if doc else None

    async def release_locks(self, worker_id: str, now: datetime) -> int:
        """Unlock every record held by *worker_id* so another process can claim it."""
        result = await self._col.update_many(
            {"lockedBy": worker_id, "lockedAt": {"$ne": None}},
            {
                "$set": {
                    "lockedAt": None,
                    "lockedBy": None,
                    "lastModifiedAt": now,
                    "meta.status": JobStatus.PENDING.value,
                }
            },
        )
        return result.modified_count


def _duration_ms(started_at: datetime, finished_at: datetime) -> int:
    return int((finished_at - started_at).total_seconds() * 1000)

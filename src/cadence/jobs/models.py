"""Pydantic models for persisted job records."""

from __future__ import annotations

import secrets
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class JobStatus(StrEnum):
    """Lifecycle states stored in ``meta.status``."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    ERROR = "error"


class JobType(StrEnum):
    """``single`` records are the one recurring record kept per handler name."""

    NORMAL = "normal"
    SINGLE = "single"


def _generate_id() -> str:
    return secrets.token_hex(12)


def utcnow() -> datetime:
    """Current UTC time truncated to milliseconds (BSON date precision)."""
    now = datetime.now(UTC)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


class _Document(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )


class JobMeta(_Document):
    """Status bookkeeping written alongside every lifecycle transition."""

    status: JobStatus = JobStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None
    error_at: datetime | None = None
    error_message: str | None = None


class JobRecord(_Document):
    """A single persisted unit of scheduled work.

    Field names are stored camelCase (``nextRunAt``, ``lockedAt`` ...) so the
    collection layout matches what Agenda writes.
    """

    id: str = Field(default_factory=_generate_id, alias="_id")
    name: str
    data: dict[str, Any] = Field(default_factory=dict)
    type: JobType = JobType.NORMAL
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    last_finished_at: datetime | None = None
    locked_at: datetime | None = None
    locked_by: str | None = None
    failed_at: datetime | None = None
    fail_count: int = 0
    fail_reason: str | None = None
    repeat_interval: str | None = None
    disabled: bool = False
    last_modified_at: datetime = Field(default_factory=utcnow)
    meta: JobMeta = Field(default_factory=JobMeta)

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_object_id(cls, value: Any) -> Any:
        # Agenda writes ObjectId primary keys
        if isinstance(value, ObjectId):
            return str(value)
        return value

    @field_validator("data", mode="before")
    @classmethod
    def _empty_data(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def status(self) -> str:
        return self.meta.status

    @property
    def is_recurring(self) -> bool:
        return self.repeat_interval is not None

    @property
    def is_locked(self) -> bool:
        return self.locked_at is not None

    def to_document(self) -> dict[str, Any]:
        """Serialize for MongoDB (camelCase keys, ``_id`` primary key)."""
        return self.model_dump(by_alias=True)

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> JobRecord:
        return cls.model_validate(doc)

    def to_snapshot(self) -> dict[str, Any]:
        """Status snapshot handed to API callers."""
        return {
            "id": self.id,
            "name": self.name,
            "data": self.data,
            "status": self.status,
            "nextRunAt": self.next_run_at,
            "lastRunAt": self.last_run_at,
            "lastFinishedAt": self.last_finished_at,
            "lockedAt": self.locked_at,
            "failedAt": self.failed_at,
            "failCount": self.fail_count,
            "failReason": self.fail_reason,
            "repeatInterval": self.repeat_interval,
        }

"""Pydantic models for configuration sub-sections."""

from __future__ import annotations

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator

from cadence.config.constants import (
    DEFAULT_CONCURRENCY,
    DEFAULT_HOST,
    DEFAULT_LOCK_LIFETIME_SECONDS,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_PORT,
    DEFAULT_PROCESS_EVERY_SECONDS,
    DEFAULT_READY_TIMEOUT_SECONDS,
    DEFAULT_SHUTDOWN_GRACE_SECONDS,
    DEFAULT_STATUS_LOG_INTERVAL_SECONDS,
    DEFAULT_TIMEZONE,
    JOBS_COLLECTION,
)


class JobQueueConfig(BaseModel):
    """Durable job scheduler tuning."""

    collection: str = JOBS_COLLECTION
    process_every_seconds: float = Field(default=DEFAULT_PROCESS_EVERY_SECONDS, gt=0)
    max_concurrency: int = Field(default=DEFAULT_MAX_CONCURRENCY, ge=1)
    default_concurrency: int = Field(default=DEFAULT_CONCURRENCY, ge=1)
    default_lock_lifetime_seconds: float = Field(default=DEFAULT_LOCK_LIFETIME_SECONDS, gt=0)
    ready_timeout_seconds: float = Field(default=DEFAULT_READY_TIMEOUT_SECONDS, gt=0)
    status_log_interval_seconds: float = Field(
        default=DEFAULT_STATUS_LOG_INTERVAL_SECONDS, gt=0
    )
    shutdown_grace_seconds: float = Field(default=DEFAULT_SHUTDOWN_GRACE_SECONDS, ge=0)

    @model_validator(mode="after")
    def validate_concurrency(self) -> "JobQueueConfig":
        if self.default_concurrency > self.max_concurrency:
            raise ValueError(
                f"default_concurrency ({self.default_concurrency}) must not exceed "
                f"max_concurrency ({self.max_concurrency})"
            )
        return self


class TimerConfig(BaseModel):
    """In-process cron timer settings."""

    timezone: str = DEFAULT_TIMEZONE
    autostart_presets: bool = False

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value


class ServerConfig(BaseModel):
    """HTTP server settings."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

"""Central settings, loaded from environment variables and a .env file."""

from __future__ import annotations

from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from cadence.config.constants import DEFAULT_DB_NAME
from cadence.config.models import JobQueueConfig, ServerConfig, TimerConfig


class Settings(BaseSettings):
    """All cadence configuration in one place.

    Priority (highest → lowest):
      1. Environment variables (CADENCE_ prefix; MONGODB_URL and DB_NAME
         are also read unprefixed)
      2. .env file
      3. Defaults defined here

    Nested sections use ``__`` as delimiter, e.g.
    ``CADENCE_JOBS__PROCESS_EVERY_SECONDS=2``.
    """

    model_config = SettingsConfigDict(
        env_prefix="CADENCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # --- Sub-configs ---
    jobs: JobQueueConfig = Field(default_factory=JobQueueConfig)
    timers: TimerConfig = Field(default_factory=TimerConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    # --- Top-level settings ---
    mongodb_url: str = Field(
        default="",
        validation_alias=AliasChoices("mongodb_url", "CADENCE_MONGODB_URL", "MONGODB_URL"),
    )
    db_name: str = Field(
        default=DEFAULT_DB_NAME,
        validation_alias=AliasChoices("db_name", "CADENCE_DB_NAME", "DB_NAME"),
    )
    log_level: str = "INFO"

    @property
    def has_database(self) -> bool:
        return bool(self.mongodb_url)


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()

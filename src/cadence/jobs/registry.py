"""Typed registry mapping job names to async handler functions."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from cadence.config.constants import DEFAULT_CONCURRENCY, DEFAULT_LOCK_LIFETIME_SECONDS

logger = logging.getLogger("cadence.jobs.registry")

JobHandler = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass(frozen=True)
class JobDefinition:
    """A registered handler plus its dispatch limits."""

    name: str
    handler: JobHandler
    concurrency: int
    lock_lifetime: timedelta


class JobRegistry:
    """Handlers by name. Dispatch looks names up at run time.

    Handlers must be ``async def`` functions taking the job's ``data`` dict.
    """

    def __init__(
        self,
        default_concurrency: int = DEFAULT_CONCURRENCY,
        default_lock_lifetime: timedelta = timedelta(seconds=DEFAULT_LOCK_LIFETIME_SECONDS),
    ) -> None:
        self._default_concurrency = default_concurrency
        self._default_lock_lifetime = default_lock_lifetime
        self._definitions: dict[str, JobDefinition] = {}

    def define(
        self,
        name: str,
        handler: JobHandler,
        *,
        concurrency: int | None = None,
        lock_lifetime: timedelta | None = None,
    ) -> JobDefinition:
        """Register *handler* under *name*, replacing any previous definition."""
        if not name:
            raise ValueError("Job name must not be empty")
        if not inspect.iscoroutinefunction(handler):
            raise TypeError(f"Handler for {name!r} must be an async function")
        concurrency = self._default_concurrency if concurrency is None else concurrency
        if concurrency < 1:
            raise ValueError(f"Concurrency for {name!r} must be at least 1, got {concurrency}")

        if name in self._definitions:
            logger.warning("Job handler %s redefined", name)

        definition = JobDefinition(
            name=name,
            handler=handler,
            concurrency=concurrency,
            lock_lifetime=lock_lifetime or self._default_lock_lifetime,
        )
        self._definitions[name] = definition
        logger.debug("Defined job %s (concurrency=%d)", name, concurrency)
        return definition

    def job(
        self,
        name: str,
        *,
        concurrency: int | None = None,
        lock_lifetime: timedelta | None = None,
    ) -> Callable[[JobHandler], JobHandler]:
        """Decorator form of :meth:`define`."""

        def decorator(handler: JobHandler) -> JobHandler:
            self.define(name, handler, concurrency=concurrency, lock_lifetime=lock_lifetime)
            return handler

        return decorator

    def get(self, name: str) -> JobDefinition | None:
        return self._definitions.get(name)

    def names(self) -> list[str]:
        return list(self._definitions)

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def __iter__(self) -> Iterator[JobDefinition]:
        return iter(list(self._definitions.values()))

    def __len__(self) -> int:
        return len(self._definitions)

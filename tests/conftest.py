"""Shared test fixtures.

MongoDB is replaced by ``FakeCollection``: the subset of Motor's collection
API that ``JobStore`` uses. Every operation yields to the event loop before
touching data, so code that reads and then writes across two awaits would
interleave with other tasks exactly as it could against a real server, while
each single operation stays atomic as it is in MongoDB.
"""

from __future__ import annotations

import asyncio
import copy
import secrets
import time
from types import SimpleNamespace
from typing import Any

import pytest
from fastapi.testclient import TestClient

from cadence.config.models import JobQueueConfig
from cadence.config.settings import Settings
from cadence.jobs.engine import JobScheduler
from cadence.jobs.registry import JobRegistry
from cadence.jobs.store import JobStore
from cadence.server.app import create_app
from cadence.timers.engine import TimerScheduler

_MISSING = object()


def _get(doc: dict, path: str) -> Any:
    value: Any = doc
    for part in path.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            return _MISSING
    return value


def _set(doc: dict, path: str, value: Any) -> None:
    *parents, leaf = path.split(".")
    for part in parents:
        doc = doc.setdefault(part, {})
    doc[leaf] = value


def _unset(doc: dict, path: str) -> None:
    *parents, leaf = path.split(".")
    for part in parents:
        doc = doc.get(part)
        if not isinstance(doc, dict):
            return
    doc.pop(leaf, None)


def _equals(value: Any, expected: Any) -> bool:
    if expected is None:
        return value is _MISSING or value is None
    return value is not _MISSING and value == expected


def _compare(value: Any, op: str, arg: Any) -> bool:
    if op == "$ne":
        return not _equals(value, arg)
    if op == "$exists":
        return (value is not _MISSING) == bool(arg)
    if op == "$in":
        return any(_equals(value, candidate) for candidate in arg)
    if value is _MISSING or value is None:
        return False
    if op == "$lte":
        return value <= arg
    if op == "$lt":
        return value < arg
    if op == "$gte":
        return value >= arg
    if op == "$gt":
        return value > arg
    raise NotImplementedError(op)


def matches(doc: dict, query: dict) -> bool:
    for key, condition in query.items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in condition):
                return False
        elif key == "$and":
            if not all(matches(doc, sub) for sub in condition):
                return False
        elif isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
            value = _get(doc, key)
            if not all(_compare(value, op, arg) for op, arg in condition.items()):
                return False
        elif not _equals(_get(doc, key), condition):
            return False
    return True


def _apply(doc: dict, update: dict, *, inserting: bool = False) -> None:
    for op, fields in update.items():
        for path, value in fields.items():
            if op == "$set" or (op == "$setOnInsert" and inserting):
                _set(doc, path, copy.deepcopy(value))
            elif op == "$unset":
                _unset(doc, path)
            elif op == "$inc":
                current = _get(doc, path)
                _set(doc, path, (0 if current is _MISSING or current is None else current) + value)
            elif op != "$setOnInsert":
                raise NotImplementedError(op)


def _sort_key(doc: dict, key: str) -> tuple:
    value = _get(doc, key)
    if value is _MISSING or value is None:
        return (0, 0)
    return (1, value)


def _sort(docs: list[dict], keys: list[tuple[str, int]]) -> list[dict]:
    ordered = list(docs)
    for key, direction in reversed(keys):
        ordered.sort(key=lambda d, k=key: _sort_key(d, k), reverse=direction < 0)
    return ordered


class FakeCursor:
    def __init__(self, docs: list[dict]) -> None:
        self._docs = docs

    def sort(self, key: str, direction: int = 1) -> FakeCursor:
        self._docs = _sort(self._docs, [(key, direction)])
        return self

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for doc in self._docs:
            await asyncio.sleep(0)
            yield copy.deepcopy(doc)


class FakeClient:
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FakeDatabase:
    def __init__(self) -> None:
        self.client = FakeClient()
        self.commands: list[str] = []

    async def command(self, name: str) -> dict:
        await asyncio.sleep(0)
        self.commands.append(name)
        return {"ok": 1}


class FakeCollection:
    """In-memory stand-in for ``AsyncIOMotorCollection``."""

    def __init__(self) -> None:
        self.docs: list[dict] = []
        self.indexes: dict[str, Any] = {}
        self.database = FakeDatabase()

    async def create_index(self, keys, name: str | None = None, **kwargs) -> str:
        await asyncio.sleep(0)
        index_name = name or str(keys)
        self.indexes[index_name] = keys
        return index_name

    async def insert_one(self, doc: dict) -> SimpleNamespace:
        await asyncio.sleep(0)
        stored = copy.deepcopy(doc)
        stored.setdefault("_id", secrets.token_hex(12))
        self.docs.append(stored)
        return SimpleNamespace(inserted_id=stored["_id"])

    def find(self, query: dict | None = None) -> FakeCursor:
        return FakeCursor([d for d in self.docs if matches(d, query or {})])

    async def find_one(self, query: dict) -> dict | None:
        await asyncio.sleep(0)
        for doc in self.docs:
            if matches(doc, query):
                return copy.deepcopy(doc)
        return None

    async def find_one_and_update(
        self,
        query: dict,
        update: dict,
        sort: list[tuple[str, int]] | None = None,
        upsert: bool = False,
        return_document: bool = False,
    ) -> dict | None:
        await asyncio.sleep(0)
        candidates = [d for d in self.docs if matches(d, query)]
        if sort:
            candidates = _sort(candidates, sort)
        if candidates:
            doc = candidates[0]
            before = copy.deepcopy(doc)
            _apply(doc, update)
            return copy.deepcopy(doc) if return_document else before
        if not upsert:
            return None

        doc = {
            k: copy.deepcopy(v)
            for k, v in query.items()
            if not k.startswith("$") and not isinstance(v, dict)
        }
        _apply(doc, update, inserting=True)
        doc.setdefault("_id", secrets.token_hex(12))
        self.docs.append(doc)
        return copy.deepcopy(doc) if return_document else None

    async def update_one(self, query: dict, update: dict) -> SimpleNamespace:
        await asyncio.sleep(0)
        for doc in self.docs:
            if matches(doc, query):
                before = copy.deepcopy(doc)
                _apply(doc, update)
                return SimpleNamespace(matched_count=1, modified_count=int(before != doc))
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def update_many(self, query: dict, update: dict) -> SimpleNamespace:
        await asyncio.sleep(0)
        matched = modified = 0
        for doc in self.docs:
            if matches(doc, query):
                matched += 1
                before = copy.deepcopy(doc)
                _apply(doc, update)
                modified += int(before != doc)
        return SimpleNamespace(matched_count=matched, modified_count=modified)

    async def delete_one(self, query: dict) -> SimpleNamespace:
        await asyncio.sleep(0)
        for index, doc in enumerate(self.docs):
            if matches(doc, query):
                del self.docs[index]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def count_documents(self, query: dict) -> int:
        await asyncio.sleep(0)
        return sum(1 for d in self.docs if matches(d, query))


@pytest.fixture
def collection() -> FakeCollection:
    return FakeCollection()


@pytest.fixture
def job_store(collection: FakeCollection) -> JobStore:
    return JobStore(collection)


@pytest.fixture
def test_settings() -> Settings:
    """Settings for tests: a database URL that is never dialled, no background polling."""
    return Settings(
        _env_file=None,
        mongodb_url="mongodb://localhost:27017",
        jobs=JobQueueConfig(
            process_every_seconds=3600,
            status_log_interval_seconds=3600,
            ready_timeout_seconds=1,
            shutdown_grace_seconds=1,
        ),
    )


async def _succeed(data: dict) -> None:
    return None


@pytest.fixture
def client(test_settings, job_store):
    """A running app over the in-memory store, with the job scheduler ready."""
    registry = JobRegistry()
    registry.define("process-data", _succeed)
    registry.define("send-email", _succeed, concurrency=3)
    app = create_app(
        test_settings,
        job_scheduler=JobScheduler(test_settings, registry=registry, store=job_store),
        timer_scheduler=TimerScheduler(),
    )
    with TestClient(app) as test_client:
        for _ in range(200):
            if test_client.get("/health").json()["jobs_ready"]:
                break
            time.sleep(0.01)
        else:
            raise AssertionError("job scheduler did not become ready")
        yield test_client

"""Tests for the cadence CLI."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from cadence import __version__
from cadence.cli.main import app
from cadence.jobs.models import JobMeta, JobRecord, JobStatus, utcnow

runner = CliRunner()


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    """Keep rich from wrapping table cells at the default 80 columns."""
    from cadence.cli import jobs_commands, main

    monkeypatch.setattr(jobs_commands.console, "width", 200)
    monkeypatch.setattr(main.console, "width", 200)


@pytest.fixture
def store_patch(job_store):
    with patch("cadence.cli.jobs_commands._get_store", return_value=job_store):
        yield job_store


def _add(collection, **fields) -> JobRecord:
    job = JobRecord(**fields)
    collection.docs.append(job.to_document())
    return job


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"v{__version__}" in result.output


def test_timer_presets_table():
    result = runner.invoke(app, ["timers", "presets"])
    assert result.exit_code == 0
    assert "Timer Presets" in result.output
    assert "business-hours" in result.output
    assert "11 presets." in result.output


def test_jobs_need_a_database():
    from cadence.config.settings import Settings

    no_db = Settings(_env_file=None, mongodb_url="")
    with patch("cadence.config.settings.get_settings", return_value=no_db):
        result = runner.invoke(app, ["jobs", "list"])
    assert result.exit_code == 1
    assert "MONGODB_URL is not set" in result.output


class TestJobsList:
    def test_empty(self, store_patch):
        result = runner.invoke(app, ["jobs", "list"])
        assert result.exit_code == 0
        assert "No jobs found." in result.output

    def test_lists_and_closes_store(self, store_patch, collection):
        _add(collection, name="send-email", next_run_at=utcnow())
        _add(collection, name="backup-data", repeat_interval="1 day", next_run_at=utcnow())

        result = runner.invoke(app, ["jobs", "list"])
        assert result.exit_code == 0
        assert "send-email" in result.output
        assert "backup-data" in result.output
        assert "2 jobs total." in result.output
        assert collection.database.client.closed

    def test_filters(self, store_patch, collection):
        _add(collection, name="send-email")
        _add(
            collection,
            name="process-image",
            failed_at=utcnow(),
            fail_count=1,
            meta=JobMeta(status=JobStatus.ERROR),
        )

        result = runner.invoke(app, ["jobs", "list", "--status", "failed"])
        assert "1 jobs total." in result.output
        assert "process-image" in result.output

        result = runner.invoke(app, ["jobs", "list", "-n", "send-email"])
        assert "1 jobs total." in result.output
        assert "send-email" in result.output

    def test_unknown_status(self, store_patch):
        result = runner.invoke(app, ["jobs", "list", "--status", "sideways"])
        assert result.exit_code == 1
        assert "Unknown status filter" in result.output


class TestJobsShow:
    def test_shows_failure_details(self, store_patch, collection):
        job = _add(
            collection,
            name="send-email",
            failed_at=utcnow(),
            fail_count=2,
            fail_reason="SMTP timeout",
            meta=JobMeta(status=JobStatus.ERROR),
        )
        result = runner.invoke(app, ["jobs", "show", job.id])
        assert result.exit_code == 0
        assert "send-email" in result.output
        assert "SMTP timeout" in result.output

    def test_missing(self, store_patch):
        result = runner.invoke(app, ["jobs", "show", "nope"])
        assert result.exit_code == 1
        assert "not found" in result.output


class TestJobsCancel:
    def test_cancel(self, store_patch, collection):
        job = _add(collection, name="send-email")
        result = runner.invoke(app, ["jobs", "cancel", job.id])
        assert result.exit_code == 0
        assert "Cancelled job" in result.output
        assert collection.docs == []

    def test_cancel_missing(self, store_patch):
        result = runner.invoke(app, ["jobs", "cancel", "nope"])
        assert result.exit_code == 1


class TestJobsRetry:
    def test_requeues_failed_job(self, store_patch, collection):
        job = _add(
            collection,
            name="send-email",
            failed_at=utcnow(),
            fail_count=1,
            fail_reason="boom",
            meta=JobMeta(status=JobStatus.ERROR),
        )
        result = runner.invoke(app, ["jobs", "retry", job.id])
        assert result.exit_code == 0
        assert "Requeued" in result.output

        doc = collection.docs[0]
        assert doc["failedAt"] is None
        assert doc["failCount"] == 0
        assert doc["nextRunAt"] is not None
        assert doc["meta"]["status"] == "pending"

    def test_refuses_running_job(self, store_patch, collection):
        job = _add(collection, name="send-email", locked_at=utcnow(), locked_by="worker")
        result = runner.invoke(app, ["jobs", "retry", job.id])
        assert result.exit_code == 1
        assert "running right now" in result.output

    def test_stale_lock_is_requeued(self, store_patch, collection):
        job = _add(
            collection,
            name="send-email",
            locked_at=utcnow() - timedelta(hours=1),
            locked_by="crashed",
        )
        result = runner.invoke(app, ["jobs", "retry", job.id])
        assert result.exit_code == 0
        assert collection.docs[0]["lockedAt"] is None

    def test_missing(self, store_patch):
        result = runner.invoke(app, ["jobs", "retry", "nope"])
        assert result.exit_code == 1
        assert "not found" in result.output

"""Tests for the /api/v1/agenda job endpoints."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from cadence.jobs.engine import JobScheduler
from cadence.jobs.models import JobMeta, JobRecord, JobStatus, utcnow
from cadence.jobs.registry import JobRegistry
from cadence.server.app import create_app
from cadence.timers.engine import TimerScheduler

API = "/api/v1/agenda"


def _failed_job(name: str = "process-data") -> JobRecord:
    now = utcnow()
    return JobRecord(
        name=name,
        failed_at=now,
        fail_count=1,
        fail_reason="boom",
        last_finished_at=now,
        meta=JobMeta(status=JobStatus.ERROR, error_message="boom"),
    )


def _locked_job(name: str = "process-data") -> JobRecord:
    now = utcnow()
    return JobRecord(
        name=name,
        next_run_at=now,
        last_run_at=now,
        locked_at=now,
        locked_by="another-worker",
        meta=JobMeta(status=JobStatus.IN_PROGRESS),
    )


def test_not_ready_returns_503(test_settings):
    scheduler = MagicMock(spec=JobScheduler)
    scheduler.is_ready.return_value = False
    scheduler.registry = JobRegistry()
    app = create_app(test_settings, job_scheduler=scheduler, timer_scheduler=TimerScheduler())
    client = TestClient(app)

    resp = client.post(f"{API}/jobs/now", json={"jobName": "process-data"})
    assert resp.status_code == 503
    assert "initializing" in resp.json()["detail"]
    assert client.get(f"{API}/jobs").status_code == 503
    scheduler.schedule_now.assert_not_called()


# -- Scheduling --


def test_schedule_now(client):
    resp = client.post(
        f"{API}/jobs/now", json={"jobName": "send-email", "data": {"to": "a@example.com"}}
    )
    assert resp.status_code == 201

    body = resp.json()
    assert body["success"] is True
    assert body["message"] == "Job scheduled to run now"
    assert body["data"]["name"] == "send-email"
    assert body["data"]["data"] == {"to": "a@example.com"}
    assert body["data"]["status"] == "pending"

    fetched = client.get(f"{API}/jobs/{body['data']['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["data"]["id"] == body["data"]["id"]


def test_schedule_now_requires_job_name(client):
    assert client.post(f"{API}/jobs/now", json={"data": {}}).status_code == 422
    assert client.post(f"{API}/jobs/now", json={"jobName": ""}).status_code == 422


@pytest.mark.parametrize("when", ["in 5 minutes", 300, "2099-01-01T00:00:00Z"])
def test_schedule_at(client, when):
    resp = client.post(f"{API}/jobs", json={"jobName": "process-data", "when": when})
    assert resp.status_code == 201
    assert resp.json()["message"] == "Job scheduled successfully"
    assert resp.json()["data"]["nextRunAt"] is not None


def test_schedule_at_rejects_unparseable_time(client):
    resp = client.post(f"{API}/jobs", json={"jobName": "process-data", "when": "whenever"})
    assert resp.status_code == 400


@pytest.mark.parametrize("when", [1e12, "in 99999999999 days"])
def test_schedule_at_rejects_out_of_range_time(client, when):
    resp = client.post(f"{API}/jobs", json={"jobName": "process-data", "when": when})
    assert resp.status_code == 400
    assert "out of range" in resp.json()["detail"]


def test_schedule_recurring_is_idempotent(client):
    payload = {"jobName": "process-data", "interval": "5 minutes", "data": {"k": 1}}
    first = client.post(f"{API}/jobs/recurring", json=payload)
    second = client.post(f"{API}/jobs/recurring", json={**payload, "interval": "*/10 * * * *"})

    assert first.status_code == second.status_code == 201
    assert first.json()["data"]["id"] == second.json()["data"]["id"]
    assert second.json()["data"]["repeatInterval"] == "*/10 * * * *"
    assert client.get(f"{API}/jobs").json()["data"]["count"] == 1


def test_schedule_recurring_rejects_bad_interval(client):
    resp = client.post(
        f"{API}/jobs/recurring", json={"jobName": "process-data", "interval": "now and then"}
    )
    assert resp.status_code == 400


# -- Queries --


def test_list_jobs_with_filters(client, collection):
    client.post(f"{API}/jobs", json={"jobName": "process-data", "when": "in 1 hour"})
    client.post(f"{API}/jobs", json={"jobName": "send-email", "when": "in 1 hour"})
    collection.docs.append(_failed_job().to_document())
    collection.docs.append(_locked_job().to_document())

    everything = client.get(f"{API}/jobs").json()["data"]
    assert everything["count"] == 4
    assert len(everything["jobs"]) == 4

    by_name = client.get(f"{API}/jobs", params={"name": "send-email"}).json()["data"]
    assert by_name["count"] == 1

    failed = client.get(f"{API}/jobs", params={"status": "failed"}).json()["data"]
    assert [j["failReason"] for j in failed["jobs"]] == ["boom"]

    running = client.get(f"{API}/jobs", params={"status": "running"}).json()["data"]
    assert running["count"] == 1

    assert client.get(f"{API}/jobs", params={"status": "sideways"}).status_code == 422


def test_running_failed_and_name_views(client, collection):
    collection.docs.append(_failed_job().to_document())
    collection.docs.append(_locked_job("send-email").to_document())

    running = client.get(f"{API}/jobs/running").json()["data"]
    assert [j["name"] for j in running["jobs"]] == ["send-email"]

    failed = client.get(f"{API}/jobs/failed").json()["data"]
    assert [j["status"] for j in failed["jobs"]] == ["error"]

    named = client.get(f"{API}/jobs/name/process-data").json()["data"]
    assert named["count"] == 1


def test_get_unknown_job(client):
    resp = client.get(f"{API}/jobs/does-not-exist")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Job does-not-exist not found"


def test_agenda_written_records_are_readable(client, collection):
    oid = ObjectId()
    collection.docs.append(
        {"_id": oid, "name": "process-data", "data": None, "nextRunAt": None, "lockedAt": None}
    )

    resp = client.get(f"{API}/jobs/{oid}")
    assert resp.status_code == 200
    assert resp.json()["data"]["id"] == str(oid)
    assert client.get(f"{API}/jobs").json()["data"]["count"] == 1


def test_malformed_record_is_unprocessable(client, collection):
    collection.docs.append({"_id": "broken", "name": "process-data", "failCount": "lots"})

    resp = client.get(f"{API}/jobs/broken")
    assert resp.status_code == 422
    assert "Malformed job record broken" in resp.json()["detail"]
    assert client.get(f"{API}/jobs").json()["data"]["count"] == 0


# -- Management --


def test_cancel_job(client):
    job_id = client.post(
        f"{API}/jobs", json={"jobName": "process-data", "when": "in 1 hour"}
    ).json()["data"]["id"]

    resp = client.post(f"{API}/jobs/{job_id}/cancel")
    assert resp.status_code == 200
    assert resp.json()["data"] == {"id": job_id}
    assert client.get(f"{API}/jobs/{job_id}").status_code == 404
    assert client.post(f"{API}/jobs/{job_id}/cancel").status_code == 404


def test_retry_failed_job(client, collection):
    job = _failed_job()
    collection.docs.append(job.to_document())

    resp = client.post(f"{API}/jobs/{job.id}/retry")
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["status"] == "completed"
    assert data["failCount"] == 0
    assert data["failedAt"] is None


def test_retry_running_job_conflicts(client, collection):
    job = _locked_job()
    collection.docs.append(job.to_document())
    assert client.post(f"{API}/jobs/{job.id}/retry").status_code == 409


def test_retry_stale_lock_is_allowed(client, collection):
    job = _locked_job()
    job.locked_at = utcnow() - timedelta(hours=1)
    collection.docs.append(job.to_document())
    assert client.post(f"{API}/jobs/{job.id}/retry").status_code == 200


def test_retry_unknown_job(client):
    assert client.post(f"{API}/jobs/nope/retry").status_code == 404


# -- Test job and status --


def test_schedule_test_job(client):
    resp = client.post(f"{API}/test", json={"data": {"source": "manual"}})
    assert resp.status_code == 200

    data = resp.json()["data"]
    assert data["jobName"] == "process-data"
    assert data["nextRunAt"] is not None

    stored = client.get(f"{API}/jobs/{data['jobId']}").json()["data"]["data"]
    assert stored["source"] == "manual"
    assert stored["test"] is True
    assert "scheduledAt" in stored


def test_scheduler_status(client):
    client.post(f"{API}/jobs/now", json={"jobName": "process-data"})

    resp = client.get(f"{API}/status")
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["initialized"] is True
    assert data["handlers"] == ["process-data", "send-email"]
    assert data["totalJobs"] == 1
    assert data["dueJobs"] == 1
    assert data["runningJobs"] == 0
    assert data["failedJobs"] == 0
    assert data["workerId"]

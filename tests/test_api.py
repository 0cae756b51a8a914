"""Tests for agentcron.api — cron trigger, job admin, health."""

from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from agentcron.api.app import build_engine, create_app
from agentcron.core.clock import to_iso, utc_now
from agentcron.core.config import Config
from agentcron.storage.store import Store

SECRET = "s3cret"


def _make_app(tmp_path, cron_secret=""):
    config = Config(
        auth={"cron_secret": cron_secret},
        database={"path": str(tmp_path / "test.db")},
    )
    application = create_app(config)
    # Override lifespan state manually
    db = Store(str(tmp_path / "test.db"))
    db.create_agent("a1", "u1")
    application.state.config = config
    application.state.store = db
    application.state.service = None
    for name, obj in build_engine(config, db).items():
        setattr(application.state, name, obj)
    return application


@pytest.fixture
def app(tmp_path):
    return _make_app(tmp_path, cron_secret=SECRET)


@pytest.fixture
async def client(app):
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as c:
        yield c


AUTH = {"Authorization": f"Bearer {SECRET}"}


def _due(store, title="job", action_type="notify", payload=None):
    return store.create_job(
        "a1", title, action_type, to_iso(utc_now() - timedelta(minutes=1)),
        action_payload=payload or {"message": title},
    )


# --- Health ---

@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["scheduler_running"] is False
    assert body["in_flight"] == 0


# --- Auth ---

@pytest.mark.asyncio
async def test_dispatch_requires_secret(client):
    resp = await client.post("/cron/dispatch")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Unauthorized"


@pytest.mark.asyncio
async def test_dispatch_wrong_secret(client):
    resp = await client.post("/cron/dispatch", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_jobs_require_secret(client):
    resp = await client.get("/jobs")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_open_when_no_secret(tmp_path):
    application = _make_app(tmp_path, cron_secret="")
    async with AsyncClient(transport=ASGITransport(app=application), base_url="http://test") as c:
        resp = await c.get("/cron/dispatch")
    assert resp.status_code == 200


# --- Dispatch ---

@pytest.mark.asyncio
async def test_dispatch_no_jobs(client):
    resp = await client.get("/cron/dispatch", headers=AUTH)
    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "No jobs due"
    assert body["processedCount"] == 0
    assert body["successCount"] == 0
    assert body["results"] == []
    assert "timestamp" in body


@pytest.mark.asyncio
async def test_dispatch_runs_due_jobs(app, client):
    store = app.state.store
    job = _due(store, "Call Bob")

    resp = await client.post("/cron/dispatch", headers=AUTH)
    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "Dispatch cycle completed"
    assert body["processedCount"] == 1
    assert body["successCount"] == 1
    assert body["results"] == [
        {"jobId": job.id, "title": "Call Bob", "success": True, "error": None}
    ]

    await app.state.executor.drain()
    assert store.get_job(job.id).status == "completed"
    assert len(store.list_notifications("a1")) == 1


@pytest.mark.asyncio
async def test_dispatch_store_failure_is_500(app, client, monkeypatch):
    from agentcron.core.errors import StoreError

    def boom(*args, **kwargs):
        raise StoreError("database is locked")

    monkeypatch.setattr(app.state.store, "list_due_jobs", boom)
    resp = await client.post("/cron/dispatch", headers=AUTH)
    assert resp.status_code == 500
    assert resp.json()["detail"] == "Dispatch cycle failed"


# --- Jobs ---

@pytest.mark.asyncio
async def test_list_jobs(app, client):
    _due(app.state.store, "one")
    resp = await client.get("/jobs", headers=AUTH)
    assert resp.status_code == 200
    jobs = resp.json()
    assert len(jobs) == 1
    assert jobs[0]["title"] == "one"
    assert jobs[0]["status"] == "active"


@pytest.mark.asyncio
async def test_list_jobs_filter_status(app, client):
    store = app.state.store
    job = _due(store, "one")
    _due(store, "two")
    store.pause_job(job.id, "Paused after 3 consecutive failures: boom")

    resp = await client.get("/jobs", params={"status": "paused"}, headers=AUTH)
    jobs = resp.json()
    assert [j["id"] for j in jobs] == [job.id]
    assert jobs[0]["failure_reason"].startswith("Paused after 3")


@pytest.mark.asyncio
async def test_executions_listed_with_steps(app, client):
    store = app.state.store
    job = _due(store)
    await client.post("/cron/dispatch", headers=AUTH)
    await app.state.executor.drain()

    resp = await client.get(f"/jobs/{job.id}/executions", headers=AUTH)
    assert resp.status_code == 200
    (execution,) = resp.json()
    assert execution["status"] == "success"
    assert "dispatch" in execution["steps"]
    assert execution["result"]["messageId"]


@pytest.mark.asyncio
async def test_executions_unknown_job(client):
    resp = await client.get("/jobs/nope/executions", headers=AUTH)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_reactivate(app, client):
    store = app.state.store
    job = _due(store)
    store.record_job_failure(job.id, "ex-1", "boom")
    store.pause_job(job.id, "Paused after 1 consecutive failures: boom")

    resp = await client.post(f"/jobs/{job.id}/reactivate", headers=AUTH)
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "active"
    assert body["consecutive_failures"] == 0
    assert body["failure_reason"] is None


@pytest.mark.asyncio
async def test_reactivate_not_paused_is_409(app, client):
    job = _due(app.state.store)
    resp = await client.post(f"/jobs/{job.id}/reactivate", headers=AUTH)
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_reactivate_unknown_is_404(client):
    resp = await client.post("/jobs/nope/reactivate", headers=AUTH)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_cancel(app, client):
    job = _due(app.state.store)
    resp = await client.post(f"/jobs/{job.id}/cancel", headers=AUTH)
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"

    resp = await client.post(f"/jobs/{job.id}/cancel", headers=AUTH)
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_cancel_unknown_is_404(client):
    resp = await client.post("/jobs/nope/cancel", headers=AUTH)
    assert resp.status_code == 404

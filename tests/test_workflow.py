"""Tests for agentcron.core.jobs.workflow.WorkflowRunner — end-to-end executions."""

import asyncio
from datetime import timedelta
from unittest.mock import patch

import httpx
import pytest

from agentcron.core.clock import parse_iso, to_iso, utc_now
from agentcron.core.config import Config
from agentcron.core.errors import StoreDataError, StoreError
from agentcron.core.jobs.workflow import WorkflowRunner
from agentcron.storage.store import Store


@pytest.fixture
def cfg(tmp_path):
    return Config(database={"path": str(tmp_path / "test.db")})


@pytest.fixture
def store(cfg):
    s = Store(cfg.database.path)
    s.create_agent("a1", "u1")
    return s


def _due(store, action_type, payload, **kw):
    return store.create_job(
        "a1", kw.pop("title", "job"), action_type,
        to_iso(utc_now() - timedelta(minutes=1)), action_payload=payload, **kw,
    )


def _messages(store):
    with store._get_conn() as conn:
        return conn.execute("SELECT * FROM messages").fetchall()


def _failing_webhook():
    return httpx.MockTransport(lambda request: httpx.Response(500))


# ── Scenarios ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_scenario_notify_success(store, cfg):
    job = _due(store, "notify", {"message": "Call Bob"})
    result = await WorkflowRunner(store, cfg).run(job)

    assert result.success
    msgs = _messages(store)
    assert len(msgs) == 1
    assert "Call Bob" in msgs[0]["content"]
    notes = store.list_notifications("a1")
    assert len(notes) == 1
    assert notes[0]["link_type"] == "conversation"

    (execution,) = store.list_executions(job.id)
    assert execution.status == "success"
    assert execution.closed_at is not None
    assert list(execution.checkpoint) == [
        "notify:conversation", "notify:message", "notify:notification",
        "dispatch", "record-result", "mark-executed",
    ]

    row = store.get_job(job.id)
    assert row.status == "completed"
    assert row.next_run_at is None
    assert row.run_count == 1
    assert row.locked_until is None


@pytest.mark.asyncio
async def test_scenario_webhook_500(store, cfg):
    job = _due(store, "webhook", {"url": "https://example.com/hook"})
    result = await WorkflowRunner(store, cfg, http_transport=_failing_webhook()).run(job)

    assert not result.success
    (execution,) = store.list_executions(job.id)
    assert execution.status == "failed"
    assert "500" in execution.error
    row = store.get_job(job.id)
    assert row.consecutive_failures == 1
    assert row.status == "active"
    assert "500" in row.failure_reason


@pytest.mark.asyncio
async def test_scenario_unknown_action(store, cfg):
    job = _due(store, "unknown_kind", {})
    result = await WorkflowRunner(store, cfg).run(job)

    assert not result.success
    (execution,) = store.list_executions(job.id)
    assert execution.status == "failed"
    assert "unknown_kind" in execution.error
    row = store.get_job(job.id)
    assert row.status == "active"
    assert row.run_count == 0
    assert row.consecutive_failures == 1


@pytest.mark.asyncio
async def test_action_exception_becomes_failure(store, cfg):
    job = _due(store, "notify", {"message": "x"})
    with patch.dict("agentcron.core.jobs.actions.ACTIONS", {"notify": _raise_runtime}):
        result = await WorkflowRunner(store, cfg).run(job)
    assert not result.success
    assert result.error == "kaput"
    assert store.get_job(job.id).consecutive_failures == 1


async def _raise_runtime(job, ctx):
    raise RuntimeError("kaput")


# ── Circuit breaker through the runner ───────────────────


@pytest.mark.asyncio
async def test_breaker_trips_at_threshold(store, cfg):
    runner = WorkflowRunner(store, cfg, http_transport=_failing_webhook())
    job = _due(store, "webhook", {"url": "https://example.com/hook"})

    for _ in range(cfg.scheduler.failure_threshold - 1):
        await runner.run(job)
    assert store.get_job(job.id).status == "active"

    await runner.run(job)
    row = store.get_job(job.id)
    assert row.status == "paused"
    assert row.consecutive_failures == cfg.scheduler.failure_threshold
    assert len(store.list_executions(job.id)) == cfg.scheduler.failure_threshold

    # paused jobs are not claimable
    result = await runner.run(job)
    assert result.error == "lease held elsewhere"


# ── Cron ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_cron_success_advances_next_run(store, cfg):
    job = _due(store, "notify", {"message": "tick"},
               schedule_type="cron", cron_expression="*/15 * * * *")
    await WorkflowRunner(store, cfg).run(job)

    row = store.get_job(job.id)
    assert row.status == "active"
    assert row.next_run_at > job.next_run_at
    assert row.next_run_at > to_iso(utc_now())
    nxt = parse_iso(row.next_run_at)
    assert nxt.minute % 15 == 0 and nxt.second == 0
    assert row.run_count == 1


@pytest.mark.asyncio
async def test_cron_max_runs_completes(store, cfg):
    job = _due(store, "notify", {"message": "tick"},
               schedule_type="cron", cron_expression="* * * * *", max_runs=1)
    await WorkflowRunner(store, cfg).run(job)
    row = store.get_job(job.id)
    assert row.status == "completed"
    assert row.next_run_at is None


# ── Lease + durability ────────────────────────────────────


@pytest.mark.asyncio
async def test_concurrent_runs_execute_once(store, cfg):
    job = _due(store, "notify", {"message": "only once"})
    runner_a = WorkflowRunner(store, cfg)
    runner_b = WorkflowRunner(store, cfg)

    results = await asyncio.gather(runner_a.run(job), runner_b.run(job))

    assert sorted(r.success for r in results) == [False, True]
    assert [r.error for r in results if not r.success] == ["lease held elsewhere"]
    assert len(_messages(store)) == 1
    assert len(store.list_executions(job.id)) == 1


@pytest.mark.asyncio
async def test_resume_does_not_repeat_finished_steps(store, cfg):
    job = _due(store, "notify", {"message": "Call Bob"})

    # a previous run died after inserting the message
    crashed = store.create_execution(job.id, "a1")
    cid = store.find_or_create_active_conversation("a1")
    mid = store.insert_message(cid, "assistant", "**Reminder:** Call Bob")
    store.save_checkpoint(crashed.id, "notify:conversation", cid)
    store.save_checkpoint(crashed.id, "notify:message", mid)

    result = await WorkflowRunner(store, cfg).run(job)

    assert result.success
    assert result.data["messageId"] == mid
    assert len(_messages(store)) == 1
    assert len(store.list_notifications("a1")) == 1
    (execution,) = store.list_executions(job.id)
    assert execution.id == crashed.id
    assert execution.status == "success"
    assert store.get_job(job.id).status == "completed"


@pytest.mark.asyncio
async def test_mark_executed_replay_is_idempotent(store, cfg):
    job = _due(store, "notify", {"message": "x"}, schedule_type="cron",
               cron_expression="0 * * * *")
    runner = WorkflowRunner(store, cfg)
    await runner.run(job)
    execution = store.list_executions(job.id)[0]
    after_first = store.get_job(job.id)

    # replay the mark step for the same execution
    assert runner._mark_executed(after_first, execution.id) is False
    again = store.get_job(job.id)
    assert again.run_count == after_first.run_count == 1
    assert again.next_run_at == after_first.next_run_at


@pytest.mark.asyncio
async def test_store_failure_leaves_execution_open(store, cfg):
    job = _due(store, "notify", {"message": "x"})
    runner = WorkflowRunner(store, cfg)

    with patch.object(store, "finish_execution", side_effect=StoreError("disk I/O error")):
        result = await runner.run(job)

    assert not result.success
    assert "Infrastructure error" in result.error
    row = store.get_job(job.id)
    assert row.locked_until is None
    assert row.consecutive_failures == 0
    open_ex = store.find_open_execution(job.id)
    assert open_ex is not None
    assert "dispatch" in open_ex.checkpoint

    # next run resumes and finishes without sending again
    result = await runner.run(job)
    assert result.success
    assert len(_messages(store)) == 1
    assert store.find_open_execution(job.id) is None


@pytest.mark.asyncio
async def test_store_error_inside_action_is_not_a_failure(store, cfg):
    job = _due(store, "notify", {"message": "x"})

    with patch.object(store, "create_notification", side_effect=StoreError("database is locked")):
        result = await WorkflowRunner(store, cfg).run(job)

    assert result.error.startswith("Infrastructure error")
    assert store.get_job(job.id).consecutive_failures == 0
    open_ex = store.find_open_execution(job.id)
    assert "notify:message" in open_ex.checkpoint
    assert "dispatch" not in open_ex.checkpoint


@pytest.mark.asyncio
async def test_rejected_write_inside_action_counts_as_failure(store, cfg):
    job = _due(store, "notify", {"message": "x"})
    runner = WorkflowRunner(store, cfg)
    rejected = StoreDataError("FOREIGN KEY constraint failed")

    with patch.object(store, "create_notification", side_effect=rejected):
        for _ in range(cfg.scheduler.failure_threshold):
            result = await runner.run(job)
            assert not result.success
            assert "FOREIGN KEY" in result.error

    row = store.get_job(job.id)
    assert row.status == "paused"
    assert row.consecutive_failures == cfg.scheduler.failure_threshold
    assert store.find_open_execution(job.id) is None
    assert {e.status for e in store.list_executions(job.id)} == {"failed"}


@pytest.mark.asyncio
async def test_repeated_interruptions_end_in_failure(store, cfg):
    job = _due(store, "notify", {"message": "x"})
    runner = WorkflowRunner(store, cfg)
    threshold = cfg.scheduler.failure_threshold

    with patch.object(store, "create_notification", side_effect=StoreError("database is locked")):
        for _ in range(threshold):
            result = await runner.run(job)
            assert result.error.startswith("Infrastructure error")
        assert store.find_open_execution(job.id).interruptions == threshold

        result = await runner.run(job)

    assert not result.success
    assert result.error.startswith(f"Gave up after {threshold} interrupted attempts")
    assert "database is locked" in result.error
    assert store.find_open_execution(job.id) is None
    (execution,) = store.list_executions(job.id)
    assert execution.status == "failed"
    row = store.get_job(job.id)
    assert row.consecutive_failures == 1
    assert row.locked_until is None

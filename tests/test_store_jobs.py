"""Tests for agentcron.storage.store — job rows, leases, executions."""

from datetime import timedelta

import pytest

from agentcron.core.clock import to_iso, utc_now
from agentcron.core.errors import StoreDataError, StoreError
from agentcron.storage.store import Store


@pytest.fixture
def store(tmp_path):
    s = Store(str(tmp_path / "test.db"))
    s.create_agent("a1", "u1", name="Ava")
    return s


def _due(store, title="job", minutes_ago=1, **kw):
    return store.create_job(
        "a1", title, kw.pop("action_type", "notify"),
        to_iso(utc_now() - timedelta(minutes=minutes_ago)), **kw,
    )


# ── Selection ─────────────────────────────────────────────


def test_list_due_jobs_filters(store):
    due = _due(store, "due")
    store.create_job("a1", "future", "notify", to_iso(utc_now() + timedelta(hours=1)))
    paused = _due(store, "paused")
    store.pause_job(paused.id, "broken")
    cancelled = _due(store, "cancelled")
    store.cancel_job(cancelled.id)
    leased = _due(store, "leased")
    assert store.claim_lease(leased.id, 1800)

    ids = [j.id for j in store.list_due_jobs(10)]
    assert ids == [due.id]


def test_list_due_jobs_priority_then_oldest(store):
    low = _due(store, "low", priority="low")
    plain = _due(store, "plain")
    high = _due(store, "high", priority="high")
    medium = _due(store, "medium", priority="medium")

    titles = [j.title for j in store.list_due_jobs(10)]
    assert titles == ["high", "plain", "medium", "low"]
    assert [j.id for j in store.list_due_jobs(2)] == [high.id, plain.id]
    assert low.id and medium.id


def test_failed_run_state_is_selectable(store):
    job = _due(store)
    store.mark_dispatch_failed(job.id, "queue down")
    assert [j.id for j in store.list_due_jobs(5)] == [job.id]
    assert store.get_job(job.id).failure_reason == "queue down"


# ── Lease ─────────────────────────────────────────────────


def test_claim_lease_once(store):
    job = _due(store)
    now = utc_now()
    assert store.claim_lease(job.id, 1800, now) is True
    assert store.claim_lease(job.id, 1800, now) is False

    row = store.get_job(job.id)
    assert row.agent_run_state == "running"
    assert row.locked_until > to_iso(now)


def test_claim_lease_after_expiry(store):
    job = _due(store)
    now = utc_now()
    assert store.claim_lease(job.id, 60, now)
    assert not store.claim_lease(job.id, 60, now + timedelta(seconds=30))
    assert store.claim_lease(job.id, 60, now + timedelta(seconds=61))


def test_claim_lease_requires_active_and_due(store):
    future = store.create_job("a1", "later", "notify", to_iso(utc_now() + timedelta(hours=1)))
    assert not store.claim_lease(future.id, 60)

    paused = _due(store)
    store.pause_job(paused.id, "x")
    assert not store.claim_lease(paused.id, 60)


def test_recover_stale_runs(store):
    job = _due(store)
    now = utc_now()
    store.claim_lease(job.id, 60, now)
    assert store.recover_stale_runs(now) == 0
    assert store.recover_stale_runs(now + timedelta(seconds=120)) == 1
    assert store.get_job(job.id).agent_run_state == "idle"


# ── Outcome bookkeeping ───────────────────────────────────


def test_mark_job_executed_idempotent(store):
    job = _due(store)
    store.claim_lease(job.id, 60)
    assert store.mark_job_executed(job.id, "ex-1", None, complete=True) is True
    assert store.mark_job_executed(job.id, "ex-1", None, complete=True) is False

    row = store.get_job(job.id)
    assert row.status == "completed"
    assert row.run_count == 1
    assert row.next_run_at is None
    assert row.last_run_at is not None
    assert row.locked_until is None
    assert row.agent_run_state == "idle"


def test_mark_job_executed_max_runs(store):
    job = _due(store, schedule_type="cron", cron_expression="0 9 * * *", max_runs=2)
    nxt = to_iso(utc_now() + timedelta(days=1))
    store.mark_job_executed(job.id, "ex-1", nxt, complete=False)
    assert store.get_job(job.id).status == "active"
    assert store.get_job(job.id).next_run_at == nxt

    store.mark_job_executed(job.id, "ex-2", nxt, complete=False)
    row = store.get_job(job.id)
    assert row.status == "completed"
    assert row.run_count == 2
    assert row.next_run_at is None


def test_mark_job_executed_keeps_cancelled(store):
    job = _due(store)
    store.claim_lease(job.id, 60)
    store.cancel_job(job.id)
    store.mark_job_executed(job.id, "ex-1", None, complete=True)
    assert store.get_job(job.id).status == "cancelled"


def test_record_job_failure_counts_once_per_execution(store):
    job = _due(store)
    assert store.record_job_failure(job.id, "ex-1", "boom") == 1
    assert store.record_job_failure(job.id, "ex-1", "boom") == 1
    assert store.record_job_failure(job.id, "ex-2", "boom again") == 2

    row = store.get_job(job.id)
    assert row.consecutive_failures == 2
    assert row.failure_reason == "boom again"
    assert row.agent_run_state == "failed"
    assert row.next_run_at == job.next_run_at


def test_success_resets_failures(store):
    job = _due(store, schedule_type="cron", cron_expression="0 9 * * *")
    store.record_job_failure(job.id, "ex-1", "boom")
    store.mark_job_executed(job.id, "ex-2", job.next_run_at, complete=False)
    row = store.get_job(job.id)
    assert row.consecutive_failures == 0
    assert row.failure_reason is None


def test_pause_reactivate_cancel(store):
    job = _due(store)
    store.record_job_failure(job.id, "ex-1", "boom")
    assert store.pause_job(job.id, "too many failures")
    assert not store.pause_job(job.id, "again")
    assert store.get_job(job.id).status == "paused"

    assert store.reactivate_job(job.id)
    row = store.get_job(job.id)
    assert row.status == "active"
    assert row.consecutive_failures == 0
    assert row.failure_reason is None
    assert not store.reactivate_job(job.id)

    assert store.cancel_job(job.id)
    assert not store.cancel_job(job.id)
    assert store.get_job(job.id).status == "cancelled"


# ── Executions ────────────────────────────────────────────


def test_execution_lifecycle(store):
    job = _due(store)
    ex = store.create_execution(job.id, "a1")
    assert ex.status == "running"
    assert store.find_open_execution(job.id).id == ex.id

    store.save_checkpoint(ex.id, "dispatch", {"success": True, "data": {"n": 1}})
    store.save_checkpoint(ex.id, "tool:0:save_memory:abc", "Saved")
    assert store.get_execution(ex.id).checkpoint == {
        "dispatch": {"success": True, "data": {"n": 1}},
        "tool:0:save_memory:abc": "Saved",
    }

    assert store.finish_execution(ex.id, "success", result={"ok": 1})
    assert not store.finish_execution(ex.id, "failed", error="late")
    store.close_execution(ex.id)

    done = store.get_execution(ex.id)
    assert done.status == "success"
    assert done.result == {"ok": 1}
    assert done.error is None
    assert done.closed_at is not None
    assert store.find_open_execution(job.id) is None
    assert [e.id for e in store.list_executions(job.id)] == [ex.id]


def test_record_interruption_counts_open_execution(store):
    job = _due(store)
    ex = store.create_execution(job.id, "a1")
    assert ex.interruptions == 0

    assert store.record_interruption(ex.id, "database is locked") == 1
    assert store.record_interruption(ex.id, "disk I/O error") == 2
    row = store.get_execution(ex.id)
    assert row.interruptions == 2
    assert row.error == "disk I/O error"

    store.close_execution(ex.id)
    assert store.record_interruption(ex.id, "late") == 2


# ── Error classification ──────────────────────────────────


def test_constraint_violation_is_data_error(store):
    with pytest.raises(StoreDataError, match="FOREIGN KEY"):
        store.insert_message("no-such-conversation", "user", "hi")


def test_operational_error_is_plain_store_error(store):
    with pytest.raises(StoreError) as exc_info:
        with store._get_conn() as conn:
            conn.execute("SELECT * FROM no_such_table")
    assert not isinstance(exc_info.value, StoreDataError)

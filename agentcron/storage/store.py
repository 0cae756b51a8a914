"""SQLite store for agentcron.

Single source of truth for scheduled jobs and everything their actions
touch.  Tables:
    agents, user_profiles, conversations, messages, notifications,
    tasks, comments, memories, activity_log,
    scheduled_jobs, job_executions
"""

from __future__ import annotations

import hashlib
import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from loguru import logger

from agentcron.core.clock import iso_after, to_iso, utc_now
from agentcron.core.errors import StoreDataError, StoreError
from agentcron.core.jobs.types import JobExecution, ScheduledJob


def _new_id() -> str:
    return str(uuid.uuid4())


def _now_iso(now: datetime | None = None) -> str:
    return to_iso(now or utc_now())


class Store:
    """SQLite store — jobs, executions, conversations, notifications, tasks."""

    def __init__(self, db_path: str = "data/agentcron.db"):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        logger.info(f"Store initialized: {db_path}")

    @contextmanager
    def _get_conn(self):
        try:
            conn = sqlite3.connect(self.db_path, timeout=10)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys=ON")
            yield conn
        except sqlite3.OperationalError as e:
            raise StoreError(str(e)) from e
        except sqlite3.Error as e:
            raise StoreDataError(str(e)) from e
        finally:
            conn.close()

    def _init_db(self):
        with self._get_conn() as conn:
            conn.executescript(_SCHEMA)
            self._migrate(conn)
            conn.commit()

    def _migrate(self, conn) -> None:
        """Add columns missing in existing databases."""
        job_cols = {
            row[1] for row in conn.execute("PRAGMA table_info(scheduled_jobs)").fetchall()
        }
        for col, ddl in [
            ("priority", "TEXT"),
            ("max_runs", "INTEGER"),
            ("last_execution_id", "TEXT"),
            ("last_failed_execution_id", "TEXT"),
        ]:
            if col not in job_cols:
                conn.execute(f"ALTER TABLE scheduled_jobs ADD COLUMN {col} {ddl}")

        execution_cols = {
            row[1] for row in conn.execute("PRAGMA table_info(job_executions)").fetchall()
        }
        if "interruptions" not in execution_cols:
            conn.execute("ALTER TABLE job_executions ADD COLUMN interruptions INTEGER DEFAULT 0")

    # ════════════════════════════════════════════════════════════
    # AGENTS + PROFILES
    # ════════════════════════════════════════════════════════════

    def create_agent(
        self,
        agent_id: str,
        user_id: str,
        name: str = "Assistant",
        system_prompt: str | None = None,
    ) -> str:
        with self._get_conn() as conn:
            conn.execute(
                """INSERT OR IGNORE INTO agents (id, user_id, name, system_prompt, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (agent_id, user_id, name, system_prompt, _now_iso()),
            )
            conn.commit()
        return agent_id

    def get_agent(self, agent_id: str) -> dict[str, Any] | None:
        with self._get_conn() as conn:
            row = conn.execute("SELECT * FROM agents WHERE id = ?", (agent_id,)).fetchone()
        return dict(row) if row else None

    def upsert_user_profile(
        self,
        user_id: str,
        name: str | None = None,
        timezone: str | None = None,
        email: str | None = None,
    ) -> None:
        with self._get_conn() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO user_profiles (user_id, name, timezone, email)
                   VALUES (?, ?, ?, ?)""",
                (user_id, name, timezone, email),
            )
            conn.commit()

    def get_user_profile(self, user_id: str) -> dict[str, Any] | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM user_profiles WHERE user_id = ?", (user_id,)
            ).fetchone()
        return dict(row) if row else None

    # ════════════════════════════════════════════════════════════
    # CONVERSATIONS + MESSAGES
    # ════════════════════════════════════════════════════════════

    def create_conversation(
        self, agent_id: str, title: str, channel_type: str = "app"
    ) -> str:
        conversation_id = _new_id()
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO conversations (id, agent_id, channel_type, status, title, created_at)
                   VALUES (?, ?, ?, 'active', ?, ?)""",
                (conversation_id, agent_id, channel_type, title, _now_iso()),
            )
            conn.commit()
        logger.debug(f"Conversation created: {conversation_id} for agent {agent_id}")
        return conversation_id

    def find_or_create_active_conversation(
        self, agent_id: str, title: str = "Notifications"
    ) -> str:
        """Newest active conversation of the agent, or a fresh one."""
        with self._get_conn() as conn:
            row = conn.execute(
                """SELECT id FROM conversations
                   WHERE agent_id = ? AND status = 'active'
                   ORDER BY created_at DESC LIMIT 1""",
                (agent_id,),
            ).fetchone()
        if row:
            return row["id"]
        return self.create_conversation(agent_id, title)

    def get_conversation(self, conversation_id: str) -> dict[str, Any] | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
        return dict(row) if row else None

    def insert_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        message_id = _new_id()
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO messages (id, conversation_id, role, content, metadata, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    message_id,
                    conversation_id,
                    role,
                    content,
                    json.dumps(metadata or {}, ensure_ascii=False),
                    _now_iso(),
                ),
            )
            conn.commit()
        return message_id

    def get_messages(self, conversation_id: str) -> list[dict[str, Any]]:
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT * FROM messages WHERE conversation_id = ?
                   ORDER BY created_at""",
                (conversation_id,),
            ).fetchall()
        result = []
        for r in rows:
            msg = dict(r)
            msg["metadata"] = json.loads(msg["metadata"] or "{}")
            result.append(msg)
        return result

    # ════════════════════════════════════════════════════════════
    # NOTIFICATIONS
    # ════════════════════════════════════════════════════════════

    def create_notification(
        self,
        agent_id: str,
        type: str,
        title: str,
        content: str | None = None,
        link_type: str | None = None,
        link_id: str | None = None,
    ) -> str:
        notification_id = _new_id()
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO notifications
                   (id, agent_id, type, title, content, link_type, link_id, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (notification_id, agent_id, type, title, content, link_type, link_id, _now_iso()),
            )
            conn.commit()
        return notification_id

    def list_notifications(
        self, agent_id: str, unread_only: bool = False
    ) -> list[dict[str, Any]]:
        query = "SELECT * FROM notifications WHERE agent_id = ?"
        if unread_only:
            query += " AND read = 0"
        query += " ORDER BY created_at DESC"
        with self._get_conn() as conn:
            rows = conn.execute(query, (agent_id,)).fetchall()
        return [dict(r) for r in rows]

    # ════════════════════════════════════════════════════════════
    # TASKS + COMMENTS
    # ════════════════════════════════════════════════════════════

    def create_task(
        self,
        agent_id: str,
        title: str,
        description: str | None = None,
        priority: str = "medium",
        assignee_type: str | None = None,
        assignee_id: str | None = None,
        due_date: str | None = None,
        project_id: str | None = None,
    ) -> tuple[dict[str, Any], bool]:
        """Create a task; returns (task, created).

        Keyed by (agent, title, description): repeating the same call
        returns the existing row with ``created=False``.
        """
        dedupe_key = hashlib.sha256(
            f"{title}\0{description or ''}".encode()
        ).hexdigest()
        now = _now_iso()
        with self._get_conn() as conn:
            cursor = conn.execute(
                """INSERT OR IGNORE INTO tasks
                   (id, agent_id, title, description, status, priority, assignee_type,
                    assignee_id, due_date, project_id, dedupe_key, created_at, updated_at)
                   VALUES (?, ?, ?, ?, 'todo', ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    _new_id(), agent_id, title, description, priority, assignee_type,
                    assignee_id, due_date, project_id, dedupe_key, now, now,
                ),
            )
            created = cursor.rowcount > 0
            conn.commit()
            row = conn.execute(
                "SELECT * FROM tasks WHERE agent_id = ? AND dedupe_key = ?",
                (agent_id, dedupe_key),
            ).fetchone()
        return dict(row), created

    def get_task(self, task_id: str, agent_id: str | None = None) -> dict[str, Any] | None:
        with self._get_conn() as conn:
            if agent_id:
                row = conn.execute(
                    "SELECT * FROM tasks WHERE id = ? AND agent_id = ?", (task_id, agent_id)
                ).fetchone()
            else:
                row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return dict(row) if row else None

    def update_task(
        self, task_id: str, agent_id: str, **fields: Any
    ) -> dict[str, Any] | None:
        """Update whitelisted task columns. Returns the updated row or None."""
        allowed = {"title", "description", "status", "priority", "due_date"}
        updates = {k: v for k, v in fields.items() if k in allowed and v is not None}
        if updates.get("status") == "done":
            updates["completed_at"] = _now_iso()
        if updates:
            updates["updated_at"] = _now_iso()
            assignments = ", ".join(f"{k} = ?" for k in updates)
            with self._get_conn() as conn:
                conn.execute(
                    f"UPDATE tasks SET {assignments} WHERE id = ? AND agent_id = ?",
                    (*updates.values(), task_id, agent_id),
                )
                conn.commit()
        return self.get_task(task_id, agent_id)

    def list_tasks(
        self, agent_id: str, status: str | None = None, limit: int = 20
    ) -> list[dict[str, Any]]:
        with self._get_conn() as conn:
            if status:
                rows = conn.execute(
                    """SELECT id, title, status, priority, due_date, created_at FROM tasks
                       WHERE agent_id = ? AND status = ?
                       ORDER BY created_at DESC LIMIT ?""",
                    (agent_id, status, limit),
                ).fetchall()
            else:
                rows = conn.execute(
                    """SELECT id, title, status, priority, due_date, created_at FROM tasks
                       WHERE agent_id = ? ORDER BY created_at DESC LIMIT ?""",
                    (agent_id, limit),
                ).fetchall()
        return [dict(r) for r in rows]

    def add_comment(
        self,
        task_id: str,
        author_id: str,
        content: str,
        author_type: str = "agent",
        comment_type: str = "progress",
    ) -> str:
        comment_id = _new_id()
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO comments
                   (id, task_id, author_type, author_id, content, comment_type, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (comment_id, task_id, author_type, author_id, content, comment_type, _now_iso()),
            )
            conn.commit()
        return comment_id

    def get_comments(self, task_id: str) -> list[dict[str, Any]]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM comments WHERE task_id = ? ORDER BY created_at", (task_id,)
            ).fetchall()
        return [dict(r) for r in rows]

    # ════════════════════════════════════════════════════════════
    # MEMORIES (plain substring search)
    # ════════════════════════════════════════════════════════════

    def save_memory(
        self, agent_id: str, title: str, content: str, category: str = "note"
    ) -> str:
        memory_id = _new_id()
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO memories (id, agent_id, title, content, category, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (memory_id, agent_id, title, content, category, _now_iso()),
            )
            conn.commit()
        return memory_id

    def search_memory(
        self, agent_id: str, query: str, limit: int = 10
    ) -> list[dict[str, Any]]:
        pattern = f"%{query}%"
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT id, title, content, category, created_at FROM memories
                   WHERE agent_id = ? AND (title LIKE ? OR content LIKE ?)
                   ORDER BY created_at DESC LIMIT ?""",
                (agent_id, pattern, pattern, limit),
            ).fetchall()
        return [dict(r) for r in rows]

    # ════════════════════════════════════════════════════════════
    # ACTIVITY LOG
    # ════════════════════════════════════════════════════════════

    def log_activity(
        self,
        agent_id: str,
        activity_type: str,
        title: str,
        source: str = "cron",
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
        conversation_id: str | None = None,
        job_id: str | None = None,
        task_id: str | None = None,
        status: str | None = None,
    ) -> int:
        with self._get_conn() as conn:
            cursor = conn.execute(
                """INSERT INTO activity_log
                   (agent_id, activity_type, source, title, description, metadata,
                    conversation_id, job_id, task_id, status, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    agent_id, activity_type, source, title, description,
                    json.dumps(metadata or {}, ensure_ascii=False),
                    conversation_id, job_id, task_id, status, _now_iso(),
                ),
            )
            conn.commit()
        return cursor.lastrowid

    def get_activity(self, agent_id: str, limit: int = 50) -> list[dict[str, Any]]:
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT * FROM activity_log WHERE agent_id = ?
                   ORDER BY id DESC LIMIT ?""",
                (agent_id, limit),
            ).fetchall()
        return [dict(r) for r in rows]

    # ════════════════════════════════════════════════════════════
    # SCHEDULED JOBS
    # ════════════════════════════════════════════════════════════

    def create_job(
        self,
        agent_id: str,
        title: str,
        action_type: str,
        next_run_at: str | None,
        *,
        job_type: str = "one_time",
        schedule_type: str = "once",
        action_payload: dict[str, Any] | None = None,
        description: str | None = None,
        run_at: str | None = None,
        cron_expression: str | None = None,
        timezone: str = "UTC",
        task_id: str | None = None,
        project_id: str | None = None,
        conversation_id: str | None = None,
        priority: str | None = None,
        max_runs: int | None = None,
        job_id: str | None = None,
    ) -> ScheduledJob:
        job_id = job_id or _new_id()
        now = _now_iso()
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO scheduled_jobs
                   (id, agent_id, title, description, job_type, action_type, action_payload,
                    schedule_type, run_at, cron_expression, next_run_at, timezone,
                    task_id, project_id, conversation_id, priority, max_runs,
                    created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    job_id, agent_id, title, description, job_type, action_type,
                    json.dumps(action_payload or {}, ensure_ascii=False),
                    schedule_type, run_at, cron_expression, next_run_at, timezone,
                    task_id, project_id, conversation_id, priority, max_runs, now, now,
                ),
            )
            conn.commit()
        logger.info(f"Scheduled job created: {job_id} ({action_type}, next={next_run_at})")
        return self.get_job(job_id)

    def get_job(self, job_id: str) -> ScheduledJob | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM scheduled_jobs WHERE id = ?", (job_id,)
            ).fetchone()
        return _row_to_job(row) if row else None

    def list_jobs(
        self, agent_id: str | None = None, status: str | None = None
    ) -> list[ScheduledJob]:
        clauses, params = [], []
        if agent_id:
            clauses.append("agent_id = ?")
            params.append(agent_id)
        if status:
            clauses.append("status = ?")
            params.append(status)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._get_conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM scheduled_jobs {where} ORDER BY created_at", params
            ).fetchall()
        return [_row_to_job(r) for r in rows]

    def list_due_jobs(self, limit: int = 5, now: datetime | None = None) -> list[ScheduledJob]:
        """Active, due, not running, not leased — high priority first, then oldest."""
        ts = _now_iso(now)
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT * FROM scheduled_jobs
                   WHERE status = 'active'
                     AND next_run_at IS NOT NULL AND next_run_at <= ?
                     AND COALESCE(agent_run_state, 'idle') != 'running'
                     AND (locked_until IS NULL OR locked_until < ?)
                   ORDER BY CASE priority
                              WHEN 'high' THEN 0
                              WHEN 'medium' THEN 1
                              WHEN 'low' THEN 2
                              ELSE 1
                            END,
                            created_at ASC
                   LIMIT ?""",
                (ts, ts, limit),
            ).fetchall()
        return [_row_to_job(r) for r in rows]

    def claim_lease(
        self, job_id: str, lease_seconds: int, now: datetime | None = None
    ) -> bool:
        """Atomically lease a job for execution. False if someone else holds it.

        Eligibility (active, due, lease free) and acquisition are one
        conditional UPDATE, so two racing claimers cannot both win.
        """
        now = now or utc_now()
        ts = _now_iso(now)
        with self._get_conn() as conn:
            cursor = conn.execute(
                """UPDATE scheduled_jobs
                   SET locked_until = ?, last_lock_at = ?, agent_run_state = 'running',
                       updated_at = ?
                   WHERE id = ? AND status = 'active'
                     AND next_run_at IS NOT NULL AND next_run_at <= ?
                     AND (locked_until IS NULL OR locked_until < ?)""",
                (iso_after(lease_seconds, now), ts, ts, job_id, ts, ts),
            )
            conn.commit()
        return cursor.rowcount == 1

    def release_lease(self, job_id: str, agent_run_state: str = "idle") -> None:
        with self._get_conn() as conn:
            conn.execute(
                """UPDATE scheduled_jobs
                   SET locked_until = NULL, agent_run_state = ?, updated_at = ?
                   WHERE id = ?""",
                (agent_run_state, _now_iso(), job_id),
            )
            conn.commit()

    def recover_stale_runs(self, now: datetime | None = None) -> int:
        """Reset 'running' jobs whose lease expired (crashed runner). Returns count."""
        ts = _now_iso(now)
        with self._get_conn() as conn:
            cursor = conn.execute(
                """UPDATE scheduled_jobs
                   SET agent_run_state = 'idle', updated_at = ?
                   WHERE agent_run_state = 'running'
                     AND (locked_until IS NULL OR locked_until < ?)""",
                (ts, ts),
            )
            conn.commit()
        if cursor.rowcount:
            logger.warning(f"Recovered {cursor.rowcount} stale job run(s)")
        return cursor.rowcount

    def mark_job_executed(
        self,
        job_id: str,
        execution_id: str,
        next_run_at: str | None,
        complete: bool,
        now: datetime | None = None,
    ) -> bool:
        """Record a successful execution. No-op if already applied for execution_id.

        ``complete`` finishes the job (once jobs); a cron job also completes
        when it reaches ``max_runs``. Non-active jobs keep their status.
        """
        ts = _now_iso(now)
        with self._get_conn() as conn:
            cursor = conn.execute(
                """UPDATE scheduled_jobs
                   SET run_count = run_count + 1,
                       last_run_at = :ts,
                       consecutive_failures = 0,
                       failure_reason = NULL,
                       status = CASE
                           WHEN status != 'active' THEN status
                           WHEN :complete OR (max_runs IS NOT NULL AND run_count + 1 >= max_runs)
                               THEN 'completed'
                           ELSE status
                       END,
                       next_run_at = CASE
                           WHEN :complete OR (max_runs IS NOT NULL AND run_count + 1 >= max_runs)
                               THEN NULL
                           ELSE :next_run_at
                       END,
                       last_execution_id = :execution_id,
                       locked_until = NULL,
                       agent_run_state = 'idle',
                       updated_at = :ts
                   WHERE id = :job_id
                     AND (last_execution_id IS NULL OR last_execution_id != :execution_id)""",
                {
                    "ts": ts,
                    "complete": 1 if complete else 0,
                    "next_run_at": next_run_at,
                    "execution_id": execution_id,
                    "job_id": job_id,
                },
            )
            conn.commit()
        return cursor.rowcount == 1

    def record_job_failure(
        self,
        job_id: str,
        execution_id: str,
        error: str,
        next_run_at: str | None = None,
        now: datetime | None = None,
    ) -> int:
        """Increment consecutive_failures once per execution. Returns the counter.

        ``next_run_at`` (cron jobs) moves the job to its next slot;
        None keeps the current due time.
        """
        ts = _now_iso(now)
        with self._get_conn() as conn:
            conn.execute(
                """UPDATE scheduled_jobs
                   SET consecutive_failures = COALESCE(consecutive_failures, 0) + 1,
                       failure_reason = :error,
                       last_failed_execution_id = :execution_id,
                       next_run_at = COALESCE(:next_run_at, next_run_at),
                       locked_until = NULL,
                       agent_run_state = 'failed',
                       updated_at = :ts
                   WHERE id = :job_id
                     AND (last_failed_execution_id IS NULL
                          OR last_failed_execution_id != :execution_id)""",
                {
                    "error": error,
                    "execution_id": execution_id,
                    "next_run_at": next_run_at,
                    "ts": ts,
                    "job_id": job_id,
                },
            )
            row = conn.execute(
                "SELECT consecutive_failures FROM scheduled_jobs WHERE id = ?", (job_id,)
            ).fetchone()
            conn.commit()
        return row["consecutive_failures"] if row else 0

    def pause_job(self, job_id: str, reason: str) -> bool:
        with self._get_conn() as conn:
            cursor = conn.execute(
                """UPDATE scheduled_jobs
                   SET status = 'paused', failure_reason = ?, locked_until = NULL, updated_at = ?
                   WHERE id = ? AND status = 'active'""",
                (reason, _now_iso(), job_id),
            )
            conn.commit()
        return cursor.rowcount > 0

    def reactivate_job(self, job_id: str, next_run_at: str | None = None) -> bool:
        """paused → active, failure counter reset. False if the job was not paused."""
        with self._get_conn() as conn:
            cursor = conn.execute(
                """UPDATE scheduled_jobs
                   SET status = 'active', consecutive_failures = 0, failure_reason = NULL,
                       agent_run_state = 'idle', locked_until = NULL,
                       next_run_at = COALESCE(?, next_run_at), updated_at = ?
                   WHERE id = ? AND status = 'paused'""",
                (next_run_at, _now_iso(), job_id),
            )
            conn.commit()
        return cursor.rowcount > 0

    def cancel_job(self, job_id: str) -> bool:
        with self._get_conn() as conn:
            cursor = conn.execute(
                """UPDATE scheduled_jobs SET status = 'cancelled', updated_at = ?
                   WHERE id = ? AND status IN ('active', 'paused')""",
                (_now_iso(), job_id),
            )
            conn.commit()
        return cursor.rowcount > 0

    def mark_dispatch_failed(self, job_id: str, reason: str) -> None:
        with self._get_conn() as conn:
            conn.execute(
                """UPDATE scheduled_jobs
                   SET agent_run_state = 'failed', failure_reason = ?, updated_at = ?
                   WHERE id = ?""",
                (reason, _now_iso(), job_id),
            )
            conn.commit()

    # ════════════════════════════════════════════════════════════
    # JOB EXECUTIONS (audit trail + step checkpoints)
    # ════════════════════════════════════════════════════════════

    def create_execution(
        self, job_id: str, agent_id: str, now: datetime | None = None
    ) -> JobExecution:
        execution_id = _new_id()
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO job_executions (id, job_id, agent_id, status, checkpoint, started_at)
                   VALUES (?, ?, ?, 'running', '{}', ?)""",
                (execution_id, job_id, agent_id, _now_iso(now)),
            )
            conn.commit()
        return self.get_execution(execution_id)

    def get_execution(self, execution_id: str) -> JobExecution | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM job_executions WHERE id = ?", (execution_id,)
            ).fetchone()
        return _row_to_execution(row) if row else None

    def find_open_execution(self, job_id: str) -> JobExecution | None:
        """Latest execution of the job that was never closed (crashed mid-way)."""
        with self._get_conn() as conn:
            row = conn.execute(
                """SELECT * FROM job_executions
                   WHERE job_id = ? AND closed_at IS NULL
                   ORDER BY started_at DESC LIMIT 1""",
                (job_id,),
            ).fetchone()
        return _row_to_execution(row) if row else None

    def save_checkpoint(self, execution_id: str, step: str, output: Any) -> None:
        """Persist one step output into the execution's checkpoint map."""
        with self._get_conn() as conn:
            conn.execute(
                """UPDATE job_executions
                   SET checkpoint = json_set(COALESCE(checkpoint, '{}'), ?, json(?))
                   WHERE id = ?""",
                (
                    '$."' + step.replace('"', "") + '"',
                    json.dumps(output, ensure_ascii=False, default=str),
                    execution_id,
                ),
            )
            conn.commit()

    def finish_execution(
        self,
        execution_id: str,
        status: str,
        result: Any = None,
        error: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """running → success|failed, exactly once."""
        with self._get_conn() as conn:
            cursor = conn.execute(
                """UPDATE job_executions
                   SET status = ?, result = ?, error = ?, completed_at = ?
                   WHERE id = ? AND status = 'running'""",
                (
                    status,
                    json.dumps(result, ensure_ascii=False, default=str) if result is not None else None,
                    error,
                    _now_iso(now),
                    execution_id,
                ),
            )
            conn.commit()
        return cursor.rowcount == 1

    def close_execution(self, execution_id: str, now: datetime | None = None) -> None:
        with self._get_conn() as conn:
            conn.execute(
                "UPDATE job_executions SET closed_at = ? WHERE id = ? AND closed_at IS NULL",
                (_now_iso(now), execution_id),
            )
            conn.commit()

    def record_interruption(self, execution_id: str, error: str) -> int:
        """Count one infrastructure interruption of an open execution; returns the new total."""
        with self._get_conn() as conn:
            conn.execute(
                """UPDATE job_executions
                   SET interruptions = COALESCE(interruptions, 0) + 1, error = ?
                   WHERE id = ? AND closed_at IS NULL""",
                (error, execution_id),
            )
            conn.commit()
            row = conn.execute(
                "SELECT interruptions FROM job_executions WHERE id = ?", (execution_id,)
            ).fetchone()
        return row["interruptions"] if row else 0

    def list_executions(self, job_id: str, limit: int = 20) -> list[JobExecution]:
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT * FROM job_executions WHERE job_id = ?
                   ORDER BY started_at DESC LIMIT ?""",
                (job_id, limit),
            ).fetchall()
        return [_row_to_execution(r) for r in rows]


# ════════════════════════════════════════════════════════════
# ROW MAPPERS
# ════════════════════════════════════════════════════════════


def _row_to_job(row: sqlite3.Row) -> ScheduledJob:
    data = dict(row)
    data["action_payload"] = json.loads(data.get("action_payload") or "{}")
    data["consecutive_failures"] = data.get("consecutive_failures") or 0
    data["run_count"] = data.get("run_count") or 0
    data["timezone"] = data.get("timezone") or "UTC"
    data["agent_run_state"] = data.get("agent_run_state") or "idle"
    return ScheduledJob(**data)


def _row_to_execution(row: sqlite3.Row) -> JobExecution:
    data = dict(row)
    data["checkpoint"] = json.loads(data.get("checkpoint") or "{}")
    if data.get("result") is not None:
        data["result"] = json.loads(data["result"])
    return JobExecution(**data)


# ════════════════════════════════════════════════════════════
# SCHEMA
# ════════════════════════════════════════════════════════════

_SCHEMA = """
-- 1. Agents + owners' profiles
CREATE TABLE IF NOT EXISTS agents (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL DEFAULT 'Assistant',
    system_prompt TEXT,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS user_profiles (
    user_id TEXT PRIMARY KEY,
    name TEXT,
    timezone TEXT,
    email TEXT
);

-- 2. Conversations + messages
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL,
    channel_type TEXT DEFAULT 'app',
    status TEXT DEFAULT 'active',
    title TEXT,
    created_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_conversations_agent ON conversations(agent_id, status, created_at DESC);

CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL,
    role TEXT NOT NULL,
    content TEXT,
    metadata TEXT DEFAULT '{}',
    created_at TEXT,
    FOREIGN KEY (conversation_id) REFERENCES conversations(id)
);
CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, created_at);

-- 3. Notifications
CREATE TABLE IF NOT EXISTS notifications (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL,
    type TEXT NOT NULL,
    title TEXT NOT NULL,
    content TEXT,
    link_type TEXT,
    link_id TEXT,
    read INTEGER DEFAULT 0,
    created_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_notifications_agent ON notifications(agent_id, created_at DESC);

-- 4. Tasks + comments
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    status TEXT DEFAULT 'todo',
    priority TEXT DEFAULT 'medium',
    assignee_type TEXT,
    assignee_id TEXT,
    due_date TEXT,
    project_id TEXT,
    dedupe_key TEXT,
    completed_at TEXT,
    created_at TEXT,
    updated_at TEXT,
    UNIQUE(agent_id, dedupe_key)
);

CREATE TABLE IF NOT EXISTS comments (
    id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL,
    author_type TEXT DEFAULT 'agent',
    author_id TEXT,
    content TEXT NOT NULL,
    comment_type TEXT DEFAULT 'progress',
    created_at TEXT,
    FOREIGN KEY (task_id) REFERENCES tasks(id)
);

-- 5. Memories
CREATE TABLE IF NOT EXISTS memories (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    category TEXT DEFAULT 'note',
    created_at TEXT
);

-- 6. Activity log
CREATE TABLE IF NOT EXISTS activity_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    agent_id TEXT NOT NULL,
    activity_type TEXT NOT NULL,
    source TEXT,
    title TEXT NOT NULL,
    description TEXT,
    metadata TEXT DEFAULT '{}',
    conversation_id TEXT,
    job_id TEXT,
    task_id TEXT,
    status TEXT,
    created_at TEXT
);

-- 7. Scheduled jobs
CREATE TABLE IF NOT EXISTS scheduled_jobs (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    job_type TEXT NOT NULL DEFAULT 'one_time',
    action_type TEXT NOT NULL,
    action_payload TEXT DEFAULT '{}',
    schedule_type TEXT NOT NULL DEFAULT 'once',
    run_at TEXT,
    cron_expression TEXT,
    next_run_at TEXT,
    timezone TEXT DEFAULT 'UTC',
    status TEXT DEFAULT 'active',
    agent_run_state TEXT DEFAULT 'idle',
    locked_until TEXT,
    last_lock_at TEXT,
    consecutive_failures INTEGER DEFAULT 0,
    failure_reason TEXT,
    task_id TEXT,
    project_id TEXT,
    conversation_id TEXT,
    priority TEXT,
    run_count INTEGER DEFAULT 0,
    max_runs INTEGER,
    last_run_at TEXT,
    last_execution_id TEXT,
    last_failed_execution_id TEXT,
    created_at TEXT,
    updated_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_jobs_due ON scheduled_jobs(status, next_run_at);

-- 8. Job executions
CREATE TABLE IF NOT EXISTS job_executions (
    id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL,
    agent_id TEXT NOT NULL,
    status TEXT DEFAULT 'running',
    result TEXT,
    error TEXT,
    checkpoint TEXT DEFAULT '{}',
    interruptions INTEGER DEFAULT 0,
    started_at TEXT,
    completed_at TEXT,
    closed_at TEXT,
    FOREIGN KEY (job_id) REFERENCES scheduled_jobs(id)
);
CREATE INDEX IF NOT EXISTS idx_executions_job ON job_executions(job_id, started_at DESC);
"""

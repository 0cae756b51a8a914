"""Next-run computation for once/cron schedules (APScheduler triggers)."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.cron import CronTrigger

from agentcron.core.clock import parse_iso, to_iso, utc_now
from agentcron.core.errors import ScheduleError
from agentcron.core.jobs.types import ScheduledJob

if TYPE_CHECKING:
    from agentcron.storage.store import Store

# crontab numbering: 0 and 7 are Sunday
_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


def validate_timezone(tz: str) -> str:
    try:
        ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ScheduleError(f"Unknown timezone: {tz}") from e
    return tz


def _weekday_number(token: str) -> int:
    if token in _WEEKDAYS:
        return _WEEKDAYS.index(token)
    value = int(token)
    if not 0 <= value <= 7:
        raise ValueError(f"day of week {value} out of range 0-7")
    return value


def crontab_day_of_week(field: str) -> str:
    """Translate a crontab day-of-week field into APScheduler weekday names.

    APScheduler counts weekdays from Monday (``0 = mon``) while crontab counts
    from Sunday, so numbers are rewritten as names.  Lists, ranges and steps
    are expanded; ``*`` passes through.
    """
    if field == "*":
        return field
    days: set[int] = set()
    for part in field.lower().split(","):
        spec, _, step_text = part.partition("/")
        step = int(step_text) if step_text else 1
        if step < 1:
            raise ValueError(f"invalid step in '{part}'")
        if spec == "*":
            start, end = 0, 6
        elif "-" in spec:
            lo, hi = spec.split("-", 1)
            start, end = _weekday_number(lo), _weekday_number(hi)
            if end == 0:
                end = 7
            if start > end:
                raise ValueError(f"invalid range '{spec}'")
        else:
            start = _weekday_number(spec)
            end = 7 if step_text else start
        days.update(d % 7 for d in range(start, end + 1, step))
    return ",".join(_WEEKDAYS[d] for d in sorted(days))


def next_cron_run(cron_expression: str, tz: str, after: datetime) -> datetime:
    """Return the first occurrence of ``cron_expression`` strictly after ``after``.

    Parameters
    ----------
    cron_expression : str
        Standard 5-field crontab string, e.g. ``'0 9 * * 1'`` (Mondays 09:00).
    tz : str
        IANA timezone the expression is evaluated in.
    after : datetime
        Aware (or naive UTC) reference instant.
    """
    validate_timezone(tz)
    fields = cron_expression.split()
    if len(fields) != 5:
        raise ScheduleError(
            f"Invalid cron expression '{cron_expression}': expected 5 fields, got {len(fields)}"
        )
    minute, hour, day, month, day_of_week = fields
    try:
        trigger = CronTrigger(
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=crontab_day_of_week(day_of_week),
            timezone=tz,
        )
    except ValueError as e:
        raise ScheduleError(f"Invalid cron expression '{cron_expression}': {e}") from e

    reference = parse_iso(to_iso(after)) + timedelta(microseconds=1)
    fire = trigger.get_next_fire_time(None, reference)
    if fire is None:
        raise ScheduleError(f"Cron expression '{cron_expression}' never fires")
    return parse_iso(to_iso(fire))


def initial_next_run(
    run_at: str | None,
    cron_expression: str | None,
    tz: str = "UTC",
    now: datetime | None = None,
) -> tuple[str, str]:
    """Resolve (schedule_type, next_run_at) for a new job.

    Exactly one of ``run_at`` (one-time) or ``cron_expression`` (recurring)
    must be given. A ``run_at`` without offset is treated as UTC.
    """
    if not run_at and not cron_expression:
        raise ScheduleError(
            "Must provide either 'run_at' for one-time or 'cron_expression' for recurring jobs"
        )
    if run_at and cron_expression:
        raise ScheduleError(
            "Provide only one: 'run_at' for one-time OR 'cron_expression' for recurring"
        )

    if run_at:
        try:
            return "once", to_iso(parse_iso(run_at))
        except ValueError as e:
            raise ScheduleError(
                f"Invalid datetime format: {run_at}. Use UTC ISO format like '2026-01-31T20:00:00Z'"
            ) from e

    return "cron", to_iso(next_cron_run(cron_expression, tz, now or utc_now()))


def advance(job: ScheduledJob, now: datetime | None = None) -> str | None:
    """Next due timestamp after an execution; None for once jobs.

    Cron jobs always move strictly past their previous ``next_run_at``,
    also when the execution ran late.
    """
    if not job.is_recurring or not job.cron_expression:
        return None
    now = now or utc_now()
    reference = now
    if job.next_run_at:
        reference = max(now, parse_iso(job.next_run_at))
    return to_iso(next_cron_run(job.cron_expression, job.timezone or "UTC", reference))


def schedule_job(
    store: Store,
    agent_id: str,
    title: str,
    action_type: str,
    action_payload: dict,
    run_at: str | None = None,
    cron_expression: str | None = None,
    timezone: str = "UTC",
    description: str | None = None,
    **fields,
) -> ScheduledJob:
    """Validate the schedule and persist a new active job.

    ``job_type`` is derived from the schedule (``recurring`` for cron,
    ``one_time`` otherwise) unless passed explicitly in ``fields``.
    """
    validate_timezone(timezone)
    schedule_type, next_run_at = initial_next_run(run_at, cron_expression, timezone)
    fields.setdefault("job_type", "recurring" if schedule_type == "cron" else "one_time")
    return store.create_job(
        agent_id,
        title,
        action_type,
        next_run_at,
        schedule_type=schedule_type,
        action_payload=action_payload,
        description=description,
        run_at=next_run_at if schedule_type == "once" else None,
        cron_expression=cron_expression,
        timezone=timezone,
        **fields,
    )

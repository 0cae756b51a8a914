"""UTC timestamp helpers.

Every timestamp in the store is written by ``to_iso`` so rows compare
correctly as plain strings (``locked_until < ?``, ``next_run_at <= ?``).
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Fixed-width UTC ISO string. Naive datetimes are taken as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_iso(value: str) -> datetime:
    """Parse an ISO string (``Z`` suffix accepted) into an aware UTC datetime."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def iso_after(seconds: float, now: datetime | None = None) -> str:
    return to_iso((now or utc_now()) + timedelta(seconds=seconds))

"""UTC helpers shared by models and services."""

from __future__ import annotations

from datetime import date, datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive values read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_date_key(value: datetime | None = None) -> date:
    """Calendar date in UTC (backlog snapshot key)."""
    return as_utc(value or utc_now()).date()


def epoch_millis(value: datetime | None = None) -> int:
    return int(as_utc(value or utc_now()).timestamp() * 1000)

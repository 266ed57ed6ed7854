"""Shared timestamp normalization helpers."""
from __future__ import annotations

from datetime import datetime, timezone


def format_datetime_utc(value: datetime) -> str:
    """Render like JavaScript's toISOString: millisecond precision, ``Z`` suffix.

    Session logs use this exact fixed-width shape, so strings produced here sort
    correctly against timestamps read from the logs.
    """
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    return format_datetime_utc(datetime.now(timezone.utc))


def epoch_ms_to_datetime(value: float) -> datetime:
    return datetime.fromtimestamp(float(value) / 1000.0, timezone.utc)


def epoch_ms_to_iso(value: float | None) -> str:
    if not value:
        return ""
    try:
        return format_datetime_utc(epoch_ms_to_datetime(value))
    except (OverflowError, OSError, ValueError):
        return ""


def day_of(value: str) -> str:
    """Calendar day of an ISO timestamp: everything before the ``T``."""
    return (value or "").split("T", 1)[0]


def file_mtime_datetime(mtime: float) -> datetime:
    return datetime.fromtimestamp(float(mtime), timezone.utc)

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_date(value) -> Optional[date]:
    """
    Parse a business date.

    - None / "" -> None
    - date -> returned as-is (datetime is truncated to its date)
    - "YYYY-MM-DD" or a full ISO-8601 datetime string -> its calendar date

    Raises ValueError on malformed strings.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    s = str(value).strip()
    if not s:
        return None

    # Accept "2024-03-10T08:00:00.000Z" style timestamps from upstream feeds
    if len(s) > 10:
        s = s[:10]
    return date.fromisoformat(s)


def previous_day(value: date) -> date:
    """Calendar day before `value`, computed from UTC midnight."""
    anchored = datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    return (anchored - timedelta(days=1)).date()


def to_iso_date(value: Optional[date]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")

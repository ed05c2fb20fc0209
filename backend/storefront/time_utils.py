from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional

from .errors import ValidationError


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    # Normalize to UTC-naive
    if dt.tzinfo is None:
        # interpret naive as UTC
        return dt.replace(tzinfo=None)

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


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


def compact_date(d: date) -> str:
    """YYYYMMDD, as used in order identifiers."""
    return d.strftime("%Y%m%d")


def sunday_based_weekday(d: date) -> int:
    """Day-of-week index with Sunday=0 ... Saturday=6."""
    return (d.weekday() + 1) % 7


def weekly_dates(start: date, day: int, count: int) -> list[str]:
    """
    Next `count` ISO dates falling on `day` (Sunday=0), starting at `start`
    inclusive, one per 7-day period.
    """
    if not 0 <= day <= 6:
        raise ValidationError("day must be in 0..6")
    offset = (day - sunday_based_weekday(start)) % 7
    first = start + timedelta(days=offset)
    return [(first + timedelta(weeks=i)).isoformat() for i in range(count)]

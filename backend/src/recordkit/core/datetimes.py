"""Datetime helpers shared by records, rules and storage.

Dates are stored as UTC text in the form ``2024-01-31 10:00:00.000Z`` so
that lexicographic order in SQLite matches chronological order.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Any


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def format_datetime(value: datetime) -> str:
    """Format a datetime as stored text (UTC, millisecond precision)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%d %H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_datetime(value: Any) -> datetime | None:
    """Parse a stored or RFC3339 value into an aware UTC datetime.

    Returns None for empty or unparseable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def normalize_datetime(value: Any) -> str:
    """Normalize a date field value to its stored text form ("" when empty)."""
    parsed = parse_datetime(value)
    if parsed is None:
        return ""
    return format_datetime(parsed)


def datetime_macros(reference: datetime | None = None) -> dict[str, str]:
    """Values for the @now, @yesterday, @tomorrow, @todayStart, @todayEnd macros."""
    current = reference or now_utc()
    day_start = datetime.combine(current.date(), time.min, tzinfo=timezone.utc)
    day_end = datetime.combine(current.date(), time.max, tzinfo=timezone.utc)
    return {
        "now": format_datetime(current),
        "yesterday": format_datetime(current - timedelta(days=1)),
        "tomorrow": format_datetime(current + timedelta(days=1)),
        "todayStart": format_datetime(day_start),
        "todayEnd": format_datetime(day_end),
    }

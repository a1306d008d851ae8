"""Time utilities for consistent timestamp and calendar-date handling."""

from datetime import date, datetime, timezone


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def as_calendar_date(value: date | datetime | str) -> date:
    """Coerce a date-like value to a plain calendar date.

    Accepts date objects, datetimes (time-of-day is dropped, no timezone
    conversion) and ISO strings ("2025-01-31" or a full ISO timestamp).

    Raises:
        ValueError: If the string is not an ISO date.
        TypeError: For any other type.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if len(text) > 10 and text[10] in "T ":
            return datetime.fromisoformat(text).date()
        return date.fromisoformat(text)
    raise TypeError(f"Expected date or ISO string, got {type(value).__name__}")

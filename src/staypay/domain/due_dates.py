"""Due-date calculation for payment milestones.

Maps a timing strategy plus the booking's reference dates to a calendar date.
Pure: never reads the wall clock and never converts timezones; the caller's
calendar is authoritative.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from enum import Enum

from staypay.infra.time import as_calendar_date


class ConfigurationError(Exception):
    """A payment rule cannot be applied as configured.

    Raised for a timing strategy missing its parameter (days, specific_date),
    an unrecognised timing strategy or amount type, or a stored rule that
    does not parse.
    """


class DueTiming(str, Enum):
    AT_BOOKING = "at_booking"
    ON_CHECKIN = "on_checkin"
    DAYS_BEFORE_CHECKIN = "days_before_checkin"
    DAYS_AFTER_BOOKING = "days_after_booking"
    SPECIFIC_DATE = "specific_date"


def parse_due_timing(strategy: DueTiming | str) -> DueTiming:
    """Return the DueTiming member for a strategy value.

    Raises:
        ConfigurationError: If the value is not a known strategy.
    """
    if isinstance(strategy, DueTiming):
        return strategy
    try:
        return DueTiming(strategy)
    except ValueError:
        raise ConfigurationError(f"unknown timing strategy: {strategy!r}") from None


def calculate_due_date(
    strategy: DueTiming | str,
    days: int | None,
    checkin_date: date | datetime | str,
    booking_date: date | datetime | str,
    specific_date: date | datetime | str | None = None,
) -> date:
    """Calculate the due date of one milestone.

    Args:
        strategy: Timing strategy (DueTiming member or its string value).
        days: Day offset, required by days_before_checkin/days_after_booking.
        checkin_date: Booking check-in date.
        booking_date: Date the booking was made.
        specific_date: Fixed due date, required by specific_date.

    Returns:
        Calendar date the milestone falls due.

    Raises:
        ConfigurationError: Unknown strategy or missing required parameter.
    """
    timing = parse_due_timing(strategy)

    if timing is DueTiming.AT_BOOKING:
        return as_calendar_date(booking_date)

    if timing is DueTiming.ON_CHECKIN:
        return as_calendar_date(checkin_date)

    if timing is DueTiming.DAYS_BEFORE_CHECKIN:
        if days is None:
            raise ConfigurationError("days_before_checkin requires days parameter")
        return as_calendar_date(checkin_date) - timedelta(days=days)

    if timing is DueTiming.DAYS_AFTER_BOOKING:
        if days is None:
            raise ConfigurationError("days_after_booking requires days parameter")
        return as_calendar_date(booking_date) + timedelta(days=days)

    # specific_date
    if not specific_date:
        raise ConfigurationError("specific_date requires specific_date parameter")
    return as_calendar_date(specific_date)

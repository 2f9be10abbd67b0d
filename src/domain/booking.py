"""
Booking-window rules.

Scheduled dates are calendar dates, never instants: ``"2025-06-01"`` is
parsed straight into a ``date`` so no UTC conversion can shift it by a
day.  "Today" is taken at local midnight in the configured booking
timezone.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo

from .errors import BookingWindowError, RideValidationError

_TIME_RE = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")


def today_local(tz_name: str, now: Optional[datetime] = None) -> date:
    """Return the current calendar date in *tz_name*."""
    tz = ZoneInfo(tz_name)
    current = now.astimezone(tz) if now is not None else datetime.now(tz)
    return current.date()


def parse_scheduled_date(value: Union[str, date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = value.strip()
    try:
        if len(text) == 10:
            return date.fromisoformat(text)
        # an ISO datetime keeps the calendar day the client wrote
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        raise RideValidationError(f"Invalid scheduled date: {value!r}") from None


def normalize_scheduled_time(value: str) -> str:
    """Return ``HH:MM``; conflict checks compare times as strings."""
    match = _TIME_RE.match(value.strip())
    if not match:
        raise RideValidationError("Invalid time format (HH:MM)")
    return f"{int(match.group(1)):02d}:{match.group(2)}"


def is_within_booking_window(
    scheduled: date, today: date, max_days: int = 14
) -> bool:
    return today <= scheduled <= today + timedelta(days=max_days)


def validate_booking_date(
    scheduled: date, today: date, max_days: int = 14
) -> None:
    """Raise ``BookingWindowError`` unless today <= scheduled <= today + max_days."""
    if scheduled < today:
        raise BookingWindowError("Cannot book rides for past dates")
    if scheduled > today + timedelta(days=max_days):
        raise BookingWindowError(
            f"Booking must be within {max_days} days from today"
        )

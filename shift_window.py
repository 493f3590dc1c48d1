"""Compute the instants used to sample who is on call for a week."""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import NamedTuple, Optional

EARLY_SHIFT_HOUR = 9
LATE_SHIFT_HOUR = 17


class ShiftWindow(NamedTuple):
    early: datetime
    late: datetime


def _as_utc(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def shift_start(now: Optional[datetime], this_week: bool, early: bool) -> datetime:
    """Return the UTC instant at which the early or late shift starts.

    For next week the date moves forward to the following Monday, which is a
    full week ahead when ``now`` is already a Monday.
    """

    current = _as_utc(now)
    day = current.date()
    if not this_week:
        day += timedelta(days=7 - current.isoweekday() + 1)

    hour = EARLY_SHIFT_HOUR if early else LATE_SHIFT_HOUR
    return datetime.combine(day, time(hour=hour), tzinfo=timezone.utc)


def shift_window(now: Optional[datetime], this_week: bool) -> ShiftWindow:
    current = _as_utc(now)
    return ShiftWindow(
        early=shift_start(current, this_week, early=True),
        late=shift_start(current, this_week, early=False),
    )

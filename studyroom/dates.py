"""
Calendar helpers for recurring reservations.

All "today" values are the institution's local calendar day, because the
host opens its booking window in local time.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

DAY_MAP = {
    "mon": 0,
    "tue": 1,
    "wed": 2,
    "thu": 3,
    "fri": 4,
}


def local_today(timezone: str, now: datetime | None = None) -> date:
    """
    Return the calendar day in ``timezone``.

    Args:
        timezone: IANA zone name, e.g. ``Asia/Seoul``
        now: Aware datetime to convert (defaults to the current time)
    """
    now = now or datetime.now(ZoneInfo("UTC"))
    return now.astimezone(ZoneInfo(timezone)).date()


def batch_target_date(today: date, lead_days: int) -> date:
    return today + timedelta(days=lead_days)


def next_weekday(day_id: str, today: date) -> date:
    """
    Nearest date strictly after ``today`` falling on ``day_id``.

    Today itself rolls over to next week, since a same-day booking is
    usually no longer possible.

    Raises:
        ValueError: If ``day_id`` is not a weekday id
    """
    if day_id not in DAY_MAP:
        raise ValueError(f"Invalid day ID: {day_id}")

    days_until = (DAY_MAP[day_id] - today.weekday()) % 7 or 7
    return today + timedelta(days=days_until)


def generate_recurring_dates(day_id: str, end_date: date, today: date) -> list[date]:
    """Every ``day_id`` from the next occurrence up to and including ``end_date``."""
    current = next_weekday(day_id, today)
    dates = []
    while current <= end_date:
        dates.append(current)
        current += timedelta(days=7)
    return dates


def split_immediate(
    dates: list[date], today: date, lead_days: int
) -> tuple[list[date], list[date]]:
    """
    Split occurrence dates into (immediate, deferred).

    A date earlier than ``today + lead_days`` will never be selected by the
    batch run, so it has to be submitted right away.
    """
    schedulable_from = batch_target_date(today, lead_days)
    immediate = [d for d in dates if d < schedulable_from]
    deferred = [d for d in dates if d >= schedulable_from]
    return immediate, deferred


def slot_times(start_hour: int, hours: int) -> list[str]:
    """
    One-hour slots occupied by a booking.

    >>> slot_times(14, 2)
    ['14:00', '15:00']
    """
    return [f"{start_hour + i:02d}:00" for i in range(hours)]


def end_time(start_hour: int, hours: int) -> str:
    return f"{start_hour + hours:02d}:00"

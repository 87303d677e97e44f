"""
Trading-day arithmetic for the 50-day budget plan.

Trading days are weekdays; exchange holidays are not modelled. All functions
take explicit dates so callers control the clock.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum

from etf_pilot.models import PLAN_TRADING_DAYS


class DayStatus(Enum):
    """Position of a plan day relative to today."""
    COMPLETED = "completed"
    TODAY = "today"
    FUTURE = "future"


@dataclass
class CalendarDay:
    """One trading day of the investment plan."""
    day_number: int
    date: date
    status: DayStatus
    planned_amount: Decimal


def is_weekend(day: date) -> bool:
    """Return True for Saturday and Sunday."""
    return day.weekday() >= 5  # Monday = 0, Sunday = 6


def trading_days_between(start: date, end: date) -> int:
    """
    Count weekdays in the inclusive range [start, end].

    Args:
        start: First day of the range
        end: Last day of the range

    Returns:
        Number of weekdays, 0 if start is after end
    """
    if start > end:
        return 0

    count = 0
    current = start
    while current <= end:
        if not is_weekend(current):
            count += 1
        current += timedelta(days=1)
    return count


def days_completed(start: date, today: date, cap: int = PLAN_TRADING_DAYS) -> int:
    """
    Trading days of the plan already behind us, capped at the plan length.

    Counts weekdays in [start, today); today is still in progress, so a
    plan starting today has 0 days completed.
    """
    return min(trading_days_between(start, today - timedelta(days=1)), cap)


def days_between(start: date, end: date) -> int:
    """Absolute calendar-day difference, used for tax holding periods."""
    return abs((end - start).days)


def calculate_end_date(start: date, trading_days: int) -> date:
    """
    Step forward the given number of trading days from start.

    The start day itself is not counted, so a Friday plus one trading day
    lands on the following Monday.
    """
    current = start
    added = 0
    while added < trading_days:
        current += timedelta(days=1)
        if not is_weekend(current):
            added += 1
    return current


def build_investment_calendar(
    start: date,
    today: date,
    daily_amount: Decimal,
    plan_days: int = PLAN_TRADING_DAYS,
) -> list[CalendarDay]:
    """
    Lay out every trading day of the plan.

    A weekend start rolls forward to the next Monday for day 1.

    Args:
        start: Plan start date
        today: Reference date for the completed/today/future status
        daily_amount: Planned investment per day
        plan_days: Number of trading days in the plan

    Returns:
        List of CalendarDay, day 1 first
    """
    days = []
    current = start
    for day_number in range(1, plan_days + 1):
        while is_weekend(current):
            current += timedelta(days=1)

        if current < today:
            status = DayStatus.COMPLETED
        elif current == today:
            status = DayStatus.TODAY
        else:
            status = DayStatus.FUTURE

        days.append(CalendarDay(
            day_number=day_number,
            date=current,
            status=status,
            planned_amount=daily_amount,
        ))
        current += timedelta(days=1)

    return days

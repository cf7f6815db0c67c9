"""
schedule.py - Payment schedule generation

Loan payment schedules are ordered sequences of due dates expressed as
epoch seconds (UTC). Repayment starts after a grace period and then falls
due monthly, at midnight.

Naive datetimes are treated as UTC throughout.
"""

from __future__ import annotations
import calendar
from datetime import datetime, timedelta, timezone
from typing import List, Sequence


DEFAULT_NUMBER_OF_PAYMENTS = 36
DEFAULT_GRACE_PERIOD_IN_MONTHS = 18


def to_epoch(dt: datetime) -> int:
    """Seconds since the epoch; naive datetimes are read as UTC."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return calendar.timegm(dt.timetuple())


def from_epoch(seconds: int) -> datetime:
    """Naive UTC datetime for an epoch timestamp."""
    return datetime(1970, 1, 1) + timedelta(seconds=seconds)


def add_months(dt: datetime, months: int) -> datetime:
    """
    Shift a date by whole months, clamping the day to the target month's end.

    Example:
        >>> add_months(datetime(2025, 1, 31), 1)
        datetime.datetime(2025, 2, 28, 0, 0)
    """
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return dt.replace(year=year, month=month, day=min(dt.day, last_day))


def generate_payment_schedule(
    start: datetime,
    number_of_payments: int = DEFAULT_NUMBER_OF_PAYMENTS,
    grace_period_in_months: int = DEFAULT_GRACE_PERIOD_IN_MONTHS,
) -> List[int]:
    """
    Monthly due dates following a grace period.

    The start is truncated to midnight and shifted by the grace period; each
    further payment falls one month later. Every date is computed from the
    anchor rather than from the previous date, so clamping a 31st to a short
    month does not drift later payments.

    Args:
        start: Loan start (typically acceptance time)
        number_of_payments: Number of installments
        grace_period_in_months: Months before the first installment

    Returns:
        Epoch seconds, non-decreasing

    Example:
        >>> ts = generate_payment_schedule(datetime(2025, 1, 15, 13, 30), 2, 18)
        >>> [from_epoch(t).date().isoformat() for t in ts]
        ['2026-07-15', '2026-08-15']
    """
    if number_of_payments < 0:
        raise ValueError(f"number_of_payments must be non-negative, got {number_of_payments}")
    if grace_period_in_months < 0:
        raise ValueError(f"grace_period_in_months must be non-negative, got {grace_period_in_months}")

    anchor = start.replace(hour=0, minute=0, second=0, microsecond=0)
    return [
        to_epoch(add_months(anchor, grace_period_in_months + i))
        for i in range(number_of_payments)
    ]


def validate_schedule(timestamps: Sequence[int]) -> List[int]:
    """
    Check a schedule is a non-decreasing sequence of non-negative integers.

    Raises:
        ValueError: On any malformed entry
    """
    result: List[int] = []
    for ts in timestamps:
        if isinstance(ts, bool) or not isinstance(ts, int):
            raise ValueError(f"Schedule timestamps must be integers, got {ts!r}")
        if ts < 0:
            raise ValueError(f"Schedule timestamps must be non-negative, got {ts}")
        if result and ts < result[-1]:
            raise ValueError(f"Schedule must be non-decreasing: {ts} after {result[-1]}")
        result.append(ts)
    return result

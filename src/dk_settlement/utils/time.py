"""Time utilities for settlement periods.

Billing periods are calendar dates; readings and prices are UTC
instants. A period [start, end) covers the UTC instants from midnight
of ``start`` up to (not including) midnight of ``end``.

Grid tariffs are keyed by hour number:
- Hour 1 = 00:00-01:00
- Hour 24 = 23:00-24:00
"""

import calendar
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

DK_TZ = ZoneInfo("Europe/Copenhagen")


def get_dk_now() -> datetime:
    """Get current time in Danish local time."""
    return datetime.now(DK_TZ)


def get_dk_today() -> date:
    """Get today's date in Danish local time."""
    return get_dk_now().date()


def hour_number(ts: datetime) -> int:
    """Convert a timestamp to its tariff hour number (1-24).

    Example:
        >>> hour_number(datetime(2025, 1, 1, 0, 0, tzinfo=UTC))
        1
        >>> hour_number(datetime(2025, 1, 1, 23, 0, tzinfo=UTC))
        24
    """
    return ts.hour + 1


def day_start(d: date) -> datetime:
    """UTC midnight at the start of a date."""
    return datetime.combine(d, time(0, 0), tzinfo=UTC)


def period_bounds(period_start: date, period_end: date) -> tuple[datetime, datetime]:
    """UTC instants bounding the half-open period [period_start, period_end)."""
    return day_start(period_start), day_start(period_end)


def hours_in_period(period_start: date, period_end: date) -> int:
    """Number of hourly intervals in [period_start, period_end)."""
    start, end = period_bounds(period_start, period_end)
    return int((end - start) / timedelta(hours=1))


def days_in_month(d: date) -> int:
    """Number of days in the calendar month containing ``d``."""
    return calendar.monthrange(d.year, d.month)[1]


def hour_floor(ts: datetime) -> datetime:
    """Truncate a timestamp to the start of its hour."""
    return ts.replace(minute=0, second=0, microsecond=0)

"""Billing period boundaries.

Weekly periods align to Danish weeks (Monday-Sunday). All end dates are
exclusive: the day after the last day of the period.
Example: January -> period_start=Jan 1, period_end=Feb 1.
"""

from datetime import date, timedelta

from dk_settlement.errors import InvalidFrequencyError
from dk_settlement.models.settlement import BillingFrequency


def get_first_period_end(start_date: date, frequency: BillingFrequency | str) -> date:
    """Return the exclusive end date of the first period starting at ``start_date``.

    Args:
        start_date: First day of the period (e.g. a move-in date)
        frequency: daily, weekly, monthly or quarterly

    Returns:
        The day after the period's last included day

    Raises:
        InvalidFrequencyError: If the frequency is not recognised
    """
    try:
        freq = BillingFrequency(frequency)
    except ValueError:
        raise InvalidFrequencyError(str(frequency)) from None

    if freq is BillingFrequency.DAILY:
        return start_date + timedelta(days=1)
    elif freq is BillingFrequency.WEEKLY:
        return _week_end(start_date)
    elif freq is BillingFrequency.MONTHLY:
        return _month_end(start_date)
    return _quarter_end(start_date)


def _week_end(d: date) -> date:
    """The Monday after the Sunday that ends d's week."""
    # weekday(): Monday=0 .. Sunday=6
    days_until_sunday = 6 - d.weekday()
    return d + timedelta(days=days_until_sunday + 1)


def _first_of_next_month(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1)
    return date(year, month + 1, 1)


def _month_end(d: date) -> date:
    return _first_of_next_month(d.year, d.month)


def _quarter_end(d: date) -> date:
    last_month_of_quarter = ((d.month - 1) // 3 + 1) * 3
    return _first_of_next_month(d.year, last_month_of_quarter)

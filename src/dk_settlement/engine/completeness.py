"""Metering data completeness gate."""

from datetime import date

from dk_settlement.models.metering import MeteringCompleteness
from dk_settlement.utils.time import hours_in_period


def expected_sample_count(period_start: date, period_end: date) -> int:
    """Hourly readings expected for [period_start, period_end)."""
    return hours_in_period(period_start, period_end)


def check_completeness(expected_count: int, received_count: int) -> MeteringCompleteness:
    """Compare received against expected readings.

    More readings than expected (e.g. quarter-hour data or corrections)
    still counts as complete.
    """
    return MeteringCompleteness(
        expected_count=expected_count,
        received_count=received_count,
        is_complete=received_count >= expected_count,
    )

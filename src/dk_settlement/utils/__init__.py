"""Utility functions for settlement."""

from dk_settlement.utils.time import (
    get_dk_today,
    hour_number,
    hours_in_period,
    period_bounds,
)

__all__ = ["get_dk_today", "hour_number", "hours_in_period", "period_bounds"]

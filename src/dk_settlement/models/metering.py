"""Metering, price and tariff data models.

Danish metering points deliver hourly (PT1H) or quarter-hourly (PT15M)
readings through DataHub. Day-ahead spot prices are published per price
area (DK1 west, DK2 east). Grid tariffs are published as a 24-rate
schedule keyed by hour-of-day that recurs every day of its validity.

All quantities and prices are Decimal. Timestamps are timezone-aware
UTC instants; naive datetimes are taken to be UTC.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field


def _as_utc(v: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalise aware ones to UTC."""
    if v.tzinfo is None:
        return v.replace(tzinfo=UTC)
    return v.astimezone(UTC)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class ConsumptionSample(BaseModel):
    """One metering reading for a metering point.

    Attributes:
        timestamp: Start of the measured interval (UTC)
        resolution: Interval length tag, PT1H or PT15M
        quantity_kwh: Metered consumption in kWh
        quality_code: DataHub quality code (A01 adjusted, A03 estimated, A04 measured...)
        message_id: Id of the market message that delivered the reading
    """

    model_config = ConfigDict(frozen=True)

    timestamp: UtcDatetime
    resolution: str = "PT1H"
    quantity_kwh: Decimal
    quality_code: str = "A04"
    message_id: str | None = None


class PriceSample(BaseModel):
    """Day-ahead spot price for one interval in one price area.

    Attributes:
        price_area: DK1 or DK2
        timestamp: Start of the price interval (UTC)
        price_per_kwh: Spot price in DKK/kWh
        resolution: PT1H or PT15M
    """

    model_config = ConfigDict(frozen=True)

    price_area: str
    timestamp: UtcDatetime
    price_per_kwh: Decimal
    resolution: str = "PT1H"


class TariffRate(BaseModel):
    """One hour-of-day rate of a tariff schedule.

    Hour number 1 covers 00:00-01:00, hour number 24 covers 23:00-24:00.
    """

    model_config = ConfigDict(frozen=True)

    hour_number: int = Field(ge=1, le=24)
    price_per_kwh: Decimal


class ConsumptionDelta(BaseModel):
    """A revised reading: the kWh previously settled and the new value."""

    model_config = ConfigDict(frozen=True)

    timestamp: UtcDatetime
    previous_kwh: Decimal
    new_kwh: Decimal

    @property
    def delta_kwh(self) -> Decimal:
        """Signed change in kWh (negative when consumption was revised down)."""
        return self.new_kwh - self.previous_kwh


class MeteringCompleteness(BaseModel):
    """Expected vs. received sample counts for a period."""

    expected_count: int
    received_count: int
    is_complete: bool

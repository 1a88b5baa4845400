"""Settlement request/result models.

A settlement covers one metering point over one half-open billing
period [period_start, period_end). Every monetary figure is an exact
Decimal; line amounts are rounded to whole øre (2 decimals) and the
subtotal is the sum of the rounded lines.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Self

from pydantic import BaseModel, Field, model_validator

from dk_settlement.models.metering import (
    ConsumptionDelta,
    ConsumptionSample,
    PriceSample,
    TariffRate,
)


class ChargeType(StrEnum):
    """Charge types in the order lines appear on a settlement."""

    ENERGY = "energy"
    GRID_TARIFF = "grid_tariff"
    SYSTEM_TARIFF = "system_tariff"
    TRANSMISSION_TARIFF = "transmission_tariff"
    ELECTRICITY_TAX = "electricity_tax"
    GRID_SUBSCRIPTION = "grid_subscription"
    SUPPLIER_SUBSCRIPTION = "supplier_subscription"


class BillingFrequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class RunStatus(StrEnum):
    COMPLETED = "completed"
    FAILED = "failed"


class _PeriodModel(BaseModel):
    metering_point_id: str
    period_start: date
    period_end: date  # exclusive

    @model_validator(mode="after")
    def _check_period(self) -> Self:
        if self.period_end <= self.period_start:
            raise ValueError(
                f"Period end {self.period_end} must be after start {self.period_start}"
            )
        return self

    @property
    def days(self) -> int:
        return (self.period_end - self.period_start).days


class SettlementRequest(_PeriodModel):
    """Everything needed to settle one metering point for one period.

    Attributes:
        consumption: Readings covering [period_start, period_end)
        spot_prices: Day-ahead prices covering the same range (DKK/kWh)
        grid_tariff_rates: 24-rate hour-of-day grid tariff schedule
        system_tariff_rate: Energinet system tariff (DKK/kWh)
        transmission_tariff_rate: Energinet transmission tariff (DKK/kWh)
        electricity_tax_rate: Elafgift (DKK/kWh)
        grid_subscription_per_month: Grid operator subscription (DKK/month)
        margin_per_kwh: Supplier margin on top of spot (DKK/kWh)
        supplement_per_kwh: Optional product supplement (DKK/kWh)
        supplier_subscription_per_month: Supplier subscription (DKK/month)
    """

    consumption: list[ConsumptionSample]
    spot_prices: list[PriceSample]
    grid_tariff_rates: list[TariffRate]
    system_tariff_rate: Decimal
    transmission_tariff_rate: Decimal
    electricity_tax_rate: Decimal
    grid_subscription_per_month: Decimal
    margin_per_kwh: Decimal
    supplement_per_kwh: Decimal = Decimal("0")
    supplier_subscription_per_month: Decimal


class SettlementLine(BaseModel):
    """One itemised charge. Subscriptions carry no kWh."""

    charge_type: ChargeType
    kwh: Decimal | None = None
    amount: Decimal


class _LinesResult(_PeriodModel):
    lines: list[SettlementLine]
    subtotal: Decimal
    vat_amount: Decimal
    total: Decimal

    def line(self, charge_type: ChargeType | str) -> SettlementLine | None:
        """Return the line for a charge type, if present."""
        for line in self.lines:
            if line.charge_type == charge_type:
                return line
        return None


class SettlementResult(_LinesResult):
    total_kwh: Decimal


class CorrectionRequest(_PeriodModel):
    """Revised readings for an already-settled period, with the rates to price them."""

    deltas: list[ConsumptionDelta]
    spot_prices: list[PriceSample]
    grid_tariff_rates: list[TariffRate]
    system_tariff_rate: Decimal
    transmission_tariff_rate: Decimal
    electricity_tax_rate: Decimal
    margin_per_kwh: Decimal
    supplement_per_kwh: Decimal = Decimal("0")


class CorrectionResult(_LinesResult):
    """Charge/credit deltas. Negative amounts are credits to the customer."""

    total_delta_kwh: Decimal


class GridTariffChange(BaseModel):
    """A grid tariff version that takes effect inside a billing period."""

    split_date: date
    rates: list[TariffRate]


class SettlementInput(BaseModel):
    """Data assembled by a settlement data loader for one period."""

    consumption: list[ConsumptionSample]
    spot_prices: list[PriceSample]
    grid_tariff_rates: list[TariffRate]
    system_tariff_rate: Decimal
    transmission_tariff_rate: Decimal
    electricity_tax_rate: Decimal
    grid_subscription_per_month: Decimal
    grid_tariff_change: GridTariffChange | None = None


class StoredSettlementLine(BaseModel):
    """A persisted settlement line with its share of the run's VAT."""

    charge_type: ChargeType
    kwh: Decimal | None = None
    amount: Decimal
    vat_amount: Decimal


class SettlementRun(BaseModel):
    """A persisted, versioned settlement attempt. Never mutated after creation."""

    id: str
    billing_period_id: str
    metering_point_id: str
    grid_area_code: str
    period_start: date
    period_end: date
    version: int = Field(ge=1)
    status: RunStatus
    executed_at: datetime
    completed_at: datetime | None = None
    error_details: str | None = None
    lines: list[StoredSettlementLine] = Field(default_factory=list)


class CorrectionBatch(BaseModel):
    """A persisted correction: its batch id, the run it corrects and the figures."""

    batch_id: str
    original_run_id: str | None = None
    trigger_type: str = "manual"
    note: str | None = None
    result: CorrectionResult

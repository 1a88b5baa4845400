"""Settlement across a mid-period grid tariff change.

The period is split at the change date. Each slice is settled with the
tariff valid for it, lines are merged per charge type and VAT is
computed once on the combined subtotal, so the combined bill is not
rounded twice. Subscriptions are pro-rated once over the full period.
"""

from datetime import date
from decimal import Decimal

from dk_settlement.engine.settlement import SettlementCalculator, subscription_lines
from dk_settlement.engine.vat import summarize
from dk_settlement.models.metering import TariffRate
from dk_settlement.models.settlement import (
    ChargeType,
    SettlementLine,
    SettlementRequest,
    SettlementResult,
)
from dk_settlement.utils.time import day_start

_SUBSCRIPTIONS = {ChargeType.GRID_SUBSCRIPTION, ChargeType.SUPPLIER_SUBSCRIPTION}


def merge_lines(*line_sets: list[SettlementLine]) -> list[SettlementLine]:
    """Sum amounts and kWh per charge type, keeping the standard line order."""
    merged: dict[ChargeType, SettlementLine] = {}
    for lines in line_sets:
        for line in lines:
            existing = merged.get(line.charge_type)
            if existing is None:
                merged[line.charge_type] = line.model_copy()
                continue
            if existing.kwh is None and line.kwh is None:
                kwh = None
            else:
                kwh = (existing.kwh or Decimal("0")) + (line.kwh or Decimal("0"))
            merged[line.charge_type] = SettlementLine(
                charge_type=line.charge_type,
                kwh=kwh,
                amount=existing.amount + line.amount,
            )
    return [merged[ct] for ct in ChargeType if ct in merged]


class PeriodSplitter:
    """Settles a period whose grid tariff changes part-way through.

    Example:
        splitter = PeriodSplitter(SettlementCalculator())
        result = splitter.calculate_with_tariff_change(request, date(2025, 4, 1), new_rates)
    """

    def __init__(self, calculator: SettlementCalculator | None = None):
        self.calculator = calculator or SettlementCalculator()

    def calculate_with_tariff_change(
        self,
        request: SettlementRequest,
        split_date: date,
        new_grid_rates: list[TariffRate],
        new_system_tariff_rate: Decimal | None = None,
        new_transmission_tariff_rate: Decimal | None = None,
        new_electricity_tax_rate: Decimal | None = None,
    ) -> SettlementResult:
        """Settle ``request`` with ``new_grid_rates`` applying from ``split_date``.

        Readings and prices stamped before midnight UTC of ``split_date``
        are priced with the original schedule, the rest with the new one.
        Optional new flat rates apply to the second slice only.

        Returns:
            A result for the full original period
        """
        after_updates = {
            "grid_tariff_rates": new_grid_rates,
            "system_tariff_rate": (
                request.system_tariff_rate if new_system_tariff_rate is None else new_system_tariff_rate
            ),
            "transmission_tariff_rate": (
                request.transmission_tariff_rate
                if new_transmission_tariff_rate is None
                else new_transmission_tariff_rate
            ),
            "electricity_tax_rate": (
                request.electricity_tax_rate if new_electricity_tax_rate is None else new_electricity_tax_rate
            ),
        }

        if split_date <= request.period_start:
            return self.calculator.calculate(request.model_copy(update=after_updates))
        if split_date >= request.period_end:
            return self.calculator.calculate(request)

        split_ts = day_start(split_date)
        no_fees = {
            "grid_subscription_per_month": Decimal("0"),
            "supplier_subscription_per_month": Decimal("0"),
        }

        before = request.model_copy(
            update={
                **no_fees,
                "period_end": split_date,
                "consumption": [s for s in request.consumption if s.timestamp < split_ts],
                "spot_prices": [p for p in request.spot_prices if p.timestamp < split_ts],
            }
        )
        after = request.model_copy(
            update={
                **no_fees,
                **after_updates,
                "period_start": split_date,
                "consumption": [s for s in request.consumption if s.timestamp >= split_ts],
                "spot_prices": [p for p in request.spot_prices if p.timestamp >= split_ts],
            }
        )

        before_result = self.calculator.calculate(before)
        after_result = self.calculator.calculate(after)

        usage_lines = [
            line
            for line in merge_lines(before_result.lines, after_result.lines)
            if line.charge_type not in _SUBSCRIPTIONS
        ]
        lines = usage_lines + subscription_lines(request)

        subtotal, vat_amount, total = summarize([line.amount for line in lines], self.calculator.vat_rate)

        return SettlementResult(
            metering_point_id=request.metering_point_id,
            period_start=request.period_start,
            period_end=request.period_end,
            total_kwh=before_result.total_kwh + after_result.total_kwh,
            lines=lines,
            subtotal=subtotal,
            vat_amount=vat_amount,
            total=total,
        )

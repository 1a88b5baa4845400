"""Correction calculation for revised metering data.

Corrections price only the change in consumption (new - previous) and
never touch subscriptions. Negative totals are credits and stay negative.
"""

from decimal import Decimal

from dk_settlement.engine.settlement import build_grid_rate_lookup, build_price_lookup
from dk_settlement.engine.vat import VAT_RATE, round_amount, summarize
from dk_settlement.models.settlement import (
    ChargeType,
    CorrectionRequest,
    CorrectionResult,
    SettlementLine,
)
from dk_settlement.utils.time import hour_number

ZERO = Decimal("0")


class CorrectionCalculator:
    """Pure correction calculation."""

    def __init__(self, vat_rate: Decimal = VAT_RATE):
        self.vat_rate = vat_rate

    def calculate(self, request: CorrectionRequest) -> CorrectionResult:
        hourly = all(d.timestamp.minute == 0 for d in request.deltas)
        spot_prices = build_price_lookup(request.spot_prices, hourly_readings=hourly)
        grid_rates = build_grid_rate_lookup(request.grid_tariff_rates)
        unit_markup = request.margin_per_kwh + request.supplement_per_kwh

        total_delta_kwh = ZERO
        energy_delta = ZERO
        grid_delta = ZERO

        for delta in request.deltas:
            d_kwh = delta.delta_kwh
            total_delta_kwh += d_kwh

            spot = spot_prices.get(delta.timestamp)
            if spot is not None:
                energy_delta += d_kwh * (spot + unit_markup)

            rate = grid_rates.get(hour_number(delta.timestamp))
            if rate is not None:
                grid_delta += d_kwh * rate

        flat_rates = [
            (ChargeType.SYSTEM_TARIFF, request.system_tariff_rate),
            (ChargeType.TRANSMISSION_TARIFF, request.transmission_tariff_rate),
            (ChargeType.ELECTRICITY_TAX, request.electricity_tax_rate),
        ]
        lines = [
            SettlementLine(charge_type=ChargeType.ENERGY, kwh=total_delta_kwh, amount=round_amount(energy_delta)),
            SettlementLine(charge_type=ChargeType.GRID_TARIFF, kwh=total_delta_kwh, amount=round_amount(grid_delta)),
        ]
        lines.extend(
            SettlementLine(charge_type=ct, kwh=total_delta_kwh, amount=round_amount(total_delta_kwh * rate))
            for ct, rate in flat_rates
        )

        subtotal, vat_amount, total = summarize([line.amount for line in lines], self.vat_rate)

        return CorrectionResult(
            metering_point_id=request.metering_point_id,
            period_start=request.period_start,
            period_end=request.period_end,
            total_delta_kwh=total_delta_kwh,
            lines=lines,
            subtotal=subtotal,
            vat_amount=vat_amount,
            total=total,
        )

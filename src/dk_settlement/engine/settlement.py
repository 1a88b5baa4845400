"""Settlement calculation for one metering point and one period.

Line items:
- energy:               kWh x (spot + margin + supplement), per hour
- grid_tariff:          kWh x grid_rate[hour_of_day], per hour
- system_tariff:        total kWh x flat rate
- transmission_tariff:  total kWh x flat rate
- electricity_tax:      total kWh x flat rate
- grid_subscription:    monthly fee x pro-rata factor
- supplier_subscription: monthly fee x pro-rata factor

The pro-rata factor is days in period / days in the calendar month of
the period start, whatever the billing frequency.
"""

from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal

from dk_settlement.engine.vat import VAT_RATE, round_amount, summarize
from dk_settlement.models.metering import PriceSample, TariffRate
from dk_settlement.models.settlement import (
    ChargeType,
    SettlementLine,
    SettlementRequest,
    SettlementResult,
)
from dk_settlement.utils.time import days_in_month, hour_floor, hour_number

ZERO = Decimal("0")


def build_price_lookup(prices: Iterable[PriceSample], hourly_readings: bool = True) -> dict[datetime, Decimal]:
    """Map timestamp -> spot price in DKK/kWh.

    Quarter-hourly (PT15M) prices are averaged per hour when the
    readings being priced are hourly.
    """
    prices = list(prices)
    if hourly_readings and any(p.resolution == "PT15M" for p in prices):
        buckets: dict[datetime, list[Decimal]] = defaultdict(list)
        for p in prices:
            buckets[hour_floor(p.timestamp)].append(p.price_per_kwh)
        return {hour: sum(values, ZERO) / len(values) for hour, values in buckets.items()}

    return {p.timestamp: p.price_per_kwh for p in prices}


def build_grid_rate_lookup(rates: Iterable[TariffRate]) -> dict[int, Decimal]:
    """Map hour number (1-24) -> grid rate. Later duplicates win."""
    return {r.hour_number: r.price_per_kwh for r in rates}


def pro_rata_factor(request: SettlementRequest) -> Decimal:
    return Decimal(request.days) / Decimal(days_in_month(request.period_start))


def subscription_lines(request: SettlementRequest) -> list[SettlementLine]:
    """Pro-rated grid and supplier subscription lines for the request's period."""
    factor = pro_rata_factor(request)
    return [
        SettlementLine(
            charge_type=ChargeType.GRID_SUBSCRIPTION,
            amount=round_amount(request.grid_subscription_per_month * factor),
        ),
        SettlementLine(
            charge_type=ChargeType.SUPPLIER_SUBSCRIPTION,
            amount=round_amount(request.supplier_subscription_per_month * factor),
        ),
    ]


class SettlementCalculator:
    """Pure settlement calculation.

    Missing spot prices or grid rates for an hour contribute nothing for
    that hour; the calculation never fails on absent hourly data.

    Example:
        calculator = SettlementCalculator()
        result = calculator.calculate(request)
        print(result.total)
    """

    def __init__(self, vat_rate: Decimal = VAT_RATE):
        self.vat_rate = vat_rate

    def calculate(self, request: SettlementRequest) -> SettlementResult:
        hourly = not request.consumption or request.consumption[0].resolution == "PT1H"
        spot_prices = build_price_lookup(request.spot_prices, hourly_readings=hourly)
        grid_rates = build_grid_rate_lookup(request.grid_tariff_rates)
        unit_markup = request.margin_per_kwh + request.supplement_per_kwh

        total_kwh = ZERO
        energy = ZERO
        grid_tariff = ZERO

        for sample in request.consumption:
            kwh = sample.quantity_kwh
            total_kwh += kwh

            spot = spot_prices.get(sample.timestamp)
            if spot is not None:
                energy += kwh * (spot + unit_markup)

            rate = grid_rates.get(hour_number(sample.timestamp))
            if rate is not None:
                grid_tariff += kwh * rate

        lines = [
            SettlementLine(charge_type=ChargeType.ENERGY, kwh=total_kwh, amount=round_amount(energy)),
            SettlementLine(charge_type=ChargeType.GRID_TARIFF, kwh=total_kwh, amount=round_amount(grid_tariff)),
            SettlementLine(
                charge_type=ChargeType.SYSTEM_TARIFF,
                kwh=total_kwh,
                amount=round_amount(total_kwh * request.system_tariff_rate),
            ),
            SettlementLine(
                charge_type=ChargeType.TRANSMISSION_TARIFF,
                kwh=total_kwh,
                amount=round_amount(total_kwh * request.transmission_tariff_rate),
            ),
            SettlementLine(
                charge_type=ChargeType.ELECTRICITY_TAX,
                kwh=total_kwh,
                amount=round_amount(total_kwh * request.electricity_tax_rate),
            ),
            *subscription_lines(request),
        ]

        subtotal, vat_amount, total = summarize([line.amount for line in lines], self.vat_rate)

        return SettlementResult(
            metering_point_id=request.metering_point_id,
            period_start=request.period_start,
            period_end=request.period_end,
            total_kwh=total_kwh,
            lines=lines,
            subtotal=subtotal,
            vat_amount=vat_amount,
            total=total,
        )

#!/usr/bin/env python3
"""Example: Fetch Danish day-ahead spot prices and settle one day.

This script fetches a day of DK1 prices from Energi Data Service and
prices a flat 0.5 kWh/hour consumption profile with the settlement
calculator. No database is needed.

Usage:
    python examples/fetch_spot_prices.py
"""

import asyncio
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal

from dk_settlement.clients.energidataservice import EnergiDataServiceClient
from dk_settlement.engine.settlement import SettlementCalculator
from dk_settlement.models import ConsumptionSample, SettlementRequest, TariffRate

DAY = date(2025, 1, 15)


async def main():
    """Fetch and display spot prices, then settle the day."""

    print("=" * 60)
    print(f"DK1 day-ahead spot prices for {DAY}")
    print("=" * 60)
    print()

    async with EnergiDataServiceClient() as client:
        prices = await client.get_spot_prices("DK1", DAY, DAY + timedelta(days=1))

    if not prices:
        print("No prices published for this day")
        return

    print(f"{'Hour (UTC)':<12} {'DKK/kWh':>10}")
    print("-" * 24)
    for p in prices[:6]:
        print(f"{p.timestamp:%H:%M}        {p.price_per_kwh:>10.4f}")
    print(f"... {len(prices)} prices in total")
    print()

    average = sum(p.price_per_kwh for p in prices) / len(prices)
    print(f"  Average: {average:.4f} DKK/kWh")
    print(f"  Minimum: {min(p.price_per_kwh for p in prices):.4f} DKK/kWh")
    print(f"  Maximum: {max(p.price_per_kwh for p in prices):.4f} DKK/kWh")
    print()

    # Flat profile and a flat grid tariff; regulated rates as of 2025
    start = datetime.combine(DAY, time(0, 0), tzinfo=UTC)
    consumption = [
        ConsumptionSample(timestamp=start + timedelta(hours=h), quantity_kwh=Decimal("0.5")) for h in range(24)
    ]
    request = SettlementRequest(
        metering_point_id="571313100000012345",
        period_start=DAY,
        period_end=DAY + timedelta(days=1),
        consumption=consumption,
        spot_prices=prices,
        grid_tariff_rates=[TariffRate(hour_number=h, price_per_kwh=Decimal("0.18")) for h in range(1, 25)],
        system_tariff_rate=Decimal("0.054"),
        transmission_tariff_rate=Decimal("0.049"),
        electricity_tax_rate=Decimal("0.008"),
        grid_subscription_per_month=Decimal("49.00"),
        margin_per_kwh=Decimal("0.04"),
        supplier_subscription_per_month=Decimal("39.00"),
    )
    result = SettlementCalculator().calculate(request)

    print("=" * 60)
    print(f"SETTLEMENT FOR {DAY} ({result.total_kwh} kWh)")
    print("=" * 60)
    for line in result.lines:
        print(f"  {line.charge_type:<24} {line.amount:>8} DKK")
    print("-" * 40)
    print(f"  {'Subtotal':<24} {result.subtotal:>8} DKK")
    print(f"  {'VAT (25%)':<24} {result.vat_amount:>8} DKK")
    print(f"  {'Total':<24} {result.total:>8} DKK")
    print()
    print("=" * 60)
    print("Data source: Energi Data Service (https://www.energidataservice.dk)")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())

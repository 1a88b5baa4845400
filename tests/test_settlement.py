"""Tests for the settlement calculator."""

from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

from dk_settlement.engine.settlement import SettlementCalculator, build_price_lookup
from dk_settlement.models import ChargeType, ConsumptionSample, PriceSample

from tests.factories import reference_request


class TestSettlementCalculator:
    """Settlement of the reference consumption profile."""

    def test_january_full_month(self):
        """A full January settles to the known golden totals."""
        result = SettlementCalculator().calculate(reference_request())

        assert result.total_kwh == Decimal("409.200")
        assert result.line(ChargeType.ENERGY).amount == Decimal("386.51")
        assert result.line(ChargeType.GRID_TARIFF).amount == Decimal("114.58")
        assert result.line(ChargeType.SYSTEM_TARIFF).amount == Decimal("22.10")
        assert result.line(ChargeType.TRANSMISSION_TARIFF).amount == Decimal("20.05")
        assert result.line(ChargeType.ELECTRICITY_TAX).amount == Decimal("3.27")
        assert result.line(ChargeType.GRID_SUBSCRIPTION).amount == Decimal("49.00")
        assert result.line(ChargeType.SUPPLIER_SUBSCRIPTION).amount == Decimal("39.00")
        assert result.subtotal == Decimal("634.51")
        assert result.vat_amount == Decimal("158.63")
        assert result.total == Decimal("793.14")

    def test_partial_month_pro_rates_subscriptions(self):
        """A mid-month move-in pro-rates subscriptions by days in the start month."""
        result = SettlementCalculator().calculate(reference_request(date(2025, 1, 16), date(2025, 2, 1)))

        assert result.total_kwh == Decimal("211.200")
        assert result.line(ChargeType.ENERGY).amount == Decimal("199.49")
        assert result.line(ChargeType.GRID_TARIFF).amount == Decimal("59.14")
        assert result.line(ChargeType.GRID_SUBSCRIPTION).amount == Decimal("25.29")
        assert result.line(ChargeType.SUPPLIER_SUBSCRIPTION).amount == Decimal("20.13")
        assert result.subtotal == Decimal("327.49")
        assert result.vat_amount == Decimal("81.87")
        assert result.total == Decimal("409.36")

    def test_lines_in_fixed_order(self):
        """Lines always appear in charge-type order with kWh only on usage lines."""
        result = SettlementCalculator().calculate(reference_request(date(2025, 1, 1), date(2025, 1, 2)))

        assert [line.charge_type for line in result.lines] == list(ChargeType)
        assert result.line(ChargeType.GRID_SUBSCRIPTION).kwh is None
        assert result.line(ChargeType.SUPPLIER_SUBSCRIPTION).kwh is None
        assert result.line(ChargeType.ENERGY).kwh == Decimal("13.200")

    def test_totals_invariant(self):
        """Total is subtotal plus 25% VAT rounded to 2 decimals."""
        result = SettlementCalculator().calculate(reference_request(date(2025, 1, 5), date(2025, 1, 12)))

        assert result.subtotal == sum(line.amount for line in result.lines)
        assert result.vat_amount == (result.subtotal * Decimal("0.25")).quantize(Decimal("0.01"))
        assert result.total == result.subtotal + result.vat_amount

    def test_missing_spot_price_contributes_nothing(self):
        """An hour without a spot price adds no energy charge but still counts kWh."""
        request = reference_request(date(2025, 1, 1), date(2025, 1, 2))
        full = SettlementCalculator().calculate(request)

        # Drop the 17:00 price (1.200 kWh at 1.25 + 0.04 margin)
        prices = [p for p in request.spot_prices if p.timestamp.hour != 17]
        partial = SettlementCalculator().calculate(request.model_copy(update={"spot_prices": prices}))

        assert partial.total_kwh == full.total_kwh
        assert full.line(ChargeType.ENERGY).amount - partial.line(ChargeType.ENERGY).amount == Decimal("1.55")

    def test_missing_grid_rate_contributes_nothing(self):
        """An empty grid tariff schedule yields a zero grid tariff line."""
        request = reference_request(date(2025, 1, 1), date(2025, 1, 2), grid_tariff_rates=[])
        result = SettlementCalculator().calculate(request)

        assert result.line(ChargeType.GRID_TARIFF).amount == Decimal("0.00")

    def test_supplement_adds_to_energy(self):
        """The product supplement is charged per kWh on top of spot and margin."""
        base = SettlementCalculator().calculate(reference_request(date(2025, 1, 1), date(2025, 1, 2)))
        with_supplement = SettlementCalculator().calculate(
            reference_request(date(2025, 1, 1), date(2025, 1, 2), supplement_per_kwh=Decimal("0.10"))
        )

        diff = with_supplement.line(ChargeType.ENERGY).amount - base.line(ChargeType.ENERGY).amount
        assert diff == Decimal("1.32")

    def test_empty_consumption(self):
        """No readings gives zero usage lines but still charges subscriptions."""
        request = reference_request(date(2025, 1, 1), date(2025, 2, 1), consumption=[])
        result = SettlementCalculator().calculate(request)

        assert result.total_kwh == Decimal("0")
        assert result.line(ChargeType.ENERGY).amount == Decimal("0.00")
        assert result.subtotal == Decimal("88.00")
        assert result.total == Decimal("110.00")


class TestQuarterHourPrices:
    """Quarter-hour prices against hourly readings."""

    def test_price_lookup_averages_quarters(self):
        """Four PT15M prices collapse into their hourly average."""
        hour = datetime(2025, 10, 1, 10, tzinfo=UTC)
        prices = [
            PriceSample(
                price_area="DK1",
                timestamp=hour + timedelta(minutes=15 * i),
                price_per_kwh=Decimal(p),
                resolution="PT15M",
            )
            for i, p in enumerate(["0.40", "0.60", "0.80", "1.00"])
        ]

        lookup = build_price_lookup(prices)

        assert lookup == {hour: Decimal("0.70")}

    def test_hourly_reading_priced_at_average(self):
        """An hourly reading is priced at the mean of its quarter-hour prices."""
        hour = datetime(2025, 10, 1, 10, tzinfo=UTC)
        prices = [
            PriceSample(
                price_area="DK1",
                timestamp=hour + timedelta(minutes=15 * i),
                price_per_kwh=Decimal(p),
                resolution="PT15M",
            )
            for i, p in enumerate(["0.40", "0.60", "0.80", "1.00"])
        ]
        request = reference_request(
            date(2025, 10, 1),
            date(2025, 10, 2),
            consumption=[ConsumptionSample(timestamp=hour, quantity_kwh=Decimal("2.000"))],
            spot_prices=prices,
            margin_per_kwh=Decimal("0"),
        )

        result = SettlementCalculator().calculate(request)

        assert result.line(ChargeType.ENERGY).amount == Decimal("1.40")

    def test_quarter_hour_readings_priced_directly(self):
        """Quarter-hour readings use the matching quarter-hour price."""
        hour = datetime(2025, 10, 1, 10, tzinfo=UTC)
        prices = [
            PriceSample(
                price_area="DK1",
                timestamp=hour + timedelta(minutes=15 * i),
                price_per_kwh=Decimal(p),
                resolution="PT15M",
            )
            for i, p in enumerate(["0.40", "0.60", "0.80", "1.00"])
        ]
        readings = [
            ConsumptionSample(
                timestamp=hour + timedelta(minutes=15 * i),
                resolution="PT15M",
                quantity_kwh=Decimal("0.500") if i == 3 else Decimal("0"),
            )
            for i in range(4)
        ]
        request = reference_request(
            date(2025, 10, 1),
            date(2025, 10, 2),
            consumption=readings,
            spot_prices=prices,
            margin_per_kwh=Decimal("0"),
        )

        result = SettlementCalculator().calculate(request)

        assert result.line(ChargeType.ENERGY).amount == Decimal("0.50")

"""Tests for VAT computation and line allocation."""

from decimal import Decimal

from dk_settlement.engine.vat import allocate_vat, compute_vat, round_amount, summarize


class TestRounding:
    """Half-to-even rounding to whole øre."""

    def test_half_to_even(self):
        """Exact halves round to the even øre."""
        assert round_amount(Decimal("0.125")) == Decimal("0.12")
        assert round_amount(Decimal("0.135")) == Decimal("0.14")

    def test_vat_on_subtotal(self):
        """VAT is 25% of the subtotal."""
        assert compute_vat(Decimal("634.51")) == Decimal("158.63")

    def test_summarize(self):
        """Summary adds VAT to the sum of rounded lines."""
        subtotal, vat, total = summarize([Decimal("10.00"), Decimal("5.01")])

        assert subtotal == Decimal("15.01")
        assert vat == Decimal("3.75")
        assert total == Decimal("18.76")


class TestAllocateVat:
    """Distributing a result's VAT over its lines."""

    def test_shares_sum_exactly(self):
        """Per-line VAT sums to the total even when shares do not divide evenly."""
        amounts = [Decimal("0.01"), Decimal("0.01"), Decimal("0.01")]
        shares = allocate_vat(amounts, Decimal("0.03"), Decimal("0.01"))

        assert sum(shares) == Decimal("0.01")
        assert shares[-1] == Decimal("0.01") - shares[0] - shares[1]

    def test_last_line_takes_remainder(self):
        """Rounding remainder lands on the last line."""
        amounts = [Decimal("386.51"), Decimal("114.58"), Decimal("22.10"), Decimal("20.05"),
                   Decimal("3.27"), Decimal("49.00"), Decimal("39.00")]
        shares = allocate_vat(amounts, Decimal("634.51"), Decimal("158.63"))

        assert sum(shares) == Decimal("158.63")
        assert shares[0] == Decimal("96.63")

    def test_zero_subtotal(self):
        """A zero subtotal allocates nothing."""
        shares = allocate_vat([Decimal("1.00"), Decimal("-1.00")], Decimal("0"), Decimal("0"))

        assert shares == [Decimal("0"), Decimal("0")]

    def test_no_lines(self):
        """No lines, no shares."""
        assert allocate_vat([], Decimal("0"), Decimal("0")) == []

    def test_credits(self):
        """Negative amounts allocate negative VAT summing to the total."""
        amounts = [Decimal("-0.26"), Decimal("-0.11"), Decimal("-0.01"), Decimal("-0.01"), Decimal("0.00")]
        shares = allocate_vat(amounts, Decimal("-0.39"), Decimal("-0.10"))

        assert sum(shares) == Decimal("-0.10")

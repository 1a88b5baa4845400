"""VAT and rounding rules.

Danish VAT (moms) is 25% of the subtotal. Line amounts are rounded to
whole øre individually; VAT is computed once on the sum of the rounded
lines. Rounding is half-to-even.
"""

from collections.abc import Sequence
from decimal import ROUND_HALF_EVEN, Decimal

VAT_RATE = Decimal("0.25")
CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def round_amount(value: Decimal) -> Decimal:
    """Round a monetary amount to 2 decimal places."""
    return value.quantize(CENT, rounding=ROUND_HALF_EVEN)


def compute_vat(subtotal: Decimal, vat_rate: Decimal = VAT_RATE) -> Decimal:
    """VAT on a subtotal, rounded to 2 decimal places."""
    return round_amount(subtotal * vat_rate)


def summarize(amounts: Sequence[Decimal], vat_rate: Decimal = VAT_RATE) -> tuple[Decimal, Decimal, Decimal]:
    """Return (subtotal, vat, total) for already-rounded line amounts."""
    subtotal = sum(amounts, ZERO)
    vat = compute_vat(subtotal, vat_rate)
    return subtotal, vat, subtotal + vat


def allocate_vat(amounts: Sequence[Decimal], subtotal: Decimal, total_vat: Decimal) -> list[Decimal]:
    """Distribute ``total_vat`` across line amounts so the shares sum exactly.

    Every line but the last gets its proportional share rounded to
    2 decimals; the last line absorbs the rounding remainder. The order
    of ``amounts`` must match the order lines are persisted in.

    Example:
        >>> allocate_vat([Decimal("1.00")] * 3, Decimal("3.00"), Decimal("0.75"))
        [Decimal('0.25'), Decimal('0.25'), Decimal('0.25')]
    """
    if not amounts or subtotal == 0:
        return [ZERO for _ in amounts]

    shares: list[Decimal] = []
    allocated = ZERO
    for amount in amounts[:-1]:
        share = round_amount(amount / subtotal * total_vat)
        shares.append(share)
        allocated += share

    shares.append(total_vat - allocated)
    return shares

"""Decimal helpers for escrow amounts.

Amounts are currency values with two decimal places. Splits never leak a
cent: the payer share is rounded down and the payee keeps the remainder.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_amount(value: Decimal | int | str) -> Decimal:
    """Normalize a value to a two-place Decimal."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def split_amount(amount: Decimal, payee_ratio: Decimal) -> tuple[Decimal, Decimal]:
    """Split an amount between payer and payee.

    Args:
        amount: The escrowed amount being divided.
        payee_ratio: Fraction (0..1) that goes to the payee (seller or worker).

    Returns:
        (payer_share, payee_share), summing exactly to ``amount``.
    """
    if not Decimal(0) <= payee_ratio <= Decimal(1):
        raise ValueError(f"payee_ratio must be between 0 and 1, got {payee_ratio}")
    amount = to_amount(amount)
    payer_share = (amount * (Decimal(1) - payee_ratio)).quantize(CENT, rounding=ROUND_DOWN)
    payee_share = amount - payer_share
    return payer_share, payee_share

"""
Money helpers.

All amounts are Decimal quantized to the currency minor unit (0.01).
"""

from decimal import Decimal, ROUND_DOWN, ROUND_HALF_EVEN
from typing import Dict, Hashable, Iterable, Tuple

MINOR_UNIT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def to_decimal(value) -> Decimal:
    """Coerce DB floats/ints/strings to Decimal without binary float noise."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_money(value, rounding: str = ROUND_HALF_EVEN) -> Decimal:
    """Quantize to the minor unit. Half-even by default to avoid systematic bias."""
    return to_decimal(value).quantize(MINOR_UNIT, rounding=rounding)


def floor_money(value) -> Decimal:
    """Truncate toward zero at the minor unit (integer-cent division)."""
    return to_decimal(value).quantize(MINOR_UNIT, rounding=ROUND_DOWN)


def percent_of(amount: Decimal, percent: Decimal) -> Decimal:
    """Truncated percentage share of a non-negative amount."""
    return floor_money(to_decimal(amount) * to_decimal(percent) / HUNDRED)


def allocate_pro_rata(
    total: Decimal,
    weights: Iterable[Tuple[Hashable, Decimal]],
    tie_break=None,
) -> Dict[Hashable, Decimal]:
    """
    Split `total` across keys in proportion to their weights.

    Each share is floored to the minor unit; the leftover cents all go to
    the key with the largest weight. Ties on weight are broken by the
    smallest `tie_break(key)` (the key itself by default), so the result is
    reproducible and always sums exactly to `total`.

    Zero or negative weights are the caller's problem: pass only positive ones.
    """
    total = to_money(total)
    items = [(key, to_decimal(weight)) for key, weight in weights]
    if not items:
        return {}

    weight_sum = sum((weight for _, weight in items), Decimal("0"))
    if weight_sum <= 0:
        raise ValueError("allocate_pro_rata needs at least one positive weight")

    shares = {key: floor_money(total * weight / weight_sum) for key, weight in items}

    remainder = total - sum(shares.values(), ZERO)
    if remainder:
        sort_key = tie_break or (lambda key: key)
        largest_weight = max(weight for _, weight in items)
        recipient = min((key for key, weight in items if weight == largest_weight), key=sort_key)
        shares[recipient] += remainder

    return shares

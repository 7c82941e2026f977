"""Decimal arithmetic helpers shared by the ledger and the simulators.

Every simulator runs inside :func:`decimal_context`, a local decimal context with a
fixed number of significant digits (34 by default), rounding half to even.
Ledger balances stay integers scaled by their token precision and are converted
with :func:`to_decimal` at the boundary. Integer ledger math (:func:`mul_div`,
:func:`to_scaled_int`) truncates toward zero.
"""

from contextlib import contextmanager
from decimal import ROUND_DOWN, ROUND_HALF_EVEN, Decimal, localcontext
from typing import Iterable, Iterator, Sequence, Tuple

DEFAULT_PRECISION = 34

BDV_DECIMALS = 6
STALK_DECIMALS = 10
SEEDS_DECIMALS = 6
GAUGE_POINT_DECIMALS = 18
OPTIMAL_PERCENT_DECIMALS = 6

ZERO = Decimal(0)
ONE = Decimal(1)


@contextmanager
def decimal_context(precision: int = DEFAULT_PRECISION) -> Iterator:
    """Local decimal context: ``precision`` significant digits, half-even rounding."""
    with localcontext() as ctx:
        ctx.prec = precision
        ctx.rounding = ROUND_HALF_EVEN
        yield ctx


def to_decimal(value: int, decimals: int = BDV_DECIMALS) -> Decimal:
    """Convert a scaled integer into a Decimal (``value / 10**decimals``)."""
    return Decimal(value) / (Decimal(10) ** decimals)


def to_scaled_int(value: Decimal, decimals: int = BDV_DECIMALS) -> int:
    """Convert a Decimal back into a scaled integer, truncating toward zero."""
    return int((value * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN))


def mul_div(value: int, numerator: int, denominator: int) -> int:
    """Integer ``value * numerator / denominator`` truncated toward zero; 0 on a zero denominator."""
    if denominator == 0:
        return 0
    product = value * numerator
    quotient = abs(product) // abs(denominator)
    return quotient if (product >= 0) == (denominator > 0) else -quotient


def safe_div(numerator: Decimal, denominator: Decimal, fallback: Decimal = ZERO) -> Decimal:
    """Divide, returning ``fallback`` when the denominator is zero."""
    if denominator == 0:
        return fallback
    return numerator / denominator


def dsum(values: Iterable[Decimal]) -> Decimal:
    """Left-to-right sum in the active context."""
    total = ZERO
    for v in values:
        total = total + v
    return total


def dmax(values: Sequence[Decimal]) -> Decimal:
    """Largest value, or zero for an empty sequence."""
    if not values:
        return ZERO
    largest = values[0]
    for v in values[1:]:
        if v > largest:
            largest = v
    return largest


def liquidity_weighted_price(pools: Iterable[Tuple[Decimal, Decimal]]) -> Decimal:
    """
    Liquidity-weighted price across pools.

    Args:
        pools: (price, liquidity) pairs

    Returns:
        sum(price * liquidity) / sum(liquidity), or the reference value 1 when
        there is no liquidity at all
    """
    weighted = ZERO
    total_liquidity = ZERO
    for price, liquidity in pools:
        weighted = weighted + price * liquidity
        total_liquidity = total_liquidity + liquidity
    return safe_div(weighted, total_liquidity, fallback=ONE)

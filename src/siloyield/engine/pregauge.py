"""Pre-gauge yield simulator - single-asset compounding model.

A representative depositor holding 1 BDV-equivalent is simulated against the whole
silo for one year of hourly seasons:

- each season the silo mints n beans, shared by stalk ownership k / K
- each seignorage bean adds seedsPerBeanBDV seeds and 1 stalk to the totals
- every seed grows 1/10,000 stalk per season
"""

from decimal import Decimal
from typing import Tuple

from .fixed_point import (
    ONE,
    SEEDS_DECIMALS,
    STALK_DECIMALS,
    decimal_context,
    safe_div,
    to_decimal,
)

HORIZON = 8760


def calculate_apy_pre_gauge(
    n: Decimal,
    seeds_per_bdv: Decimal,
    seeds_per_bean_bdv: Decimal,
    stalk: int,
    seeds: int,
    horizon: int = HORIZON,
    precision: int = 34
) -> Tuple[Decimal, Decimal]:
    """
    Simulate one year of compounding for a single deposit.

    Args:
        n: Estimated beans minted to the silo per season (e.g. an EMA)
        seeds_per_bdv: Seeds per BDV of the deposited token
        seeds_per_bean_bdv: Seeds per BDV of the reference asset
        stalk: Total silo stalk (10 decimals)
        seeds: Total silo seeds (6 decimals)

    Returns:
        (bean_apy, stalk_apy) as fractional growth, 0.1 meaning 10%
    """
    n = Decimal(n)
    seeds_per_bdv = Decimal(seeds_per_bdv)
    seeds_per_bean_bdv = Decimal(seeds_per_bean_bdv)

    with decimal_context(precision):
        C = to_decimal(seeds, SEEDS_DECIMALS)  # total seeds
        K = to_decimal(stalk, STALK_DECIMALS)  # total stalk
        b = safe_div(seeds_per_bdv, seeds_per_bean_bdv)  # depositor BDV
        k = ONE  # depositor stalk

        b_start = b
        k_start = k

        stalk_per_seed = Decimal("0.0001")
        stalk_per_bean = seeds_per_bean_bdv / Decimal(10000)

        for _ in range(horizon):
            ownership = safe_div(k, K)
            new_bdv = n * ownership

            C_next = C + n * seeds_per_bean_bdv
            K_next = K + n + stalk_per_seed * C
            b_next = b + new_bdv
            k_next = k + new_bdv + stalk_per_bean * b

            C, K, b, k = C_next, K_next, b_next, k_next

        return b - b_start, k - k_start

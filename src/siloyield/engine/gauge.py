"""Gauge yield simulator - multi-asset compounding model with seed gauge weights.

Asset index convention for tracked depositors:
- -1: the reference asset (bean)
- -2: a whitelisted non-gauge asset with static seeds
- >= 0: index into the gauge LP arrays

Every simulated season:
1. r drifts by a pluggable delta and is clamped to [0, 1]; rScaled = 0.5 + 0.5 r
2. during the first two seasons germinating BDV matures into live BDV
3. with several gauge LPs, gauge points are rebalanced by the token's gauge point function
4. bean gauge points per BDV = max LP gauge points per BDV * rScaled
5. new grown stalk gs = (totalStalk / totalBdv - 1) / catchUpRate * gaugeBdv is
   split by gauge points into per-asset seeds
6. totals grow by gs and the earned beans; depositors earn their stalk share of
   the beans (not while germinating) and stalk from their seeds
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from .fixed_point import ONE, ZERO, decimal_context, dmax, dsum, safe_div

HORIZON = 8760
REFERENCE_ASSET = -1
NON_GAUGE_ASSET = -2

SEED_PRECISION = 10000
HUNDRED = Decimal(100)

# Thresholds of the protocol's default gauge point function
UPPER_THRESHOLD = Decimal("1.0001")
LOWER_THRESHOLD = Decimal("0.9999")
ONE_POINT = ONE
MAX_GAUGE_POINTS = Decimal(1000)

GaugePointFunction = Callable[[Decimal, Decimal, Decimal], Decimal]
DeltaRPolicy = Callable[[Decimal, int], Decimal]


def identity_gauge_points(gauge_points: Decimal, current_percent: Decimal, optimal_percent: Decimal) -> Decimal:
    """Leave gauge points unchanged."""
    return gauge_points


def default_gauge_points(gauge_points: Decimal, current_percent: Decimal, optimal_percent: Decimal) -> Decimal:
    """
    The protocol's default gauge point function.

    One point is removed while the LP holds more than its optimal share of LP BDV
    (never below zero) and one point is added while it holds less (capped at 1000).
    """
    if current_percent > optimal_percent * UPPER_THRESHOLD:
        if gauge_points <= ONE_POINT:
            return ZERO
        return gauge_points - ONE_POINT
    if current_percent < optimal_percent * LOWER_THRESHOLD:
        return min(gauge_points + ONE_POINT, MAX_GAUGE_POINTS)
    return gauge_points


GAUGE_POINT_FUNCTIONS: Dict[str, GaugePointFunction] = {
    "identity": identity_gauge_points,
    "default": default_gauge_points,
}


def gauge_point_function(selector: Optional[str]) -> GaugePointFunction:
    """Look up a gauge point function by its stored identifier (identity when unknown)."""
    if selector is None:
        return identity_gauge_points
    return GAUGE_POINT_FUNCTIONS.get(selector, identity_gauge_points)


def constant_delta_r(change: Decimal = Decimal("-0.01")) -> DeltaRPolicy:
    """Drift policy returning the same change every season."""
    change = Decimal(change)

    def policy(r: Decimal, step: int) -> Decimal:
        return change

    return policy


def update_r(r: Decimal, change: Decimal) -> Decimal:
    """r + change clamped to [0, 1]."""
    new_r = r + change
    if new_r > ONE:
        return ONE
    if new_r < ZERO:
        return ZERO
    return new_r


def scale_r(r: Decimal) -> Decimal:
    return Decimal("0.5") + Decimal("0.5") * r


@dataclass
class GaugeInputs:
    """
    Inputs of a gauge simulation.

    Germinating arrays are indexed [even, odd]; per-LP germinating BDV is
    gauge_lp_germinating_bdv[bucket][lp].
    """
    tokens: List[int]
    earned_beans: Decimal
    gauge_lp_points: List[Decimal]
    gauge_lp_deposited_bdv: List[Decimal]
    non_gauge_deposited_bdv: Decimal
    gauge_lp_optimal_percent_bdv: List[Decimal]
    initial_r: Decimal
    silo_deposited_bean_bdv: Decimal
    silo_stalk: Decimal
    catch_up_rate: Decimal
    season: int = 0
    germinating_bean_bdv: List[Decimal] = field(default_factory=lambda: [ZERO, ZERO])
    gauge_lp_germinating_bdv: Optional[List[List[Decimal]]] = None
    non_gauge_germinating_bdv: List[Decimal] = field(default_factory=lambda: [ZERO, ZERO])
    static_seeds: Optional[List[Optional[Decimal]]] = None
    gauge_point_functions: Optional[List[GaugePointFunction]] = None


@dataclass
class AssetYield:
    """Simulated yield of one tracked asset, in percent."""
    token_index: int
    bean_apy: Decimal
    stalk_apy: Decimal


def calculate_gauge_vapys(
    inputs: GaugeInputs,
    delta_r_policy: Optional[DeltaRPolicy] = None,
    horizon: int = HORIZON,
    precision: int = 34,
    seed_precision: int = SEED_PRECISION
) -> List[AssetYield]:
    """
    Simulate bean and stalk vAPY for each requested asset under the seed gauge.

    Args:
        inputs: Silo state and the assets to track
        delta_r_policy: Change applied to r each season (defaults to constant -0.01)
        horizon: Number of simulated seasons
        seed_precision: Seeds per unit of stalk growth per season

    Returns:
        One AssetYield per entry of ``inputs.tokens``, in the same order
    """
    if delta_r_policy is None:
        delta_r_policy = constant_delta_r()

    tokens = list(inputs.tokens)
    lp_count = len(inputs.gauge_lp_points)
    for t in tokens:
        if t >= lp_count or t < NON_GAUGE_ASSET:
            raise ValueError(f"Invalid asset index {t} for {lp_count} gauge LPs")

    static_seeds = inputs.static_seeds or [None] * len(tokens)
    lp_germinating = inputs.gauge_lp_germinating_bdv or [[ZERO] * lp_count, [ZERO] * lp_count]
    gp_functions = inputs.gauge_point_functions or [identity_gauge_points] * lp_count

    with decimal_context(precision):
        earned = Decimal(inputs.earned_beans)
        catch_up_rate = Decimal(inputs.catch_up_rate)
        seeds_scale = Decimal(seed_precision)

        lp_points = [Decimal(p) for p in inputs.gauge_lp_points]
        lp_bdv = [Decimal(b) for b in inputs.gauge_lp_deposited_bdv]
        lp_gp_per_bdv = [safe_div(p, b) for p, b in zip(lp_points, lp_bdv)]

        r = Decimal(inputs.initial_r)
        bean_bdv = Decimal(inputs.silo_deposited_bean_bdv)
        non_gauge_bdv = Decimal(inputs.non_gauge_deposited_bdv)
        total_stalk = Decimal(inputs.silo_stalk)
        gauge_bdv = bean_bdv + dsum(lp_bdv)
        total_bdv = gauge_bdv + non_gauge_bdv
        largest_lp_gp_per_bdv = dmax(lp_gp_per_bdv)

        user_beans = [ONE if t == REFERENCE_ASSET else ZERO for t in tokens]
        user_lp = [ZERO if t == REFERENCE_ASSET else ONE for t in tokens]
        user_stalk = [ONE for _ in tokens]

        # Both germinating seasons add the bucket opposite the period parity
        bucket = 1 if inputs.season % 2 == 0 else 0

        for i in range(horizon):
            r = update_r(r, delta_r_policy(r, i))
            r_scaled = scale_r(r)

            if i < 2:
                bean_bdv = bean_bdv + Decimal(inputs.germinating_bean_bdv[bucket])
                for j in range(lp_count):
                    lp_bdv[j] = lp_bdv[j] + Decimal(lp_germinating[bucket][j])
                gauge_bdv = bean_bdv + dsum(lp_bdv)
                non_gauge_bdv = non_gauge_bdv + Decimal(inputs.non_gauge_germinating_bdv[bucket])
                total_bdv = gauge_bdv + non_gauge_bdv

            if lp_count > 1:
                lp_bdv_sum = dsum(lp_bdv)
                for j in range(lp_count):
                    current_percent = safe_div(lp_bdv[j], lp_bdv_sum) * HUNDRED
                    lp_points[j] = gp_functions[j](
                        lp_points[j], current_percent, Decimal(inputs.gauge_lp_optimal_percent_bdv[j])
                    )
                    lp_gp_per_bdv[j] = safe_div(lp_points[j], lp_bdv[j])
                largest_lp_gp_per_bdv = dmax(lp_gp_per_bdv)

            bean_gp_per_bdv = largest_lp_gp_per_bdv * r_scaled
            gp_total = dsum(lp_points) + bean_gp_per_bdv * bean_bdv
            avg_gs_per_bdv = safe_div(total_stalk, total_bdv, fallback=ONE) - ONE
            gs = avg_gs_per_bdv / catch_up_rate * gauge_bdv
            bean_seeds = safe_div(gs, gp_total) * bean_gp_per_bdv * seeds_scale

            total_stalk = total_stalk + gs + earned
            gauge_bdv = gauge_bdv + earned
            total_bdv = total_bdv + earned
            bean_bdv = bean_bdv + earned

            for j, token in enumerate(tokens):
                lp_seeds = ZERO
                if token == NON_GAUGE_ASSET:
                    lp_seeds = Decimal(static_seeds[j] if static_seeds[j] is not None else ZERO)
                elif token >= 0:
                    lp_seeds = safe_div(gs, gp_total) * lp_gp_per_bdv[token] * seeds_scale

                # New deposits earn no beans while germinating, but grow stalk
                if i < 2:
                    user_bean_share = ZERO
                else:
                    user_bean_share = safe_div(earned * user_stalk[j], total_stalk)
                user_stalk[j] = (
                    user_stalk[j]
                    + user_bean_share
                    + (user_beans[j] * bean_seeds + user_lp[j] * lp_seeds) / seeds_scale
                )
                user_beans[j] = user_beans[j] + user_bean_share

        return [
            AssetYield(
                token_index=token,
                bean_apy=(user_beans[j] + user_lp[j] - ONE) * HUNDRED,
                stalk_apy=(user_stalk[j] - ONE) * HUNDRED,
            )
            for j, token in enumerate(tokens)
        ]

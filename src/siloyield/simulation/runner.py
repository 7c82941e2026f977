"""Yield runner - orchestrate EMA, silo vAPY and fertilizer APY updates.

Key Features:
- One EMA record per configured window (24, 168, 720 seasons by default)
- Pre-gauge model before the gauge activation period, gauge model afterwards
- All whitelisted tokens are simulated in a single gauge call
- Reads only immutable ledger snapshots; writes only its own output records
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from ..config.schema import Config
from ..engine.ema import EMARecord, MintFeed, MintRateEstimator, beta_for, effective_samples
from ..engine.fertilizer import AuxiliaryYieldRecord, FertilizerYieldEstimator, ProtocolReader, StaticProtocolReader
from ..engine.fixed_point import (
    BDV_DECIMALS,
    GAUGE_POINT_DECIMALS,
    OPTIMAL_PERCENT_DECIMALS,
    SEEDS_DECIMALS,
    STALK_DECIMALS,
    decimal_context,
    to_decimal,
)
from ..engine.gauge import (
    NON_GAUGE_ASSET,
    REFERENCE_ASSET,
    GaugeInputs,
    calculate_gauge_vapys,
    constant_delta_r,
    gauge_point_function,
)
from ..engine.ledger import PROTOCOL, LedgerSnapshot, LedgerStore
from ..engine.pregauge import calculate_apy_pre_gauge

logger = logging.getLogger(__name__)

HUNDRED = Decimal(100)


@dataclass
class TokenYieldRecord:
    """Simulated yield of a token for one (period, window), in percent."""
    token: str
    period: int
    window: int
    bean_apy: Decimal
    stalk_apy: Decimal
    created_at: int = 0


@dataclass
class WindowResult:
    """Everything produced for one (period, window)."""
    ema: EMARecord
    token_yields: List[TokenYieldRecord]
    fertilizer: AuxiliaryYieldRecord


class YieldStore:
    """Output records keyed for point lookup."""

    def __init__(self):
        self.ema: Dict[Tuple[int, int], EMARecord] = {}
        self.token_yields: Dict[Tuple[str, int, int], TokenYieldRecord] = {}
        self.fertilizer: Dict[Tuple[int, int], AuxiliaryYieldRecord] = {}

    def save_window(self, result: WindowResult) -> None:
        self.save_ema(result.ema)
        for record in result.token_yields:
            self.save_token_yield(record)
        self.save_fertilizer(result.fertilizer)

    def save_ema(self, record: EMARecord) -> None:
        self.ema[(record.period, record.window)] = record

    def save_token_yield(self, record: TokenYieldRecord) -> None:
        self.token_yields[(record.token, record.period, record.window)] = record

    def save_fertilizer(self, record: AuxiliaryYieldRecord) -> None:
        self.fertilizer[(record.period, record.window)] = record

    def get_ema(self, period: int, window: int) -> Optional[EMARecord]:
        return self.ema.get((period, window))

    def get_token_yield(self, token: str, period: int, window: int) -> Optional[TokenYieldRecord]:
        return self.token_yields.get((token, period, window))

    def get_fertilizer(self, period: int, window: int) -> Optional[AuxiliaryYieldRecord]:
        return self.fertilizer.get((period, window))


def _selector(config: Config, setting) -> str:
    # Tokens left on identity follow the configured policy
    if setting.gauge_point_function == "identity":
        return config.gauge.gauge_point_function
    return setting.gauge_point_function


def build_gauge_inputs(
    config: Config,
    snapshot: LedgerSnapshot,
    tokens: Tuple[str, ...],
    earned_beans: Decimal
) -> GaugeInputs:
    """
    Translate a ledger snapshot into gauge simulation inputs.

    The reference token is tracked as -1, tokens with gauge points as LP indexes,
    every other token as -2 with static seeds. Non-gauge deposited BDV is the
    protocol's total deposited BDV minus the reference and gauge LP BDV, so
    dewhitelisted tokens still count.

    Returns:
        GaugeInputs whose ``tokens`` follow the order of ``tokens``
    """
    reference = config.tokens.reference
    settings = {t: snapshot.setting(t) for t in tokens}
    lp_tokens = [t for t in tokens if t != reference and settings[t].is_gauge]
    lp_index = {t: i for i, t in enumerate(lp_tokens)}

    token_indexes: List[int] = []
    static_seeds: List[Optional[Decimal]] = []
    for t in tokens:
        if t == reference:
            token_indexes.append(REFERENCE_ASSET)
            static_seeds.append(None)
        elif t in lp_index:
            token_indexes.append(lp_index[t])
            static_seeds.append(None)
        else:
            token_indexes.append(NON_GAUGE_ASSET)
            static_seeds.append(to_decimal(settings[t].stalk_earned_per_season, SEEDS_DECIMALS))

    bean_bdv = snapshot.balance(PROTOCOL, reference).deposited_bdv
    lp_bdv = [snapshot.balance(PROTOCOL, t).deposited_bdv for t in lp_tokens]
    non_gauge_bdv = snapshot.totals(PROTOCOL).deposited_bdv - bean_bdv - sum(lp_bdv)

    bean_germinating = snapshot.germinating_bdv(reference)
    lp_germinating = [snapshot.germinating_bdv(t) for t in lp_tokens]
    non_gauge_germinating = [0, 0]
    for t, (even, odd) in snapshot.germinating.items():
        if t == reference or t in lp_index:
            continue
        non_gauge_germinating[0] += even
        non_gauge_germinating[1] += odd

    return GaugeInputs(
        tokens=token_indexes,
        earned_beans=earned_beans,
        gauge_lp_points=[to_decimal(settings[t].gauge_points, GAUGE_POINT_DECIMALS) for t in lp_tokens],
        gauge_lp_deposited_bdv=[to_decimal(b, BDV_DECIMALS) for b in lp_bdv],
        non_gauge_deposited_bdv=to_decimal(non_gauge_bdv, BDV_DECIMALS),
        gauge_lp_optimal_percent_bdv=[
            to_decimal(settings[t].optimal_percent_deposited_bdv or 0, OPTIMAL_PERCENT_DECIMALS) for t in lp_tokens
        ],
        initial_r=Decimal(snapshot.bean_to_max_lp_gp_per_bdv_ratio) / Decimal(config.gauge.ratio_precision),
        silo_deposited_bean_bdv=to_decimal(bean_bdv, BDV_DECIMALS),
        silo_stalk=to_decimal(snapshot.totals(PROTOCOL).stalk, STALK_DECIMALS),
        catch_up_rate=Decimal(config.gauge.catch_up_rate),
        season=snapshot.period,
        germinating_bean_bdv=[to_decimal(b, BDV_DECIMALS) for b in bean_germinating],
        gauge_lp_germinating_bdv=[
            [to_decimal(g[bucket], BDV_DECIMALS) for g in lp_germinating] for bucket in (0, 1)
        ],
        non_gauge_germinating_bdv=[to_decimal(b, BDV_DECIMALS) for b in non_gauge_germinating],
        static_seeds=static_seeds,
        gauge_point_functions=[gauge_point_function(_selector(config, settings[t])) for t in lp_tokens],
    )


def silo_vapys(
    config: Config,
    snapshot: LedgerSnapshot,
    period: int,
    window: int,
    rate: Decimal,
    tokens: Tuple[str, ...],
    timestamp: int = 0
) -> List[TokenYieldRecord]:
    """
    Simulate the vAPY of every token for one (period, window).

    Args:
        rate: Beans minted per season assumed over the horizon

    Returns:
        One TokenYieldRecord per token, in percent
    """
    if not tokens:
        return []

    precision = config.simulation.decimal_precision
    horizon = config.simulation.horizon

    if period < config.gauge.activation_period:
        totals = snapshot.totals(PROTOCOL)
        with decimal_context(precision):
            seeds_per_bean = to_decimal(snapshot.setting(config.tokens.reference).stalk_earned_per_season, SEEDS_DECIMALS)
        records = []
        for token in tokens:
            with decimal_context(precision):
                seeds_per_bdv = to_decimal(snapshot.setting(token).stalk_earned_per_season, SEEDS_DECIMALS)
            bean_apy, stalk_apy = calculate_apy_pre_gauge(
                rate, seeds_per_bdv, seeds_per_bean, totals.stalk, totals.seeds,
                horizon=horizon, precision=precision
            )
            with decimal_context(precision):
                records.append(TokenYieldRecord(
                    token=token,
                    period=period,
                    window=window,
                    bean_apy=bean_apy * HUNDRED,
                    stalk_apy=stalk_apy * HUNDRED,
                    created_at=timestamp,
                ))
        return records

    with decimal_context(precision):
        inputs = build_gauge_inputs(config, snapshot, tokens, Decimal(rate))
    results = calculate_gauge_vapys(
        inputs,
        delta_r_policy=constant_delta_r(config.gauge.delta_r),
        horizon=horizon,
        precision=precision,
        seed_precision=config.simulation.seed_precision,
    )
    return [
        TokenYieldRecord(
            token=token,
            period=period,
            window=window,
            bean_apy=result.bean_apy,
            stalk_apy=result.stalk_apy,
            created_at=timestamp,
        )
        for token, result in zip(tokens, results)
    ]


def evaluate_window(
    config: Config,
    snapshot: LedgerSnapshot,
    feed: MintFeed,
    fertilizer: FertilizerYieldEstimator,
    period: int,
    window: int,
    timestamp: int = 0,
    fertilizer_supply: Optional[int] = None
) -> WindowResult:
    """Pure evaluation of one (period, window): EMA, token yields, fertilizer yield."""
    estimator = MintRateEstimator(
        feed,
        origin_period=config.ema.origin_period,
        windows=config.ema.windows,
        precision=config.simulation.decimal_precision,
    )
    ema = estimator.compute(period, window, snapshot.whitelisted_tokens, timestamp)
    token_yields = silo_vapys(
        config, snapshot, period, window, ema.smoothed_rate, ema.whitelisted_tokens, timestamp
    )
    fert = fertilizer.estimate(period, window, ema.smoothed_rate, fertilizer_supply, timestamp)
    return WindowResult(ema=ema, token_yields=token_yields, fertilizer=fert)


class YieldRunner:
    """Runs the yield estimators against a ledger and keeps their output records."""

    def __init__(
        self,
        config: Config,
        ledger: LedgerStore,
        feed: MintFeed,
        reader: Optional[ProtocolReader] = None,
        store: Optional[YieldStore] = None
    ):
        """
        Initialize yield runner.

        Args:
            config: Workbench configuration
            ledger: Mirror ledger (read through snapshots only)
            feed: Historical minted value per period
            reader: Live protocol reads for the fertilizer estimator
            store: Output record store (a new one by default)
        """
        self.config = config
        self.ledger = ledger
        self.feed = feed
        self.store = store if store is not None else YieldStore()
        self.fertilizer_supply: Optional[int] = None
        self.fertilizer = FertilizerYieldEstimator(
            reader if reader is not None else StaticProtocolReader(),
            default_humidity=config.fertilizer.default_humidity,
            humidity_precision=config.fertilizer.humidity_precision,
            precision=config.simulation.decimal_precision,
        )

    def update(self, period: int, timestamp: int = 0) -> List[WindowResult]:
        """Recompute every window for ``period`` and store the records."""
        return [self.update_window(period, window, timestamp) for window in self.config.ema.windows]

    def update_window(self, period: int, window: int, timestamp: int = 0) -> WindowResult:
        snapshot = self.ledger.snapshot()
        result = evaluate_window(
            self.config, snapshot, self.feed, self.fertilizer, period, window, timestamp, self.fertilizer_supply
        )
        self.store.save_window(result)
        logger.info(
            "period %d window %d: ema=%s, %d token yields, fertilizer apy=%s",
            period, window, result.ema.smoothed_rate, len(result.token_yields), result.fertilizer.simple_apy
        )
        return result

    def update_silo_vapys(self, period: int, window: int, rate: Decimal, timestamp: int = 0) -> List[TokenYieldRecord]:
        """
        Recompute token yields from a given mint rate, bypassing the EMA.

        The rate is stored as the EMA record of (period, window) when none exists yet.
        """
        snapshot = self.ledger.snapshot()
        ema = self.store.get_ema(period, window)
        tokens = ema.whitelisted_tokens if ema is not None and ema.whitelisted_tokens else snapshot.whitelisted_tokens
        if ema is None:
            u = effective_samples(period, window, self.config.ema.origin_period)
            with decimal_context(self.config.simulation.decimal_precision):
                beta = beta_for(u)
            self.store.save_ema(EMARecord(
                period=period,
                window=window,
                u=u,
                beta=beta,
                smoothed_rate=Decimal(rate),
                whitelisted_tokens=tuple(tokens),
                created_at=timestamp,
            ))
        records = silo_vapys(self.config, snapshot, period, window, Decimal(rate), tokens, timestamp)
        for record in records:
            self.store.save_token_yield(record)
        return records

"""Tests for the yield runner and batch runner."""

import pytest
import sys
import os
from decimal import Decimal

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from siloyield.config.loader import config_from_dict, load_config
from siloyield.engine.ema import MintFeed
from siloyield.engine.fertilizer import StaticProtocolReader
from siloyield.engine.fixed_point import decimal_context
from siloyield.engine.ledger import LedgerStore, Stem, TokenGaugeSetting
from siloyield.engine.pregauge import calculate_apy_pre_gauge
from siloyield.simulation.batch import BatchRunner
from siloyield.simulation.runner import YieldRunner, YieldStore, build_gauge_inputs

BEAN = "0xbea0000029ad1c77d3d5d23ba2d8893db9d1efab"
LP = "0xbea0e11282e2bb5893bece110cf199501e872bad"
LP2 = "0xbea0000113b0d182f4064c86b71c315389e4715d"
UNRIPE = "0x1bea0050e63e05fbb5d8ba2f10cf5800b6224449"
SEEDED = "0xc9c32cd16bf7efb85ff14e0c8603cc90f6f2ee49"
ALICE = "0xa11ce"


def short_config(horizon=24):
    data = load_config().to_dict()
    data['simulation']['horizon'] = horizon
    return config_from_dict(data)


def populated_ledger(period):
    ledger = LedgerStore()
    ledger.set_period(period)
    ledger.whitelist_token(TokenGaugeSetting(token=BEAN, stalk_earned_per_season=2_000_000))
    ledger.whitelist_token(TokenGaugeSetting(
        token=LP,
        stalk_earned_per_season=4_000_000,
        gauge_points=100 * 10 ** 18,
        optimal_percent_deposited_bdv=100 * 10 ** 6,
    ))
    ledger.whitelist_token(TokenGaugeSetting(token=UNRIPE, stalk_earned_per_season=0))
    ledger.record_deposit(ALICE, BEAN, Stem(0), amount=1_000_000_000_000, bdv=1_000_000_000_000)
    ledger.record_deposit(ALICE, LP, Stem(0), amount=500_000_000_000, bdv=400_000_000_000)
    ledger.record_deposit(ALICE, UNRIPE, Stem(0), amount=900_000_000_000, bdv=300_000_000_000)
    ledger.credit(ALICE, BEAN, stalk=5_000_000 * 10 ** 10, seeds=4_000_000 * 10 ** 6)
    ledger.set_bean_to_max_lp_ratio(50 * 10 ** 18)
    return ledger


def constant_feed(first, last, delta=Decimal(100)):
    return MintFeed({p: delta for p in range(first, last + 1)})


class TestGaugeInputs:
    """Ledger snapshot to gauge inputs."""

    def test_token_indexes(self):
        config = load_config()
        snapshot = populated_ledger(20000).snapshot()
        inputs = build_gauge_inputs(config, snapshot, snapshot.whitelisted_tokens, Decimal(100))

        assert inputs.tokens == [-1, 0, -2]
        assert inputs.gauge_lp_points == [Decimal(100)]
        assert inputs.gauge_lp_deposited_bdv == [Decimal(400_000)]
        assert inputs.non_gauge_deposited_bdv == Decimal(300_000)
        assert inputs.silo_deposited_bean_bdv == Decimal(1_000_000)
        assert inputs.silo_stalk == Decimal(5_000_000)
        assert inputs.initial_r == Decimal("0.5")
        assert inputs.static_seeds == [None, None, Decimal(0)]
        assert inputs.season == 20000

    def test_germinating_buckets(self):
        config = load_config()
        ledger = populated_ledger(20000)
        ledger.add_germinating(BEAN, 20000, 2_000_000)
        ledger.add_germinating(LP, 20001, 3_000_000)
        ledger.add_germinating(UNRIPE, 20001, 4_000_000)
        snapshot = ledger.snapshot()
        inputs = build_gauge_inputs(config, snapshot, snapshot.whitelisted_tokens, Decimal(100))

        assert inputs.germinating_bean_bdv == [Decimal(2), Decimal(0)]
        assert inputs.gauge_lp_germinating_bdv == [[Decimal(0)], [Decimal(3)]]
        assert inputs.non_gauge_germinating_bdv == [Decimal(0), Decimal(4)]

    def test_configured_gauge_point_function(self):
        data = load_config().to_dict()
        data['gauge']['gauge_point_function'] = "default"
        config = config_from_dict(data)
        ledger = populated_ledger(20000)
        ledger.whitelist_token(TokenGaugeSetting(token=LP2, gauge_points=10 ** 18, optimal_percent_deposited_bdv=0))
        snapshot = ledger.snapshot()
        inputs = build_gauge_inputs(config, snapshot, snapshot.whitelisted_tokens, Decimal(100))

        assert inputs.tokens == [-1, 0, -2, 1]
        assert all(f.__name__ == "default_gauge_points" for f in inputs.gauge_point_functions)


class TestYieldRunner:
    """End-to-end updates."""

    def test_update_covers_every_window(self):
        config = short_config()
        ledger = populated_ledger(20000)
        runner = YieldRunner(config, ledger, constant_feed(19000, 20000))
        results = runner.update(20000, timestamp=1_700_000_000)

        assert [r.ema.window for r in results] == [24, 168, 720]
        for window in (24, 168, 720):
            ema = runner.store.get_ema(20000, window)
            assert ema.u == window
            assert Decimal(0) < ema.smoothed_rate < Decimal(100)
            for token in (BEAN, LP, UNRIPE):
                record = runner.store.get_token_yield(token, 20000, window)
                assert record is not None
                assert record.created_at == 1_700_000_000
            assert runner.store.get_fertilizer(20000, window) is not None

    def test_gauge_yields_are_positive(self):
        runner = YieldRunner(short_config(), populated_ledger(20000), constant_feed(19000, 20000))
        runner.update(20000)
        for token in (BEAN, LP, UNRIPE):
            record = runner.store.get_token_yield(token, 20000, 24)
            assert record.bean_apy > 0
            assert record.stalk_apy > 0

    def test_pre_gauge_path_in_percent(self):
        config = short_config()
        ledger = populated_ledger(15000)
        runner = YieldRunner(config, ledger, MintFeed())
        records = runner.update_silo_vapys(15000, 720, Decimal(100))

        bean_apy, stalk_apy = calculate_apy_pre_gauge(
            Decimal(100), Decimal(4), Decimal(2), 5_000_000 * 10 ** 10, 4_000_000 * 10 ** 6, horizon=24
        )
        lp = next(r for r in records if r.token == LP)
        with decimal_context():
            assert lp.bean_apy == bean_apy * 100
            assert lp.stalk_apy == stalk_apy * 100

    def test_pre_gauge_zero_seed_token(self):
        runner = YieldRunner(short_config(), populated_ledger(15000), MintFeed())
        records = runner.update_silo_vapys(15000, 24, Decimal(100))
        unripe = next(r for r in records if r.token == UNRIPE)
        lp = next(r for r in records if r.token == LP)
        assert 0 < unripe.bean_apy < lp.bean_apy
        assert unripe.stalk_apy < lp.stalk_apy

    def test_given_rate_kept_as_ema(self):
        runner = YieldRunner(short_config(), populated_ledger(20000), MintFeed())
        runner.update_silo_vapys(20000, 168, Decimal(40))
        ema = runner.store.get_ema(20000, 168)
        assert ema.smoothed_rate == Decimal(40)
        assert ema.u == 168
        with decimal_context():
            assert ema.beta == Decimal(2) / Decimal(169)

        # An existing record is not replaced
        runner.update_silo_vapys(20000, 168, Decimal(90))
        assert runner.store.get_ema(20000, 168).smoothed_rate == Decimal(40)

    def test_seed_precision_from_config(self):
        """Only static seeds of non-gauge tokens are scaled by the configured precision."""
        ledger = populated_ledger(20000)
        ledger.whitelist_token(TokenGaugeSetting(token=SEEDED, stalk_earned_per_season=2_000_000))
        ledger.record_deposit(ALICE, SEEDED, Stem(0), amount=100_000_000_000, bdv=100_000_000_000)
        baseline = YieldRunner(short_config(), ledger, MintFeed())
        data = short_config().to_dict()
        data['simulation']['seed_precision'] = 20000
        coarse_runner = YieldRunner(config_from_dict(data), ledger, MintFeed())

        base = next(r for r in baseline.update_silo_vapys(20000, 24, Decimal(100)) if r.token == SEEDED)
        coarse = next(r for r in coarse_runner.update_silo_vapys(20000, 24, Decimal(100)) if r.token == SEEDED)
        assert coarse.stalk_apy < base.stalk_apy

    def test_fertilizer_uses_mirrored_supply(self):
        runner = YieldRunner(
            short_config(), populated_ledger(20000), constant_feed(19000, 20000),
            reader=StaticProtocolReader(humidity=250, supply=0)
        )
        runner.fertilizer_supply = 1_000_000
        result = runner.update_window(20000, 24)
        assert result.fertilizer.outstanding_supply == 1_000_000
        assert result.fertilizer.humidity == Decimal("0.25")
        assert result.fertilizer.simple_apy > 0

    def test_no_whitelisted_tokens(self):
        runner = YieldRunner(short_config(), LedgerStore(), MintFeed())
        result = runner.update_window(20000, 24)
        assert result.token_yields == []


class TestBatchRunner:
    """Many windows over one snapshot."""

    def test_sequential_and_pooled_agree(self):
        config = short_config()
        snapshot = populated_ledger(20000).snapshot()
        feed = constant_feed(19000, 20000)
        batch = BatchRunner(config, snapshot, feed)
        tasks = batch.tasks_for([19990, 20000])

        sequential = batch.run(tasks)
        pooled = batch.run(tasks, max_workers=4, timeout=60)

        assert len(sequential.results) == 6
        assert not pooled.timed_out
        assert not pooled.failed
        assert [r.ema.smoothed_rate for r in pooled.results] == [r.ema.smoothed_rate for r in sequential.results]
        assert [r.token_yields[0].stalk_apy for r in pooled.results] == \
            [r.token_yields[0].stalk_apy for r in sequential.results]

    def test_timed_out_tasks_are_discarded(self):
        config = load_config()
        snapshot = populated_ledger(20000).snapshot()
        batch = BatchRunner(config, snapshot, constant_feed(19000, 20000))
        tasks = batch.tasks_for([20000], windows=[24, 168])

        result = batch.run(tasks, max_workers=2, timeout=0)
        store = YieldStore()
        result.save(store)

        assert len(result.results) + len(result.timed_out) == len(tasks)
        assert result.timed_out
        assert len(store.token_yields) == 3 * len(result.results)

    def test_save_writes_completed_windows(self):
        batch = BatchRunner(short_config(), populated_ledger(20000).snapshot(), constant_feed(19000, 20000))
        store = YieldStore()
        batch.run(batch.tasks_for([20000])).save(store)
        assert store.get_ema(20000, 168) is not None
        assert store.get_token_yield(LP, 20000, 720) is not None

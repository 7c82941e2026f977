"""Tests for export and sanity checks."""

import pytest
import sys
import os
import json
from decimal import Decimal

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import pandas as pd

from siloyield.config.loader import config_from_dict, load_config
from siloyield.engine.ema import MintFeed
from siloyield.engine.ledger import PROTOCOL, LedgerStore, SnapshotRecorder, Stem, TokenGaugeSetting
from siloyield.reporting.export import export_csv, export_json, export_snapshots_csv
from siloyield.simulation.runner import TokenYieldRecord, YieldRunner
from siloyield.validation import SanityChecker, validate_yield_results

BEAN = "0xbea0000029ad1c77d3d5d23ba2d8893db9d1efab"
LP = "0xbea0e11282e2bb5893bece110cf199501e872bad"
ALICE = "0xa11ce"
BOB = "0xb0b"


@pytest.fixture
def recorder():
    return SnapshotRecorder()


@pytest.fixture
def ledger(recorder):
    ledger = LedgerStore(snapshot_sink=recorder)
    ledger.set_period(20000)
    ledger.whitelist_token(TokenGaugeSetting(token=BEAN, stalk_earned_per_season=2_000_000))
    ledger.whitelist_token(TokenGaugeSetting(
        token=LP, stalk_earned_per_season=4_000_000,
        gauge_points=100 * 10 ** 18, optimal_percent_deposited_bdv=100 * 10 ** 6,
    ))
    ledger.record_deposit(ALICE, BEAN, Stem(0), amount=1_000_000_000_000, bdv=1_000_000_000_000)
    ledger.record_deposit(BOB, LP, Stem(0), amount=500_000_000_000, bdv=400_000_000_000)
    ledger.credit(ALICE, BEAN, stalk=3_000_000 * 10 ** 10)
    ledger.set_bean_to_max_lp_ratio(50 * 10 ** 18)
    return ledger


@pytest.fixture
def runner(ledger):
    data = load_config().to_dict()
    data['simulation']['horizon'] = 24
    config = config_from_dict(data)
    feed = MintFeed({p: Decimal(100) for p in range(19000, 20001)})
    runner = YieldRunner(config, ledger, feed)
    runner.update(20000)
    return runner


class TestExport:
    """CSV and JSON output."""

    def test_export_yields_csv(self, runner, tmp_path):
        path = tmp_path / "yields.csv"
        export_csv(runner.store, str(path))
        frame = pd.read_csv(path, dtype={"bean_apy": str, "stalk_apy": str})

        assert len(frame) == 2 * 3
        assert set(frame["window"]) == {24, 168, 720}
        row = frame[(frame["token"] == BEAN) & (frame["window"] == 720)].iloc[0]
        assert Decimal(row["stalk_apy"]) == runner.store.get_token_yield(BEAN, 20000, 720).stalk_apy

    def test_export_ema_and_fertilizer_csv(self, runner, tmp_path):
        export_csv(runner.store, str(tmp_path / "ema.csv"), kind="ema")
        export_csv(runner.store, str(tmp_path / "fert.csv"), kind="fertilizer")

        ema = pd.read_csv(tmp_path / "ema.csv")
        fert = pd.read_csv(tmp_path / "fert.csv")
        assert list(ema["window"]) == [24, 168, 720]
        assert ema["whitelisted_tokens"].iloc[0] == f"{BEAN},{LP}"
        assert len(fert) == 3

    def test_unknown_kind_rejected(self, runner, tmp_path):
        with pytest.raises(ValueError):
            export_csv(runner.store, str(tmp_path / "x.csv"), kind="charts")

    def test_export_json(self, runner, tmp_path):
        path = tmp_path / "yields.json"
        export_json(runner.store, str(path), config=runner.config)
        data = json.loads(path.read_text())

        assert len(data["token_yields"]) == 6
        assert len(data["ema"]) == 3
        assert len(data["fertilizer"]) == 3
        assert data["config_hash"] == runner.config.compute_hash()
        assert isinstance(data["token_yields"][0]["bean_apy"], str)

    def test_export_snapshots(self, ledger, recorder, tmp_path):
        path = tmp_path / "rollup.csv"
        export_snapshots_csv(recorder, str(path), rollup=True)
        frame = pd.read_csv(path)
        protocol = frame[(frame["scope"] == PROTOCOL) & (frame["token"] == BEAN)]
        assert protocol["delta_deposited_bdv"].iloc[0] == 1_000_000_000_000


class TestSanityChecks:
    """Ledger, config and yield checks."""

    def test_default_config_is_clean(self):
        assert SanityChecker(load_config()).check_config_inputs() == []

    def test_short_horizon_warns(self):
        data = load_config().to_dict()
        data['simulation']['horizon'] = 24
        warnings = SanityChecker(config_from_dict(data)).check_config_inputs()
        assert any(w.category == "input" and "Horizon" in w.message for w in warnings)

    def test_reconciled_ledger_is_clean(self, ledger):
        assert SanityChecker(load_config()).check_ledger(ledger.snapshot()) == []

    def test_protocol_only_credit_is_flagged(self, ledger):
        ledger.credit(PROTOCOL, LP, bdv=5)
        warnings = SanityChecker(load_config()).check_ledger(ledger.snapshot())
        assert len(warnings) == 1
        assert warnings[0].severity == "error"
        assert warnings[0].category == "conservation"

    def test_negative_yield_flagged(self):
        record = TokenYieldRecord(token=BEAN, period=1, window=24, bean_apy=Decimal(-1), stalk_apy=Decimal(1))
        warnings = SanityChecker(load_config()).check_yields([record])
        assert warnings[0].severity == "error"

    def test_validate_yield_results(self, runner, ledger):
        warnings = validate_yield_results(
            runner.config,
            ledger.snapshot(),
            runner.store.token_yields.values(),
            runner.store.ema.values(),
        )
        # Only the shortened horizon is reported
        assert [w.category for w in warnings] == ["input"]

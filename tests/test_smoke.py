"""Smoke tests for core silo yield modules.

These tests verify basic functionality without deep validation.
Run these first to catch obvious breakage.
"""

import pytest
import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import yaml
from pydantic import ValidationError

from siloyield.config.loader import config_from_dict, load_config
from siloyield.config.schema import Config
from siloyield.engine.fixed_point import decimal_context, liquidity_weighted_price, mul_div, to_decimal, to_scaled_int
from decimal import Decimal

REFERENCE = "0xbea0000029ad1c77d3d5d23ba2d8893db9d1efab"


class TestConfigLoading:
    """Smoke tests for configuration loading."""

    def test_load_default_config(self):
        """Config loads without errors."""
        config = load_config()
        assert config is not None
        assert isinstance(config, Config)

    def test_config_has_required_sections(self):
        """Config contains all expected sections."""
        config = load_config()
        assert hasattr(config, 'ema')
        assert hasattr(config, 'simulation')
        assert hasattr(config, 'gauge')
        assert hasattr(config, 'fertilizer')
        assert hasattr(config, 'tokens')

    def test_default_values(self):
        """Defaults match the protocol constants."""
        config = load_config()
        assert config.ema.origin_period == 6074
        assert config.ema.windows == [24, 168, 720]
        assert config.simulation.horizon == 8760
        assert config.gauge.activation_period == 19628
        assert config.gauge.catch_up_rate == 4320
        assert config.gauge.delta_r == Decimal("-0.01")
        assert config.gauge.ratio_precision == 10 ** 20
        assert config.fertilizer.default_humidity == 500
        assert config.tokens.reference == REFERENCE

    def test_config_hash_is_deterministic(self):
        """Same config produces same hash."""
        config1 = load_config()
        config2 = load_config()
        assert config1.compute_hash() == config2.compute_hash()

    def test_load_from_explicit_path(self, tmp_path):
        path = tmp_path / "custom.yaml"
        data = load_config(None).to_dict()
        data['simulation']['seed_precision'] = 20000
        path.write_text(yaml.safe_dump(data))
        assert load_config(str(path)).simulation.seed_precision == 20000

    def test_config_hash_changes_with_values(self):
        """Different values produce a different hash."""
        base = load_config().to_dict()
        base['gauge']['catch_up_rate'] = 1000
        assert config_from_dict(base).compute_hash() != load_config().compute_hash()

    def test_reference_address_is_lowercased(self):
        config = config_from_dict({"tokens": {"reference": REFERENCE.upper().replace("0X", "0x")}})
        assert config.tokens.reference == REFERENCE


class TestConfigValidation:
    """Invalid configurations are rejected."""

    def test_missing_tokens_rejected(self):
        with pytest.raises(ValidationError):
            config_from_dict({})

    def test_duplicate_windows_rejected(self):
        with pytest.raises(ValidationError):
            config_from_dict({"tokens": {"reference": REFERENCE}, "ema": {"windows": [24, 24]}})

    def test_non_positive_window_rejected(self):
        with pytest.raises(ValidationError):
            config_from_dict({"tokens": {"reference": REFERENCE}, "ema": {"windows": [0, 24]}})

    def test_windows_are_sorted(self):
        config = config_from_dict({"tokens": {"reference": REFERENCE}, "ema": {"windows": [720, 24]}})
        assert config.ema.windows == [24, 720]

    def test_delta_r_out_of_range_rejected(self):
        with pytest.raises(ValidationError):
            config_from_dict({"tokens": {"reference": REFERENCE}, "gauge": {"delta_r": "1.5"}})

    def test_activation_before_origin_rejected(self):
        with pytest.raises(ValidationError):
            config_from_dict({
                "tokens": {"reference": REFERENCE},
                "ema": {"origin_period": 100},
                "gauge": {"activation_period": 50},
            })


class TestFixedPoint:
    """Smoke tests for decimal helpers."""

    def test_to_decimal(self):
        assert to_decimal(2798474_000000, 6) == Decimal(2798474)
        assert to_decimal(161540879 * 10 ** 10, 10) == Decimal(161540879)

    def test_to_scaled_int_truncates(self):
        assert to_scaled_int(Decimal("1.9999999"), 6) == 1999999
        assert to_scaled_int(Decimal("-1.9999999"), 6) == -1999999

    def test_mul_div_truncates_toward_zero(self):
        assert mul_div(1, 10, 3) == 3
        assert mul_div(-1, 10, 3) == -3
        assert mul_div(5, 7, 0) == 0

    def test_liquidity_weighted_price(self):
        price = liquidity_weighted_price([(Decimal("1.0"), Decimal(300)), (Decimal("2.0"), Decimal(100))])
        assert price == Decimal("1.25")

    def test_liquidity_weighted_price_without_liquidity(self):
        assert liquidity_weighted_price([]) == Decimal(1)
        assert liquidity_weighted_price([(Decimal("0.9"), Decimal(0))]) == Decimal(1)

    def test_context_rounds_half_even(self):
        with decimal_context(4):
            assert Decimal(2) / Decimal(3) == Decimal("0.6667")
            assert +Decimal("1.0005") == Decimal("1.000")
            assert +Decimal("1.0015") == Decimal("1.002")

    def test_helpers_exported_from_engine(self):
        from siloyield import engine

        assert engine.liquidity_weighted_price is liquidity_weighted_price
        assert "liquidity_weighted_price" in engine.__all__

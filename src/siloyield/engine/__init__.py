"""Ledger, estimators and yield simulators."""

from .ema import EMARecord, MintFeed, MintRateEstimator
from .events import EventProcessor
from .fixed_point import decimal_context, liquidity_weighted_price
from .fertilizer import AuxiliaryYieldRecord, FertilizerYieldEstimator, StaticProtocolReader
from .gauge import AssetYield, GaugeInputs, calculate_gauge_vapys
from .ledger import PROTOCOL, LedgerSnapshot, LedgerStore, Season, Stem, TokenGaugeSetting
from .pregauge import calculate_apy_pre_gauge

__all__ = [
    # Ledger
    "PROTOCOL",
    "LedgerStore",
    "LedgerSnapshot",
    "Season",
    "Stem",
    "TokenGaugeSetting",
    "EventProcessor",
    # Estimators
    "MintFeed",
    "MintRateEstimator",
    "EMARecord",
    "FertilizerYieldEstimator",
    "StaticProtocolReader",
    "AuxiliaryYieldRecord",
    # Simulators
    "calculate_apy_pre_gauge",
    "calculate_gauge_vapys",
    "GaugeInputs",
    "AssetYield",
    # Helpers
    "decimal_context",
    "liquidity_weighted_price",
]

"""Mint-rate estimator - rolling EMAs of the per-period minted value.

Key Concepts:
- u = min(t - origin, window) samples are available at period t
- beta = 2 / (u + 1)
- While u < window, beta changes every period, so the EMA is recomputed over
  the whole history (origin + 1 .. t)
- Once saturated, only the last `window` periods are iterated, starting from 0
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

from .fixed_point import ZERO, decimal_context

ROLLING_24_WINDOW = 24
ROLLING_7_DAY_WINDOW = 168
ROLLING_30_DAY_WINDOW = 720

DEFAULT_WINDOWS = (ROLLING_24_WINDOW, ROLLING_7_DAY_WINDOW, ROLLING_30_DAY_WINDOW)
DEFAULT_ORIGIN_PERIOD = 6074


class MintFeed:
    """Historical per-period minted value. Periods without an entry count as zero."""

    def __init__(self, deltas: Optional[Mapping[int, Decimal]] = None):
        self._deltas: Dict[int, Decimal] = {int(p): Decimal(d) for p, d in (deltas or {}).items()}

    @classmethod
    def from_records(cls, records: Iterable[Mapping]) -> 'MintFeed':
        """Build from ``{"period": ..., "delta": ...}`` records; repeated periods are summed."""
        deltas: Dict[int, Decimal] = {}
        for record in records:
            period = int(record["period"])
            deltas[period] = deltas.get(period, ZERO) + Decimal(str(record["delta"]))
        return cls(deltas)

    @classmethod
    def from_frame(cls, frame: pd.DataFrame) -> 'MintFeed':
        """Build from a DataFrame with ``period`` and ``delta`` columns."""
        return cls.from_records(frame[["period", "delta"]].to_dict("records"))

    @classmethod
    def from_csv(cls, filepath: str) -> 'MintFeed':
        """Read a ``period,delta`` CSV; deltas are parsed as strings to keep every digit."""
        frame = pd.read_csv(filepath, dtype={"period": int, "delta": str})
        return cls.from_frame(frame)

    def delta(self, period: int) -> Decimal:
        return self._deltas.get(period, ZERO)

    def set(self, period: int, delta: Decimal) -> None:
        self._deltas[period] = Decimal(delta)

    def periods(self) -> List[int]:
        return sorted(self._deltas)

    def __len__(self) -> int:
        return len(self._deltas)


@dataclass
class EMARecord:
    """Smoothed mint rate for one (period, window)."""
    period: int
    window: int
    u: int
    beta: Decimal
    smoothed_rate: Decimal
    whitelisted_tokens: Tuple[str, ...] = field(default_factory=tuple)
    created_at: int = 0


def effective_samples(period: int, window: int, origin: int = DEFAULT_ORIGIN_PERIOD) -> int:
    """u = min(period - origin, window), floored at zero."""
    return max(0, min(period - origin, window))


def beta_for(u: int) -> Decimal:
    """Smoothing factor 2 / (u + 1)."""
    return Decimal(2) / Decimal(u + 1)


def iterate_ema(feed: MintFeed, first: int, last: int, beta: Decimal) -> Decimal:
    """Run ema_i = (delta_i - ema_{i-1}) * beta + ema_{i-1} over first..last, from ema = 0."""
    ema = ZERO
    for period in range(first, last + 1):
        ema = (feed.delta(period) - ema) * beta + ema
    return ema


class MintRateEstimator:
    """Rolling exponential averages of the minted value per period."""

    def __init__(
        self,
        feed: MintFeed,
        origin_period: int = DEFAULT_ORIGIN_PERIOD,
        windows: Iterable[int] = DEFAULT_WINDOWS,
        precision: int = 34
    ):
        """
        Initialize estimator.

        Args:
            feed: Historical minted value per period
            origin_period: Distribution activation period; data starts the period after
            windows: Rolling windows in periods
            precision: Significant digits of the decimal context
        """
        self.feed = feed
        self.origin_period = origin_period
        self.windows = tuple(windows)
        self.precision = precision

    def compute(self, period: int, window: int, whitelisted_tokens: Iterable[str] = (), timestamp: int = 0) -> EMARecord:
        """
        Compute the EMA record for a period and window.

        Args:
            period: Current period t
            window: Rolling window w

        Returns:
            EMARecord with u, beta and the smoothed rate
        """
        u = effective_samples(period, window, self.origin_period)
        with decimal_context(self.precision):
            if u == 0:
                beta = beta_for(0)
                rate = ZERO
            elif u < window:
                beta = beta_for(u)
                rate = iterate_ema(self.feed, self.origin_period + 1, period, beta)
            else:
                beta = beta_for(window)
                rate = iterate_ema(self.feed, period - window + 1, period, beta)

        return EMARecord(
            period=period,
            window=window,
            u=u,
            beta=beta,
            smoothed_rate=rate,
            whitelisted_tokens=tuple(whitelisted_tokens),
            created_at=timestamp,
        )

    def full_recompute(self, period: int, window: int) -> Decimal:
        """EMA over the entire history with the beta that applies at ``period``."""
        u = effective_samples(period, window, self.origin_period)
        with decimal_context(self.precision):
            return iterate_ema(self.feed, self.origin_period + 1, period, beta_for(u))

    def compute_all(self, period: int, whitelisted_tokens: Iterable[str] = (), timestamp: int = 0) -> List[EMARecord]:
        """One record per configured window."""
        tokens = tuple(whitelisted_tokens)
        return [self.compute(period, w, tokens, timestamp) for w in self.windows]

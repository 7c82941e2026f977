"""Fertilizer yield estimator - closed-form APY of the secondary asset.

simpleAPY = humidity / ((1 + humidity) / deltaBpf / 8760)

where deltaBpf is the EMA mint rate divided by the outstanding fertilizer supply.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

from ..errors import ExternalReadError
from .fixed_point import ONE, ZERO, decimal_context, safe_div

logger = logging.getLogger(__name__)

SEASONS_PER_YEAR = Decimal(8760)
DEFAULT_HUMIDITY = 500
HUMIDITY_PRECISION = 1000


class ProtocolReader(Protocol):
    """On-demand reads of live protocol state. Either call may raise ExternalReadError."""

    def current_humidity(self) -> int:
        """Raw humidity (1000 = 100%)."""
        ...

    def fertilizer_supply(self) -> int:
        """Outstanding fertilizer."""
        ...


@dataclass
class AuxiliaryYieldRecord:
    """Fertilizer yield estimate for one (period, window)."""
    period: int
    window: int
    humidity: Decimal
    outstanding_supply: int
    rate_ema: Decimal
    delta_rate_per_unit: Decimal
    simple_apy: Decimal
    created_at: int = 0


class FertilizerYieldEstimator:
    """Estimate fertilizer APY from the bean EMA and the current humidity."""

    def __init__(
        self,
        reader: ProtocolReader,
        default_humidity: int = DEFAULT_HUMIDITY,
        humidity_precision: int = HUMIDITY_PRECISION,
        precision: int = 34
    ):
        self.reader = reader
        self.default_humidity = default_humidity
        self.humidity_precision = humidity_precision
        self.precision = precision

    def read_humidity(self) -> Decimal:
        """Current humidity as a fraction, falling back to the default when the read fails."""
        try:
            raw = self.reader.current_humidity()
        except ExternalReadError as exc:
            logger.warning("humidity read failed (%s); using default %d", exc, self.default_humidity)
            raw = self.default_humidity
        with decimal_context(self.precision):
            return Decimal(raw) / Decimal(self.humidity_precision)

    def estimate(
        self,
        period: int,
        window: int,
        rate_ema: Decimal,
        outstanding_supply: Optional[int] = None,
        timestamp: int = 0
    ) -> AuxiliaryYieldRecord:
        """
        Compute the fertilizer yield record.

        Args:
            rate_ema: Smoothed beans minted per season
            outstanding_supply: Fertilizer supply from the mirrored state; read from
                the protocol when omitted

        Returns:
            AuxiliaryYieldRecord
        """
        humidity = self.read_humidity()
        if outstanding_supply is None:
            try:
                outstanding_supply = self.reader.fertilizer_supply()
            except ExternalReadError as exc:
                logger.warning("fertilizer supply read failed (%s); treating supply as 0", exc)
                outstanding_supply = 0

        with decimal_context(self.precision):
            rate_ema = Decimal(rate_ema)
            delta_bpf = safe_div(rate_ema, Decimal(outstanding_supply))
            if delta_bpf == 0:
                simple_apy = ZERO
            else:
                simple_apy = humidity / ((ONE + humidity) / delta_bpf / SEASONS_PER_YEAR)

        return AuxiliaryYieldRecord(
            period=period,
            window=window,
            humidity=humidity,
            outstanding_supply=outstanding_supply,
            rate_ema=rate_ema,
            delta_rate_per_unit=delta_bpf,
            simple_apy=simple_apy,
            created_at=timestamp,
        )


class StaticProtocolReader:
    """ProtocolReader over fixed values; a missing humidity reads as a failure."""

    def __init__(self, humidity: Optional[int] = None, supply: int = 0):
        self.humidity = humidity
        self.supply = supply

    def current_humidity(self) -> int:
        if self.humidity is None:
            raise ExternalReadError("read_failed", "humidity unavailable")
        return self.humidity

    def fertilizer_supply(self) -> int:
        return self.supply

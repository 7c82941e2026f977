"""Pydantic schema for configuration validation."""

import hashlib
import json
from decimal import Decimal
from typing import Any, Dict, List, Literal

from pydantic import BaseModel, Field, field_validator, model_validator


class EMASettings(BaseModel):
    """Mint-rate EMA parameters."""
    origin_period: int = Field(ge=0, default=6074, description="Distribution activation period (no data at or before it)")
    windows: List[int] = Field(default_factory=lambda: [24, 168, 720], description="Rolling windows in periods")

    @field_validator('windows')
    @classmethod
    def validate_windows(cls, v):
        """Windows must be positive and unique."""
        if not v:
            raise ValueError("at least one EMA window is required")
        if any(w <= 0 for w in v):
            raise ValueError(f"EMA windows must be positive, got {v}")
        if len(set(v)) != len(v):
            raise ValueError(f"EMA windows must be unique, got {v}")
        return sorted(v)


class SimulationSettings(BaseModel):
    """Forward simulation parameters."""
    horizon: int = Field(gt=0, default=8760, description="Number of simulated periods (one year of seasons)")
    decimal_precision: int = Field(ge=16, le=200, default=34, description="Significant digits per decimal operation")
    seed_precision: int = Field(gt=0, default=10000, description="Seeds per unit of stalk growth")


class GaugeSettings(BaseModel):
    """Seed gauge simulation parameters."""
    activation_period: int = Field(ge=0, default=19628, description="First period simulated with the gauge model")
    catch_up_rate: int = Field(gt=0, default=4320, description="Target periods for new deposits to catch up to average grown stalk")
    delta_r: Decimal = Field(default=Decimal("-0.01"), description="Per-period drift applied to the bean/LP ratio")
    ratio_precision: int = Field(gt=0, default=10 ** 20, description="Scale of the stored bean-to-max-LP ratio")
    gauge_point_function: Literal["identity", "default"] = Field(
        default="identity",
        description="Gauge point rebalancing policy used when several gauge LPs exist"
    )

    @field_validator('delta_r')
    @classmethod
    def validate_delta_r(cls, v):
        """A drift beyond the ratio bounds would pin it after one period."""
        if abs(v) > 1:
            raise ValueError(f"delta_r must be within [-1, 1], got {v}")
        return v


class FertilizerSettings(BaseModel):
    """Fertilizer (auxiliary asset) estimator parameters."""
    default_humidity: int = Field(ge=0, default=500, description="Raw humidity used when the on-chain read fails")
    humidity_precision: int = Field(gt=0, default=1000, description="Raw humidity units per 1.0")


class TokenSettings(BaseModel):
    """Token addresses."""
    reference: str = Field(description="Reference asset (bean) address")

    @field_validator('reference')
    @classmethod
    def normalize_address(cls, v):
        """Addresses are compared lowercase."""
        return v.lower()


class Config(BaseModel):
    """Complete configuration for the silo yield workbench."""
    ema: EMASettings = Field(default_factory=EMASettings)
    simulation: SimulationSettings = Field(default_factory=SimulationSettings)
    gauge: GaugeSettings = Field(default_factory=GaugeSettings)
    fertilizer: FertilizerSettings = Field(default_factory=FertilizerSettings)
    tokens: TokenSettings

    @model_validator(mode='after')
    def validate_activation(self):
        """The gauge cannot activate before the mint feed starts."""
        if self.gauge.activation_period < self.ema.origin_period:
            raise ValueError(
                f"gauge.activation_period ({self.gauge.activation_period}) must not precede "
                f"ema.origin_period ({self.ema.origin_period})"
            )
        return self

    def compute_hash(self) -> str:
        """Compute config hash for reproducibility."""
        config_dict = self.model_dump(mode="json")
        config_str = json.dumps(config_dict, sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """Create config from dictionary."""
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return self.model_dump(mode="json")

"""
File: config.py
Purpose: Centralized configuration for strategy selection and the fallback model.
Dependencies: pydantic >=2.0

Every threshold, confidence floor and formula constant lives here so it can
be overridden from YAML or the environment (see ``config_manager``).
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator

from fusion.schema import (
    BEHAVIORAL_METRICS,
    NEW_HOLDERS_24H,
    SMART_MONEY_SCORE,
    TRANSACTION_PATTERN_SCORE,
    VOLUME_SPIKE_RATIO,
    WHALE_BUYS_24H,
)


# ═══════════════════════════════════════════════════════════════
#  FALLBACK MODEL CONSTANTS
# ═══════════════════════════════════════════════════════════════


class FallbackModelConfig(BaseModel):
    """Constants of the deterministic market-data fallback model."""

    whale_buys_cap: int = Field(default=15, ge=0, description="Upper bound on whale buys")
    whale_buys_scale: float = Field(
        default=50.0, gt=0, description="Multiplier on volume / market cap"
    )
    new_holders_volume_reference: float = Field(
        default=100_000.0, gt=0, description="Volume (USD) that saturates the volume score"
    )
    new_holders_scale: float = Field(default=100.0, gt=0)
    volume_spike_price_divisor: float = Field(
        default=50.0, gt=0, description="Price change (%) per +1.0 of spike ratio"
    )
    max_price_change_pct: float = Field(
        default=1_000.0, gt=0, description="Price change (%) is clipped to ± this value"
    )

    token_age_young_ratio: float = Field(default=0.5, description="volume/mcap above → young")
    token_age_mid_ratio: float = Field(default=0.1, description="volume/mcap above → mid-age")
    token_age_young_hours: float = Field(default=36.0, ge=0)
    token_age_mid_hours: float = Field(default=108.0, ge=0)
    token_age_old_hours: float = Field(default=444.0, ge=0)

    pattern_liquidity_threshold: float = Field(default=50_000.0, ge=0)
    pattern_high_liquidity_score: float = Field(default=0.8, ge=0, le=1)
    pattern_liquidity_divisor: float = Field(default=62_500.0, gt=0)

    smart_money_volume_band: Tuple[float, float] = (10_000.0, 1_000_000.0)
    smart_money_volume_weight: float = 0.3
    smart_money_price_band: Tuple[float, float] = (5.0, 50.0)
    smart_money_price_weight: float = 0.4
    smart_money_mcap_band: Tuple[float, float] = (100_000.0, 10_000_000.0)
    smart_money_mcap_weight: float = 0.3
    smart_money_base_weight: float = Field(
        default=0.1, description="Contribution of a component outside its band"
    )

    @model_validator(mode="after")
    def _ordered(self) -> "FallbackModelConfig":
        if self.token_age_mid_ratio > self.token_age_young_ratio:
            raise ValueError("token_age_mid_ratio must be <= token_age_young_ratio")
        for band in (
            self.smart_money_volume_band,
            self.smart_money_price_band,
            self.smart_money_mcap_band,
        ):
            if band[0] > band[1]:
                raise ValueError(f"band {band} must be (low, high)")
        return self


# ═══════════════════════════════════════════════════════════════
#  STRATEGY / ENGINE
# ═══════════════════════════════════════════════════════════════


def _default_correlations() -> Dict[str, List[str]]:
    return {
        WHALE_BUYS_24H: [SMART_MONEY_SCORE, VOLUME_SPIKE_RATIO],
        VOLUME_SPIKE_RATIO: [WHALE_BUYS_24H, NEW_HOLDERS_24H],
        NEW_HOLDERS_24H: [TRANSACTION_PATTERN_SCORE],
        SMART_MONEY_SCORE: [WHALE_BUYS_24H],
    }


class FusionConfig(BaseModel):
    """Strategy thresholds, confidence floors and engine limits.

    Example::

        FusionConfig(hybrid_confidence_ceiling=0.5, fan_out_limit=4)
    """

    real_primary_threshold: float = Field(
        default=0.7, gt=0, le=1, description="Coverage at or above → real_primary"
    )
    hybrid_threshold: float = Field(
        default=0.3, ge=0, lt=1, description="Coverage at or above → hybrid"
    )
    hybrid_confidence_ceiling: float = Field(default=0.6, ge=0, le=1)
    mathematical_fallback_confidence: float = Field(default=0.3, ge=0, le=1)
    error_fallback_confidence: float = Field(default=0.15, ge=0, le=1)
    fallback_metric_confidence: float = Field(
        default=0.3, ge=0, le=1, description="Confidence tag on fallback-filled metrics"
    )

    boost_factor: float = Field(
        default=1.2, ge=1.0, le=1.2, description="Hybrid nudge on correlated metrics"
    )
    deviation_threshold: float = Field(
        default=0.5, ge=0, description="Relative real-vs-model deviation that triggers a nudge"
    )
    correlated_metrics: Dict[str, List[str]] = Field(default_factory=_default_correlations)

    expected_metrics: List[str] = Field(default_factory=lambda: list(BEHAVIORAL_METRICS))
    fan_out_limit: int = Field(default=6, ge=1, description="Concurrent analyzer calls")
    analyzer_timeout: float = Field(default=10.0, gt=0, description="Per-attempt deadline (s)")
    max_attempts: Optional[int] = Field(
        default=None, ge=1, description="Attempts per analyzer; None uses the resilience setting"
    )

    fallback: FallbackModelConfig = Field(default_factory=FallbackModelConfig)

    @field_validator("expected_metrics")
    @classmethod
    def _unique(cls, v: List[str]) -> List[str]:
        if len(set(v)) != len(v):
            raise ValueError("expected_metrics must not contain duplicates")
        return v

    @model_validator(mode="after")
    def _thresholds_ordered(self) -> "FusionConfig":
        if self.hybrid_threshold >= self.real_primary_threshold:
            raise ValueError("hybrid_threshold must be < real_primary_threshold")
        return self

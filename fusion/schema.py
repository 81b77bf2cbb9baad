"""
File: schema.py
Purpose: Type-safe Pydantic v2 records for the fusion pipeline.
Dependencies: pydantic >=2.0

Defines the contextual snapshot fed to the fallback model, the
sub-analyzer contract, per-metric samples and the fused result.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from resilience.schema import ErrorAnalysis


# ═══════════════════════════════════════════════════════════════
#  METRIC NAMES
# ═══════════════════════════════════════════════════════════════

NEW_HOLDERS_24H = "new_holders_24h"
WHALE_BUYS_24H = "whale_buys_24h"
VOLUME_SPIKE_RATIO = "volume_spike_ratio"
TOKEN_AGE_HOURS = "token_age_hours"
TRANSACTION_PATTERN_SCORE = "transaction_pattern_score"
SMART_MONEY_SCORE = "smart_money_score"

BEHAVIORAL_METRICS: Tuple[str, ...] = (
    NEW_HOLDERS_24H,
    WHALE_BUYS_24H,
    VOLUME_SPIKE_RATIO,
    TOKEN_AGE_HOURS,
    TRANSACTION_PATTERN_SCORE,
    SMART_MONEY_SCORE,
)


# ═══════════════════════════════════════════════════════════════
#  ENUMS
# ═══════════════════════════════════════════════════════════════


class Provenance(str, Enum):
    """Where a metric value came from."""
    REAL = "real"
    FALLBACK = "fallback"


class FusionStrategy(str, Enum):
    """How real and modelled values were combined for one result."""
    REAL_ONLY = "real_only"
    REAL_PRIMARY = "real_primary"
    HYBRID = "hybrid"
    MATHEMATICAL_FALLBACK = "mathematical_fallback"
    ERROR_FALLBACK = "error_fallback"


# ═══════════════════════════════════════════════════════════════
#  INPUT SCHEMAS
# ═══════════════════════════════════════════════════════════════


class ContextSnapshot(BaseModel):
    """Market context for one subject, consumed by the fallback model.

    Example::

        ContextSnapshot(volume_24h=250_000, market_cap=1_000_000,
                        liquidity=40_000, price_change_24h=12.5)
    """
    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    volume_24h: float = Field(default=0.0, ge=0.0, description="24h traded volume (USD)")
    market_cap: float = Field(default=0.0, ge=0.0, description="Market capitalisation (USD)")
    liquidity: float = Field(default=0.0, ge=0.0, description="Pool liquidity (USD)")
    price_change_24h: float = Field(default=0.0, description="24h price change (%)")
    price_usd: float = Field(default=0.0, ge=0.0, description="Spot price (USD)")


AnalyzeFn = Callable[[str, ContextSnapshot], Awaitable[Mapping[str, float]]]


class AnalyzerDescriptor(BaseModel):
    """A pluggable sub-analyzer producing part of the metric vector.

    ``analyze(subject_id, snapshot)`` returns ``{metric_name: value}``;
    every value it produces is tagged with ``confidence``.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = Field(min_length=1)
    confidence: float = Field(ge=0.0, le=1.0)
    analyze: AnalyzeFn
    dependency_key: Optional[str] = Field(
        default=None, description="Breaker key; defaults to '<name>-default'"
    )
    rate_limiter: Optional[str] = Field(
        default=None, description="Limiter key; defaults to the dependency key"
    )

    @property
    def resolved_dependency_key(self) -> str:
        return self.dependency_key or f"{self.name}-default"


# ═══════════════════════════════════════════════════════════════
#  OUTPUT SCHEMAS
# ═══════════════════════════════════════════════════════════════


class MetricSample(BaseModel):
    """One fused metric value with its confidence and origin."""
    model_config = ConfigDict(frozen=True)

    name: str
    value: float
    confidence: float = Field(ge=0.0, le=1.0)
    provenance: Provenance
    source: Optional[str] = Field(default=None, description="Producing analyzer name")

    @field_validator("value")
    @classmethod
    def _finite(cls, v: float) -> float:
        if v != v or v in (float("inf"), float("-inf")):
            raise ValueError("metric value must be finite")
        return v


class AnalyzerOutcome(BaseModel):
    """Per-analyzer report attached to a :class:`FusionResult`."""
    model_config = ConfigDict(frozen=True)

    name: str
    succeeded: bool
    metrics: List[str] = Field(default_factory=list)
    attempts: int = Field(default=0, ge=0)
    error: Optional[ErrorAnalysis] = None


class FusionResult(BaseModel):
    """Confidence-scored behavioral metrics for one subject.

    Every expected metric is present; ``coverage`` is the share of them
    obtained from real sources.
    """
    model_config = ConfigDict(frozen=True)

    subject_id: str
    metrics: Dict[str, MetricSample]
    overall_confidence: float = Field(ge=0.0, le=1.0)
    coverage: float = Field(ge=0.0, le=1.0)
    strategy: FusionStrategy
    real_metric_count: int = Field(ge=0)
    expected_metric_count: int = Field(ge=0)
    outcomes: List[AnalyzerOutcome] = Field(default_factory=list)
    cancelled: bool = False
    adjustments: List[str] = Field(
        default_factory=list, description="Metrics nudged by the hybrid heuristic"
    )
    correlation_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    computed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def real_data_percentage(self) -> float:
        return self.coverage * 100.0

    def values(self) -> Dict[str, float]:
        """Return ``{metric_name: value}``."""
        return {name: sample.value for name, sample in self.metrics.items()}

    def summary(self) -> Dict[str, Any]:
        """Flat dict suitable for a persistence sink or a log line."""
        return {
            "subject_id": self.subject_id,
            "strategy": self.strategy.value,
            "overall_confidence": round(self.overall_confidence, 4),
            "real_data_percentage": round(self.real_data_percentage, 2),
            "cancelled": self.cancelled,
            **self.values(),
        }

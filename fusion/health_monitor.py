"""System health scoring from breaker status and recent fusion quality."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Mapping, Sequence

from pydantic import BaseModel, ConfigDict, Field

from fusion.schema import FusionResult
from resilience.schema import CircuitBreakerState
from resilience.telemetry import get_logger

_logger = get_logger(__name__)

OPEN_BREAKER_PENALTY = 20
FAILURE_PENALTY = 5
FAILURE_ALLOWANCE = 3
HIGH_FAILURE_WARNING = 2
QUALITY_BONUS = 10
HEALTHY_SCORE = 80
DEGRADED_SCORE = 50


class HealthStatusValue(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"


class HealthReport(BaseModel):
    """Point-in-time health of the fusion pipeline."""
    model_config = ConfigDict(frozen=True)

    score: int = Field(ge=0, le=100)
    status: HealthStatusValue
    open_breakers: List[str] = Field(default_factory=list)
    average_confidence: float = 0.0
    average_real_data_percentage: float = 0.0
    recommendations: List[str] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class HealthMonitor:
    """Score 0..100 from breaker state and recent result quality.

    Starting at 100: −20 per open breaker, −5 per failure above 3 on any
    breaker, +10 when mean confidence > 0.6, +10 when mean real-data
    percentage > 50, clamped to [0, 100].
    """

    def __init__(self, confidence_target: float = 0.6, real_data_target: float = 50.0) -> None:
        self.confidence_target = confidence_target
        self.real_data_target = real_data_target

    def evaluate(
        self,
        breaker_status: Mapping[str, CircuitBreakerState],
        recent_results: Sequence[FusionResult] = (),
    ) -> HealthReport:
        open_breakers = sorted(k for k, s in breaker_status.items() if s.is_open)
        score = 100 - OPEN_BREAKER_PENALTY * len(open_breakers)
        for state in breaker_status.values():
            if state.failure_count > FAILURE_ALLOWANCE:
                score -= (state.failure_count - FAILURE_ALLOWANCE) * FAILURE_PENALTY

        avg_confidence = 0.0
        avg_real = 0.0
        if recent_results:
            avg_confidence = sum(r.overall_confidence for r in recent_results) / len(recent_results)
            avg_real = sum(r.real_data_percentage for r in recent_results) / len(recent_results)
            if avg_confidence > self.confidence_target:
                score += QUALITY_BONUS
            if avg_real > self.real_data_target:
                score += QUALITY_BONUS

        score = max(0, min(100, score))
        status = _status_for(score)
        report = HealthReport(
            score=score,
            status=status,
            open_breakers=open_breakers,
            average_confidence=avg_confidence,
            average_real_data_percentage=avg_real,
            recommendations=self._recommend(breaker_status, open_breakers, recent_results, score),
        )
        if status != HealthStatusValue.HEALTHY:
            _logger.warning(f"Fusion health {status.value} ({score}/100)")
        return report

    def _recommend(
        self,
        breaker_status: Mapping[str, CircuitBreakerState],
        open_breakers: List[str],
        recent_results: Sequence[FusionResult],
        score: int,
    ) -> List[str]:
        out: List[str] = []
        if open_breakers:
            out.append(
                f"{len(open_breakers)} circuit breaker(s) open - investigate upstream connectivity"
            )
            out.extend(
                f"{key}: last failure at monotonic t={breaker_status[key].last_failure_time}"
                for key in open_breakers
            )

        noisy = [k for k, s in breaker_status.items() if s.failure_count > HIGH_FAILURE_WARNING]
        if noisy:
            out.append(f"High failure rate on {len(noisy)} dependency(ies) - monitor closely")

        if recent_results:
            total = len(recent_results)
            low_conf = sum(1 for r in recent_results if r.overall_confidence < 0.4)
            low_real = sum(1 for r in recent_results if r.real_data_percentage < 30)
            if low_conf > total * 0.5:
                out.append(f"{low_conf}/{total} recent results have low confidence")
            if low_real > total * 0.7:
                out.append(
                    f"{low_real}/{total} recent results rely mostly on the fallback model"
                )

        status = _status_for(score)
        if status == HealthStatusValue.CRITICAL:
            out.append(f"System health critical ({score}/100) - immediate attention required")
        elif status == HealthStatusValue.DEGRADED:
            out.append(f"System health degraded ({score}/100) - monitor and investigate")
        else:
            out.append(f"System health good ({score}/100)")
        return out


def _status_for(score: int) -> HealthStatusValue:
    if score >= HEALTHY_SCORE:
        return HealthStatusValue.HEALTHY
    if score >= DEGRADED_SCORE:
        return HealthStatusValue.DEGRADED
    return HealthStatusValue.CRITICAL

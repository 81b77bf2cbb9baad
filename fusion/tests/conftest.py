"""Shared fixtures for fusion tests."""

from __future__ import annotations

from typing import Callable, Dict, Mapping, Optional

import pytest

from fusion.config import FusionConfig
from fusion.engine import FusionEngine
from fusion.fallback import FallbackModel
from fusion.schema import AnalyzerDescriptor, ContextSnapshot
from resilience.circuit_breaker import CircuitBreakerRegistry
from resilience.clock import ManualClock
from resilience.config import RateLimiterOptions, ResilienceConfig
from resilience.metrics_collector import MetricsCollector
from resilience.rate_limiter import RateLimiterRegistry
from resilience.retry_executor import RetryExecutor

AnalyzerFactory = Callable[..., AnalyzerDescriptor]


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def resilience_config() -> ResilienceConfig:
    return ResilienceConfig(jitter_min=1.0, jitter_max=1.0, enable_prometheus_metrics=False)


@pytest.fixture
def metrics(resilience_config: ResilienceConfig) -> MetricsCollector:
    return MetricsCollector(resilience_config)


@pytest.fixture
def executor(
    resilience_config: ResilienceConfig, clock: ManualClock, metrics: MetricsCollector
) -> RetryExecutor:
    no_pacing = RateLimiterOptions(base_delay=0.0, max_delay=0.0, batch_delay=0.0)
    return RetryExecutor(
        resilience_config,
        CircuitBreakerRegistry(failure_threshold=5, cooldown=60.0, clock=clock),
        RateLimiterRegistry(no_pacing, clock=clock),
        clock=clock,
        metrics_collector=metrics,
    )


@pytest.fixture
def fusion_config() -> FusionConfig:
    return FusionConfig(analyzer_timeout=1.0)


@pytest.fixture
def engine(
    executor: RetryExecutor, fusion_config: FusionConfig, metrics: MetricsCollector
) -> FusionEngine:
    return FusionEngine(
        executor,
        fusion_config,
        FallbackModel(fusion_config.fallback),
        metrics_collector=metrics,
    )


@pytest.fixture
def snapshot() -> ContextSnapshot:
    """Fallback predictions for this snapshot:

    whale 10, holders 110, spike 1.2, age 108, pattern 0.64, smart money 1.0
    """
    return ContextSnapshot(
        volume_24h=200_000,
        market_cap=1_000_000,
        liquidity=40_000,
        price_change_24h=10.0,
        price_usd=0.5,
    )


@pytest.fixture
def make_analyzer() -> AnalyzerFactory:
    """Build a descriptor that returns *values* or raises *error* every call."""

    def _make(
        name: str,
        values: Optional[Mapping[str, float]] = None,
        confidence: float = 0.9,
        error: Optional[Exception] = None,
        calls: Optional[Dict[str, int]] = None,
    ) -> AnalyzerDescriptor:
        async def analyze(subject_id: str, snapshot: ContextSnapshot) -> Mapping[str, float]:
            if calls is not None:
                calls[name] = calls.get(name, 0) + 1
            if error is not None:
                raise error
            return dict(values or {})

        return AnalyzerDescriptor(name=name, confidence=confidence, analyze=analyze)

    return _make

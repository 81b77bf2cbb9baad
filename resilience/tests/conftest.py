"""Shared fixtures for resilience tests."""

from __future__ import annotations

import pytest

from resilience.circuit_breaker import CircuitBreakerRegistry
from resilience.clock import ManualClock
from resilience.config import RateLimiterOptions, ResilienceConfig
from resilience.error_classifier import ErrorClassifier
from resilience.metrics_collector import MetricsCollector
from resilience.rate_limiter import RateLimiterRegistry
from resilience.retry_executor import RetryExecutor

NO_PACING = RateLimiterOptions(base_delay=0.0, max_delay=0.0, batch_size=5, batch_delay=0.0)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def config() -> ResilienceConfig:
    """Jitter pinned to 1.0 so suggested delays are exact."""
    return ResilienceConfig(
        jitter_min=1.0,
        jitter_max=1.0,
        call_timeout=2.0,
        enable_prometheus_metrics=False,
    )


@pytest.fixture
def breakers(clock: ManualClock, config: ResilienceConfig) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(
        failure_threshold=config.circuit_breaker_failure_threshold,
        cooldown=config.circuit_breaker_cooldown,
        clock=clock,
    )


@pytest.fixture
def limiters(clock: ManualClock) -> RateLimiterRegistry:
    """Limiters that never pace, so clock sleeps are retry back-off only."""
    return RateLimiterRegistry(NO_PACING, clock=clock)


@pytest.fixture
def metrics(config: ResilienceConfig) -> MetricsCollector:
    return MetricsCollector(config)


@pytest.fixture
def executor(
    config: ResilienceConfig,
    breakers: CircuitBreakerRegistry,
    limiters: RateLimiterRegistry,
    clock: ManualClock,
    metrics: MetricsCollector,
) -> RetryExecutor:
    return RetryExecutor(
        config,
        breakers,
        limiters,
        classifier=ErrorClassifier(config),
        clock=clock,
        metrics_collector=metrics,
    )

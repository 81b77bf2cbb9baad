"""Resilience layer: classified retries and circuit breakers with adaptive pacing.

Public API::

    from resilience import RetryExecutor, ResilienceConfig, OperationContext
    from resilience.clock import ManualClock
"""

from resilience.circuit_breaker import CircuitBreakerRegistry
from resilience.clock import Clock, ManualClock, SystemClock
from resilience.config import (
    CONSERVATIVE_LIMITS,
    DEFAULT_LIMITS,
    PERMISSIVE_LIMITS,
    RATE_LIMIT_PRESETS,
    RateLimiterOptions,
    ResilienceConfig,
)
from resilience.error_classifier import ErrorClassifier
from resilience.metrics_collector import MetricsCollector
from resilience.rate_limiter import AdaptiveRateLimiter, RateLimiterRegistry
from resilience.retry_executor import RetryExecutor
from resilience.schema import (
    CircuitBreakerOpenError,
    CircuitBreakerState,
    ErrorAnalysis,
    ErrorKind,
    ErrorSeverity,
    ExecutionResult,
    OperationContext,
    UpstreamError,
)
from resilience.timeout_manager import TimeoutManager

__all__ = [
    "AdaptiveRateLimiter",
    "CONSERVATIVE_LIMITS",
    "CircuitBreakerOpenError",
    "CircuitBreakerRegistry",
    "CircuitBreakerState",
    "Clock",
    "DEFAULT_LIMITS",
    "ErrorAnalysis",
    "ErrorClassifier",
    "ErrorKind",
    "ErrorSeverity",
    "ExecutionResult",
    "ManualClock",
    "MetricsCollector",
    "OperationContext",
    "PERMISSIVE_LIMITS",
    "RATE_LIMIT_PRESETS",
    "RateLimiterOptions",
    "RateLimiterRegistry",
    "ResilienceConfig",
    "RetryExecutor",
    "SystemClock",
    "TimeoutManager",
    "UpstreamError",
]

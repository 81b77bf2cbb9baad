"""Prometheus metrics collection and export."""

from __future__ import annotations

from collections import defaultdict
from typing import Dict

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from .config import ResilienceConfig
from .telemetry import get_logger

_logger = get_logger(__name__)


class MetricsCollector:
    """Aggregate per-dependency call metrics and per-run fusion metrics.

    In-memory accumulators are always active.  Prometheus objects are only
    created when ``config.enable_prometheus_metrics`` is ``True``; each
    collector owns an isolated registry so tests never collide.
    """

    def __init__(self, config: ResilienceConfig) -> None:
        self.config = config
        self._enabled = config.enable_prometheus_metrics

        # In-memory accumulators (always active)
        self._attempts: Dict[str, int] = defaultdict(int)
        self._failures: Dict[str, int] = defaultdict(int)
        self._retries: Dict[str, int] = defaultdict(int)
        self._timeouts: Dict[str, int] = defaultdict(int)
        self._breaker_rejections: Dict[str, int] = defaultdict(int)
        self._breaker_open: Dict[str, bool] = {}
        self._strategy_counts: Dict[str, int] = defaultdict(int)
        self._last_coverage: Dict[str, float] = {}

        if self._enabled:
            self._registry = CollectorRegistry()
            self._prom_call_seconds = Histogram(
                "upstream_call_seconds",
                "Upstream call duration in seconds",
                labelnames=["dependency_key", "status"],
                registry=self._registry,
            )
            self._prom_failures = Counter(
                "upstream_failures_total",
                "Classified upstream failures",
                labelnames=["dependency_key", "error_kind"],
                registry=self._registry,
            )
            self._prom_retries = Counter(
                "retry_attempts_total",
                "Retry attempts",
                labelnames=["dependency_key"],
                registry=self._registry,
            )
            self._prom_breaker_state = Gauge(
                "circuit_breaker_open",
                "Circuit breaker state (0=closed, 1=open)",
                labelnames=["dependency_key"],
                registry=self._registry,
            )
            self._prom_breaker_rejections = Counter(
                "circuit_breaker_rejections_total",
                "Calls rejected by an open circuit breaker",
                labelnames=["dependency_key"],
                registry=self._registry,
            )
            self._prom_fusion = Counter(
                "fusion_results_total",
                "Fusion results by selected strategy",
                labelnames=["strategy"],
                registry=self._registry,
            )
            self._prom_coverage = Histogram(
                "fusion_coverage_ratio",
                "Share of expected metrics obtained from real sources",
                buckets=(0.0, 0.3, 0.5, 0.7, 0.85, 1.0),
                registry=self._registry,
            )

    # ---- recording --------------------------------------------------------

    def record_call(self, dependency_key: str, duration: float, status: str) -> None:
        """Record one upstream attempt.

        Args:
            dependency_key: Dependency identifier.
            duration: Attempt duration in seconds.
            status: ``"success"`` or ``"failed"``.
        """
        self._attempts[dependency_key] += 1
        if self._enabled:
            self._prom_call_seconds.labels(
                dependency_key=dependency_key, status=status
            ).observe(duration)

    def record_failure(self, dependency_key: str, error_kind: str) -> None:
        self._failures[dependency_key] += 1
        if error_kind == "timeout_error":
            self._timeouts[dependency_key] += 1
        if self._enabled:
            self._prom_failures.labels(
                dependency_key=dependency_key, error_kind=error_kind
            ).inc()

    def record_retry(self, dependency_key: str) -> None:
        self._retries[dependency_key] += 1
        if self._enabled:
            self._prom_retries.labels(dependency_key=dependency_key).inc()

    def record_breaker_state(self, dependency_key: str, is_open: bool) -> None:
        self._breaker_open[dependency_key] = is_open
        if self._enabled:
            self._prom_breaker_state.labels(dependency_key=dependency_key).set(
                1 if is_open else 0
            )

    def record_breaker_rejection(self, dependency_key: str) -> None:
        self._breaker_rejections[dependency_key] += 1
        if self._enabled:
            self._prom_breaker_rejections.labels(dependency_key=dependency_key).inc()

    def record_fusion_result(self, subject_id: str, strategy: str, coverage: float) -> None:
        """Record the strategy and coverage of a completed fusion run."""
        self._strategy_counts[strategy] += 1
        self._last_coverage[subject_id] = coverage
        if self._enabled:
            self._prom_fusion.labels(strategy=strategy).inc()
            self._prom_coverage.observe(coverage)

    # ---- export -----------------------------------------------------------

    def export_metrics(self) -> str:
        """Export metrics in Prometheus text exposition format.

        Returns:
            Multi-line string in Prometheus format, or ``""`` if disabled.
        """
        if not self._enabled:
            return ""
        return generate_latest(self._registry).decode("utf-8")

    def get_summary(self) -> Dict[str, Dict[str, float]]:
        """Return the in-memory accumulators as plain dicts."""
        return {
            "attempts": dict(self._attempts),
            "failures": dict(self._failures),
            "retries": dict(self._retries),
            "timeouts": dict(self._timeouts),
            "breaker_rejections": dict(self._breaker_rejections),
            "strategies": dict(self._strategy_counts),
        }

    # ---- lifecycle --------------------------------------------------------

    def reset(self) -> None:
        """Clear in-memory accumulators."""
        self._attempts.clear()
        self._failures.clear()
        self._retries.clear()
        self._timeouts.clear()
        self._breaker_rejections.clear()
        self._breaker_open.clear()
        self._strategy_counts.clear()
        self._last_coverage.clear()

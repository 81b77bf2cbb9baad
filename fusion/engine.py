"""Fan out sub-analyzers, merge what arrives, pick a strategy, fill the gaps."""

from __future__ import annotations

import asyncio
import math
import uuid
from numbers import Real
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from fusion.config import FusionConfig
from fusion.fallback import FallbackModel
from fusion.schema import (
    VOLUME_SPIKE_RATIO,
    AnalyzerDescriptor,
    AnalyzerOutcome,
    ContextSnapshot,
    FusionResult,
    FusionStrategy,
    MetricSample,
    Provenance,
)
from fusion.strategy import (
    average_confidence,
    compute_coverage,
    nudge_correlated,
    overall_confidence,
    select_strategy,
)
from resilience.metrics_collector import MetricsCollector
from resilience.retry_executor import RetryExecutor
from resilience.schema import ExecutionResult, OperationContext
from resilience.telemetry import get_logger

_logger = get_logger(__name__)

# Lowest in-bounds value per metric, used when the fallback model cannot run.
_FLOOR_VALUES = {VOLUME_SPIKE_RATIO: 1.0}

_REAL_STRATEGIES = (
    FusionStrategy.REAL_ONLY,
    FusionStrategy.REAL_PRIMARY,
    FusionStrategy.HYBRID,
)


class FusionEngine:
    """Compute a confidence-scored behavioral metric vector for one subject.

    Every analyzer goes through the shared :class:`RetryExecutor`, so all of
    them see the same breakers and rate limiters.  ``fuse`` never raises for
    ordinary failures: anything unexpected degrades to ``error_fallback``.
    """

    def __init__(
        self,
        executor: RetryExecutor,
        config: Optional[FusionConfig] = None,
        fallback_model: Optional[FallbackModel] = None,
        metrics_collector: Optional[MetricsCollector] = None,
    ) -> None:
        self.executor = executor
        self.config = config or FusionConfig()
        self.fallback_model = fallback_model or FallbackModel(self.config.fallback)
        self.metrics_collector = metrics_collector

    @property
    def max_attempts(self) -> int:
        """Per-analyzer attempt limit; defers to the executor config when unset."""
        return self.config.max_attempts or self.executor.config.max_attempts

    async def fuse(
        self,
        subject_id: str,
        analyzers: Sequence[AnalyzerDescriptor],
        snapshot: Optional[ContextSnapshot] = None,
        expected_metrics: Optional[Sequence[str]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> FusionResult:
        """Run *analyzers* for *subject_id* and fuse their output.

        Args:
            subject_id: Subject being analysed (e.g. a token address).
            analyzers: Sub-analyzers in priority order; on overlap the
                earlier one wins.
            snapshot: Market context for the fallback model.
            expected_metrics: Metric names to report (defaults to the
                configured behavioral set).
            cancel_event: When set, in-flight analyzers are cancelled and a
                partial result is returned with ``cancelled=True``.

        Returns:
            A :class:`FusionResult` containing every expected metric.
        """
        correlation_id = str(uuid.uuid4())
        snapshot = snapshot or ContextSnapshot()
        expected = list(expected_metrics or self.config.expected_metrics)
        log_extra = {"correlation_id": correlation_id, "subject_id": subject_id}

        _logger.info(
            f"Fusing {len(expected)} metrics from {len(analyzers)} analyzers",
            extra=log_extra,
        )

        results, cancelled = await self._collect(
            subject_id, analyzers, snapshot, cancel_event, correlation_id
        )

        real: Dict[str, MetricSample] = {}
        outcomes: List[AnalyzerOutcome] = []
        try:
            real, outcomes = self._gather(analyzers, results, expected)
            fused = self._assemble(
                subject_id, real, outcomes, snapshot, expected, cancelled, correlation_id
            )
        except Exception:
            _logger.exception("Fusion failed, degrading to error fallback", extra=log_extra)
            fused = self._degraded(
                subject_id, snapshot, expected, real, outcomes, cancelled, correlation_id
            )

        if self.metrics_collector is not None:
            self.metrics_collector.record_fusion_result(
                subject_id, fused.strategy.value, fused.coverage
            )
        _logger.info(
            f"Fusion complete: strategy={fused.strategy.value} "
            f"coverage={fused.coverage:.2f} confidence={fused.overall_confidence:.2f}"
            + (" (cancelled)" if fused.cancelled else ""),
            extra=log_extra,
        )
        return fused

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def _collect(
        self,
        subject_id: str,
        analyzers: Sequence[AnalyzerDescriptor],
        snapshot: ContextSnapshot,
        cancel_event: Optional[asyncio.Event],
        correlation_id: str,
    ) -> Tuple[List[Optional[ExecutionResult]], bool]:
        """Run analyzers concurrently; ``None`` marks one that never finished."""
        if cancel_event is not None and cancel_event.is_set():
            return [None] * len(analyzers), True

        semaphore = asyncio.Semaphore(self.config.fan_out_limit)

        async def _run(descriptor: AnalyzerDescriptor) -> Optional[ExecutionResult]:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return None
                context = OperationContext(
                    operation=descriptor.name,
                    subject_id=subject_id,
                    dependency_key=descriptor.resolved_dependency_key,
                    max_attempts=self.max_attempts,
                    started_at=0.0,
                )
                return await self.executor.execute_with_retry(
                    lambda: descriptor.analyze(subject_id, snapshot),
                    context,
                    timeout=self.config.analyzer_timeout,
                    correlation_id=correlation_id,
                    limiter_key=descriptor.rate_limiter,
                )

        tasks = [asyncio.ensure_future(_run(d)) for d in analyzers]
        stop = asyncio.ensure_future(cancel_event.wait()) if cancel_event is not None else None
        cancelled = False
        try:
            while True:
                pending = [t for t in tasks if not t.done()]
                if not pending:
                    break
                if stop is not None and stop.done():
                    cancelled = True
                    break
                waiters = pending + ([stop] if stop is not None else [])
                await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            leftovers = [t for t in tasks if not t.done()]
            if stop is not None and not stop.done():
                leftovers.append(stop)
            for t in leftovers:
                t.cancel()
            if leftovers:
                await asyncio.gather(*leftovers, return_exceptions=True)

        if cancelled:
            _logger.warning(
                "Fusion cancelled, keeping completed analyzers only",
                extra={"correlation_id": correlation_id, "subject_id": subject_id},
            )

        results: List[Optional[ExecutionResult]] = []
        for descriptor, task in zip(analyzers, tasks):
            if task.cancelled():
                results.append(None)
                continue
            exc = task.exception()
            if exc is not None:
                _logger.error(
                    f"Analyzer {descriptor.name} crashed outside the executor: {exc!r}",
                    extra={"correlation_id": correlation_id, "subject_id": subject_id},
                )
                results.append(None)
                continue
            results.append(task.result())
        return results, cancelled

    # ------------------------------------------------------------------
    # Merge + strategy
    # ------------------------------------------------------------------

    def _gather(
        self,
        analyzers: Sequence[AnalyzerDescriptor],
        results: Sequence[Optional[ExecutionResult]],
        expected: List[str],
    ) -> Tuple[Dict[str, MetricSample], List[AnalyzerOutcome]]:
        expected_set = set(expected)
        real: Dict[str, MetricSample] = {}
        outcomes: List[AnalyzerOutcome] = []

        for descriptor, result in zip(analyzers, results):
            if result is None:
                outcomes.append(AnalyzerOutcome(name=descriptor.name, succeeded=False))
                continue
            if not result.success:
                outcomes.append(
                    AnalyzerOutcome(
                        name=descriptor.name,
                        succeeded=False,
                        attempts=result.attempts,
                        error=result.error,
                    )
                )
                continue
            contributed = self._merge(descriptor, result.result, expected_set, real)
            outcomes.append(
                AnalyzerOutcome(
                    name=descriptor.name,
                    succeeded=True,
                    metrics=contributed,
                    attempts=result.attempts,
                )
            )
        return real, outcomes

    def _assemble(
        self,
        subject_id: str,
        real: Dict[str, MetricSample],
        outcomes: List[AnalyzerOutcome],
        snapshot: ContextSnapshot,
        expected: List[str],
        cancelled: bool,
        correlation_id: str,
    ) -> FusionResult:
        coverage = compute_coverage(len(real), len(expected))
        total_failure = (
            not real
            and any(o.error is not None for o in outcomes)
            and not any(o.succeeded for o in outcomes)
        )
        strategy = select_strategy(coverage, self.config, total_failure=total_failure)
        predicted = self._predict(snapshot, expected)

        adjustments: List[str] = []
        metrics: Dict[str, MetricSample] = {}
        if strategy in _REAL_STRATEGIES:
            missing = {n: predicted[n] for n in expected if n not in real}
            if strategy == FusionStrategy.HYBRID:
                missing, adjustments = nudge_correlated(
                    {n: s.value for n, s in real.items()},
                    missing,
                    predicted,
                    self.config,
                    self.fallback_model,
                )
            for name in expected:
                metrics[name] = real[name] if name in real else self._fallback_sample(
                    name, missing[name]
                )
            confidence = overall_confidence(strategy, average_confidence(real), self.config)
        else:
            for name in expected:
                metrics[name] = self._fallback_sample(name, predicted[name])
            confidence = overall_confidence(strategy, 0.0, self.config)

        return FusionResult(
            subject_id=subject_id,
            metrics=metrics,
            overall_confidence=confidence,
            coverage=coverage,
            strategy=strategy,
            real_metric_count=len(real),
            expected_metric_count=len(expected),
            outcomes=outcomes,
            cancelled=cancelled,
            adjustments=adjustments,
            correlation_id=correlation_id,
        )

    def _merge(
        self,
        descriptor: AnalyzerDescriptor,
        payload: object,
        expected: set,
        real: Dict[str, MetricSample],
    ) -> List[str]:
        """First writer wins; returns the metric names this analyzer supplied."""
        if not isinstance(payload, Mapping):
            _logger.warning(
                f"Analyzer {descriptor.name} returned {type(payload).__name__}, expected a mapping"
            )
            return []
        contributed: List[str] = []
        for name, value in payload.items():
            if name not in expected or name in real:
                continue
            if isinstance(value, bool) or not isinstance(value, Real):
                continue
            value = float(value)
            if not math.isfinite(value):
                continue
            real[name] = MetricSample(
                name=name,
                value=value,
                confidence=descriptor.confidence,
                provenance=Provenance.REAL,
                source=descriptor.name,
            )
            contributed.append(name)
        return contributed

    # ------------------------------------------------------------------
    # Fallback helpers
    # ------------------------------------------------------------------

    def _predict(self, snapshot: ContextSnapshot, expected: List[str]) -> Dict[str, float]:
        # Names the model does not know get a neutral zero.
        modelled = self.fallback_model.predict(snapshot)
        return {name: modelled.get(name, 0.0) for name in expected}

    def _fallback_sample(self, name: str, value: float) -> MetricSample:
        return MetricSample(
            name=name,
            value=value,
            confidence=self.config.fallback_metric_confidence,
            provenance=Provenance.FALLBACK,
        )

    def _degraded(
        self,
        subject_id: str,
        snapshot: ContextSnapshot,
        expected: List[str],
        real: Dict[str, MetricSample],
        outcomes: List[AnalyzerOutcome],
        cancelled: bool,
        correlation_id: str,
    ) -> FusionResult:
        """Error-fallback result; uses the static floor vector if the model itself fails."""
        try:
            predicted = self._predict(snapshot, expected)
        except Exception:
            _logger.exception(
                "Fallback model failed, using floor values",
                extra={"correlation_id": correlation_id, "subject_id": subject_id},
            )
            predicted = {name: _FLOOR_VALUES.get(name, 0.0) for name in expected}
        metrics = {
            name: real[name] if name in real else self._fallback_sample(name, predicted[name])
            for name in expected
        }
        return FusionResult(
            subject_id=subject_id,
            metrics=metrics,
            overall_confidence=self.config.error_fallback_confidence,
            coverage=compute_coverage(len(real), len(expected)),
            strategy=FusionStrategy.ERROR_FALLBACK,
            real_metric_count=len(real),
            expected_metric_count=len(expected),
            outcomes=outcomes,
            cancelled=cancelled,
            correlation_id=correlation_id,
        )

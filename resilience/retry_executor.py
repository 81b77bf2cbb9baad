"""Bounded retries through the circuit breaker, rate limiter and classifier."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from .circuit_breaker import CircuitBreakerRegistry
from .clock import Clock, SystemClock
from .config import ResilienceConfig
from .error_classifier import ErrorClassifier
from .metrics_collector import MetricsCollector
from .rate_limiter import RateLimiterRegistry
from .schema import (
    CircuitBreakerOpenError,
    CircuitBreakerState,
    ErrorAnalysis,
    ErrorKind,
    ErrorSeverity,
    ExecutionResult,
    OperationContext,
)
from .telemetry import get_logger
from .timeout_manager import TimeoutManager

_logger = get_logger(__name__)
T = TypeVar("T")


class RetryExecutor:
    """Run one async operation across at most ``max_attempts`` attempts.

    Per attempt::

        breaker open?  → synthetic non-retryable failure, op not called
        limiter wait   → spacing grows with the dependency's failure streak
        op() + deadline
        success        → reset breaker + limiter streak, return
        failure        → classify, record on breaker + limiter,
                         return if final / non-retryable, else sleep

    Never raises for ordinary exceptions; ``asyncio.CancelledError`` is left
    to propagate so callers can abort in-flight work.
    """

    def __init__(
        self,
        config: ResilienceConfig,
        breakers: CircuitBreakerRegistry,
        limiters: RateLimiterRegistry,
        classifier: Optional[ErrorClassifier] = None,
        clock: Optional[Clock] = None,
        timeout_manager: Optional[TimeoutManager] = None,
        metrics_collector: Optional[MetricsCollector] = None,
    ) -> None:
        self.config = config
        self.breakers = breakers
        self.limiters = limiters
        self.classifier = classifier or ErrorClassifier(config)
        self.timeout_manager = timeout_manager or TimeoutManager()
        self.metrics_collector = metrics_collector
        self._clock = clock or SystemClock()
        self._retry_counts: Dict[str, int] = defaultdict(int)

    @classmethod
    def from_config(
        cls,
        config: ResilienceConfig,
        clock: Optional[Clock] = None,
        metrics_collector: Optional[MetricsCollector] = None,
    ) -> "RetryExecutor":
        """Build an executor with fresh registries sharing one clock."""
        clock = clock or SystemClock()
        breakers = CircuitBreakerRegistry(
            failure_threshold=config.circuit_breaker_failure_threshold,
            cooldown=config.circuit_breaker_cooldown,
            clock=clock,
        )
        limiters = RateLimiterRegistry(config.rate_limit_options(), clock=clock)
        return cls(
            config,
            breakers,
            limiters,
            clock=clock,
            metrics_collector=metrics_collector,
        )

    # ---- public API -------------------------------------------------------

    async def execute_with_retry(
        self,
        op: Callable[[], Awaitable[T]],
        context: OperationContext,
        timeout: Optional[float] = None,
        correlation_id: str = "",
        limiter_key: Optional[str] = None,
    ) -> ExecutionResult:
        """Execute *op* with retries.

        Args:
            op: Zero-argument async callable; invoked once per attempt.
            context: Operation context; ``attempt`` is overwritten per try.
            timeout: Per-attempt deadline in seconds (defaults to
                ``config.call_timeout``).
            correlation_id: Fusion run correlation id for log lines.
            limiter_key: Rate limiter to pace through (defaults to the
                dependency key), so several breakers can share one quota.

        Returns:
            :class:`ExecutionResult`: ``success`` with ``result``, or a
            failure carrying the final :class:`ErrorAnalysis`.
        """
        key = context.dependency_key
        deadline = timeout if timeout is not None else self.config.call_timeout
        limiter = self.limiters.get(limiter_key or key)
        log_extra = {
            "correlation_id": correlation_id,
            "operation": context.operation,
            "dependency_key": key,
            "subject_id": context.subject_id,
        }

        attempt = 0
        for attempt in range(1, context.max_attempts + 1):
            attempt_ctx = context.with_attempt(attempt, started_at=self._clock.now())

            if self.breakers.is_open(key):
                _logger.warning(
                    f"Circuit breaker open for {key}, skipping attempt",
                    extra=log_extra,
                )
                if self.metrics_collector is not None:
                    self.metrics_collector.record_breaker_rejection(key)
                return ExecutionResult(
                    success=False,
                    error=_breaker_open_analysis(attempt_ctx),
                    attempts=attempt - 1,
                )

            await limiter.wait_for_next_call()
            started = self._clock.now()
            _logger.debug(
                f"{context.operation} attempt {attempt}/{context.max_attempts}",
                extra=log_extra,
            )

            try:
                result = await self.timeout_manager.execute_with_timeout(
                    op(),
                    timeout=deadline,
                    dependency_key=key,
                    correlation_id=correlation_id,
                )
            except Exception as exc:
                duration = max(0.0, self._clock.now() - started)
                failed_ctx = attempt_ctx.with_attempt(attempt, started, duration)
                analysis = self.classifier.classify(exc, failed_ctx)
                breaker_state = self.breakers.record_failure(key)
                limiter.record_failure()
                self._record_failure_metrics(key, analysis, breaker_state, duration)

                _logger.error(
                    f"{context.operation} failed (attempt {attempt}/{context.max_attempts}): "
                    f"{analysis.kind.value}/{analysis.severity.value} - {analysis.message}",
                    extra=log_extra,
                )

                if not analysis.retryable or attempt >= context.max_attempts:
                    return ExecutionResult(success=False, error=analysis, attempts=attempt)

                self._retry_counts[context.operation] += 1
                if self.metrics_collector is not None:
                    self.metrics_collector.record_retry(key)
                if analysis.suggested_delay > 0:
                    _logger.info(
                        f"Waiting {analysis.suggested_delay:.2f}s before retry",
                        extra=log_extra,
                    )
                    await self._clock.sleep(analysis.suggested_delay)
                continue

            duration = max(0.0, self._clock.now() - started)
            self.breakers.record_success(key)
            limiter.record_success()
            if self.metrics_collector is not None:
                self.metrics_collector.record_call(key, duration, "success")
                self.metrics_collector.record_breaker_state(key, False)
            _logger.info(
                f"{context.operation} succeeded on attempt {attempt}",
                extra=log_extra,
            )
            return ExecutionResult(success=True, result=result, attempts=attempt)

        # Only reachable when max_attempts validation is bypassed.
        return ExecutionResult(
            success=False,
            error=ErrorAnalysis(
                kind=ErrorKind.UNKNOWN,
                severity=ErrorSeverity.HIGH,
                message="Maximum retry attempts exceeded",
                retryable=False,
                suggested_delay=0.0,
                context=context,
            ),
            attempts=attempt,
        )

    def safe_wrapper(
        self,
        fn: Callable[..., Awaitable[T]],
        operation: str,
        max_attempts: Optional[int] = None,
        dependency_key: str = "",
    ) -> Callable[..., Awaitable[Optional[T]]]:
        """Wrap *fn* so calls retry and yield ``None`` on permanent failure."""
        attempts = max_attempts or self.config.max_attempts

        async def _wrapped(*args: Any, **kwargs: Any) -> Optional[T]:
            context = OperationContext(
                operation=operation,
                dependency_key=dependency_key,
                max_attempts=attempts,
                started_at=self._clock.now(),
            )
            outcome = await self.execute_with_retry(lambda: fn(*args, **kwargs), context)
            if outcome.success:
                return outcome.result
            _logger.error(
                f"{operation} failed permanently: {outcome.error.message if outcome.error else ''}",
                extra={"operation": operation, "dependency_key": context.dependency_key},
            )
            return None

        return _wrapped

    def get_circuit_breaker_status(self) -> Dict[str, CircuitBreakerState]:
        """Return a snapshot of every circuit breaker for monitoring."""
        return self.breakers.get_status()

    def get_retry_stats(self) -> Dict[str, int]:
        """Return mapping of operation → retry count."""
        return dict(self._retry_counts)

    def reset_stats(self) -> None:
        """Clear retry statistics."""
        self._retry_counts.clear()

    # ---- internal ---------------------------------------------------------

    def _record_failure_metrics(
        self,
        key: str,
        analysis: ErrorAnalysis,
        breaker_state: CircuitBreakerState,
        duration: float,
    ) -> None:
        if self.metrics_collector is None:
            return
        self.metrics_collector.record_call(key, duration, "failed")
        self.metrics_collector.record_failure(key, analysis.kind.value)
        self.metrics_collector.record_breaker_state(key, breaker_state.is_open)


def _breaker_open_analysis(context: OperationContext) -> ErrorAnalysis:
    return ErrorAnalysis(
        kind=ErrorKind.API_ERROR,
        severity=ErrorSeverity.HIGH,
        message=str(CircuitBreakerOpenError(context.dependency_key)),
        retryable=False,
        suggested_delay=0.0,
        context=context,
        breaker_open=True,
    )

"""Tests for resilience.schema and resilience.config."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from resilience.config import CONSERVATIVE_LIMITS, ResilienceConfig
from resilience.schema import (
    ErrorAnalysis,
    ErrorKind,
    ErrorSeverity,
    ExecutionResult,
    OperationContext,
)


class TestOperationContext:
    def test_default_dependency_key(self) -> None:
        ctx = OperationContext(operation="holder_scan")
        assert ctx.dependency_key == "holder_scan-default"

    def test_explicit_dependency_key(self) -> None:
        ctx = OperationContext(operation="holder_scan", dependency_key="holder_scan-rpc")
        assert ctx.dependency_key == "holder_scan-rpc"

    def test_attempt_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            OperationContext(operation="x", attempt=0)

    def test_empty_operation_rejected(self) -> None:
        with pytest.raises(ValidationError):
            OperationContext(operation="")

    def test_with_attempt_copies(self) -> None:
        ctx = OperationContext(operation="x", max_attempts=4)
        nxt = ctx.with_attempt(2, started_at=5.0, duration=0.25)
        assert (nxt.attempt, nxt.started_at, nxt.duration) == (2, 5.0, 0.25)
        assert ctx.attempt == 1
        assert nxt.max_attempts == 4

    def test_frozen(self) -> None:
        ctx = OperationContext(operation="x")
        with pytest.raises(ValidationError):
            ctx.attempt = 2


class TestExecutionResult:
    def _analysis(self) -> ErrorAnalysis:
        return ErrorAnalysis(
            kind=ErrorKind.UNKNOWN,
            severity=ErrorSeverity.MEDIUM,
            message="boom",
            retryable=True,
            suggested_delay=1.0,
            context=OperationContext(operation="x"),
        )

    def test_success_without_error(self) -> None:
        assert ExecutionResult(success=True, result={"a": 1}).result == {"a": 1}

    def test_success_with_error_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ExecutionResult(success=True, error=self._analysis())

    def test_failure_requires_error(self) -> None:
        with pytest.raises(ValidationError):
            ExecutionResult(success=False)


class TestSeverity:
    def test_rank_order(self) -> None:
        ranks = [s.rank for s in (
            ErrorSeverity.LOW, ErrorSeverity.MEDIUM, ErrorSeverity.HIGH, ErrorSeverity.CRITICAL,
        )]
        assert ranks == sorted(ranks)


class TestResilienceConfig:
    def test_defaults(self) -> None:
        cfg = ResilienceConfig()
        assert cfg.max_attempts == 3
        assert cfg.circuit_breaker_failure_threshold == 5
        assert cfg.circuit_breaker_cooldown == 60.0
        assert cfg.retry_base_delay == 1.0
        assert cfg.retry_max_delay == 30.0

    def test_preset_lookup(self) -> None:
        assert ResilienceConfig(rate_limit_preset="conservative").rate_limit_options() is CONSERVATIVE_LIMITS

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_attempts": 0},
            {"retry_max_delay": 0.5},
            {"jitter_min": 1.2, "jitter_max": 1.1},
            {"circuit_breaker_failure_threshold": 0},
            {"call_timeout": 0},
            {"rate_limit_preset": "turbo"},
        ],
    )
    def test_invalid(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            ResilienceConfig(**kwargs)

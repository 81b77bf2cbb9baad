"""Tests for resilience.error_classifier."""

from __future__ import annotations

import asyncio
import json
import random

import pytest
from pydantic import BaseModel, ValidationError

from resilience.config import ResilienceConfig
from resilience.error_classifier import ErrorClassifier, extract_status_code
from resilience.schema import ErrorKind, ErrorSeverity, OperationContext, UpstreamError


@pytest.fixture
def classifier(config: ResilienceConfig) -> ErrorClassifier:
    return ErrorClassifier(config)


def _ctx(attempt: int = 1, max_attempts: int = 3) -> OperationContext:
    return OperationContext(
        operation="fetch_holders",
        subject_id="TOKEN1",
        attempt=attempt,
        max_attempts=max_attempts,
    )


class _Response:
    def __init__(self, status_code: int) -> None:
        self.status_code = status_code


class _HttpError(Exception):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.response = _Response(status_code)


class _Shape(BaseModel):
    value: int


class TestStatusExtraction:
    def test_status_code_attribute(self) -> None:
        assert extract_status_code(UpstreamError("x", status_code=503)) == 503

    def test_response_status_code(self) -> None:
        assert extract_status_code(_HttpError("x", 404)) == 404

    def test_non_http_code_ignored(self) -> None:
        err = OSError("reset")
        err.code = 5  # type: ignore[attr-defined]
        assert extract_status_code(err) is None

    def test_missing(self) -> None:
        assert extract_status_code(RuntimeError("boom")) is None


class TestRules:
    def test_429_is_rate_limit(self, classifier: ErrorClassifier) -> None:
        a = classifier.classify(UpstreamError("slow down", 429), _ctx())
        assert a.kind == ErrorKind.RATE_LIMIT
        assert a.severity == ErrorSeverity.LOW
        assert a.retryable is True
        assert a.suggested_delay == pytest.approx(2.0)

    def test_rate_limit_wording(self, classifier: ErrorClassifier) -> None:
        a = classifier.classify(RuntimeError("Too Many Requests"), _ctx())
        assert a.kind == ErrorKind.RATE_LIMIT

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_is_final_and_critical(
        self, classifier: ErrorClassifier, status: int
    ) -> None:
        a = classifier.classify(UpstreamError("denied", status), _ctx())
        assert a.kind == ErrorKind.AUTHENTICATION_ERROR
        assert a.severity == ErrorSeverity.CRITICAL
        assert a.retryable is False
        assert a.status_code == status

    def test_other_4xx_not_retryable(self, classifier: ErrorClassifier) -> None:
        a = classifier.classify(_HttpError("not found", 404), _ctx())
        assert a.kind == ErrorKind.API_ERROR
        assert a.severity == ErrorSeverity.MEDIUM
        assert a.retryable is False

    def test_5xx_retryable_with_longer_delay(self, classifier: ErrorClassifier) -> None:
        a = classifier.classify(UpstreamError("bad gateway", 502), _ctx())
        assert a.kind == ErrorKind.API_ERROR
        assert a.severity == ErrorSeverity.HIGH
        assert a.retryable is True
        assert a.suggested_delay == pytest.approx(1.5)

    def test_asyncio_timeout(self, classifier: ErrorClassifier) -> None:
        a = classifier.classify(asyncio.TimeoutError(), _ctx())
        assert a.kind == ErrorKind.TIMEOUT_ERROR
        assert a.retryable is True
        assert a.message == "TimeoutError"

    def test_connection_error_is_network(self, classifier: ErrorClassifier) -> None:
        a = classifier.classify(ConnectionResetError("peer reset"), _ctx())
        assert a.kind == ErrorKind.NETWORK_ERROR
        assert a.severity == ErrorSeverity.MEDIUM
        assert a.retryable is True

    def test_network_wording(self, classifier: ErrorClassifier) -> None:
        a = classifier.classify(RuntimeError("fetch failed"), _ctx())
        assert a.kind == ErrorKind.NETWORK_ERROR

    def test_json_decode_is_parsing(self, classifier: ErrorClassifier) -> None:
        with pytest.raises(json.JSONDecodeError) as exc_info:
            json.loads("{not json")
        a = classifier.classify(exc_info.value, _ctx())
        assert a.kind == ErrorKind.PARSING_ERROR
        assert a.severity == ErrorSeverity.LOW
        assert a.retryable is False

    def test_pydantic_validation(self, classifier: ErrorClassifier) -> None:
        with pytest.raises(ValidationError) as exc_info:
            _Shape(value="nope")
        a = classifier.classify(exc_info.value, _ctx())
        assert a.kind == ErrorKind.VALIDATION_ERROR
        assert a.retryable is False

    def test_unknown_is_retryable(self, classifier: ErrorClassifier) -> None:
        a = classifier.classify(RuntimeError("boom"), _ctx())
        assert a.kind == ErrorKind.UNKNOWN
        assert a.severity == ErrorSeverity.MEDIUM
        assert a.retryable is True

    def test_empty_message_uses_type_name(self, classifier: ErrorClassifier) -> None:
        a = classifier.classify(KeyError(), _ctx())
        assert a.message == "KeyError"


class TestFinalAttempt:
    def test_last_attempt_never_retryable(self, classifier: ErrorClassifier) -> None:
        a = classifier.classify(RuntimeError("boom"), _ctx(attempt=3, max_attempts=3))
        assert a.retryable is False
        assert a.severity == ErrorSeverity.HIGH

    def test_last_attempt_keeps_critical(self, classifier: ErrorClassifier) -> None:
        a = classifier.classify(UpstreamError("denied", 401), _ctx(attempt=3))
        assert a.severity == ErrorSeverity.CRITICAL

    def test_rate_limit_on_last_attempt_raised_to_high(
        self, classifier: ErrorClassifier
    ) -> None:
        a = classifier.classify(UpstreamError("slow", 429), _ctx(attempt=3))
        assert a.kind == ErrorKind.RATE_LIMIT
        assert a.severity == ErrorSeverity.HIGH
        assert a.retryable is False


class TestDelay:
    def test_exponential(self, classifier: ErrorClassifier) -> None:
        assert classifier.compute_delay(1) == pytest.approx(1.0)
        assert classifier.compute_delay(2) == pytest.approx(2.0)
        assert classifier.compute_delay(3) == pytest.approx(4.0)

    def test_capped(self, classifier: ErrorClassifier) -> None:
        assert classifier.compute_delay(10) == pytest.approx(30.0)
        assert classifier.compute_delay(10, multiplier=2.0) == pytest.approx(30.0)

    def test_monotonic_with_jitter(self) -> None:
        clf = ErrorClassifier(ResilienceConfig(), rng=random.Random(7))
        delays = [clf.compute_delay(a) for a in range(1, 6)]
        assert delays == sorted(delays)
        assert all(0 <= d <= 30.0 for d in delays)

    def test_jitter_bounds(self) -> None:
        clf = ErrorClassifier(ResilienceConfig(), rng=random.Random(1))
        for _ in range(50):
            assert 0.95 <= clf.compute_delay(1) <= 1.05


class TestStats:
    def test_counts_by_kind(self, classifier: ErrorClassifier) -> None:
        classifier.classify(UpstreamError("x", 429), _ctx())
        classifier.classify(UpstreamError("x", 429), _ctx())
        classifier.classify(RuntimeError("boom"), _ctx())
        stats = classifier.get_error_stats()
        assert stats == {"rate_limit": 2, "unknown": 1}
        classifier.reset_stats()
        assert classifier.get_error_stats() == {}

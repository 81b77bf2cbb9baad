"""Failure classification and back-off delay suggestion."""

from __future__ import annotations

import asyncio
import json
import random
from collections import defaultdict
from typing import Dict, Optional, Tuple

from pydantic import ValidationError

from .config import ResilienceConfig
from .schema import ErrorAnalysis, ErrorKind, ErrorSeverity, OperationContext
from .telemetry import get_logger

_logger = get_logger(__name__)

_RATE_LIMIT_MARKERS = ("rate limit", "rate_limit", "ratelimit", "too many requests")
_TIMEOUT_MARKERS = ("timeout", "timed out", "deadline exceeded")
_NETWORK_MARKERS = ("network", "fetch", "connection", "econnreset", "unreachable")
_PARSING_MARKERS = ("parse", "json", "invalid", "malformed", "unexpected token")


def extract_status_code(error: BaseException) -> Optional[int]:
    """Return the HTTP status carried by *error*, if any.

    Looks at ``status_code``, ``status``, an integer ``code`` and finally
    ``response.status_code`` (the shape used by most HTTP client errors).
    """
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    code = getattr(error, "code", None)
    if isinstance(code, int) and not isinstance(code, bool) and 100 <= code <= 599:
        return code
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


class ErrorClassifier:
    """Turn a raw failure plus its call context into an :class:`ErrorAnalysis`.

    Rules are evaluated in order and the first match wins:

        1. 429 / rate-limit wording  → RATE_LIMIT, low, delay × 2
        2. 401 / 403                  → AUTHENTICATION_ERROR, critical, final
        3. other 4xx                  → API_ERROR, medium, final
        4. 5xx                        → API_ERROR, high, delay × 1.5
        5. timeout / network wording  → TIMEOUT_ERROR / NETWORK_ERROR, medium
        6. parse / validation         → PARSING_ERROR / VALIDATION_ERROR, low, final
        7. anything else              → UNKNOWN, medium

    Reaching the last allowed attempt always makes the analysis final and
    raises severity to at least HIGH.
    """

    def __init__(
        self,
        config: ResilienceConfig,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.config = config
        self._rng = rng or random.Random()
        self._kind_counts: Dict[str, int] = defaultdict(int)

    # ---- public -----------------------------------------------------------

    def compute_delay(self, attempt: int, multiplier: float = 1.0) -> float:
        """Return the back-off delay in seconds for a 1-based *attempt*.

        ``min(max_delay, base · 2^(attempt-1) · jitter · multiplier)``
        """
        jitter = self._rng.uniform(self.config.jitter_min, self.config.jitter_max)
        raw = self.config.retry_base_delay * (2 ** (max(attempt, 1) - 1)) * jitter * multiplier
        return min(self.config.retry_max_delay, raw)

    def classify(self, error: BaseException, context: OperationContext) -> ErrorAnalysis:
        """Classify *error* raised during the attempt described by *context*."""
        status = extract_status_code(error)
        kind, severity, retryable, multiplier = self._match_rule(error, status)

        if context.attempt >= context.max_attempts:
            retryable = False
            if severity.rank < ErrorSeverity.HIGH.rank:
                severity = ErrorSeverity.HIGH

        analysis = ErrorAnalysis(
            kind=kind,
            severity=severity,
            message=_describe(error),
            retryable=retryable,
            suggested_delay=self.compute_delay(context.attempt, multiplier),
            context=context,
            status_code=status,
        )
        self._kind_counts[kind.value] += 1
        _logger.debug(
            f"Classified failure as {kind.value}/{severity.value} "
            f"(retryable={retryable})",
            extra={
                "operation": context.operation,
                "dependency_key": context.dependency_key,
                "subject_id": context.subject_id,
            },
        )
        return analysis

    def get_error_stats(self) -> Dict[str, int]:
        """Return mapping of error kind → number of classified failures."""
        return dict(self._kind_counts)

    def reset_stats(self) -> None:
        """Clear classification statistics."""
        self._kind_counts.clear()

    # ---- internal ---------------------------------------------------------

    def _match_rule(
        self,
        error: BaseException,
        status: Optional[int],
    ) -> Tuple[ErrorKind, ErrorSeverity, bool, float]:
        msg = str(error).lower()

        if status == 429 or any(m in msg for m in _RATE_LIMIT_MARKERS):
            return (
                ErrorKind.RATE_LIMIT,
                ErrorSeverity.LOW,
                True,
                self.config.rate_limit_delay_multiplier,
            )
        if status in (401, 403):
            return ErrorKind.AUTHENTICATION_ERROR, ErrorSeverity.CRITICAL, False, 1.0
        if status is not None and 400 <= status < 500:
            return ErrorKind.API_ERROR, ErrorSeverity.MEDIUM, False, 1.0
        if status is not None and status >= 500:
            return (
                ErrorKind.API_ERROR,
                ErrorSeverity.HIGH,
                True,
                self.config.server_error_delay_multiplier,
            )
        if isinstance(error, (asyncio.TimeoutError, TimeoutError)) or any(
            m in msg for m in _TIMEOUT_MARKERS
        ):
            return ErrorKind.TIMEOUT_ERROR, ErrorSeverity.MEDIUM, True, 1.0
        if isinstance(error, (ConnectionError, OSError)) or any(
            m in msg for m in _NETWORK_MARKERS
        ):
            return ErrorKind.NETWORK_ERROR, ErrorSeverity.MEDIUM, True, 1.0
        if isinstance(error, ValidationError):
            return ErrorKind.VALIDATION_ERROR, ErrorSeverity.LOW, False, 1.0
        if isinstance(error, json.JSONDecodeError) or any(
            m in msg for m in _PARSING_MARKERS
        ):
            return ErrorKind.PARSING_ERROR, ErrorSeverity.LOW, False, 1.0
        return ErrorKind.UNKNOWN, ErrorSeverity.MEDIUM, True, 1.0


def _describe(error: BaseException) -> str:
    text = str(error)
    return text if text else type(error).__name__

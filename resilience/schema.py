"""Pydantic v2 schemas for the resilience layer."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ErrorKind(str, Enum):
    """Canonical failure category assigned by the error classifier."""
    RATE_LIMIT = "rate_limit"
    API_ERROR = "api_error"
    AUTHENTICATION_ERROR = "authentication_error"
    NETWORK_ERROR = "network_error"
    TIMEOUT_ERROR = "timeout_error"
    PARSING_ERROR = "parsing_error"
    VALIDATION_ERROR = "validation_error"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    """How bad a failure is, from transient to system-level."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    ErrorSeverity.LOW: 0,
    ErrorSeverity.MEDIUM: 1,
    ErrorSeverity.HIGH: 2,
    ErrorSeverity.CRITICAL: 3,
}


# ---------------------------------------------------------------------------
# Per-attempt records
# ---------------------------------------------------------------------------

class OperationContext(BaseModel):
    """Call context for one attempt of an upstream operation."""
    model_config = ConfigDict(frozen=True)

    operation: str = Field(min_length=1)
    subject_id: Optional[str] = None
    dependency_key: str = ""
    attempt: int = Field(default=1, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    started_at: float = Field(default=0.0, description="Monotonic seconds")
    duration: Optional[float] = Field(default=None, ge=0.0)

    @model_validator(mode="before")
    @classmethod
    def _default_dependency_key(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("dependency_key"):
            data = {**data, "dependency_key": f"{data.get('operation', '')}-default"}
        return data

    def with_attempt(
        self,
        attempt: int,
        started_at: float,
        duration: Optional[float] = None,
    ) -> "OperationContext":
        """Return a copy describing *attempt*."""
        return self.model_copy(
            update={"attempt": attempt, "started_at": started_at, "duration": duration}
        )


class ErrorAnalysis(BaseModel):
    """Structured decision produced for a failed attempt."""
    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    severity: ErrorSeverity
    message: str
    retryable: bool
    suggested_delay: float = Field(ge=0.0, description="Seconds to wait before retrying")
    context: OperationContext
    status_code: Optional[int] = None
    breaker_open: bool = False


class ExecutionResult(BaseModel):
    """Discriminated outcome of :meth:`RetryExecutor.execute_with_retry`."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    success: bool
    result: Any = None
    error: Optional[ErrorAnalysis] = None
    attempts: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_discriminant(self) -> "ExecutionResult":
        if self.success and self.error is not None:
            raise ValueError("successful result must not carry an error")
        if not self.success and self.error is None:
            raise ValueError("failed result must carry an ErrorAnalysis")
        return self


# ---------------------------------------------------------------------------
# Circuit breaker
# ---------------------------------------------------------------------------

class CircuitBreakerState(BaseModel):
    """Breaker state for one dependency key (monotonic timestamps)."""

    is_open: bool = False
    failure_count: int = Field(default=0, ge=0)
    last_failure_time: Optional[float] = None
    next_attempt_time: Optional[float] = None
    probing: bool = Field(
        default=False,
        description="A single probe call has been let through and not yet resolved",
    )


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class UpstreamError(Exception):
    """Raw failure raised by a sub-analyzer talking to an upstream API."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class CircuitBreakerOpenError(Exception):
    """Raised when a circuit breaker is open and rejects a call."""

    def __init__(self, dependency_key: str) -> None:
        self.dependency_key = dependency_key
        super().__init__(f"Circuit breaker open for '{dependency_key}' - call rejected")

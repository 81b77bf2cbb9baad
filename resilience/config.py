"""Frozen-dataclass configuration for the resilience layer."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimiterOptions:
    """Pacing parameters for one dependency (seconds).

    Presets differ only in these values; the limiter algorithm is shared.
    """

    base_delay: float = 0.2
    max_delay: float = 5.0
    batch_size: int = 5
    batch_delay: float = 1.0

    def __post_init__(self) -> None:
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        if self.batch_delay < 0:
            raise ValueError("batch_delay must be >= 0")


DEFAULT_LIMITS = RateLimiterOptions()
CONSERVATIVE_LIMITS = RateLimiterOptions(
    base_delay=0.3, max_delay=10.0, batch_size=3, batch_delay=2.0,
)
PERMISSIVE_LIMITS = RateLimiterOptions(
    base_delay=0.5, max_delay=5.0, batch_size=10, batch_delay=1.0,
)

RATE_LIMIT_PRESETS = {
    "default": DEFAULT_LIMITS,
    "conservative": CONSERVATIVE_LIMITS,
    "permissive": PERMISSIVE_LIMITS,
}


@dataclass(frozen=True)
class ResilienceConfig:
    """Master configuration for retries, breakers and deadlines.

    All values carry sensible defaults.  Override via constructor kwargs.
    """

    # ---- Retry -----------------------------------------------------------
    max_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    jitter_min: float = 0.95
    jitter_max: float = 1.05
    rate_limit_delay_multiplier: float = 2.0
    server_error_delay_multiplier: float = 1.5

    # ---- Circuit breaker -------------------------------------------------
    circuit_breaker_failure_threshold: int = 5
    circuit_breaker_cooldown: float = 60.0

    # ---- Deadlines -------------------------------------------------------
    call_timeout: float = 10.0

    # ---- Rate limiting ---------------------------------------------------
    rate_limit_preset: str = "default"

    # ---- Telemetry -------------------------------------------------------
    enable_prometheus_metrics: bool = True

    def rate_limit_options(self) -> RateLimiterOptions:
        """Return the options for the configured preset."""
        return RATE_LIMIT_PRESETS[self.rate_limit_preset]

    def __post_init__(self) -> None:
        """Validate invariants at construction time."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.retry_base_delay < 0:
            raise ValueError("retry_base_delay must be >= 0")
        if self.retry_max_delay < self.retry_base_delay:
            raise ValueError("retry_max_delay must be >= retry_base_delay")
        if not 0 < self.jitter_min <= self.jitter_max:
            raise ValueError("jitter range must satisfy 0 < jitter_min <= jitter_max")
        if self.rate_limit_delay_multiplier < 1 or self.server_error_delay_multiplier < 1:
            raise ValueError("delay multipliers must be >= 1")
        if self.circuit_breaker_failure_threshold <= 0:
            raise ValueError("circuit_breaker_failure_threshold must be > 0")
        if self.circuit_breaker_cooldown < 0:
            raise ValueError("circuit_breaker_cooldown must be >= 0")
        if self.call_timeout <= 0:
            raise ValueError("call_timeout must be > 0")
        if self.rate_limit_preset not in RATE_LIMIT_PRESETS:
            raise ValueError(
                f"rate_limit_preset must be one of {sorted(RATE_LIMIT_PRESETS)}"
            )

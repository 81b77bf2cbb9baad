"""Adaptive per-dependency rate limiting with failure-driven back-off."""

from __future__ import annotations

import asyncio
import threading
from typing import Dict, Optional

from .clock import Clock, SystemClock
from .config import DEFAULT_LIMITS, RateLimiterOptions
from .telemetry import get_logger

_logger = get_logger(__name__)


class AdaptiveRateLimiter:
    """Space calls to one dependency; spacing doubles per consecutive failure.

    delay before a call:
        ``min(max_delay, base_delay × 2^consecutive_failures)``
    minus whatever time has already passed since the previous call.
    """

    def __init__(
        self,
        options: RateLimiterOptions = DEFAULT_LIMITS,
        clock: Optional[Clock] = None,
        name: str = "",
    ) -> None:
        self.options = options
        self.name = name
        self._clock = clock or SystemClock()
        self._last_call_time: Optional[float] = None
        self._consecutive_failures = 0
        self._lock: Optional[asyncio.Lock] = None

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def current_delay(self) -> float:
        """Return the spacing currently enforced between calls."""
        return min(
            self.options.max_delay,
            self.options.base_delay * (2 ** self._consecutive_failures),
        )

    async def wait_for_next_call(self) -> float:
        """Sleep until the next call is allowed; return the time slept."""
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            delay = self.current_delay()
            waited = 0.0
            if self._last_call_time is not None:
                elapsed = self._clock.now() - self._last_call_time
                waited = max(delay - elapsed, 0.0)
            if waited > 0:
                _logger.debug(
                    f"Rate limiter pacing {waited:.3f}s "
                    f"(failures={self._consecutive_failures})",
                    extra={"dependency_key": self.name},
                )
                await self._clock.sleep(waited)
            self._last_call_time = self._clock.now()
            return waited

    async def wait_for_batch(self) -> None:
        """Fixed pause between logical batches, independent of failures."""
        await self._clock.sleep(self.options.batch_delay)

    def record_success(self) -> None:
        self._consecutive_failures = 0

    def record_failure(self) -> None:
        self._consecutive_failures += 1

    def reset_failures(self) -> None:
        """Clear the failure streak (e.g. after a long idle period)."""
        self._consecutive_failures = 0


class RateLimiterRegistry:
    """Lazily create one :class:`AdaptiveRateLimiter` per dependency key."""

    def __init__(
        self,
        default_options: RateLimiterOptions = DEFAULT_LIMITS,
        clock: Optional[Clock] = None,
    ) -> None:
        self.default_options = default_options
        self._clock = clock or SystemClock()
        self._limiters: Dict[str, AdaptiveRateLimiter] = {}
        self._lock = threading.Lock()

    def get(
        self,
        key: str,
        options: Optional[RateLimiterOptions] = None,
    ) -> AdaptiveRateLimiter:
        """Return the limiter for *key*, creating it with *options* if new."""
        with self._lock:
            limiter = self._limiters.get(key)
            if limiter is None:
                limiter = AdaptiveRateLimiter(
                    options or self.default_options, clock=self._clock, name=key,
                )
                self._limiters[key] = limiter
            return limiter

    def configure(self, key: str, options: RateLimiterOptions) -> AdaptiveRateLimiter:
        """Install a limiter for *key* with explicit *options*."""
        with self._lock:
            limiter = AdaptiveRateLimiter(options, clock=self._clock, name=key)
            self._limiters[key] = limiter
            return limiter

    def get_failure_streaks(self) -> Dict[str, int]:
        """Return mapping of dependency key → consecutive failures."""
        with self._lock:
            return {k: v.consecutive_failures for k, v in self._limiters.items()}

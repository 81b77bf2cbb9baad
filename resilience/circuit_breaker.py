"""Per-dependency circuit breaker registry: CLOSED → OPEN → PROBE → CLOSED."""

from __future__ import annotations

import threading
from typing import Dict, List, Optional

from .clock import Clock, SystemClock
from .schema import CircuitBreakerState
from .telemetry import get_logger

_logger = get_logger(__name__)


class CircuitBreakerRegistry:
    """Circuit breakers keyed by dependency (e.g. ``"operation-endpoint"``).

    State machine per key:
        CLOSED: normal operation; failures counted since the last success.
        OPEN:   ``failure_count >= failure_threshold``; calls rejected until
                 ``next_attempt_time``.
        PROBE:  cooldown elapsed; ``is_open`` reports ``False`` exactly once
                 per elapsed cooldown window.  The failure count is kept, so
                 one more failure re-opens the breaker with a fresh
                 ``next_attempt_time``; a success closes it.

    Create one registry at process start and inject it; every mutation of
    a given key is serialized by that key's lock.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        cooldown: float = 60.0,
        clock: Optional[Clock] = None,
    ) -> None:
        if failure_threshold <= 0:
            raise ValueError("failure_threshold must be > 0")
        if cooldown < 0:
            raise ValueError("cooldown must be >= 0")
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self._clock = clock or SystemClock()
        self._states: Dict[str, CircuitBreakerState] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    # ---- public API -------------------------------------------------------

    def is_open(self, key: str) -> bool:
        """Return whether calls for *key* must be rejected right now."""
        with self._lock_for(key):
            state = self._states.get(key)
            if state is None:
                return False
            if not (state.is_open or state.probing):
                return False
            now = self._clock.now()
            if state.next_attempt_time is not None and now > state.next_attempt_time:
                # One probe per window; an unresolved probe expires with it.
                state.is_open = False
                state.probing = True
                state.next_attempt_time = now + self.cooldown
                _logger.info(
                    "Circuit breaker cooldown expired, allowing probe",
                    extra={"dependency_key": key},
                )
                return False
            return True

    def record_failure(self, key: str) -> CircuitBreakerState:
        """Count a failure for *key*, opening the breaker at the threshold."""
        with self._lock_for(key):
            state = self._states.setdefault(key, CircuitBreakerState())
            now = self._clock.now()
            state.failure_count += 1
            state.last_failure_time = now
            if state.failure_count >= self.failure_threshold:
                state.probing = False
                if not state.is_open:
                    _logger.warning(
                        f"Circuit breaker opened after {state.failure_count} failures",
                        extra={"dependency_key": key},
                    )
                state.is_open = True
                state.next_attempt_time = now + self.cooldown
            return state.model_copy()

    def record_success(self, key: str) -> None:
        """Reset *key* to the zero state if it had any recorded failures."""
        with self._lock_for(key):
            state = self._states.get(key)
            if state is None:
                return
            if state.failure_count > 0 or state.is_open or state.probing:
                _logger.info(
                    "Circuit breaker reset after success",
                    extra={"dependency_key": key},
                )
                self._states[key] = CircuitBreakerState()

    def get_state(self, key: str) -> CircuitBreakerState:
        """Return a copy of the stored state for *key* (zero state if absent)."""
        with self._lock_for(key):
            state = self._states.get(key)
            return state.model_copy() if state is not None else CircuitBreakerState()

    def get_status(self) -> Dict[str, CircuitBreakerState]:
        """Return a read-only snapshot of every breaker for monitoring."""
        snapshot: Dict[str, CircuitBreakerState] = {}
        for key in self.keys():
            snapshot[key] = self.get_state(key)
        return snapshot

    def keys(self) -> List[str]:
        with self._registry_lock:
            return sorted(self._states)

    def reset(self, key: Optional[str] = None) -> None:
        """Force-reset one breaker, or all of them when *key* is ``None``."""
        if key is not None:
            with self._lock_for(key):
                self._states.pop(key, None)
            return
        # Each key under its own lock, so an in-flight update finishes first.
        for name in self.keys():
            with self._lock_for(name):
                self._states.pop(name, None)

    # ---- internal ---------------------------------------------------------

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

"""Tests for resilience.circuit_breaker."""

from __future__ import annotations

import threading

import pytest

from resilience.circuit_breaker import CircuitBreakerRegistry
from resilience.clock import ManualClock

KEY = "holder_scan-default"


@pytest.fixture
def registry(clock: ManualClock) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(failure_threshold=5, cooldown=60.0, clock=clock)


def _trip(registry: CircuitBreakerRegistry, key: str = KEY, times: int = 5) -> None:
    for _ in range(times):
        registry.record_failure(key)


class TestClosed:
    def test_unknown_key_is_closed(self, registry: CircuitBreakerRegistry) -> None:
        assert registry.is_open("never-seen") is False

    def test_below_threshold_stays_closed(self, registry: CircuitBreakerRegistry) -> None:
        _trip(registry, times=4)
        assert registry.is_open(KEY) is False
        assert registry.get_state(KEY).failure_count == 4

    def test_success_resets(self, registry: CircuitBreakerRegistry) -> None:
        _trip(registry, times=3)
        registry.record_success(KEY)
        state = registry.get_state(KEY)
        assert state.failure_count == 0
        assert state.is_open is False
        assert state.last_failure_time is None


class TestOpen:
    def test_opens_at_threshold(
        self, registry: CircuitBreakerRegistry, clock: ManualClock
    ) -> None:
        _trip(registry)
        state = registry.get_state(KEY)
        assert registry.is_open(KEY) is True
        assert state.is_open is True
        assert state.next_attempt_time == pytest.approx(clock.now() + 60.0)

    def test_still_open_before_cooldown(
        self, registry: CircuitBreakerRegistry, clock: ManualClock
    ) -> None:
        _trip(registry)
        clock.advance(59.0)
        assert registry.is_open(KEY) is True

    def test_keys_are_independent(self, registry: CircuitBreakerRegistry) -> None:
        _trip(registry, key="a-default")
        assert registry.is_open("a-default") is True
        assert registry.is_open("b-default") is False


class TestProbe:
    def test_probe_granted_exactly_once(
        self, registry: CircuitBreakerRegistry, clock: ManualClock
    ) -> None:
        _trip(registry)
        assert registry.is_open(KEY) is True
        clock.advance(60.5)
        assert registry.is_open(KEY) is False
        assert registry.is_open(KEY) is True
        assert registry.is_open(KEY) is True

    def test_failed_probe_reopens_with_fresh_deadline(
        self, registry: CircuitBreakerRegistry, clock: ManualClock
    ) -> None:
        _trip(registry)
        first_deadline = registry.get_state(KEY).next_attempt_time
        clock.advance(61.0)
        assert registry.is_open(KEY) is False

        state = registry.record_failure(KEY)
        assert state.is_open is True
        assert state.failure_count == 6
        assert state.next_attempt_time == pytest.approx(clock.now() + 60.0)
        assert state.next_attempt_time > first_deadline
        assert registry.is_open(KEY) is True

    def test_successful_probe_closes(
        self, registry: CircuitBreakerRegistry, clock: ManualClock
    ) -> None:
        _trip(registry)
        clock.advance(61.0)
        assert registry.is_open(KEY) is False
        registry.record_success(KEY)
        assert registry.is_open(KEY) is False
        assert registry.is_open(KEY) is False
        assert registry.get_state(KEY).failure_count == 0

    def test_unresolved_probe_expires_with_window(
        self, registry: CircuitBreakerRegistry, clock: ManualClock
    ) -> None:
        _trip(registry)
        clock.advance(61.0)
        assert registry.is_open(KEY) is False
        clock.advance(61.0)
        assert registry.is_open(KEY) is False
        assert registry.is_open(KEY) is True


class TestStatus:
    def test_status_is_a_snapshot(self, registry: CircuitBreakerRegistry) -> None:
        _trip(registry, key="a-default", times=2)
        status = registry.get_status()
        status["a-default"].failure_count = 99
        assert registry.get_state("a-default").failure_count == 2

    def test_reset_single_and_all(self, registry: CircuitBreakerRegistry) -> None:
        _trip(registry, key="a-default")
        _trip(registry, key="b-default")
        registry.reset("a-default")
        assert registry.keys() == ["b-default"]
        registry.reset()
        assert registry.keys() == []

    def test_invalid_threshold(self) -> None:
        with pytest.raises(ValueError):
            CircuitBreakerRegistry(failure_threshold=0)


class TestConcurrency:
    def test_failure_count_is_exact_across_threads(
        self, registry: CircuitBreakerRegistry
    ) -> None:
        def worker() -> None:
            for _ in range(100):
                registry.record_failure(KEY)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert registry.get_state(KEY).failure_count == 800

    def test_reset_all_waits_for_in_flight_update(
        self, registry: CircuitBreakerRegistry
    ) -> None:
        registry.record_failure(KEY)
        key_lock = registry._lock_for(KEY)
        done = threading.Event()

        def reset_all() -> None:
            registry.reset()
            done.set()

        key_lock.acquire()
        t = threading.Thread(target=reset_all)
        t.start()
        try:
            assert not done.wait(0.05)
        finally:
            key_lock.release()
        t.join(timeout=1.0)
        assert done.is_set()
        assert registry.keys() == []

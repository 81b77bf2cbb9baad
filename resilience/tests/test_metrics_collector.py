"""Tests for resilience.metrics_collector."""

from __future__ import annotations

from resilience.config import ResilienceConfig
from resilience.metrics_collector import MetricsCollector


def _disabled() -> MetricsCollector:
    return MetricsCollector(ResilienceConfig(enable_prometheus_metrics=False))


class TestRecording:
    def test_record_call(self) -> None:
        mc = _disabled()
        mc.record_call("rpc", 0.5, "success")
        mc.record_call("rpc", 0.1, "failed")
        assert mc._attempts["rpc"] == 2

    def test_timeout_failures_counted_separately(self) -> None:
        mc = _disabled()
        mc.record_failure("rpc", "timeout_error")
        mc.record_failure("rpc", "network_error")
        assert mc._failures["rpc"] == 2
        assert mc._timeouts["rpc"] == 1

    def test_breaker_state(self) -> None:
        mc = _disabled()
        mc.record_breaker_state("rpc", True)
        mc.record_breaker_rejection("rpc")
        assert mc._breaker_open["rpc"] is True
        assert mc._breaker_rejections["rpc"] == 1

    def test_fusion_result(self) -> None:
        mc = _disabled()
        mc.record_fusion_result("TOKEN1", "hybrid", 0.5)
        mc.record_fusion_result("TOKEN2", "hybrid", 0.33)
        assert mc.get_summary()["strategies"] == {"hybrid": 2}
        assert mc._last_coverage["TOKEN2"] == 0.33

    def test_reset(self) -> None:
        mc = _disabled()
        mc.record_retry("rpc")
        mc.reset()
        assert mc.get_summary()["retries"] == {}


class TestPrometheus:
    def test_export_disabled_is_empty(self) -> None:
        assert _disabled().export_metrics() == ""

    def test_export_enabled(self) -> None:
        mc = MetricsCollector(ResilienceConfig(enable_prometheus_metrics=True))
        mc.record_call("rpc", 0.2, "success")
        mc.record_failure("rpc", "rate_limit")
        mc.record_fusion_result("TOKEN1", "real_only", 1.0)
        text = mc.export_metrics()
        assert "upstream_call_seconds" in text
        assert 'error_kind="rate_limit"' in text
        assert 'strategy="real_only"' in text

    def test_registries_are_isolated(self) -> None:
        a = MetricsCollector(ResilienceConfig())
        b = MetricsCollector(ResilienceConfig())
        a.record_retry("rpc")
        assert 'retry_attempts_total{dependency_key="rpc"} 1.0' in a.export_metrics()
        assert 'dependency_key="rpc"' not in b.export_metrics()

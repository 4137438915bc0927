"""Tests for the in-process Prometheus registry."""

import pytest

from app.services.observability.prometheus import (
    MetricType,
    PrometheusRegistry,
    get_registry,
    record_notification,
    track_execution_time,
)


@pytest.fixture
def registry():
    registry = PrometheusRegistry()
    registry.register("jobs_total", MetricType.COUNTER, "Jobs", labels=["kind"])
    registry.register("queue_depth", "gauge", "Queue depth")
    registry.register("latency_seconds", MetricType.HISTOGRAM, "Latency", buckets=[0.1, 1.0])
    return registry


class TestRegistry:
    def test_default_metrics_registered(self):
        names = PrometheusRegistry().names()
        for name in ("gas_readings_ingested_total", "gas_notifications_total", "gas_gate_blocks_total",
                     "gas_fail_open_total", "gas_email_send_duration_seconds", "gas_datastore_up"):
            assert name in names

    def test_register_is_idempotent(self, registry):
        registry.inc("jobs_total", labels={"kind": "a"})
        registry.register("jobs_total", MetricType.GAUGE, "Other")
        assert registry.get_value("jobs_total", {"kind": "a"}) == 1

    def test_counter_per_label_set(self, registry):
        registry.inc("jobs_total", labels={"kind": "a"})
        registry.inc("jobs_total", 2, labels={"kind": "a"})
        registry.inc("jobs_total", labels={"kind": "b"})
        assert registry.get_value("jobs_total", {"kind": "a"}) == 3
        assert registry.get_value("jobs_total", {"kind": "b"}) == 1
        assert registry.get_value("jobs_total", {"kind": "c"}) == 0

    def test_gauge_set(self, registry):
        registry.set("queue_depth", 5)
        registry.set("queue_depth", 2)
        assert registry.get_value("queue_depth") == 2

    def test_unknown_metric_ignored(self, registry):
        registry.inc("nope")
        registry.set("nope", 1)
        registry.observe("nope", 1)
        assert "nope" not in registry.names()

    def test_histogram_buckets_are_cumulative(self, registry):
        registry.observe("latency_seconds", 0.05)
        registry.observe("latency_seconds", 0.5)
        registry.observe("latency_seconds", 5)

        assert registry.get_value("latency_seconds_bucket", {"le": "0.1"}) == 1
        assert registry.get_value("latency_seconds_bucket", {"le": "1.0"}) == 2
        assert registry.get_value("latency_seconds_bucket", {"le": "+Inf"}) == 3
        assert registry.get_value("latency_seconds_count") == 3
        assert registry.get_value("latency_seconds_sum") == pytest.approx(5.55)

    def test_observe_rejects_non_histogram(self, registry):
        registry.observe("jobs_total", 1, labels={"kind": "a"})
        assert registry.get_value("jobs_total", {"kind": "a"}) == 0

    def test_export_format(self, registry):
        registry.inc("jobs_total", labels={"kind": "a"})
        registry.observe("latency_seconds", 0.05)

        text = registry.export()

        assert "# HELP jobs_total Jobs" in text
        assert "# TYPE jobs_total counter" in text
        assert 'jobs_total{kind="a"} 1' in text
        assert "# TYPE latency_seconds histogram" in text
        assert 'latency_seconds_bucket{le="+Inf"} 1' in text
        assert "latency_seconds_count 1" in text
        assert text.endswith("\n")

    def test_clear_keeps_definitions(self, registry):
        registry.inc("jobs_total", labels={"kind": "a"})
        registry.clear()
        assert registry.get_value("jobs_total", {"kind": "a"}) == 0
        assert "jobs_total" in registry.names()


class TestRecorders:
    def test_record_notification_blocked(self):
        record_notification("blocked", "quiet_hours")
        registry = get_registry()
        assert registry.get_value("gas_notifications_total", {"outcome": "blocked"}) == 1
        assert registry.get_value("gas_gate_blocks_total", {"rule": "quiet_hours"}) == 1

    def test_record_notification_sent_has_no_rule(self):
        record_notification("sent")
        assert "gas_gate_blocks_total{" not in get_registry().export()


class TestTrackExecutionTime:
    def test_sync_function(self):
        @track_execution_time("gas_retention_duration_seconds")
        def work():
            return 42

        assert work() == 42
        assert get_registry().get_value("gas_retention_duration_seconds_count") == 1

    @pytest.mark.asyncio
    async def test_async_function_records_on_error(self):
        @track_execution_time("gas_email_send_duration_seconds", labels_func=lambda args, kwargs: {"provider": "x"})
        async def boom():
            raise RuntimeError("fail")

        with pytest.raises(RuntimeError):
            await boom()
        assert get_registry().get_value("gas_email_send_duration_seconds_count", {"provider": "x"}) == 1

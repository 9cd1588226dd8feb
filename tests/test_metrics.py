"""
Tests for the metrics registry.
"""

import pytest

from mirroring_service.observability.metrics import MetricsRegistry, Timer


@pytest.fixture
def registry():
    return MetricsRegistry(prefix="test")


class TestCounter:

    def test_increment(self, registry):
        registry.increment("hits")
        registry.increment("hits", 2)
        assert registry.counter("hits").get() == 3

    def test_labels_are_separate(self, registry):
        registry.increment("hits", labels={"op": "mirror"})
        registry.increment("hits", labels={"op": "unmirror"})
        assert registry.counter("hits").get({"op": "mirror"}) == 1
        assert registry.counter("hits").get() == 0

    def test_cannot_decrease(self, registry):
        with pytest.raises(ValueError):
            registry.increment("hits", -1)

    def test_kind_mismatch(self, registry):
        registry.counter("hits")
        with pytest.raises(TypeError):
            registry.gauge("hits")


class TestGauge:

    def test_set_inc_dec(self, registry):
        gauge = registry.gauge("active")
        gauge.set(5)
        gauge.inc()
        gauge.dec(2)
        assert gauge.get() == 4


class TestHistogram:

    def test_observe(self, registry):
        registry.timing("latency", 0.02)
        registry.timing("latency", 2)
        histogram = registry.histogram("latency")

        assert histogram.count() == 2
        buckets = {p.labels["le"]: p.value for p in histogram.export() if p.name.endswith("_bucket")}
        assert buckets["0.01"] == 0
        assert buckets["0.05"] == 1
        assert buckets["+Inf"] == 2

    def test_timer(self, registry):
        with Timer(registry, "latency", {"op": "mirror"}):
            pass
        assert registry.histogram("latency").count({"op": "mirror"}) == 1


class TestExport:

    def test_common_metrics_registered(self):
        text = MetricsRegistry().export_prometheus()
        assert "# TYPE mirroring_mirror_requests_total counter" in text
        assert "# TYPE mirroring_active_downloads gauge" in text
        assert "# TYPE mirroring_mirror_duration_seconds histogram" in text

    def test_prometheus_labels(self, registry):
        registry.increment("hits", labels={"type": "bitdrive", "op": "mirror"})
        text = registry.export_prometheus()
        assert 'test_hits{op="mirror",type="bitdrive"} 1' in text
        assert text.endswith("\n")

    def test_json(self, registry):
        registry.set_gauge("active", 3)
        exported = registry.export_json()
        assert "timestamp" in exported
        assert exported["metrics"]["test_active"] == [
            {"name": "test_active", "labels": {}, "value": 3},
        ]

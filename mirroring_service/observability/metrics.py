"""
Metrics — Operational counters for the mirroring service.

Compatible with the Prometheus text exposition format.

## Usage

    from mirroring_service.observability.metrics import metrics

    metrics.increment("mirror_requests_total", labels={"op": "mirror", "type": "unichain"})
    metrics.set_gauge("active_downloads", 3)

    output = metrics.export_prometheus()
"""

from __future__ import annotations

import logging
import time
from bisect import bisect_left
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

Labels = Optional[Dict[str, str]]


@dataclass
class MetricPoint:
    """A single exported sample."""

    name: str
    value: float
    labels: Dict[str, str] = field(default_factory=dict)


def _labels_key(labels: Labels) -> str:
    if not labels:
        return ""
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


def _labels_from_key(key: str) -> Dict[str, str]:
    if not key:
        return {}
    return dict(pair.split("=", 1) for pair in key.split(","))


class _Metric:
    """Shared label handling for counters and gauges."""

    kind = "untyped"

    def __init__(self, name: str, help_text: str = ""):
        self.name = name
        self.help_text = help_text
        self._values: Dict[str, float] = {}
        self._lock = Lock()

    def get(self, labels: Labels = None) -> float:
        return self._values.get(_labels_key(labels), 0)

    def _add(self, value: float, labels: Labels) -> None:
        key = _labels_key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0) + value

    def export(self) -> List[MetricPoint]:
        with self._lock:
            items = list(self._values.items())
        return [MetricPoint(self.name, value, _labels_from_key(key)) for key, value in items]


class Counter(_Metric):
    """A monotonically increasing counter."""

    kind = "counter"

    def inc(self, value: float = 1, labels: Labels = None) -> None:
        if value < 0:
            raise ValueError("Counters can only increase")
        self._add(value, labels)


class Gauge(_Metric):
    """A value that can go up and down."""

    kind = "gauge"

    def set(self, value: float, labels: Labels = None) -> None:
        with self._lock:
            self._values[_labels_key(labels)] = value

    def inc(self, value: float = 1, labels: Labels = None) -> None:
        self._add(value, labels)

    def dec(self, value: float = 1, labels: Labels = None) -> None:
        self._add(-value, labels)


@dataclass
class _Series:
    """Observations for one label set. counts[i] is the number <= buckets[i]."""

    counts: List[int]
    total: float = 0.0
    observations: int = 0


class Histogram:
    """Bucketed distribution of observed durations (seconds)."""

    kind = "histogram"
    DEFAULT_BUCKETS = (0.005, 0.01, 0.05, 0.1, 0.5, 1, 5, 30, float("inf"))

    def __init__(self, name: str, help_text: str = "", buckets: Optional[tuple] = None):
        self.name = name
        self.help_text = help_text
        self.buckets = tuple(sorted(buckets or self.DEFAULT_BUCKETS))
        self._series: Dict[str, _Series] = {}
        self._lock = Lock()

    def observe(self, value: float, labels: Labels = None) -> None:
        first = bisect_left(self.buckets, value)
        with self._lock:
            series = self._series.setdefault(
                _labels_key(labels), _Series(counts=[0] * len(self.buckets))
            )
            series.total += value
            series.observations += 1
            for i in range(first, len(self.buckets)):
                series.counts[i] += 1

    def count(self, labels: Labels = None) -> int:
        series = self._series.get(_labels_key(labels))
        return series.observations if series else 0

    def export(self) -> List[MetricPoint]:
        with self._lock:
            snapshot = [
                (key, list(s.counts), s.total, s.observations)
                for key, s in self._series.items()
            ]

        points: List[MetricPoint] = []
        for key, counts, total, observations in snapshot:
            labels = _labels_from_key(key)
            for bound, cumulative in zip(self.buckets, counts):
                le = "+Inf" if bound == float("inf") else str(bound)
                points.append(MetricPoint(f"{self.name}_bucket", cumulative, {**labels, "le": le}))
            points.append(MetricPoint(f"{self.name}_sum", total, labels))
            points.append(MetricPoint(f"{self.name}_count", observations, labels))
        return points


class MetricsRegistry:
    """Named metrics with Prometheus and JSON export."""

    def __init__(self, prefix: str = "mirroring"):
        self.prefix = prefix
        self._metrics: Dict[str, Any] = {}
        self._lock = Lock()
        self._register_common_metrics()

    def _register_common_metrics(self) -> None:
        self.counter("mirror_requests_total", "Mirror control requests by op and type")
        self.counter("mirror_errors_total", "Failed mirror control requests by op")
        self.histogram("mirror_duration_seconds", "Mirror control request duration")
        self.gauge("active_downloads", "Logs currently being downloaded")
        self.counter("restart_replayed_total", "Chains replayed by startup reconciliation")
        self.counter("client_connections_total", "Control channel requests accepted")

    def _get_or_create(self, cls, name: str, help_text: str):
        full_name = f"{self.prefix}_{name}"
        with self._lock:
            metric = self._metrics.get(full_name)
            if metric is None:
                metric = cls(full_name, help_text)
                self._metrics[full_name] = metric
            elif not isinstance(metric, cls):
                raise TypeError(f"{full_name} is already registered as a {metric.kind}")
            return metric

    def counter(self, name: str, help_text: str = "") -> Counter:
        return self._get_or_create(Counter, name, help_text)

    def gauge(self, name: str, help_text: str = "") -> Gauge:
        return self._get_or_create(Gauge, name, help_text)

    def histogram(self, name: str, help_text: str = "") -> Histogram:
        return self._get_or_create(Histogram, name, help_text)

    # Convenience methods
    def increment(self, name: str, value: float = 1, labels: Labels = None) -> None:
        self.counter(name).inc(value, labels)

    def set_gauge(self, name: str, value: float, labels: Labels = None) -> None:
        self.gauge(name).set(value, labels)

    def timing(self, name: str, seconds: float, labels: Labels = None) -> None:
        self.histogram(name).observe(seconds, labels)

    def _registered(self) -> List[Any]:
        with self._lock:
            return list(self._metrics.values())

    def export_prometheus(self) -> str:
        """Render every metric in the Prometheus text exposition format."""
        lines = []
        for metric in self._registered():
            lines += [
                f"# HELP {metric.name} {metric.help_text}",
                f"# TYPE {metric.name} {metric.kind}",
            ]
            lines += [
                f"{point.name}{_render_labels(point.labels)} {point.value}"
                for point in metric.export()
            ]
        return "\n".join(lines) + "\n"

    def export_json(self) -> Dict[str, Any]:
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "metrics": {
                metric.name: [
                    {"name": p.name, "labels": p.labels, "value": p.value}
                    for p in metric.export()
                ]
                for metric in self._registered()
            },
        }


def _render_labels(labels: Dict[str, str]) -> str:
    if not labels:
        return ""
    return "{" + ",".join(f'{k}="{v}"' for k, v in sorted(labels.items())) + "}"


class Timer:
    """Context manager recording elapsed seconds into a histogram."""

    def __init__(self, registry: MetricsRegistry, name: str, labels: Labels = None):
        self.registry = registry
        self.name = name
        self.labels = labels
        self._start = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.monotonic()
        return self

    def __exit__(self, *exc) -> None:
        self.registry.timing(self.name, time.monotonic() - self._start, self.labels)


# Global metrics instance
metrics = MetricsRegistry()

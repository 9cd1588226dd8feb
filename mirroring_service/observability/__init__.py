"""
Observability Module — Metrics for the mirroring service.
"""

from .metrics import Counter, Gauge, Histogram, MetricsRegistry, Timer, metrics

__all__ = [
    "metrics",
    "MetricsRegistry",
    "Counter",
    "Gauge",
    "Histogram",
    "Timer",
]

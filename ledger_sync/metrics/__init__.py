"""Metrics package."""

from ledger_sync.metrics.collector import (
    MetricEvent,
    MetricsCollector,
    MetricsReport,
    MetricType,
    get_metrics,
    init_metrics,
)

__all__ = [
    "MetricEvent",
    "MetricsCollector",
    "MetricsReport",
    "MetricType",
    "get_metrics",
    "init_metrics",
]

"""Metrics snapshot providers consumed by the gate engine."""

from secgate.metrics.http import HttpMetricsProvider
from secgate.metrics.providers import (
    AlertMetricsProvider,
    AlertRecord,
    AlertSource,
    MetricsSnapshot,
    MetricsSnapshotProvider,
    StaticMetricsProvider,
)

__all__ = [
    "AlertMetricsProvider",
    "AlertRecord",
    "AlertSource",
    "HttpMetricsProvider",
    "MetricsSnapshot",
    "MetricsSnapshotProvider",
    "StaticMetricsProvider",
]

"""
ctxauth Metrics Package

Prometheus counters and histograms for decisions, cache, rate limiting and audit.
"""

from .collector import (
    MetricsCollector,
    MetricConfig,
    create_metrics_collector,
)


__all__ = [
    'MetricsCollector',
    'MetricConfig',
    'create_metrics_collector',
]

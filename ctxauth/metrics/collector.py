"""
Prometheus metrics integration for ctxauth.

Counters and histograms live on a private registry per collector so that
several engines (or test cases) never collide on metric names.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict

from prometheus_client import (
    Counter,
    Histogram,
    CollectorRegistry,
    generate_latest,
)


logger = logging.getLogger(__name__)


@dataclass
class MetricConfig:
    """Configuration for metrics collection."""

    enabled: bool = True
    namespace: str = "ctxauth"


class MetricsCollector:
    """Metrics collector for authorization, cache, rate-limit and audit activity."""

    def __init__(self, config: MetricConfig = None):
        """
        Initialize metrics collector.

        Args:
            config: Metrics configuration
        """
        self.config = config or MetricConfig()
        self.registry = CollectorRegistry()
        self._metrics_cache: Dict[str, float] = {}

        if not self.config.enabled:
            logger.info("Metrics collection disabled")
            return

        self._init_prometheus_metrics()

    def _init_prometheus_metrics(self):
        """Initialize all Prometheus metrics."""
        ns = self.config.namespace

        self.authz_decisions = Counter(
            f'{ns}_authorization_decisions_total',
            'Total number of authorization decisions',
            ['allowed', 'reason'],
            registry=self.registry
        )

        self.authz_latency = Histogram(
            f'{ns}_authorization_duration_seconds',
            'Authorization decision duration in seconds',
            buckets=[0.0001, 0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0],
            registry=self.registry
        )

        self.cache_operations = Counter(
            f'{ns}_decision_cache_operations_total',
            'Decision cache lookups by outcome',
            ['status'],
            registry=self.registry
        )

        self.rate_limit_rejections = Counter(
            f'{ns}_rate_limit_rejections_total',
            'Requests rejected by the per-principal rate limiter',
            ['category'],
            registry=self.registry
        )

        self.audit_writes = Counter(
            f'{ns}_audit_writes_total',
            'Audit ledger writes by outcome',
            ['status'],
            registry=self.registry
        )

        self.audit_escalations = Counter(
            f'{ns}_audit_escalations_total',
            'Audit failures escalated after retries were exhausted',
            registry=self.registry
        )

        self.mutations = Counter(
            f'{ns}_privileged_mutations_total',
            'Privileged state changes by operation and outcome',
            ['operation', 'status'],
            registry=self.registry
        )

    def _bump(self, key: str) -> None:
        self._metrics_cache[key] = self._metrics_cache.get(key, 0) + 1

    def record_decision(self, allowed: bool, reason: str) -> None:
        """Record an authorization decision."""
        if not self.config.enabled:
            return

        allowed_str = "true" if allowed else "false"
        self._bump(f"decisions_{allowed_str}_{reason}")
        self.authz_decisions.labels(allowed=allowed_str, reason=reason).inc()

    def observe_decision_latency(self, duration: float) -> None:
        if not self.config.enabled:
            return
        self.authz_latency.observe(duration)

    def record_cache_operation(self, status: str) -> None:
        """Record a cache lookup outcome (hit, miss or coalesced)."""
        if not self.config.enabled:
            return

        self._bump(f"cache_{status}")
        self.cache_operations.labels(status=status).inc()

    def record_rate_limited(self, category: str) -> None:
        if not self.config.enabled:
            return

        self._bump(f"rate_limited_{category}")
        self.rate_limit_rejections.labels(category=category).inc()
        logger.debug(f"Recorded rate-limit rejection: {category}")

    def record_audit_write(self, status: str) -> None:
        if not self.config.enabled:
            return

        self._bump(f"audit_{status}")
        self.audit_writes.labels(status=status).inc()

    def record_audit_escalation(self) -> None:
        if not self.config.enabled:
            return

        self._bump("audit_escalated")
        self.audit_escalations.inc()

    def record_mutation(self, operation: str, status: str) -> None:
        """Record a privileged mutation outcome."""
        if not self.config.enabled:
            return

        self._bump(f"mutation_{operation}_{status}")
        self.mutations.labels(operation=operation, status=status).inc()

    def count(self, key: str) -> float:
        """Return a locally cached counter value, 0 when never recorded."""
        return self._metrics_cache.get(key, 0)

    @contextmanager
    def decision_timer(self):
        """Context manager for timing authorization decisions."""
        start_time = time.perf_counter()
        try:
            yield
        finally:
            self.observe_decision_latency(time.perf_counter() - start_time)

    def export_prometheus_metrics(self) -> str:
        """Export metrics in Prometheus text format."""
        return generate_latest(self.registry).decode('utf-8')


def create_metrics_collector(enabled: bool = True, namespace: str = "ctxauth") -> MetricsCollector:
    """
    Create a new metrics collector.

    Args:
        enabled: Enable metrics collection
        namespace: Prefix for every metric name

    Returns:
        MetricsCollector instance
    """
    return MetricsCollector(MetricConfig(enabled=enabled, namespace=namespace))

"""Prometheus metrics for quota checks."""

import logging
import sys
from typing import Dict, Iterable, Optional, Tuple

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    start_http_server,
)

from ..config import get_config
from ..models import QuotaUsage, QuotaWarning

logger = logging.getLogger(__name__)


class QuotaMetrics:
    """Centralized metrics collection for the quota monitor."""

    def __init__(self, registry: Optional[CollectorRegistry] = None,
                 app_version: str = "0.1.0", environment: str = "production"):
        self.registry = registry or CollectorRegistry()
        # Source label last exported per (service_code, quota_code, quota_name)
        self._usage_sources: Dict[Tuple[str, str, str], str] = {}

        self._init_quota_metrics()
        self._init_check_metrics()

        self.monitor_info.info({
            'version': app_version,
            'environment': environment,
            'python_version': f"{sys.version_info.major}.{sys.version_info.minor}",
        })

        logger.info("Prometheus metrics initialized")

    def _init_quota_metrics(self):
        """Initialize per-quota gauges."""
        labels = ['service_code', 'quota_code', 'quota_name']

        self.quota_usage = Gauge(
            'aws_quota_usage',
            'Current usage of a service quota',
            labels + ['source'],
            registry=self.registry
        )

        self.quota_limit = Gauge(
            'aws_quota_limit',
            'Applied value of a service quota',
            labels,
            registry=self.registry
        )

        self.quota_utilization = Gauge(
            'aws_quota_utilization_percent',
            'Usage as a percentage of the applied quota value',
            labels,
            registry=self.registry
        )

    def _init_check_metrics(self):
        """Initialize check and refresh metrics."""
        self.warnings_total = Counter(
            'aws_quota_warnings_total',
            'Number of quota warnings raised',
            ['alarm_name'],
            registry=self.registry
        )

        self.refresh_failures_total = Counter(
            'aws_quota_refresh_failures_total',
            'Number of failed refreshes',
            ['source'],
            registry=self.registry
        )

        self.refresh_duration = Histogram(
            'aws_quota_refresh_duration_seconds',
            'Duration of a refresh',
            ['kind'],  # catalog, usage
            buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
            registry=self.registry
        )

        self.monitor_info = Info(
            'aws_quota_monitor',
            'Quota monitor information',
            registry=self.registry
        )

    # Convenience methods for recording metrics

    def record_usage(self, rows: Iterable[QuotaUsage]):
        """Set usage, limit and utilization gauges from reporting rows."""
        for row in rows:
            labels = {
                'service_code': row.service_code,
                'quota_code': row.quota_code,
                'quota_name': row.quota_name,
            }
            key = (row.service_code, row.quota_code, row.quota_name)
            previous = self._usage_sources.get(key)
            if previous is not None and previous != row.source.value:
                self.quota_usage.remove(*key, previous)
            self._usage_sources[key] = row.source.value
            self.quota_usage.labels(source=row.source.value, **labels).set(row.usage)
            self.quota_limit.labels(**labels).set(row.limit)

            utilization = row.utilization_percent
            if utilization is not None:
                self.quota_utilization.labels(**labels).set(utilization)

    def record_warnings(self, warnings: Iterable[QuotaWarning]):
        for warning in warnings:
            self.warnings_total.labels(alarm_name=warning.matched_alarm_name).inc()

    def record_refresh(self, kind: str, duration: float):
        self.refresh_duration.labels(kind=kind).observe(duration)

    def record_failure(self, source: str):
        """Record a refresh that failed because of ``source``."""
        self.refresh_failures_total.labels(source=source).inc()

    def get_metrics(self) -> str:
        """Get metrics in Prometheus format."""
        return generate_latest(self.registry).decode('utf-8')


# Global metrics instance
_metrics: Optional[QuotaMetrics] = None


def get_metrics() -> QuotaMetrics:
    """Get the global metrics instance."""
    global _metrics
    if _metrics is None:
        config = get_config()
        _metrics = QuotaMetrics(app_version=config.app_version, environment=config.environment)
    return _metrics


def create_metrics_server(port: int = 9090):
    """Expose the global registry over HTTP."""
    metrics = get_metrics()
    start_http_server(port, registry=metrics.registry)
    logger.info(f"Metrics server started on port {port}")
    return metrics

"""Quota inventory, usage collection, reconciliation and alarm evaluation."""

from .allow_filter import AllowFilter
from .collector import CollectedUsage, UsageCollector
from .errors import (
    CatalogUnavailableError,
    CollectionFailedError,
    QuotaMonitorError,
    ServiceNotFoundError,
    UnknownQuotaError,
    UnknownServiceError,
)
from .evaluator import AlarmMatch, AlarmRegistry, evaluate, usage_percent
from .monitor import CatalogSnapshot, QuotaMonitor, UsageSnapshot
from .protocols import MetricUsageSource, QuotaCatalog, UsageSource
from .reconcile import reconcile_usage

__all__ = [
    'QuotaMonitor', 'CatalogSnapshot', 'UsageSnapshot',
    'UsageCollector', 'CollectedUsage', 'reconcile_usage',
    'AlarmRegistry', 'AlarmMatch', 'evaluate', 'usage_percent',
    'AllowFilter', 'QuotaCatalog', 'UsageSource', 'MetricUsageSource',
    'QuotaMonitorError', 'UnknownServiceError', 'UnknownQuotaError',
    'CatalogUnavailableError', 'CollectionFailedError', 'ServiceNotFoundError',
]

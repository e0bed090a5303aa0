"""Monitoring and observability components for the quota monitor."""

from .alerts import LogNotifier, WarningDispatcher, WarningNotifier, WebhookNotifier, create_dispatcher
from .metrics import QuotaMetrics, create_metrics_server, get_metrics
from .structured_logging import (
    LoggingContext,
    get_structured_logger,
    setup_structured_logging,
    with_correlation_id,
)

__all__ = [
    'get_metrics', 'create_metrics_server', 'QuotaMetrics',
    'get_structured_logger', 'setup_structured_logging', 'LoggingContext', 'with_correlation_id',
    'WarningNotifier', 'LogNotifier', 'WebhookNotifier', 'WarningDispatcher', 'create_dispatcher',
]

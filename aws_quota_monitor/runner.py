"""Wiring of the AWS collaborators and the periodic quota check loop."""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import structlog

from .aws.catalog import ServiceQuotasCatalog
from .aws.clients import ClientFactory
from .aws.cloudwatch import CloudWatchMetricSource
from .aws.resources import build_usage_sources
from .config import MonitorConfig, alarm_items
from .core.errors import CatalogUnavailableError, CollectionFailedError, QuotaMonitorError
from .core.monitor import QuotaMonitor
from .models import QuotaUsage, QuotaWarning
from .monitoring.alerts import WarningDispatcher, create_dispatcher
from .monitoring.metrics import QuotaMetrics
from .monitoring.structured_logging import LoggingContext

logger = logging.getLogger(__name__)


@dataclass
class CheckResult:
    """Outcome of one quota check."""

    check_id: str
    rows: List[QuotaUsage] = field(default_factory=list)
    warnings: List[QuotaWarning] = field(default_factory=list)
    notifications: Dict[str, bool] = field(default_factory=dict)
    duration_seconds: float = 0.0


def build_monitor(config: MonitorConfig, clients: Optional[ClientFactory] = None) -> QuotaMonitor:
    """Create a monitor backed by AWS and register the configured alarms."""
    clients = clients or ClientFactory(config.aws)
    allow_filter = config.filter.build_filter()
    collection = config.collection

    monitor = QuotaMonitor(
        catalog=ServiceQuotasCatalog(clients, retry_attempts=collection.retry_attempts),
        usage_sources=build_usage_sources(clients, allow_filter, retry_attempts=collection.retry_attempts),
        metric_source=CloudWatchMetricSource(
            clients,
            period=collection.metric_period,
            window_minutes=collection.metric_window_minutes,
            retry_attempts=collection.retry_attempts,
        ),
        allow_filter=allow_filter,
        max_workers=collection.max_workers,
    )

    for name, threshold in alarm_items(config):
        monitor.register_alarm(name, threshold)

    logger.info(f"Quota monitor built for region {clients.region} with {len(monitor.alarms)} alarms")
    return monitor


def build_dispatcher(config: MonitorConfig) -> WarningDispatcher:
    return create_dispatcher(
        webhook_url=config.monitoring.alert_webhook_url,
        webhook_timeout=config.monitoring.alert_webhook_timeout,
    )


def _failure_source(error: QuotaMonitorError) -> str:
    if isinstance(error, CollectionFailedError):
        return error.source
    if isinstance(error, CatalogUnavailableError):
        return error.collaborator
    return type(error).__name__


class QuotaCheckRunner:
    """Runs refresh, evaluation, metrics and notification as one check.

    This is where collaborator failures are logged; the monitor itself only
    raises them.
    """

    def __init__(self, monitor: QuotaMonitor,
                 dispatcher: Optional[WarningDispatcher] = None,
                 metrics: Optional[QuotaMetrics] = None,
                 region: str = ""):
        self.monitor = monitor
        self.dispatcher = dispatcher or WarningDispatcher()
        self.metrics = metrics
        self.region = region
        self.logger = structlog.get_logger("quota_check")

    async def run_once(self, refresh_catalog: bool = False) -> CheckResult:
        """Refresh usage and report warnings.

        The catalog is loaded on the first check, or when ``refresh_catalog``
        is set.

        Raises:
            QuotaMonitorError: After logging and counting the failure
        """
        check_id = str(uuid.uuid4())
        with LoggingContext(check_id=check_id, region=self.region):
            started = time.monotonic()
            try:
                if refresh_catalog or self.monitor.catalog_loaded_at is None:
                    await self._timed("catalog", self.monitor.refresh_catalog())
                await self._timed("usage", self.monitor.refresh_usage())
            except QuotaMonitorError as e:
                source = _failure_source(e)
                self.logger.error("Quota check failed", source=source, error=str(e))
                if self.metrics is not None:
                    self.metrics.record_failure(source)
                raise

            rows = self.monitor.quota_usage()
            warnings = self.monitor.evaluate_all()

            if self.metrics is not None:
                self.metrics.record_usage(rows)
                self.metrics.record_warnings(warnings)

            notifications = await self.dispatcher.dispatch(warnings)
            duration = time.monotonic() - started

            self.logger.info(
                "Quota check completed",
                quotas=len(rows),
                warnings=len(warnings),
                duration_ms=round(duration * 1000, 2),
            )
            return CheckResult(
                check_id=check_id,
                rows=rows,
                warnings=warnings,
                notifications=notifications,
                duration_seconds=duration,
            )

    async def _timed(self, kind: str, refresh):
        started = time.monotonic()
        result = await refresh
        if self.metrics is not None:
            self.metrics.record_refresh(kind, time.monotonic() - started)
        return result

    async def watch(self, interval_seconds: float, iterations: Optional[int] = None,
                    catalog_every: int = 12) -> List[CheckResult]:
        """Run checks every ``interval_seconds``.

        A failed check is logged and the loop continues. The catalog is
        re-read every ``catalog_every`` checks. Runs forever unless
        ``iterations`` is given; returns the successful results.
        """
        results: List[CheckResult] = []
        count = 0
        while iterations is None or count < iterations:
            refresh_catalog = count > 0 and catalog_every > 0 and count % catalog_every == 0
            count += 1
            try:
                result = await self.run_once(refresh_catalog=refresh_catalog)
            except QuotaMonitorError:
                # Already logged by run_once
                result = None
            if result is not None and iterations is not None:
                results.append(result)

            if iterations is not None and count >= iterations:
                break
            await asyncio.sleep(interval_seconds)
        return results

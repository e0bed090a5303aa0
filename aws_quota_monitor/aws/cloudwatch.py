"""Metric usage source backed by CloudWatch statistics."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from ..models import MetricDescriptor
from ..utils.backoff import retry_on_throttling
from .clients import ClientFactory

logger = logging.getLogger(__name__)

IAM_ACTIONS = ("cloudwatch:GetMetricStatistics",)


class CloudWatchMetricSource:
    """Reads one sample of a quota's usage metric.

    The lookback window is ``window_minutes`` and datapoints are aggregated
    over ``period`` seconds using the quota's recommended statistic. The
    newest datapoint is used; no datapoints means zero usage.
    """

    def __init__(self, clients: ClientFactory, period: int = 300, window_minutes: int = 5,
                 retry_attempts: int = 5, now: Optional[Callable[[], datetime]] = None):
        self.clients = clients
        self.period = period
        self.window_minutes = window_minutes
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._get_statistics = retry_on_throttling(max_attempts=retry_attempts)(self._get_statistics)

    def _get_statistics(self, **params):
        return self.clients.client("cloudwatch").get_metric_statistics(**params)

    def get_usage(self, metric: MetricDescriptor) -> int:
        end_time = self._now()
        start_time = end_time - timedelta(minutes=self.window_minutes)

        response = self._get_statistics(
            Namespace=metric.namespace,
            MetricName=metric.metric_name,
            Dimensions=[{"Name": name, "Value": value} for name, value in metric.dimensions],
            Statistics=[metric.statistic],
            StartTime=start_time,
            EndTime=end_time,
            Period=self.period,
        )

        datapoints = response.get("Datapoints") or []
        if not datapoints:
            return 0

        latest = max(datapoints, key=lambda d: d.get("Timestamp") or start_time)
        value = latest.get(metric.statistic)
        if value is None:
            logger.debug(f"Datapoint for {metric.metric_name} has no {metric.statistic} value")
            return 0
        return int(value)

"""Usage collection from metric and API sources.

Every collaborator call is independent, so calls run concurrently up to a
worker bound. Collection is all-or-nothing: the first failing call cancels
the rest and no partial usage map is returned.
"""

import asyncio
import math
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import structlog

from ..models import QuotaDescriptor
from .allow_filter import AllowFilter
from .errors import CollectionFailedError
from .protocols import MetricUsageSource, UsageSource


@dataclass(frozen=True)
class CollectedUsage:
    """Result of one complete collection pass."""

    metric_usage: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    api_usage: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    duration_seconds: float = 0.0


async def call_collaborator(func: Callable[..., Any], *args) -> Any:
    """Await a coroutine collaborator or run a blocking one in a worker thread."""
    if asyncio.iscoroutinefunction(func):
        return await func(*args)
    result = await asyncio.to_thread(func, *args)
    if asyncio.iscoroutine(result):
        return await result
    return result


async def gather_fail_fast(calls: Iterable[Awaitable[Any]]) -> List[Any]:
    """Run awaitables concurrently; on the first error cancel the others and re-raise."""
    tasks = [asyncio.ensure_future(call) for call in calls]
    if not tasks:
        return []
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


def metric_source_name(descriptor: QuotaDescriptor) -> str:
    return f"cloudwatch:{descriptor.service_code}/{descriptor.quota_code}"


class UsageCollector:
    """Builds the metric-usage and api-usage maps for a set of quotas."""

    def __init__(self, max_workers: int = 8):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers
        self.logger = structlog.get_logger("usage_collector")

    async def collect(self,
                      descriptors: Iterable[QuotaDescriptor],
                      usage_sources: Mapping[str, UsageSource],
                      metric_source: Optional[MetricUsageSource],
                      allow_filter: Optional[AllowFilter] = None) -> CollectedUsage:
        """Collect usage for every allowed quota.

        Args:
            descriptors: Quota descriptors of all enabled services
            usage_sources: Usage source per service code
            metric_source: Source for quotas that declare a usage metric, or None
            allow_filter: Services and quotas taking part; None allows all

        Returns:
            CollectedUsage with read-only metric and API maps keyed by quota code

        Raises:
            CollectionFailedError: If any source fails; carries the source name
        """
        allow_filter = allow_filter or AllowFilter.allow_all()
        semaphore = asyncio.Semaphore(self.max_workers)
        started = time.monotonic()

        metric_targets = []
        if metric_source is not None:
            metric_targets = sorted(
                (d for d in descriptors
                 if d.has_usage_metric and allow_filter.allows_quota(d.service_code, d.quota_code)),
                key=lambda d: d.key,
            )

        api_targets = sorted(
            (code, source) for code, source in usage_sources.items()
            if allow_filter.allows_service(code)
        )

        metric_calls = [
            self._bounded(semaphore, metric_source_name(d), metric_source.get_usage, d.metric)
            for d in metric_targets
        ]
        api_calls = [
            self._bounded(semaphore, code, source.get_usage, allow_filter.allowed_quotas(code))
            for code, source in api_targets
        ]

        results = await gather_fail_fast(metric_calls + api_calls)
        metric_results = results[:len(metric_calls)]
        api_results = results[len(metric_calls):]

        metric_usage = self._merge_metric_usage(metric_targets, metric_results)
        api_usage = self._merge_api_usage(api_targets, api_results, allow_filter)

        duration = time.monotonic() - started
        self.logger.debug(
            "Usage collected",
            metric_quotas=len(metric_usage),
            api_quotas=len(api_usage),
            duration_ms=round(duration * 1000, 2),
        )

        return CollectedUsage(
            metric_usage=MappingProxyType(metric_usage),
            api_usage=MappingProxyType(api_usage),
            duration_seconds=duration,
        )

    async def _bounded(self, semaphore: asyncio.Semaphore, source_name: str,
                       func: Callable[..., Any], *args) -> Any:
        async with semaphore:
            try:
                return await call_collaborator(func, *args)
            except CollectionFailedError:
                raise
            except Exception as e:
                raise CollectionFailedError(source_name, detail=str(e)) from e

    def _merge_metric_usage(self, targets: List[QuotaDescriptor], results: List[Any]) -> Dict[str, int]:
        usage: Dict[str, int] = {}
        for descriptor, value in zip(targets, results):
            source_name = metric_source_name(descriptor)
            if descriptor.quota_code in usage:
                self._report_collision(descriptor.quota_code, source_name, "metric")
            usage[descriptor.quota_code] = self._to_int(source_name, value)
        return usage

    def _merge_api_usage(self, targets: List[Tuple[str, UsageSource]], results: List[Any],
                         allow_filter: AllowFilter) -> Dict[str, int]:
        usage: Dict[str, int] = {}
        for (service_code, _), service_usage in zip(targets, results):
            for quota_code, value in sorted((service_usage or {}).items()):
                if not allow_filter.allows_quota(service_code, quota_code):
                    continue
                if quota_code in usage:
                    self._report_collision(quota_code, service_code, "api")
                usage[quota_code] = self._to_int(service_code, value)
        return usage

    def _report_collision(self, quota_code: str, source_name: str, kind: str):
        self.logger.warning(
            "Quota code reported by more than one source, keeping the last value",
            quota_code=quota_code,
            source=source_name,
            usage_kind=kind,
        )

    @staticmethod
    def _to_int(source_name: str, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise CollectionFailedError(source_name, detail=f"non-numeric usage value {value!r}")
        if isinstance(value, float) and not math.isfinite(value):
            raise CollectionFailedError(source_name, detail=f"non-finite usage value {value!r}")
        return int(value)

"""Quota monitor: composes catalog, collector and evaluator.

State lives in two immutable snapshots (catalog and usage) that a refresh
replaces as a whole, so readers see either the old or the new state and a
failed refresh leaves the previous snapshot in place.
"""

import asyncio
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple

import structlog

from ..models import (
    AlarmDefinition,
    QuotaDescriptor,
    QuotaUsage,
    QuotaWarning,
    ServiceDescriptor,
    UsageRecord,
)
from .allow_filter import AllowFilter
from .collector import UsageCollector, call_collaborator, gather_fail_fast
from .errors import (
    CatalogUnavailableError,
    ServiceNotFoundError,
    UnknownQuotaError,
    UnknownServiceError,
)
from .evaluator import AlarmRegistry, evaluate
from .protocols import MetricUsageSource, QuotaCatalog, UsageSource
from .reconcile import reconcile_usage


def _empty_mapping() -> Mapping:
    return MappingProxyType({})


@dataclass(frozen=True)
class CatalogSnapshot:
    """Services and their quotas as of one catalog refresh."""

    services: Mapping[str, ServiceDescriptor] = field(default_factory=_empty_mapping)
    quotas: Mapping[str, Mapping[str, QuotaDescriptor]] = field(default_factory=_empty_mapping)
    loaded_at: Optional[float] = None

    def descriptors(self) -> List[QuotaDescriptor]:
        return [
            quota
            for service_code in sorted(self.quotas)
            for _, quota in sorted(self.quotas[service_code].items())
        ]

    def quota_index(self) -> Dict[str, QuotaDescriptor]:
        """Quota code to descriptor; codes are unique per service, first service wins."""
        index: Dict[str, QuotaDescriptor] = {}
        for quota in self.descriptors():
            index.setdefault(quota.quota_code, quota)
        return index


@dataclass(frozen=True)
class UsageSnapshot:
    """The two raw usage maps of one successful collection."""

    metric_usage: Mapping[str, int] = field(default_factory=_empty_mapping)
    api_usage: Mapping[str, int] = field(default_factory=_empty_mapping)
    collected_at: Optional[float] = None

    def reporting_usage(self) -> Dict[str, UsageRecord]:
        return reconcile_usage(self.metric_usage, self.api_usage)


class QuotaMonitor:
    """Inventory of quotas, their usage, and threshold warnings."""

    def __init__(self,
                 catalog: QuotaCatalog,
                 usage_sources: Optional[Mapping[str, UsageSource]] = None,
                 metric_source: Optional[MetricUsageSource] = None,
                 allow_filter: Optional[AllowFilter] = None,
                 max_workers: int = 8):
        self.catalog = catalog
        self.usage_sources = MappingProxyType(dict(usage_sources or {}))
        self.metric_source = metric_source
        self.allow_filter = allow_filter or AllowFilter.allow_all()
        self.max_workers = max_workers

        self._collector = UsageCollector(max_workers=max_workers)
        self._alarms = AlarmRegistry()
        self._catalog = CatalogSnapshot()
        self._usage = UsageSnapshot()
        self._refresh_lock = asyncio.Lock()

        self.logger = structlog.get_logger("quota_monitor")

    async def initialize(self) -> None:
        """Load the catalog and collect usage once."""
        await self.refresh_catalog()
        await self.refresh_usage()

    # ========== Catalog ==========

    async def refresh_catalog(self) -> CatalogSnapshot:
        """Re-read services and quotas from the catalog.

        Raises:
            CatalogUnavailableError: If the catalog fails; the previous snapshot is kept
        """
        async with self._refresh_lock:
            collaborator = type(self.catalog).__name__
            try:
                services = await call_collaborator(self.catalog.list_services, self.allow_filter)
            except Exception as e:
                raise CatalogUnavailableError("list_services", collaborator, str(e)) from e

            services = [s for s in services if self.allow_filter.allows_service(s.code)]
            semaphore = asyncio.Semaphore(self.max_workers)

            async def load_quotas(service: ServiceDescriptor) -> Tuple[ServiceDescriptor, Optional[list]]:
                async with semaphore:
                    try:
                        quotas = await call_collaborator(
                            self.catalog.list_quotas,
                            service.code,
                            self.allow_filter.allowed_quotas(service.code),
                        )
                    except ServiceNotFoundError:
                        self.logger.debug("Service disappeared from catalog", service_code=service.code)
                        return service, None
                    except Exception as e:
                        raise CatalogUnavailableError(
                            f"list_quotas({service.code})", collaborator, str(e)
                        ) from e
                    return service, list(quotas)

            loaded = await gather_fail_fast(load_quotas(s) for s in services)

            service_map: Dict[str, ServiceDescriptor] = {}
            quota_map: Dict[str, Mapping[str, QuotaDescriptor]] = {}
            for service, quotas in loaded:
                if quotas is None:
                    continue
                service_map[service.code] = service
                quota_map[service.code] = MappingProxyType({
                    q.quota_code: q for q in quotas
                    if self.allow_filter.allows_quota(service.code, q.quota_code)
                })

            snapshot = CatalogSnapshot(
                services=MappingProxyType(service_map),
                quotas=MappingProxyType(quota_map),
                loaded_at=time.time(),
            )
            self._catalog = snapshot

            self.logger.info(
                "Quota catalog refreshed",
                services=len(service_map),
                quotas=sum(len(q) for q in quota_map.values()),
            )
            return snapshot

    @property
    def catalog_loaded_at(self) -> Optional[float]:
        return self._catalog.loaded_at

    @property
    def usage_collected_at(self) -> Optional[float]:
        return self._usage.collected_at

    def list_services(self) -> FrozenSet[ServiceDescriptor]:
        return frozenset(self._catalog.services.values())

    def get_service(self, service_code: str) -> ServiceDescriptor:
        try:
            return self._catalog.services[service_code]
        except KeyError:
            raise UnknownServiceError(service_code) from None

    def list_quotas(self, service_code: str) -> FrozenSet[QuotaDescriptor]:
        catalog = self._catalog
        if service_code not in catalog.quotas:
            raise UnknownServiceError(service_code)
        return frozenset(catalog.quotas[service_code].values())

    def get_quota(self, service_code: str, quota_code: str) -> QuotaDescriptor:
        catalog = self._catalog
        if service_code not in catalog.quotas:
            raise UnknownServiceError(service_code)
        try:
            return catalog.quotas[service_code][quota_code]
        except KeyError:
            raise UnknownQuotaError(service_code, quota_code) from None

    # ========== Usage ==========

    async def refresh_usage(self) -> UsageSnapshot:
        """Re-run collection for every quota in the current catalog snapshot.

        Raises:
            CollectionFailedError: Naming the failing source; previous usage is kept
        """
        async with self._refresh_lock:
            collected = await self._collector.collect(
                self._catalog.descriptors(),
                self.usage_sources,
                self.metric_source,
                self.allow_filter,
            )
            snapshot = UsageSnapshot(
                metric_usage=collected.metric_usage,
                api_usage=collected.api_usage,
                collected_at=time.time(),
            )
            self._usage = snapshot
            return snapshot

    def metric_usage(self) -> Mapping[str, int]:
        return self._usage.metric_usage

    def api_usage(self) -> Mapping[str, int]:
        return self._usage.api_usage

    def reporting_usage(self) -> Dict[str, UsageRecord]:
        """Reconciled usage, derived from the current raw maps on every call."""
        return self._usage.reporting_usage()

    def quota_usage(self) -> List[QuotaUsage]:
        """Reporting rows for every reconciled quota present in the catalog."""
        catalog, usage = self._catalog, self._usage
        index = catalog.quota_index()
        rows = []
        for quota_code, record in usage.reporting_usage().items():
            quota = index.get(quota_code)
            if quota is None:
                continue
            rows.append(QuotaUsage(
                service_code=quota.service_code,
                service_name=catalog.services[quota.service_code].name,
                quota_code=quota_code,
                quota_name=quota.quota_name,
                usage=record.value,
                limit=quota.applied_value,
                source=record.source,
            ))
        rows.sort(key=lambda r: (r.service_code, r.quota_code))
        return rows

    # ========== Alarms ==========

    def register_alarm(self, name: str, threshold_percent: int) -> AlarmDefinition:
        """Add an alarm, or replace the threshold of an existing one."""
        return self._alarms.register(name, threshold_percent)

    def unregister_alarm(self, name: str) -> bool:
        return self._alarms.unregister(name)

    @property
    def alarms(self) -> Tuple[AlarmDefinition, ...]:
        return self._alarms.alarms()

    def evaluate_all(self) -> List[QuotaWarning]:
        """Evaluate every evaluable quota against the registered alarms.

        At most one warning per quota, ordered by service and quota code.
        """
        alarms = self._alarms.alarms()
        if not alarms:
            return []

        warnings = []
        for row in self.quota_usage():
            match = evaluate(row.usage, row.limit, alarms)
            if match is None:
                continue
            warnings.append(QuotaWarning(
                service_code=row.service_code,
                service_name=row.service_name,
                quota_code=row.quota_code,
                quota_name=row.quota_name,
                usage=row.usage,
                limit=int(row.limit),
                matched_alarm_name=match.name,
                matched_threshold=match.threshold,
            ))
        return warnings

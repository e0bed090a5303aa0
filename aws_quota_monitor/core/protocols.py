"""Contracts of the external collaborators the monitor is composed from.

Methods may be implemented as plain functions, which the collector runs in a
worker thread, or as coroutines, which it awaits directly.
"""

from typing import FrozenSet, Mapping, Optional, Protocol, Sequence, runtime_checkable

from ..models import MetricDescriptor, QuotaDescriptor, ServiceDescriptor
from .allow_filter import AllowFilter


@runtime_checkable
class QuotaCatalog(Protocol):
    """Supplies services and their quota descriptors."""

    def list_services(self, allow_filter: AllowFilter) -> Sequence[ServiceDescriptor]:
        ...

    def list_quotas(self, service_code: str,
                    allowed_quota_codes: Optional[FrozenSet[str]] = None) -> Sequence[QuotaDescriptor]:
        """Raise ``ServiceNotFoundError`` for an unknown service."""
        ...


@runtime_checkable
class UsageSource(Protocol):
    """Enumerates live resources of one service.

    Returns counts only for quota codes it recognizes; unknown allowed codes
    are ignored.
    """

    service_code: str

    def get_usage(self, allowed_quota_codes: Optional[FrozenSet[str]] = None) -> Mapping[str, int]:
        ...


@runtime_checkable
class MetricUsageSource(Protocol):
    """Returns a single integer sample for a quota's usage metric."""

    def get_usage(self, metric: MetricDescriptor) -> int:
        ...

"""Data shapes shared by the catalog, collector, evaluator and monitor."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple


class UsageProvenance(Enum):
    """Where a reported usage value came from."""
    METRIC = "metric"
    API = "api"


@dataclass(frozen=True)
class ServiceDescriptor:
    """A cloud service participating in quota tracking."""

    code: str
    name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"service_code": self.code, "service_name": self.name}


@dataclass(frozen=True)
class MetricDescriptor:
    """Reference to the time-series metric that reports a quota's usage.

    The core never inspects it; it is handed from the catalog to the
    metric usage source as-is.
    """

    namespace: str
    metric_name: str
    dimensions: Tuple[Tuple[str, str], ...] = ()
    statistic: str = "Maximum"

    @classmethod
    def from_mapping(cls, namespace: str, metric_name: str,
                     dimensions: Optional[Mapping[str, str]], statistic: str) -> "MetricDescriptor":
        items = tuple(sorted((dimensions or {}).items()))
        return cls(namespace=namespace, metric_name=metric_name, dimensions=items, statistic=statistic)

    def dimension_map(self) -> Dict[str, str]:
        return dict(self.dimensions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "namespace": self.namespace,
            "metric_name": self.metric_name,
            "dimensions": self.dimension_map(),
            "statistic": self.statistic,
        }


@dataclass(frozen=True)
class QuotaDescriptor:
    """A quota as reported by the catalog.

    ``applied_value`` already has any account-level override resolved and is
    the only limit usage is compared against.
    """

    service_code: str
    service_name: str
    quota_code: str
    quota_name: str
    adjustable: bool
    is_global: bool
    default_value: float
    applied_value: float
    metric: Optional[MetricDescriptor] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.service_code, self.quota_code)

    @property
    def has_usage_metric(self) -> bool:
        return self.metric is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_code": self.service_code,
            "service_name": self.service_name,
            "quota_code": self.quota_code,
            "quota_name": self.quota_name,
            "adjustable": self.adjustable,
            "global": self.is_global,
            "default_value": self.default_value,
            "applied_value": self.applied_value,
            "usage_metric": self.metric.to_dict() if self.metric else None,
        }


@dataclass(frozen=True)
class UsageRecord:
    """One quota's reconciled usage for a single collection cycle."""

    quota_code: str
    value: int
    source: UsageProvenance


@dataclass(frozen=True)
class AlarmDefinition:
    """A named percentage threshold."""

    name: str
    threshold_percent: int

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "threshold_percent": self.threshold_percent}


@dataclass(frozen=True)
class QuotaUsage:
    """Reporting row joining a quota's descriptor with its reconciled usage."""

    service_code: str
    service_name: str
    quota_code: str
    quota_name: str
    usage: int
    limit: float
    source: UsageProvenance

    @property
    def utilization_percent(self) -> Optional[float]:
        if not self.limit or self.limit <= 0:
            return None
        return self.usage * 100.0 / self.limit

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_code": self.service_code,
            "service_name": self.service_name,
            "quota_code": self.quota_code,
            "quota_name": self.quota_name,
            "usage": self.usage,
            "limit": self.limit,
            "source": self.source.value,
            "utilization_percent": self.utilization_percent,
        }


@dataclass(frozen=True)
class QuotaWarning:
    """A quota whose usage crossed its most severe matching alarm."""

    service_code: str
    service_name: str
    quota_code: str
    quota_name: str
    usage: int
    limit: int
    matched_alarm_name: str
    matched_threshold: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_code": self.service_code,
            "service_name": self.service_name,
            "quota_code": self.quota_code,
            "quota_name": self.quota_name,
            "usage": self.usage,
            "limit": self.limit,
            "alarm": self.matched_alarm_name,
            "threshold": self.matched_threshold,
        }

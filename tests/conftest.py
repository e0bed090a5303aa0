"""Shared fakes for quota monitor tests."""

from typing import Dict, FrozenSet, Iterable, List, Optional

import pytest

from aws_quota_monitor.core.errors import ServiceNotFoundError
from aws_quota_monitor.models import MetricDescriptor, QuotaDescriptor, ServiceDescriptor
from aws_quota_monitor.monitoring.structured_logging import get_structured_logger


def make_quota(service_code: str, quota_code: str, applied_value: float = 100.0,
               metric_name: Optional[str] = None, quota_name: Optional[str] = None) -> QuotaDescriptor:
    metric = None
    if metric_name:
        metric = MetricDescriptor(
            namespace="AWS/Usage",
            metric_name=metric_name,
            dimensions=(("Resource", quota_code), ("Service", service_code)),
        )
    return QuotaDescriptor(
        service_code=service_code,
        service_name=service_code.upper(),
        quota_code=quota_code,
        quota_name=quota_name or f"{service_code} quota {quota_code}",
        adjustable=True,
        is_global=False,
        default_value=applied_value,
        applied_value=applied_value,
        metric=metric,
    )


class FakeCatalog:
    """In-memory catalog; set ``error`` to make the next calls fail."""

    def __init__(self, quotas: Iterable[QuotaDescriptor] = (), missing: Iterable[str] = ()):
        self.quotas: Dict[str, List[QuotaDescriptor]] = {}
        for quota in quotas:
            self.quotas.setdefault(quota.service_code, []).append(quota)
        self.missing = set(missing)
        self.error: Optional[Exception] = None
        self.list_quotas_calls: List[str] = []

    def list_services(self, allow_filter):
        if self.error:
            raise self.error
        codes = sorted(set(self.quotas) | self.missing)
        return [ServiceDescriptor(code=c, name=c.upper()) for c in codes if allow_filter.allows_service(c)]

    def list_quotas(self, service_code: str, allowed_quota_codes: Optional[FrozenSet[str]] = None):
        self.list_quotas_calls.append(service_code)
        if self.error:
            raise self.error
        if service_code in self.missing:
            raise ServiceNotFoundError(service_code)
        return [
            q for q in self.quotas.get(service_code, [])
            if allowed_quota_codes is None or q.quota_code in allowed_quota_codes
        ]


class FakeUsageSource:
    """Returns fixed counts filtered to the allowed quota codes."""

    def __init__(self, service_code: str, usage: Dict[str, int]):
        self.service_code = service_code
        self.usage = dict(usage)
        self.error: Optional[Exception] = None
        self.calls: List[Optional[FrozenSet[str]]] = []

    def get_usage(self, allowed_quota_codes: Optional[FrozenSet[str]] = None) -> Dict[str, int]:
        self.calls.append(allowed_quota_codes)
        if self.error:
            raise self.error
        return {
            code: value for code, value in self.usage.items()
            if allowed_quota_codes is None or code in allowed_quota_codes
        }


class FakeMetricSource:
    """Returns a value per metric name; names in ``failing`` raise."""

    def __init__(self, values: Dict[str, int], failing: Iterable[str] = ()):
        self.values = dict(values)
        self.failing = set(failing)
        self.calls: List[MetricDescriptor] = []

    def get_usage(self, metric: MetricDescriptor) -> int:
        self.calls.append(metric)
        if metric.metric_name in self.failing:
            raise RuntimeError(f"metric {metric.metric_name} unavailable")
        return self.values.get(metric.metric_name, 0)


@pytest.fixture
def ec2_quotas():
    return [
        make_quota("ec2", "L-0263D0A3", 5, quota_name="EC2-VPC Elastic IPs"),
        make_quota("ec2", "L-7029FAB6", 5, quota_name="Virtual private gateways"),
        make_quota("ec2", "L-1216C47A", 64, metric_name="ResourceCount", quota_name="Running On-Demand instances"),
    ]


@pytest.fixture
def s3_quotas():
    return [
        make_quota("s3", "L-DC2B2D3D", 100, quota_name="Buckets"),
    ]


@pytest.fixture(scope="session", autouse=True)
def structured_logging():
    """Configure structlog once, against the session's stderr."""
    return get_structured_logger()

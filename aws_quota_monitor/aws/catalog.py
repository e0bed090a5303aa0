"""Quota catalog backed by the AWS Service Quotas API."""

import logging
from typing import Any, Dict, FrozenSet, List, Optional

from botocore.exceptions import ClientError

from ..core.allow_filter import AllowFilter
from ..core.errors import ServiceNotFoundError
from ..models import MetricDescriptor, QuotaDescriptor, ServiceDescriptor
from ..utils.backoff import retry_on_throttling
from .clients import ClientFactory

logger = logging.getLogger(__name__)

IAM_ACTIONS = (
    "servicequotas:ListAWSDefaultServiceQuotas",
    "servicequotas:ListServiceQuotas",
    "servicequotas:ListServices",
)


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def metric_from_usage_metric(usage_metric: Optional[Dict[str, Any]]) -> Optional[MetricDescriptor]:
    """Convert a Service Quotas ``UsageMetric`` block; None when incomplete."""
    if not usage_metric:
        return None
    namespace = usage_metric.get("MetricNamespace")
    name = usage_metric.get("MetricName")
    if not namespace or not name:
        return None
    return MetricDescriptor.from_mapping(
        namespace=namespace,
        metric_name=name,
        dimensions=usage_metric.get("MetricDimensions"),
        statistic=usage_metric.get("MetricStatisticRecommendation") or "Maximum",
    )


class ServiceQuotasCatalog:
    """Lists services and quotas with the applied (account-level) limit resolved."""

    def __init__(self, clients: ClientFactory, retry_attempts: int = 5):
        self.clients = clients
        retry = retry_on_throttling(max_attempts=retry_attempts)
        self._paginate = retry(self._paginate)

    @property
    def _client(self):
        return self.clients.client("service-quotas")

    def _paginate(self, operation: str, result_key: str, **params) -> List[Dict[str, Any]]:
        items = []
        paginator = self._client.get_paginator(operation)
        for page in paginator.paginate(**params):
            items.extend(page.get(result_key, []))
        return items

    def list_services(self, allow_filter: Optional[AllowFilter] = None) -> List[ServiceDescriptor]:
        allow_filter = allow_filter or AllowFilter.allow_all()
        services = []
        for item in self._paginate("list_services", "Services"):
            code = item["ServiceCode"]
            if allow_filter.allows_service(code):
                services.append(ServiceDescriptor(code=code, name=item.get("ServiceName", code)))
        return services

    def list_quotas(self, service_code: str,
                    allowed_quota_codes: Optional[FrozenSet[str]] = None) -> List[QuotaDescriptor]:
        try:
            defaults = self._paginate("list_aws_default_service_quotas", "Quotas", ServiceCode=service_code)
        except ClientError as e:
            if _error_code(e) == "NoSuchResourceException":
                raise ServiceNotFoundError(service_code) from e
            raise

        applied = self._applied_values(service_code)

        quotas = []
        for item in defaults:
            quota_code = item["QuotaCode"]
            if allowed_quota_codes is not None and quota_code not in allowed_quota_codes:
                continue
            default_value = float(item.get("Value", 0.0))
            quotas.append(QuotaDescriptor(
                service_code=service_code,
                service_name=item.get("ServiceName", service_code),
                quota_code=quota_code,
                quota_name=item.get("QuotaName", quota_code),
                adjustable=bool(item.get("Adjustable", False)),
                is_global=bool(item.get("GlobalQuota", False)),
                default_value=default_value,
                applied_value=applied.get(quota_code, default_value),
                metric=metric_from_usage_metric(item.get("UsageMetric")),
            ))
        logger.debug(f"Loaded {len(quotas)} quotas for {service_code} ({len(applied)} with account overrides)")
        return quotas

    def _applied_values(self, service_code: str) -> Dict[str, float]:
        """Account-level values; quotas without an override are absent."""
        try:
            items = self._paginate("list_service_quotas", "Quotas", ServiceCode=service_code)
        except ClientError as e:
            if _error_code(e) == "NoSuchResourceException":
                return {}
            raise
        return {
            item["QuotaCode"]: float(item["Value"])
            for item in items
            if item.get("Value") is not None
        }

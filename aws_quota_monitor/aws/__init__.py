"""boto3-backed catalog, metric and resource usage sources."""

from .catalog import ServiceQuotasCatalog
from .clients import ClientFactory
from .cloudwatch import CloudWatchMetricSource
from .iam import policy_document, required_actions
from .resources import SERVICE_RESOURCES, ServiceUsageSource, build_usage_sources

__all__ = [
    'ClientFactory', 'ServiceQuotasCatalog', 'CloudWatchMetricSource',
    'ServiceUsageSource', 'build_usage_sources', 'SERVICE_RESOURCES',
    'required_actions', 'policy_document',
]

"""IAM actions an access policy must grant for the monitor to run."""

from typing import Dict, Optional, Tuple

from ..core.allow_filter import AllowFilter
from . import catalog, cloudwatch
from .resources import SERVICE_RESOURCES, service_actions


def required_actions(allow_filter: Optional[AllowFilter] = None) -> Dict[str, Tuple[str, ...]]:
    """Actions per service, restricted to the services and quotas the filter enables.

    ``servicequotas`` and ``cloudwatch`` are always needed. An enabled service
    whose allowed quota codes have no resource counter maps to an empty tuple.
    """
    allow_filter = allow_filter or AllowFilter.allow_all()

    actions: Dict[str, Tuple[str, ...]] = {
        "servicequotas": tuple(sorted(catalog.IAM_ACTIONS)),
        "cloudwatch": tuple(sorted(cloudwatch.IAM_ACTIONS)),
    }
    for service_code in sorted(SERVICE_RESOURCES):
        if not allow_filter.allows_service(service_code):
            continue
        actions[service_code] = service_actions(service_code, allow_filter.allowed_quotas(service_code))
    return actions


def policy_document(allow_filter: Optional[AllowFilter] = None) -> Dict:
    """A minimal IAM policy document granting every required action."""
    statements = sorted({
        action
        for actions in required_actions(allow_filter).values()
        for action in actions
    })
    return {
        "Version": "2012-10-17",
        "Statement": [{
            "Effect": "Allow",
            "Action": statements,
            "Resource": "*",
        }],
    }

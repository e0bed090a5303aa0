"""API usage sources that count live resources per quota code.

Each supported quota code maps to a ``ResourceKind``: the listing call that
enumerates the resources and an optional predicate selecting the ones that
count against the quota. Several quota codes share one listing (all
dedicated-host families come from ``describe_hosts``), so a source issues
each distinct listing at most once per ``get_usage`` call.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple

from ..core.allow_filter import AllowFilter
from ..utils.backoff import retry_on_throttling
from .clients import ClientFactory

logger = logging.getLogger(__name__)

Resource = Dict[str, Any]
Predicate = Callable[[Resource], bool]


@dataclass(frozen=True)
class Listing:
    """One enumeration call against an AWS API."""

    name: str
    client: str
    operation: str
    result_key: str
    iam_action: str
    params: Mapping[str, Any] = field(default_factory=dict, hash=False, compare=False)
    # s3control calls take the caller's account id
    needs_account_id: bool = False


@dataclass(frozen=True)
class ResourceKind:
    """Resources counted against a single quota."""

    listing: Listing
    description: str
    predicate: Optional[Predicate] = field(default=None, hash=False, compare=False)

    def count(self, resources: List[Resource]) -> int:
        if self.predicate is None:
            return len(resources)
        return sum(1 for r in resources if self.predicate(r))


def field_equals(key: str, value: str) -> Predicate:
    def predicate(resource: Resource) -> bool:
        return resource.get(key) == value
    return predicate


def dedicated_host_family(family: str) -> Predicate:
    """Match hosts allocated for ``family`` by instance type or instance family."""
    prefix = family + "."

    def predicate(host: Resource) -> bool:
        properties = host.get("HostProperties") or {}
        instance_type = properties.get("InstanceType") or ""
        return instance_type.startswith(prefix) or properties.get("InstanceFamily") == family
    return predicate


def list_resources(client: Any, listing: Listing, **extra_params) -> List[Resource]:
    """Enumerate every item of a listing.

    Uses the botocore paginator where one exists; otherwise follows
    ``NextToken`` until the API stops returning one.
    """
    params = dict(listing.params)
    params.update(extra_params)

    items: List[Resource] = []
    if client.can_paginate(listing.operation):
        paginator = client.get_paginator(listing.operation)
        for page in paginator.paginate(**params):
            items.extend(page.get(listing.result_key) or [])
        return items

    call = getattr(client, listing.operation)
    while True:
        response = call(**params)
        items.extend(response.get(listing.result_key) or [])
        token = response.get("NextToken")
        if not token:
            return items
        params["NextToken"] = token


# ========== Listings ==========

DESCRIBE_HOSTS = Listing("ec2:hosts", "ec2", "describe_hosts", "Hosts", "ec2:DescribeHosts")

EC2_HOST_FAMILIES = {
    "L-949445B0": "a1",
    "L-E4BF28E0": "c4",
    "L-81657574": "c5",
    "L-C93F66A2": "c5d",
    "L-20F13EBD": "c5n",
    "L-8B27377A": "d2",
    "L-DE82EABA": "g3",
    "L-9675FDCD": "g3s",
    "L-CAE24619": "g4dn",
    "L-84391ECC": "h1",
    "L-6222C1B6": "i2",
    "L-77EE2B11": "i3en",
    "L-EF30B25E": "m4",
    "L-8B7BF662": "m5",
    "L-B10F70D6": "m5a",
    "L-8CCBD91B": "m5d",
    "L-DA07429F": "m5dn",
    "L-D50A37FA": "m6g",
    "L-2753CF59": "p2",
    "L-A0A19F79": "p3",
    "L-B7208018": "r3",
    "L-313524BA": "r4",
    "L-EA4FD6CF": "r5",
    "L-8FE30D52": "r5a",
    "L-EC7178B6": "r5ad",
    "L-8814B54F": "r5d",
    "L-4AB14223": "r5dn",
    "L-52EF324A": "r5n",
    "L-DE3D9563": "x1",
    "L-DEF8E115": "x1e",
    "L-F035E935": "z1d",
}

EC2_RESOURCES: Dict[str, ResourceKind] = {
    code: ResourceKind(DESCRIBE_HOSTS, f"{family} dedicated hosts", dedicated_host_family(family))
    for code, family in EC2_HOST_FAMILIES.items()
}
EC2_RESOURCES.update({
    "L-7029FAB6": ResourceKind(
        Listing("ec2:vpn_gateways", "ec2", "describe_vpn_gateways", "VpnGateways",
                "ec2:DescribeVpnGateways"),
        "virtual private gateways",
    ),
    "L-3E6EC3A3": ResourceKind(
        Listing("ec2:vpn_connections", "ec2", "describe_vpn_connections", "VpnConnections",
                "ec2:DescribeVpnConnections"),
        "VPN connections",
    ),
    "L-A2478D36": ResourceKind(
        Listing("ec2:transit_gateways", "ec2", "describe_transit_gateways", "TransitGateways",
                "ec2:DescribeTransitGateways"),
        "transit gateways",
    ),
    "L-4FB7FF5D": ResourceKind(
        Listing("ec2:customer_gateways", "ec2", "describe_customer_gateways", "CustomerGateways",
                "ec2:DescribeCustomerGateways"),
        "customer gateways",
    ),
    "L-0263D0A3": ResourceKind(
        Listing("ec2:vpc_addresses", "ec2", "describe_addresses", "Addresses", "ec2:DescribeAddresses",
                params={"Filters": [{"Name": "domain", "Values": ["vpc"]}]}),
        "VPC Elastic IP addresses",
    ),
})

DESCRIBE_VPC_ENDPOINTS = Listing(
    "ec2:vpc_endpoints", "ec2", "describe_vpc_endpoints", "VpcEndpoints", "ec2:DescribeVpcEndpoints",
)

VPC_RESOURCES: Dict[str, ResourceKind] = {
    "L-1B52E74A": ResourceKind(
        DESCRIBE_VPC_ENDPOINTS, "gateway VPC endpoints", field_equals("VpcEndpointType", "Gateway"),
    ),
    "L-29B6F2EB": ResourceKind(
        DESCRIBE_VPC_ENDPOINTS, "interface VPC endpoints", field_equals("VpcEndpointType", "Interface"),
    ),
    "L-45FE3B85": ResourceKind(
        Listing("ec2:egress_only_internet_gateways", "ec2", "describe_egress_only_internet_gateways",
                "EgressOnlyInternetGateways", "ec2:DescribeEgressOnlyInternetGateways"),
        "egress-only internet gateways",
    ),
    "L-A4707A72": ResourceKind(
        Listing("ec2:internet_gateways", "ec2", "describe_internet_gateways", "InternetGateways",
                "ec2:DescribeInternetGateways"),
        "internet gateways",
    ),
    "L-B4A6D682": ResourceKind(
        Listing("ec2:network_acls", "ec2", "describe_network_acls", "NetworkAcls",
                "ec2:DescribeNetworkAcls"),
        "network ACLs",
    ),
    "L-DF5E4CA3": ResourceKind(
        Listing("ec2:network_interfaces", "ec2", "describe_network_interfaces", "NetworkInterfaces",
                "ec2:DescribeNetworkInterfaces"),
        "network interfaces",
    ),
    "L-E79EC296": ResourceKind(
        Listing("ec2:security_groups", "ec2", "describe_security_groups", "SecurityGroups",
                "ec2:DescribeSecurityGroups"),
        "security groups",
    ),
    "L-F678F1CE": ResourceKind(
        Listing("ec2:vpcs", "ec2", "describe_vpcs", "Vpcs", "ec2:DescribeVpcs"),
        "VPCs",
    ),
}

ELB_RESOURCES: Dict[str, ResourceKind] = {
    "L-E9E9831D": ResourceKind(
        Listing("elb:load_balancers", "elb", "describe_load_balancers", "LoadBalancerDescriptions",
                "elasticloadbalancing:DescribeLoadBalancers"),
        "classic load balancers",
    ),
    "L-53DA6B97": ResourceKind(
        Listing("elbv2:load_balancers", "elbv2", "describe_load_balancers", "LoadBalancers",
                "elasticloadbalancing:DescribeLoadBalancers"),
        "application load balancers",
        field_equals("Type", "application"),
    ),
}

S3_RESOURCES: Dict[str, ResourceKind] = {
    "L-DC2B2D3D": ResourceKind(
        Listing("s3:buckets", "s3", "list_buckets", "Buckets", "s3:ListAllMyBuckets"),
        "buckets",
    ),
    "L-FAABEEBA": ResourceKind(
        Listing("s3control:access_points", "s3control", "list_access_points", "AccessPointList",
                "s3:ListAccessPoints", needs_account_id=True),
        "access points",
    ),
}

CLOUDFORMATION_RESOURCES: Dict[str, ResourceKind] = {
    "L-0485CB21": ResourceKind(
        Listing("cloudformation:stacks", "cloudformation", "describe_stacks", "Stacks",
                "cloudformation:DescribeStacks"),
        "stacks",
    ),
    "L-31709F13": ResourceKind(
        Listing("cloudformation:stack_sets", "cloudformation", "list_stack_sets", "Summaries",
                "cloudformation:ListStackSets", params={"Status": "ACTIVE"}),
        "active stack sets",
    ),
}

AUTOSCALING_RESOURCES: Dict[str, ResourceKind] = {
    "L-CDE20ADC": ResourceKind(
        Listing("autoscaling:groups", "autoscaling", "describe_auto_scaling_groups", "AutoScalingGroups",
                "autoscaling:DescribeAutoScalingGroups"),
        "auto scaling groups",
    ),
    "L-6B80B8FA": ResourceKind(
        Listing("autoscaling:launch_configurations", "autoscaling", "describe_launch_configurations",
                "LaunchConfigurations", "autoscaling:DescribeLaunchConfigurations"),
        "launch configurations",
    ),
}

EFS_RESOURCES: Dict[str, ResourceKind] = {
    "L-848C634D": ResourceKind(
        Listing("efs:file_systems", "efs", "describe_file_systems", "FileSystems",
                "elasticfilesystem:DescribeFileSystems"),
        "file systems",
    ),
}

ELASTICBEANSTALK_RESOURCES: Dict[str, ResourceKind] = {
    "L-D64F1F14": ResourceKind(
        Listing("elasticbeanstalk:application_versions", "elasticbeanstalk",
                "describe_application_versions", "ApplicationVersions",
                "elasticbeanstalk:DescribeApplicationVersions"),
        "application versions",
    ),
    "L-1CEABD17": ResourceKind(
        Listing("elasticbeanstalk:applications", "elasticbeanstalk", "describe_applications",
                "Applications", "elasticbeanstalk:DescribeApplications"),
        "applications",
    ),
    "L-8EFC1C51": ResourceKind(
        Listing("elasticbeanstalk:environments", "elasticbeanstalk", "describe_environments",
                "Environments", "elasticbeanstalk:DescribeEnvironments"),
        "environments",
    ),
}

# Service Quotas service code -> quota code -> resource kind
SERVICE_RESOURCES: Dict[str, Dict[str, ResourceKind]] = {
    "autoscaling": AUTOSCALING_RESOURCES,
    "cloudformation": CLOUDFORMATION_RESOURCES,
    "ec2": EC2_RESOURCES,
    "elasticbeanstalk": ELASTICBEANSTALK_RESOURCES,
    "elasticfilesystem": EFS_RESOURCES,
    "elasticloadbalancing": ELB_RESOURCES,
    "s3": S3_RESOURCES,
    "vpc": VPC_RESOURCES,
}

ACCOUNT_ID_ACTION = "sts:GetCallerIdentity"


class ServiceUsageSource:
    """Counts live resources for the quotas of one service.

    Holds no state beyond its client factory; every call enumerates afresh.
    """

    def __init__(self, service_code: str, resources: Mapping[str, ResourceKind],
                 clients: ClientFactory, retry_attempts: int = 5):
        self.service_code = service_code
        self.resources = dict(resources)
        self.clients = clients
        retry = retry_on_throttling(max_attempts=retry_attempts)
        self._list = retry(self._list)
        self._account_id = retry(self._account_id)

    @property
    def quota_codes(self) -> FrozenSet[str]:
        return frozenset(self.resources)

    def _list(self, listing: Listing, **extra_params) -> List[Resource]:
        return list_resources(self.clients.client(listing.client), listing, **extra_params)

    def _account_id(self) -> str:
        return self.clients.client("sts").get_caller_identity()["Account"]

    def get_usage(self, allowed_quota_codes: Optional[FrozenSet[str]] = None) -> Dict[str, int]:
        """Resource counts keyed by quota code.

        Codes in ``allowed_quota_codes`` that this service does not know are
        ignored; None means every known code.
        """
        listed: Dict[str, List[Resource]] = {}
        account_id: Optional[str] = None
        usage: Dict[str, int] = {}

        for quota_code, kind in sorted(self.resources.items()):
            if allowed_quota_codes is not None and quota_code not in allowed_quota_codes:
                continue

            listing = kind.listing
            if listing.name not in listed:
                extra = {}
                if listing.needs_account_id:
                    if account_id is None:
                        account_id = self._account_id()
                    extra["AccountId"] = account_id
                listed[listing.name] = self._list(listing, **extra)

            usage[quota_code] = kind.count(listed[listing.name])

        logger.debug(f"Counted {len(usage)} {self.service_code} quotas from {len(listed)} listings")
        return usage


def build_usage_sources(clients: ClientFactory, allow_filter: Optional[AllowFilter] = None,
                        retry_attempts: int = 5) -> Dict[str, ServiceUsageSource]:
    """One usage source per supported service the allow filter enables."""
    allow_filter = allow_filter or AllowFilter.allow_all()
    return {
        service_code: ServiceUsageSource(service_code, resources, clients, retry_attempts)
        for service_code, resources in sorted(SERVICE_RESOURCES.items())
        if allow_filter.allows_service(service_code)
    }


def service_actions(service_code: str, allowed_quota_codes: Optional[FrozenSet[str]] = None) -> Tuple[str, ...]:
    """IAM actions needed to count the given quotas of a service."""
    actions = set()
    for quota_code, kind in SERVICE_RESOURCES.get(service_code, {}).items():
        if allowed_quota_codes is not None and quota_code not in allowed_quota_codes:
            continue
        actions.add(kind.listing.iam_action)
        if kind.listing.needs_account_id:
            actions.add(ACCOUNT_ID_ACTION)
    return tuple(sorted(actions))

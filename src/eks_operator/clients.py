"""Narrow AWS client interfaces and their boto3 factory.

Each Protocol lists only the operations this operator actually calls, using
boto3's method names and keyword arguments. A boto3 client satisfies its
Protocol structurally, and tests substitute in-memory fakes.

boto3 clients are blocking; coroutines reach them through aws_call(), which
runs the call in the default thread pool.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

# Client-side retries for throttling; dependency-aware retries live in retry.py
BOTO_MAX_ATTEMPTS = 5
BOTO_RETRY_MODE = "standard"


class EC2API(Protocol):
    """VPC, subnet, gateway, route table, security group and endpoint calls."""

    def describe_availability_zones(self, **kwargs: Any) -> dict[str, Any]: ...
    def describe_vpcs(self, **kwargs: Any) -> dict[str, Any]: ...
    def create_vpc(self, **kwargs: Any) -> dict[str, Any]: ...
    def modify_vpc_attribute(self, **kwargs: Any) -> dict[str, Any]: ...
    def delete_vpc(self, **kwargs: Any) -> dict[str, Any]: ...
    def describe_subnets(self, **kwargs: Any) -> dict[str, Any]: ...
    def create_subnet(self, **kwargs: Any) -> dict[str, Any]: ...
    def modify_subnet_attribute(self, **kwargs: Any) -> dict[str, Any]: ...
    def delete_subnet(self, **kwargs: Any) -> dict[str, Any]: ...
    def describe_internet_gateways(self, **kwargs: Any) -> dict[str, Any]: ...
    def create_internet_gateway(self, **kwargs: Any) -> dict[str, Any]: ...
    def attach_internet_gateway(self, **kwargs: Any) -> dict[str, Any]: ...
    def detach_internet_gateway(self, **kwargs: Any) -> dict[str, Any]: ...
    def delete_internet_gateway(self, **kwargs: Any) -> dict[str, Any]: ...
    def describe_addresses(self, **kwargs: Any) -> dict[str, Any]: ...
    def allocate_address(self, **kwargs: Any) -> dict[str, Any]: ...
    def release_address(self, **kwargs: Any) -> dict[str, Any]: ...
    def describe_nat_gateways(self, **kwargs: Any) -> dict[str, Any]: ...
    def create_nat_gateway(self, **kwargs: Any) -> dict[str, Any]: ...
    def delete_nat_gateway(self, **kwargs: Any) -> dict[str, Any]: ...
    def describe_route_tables(self, **kwargs: Any) -> dict[str, Any]: ...
    def create_route_table(self, **kwargs: Any) -> dict[str, Any]: ...
    def create_route(self, **kwargs: Any) -> dict[str, Any]: ...
    def associate_route_table(self, **kwargs: Any) -> dict[str, Any]: ...
    def disassociate_route_table(self, **kwargs: Any) -> dict[str, Any]: ...
    def delete_route_table(self, **kwargs: Any) -> dict[str, Any]: ...
    def describe_security_groups(self, **kwargs: Any) -> dict[str, Any]: ...
    def create_security_group(self, **kwargs: Any) -> dict[str, Any]: ...
    def authorize_security_group_ingress(self, **kwargs: Any) -> dict[str, Any]: ...
    def authorize_security_group_egress(self, **kwargs: Any) -> dict[str, Any]: ...
    def revoke_security_group_ingress(self, **kwargs: Any) -> dict[str, Any]: ...
    def delete_security_group(self, **kwargs: Any) -> dict[str, Any]: ...
    def describe_vpc_endpoints(self, **kwargs: Any) -> dict[str, Any]: ...
    def create_vpc_endpoint(self, **kwargs: Any) -> dict[str, Any]: ...
    def delete_vpc_endpoints(self, **kwargs: Any) -> dict[str, Any]: ...


class EKSAPI(Protocol):
    """Control plane and managed node group calls."""

    def describe_cluster(self, **kwargs: Any) -> dict[str, Any]: ...
    def create_cluster(self, **kwargs: Any) -> dict[str, Any]: ...
    def update_cluster_version(self, **kwargs: Any) -> dict[str, Any]: ...
    def update_cluster_config(self, **kwargs: Any) -> dict[str, Any]: ...
    def delete_cluster(self, **kwargs: Any) -> dict[str, Any]: ...
    def list_nodegroups(self, **kwargs: Any) -> dict[str, Any]: ...
    def describe_nodegroup(self, **kwargs: Any) -> dict[str, Any]: ...
    def create_nodegroup(self, **kwargs: Any) -> dict[str, Any]: ...
    def update_nodegroup_config(self, **kwargs: Any) -> dict[str, Any]: ...
    def delete_nodegroup(self, **kwargs: Any) -> dict[str, Any]: ...


class IAMAPI(Protocol):
    """Role lifecycle and policy attachment calls."""

    def get_role(self, **kwargs: Any) -> dict[str, Any]: ...
    def create_role(self, **kwargs: Any) -> dict[str, Any]: ...
    def delete_role(self, **kwargs: Any) -> dict[str, Any]: ...
    def attach_role_policy(self, **kwargs: Any) -> dict[str, Any]: ...
    def detach_role_policy(self, **kwargs: Any) -> dict[str, Any]: ...
    def list_attached_role_policies(self, **kwargs: Any) -> dict[str, Any]: ...
    def list_role_policies(self, **kwargs: Any) -> dict[str, Any]: ...
    def delete_role_policy(self, **kwargs: Any) -> dict[str, Any]: ...


class EFSAPI(Protocol):
    """Shared file system and mount target calls."""

    def describe_file_systems(self, **kwargs: Any) -> dict[str, Any]: ...
    def create_file_system(self, **kwargs: Any) -> dict[str, Any]: ...
    def update_file_system(self, **kwargs: Any) -> dict[str, Any]: ...
    def delete_file_system(self, **kwargs: Any) -> dict[str, Any]: ...
    def describe_mount_targets(self, **kwargs: Any) -> dict[str, Any]: ...
    def describe_mount_target_security_groups(self, **kwargs: Any) -> dict[str, Any]: ...
    def create_mount_target(self, **kwargs: Any) -> dict[str, Any]: ...
    def delete_mount_target(self, **kwargs: Any) -> dict[str, Any]: ...


class ELBAPI(Protocol):
    """Classic load balancer calls (created by the Kubernetes cloud controller)."""

    def describe_load_balancers(self, **kwargs: Any) -> dict[str, Any]: ...
    def describe_tags(self, **kwargs: Any) -> dict[str, Any]: ...
    def delete_load_balancer(self, **kwargs: Any) -> dict[str, Any]: ...


@dataclass(frozen=True)
class AWSClients:
    """Bundle of per-service clients used by one reconciliation pass."""

    ec2: EC2API
    eks: EKSAPI
    iam: IAMAPI
    efs: EFSAPI
    elb: ELBAPI


def create_aws_clients(region: str, profile: str | None = None) -> AWSClients:
    """Create boto3 clients for every service the operator touches.

    Credentials come from the default provider chain (env, profile, IRSA,
    instance metadata).
    """
    session = boto3.Session(profile_name=profile, region_name=region)
    boto_config = BotoConfig(retries={"max_attempts": BOTO_MAX_ATTEMPTS, "mode": BOTO_RETRY_MODE})

    logger.debug("Creating AWS clients", extra={"region": region, "profile": profile})

    return AWSClients(
        ec2=session.client("ec2", config=boto_config),
        eks=session.client("eks", config=boto_config),
        iam=session.client("iam", config=boto_config),
        efs=session.client("efs", config=boto_config),
        elb=session.client("elb", config=boto_config),
    )


async def aws_call(method: Callable[..., dict[str, Any]], **kwargs: Any) -> dict[str, Any]:
    """Run a blocking SDK call without blocking the event loop."""
    return await asyncio.to_thread(method, **kwargs)


def error_code(exc: BaseException) -> str | None:
    """AWS error code of a botocore ClientError, else None."""
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code")
    return None


def is_not_found(exc: BaseException, *codes: str) -> bool:
    """True for ClientErrors that mean "the resource does not exist"."""
    code = error_code(exc)
    if code is None:
        return False
    return code in (codes or NOT_FOUND_CODES)


NOT_FOUND_CODES = frozenset(
    {
        "ResourceNotFoundException",
        "NoSuchEntity",
        "FileSystemNotFound",
        "MountTargetNotFound",
        "InvalidVpcID.NotFound",
        "InvalidSubnetID.NotFound",
        "InvalidGroup.NotFound",
        "InvalidInternetGatewayID.NotFound",
        "InvalidRouteTableID.NotFound",
        "InvalidAllocationID.NotFound",
        "NatGatewayNotFound",
        "LoadBalancerNotFound",
    }
)

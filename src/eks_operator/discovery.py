"""Tag-scoped discovery of managed AWS resources.

Each discover_* coroutine queries one resource kind, keeps only what the
ownership tags prove is ours, and maps raw API records into state
dataclasses. Discovery is read-only.

Two ownership rules apply:
- Listing (node groups, file systems, load balancers): resources that fail
  the tag check are silently skipped, they belong to someone else.
- Exact-name lookup (the EKS cluster, the IAM roles): a resource that exists
  under our name but does not carry our tags is fatal, because adopting it
  would mean mutating someone else's infrastructure.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from typing import Any, TypeVar

from botocore.exceptions import ClientError

from .clients import aws_call, is_not_found
from .config import ELB_DESCRIBE_TAGS_BATCH_SIZE
from .context import ReconcileContext
from .errors import DiscoveryError, UnmanagedResourceError
from .state import (
    ClusterState,
    ClusterStatus,
    IAMRoles,
    InfrastructureState,
    LoadBalancerState,
    MountTarget,
    NetworkState,
    NodePoolState,
    ScalingConfig,
    StorageState,
    Taint,
)
from .tags import (
    PUBLIC_SUBNET_MARKER_TAG,
    TAG_RESOURCE_TYPE,
    ResourceType,
    build_tag_filter,
    cluster_role_name,
    from_tag_list,
    is_owned,
    kubernetes_cluster_tag,
    node_role_name,
    ownership_problem,
    resource_name,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# VPC endpoint states that no longer count as present
_GONE_ENDPOINT_STATES = {"deleting", "deleted", "failed", "rejected", "expired"}


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Split items into consecutive lists of at most size elements."""
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def _vpc_filters(ctx: ReconcileContext, vpc_id: str, resource_type: ResourceType) -> list[dict[str, Any]]:
    return [{"Name": "vpc-id", "Values": [vpc_id]}, *build_tag_filter(ctx.cluster_name, resource_type)]


# =============================================================================
# Network
# =============================================================================


async def discover_network(ctx: ReconcileContext) -> NetworkState | None:
    """Discover the cluster VPC and every tagged sub-resource.

    Returns:
        NetworkState, or None if no managed VPC exists.

    Raises:
        DiscoveryError: If more than one managed VPC carries this cluster's tags.
    """
    ec2 = ctx.clients.ec2
    response = await aws_call(
        ec2.describe_vpcs, Filters=build_tag_filter(ctx.cluster_name, ResourceType.VPC)
    )
    vpcs = response.get("Vpcs", [])

    if not vpcs:
        logger.debug("No managed VPC found", extra={"cluster_name": ctx.cluster_name})
        return None
    if len(vpcs) > 1:
        vpc_ids = sorted(vpc["VpcId"] for vpc in vpcs)
        raise DiscoveryError(
            f"multiple VPCs found for cluster {ctx.cluster_name}: {vpc_ids}; "
            "expected exactly one"
        )

    vpc = vpcs[0]
    state = NetworkState(
        vpc_id=vpc["VpcId"],
        cidr_block=vpc.get("CidrBlock", ""),
        tags=from_tag_list(vpc.get("Tags")),
    )

    await _discover_subnets(ctx, state)
    await _discover_internet_gateway(ctx, state)
    await _discover_nat_gateways(ctx, state)
    await _discover_route_tables(ctx, state)
    await _discover_security_groups(ctx, state)
    await _discover_vpc_endpoints(ctx, state)

    logger.info(
        "Discovered VPC",
        extra={
            "vpc_id": state.vpc_id,
            "public_subnets": len(state.public_subnet_ids),
            "private_subnets": len(state.private_subnet_ids),
            "nat_gateways": len(state.nat_gateway_ids),
        },
    )
    return state


async def _discover_subnets(ctx: ReconcileContext, state: NetworkState) -> None:
    response = await aws_call(
        ctx.clients.ec2.describe_subnets,
        Filters=_vpc_filters(ctx, state.vpc_id, ResourceType.SUBNET),
    )
    subnets = sorted(
        response.get("Subnets", []),
        key=lambda s: (s.get("AvailabilityZone", ""), s.get("CidrBlock", "")),
    )

    for subnet in subnets:
        tags = from_tag_list(subnet.get("Tags"))
        if PUBLIC_SUBNET_MARKER_TAG in tags:
            state.public_subnet_ids.append(subnet["SubnetId"])
        else:
            state.private_subnet_ids.append(subnet["SubnetId"])

        zone = subnet.get("AvailabilityZone")
        if zone and zone not in state.availability_zones:
            state.availability_zones.append(zone)


async def _discover_internet_gateway(ctx: ReconcileContext, state: NetworkState) -> None:
    response = await aws_call(
        ctx.clients.ec2.describe_internet_gateways,
        Filters=[
            {"Name": "attachment.vpc-id", "Values": [state.vpc_id]},
            *build_tag_filter(ctx.cluster_name, ResourceType.INTERNET_GATEWAY),
        ],
    )
    gateways = response.get("InternetGateways", [])
    if gateways:
        state.internet_gateway_id = gateways[0]["InternetGatewayId"]


async def _discover_nat_gateways(ctx: ReconcileContext, state: NetworkState) -> None:
    response = await aws_call(
        ctx.clients.ec2.describe_nat_gateways,
        Filters=[
            *_vpc_filters(ctx, state.vpc_id, ResourceType.NAT_GATEWAY),
            {"Name": "state", "Values": ["available"]},
        ],
    )
    gateways = sorted(response.get("NatGateways", []), key=lambda g: g.get("SubnetId", ""))
    state.nat_gateway_ids = [gateway["NatGatewayId"] for gateway in gateways]


async def _discover_route_tables(ctx: ReconcileContext, state: NetworkState) -> None:
    response = await aws_call(
        ctx.clients.ec2.describe_route_tables,
        Filters=_vpc_filters(ctx, state.vpc_id, ResourceType.ROUTE_TABLE),
    )
    # Classify by the Name suffix so cluster names containing "public" or
    # "private" cannot confuse the check
    prefix = resource_name(ctx.cluster_name, "route-table") + "-"
    tables = sorted(
        response.get("RouteTables", []),
        key=lambda t: from_tag_list(t.get("Tags")).get("Name", ""),
    )
    for table in tables:
        name = from_tag_list(table.get("Tags")).get("Name", "")
        suffix = name[len(prefix) :] if name.startswith(prefix) else name
        if suffix.startswith("public"):
            state.public_route_table_id = table["RouteTableId"]
        elif suffix.startswith("private"):
            state.private_route_table_ids.append(table["RouteTableId"])


async def _discover_security_groups(ctx: ReconcileContext, state: NetworkState) -> None:
    response = await aws_call(
        ctx.clients.ec2.describe_security_groups,
        Filters=_vpc_filters(ctx, state.vpc_id, ResourceType.SECURITY_GROUP),
    )
    state.security_group_ids = [group["GroupId"] for group in response.get("SecurityGroups", [])]


async def _discover_vpc_endpoints(ctx: ReconcileContext, state: NetworkState) -> None:
    response = await aws_call(
        ctx.clients.ec2.describe_vpc_endpoints,
        Filters=_vpc_filters(ctx, state.vpc_id, ResourceType.VPC_ENDPOINT),
    )
    state.vpc_endpoint_ids = [
        endpoint["VpcEndpointId"]
        for endpoint in response.get("VpcEndpoints", [])
        if endpoint.get("State", "").lower() not in _GONE_ENDPOINT_STATES
    ]


async def discover_existing_network(
    ctx: ReconcileContext,
    subnet_ids: list[str],
    security_group_id: str | None,
) -> NetworkState:
    """Describe a user-provided network that this operator does not manage."""
    response = await aws_call(ctx.clients.ec2.describe_subnets, SubnetIds=subnet_ids)
    subnets = response.get("Subnets", [])
    vpc_ids = {subnet["VpcId"] for subnet in subnets}
    if len(vpc_ids) != 1:
        raise DiscoveryError(
            f"existing subnets must belong to exactly one VPC, found {sorted(vpc_ids)}"
        )

    zones: list[str] = []
    for subnet in subnets:
        zone = subnet.get("AvailabilityZone")
        if zone and zone not in zones:
            zones.append(zone)

    return NetworkState(
        vpc_id=vpc_ids.pop(),
        cidr_block="",
        availability_zones=zones,
        private_subnet_ids=list(subnet_ids),
        security_group_ids=[security_group_id] if security_group_id else [],
        managed=False,
    )


# =============================================================================
# EKS control plane and node groups
# =============================================================================


def cluster_state_from_api(cluster: dict[str, Any]) -> ClusterState:
    """Map a DescribeCluster record into ClusterState."""
    vpc_config = cluster.get("resourcesVpcConfig", {})

    log_types: list[str] = []
    for setup in cluster.get("logging", {}).get("clusterLogging", []):
        if setup.get("enabled"):
            log_types.extend(setup.get("types", []))

    kms_key_arn = None
    for encryption in cluster.get("encryptionConfig", []) or []:
        if "secrets" in encryption.get("resources", []):
            kms_key_arn = encryption.get("provider", {}).get("keyArn")

    return ClusterState(
        name=cluster["name"],
        arn=cluster.get("arn", ""),
        status=ClusterStatus(cluster.get("status", "PENDING")),
        version=cluster.get("version", ""),
        endpoint=cluster.get("endpoint"),
        vpc_id=vpc_config.get("vpcId"),
        subnet_ids=list(vpc_config.get("subnetIds", [])),
        security_group_ids=list(vpc_config.get("securityGroupIds", [])),
        endpoint_public_access=vpc_config.get("endpointPublicAccess", True),
        endpoint_private_access=vpc_config.get("endpointPrivateAccess", False),
        public_access_cidrs=list(vpc_config.get("publicAccessCidrs", [])),
        enabled_log_types=sorted(set(log_types)),
        encryption_kms_key_arn=kms_key_arn,
        role_arn=cluster.get("roleArn"),
        tags=dict(cluster.get("tags") or {}),
    )


async def discover_cluster(ctx: ReconcileContext) -> ClusterState | None:
    """Look up the EKS cluster by its exact name.

    Returns:
        ClusterState, or None if no cluster with that name exists.

    Raises:
        UnmanagedResourceError: If the cluster exists without our ownership tags.
    """
    try:
        response = await aws_call(ctx.clients.eks.describe_cluster, name=ctx.cluster_name)
    except ClientError as e:
        if is_not_found(e, "ResourceNotFoundException"):
            return None
        raise

    cluster = response["cluster"]
    problem = ownership_problem(cluster.get("tags"), ctx.cluster_name)
    if problem:
        raise UnmanagedResourceError(f"EKS cluster {ctx.cluster_name} {problem}")

    return cluster_state_from_api(cluster)


def node_pool_state_from_api(nodegroup: dict[str, Any]) -> NodePoolState:
    """Map a DescribeNodegroup record into NodePoolState."""
    scaling = nodegroup.get("scalingConfig", {})
    issues = [
        f"{issue.get('code', 'Unknown')}: {issue.get('message', '')}"
        for issue in nodegroup.get("health", {}).get("issues", [])
    ]
    return NodePoolState(
        name=nodegroup["nodegroupName"],
        cluster_name=nodegroup.get("clusterName", ""),
        status=nodegroup.get("status", ""),
        instance_types=list(nodegroup.get("instanceTypes") or []),
        scaling=ScalingConfig(
            min_size=scaling.get("minSize", 0),
            max_size=scaling.get("maxSize", 0),
            desired_size=scaling.get("desiredSize", 0),
        ),
        ami_type=nodegroup.get("amiType", ""),
        capacity_type=nodegroup.get("capacityType", "ON_DEMAND"),
        disk_size=nodegroup.get("diskSize"),
        labels=dict(nodegroup.get("labels") or {}),
        taints=[Taint.from_eks(taint) for taint in nodegroup.get("taints") or []],
        health_issues=issues,
        subnet_ids=list(nodegroup.get("subnets") or []),
        node_role_arn=nodegroup.get("nodeRole"),
        tags=dict(nodegroup.get("tags") or {}),
    )


async def discover_node_pools(ctx: ReconcileContext) -> list[NodePoolState]:
    """List every node group of the cluster and keep the ones we own.

    Pages through ListNodegroups with nextToken. Groups that fail the
    ownership check are skipped, not reported as errors.
    """
    eks = ctx.clients.eks
    names: list[str] = []
    next_token: str | None = None

    while True:
        kwargs: dict[str, Any] = {"clusterName": ctx.cluster_name}
        if next_token:
            kwargs["nextToken"] = next_token
        try:
            response = await aws_call(eks.list_nodegroups, **kwargs)
        except ClientError as e:
            if is_not_found(e, "ResourceNotFoundException"):
                return []
            raise
        names.extend(response.get("nodegroups", []))
        next_token = response.get("nextToken")
        if not next_token:
            break

    pools: list[NodePoolState] = []
    for name in names:
        try:
            response = await aws_call(
                eks.describe_nodegroup, clusterName=ctx.cluster_name, nodegroupName=name
            )
        except ClientError as e:
            # Deleted between list and describe
            if is_not_found(e, "ResourceNotFoundException"):
                continue
            raise

        nodegroup = response["nodegroup"]
        tags = nodegroup.get("tags") or {}
        is_node_pool = tags.get(TAG_RESOURCE_TYPE) == ResourceType.NODE_POOL.value
        if not (is_owned(tags, ctx.cluster_name) and is_node_pool):
            logger.debug(
                "Skipping unmanaged node group",
                extra={"cluster_name": ctx.cluster_name, "nodegroup": name},
            )
            continue
        pools.append(node_pool_state_from_api(nodegroup))

    logger.info(
        "Discovered node pools",
        extra={"cluster_name": ctx.cluster_name, "listed": len(names), "managed": len(pools)},
    )
    return pools


# =============================================================================
# IAM
# =============================================================================


async def _get_owned_role(ctx: ReconcileContext, role_name: str) -> dict[str, Any] | None:
    try:
        response = await aws_call(ctx.clients.iam.get_role, RoleName=role_name)
    except ClientError as e:
        if is_not_found(e, "NoSuchEntity"):
            return None
        raise

    role = response["Role"]
    problem = ownership_problem(from_tag_list(role.get("Tags")), ctx.cluster_name)
    if problem:
        raise UnmanagedResourceError(f"IAM role {role_name} {problem}")
    return role


async def discover_iam_roles(ctx: ReconcileContext) -> IAMRoles | None:
    """Look up the cluster and node roles by name.

    Returns:
        IAMRoles with whichever roles exist, or None if neither does.
    """
    cluster_role = await _get_owned_role(ctx, cluster_role_name(ctx.cluster_name))
    node_role = await _get_owned_role(ctx, node_role_name(ctx.cluster_name))

    if cluster_role is None and node_role is None:
        return None

    return IAMRoles(
        cluster_role_arn=cluster_role["Arn"] if cluster_role else None,
        node_role_arn=node_role["Arn"] if node_role else None,
        cluster_role_name=cluster_role["RoleName"] if cluster_role else None,
        node_role_name=node_role["RoleName"] if node_role else None,
    )


# =============================================================================
# EFS
# =============================================================================


async def discover_mount_targets(ctx: ReconcileContext, file_system_id: str) -> list[MountTarget]:
    response = await aws_call(ctx.clients.efs.describe_mount_targets, FileSystemId=file_system_id)
    return [
        MountTarget(
            mount_target_id=target["MountTargetId"],
            subnet_id=target["SubnetId"],
            ip_address=target.get("IpAddress"),
            life_cycle_state=target.get("LifeCycleState", ""),
        )
        for target in response.get("MountTargets", [])
    ]


async def discover_storage(ctx: ReconcileContext) -> StorageState | None:
    """Find the cluster's EFS file system among all file systems in the region.

    Raises:
        DiscoveryError: If more than one file system is tagged for this cluster.
    """
    efs = ctx.clients.efs
    owned: list[dict[str, Any]] = []
    marker: str | None = None

    while True:
        kwargs: dict[str, Any] = {"Marker": marker} if marker else {}
        response = await aws_call(efs.describe_file_systems, **kwargs)
        for file_system in response.get("FileSystems", []):
            tags = from_tag_list(file_system.get("Tags"))
            if is_owned(tags, ctx.cluster_name) and tags.get(TAG_RESOURCE_TYPE) == ResourceType.EFS.value:
                owned.append(file_system)
        marker = response.get("NextMarker")
        if not marker:
            break

    if not owned:
        return None
    if len(owned) > 1:
        ids = sorted(fs["FileSystemId"] for fs in owned)
        raise DiscoveryError(f"multiple EFS file systems found for cluster {ctx.cluster_name}: {ids}")

    file_system = owned[0]
    file_system_id = file_system["FileSystemId"]
    mount_targets = await discover_mount_targets(ctx, file_system_id)

    security_group_ids: list[str] = []
    if mount_targets:
        response = await aws_call(
            efs.describe_mount_target_security_groups,
            MountTargetId=mount_targets[0].mount_target_id,
        )
        security_group_ids = list(response.get("SecurityGroups", []))

    return StorageState(
        file_system_id=file_system_id,
        arn=file_system.get("FileSystemArn"),
        life_cycle_state=file_system.get("LifeCycleState", ""),
        performance_mode=file_system.get("PerformanceMode", "generalPurpose"),
        throughput_mode=file_system.get("ThroughputMode", "bursting"),
        provisioned_throughput_mibps=file_system.get("ProvisionedThroughputInMibps"),
        encrypted=bool(file_system.get("Encrypted", False)),
        kms_key_id=file_system.get("KmsKeyId"),
        mount_targets=mount_targets,
        security_group_ids=security_group_ids,
        tags=from_tag_list(file_system.get("Tags")),
    )


# =============================================================================
# Load balancers created by Kubernetes
# =============================================================================


async def discover_load_balancers(ctx: ReconcileContext) -> list[LoadBalancerState]:
    """Find classic load balancers the cloud controller created for this cluster.

    Tags are fetched with DescribeTags, which accepts at most
    ELB_DESCRIBE_TAGS_BATCH_SIZE names per call, so names are chunked and
    the batches are issued sequentially.
    """
    elb = ctx.clients.elb
    descriptions: dict[str, dict[str, Any]] = {}
    marker: str | None = None

    while True:
        kwargs: dict[str, Any] = {"Marker": marker} if marker else {}
        response = await aws_call(elb.describe_load_balancers, **kwargs)
        for description in response.get("LoadBalancerDescriptions", []):
            descriptions[description["LoadBalancerName"]] = description
        marker = response.get("NextMarker")
        if not marker:
            break

    if not descriptions:
        return []

    ownership_tag = kubernetes_cluster_tag(ctx.cluster_name)
    owned: list[LoadBalancerState] = []

    for batch in chunked(list(descriptions), ELB_DESCRIBE_TAGS_BATCH_SIZE):
        response = await aws_call(elb.describe_tags, LoadBalancerNames=batch)
        for tag_description in response.get("TagDescriptions", []):
            tags = from_tag_list(tag_description.get("Tags"))
            if ownership_tag not in tags:
                continue
            name = tag_description["LoadBalancerName"]
            description = descriptions.get(name, {})
            owned.append(
                LoadBalancerState(
                    name=name,
                    vpc_id=description.get("VPCId"),
                    security_group_ids=list(description.get("SecurityGroups", [])),
                    tags=tags,
                )
            )

    logger.info(
        "Discovered Kubernetes load balancers",
        extra={"cluster_name": ctx.cluster_name, "listed": len(descriptions), "owned": len(owned)},
    )
    return owned


# =============================================================================
# Everything
# =============================================================================


async def discover_all(ctx: ReconcileContext) -> InfrastructureState:
    """Discover every managed resource kind for the cluster."""
    return InfrastructureState(
        cluster_name=ctx.cluster_name,
        network=await discover_network(ctx),
        cluster=await discover_cluster(ctx),
        node_pools=await discover_node_pools(ctx),
        iam_roles=await discover_iam_roles(ctx),
        storage=await discover_storage(ctx),
    )

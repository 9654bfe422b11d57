"""VPC reconciliation: create, repair missing pieces, delete.

The VPC CIDR and its availability zone set are immutable. Everything else
is created on demand, strictly in dependency order, because each step
needs ids produced by the one before it:

    internet gateway -> subnets -> NAT gateways -> route tables
    -> cluster security group -> VPC endpoints
"""

from __future__ import annotations

import logging
from typing import Any

from botocore.exceptions import ClientError

from .clients import aws_call, error_code, is_not_found
from .context import ReconcileContext
from .discovery import discover_existing_network, discover_network
from .errors import ImmutableFieldError, ProvisioningError
from .models import DEFAULT_AZ_COUNT, AWSSpec
from .state import NetworkState
from .status import StatusLevel
from .tags import (
    K8S_PRIVATE_ELB_ROLE_TAG,
    K8S_PUBLIC_ELB_ROLE_TAG,
    PUBLIC_SUBNET_MARKER_TAG,
    ResourceType,
    build_tag_filter,
    ec2_tag_specification,
    kubernetes_cluster_tag,
    resource_name,
)
from .teardown import delete_security_group_with_retry, revoke_referencing_rules
from .waiter import wait_until

logger = logging.getLogger(__name__)

MIN_AVAILABILITY_ZONES = 2
SUBNET_PREFIX_LENGTH = 20
PRIVATE_SUBNET_OFFSET = 128
SUBNET_STRIDE = 16

# (protocol, from_port, to_port, description), all self-referencing
CLUSTER_SG_INGRESS_RULES: tuple[tuple[str, int, int, str], ...] = (
    ("tcp", 443, 443, "Allow nodes to communicate with cluster API server"),
    ("tcp", 10250, 10250, "Allow control plane to communicate with nodes kubelet"),
    ("tcp", 53, 53, "Allow DNS TCP communication within cluster"),
    ("udp", 53, 53, "Allow DNS UDP communication within cluster"),
    ("tcp", 1025, 65535, "Allow node-to-node communication"),
)

INTERFACE_ENDPOINT_SERVICES = (
    "ec2",
    "ecr.api",
    "ecr.dkr",
    "sts",
    "eks",
    "eks-auth",
    "logs",
    "elasticloadbalancing",
    "autoscaling",
)
GATEWAY_ENDPOINT_SERVICES = ("s3",)


def subnet_cidr(vpc_cidr: str, index: int, public: bool) -> str:
    """CIDR of the index-th public or private /20 inside a /16 VPC.

    Public subnets start at x.y.0.0, private ones at x.y.128.0, and each
    subsequent subnet is 16 blocks further.
    """
    address = vpc_cidr.split("/")[0]
    octets = address.split(".")
    base = 0 if public else PRIVATE_SUBNET_OFFSET
    third_octet = base + index * SUBNET_STRIDE
    return f"{octets[0]}.{octets[1]}.{third_octet}.0/{SUBNET_PREFIX_LENGTH}"


def _named_tags(ctx: ReconcileContext, resource_type: ResourceType, name: str) -> dict[str, str]:
    tags = ctx.tags(resource_type)
    tags["Name"] = name
    return tags


def check_network_immutable(spec: AWSSpec, actual: NetworkState) -> None:
    """Raise if the desired CIDR or AZ set differs from the existing VPC."""
    if actual.cidr_block and actual.cidr_block != spec.vpc_cidr_block:
        raise ImmutableFieldError(
            f"VPC {actual.vpc_id}",
            "CIDR block",
            actual.cidr_block,
            spec.vpc_cidr_block,
            remedy=(
                "destroy the existing VPC and recreate it, or update your "
                "configuration to match the actual CIDR"
            ),
        )

    desired_zones = spec.availability_zones
    if desired_zones and actual.availability_zones:
        if set(desired_zones) != set(actual.availability_zones):
            raise ImmutableFieldError(
                f"VPC {actual.vpc_id}",
                "availability zones",
                sorted(actual.availability_zones),
                sorted(desired_zones),
                remedy=(
                    "destroy the existing VPC and recreate it, or update your "
                    "configuration to match the actual availability zones"
                ),
            )


async def get_availability_zones(ctx: ReconcileContext, spec: AWSSpec) -> list[str]:
    """Configured zones, else the first DEFAULT_AZ_COUNT available zones of the region."""
    if spec.availability_zones:
        return list(spec.availability_zones)

    response = await aws_call(
        ctx.clients.ec2.describe_availability_zones,
        Filters=[
            {"Name": "region-name", "Values": [ctx.region]},
            {"Name": "state", "Values": ["available"]},
        ],
    )
    zones = [zone["ZoneName"] for zone in response.get("AvailabilityZones", [])]
    if not zones:
        raise ProvisioningError(f"no availability zones found in region {ctx.region}")
    return zones[:DEFAULT_AZ_COUNT]


async def reconcile_network(
    ctx: ReconcileContext,
    spec: AWSSpec,
    actual: NetworkState | None,
) -> NetworkState:
    """Converge the cluster VPC to the desired configuration.

    Returns:
        Fresh NetworkState after any changes.

    Raises:
        ImmutableFieldError: If CIDR or availability zones differ.
    """
    if spec.uses_existing_network:
        logger.info(
            "Using existing network",
            extra={"cluster_name": ctx.cluster_name, "subnet_ids": spec.existing_subnet_ids},
        )
        return await discover_existing_network(
            ctx, spec.existing_subnet_ids, spec.existing_security_group_id
        )

    if actual is None:
        ctx.report(StatusLevel.PROGRESS, "Creating VPC", resource="vpc", action="creating")
        return await create_network(ctx, spec)

    check_network_immutable(spec, actual)

    zones = actual.availability_zones or await get_availability_zones(ctx, spec)
    if await ensure_network_components(ctx, spec, actual, zones):
        refreshed = await discover_network(ctx)
        if refreshed is not None:
            return refreshed
    else:
        ctx.report(
            StatusLevel.INFO,
            "VPC up to date",
            resource="vpc",
            action="skipped",
            vpc_id=actual.vpc_id,
        )
    return actual


async def create_network(ctx: ReconcileContext, spec: AWSSpec) -> NetworkState:
    """Create the VPC and every sub-resource from scratch."""
    zones = await get_availability_zones(ctx, spec)
    if len(zones) < MIN_AVAILABILITY_ZONES:
        raise ProvisioningError(
            f"at least {MIN_AVAILABILITY_ZONES} availability zones are required for EKS, "
            f"found {len(zones)}: {zones}"
        )

    ec2 = ctx.clients.ec2
    vpc_name = resource_name(ctx.cluster_name, "vpc")
    response = await aws_call(
        ec2.create_vpc,
        CidrBlock=spec.vpc_cidr_block,
        TagSpecifications=ec2_tag_specification("vpc", _named_tags(ctx, ResourceType.VPC, vpc_name)),
    )
    vpc_id = response["Vpc"]["VpcId"]

    # DNS attributes have to be set one per call
    await aws_call(ec2.modify_vpc_attribute, VpcId=vpc_id, EnableDnsHostnames={"Value": True})
    await aws_call(ec2.modify_vpc_attribute, VpcId=vpc_id, EnableDnsSupport={"Value": True})

    logger.info(
        "Created VPC",
        extra={"cluster_name": ctx.cluster_name, "vpc_id": vpc_id, "zones": zones},
    )
    ctx.report(StatusLevel.SUCCESS, "VPC created", resource="vpc", action="created", vpc_id=vpc_id)

    state = NetworkState(vpc_id=vpc_id, cidr_block=spec.vpc_cidr_block, availability_zones=zones)
    await ensure_network_components(ctx, spec, state, zones)
    return state


async def ensure_network_components(
    ctx: ReconcileContext,
    spec: AWSSpec,
    state: NetworkState,
    zones: list[str],
) -> bool:
    """Create whichever sub-resources are missing, updating state in place.

    Returns:
        True if anything was created.
    """
    created = False

    if state.internet_gateway_id is None:
        state.internet_gateway_id = await create_internet_gateway(ctx, state.vpc_id)
        created = True

    if not state.public_subnet_ids:
        state.public_subnet_ids = await create_subnets(ctx, state, zones, public=True)
        created = True

    if not state.private_subnet_ids:
        state.private_subnet_ids = await create_subnets(ctx, state, zones, public=False)
        created = True

    if not state.nat_gateway_ids and state.public_subnet_ids:
        state.nat_gateway_ids = await create_nat_gateways(ctx, state.public_subnet_ids)
        created = True

    if state.public_route_table_id is None and state.internet_gateway_id and state.public_subnet_ids:
        state.public_route_table_id = await create_public_route_table(ctx, state)
        created = True

    if not state.private_route_table_ids and state.nat_gateway_ids and state.private_subnet_ids:
        state.private_route_table_ids = await create_private_route_tables(ctx, state)
        created = True

    if not state.security_group_ids:
        state.security_group_ids = [await create_cluster_security_group(ctx, state.vpc_id)]
        created = True

    if not state.vpc_endpoint_ids and state.private_subnet_ids and state.security_group_ids:
        state.vpc_endpoint_ids = await create_vpc_endpoints(ctx, state)
        created = True

    return created


async def create_internet_gateway(ctx: ReconcileContext, vpc_id: str) -> str:
    ec2 = ctx.clients.ec2
    name = resource_name(ctx.cluster_name, "igw")
    response = await aws_call(
        ec2.create_internet_gateway,
        TagSpecifications=ec2_tag_specification(
            "internet-gateway", _named_tags(ctx, ResourceType.INTERNET_GATEWAY, name)
        ),
    )
    igw_id = response["InternetGateway"]["InternetGatewayId"]
    await aws_call(ec2.attach_internet_gateway, InternetGatewayId=igw_id, VpcId=vpc_id)

    ctx.report(
        StatusLevel.SUCCESS,
        "Internet gateway created",
        resource="internet-gateway",
        action="created",
        igw_id=igw_id,
    )
    return igw_id


async def create_subnets(
    ctx: ReconcileContext,
    state: NetworkState,
    zones: list[str],
    *,
    public: bool,
) -> list[str]:
    """Create one public or private subnet per availability zone."""
    ec2 = ctx.clients.ec2
    kind = "public" if public else "private"
    subnet_ids: list[str] = []

    for index, zone in enumerate(zones):
        tags = _named_tags(
            ctx, ResourceType.SUBNET, resource_name(ctx.cluster_name, "subnet", f"{kind}-{zone}")
        )
        tags[kubernetes_cluster_tag(ctx.cluster_name)] = "shared"
        if public:
            tags[PUBLIC_SUBNET_MARKER_TAG] = "1"
            tags[K8S_PUBLIC_ELB_ROLE_TAG] = "1"
        else:
            tags[K8S_PRIVATE_ELB_ROLE_TAG] = "1"

        response = await aws_call(
            ec2.create_subnet,
            VpcId=state.vpc_id,
            CidrBlock=subnet_cidr(state.cidr_block, index, public),
            AvailabilityZone=zone,
            TagSpecifications=ec2_tag_specification("subnet", tags),
        )
        subnet_id = response["Subnet"]["SubnetId"]

        if public:
            await aws_call(
                ec2.modify_subnet_attribute,
                SubnetId=subnet_id,
                MapPublicIpOnLaunch={"Value": True},
            )
        subnet_ids.append(subnet_id)

    ctx.report(
        StatusLevel.SUCCESS,
        f"{kind.capitalize()} subnets created",
        resource="subnet",
        action="created",
        count=len(subnet_ids),
    )
    return subnet_ids


async def create_nat_gateways(ctx: ReconcileContext, public_subnet_ids: list[str]) -> list[str]:
    """Create one NAT gateway (with its own Elastic IP) per public subnet and wait for them."""
    ec2 = ctx.clients.ec2
    nat_gateway_ids: list[str] = []

    for index, subnet_id in enumerate(public_subnet_ids):
        eip_tags = _named_tags(
            ctx, ResourceType.ELASTIC_IP, resource_name(ctx.cluster_name, "eip", f"nat-{index}")
        )
        allocation = await aws_call(
            ec2.allocate_address,
            Domain="vpc",
            TagSpecifications=ec2_tag_specification("elastic-ip", eip_tags),
        )

        nat_tags = _named_tags(
            ctx, ResourceType.NAT_GATEWAY, resource_name(ctx.cluster_name, "nat", str(index))
        )
        response = await aws_call(
            ec2.create_nat_gateway,
            SubnetId=subnet_id,
            AllocationId=allocation["AllocationId"],
            TagSpecifications=ec2_tag_specification("natgateway", nat_tags),
        )
        nat_gateway_ids.append(response["NatGateway"]["NatGatewayId"])

    for nat_gateway_id in nat_gateway_ids:
        await wait_for_nat_gateway(ctx, nat_gateway_id, target="available")

    ctx.report(
        StatusLevel.SUCCESS,
        "NAT gateways created",
        resource="nat-gateway",
        action="created",
        count=len(nat_gateway_ids),
    )
    return nat_gateway_ids


async def wait_for_nat_gateway(ctx: ReconcileContext, nat_gateway_id: str, *, target: str) -> None:
    """Wait for a NAT gateway to become available or deleted."""

    async def reached() -> bool:
        try:
            response = await aws_call(
                ctx.clients.ec2.describe_nat_gateways, NatGatewayIds=[nat_gateway_id]
            )
        except ClientError as e:
            if target == "deleted" and is_not_found(e, "NatGatewayNotFound"):
                return True
            raise
        gateways = response.get("NatGateways", [])
        if not gateways:
            return target == "deleted"
        state = gateways[0].get("State")
        if state == "failed" and target == "available":
            raise ProvisioningError(
                f"NAT gateway {nat_gateway_id} failed: {gateways[0].get('FailureMessage', '')}"
            )
        return state == target

    await wait_until(
        ctx,
        reached,
        description=f"NAT gateway {nat_gateway_id} to be {target}",
        timeout=ctx.timeouts.nat_gateway,
    )


async def create_public_route_table(ctx: ReconcileContext, state: NetworkState) -> str:
    """Route table sending 0.0.0.0/0 to the internet gateway, shared by public subnets."""
    ec2 = ctx.clients.ec2
    name = resource_name(ctx.cluster_name, "route-table", "public")
    response = await aws_call(
        ec2.create_route_table,
        VpcId=state.vpc_id,
        TagSpecifications=ec2_tag_specification(
            "route-table", _named_tags(ctx, ResourceType.ROUTE_TABLE, name)
        ),
    )
    route_table_id = response["RouteTable"]["RouteTableId"]

    await aws_call(
        ec2.create_route,
        RouteTableId=route_table_id,
        DestinationCidrBlock="0.0.0.0/0",
        GatewayId=state.internet_gateway_id,
    )
    for subnet_id in state.public_subnet_ids:
        await aws_call(ec2.associate_route_table, RouteTableId=route_table_id, SubnetId=subnet_id)

    ctx.report(
        StatusLevel.SUCCESS,
        "Public route table created with IGW route",
        resource="route-table",
        action="created",
        route_table_id=route_table_id,
    )
    return route_table_id


async def create_private_route_tables(ctx: ReconcileContext, state: NetworkState) -> list[str]:
    """One route table per private subnet, routing through the matching NAT gateway."""
    ec2 = ctx.clients.ec2
    route_table_ids: list[str] = []

    for index, subnet_id in enumerate(state.private_subnet_ids):
        name = resource_name(ctx.cluster_name, "route-table", f"private-{index}")
        response = await aws_call(
            ec2.create_route_table,
            VpcId=state.vpc_id,
            TagSpecifications=ec2_tag_specification(
                "route-table", _named_tags(ctx, ResourceType.ROUTE_TABLE, name)
            ),
        )
        route_table_id = response["RouteTable"]["RouteTableId"]

        nat_gateway_id = state.nat_gateway_ids[index % len(state.nat_gateway_ids)]
        await aws_call(
            ec2.create_route,
            RouteTableId=route_table_id,
            DestinationCidrBlock="0.0.0.0/0",
            NatGatewayId=nat_gateway_id,
        )
        await aws_call(ec2.associate_route_table, RouteTableId=route_table_id, SubnetId=subnet_id)
        route_table_ids.append(route_table_id)

    ctx.report(
        StatusLevel.SUCCESS,
        "Private route tables created with NAT routes",
        resource="route-table",
        action="created",
        count=len(route_table_ids),
    )
    return route_table_ids


def cluster_security_group_ingress(group_id: str) -> list[dict[str, Any]]:
    """Self-referencing ingress permissions for cluster/node traffic."""
    return [
        {
            "IpProtocol": protocol,
            "FromPort": from_port,
            "ToPort": to_port,
            "UserIdGroupPairs": [{"GroupId": group_id, "Description": description}],
        }
        for protocol, from_port, to_port, description in CLUSTER_SG_INGRESS_RULES
    ]


async def create_cluster_security_group(ctx: ReconcileContext, vpc_id: str) -> str:
    ec2 = ctx.clients.ec2
    name = resource_name(ctx.cluster_name, "sg", "cluster")
    response = await aws_call(
        ec2.create_security_group,
        GroupName=name,
        Description=f"Security group for {ctx.cluster_name} EKS cluster",
        VpcId=vpc_id,
        TagSpecifications=ec2_tag_specification(
            "security-group", _named_tags(ctx, ResourceType.SECURITY_GROUP, name)
        ),
    )
    group_id = response["GroupId"]

    await _authorize_ignoring_duplicates(
        ctx.clients.ec2.authorize_security_group_ingress,
        GroupId=group_id,
        IpPermissions=cluster_security_group_ingress(group_id),
    )
    await _authorize_ignoring_duplicates(
        ctx.clients.ec2.authorize_security_group_egress,
        GroupId=group_id,
        IpPermissions=[
            {
                "IpProtocol": "-1",
                "IpRanges": [{"CidrIp": "0.0.0.0/0", "Description": "Allow all outbound traffic"}],
            }
        ],
    )

    ctx.report(
        StatusLevel.SUCCESS,
        "Cluster security group created",
        resource="security-group",
        action="created",
        group_id=group_id,
    )
    return group_id


async def _authorize_ignoring_duplicates(method: Any, **kwargs: Any) -> None:
    try:
        await aws_call(method, **kwargs)
    except ClientError as e:
        if error_code(e) != "InvalidPermission.Duplicate":
            raise


async def create_vpc_endpoints(ctx: ReconcileContext, state: NetworkState) -> list[str]:
    """Create the interface and gateway endpoints private nodes need.

    Interface endpoints are placed in every private subnet behind the
    cluster security group; the S3 gateway endpoint is attached to the
    cluster's route tables.
    """
    ec2 = ctx.clients.ec2
    interface_ids: list[str] = []

    for service in INTERFACE_ENDPOINT_SERVICES:
        name = f"{ctx.cluster_name}-vpce-{service.replace('.', '-')}"
        response = await aws_call(
            ec2.create_vpc_endpoint,
            VpcId=state.vpc_id,
            ServiceName=f"com.amazonaws.{ctx.region}.{service}",
            VpcEndpointType="Interface",
            SubnetIds=state.private_subnet_ids,
            SecurityGroupIds=state.security_group_ids[:1],
            PrivateDnsEnabled=True,
            TagSpecifications=ec2_tag_specification(
                "vpc-endpoint", _named_tags(ctx, ResourceType.VPC_ENDPOINT, name)
            ),
        )
        interface_ids.append(response["VpcEndpoint"]["VpcEndpointId"])

    if interface_ids:
        await wait_for_vpc_endpoints(ctx, interface_ids)

    route_table_ids = [
        *([state.public_route_table_id] if state.public_route_table_id else []),
        *state.private_route_table_ids,
    ]
    gateway_ids: list[str] = []
    for service in GATEWAY_ENDPOINT_SERVICES:
        if not route_table_ids:
            raise ProvisioningError(
                f"no route tables found for cluster {ctx.cluster_name}; "
                f"cannot create {service} gateway endpoint"
            )
        name = f"{ctx.cluster_name}-vpce-{service}"
        response = await aws_call(
            ec2.create_vpc_endpoint,
            VpcId=state.vpc_id,
            ServiceName=f"com.amazonaws.{ctx.region}.{service}",
            VpcEndpointType="Gateway",
            RouteTableIds=route_table_ids,
            TagSpecifications=ec2_tag_specification(
                "vpc-endpoint", _named_tags(ctx, ResourceType.VPC_ENDPOINT, name)
            ),
        )
        gateway_ids.append(response["VpcEndpoint"]["VpcEndpointId"])

    ctx.report(
        StatusLevel.SUCCESS,
        "VPC endpoints created",
        resource="vpc-endpoint",
        action="created",
        count=len(interface_ids) + len(gateway_ids),
    )
    return interface_ids + gateway_ids


async def wait_for_vpc_endpoints(ctx: ReconcileContext, endpoint_ids: list[str]) -> None:
    async def all_available() -> bool:
        response = await aws_call(
            ctx.clients.ec2.describe_vpc_endpoints, VpcEndpointIds=endpoint_ids
        )
        states = {
            endpoint["VpcEndpointId"]: endpoint.get("State", "").lower()
            for endpoint in response.get("VpcEndpoints", [])
        }
        failed = sorted(eid for eid, state in states.items() if state in ("failed", "rejected"))
        if failed:
            raise ProvisioningError(f"VPC endpoints failed to become available: {failed}")
        return len(states) == len(endpoint_ids) and all(
            state == "available" for state in states.values()
        )

    await wait_until(
        ctx,
        all_available,
        description=f"{len(endpoint_ids)} VPC endpoints to be available",
        timeout=ctx.timeouts.vpc_endpoint,
        interval=ctx.timeouts.endpoint_poll_interval,
    )


# =============================================================================
# Deletion
# =============================================================================


async def delete_network(ctx: ReconcileContext, state: NetworkState) -> None:
    """Delete the VPC and everything in it, most dependent resources first.

    Order: endpoints, NAT gateways (then their EIPs), internet gateway,
    route tables, subnets, non-default security groups, the VPC itself.
    """
    if not state.managed:
        logger.info("Skipping deletion of unmanaged network", extra={"vpc_id": state.vpc_id})
        return

    vpc_id = state.vpc_id
    ec2 = ctx.clients.ec2
    vpc_filter = [{"Name": "vpc-id", "Values": [vpc_id]}]

    ctx.report(StatusLevel.PROGRESS, "Deleting VPC", resource="vpc", action="deleting", vpc_id=vpc_id)

    await _delete_vpc_endpoints(ctx, vpc_id)
    await _delete_nat_gateways(ctx, vpc_id)

    response = await aws_call(
        ec2.describe_internet_gateways,
        Filters=[{"Name": "attachment.vpc-id", "Values": [vpc_id]}],
    )
    for gateway in response.get("InternetGateways", []):
        igw_id = gateway["InternetGatewayId"]
        await aws_call(ec2.detach_internet_gateway, InternetGatewayId=igw_id, VpcId=vpc_id)
        await aws_call(ec2.delete_internet_gateway, InternetGatewayId=igw_id)

    response = await aws_call(ec2.describe_route_tables, Filters=vpc_filter)
    for table in response.get("RouteTables", []):
        associations = table.get("Associations", [])
        if any(association.get("Main") for association in associations):
            continue
        for association in associations:
            await aws_call(
                ec2.disassociate_route_table,
                AssociationId=association["RouteTableAssociationId"],
            )
        await aws_call(ec2.delete_route_table, RouteTableId=table["RouteTableId"])

    response = await aws_call(ec2.describe_subnets, Filters=vpc_filter)
    for subnet in response.get("Subnets", []):
        await aws_call(ec2.delete_subnet, SubnetId=subnet["SubnetId"])

    response = await aws_call(ec2.describe_security_groups, Filters=vpc_filter)
    for group in response.get("SecurityGroups", []):
        if group.get("GroupName") == "default":
            continue
        await revoke_referencing_rules(ctx, group["GroupId"])
        await delete_security_group_with_retry(ctx, group["GroupId"])

    await aws_call(ec2.delete_vpc, VpcId=vpc_id)

    logger.info("Deleted VPC", extra={"cluster_name": ctx.cluster_name, "vpc_id": vpc_id})
    ctx.report(StatusLevel.SUCCESS, "VPC deleted", resource="vpc", action="deleted", vpc_id=vpc_id)


async def _delete_vpc_endpoints(ctx: ReconcileContext, vpc_id: str) -> None:
    ec2 = ctx.clients.ec2
    vpc_filter = [{"Name": "vpc-id", "Values": [vpc_id]}]

    async def live_endpoint_ids() -> list[str]:
        response = await aws_call(ec2.describe_vpc_endpoints, Filters=vpc_filter)
        return [
            endpoint["VpcEndpointId"]
            for endpoint in response.get("VpcEndpoints", [])
            if endpoint.get("State", "").lower() not in ("deleted", "deleting")
        ]

    endpoint_ids = await live_endpoint_ids()
    if not endpoint_ids:
        return
    await aws_call(ec2.delete_vpc_endpoints, VpcEndpointIds=endpoint_ids)

    async def gone() -> bool:
        response = await aws_call(ec2.describe_vpc_endpoints, Filters=vpc_filter)
        return all(
            endpoint.get("State", "").lower() == "deleted"
            for endpoint in response.get("VpcEndpoints", [])
        )

    await wait_until(
        ctx,
        gone,
        description=f"VPC endpoints of {vpc_id} to be deleted",
        timeout=ctx.timeouts.vpc_endpoint,
        interval=ctx.timeouts.endpoint_poll_interval,
    )


async def _delete_nat_gateways(ctx: ReconcileContext, vpc_id: str) -> None:
    ec2 = ctx.clients.ec2
    response = await aws_call(
        ec2.describe_nat_gateways,
        Filters=[
            {"Name": "vpc-id", "Values": [vpc_id]},
            {"Name": "state", "Values": ["pending", "available"]},
        ],
    )
    gateways = response.get("NatGateways", [])

    allocation_ids: list[str] = []
    for gateway in gateways:
        for address in gateway.get("NatGatewayAddresses", []):
            if address.get("AllocationId"):
                allocation_ids.append(address["AllocationId"])
        await aws_call(ec2.delete_nat_gateway, NatGatewayId=gateway["NatGatewayId"])

    for gateway in gateways:
        await wait_for_nat_gateway(ctx, gateway["NatGatewayId"], target="deleted")

    for allocation_id in allocation_ids:
        await _release_address(ctx, allocation_id)


async def _release_address(ctx: ReconcileContext, allocation_id: str) -> bool:
    try:
        await aws_call(ctx.clients.ec2.release_address, AllocationId=allocation_id)
    except ClientError as e:
        if is_not_found(e, "InvalidAllocationID.NotFound"):
            return False
        raise
    return True


async def release_orphaned_eips(ctx: ReconcileContext) -> int:
    """Release cluster-tagged Elastic IPs that are not associated with anything.

    Returns:
        Number of addresses released.
    """
    response = await aws_call(
        ctx.clients.ec2.describe_addresses, Filters=build_tag_filter(ctx.cluster_name)
    )
    released = 0
    for address in response.get("Addresses", []):
        if address.get("AssociationId"):
            continue
        if await _release_address(ctx, address["AllocationId"]):
            released += 1

    if released:
        ctx.report(
            StatusLevel.SUCCESS,
            "Released orphaned Elastic IPs",
            resource="elastic-ip",
            action="deleted",
            count=released,
        )
    return released

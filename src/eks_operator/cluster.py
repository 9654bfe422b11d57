"""EKS control plane reconciliation.

Lifecycle: absent -> creating -> active <-> updating -> deleting.
The VPC and the secrets encryption key are immutable. Version upgrades
must move exactly one minor version at a time.
"""

from __future__ import annotations

import logging
from typing import Any

from botocore.exceptions import ClientError

from .clients import aws_call, is_not_found
from .context import ReconcileContext
from .discovery import cluster_state_from_api
from .errors import ImmutableFieldError, InvalidVersionUpgradeError, ProvisioningError
from .models import AWSSpec
from .state import ClusterState, ClusterStatus, IAMRoles, NetworkState
from .status import StatusLevel
from .tags import ResourceType
from .waiter import wait_until

logger = logging.getLogger(__name__)

LOG_TYPES = ("api", "audit", "authenticator", "controllerManager", "scheduler")


def endpoint_access_flags(endpoint_access: str) -> tuple[bool, bool]:
    """Map eks_endpoint_access to (public, private) endpoint flags."""
    if endpoint_access == "private":
        return False, True
    if endpoint_access == "public":
        return True, False
    # "public-and-private" and unset
    return True, True


def parse_version(version: str) -> tuple[int, int]:
    """Split MAJOR.MINOR into integers."""
    parts = version.split(".")
    if len(parts) < 2:
        raise ValueError(f"expected MAJOR.MINOR, got {version!r}")
    return int(parts[0]), int(parts[1])


def validate_version_upgrade(current: str, desired: str) -> None:
    """Raise InvalidVersionUpgradeError unless desired is current or its next minor.

    Equal versions are always valid. A different major, a downgrade, or a
    skipped minor version is rejected.
    """
    if current == desired:
        return

    try:
        current_major, current_minor = parse_version(current)
        desired_major, desired_minor = parse_version(desired)
    except ValueError as e:
        raise InvalidVersionUpgradeError(current, desired, str(e)) from e

    if current_major != desired_major:
        raise InvalidVersionUpgradeError(
            current,
            desired,
            "cannot change Kubernetes major version in-place, "
            "major version upgrades require cluster recreation",
        )
    if desired_minor < current_minor:
        raise InvalidVersionUpgradeError(
            current, desired, "downgrades are not supported"
        )
    if desired_minor > current_minor + 1:
        raise InvalidVersionUpgradeError(
            current,
            desired,
            f"cannot skip minor versions, upgrade to {current_major}.{current_minor + 1} first",
        )


def missing_log_types(enabled: list[str]) -> list[str]:
    return [log_type for log_type in LOG_TYPES if log_type not in enabled]


def _logging_config() -> dict[str, Any]:
    return {"clusterLogging": [{"types": list(LOG_TYPES), "enabled": True}]}


async def reconcile_cluster(
    ctx: ReconcileContext,
    spec: AWSSpec,
    network: NetworkState,
    roles: IAMRoles,
    actual: ClusterState | None,
) -> ClusterState:
    """Create the cluster if absent, otherwise validate and update it in place.

    Raises:
        ImmutableFieldError: VPC or KMS key differs from the existing cluster.
        InvalidVersionUpgradeError: Desired version is not a valid next step.
    """
    if actual is None:
        return await create_cluster(ctx, spec, network, roles)

    if actual.vpc_id != network.vpc_id:
        raise ImmutableFieldError(
            f"EKS cluster {actual.name}",
            "VPC configuration",
            actual.vpc_id,
            network.vpc_id,
            remedy="destroy and recreate cluster",
        )

    desired_kms = spec.eks_kms_arn or None
    if (actual.encryption_kms_key_arn or None) != desired_kms:
        raise ImmutableFieldError(
            f"EKS cluster {actual.name}",
            "encryption configuration",
            repr(actual.encryption_kms_key_arn or ""),
            repr(desired_kms or ""),
            remedy="destroy and recreate cluster",
        )

    eks = ctx.clients.eks
    changed = False

    if actual.version != spec.kubernetes_version:
        validate_version_upgrade(actual.version, spec.kubernetes_version)
        ctx.report(
            StatusLevel.PROGRESS,
            "Upgrading EKS cluster version",
            resource="eks-cluster",
            action="updating",
            from_version=actual.version,
            to_version=spec.kubernetes_version,
        )
        await aws_call(eks.update_cluster_version, name=actual.name, version=spec.kubernetes_version)
        await wait_for_cluster_active(ctx, actual.name, ctx.timeouts.cluster_update)
        changed = True

    public, private = endpoint_access_flags(spec.eks_endpoint_access)
    desired_cidrs = spec.public_access_cidrs
    update_request: dict[str, Any] = {}

    if (
        actual.endpoint_public_access != public
        or actual.endpoint_private_access != private
        or set(actual.public_access_cidrs) != set(desired_cidrs)
    ):
        update_request["resourcesVpcConfig"] = {
            "endpointPublicAccess": public,
            "endpointPrivateAccess": private,
            "publicAccessCidrs": desired_cidrs,
        }

    if missing_log_types(actual.enabled_log_types):
        update_request["logging"] = _logging_config()

    if update_request:
        logger.info(
            "Updating EKS cluster configuration",
            extra={"cluster_name": actual.name, "fields": sorted(update_request)},
        )
        ctx.report(
            StatusLevel.PROGRESS,
            "Updating EKS cluster configuration",
            resource="eks-cluster",
            action="updating",
        )
        await aws_call(eks.update_cluster_config, name=actual.name, **update_request)
        await wait_for_cluster_active(ctx, actual.name, ctx.timeouts.cluster_update)
        changed = True

    if not changed:
        ctx.report(StatusLevel.INFO, "EKS cluster up to date", resource="eks-cluster", action="skipped")
        return actual

    ctx.report(StatusLevel.SUCCESS, "EKS cluster updated", resource="eks-cluster", action="updated")
    return await describe_cluster_state(ctx, actual.name)


async def create_cluster(
    ctx: ReconcileContext,
    spec: AWSSpec,
    network: NetworkState,
    roles: IAMRoles,
) -> ClusterState:
    """Create the control plane in the private subnets and wait until ACTIVE."""
    if not roles.cluster_role_arn:
        raise ProvisioningError(f"cluster role for {ctx.cluster_name} has no ARN")

    public, private = endpoint_access_flags(spec.eks_endpoint_access)
    request: dict[str, Any] = {
        "name": ctx.cluster_name,
        "version": spec.kubernetes_version,
        "roleArn": roles.cluster_role_arn,
        "resourcesVpcConfig": {
            "subnetIds": network.private_subnet_ids,
            "securityGroupIds": network.security_group_ids,
            "endpointPublicAccess": public,
            "endpointPrivateAccess": private,
            "publicAccessCidrs": spec.public_access_cidrs,
        },
        "logging": _logging_config(),
        "tags": ctx.tags(ResourceType.EKS_CLUSTER),
    }
    if spec.eks_kms_arn:
        request["encryptionConfig"] = [
            {"resources": ["secrets"], "provider": {"keyArn": spec.eks_kms_arn}}
        ]

    ctx.report(
        StatusLevel.PROGRESS,
        "Creating EKS cluster",
        resource="eks-cluster",
        action="creating",
        cluster_name=ctx.cluster_name,
        kubernetes_version=spec.kubernetes_version,
    )
    await aws_call(ctx.clients.eks.create_cluster, **request)
    logger.info(
        "EKS cluster creation started",
        extra={"cluster_name": ctx.cluster_name, "version": spec.kubernetes_version},
    )

    state = await wait_for_cluster_active(ctx, ctx.cluster_name, ctx.timeouts.cluster_create)
    ctx.report(
        StatusLevel.SUCCESS,
        "EKS cluster created",
        resource="eks-cluster",
        action="created",
        endpoint=state.endpoint,
    )
    return state


async def describe_cluster_state(ctx: ReconcileContext, name: str) -> ClusterState:
    response = await aws_call(ctx.clients.eks.describe_cluster, name=name)
    return cluster_state_from_api(response["cluster"])


async def wait_for_cluster_active(ctx: ReconcileContext, name: str, timeout: float) -> ClusterState:
    """Poll DescribeCluster until ACTIVE. FAILED ends the wait with ProvisioningError."""
    latest: list[ClusterState] = []

    async def active() -> bool:
        state = await describe_cluster_state(ctx, name)
        if state.status == ClusterStatus.FAILED:
            raise ProvisioningError(f"EKS cluster {name} entered FAILED state")
        latest[:] = [state]
        return state.status == ClusterStatus.ACTIVE

    await wait_until(ctx, active, description=f"EKS cluster {name} to be ACTIVE", timeout=timeout)
    return latest[0]


async def delete_cluster(ctx: ReconcileContext, name: str) -> None:
    """Delete the control plane and wait until it is gone. Absent is success."""
    eks = ctx.clients.eks
    ctx.report(StatusLevel.PROGRESS, "Deleting EKS cluster", resource="eks-cluster", action="deleting")
    try:
        await aws_call(eks.delete_cluster, name=name)
    except ClientError as e:
        if is_not_found(e, "ResourceNotFoundException"):
            return
        raise

    async def gone() -> bool:
        try:
            await aws_call(eks.describe_cluster, name=name)
        except ClientError as e:
            if is_not_found(e, "ResourceNotFoundException"):
                return True
            raise
        return False

    await wait_until(
        ctx,
        gone,
        description=f"EKS cluster {name} to be deleted",
        timeout=ctx.timeouts.cluster_delete,
    )
    logger.info("Deleted EKS cluster", extra={"cluster_name": name})
    ctx.report(StatusLevel.SUCCESS, "EKS cluster deleted", resource="eks-cluster", action="deleted")

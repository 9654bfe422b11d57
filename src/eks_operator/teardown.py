"""Dependency-aware deletion of security groups and Kubernetes load balancers.

A security group cannot be deleted while another group's ingress rules
reference it, and for a while after the ENIs of a deleted load balancer
are released. References are revoked first, then deletion is retried on
DependencyViolation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from botocore.exceptions import ClientError

from .clients import aws_call, is_not_found
from .context import ReconcileContext
from .discovery import discover_load_balancers
from .retry import is_dependency_violation, with_retry
from .status import StatusLevel
from .tags import from_tag_list, kubernetes_cluster_tag

logger = logging.getLogger(__name__)

K8S_ELB_SECURITY_GROUP_PREFIX = "k8s-elb-"


@dataclass
class LoadBalancerCleanupResult:
    load_balancers_deleted: list[str] = field(default_factory=list)
    security_groups_deleted: list[str] = field(default_factory=list)


def referencing_permissions(group: dict[str, Any], group_id: str) -> list[dict[str, Any]]:
    """Ingress permissions of group that reference group_id, one pair each.

    Only the matching user/group pair is kept, so revoking the result leaves
    every other source of the same rule in place.
    """
    permissions: list[dict[str, Any]] = []
    for permission in group.get("IpPermissions", []):
        for pair in permission.get("UserIdGroupPairs", []):
            if pair.get("GroupId") != group_id:
                continue
            revoke: dict[str, Any] = {
                "IpProtocol": permission.get("IpProtocol"),
                "UserIdGroupPairs": [pair],
            }
            if "FromPort" in permission:
                revoke["FromPort"] = permission["FromPort"]
            if "ToPort" in permission:
                revoke["ToPort"] = permission["ToPort"]
            permissions.append(revoke)
    return permissions


async def revoke_referencing_rules(ctx: ReconcileContext, group_id: str) -> int:
    """Revoke ingress rules in other groups that reference group_id.

    Returns:
        Number of permissions revoked.
    """
    ec2 = ctx.clients.ec2
    response = await aws_call(
        ec2.describe_security_groups,
        Filters=[{"Name": "ip-permission.group-id", "Values": [group_id]}],
    )

    revoked = 0
    for group in response.get("SecurityGroups", []):
        if group["GroupId"] == group_id:
            continue
        permissions = referencing_permissions(group, group_id)
        if not permissions:
            continue

        ctx.report(
            StatusLevel.INFO,
            f"Revoking {len(permissions)} ingress rules referencing {group_id} in {group['GroupId']}",
            resource="security-group",
            action="revoking",
        )
        await aws_call(
            ec2.revoke_security_group_ingress,
            GroupId=group["GroupId"],
            IpPermissions=permissions,
        )
        revoked += len(permissions)

    return revoked


async def delete_security_group_with_retry(ctx: ReconcileContext, group_id: str) -> None:
    """Delete a security group, retrying while it is still referenced.

    A group that is already gone counts as deleted.
    """
    ec2 = ctx.clients.ec2

    async def attempt() -> None:
        try:
            await aws_call(ec2.delete_security_group, GroupId=group_id)
        except ClientError as e:
            if is_not_found(e, "InvalidGroup.NotFound"):
                return
            if is_dependency_violation(e):
                ctx.report(
                    StatusLevel.INFO,
                    f"Security group {group_id} still in use, waiting",
                    resource="security-group",
                    action="waiting",
                )
            raise

    await with_retry(
        attempt,
        is_dependency_violation,
        ctx.timeouts.sg_delete_attempts,
        interval=ctx.timeouts.sg_delete_interval,
        cancel=ctx.cancel,
        description=f"delete security group {group_id}",
    )


async def _k8s_security_groups(ctx: ReconcileContext, candidate_ids: list[str]) -> list[dict[str, Any]]:
    """Kubernetes-created groups tagged for this cluster.

    Candidates are the groups attached to deleted load balancers plus
    every group named k8s-elb-*.
    """
    ec2 = ctx.clients.ec2
    ownership_tag = kubernetes_cluster_tag(ctx.cluster_name)
    found: dict[str, dict[str, Any]] = {}

    queries = [[{"Name": "group-name", "Values": [f"{K8S_ELB_SECURITY_GROUP_PREFIX}*"]}]]
    if candidate_ids:
        queries.append([{"Name": "group-id", "Values": candidate_ids}])

    for filters in queries:
        response = await aws_call(ec2.describe_security_groups, Filters=filters)
        for group in response.get("SecurityGroups", []):
            if ownership_tag in from_tag_list(group.get("Tags")):
                found[group["GroupId"]] = group

    return [found[group_id] for group_id in sorted(found)]


async def cleanup_load_balancers(ctx: ReconcileContext) -> LoadBalancerCleanupResult:
    """Delete load balancers created by Kubernetes for this cluster, then their security groups."""
    result = LoadBalancerCleanupResult()
    elb = ctx.clients.elb

    load_balancers = await discover_load_balancers(ctx)
    if not load_balancers:
        ctx.report(StatusLevel.INFO, "No load balancers found", resource="load-balancer", action="discovering")

    candidate_ids: list[str] = []
    for load_balancer in load_balancers:
        ctx.report(
            StatusLevel.INFO,
            f"Deleting Kubernetes-created load balancer: {load_balancer.name}",
            resource="load-balancer",
            action="deleting",
        )
        await aws_call(elb.delete_load_balancer, LoadBalancerName=load_balancer.name)
        result.load_balancers_deleted.append(load_balancer.name)
        for group_id in load_balancer.security_group_ids:
            if group_id not in candidate_ids:
                candidate_ids.append(group_id)

    ctx.report(
        StatusLevel.SUCCESS,
        f"Kubernetes load balancer cleanup complete: {len(result.load_balancers_deleted)} deleted",
        resource="load-balancer",
        action="cleanup",
    )

    for group in await _k8s_security_groups(ctx, candidate_ids):
        group_id = group["GroupId"]
        ctx.report(
            StatusLevel.INFO,
            f"Deleting Kubernetes ELB security group: {group.get('GroupName', '')} ({group_id})",
            resource="security-group",
            action="deleting",
        )
        await revoke_referencing_rules(ctx, group_id)
        await delete_security_group_with_retry(ctx, group_id)
        result.security_groups_deleted.append(group_id)

    logger.info(
        "Load balancer cleanup finished",
        extra={
            "cluster_name": ctx.cluster_name,
            "load_balancers_deleted": len(result.load_balancers_deleted),
            "security_groups_deleted": len(result.security_groups_deleted),
        },
    )
    return result

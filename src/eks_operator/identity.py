"""IAM roles for the EKS control plane and worker nodes."""

from __future__ import annotations

import json
import logging

from botocore.exceptions import ClientError

from .clients import aws_call, is_not_found
from .context import ReconcileContext
from .discovery import discover_iam_roles
from .state import IAMRoles
from .status import StatusLevel
from .tags import ResourceType, cluster_role_name, node_role_name, to_tag_list

logger = logging.getLogger(__name__)

CLUSTER_ROLE_POLICIES = (
    "arn:aws:iam::aws:policy/AmazonEKSClusterPolicy",
    "arn:aws:iam::aws:policy/AmazonEKSVPCResourceController",
)

NODE_ROLE_POLICIES = (
    "arn:aws:iam::aws:policy/AmazonEKSWorkerNodePolicy",
    "arn:aws:iam::aws:policy/AmazonEKS_CNI_Policy",
    "arn:aws:iam::aws:policy/AmazonEC2ContainerRegistryReadOnly",
)


def trust_policy(service: str) -> str:
    """AssumeRole policy document allowing the given AWS service principal."""
    return json.dumps(
        {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Effect": "Allow",
                    "Principal": {"Service": service},
                    "Action": "sts:AssumeRole",
                }
            ],
        }
    )


async def ensure_iam_roles(ctx: ReconcileContext) -> IAMRoles:
    """Return the cluster and node roles, creating whichever is missing."""
    roles = await discover_iam_roles(ctx) or IAMRoles()

    if roles.cluster_role_arn is None:
        roles.cluster_role_name = cluster_role_name(ctx.cluster_name)
        roles.cluster_role_arn = await create_role(
            ctx,
            roles.cluster_role_name,
            service="eks.amazonaws.com",
            policies=CLUSTER_ROLE_POLICIES,
            resource_type=ResourceType.IAM_CLUSTER_ROLE,
        )

    if roles.node_role_arn is None:
        roles.node_role_name = node_role_name(ctx.cluster_name)
        roles.node_role_arn = await create_role(
            ctx,
            roles.node_role_name,
            service="ec2.amazonaws.com",
            policies=NODE_ROLE_POLICIES,
            resource_type=ResourceType.IAM_NODE_ROLE,
        )

    return roles


async def create_role(
    ctx: ReconcileContext,
    role_name: str,
    *,
    service: str,
    policies: tuple[str, ...],
    resource_type: ResourceType,
) -> str:
    """Create a role trusted by service and attach the managed policies. Returns its ARN."""
    iam = ctx.clients.iam
    response = await aws_call(
        iam.create_role,
        RoleName=role_name,
        AssumeRolePolicyDocument=trust_policy(service),
        Description=f"{resource_type.value} for EKS cluster {ctx.cluster_name}",
        Tags=to_tag_list(ctx.tags(resource_type)),
    )
    role_arn = response["Role"]["Arn"]

    for policy_arn in policies:
        await aws_call(iam.attach_role_policy, RoleName=role_name, PolicyArn=policy_arn)

    logger.info("Created IAM role", extra={"role_name": role_name, "policies": len(policies)})
    ctx.report(
        StatusLevel.SUCCESS,
        f"IAM role {role_name} created",
        resource="iam-role",
        action="created",
        role_arn=role_arn,
    )
    return role_arn


async def delete_iam_roles(ctx: ReconcileContext) -> None:
    """Delete the cluster and node roles if they exist."""
    roles = await discover_iam_roles(ctx)
    if roles is None:
        return
    for role_name in (roles.cluster_role_name, roles.node_role_name):
        if role_name:
            await delete_role(ctx, role_name)


async def delete_role(ctx: ReconcileContext, role_name: str) -> None:
    """Detach managed policies, drop inline policies, then delete the role."""
    iam = ctx.clients.iam

    response = await aws_call(iam.list_attached_role_policies, RoleName=role_name)
    for policy in response.get("AttachedPolicies", []):
        await aws_call(iam.detach_role_policy, RoleName=role_name, PolicyArn=policy["PolicyArn"])

    response = await aws_call(iam.list_role_policies, RoleName=role_name)
    for policy_name in response.get("PolicyNames", []):
        await aws_call(iam.delete_role_policy, RoleName=role_name, PolicyName=policy_name)

    try:
        await aws_call(iam.delete_role, RoleName=role_name)
    except ClientError as e:
        if not is_not_found(e, "NoSuchEntity"):
            raise

    ctx.report(StatusLevel.SUCCESS, f"IAM role {role_name} deleted", resource="iam-role", action="deleted")

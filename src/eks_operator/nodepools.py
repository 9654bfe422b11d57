"""Concurrent node pool orchestration.

A pass runs three waves, each one task per pool, each wave finishing
before the next starts:

    1. create pools that are desired but absent
    2. update pools that are desired and present
    3. delete orphans (owned groups no longer desired)

A failing task never cancels its siblings. Every task records its own
outcome into a lock-guarded accumulator, and any failure across the three
waves is reported at the end as one NodePoolReconcileError.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from botocore.exceptions import ClientError

from .clients import aws_call, is_not_found
from .context import ReconcileContext
from .discovery import node_pool_state_from_api
from .errors import (
    ImmutableFieldError,
    NodePoolReconcileError,
    OperationCancelledError,
    ProvisioningError,
)
from .models import AWSSpec, NodeGroupSpec
from .state import IAMRoles, NetworkState, NodePoolState, NodePoolStatus, Taint
from .status import StatusLevel
from .tags import TAG_NODE_POOL, ResourceType, node_group_name
from .waiter import wait_until

logger = logging.getLogger(__name__)

NODE_GROUP_LABEL = "node-group"


# =============================================================================
# Planning
# =============================================================================


@dataclass
class NodePoolPlan:
    """Partition of desired and actual pools into waves.

    to_create and to_update are keyed by configured pool name; orphans are
    existing groups whose pool is no longer desired. Owned groups without a
    node-pool tag are listed in unmanaged and left alone.
    """

    to_create: dict[str, NodeGroupSpec] = field(default_factory=dict)
    to_update: dict[str, tuple[NodeGroupSpec, NodePoolState]] = field(default_factory=dict)
    orphans: list[NodePoolState] = field(default_factory=list)
    unmanaged: list[NodePoolState] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.to_create or self.to_update or self.orphans)


def plan_node_pools(
    desired: dict[str, NodeGroupSpec],
    actual: Iterable[NodePoolState],
) -> NodePoolPlan:
    """Decide which pools to create, update and delete. Pure function."""
    plan = NodePoolPlan()
    by_pool: dict[str, NodePoolState] = {}

    for pool in actual:
        pool_name = pool.node_pool_name
        if pool_name is None:
            plan.unmanaged.append(pool)
            continue
        by_pool[pool_name] = pool

    for pool_name, spec in desired.items():
        existing = by_pool.get(pool_name)
        if existing is None:
            plan.to_create[pool_name] = spec
        else:
            plan.to_update[pool_name] = (spec, existing)

    plan.orphans = [pool for name, pool in sorted(by_pool.items()) if name not in desired]
    return plan


# =============================================================================
# Diffing
# =============================================================================


def desired_labels(pool_name: str, spec: NodeGroupSpec) -> dict[str, str]:
    """User labels plus the two labels every managed pool carries."""
    labels = dict(spec.labels)
    labels[NODE_GROUP_LABEL] = pool_name
    labels[TAG_NODE_POOL] = pool_name
    return labels


def diff_labels(desired: dict[str, str], actual: dict[str, str]) -> tuple[dict[str, str], list[str]]:
    """Labels to add or change, and label keys to remove."""
    to_set = {key: value for key, value in desired.items() if actual.get(key) != value}
    to_remove = sorted(key for key in actual if key not in desired)
    return to_set, to_remove


def diff_taints(desired: list[Taint], actual: list[Taint]) -> tuple[list[Taint], list[Taint]]:
    """Taints to add and taints to remove, compared as multisets.

    Order never matters; duplicates count.
    """
    wanted = Counter(desired)
    present = Counter(actual)
    to_add = sorted((wanted - present).elements(), key=_taint_sort_key)
    to_remove = sorted((present - wanted).elements(), key=_taint_sort_key)
    return to_add, to_remove


def _taint_sort_key(taint: Taint) -> tuple[str, str, str]:
    return taint.key, taint.value, taint.effect.value


def check_immutable_fields(pool_name: str, spec: NodeGroupSpec, actual: NodePoolState) -> None:
    """Raise ImmutableFieldError if instance, AMI or capacity type would change."""
    resource = f"node pool {pool_name}"
    remedy = "destroy and recreate node group"

    if actual.instance_type and actual.instance_type != spec.instance:
        raise ImmutableFieldError(resource, "instance type", actual.instance_type, spec.instance, remedy)
    if actual.ami_type != spec.resolved_ami_type:
        raise ImmutableFieldError(resource, "AMI type", actual.ami_type, spec.resolved_ami_type, remedy)
    if actual.capacity_type != spec.capacity_type:
        raise ImmutableFieldError(
            resource, "capacity type (Spot)", actual.capacity_type, spec.capacity_type, remedy
        )


def build_node_pool_update(
    pool_name: str,
    spec: NodeGroupSpec,
    actual: NodePoolState,
) -> dict[str, Any]:
    """UpdateNodegroupConfig fields for every mutable difference. Empty when in sync.

    Desired size is never touched so the cluster autoscaler keeps control.
    """
    request: dict[str, Any] = {}

    if actual.scaling.min_size != spec.resolved_min or actual.scaling.max_size != spec.resolved_max:
        request["scalingConfig"] = {"minSize": spec.resolved_min, "maxSize": spec.resolved_max}

    to_set, to_remove = diff_labels(desired_labels(pool_name, spec), actual.labels)
    if to_set or to_remove:
        labels: dict[str, Any] = {}
        if to_set:
            labels["addOrUpdateLabels"] = to_set
        if to_remove:
            labels["removeLabels"] = to_remove
        request["labels"] = labels

    to_add, to_drop = diff_taints(spec.resolved_taints(), actual.taints)
    if to_add or to_drop:
        taints: dict[str, Any] = {}
        if to_add:
            taints["addOrUpdateTaints"] = [taint.to_eks() for taint in to_add]
        if to_drop:
            taints["removeTaints"] = [taint.to_eks() for taint in to_drop]
        request["taints"] = taints

    return request


# =============================================================================
# Single-pool operations
# =============================================================================


async def create_node_pool(
    ctx: ReconcileContext,
    pool_name: str,
    spec: NodeGroupSpec,
    network: NetworkState,
    roles: IAMRoles,
) -> NodePoolState:
    """Create a managed node group in the private subnets and wait until ACTIVE."""
    if not roles.node_role_arn:
        raise ProvisioningError(f"node role for {ctx.cluster_name} has no ARN")

    group_name = node_group_name(ctx.cluster_name, pool_name)
    request: dict[str, Any] = {
        "clusterName": ctx.cluster_name,
        "nodegroupName": group_name,
        "scalingConfig": {
            "minSize": spec.resolved_min,
            "maxSize": spec.resolved_max,
            "desiredSize": spec.resolved_min,
        },
        "instanceTypes": [spec.instance],
        "amiType": spec.resolved_ami_type,
        "capacityType": spec.capacity_type,
        "diskSize": spec.resolved_disk_size,
        "subnets": network.private_subnet_ids,
        "nodeRole": roles.node_role_arn,
        "labels": desired_labels(pool_name, spec),
        "tags": ctx.tags(ResourceType.NODE_POOL, node_pool=pool_name),
    }
    taints = spec.resolved_taints()
    if taints:
        request["taints"] = [taint.to_eks() for taint in taints]

    ctx.report(
        StatusLevel.PROGRESS,
        f"Creating node pool {pool_name}",
        resource="node-pool",
        action="creating",
        node_pool=pool_name,
        instance_type=spec.instance,
    )
    ctx.check_cancelled()
    await aws_call(ctx.clients.eks.create_nodegroup, **request)

    state = await wait_for_node_pool_active(ctx, group_name)
    ctx.report(
        StatusLevel.SUCCESS,
        f"Node pool {pool_name} created",
        resource="node-pool",
        action="created",
        node_pool=pool_name,
    )
    return state


async def update_node_pool(
    ctx: ReconcileContext,
    pool_name: str,
    spec: NodeGroupSpec,
    actual: NodePoolState,
) -> bool:
    """Bring an existing pool in line with its spec.

    Returns:
        True if an update was applied, False if already in sync.

    Raises:
        ImmutableFieldError: Before any API call, if an immutable field differs.
    """
    check_immutable_fields(pool_name, spec, actual)

    request = build_node_pool_update(pool_name, spec, actual)
    if not request:
        return False

    logger.info(
        "Updating node pool",
        extra={"node_pool": pool_name, "node_group": actual.name, "fields": sorted(request)},
    )
    ctx.report(
        StatusLevel.PROGRESS,
        f"Updating node pool {pool_name}",
        resource="node-pool",
        action="updating",
        node_pool=pool_name,
    )
    ctx.check_cancelled()
    await aws_call(
        ctx.clients.eks.update_nodegroup_config,
        clusterName=ctx.cluster_name,
        nodegroupName=actual.name,
        **request,
    )
    await wait_for_node_pool_active(ctx, actual.name)
    ctx.report(
        StatusLevel.SUCCESS,
        f"Node pool {pool_name} updated",
        resource="node-pool",
        action="updated",
        node_pool=pool_name,
    )
    return True


async def delete_node_pool(ctx: ReconcileContext, group_name: str) -> None:
    """Delete a node group and wait until it no longer exists."""
    eks = ctx.clients.eks
    ctx.report(
        StatusLevel.PROGRESS,
        f"Deleting node group {group_name}",
        resource="node-pool",
        action="deleting",
        node_group=group_name,
    )
    ctx.check_cancelled()
    try:
        await aws_call(eks.delete_nodegroup, clusterName=ctx.cluster_name, nodegroupName=group_name)
    except ClientError as e:
        if is_not_found(e, "ResourceNotFoundException"):
            return
        raise

    async def gone() -> bool:
        try:
            response = await aws_call(
                eks.describe_nodegroup, clusterName=ctx.cluster_name, nodegroupName=group_name
            )
        except ClientError as e:
            if is_not_found(e, "ResourceNotFoundException"):
                return True
            raise
        if response["nodegroup"].get("status") == NodePoolStatus.DELETE_FAILED.value:
            raise ProvisioningError(f"node group {group_name} failed to delete")
        return False

    await wait_until(
        ctx,
        gone,
        description=f"node group {group_name} to be deleted",
        timeout=ctx.timeouts.node_pool,
    )
    ctx.report(
        StatusLevel.SUCCESS,
        f"Node group {group_name} deleted",
        resource="node-pool",
        action="deleted",
        node_group=group_name,
    )


async def wait_for_node_pool_active(ctx: ReconcileContext, group_name: str) -> NodePoolState:
    latest: list[NodePoolState] = []

    async def active() -> bool:
        response = await aws_call(
            ctx.clients.eks.describe_nodegroup,
            clusterName=ctx.cluster_name,
            nodegroupName=group_name,
        )
        state = node_pool_state_from_api(response["nodegroup"])
        if state.status == NodePoolStatus.CREATE_FAILED.value:
            issues = "; ".join(state.health_issues) or "no health issues reported"
            raise ProvisioningError(f"node group {group_name} failed to create: {issues}")
        latest[:] = [state]
        return state.status == NodePoolStatus.ACTIVE.value

    await wait_until(
        ctx,
        active,
        description=f"node group {group_name} to be ACTIVE",
        timeout=ctx.timeouts.node_pool,
    )
    return latest[0]


# =============================================================================
# Waves
# =============================================================================


@dataclass
class NodePoolWaveResult:
    """Outcome of one wave. Mutated only through the async record methods."""

    succeeded: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    failures: dict[str, BaseException] = field(default_factory=dict)
    cancelled: list[str] = field(default_factory=list)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    async def record_success(self, name: str) -> None:
        async with self._lock:
            self.succeeded.append(name)

    async def record_unchanged(self, name: str) -> None:
        async with self._lock:
            self.unchanged.append(name)

    async def record_failure(self, name: str, error: BaseException) -> None:
        async with self._lock:
            self.failures[name] = error

    async def record_cancelled(self, name: str) -> None:
        async with self._lock:
            self.cancelled.append(name)


async def run_wave(
    ctx: ReconcileContext,
    wave: str,
    names: list[str],
    action: Callable[[str], Awaitable[Any]],
    result: NodePoolWaveResult | None = None,
) -> NodePoolWaveResult:
    """Run action(name) concurrently for every name, capturing each outcome.

    Cancellation is not a per-pool failure: every task is allowed to finish
    and OperationCancelledError is raised once the wave has drained.

    Raises:
        OperationCancelledError: If the pass was cancelled before or during the wave.
    """
    ctx.check_cancelled()
    if result is None:
        result = NodePoolWaveResult()
    if not names:
        return result

    async def run_one(name: str) -> None:
        try:
            ctx.check_cancelled()
            await action(name)
        except OperationCancelledError:
            await result.record_cancelled(name)
        except Exception as e:
            logger.error(
                "Node pool operation failed",
                extra={"wave": wave, "node_pool": name, "error": str(e)},
            )
            ctx.report(
                StatusLevel.ERROR,
                f"Failed to {wave} node pool {name}: {e}",
                resource="node-pool",
                action="failed",
                node_pool=name,
            )
            await result.record_failure(name, e)
        else:
            await result.record_success(name)

    await asyncio.gather(*(run_one(name) for name in names))

    if result.cancelled:
        logger.warning(
            "Node pool wave cancelled",
            extra={"wave": wave, "cancelled": sorted(result.cancelled)},
        )
    ctx.check_cancelled()
    return result

    async def run_one(name: str) -> None:
        try:
            await action(name)
        except Exception as e:
            logger.error(
                "Node pool operation failed",
                extra={"wave": wave, "node_pool": name, "error": str(e)},
            )
            ctx.report(
                StatusLevel.ERROR,
                f"Failed to {wave} node pool {name}: {e}",
                resource="node-pool",
                action="failed",
                node_pool=name,
            )
            await result.record_failure(name, e)
        else:
            await result.record_success(name)

    await asyncio.gather(*(run_one(name) for name in names))
    return result


@dataclass
class NodePoolReconcileResult:
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)

    @property
    def counts(self) -> dict[str, int]:
        return {
            "created": len(self.created),
            "updated": len(self.updated),
            "deleted": len(self.deleted),
            "unchanged": len(self.unchanged),
        }


async def reconcile_node_pools(
    ctx: ReconcileContext,
    spec: AWSSpec,
    network: NetworkState,
    roles: IAMRoles,
    actual: list[NodePoolState],
) -> NodePoolReconcileResult:
    """Run the create, update and orphan-delete waves.

    Raises:
        NodePoolReconcileError: If any task in any wave failed.
        OperationCancelledError: If the pass was cancelled; later waves do not start.
    """
    plan = plan_node_pools(spec.node_groups, actual)
    for pool in plan.unmanaged:
        logger.warning(
            "Skipping node group without node-pool tag",
            extra={"node_group": pool.name, "cluster_name": ctx.cluster_name},
        )

    ctx.report(
        StatusLevel.INFO,
        "Reconciling node pools",
        resource="node-pools",
        action="reconciling",
        to_create=len(plan.to_create),
        to_update=len(plan.to_update),
        to_delete=len(plan.orphans),
    )

    async def create(name: str) -> None:
        await create_node_pool(ctx, name, plan.to_create[name], network, roles)

    updated = NodePoolWaveResult()

    async def update(name: str) -> None:
        pool_spec, existing = plan.to_update[name]
        if not await update_node_pool(ctx, name, pool_spec, existing):
            await updated.record_unchanged(name)

    orphans = {pool.name: pool for pool in plan.orphans}

    async def delete(name: str) -> None:
        await delete_node_pool(ctx, orphans[name].name)

    created = await run_wave(ctx, "create", sorted(plan.to_create), create)
    await run_wave(ctx, "update", sorted(plan.to_update), update, updated)
    deleted = await run_wave(ctx, "delete", sorted(orphans), delete)

    if created.failures or updated.failures or deleted.failures:
        raise NodePoolReconcileError(created.failures, updated.failures, deleted.failures)

    result = NodePoolReconcileResult(
        created=sorted(created.succeeded),
        updated=sorted(name for name in updated.succeeded if name not in updated.unchanged),
        deleted=sorted(deleted.succeeded),
        unchanged=sorted(updated.unchanged),
    )
    ctx.report(
        StatusLevel.SUCCESS,
        "Node pools reconciled",
        resource="node-pools",
        action="reconciled",
        **result.counts,
    )
    return result


async def delete_all_node_pools(ctx: ReconcileContext, pools: list[NodePoolState]) -> list[str]:
    """Teardown wave: delete every owned node group concurrently.

    Raises:
        NodePoolReconcileError: If any deletion failed.
    """
    by_name = {pool.name: pool for pool in pools}
    result = await run_wave(
        ctx, "delete", sorted(by_name), lambda name: delete_node_pool(ctx, name)
    )
    if result.failures:
        raise NodePoolReconcileError({}, {}, result.failures)
    return sorted(result.succeeded)

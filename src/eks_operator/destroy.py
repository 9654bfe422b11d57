"""Full teardown of a cluster's infrastructure, most dependent resources first.

Order: node pools, Kubernetes load balancers, EKS cluster, EFS, VPC,
IAM roles, orphaned Elastic IPs.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from .cluster import delete_cluster
from .context import ReconcileContext
from .discovery import discover_cluster, discover_network, discover_node_pools, discover_storage
from .errors import OperationCancelledError
from .identity import delete_iam_roles
from .models import AWSSpec
from .network import delete_network, release_orphaned_eips
from .nodepools import delete_all_node_pools
from .status import StatusLevel
from .storage import delete_storage
from .teardown import cleanup_load_balancers

logger = logging.getLogger(__name__)


@dataclass
class DestroyResult:
    """Outcome of a teardown. warnings holds step errors tolerated under force."""

    completed_steps: list[str] = field(default_factory=list)
    warnings: dict[str, str] = field(default_factory=dict)

    @property
    def clean(self) -> bool:
        return not self.warnings


async def destroy_infrastructure(
    ctx: ReconcileContext,
    spec: AWSSpec,
    force: bool = False,
) -> DestroyResult:
    """Delete everything owned by the cluster.

    Without force the first failing step raises and teardown stops. With
    force, failures are reported as warnings and teardown continues.
    Cancellation always stops teardown.
    """
    result = DestroyResult()

    async def step(name: str, action: Callable[[], Awaitable[object]]) -> None:
        ctx.check_cancelled()
        try:
            await action()
        except OperationCancelledError:
            raise
        except Exception as e:
            if not force:
                logger.error("Teardown step failed", extra={"step": name, "error": str(e)})
                raise
            logger.warning(
                "Teardown step failed, continuing (force)",
                extra={"step": name, "error": str(e)},
            )
            ctx.report(
                StatusLevel.WARNING,
                f"{name} failed, continuing: {e}",
                resource=name,
                action="failed",
            )
            result.warnings[name] = str(e)
            return
        result.completed_steps.append(name)

    async def node_pools() -> None:
        pools = await discover_node_pools(ctx)
        if pools:
            await delete_all_node_pools(ctx, pools)

    async def eks_cluster() -> None:
        cluster = await discover_cluster(ctx)
        if cluster is not None:
            await delete_cluster(ctx, cluster.name)

    async def efs() -> None:
        storage = await discover_storage(ctx)
        if storage is not None:
            await delete_storage(ctx, storage)

    async def vpc() -> None:
        if spec.uses_existing_network:
            return
        network = await discover_network(ctx)
        if network is not None:
            await delete_network(ctx, network)

    ctx.report(StatusLevel.PROGRESS, "Destroying infrastructure", resource="cluster", action="destroying")

    await step("node-pools", node_pools)
    await step("load-balancers", lambda: cleanup_load_balancers(ctx))
    await step("eks-cluster", eks_cluster)
    await step("efs", efs)
    await step("vpc", vpc)
    await step("iam-roles", lambda: delete_iam_roles(ctx))
    await step("elastic-ips", lambda: release_orphaned_eips(ctx))

    if result.clean:
        ctx.report(StatusLevel.SUCCESS, "Infrastructure destroyed", resource="cluster", action="destroyed")
    else:
        ctx.report(
            StatusLevel.WARNING,
            f"Infrastructure destroyed with {len(result.warnings)} warning(s)",
            resource="cluster",
            action="destroyed",
        )
    return result

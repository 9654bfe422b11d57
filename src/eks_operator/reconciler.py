"""Core reconciliation loop for one EKS cluster.

Each pass:
1. Discover every owned resource by tag
2. Ensure IAM roles
3. Reconcile the VPC
4. Reconcile the EKS control plane
5. Run the node pool waves (create, update, delete orphans)
6. Reconcile EFS when enabled

Passes repeat on an interval until shutdown. A circuit breaker pauses the
loop after repeated failures so a persistent error does not hammer the
AWS APIs.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from .clients import AWSClients, create_aws_clients
from .cluster import reconcile_cluster
from .config import CIRCUIT_BREAKER_RESET_SECONDS, MAX_CONSECUTIVE_FAILURES, Config
from .context import ReconcileContext
from .destroy import DestroyResult, destroy_infrastructure
from .discovery import discover_all
from .identity import ensure_iam_roles
from .models import ClusterSpec
from .network import reconcile_network
from .nodepools import reconcile_node_pools
from .status import LoggingStatusSink, StatusLevel, StatusSink
from .storage import reconcile_storage

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Result of a single reconciliation pass."""

    cluster_name: str
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    vpc_id: str | None = None
    cluster_status: str | None = None
    node_pools: dict[str, int] = field(default_factory=dict)
    efs_id: str | None = None
    error: Exception | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """Check if reconciliation succeeded."""
        return self.error is None


class Reconciler:
    """Drives reconciliation passes and teardown for one cluster spec.

    The reconciler owns the single cancellation event shared by every
    wait and retry inside a pass; shutdown() sets it so in-flight waits
    return promptly.
    """

    def __init__(
        self,
        config: Config,
        spec: ClusterSpec,
        clients: AWSClients | None = None,
        status: StatusSink | None = None,
    ) -> None:
        """Initialize reconciler.

        Args:
            config: Validated operator configuration.
            spec: Validated cluster configuration.
            clients: AWS clients; built from the resolved region when omitted.
            status: Sink for progress updates; defaults to the log stream.
        """
        self._config = config
        self._spec = spec
        self._region = config.region_override or spec.aws.region
        self._clients = clients or create_aws_clients(self._region, config.aws_profile)
        self._shutdown_event = asyncio.Event()

        self._ctx = ReconcileContext(
            cluster_name=spec.cluster_name,
            region=self._region,
            clients=self._clients,
            status=status or LoggingStatusSink(),
            cancel=self._shutdown_event,
            timeouts=config.timeouts,
            user_tags=dict(spec.aws.tags),
        )

        # Circuit breaker state
        self._consecutive_failures = 0
        self._circuit_open_until: datetime | None = None

    @property
    def config(self) -> Config:
        """Get the reconciler configuration."""
        return self._config

    @property
    def context(self) -> ReconcileContext:
        return self._ctx

    async def reconcile_once(self) -> ReconcileResult:
        """Run one full pass. Errors are captured on the result, never raised."""
        ctx = self._ctx
        aws = self._spec.aws
        result = ReconcileResult(cluster_name=ctx.cluster_name)

        try:
            actual = await discover_all(ctx)
            logger.info("Discovered infrastructure", extra=actual.summary())

            roles = await ensure_iam_roles(ctx)
            network = await reconcile_network(ctx, aws, actual.network)
            result.vpc_id = network.vpc_id

            cluster = await reconcile_cluster(ctx, aws, network, roles, actual.cluster)
            result.cluster_status = cluster.status.value

            pools = await reconcile_node_pools(ctx, aws, network, roles, actual.node_pools)
            result.node_pools = pools.counts

            if aws.efs_enabled and aws.efs is not None:
                storage = await reconcile_storage(ctx, aws.efs, network, actual.storage)
                result.efs_id = storage.file_system_id

        except Exception as e:
            result.error = e
            logger.error(
                "Reconciliation failed",
                extra={
                    "cluster_name": ctx.cluster_name,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            ctx.report(StatusLevel.ERROR, f"Reconciliation failed: {e}", resource="cluster", action="failed")

        finally:
            result.end_time = datetime.now(UTC)

        return result

    async def destroy(self, force: bool | None = None) -> DestroyResult:
        """Tear down every owned resource. force defaults to the configured value."""
        use_force = self._config.destroy_force if force is None else force
        logger.info(
            "Destroying cluster infrastructure",
            extra={"cluster_name": self._ctx.cluster_name, "force": use_force},
        )
        return await destroy_infrastructure(self._ctx, self._spec.aws, force=use_force)

    async def run(self) -> None:
        """Run the reconciliation loop until shutdown.

        Implements circuit breaker pattern: after MAX_CONSECUTIVE_FAILURES,
        the circuit opens and reconciliation pauses for CIRCUIT_BREAKER_RESET_SECONDS.
        """
        logger.info(
            "Starting reconciler",
            extra={
                "cluster_name": self._ctx.cluster_name,
                "region": self._region,
                "interval_seconds": self._config.reconcile_interval_seconds,
            },
        )

        while not self._shutdown_event.is_set():
            # Circuit breaker check
            if self._circuit_open_until is not None:
                now = datetime.now(UTC)
                if now < self._circuit_open_until:
                    remaining = (self._circuit_open_until - now).total_seconds()
                    logger.warning(
                        "Circuit breaker open, skipping reconciliation",
                        extra={
                            "cluster_name": self._ctx.cluster_name,
                            "remaining_seconds": remaining,
                            "consecutive_failures": self._consecutive_failures,
                        },
                    )
                    await self._wait(min(remaining, self._config.reconcile_interval_seconds))
                    continue

                logger.info(
                    "Circuit breaker reset, resuming reconciliation",
                    extra={"cluster_name": self._ctx.cluster_name},
                )
                self._circuit_open_until = None
                self._consecutive_failures = 0

            result = await self.reconcile_once()
            self._log_result(result)
            self._record_outcome(result)

            await self._wait(self._config.reconcile_interval_seconds)

        logger.info("Reconciler shutdown complete", extra={"cluster_name": self._ctx.cluster_name})

    def shutdown(self) -> None:
        """Signal the reconciler to stop and cancel in-flight waits."""
        logger.info("Shutdown requested", extra={"cluster_name": self._ctx.cluster_name})
        self._shutdown_event.set()

    def _record_outcome(self, result: ReconcileResult) -> None:
        if result.error is None:
            self._consecutive_failures = 0
            return

        self._consecutive_failures += 1
        if self._consecutive_failures >= MAX_CONSECUTIVE_FAILURES:
            self._circuit_open_until = datetime.now(UTC) + timedelta(
                seconds=CIRCUIT_BREAKER_RESET_SECONDS
            )
            logger.error(
                "Circuit breaker opened after consecutive failures",
                extra={
                    "cluster_name": self._ctx.cluster_name,
                    "consecutive_failures": self._consecutive_failures,
                    "reset_seconds": CIRCUIT_BREAKER_RESET_SECONDS,
                },
            )

    async def _wait(self, seconds: float) -> None:
        """Wait for the next cycle or shutdown, whichever comes first."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
        except TimeoutError:
            # Normal timeout, continue to next cycle
            pass

    def _log_result(self, result: ReconcileResult) -> None:
        extra = {
            "cluster_name": result.cluster_name,
            "duration_seconds": result.duration_seconds,
            "vpc_id": result.vpc_id,
            "cluster_status": result.cluster_status,
            "node_pools": result.node_pools,
            "efs_id": result.efs_id,
        }
        if result.success:
            logger.info("Reconciliation completed", extra=extra)
        else:
            logger.warning("Reconciliation completed with error", extra={**extra, "error": str(result.error)})

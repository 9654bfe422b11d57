"""AWS mock bundle for integration testing.

Wires the per-service mocks together and, when used as a context manager,
patches the boto3 client factory so code that builds its own clients
(the Reconciler, the CLI) talks to the mocks instead.
"""

from __future__ import annotations

import asyncio
from typing import Any
from unittest import mock

from eks_operator.clients import AWSClients
from eks_operator.config import Timeouts
from eks_operator.context import ReconcileContext
from eks_operator.status import RecordingStatusSink

from .ec2 import MockEC2
from .efs import MockEFS
from .eks import MockEKS
from .elb import MockELB
from .iam import MockIAM

# Millisecond polls and a low retry limit keep waits out of test runtime
FAST_TIMEOUTS = Timeouts(
    cluster_create=2,
    cluster_update=2,
    cluster_delete=2,
    node_pool=2,
    nat_gateway=2,
    vpc_endpoint=2,
    efs=2,
    poll_interval=0.001,
    endpoint_poll_interval=0.001,
    sg_delete_attempts=3,
    sg_delete_interval=0.001,
)

_FACTORY_TARGETS = ("eks_operator.reconciler.create_aws_clients",)


class MockAWS:
    """In-memory EC2, EKS, IAM, EFS and ELB sharing one world.

    Usage:
        aws = MockAWS()
        ctx = aws.context()
        network = await reconcile_network(ctx, spec.aws, None)
        assert aws.ec2.vpcs

        with MockAWS() as aws:
            # Reconciler(config, spec) now gets the mock clients
            ...
    """

    def __init__(self, availability_zones: tuple[str, ...] = ("us-west-2a", "us-west-2b", "us-west-2c")) -> None:
        self.ec2 = MockEC2(availability_zones)
        self.eks = MockEKS(self.ec2)
        self.iam = MockIAM()
        self.efs = MockEFS(self.ec2)
        self.elb = MockELB()
        self._patches: list[Any] = []

    @property
    def services(self) -> tuple[MockEC2, MockEKS, MockIAM, MockEFS, MockELB]:
        return self.ec2, self.eks, self.iam, self.efs, self.elb

    @property
    def clients(self) -> AWSClients:
        return AWSClients(ec2=self.ec2, eks=self.eks, iam=self.iam, efs=self.efs, elb=self.elb)

    def context(
        self,
        cluster_name: str = "demo",
        *,
        region: str = "us-west-2",
        status: Any = None,
        cancel: asyncio.Event | None = None,
        timeouts: Timeouts = FAST_TIMEOUTS,
        user_tags: dict[str, str] | None = None,
    ) -> ReconcileContext:
        """A ReconcileContext wired to these mocks with a recording sink."""
        return ReconcileContext(
            cluster_name=cluster_name,
            region=region,
            clients=self.clients,
            status=status if status is not None else RecordingStatusSink(),
            cancel=cancel if cancel is not None else asyncio.Event(),
            timeouts=timeouts,
            user_tags=dict(user_tags or {}),
        )

    def mutation_calls(self) -> list[str]:
        """Every state-changing call across all services, as service.method."""
        names: list[str] = []
        for service in self.services:
            prefix = type(service).__name__.removeprefix("Mock").lower()
            names.extend(f"{prefix}.{name}" for name in service.mutation_calls())
        return names

    def reset_calls(self) -> None:
        for service in self.services:
            service.reset_calls()

    def __enter__(self) -> MockAWS:
        for target in _FACTORY_TARGETS:
            patcher = mock.patch(target, return_value=self.clients)
            patcher.start()
            self._patches.append(patcher)
        return self

    def __exit__(self, *args: Any) -> None:
        for patcher in reversed(self._patches):
            patcher.stop()
        self._patches.clear()

"""Tests for full infrastructure teardown."""

import asyncio
from pathlib import Path
from typing import Any

import pytest
from aws_mock import FAST_TIMEOUTS, MockAWS
from botocore.exceptions import ClientError

from eks_operator.config import Config
from eks_operator.destroy import destroy_infrastructure
from eks_operator.errors import OperationCancelledError
from eks_operator.reconciler import Reconciler
from eks_operator.spec_loader import parse_cluster_spec
from eks_operator.status import RecordingStatusSink
from eks_operator.tags import ResourceType, ec2_tag_specification, generate_tags

STEPS = ["node-pools", "load-balancers", "eks-cluster", "efs", "vpc", "iam-roles", "elastic-ips"]


async def build(aws: MockAWS, config_file: Path, document: dict[str, Any]) -> Reconciler:
    """Reconcile the document once so there is something to tear down."""
    config = Config(cluster_config_path=config_file, timeouts=FAST_TIMEOUTS)
    reconciler = Reconciler(config, parse_cluster_spec(document), clients=aws.clients, status=RecordingStatusSink())
    result = await reconciler.reconcile_once()
    assert result.success, result.error
    aws.reset_calls()
    return reconciler


class TestDestroyInfrastructure:
    """Tests for destroy_infrastructure."""

    @pytest.mark.asyncio
    async def test_removes_everything(self, cluster_config_file: Path, cluster_document: dict[str, Any]) -> None:
        """Test that a full teardown leaves no owned resources behind."""
        aws = MockAWS()
        reconciler = await build(aws, cluster_config_file, cluster_document)

        result = await reconciler.destroy()

        assert result.clean
        assert result.completed_steps == STEPS
        assert aws.eks.clusters == {}
        assert aws.efs.file_systems == {}
        assert aws.ec2.vpcs == {}
        assert all(nat["State"] == "deleted" for nat in aws.ec2.nat_gateways.values())
        assert aws.ec2.addresses == {}
        assert aws.iam.roles == {}

    @pytest.mark.asyncio
    async def test_dependency_order(self, cluster_config_file: Path, cluster_document: dict[str, Any]) -> None:
        """Test that dependents are deleted before what they depend on."""
        aws = MockAWS()
        reconciler = await build(aws, cluster_config_file, cluster_document)

        await reconciler.destroy()

        calls = aws.mutation_calls()
        last_nodegroup = max(i for i, name in enumerate(calls) if name == "eks.delete_nodegroup")
        assert last_nodegroup < calls.index("eks.delete_cluster")
        assert calls.index("eks.delete_cluster") < calls.index("efs.delete_file_system")
        assert calls.index("efs.delete_file_system") < calls.index("ec2.delete_vpc")
        assert calls.index("ec2.delete_vpc") < calls.index("iam.delete_role")

    @pytest.mark.asyncio
    async def test_nothing_to_destroy(self, cluster_config_file: Path, cluster_document: dict[str, Any]) -> None:
        aws = MockAWS()

        result = await destroy_infrastructure(aws.context(), parse_cluster_spec(cluster_document).aws)

        assert result.completed_steps == STEPS
        assert aws.mutation_calls() == []

    @pytest.mark.asyncio
    async def test_failure_stops_without_force(
        self, cluster_config_file: Path, cluster_document: dict[str, Any]
    ) -> None:
        """Test that without force the first failing step raises and nothing later runs."""
        aws = MockAWS()
        reconciler = await build(aws, cluster_config_file, cluster_document)
        aws.eks.fail("delete_cluster", "AccessDeniedException")

        with pytest.raises(ClientError):
            await reconciler.destroy(force=False)

        assert "demo" in aws.eks.clusters
        assert aws.efs.calls_to("delete_file_system") == []
        assert aws.ec2.calls_to("delete_vpc") == []

    @pytest.mark.asyncio
    async def test_force_continues_past_failures(
        self, cluster_config_file: Path, cluster_document: dict[str, Any]
    ) -> None:
        """Test that with force a failed step becomes a warning and later steps still run."""
        aws = MockAWS()
        reconciler = await build(aws, cluster_config_file, cluster_document)
        aws.eks.fail("delete_cluster", "AccessDeniedException")

        result = await reconciler.destroy(force=True)

        assert list(result.warnings) == ["eks-cluster"]
        assert "AccessDeniedException" in result.warnings["eks-cluster"]
        assert result.completed_steps == [step for step in STEPS if step != "eks-cluster"]
        assert aws.efs.file_systems == {}
        assert not result.clean

    @pytest.mark.asyncio
    async def test_cancellation_stops_even_with_force(self, cluster_document: dict[str, Any]) -> None:
        """Test that a cancelled teardown raises rather than being downgraded to a warning."""
        aws = MockAWS()
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(OperationCancelledError):
            await destroy_infrastructure(
                aws.context(cancel=cancel), parse_cluster_spec(cluster_document).aws, force=True
            )

        assert aws.mutation_calls() == []

    @pytest.mark.asyncio
    async def test_existing_network_left_alone(
        self, cluster_config_file: Path, cluster_document: dict[str, Any]
    ) -> None:
        """Test that a cluster running in an existing network never deletes the VPC."""
        aws = MockAWS()
        reconciler = await build(aws, cluster_config_file, cluster_document)
        vpc_ids = set(aws.ec2.vpcs)
        cluster_document["amazon_web_services"]["existing_subnet_ids"] = ["subnet-existing"]

        result = await destroy_infrastructure(reconciler.context, parse_cluster_spec(cluster_document).aws)

        assert "vpc" in result.completed_steps
        assert aws.ec2.calls_to("delete_vpc") == []
        assert set(aws.ec2.vpcs) == vpc_ids

    @pytest.mark.asyncio
    async def test_orphaned_eips_released(self, cluster_document: dict[str, Any]) -> None:
        aws = MockAWS()
        aws.ec2.allocate_address(
            Domain="vpc",
            TagSpecifications=ec2_tag_specification("elastic-ip", generate_tags("demo", ResourceType.ELASTIC_IP)),
        )

        await destroy_infrastructure(aws.context(), parse_cluster_spec(cluster_document).aws)

        assert aws.ec2.addresses == {}

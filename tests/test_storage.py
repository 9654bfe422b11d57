"""Tests for EFS reconciliation."""

import pytest
from aws_mock import MockAWS

from eks_operator.discovery import discover_storage
from eks_operator.errors import ImmutableFieldError, ProvisioningError
from eks_operator.models import EFSSpec
from eks_operator.state import NetworkState, StorageState
from eks_operator.storage import (
    check_storage_immutable,
    delete_storage,
    reconcile_storage,
    throughput_update,
)
from eks_operator.tags import TAG_RESOURCE_TYPE, ResourceType

NETWORK = NetworkState(
    vpc_id="vpc-1",
    cidr_block="10.10.0.0/16",
    private_subnet_ids=["subnet-a", "subnet-b", "subnet-c"],
    security_group_ids=["sg-cluster"],
)


def efs_spec(**overrides: object) -> EFSSpec:
    data: dict[str, object] = {"enabled": True}
    data.update(overrides)
    return EFSSpec.model_validate(data)


def storage_state(**overrides: object) -> StorageState:
    defaults: dict[str, object] = {
        "file_system_id": "fs-1",
        "life_cycle_state": "available",
        "performance_mode": "generalPurpose",
        "throughput_mode": "bursting",
        "encrypted": False,
    }
    defaults.update(overrides)
    return StorageState(**defaults)  # type: ignore[arg-type]


class TestImmutable:
    """Tests for check_storage_immutable."""

    def test_in_sync(self) -> None:
        check_storage_immutable(efs_spec(), storage_state())

    @pytest.mark.parametrize(
        ("spec_overrides", "state_overrides", "field"),
        [
            ({"performance_mode": "maxIO"}, {}, "performance mode"),
            ({"encrypted": True}, {}, "encryption setting"),
            (
                {"encrypted": True, "kms_key_id": "key-2"},
                {"encrypted": True, "kms_key_id": "key-1"},
                "KMS key",
            ),
        ],
    )
    def test_change_rejected(
        self, spec_overrides: dict[str, object], state_overrides: dict[str, object], field: str
    ) -> None:
        with pytest.raises(ImmutableFieldError) as exc_info:
            check_storage_immutable(efs_spec(**spec_overrides), storage_state(**state_overrides))

        assert exc_info.value.field == field
        assert "destroy and recreate EFS" in str(exc_info.value)

    def test_unset_key_accepts_default(self) -> None:
        """Test that an encrypted spec without a key accepts whatever key is in use."""
        check_storage_immutable(efs_spec(encrypted=True), storage_state(encrypted=True, kms_key_id="aws/managed"))


class TestThroughputUpdate:
    def test_in_sync(self) -> None:
        assert throughput_update(efs_spec(), storage_state()) == {}

    def test_mode_change(self) -> None:
        assert throughput_update(efs_spec(throughput_mode="elastic"), storage_state()) == {"ThroughputMode": "elastic"}

    def test_provisioned_rate_change(self) -> None:
        """Test that a new provisioned rate triggers an update even with the same mode."""
        actual = storage_state(throughput_mode="provisioned", provisioned_throughput_mibps=100.0)

        assert throughput_update(efs_spec(throughput_mode="provisioned", provisioned_mbps=200), actual) == {
            "ThroughputMode": "provisioned",
            "ProvisionedThroughputInMibps": 200.0,
        }

    def test_provisioned_in_sync(self) -> None:
        actual = storage_state(throughput_mode="provisioned", provisioned_throughput_mibps=100.0)

        assert throughput_update(efs_spec(throughput_mode="provisioned", provisioned_mbps=100), actual) == {}


class TestReconcileStorage:
    """Tests for reconcile_storage against the EFS mock."""

    @pytest.mark.asyncio
    async def test_create(self) -> None:
        """Test the CreateFileSystem request and one mount target per private subnet."""
        aws = MockAWS()
        spec = efs_spec(
            throughput_mode="provisioned", provisioned_mbps=128, encrypted=True, kms_key_id="arn:aws:kms:key/1"
        )

        state = await reconcile_storage(aws.context(), spec, NETWORK, None)

        (request,) = aws.efs.calls_to("create_file_system")
        assert request["Encrypted"] is True
        assert request["KmsKeyId"] == "arn:aws:kms:key/1"
        assert request["ProvisionedThroughputInMibps"] == 128.0
        tags = {tag["Key"]: tag["Value"] for tag in request["Tags"]}
        assert tags[TAG_RESOURCE_TYPE] == ResourceType.EFS.value

        targets = aws.efs.calls_to("create_mount_target")
        assert [target["SubnetId"] for target in targets] == NETWORK.private_subnet_ids
        assert all(target["SecurityGroups"] == ["sg-cluster"] for target in targets)

        assert state.file_system_id in aws.efs.file_systems
        assert len(state.mount_targets) == 3
        assert state.security_group_ids == ["sg-cluster"]

    @pytest.mark.asyncio
    async def test_kms_key_only_when_encrypted(self) -> None:
        aws = MockAWS()

        await reconcile_storage(aws.context(), efs_spec(kms_key_id="arn:aws:kms:key/1"), NETWORK, None)

        assert "KmsKeyId" not in aws.efs.calls_to("create_file_system")[0]

    @pytest.mark.asyncio
    async def test_second_pass_makes_no_changes(self) -> None:
        """Test that a converged file system is left alone."""
        aws = MockAWS()
        ctx = aws.context()
        await reconcile_storage(ctx, efs_spec(), NETWORK, None)
        actual = await discover_storage(ctx)
        aws.reset_calls()

        state = await reconcile_storage(ctx, efs_spec(), NETWORK, actual)

        assert aws.mutation_calls() == []
        assert state is actual

    @pytest.mark.asyncio
    async def test_throughput_update_and_missing_mount_target(self) -> None:
        aws = MockAWS()
        ctx = aws.context()
        await reconcile_storage(ctx, efs_spec(), NETWORK, None)
        wider = NetworkState(
            vpc_id="vpc-1",
            cidr_block="10.10.0.0/16",
            private_subnet_ids=[*NETWORK.private_subnet_ids, "subnet-d"],
            security_group_ids=["sg-cluster"],
        )
        actual = await discover_storage(ctx)
        aws.reset_calls()

        state = await reconcile_storage(ctx, efs_spec(throughput_mode="elastic"), wider, actual)

        assert aws.mutation_calls() == ["efs.update_file_system", "efs.create_mount_target"]
        assert aws.efs.calls_to("create_mount_target")[0]["SubnetId"] == "subnet-d"
        assert state.throughput_mode == "elastic"
        assert len(state.mount_targets) == 4

    @pytest.mark.asyncio
    async def test_immutable_change_before_any_call(self) -> None:
        aws = MockAWS()
        ctx = aws.context()
        await reconcile_storage(ctx, efs_spec(), NETWORK, None)
        actual = await discover_storage(ctx)
        aws.reset_calls()

        with pytest.raises(ImmutableFieldError):
            await reconcile_storage(ctx, efs_spec(performance_mode="maxIO"), NETWORK, actual)

        assert aws.mutation_calls() == []

    @pytest.mark.asyncio
    async def test_error_state(self) -> None:
        aws = MockAWS()
        aws.efs.initial_state = "error"

        with pytest.raises(ProvisioningError):
            await reconcile_storage(aws.context(), efs_spec(), NETWORK, None)


class TestDeleteStorage:
    @pytest.mark.asyncio
    async def test_mount_targets_removed_first(self) -> None:
        """Test that mount targets are deleted before the file system."""
        aws = MockAWS()
        ctx = aws.context()
        state = await reconcile_storage(ctx, efs_spec(), NETWORK, None)
        aws.reset_calls()

        await delete_storage(ctx, state)

        calls = aws.efs.mutation_calls()
        assert calls == ["delete_mount_target"] * 3 + ["delete_file_system"]
        assert aws.efs.file_systems == {}
        assert aws.efs.mount_targets == {}

    @pytest.mark.asyncio
    async def test_already_gone(self) -> None:
        aws = MockAWS()

        await delete_storage(aws.context(), storage_state(file_system_id="fs-missing"))

        assert aws.efs.mutation_calls() == []

"""Shared EFS storage for the cluster.

Performance mode, encryption and the encryption key are fixed at creation.
Throughput mode can change in place. Each private subnet gets exactly one
mount target.
"""

from __future__ import annotations

import logging
from typing import Any

from botocore.exceptions import ClientError

from .clients import aws_call, is_not_found
from .context import ReconcileContext
from .discovery import discover_mount_targets, discover_storage
from .errors import ImmutableFieldError, ProvisioningError
from .models import EFSSpec
from .state import NetworkState, StorageState
from .status import StatusLevel
from .tags import ResourceType, resource_name, to_tag_list
from .waiter import wait_until

logger = logging.getLogger(__name__)


def check_storage_immutable(spec: EFSSpec, actual: StorageState) -> None:
    resource = f"EFS {actual.file_system_id}"
    remedy = "destroy and recreate EFS"

    if actual.performance_mode != spec.performance_mode:
        raise ImmutableFieldError(
            resource, "performance mode", actual.performance_mode, spec.performance_mode, remedy
        )
    if actual.encrypted != spec.encrypted:
        raise ImmutableFieldError(resource, "encryption setting", actual.encrypted, spec.encrypted, remedy)
    # An unset key means the AWS-managed default
    if spec.encrypted and spec.kms_key_id and actual.kms_key_id != spec.kms_key_id:
        raise ImmutableFieldError(resource, "KMS key", actual.kms_key_id, spec.kms_key_id, remedy)


def throughput_update(spec: EFSSpec, actual: StorageState) -> dict[str, Any]:
    """UpdateFileSystem arguments for a throughput change, or {} if in sync."""
    if spec.throughput_mode == "provisioned":
        if (
            actual.throughput_mode != "provisioned"
            or actual.provisioned_throughput_mibps != float(spec.provisioned_mbps)
        ):
            return {
                "ThroughputMode": "provisioned",
                "ProvisionedThroughputInMibps": float(spec.provisioned_mbps),
            }
        return {}
    if actual.throughput_mode != spec.throughput_mode:
        return {"ThroughputMode": spec.throughput_mode}
    return {}


async def reconcile_storage(
    ctx: ReconcileContext,
    spec: EFSSpec,
    network: NetworkState,
    actual: StorageState | None,
) -> StorageState:
    """Create the file system if absent, otherwise validate and converge it."""
    if actual is None:
        return await create_storage(ctx, spec, network)

    check_storage_immutable(spec, actual)

    changes = throughput_update(spec, actual)
    if changes:
        ctx.report(
            StatusLevel.PROGRESS,
            "Updating EFS throughput",
            resource="efs",
            action="updating",
            throughput_mode=spec.throughput_mode,
        )
        await aws_call(ctx.clients.efs.update_file_system, FileSystemId=actual.file_system_id, **changes)

    created = await ensure_mount_targets(ctx, actual.file_system_id, network)

    if not changes and not created:
        return actual
    refreshed = await discover_storage(ctx)
    return refreshed if refreshed is not None else actual


async def create_storage(ctx: ReconcileContext, spec: EFSSpec, network: NetworkState) -> StorageState:
    """Create the file system, wait for it, then add mount targets."""
    efs = ctx.clients.efs
    request: dict[str, Any] = {
        "CreationToken": resource_name(ctx.cluster_name, "efs"),
        "PerformanceMode": spec.performance_mode,
        "ThroughputMode": spec.throughput_mode,
        "Encrypted": spec.encrypted,
        "Tags": to_tag_list(ctx.tags(ResourceType.EFS) | {"Name": resource_name(ctx.cluster_name, "efs")}),
    }
    if spec.encrypted and spec.kms_key_id:
        request["KmsKeyId"] = spec.kms_key_id
    if spec.throughput_mode == "provisioned":
        request["ProvisionedThroughputInMibps"] = float(spec.provisioned_mbps)

    ctx.report(StatusLevel.PROGRESS, "Creating EFS file system", resource="efs", action="creating")
    response = await aws_call(efs.create_file_system, **request)
    file_system_id = response["FileSystemId"]

    await wait_for_file_system_available(ctx, file_system_id)
    await ensure_mount_targets(ctx, file_system_id, network)

    logger.info("Created EFS file system", extra={"file_system_id": file_system_id})
    ctx.report(
        StatusLevel.SUCCESS,
        "EFS file system created",
        resource="efs",
        action="created",
        file_system_id=file_system_id,
    )

    state = await discover_storage(ctx)
    if state is None:
        raise ProvisioningError(f"EFS file system {file_system_id} not found after creation")
    return state


async def wait_for_file_system_available(ctx: ReconcileContext, file_system_id: str) -> None:
    async def available() -> bool:
        response = await aws_call(ctx.clients.efs.describe_file_systems, FileSystemId=file_system_id)
        file_systems = response.get("FileSystems", [])
        if not file_systems:
            return False
        state = file_systems[0].get("LifeCycleState")
        if state == "error":
            raise ProvisioningError(f"EFS file system {file_system_id} entered error state")
        return state == "available"

    await wait_until(
        ctx,
        available,
        description=f"EFS {file_system_id} to be available",
        timeout=ctx.timeouts.efs,
    )


async def ensure_mount_targets(ctx: ReconcileContext, file_system_id: str, network: NetworkState) -> int:
    """Create a mount target in each private subnet lacking one. Returns the number created."""
    existing = {target.subnet_id for target in await discover_mount_targets(ctx, file_system_id)}
    group_id = network.cluster_security_group_id

    created = 0
    for subnet_id in network.private_subnet_ids:
        if subnet_id in existing:
            continue
        request: dict[str, Any] = {"FileSystemId": file_system_id, "SubnetId": subnet_id}
        if group_id:
            request["SecurityGroups"] = [group_id]
        await aws_call(ctx.clients.efs.create_mount_target, **request)
        created += 1

    if created:
        ctx.report(
            StatusLevel.SUCCESS,
            "EFS mount targets created",
            resource="efs-mount-target",
            action="created",
            count=created,
        )
    return created


async def delete_storage(ctx: ReconcileContext, storage: StorageState) -> None:
    """Delete mount targets, wait for them to disappear, then delete the file system."""
    efs = ctx.clients.efs
    file_system_id = storage.file_system_id
    ctx.report(StatusLevel.PROGRESS, "Deleting EFS file system", resource="efs", action="deleting")

    try:
        targets = await discover_mount_targets(ctx, file_system_id)
    except ClientError as e:
        if is_not_found(e, "FileSystemNotFound"):
            return
        raise

    for target in targets:
        try:
            await aws_call(efs.delete_mount_target, MountTargetId=target.mount_target_id)
        except ClientError as e:
            if not is_not_found(e, "MountTargetNotFound"):
                raise

    async def no_mount_targets() -> bool:
        return not await discover_mount_targets(ctx, file_system_id)

    await wait_until(
        ctx,
        no_mount_targets,
        description=f"mount targets of EFS {file_system_id} to be deleted",
        timeout=ctx.timeouts.efs,
    )

    try:
        await aws_call(efs.delete_file_system, FileSystemId=file_system_id)
    except ClientError as e:
        if not is_not_found(e, "FileSystemNotFound"):
            raise

    logger.info("Deleted EFS file system", extra={"file_system_id": file_system_id})
    ctx.report(StatusLevel.SUCCESS, "EFS file system deleted", resource="efs", action="deleted")

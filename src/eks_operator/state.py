"""Derived state snapshots of managed AWS resources.

Every entity here is rebuilt from live API queries on each reconciliation
pass. Nothing is cached across passes; mutation only happens through the
reconcilers, which re-derive state after applying changes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .tags import TAG_NODE_POOL


class TaintEffect(str, Enum):
    """Kubernetes taint effects, valued as written in cluster config."""

    NO_SCHEDULE = "NoSchedule"
    NO_EXECUTE = "NoExecute"
    PREFER_NO_SCHEDULE = "PreferNoSchedule"

    @property
    def eks_value(self) -> str:
        """Effect spelling used by the EKS node group API."""
        return _EKS_TAINT_EFFECTS[self]

    @classmethod
    def from_eks(cls, value: str) -> TaintEffect:
        for effect, eks_value in _EKS_TAINT_EFFECTS.items():
            if eks_value == value:
                return effect
        return cls(value)


_EKS_TAINT_EFFECTS = {
    TaintEffect.NO_SCHEDULE: "NO_SCHEDULE",
    TaintEffect.NO_EXECUTE: "NO_EXECUTE",
    TaintEffect.PREFER_NO_SCHEDULE: "PREFER_NO_SCHEDULE",
}


@dataclass(frozen=True)
class Taint:
    """A node taint. Hashable so taint lists compare as multisets."""

    key: str
    value: str = ""
    effect: TaintEffect = TaintEffect.NO_SCHEDULE

    def to_eks(self) -> dict[str, str]:
        return {"key": self.key, "value": self.value, "effect": self.effect.eks_value}

    @classmethod
    def from_eks(cls, data: dict[str, str]) -> Taint:
        return cls(
            key=data.get("key", ""),
            value=data.get("value", ""),
            effect=TaintEffect.from_eks(data.get("effect", "NO_SCHEDULE")),
        )


class ClusterStatus(str, Enum):
    """EKS control plane lifecycle states."""

    CREATING = "CREATING"
    ACTIVE = "ACTIVE"
    UPDATING = "UPDATING"
    DELETING = "DELETING"
    FAILED = "FAILED"
    PENDING = "PENDING"


class NodePoolStatus(str, Enum):
    """EKS node group lifecycle states."""

    CREATING = "CREATING"
    ACTIVE = "ACTIVE"
    UPDATING = "UPDATING"
    DELETING = "DELETING"
    CREATE_FAILED = "CREATE_FAILED"
    DELETE_FAILED = "DELETE_FAILED"
    DEGRADED = "DEGRADED"


class CapacityType(str, Enum):
    """Node group purchasing option."""

    ON_DEMAND = "ON_DEMAND"
    SPOT = "SPOT"


@dataclass
class NetworkState:
    """A managed VPC and its sub-resources.

    Immutable once created: cidr_block and the availability zone set.
    """

    vpc_id: str
    cidr_block: str
    availability_zones: list[str] = field(default_factory=list)
    public_subnet_ids: list[str] = field(default_factory=list)
    private_subnet_ids: list[str] = field(default_factory=list)
    internet_gateway_id: str | None = None
    nat_gateway_ids: list[str] = field(default_factory=list)
    public_route_table_id: str | None = None
    private_route_table_ids: list[str] = field(default_factory=list)
    security_group_ids: list[str] = field(default_factory=list)
    vpc_endpoint_ids: list[str] = field(default_factory=list)
    tags: dict[str, str] = field(default_factory=dict)
    managed: bool = True

    @property
    def cluster_security_group_id(self) -> str | None:
        return self.security_group_ids[0] if self.security_group_ids else None


@dataclass
class ClusterState:
    """EKS control plane. Immutable: vpc_id and the secrets encryption key."""

    name: str
    arn: str
    status: ClusterStatus
    version: str
    endpoint: str | None = None
    vpc_id: str | None = None
    subnet_ids: list[str] = field(default_factory=list)
    security_group_ids: list[str] = field(default_factory=list)
    endpoint_public_access: bool = True
    endpoint_private_access: bool = False
    public_access_cidrs: list[str] = field(default_factory=list)
    enabled_log_types: list[str] = field(default_factory=list)
    encryption_kms_key_arn: str | None = None
    role_arn: str | None = None
    tags: dict[str, str] = field(default_factory=dict)


@dataclass
class ScalingConfig:
    min_size: int
    max_size: int
    desired_size: int


@dataclass
class NodePoolState:
    """EKS managed node group.

    Immutable: instance type (first element), AMI type, capacity type.
    """

    name: str
    cluster_name: str
    status: NodePoolStatus | str
    instance_types: list[str]
    scaling: ScalingConfig
    ami_type: str
    capacity_type: str = CapacityType.ON_DEMAND.value
    disk_size: int | None = None
    labels: dict[str, str] = field(default_factory=dict)
    taints: list[Taint] = field(default_factory=list)
    health_issues: list[str] = field(default_factory=list)
    subnet_ids: list[str] = field(default_factory=list)
    node_role_arn: str | None = None
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def node_pool_name(self) -> str | None:
        """The configured pool name this group was created for (tag lookup)."""
        return self.tags.get(TAG_NODE_POOL) or None

    @property
    def instance_type(self) -> str:
        """Canonical instance type."""
        return self.instance_types[0] if self.instance_types else ""


@dataclass
class IAMRoles:
    """IAM roles used by the control plane and the worker nodes."""

    cluster_role_arn: str | None = None
    node_role_arn: str | None = None
    cluster_role_name: str | None = None
    node_role_name: str | None = None
    service_account_roles: dict[str, str] = field(default_factory=dict)


@dataclass
class MountTarget:
    mount_target_id: str
    subnet_id: str
    ip_address: str | None = None
    life_cycle_state: str = "available"


@dataclass
class StorageState:
    """EFS file system. Immutable: performance mode, encryption and its key."""

    file_system_id: str
    life_cycle_state: str
    performance_mode: str
    throughput_mode: str
    encrypted: bool
    arn: str | None = None
    provisioned_throughput_mibps: float | None = None
    kms_key_id: str | None = None
    mount_targets: list[MountTarget] = field(default_factory=list)
    security_group_ids: list[str] = field(default_factory=list)
    tags: dict[str, str] = field(default_factory=dict)


@dataclass
class InfrastructureState:
    """Snapshot of every managed resource kind for one cluster."""

    cluster_name: str
    network: NetworkState | None = None
    cluster: ClusterState | None = None
    node_pools: list[NodePoolState] = field(default_factory=list)
    iam_roles: IAMRoles | None = None
    storage: StorageState | None = None

    def summary(self) -> dict[str, object]:
        """Flat summary suitable for logging or CLI output."""
        return {
            "cluster_name": self.cluster_name,
            "vpc_id": self.network.vpc_id if self.network else None,
            "cluster_status": self.cluster.status.value if self.cluster else None,
            "cluster_version": self.cluster.version if self.cluster else None,
            "node_pools": sorted(
                pool.node_pool_name or pool.name for pool in self.node_pools
            ),
            "cluster_role_arn": self.iam_roles.cluster_role_arn if self.iam_roles else None,
            "node_role_arn": self.iam_roles.node_role_arn if self.iam_roles else None,
            "efs_id": self.storage.file_system_id if self.storage else None,
        }


@dataclass
class LoadBalancerState:
    """A classic load balancer created by the Kubernetes cloud controller."""

    name: str
    vpc_id: str | None = None
    security_group_ids: list[str] = field(default_factory=list)
    tags: dict[str, str] = field(default_factory=dict)

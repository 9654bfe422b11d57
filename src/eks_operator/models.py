"""Pydantic models for the declarative cluster configuration.

These models provide:
1. Type-safe YAML parsing
2. Validation at the boundary (fail fast, fail loudly)
3. Resolved defaults the reconcilers can use without re-checking
"""

from __future__ import annotations

import re
from typing import Annotated

from pydantic import BaseModel, Field, field_validator, model_validator

from .state import CapacityType, Taint, TaintEffect

# =============================================================================
# Defaults
# =============================================================================

DEFAULT_KUBERNETES_VERSION = "1.34"
DEFAULT_VPC_CIDR = "10.10.0.0/16"
DEFAULT_AZ_COUNT = 3
DEFAULT_MIN_NODES = 1
DEFAULT_MAX_NODES = 3
DEFAULT_DISK_SIZE_GB = 20
DEFAULT_AMI_TYPE = "AL2_x86_64"
DEFAULT_GPU_AMI_TYPE = "AL2_x86_64_GPU"
DEFAULT_PUBLIC_ACCESS_CIDRS = ["0.0.0.0/0"]

VALID_ENDPOINT_ACCESS = {"", "public", "private", "public-and-private"}
VALID_PERFORMANCE_MODES = {"generalPurpose", "maxIO"}
VALID_THROUGHPUT_MODES = {"bursting", "provisioned", "elastic"}


# =============================================================================
# Node Groups
# =============================================================================


class TaintSpec(BaseModel):
    """Kubernetes taint applied to every node in a pool."""

    model_config = {"extra": "ignore"}

    key: Annotated[str, Field(min_length=1)]
    value: str = ""
    effect: TaintEffect = TaintEffect.NO_SCHEDULE

    @field_validator("effect", mode="before")
    @classmethod
    def default_effect(cls, v: object) -> object:
        # An empty effect in YAML means NoSchedule
        return v or TaintEffect.NO_SCHEDULE

    def to_taint(self) -> Taint:
        return Taint(key=self.key, value=self.value, effect=self.effect)


class NodeGroupSpec(BaseModel):
    """Desired configuration of one managed node pool."""

    model_config = {"extra": "ignore"}

    instance: Annotated[str, Field(min_length=1)]
    min_nodes: int | None = Field(None, ge=0)
    max_nodes: int | None = Field(None, ge=0)
    taints: list[TaintSpec] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)
    gpu: bool = False
    ami_type: str | None = None
    spot: bool = False
    disk_size: int | None = Field(None, ge=1)

    @model_validator(mode="after")
    def check_scaling_bounds(self) -> NodeGroupSpec:
        if self.min_nodes is not None and self.max_nodes is not None:
            if self.min_nodes > self.max_nodes:
                raise ValueError(
                    f"min_nodes ({self.min_nodes}) cannot be greater than "
                    f"max_nodes ({self.max_nodes})"
                )
        return self

    @property
    def resolved_min(self) -> int:
        return self.min_nodes if self.min_nodes is not None else DEFAULT_MIN_NODES

    @property
    def resolved_max(self) -> int:
        return self.max_nodes if self.max_nodes is not None else DEFAULT_MAX_NODES

    @property
    def resolved_ami_type(self) -> str:
        """AMI type to create with: explicit, then GPU default, then CPU default."""
        if self.ami_type:
            return self.ami_type
        return DEFAULT_GPU_AMI_TYPE if self.gpu else DEFAULT_AMI_TYPE

    @property
    def capacity_type(self) -> str:
        return CapacityType.SPOT.value if self.spot else CapacityType.ON_DEMAND.value

    @property
    def resolved_disk_size(self) -> int:
        return self.disk_size or DEFAULT_DISK_SIZE_GB

    def resolved_taints(self) -> list[Taint]:
        return [taint.to_taint() for taint in self.taints]


# =============================================================================
# Shared Storage
# =============================================================================


class EFSSpec(BaseModel):
    """Shared EFS file system configuration."""

    model_config = {"extra": "ignore"}

    enabled: bool = False
    performance_mode: str = "generalPurpose"
    throughput_mode: str = "bursting"
    provisioned_mbps: Annotated[int, Field(ge=0)] = 0
    encrypted: bool = False
    kms_key_id: str | None = None

    @field_validator("performance_mode")
    @classmethod
    def validate_performance_mode(cls, v: str) -> str:
        if v not in VALID_PERFORMANCE_MODES:
            raise ValueError(f"performance_mode must be one of {sorted(VALID_PERFORMANCE_MODES)}")
        return v

    @field_validator("throughput_mode")
    @classmethod
    def validate_throughput_mode(cls, v: str) -> str:
        if v not in VALID_THROUGHPUT_MODES:
            raise ValueError(f"throughput_mode must be one of {sorted(VALID_THROUGHPUT_MODES)}")
        return v

    @model_validator(mode="after")
    def check_provisioned(self) -> EFSSpec:
        if self.throughput_mode == "provisioned" and self.provisioned_mbps <= 0:
            raise ValueError("provisioned_mbps is required when throughput_mode is provisioned")
        return self


# =============================================================================
# AWS Provider
# =============================================================================


class AWSSpec(BaseModel):
    """AWS infrastructure configuration for one cluster."""

    model_config = {"extra": "ignore"}

    region: Annotated[str, Field(min_length=1)]
    kubernetes_version: str = DEFAULT_KUBERNETES_VERSION
    availability_zones: list[str] = Field(default_factory=list)
    node_groups: dict[str, NodeGroupSpec] = Field(min_length=1)
    eks_endpoint_access: str = ""
    eks_public_access_cidrs: list[str] = Field(default_factory=list)
    eks_kms_arn: str | None = None
    existing_subnet_ids: list[str] = Field(default_factory=list)
    existing_security_group_id: str | None = None
    vpc_cidr_block: str = DEFAULT_VPC_CIDR
    tags: dict[str, str] = Field(default_factory=dict)
    efs: EFSSpec | None = None

    @field_validator("kubernetes_version", mode="before")
    @classmethod
    def coerce_version(cls, v: object) -> object:
        # YAML reads 1.30 as the float 1.3
        if isinstance(v, float):
            raise ValueError("kubernetes_version must be quoted in YAML (e.g. \"1.30\")")
        v = v or DEFAULT_KUBERNETES_VERSION
        if not isinstance(v, str) or not re.match(r"^\d+\.\d+$", v):
            raise ValueError(f"kubernetes_version must look like MAJOR.MINOR: {v}")
        return v

    @field_validator("vpc_cidr_block")
    @classmethod
    def validate_cidr(cls, v: str) -> str:
        if "/" not in v:
            raise ValueError(f"vpc_cidr_block must be in CIDR notation: {v}")
        return v

    @field_validator("eks_endpoint_access")
    @classmethod
    def validate_endpoint_access(cls, v: str) -> str:
        if v not in VALID_ENDPOINT_ACCESS:
            valid = sorted(a for a in VALID_ENDPOINT_ACCESS if a)
            raise ValueError(f"eks_endpoint_access must be one of {valid}")
        return v

    @property
    def public_access_cidrs(self) -> list[str]:
        return self.eks_public_access_cidrs or list(DEFAULT_PUBLIC_ACCESS_CIDRS)

    @property
    def efs_enabled(self) -> bool:
        return self.efs is not None and self.efs.enabled

    @property
    def uses_existing_network(self) -> bool:
        return bool(self.existing_subnet_ids)


class ClusterSpec(BaseModel):
    """Top-level cluster configuration document."""

    model_config = {"extra": "ignore"}

    project_name: Annotated[str, Field(min_length=1, max_length=100, pattern=r"^[a-z][a-z0-9-]*$")]
    provider: str = "aws"
    amazon_web_services: AWSSpec

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        if v != "aws":
            raise ValueError(f"unsupported provider '{v}' (only 'aws' is supported)")
        return v

    @property
    def cluster_name(self) -> str:
        return self.project_name

    @property
    def aws(self) -> AWSSpec:
        return self.amazon_web_services

"""Operator configuration with validation.

Invalid settings are rejected at load time so the operator never starts a
reconciliation pass it cannot finish.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_RECONCILE_INTERVAL_SECONDS = 300
MIN_RECONCILE_INTERVAL_SECONDS = 60
MAX_RECONCILE_INTERVAL_SECONDS = 3600

# Lifecycle wait timeouts (seconds)
CLUSTER_CREATE_TIMEOUT_SECONDS = 20 * 60
CLUSTER_UPDATE_TIMEOUT_SECONDS = 20 * 60
CLUSTER_DELETE_TIMEOUT_SECONDS = 15 * 60
NODE_POOL_TIMEOUT_SECONDS = 15 * 60
NAT_GATEWAY_TIMEOUT_SECONDS = 10 * 60
VPC_ENDPOINT_TIMEOUT_SECONDS = 10 * 60
EFS_TIMEOUT_SECONDS = 5 * 60

# Poll intervals (seconds)
DEFAULT_POLL_INTERVAL_SECONDS = 10
VPC_ENDPOINT_POLL_INTERVAL_SECONDS = 15

# Security group deletion retry on DependencyViolation
SECURITY_GROUP_DELETE_MAX_ATTEMPTS = 12
SECURITY_GROUP_DELETE_RETRY_SECONDS = 5

# AWS API limits
ELB_DESCRIBE_TAGS_BATCH_SIZE = 20  # DescribeTags accepts at most 20 names

# Circuit breaker for the operator loop
MAX_CONSECUTIVE_FAILURES = 5
CIRCUIT_BREAKER_RESET_SECONDS = 300

# Limits on input files
MAX_CLUSTER_CONFIG_SIZE_BYTES = 1024 * 1024  # 1MB

VALID_REGION_PATTERN = r"^[a-z]{2}(-gov)?-[a-z]+-\d$"


@dataclass(frozen=True)
class Timeouts:
    """Wait timeouts and poll intervals for one reconciliation pass.

    Tests shrink these; production uses the module defaults.
    """

    cluster_create: float = CLUSTER_CREATE_TIMEOUT_SECONDS
    cluster_update: float = CLUSTER_UPDATE_TIMEOUT_SECONDS
    cluster_delete: float = CLUSTER_DELETE_TIMEOUT_SECONDS
    node_pool: float = NODE_POOL_TIMEOUT_SECONDS
    nat_gateway: float = NAT_GATEWAY_TIMEOUT_SECONDS
    vpc_endpoint: float = VPC_ENDPOINT_TIMEOUT_SECONDS
    efs: float = EFS_TIMEOUT_SECONDS
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS
    endpoint_poll_interval: float = VPC_ENDPOINT_POLL_INTERVAL_SECONDS
    sg_delete_attempts: int = SECURITY_GROUP_DELETE_MAX_ATTEMPTS
    sg_delete_interval: float = SECURITY_GROUP_DELETE_RETRY_SECONDS


@dataclass(frozen=True)
class Config:
    """Operator configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Required fields
    cluster_config_path: Path | None

    # AWS
    region_override: str | None = None
    aws_profile: str | None = None

    # Timing
    reconcile_interval_seconds: int = DEFAULT_RECONCILE_INTERVAL_SECONDS
    timeouts: Timeouts = field(default_factory=Timeouts)

    # Behavior
    destroy_force: bool = False

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        import re

        errors: list[str] = []

        if self.cluster_config_path is None:
            errors.append("CLUSTER_CONFIG is required")
        elif not self.cluster_config_path.is_file():
            errors.append(f"Cluster config file does not exist: {self.cluster_config_path}")

        if self.region_override and not re.match(VALID_REGION_PATTERN, self.region_override):
            errors.append(f"AWS_REGION must be a valid AWS region: {self.region_override}")

        if not (
            MIN_RECONCILE_INTERVAL_SECONDS
            <= self.reconcile_interval_seconds
            <= MAX_RECONCILE_INTERVAL_SECONDS
        ):
            errors.append(
                f"RECONCILE_INTERVAL must be between {MIN_RECONCILE_INTERVAL_SECONDS} "
                f"and {MAX_RECONCILE_INTERVAL_SECONDS} seconds"
            )

        if self.timeouts.sg_delete_attempts < 1:
            errors.append("sg_delete_attempts must be at least 1")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            CLUSTER_CONFIG: Path to the cluster config YAML (required)
            AWS_REGION: Overrides the region from the cluster config
            AWS_PROFILE: Named credentials profile (default: provider chain)
            RECONCILE_INTERVAL: Seconds between reconciliation loops (default: 300)
            DESTROY_FORCE: If "true", teardown continues past failed steps
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        config_path = os.environ.get("CLUSTER_CONFIG")

        return cls(
            cluster_config_path=Path(config_path) if config_path else None,
            region_override=os.environ.get("AWS_REGION") or None,
            aws_profile=os.environ.get("AWS_PROFILE") or None,
            reconcile_interval_seconds=get_int(
                "RECONCILE_INTERVAL", DEFAULT_RECONCILE_INTERVAL_SECONDS
            ),
            destroy_force=get_bool("DESTROY_FORCE", False),
        )

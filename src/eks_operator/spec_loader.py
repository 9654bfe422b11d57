"""Cluster configuration loading with validation.

All file operations enforce a size limit. Input validation is performed at
the boundary so reconcilers only ever see a validated ClusterSpec.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .config import MAX_CLUSTER_CONFIG_SIZE_BYTES
from .models import ClusterSpec

logger = logging.getLogger(__name__)


class SpecLoadError(Exception):
    """Raised when cluster config loading or validation fails."""

    pass


def format_validation_error(error: ValidationError) -> str:
    """Render pydantic errors as one "  - loc: msg" line each."""
    lines = []
    for item in error.errors():
        loc = ".".join(str(x) for x in item["loc"])
        lines.append(f"  - {loc}: {item['msg']}")
    return "\n".join(lines)


def parse_cluster_spec(raw_data: object, source: str = "<memory>") -> ClusterSpec:
    """Validate an already-parsed YAML document.

    Supports both the flat document and a Kubernetes-style wrapper
    (apiVersion/kind/spec), in which case the spec section is used.

    Raises:
        SpecLoadError: If the document is not a mapping or fails validation.
    """
    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Cluster config must contain a YAML mapping: {source}")

    if "apiVersion" in raw_data and "spec" in raw_data:
        spec_data = raw_data.get("spec", {})
        if not isinstance(spec_data, dict):
            raise SpecLoadError(f"Spec section must be a mapping: {source}")
    else:
        spec_data = raw_data

    try:
        return ClusterSpec.model_validate(spec_data)
    except ValidationError as e:
        raise SpecLoadError(
            f"Validation failed for {source}:\n{format_validation_error(e)}"
        ) from e


def load_cluster_spec(path: Path) -> ClusterSpec:
    """Load and validate a cluster config from YAML.

    Args:
        path: Path to the cluster config file.

    Returns:
        Validated cluster spec.

    Raises:
        SpecLoadError: If the file cannot be read or fails validation.
    """
    if not path.exists():
        raise SpecLoadError(f"Cluster config file not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat cluster config {path}: {e}") from e

    if file_size > MAX_CLUSTER_CONFIG_SIZE_BYTES:
        raise SpecLoadError(
            f"Cluster config exceeds maximum size of {MAX_CLUSTER_CONFIG_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read cluster config {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {path}: {e}") from e

    spec = parse_cluster_spec(raw_data, source=str(path))

    logger.info(
        "Loaded cluster config",
        extra={
            "cluster_name": spec.cluster_name,
            "region": spec.aws.region,
            "node_pools": sorted(spec.aws.node_groups),
            "path": str(path),
        },
    )
    return spec

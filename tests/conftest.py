"""Pytest configuration and fixtures."""

import sys
from pathlib import Path
from typing import Any

import pytest
import yaml

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for aws_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))


@pytest.fixture
def cluster_document() -> dict[str, Any]:
    """A small but complete cluster configuration."""
    return {
        "project_name": "demo",
        "provider": "aws",
        "amazon_web_services": {
            "region": "us-west-2",
            "kubernetes_version": "1.34",
            "availability_zones": ["us-west-2a", "us-west-2b"],
            "node_groups": {
                "general": {"instance": "m5.large", "min_nodes": 1, "max_nodes": 3},
                "user": {"instance": "m5.xlarge", "labels": {"team": "data"}},
            },
            "efs": {"enabled": True},
        },
    }


@pytest.fixture
def cluster_config_file(tmp_path: Path, cluster_document: dict[str, Any]) -> Path:
    path = tmp_path / "cluster.yaml"
    path.write_text(yaml.safe_dump(cluster_document))
    return path

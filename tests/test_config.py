"""Tests for configuration loading."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from eks_operator.config import (
    DEFAULT_RECONCILE_INTERVAL_SECONDS,
    Config,
    ConfigurationError,
    Timeouts,
)


@pytest.fixture
def cluster_file(tmp_path: Path) -> Path:
    path = tmp_path / "cluster.yaml"
    path.write_text("project_name: demo\n")
    return path


class TestConfig:
    """Tests for Config class."""

    def test_valid_config(self, cluster_file: Path) -> None:
        """Test creating a valid configuration."""
        config = Config(cluster_config_path=cluster_file)

        assert config.cluster_config_path == cluster_file
        assert config.region_override is None
        assert config.reconcile_interval_seconds == DEFAULT_RECONCILE_INTERVAL_SECONDS
        assert config.destroy_force is False
        assert config.timeouts == Timeouts()

    def test_missing_cluster_config(self) -> None:
        """Test that a missing cluster config path raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(cluster_config_path=None)

        assert "CLUSTER_CONFIG" in str(exc_info.value)

    def test_nonexistent_cluster_config(self, tmp_path: Path) -> None:
        """Test that a path to a missing file raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(cluster_config_path=tmp_path / "missing.yaml")

        assert "does not exist" in str(exc_info.value)

    def test_invalid_region_override(self, cluster_file: Path) -> None:
        """Test that a malformed region raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(cluster_config_path=cluster_file, region_override="not a region")

        assert "AWS_REGION" in str(exc_info.value)

    def test_govcloud_region_accepted(self, cluster_file: Path) -> None:
        """Test that GovCloud regions pass validation."""
        config = Config(cluster_config_path=cluster_file, region_override="us-gov-west-1")

        assert config.region_override == "us-gov-west-1"

    def test_invalid_reconcile_interval(self, cluster_file: Path) -> None:
        """Test that out-of-range reconcile interval raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(cluster_config_path=cluster_file, reconcile_interval_seconds=10)

        assert "RECONCILE_INTERVAL" in str(exc_info.value)

    def test_invalid_sg_delete_attempts(self, cluster_file: Path) -> None:
        """Test that a zero retry budget raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(cluster_config_path=cluster_file, timeouts=Timeouts(sg_delete_attempts=0))

        assert "sg_delete_attempts" in str(exc_info.value)

    def test_multiple_errors_reported_together(self) -> None:
        """Test that every validation error is listed."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(cluster_config_path=None, reconcile_interval_seconds=1)

        message = str(exc_info.value)
        assert "CLUSTER_CONFIG" in message
        assert "RECONCILE_INTERVAL" in message


class TestConfigFromEnv:
    """Tests for Config.from_env."""

    def test_from_env(self, cluster_file: Path) -> None:
        """Test loading configuration from environment variables."""
        env = {
            "CLUSTER_CONFIG": str(cluster_file),
            "AWS_REGION": "eu-central-1",
            "AWS_PROFILE": "staging",
            "RECONCILE_INTERVAL": "120",
            "DESTROY_FORCE": "true",
        }
        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.cluster_config_path == cluster_file
        assert config.region_override == "eu-central-1"
        assert config.aws_profile == "staging"
        assert config.reconcile_interval_seconds == 120
        assert config.destroy_force is True

    def test_from_env_defaults(self, cluster_file: Path) -> None:
        """Test defaults when only the required variable is set."""
        with patch.dict(os.environ, {"CLUSTER_CONFIG": str(cluster_file)}, clear=True):
            config = Config.from_env()

        assert config.region_override is None
        assert config.aws_profile is None
        assert config.destroy_force is False

    def test_from_env_invalid_integer(self, cluster_file: Path) -> None:
        """Test that a non-numeric interval raises error."""
        env = {"CLUSTER_CONFIG": str(cluster_file), "RECONCILE_INTERVAL": "soon"}
        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "RECONCILE_INTERVAL must be an integer" in str(exc_info.value)

    def test_from_env_missing_cluster_config(self) -> None:
        """Test that an empty environment fails validation."""
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ConfigurationError):
                Config.from_env()

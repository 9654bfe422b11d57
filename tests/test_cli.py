"""Tests for the eko command line."""

import asyncio
import json
from pathlib import Path

import click
from aws_mock import MockAWS
from click.testing import CliRunner

from eks_operator.cli import cli, progress_sinks, with_progress
from eks_operator.status import StatusLevel, StatusUpdate


class TestValidate:
    def test_valid_config(self, cluster_config_file: Path) -> None:
        result = CliRunner().invoke(cli, ["--config", str(cluster_config_file), "validate"])

        assert result.exit_code == 0, result.output
        assert "is valid" in result.output
        assert "demo" in result.output
        assert "general, user" in result.output
        assert "enabled" in result.output

    def test_region_override_shown(self, cluster_config_file: Path) -> None:
        result = CliRunner().invoke(
            cli, ["--config", str(cluster_config_file), "--region", "eu-west-1", "validate"]
        )

        assert "eu-west-1" in result.output

    def test_invalid_config(self, tmp_path: Path) -> None:
        """Test that validation errors are printed without a traceback."""
        path = tmp_path / "bad.yaml"
        path.write_text("project_name: demo\namazon_web_services:\n  region: us-west-2\n  kubernetes_version: 1.30\n")

        result = CliRunner().invoke(cli, ["--config", str(path), "validate"])

        assert result.exit_code == 1
        assert "Error:" in result.output
        assert "kubernetes_version" in result.output

    def test_missing_config_file(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(cli, ["--config", str(tmp_path / "absent.yaml"), "validate"])

        assert result.exit_code == 2
        assert "does not exist" in result.output


class TestDeployAndDestroy:
    """Tests for the commands that talk to AWS."""

    def test_deploy(self, cluster_config_file: Path) -> None:
        with MockAWS() as aws:
            result = CliRunner().invoke(cli, ["--config", str(cluster_config_file), "deploy"])

        assert result.exit_code == 0, result.output
        assert "demo reconciled" in result.output
        assert "created=2" in result.output
        assert "Creating node pool general" in result.output
        assert "demo" in aws.eks.clusters

    def test_status(self, cluster_config_file: Path) -> None:
        with MockAWS():
            runner = CliRunner()
            runner.invoke(cli, ["--config", str(cluster_config_file), "deploy"])
            result = runner.invoke(cli, ["--config", str(cluster_config_file), "status"])

        assert result.exit_code == 0, result.output
        summary = json.loads(result.output)
        assert summary["cluster_name"] == "demo"

    def test_deploy_failure_exit_code(self, cluster_config_file: Path) -> None:
        with MockAWS() as aws:
            aws.iam.fail("create_role", "AccessDenied")
            result = CliRunner().invoke(cli, ["--config", str(cluster_config_file), "deploy"])

        assert result.exit_code == 1
        assert "Reconciliation failed" in result.output

    def test_destroy_yes(self, cluster_config_file: Path) -> None:
        with MockAWS() as aws:
            runner = CliRunner()
            runner.invoke(cli, ["--config", str(cluster_config_file), "deploy"])
            result = runner.invoke(cli, ["--config", str(cluster_config_file), "destroy", "--yes"])

        assert result.exit_code == 0, result.output
        assert "demo destroyed" in result.output
        assert "Destroying infrastructure" in result.output
        assert aws.eks.clusters == {}
        assert aws.ec2.vpcs == {}

    def test_destroy_prompt_declined(self, cluster_config_file: Path) -> None:
        """Test that answering no aborts before any AWS call."""
        with MockAWS() as aws:
            result = CliRunner().invoke(cli, ["--config", str(cluster_config_file), "destroy"], input="n\n")

        assert result.exit_code == 1
        assert "Aborted" in result.output
        assert all(not service.calls for service in aws.services)

    def test_destroy_force_reports_warnings(self, cluster_config_file: Path) -> None:
        with MockAWS() as aws:
            runner = CliRunner()
            runner.invoke(cli, ["--config", str(cluster_config_file), "deploy"])
            aws.eks.fail("delete_cluster", "AccessDeniedException")
            result = runner.invoke(cli, ["--config", str(cluster_config_file), "destroy", "-y", "--force"])

        assert result.exit_code == 0, result.output
        assert "eks-cluster" in result.output
        assert "1 warning(s)" in result.output


class TestProgress:
    """Tests for echoing status updates while a command runs."""

    def test_queued_updates_echoed(self) -> None:
        progress, sink = progress_sinks()

        async def operation() -> str:
            sink.send(StatusUpdate(StatusLevel.PROGRESS, "Creating VPC"))
            await asyncio.sleep(0)
            sink.send(StatusUpdate(StatusLevel.SUCCESS, "VPC created"))
            return "done"

        @click.command()
        def command() -> None:
            click.echo(asyncio.run(with_progress(progress, operation())))

        result = CliRunner().invoke(command)

        assert result.exit_code == 0, result.output
        assert result.output.splitlines() == ["  Creating VPC", "  VPC created", "done"]
        assert progress.dropped == 0

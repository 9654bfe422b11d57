"""EKS operator CLI (eko).

One-shot operations against a cluster config file, for local use and CI.

Usage:
    eko --config cluster.yaml validate     # Validate the cluster config
    eko --config cluster.yaml status       # Show discovered infrastructure
    eko --config cluster.yaml deploy       # Run one reconciliation pass
    eko --config cluster.yaml destroy      # Tear everything down
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

import click

from .config import Config, ConfigurationError
from .discovery import discover_all
from .main import setup_logging
from .models import ClusterSpec
from .reconciler import Reconciler
from .spec_loader import SpecLoadError, load_cluster_spec
from .status import (
    FanOutStatusSink,
    LoggingStatusSink,
    QueueStatusSink,
    StatusLevel,
    StatusSink,
    StatusUpdate,
)

T = TypeVar("T")

_LEVEL_COLORS = {
    StatusLevel.SUCCESS: "green",
    StatusLevel.WARNING: "yellow",
    StatusLevel.ERROR: "red",
}


@dataclass
class CLIState:
    config_path: Path
    region: str | None
    profile: str | None

    def load_spec(self) -> ClusterSpec:
        try:
            return load_cluster_spec(self.config_path)
        except SpecLoadError as e:
            raise click.ClickException(str(e)) from e

    def build_reconciler(self, spec: ClusterSpec, status: StatusSink | None = None) -> Reconciler:
        try:
            config = Config(
                cluster_config_path=self.config_path,
                region_override=self.region,
                aws_profile=self.profile,
            )
        except ConfigurationError as e:
            raise click.ClickException(str(e)) from e
        return Reconciler(config, spec, status=status)


def echo_update(update: StatusUpdate) -> None:
    click.secho(f"  {update.message}", fg=_LEVEL_COLORS.get(update.level))


async def with_progress(progress: QueueStatusSink, operation: Awaitable[T]) -> T:
    """Await operation while echoing the status updates it queues."""

    async def consume() -> None:
        while True:
            echo_update(await progress.queue.get())

    consumer = asyncio.create_task(consume())
    try:
        return await operation
    finally:
        consumer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await consumer
        for update in progress.drain():
            echo_update(update)


def progress_sinks() -> tuple[QueueStatusSink, StatusSink]:
    """A queue for terminal output, fanned out alongside the log stream."""
    progress = QueueStatusSink()
    return progress, FanOutStatusSink(LoggingStatusSink(), progress)


@click.group()
@click.version_option(version="0.1.0", prog_name="eko")
@click.option(
    "--config",
    "-c",
    "config_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to the cluster config YAML",
)
@click.option("--region", default=None, help="Override the region from the cluster config")
@click.option("--profile", default=None, help="AWS credentials profile")
@click.option("--verbose", "-v", is_flag=True, help="Emit JSON logs to stdout")
@click.pass_context
def cli(ctx: click.Context, config_path: Path, region: str | None, profile: str | None, verbose: bool) -> None:
    """EKS operator - reconcile and tear down EKS clusters from a YAML config."""
    if verbose:
        setup_logging(logging.INFO)
    ctx.obj = CLIState(config_path=config_path, region=region, profile=profile)


@cli.command()
@click.pass_obj
def validate(state: CLIState) -> None:
    """Validate the cluster config without calling AWS."""
    spec = state.load_spec()
    aws = spec.aws
    click.secho(f"✓ {state.config_path} is valid", fg="green")
    click.echo(f"  Cluster:     {spec.cluster_name}")
    click.echo(f"  Region:      {state.region or aws.region}")
    click.echo(f"  Kubernetes:  {aws.kubernetes_version}")
    click.echo(f"  Node pools:  {', '.join(sorted(aws.node_groups))}")
    click.echo(f"  EFS:         {'enabled' if aws.efs_enabled else 'disabled'}")


@cli.command()
@click.pass_obj
def status(state: CLIState) -> None:
    """Show the infrastructure currently owned by the cluster."""
    spec = state.load_spec()
    reconciler = state.build_reconciler(spec)
    infrastructure = asyncio.run(discover_all(reconciler.context))
    click.echo(json.dumps(infrastructure.summary(), indent=2))


@cli.command()
@click.pass_obj
def deploy(state: CLIState) -> None:
    """Run one reconciliation pass."""
    spec = state.load_spec()
    progress, sink = progress_sinks()
    reconciler = state.build_reconciler(spec, sink)

    click.echo(f"Reconciling {spec.cluster_name}...")
    result = asyncio.run(with_progress(progress, reconciler.reconcile_once()))
    if not result.success:
        raise click.ClickException(f"Reconciliation failed: {result.error}")

    click.secho(f"✓ {spec.cluster_name} reconciled in {result.duration_seconds:.0f}s", fg="green")
    if result.node_pools:
        counts = ", ".join(f"{key}={value}" for key, value in sorted(result.node_pools.items()))
        click.echo(f"  Node pools: {counts}")


@cli.command()
@click.option("--force", "-f", is_flag=True, help="Continue past failed steps")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_obj
def destroy(state: CLIState, force: bool, yes: bool) -> None:
    """Delete every resource owned by the cluster."""
    spec = state.load_spec()
    if not yes:
        click.confirm(f"Destroy all infrastructure for {spec.cluster_name}?", abort=True)

    progress, sink = progress_sinks()
    reconciler = state.build_reconciler(spec, sink)
    result = asyncio.run(with_progress(progress, reconciler.destroy(force=force)))

    for step, message in sorted(result.warnings.items()):
        click.secho(f"⚠ {step}: {message}", fg="yellow")
    if result.clean:
        click.secho(f"✓ {spec.cluster_name} destroyed", fg="green")
    else:
        click.secho(f"{spec.cluster_name} destroyed with {len(result.warnings)} warning(s)", fg="yellow")


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()

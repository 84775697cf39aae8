"""Streamplane CLI.

Usage:
    streamplane validate resources.yaml
    streamplane plan resources.yaml --state streamplane.state.json
    streamplane apply resources.yaml --state streamplane.state.json
    streamplane destroy resources.yaml --state streamplane.state.json

Credentials and timeouts come from STREAMPLANE_* environment variables.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import click

from .config import ConfigurationError
from .controller import PlanAction
from .main import RunReport, run_lifecycle, run_plan, setup_logging
from .spec_loader import SpecLoadError, load_resources
from .state_store import StateStoreError

DEFAULT_STATE_FILE = "streamplane.state.json"

PLAN_SYMBOLS = {
    PlanAction.CREATE: ("+", "green"),
    PlanAction.UPDATE: ("~", "yellow"),
    PlanAction.REPLACE: ("-/+", "red"),
    PlanAction.NOOP: ("=", None),
    "delete": ("-", "red"),
}

resources_argument = click.argument(
    "resources_file", type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
state_option = click.option(
    "--state",
    "state_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_STATE_FILE,
    show_default=True,
    help="Tracked-state file",
)


@click.group()
@click.version_option(version="0.1.0", prog_name="streamplane")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def cli(verbose: bool) -> None:
    """Reconcile streaming clusters, topics, users and ACLs with a desired-state file."""
    setup_logging(logging.DEBUG if verbose else logging.WARNING)


@cli.command()
@resources_argument
def validate(resources_file: Path) -> None:
    """Validate a desired-state file without contacting the API."""
    try:
        entries = load_resources(resources_file)
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e
    click.secho(f"✓ {len(entries)} resource(s) valid", fg="green")


@cli.command()
@resources_argument
@state_option
def plan(resources_file: Path, state_file: Path) -> None:
    """Show what apply would change, compared with tracked state."""
    try:
        changes = run_plan(resources_file, state_file)
    except (SpecLoadError, StateStoreError, ConfigurationError) as e:
        raise click.ClickException(str(e)) from e

    pending = 0
    for change in changes:
        symbol, color = PLAN_SYMBOLS[change.action]
        if change.action is not PlanAction.NOOP:
            pending += 1
        detail = f" ({', '.join(change.paths)})" if change.paths else ""
        click.secho(f"{symbol} {change.address}{detail}", fg=color)
        if change.reason:
            click.echo(f"    {change.reason}")
    click.echo(f"\n{pending} change(s) planned")


def _run(command: str, resources_file: Path, state_file: Path) -> None:
    try:
        report = asyncio.run(run_lifecycle(command, resources_file, state_file))
    except (SpecLoadError, StateStoreError, ConfigurationError) as e:
        raise click.ClickException(str(e)) from e
    _print_report(report)
    if not report.success:
        raise click.ClickException(f"{len(report.errors)} resource(s) failed")


def _print_report(report: RunReport) -> None:
    summary = report.summary
    for address, warnings in sorted(report.warnings.items()):
        for warning in warnings:
            click.secho(f"! {address}: {warning}", fg="yellow")
    for address, error in sorted(report.errors.items()):
        click.secho(f"✗ {address}: {error}", fg="red")
    click.echo(
        f"{summary.create_count} created, {summary.update_count} updated, "
        f"{summary.delete_count} deleted, {summary.no_change_count} unchanged, "
        f"{summary.removed_count} dropped from state"
    )


@cli.command()
@resources_argument
@state_option
def apply(resources_file: Path, state_file: Path) -> None:
    """Create, update and delete resources until they match the file."""
    _run("apply", resources_file, state_file)


@cli.command()
@resources_argument
@state_option
def destroy(resources_file: Path, state_file: Path) -> None:
    """Delete every tracked resource named in the file."""
    _run("destroy", resources_file, state_file)


if __name__ == "__main__":
    cli()

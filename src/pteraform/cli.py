"""pteraform command line.

Runs a single reconciliation of one working directory outside of a host
orchestrator, printing the resulting record.

Usage:
    pteraform apply ./stacks/network -var=region=eu   # init + apply, print record
    pteraform read ./stacks/network                    # refresh id from state
    pteraform identity ./stacks/network                # print the state digest
    pteraform import <id>                              # print an imported record
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click
import yaml

from .config import VALID_LOG_LEVELS, Config, ConfigurationError
from .errors import CancellationFailure, ProvisioningError
from .identity import compute_identity
from .main import setup_logging
from .models import ManagedUnitRecord
from .reconciler import (
    CreateRequest,
    Diagnostic,
    ImportRequest,
    ReadRequest,
    ReconcileRequest,
    Reconciler,
    ReconcileResult,
)

OUTPUT_FORMATS = ("json", "yaml")

# Exit codes
EXIT_CONFIGURATION_ERROR = 2
EXIT_CANCELLED = 130


class ConfigurationFailed(click.ClickException):
    """Invalid environment or options."""

    exit_code = EXIT_CONFIGURATION_ERROR


class Cancelled(click.ClickException):
    """A terraform phase or state read was interrupted."""

    exit_code = EXIT_CANCELLED


@dataclass(frozen=True)
class CliState:
    config: Config
    output: str


def render(data: dict[str, Any], output: str) -> str:
    """Render a record in the requested output format."""
    if output == "yaml":
        return yaml.safe_dump(data, sort_keys=False, default_flow_style=False).rstrip()
    return json.dumps(data, indent=2)


def execute(state: CliState, request: ReconcileRequest) -> ReconcileResult:
    """Run one reconciliation and turn failures into CLI errors.

    Raises:
        Cancelled: If the reconciliation was interrupted.
        click.ClickException: On any other failure.
    """
    reconciler = Reconciler(state.config)
    result = asyncio.run(reconciler.reconcile(request))

    if result.error is not None:
        diagnostic = Diagnostic.from_error(result.error)
        message = f"{diagnostic.summary}: {diagnostic.detail}"
        if isinstance(result.error, CancellationFailure):
            raise Cancelled(message)
        raise click.ClickException(message)

    return result


def echo_record(state: CliState, record: ManagedUnitRecord | None) -> None:
    if record is None:
        return
    click.echo(render(record.to_state(), state.output))


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="pteraform")
@click.option(
    "--output",
    "-o",
    type=click.Choice(OUTPUT_FORMATS),
    default="json",
    show_default=True,
    help="Record output format",
)
@click.option(
    "--log-level",
    type=click.Choice(VALID_LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Override LOG_LEVEL",
)
@click.option(
    "--json-logs/--text-logs",
    default=None,
    help="Override ENABLE_JSON_LOGGING",
)
@click.pass_context
def cli(
    ctx: click.Context,
    output: str,
    log_level: str | None,
    json_logs: bool | None,
) -> None:
    """Run terraform from terraform.

    Configuration is read from the environment (TERRAFORM_BINARY,
    TERRAFORM_STATE_FILE, INIT_TIMEOUT, APPLY_TIMEOUT, ...).
    """
    overrides: dict[str, Any] = {}
    if log_level is not None:
        overrides["log_level"] = log_level.upper()
    if json_logs is not None:
        overrides["json_logging"] = json_logs

    try:
        config = dataclasses.replace(Config.from_env(), **overrides)
    except ConfigurationError as e:
        raise ConfigurationFailed(str(e)) from e

    setup_logging(config)
    ctx.obj = CliState(config=config, output=output)


# =============================================================================
# Lifecycle Commands
# =============================================================================


@cli.command(context_settings={"ignore_unknown_options": True})
@click.argument("working_dir", type=click.Path(file_okay=False, path_type=Path))
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_obj
def apply(state: CliState, working_dir: Path, args: tuple[str, ...]) -> None:
    """Run terraform init and apply in WORKING_DIR.

    ARGS are passed to `terraform apply -auto-approve` unchanged and in order.

    \b
    Examples:
        pteraform apply ./stacks/network
        pteraform apply ./stacks/network -var=value=cool
    """
    planned = ManagedUnitRecord(working_dir=str(working_dir), args=list(args))
    result = execute(state, CreateRequest(planned=planned))
    echo_record(state, result.state)


@cli.command()
@click.argument("working_dir", type=click.Path(file_okay=False, path_type=Path))
@click.pass_obj
def read(state: CliState, working_dir: Path) -> None:
    """Refresh the id of WORKING_DIR from its state file."""
    record = ManagedUnitRecord(working_dir=str(working_dir))
    result = execute(state, ReadRequest(state=record))
    echo_record(state, result.state)


@cli.command("import")
@click.argument("identity")
@click.pass_obj
def import_(state: CliState, identity: str) -> None:
    """Print the record an import of IDENTITY produces."""
    result = execute(state, ImportRequest(identity=identity))
    echo_record(state, result.state)


@cli.command()
@click.argument("working_dir", type=click.Path(file_okay=False, path_type=Path))
@click.pass_obj
def identity(state: CliState, working_dir: Path) -> None:
    """Print the SHA-256 of WORKING_DIR's state file."""
    try:
        digest = compute_identity(working_dir / state.config.state_filename)
    except ProvisioningError as e:
        raise click.ClickException(str(e)) from e
    click.echo(digest)


"""Command line interface for the offboarding toolkit."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer

from .config import AppConfig, ConfigurationError, load_config
from .graph_client import GraphClientError
from .logging_config import configure_logging
from .report import OverallStatus
from .session import offboarding_session
from .workflow import OffboardingWorkflow

app = typer.Typer(help="Deactivate a Microsoft 365 identity across Entra ID and Exchange Online.")

EXIT_FAILED = 1
EXIT_PARTIAL_STRICT = 2


def _load_configuration(config_path: Optional[Path], log_level: Optional[str] = None) -> AppConfig:
    try:
        config = load_config(config_path)
    except ConfigurationError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=EXIT_FAILED)
    configure_logging(log_level or config.logging.level, config.logging.format)
    return config


@app.command("offboard")
def offboard_user(
    user: str = typer.Argument(..., help="User principal name or object ID of the departing user."),
    forward_to: Optional[str] = typer.Option(
        None, "--forward-to", help="Address that should receive the user's incoming mail."
    ),
    internal_message: Optional[str] = typer.Option(
        None, "--internal-message", help="Auto-reply for internal senders (overrides settings)."
    ),
    external_message: Optional[str] = typer.Option(
        None, "--external-message", help="Auto-reply for external senders (overrides settings)."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON."),
    strict: bool = typer.Option(False, "--strict", help="Exit with code 2 when the run is only partial."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override the configured log level."),
    config_path: Optional[Path] = typer.Option(
        None, "--config", help="Path to a specific settings file (overrides default)."
    ),
) -> None:
    """Disable sign-in, revoke access, preserve the mailbox and reclaim licenses."""

    config = _load_configuration(config_path, log_level)
    if internal_message:
        config.offboarding.internal_message = internal_message
    if external_message:
        config.offboarding.external_message = external_message

    if not yes:
        typer.confirm(
            f"Offboard {user}? Sign-in is blocked immediately and cannot be undone by this tool.",
            abort=True,
        )

    try:
        with offboarding_session(config) as session:
            workflow = OffboardingWorkflow.from_config(session.directory, session.mailbox, config.offboarding)
            report = workflow.run(user, forward_to=forward_to)
    except (GraphClientError, ValueError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=EXIT_FAILED)

    if as_json:
        typer.echo(json.dumps(report.to_dict(), indent=2))
    else:
        for line in report.render_lines():
            typer.echo(line)

    status = report.overall_status
    if status == OverallStatus.FAILED:
        raise typer.Exit(code=EXIT_FAILED)
    if status == OverallStatus.PARTIAL and strict:
        raise typer.Exit(code=EXIT_PARTIAL_STRICT)


@app.command("probe")
def probe(
    config_path: Optional[Path] = typer.Option(
        None, "--config", help="Path to a specific settings file (overrides default)."
    ),
) -> None:
    """Check that both the directory and the mailbox service are reachable."""

    config = _load_configuration(config_path)
    try:
        with offboarding_session(config) as session:
            directory_available = session.directory.probe_availability()
            mailbox_available = session.mailbox.probe_availability()
    except GraphClientError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=EXIT_FAILED)

    typer.echo(f"Identity directory: {'available' if directory_available else 'unavailable'}")
    typer.echo(f"Mailbox service: {'available' if mailbox_available else 'unavailable'}")
    if not directory_available:
        raise typer.Exit(code=EXIT_FAILED)


def run():
    app()


if __name__ == "__main__":
    run()

# src/clearbridge/cli.py
"""Clearbridge Command Line Interface.

Entry point for the clearbridge CLI tool.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import typer
import yaml
from pydantic import ValidationError

from clearbridge import __version__
from clearbridge.contracts import BootstrapRequest, Operation
from clearbridge.core.config import ClearbridgeSettings, load_endpoint_catalog, load_settings

if TYPE_CHECKING:
    from clearbridge.engine.services import Services

__all__ = ["app"]

app = typer.Typer(
    name="clearbridge",
    help="Clearbridge: clearance-check invocations against external providers.",
    no_args_is_help=True,
)


@dataclass
class CliState:
    """Global options shared by every subcommand."""

    settings_path: Path | None = None
    database_url: str | None = None
    verbose: bool = False
    json_logs: bool = False


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"clearbridge version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from a .env file.

    Raises:
        typer.Exit: If an explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(f"Error: .env file not found: {env_file}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)


def _load_settings(state: CliState) -> ClearbridgeSettings:
    """Settings from --settings (or defaults), with CLI overrides applied."""
    from clearbridge.core.logging import configure_logging

    if state.settings_path is None:
        settings = ClearbridgeSettings()
    else:
        try:
            settings = load_settings(state.settings_path)
        except FileNotFoundError:
            typer.echo(f"Error: Settings file not found: {state.settings_path}", err=True)
            raise typer.Exit(1) from None
        except ValidationError as e:
            typer.echo("Configuration errors:", err=True)
            for error in e.errors():
                loc = ".".join(str(x) for x in error["loc"])
                typer.echo(f"  - {loc}: {error['msg']}", err=True)
            raise typer.Exit(1) from None

    if state.database_url:
        settings = settings.model_copy(update={"database": settings.database.model_copy(update={"url": state.database_url})})

    configure_logging(
        json_output=state.json_logs or settings.logging.json_output,
        level="DEBUG" if state.verbose else settings.logging.level,
    )
    return settings


@contextmanager
def _services(ctx: typer.Context) -> Iterator[Services]:
    from clearbridge.engine.services import build_services

    settings = _load_settings(ctx.obj)
    services = build_services(settings)
    try:
        yield services
    finally:
        services.close()


def _report(ok: bool, what: str) -> None:
    if ok:
        typer.echo(f"{what}: ok")
        return
    typer.echo(f"{what}: failed (see log)", err=True)
    raise typer.Exit(1)


@app.callback()
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    settings: Path | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
    database: str | None = typer.Option(
        None,
        "--database",
        "-d",
        help="SQLAlchemy database URL (overrides settings).",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
        exists=False,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """Clearbridge: clearance-check invocations against external providers."""
    from clearbridge.core.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "INFO")

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho("Warning: --env-file ignored because --no-dotenv is set.", fg=typer.colors.YELLOW, err=True)

    ctx.obj = CliState(
        settings_path=settings.expanduser() if settings is not None else None,
        database_url=database,
        verbose=verbose,
        json_logs=json_logs,
    )


@app.command("init-db")
def init_db(ctx: typer.Context) -> None:
    """Create the clearance database tables if they are missing."""
    from clearbridge.store.database import ClearanceDB, SchemaCompatibilityError

    settings = _load_settings(ctx.obj)
    try:
        with ClearanceDB.from_url(settings.database.url, echo=settings.database.echo):
            pass
    except SchemaCompatibilityError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1) from None
    typer.echo(f"Database ready: {settings.database.url}")


@app.command("load-endpoints")
def load_endpoints(
    ctx: typer.Context,
    catalog: Path = typer.Argument(..., help="Endpoint catalog YAML file."),
) -> None:
    """Insert or replace endpoint definitions from a catalog file."""
    try:
        seeds = load_endpoint_catalog(catalog.expanduser())
    except FileNotFoundError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None
    except yaml.YAMLError as e:
        typer.echo(f"YAML syntax error in {catalog}: {e}", err=True)
        raise typer.Exit(1) from None
    except (ValueError, ValidationError) as e:
        typer.echo(f"Invalid endpoint catalog: {e}", err=True)
        raise typer.Exit(1) from None

    with _services(ctx) as services:
        for seed in seeds:
            services.catalog.upsert(seed)
    typer.echo(f"Loaded {len(seeds)} endpoint definition(s)")


@app.command()
def create(
    ctx: typer.Context,
    subject: int = typer.Option(..., "--subject", help="Internal subject id."),
    program: int = typer.Option(..., "--program", help="Internal program id."),
    provider: str = typer.Option(..., "--provider", "-p", help="Provider code."),
    operation: Operation = typer.Option(
        Operation.CREATE_CLEARANCE_REQUEST,
        "--operation",
        "-o",
        help="Operation to invoke.",
    ),
) -> None:
    """Create an invocation and run its first attempt."""
    with _services(ctx) as services:
        try:
            invocation_id = services.manager.create_invocation(subject, program, provider, operation)
        except Exception as e:
            typer.echo(f"Error creating invocation: {e}", err=True)
            raise typer.Exit(1) from None
        invocation = services.invocations.get(invocation_id)
    status = invocation.status.value if invocation is not None else "UNKNOWN"
    typer.echo(f"Invocation {invocation_id}: {status}")


@app.command("run-invocation")
def run_invocation(
    ctx: typer.Context,
    invocation_id: int = typer.Argument(..., help="Invocation id."),
    subject: int = typer.Option(0, "--subject", help="Bootstrap subject id (0 = reconstruct)."),
    program: int = typer.Option(0, "--program", help="Bootstrap program id (0 = reconstruct)."),
) -> None:
    """Run one attempt of an existing invocation."""
    with _services(ctx) as services:
        bootstrap = None
        if subject or program:
            invocation = services.invocations.get(invocation_id)
            if invocation is None:
                typer.echo(f"Invocation {invocation_id} not found", err=True)
                raise typer.Exit(1)
            bootstrap = BootstrapRequest(
                subject_id=subject,
                program_id=program,
                provider_code=invocation.provider_code,
                operation=invocation.operation,
            )
        ok = services.manager.run_invocation(invocation_id, bootstrap)
    _report(ok, f"Invocation {invocation_id}")


@app.command("process-pending")
def process_pending(ctx: typer.Context) -> None:
    """Run every PENDING invocation once."""
    with _services(ctx) as services:
        ok = services.manager.process_pending_invocations()
    _report(ok, "Pending sweep")


@app.command("process-retryable")
def process_retryable(ctx: typer.Context) -> None:
    """Re-queue and run due RETRY invocations."""
    with _services(ctx) as services:
        ok = services.manager.process_retryable_invocations()
    _report(ok, "Retry sweep")


@app.command("poll-clearances")
def poll_clearances(ctx: typer.Context) -> None:
    """Drive status checks for clearances still at CLEARANCE_REQUESTED."""
    with _services(ctx) as services:
        ok = services.manager.process_open_clearances()
    _report(ok, "Status poll")


@app.command("poll-acks")
def poll_acks(ctx: typer.Context) -> None:
    """Drive acknowledgements for CLEARED clearances."""
    with _services(ctx) as services:
        ok = services.manager.process_acknowledge()
    _report(ok, "Acknowledge poll")


@app.command()
def progress(
    ctx: typer.Context,
    subject: int = typer.Option(..., "--subject", help="Internal subject id."),
    program: int = typer.Option(..., "--program", help="Internal program id."),
    provider: str = typer.Option(..., "--provider", "-p", help="Provider code."),
) -> None:
    """Create whichever invocation a clearance needs next."""
    with _services(ctx) as services:
        ok = services.manager.check_and_progress_clearance(subject, program, provider)
    _report(ok, "Progress")


@app.command()
def scheduler(
    ctx: typer.Context,
    once: bool = typer.Option(False, "--once", help="Run every sweep once and exit."),
) -> None:
    """Run the periodic sweeps until interrupted."""
    with _services(ctx) as services:
        if once:
            ran = services.scheduler.run_due()
            typer.echo(f"Sweeps run: {', '.join(ran)}")
            return
        services.scheduler.run()


if __name__ == "__main__":
    app()

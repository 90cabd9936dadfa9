"""Typer application and console entry point for warden.

This module wires together the top-level Typer application, registers the
``auth`` sub-command group and defines ``run``, the long-lived supervisor
command used as the container's entry point.

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``.  :class:`~warden.exceptions.WardenError` is mapped to
its exit code; any other exception is written to a crash log under the
data directory.

See Also:
    :mod:`warden.config`: Environment configuration resolved in :func:`main_callback`.
    :mod:`warden.supervisor.process`: What ``run`` drives.
"""

from __future__ import annotations

import sys
import threading
import traceback
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import typer

from warden import __version__
from warden.exit_codes import EXIT_GENERIC_FAILURE


app = typer.Typer(
    name="warden",
    help="Keep a dedicated server authenticated and running.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

from warden.commands.auth import auth_app  # noqa: E402

app.add_typer(auth_app, name="auth", help="Manage stored OAuth credentials.")


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"warden {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Resolves the configuration from the environment, installs the global
    :class:`~warden.output.OutputManager`, and stores the configuration in
    the Typer context for sub-commands.
    """
    from warden.config import resolve_config
    from warden.output import OutputManager, set_output

    config = resolve_config(cli_verbose=verbose)
    if no_color:
        config.no_color = True
    set_output(OutputManager(level=config.log_level, no_color=config.no_color))

    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@app.command(
    "run",
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)
def run_command(
    ctx: typer.Context,
    command: Optional[List[str]] = typer.Argument(
        None, help="Server command. Defaults to the bundled server jar."
    ),
    dry_run: Optional[bool] = typer.Option(
        None, "--dry-run/--no-dry-run", help="Acquire credentials and print the command only."
    ),
    auto_auth: Optional[bool] = typer.Option(
        None,
        "--auto-auth/--no-auto-auth",
        help="Run device authorization when no stored credentials work.",
    ),
) -> None:
    """Acquire credentials and supervise the server until it exits.

    Example::

        warden run -- java -Xmx4G -jar /data/server/HytaleServer.jar --assets /data/Assets.zip
    """
    from warden.auth.http import create_client
    from warden.auth.manager import CredentialManager
    from warden.launch import default_command
    from warden.output import info, separator
    from warden.supervisor.process import ProcessSupervisor

    config = ctx.obj["config"]
    if dry_run is not None:
        config.dry_run = dry_run
    if auto_auth is not None:
        config.auto_auth_on_start = auto_auth

    base = list(command or []) + list(ctx.args)
    prerequisites: list[Path] = []
    if not base:
        base = default_command(config)
        prerequisites = [config.server_jar, config.assets_file]

    separator()
    info("Dedicated Server - Docker Container")
    separator()

    config.log_dir.mkdir(parents=True, exist_ok=True)
    shutdown = threading.Event()
    with create_client() as client:
        manager = CredentialManager.from_config(config, client, cancel=shutdown)
        supervisor = ProcessSupervisor(
            config,
            manager,
            base,
            shutdown=shutdown,
            prerequisites=prerequisites,
            cwd=config.data_dir if config.data_dir.is_dir() else None,
        )
        code = supervisor.run()
    raise typer.Exit(code=code)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path."""
    from warden.config import load_config

    try:
        logs_dir = load_config().log_dir
    except Exception:  # noqa: BLE001
        logs_dir = Path.cwd()
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"warden-crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``warden`` console script.

    Unhandled :class:`~warden.exceptions.WardenError` instances cause a
    clean exit with the error's ``exit_code``.  All other exceptions
    produce a crash log and a generic failure exit.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from warden.exceptions import WardenError
        from warden.output import error

        if isinstance(exc, WardenError):
            error(str(exc))
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)

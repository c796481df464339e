"""jr CLI - command assembly.

Package structure:
    cli/
    ├── __init__.py           # This file - app assembly
    ├── helpers.py            # Config, logging state, service construction
    ├── output.py             # Rich formatting
    └── commands/
        ├── __init__.py       # Command exports
        ├── run.py            # run, start
        ├── status.py         # status, list (ls, last)
        ├── logs.py           # logs (tail, attach)
        ├── manage.py         # stop, rm, prune
        └── doctor.py         # doctor
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from jobrunner import __version__

from . import helpers as helpers
from .commands import doctor, list_jobs, logs, prune, rm, run, start, status, stop
from .helpers import (
    configure_global_logging,
    get_config,
    set_config_path,
    set_log_file,
    set_log_format,
    set_log_level,
)
from .output import console

# =============================================================================
# Typer app definition
# =============================================================================

app = typer.Typer(
    name="jr",
    help="Run long-lived commands as tracked systemd user jobs",
    add_completion=False,
    no_args_is_help=True,
)


# =============================================================================
# Global option callbacks
# =============================================================================


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"jr {__version__}")
        raise typer.Exit()


def log_level_callback(value: str | None) -> str | None:
    if value:
        set_log_level(value)
    return value


def log_file_callback(value: Path | None) -> Path | None:
    if value:
        set_log_file(value)
    return value


def log_format_callback(value: str | None) -> str | None:
    if value:
        set_log_format(value)
    return value


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            help="Config file (default: $JR_CONFIG, then ~/.config/jr/config.yaml)",
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-L",
            callback=log_level_callback,
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
            envvar="JR_LOG_LEVEL",
        ),
    ] = None,
    log_file: Annotated[
        Path | None,
        typer.Option(
            "--log-file",
            callback=log_file_callback,
            help="Path for log file output",
            envvar="JR_LOG_FILE",
        ),
    ] = None,
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            callback=log_format_callback,
            help="Log format: json, console, or both",
            envvar="JR_LOG_FORMAT",
        ),
    ] = None,
) -> None:
    """jr - run commands as systemd user units and keep track of them."""
    set_config_path(config)
    configure_global_logging(get_config())


# =============================================================================
# Command registration
# =============================================================================

# Everything after the command name belongs to the job, including its flags.
_PASSTHROUGH = {"allow_interspersed_args": False}

# Job launch
app.command(context_settings=_PASSTHROUGH)(run)
app.command(context_settings=_PASSTHROUGH)(start)

# Job inspection
app.command(name="list")(list_jobs)
app.command(name="ls", hidden=True)(list_jobs)
app.command(name="last", hidden=True)(list_jobs)
app.command()(status)
app.command()(logs)
app.command(name="tail", hidden=True)(logs)
app.command(name="attach", hidden=True)(logs)

# Job control
app.command()(stop)
app.command()(rm)
app.command()(prune)

# Environment
app.command()(doctor)


# =============================================================================
# Public API
# =============================================================================

__all__ = [
    "app",
    "main",
    "console",
]

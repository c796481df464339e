"""Rich output formatting for the jr CLI.

Centralizes the console instances, state colors, command shortening and
table builders so every command renders jobs the same way.
"""

from __future__ import annotations

import json
import os
import shlex
from collections.abc import Sequence
from datetime import datetime
from typing import Any, Literal

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from jobrunner.reconcile import JobState, ReconciledState

# =============================================================================
# Shared console instances
# =============================================================================

console = Console(highlight=False)

# Warnings and hints go to stderr so `--json` output stays parseable.
err_console = Console(stderr=True, highlight=False)


# =============================================================================
# Color schemes
# =============================================================================


class StateColors:
    """Color mappings for job states."""

    JOB_STATE: dict[JobState, str] = {
        JobState.ACTIVE: "green",
        JobState.ACTIVATING: "yellow",
        JobState.EXITED: "bright_black",
        JobState.FAILED: "red",
        JobState.STOPPED: "magenta",
        JobState.UNKNOWN: "dim",
    }

    @classmethod
    def get(cls, state: ReconciledState) -> str:
        if isinstance(state, JobState):
            return cls.JOB_STATE.get(state, "white")
        return "white"


def format_state(state: ReconciledState) -> str:
    """State value wrapped in its Rich color markup."""
    color = StateColors.get(state)
    return f"[{color}]{state.value}[/{color}]"


# =============================================================================
# Formatters
# =============================================================================


def shorten_command(argv: Sequence[str], max_len: int) -> str:
    """Basename of the executable plus as many arguments as fit in ``max_len``.

    Arguments that would overflow are replaced by a single ``...``.
    """
    if not argv:
        return ""
    command = os.path.basename(argv[0])
    for arg in argv[1:]:
        if len(command) + len(arg) + 1 > max_len:
            command += " ..."
            break
        command += " " + arg
    return command


def format_argv(argv: Sequence[str]) -> str:
    """Render argv as a copy-pasteable shell command."""
    return shlex.join(argv)


def truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def format_created(dt: datetime) -> str:
    """Compact creation time for tables, e.g. ``Jan 02 15:04``."""
    return dt.strftime("%b %d %H:%M")


def format_timestamp(dt: datetime | None) -> str:
    if dt is None:
        return "-"
    return dt.strftime("%Y-%m-%d %H:%M:%S UTC")


# =============================================================================
# Table builders
# =============================================================================


def create_jobs_table() -> Table:
    """Create a styled table for job listings."""
    table = Table(box=None, show_header=True, header_style="bold", pad_edge=False)
    table.add_column("ID", style="cyan", justify="right", no_wrap=True)
    table.add_column("CREATED", style="dim", no_wrap=True)
    table.add_column("NAME", no_wrap=True)
    table.add_column("STATE", no_wrap=True)
    table.add_column("UNIT", style="dim", no_wrap=True)
    table.add_column("CMD", no_wrap=True)
    return table


def create_detail_table() -> Table:
    """Create a borderless key/value table for single-job details."""
    table = Table(box=None, show_header=False, pad_edge=False)
    table.add_column("Field", style="bold", no_wrap=True)
    table.add_column("Value")
    return table


# =============================================================================
# Message helpers
# =============================================================================


def output_json(data: Any) -> None:
    """Print indented JSON to stdout, bypassing Rich wrapping and markup."""
    typer.echo(json.dumps(data, indent=2))


def output_error(
    message: str,
    *,
    hints: list[str] | None = None,
    severity: Literal["error", "warning"] = "error",
    json_output: bool = False,
) -> None:
    """Print an error or warning, with optional hints, to stderr.

    In JSON mode the error goes to stdout as ``{"success": false, ...}`` so
    scripts reading stdout still see it.
    """
    if json_output:
        result: dict[str, Any] = {"success": False, "message": message}
        if hints:
            result["hints"] = hints
        output_json(result)
        return

    color = "red" if severity == "error" else "yellow"
    label = "Error" if severity == "error" else "Warning"
    err_console.print(f"[{color}]{label}:[/{color}] {escape(message)}")
    if hints:
        for hint in hints:
            err_console.print(f"  [dim]- {escape(hint)}[/dim]")


def output_warning(message: str) -> None:
    output_error(message, severity="warning")

"""Status and list commands for the jr CLI.

Both read the registry, ask the supervisor for live state in one batch,
and reconcile. If the supervisor cannot be reached the jobs are still
shown, with state ``unknown``.
"""

from __future__ import annotations

import asyncio
from typing import Any

import typer
from rich.markup import escape

from jobrunner.reconcile import JobState
from jobrunner.service import JobView

from ..helpers import ErrorMessages, get_config, handle_errors, open_service
from ..output import (
    console,
    create_detail_table,
    create_jobs_table,
    format_argv,
    format_created,
    format_state,
    format_timestamp,
    output_error,
    output_json,
    shorten_command,
    truncate,
)

# Width limits for the list table and its JSON counterpart
LIST_COMMAND_WIDTH = 30
LIST_UNIT_WIDTH = 30
JSON_COMMAND_WIDTH = 40


def list_jobs(
    last: int | None = typer.Option(
        None, "--last", help="Show the last N jobs (default from config: 10)", min=1
    ),
    all_jobs: bool = typer.Option(False, "--all", help="Show all jobs"),
    state: str | None = typer.Option(
        None,
        "--state",
        help="Filter by state (active, exited, failed, activating, unknown)",
    ),
    name: str | None = typer.Option(None, "--name", help="Filter by name prefix"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """List recorded jobs, newest first."""
    config = get_config()
    limit = last if last is not None else config.list_limit
    with handle_errors(json_output=json_output):
        asyncio.run(_list_jobs(limit, all_jobs, state, name, json_output))


def status(
    job: str = typer.Argument(..., help="Job id or unit name"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Show detailed status for a job."""
    with handle_errors(json_output=json_output):
        asyncio.run(_status_job(job, json_output))


# =============================================================================
# Async implementation
# =============================================================================


async def _list_jobs(
    limit: int,
    all_jobs: bool,
    state: str | None,
    name: str | None,
    json_output: bool,
) -> None:
    async with open_service() as service:
        views = await service.list_jobs(
            limit=limit, all_jobs=all_jobs, name_prefix=name, state=state
        )

    if json_output:
        output_json([_list_entry(view) for view in views])
        return

    if not views:
        console.print("No jobs found")
        return

    table = create_jobs_table()
    for view in views:
        job = view.job
        table.add_row(
            str(job.id),
            format_created(job.created_at),
            escape(job.name),
            format_state(view.state),
            escape(truncate(job.unit, LIST_UNIT_WIDTH)),
            escape(shorten_command(job.argv, LIST_COMMAND_WIDTH)),
        )
    console.print(table)


def _list_entry(view: JobView) -> dict[str, Any]:
    job = view.job
    return {
        "id": job.id,
        "created": job.created_at.isoformat(),
        "name": job.name,
        "state": view.state.value,
        "unit": job.unit,
        "command": shorten_command(job.argv, JSON_COMMAND_WIDTH),
    }


async def _status_job(token: str, json_output: bool) -> None:
    async with open_service() as service:
        view = await service.inspect(token)

    if view is None:
        output_error(
            f"{ErrorMessages.JOB_NOT_FOUND}: {token}",
            hints=["Run 'jr list' to see recorded jobs"],
            json_output=json_output,
        )
        raise typer.Exit(1)

    if json_output:
        output_json(view.to_dict())
        return

    _output_status_rich(view)


def _output_status_rich(view: JobView) -> None:
    job = view.job
    snapshot = view.snapshot

    table = create_detail_table()
    table.add_row("Job:", str(job.id))
    table.add_row("Name:", escape(job.name))
    table.add_row("Unit:", escape(job.unit))
    table.add_row("Created:", format_timestamp(job.created_at))
    table.add_row("State:", format_state(view.state))
    if snapshot is not None:
        if snapshot.sub_state:
            table.add_row("SubState:", escape(snapshot.sub_state))
        if snapshot.pid is not None:
            table.add_row("PID:", str(snapshot.pid))
        if snapshot.exit_status:
            table.add_row("Exit Code:", escape(snapshot.exit_status))
        if snapshot.started_at:
            table.add_row("Started:", escape(snapshot.started_at))
        if snapshot.exited_at:
            table.add_row("Exited:", escape(snapshot.exited_at))
    if view.state is JobState.UNKNOWN and view.cached is not None:
        table.add_row(
            "Last Known:",
            f"{format_state(view.cached)} [dim]({format_timestamp(job.last_state_at)})[/dim]",
        )
    table.add_row("Working Dir:", escape(job.cwd))
    table.add_row("Command:", escape(format_argv(job.argv)))
    if job.host:
        table.add_row("Host:", escape(job.host))
    if job.user:
        table.add_row("User:", escape(job.user))
    if job.notes:
        table.add_row("Notes:", escape(job.notes))
    console.print(table)

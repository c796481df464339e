"""Stop, rm and prune commands for the jr CLI.

These are the commands that change state: ``stop`` acts on the unit,
``rm`` and ``prune`` on the registry. A failed optional step (pre-stop
signal, cache update, reset-failed) prints a warning and the command
carries on; a failed main step exits 1.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import typer

from jobrunner.service import ActionReport
from jobrunner.utils.time import parse_duration

from ..helpers import get_config, handle_errors, open_service, require_job
from ..output import console, output_warning


def stop(
    job: str = typer.Argument(..., help="Job id or unit name"),
    signal_name: str | None = typer.Option(
        None,
        "--signal",
        help="Send this signal (e.g. SIGINT) before stopping",
    ),
) -> None:
    """Stop a running job."""
    with handle_errors():
        asyncio.run(_stop_job(job, signal_name))


def rm(
    job: str = typer.Argument(..., help="Job id or unit name"),
    stop_first: bool = typer.Option(
        False, "--stop", help="Stop the job before removing it"
    ),
    purge_unit: bool = typer.Option(
        False, "--purge-unit", help="Run reset-failed on the unit after stopping"
    ),
) -> None:
    """Remove a job from the registry."""
    with handle_errors():
        asyncio.run(_remove_job(job, stop_first, purge_unit))


def prune(
    keep: int | None = typer.Option(
        None, "--keep", help="Keep the last N jobs (default from config: 100)", min=0
    ),
    older_than: str | None = typer.Option(
        None, "--older-than", help="Only remove jobs older than this (e.g. 7d, 24h, 1h30m)"
    ),
    failed_only: bool = typer.Option(
        False, "--failed-only", help="Only remove jobs last recorded as failed"
    ),
) -> None:
    """Remove old jobs from the registry.

    Filters combine: a job is removed only if it matches every filter given.
    """
    config = get_config()
    keep_count = keep if keep is not None else config.prune_keep
    with handle_errors():
        age = parse_duration(older_than) if older_than else None
        deleted = asyncio.run(_prune_jobs(keep_count, age, failed_only))
    console.print(f"Pruned {deleted} job(s) (keeping last {keep_count})")


# =============================================================================
# Async implementation
# =============================================================================


def _print_warnings(report: ActionReport) -> None:
    for warning in report.warnings:
        output_warning(warning)


async def _stop_job(token: str, signal_name: str | None) -> None:
    async with open_service() as service:
        record = await require_job(service, token)
        report = await service.stop(record, signal_name)
    _print_warnings(report)
    console.print(f"Stopped {record.id} {record.unit}")


async def _remove_job(token: str, stop_first: bool, purge_unit: bool) -> None:
    async with open_service() as service:
        record = await require_job(service, token)
        report = await service.remove(record, stop=stop_first, purge_unit=purge_unit)
    _print_warnings(report)
    console.print(f"Removed {record.id} {record.unit}")


async def _prune_jobs(keep: int, older_than: timedelta | None, failed_only: bool) -> int:
    async with open_service() as service:
        return await service.prune(keep=keep, older_than=older_than, failed_only=failed_only)

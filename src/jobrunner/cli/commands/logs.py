"""Logs command for the jr CLI (aliases: tail, attach).

Without ``--follow`` the journal is printed and the command exits. With
``--follow`` it runs an attach session: Ctrl+C detaches and leaves the
job running.
"""

from __future__ import annotations

import asyncio
import sys

import typer

from jobrunner.attach import AttachSession, DetachTrigger
from jobrunner.core.logging import get_logger
from jobrunner.supervisor.base import Supervisor

from ..helpers import get_config, handle_errors, open_service, require_job
from ..output import output_error

_logger = get_logger("cli.logs")


def logs(
    job: str = typer.Argument(..., help="Job id or unit name"),
    follow: bool = typer.Option(False, "--follow", "-f", help="Follow log output"),
    lines: int | None = typer.Option(
        None, "--lines", "-n", help="Number of lines to show (default from config: 200)", min=0
    ),
    since: str | None = typer.Option(
        None, "--since", help="Show logs since timestamp (journalctl syntax)"
    ),
    until: str | None = typer.Option(
        None, "--until", help="Show logs until timestamp (journalctl syntax)"
    ),
    raw: bool = typer.Option(
        False, "--raw", help="Message text only, without timestamps"
    ),
) -> None:
    """Show a job's output from the journal."""
    config = get_config()
    count = lines if lines is not None else config.log_lines
    with handle_errors():
        asyncio.run(_show_logs(job, follow, count, since, until, raw))


async def _show_logs(
    token: str,
    follow: bool,
    lines: int,
    since: str | None,
    until: str | None,
    raw: bool,
) -> None:
    async with open_service() as service:
        record = await require_job(service, token)
        supervisor = service.supervisor

    if follow:
        result = await AttachSession(supervisor).run(
            record.unit, job_ref=token, lines=lines
        )
        if result.trigger is DetachTrigger.STREAM_ENDED and result.error is not None:
            output_error(f"log stream failed: {result.error}")
            raise typer.Exit(1)
        return

    await _print_logs(supervisor, record.unit, lines, since, until, raw)


async def _print_logs(
    supervisor: Supervisor,
    unit: str,
    lines: int,
    since: str | None,
    until: str | None,
    raw: bool,
) -> None:
    count = 0
    async for line in supervisor.stream_logs(
        unit, lines=lines, since=since, until=until, raw=raw
    ):
        sys.stdout.write(line)
        count += 1
    sys.stdout.flush()
    _logger.debug("logs.printed", unit=unit, lines=count)

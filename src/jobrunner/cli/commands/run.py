"""Run and start commands for the jr CLI.

``jr run`` launches a command as a transient systemd user unit, records it
in the registry, and optionally attaches to its output. ``jr start`` is
the same without attach.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer

from jobrunner.attach import AttachSession
from jobrunner.core.config import JobRunnerConfig
from jobrunner.service import LaunchRequest, prepare_launch

from ..helpers import get_config, handle_errors, open_service
from ..output import console, err_console, output_error


def run(
    command: list[str] = typer.Argument(
        ...,
        help="Command and its arguments. Everything after the command is passed through.",
        metavar="COMMAND [ARGS]...",
    ),
    name: str | None = typer.Option(
        None, "--name", "-n", help="Job name (default: basename of the command)"
    ),
    cwd: Path | None = typer.Option(
        None, "--cwd", help="Working directory (default: current directory)"
    ),
    env: list[str] | None = typer.Option(
        None, "--env", "-e", help="Environment override K=V (repeatable)"
    ),
    prop: list[str] | None = typer.Option(
        None, "--property", "-p", help="systemd unit property k=v (repeatable)"
    ),
    desc: str | None = typer.Option(None, "--desc", help="Unit description"),
    gpu: str | None = typer.Option(
        None, "--gpu", help="GPU index or list; sets CUDA_VISIBLE_DEVICES"
    ),
    no_linger_check: bool = typer.Option(
        False, "--no-linger-check", help="Skip the lingering check"
    ),
    attach: bool = typer.Option(
        False, "--attach", "-a", help="Attach to the job's output after starting"
    ),
) -> None:
    """Start a command as a tracked background job.

    Examples:
        jr run python train.py --epochs 10
        jr run -n sweep --gpu 0 -a -- ./sweep.sh
    """
    _launch(command, name, cwd, env, prop, desc, gpu, no_linger_check, attach)


def start(
    command: list[str] = typer.Argument(
        ...,
        help="Command and its arguments. Everything after the command is passed through.",
        metavar="COMMAND [ARGS]...",
    ),
    name: str | None = typer.Option(
        None, "--name", "-n", help="Job name (default: basename of the command)"
    ),
    cwd: Path | None = typer.Option(
        None, "--cwd", help="Working directory (default: current directory)"
    ),
    env: list[str] | None = typer.Option(
        None, "--env", "-e", help="Environment override K=V (repeatable)"
    ),
    prop: list[str] | None = typer.Option(
        None, "--property", "-p", help="systemd unit property k=v (repeatable)"
    ),
    desc: str | None = typer.Option(None, "--desc", help="Unit description"),
    gpu: str | None = typer.Option(
        None, "--gpu", help="GPU index or list; sets CUDA_VISIBLE_DEVICES"
    ),
    no_linger_check: bool = typer.Option(
        False, "--no-linger-check", help="Skip the lingering check"
    ),
) -> None:
    """Start a command as a tracked background job without attaching."""
    _launch(command, name, cwd, env, prop, desc, gpu, no_linger_check, False)


def _launch(
    command: list[str],
    name: str | None,
    cwd: Path | None,
    env: list[str] | None,
    prop: list[str] | None,
    desc: str | None,
    gpu: str | None,
    no_linger_check: bool,
    attach: bool,
) -> None:
    config = get_config()
    with handle_errors():
        request = prepare_launch(
            command,
            config,
            name=name,
            cwd=str(cwd) if cwd is not None else None,
            env_items=env or (),
            property_items=prop or (),
            description=desc,
            gpu=gpu,
            attach=attach,
        )
        linger_check = config.linger_check and not no_linger_check
        asyncio.run(_run_job(request, config, linger_check=linger_check, attach=attach))


async def _run_job(
    request: LaunchRequest,
    config: JobRunnerConfig,
    *,
    linger_check: bool,
    attach: bool,
) -> None:
    async with open_service(config) as service:
        if linger_check:
            warning = await service.linger_warning()
            if warning:
                err_console.print(f"[yellow]{warning}[/yellow]")
                err_console.print()
        result = await service.launch(request)
        supervisor = service.supervisor

    if not result.recorded:
        output_error(
            str(result.persistence_error),
            hints=[
                f"The job is running untracked; view logs with: "
                f"journalctl --user -u {result.unit}",
                f"Stop it with: systemctl --user stop {result.unit}",
            ],
        )
        raise typer.Exit(1)

    console.print(f"Started {result.job_id} {result.unit}")
    if not attach:
        return

    outcome = await AttachSession(supervisor).run(result.unit, job_ref=str(result.job_id))
    if outcome.error is not None:
        output_error(f"log stream failed: {outcome.error}")
        raise typer.Exit(1)

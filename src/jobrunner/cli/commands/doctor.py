"""Doctor command: check that this machine can run jr jobs."""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass

import typer
from rich.markup import escape

from jobrunner.core.errors import JobRunnerError, SupervisorUnavailableError
from jobrunner.supervisor.base import Supervisor

from ..helpers import get_config, open_service
from ..output import console


@dataclass
class CheckResult:
    name: str
    status: str  # "ok", "warn", "fail"
    summary: str
    details: list[str]


_STATUS_STYLE = {
    "ok": "green",
    "warn": "yellow",
    "fail": "red",
}


def doctor() -> None:
    """Check the environment and prerequisites."""
    results = asyncio.run(_run_checks())

    console.print("Checking environment...")
    console.print()
    for result in results:
        style = _STATUS_STYLE[result.status]
        console.print(f"{result.name}: [{style}]{escape(result.summary)}[/{style}]")
        for detail in result.details:
            console.print(f"  {escape(detail)}")
    console.print()

    if any(r.status == "fail" for r in results):
        console.print("[bold red]Some checks failed. See above for details.[/bold red]")
        raise typer.Exit(1)
    if any(r.status == "warn" for r in results):
        console.print("[bold yellow]Checks passed with warnings.[/bold yellow]")
        return
    console.print("[bold green]All checks passed![/bold green]")


async def _run_checks() -> list[CheckResult]:
    config = get_config()
    results: list[CheckResult] = []

    try:
        async with open_service(config) as service:
            results.append(
                CheckResult("job registry", "ok", "OK", [str(config.db_path)])
            )
            supervisor = service.supervisor

            missing = supervisor.missing_tools()
            for tool in missing:
                results.append(
                    CheckResult(tool, "fail", "FAIL", [f"{tool} not found in PATH"])
                )
            if not missing:
                results.append(CheckResult(f"{supervisor.name} tools", "ok", "OK", []))

            try:
                await supervisor.check_health()
                results.append(CheckResult(f"{supervisor.name} user manager", "ok", "OK", []))
            except SupervisorUnavailableError as e:
                results.append(
                    CheckResult(f"{supervisor.name} user manager", "fail", "FAIL", [f"Error: {e}"])
                )

            results.append(await _check_linger(supervisor))
    except JobRunnerError as e:
        results.append(CheckResult("job registry", "fail", "FAIL", [str(e)]))

    return results


async def _check_linger(supervisor: Supervisor) -> CheckResult:
    try:
        enabled = await supervisor.check_linger_enabled()
    except SupervisorUnavailableError as e:
        return CheckResult("lingering", "warn", "UNKNOWN", [f"Error checking: {e}"])
    if enabled:
        return CheckResult("lingering", "ok", "OK (enabled)", [])
    user = os.environ.get("USER", "$USER")
    return CheckResult(
        "lingering",
        "warn",
        "WARNING (not enabled)",
        [
            "Jobs may stop when you log out.",
            f"To enable: sudo loginctl enable-linger {user}",
        ],
    )

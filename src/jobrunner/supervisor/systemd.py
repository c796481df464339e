"""systemd user-manager supervisor.

Jobs run as transient user units created with ``systemd-run --user``;
``systemctl --user`` reports and controls them and ``journalctl --user``
serves their output.

Security Note: every command goes through asyncio.create_subprocess_exec()
with an argument list, never a shell string, so job argv and environment
values are passed through verbatim.
"""

from __future__ import annotations

import asyncio
import os
import shutil
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass

from jobrunner.core.errors import SupervisorUnavailableError
from jobrunner.core.logging import get_logger
from jobrunner.supervisor.base import Supervisor, UnitStatus

_logger = get_logger("supervisor.systemd")

REQUIRED_TOOLS = ("systemctl", "systemd-run", "journalctl")

# Seconds to wait for journalctl to exit after we stop reading it.
LOG_READER_EXIT_TIMEOUT: float = 2.0

# `systemctl show` property name -> UnitStatus attribute
SHOW_PROPERTIES: dict[str, str] = {
    "ActiveState": "active_state",
    "SubState": "sub_state",
    "ExecMainStatus": "exit_status",
    "ExecMainPID": "main_pid",
    "ExecMainStartTimestamp": "started_at",
    "ExecMainExitTimestamp": "exited_at",
}


@dataclass
class CommandResult:
    """Captured outcome of a short-lived systemd command."""

    returncode: int
    stdout: str
    stderr: str


def build_launch_command(
    unit: str,
    argv: Sequence[str],
    env: dict[str, str] | None,
    properties: dict[str, str] | None,
    description: str,
) -> list[str]:
    """Assemble the ``systemd-run`` invocation for a new job.

    ``--same-dir`` makes the unit inherit systemd-run's working directory,
    which the caller sets to the job's cwd. ``--collect`` lets systemd
    garbage-collect the unit even if it failed.
    """
    cmd = ["systemd-run", "--user", "--unit", unit, "--same-dir", "--collect"]
    if description:
        cmd += ["-p", f"Description={description}"]
    for key, value in (env or {}).items():
        cmd += ["--setenv", f"{key}={value}"]
    for key, value in (properties or {}).items():
        cmd += ["-p", f"{key}={value}"]
    cmd.append("--")
    cmd.extend(argv)
    return cmd


def build_journal_command(
    unit: str,
    *,
    follow: bool = False,
    lines: int = 0,
    since: str | None = None,
    until: str | None = None,
    raw: bool = False,
) -> list[str]:
    cmd = ["journalctl", "--user", "-u", unit, "-o", "cat" if raw else "short-iso"]
    if follow:
        cmd.append("-f")
    if lines > 0:
        cmd += ["-n", str(lines)]
    if since:
        cmd += ["--since", since]
    if until:
        cmd += ["--until", until]
    return cmd


def parse_show_output(output: str, units: Sequence[str]) -> dict[str, UnitStatus]:
    """Split ``systemctl show U1 U2 ...`` output into per-unit snapshots.

    systemctl prints one ``Key=Value`` block per unit, in request order,
    separated by blank lines. Every requested unit gets an entry even if
    its block is missing.
    """
    result = {unit: UnitStatus(unit=unit) for unit in units}
    if not units:
        return result

    index = 0
    for line in output.splitlines():
        if not line.strip():
            index = min(index + 1, len(units) - 1)
            continue
        key, sep, value = line.partition("=")
        attr = SHOW_PROPERTIES.get(key)
        if sep and attr is not None:
            setattr(result[units[index]], attr, value)
    return result


class SystemdSupervisor(Supervisor):
    """Supervisor backed by the calling user's systemd instance."""

    async def _run(self, cmd: list[str], *, cwd: str | None = None) -> CommandResult:
        _logger.debug("supervisor.exec", command=cmd[0], args_count=len(cmd) - 1)
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
            )
            stdout, stderr = await process.communicate()
        except OSError as e:
            raise SupervisorUnavailableError(
                f"cannot execute {cmd[0]}", command=cmd, stderr=str(e)
            ) from e
        return CommandResult(
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )

    async def _run_checked(
        self,
        cmd: list[str],
        failure: str,
        *,
        cwd: str | None = None,
    ) -> CommandResult:
        result = await self._run(cmd, cwd=cwd)
        if result.returncode != 0:
            _logger.warning(
                "supervisor.command_failed",
                command=cmd[:3],
                returncode=result.returncode,
                stderr=result.stderr.strip()[:500],
            )
            raise SupervisorUnavailableError(
                failure,
                command=cmd,
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result

    async def launch(
        self,
        unit: str,
        cwd: str,
        argv: Sequence[str],
        env: dict[str, str] | None,
        properties: dict[str, str] | None,
        description: str,
    ) -> None:
        cmd = build_launch_command(unit, argv, env, properties, description)
        await self._run_checked(cmd, f"failed to start unit {unit}", cwd=cwd)
        _logger.info("supervisor.launched", unit=unit, cwd=cwd)

    async def stop(self, unit: str) -> None:
        await self._run_checked(
            ["systemctl", "--user", "stop", unit], f"failed to stop unit {unit}"
        )

    async def kill(self, unit: str, signal_name: str) -> None:
        await self._run_checked(
            ["systemctl", "--user", "kill", "-s", signal_name, unit],
            f"failed to send {signal_name} to {unit}",
        )

    async def reset_failed(self, unit: str) -> None:
        await self._run_checked(
            ["systemctl", "--user", "reset-failed", unit],
            f"failed to reset-failed {unit}",
        )

    async def query(self, units: Sequence[str]) -> dict[str, UnitStatus]:
        units = list(units)
        if not units:
            return {}
        cmd = ["systemctl", "--user", "show", *units]
        for prop in SHOW_PROPERTIES:
            cmd += ["-p", prop]
        result = await self._run_checked(cmd, "systemctl show failed")
        return parse_show_output(result.stdout, units)

    async def stream_logs(
        self,
        unit: str,
        *,
        follow: bool = False,
        lines: int = 0,
        since: str | None = None,
        until: str | None = None,
        raw: bool = False,
    ) -> AsyncIterator[str]:
        cmd = build_journal_command(
            unit, follow=follow, lines=lines, since=since, until=until, raw=raw
        )
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SupervisorUnavailableError(
                "cannot execute journalctl", command=cmd, stderr=str(e)
            ) from e

        assert process.stdout is not None
        try:
            while True:
                chunk = await process.stdout.readline()
                if not chunk:
                    break
                yield chunk.decode("utf-8", errors="replace")
            await process.wait()
        finally:
            if process.returncode is None:
                await self._close_reader(process)

        if process.returncode != 0:
            stderr = b""
            if process.stderr is not None:
                stderr = await process.stderr.read()
            raise SupervisorUnavailableError(
                "log stream ended",
                command=cmd,
                returncode=process.returncode,
                stderr=stderr.decode("utf-8", errors="replace"),
            )

    @staticmethod
    async def _close_reader(process: asyncio.subprocess.Process) -> None:
        """Stop a journalctl reader we no longer consume. The job is unaffected."""
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=LOG_READER_EXIT_TIMEOUT)
        except TimeoutError:
            process.kill()
            await process.wait()

    async def check_health(self) -> None:
        await self._run_checked(
            ["systemctl", "--user", "status"], "systemd user manager not reachable"
        )

    async def check_linger_enabled(self) -> bool:
        user = os.environ.get("USER")
        if not user:
            raise SupervisorUnavailableError("USER environment variable not set")
        result = await self._run_checked(
            ["loginctl", "show-user", user, "-p", "Linger"],
            f"cannot query lingering for {user}",
        )
        return result.stdout.strip() == "Linger=yes"

    def missing_tools(self) -> list[str]:
        return [tool for tool in REQUIRED_TOOLS if shutil.which(tool) is None]

    @property
    def name(self) -> str:
        return "systemd"

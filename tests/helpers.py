"""Shared test helpers for jr tests."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from jobrunner.core.errors import SupervisorUnavailableError
from jobrunner.supervisor.base import Supervisor, UnitStatus


class FakeClock:
    """Manually advanced clock for ``JobStore(clock=...)``."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class LaunchCall:
    unit: str
    cwd: str
    argv: list[str]
    env: dict[str, str] | None
    properties: dict[str, str] | None
    description: str


@dataclass
class FakeSupervisor(Supervisor):
    """In-memory supervisor.

    ``fail_on`` names operations that raise ``SupervisorUnavailableError``.
    Launched units report ``active``/``running`` until ``statuses`` says
    otherwise. ``follow_forever`` keeps a followed log stream open until
    the consumer cancels it.
    """

    statuses: dict[str, UnitStatus] = field(default_factory=dict)
    log_lines: list[str] = field(default_factory=list)
    follow_forever: bool = False
    stream_error: Exception | None = None
    linger: bool = True
    missing: list[str] = field(default_factory=list)
    fail_on: set[str] = field(default_factory=set)

    launched: list[LaunchCall] = field(default_factory=list)
    calls: list[tuple[Any, ...]] = field(default_factory=list)
    stream_cancelled: bool = False

    def _record(self, op: str, *args: Any) -> None:
        self.calls.append((op, *args))
        if op in self.fail_on:
            raise SupervisorUnavailableError(f"{op} failed", stderr="simulated")

    def ops(self) -> list[str]:
        return [call[0] for call in self.calls]

    async def launch(
        self,
        unit: str,
        cwd: str,
        argv: Sequence[str],
        env: dict[str, str] | None,
        properties: dict[str, str] | None,
        description: str,
    ) -> None:
        self._record("launch", unit)
        self.launched.append(
            LaunchCall(unit, cwd, list(argv), env, properties, description)
        )
        self.statuses.setdefault(
            unit,
            UnitStatus(
                unit=unit,
                active_state="active",
                sub_state="running",
                main_pid="4242",
            ),
        )

    async def stop(self, unit: str) -> None:
        self._record("stop", unit)

    async def kill(self, unit: str, signal_name: str) -> None:
        self._record("kill", unit, signal_name)

    async def reset_failed(self, unit: str) -> None:
        self._record("reset_failed", unit)

    async def query(self, units: Sequence[str]) -> dict[str, UnitStatus]:
        self._record("query", tuple(units))
        return {u: self.statuses.get(u, UnitStatus(unit=u)) for u in units}

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
        self._record("stream_logs", unit, follow, lines)
        try:
            for line in self.log_lines:
                yield line
            if self.stream_error is not None:
                raise self.stream_error
            if follow and self.follow_forever:
                await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.stream_cancelled = True
            raise

    async def check_health(self) -> None:
        self._record("check_health")

    async def check_linger_enabled(self) -> bool:
        self._record("check_linger_enabled")
        return self.linger

    def missing_tools(self) -> list[str]:
        return list(self.missing)

    @property
    def name(self) -> str:
        return "fake"

"""Abstract base for the process supervisor jr delegates jobs to."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Any


@dataclass
class UnitStatus:
    """One unit's live state as reported by the supervisor.

    Values are the supervisor's raw strings; an empty string means the
    supervisor did not report that property. Never persisted.
    """

    unit: str
    active_state: str = ""
    """Coarse activity: active, inactive, failed, activating, ..."""

    sub_state: str = ""
    """Fine-grained state: running, dead, exited, auto-restart, ..."""

    exit_status: str = ""
    """Main process exit status code."""

    main_pid: str = ""
    """Main process id; "0" when not running."""

    started_at: str = ""
    exited_at: str = ""

    @property
    def is_empty(self) -> bool:
        """True when the supervisor told us nothing about the unit."""
        return not self.active_state

    @property
    def pid(self) -> int | None:
        try:
            pid = int(self.main_pid)
        except ValueError:
            return None
        return pid if pid > 0 else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "activeState": self.active_state,
            "subState": self.sub_state,
            "pid": self.main_pid,
            "exitCode": self.exit_status,
            "started": self.started_at,
            "exited": self.exited_at,
        }


class Supervisor(ABC):
    """Launches, stops, and reports on jobs; streams their logs.

    Write operations raise ``SupervisorUnavailableError`` on failure.
    ``query`` raises it when the whole batch fails; callers on read paths
    are expected to degrade to "no information" rather than abort.
    """

    @abstractmethod
    async def launch(
        self,
        unit: str,
        cwd: str,
        argv: Sequence[str],
        env: dict[str, str] | None,
        properties: dict[str, str] | None,
        description: str,
    ) -> None:
        """Start ``argv`` in ``cwd`` as transient unit ``unit``."""
        ...

    @abstractmethod
    async def stop(self, unit: str) -> None: ...

    @abstractmethod
    async def kill(self, unit: str, signal_name: str) -> None:
        """Send ``signal_name`` (e.g. ``SIGINT``) to the unit's processes."""
        ...

    @abstractmethod
    async def reset_failed(self, unit: str) -> None: ...

    @abstractmethod
    async def query(self, units: Sequence[str]) -> dict[str, UnitStatus]:
        """Return a snapshot for every requested unit.

        Units the supervisor does not know still get an entry (possibly
        empty), so callers never need an existence check.
        """
        ...

    @abstractmethod
    def stream_logs(
        self,
        unit: str,
        *,
        follow: bool = False,
        lines: int = 0,
        since: str | None = None,
        until: str | None = None,
        raw: bool = False,
    ) -> AsyncIterator[str]:
        """Yield the unit's log lines (newline included).

        With ``follow`` the iterator only ends when the source ends or the
        consumer stops iterating.
        """
        ...

    @abstractmethod
    async def check_health(self) -> None:
        """Raise ``SupervisorUnavailableError`` if the supervisor is unreachable."""
        ...

    @abstractmethod
    async def check_linger_enabled(self) -> bool: ...

    def missing_tools(self) -> list[str]:
        """Names of required executables that are not installed."""
        return []

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable supervisor name."""
        ...

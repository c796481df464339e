"""Attach sessions: follow a job's output until the user detaches.

An attach session runs two tasks side by side:

- the *follower*, which streams ``journalctl -f`` output for the unit to
  the terminal, and
- the *interrupt waiter*, which completes on Ctrl+C (SIGINT) or SIGTERM.

Whichever finishes first decides the outcome and the other is cancelled;
its result is discarded, never acted on. Detaching only disconnects the
local display. Nothing is sent to the supervisor, so the job keeps
running.
"""

from __future__ import annotations

import asyncio
import signal
import sys
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum

from jobrunner.core.logging import JobContext, get_logger, with_job_context
from jobrunner.supervisor.base import Supervisor

_logger = get_logger("attach")

DETACH_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class SessionState(str, Enum):
    STREAMING = "streaming"
    DETACHED = "detached"


class DetachTrigger(str, Enum):
    """What ended the session."""

    INTERRUPT = "interrupt"
    STREAM_ENDED = "stream_ended"


@dataclass
class AttachResult:
    state: SessionState
    trigger: DetachTrigger
    error: BaseException | None = None
    """Follower failure; only ever set when ``trigger`` is STREAM_ENDED."""


def _write_stdout(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


def _print_stdout(text: str) -> None:
    print(text, flush=True)


class AttachSession:
    """One foreground attach to a job's log stream.

    Args:
        supervisor: Source of the log stream.
        interrupt: Event that requests a detach when set. When omitted the
            session sets its own event from SIGINT/SIGTERM handlers that are
            installed for the duration of ``run()`` only.
        write: Sink for raw log lines (newline included).
        notice: Sink for the session's own banner and guidance lines.
    """

    def __init__(
        self,
        supervisor: Supervisor,
        *,
        interrupt: asyncio.Event | None = None,
        write: Callable[[str], None] = _write_stdout,
        notice: Callable[[str], None] = _print_stdout,
    ) -> None:
        self._supervisor = supervisor
        self._interrupt = interrupt
        self._write = write
        self._notice = notice
        self.state = SessionState.STREAMING

    async def run(
        self,
        unit: str,
        *,
        job_ref: str | None = None,
        lines: int = 0,
        banner: bool = True,
    ) -> AttachResult:
        """Stream ``unit``'s output until it ends or the user detaches.

        Args:
            unit: Unit whose journal to follow.
            job_ref: How the user refers to the job, used in the reattach
                hints. Defaults to the unit name.
            lines: Number of past lines to show before following.
            banner: Print the attach banner before streaming.
        """
        ref = job_ref or unit
        self.state = SessionState.STREAMING

        with with_job_context(JobContext(unit=unit)), self._interrupt_event() as interrupt:
            if banner:
                self._notice("")
                self._notice(
                    "=== Attached to job output "
                    "(press Ctrl+C to detach, job continues running) ==="
                )
                self._notice("")

            follower = asyncio.create_task(
                self._follow(unit, lines), name=f"attach-follow:{unit}"
            )
            waiter = asyncio.create_task(interrupt.wait(), name="attach-interrupt")
            _logger.debug("attach.started")

            try:
                done, _ = await asyncio.wait(
                    {follower, waiter}, return_when=asyncio.FIRST_COMPLETED
                )
            except asyncio.CancelledError:
                await self._discard(follower, waiter)
                raise

            self.state = SessionState.DETACHED

            # If both are done the stream end wins: the job already finished.
            if follower in done:
                await self._discard(waiter)
                error = None if follower.cancelled() else follower.exception()
                _logger.info(
                    "attach.stream_ended",
                    error=str(error) if error is not None else None,
                )
                return AttachResult(self.state, DetachTrigger.STREAM_ENDED, error)

            await self._discard(follower)
            _logger.info("attach.detached")
            self._notice("")
            self._notice("=== Detached from job (job is still running) ===")
            self._notice(f"View logs: jr logs {ref}")
            self._notice(f"Stop job:  jr stop {ref}")
            return AttachResult(self.state, DetachTrigger.INTERRUPT)

    async def _follow(self, unit: str, lines: int) -> None:
        async for line in self._supervisor.stream_logs(unit, follow=True, lines=lines):
            self._write(line)

    @staticmethod
    async def _discard(*tasks: asyncio.Task[object]) -> None:
        """Cancel losing tasks and wait for them, dropping their outcome."""
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    @contextmanager
    def _interrupt_event(self) -> Iterator[asyncio.Event]:
        if self._interrupt is not None:
            yield self._interrupt
            return

        event = asyncio.Event()
        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        for sig in DETACH_SIGNALS:
            try:
                loop.add_signal_handler(sig, event.set)
            except (NotImplementedError, RuntimeError, ValueError):
                # Not the main thread, or no signal support on this loop.
                _logger.debug("attach.signal_handler_unavailable", signal=sig.name)
                continue
            installed.append(sig)
        try:
            yield event
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)

"""Job lifecycle service, independent of the CLI.

Implements the run/list/status/stop/rm/prune flows on top of a
``JobStore`` and a ``Supervisor``, without any dependency on Rich or
Typer. The CLI is a thin wrapper that renders what this returns.

Ordering rule for ``launch``: generate unit name, launch the unit, then
record it. The two systems are not transactional; if recording fails
the job keeps running untracked and the caller gets a
``PostLaunchPersistenceError`` in the result instead of a rollback.
"""

from __future__ import annotations

import os
import shutil
import socket
import sqlite3
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

from jobrunner.core.config import JobRunnerConfig
from jobrunner.core.errors import (
    InvalidInputError,
    JobNotFoundError,
    PostLaunchPersistenceError,
    StoreError,
    SupervisorUnavailableError,
)
from jobrunner.core.logging import JobContext, get_logger, with_job_context
from jobrunner.reconcile import JobState, ReconciledState, cached_state, reconcile
from jobrunner.registry.identity import generate_unit_name
from jobrunner.registry.store import JobRecord, JobStore
from jobrunner.supervisor.base import Supervisor, UnitStatus

_logger = get_logger("service")

# Forwarded so colour-aware tools keep colouring when attached.
_ATTACH_TERMINAL_VARS = ("TERM", "COLORTERM")

# Live states worth caching: the unit may be garbage-collected afterwards.
_TERMINAL_STATES = (JobState.EXITED, JobState.FAILED)


# =============================================================================
# Input preparation (no side effects)
# =============================================================================


def parse_assignments(items: Sequence[str], kind: str) -> dict[str, str]:
    """Parse repeated ``KEY=VALUE`` options into a dict.

    Later duplicates win. The value may itself contain ``=``.

    Raises:
        InvalidInputError: If an item has no ``=`` or an empty key.
    """
    result: dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise InvalidInputError(f"invalid {kind} format: {item} (expected K=V)")
        result[key] = value
    return result


def command_exists(command: str) -> bool:
    """True if ``command`` is an existing path or an executable on PATH."""
    if "/" in command:
        return Path(command).exists()
    return shutil.which(command) is not None


@dataclass
class LaunchRequest:
    """Everything needed to start and record one job."""

    name: str
    cwd: str
    argv: list[str]
    env: dict[str, str]
    properties: dict[str, str]
    description: str
    host: str | None = None
    user: str | None = None


def prepare_launch(
    argv: Sequence[str],
    config: JobRunnerConfig,
    *,
    name: str | None = None,
    cwd: str | None = None,
    env_items: Sequence[str] = (),
    property_items: Sequence[str] = (),
    description: str | None = None,
    gpu: str | None = None,
    attach: bool = False,
    environ: Mapping[str, str] | None = None,
) -> LaunchRequest:
    """Validate CLI input and build a ``LaunchRequest``.

    Raises:
        InvalidInputError: For an empty command, a command that does not
            exist, or malformed ``--env`` / ``--property`` items.
    """
    if not argv:
        raise InvalidInputError("requires a command to run")
    command = argv[0]
    if not command_exists(command):
        raise InvalidInputError(f"command not found: {command}")

    environ = os.environ if environ is None else environ
    env_overrides = parse_assignments(env_items, "env")
    properties = parse_assignments(property_items, "property")

    env: dict[str, str] = dict(environ) if config.capture_environment else {}
    env.update(env_overrides)
    if gpu:
        env["CUDA_VISIBLE_DEVICES"] = gpu

    if attach:
        properties["StandardOutput"] = "journal+console"
        properties["StandardError"] = "journal+console"
        for var in _ATTACH_TERMINAL_VARS:
            if environ.get(var):
                env[var] = environ[var]
        env["FORCE_COLOR"] = "1"
        env["CLICOLOR_FORCE"] = "1"

    job_name = name or os.path.basename(command)
    workdir = Path(cwd).expanduser() if cwd else Path.cwd()
    if not workdir.is_dir():
        raise InvalidInputError(f"working directory does not exist: {workdir}")

    return LaunchRequest(
        name=job_name,
        cwd=str(workdir.resolve()),
        argv=list(argv),
        env=env,
        properties=properties,
        description=description or config.describe(job_name),
        host=socket.gethostname() or None,
        user=environ.get("USER") or None,
    )


# =============================================================================
# Results
# =============================================================================


@dataclass
class LaunchResult:
    unit: str
    job_id: int | None = None
    persistence_error: PostLaunchPersistenceError | None = None

    @property
    def recorded(self) -> bool:
        return self.persistence_error is None


@dataclass
class JobView:
    """A registry record joined with its live state."""

    job: JobRecord
    snapshot: UnitStatus | None
    state: ReconciledState

    @property
    def live(self) -> bool:
        """False when the supervisor could not be asked about this job."""
        return self.snapshot is not None

    @property
    def cached(self) -> ReconciledState | None:
        return cached_state(self.job)

    def to_dict(self) -> dict[str, Any]:
        result = self.job.to_dict()
        result["state"] = self.state.value
        if self.snapshot is not None:
            result.update(self.snapshot.to_dict())
        return result


@dataclass
class ActionReport:
    """Outcome of a multi-step write: the action succeeded, with warnings."""

    job: JobRecord
    warnings: list[str] = field(default_factory=list)


# =============================================================================
# Service
# =============================================================================


class JobService:
    """Job operations over one open ``JobStore`` and one ``Supervisor``."""

    def __init__(self, store: JobStore, supervisor: Supervisor) -> None:
        self._store = store
        self._supervisor = supervisor

    @property
    def store(self) -> JobStore:
        return self._store

    @property
    def supervisor(self) -> Supervisor:
        return self._supervisor

    async def launch(self, request: LaunchRequest) -> LaunchResult:
        """Start a job, then record it.

        Raises:
            SupervisorUnavailableError: If the unit could not be started.
                Nothing is recorded in that case.
        """
        unit = generate_unit_name(request.name)
        with with_job_context(JobContext(unit=unit)):
            await self._supervisor.launch(
                unit,
                request.cwd,
                request.argv,
                request.env,
                request.properties,
                request.description,
            )
            try:
                job_id = await self._store.create(
                    request.name,
                    unit,
                    request.cwd,
                    request.argv,
                    env=request.env,
                    properties=request.properties,
                    host=request.host,
                    user=request.user,
                )
            except (StoreError, sqlite3.Error) as e:
                _logger.error("service.post_launch_record_failed", error=str(e))
                return LaunchResult(
                    unit=unit, persistence_error=PostLaunchPersistenceError(unit, e)
                )
        return LaunchResult(unit=unit, job_id=job_id)

    async def snapshot_units(self, units: Sequence[str]) -> dict[str, UnitStatus | None]:
        """Best-effort batch query.

        Every requested unit maps to a snapshot, or to ``None`` when the
        supervisor could not be asked at all.
        """
        if not units:
            return {}
        try:
            snapshots = await self._supervisor.query(units)
        except SupervisorUnavailableError as e:
            _logger.warning("service.query_failed", units=len(units), error=str(e))
            return {unit: None for unit in units}
        return {unit: snapshots.get(unit) for unit in units}

    async def _views(self, jobs: Sequence[JobRecord]) -> list[JobView]:
        snapshots = await self.snapshot_units([job.unit for job in jobs])
        views = [
            JobView(job=job, snapshot=snapshots[job.unit], state=reconcile(snapshots[job.unit]))
            for job in jobs
        ]
        for view in views:
            await self._record_transition(view)
        return views

    async def _record_transition(self, view: JobView) -> None:
        """Cache a newly observed terminal state.

        A unit that was stopped reports ``exited`` afterwards; that does not
        replace ``stopped``. Failing to cache never fails the read.
        """
        if view.state not in _TERMINAL_STATES:
            return
        cached = view.job.last_known_state
        if cached == view.state.value:
            return
        if cached == JobState.STOPPED.value and view.state is JobState.EXITED:
            return
        try:
            await self._store.update_state(view.job.id, view.state.value)
        except (StoreError, sqlite3.Error) as e:
            _logger.warning("service.cache_state_failed", job_id=view.job.id, error=str(e))

    async def list_jobs(
        self,
        *,
        limit: int = 10,
        all_jobs: bool = False,
        name_prefix: str | None = None,
        state: str | None = None,
    ) -> list[JobView]:
        """Recent jobs with live state, newest first.

        ``state`` filters on the reconciled state, so it is applied after
        the limit: ``--last 10 --state failed`` shows the failed jobs among
        the ten most recent.
        """
        if name_prefix:
            jobs = await self._store.list_by_name_prefix(
                name_prefix, None if all_jobs else limit
            )
        else:
            jobs = await self._store.list(limit, all_jobs)
        views = await self._views(jobs)
        if state:
            views = [v for v in views if v.state.value == state]
        return views

    async def inspect(self, token: str) -> JobView | None:
        job = await self._store.resolve(token)
        if job is None:
            return None
        return (await self._views([job]))[0]

    async def stop(self, job: JobRecord, signal_name: str | None = None) -> ActionReport:
        """Stop a job's unit and cache the ``stopped`` state.

        Raises:
            SupervisorUnavailableError: If the stop itself fails. A failed
                pre-stop signal or cache update only adds a warning.
        """
        report = ActionReport(job=job)
        with with_job_context(JobContext(job_id=job.id, unit=job.unit)):
            if signal_name:
                try:
                    await self._supervisor.kill(job.unit, signal_name)
                except SupervisorUnavailableError as e:
                    report.warnings.append(f"failed to send signal: {e}")

            await self._supervisor.stop(job.unit)
            _logger.info("service.stopped")

            try:
                await self._store.update_state(job.id, JobState.STOPPED.value)
            except (JobNotFoundError, sqlite3.Error) as e:
                report.warnings.append(f"failed to update job state: {e}")

        for warning in report.warnings:
            _logger.warning("service.stop_warning", job_id=job.id, detail=warning)
        return report

    async def remove(
        self,
        job: JobRecord,
        *,
        stop: bool = False,
        purge_unit: bool = False,
    ) -> ActionReport:
        """Delete a job from the registry, optionally stopping it first."""
        report = ActionReport(job=job)
        with with_job_context(JobContext(job_id=job.id, unit=job.unit)):
            if stop:
                try:
                    await self._supervisor.stop(job.unit)
                except SupervisorUnavailableError as e:
                    report.warnings.append(f"failed to stop unit: {e}")
                if purge_unit:
                    try:
                        await self._supervisor.reset_failed(job.unit)
                    except SupervisorUnavailableError as e:
                        report.warnings.append(f"failed to reset-failed: {e}")

            await self._store.delete(job.id)
            _logger.info("service.removed")
        return report

    async def prune(
        self,
        *,
        keep: int,
        older_than: timedelta | None = None,
        failed_only: bool = False,
    ) -> int:
        return await self._store.prune(keep, older_than, failed_only)

    async def linger_warning(self) -> str | None:
        """A hint to print when lingering is off, else None.

        Failure to determine lingering is not worth bothering the user with.
        """
        try:
            enabled = await self._supervisor.check_linger_enabled()
        except SupervisorUnavailableError as e:
            _logger.debug("service.linger_check_failed", error=str(e))
            return None
        if enabled:
            return None
        return (
            "Warning: lingering not enabled. Jobs may stop on logout.\n"
            "Enable with: sudo loginctl enable-linger $USER"
        )

"""Exception hierarchy for jr.

All jr-specific exceptions inherit from JobRunnerError, so callers can
catch broad (JobRunnerError) or narrow (e.g., JobConflictError).

A missing job is normally *not* an exception: ``JobStore.get_by_id``,
``get_by_unit`` and ``resolve`` return ``None``. ``JobNotFoundError`` is
only raised by mutations that target an id which does not exist.
"""

from __future__ import annotations


class JobRunnerError(Exception):
    """Base exception for all jr errors."""


class ConfigError(JobRunnerError):
    """Raised when the config file cannot be read or fails validation."""


class InvalidInputError(JobRunnerError):
    """Raised for malformed user input, before any side effect happens.

    Examples: ``--env FOO`` without ``=``, an unparseable ``--older-than``
    duration, a command that is not on PATH.
    """


class StoreError(JobRunnerError):
    """Raised when the job registry cannot complete an operation."""


class JobNotFoundError(StoreError):
    """Raised when a state/notes update targets a job id that does not exist."""

    def __init__(self, job_id: int) -> None:
        super().__init__(f"job not found: {job_id}")
        self.job_id = job_id


class JobConflictError(StoreError):
    """Raised when inserting a job whose unit name is already registered.

    Unit names are the only join key with systemd, so a duplicate means the
    uniqueness invariant broke. Never swallowed, never retried.
    """

    def __init__(self, unit: str) -> None:
        super().__init__(f"unit already registered: {unit}")
        self.unit = unit


class SupervisorUnavailableError(JobRunnerError):
    """Raised when a systemd/journald command fails or cannot be spawned.

    Read paths fold this into the ``unknown`` state; write paths (launch,
    stop, kill) abort with it.
    """

    def __init__(
        self,
        message: str,
        *,
        command: list[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        detail = stderr.strip()
        super().__init__(f"{message}: {detail}" if detail else message)
        self.command = command or []
        self.returncode = returncode
        self.stderr = stderr


class PostLaunchPersistenceError(JobRunnerError):
    """The unit was launched but recording it in the registry failed.

    The job keeps running untracked. This is reported rather than rolled
    back, because rolling back would mean killing a job that already started.
    """

    def __init__(self, unit: str, cause: BaseException) -> None:
        super().__init__(f"job started as {unit} but failed to record: {cause}")
        self.unit = unit
        self.cause = cause


__all__ = [
    "ConfigError",
    "InvalidInputError",
    "JobConflictError",
    "JobNotFoundError",
    "JobRunnerError",
    "PostLaunchPersistenceError",
    "StoreError",
    "SupervisorUnavailableError",
]

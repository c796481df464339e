"""Shared utilities for jr CLI commands.

- CLI logging state (set by global options, applied once per invocation)
- Config loading
- Service construction around a per-command ``JobStore``
- Error-to-exit-code mapping
"""

from __future__ import annotations

import sqlite3
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import typer

from jobrunner.core.config import JobRunnerConfig, load_config
from jobrunner.core.errors import JobRunnerError, StoreError
from jobrunner.core.logging import configure_logging, get_logger
from jobrunner.registry.store import JobRecord, JobStore
from jobrunner.service import JobService
from jobrunner.supervisor.base import Supervisor
from jobrunner.supervisor.systemd import SystemdSupervisor

from .output import output_error

_logger = get_logger("cli")


# =============================================================================
# Error message constants
# =============================================================================


class ErrorMessages:
    """Constants for CLI error messages."""

    JOB_NOT_FOUND = "job not found"
    CONFIG_LOAD_ERROR = "error loading config"
    REGISTRY_OPEN_ERROR = "cannot open job registry"


# =============================================================================
# Logging configuration
# =============================================================================


@dataclass
class CliLoggingConfig:
    """Logging options collected from global CLI flags.

    ``None`` means "not given on the command line"; the config file value
    (or its default) applies instead.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None
    file: Path | None = None
    format: Literal["json", "console", "both"] | None = None
    configured: bool = False


_log_config = CliLoggingConfig()


def set_log_level(level: str) -> None:
    _log_config.level = level.upper()  # type: ignore[assignment]


def set_log_file(path: Path | None) -> None:
    _log_config.file = path


def set_log_format(fmt: str) -> None:
    _log_config.format = fmt  # type: ignore[assignment]


def configure_global_logging(config: JobRunnerConfig) -> None:
    """Configure logging from CLI options, falling back to the config file.

    Only configures once per process.

    Raises:
        typer.Exit: If the combination of options is invalid.
    """
    if _log_config.configured:
        return

    level = _log_config.level or config.log_level
    file_path = _log_config.file or config.log_file
    fmt = _log_config.format or ("both" if file_path else "console")

    try:
        configure_logging(level=level, format=fmt, file_path=file_path)
    except (ValueError, AttributeError) as e:
        output_error(f"logging configuration error: {e}")
        raise typer.Exit(1) from None
    _log_config.configured = True


def reset_cli_state() -> None:
    """Reset module-level CLI state (primarily for testing)."""
    global _log_config, _config, _config_path
    _log_config = CliLoggingConfig()
    _config = None
    _config_path = None


# =============================================================================
# Config
# =============================================================================

_config: JobRunnerConfig | None = None
_config_path: Path | None = None


def set_config_path(path: Path | None) -> None:
    global _config_path, _config
    _config_path = path
    _config = None


def get_config() -> JobRunnerConfig:
    """Load (once) and return the active configuration.

    Raises:
        typer.Exit: If the config file is missing or invalid.
    """
    global _config
    if _config is None:
        try:
            _config = load_config(_config_path)
        except JobRunnerError as e:
            output_error(f"{ErrorMessages.CONFIG_LOAD_ERROR}: {e}")
            raise typer.Exit(1) from None
    return _config


# =============================================================================
# Service construction
# =============================================================================


def create_supervisor() -> Supervisor:
    """Supervisor used by every command. Patched in tests."""
    return SystemdSupervisor()


@asynccontextmanager
async def open_service(config: JobRunnerConfig | None = None) -> AsyncIterator[JobService]:
    """Open the registry for one command and yield a ``JobService``.

    The store is closed when the block exits, whatever happens inside it.
    """
    config = config or get_config()
    store = JobStore(config.db_path)
    try:
        await store.open()
    except (OSError, sqlite3.Error) as e:
        await store.close()
        raise StoreError(f"{ErrorMessages.REGISTRY_OPEN_ERROR} {config.db_path}: {e}") from e
    try:
        yield JobService(store, create_supervisor())
    finally:
        await store.close()


async def require_job(service: JobService, token: str, *, json_output: bool = False) -> JobRecord:
    """Resolve ``token`` to a job or exit 1 with a not-found message."""
    job = await service.store.resolve(token)
    if job is None:
        output_error(
            f"{ErrorMessages.JOB_NOT_FOUND}: {token}",
            hints=["Run 'jr list' to see recorded jobs"],
            json_output=json_output,
        )
        raise typer.Exit(1)
    return job


@contextmanager
def handle_errors(*, json_output: bool = False) -> Iterator[None]:
    """Turn jr errors into a printed message and exit code 1.

    Anything that is not a ``JobRunnerError`` is a bug and propagates.
    """
    try:
        yield
    except JobRunnerError as e:
        _logger.debug("cli.command_failed", error_type=type(e).__name__, error=str(e))
        output_error(str(e), json_output=json_output)
        raise typer.Exit(1) from None


__all__ = [
    "CliLoggingConfig",
    "ErrorMessages",
    "configure_global_logging",
    "create_supervisor",
    "get_config",
    "handle_errors",
    "open_service",
    "require_job",
    "reset_cli_state",
    "set_config_path",
    "set_log_file",
    "set_log_format",
    "set_log_level",
]

"""Structured logging infrastructure for jr.

Structured logging via structlog, with jr-specific context (job id and
unit name) bound automatically inside a ``with_job_context()`` block.
Console output goes to stderr so it never mixes with ``--json`` output on
stdout. A rotating log file can be added with ``file_path``.

Example usage:
    from jobrunner.core.logging import (
        JobContext, configure_logging, get_logger, with_job_context,
    )

    configure_logging(level="DEBUG", format="console")

    logger = get_logger("store")
    logger.info("job_created", job_id=3)

    with with_job_context(JobContext(job_id=3, unit="jr-train-...service")):
        logger.info("attach.started")  # includes job_id and unit
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Field names whose values are never written to logs. Launch environments
# routinely carry credentials.
SENSITIVE_PATTERNS = frozenset({
    "api_key",
    "apikey",
    "token",
    "secret",
    "password",
    "credential",
    "authorization",
})

LogFormat = Literal["json", "console", "both"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]


@dataclass(frozen=True)
class JobContext:
    """Identity of the job an operation is acting on."""

    job_id: int | None = None
    unit: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.job_id is not None:
            result["job_id"] = self.job_id
        if self.unit is not None:
            result["unit"] = self.unit
        return result


_current_context: ContextVar[JobContext | None] = ContextVar(
    "jr_job_context", default=None
)


def get_current_context() -> JobContext | None:
    """Get the JobContext active in this task, if any."""
    return _current_context.get()


@contextmanager
def with_job_context(ctx: JobContext) -> Iterator[JobContext]:
    """Bind ``ctx`` into every log entry emitted inside the block."""
    token = _current_context.set(ctx)
    try:
        yield ctx
    finally:
        _current_context.reset(token)


def _is_sensitive(key: str) -> bool:
    key_lower = key.lower()
    return any(pattern in key_lower for pattern in SENSITIVE_PATTERNS)


def _sanitize_event_dict(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Redact sensitive keys, one level deep into dict values (e.g. env)."""
    sanitized: EventDict = {}
    for key, value in event_dict.items():
        if _is_sensitive(key):
            sanitized[key] = "[REDACTED]"
        elif isinstance(value, dict):
            sanitized[key] = {
                k: "[REDACTED]" if _is_sensitive(str(k)) else v
                for k, v in value.items()
            }
        else:
            sanitized[key] = value
    return sanitized


def _add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def _add_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Add JobContext fields; explicit keyword arguments take precedence."""
    ctx = get_current_context()
    if ctx is not None:
        for key, value in ctx.to_dict().items():
            event_dict.setdefault(key, value)
    return event_dict


class JobRunnerLogger:
    """Component-bound wrapper around a structlog logger.

    The underlying structlog logger is fetched on every call, so loggers
    created at import time still honour a later ``configure_logging()``.
    """

    def __init__(self, component: str, **initial_context: Any) -> None:
        self._context: dict[str, Any] = {"component": component, **initial_context}

    def _get_logger(self) -> structlog.stdlib.BoundLogger:
        logger: structlog.stdlib.BoundLogger = structlog.get_logger().bind(**self._context)
        return logger

    def bind(self, **context: Any) -> JobRunnerLogger:
        """Return a new logger with additional bound context."""
        new_logger = JobRunnerLogger.__new__(JobRunnerLogger)
        new_logger._context = {**self._context, **context}
        return new_logger

    def debug(self, event: str, **kw: Any) -> None:
        self._get_logger().debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._get_logger().info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._get_logger().warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._get_logger().error(event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        """Log with traceback; call from inside an ``except`` block."""
        self._get_logger().exception(event, **kw)


def _build_processors(renderer: Processor) -> list[Processor]:
    return [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        _sanitize_event_dict,
        _add_context,
        _add_timestamp,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ]


def configure_logging(
    level: LogLevel = "WARNING",
    format: LogFormat = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 10,
    backup_count: int = 3,
) -> None:
    """Configure jr structured logging. Call once at startup.

    Args:
        level: Minimum log level to capture.
        format: "console" for human-readable stderr output, "json" for JSON
            (to ``file_path`` if given, else stderr), "both" for uncoloured
            console rendering on stderr and in ``file_path``.
        file_path: Log file path. Required if format="both".
        max_file_size_mb: Size at which the log file is rotated.
        backup_count: Number of rotated files to keep.

    Raises:
        ValueError: If format="both" but file_path is not provided.
    """
    if format == "both" and file_path is None:
        raise ValueError("file_path is required when format='both'")

    log_level = getattr(logging, level.upper())
    handlers: list[logging.Handler] = []

    if format in ("console", "both"):
        handlers.append(logging.StreamHandler(sys.stderr))

    if format in ("json", "both"):
        if file_path is not None:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(
                RotatingFileHandler(
                    file_path,
                    maxBytes=max_file_size_mb * 1024 * 1024,
                    backupCount=backup_count,
                    encoding="utf-8",
                )
            )
        else:
            handlers.append(logging.StreamHandler(sys.stderr))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        handler.setLevel(log_level)
        root_logger.addHandler(handler)

    renderer: Processor
    if format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        # Colour codes only on a terminal, never in a log file.
        renderer = structlog.dev.ConsoleRenderer(
            colors=format == "console" and sys.stderr.isatty()
        )

    structlog.configure(
        processors=_build_processors(renderer),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> JobRunnerLogger:
    """Get a logger bound to ``component`` (e.g. "store", "supervisor")."""
    return JobRunnerLogger(component, **initial_context)


__all__ = [
    "JobContext",
    "JobRunnerLogger",
    "SENSITIVE_PATTERNS",
    "configure_logging",
    "get_current_context",
    "get_logger",
    "with_job_context",
]

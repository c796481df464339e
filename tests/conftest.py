"""Pytest fixtures for jr tests."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Generator
from pathlib import Path

import pytest
import structlog
import yaml

from jobrunner.cli import helpers as cli_helpers
from jobrunner.cli.output import console, err_console
from jobrunner.registry.store import JobStore
from jobrunner.service import JobService

from tests.helpers import FakeClock, FakeSupervisor


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset logging and CLI module state before and after each test."""
    cli_helpers.reset_cli_state()
    structlog.reset_defaults()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    original_level = root_logger.level
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    cli_helpers.reset_cli_state()
    structlog.reset_defaults()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(original_level)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def store(tmp_path: Path, clock: FakeClock) -> AsyncIterator[JobStore]:
    """An open JobStore on a fresh database file."""
    s = JobStore(tmp_path / "jr.db", clock=clock)
    await s.open()
    yield s
    await s.close()


@pytest.fixture
def supervisor() -> FakeSupervisor:
    return FakeSupervisor()


@pytest.fixture
def service(store: JobStore, supervisor: FakeSupervisor) -> JobService:
    return JobService(store, supervisor)


@pytest.fixture
def cli_env(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    supervisor: FakeSupervisor,
) -> FakeSupervisor:
    """Point the CLI at a temp registry and the fake supervisor."""
    db_path = tmp_path / "data" / "jr.db"
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.safe_dump({"db_path": str(db_path)}))

    monkeypatch.setenv("JR_CONFIG", str(config_path))
    monkeypatch.delenv("JR_LOG_LEVEL", raising=False)
    monkeypatch.delenv("JR_LOG_FILE", raising=False)
    monkeypatch.delenv("JR_LOG_FORMAT", raising=False)
    monkeypatch.setattr(cli_helpers, "create_supervisor", lambda: supervisor)
    # Wide enough that tables and messages are never wrapped.
    monkeypatch.setattr(console, "width", 200)
    monkeypatch.setattr(err_console, "width", 200)
    return supervisor

"""Configuration model for jr.

Pydantic v2 model for user-level settings (registry location, list and
retention defaults, launch behaviour), loaded from an optional YAML file.

Resolution order for the file: explicit path, ``$JR_CONFIG``, then
``$XDG_CONFIG_HOME/jr/config.yaml`` (``~/.config/jr/config.yaml``). A
missing default file is not an error; every field has a default.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from jobrunner.core.errors import ConfigError
from jobrunner.core.logging import get_logger

_logger = get_logger("config")

CONFIG_ENV_VAR = "JR_CONFIG"


def default_data_dir() -> Path:
    """Directory holding ``jr.db``: ``$XDG_DATA_HOME/jr`` or ``~/.local/state/jr``."""
    data_home = os.environ.get("XDG_DATA_HOME")
    if data_home:
        return Path(data_home) / "jr"
    return Path.home() / ".local" / "state" / "jr"


def default_config_path() -> Path:
    config_home = os.environ.get("XDG_CONFIG_HOME")
    base = Path(config_home) if config_home else Path.home() / ".config"
    return base / "jr" / "config.yaml"


class JobRunnerConfig(BaseModel):
    """Top-level jr configuration."""

    model_config = ConfigDict(extra="forbid")

    db_path: Path = Field(
        default_factory=lambda: default_data_dir() / "jr.db",
        description="SQLite registry file. Tilde is expanded.",
    )
    list_limit: int = Field(
        default=10,
        ge=1,
        description="Default number of jobs shown by `jr list`.",
    )
    log_lines: int = Field(
        default=200,
        ge=0,
        description="Default number of journal lines shown by `jr logs`.",
    )
    prune_keep: int = Field(
        default=100,
        ge=0,
        description="Default for `jr prune --keep`: most recent jobs always kept.",
    )
    linger_check: bool = Field(
        default=True,
        description="Warn on `jr run` when systemd lingering is disabled, "
        "since user units stop at logout without it.",
    )
    capture_environment: bool = Field(
        default=True,
        description="Pass the caller's whole environment to the unit and record "
        "it. When False only --env overrides are passed.",
    )
    description_template: str = Field(
        default="jr job: {name}",
        description="Unit Description used when --desc is not given.",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING",
        description="Minimum level for structlog output on stderr.",
    )
    log_file: Path | None = Field(
        default=None,
        description="Optional log file; enables console output in both places.",
    )

    @field_validator("db_path", "log_file")
    @classmethod
    def _expand_user(cls, v: Path | None) -> Path | None:
        return v.expanduser() if v is not None else None

    @field_validator("description_template")
    @classmethod
    def _require_name_placeholder(cls, v: str) -> str:
        if "{name}" not in v:
            raise ValueError("description_template must contain '{name}'")
        return v

    def describe(self, name: str) -> str:
        """Render the default unit description for a job name."""
        return self.description_template.replace("{name}", name)


def load_config(path: Path | None = None) -> JobRunnerConfig:
    """Load configuration from YAML, falling back to defaults.

    Args:
        path: Explicit config file. Must exist when given.

    Raises:
        ConfigError: If the file is unreadable, not a mapping, or invalid.
    """
    explicit = path is not None
    if path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        if env_path:
            path, explicit = Path(env_path), True
        else:
            path = default_config_path()

    if not path.exists():
        if explicit:
            raise ConfigError(f"config file not found: {path}")
        return JobRunnerConfig()

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot read config {path}: {e}") from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"config {path} must be a YAML mapping")

    try:
        config = JobRunnerConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"invalid config {path}:\n{e}") from e

    _logger.debug("config.loaded", path=str(path))
    return config

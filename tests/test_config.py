"""Tests for jobrunner.core.config module."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from jobrunner.core.config import (
    CONFIG_ENV_VAR,
    JobRunnerConfig,
    default_config_path,
    default_data_dir,
    load_config,
)
from jobrunner.core.errors import ConfigError


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg-config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg-data"))


class TestJobRunnerConfig:
    def test_defaults(self, tmp_path: Path):
        config = JobRunnerConfig()
        assert config.db_path == tmp_path / "xdg-data" / "jr" / "jr.db"
        assert config.list_limit == 10
        assert config.log_lines == 200
        assert config.prune_keep == 100
        assert config.linger_check is True
        assert config.capture_environment is True
        assert config.log_level == "WARNING"
        assert config.log_file is None

    def test_data_dir_without_xdg(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("XDG_DATA_HOME")
        assert default_data_dir() == Path.home() / ".local" / "state" / "jr"

    def test_config_path_follows_xdg(self, tmp_path: Path):
        assert default_config_path() == tmp_path / "xdg-config" / "jr" / "config.yaml"

    def test_tilde_expanded(self):
        config = JobRunnerConfig(db_path=Path("~/jr.db"), log_file=Path("~/jr.log"))
        assert config.db_path == Path.home() / "jr.db"
        assert config.log_file == Path.home() / "jr.log"

    def test_describe(self):
        assert JobRunnerConfig().describe("train") == "jr job: train"
        config = JobRunnerConfig(description_template="[{name}] batch")
        assert config.describe("eval") == "[eval] batch"

    def test_template_requires_placeholder(self):
        with pytest.raises(ValidationError, match="must contain"):
            JobRunnerConfig(description_template="static")

    @pytest.mark.parametrize(
        ("field", "value"),
        [("list_limit", 0), ("log_lines", -1), ("prune_keep", -1), ("log_level", "TRACE")],
    )
    def test_invalid_values(self, field: str, value: object):
        with pytest.raises(ValidationError):
            JobRunnerConfig(**{field: value})

    def test_unknown_keys_rejected(self):
        with pytest.raises(ValidationError):
            JobRunnerConfig.model_validate({"db_pth": "/x"})


class TestLoadConfig:
    def _write(self, path: Path, data: object) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(data) if not isinstance(data, str) else data)
        return path

    def test_missing_default_file_gives_defaults(self):
        assert load_config() == JobRunnerConfig()

    def test_default_location(self, tmp_path: Path):
        self._write(tmp_path / "xdg-config" / "jr" / "config.yaml", {"list_limit": 25})
        assert load_config().list_limit == 25

    def test_explicit_path(self, tmp_path: Path):
        path = self._write(tmp_path / "custom.yaml", {"db_path": str(tmp_path / "x.db")})
        assert load_config(path).db_path == tmp_path / "x.db"

    def test_env_var_path(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        path = self._write(tmp_path / "env.yaml", {"prune_keep": 5})
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        assert load_config().prune_keep == 5

    def test_explicit_path_beats_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        env_path = self._write(tmp_path / "env.yaml", {"prune_keep": 5})
        explicit = self._write(tmp_path / "explicit.yaml", {"prune_keep": 7})
        monkeypatch.setenv(CONFIG_ENV_VAR, str(env_path))
        assert load_config(explicit).prune_keep == 7

    def test_missing_explicit_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="config file not found"):
            load_config(tmp_path / "nope.yaml")

    def test_missing_env_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv(CONFIG_ENV_VAR, str(tmp_path / "nope.yaml"))
        with pytest.raises(ConfigError, match="config file not found"):
            load_config()

    def test_empty_file(self, tmp_path: Path):
        path = self._write(tmp_path / "empty.yaml", "")
        assert load_config(path) == JobRunnerConfig()

    def test_not_a_mapping(self, tmp_path: Path):
        path = self._write(tmp_path / "list.yaml", ["a", "b"])
        with pytest.raises(ConfigError, match="must be a YAML mapping"):
            load_config(path)

    def test_malformed_yaml(self, tmp_path: Path):
        path = self._write(tmp_path / "bad.yaml", "list_limit: [unclosed\n")
        with pytest.raises(ConfigError, match="cannot read config"):
            load_config(path)

    def test_validation_error_wrapped(self, tmp_path: Path):
        path = self._write(tmp_path / "invalid.yaml", {"list_limit": "many"})
        with pytest.raises(ConfigError, match="invalid config"):
            load_config(path)

"""Unit tests for settings module."""

import os

import pytest

from chai.errors import ConfigError
from chai.settings import Settings, parse_duration


@pytest.fixture
def clean_env(monkeypatch):
    """Remove all CHAI_ env vars for clean tests."""
    for key in list(os.environ.keys()):
        if key.startswith("CHAI_"):
            monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestDefaults:
    def test_port_default(self, clean_env) -> None:
        assert Settings.port() == 8080

    def test_claude_cmd_default(self, clean_env) -> None:
        assert Settings.claude_cmd() == "claude"

    def test_timeouts_default(self, clean_env) -> None:
        assert Settings.prompt_timeout_seconds() == 300.0
        assert Settings.shutdown_timeout_seconds() == 30.0

    def test_work_dir_defaults_to_cwd(self, clean_env) -> None:
        assert Settings.work_dir() == os.getcwd()

    def test_db_path_relative_to_work_dir(self, clean_env, tmp_path) -> None:
        clean_env.setenv("CHAI_WORKDIR", str(tmp_path))

        assert Settings.db_path() == os.path.join(str(tmp_path), "chai.db")

    def test_db_path_absolute(self, clean_env, tmp_path) -> None:
        target = str(tmp_path / "data" / "x.db")
        clean_env.setenv("CHAI_DB", target)

        assert Settings.db_path() == target


class TestParsing:
    def test_port_custom(self, clean_env) -> None:
        clean_env.setenv("CHAI_PORT", "9000")
        assert Settings.port() == 9000

    def test_port_invalid_returns_default(self, clean_env) -> None:
        clean_env.setenv("CHAI_PORT", "not_a_number")
        assert Settings.port() == 8080

    @pytest.mark.parametrize(
        "value,seconds",
        [
            ("90", 90.0),
            ("90s", 90.0),
            ("5m", 300.0),
            ("1h", 3600.0),
            ("250ms", 0.25),
            ("1.5m", 90.0),
            ("1m30s", 90.0),
            ("1h30m", 5400.0),
            ("2s500ms", 2.5),
        ],
    )
    def test_parse_duration(self, value: str, seconds: float) -> None:
        assert parse_duration(value) == pytest.approx(seconds)

    def test_parse_duration_rejects_garbage(self) -> None:
        with pytest.raises(ValueError):
            parse_duration("five minutes")

    @pytest.mark.parametrize("value", ["5m30", "m5", "1h-30m", ""])
    def test_parse_duration_rejects_partial_compounds(self, value: str) -> None:
        with pytest.raises(ValueError):
            parse_duration(value)

    def test_prompt_timeout_from_env(self, clean_env) -> None:
        clean_env.setenv("CHAI_PROMPT_TIMEOUT", "2m")
        assert Settings.prompt_timeout_seconds() == 120.0


class TestValidate:
    def test_defaults_are_valid(self, clean_env) -> None:
        Settings.validate()

    @pytest.mark.parametrize("port", ["0", "65536", "http"])
    def test_invalid_port(self, clean_env, port: str) -> None:
        clean_env.setenv("CHAI_PORT", port)
        with pytest.raises(ConfigError):
            Settings.validate()

    @pytest.mark.parametrize("name", ["CHAI_PROMPT_TIMEOUT", "CHAI_SHUTDOWN_TIMEOUT"])
    @pytest.mark.parametrize("value", ["0", "0s", "soon"])
    def test_invalid_durations(self, clean_env, name: str, value: str) -> None:
        clean_env.setenv(name, value)
        with pytest.raises(ConfigError):
            Settings.validate()

    def test_compound_duration_is_valid(self, clean_env) -> None:
        clean_env.setenv("CHAI_PROMPT_TIMEOUT", "1m30s")

        Settings.validate()
        assert Settings.prompt_timeout_seconds() == 90.0

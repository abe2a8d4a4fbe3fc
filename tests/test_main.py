"""Tests for the chai-server entry point."""

import os

import pytest

import chai.main
from chai.main import _parse_args, apply_flags, run

@pytest.fixture
def clean_env(monkeypatch):
    """Strip CHAI_ vars; flags written by apply_flags are restored afterwards."""
    saved = dict(os.environ)
    for key in list(os.environ.keys()):
        if key.startswith("CHAI_") and key != "CHAI_LOG_LEVEL":
            monkeypatch.delenv(key, raising=False)
    yield monkeypatch
    os.environ.clear()
    os.environ.update(saved)


class _RecordingServer:
    instances: list["_RecordingServer"] = []

    def __init__(self, config) -> None:
        self.config = config
        self.ran = False
        _RecordingServer.instances.append(self)

    def run(self) -> None:
        self.ran = True

@pytest.fixture
def recording_server(monkeypatch):
    _RecordingServer.instances = []
    monkeypatch.setattr(chai.main, "_Server", _RecordingServer)
    return _RecordingServer

class TestFlags:
    def test_flags_override_environment(self, clean_env) -> None:
        clean_env.setenv("CHAI_PORT", "9000")

        apply_flags(_parse_args(["--port", "9100", "--claude-cmd", "/opt/claude"]))

        assert os.environ["CHAI_PORT"] == "9100"
        assert os.environ["CHAI_CLAUDE_CMD"] == "/opt/claude"

    def test_missing_flags_leave_environment(self, clean_env) -> None:
        clean_env.setenv("CHAI_PROMPT_TIMEOUT", "2m")

        apply_flags(_parse_args([]))

        assert os.environ["CHAI_PROMPT_TIMEOUT"] == "2m"
        assert "CHAI_PORT" not in os.environ

class TestRun:
    def test_starts_server_with_settings(self, clean_env, recording_server) -> None:
        run(["--port", "9200", "--shutdown-timeout", "10s"])

        (server,) = recording_server.instances
        assert server.ran
        assert server.config.port == 9200
        assert server.config.timeout_graceful_shutdown == 10

    def test_invalid_port_exits_with_code_2(self, clean_env, recording_server, capsys) -> None:
        with pytest.raises(SystemExit) as exc_info:
            run(["--port", "70000"])

        assert exc_info.value.code == 2
        assert "invalid port" in capsys.readouterr().err
        assert recording_server.instances == []

    def test_invalid_timeout_exits_with_code_2(self, clean_env, recording_server) -> None:
        with pytest.raises(SystemExit) as exc_info:
            run(["--prompt-timeout", "forever"])

        assert exc_info.value.code == 2

"""Centralized environment configuration for the Chai server.

All environment variables are read through this module using the CHAI_
prefix for consistency. Command-line flags given to ``chai-server`` are
written into the environment before the app starts, so flags take
precedence over the environment, which takes precedence over defaults.

Usage:
    from chai.settings import settings

    port = settings.port()
    timeout = settings.prompt_timeout_seconds()
"""

from __future__ import annotations

import os
import re

from chai.errors import ConfigError

_NUMBER_RE = re.compile(r"^\d+(?:\.\d+)?$")
_DURATION_PART = r"(\d+(?:\.\d+)?)(ms|h|m|s)"
_DURATION_RE = re.compile(rf"^(?:{_DURATION_PART})+$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def _get(name: str, default: str = "") -> str:
    """Get an environment variable value."""
    return os.environ.get(name, "").strip() or default


def _get_int(name: str, default: int = 0) -> int:
    """Get an integer environment variable."""
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def parse_duration(value: str) -> float:
    """Parse a duration such as ``300``, ``90s``, ``5m`` or ``1h30m`` into seconds.

    A bare number is interpreted as seconds.

    Raises:
        ValueError: If the value is not a recognised duration.
    """
    text = value.strip().lower()
    if _NUMBER_RE.match(text):
        return float(text)
    if not _DURATION_RE.match(text):
        raise ValueError(f"invalid duration {value!r}")
    return sum(
        float(amount) * _DURATION_UNITS[unit] for amount, unit in re.findall(_DURATION_PART, text)
    )


def _get_duration(name: str, default: float) -> float:
    """Get a duration environment variable in seconds."""
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    try:
        return parse_duration(value)
    except ValueError:
        return default


class Settings:
    """Centralized settings for the Chai server.

    Environment variables use the CHAI_ prefix.
    """

    # -------------------------------------------------------------------------
    # Server Settings
    # -------------------------------------------------------------------------

    @staticmethod
    def host() -> str:
        """Host to bind the HTTP server to.

        Env: CHAI_HOST (default: 0.0.0.0)
        """
        return _get("CHAI_HOST", default="0.0.0.0")

    @staticmethod
    def port() -> int:
        """Port to bind the HTTP server to.

        Env: CHAI_PORT (default: 8080)
        """
        return _get_int("CHAI_PORT", default=8080)

    @staticmethod
    def work_dir() -> str:
        """Default working directory for the Claude CLI.

        Env: CHAI_WORKDIR (default: current directory)
        """
        value = _get("CHAI_WORKDIR")
        if value:
            return os.path.abspath(os.path.expanduser(value))
        return os.getcwd()

    @staticmethod
    def db_path() -> str:
        """SQLite database path. Relative paths resolve against the workdir.

        Env: CHAI_DB (default: chai.db)
        """
        value = os.path.expanduser(_get("CHAI_DB", default="chai.db"))
        if os.path.isabs(value):
            return value
        return os.path.join(Settings.work_dir(), value)

    @staticmethod
    def shutdown_timeout_seconds() -> float:
        """Seconds to wait for in-flight requests during graceful shutdown.

        Env: CHAI_SHUTDOWN_TIMEOUT (default: 30s)
        """
        return _get_duration("CHAI_SHUTDOWN_TIMEOUT", default=30.0)

    # -------------------------------------------------------------------------
    # Claude CLI Settings
    # -------------------------------------------------------------------------

    @staticmethod
    def claude_cmd() -> str:
        """Path to the Claude CLI command.

        Env: CHAI_CLAUDE_CMD (default: claude)
        """
        return _get("CHAI_CLAUDE_CMD", default="claude")

    @staticmethod
    def prompt_timeout_seconds() -> float:
        """Maximum seconds a single prompt may stream before it is killed.

        Env: CHAI_PROMPT_TIMEOUT (default: 5m)
        """
        return _get_duration("CHAI_PROMPT_TIMEOUT", default=300.0)

    # -------------------------------------------------------------------------
    # Event Log Settings
    # -------------------------------------------------------------------------

    @staticmethod
    def event_retention_hours() -> int:
        """Hours to keep persisted stream events of idle sessions. 0 disables.

        Env: CHAI_EVENT_RETENTION_HOURS (default: 24)
        """
        return _get_int("CHAI_EVENT_RETENTION_HOURS", default=24)

    # -------------------------------------------------------------------------
    # Logging Settings
    # -------------------------------------------------------------------------

    @staticmethod
    def log_level() -> str:
        """Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).

        Env: CHAI_LOG_LEVEL (default: INFO)
        """
        return _get("CHAI_LOG_LEVEL", default="INFO").upper()

    @staticmethod
    def log_format() -> str:
        """Log format: "console" for dev-friendly, "json" for structured.

        Env: CHAI_LOG_FORMAT (default: console)
        """
        return _get("CHAI_LOG_FORMAT", default="console").lower()

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    @staticmethod
    def validate() -> None:
        """Check values that must not silently fall back to defaults.

        Raises:
            ConfigError: If the port or a duration is malformed or out of range.
        """
        raw_port = _get("CHAI_PORT")
        if raw_port:
            try:
                port = int(raw_port)
            except ValueError:
                raise ConfigError(f"invalid CHAI_PORT value {raw_port!r}") from None
            if not 1 <= port <= 65535:
                raise ConfigError(f"invalid port {port}: must be between 1 and 65535")

        for name in ("CHAI_PROMPT_TIMEOUT", "CHAI_SHUTDOWN_TIMEOUT"):
            raw = _get(name)
            if not raw:
                continue
            try:
                seconds = parse_duration(raw)
            except ValueError:
                raise ConfigError(f"invalid {name} value {raw!r}") from None
            if seconds <= 0:
                raise ConfigError(f"invalid {name} value {raw!r}: must be positive")


# Singleton instance for convenient imports
settings = Settings()

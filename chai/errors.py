"""Exception hierarchy for the session broker."""

from __future__ import annotations


class ChaiError(Exception):
    """Base exception for all broker errors."""


class ConfigError(ChaiError):
    """Invalid server configuration."""


class ValidationError(ChaiError):
    """A request was malformed; nothing was mutated."""


class SessionNotFoundError(ChaiError):
    """The referenced session does not exist."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"session {session_id} not found")


class SessionBusyError(ChaiError):
    """The session already has a prompt streaming."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"session {session_id} is already streaming")


class ProcessNotFoundError(ChaiError):
    """No live Claude process is attached to the session."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"no active process for session {session_id}")


class SubprocessError(ChaiError):
    """The Claude CLI could not be started or exited abnormally."""

    def __init__(self, message: str, *, exit_code: int | None = None, stderr: str = ""):
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message)


class PromptTimeoutError(SubprocessError):
    """The prompt exceeded its time budget and the process was killed."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"prompt timed out after {timeout_seconds:g}s")

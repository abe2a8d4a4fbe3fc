"""In-memory table of permission requests awaiting a client decision."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class PendingPermission:
    request_id: str
    session_id: str
    tool_input: dict[str, Any] = field(default_factory=dict)


class PermissionCorrelator:
    """Maps request ids to the tool input they were raised for.

    Entries are single-use: ``take`` removes what it returns, so a decision
    can be delivered at most once per request.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: dict[str, PendingPermission] = {}

    def store(self, session_id: str, request_id: str, tool_input: dict[str, Any] | None) -> None:
        """Record (or replace) the request raised by a session's process."""
        with self._lock:
            self._pending[request_id] = PendingPermission(
                request_id=request_id,
                session_id=session_id,
                tool_input=dict(tool_input or {}),
            )
        logger.debug("Permission request pending", session_id=session_id, request_id=request_id)

    def take(self, request_id: str) -> dict[str, Any] | None:
        """Remove and return the tool input for a request, or None if unknown."""
        with self._lock:
            entry = self._pending.pop(request_id, None)
        return entry.tool_input if entry else None

    def discard_session(self, session_id: str) -> int:
        """Drop every pending request belonging to a session."""
        with self._lock:
            stale = [rid for rid, entry in self._pending.items() if entry.session_id == session_id]
            for rid in stale:
                del self._pending[rid]
        if stale:
            logger.debug("Discarded pending permissions", session_id=session_id, count=len(stale))
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)


permissions = PermissionCorrelator()

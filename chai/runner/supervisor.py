"""Supervisor for Claude CLI subprocesses, at most one per session.

Spawns ``claude`` in stream-json mode, feeds it the prompt, and yields the
decoded stdout lines to the caller. The process is always torn down when the
caller stops consuming, when the run times out, or when it finishes.
"""

from __future__ import annotations

import asyncio
import threading
from collections import deque
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import structlog

from chai.errors import ProcessNotFoundError, PromptTimeoutError, SubprocessError
from chai.runner.permissions import PermissionCorrelator, permissions as default_permissions
from chai.runner.protocol import (
    ControlRequestEvent,
    MalformedLine,
    PermissionRequestEvent,
    ProtocolEvent,
    ResultEvent,
    claude_args,
    control_response,
    decode_line,
    encode_line,
    user_message,
)
from chai.settings import settings

logger = structlog.get_logger(__name__)

STDOUT_LIMIT = 10 * 1024 * 1024  # 10MB buffer for large tool outputs
STDERR_TAIL_LINES = 20
KILL_WAIT_SECONDS = 5.0


@dataclass
class _ManagedProcess:
    proc: asyncio.subprocess.Process
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    stderr_tail: deque[str] = field(default_factory=lambda: deque(maxlen=STDERR_TAIL_LINES))
    stderr_task: asyncio.Task | None = None

    def stderr_text(self) -> str:
        return "\n".join(self.stderr_tail)


class ProcessSupervisor:
    """Owns the live Claude processes, keyed by session id."""

    def __init__(
        self,
        claude_cmd: str | None = None,
        default_workdir: str | None = None,
        permissions: PermissionCorrelator | None = None,
    ) -> None:
        self._claude_cmd = claude_cmd
        self._default_workdir = default_workdir
        self.permissions = permissions if permissions is not None else default_permissions
        self._lock = threading.Lock()
        self._processes: dict[str, _ManagedProcess] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def is_running(self, session_id: str) -> bool:
        with self._lock:
            managed = self._processes.get(session_id)
        return managed is not None and managed.proc.returncode is None

    async def stream(
        self,
        session_id: str,
        prompt: str,
        *,
        claude_session_id: str | None = None,
        working_directory: str | None = None,
        timeout: float | None = None,
    ) -> AsyncIterator[ProtocolEvent | MalformedLine]:
        """Run one prompt and yield every stdout line as a decoded event.

        Permission requests are registered with the correlator before they
        are yielded. After a ``result`` event stdin is closed and reading
        stops.

        Raises:
            SubprocessError: The process could not start or exited non-zero.
            PromptTimeoutError: The run exceeded ``timeout`` seconds.
        """
        managed = await self._spawn(session_id, claude_session_id, working_directory)
        proc = managed.proc
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout else None
        clean_exit = False
        try:
            await self._write(managed, user_message(prompt))
            assert proc.stdout is not None
            while True:
                raw = await self._before_deadline(proc.stdout.readline(), deadline, timeout)
                if not raw:
                    logger.debug("Claude stdout EOF", session_id=session_id)
                    break
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                if not line.strip():
                    continue
                event = decode_line(line)
                if isinstance(event, (ControlRequestEvent, PermissionRequestEvent)):
                    self.permissions.store(session_id, event.correlation_id, event.tool_input)
                    logger.info(
                        "Permission requested",
                        session_id=session_id,
                        request_id=event.correlation_id,
                        tool_name=event.tool_name,
                    )
                yield event
                if isinstance(event, ResultEvent):
                    self._close_stdin(managed)
                    break

            exit_code = await self._before_deadline(proc.wait(), deadline, timeout)
            if managed.stderr_task is not None:
                await asyncio.wait([managed.stderr_task], timeout=1.0)
            if exit_code != 0:
                stderr = managed.stderr_text()
                message = f"claude exited with code {exit_code}"
                if stderr:
                    message = f"{message}: {stderr}"
                raise SubprocessError(message, exit_code=exit_code, stderr=stderr)
            clean_exit = True
            logger.info("Claude process exited", session_id=session_id, exit_code=exit_code)
        finally:
            try:
                if not clean_exit:
                    await self._terminate(session_id, proc)
            finally:
                # Cancellation can interrupt the wait above; the table entry
                # and pending permissions must still go.
                self._cleanup(session_id, managed)

    async def send_control_decision(self, session_id: str, request_id: str, decision: str) -> None:
        """Answer a pending permission request on the process's stdin.

        Args:
            session_id: Session whose process raised the request.
            request_id: Correlation id of the request.
            decision: "allow" or "deny".

        Raises:
            ProcessNotFoundError: No live process for the session.
        """
        with self._lock:
            managed = self._processes.get(session_id)
        if managed is None or managed.proc.returncode is not None:
            raise ProcessNotFoundError(session_id)
        allow = decision == "allow"
        tool_input = self.permissions.take(request_id)
        if tool_input is None:
            logger.warning(
                "Permission decision for unknown request",
                session_id=session_id,
                request_id=request_id,
            )
        await self._write(managed, control_response(request_id, allow, tool_input))
        logger.info(
            "Permission decision sent",
            session_id=session_id,
            request_id=request_id,
            decision=decision,
        )

    async def kill(self, session_id: str) -> bool:
        """Kill the session's process if any. Safe to call repeatedly.

        Returns:
            True when a live process was found and killed.
        """
        with self._lock:
            managed = self._processes.pop(session_id, None)
        self.permissions.discard_session(session_id)
        if managed is None:
            return False
        killed = managed.proc.returncode is None
        await self._terminate(session_id, managed.proc)
        return killed

    async def shutdown_all(self) -> None:
        """Kill every tracked process."""
        with self._lock:
            session_ids = list(self._processes)
        if not session_ids:
            return
        logger.info("Killing Claude processes", count=len(session_ids))
        await asyncio.gather(*(self.kill(sid) for sid in session_ids))

    # ------------------------------------------------------------------
    # Internal: subprocess lifecycle
    # ------------------------------------------------------------------

    async def _spawn(
        self,
        session_id: str,
        claude_session_id: str | None,
        working_directory: str | None,
    ) -> _ManagedProcess:
        if self.is_running(session_id):
            logger.warning("Replacing live Claude process", session_id=session_id)
            await self.kill(session_id)

        args = claude_args(self._claude_cmd or settings.claude_cmd(), claude_session_id)
        cwd = working_directory or self._default_workdir or settings.work_dir()
        logger.info(
            "Spawning Claude process",
            session_id=session_id,
            args=args,
            cwd=cwd,
            resume=claude_session_id,
        )
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                limit=STDOUT_LIMIT,
            )
        except OSError as exc:
            raise SubprocessError(f"failed to start claude: {exc}") from exc

        managed = _ManagedProcess(proc=proc)
        managed.stderr_task = asyncio.create_task(self._drain_stderr(session_id, managed))
        with self._lock:
            self._processes[session_id] = managed
        return managed

    async def _drain_stderr(self, session_id: str, managed: _ManagedProcess) -> None:
        stream = managed.proc.stderr
        if stream is None:
            return
        try:
            while True:
                raw = await stream.readline()
                if not raw:
                    return
                text = raw.decode("utf-8", errors="replace").rstrip()
                if text:
                    managed.stderr_tail.append(text)
                    logger.debug("Claude stderr", session_id=session_id, line=text)
        except (asyncio.CancelledError, ValueError):
            return

    async def _write(self, managed: _ManagedProcess, message: dict[str, Any]) -> None:
        stdin = managed.proc.stdin
        if stdin is None:
            raise SubprocessError("claude stdin is not available")
        async with managed.write_lock:
            try:
                stdin.write(encode_line(message))
                await stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as exc:
                raise SubprocessError(f"failed to write to claude: {exc}") from exc

    def _close_stdin(self, managed: _ManagedProcess) -> None:
        stdin = managed.proc.stdin
        if stdin is not None:
            try:
                stdin.close()
            except (BrokenPipeError, ConnectionResetError):
                pass

    async def _before_deadline(self, awaitable, deadline: float | None, timeout: float | None):
        if deadline is None:
            return await awaitable
        remaining = deadline - asyncio.get_running_loop().time()
        try:
            return await asyncio.wait_for(awaitable, timeout=max(remaining, 0))
        except asyncio.TimeoutError:
            raise PromptTimeoutError(timeout or 0) from None

    async def _terminate(self, session_id: str, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            logger.info("Killing Claude process", session_id=session_id)
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        try:
            await asyncio.wait_for(proc.wait(), timeout=KILL_WAIT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Claude process did not exit after kill", session_id=session_id)

    def _cleanup(self, session_id: str, managed: _ManagedProcess) -> None:
        with self._lock:
            if self._processes.get(session_id) is managed:
                del self._processes[session_id]
        if managed.stderr_task is not None and not managed.stderr_task.done():
            managed.stderr_task.cancel()
        self.permissions.discard_session(session_id)


supervisor = ProcessSupervisor()

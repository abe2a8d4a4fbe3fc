"""Shared pytest fixtures for chai server tests."""

import asyncio
import os
from typing import AsyncGenerator, Generator

import httpx
import pytest

os.environ.setdefault("CHAI_LOG_LEVEL", "WARNING")

from chai.errors import ProcessNotFoundError
from chai.event_log import EventLog
from chai.main import app
from chai.orchestrator import StreamOrchestrator
from chai.runner.permissions import PermissionCorrelator
from chai.runner.protocol import decode_line
from chai.store import SessionStore


class FakeSupervisor:
    """Stands in for ProcessSupervisor with a scripted list of stdout lines.

    Set ``gate`` to an asyncio.Event to hold the stream open after the lines
    are yielded, and ``error`` to raise once they are exhausted.
    """

    def __init__(self) -> None:
        self.lines: list[str] = []
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.calls: list[dict] = []
        self.decisions: list[tuple[str, str, str]] = []
        self.killed: list[str] = []
        self.running: set[str] = set()
        self.closed = False

    async def stream(
        self,
        session_id: str,
        prompt: str,
        *,
        claude_session_id=None,
        working_directory=None,
        timeout=None,
    ):
        self.calls.append(
            {
                "session_id": session_id,
                "prompt": prompt,
                "claude_session_id": claude_session_id,
                "working_directory": working_directory,
                "timeout": timeout,
            }
        )
        self.closed = False
        self.running.add(session_id)
        try:
            for line in self.lines:
                yield decode_line(line)
            if self.gate is not None:
                await self.gate.wait()
            if self.error is not None:
                raise self.error
        finally:
            self.running.discard(session_id)
            self.closed = True

    async def send_control_decision(self, session_id: str, request_id: str, decision: str) -> None:
        if session_id not in self.running:
            raise ProcessNotFoundError(session_id)
        self.decisions.append((session_id, request_id, decision))

    async def kill(self, session_id: str) -> bool:
        self.killed.append(session_id)
        return False

    def is_running(self, session_id: str) -> bool:
        return session_id in self.running

    async def shutdown_all(self) -> None:
        self.running.clear()


@pytest.fixture
def temp_db(tmp_path, monkeypatch) -> Generator[str, None, None]:
    """Point the server at a fresh SQLite database."""
    db_path = str(tmp_path / "chai.db")
    monkeypatch.setenv("CHAI_DB", db_path)
    monkeypatch.setenv("CHAI_WORKDIR", str(tmp_path))
    # Reset the db engine so it picks up the new path
    from chai.db import init_db, reset_engine

    reset_engine()
    init_db()
    yield db_path
    reset_engine()


@pytest.fixture
def fresh_store(temp_db) -> SessionStore:
    return SessionStore()


@pytest.fixture
def fresh_event_log(temp_db) -> EventLog:
    return EventLog()


@pytest.fixture
def fake_supervisor() -> FakeSupervisor:
    return FakeSupervisor()


@pytest.fixture
def orchestrator(
    fresh_store: SessionStore, fresh_event_log: EventLog, fake_supervisor: FakeSupervisor
) -> StreamOrchestrator:
    return StreamOrchestrator(
        store=fresh_store,
        event_log=fresh_event_log,
        supervisor=fake_supervisor,
        prompt_timeout=5.0,
    )


@pytest.fixture
def permissions() -> PermissionCorrelator:
    return PermissionCorrelator()


@pytest.fixture
async def api_client(
    orchestrator: StreamOrchestrator, monkeypatch
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Async HTTP client wired to an orchestrator with a fake supervisor."""
    import chai.api.events
    import chai.api.prompt
    import chai.api.sessions

    monkeypatch.setattr(chai.api.events, "orchestrator", orchestrator)
    monkeypatch.setattr(chai.api.prompt, "orchestrator", orchestrator)
    monkeypatch.setattr(chai.api.sessions, "orchestrator", orchestrator)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Force the AnyIO pytest plugin to run tests under asyncio.

    The server is asyncio-native (FastAPI/uvicorn, asyncio subprocesses), so
    the trio backend is not supported.
    """
    return "asyncio"

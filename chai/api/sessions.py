"""Session lifecycle endpoints."""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path

import structlog
from fastapi import APIRouter, Response

from chai.api.schemas import (
    CreateSessionRequest,
    MessageResponse,
    SessionDetailResponse,
    SessionResponse,
)
from chai.errors import SessionNotFoundError
from chai.http import raise_for_error, raise_http_error
from chai.orchestrator import orchestrator
from chai.store import store

router = APIRouter(tags=["sessions"])
logger = structlog.get_logger(__name__)


@contextmanager
def _session_logging_context(session_id: str):
    structlog.contextvars.bind_contextvars(session_id=session_id)
    try:
        yield
    finally:
        structlog.contextvars.unbind_contextvars("session_id")


@router.get("/sessions", response_model=list[SessionResponse])
async def list_sessions() -> list[SessionResponse]:
    """List all sessions, most recently updated first."""
    sessions = store.list_sessions()
    logger.info("Listed sessions", count=len(sessions))
    return [SessionResponse.from_session(session) for session in sessions]


@router.post("/sessions", response_model=SessionResponse, status_code=201)
async def create_session(payload: CreateSessionRequest) -> SessionResponse:
    """Create a new idle session."""
    working_directory: str | None = None
    if payload.working_directory:
        candidate = Path(payload.working_directory).expanduser()
        if not candidate.is_dir():
            raise_http_error(
                "VALIDATION_ERROR", "working_directory must be an existing folder", 400
            )
        working_directory = str(candidate.resolve())
    session = store.create_session(title=payload.title, working_directory=working_directory)
    with _session_logging_context(session.id):
        logger.info("Session created", working_directory=working_directory)
        return SessionResponse.from_session(session)


@router.get("/sessions/{session_id}", response_model=SessionDetailResponse)
async def get_session(session_id: str) -> SessionDetailResponse:
    """Fetch a session with its message history."""
    with _session_logging_context(session_id):
        session = store.get_session(session_id)
        if not session:
            raise_http_error("NOT_FOUND", "Session not found", 404)
        messages = store.get_messages(session_id)
        logger.info("Fetched session", stream_status=session.stream_status)
        return SessionDetailResponse(
            session=SessionResponse.from_session(session),
            messages=[MessageResponse.from_message(m) for m in messages],
        )


@router.delete("/sessions/{session_id}", status_code=204)
async def delete_session(session_id: str) -> Response:
    """Delete a session, killing its Claude process first if one is running."""
    with _session_logging_context(session_id):
        try:
            await orchestrator.delete_session(session_id)
        except SessionNotFoundError as exc:
            raise_for_error(exc)
        logger.info("Session deleted")
        return Response(status_code=204)

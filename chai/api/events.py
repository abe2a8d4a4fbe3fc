"""Catch-up endpoint for persisted stream events."""

from __future__ import annotations

from fastapi import APIRouter, Query

from chai.api.schemas import EventsResponse
from chai.errors import SessionNotFoundError
from chai.http import raise_for_error
from chai.orchestrator import DEFAULT_EVENTS_LIMIT, orchestrator

router = APIRouter(tags=["events"])


@router.get("/sessions/{session_id}/events", response_model=EventsResponse)
async def get_events(
    session_id: str,
    since_sequence: int = Query(0, ge=0),
    prompt_id: str | None = Query(None),
    limit: int = Query(DEFAULT_EVENTS_LIMIT),
) -> EventsResponse:
    """Events after ``since_sequence``; ``limit`` is clamped to 1..1000."""
    try:
        page = orchestrator.get_events(
            session_id, since_sequence=since_sequence, prompt_id=prompt_id, limit=limit
        )
    except SessionNotFoundError as exc:
        raise_for_error(exc)
    return EventsResponse.from_page(page)

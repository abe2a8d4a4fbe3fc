"""Pydantic request/response models for API endpoints."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

if TYPE_CHECKING:
    from chai.models import Message, Session, SessionEvent
    from chai.orchestrator import EventPage


# --- Request Models ---


class CreateSessionRequest(BaseModel):
    """Request body for creating a new session."""

    title: str | None = None
    working_directory: str | None = None


class PromptRequest(BaseModel):
    """Request body for sending a prompt to a session."""

    prompt: str = ""


class ApproveRequest(BaseModel):
    """Request body for answering a tool permission request."""

    tool_use_id: str = ""
    decision: str = ""


# --- Response Models ---


class SessionResponse(BaseModel):
    """Session data returned by API endpoints."""

    id: str
    claude_session_id: str | None
    title: str | None
    working_directory: str | None
    stream_status: str
    created_at: str
    updated_at: str

    @classmethod
    def from_session(cls, session: Session) -> SessionResponse:
        """Create a SessionResponse from a Session row."""
        return cls(
            id=session.id,
            claude_session_id=session.claude_session_id,
            title=session.title,
            working_directory=session.working_directory,
            stream_status=session.stream_status,
            created_at=session.created_at,
            updated_at=session.updated_at,
        )


class MessageResponse(BaseModel):
    """One persisted conversation turn."""

    id: str
    session_id: str
    role: str
    content: str
    tool_calls: list[Any] | None
    created_at: str

    @classmethod
    def from_message(cls, message: Message) -> MessageResponse:
        return cls(
            id=message.id,
            session_id=message.session_id,
            role=message.role,
            content=message.content,
            tool_calls=message.tool_calls,
            created_at=message.created_at,
        )


class SessionDetailResponse(BaseModel):
    """A session together with its message history."""

    session: SessionResponse
    messages: list[MessageResponse]


class EventResponse(BaseModel):
    """A persisted stream event. ``data`` is decoded JSON where possible."""

    id: int | None
    session_id: str
    prompt_id: str
    sequence: int
    event_type: str
    data: Any
    created_at: str

    @classmethod
    def from_event(cls, event: SessionEvent) -> EventResponse:
        try:
            data: Any = json.loads(event.data)
        except json.JSONDecodeError:
            data = event.data
        return cls(
            id=event.id,
            session_id=event.session_id,
            prompt_id=event.prompt_id,
            sequence=event.sequence,
            event_type=event.event_type,
            data=data,
            created_at=event.created_at,
        )


class EventsResponse(BaseModel):
    """Catch-up page of persisted stream events."""

    events: list[EventResponse]
    last_sequence: int
    has_more: bool
    stream_status: str

    @classmethod
    def from_page(cls, page: EventPage) -> EventsResponse:
        return cls(
            events=[EventResponse.from_event(event) for event in page.events],
            last_sequence=page.last_sequence,
            has_more=page.has_more,
            stream_status=page.stream_status,
        )


class ApproveResponse(BaseModel):
    """Acknowledgement that a permission decision was written."""

    status: str = "sent"


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    error: str | None = None

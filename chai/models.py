"""SQLModel tables for sessions, messages and persisted stream events."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, Column, ForeignKey, Index, String, Text, UniqueConstraint
from pydantic import BaseModel
from sqlmodel import Field, SQLModel

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> str:
    """Return an ISO8601 UTC timestamp that sorts lexicographically."""
    return format_ts(datetime.now(timezone.utc))


def format_ts(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


class StreamStatus(str, Enum):
    """Streaming state of a session."""
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"


class EventType(str, Enum):
    """Types of persisted stream events, mirrored as SSE event names."""
    CONNECTED = "connected"
    CLAUDE = "claude"
    ERROR = "error"
    DONE = "done"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ErrorDetail(BaseModel):
    """Structured error payload for API responses."""
    code: str
    message: str
    details: Any = None


class ErrorResponse(BaseModel):
    """Envelope for API error responses."""
    error: ErrorDetail


# --- Database Tables (SQLModel with table=True) ---


class Session(SQLModel, table=True):
    """A conversation bound to at most one resumable Claude CLI context."""

    __tablename__ = "sessions"

    id: str = Field(primary_key=True)
    claude_session_id: Optional[str] = None
    title: Optional[str] = None
    working_directory: Optional[str] = None
    stream_status: str = Field(default=StreamStatus.IDLE.value)
    prompt_sequence: int = Field(default=0)
    created_at: str
    updated_at: str


class Message(SQLModel, table=True):
    """One user or assistant turn persisted after a prompt."""

    __tablename__ = "messages"

    id: str = Field(primary_key=True)
    session_id: str = Field(
        sa_column=Column(
            String,
            ForeignKey("sessions.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )
    role: str
    content: str = Field(sa_column=Column(Text, nullable=False))
    tool_calls: Optional[list[Any]] = Field(default=None, sa_column=Column(JSON))
    seq: int
    created_at: str


class SessionEvent(SQLModel, table=True):
    """One SSE event of a prompt, stored for catch-up after reconnects."""

    __tablename__ = "session_events"
    __table_args__ = (
        UniqueConstraint(
            "session_id", "prompt_id", "sequence", name="idx_session_events_unique"
        ),
        Index("idx_session_events_created", "created_at"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: str = Field(
        sa_column=Column(
            String,
            ForeignKey("sessions.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )
    prompt_id: str
    sequence: int
    event_type: str
    data: str = Field(sa_column=Column(Text, nullable=False))
    created_at: str

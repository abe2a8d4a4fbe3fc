"""Runs one prompt end to end: admission, relay, persistence and release."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any

import structlog

from chai.errors import SessionNotFoundError, ValidationError
from chai.event_log import EventLog, event_log as default_event_log
from chai.models import EventType, MessageRole, SessionEvent, StreamStatus
from chai.runner.protocol import AssistantEvent, ContentDeltaEvent, MalformedLine, ResultEvent
from chai.runner.supervisor import ProcessSupervisor, supervisor as default_supervisor
from chai.settings import settings
from chai.sse import encode_data, sse_event
from chai.store import SessionStore, store as default_store

logger = structlog.get_logger(__name__)

INVALID_JSON_MESSAGE = "invalid JSON from Claude"
DECISIONS = ("allow", "deny")
DEFAULT_EVENTS_LIMIT = 100
MAX_EVENTS_LIMIT = 1000


@dataclass
class EventPage:
    """A window of persisted events for catch-up reads."""

    events: list[SessionEvent]
    last_sequence: int
    has_more: bool
    stream_status: str


@dataclass
class _Turn:
    """What the assistant produced during one prompt."""

    text_parts: list[str] = field(default_factory=list)
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    claude_session_id: str | None = None

    def observe(self, event: Any) -> None:
        if isinstance(event, AssistantEvent):
            self.text_parts.append(event.text())
            self.tool_calls.extend(event.tool_calls())
        elif isinstance(event, ContentDeltaEvent):
            self.text_parts.append(event.text())
        elif isinstance(event, ResultEvent) and event.session_id:
            self.claude_session_id = event.session_id

    @property
    def text(self) -> str:
        return "".join(self.text_parts)


class StreamOrchestrator:
    """Composes the session store, event log and process supervisor."""

    def __init__(
        self,
        store: SessionStore | None = None,
        event_log: EventLog | None = None,
        supervisor: ProcessSupervisor | None = None,
        prompt_timeout: float | None = None,
    ) -> None:
        self.store = store if store is not None else default_store
        self.event_log = event_log if event_log is not None else default_event_log
        self.supervisor = supervisor if supervisor is not None else default_supervisor
        self._prompt_timeout = prompt_timeout

    @property
    def prompt_timeout(self) -> float:
        if self._prompt_timeout is not None:
            return self._prompt_timeout
        return settings.prompt_timeout_seconds()

    async def stream_prompt(self, session_id: str, prompt: str) -> AsyncIterator[str]:
        """Run a prompt and yield SSE frames.

        Admission happens on the first step, before any frame is produced, so
        callers can turn its errors into HTTP statuses by priming the
        generator. Once admitted, the session is released on every exit path.

        Raises:
            ValidationError: The prompt is empty.
            SessionNotFoundError: The session does not exist.
            SessionBusyError: Another prompt is streaming for the session.
        """
        if not prompt or not prompt.strip():
            raise ValidationError("prompt is required")
        session = self.store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        prompt_id = self.store.claim_prompt(session_id)
        log = logger.bind(session_id=session_id, prompt_id=prompt_id)
        try:
            self.store.add_message(session_id, MessageRole.USER.value, prompt)
        except Exception:
            log.exception("Failed to save user message")
            self._release(session_id, StreamStatus.IDLE)
            raise

        released = False
        turn = _Turn()
        try:
            log.info("Prompt started", prompt_length=len(prompt))
            yield self._frame(
                session_id,
                prompt_id,
                EventType.CONNECTED,
                {"session_id": session_id, "prompt_id": prompt_id},
            )
            events = self.supervisor.stream(
                session_id,
                prompt,
                claude_session_id=session.claude_session_id,
                working_directory=session.working_directory,
                timeout=self.prompt_timeout,
            )
            async with aclosing(events) as stream:
                async for event in stream:
                    if isinstance(event, MalformedLine):
                        log.warning("Invalid JSON from Claude", line=event.raw[:200])
                        yield self._frame(
                            session_id, prompt_id, EventType.ERROR, {"error": INVALID_JSON_MESSAGE}
                        )
                        continue
                    turn.observe(event)
                    yield self._frame(session_id, prompt_id, EventType.CLAUDE, event.raw)

            self._save_turn(session_id, session.claude_session_id, turn, log)
            self._release(session_id, StreamStatus.COMPLETED)
            released = True
            log.info("Prompt completed", text_length=len(turn.text), tool_calls=len(turn.tool_calls))
            yield self._frame(session_id, prompt_id, EventType.DONE, {"status": "complete"})
        except GeneratorExit:
            log.info("Client disconnected, stopping prompt")
            raise
        except Exception as exc:
            log.warning("Prompt failed", error=str(exc))
            self._release(session_id, StreamStatus.IDLE)
            released = True
            yield self._frame(session_id, prompt_id, EventType.ERROR, {"error": str(exc)})
        finally:
            if not released:
                self._release(session_id, StreamStatus.IDLE)

    async def approve(self, session_id: str, tool_use_id: str, decision: str) -> None:
        """Forward a permission decision to the session's live process.

        Raises:
            ValidationError: Missing request id or unknown decision.
            ProcessNotFoundError: No live process for the session.
        """
        if not tool_use_id:
            raise ValidationError("tool_use_id is required")
        if decision not in DECISIONS:
            raise ValidationError("decision must be 'allow' or 'deny'")
        await self.supervisor.send_control_decision(session_id, tool_use_id, decision)

    def get_events(
        self,
        session_id: str,
        since_sequence: int = 0,
        prompt_id: str | None = None,
        limit: int = DEFAULT_EVENTS_LIMIT,
    ) -> EventPage:
        """Return persisted events after ``since_sequence``.

        Raises:
            SessionNotFoundError: The session does not exist.
        """
        session = self.store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        limit = min(max(limit, 1), MAX_EVENTS_LIMIT)
        rows = self.event_log.read_since(
            session_id, since_sequence=since_sequence, prompt_id=prompt_id, limit=limit + 1
        )
        has_more = len(rows) > limit
        rows = rows[:limit]
        return EventPage(
            events=rows,
            last_sequence=rows[-1].sequence if rows else 0,
            has_more=has_more,
            stream_status=session.stream_status,
        )

    async def delete_session(self, session_id: str) -> None:
        """Kill the session's process, then delete the session.

        Raises:
            SessionNotFoundError: The session does not exist.
        """
        await self.supervisor.kill(session_id)
        if not self.store.delete_session(session_id):
            raise SessionNotFoundError(session_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _frame(self, session_id: str, prompt_id: str, event_type: EventType, data: Any) -> str:
        """Persist an event (best effort) and render it as an SSE frame."""
        payload = encode_data(data)
        try:
            self.event_log.append(session_id, prompt_id, event_type, payload)
        except Exception as exc:
            logger.warning(
                "Failed to persist stream event",
                session_id=session_id,
                prompt_id=prompt_id,
                event_type=event_type.value,
                error=str(exc),
            )
        return sse_event(event_type.value, payload)

    def _save_turn(
        self,
        session_id: str,
        previous_claude_session_id: str | None,
        turn: _Turn,
        log: structlog.stdlib.BoundLogger,
    ) -> None:
        text = turn.text
        if text:
            try:
                self.store.add_message(
                    session_id,
                    MessageRole.ASSISTANT.value,
                    text,
                    tool_calls=turn.tool_calls or None,
                )
            except Exception:
                log.exception("Failed to save assistant message")
        token = turn.claude_session_id
        if token and token != previous_claude_session_id:
            try:
                self.store.set_claude_session_id(session_id, token)
            except Exception:
                log.exception("Failed to save Claude session id")

    def _release(self, session_id: str, status: StreamStatus) -> None:
        try:
            self.store.release_prompt(session_id, status)
        except Exception:
            logger.exception("Failed to release prompt", session_id=session_id, status=status.value)


orchestrator = StreamOrchestrator()


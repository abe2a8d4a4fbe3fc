"""Session and message persistence, including prompt admission control."""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from sqlalchemy import func as sa_func
from sqlalchemy import update
from sqlmodel import select

from chai import db
from chai.db import get_session as get_db_session
from chai.errors import SessionBusyError, SessionNotFoundError, ValidationError
from chai.models import Message, Session, StreamStatus, utc_now

logger = structlog.get_logger(__name__)

_RELEASE_STATUSES = (StreamStatus.IDLE, StreamStatus.COMPLETED)


def make_prompt_id(session_id: str, prompt_sequence: int) -> str:
    """Compose the identifier shared by all events of one prompt."""
    return f"{session_id}-{prompt_sequence}"


class SessionStore:
    """Durable session registry backed by SQLite.

    Every write goes through ``chai.db.write_lock`` so that read-then-write
    sequences (message ordering, prompt claims) are serialized within the
    process.
    """

    def create_session(
        self, title: str | None = None, working_directory: str | None = None
    ) -> Session:
        """Create a new idle session.

        Args:
            title: Optional display title.
            working_directory: Optional cwd override for the Claude CLI.
        """
        now = utc_now()
        session = Session(
            id=f"sess_{uuid.uuid4().hex[:12]}",
            title=title,
            working_directory=working_directory,
            stream_status=StreamStatus.IDLE.value,
            prompt_sequence=0,
            created_at=now,
            updated_at=now,
        )
        with db.write_lock:
            with get_db_session() as dbs:
                dbs.add(session)
                dbs.commit()
                dbs.refresh(session)
        return session

    def get_session(self, session_id: str) -> Session | None:
        """Fetch a session by id, or None if missing."""
        with get_db_session() as dbs:
            return dbs.get(Session, session_id)

    def list_sessions(self) -> list[Session]:
        """Return all sessions, most recently updated first."""
        with get_db_session() as dbs:
            return list(
                dbs.exec(select(Session).order_by(Session.updated_at.desc())).all()
            )

    def delete_session(self, session_id: str) -> bool:
        """Delete a session; messages and events go with it via cascade."""
        with db.write_lock:
            with get_db_session() as dbs:
                session = dbs.get(Session, session_id)
                if session is None:
                    return False
                dbs.delete(session)
                dbs.commit()
        return True

    def set_claude_session_id(self, session_id: str, claude_session_id: str) -> None:
        """Record the resumption token the CLI reported for this session."""
        with db.write_lock:
            with get_db_session() as dbs:
                dbs.connection().execute(
                    update(Session)
                    .where(Session.id == session_id)
                    .values(claude_session_id=claude_session_id, updated_at=utc_now())
                )
                dbs.commit()

    def claim_prompt(self, session_id: str) -> str:
        """Atomically admit one prompt for the session.

        Flips the session to ``streaming`` and bumps its prompt counter in a
        single transaction, refusing when a prompt is already in flight.

        Returns:
            The new prompt id.

        Raises:
            SessionNotFoundError: The session does not exist.
            SessionBusyError: The session is already streaming.
        """
        with db.write_lock:
            with get_db_session() as dbs:
                result = dbs.connection().execute(
                    update(Session)
                    .where(
                        Session.id == session_id,
                        Session.stream_status != StreamStatus.STREAMING.value,
                    )
                    .values(
                        stream_status=StreamStatus.STREAMING.value,
                        prompt_sequence=Session.prompt_sequence + 1,
                        updated_at=utc_now(),
                    )
                )
                if result.rowcount == 0:
                    exists = dbs.exec(
                        select(Session.id).where(Session.id == session_id)
                    ).first()
                    dbs.rollback()
                    if exists is None:
                        raise SessionNotFoundError(session_id)
                    raise SessionBusyError(session_id)
                sequence = dbs.exec(
                    select(Session.prompt_sequence).where(Session.id == session_id)
                ).one()
                dbs.commit()
        prompt_id = make_prompt_id(session_id, sequence)
        logger.debug("Prompt claimed", session_id=session_id, prompt_id=prompt_id)
        return prompt_id

    def release_prompt(self, session_id: str, status: StreamStatus | str) -> None:
        """Leave the streaming state. Idempotent, and a no-op for deleted sessions.

        Args:
            session_id: Session to release.
            status: ``idle`` after a failure, ``completed`` after success.
        """
        status = StreamStatus(status)
        if status not in _RELEASE_STATUSES:
            raise ValidationError(f"cannot release a prompt to {status.value!r}")
        with db.write_lock:
            with get_db_session() as dbs:
                dbs.connection().execute(
                    update(Session)
                    .where(Session.id == session_id)
                    .values(stream_status=status.value, updated_at=utc_now())
                )
                dbs.commit()
        logger.debug("Prompt released", session_id=session_id, status=status.value)

    def add_message(
        self,
        session_id: str,
        role: str,
        content: str,
        tool_calls: list[dict[str, Any]] | None = None,
    ) -> Message:
        """Append a message to the session's history and touch ``updated_at``.

        Args:
            session_id: Owning session.
            role: "user", "assistant" or "system".
            content: Message text.
            tool_calls: Tool-use records observed during the turn, if any.
        """
        now = utc_now()
        with db.write_lock:
            with get_db_session() as dbs:
                max_seq = dbs.exec(
                    select(sa_func.coalesce(sa_func.max(Message.seq), 0)).where(
                        Message.session_id == session_id
                    )
                ).one()
                message = Message(
                    id=f"msg_{uuid.uuid4().hex[:12]}",
                    session_id=session_id,
                    role=role,
                    content=content,
                    tool_calls=tool_calls or None,
                    seq=max_seq + 1,
                    created_at=now,
                )
                dbs.add(message)
                dbs.connection().execute(
                    update(Session).where(Session.id == session_id).values(updated_at=now)
                )
                dbs.commit()
                dbs.refresh(message)
        return message

    def get_messages(self, session_id: str) -> list[Message]:
        """Return the session's messages in insertion order."""
        with get_db_session() as dbs:
            return list(
                dbs.exec(
                    select(Message)
                    .where(Message.session_id == session_id)
                    .order_by(Message.seq)
                ).all()
            )

    def ping(self) -> None:
        """Raise if the database cannot be reached."""
        db.ping()


store = SessionStore()

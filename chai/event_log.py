"""Append-only log of streamed events, used for catch-up after reconnects."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import delete
from sqlalchemy import func as sa_func
from sqlmodel import select

from chai import db
from chai.db import get_session as get_db_session
from chai.models import EventType, Session, SessionEvent, StreamStatus, format_ts, utc_now

logger = structlog.get_logger(__name__)


class EventLog:
    """Per-(session, prompt) event sequences with gap-free numbering.

    Sequences start at 1 and are allocated as ``max + 1`` while holding the
    process-wide write lock, so concurrent appends never skip or collide.
    """

    def append(
        self,
        session_id: str,
        prompt_id: str,
        event_type: EventType | str,
        data: str,
    ) -> SessionEvent:
        """Persist one event and return it with its assigned sequence.

        Args:
            session_id: Owning session.
            prompt_id: Prompt the event belongs to.
            event_type: connected, claude, error or done.
            data: Opaque JSON text, stored verbatim.
        """
        with db.write_lock:
            with get_db_session() as dbs:
                last = dbs.exec(
                    select(sa_func.coalesce(sa_func.max(SessionEvent.sequence), 0)).where(
                        SessionEvent.session_id == session_id,
                        SessionEvent.prompt_id == prompt_id,
                    )
                ).one()
                event = SessionEvent(
                    session_id=session_id,
                    prompt_id=prompt_id,
                    sequence=last + 1,
                    event_type=EventType(event_type).value,
                    data=data,
                    created_at=utc_now(),
                )
                dbs.add(event)
                dbs.commit()
                dbs.refresh(event)
        return event

    def read_since(
        self,
        session_id: str,
        since_sequence: int = 0,
        prompt_id: str | None = None,
        limit: int = 100,
    ) -> list[SessionEvent]:
        """Return events after ``since_sequence`` in ascending order.

        Without a prompt id, events of all prompts are returned in the order
        they were appended.
        """
        query = select(SessionEvent).where(
            SessionEvent.session_id == session_id,
            SessionEvent.sequence > since_sequence,
        )
        if prompt_id:
            query = query.where(SessionEvent.prompt_id == prompt_id).order_by(
                SessionEvent.sequence
            )
        else:
            query = query.order_by(SessionEvent.id)
        with get_db_session() as dbs:
            return list(dbs.exec(query.limit(limit)).all())

    def latest_sequence(self, session_id: str, prompt_id: str | None = None) -> int:
        """Highest stored sequence for the session (or one prompt), 0 if none."""
        query = select(sa_func.coalesce(sa_func.max(SessionEvent.sequence), 0)).where(
            SessionEvent.session_id == session_id
        )
        if prompt_id:
            query = query.where(SessionEvent.prompt_id == prompt_id)
        with get_db_session() as dbs:
            return int(dbs.exec(query).one())

    def purge(self, older_than: timedelta) -> int:
        """Delete events older than the cutoff, skipping streaming sessions.

        Returns:
            Number of events removed.
        """
        cutoff = format_ts(datetime.now(timezone.utc) - older_than)
        settled = select(Session.id).where(
            Session.stream_status.in_(
                [StreamStatus.IDLE.value, StreamStatus.COMPLETED.value]
            )
        )
        with db.write_lock:
            with get_db_session() as dbs:
                result = dbs.connection().execute(
                    delete(SessionEvent).where(
                        SessionEvent.created_at < cutoff,
                        SessionEvent.session_id.in_(settled),
                    )
                )
                dbs.commit()
        removed = result.rowcount or 0
        if removed:
            logger.info("Purged stream events", count=removed, cutoff=cutoff)
        return removed


event_log = EventLog()

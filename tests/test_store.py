"""Unit tests for SessionStore operations."""

import threading

import pytest

from chai.errors import SessionBusyError, SessionNotFoundError, ValidationError
from chai.event_log import EventLog
from chai.models import StreamStatus
from chai.store import SessionStore


class TestSessionCRUD:
    """Test basic session create, read, delete operations."""

    def test_create_session(self, fresh_store: SessionStore) -> None:
        """A new session is idle with a zero prompt counter."""
        session = fresh_store.create_session(title="Demo", working_directory="/tmp")

        assert session.id.startswith("sess_")
        assert len(session.id) == len("sess_") + 12
        assert session.title == "Demo"
        assert session.working_directory == "/tmp"
        assert session.stream_status == StreamStatus.IDLE.value
        assert session.prompt_sequence == 0
        assert session.claude_session_id is None
        assert session.created_at.endswith("Z")

    def test_get_session(self, fresh_store: SessionStore) -> None:
        created = fresh_store.create_session()
        retrieved = fresh_store.get_session(created.id)

        assert retrieved is not None
        assert retrieved.id == created.id

    def test_get_nonexistent_session(self, fresh_store: SessionStore) -> None:
        assert fresh_store.get_session("sess_missing") is None

    def test_list_sessions_most_recent_first(self, fresh_store: SessionStore) -> None:
        """Touching a session moves it to the front of the list."""
        first = fresh_store.create_session(title="first")
        second = fresh_store.create_session(title="second")
        fresh_store.add_message(first.id, "user", "bump")

        ids = [s.id for s in fresh_store.list_sessions()]

        assert ids == [first.id, second.id]

    def test_delete_session(self, fresh_store: SessionStore) -> None:
        session = fresh_store.create_session()

        assert fresh_store.delete_session(session.id) is True
        assert fresh_store.get_session(session.id) is None

    def test_delete_missing_session(self, fresh_store: SessionStore) -> None:
        assert fresh_store.delete_session("sess_missing") is False

    def test_delete_cascades_to_messages_and_events(
        self, fresh_store: SessionStore, fresh_event_log: EventLog
    ) -> None:
        """Messages and stream events go away with their session."""
        session = fresh_store.create_session()
        prompt_id = fresh_store.claim_prompt(session.id)
        fresh_store.add_message(session.id, "user", "hi")
        fresh_event_log.append(session.id, prompt_id, "connected", "{}")

        fresh_store.delete_session(session.id)

        assert fresh_store.get_messages(session.id) == []
        assert fresh_event_log.read_since(session.id) == []

    def test_set_claude_session_id(self, fresh_store: SessionStore) -> None:
        session = fresh_store.create_session()
        fresh_store.set_claude_session_id(session.id, "claude-123")

        assert fresh_store.get_session(session.id).claude_session_id == "claude-123"


class TestPromptClaim:
    """Test the atomic prompt admission gate."""

    def test_claim_sets_streaming_and_returns_prompt_id(self, fresh_store: SessionStore) -> None:
        session = fresh_store.create_session()

        prompt_id = fresh_store.claim_prompt(session.id)

        assert prompt_id == f"{session.id}-1"
        stored = fresh_store.get_session(session.id)
        assert stored.stream_status == StreamStatus.STREAMING.value
        assert stored.prompt_sequence == 1

    def test_second_claim_is_busy(self, fresh_store: SessionStore) -> None:
        session = fresh_store.create_session()
        fresh_store.claim_prompt(session.id)

        with pytest.raises(SessionBusyError):
            fresh_store.claim_prompt(session.id)

        assert fresh_store.get_session(session.id).prompt_sequence == 1

    def test_claim_missing_session(self, fresh_store: SessionStore) -> None:
        with pytest.raises(SessionNotFoundError):
            fresh_store.claim_prompt("sess_missing")

    def test_claim_after_release_increments_sequence(self, fresh_store: SessionStore) -> None:
        """Prompt ids are never reused within a session."""
        session = fresh_store.create_session()
        first = fresh_store.claim_prompt(session.id)
        fresh_store.release_prompt(session.id, StreamStatus.COMPLETED)
        second = fresh_store.claim_prompt(session.id)
        fresh_store.release_prompt(session.id, StreamStatus.IDLE)
        third = fresh_store.claim_prompt(session.id)

        assert [first, second, third] == [
            f"{session.id}-1",
            f"{session.id}-2",
            f"{session.id}-3",
        ]

    def test_concurrent_claims_admit_exactly_one(self, fresh_store: SessionStore) -> None:
        session = fresh_store.create_session()
        results: list[str] = []
        errors: list[Exception] = []

        def claim() -> None:
            try:
                results.append(fresh_store.claim_prompt(session.id))
            except SessionBusyError as exc:
                errors.append(exc)

        threads = [threading.Thread(target=claim) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results == [f"{session.id}-1"]
        assert len(errors) == 7

    def test_release_is_idempotent(self, fresh_store: SessionStore) -> None:
        session = fresh_store.create_session()
        fresh_store.claim_prompt(session.id)

        fresh_store.release_prompt(session.id, StreamStatus.IDLE)
        fresh_store.release_prompt(session.id, StreamStatus.IDLE)

        assert fresh_store.get_session(session.id).stream_status == StreamStatus.IDLE.value

    def test_release_deleted_session_is_noop(self, fresh_store: SessionStore) -> None:
        session = fresh_store.create_session()
        fresh_store.claim_prompt(session.id)
        fresh_store.delete_session(session.id)

        fresh_store.release_prompt(session.id, StreamStatus.IDLE)

        assert fresh_store.get_session(session.id) is None

    def test_release_to_streaming_is_rejected(self, fresh_store: SessionStore) -> None:
        session = fresh_store.create_session()

        with pytest.raises(ValidationError):
            fresh_store.release_prompt(session.id, StreamStatus.STREAMING)


class TestMessages:
    """Test conversation history persistence."""

    def test_messages_are_ordered_by_seq(self, fresh_store: SessionStore) -> None:
        session = fresh_store.create_session()
        fresh_store.add_message(session.id, "user", "one")
        fresh_store.add_message(session.id, "assistant", "two")
        fresh_store.add_message(session.id, "user", "three")

        messages = fresh_store.get_messages(session.id)

        assert [m.content for m in messages] == ["one", "two", "three"]
        assert [m.seq for m in messages] == [1, 2, 3]
        assert all(m.id.startswith("msg_") for m in messages)

    def test_tool_calls_round_trip(self, fresh_store: SessionStore) -> None:
        session = fresh_store.create_session()
        calls = [{"id": "toolu_1", "name": "Bash", "input": {"command": "ls"}}]
        fresh_store.add_message(session.id, "assistant", "listing", tool_calls=calls)

        (message,) = fresh_store.get_messages(session.id)

        assert message.tool_calls == calls

    def test_empty_tool_calls_stored_as_null(self, fresh_store: SessionStore) -> None:
        session = fresh_store.create_session()
        message = fresh_store.add_message(session.id, "assistant", "text", tool_calls=[])

        assert message.tool_calls is None

    def test_add_message_touches_session(self, fresh_store: SessionStore) -> None:
        session = fresh_store.create_session()
        fresh_store.add_message(session.id, "user", "hello")

        assert fresh_store.get_session(session.id).updated_at >= session.updated_at

    def test_ping(self, fresh_store: SessionStore) -> None:
        fresh_store.ping()

"""Tests for logging setup."""

import logging

from chai.log_config import MAX_FIELD_CHARS, configure_logging, truncate_long_fields


def test_long_protocol_line_is_clipped() -> None:
    line = "x" * (MAX_FIELD_CHARS + 500)

    event = truncate_long_fields(None, "info", {"event": "Invalid JSON from Claude", "line": line})

    assert event["line"].startswith("x" * MAX_FIELD_CHARS)
    assert event["line"].endswith(f"[{len(line)} chars]")
    assert event["event"] == "Invalid JSON from Claude"


def test_short_and_non_string_fields_untouched() -> None:
    event = {"event": "Prompt failed", "error": "boom", "line": 42}

    assert truncate_long_fields(None, "warning", dict(event)) == event


def test_configure_logging_quiets_access_and_sql_logs(monkeypatch) -> None:
    monkeypatch.setenv("CHAI_LOG_LEVEL", "DEBUG")

    try:
        configure_logging()

        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("uvicorn.access").level == logging.WARNING
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
    finally:
        monkeypatch.setenv("CHAI_LOG_LEVEL", "WARNING")
        configure_logging()

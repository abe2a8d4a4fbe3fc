"""Structlog setup for the broker.

Requests are logged by the HTTP middleware, so uvicorn's own access log is
silenced. Stream logs carry ``session_id`` and ``prompt_id`` through
``structlog.contextvars`` or explicit binds.
"""

from __future__ import annotations

import logging
import logging.config
import sys

import structlog

from chai.settings import settings

# Claude stdout/stderr lines can be megabytes long (tool output).
MAX_FIELD_CHARS = 2000
_TRUNCATED_FIELDS = ("line", "error", "stderr")


def truncate_long_fields(logger, method_name: str, event_dict: dict) -> dict:
    """Clip protocol payloads that ended up in a log event."""
    for key in _TRUNCATED_FIELDS:
        value = event_dict.get(key)
        if isinstance(value, str) and len(value) > MAX_FIELD_CHARS:
            event_dict[key] = f"{value[:MAX_FIELD_CHARS]}... [{len(value)} chars]"
    return event_dict


def configure_logging() -> None:
    """Configure structlog and route stdlib loggers through the same renderer."""
    level = getattr(logging, settings.log_level(), logging.INFO)

    pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        truncate_long_fields,
    ]
    if settings.log_format() == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=pre_chain)
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"structlog": {"()": lambda: formatter}},
            "handlers": {
                "stdout": {
                    "class": "logging.StreamHandler",
                    "formatter": "structlog",
                    "stream": sys.stdout,
                }
            },
            "root": {"handlers": ["stdout"], "level": level},
            "loggers": {
                "uvicorn": {"handlers": ["stdout"], "level": level, "propagate": False},
                "uvicorn.access": {"level": logging.WARNING},
                "alembic": {"level": logging.WARNING},
                "sqlalchemy.engine": {"level": logging.WARNING},
            },
        }
    )

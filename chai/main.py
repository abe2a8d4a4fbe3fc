"""FastAPI application entrypoint for the session broker."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from contextlib import asynccontextmanager, suppress

import structlog
import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from chai import __version__
from chai.api import api_router, root_router
from chai.db import init_db
from chai.errors import ConfigError
from chai.http import (
    http_exception_handler,
    request_logging_middleware,
    validation_exception_handler,
)
from chai.log_config import configure_logging
from chai.maintenance import maintenance_loop
from chai.runner.supervisor import supervisor
from chai.settings import settings

configure_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    app.state.loop = asyncio.get_running_loop()
    maintenance_task = asyncio.create_task(maintenance_loop())
    logger.info(
        "Chai server started",
        version=__version__,
        port=settings.port(),
        db=settings.db_path(),
        work_dir=settings.work_dir(),
    )
    try:
        yield
    finally:
        logger.info("Shutting down, killing Claude processes")
        await supervisor.shutdown_all()
        maintenance_task.cancel()
        with suppress(asyncio.CancelledError):
            await maintenance_task


app = FastAPI(title="chai", version=__version__, lifespan=lifespan)

app.middleware("http")(request_logging_middleware)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)

app.include_router(api_router)
app.include_router(root_router)


class _Server(uvicorn.Server):
    """Kills Claude processes as soon as shutdown is requested.

    Open SSE streams then end promptly instead of holding graceful
    shutdown open until the timeout.
    """

    def handle_exit(self, sig, frame) -> None:
        loop = getattr(app.state, "loop", None)
        if loop is not None and not self.should_exit:
            loop.call_soon_threadsafe(_start_shutdown_kill, loop)
        super().handle_exit(sig, frame)


_shutdown_tasks: set[asyncio.Task] = set()


def _start_shutdown_kill(loop: asyncio.AbstractEventLoop) -> None:
    task = loop.create_task(supervisor.shutdown_all())
    _shutdown_tasks.add(task)
    task.add_done_callback(_shutdown_tasks.discard)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="chai-server",
        description="HTTP/SSE session broker for the Claude CLI.",
    )
    parser.add_argument("--port", help="HTTP port (env CHAI_PORT, default 8080)")
    parser.add_argument("--db", help="SQLite database path (env CHAI_DB, default chai.db)")
    parser.add_argument("--workdir", help="Default Claude working directory (env CHAI_WORKDIR)")
    parser.add_argument("--claude-cmd", help="Claude CLI command (env CHAI_CLAUDE_CMD)")
    parser.add_argument(
        "--prompt-timeout", help="Maximum prompt duration, e.g. 5m (env CHAI_PROMPT_TIMEOUT)"
    )
    parser.add_argument(
        "--shutdown-timeout", help="Graceful shutdown timeout, e.g. 30s (env CHAI_SHUTDOWN_TIMEOUT)"
    )
    return parser.parse_args(argv)


_FLAG_ENV = {
    "port": "CHAI_PORT",
    "db": "CHAI_DB",
    "workdir": "CHAI_WORKDIR",
    "claude_cmd": "CHAI_CLAUDE_CMD",
    "prompt_timeout": "CHAI_PROMPT_TIMEOUT",
    "shutdown_timeout": "CHAI_SHUTDOWN_TIMEOUT",
}


def apply_flags(args: argparse.Namespace) -> None:
    """Write given command-line flags into the environment, overriding it."""
    for attr, env_name in _FLAG_ENV.items():
        value = getattr(args, attr, None)
        if value is not None and str(value).strip():
            os.environ[env_name] = str(value)


def run(argv: list[str] | None = None) -> None:
    """Entry point for the chai-server console script."""
    apply_flags(_parse_args(argv))
    try:
        settings.validate()
    except ConfigError as exc:
        print(f"chai-server: {exc}", file=sys.stderr)
        raise SystemExit(2) from None
    config = uvicorn.Config(
        app,
        host=settings.host(),
        port=settings.port(),
        reload=False,
        log_config=None,
        timeout_graceful_shutdown=int(settings.shutdown_timeout_seconds()) or 1,
    )
    _Server(config).run()


if __name__ == "__main__":
    run()

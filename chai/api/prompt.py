"""Prompt streaming and permission approval endpoints."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing

import structlog
from fastapi import APIRouter

from chai.api.schemas import ApproveRequest, ApproveResponse, PromptRequest
from chai.errors import ChaiError
from chai.http import raise_for_error, raise_http_error
from chai.orchestrator import orchestrator
from chai.sse import stream_response

router = APIRouter(tags=["prompt"])
logger = structlog.get_logger(__name__)


async def _prepend(first: str, frames: AsyncIterator[str]) -> AsyncIterator[str]:
    async with aclosing(frames):
        yield first
        async for frame in frames:
            yield frame


@router.post("/sessions/{session_id}/prompt")
async def send_prompt(session_id: str, payload: PromptRequest):
    """Run a prompt and stream its events as SSE.

    The first frame is produced before the response starts so that admission
    failures are reported with a proper status code instead of a stream.
    """
    frames = orchestrator.stream_prompt(session_id, payload.prompt)
    try:
        first = await anext(frames)
    except ChaiError as exc:
        logger.info("Prompt rejected", session_id=session_id, reason=str(exc))
        raise_for_error(exc)
    except Exception:
        logger.exception("Prompt admission failed", session_id=session_id)
        raise_http_error("INTERNAL_ERROR", "failed to start prompt", 500)
    return stream_response(_prepend(first, frames))


@router.post("/sessions/{session_id}/approve", response_model=ApproveResponse)
async def approve(session_id: str, payload: ApproveRequest) -> ApproveResponse:
    """Deliver an allow/deny decision for a pending tool permission request."""
    try:
        await orchestrator.approve(session_id, payload.tool_use_id, payload.decision)
    except ChaiError as exc:
        logger.warning("Approval failed", session_id=session_id, error=str(exc))
        raise_for_error(exc)
    return ApproveResponse()

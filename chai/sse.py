"""Helpers for producing server-sent event (SSE) responses."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

from starlette.responses import StreamingResponse

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_data(data: Any) -> str:
    """Compact JSON for an SSE data field; strings are assumed to be JSON already."""
    if isinstance(data, str):
        return data
    return json.dumps(data, separators=(",", ":"))


def sse_event(event_type: str, data: Any) -> str:
    """Serialize one named event into SSE wire format."""
    return f"event: {event_type}\ndata: {encode_data(data)}\n\n"


async def _encode(frames: AsyncIterator[str]) -> AsyncIterator[bytes]:
    async for frame in frames:
        yield frame.encode("utf-8")


def stream_response(frames: AsyncIterator[str]) -> StreamingResponse:
    """Build a StreamingResponse for pre-rendered SSE frames."""
    return StreamingResponse(
        _encode(frames),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )

"""Line protocol spoken by ``claude --input-format/--output-format stream-json``.

Inbound lines are decoded into a small tagged union keyed on ``type``. Every
decoded value keeps the original line in ``raw`` so it can be relayed to
clients byte for byte. Unknown tags are preserved as ``UnknownEvent``.
"""

from __future__ import annotations

import json
from typing import Any, Literal, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field

DENY_MESSAGE = "User denied permission"


class _Event(BaseModel):
    model_config = ConfigDict(extra="allow")

    raw: str = Field(default="", exclude=True)


class ContentBlock(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str
    text: str | None = None
    id: str | None = None
    name: str | None = None
    input: dict[str, Any] | None = None

    def tool_call(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "input": self.input or {}}


class AssistantMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    content: list[ContentBlock] = Field(default_factory=list)


class AssistantEvent(_Event):
    """A full assistant message with text and tool_use blocks."""

    type: Literal["assistant"]
    message: AssistantMessage = Field(default_factory=AssistantMessage)

    def text(self) -> str:
        return "".join(b.text or "" for b in self.message.content if b.type == "text")

    def tool_calls(self) -> list[dict[str, Any]]:
        return [b.tool_call() for b in self.message.content if b.type == "tool_use"]


class ContentDelta(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = ""
    text: str | None = None


class ContentDeltaEvent(_Event):
    """An incremental piece of streamed content."""

    type: Literal["content_block_delta"]
    delta: ContentDelta = Field(default_factory=ContentDelta)

    def text(self) -> str:
        if self.delta.type == "text_delta":
            return self.delta.text or ""
        return ""


class ResultEvent(_Event):
    """Terminal event of a run; carries the resumption token."""

    type: Literal["result"]
    subtype: str | None = None
    session_id: str | None = None
    is_error: bool = False
    result: Any = None


class ToolPermissionRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    subtype: str
    tool_name: str | None = None
    input: dict[str, Any] = Field(default_factory=dict)


class ControlRequestEvent(_Event):
    """The CLI asks whether a tool may run."""

    type: Literal["control_request"]
    request_id: str
    request: ToolPermissionRequest

    @property
    def correlation_id(self) -> str:
        return self.request_id

    @property
    def tool_name(self) -> str | None:
        return self.request.tool_name

    @property
    def tool_input(self) -> dict[str, Any]:
        return self.request.input


class PermissionRequestEvent(_Event):
    """Older permission request shape, keyed by tool_use_id."""

    type: Literal["permission_request", "tool_use"]
    tool_use_id: str
    tool_name: str | None = None
    input: dict[str, Any] = Field(default_factory=dict)

    @property
    def correlation_id(self) -> str:
        return self.tool_use_id

    @property
    def tool_input(self) -> dict[str, Any]:
        return self.input


class UnknownEvent(_Event):
    """Any other well-formed line, relayed without interpretation."""

    type: str | None = None


class MalformedLine(BaseModel):
    """A stdout line that was not valid JSON."""

    raw: str
    error: str


ProtocolEvent = Union[
    AssistantEvent,
    ContentDeltaEvent,
    ResultEvent,
    ControlRequestEvent,
    PermissionRequestEvent,
    UnknownEvent,
]
PermissionEvent = Union[ControlRequestEvent, PermissionRequestEvent]

_EVENT_TYPES: dict[str, type[_Event]] = {
    "assistant": AssistantEvent,
    "content_block_delta": ContentDeltaEvent,
    "result": ResultEvent,
    "control_request": ControlRequestEvent,
    "permission_request": PermissionRequestEvent,
    "tool_use": PermissionRequestEvent,
}


def decode_line(line: str) -> ProtocolEvent | MalformedLine:
    """Decode one stdout line.

    Lines whose known tag does not match the expected shape degrade to
    ``UnknownEvent`` rather than failing the stream.
    """
    try:
        payload = json.loads(line)
    except json.JSONDecodeError as exc:
        return MalformedLine(raw=line, error=str(exc))
    if not isinstance(payload, dict):
        return UnknownEvent(raw=line)

    tag = payload.get("type")
    model = _EVENT_TYPES.get(tag) if isinstance(tag, str) else None
    if model is ControlRequestEvent:
        request = payload.get("request")
        if not isinstance(request, dict) or request.get("subtype") != "can_use_tool":
            model = None
    if model is not None:
        try:
            return model.model_validate({**payload, "raw": line})
        except pydantic.ValidationError:
            pass
    fallback = {k: v for k, v in payload.items() if k not in ("raw", "type")}
    return UnknownEvent(raw=line, type=tag if isinstance(tag, str) else None, **fallback)


def encode_line(message: dict[str, Any]) -> bytes:
    """Serialize one outbound message as a newline-terminated JSON line."""
    return (json.dumps(message, separators=(",", ":")) + "\n").encode()


def user_message(prompt: str) -> dict[str, Any]:
    return {"type": "user", "message": {"role": "user", "content": prompt}}


def control_response(
    request_id: str, allow: bool, tool_input: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Build the reply to a permission request.

    An allow echoes the tool's original input back as ``updatedInput``.
    """
    if allow:
        decision: dict[str, Any] = {"behavior": "allow", "updatedInput": tool_input or {}}
    else:
        decision = {"behavior": "deny", "message": DENY_MESSAGE}
    return {
        "type": "control_response",
        "response": {
            "subtype": "success",
            "request_id": request_id,
            "response": decision,
        },
    }


def claude_args(claude_cmd: str, claude_session_id: str | None = None) -> list[str]:
    """Command line for one streaming Claude CLI run."""
    args = [
        claude_cmd,
        "--verbose",
        "--output-format",
        "stream-json",
        "--input-format",
        "stream-json",
        "--permission-prompt-tool",
        "stdio",
    ]
    if claude_session_id:
        args.extend(["--resume", claude_session_id])
    return args

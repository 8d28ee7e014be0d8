"""Serialize canonical events into downstream SSE frames."""

from __future__ import annotations

import json
from typing import Any

from sse_starlette import ServerSentEvent

from .types import (
    CanonicalEvent,
    StepFinish,
    StepStart,
    StreamDone,
    StreamError,
    StreamFinish,
    StreamStart,
    TextDelta,
    TextEnd,
    TextStart,
    ToolCall,
)

_FRAME_SEPARATOR = "\n"

_EVENT_TYPES: dict[type, str] = {
    StreamStart: "start",
    StepStart: "start-step",
    TextStart: "text-start",
    TextDelta: "text-delta",
    ToolCall: "tool-call",
    TextEnd: "text-end",
    StepFinish: "finish-step",
    StreamFinish: "finish",
    StreamError: "error",
}


def _frame(data: str) -> str:
    return ServerSentEvent(data=data, sep=_FRAME_SEPARATOR).encode().decode("utf-8")


DONE_FRAME = _frame("[DONE]")


def event_payload(event: CanonicalEvent) -> dict[str, Any]:
    """Return the JSON object carried by the frame for ``event``."""

    try:
        event_type = _EVENT_TYPES[type(event)]
    except KeyError as exc:
        raise TypeError(f"No wire type for {type(event).__name__}") from exc

    payload: dict[str, Any] = {"type": event_type}
    if isinstance(event, (TextStart, TextDelta, ToolCall, TextEnd)):
        payload["id"] = event.id
    if isinstance(event, TextDelta):
        payload["delta"] = event.delta
    elif isinstance(event, ToolCall):
        payload["toolCalls"] = event.calls
    elif isinstance(event, StreamError):
        payload["errorText"] = event.message
    return payload


def encode(event: CanonicalEvent) -> str:
    """Return exactly one wire frame for ``event``."""

    if isinstance(event, StreamDone):
        return DONE_FRAME
    body = json.dumps(event_payload(event), ensure_ascii=False, separators=(",", ":"))
    return _frame(body)


__all__ = ["DONE_FRAME", "encode", "event_payload"]

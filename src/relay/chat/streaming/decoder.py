"""Decode upstream stream lines into upstream events.

Three line shapes are accepted because the backend emits different ones
depending on its mode:

* OpenAI-style SSE: ``data: {"choices": [{"delta": {...}}]}`` and ``data: [DONE]``
* token tags: ``0:"<json string>"``
* pre-canonical UI events: ``{"type": "text-delta", "delta": "...", "id": "..."}``

Lines that match none of them are dropped. Decoding never raises.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Sequence

from .types import DoneSignal, TextChunk, ToolCallChunk, UpstreamEvent

logger = logging.getLogger(__name__)

DONE_MARKER = "[DONE]"
_SSE_DATA_PREFIX = "data:"
_TOKEN_TAG_PREFIX = "0:"


def decode_line(line: str) -> list[UpstreamEvent]:
    """Return the upstream events carried by one logical line."""

    stripped = line.strip()
    if not stripped or stripped.startswith(":"):
        return []

    try:
        if stripped.startswith(_SSE_DATA_PREFIX):
            return _decode_sse_data(stripped[len(_SSE_DATA_PREFIX) :].strip())
        if stripped.startswith(_TOKEN_TAG_PREFIX):
            return _decode_token_tag(stripped[len(_TOKEN_TAG_PREFIX) :].strip())
        if stripped.startswith("{"):
            return _decode_structured(json.loads(stripped))
    except (json.JSONDecodeError, RecursionError, TypeError, ValueError) as exc:
        logger.debug("Dropping undecodable upstream line %r: %s", stripped[:100], exc)
        return []

    logger.debug("Ignoring unrecognized upstream line %r", stripped[:100])
    return []


def _decode_sse_data(data: str) -> list[UpstreamEvent]:
    if data == DONE_MARKER:
        return [DoneSignal()]
    if not data:
        return []

    payload = json.loads(data)
    if not isinstance(payload, Mapping):
        return []
    if payload.get("type") == "text-delta":
        return _decode_structured(payload)
    return _decode_choice_delta(payload)


def _decode_choice_delta(payload: Mapping[str, Any]) -> list[UpstreamEvent]:
    choices = payload.get("choices")
    if not isinstance(choices, Sequence) or not choices:
        return []
    choice = choices[0]
    if not isinstance(choice, Mapping):
        return []
    delta = choice.get("delta")
    if not isinstance(delta, Mapping):
        return []

    events: list[UpstreamEvent] = []
    content = delta.get("content")
    if isinstance(content, str) and content:
        events.append(TextChunk(content))

    tool_calls = delta.get("tool_calls")
    if isinstance(tool_calls, list) and tool_calls:
        calls = [dict(call) for call in tool_calls if isinstance(call, Mapping)]
        if calls:
            events.append(ToolCallChunk(calls))
    return events


def _decode_token_tag(raw: str) -> list[UpstreamEvent]:
    value = json.loads(raw)
    if isinstance(value, str) and value:
        return [TextChunk(value)]
    return []


def _decode_structured(payload: Any) -> list[UpstreamEvent]:
    if not isinstance(payload, Mapping) or payload.get("type") != "text-delta":
        return []
    delta = payload.get("delta")
    if not isinstance(delta, str) or not delta:
        return []
    source_id = payload.get("id")
    return [TextChunk(delta, source_id if isinstance(source_id, str) else None)]


__all__ = ["DONE_MARKER", "decode_line"]

"""Type definitions for the chat streaming subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


# Upstream events: what a single decoded upstream line can mean.


@dataclass(frozen=True)
class TextChunk:
    text: str
    source_id: str | None = None


@dataclass(frozen=True)
class ToolCallChunk:
    calls: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class DoneSignal:
    pass


UpstreamEvent = Union[TextChunk, ToolCallChunk, DoneSignal]


# Canonical events: the fixed vocabulary sent to the downstream consumer.


@dataclass(frozen=True)
class StreamStart:
    pass


@dataclass(frozen=True)
class StepStart:
    pass


@dataclass(frozen=True)
class TextStart:
    id: str


@dataclass(frozen=True)
class TextDelta:
    id: str
    delta: str


@dataclass(frozen=True)
class ToolCall:
    id: str
    calls: list[dict[str, Any]]


@dataclass(frozen=True)
class TextEnd:
    id: str


@dataclass(frozen=True)
class StepFinish:
    pass


@dataclass(frozen=True)
class StreamFinish:
    pass


@dataclass(frozen=True)
class StreamDone:
    pass


@dataclass(frozen=True)
class StreamError:
    message: str


CanonicalEvent = Union[
    StreamStart,
    StepStart,
    TextStart,
    TextDelta,
    ToolCall,
    TextEnd,
    StepFinish,
    StreamFinish,
    StreamDone,
    StreamError,
]


__all__ = [
    "CanonicalEvent",
    "DoneSignal",
    "StepFinish",
    "StepStart",
    "StreamDone",
    "StreamError",
    "StreamFinish",
    "StreamStart",
    "TextChunk",
    "TextDelta",
    "TextEnd",
    "TextStart",
    "ToolCall",
    "ToolCallChunk",
    "UpstreamEvent",
]

"""Helpers for preparing chat messages for the upstream completion API."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence, Union

from ..schemas.chat import ChatMessage
from ..schemas.tools import ToolServerDescriptor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class FileRef:
    id: str
    filename: str | None = None


Part = Union[TextPart, FileRef]


@dataclass(frozen=True)
class Message:
    role: str
    content: tuple[Part, ...]

    @property
    def text(self) -> str:
        return "".join(
            part.text for part in self.content if isinstance(part, TextPart)
        ).strip()


def _parse_file_payload(raw: Any) -> dict[str, Any]:
    """Decode the JSON document some UIs stash in a file part's url/data."""

    if isinstance(raw, Mapping):
        return dict(raw)
    if not isinstance(raw, str) or not raw.strip():
        return {}
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return decoded if isinstance(decoded, dict) else {}


def parse_part(raw: Any) -> Part | None:
    """Convert one inbound content/parts entry into a :data:`Part`."""

    if not isinstance(raw, Mapping):
        return None

    part_type = raw.get("type")
    if part_type == "text":
        text = raw.get("text")
        if not isinstance(text, str):
            text = raw.get("content")
        return TextPart(text if isinstance(text, str) else "")

    if part_type == "file":
        file_id = raw.get("id") or raw.get("fileId") or raw.get("file_id")
        payload: dict[str, Any] = {}
        if not isinstance(file_id, str) or not file_id:
            payload = _parse_file_payload(raw.get("url")) or _parse_file_payload(
                raw.get("data")
            )
            file_id = payload.get("id")
        if not isinstance(file_id, str) or not file_id:
            logger.warning("Ignoring file part without an identifier")
            return None
        filename = raw.get("filename") or raw.get("name") or payload.get("name")
        return FileRef(file_id, filename if isinstance(filename, str) else None)

    return None


def message_parts(message: ChatMessage) -> tuple[Part, ...]:
    """Normalize whichever content shape a message uses into parts.

    A ``parts`` list wins over ``content``, then a content list, then a plain
    string. When ``parts`` carries no text, a string ``content`` supplies it.
    """

    content_text = message.content if isinstance(message.content, str) else ""
    if isinstance(message.parts, list) and message.parts:
        parts = _parse_parts(message.parts)
        if content_text and not any(isinstance(part, TextPart) for part in parts):
            parts.insert(0, TextPart(content_text))
        return tuple(parts)
    if isinstance(message.content, list):
        return tuple(_parse_parts(message.content))
    if content_text:
        return (TextPart(content_text),)
    return ()


def _parse_parts(raw_parts: Sequence[Any]) -> list[Part]:
    parts: list[Part] = []
    for raw in raw_parts:
        part = parse_part(raw)
        if part is not None:
            parts.append(part)
    return parts


def normalize_messages(messages: Iterable[ChatMessage]) -> list[Message]:
    """Return messages with non-empty text, preserving order."""

    normalized: list[Message] = []
    for message in messages:
        candidate = Message(role=message.role, content=message_parts(message))
        if candidate.text:
            normalized.append(candidate)
    return normalized


def collect_file_ids(message: ChatMessage) -> list[str]:
    """Return the file identifiers referenced by a single message."""

    return [part.id for part in message_parts(message) if isinstance(part, FileRef)]


def build_upstream_payload(
    messages: Sequence[ChatMessage],
    *,
    model: str,
    file_ids: Sequence[str] = (),
    tool_servers: Sequence[ToolServerDescriptor] = (),
) -> dict[str, Any]:
    """Return the exact body sent to the upstream completion endpoint."""

    payload: dict[str, Any] = {
        "model": model,
        "messages": [
            {"role": message.role, "content": message.text}
            for message in normalize_messages(messages)
        ],
        "stream": True,
    }
    if file_ids:
        payload["files"] = [{"type": "file", "id": file_id} for file_id in file_ids]
    if tool_servers:
        payload["tool_servers"] = [server.to_upstream() for server in tool_servers]
    return payload


__all__ = [
    "FileRef",
    "Message",
    "Part",
    "TextPart",
    "build_upstream_payload",
    "collect_file_ids",
    "message_parts",
    "normalize_messages",
    "parse_part",
]

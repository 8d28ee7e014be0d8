"""Pydantic models for chat requests and responses."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    """Represents a single chat message in any of the shapes the UI sends."""

    role: Literal["system", "user", "assistant"]
    content: Union[str, List[Dict[str, Any]], None] = None
    parts: Optional[List[Dict[str, Any]]] = None
    id: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class ChatStreamRequest(BaseModel):
    """Incoming chat turn payload."""

    session_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("session_id", "sessionId"),
    )
    model: Optional[str] = None
    messages: List[ChatMessage]
    file_ids: Optional[List[str]] = Field(
        default=None,
        validation_alias=AliasChoices("fileIds", "file_ids"),
    )
    # Validated per entry when the turn starts; unusable descriptors are dropped
    tool_servers: Optional[List[Dict[str, Any]]] = None

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class SessionSnapshot(BaseModel):
    """Read-only view of a chat session's pending state."""

    sessionId: str
    fileIds: List[str]
    toolServers: List[Dict[str, Any]]
    activeTurn: Optional[str] = None
    lastTurnState: Optional[str] = None


__all__ = ["ChatMessage", "ChatStreamRequest", "SessionSnapshot"]

"""Turn orchestration: request building, upstream streaming and cleanup."""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import aclosing
from enum import Enum
from typing import Any, AsyncGenerator

from ..config import Settings
from ..schemas.chat import ChatStreamRequest
from ..schemas.tools import ToolServerDescriptor
from ..services.tool_servers import ToolServerDiscovery, parse_tool_servers
from ..upstream import UpstreamClient, UpstreamError, UpstreamStream
from .messages import build_upstream_payload, collect_file_ids
from .session import ChatSession, SessionRegistry
from .streaming import LineReassembler, decode_line, encode
from .streaming.types import (
    CanonicalEvent,
    DoneSignal,
    StepFinish,
    StepStart,
    StreamDone,
    StreamError,
    StreamFinish,
    StreamStart,
    TextChunk,
    TextDelta,
    TextEnd,
    TextStart,
    ToolCall,
    ToolCallChunk,
    UpstreamEvent,
)

logger = logging.getLogger(__name__)


class TurnState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    DRAINING = "draining"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


_TERMINAL_STATES = frozenset({TurnState.DONE, TurnState.FAILED, TurnState.CANCELLED})


class EmptyConversationError(ValueError):
    """Raised when no message survives normalization."""


class Turn:
    """One request/response cycle for a single assistant reply."""

    def __init__(self, session: ChatSession) -> None:
        self.turn_id = uuid.uuid4().hex
        self.message_id = f"msg_{uuid.uuid4().hex}"
        self.session = session
        self.state = TurnState.IDLE
        self.payload: dict[str, Any] | None = None
        self.upstream: UpstreamStream | None = None
        self.consumed_file_ids: list[str] = []
        self.error: str | None = None
        self._events_started = False

    @property
    def finished(self) -> bool:
        return self.state in _TERMINAL_STATES

    def __repr__(self) -> str:
        return f"Turn(id={self.turn_id!r}, session={self.session.session_id!r}, state={self.state.value})"


class TurnOrchestrator:
    """Drive chat turns from the inbound request to the canonical stream."""

    def __init__(
        self,
        settings: Settings,
        *,
        client: UpstreamClient | None = None,
        registry: SessionRegistry | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or UpstreamClient(settings)
        if registry is None:
            discovery = ToolServerDiscovery(
                self._client,
                attempts=settings.tool_discovery_attempts,
                backoff_seconds=settings.tool_discovery_backoff_seconds,
            )
            registry = SessionRegistry(discovery)
        self._registry = registry

    @property
    def client(self) -> UpstreamClient:
        return self._client

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    def session_for(self, session_id: str | None) -> ChatSession:
        return self._registry.get_or_create(
            session_id or self._settings.default_session_id
        )

    def find_session(self, session_id: str | None) -> ChatSession | None:
        return self._registry.get(session_id or self._settings.default_session_id)

    async def shutdown(self) -> None:
        """Clean up held resources."""

        try:
            await asyncio.wait_for(self._registry.close(), timeout=5.0)
        except (asyncio.TimeoutError, Exception) as exc:
            logger.warning("Error closing chat sessions: %s", exc)

        try:
            await asyncio.wait_for(self._client.aclose(), timeout=2.0)
        except (asyncio.TimeoutError, Exception) as exc:
            logger.warning("Error closing upstream client: %s", exc)

    async def start_turn(self, request: ChatStreamRequest) -> Turn:
        """Claim the session, send the upstream request and open its stream.

        Raises :class:`~relay.chat.session.TurnInProgressError` when the session
        is busy, :class:`EmptyConversationError` when nothing is left to send
        and :class:`~relay.upstream.UpstreamError` when the backend refuses.
        """

        session = self.session_for(request.session_id)
        turn = Turn(session)
        session.begin_turn(turn)
        try:
            return await self._open_turn(turn, request)
        except asyncio.CancelledError:
            self._finish(turn, TurnState.CANCELLED)
            raise
        except Exception as exc:
            turn.error = str(exc)
            self._finish(turn, TurnState.FAILED)
            raise

    async def _open_turn(self, turn: Turn, request: ChatStreamRequest) -> Turn:
        session = turn.session
        if request.file_ids:
            session.add_file_ids(request.file_ids)
        if request.messages:
            session.add_file_ids(collect_file_ids(request.messages[-1]))

        tool_servers = await self._resolve_tool_servers(session, request)

        turn.state = TurnState.REQUESTING
        turn.consumed_file_ids = session.get_file_ids()
        payload = build_upstream_payload(
            request.messages,
            model=request.model or self._settings.default_model,
            file_ids=turn.consumed_file_ids,
            tool_servers=tool_servers,
        )
        if not payload["messages"]:
            raise EmptyConversationError("No valid messages")
        turn.payload = payload

        logger.info(
            "Turn %s (session %s): %d message(s), %d file(s), %d tool server(s)",
            turn.turn_id,
            session.session_id,
            len(payload["messages"]),
            len(turn.consumed_file_ids),
            len(tool_servers),
        )
        turn.upstream = await self._client.open_chat_stream(payload)
        turn.state = TurnState.STREAMING
        return turn

    async def _resolve_tool_servers(
        self, session: ChatSession, request: ChatStreamRequest
    ) -> list[ToolServerDescriptor]:
        discovered = await session.wait_for_tool_servers(
            self._settings.tool_discovery_wait_seconds
        )
        # Servers sent with the request win over discovered ones with the same url
        return parse_tool_servers([*(request.tool_servers or []), *discovered])

    async def events(self, turn: Turn) -> AsyncGenerator[CanonicalEvent, None]:
        """Yield canonical events for a turn returned by :meth:`start_turn`.

        Closing the generator early cancels the turn. Every exit path releases
        the session and the upstream reader.
        """

        if turn.state is not TurnState.STREAMING or turn.upstream is None:
            raise RuntimeError(f"{turn!r} is not ready to stream")
        if turn._events_started:
            raise RuntimeError(f"{turn!r} is already streaming")
        turn._events_started = True

        upstream = turn.upstream
        message_id = turn.message_id
        reassembler = LineReassembler()
        done_emitted = False
        try:
            yield StreamStart()
            yield StepStart()
            yield TextStart(message_id)

            saw_sentinel = False
            async with aclosing(upstream.chunks()) as chunks:
                async for chunk in chunks:
                    for line in reassembler.feed(chunk):
                        for event in decode_line(line):
                            if isinstance(event, DoneSignal):
                                saw_sentinel = True
                                continue
                            yield self._to_canonical(event, message_id)
                    if saw_sentinel:
                        break

            if not saw_sentinel:
                turn.state = TurnState.DRAINING
            # Content buffered behind the sentinel is still delivered
            for line in reassembler.flush():
                for event in decode_line(line):
                    if not isinstance(event, DoneSignal):
                        yield self._to_canonical(event, message_id)

            yield TextEnd(message_id)
            yield StepFinish()
            yield StreamFinish()
            done_emitted = True
            yield StreamDone()
        except (GeneratorExit, asyncio.CancelledError):
            if done_emitted:
                self._finish(turn, TurnState.DONE)
            else:
                self._finish(turn, TurnState.CANCELLED)
            raise
        except UpstreamError as exc:
            turn.error = str(exc.detail)
            self._finish(turn, TurnState.FAILED)
            yield StreamError(f"Upstream stream failed: {turn.error}")
        except Exception as exc:
            logger.exception("Turn %s aborted while relaying", turn.turn_id)
            turn.error = str(exc) or type(exc).__name__
            self._finish(turn, TurnState.FAILED)
            yield StreamError(f"Stream relay failed: {turn.error}")
        else:
            self._finish(turn, TurnState.DONE)
        finally:
            if not turn.finished:
                self._finish(turn, TurnState.FAILED)
            await upstream.release()

    async def frames(self, turn: Turn) -> AsyncGenerator[str, None]:
        """Yield encoded wire frames for ``turn``."""

        async with aclosing(self.events(turn)) as events:
            async for event in events:
                yield encode(event)

    async def finalize_turn(self, turn: Turn) -> None:
        """Release a turn whose stream was never consumed to completion."""

        if not turn.finished:
            logger.info("Turn %s abandoned before streaming finished", turn.turn_id)
            self._finish(turn, TurnState.CANCELLED)
        if turn.upstream is not None:
            await turn.upstream.release()

    def _finish(self, turn: Turn, state: TurnState) -> None:
        if turn.finished:
            return
        turn.state = state
        turn.session.end_turn(turn)
        if state is TurnState.DONE and turn.consumed_file_ids:
            turn.session.clear_file_ids(turn.consumed_file_ids)

        if state is TurnState.FAILED:
            logger.warning("Turn %s failed: %s", turn.turn_id, turn.error)
        else:
            logger.info("Turn %s finished: %s", turn.turn_id, state.value)

    @staticmethod
    def _to_canonical(event: UpstreamEvent, message_id: str) -> CanonicalEvent:
        if isinstance(event, TextChunk):
            return TextDelta(message_id, event.text)
        if isinstance(event, ToolCallChunk):
            return ToolCall(message_id, event.calls)
        raise TypeError(f"Unexpected upstream event {event!r}")


__all__ = [
    "EmptyConversationError",
    "Turn",
    "TurnOrchestrator",
    "TurnState",
]

"""Conversation-scoped state shared by uploads and chat turns."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import TYPE_CHECKING, Iterable

from ..schemas.tools import ToolServerDescriptor
from ..services.tool_servers import ToolServerDiscovery

if TYPE_CHECKING:
    from .orchestrator import Turn

logger = logging.getLogger(__name__)


class TurnInProgressError(RuntimeError):
    """Raised when a session already has an unterminated turn."""


class ChatSession:
    """Pending attachments and tool servers for one conversation."""

    def __init__(
        self,
        session_id: str,
        *,
        discovery: ToolServerDiscovery | None = None,
    ) -> None:
        self.session_id = session_id
        self._discovery = discovery
        # dict keeps insertion order, giving an ordered set
        self._file_ids: dict[str, None] = {}
        self._tool_servers: list[ToolServerDescriptor] = []
        self._tools_loaded = False
        self._discovery_task: asyncio.Task[list[ToolServerDescriptor]] | None = None
        self._active_turn: Turn | None = None
        self.last_turn: Turn | None = None

    # Attachments

    def add_file_ids(self, ids: Iterable[str]) -> None:
        added = [
            file_id
            for file_id in ids
            if isinstance(file_id, str) and file_id and file_id not in self._file_ids
        ]
        for file_id in added:
            self._file_ids[file_id] = None
        if added:
            logger.debug("Session %s: pending file ids %s", self.session_id, added)

    def get_file_ids(self) -> list[str]:
        return list(self._file_ids)

    def clear_file_ids(self, ids: Iterable[str] | None = None) -> None:
        """Empty the pending set, or drop only ``ids`` when given."""

        if ids is None:
            self._file_ids.clear()
        else:
            for file_id in ids:
                self._file_ids.pop(file_id, None)
        logger.debug(
            "Session %s: file ids cleared, %d pending",
            self.session_id,
            len(self._file_ids),
        )

    def discard_file_id(self, file_id: str) -> bool:
        if file_id not in self._file_ids:
            return False
        del self._file_ids[file_id]
        return True

    # Tool servers

    @property
    def tool_servers(self) -> list[ToolServerDescriptor]:
        return list(self._tool_servers)

    @property
    def tools_loaded(self) -> bool:
        return self._tools_loaded

    async def fetch_tool_servers(self) -> list[ToolServerDescriptor]:
        if self._discovery is None:
            self._tools_loaded = True
            return []
        servers = await self._discovery.discover()
        self._tool_servers = servers
        self._tools_loaded = True
        return list(servers)

    def ensure_tool_discovery(self) -> asyncio.Task[list[ToolServerDescriptor]] | None:
        """Start background discovery unless it already ran or is running."""

        if self._discovery is None or self._tools_loaded:
            return None
        if self._discovery_task is None or self._discovery_task.done():
            self._discovery_task = asyncio.create_task(
                self.fetch_tool_servers(),
                name=f"tool-discovery-{self.session_id}",
            )
        return self._discovery_task

    async def wait_for_tool_servers(self, timeout: float) -> list[ToolServerDescriptor]:
        """Return cached servers, waiting at most ``timeout`` for discovery."""

        task = self.ensure_tool_discovery()
        if task is not None and not task.done():
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Session %s: tool discovery still running after %.1fs; "
                    "proceeding without tools",
                    self.session_id,
                    timeout,
                )
            except asyncio.CancelledError:
                # A refresh cancelled the discovery task, not this waiter
                if not task.cancelled():
                    raise
            except Exception as exc:
                logger.warning(
                    "Session %s: tool discovery failed: %s", self.session_id, exc
                )
        return self.tool_servers

    async def refresh_tool_servers(self) -> list[ToolServerDescriptor]:
        await self._cancel_discovery()
        self._tool_servers = []
        self._tools_loaded = False
        return await self.fetch_tool_servers()

    async def _cancel_discovery(self) -> None:
        task, self._discovery_task = self._discovery_task, None
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    # Turn bookkeeping

    @property
    def active_turn(self) -> Turn | None:
        return self._active_turn

    def begin_turn(self, turn: Turn) -> None:
        if self._active_turn is not None:
            raise TurnInProgressError(
                f"Session {self.session_id} already has a turn in progress"
            )
        self._active_turn = turn
        self.last_turn = turn

    def end_turn(self, turn: Turn) -> None:
        if self._active_turn is turn:
            self._active_turn = None

    async def close(self) -> None:
        await self._cancel_discovery()


class SessionRegistry:
    """Own every live :class:`ChatSession`, keyed by session id."""

    def __init__(self, discovery: ToolServerDiscovery | None = None) -> None:
        self._discovery = discovery
        self._sessions: dict[str, ChatSession] = {}

    def get(self, session_id: str) -> ChatSession | None:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> ChatSession:
        session = self._sessions.get(session_id)
        if session is None:
            session = ChatSession(session_id, discovery=self._discovery)
            self._sessions[session_id] = session
            logger.debug("Created session %s", session_id)
        return session

    async def discard(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        if session.active_turn is not None:
            raise TurnInProgressError(
                f"Session {session_id} has a turn in progress"
            )
        del self._sessions[session_id]
        await session.close()
        return True

    async def close(self) -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await session.close()

    def __len__(self) -> int:
        return len(self._sessions)


__all__ = ["ChatSession", "SessionRegistry", "TurnInProgressError"]

"""Tests for session state and tool server discovery."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from relay.chat.session import ChatSession, SessionRegistry, TurnInProgressError
from relay.services.tool_servers import ToolServerDiscovery, parse_tool_servers
from relay.upstream import UpstreamError

pytestmark = pytest.mark.anyio


class FakeToolSource:
    def __init__(self, *results: Any) -> None:
        self._results = list(results)
        self.calls = 0

    async def list_tool_servers(self) -> Any:
        self.calls += 1
        result = self._results.pop(0) if self._results else []
        if isinstance(result, Exception):
            raise result
        return result


class BlockingToolSource:
    def __init__(self) -> None:
        self.release = asyncio.Event()

    async def list_tool_servers(self) -> Any:
        await self.release.wait()
        return [{"url": "http://late", "specs": [{"name": "slow"}]}]


SERVERS = [
    {"url": "http://a", "specs": [{"name": "search"}]},
    {"url": "", "specs": [{"name": "orphan"}]},
    {"url": "http://b", "specs": []},
    {"url": "http://c", "specs": [{"description": "nameless"}]},
    {"url": "http://a", "specs": [{"name": "duplicate"}]},
]


class TestFileIds:
    def test_add_is_idempotent_and_ordered(self):
        session = ChatSession("s")
        session.add_file_ids(["a", "b"])
        session.add_file_ids(["b", "c", "", "a"])

        assert session.get_file_ids() == ["a", "b", "c"]

    def test_clear_all(self):
        session = ChatSession("s")
        session.add_file_ids(["a", "b"])
        session.clear_file_ids()

        assert session.get_file_ids() == []

    def test_clear_subset_keeps_late_arrivals(self):
        session = ChatSession("s")
        session.add_file_ids(["a", "b"])
        consumed = session.get_file_ids()
        session.add_file_ids(["c"])

        session.clear_file_ids(consumed)

        assert session.get_file_ids() == ["c"]

    def test_discard(self):
        session = ChatSession("s")
        session.add_file_ids(["a"])

        assert session.discard_file_id("a") is True
        assert session.discard_file_id("a") is False


class TestTurnBookkeeping:
    def test_single_active_turn(self):
        session = ChatSession("s")
        first, second = object(), object()
        session.begin_turn(first)  # type: ignore[arg-type]

        with pytest.raises(TurnInProgressError):
            session.begin_turn(second)  # type: ignore[arg-type]

        session.end_turn(second)  # type: ignore[arg-type]
        assert session.active_turn is first

        session.end_turn(first)  # type: ignore[arg-type]
        assert session.active_turn is None
        session.begin_turn(second)  # type: ignore[arg-type]
        assert session.last_turn is second


def test_parse_tool_servers_filters_and_dedupes() -> None:
    servers = parse_tool_servers(SERVERS)

    assert [server.url for server in servers] == ["http://a"]
    assert [spec.name for spec in servers[0].capability_specs] == ["search"]


def test_parse_tool_servers_accepts_wrapped_payload() -> None:
    servers = parse_tool_servers({"data": SERVERS[:1]})
    assert [server.url for server in servers] == ["http://a"]
    assert parse_tool_servers({"unexpected": True}) == []
    assert parse_tool_servers("nope") == []


async def test_discovery_retries_then_succeeds() -> None:
    source = FakeToolSource(UpstreamError(503, "warming up"), SERVERS)
    discovery = ToolServerDiscovery(source, attempts=3, backoff_seconds=0)

    servers = await discovery.discover()

    assert source.calls == 2
    assert [server.url for server in servers] == ["http://a"]


async def test_discovery_gives_up_with_empty_list() -> None:
    source = FakeToolSource(*(UpstreamError(500, "down") for _ in range(3)))
    discovery = ToolServerDiscovery(source, attempts=3, backoff_seconds=0)

    assert await discovery.discover() == []
    assert source.calls == 3


async def test_session_caches_discovered_servers() -> None:
    source = FakeToolSource(SERVERS)
    session = ChatSession("s", discovery=ToolServerDiscovery(source, backoff_seconds=0))

    first = await session.wait_for_tool_servers(1.0)
    second = await session.wait_for_tool_servers(1.0)

    assert session.tools_loaded is True
    assert [server.url for server in first] == ["http://a"]
    assert second == first
    assert source.calls == 1


async def test_wait_times_out_without_tools() -> None:
    source = BlockingToolSource()
    session = ChatSession("s", discovery=ToolServerDiscovery(source))

    servers = await session.wait_for_tool_servers(0.01)

    assert servers == []
    assert session.tools_loaded is False

    source.release.set()
    servers = await session.wait_for_tool_servers(1.0)
    assert [server.url for server in servers] == ["http://late"]
    await session.close()


async def test_refresh_replaces_cached_servers() -> None:
    source = FakeToolSource(SERVERS, [{"url": "http://new", "specs": [{"name": "x"}]}])
    session = ChatSession("s", discovery=ToolServerDiscovery(source, backoff_seconds=0))

    await session.wait_for_tool_servers(1.0)
    refreshed = await session.refresh_tool_servers()

    assert [server.url for server in refreshed] == ["http://new"]
    assert [server.url for server in session.tool_servers] == ["http://new"]


async def test_session_without_discovery_has_no_tools() -> None:
    session = ChatSession("s")

    assert await session.wait_for_tool_servers(0.1) == []
    assert session.tools_loaded is False


async def test_registry_discard_refuses_active_session() -> None:
    registry = SessionRegistry()
    session = registry.get_or_create("s")
    assert registry.get_or_create("s") is session

    turn = object()
    session.begin_turn(turn)  # type: ignore[arg-type]
    with pytest.raises(TurnInProgressError):
        await registry.discard("s")

    session.end_turn(turn)  # type: ignore[arg-type]
    assert await registry.discard("s") is True
    assert await registry.discard("s") is False
    assert len(registry) == 0

"""Tool server discovery against the completion backend."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Mapping, Protocol

from pydantic import ValidationError

from ..schemas.tools import ToolServerDescriptor
from ..upstream import UpstreamError

logger = logging.getLogger(__name__)


class ToolServerSource(Protocol):
    async def list_tool_servers(self) -> Any:
        ...


def _iter_entries(payload: Any) -> Iterable[Any]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, Mapping):
        for key in ("tool_servers", "servers", "data", "items"):
            value = payload.get(key)
            if isinstance(value, list):
                return value
    return []


def _clean_specs(raw_specs: Any) -> list[dict[str, Any]]:
    if not isinstance(raw_specs, list):
        return []
    cleaned: list[dict[str, Any]] = []
    for spec in raw_specs:
        if not isinstance(spec, Mapping):
            continue
        name = spec.get("name")
        if isinstance(name, str) and name.strip():
            cleaned.append(dict(spec))
    return cleaned


def parse_tool_servers(payload: Any) -> list[ToolServerDescriptor]:
    """Return the usable tool server descriptors found in ``payload``."""

    servers: list[ToolServerDescriptor] = []
    seen_urls: set[str] = set()
    for entry in _iter_entries(payload):
        if isinstance(entry, ToolServerDescriptor):
            candidate = entry
        elif isinstance(entry, Mapping):
            data = dict(entry)
            for key in ("specs", "capabilitySpecs", "capability_specs"):
                if key in data:
                    data[key] = _clean_specs(data[key])
            try:
                candidate = ToolServerDescriptor.model_validate(data)
            except ValidationError as exc:
                logger.debug("Skipping malformed tool server entry: %s", exc)
                continue
        else:
            continue

        if not candidate.is_usable():
            continue
        if candidate.url in seen_urls:
            continue
        seen_urls.add(candidate.url)
        servers.append(candidate)
    return servers


class ToolServerDiscovery:
    """Fetch tool server descriptors with bounded linear-backoff retry."""

    def __init__(
        self,
        source: ToolServerSource,
        *,
        attempts: int = 3,
        backoff_seconds: float = 1.0,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self._source = source
        self._attempts = attempts
        self._backoff_seconds = backoff_seconds

    async def discover(self) -> list[ToolServerDescriptor]:
        """Return discovered servers, or an empty list once retries run out."""

        for attempt in range(1, self._attempts + 1):
            try:
                payload = await self._source.list_tool_servers()
            except UpstreamError as exc:
                logger.warning(
                    "Tool server discovery attempt %d/%d failed (%s): %s",
                    attempt,
                    self._attempts,
                    exc.status_code,
                    exc.detail,
                )
            else:
                servers = parse_tool_servers(payload)
                logger.info("Discovered %d tool server(s)", len(servers))
                return servers

            if attempt < self._attempts:
                await asyncio.sleep(self._backoff_seconds * attempt)

        logger.warning(
            "Tool server discovery gave up after %d attempt(s); continuing without tools",
            self._attempts,
        )
        return []


__all__ = ["ToolServerDiscovery", "ToolServerSource", "parse_tool_servers"]

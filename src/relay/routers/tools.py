"""API routes for tool server discovery."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from ..chat import TurnOrchestrator
from ..config import Settings, get_settings
from .chat import get_orchestrator

router = APIRouter(prefix="/api/tools", tags=["tools"])

_PROBE_ENDPOINTS = ("/api/v1/tools", "/api/tools", "/api/v1/tools/list")


def get_app_settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    return settings if settings is not None else get_settings()


@router.get("/probe")
async def probe_tool_endpoints(
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    """Report which candidate tool endpoints the backend answers on."""

    client = orchestrator.client
    candidates = list(dict.fromkeys([settings.tool_servers_path, *_PROBE_ENDPOINTS]))
    results: dict[str, Any] = {}
    for path in candidates:
        results[path] = await client.probe(path)

    models = await client.probe(settings.models_path)
    results["models"] = {
        "success": bool(models.get("success")),
        "status": models.get("status"),
    }

    return {
        "config": {
            "baseUrl": str(settings.upstream_base_url),
            "hasApiKey": bool(settings.upstream_api_key.get_secret_value()),
        },
        "results": results,
    }


@router.get("/{session_id}")
async def list_tool_servers(
    session_id: str,
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    session = orchestrator.session_for(session_id)
    servers = await session.wait_for_tool_servers(
        settings.tool_discovery_wait_seconds
    )
    return {
        "sessionId": session.session_id,
        "loaded": session.tools_loaded,
        "toolServers": [server.to_upstream() for server in servers],
    }


@router.post("/{session_id}/refresh")
async def refresh_tool_servers(
    session_id: str,
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    session = orchestrator.session_for(session_id)
    servers = await session.refresh_tool_servers()
    return {
        "sessionId": session.session_id,
        "loaded": session.tools_loaded,
        "toolServers": [server.to_upstream() for server in servers],
    }


__all__ = ["router"]

"""Chat streaming API routes."""

from __future__ import annotations

import asyncio
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from ..chat import EmptyConversationError, TurnInProgressError, TurnOrchestrator
from ..chat.streaming import encode
from ..chat.streaming.types import (
    StepFinish,
    StepStart,
    StreamDone,
    StreamFinish,
    StreamStart,
    TextDelta,
    TextEnd,
    TextStart,
)
from ..schemas.chat import ChatStreamRequest, SessionSnapshot
from ..upstream import UpstreamError

router = APIRouter(prefix="/api", tags=["chat"])

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

_TEST_STREAM_MESSAGE = "Hello from test route! This is working!"


def get_orchestrator(request: Request) -> TurnOrchestrator:
    orchestrator = getattr(request.app.state, "chat_orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=500, detail="Chat orchestrator unavailable")
    return orchestrator


@router.post("/chat", response_model=None, status_code=200)
async def stream_chat(
    payload: ChatStreamRequest,
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    """Relay one chat turn from the backend as canonical stream frames."""

    try:
        turn = await orchestrator.start_turn(payload)
    except TurnInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except EmptyConversationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except UpstreamError as exc:
        raise HTTPException(
            status_code=exc.status_code,
            detail={"error": "Upstream request failed", "details": exc.detail},
        ) from exc

    return StreamingResponse(
        orchestrator.frames(turn),
        media_type="text/event-stream",
        headers=STREAM_HEADERS,
        background=BackgroundTask(orchestrator.finalize_turn, turn),
    )


@router.get("/chat/session/{session_id}", response_model=SessionSnapshot)
async def get_chat_session(
    session_id: str,
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
) -> SessionSnapshot:
    """Describe the pending attachments and tool servers of a session."""

    session = orchestrator.registry.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")

    active = session.active_turn
    last = session.last_turn
    return SessionSnapshot(
        sessionId=session.session_id,
        fileIds=session.get_file_ids(),
        toolServers=[server.to_upstream() for server in session.tool_servers],
        activeTurn=active.turn_id if active is not None else None,
        lastTurnState=last.state.value if last is not None else None,
    )


@router.delete("/chat/session/{session_id}", status_code=204)
async def clear_chat_session(
    session_id: str,
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
) -> Response:
    """Drop the stored state for a session."""

    try:
        await orchestrator.registry.discard(session_id)
    except TurnInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return Response(status_code=204)


@router.get("/chat/test-stream", response_model=None, status_code=200)
async def test_stream() -> StreamingResponse:
    """Emit a short canned stream for debugging the frontend."""

    async def generator() -> AsyncGenerator[str, None]:
        message_id = "msg_test"
        yield encode(StreamStart())
        yield encode(StepStart())
        yield encode(TextStart(message_id))
        for word in _TEST_STREAM_MESSAGE.split(" "):
            yield encode(TextDelta(message_id, f"{word} "))
            await asyncio.sleep(0.1)
        yield encode(TextEnd(message_id))
        yield encode(StepFinish())
        yield encode(StreamFinish())
        yield encode(StreamDone())

    return StreamingResponse(
        generator(),
        media_type="text/event-stream",
        headers=STREAM_HEADERS,
    )


__all__ = ["router", "get_orchestrator", "STREAM_HEADERS"]

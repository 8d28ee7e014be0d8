"""Application factory for the FastAPI service."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .chat import TurnOrchestrator
from .config import Settings, get_settings
from .routers.chat import router as chat_router
from .routers.tools import router as tools_router
from .routers.uploads import router as uploads_router
from .services.attachments import AttachmentService
from .upstream import UpstreamClient

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _configure_logging() -> None:
    """Configure logging based on LOG_LEVEL environment variable."""
    # Load .env file first to ensure LOG_FILE is available
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    handlers: list[logging.Handler] = []

    log_file = os.getenv("LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT))
        handlers.append(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT))
    handlers.append(console_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,
    )

    logging.getLogger("relay").setLevel(log_level)

    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    # httpx logs every request at INFO
    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
    else:
        logging.getLogger("httpx").setLevel(log_level)
        logging.getLogger("httpcore").setLevel(log_level)


def create_app(
    settings: Settings | None = None,
    *,
    client: UpstreamClient | None = None,
) -> FastAPI:
    _configure_logging()

    settings = settings or get_settings()
    client = client or UpstreamClient(settings)

    orchestrator = TurnOrchestrator(settings, client=client)
    attachment_service = AttachmentService(
        client,
        max_size_bytes=settings.attachments_max_size_bytes,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.getLogger(__name__).info(
            "Relaying chat turns to %s", settings.upstream_base_url
        )
        try:
            yield
        finally:
            try:
                await asyncio.wait_for(orchestrator.shutdown(), timeout=10.0)
            except asyncio.TimeoutError:
                logging.warning("Orchestrator shutdown timed out after 10s")
            except Exception as exc:
                logging.warning("Error during orchestrator shutdown: %s", exc)

    app = FastAPI(
        title="Chat Relay",
        version="0.1.0",
        description="Streaming relay between a chat UI and an OpenWebUI-compatible backend.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.chat_orchestrator = orchestrator
    app.state.attachment_service = attachment_service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat_router)
    app.include_router(uploads_router)
    app.include_router(tools_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str | int]:
        return {
            "status": "ok",
            "upstream": str(settings.upstream_base_url),
            "default_model": settings.default_model,
            "sessions": len(orchestrator.registry),
        }

    return app


__all__ = ["create_app"]

"""Application factory for the FastAPI service."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .chat.conversation import ChatSessionManager
from .config import get_settings
from .routers.chat import router as chat_router
from .services.chat_backend import ChatBackendClient
from .services.embedding_service import EmbeddingService
from .services.rag import RagService
from .services.tts_service import SpeechSynthesisService
from .services.vector_db import VectorDbService

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


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
        file_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT))
        handlers.append(file_handler)

    # Always add console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT))
    handlers.append(console_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,  # Override any existing configuration
    )

    logging.getLogger("chatstream").setLevel(log_level)
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    # Quiet down noisy third-party libraries
    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("openai").setLevel(logging.WARNING)


def create_app() -> FastAPI:
    # Configure logging first thing
    _configure_logging()

    settings = get_settings()

    backend_client = ChatBackendClient(settings)
    speech_service = SpeechSynthesisService(settings)
    vector_db_service = VectorDbService(settings)
    rag_service = RagService(EmbeddingService(settings), vector_db_service)

    session_manager = ChatSessionManager(
        backend_client,
        speech_service,
        rag=rag_service,
        audio_format=speech_service.response_format,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            try:
                await backend_client.aclose()
                await vector_db_service.aclose()
            except Exception as exc:
                logging.warning("Error closing HTTP clients during shutdown: %s", exc)

    app = FastAPI(
        title="Chat Stream Backend",
        version=__version__,
        description="Chat relay with RAG prompts, token streaming and sentence-level speech.",
        lifespan=lifespan,
    )

    app.state.chat_sessions = session_manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str | None]:
        return {
            "status": "ok",
            "chat_backend_url": str(settings.chat_backend_url),
            "tts_model": settings.tts_model,
        }

    return app


__all__ = ["create_app"]

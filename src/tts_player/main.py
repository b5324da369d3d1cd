"""
FastAPI Application Entry Point.

Routers:
    - Native API: /v1/speech, /v1/voices, /v1/usage*, /v1/characters/count,
      /health, /metrics
    - OpenAI-compatible API: /v1/audio/speech

Usage:
    uvicorn tts_player.main:app --host 127.0.0.1 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from tts_player import __version__
from tts_player.api.openai_compat import router as openai_router
from tts_player.api.routes import router
from tts_player.core.logging import configure_logging, get_logger, info
from tts_player.services.speech_service import reset_service

_LOG = get_logger("tts-player.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    info(_LOG, "startup", version=__version__)
    yield
    # Release the HTTP client and the usage database engine
    reset_service()
    info(_LOG, "shutdown")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    The SpeechService is created lazily on the first request.
    """
    configure_logging()

    app = FastAPI(title="tts-player", version=__version__, lifespan=lifespan)

    app.include_router(router)           # Native: /v1/speech, /health, /metrics, ...
    app.include_router(openai_router)    # OpenAI: /v1/audio/speech

    return app


app = create_app()

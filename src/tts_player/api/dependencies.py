"""
FastAPI Dependency Injection Providers.

    1. get_settings() - Loads and caches application configuration
    2. get_speech_service() - Creates/returns the singleton SpeechService

The settings file is ``$TTS_PLAYER_SETTINGS`` when set, otherwise
``config/settings.yaml``; without either, Defaults plus environment
overrides are used.

Usage in Route Handlers:
    @router.post("/v1/speech")
    def speech(req: SpeechBody, service: SpeechService = Depends(get_speech_service)):
        ...

Tests override these with ``app.dependency_overrides``.
"""
from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from tts_player.core.config import Settings, default_settings, load_settings
from tts_player.services.speech_service import SpeechService, get_service

DEFAULT_SETTINGS_PATH = "config/settings.yaml"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once per process."""
    path = os.getenv("TTS_PLAYER_SETTINGS", DEFAULT_SETTINGS_PATH)
    if Path(path).exists():
        return load_settings(path)
    return default_settings()


def get_speech_service() -> SpeechService:
    """The global SpeechService, created on first use."""
    return get_service(get_settings())

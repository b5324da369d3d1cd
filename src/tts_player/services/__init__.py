"""
tts-player Services Layer.

Business logic between the API/CLI and the generation pipeline.

Components:
    - speech_service.py: SpeechService (validation, chunking, generation,
      assembly, usage accounting)
    - validators.py: Input validation functions
"""
from .speech_service import (
    FinalArtifact,
    SpeechRequest,
    SpeechResult,
    SpeechService,
    get_service,
    reset_service,
)

__all__ = [
    "SpeechService",
    "SpeechRequest",
    "SpeechResult",
    "FinalArtifact",
    "get_service",
    "reset_service",
]

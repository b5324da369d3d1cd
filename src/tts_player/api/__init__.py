"""
FastAPI REST API Layer for tts-player.

    - routes.py: Native endpoints (/v1/speech, /v1/usage, /health, /metrics)
    - openai_compat.py: OpenAI-compatible endpoint (/v1/audio/speech)
    - schemas.py: Request/response Pydantic models
    - dependencies.py: FastAPI dependency injection
"""

"""
Speech API Routes.

Endpoints:
    POST /v1/speech              - Generate audio for text of any length
    GET  /v1/voices              - Supported voices and models
    GET  /v1/usage               - Quota snapshot for the account
    GET  /v1/usage/stats         - Aggregated usage (?days=30)
    GET  /v1/usage/history       - Recent usage events (?limit=50&days=)
    POST /v1/characters/count    - Character, chunk and cost preview
    GET  /health                 - Health check
    GET  /metrics                - Prometheus metrics

Error Handling:
    Errors are returned as ``TTSError.to_dict()``:
    {
        "ok": false,
        "error": "<ERROR_CODE>",
        "message": "<user-facing message>",
        "details": {...}
    }

    HTTP status codes are mapped from ErrorCode:
        - VALIDATION -> 400 Bad Request
        - AUTH       -> 401 Unauthorized
        - RATE_LIMIT -> 429 Too Many Requests (+ Retry-After)
        - NETWORK    -> 502 Bad Gateway
        - ASSEMBLY   -> 500 Internal Server Error
        - UNKNOWN    -> 502 Bad Gateway

Example Usage:
    curl -X POST http://localhost:8000/v1/speech \\
        -H "Content-Type: application/json" \\
        -d '{"text": "Hello there.", "voice": "nova"}' \\
        --output speech.mp3
"""
from __future__ import annotations

import math
import uuid
from pathlib import Path
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import JSONResponse

from tts_player.api.dependencies import get_speech_service
from tts_player.api.schemas import (
    CharacterCountBody,
    CharacterCountResponse,
    SpeechBody,
    VoiceInfo,
    VoicesResponse,
)
from tts_player.core.errors import ErrorCode, RateLimitError, TTSError
from tts_player.core.logging import fail, get_logger, set_request_id
from tts_player.core.metrics import metrics
from tts_player.services.speech_service import SpeechRequest, SpeechResult, SpeechService

router = APIRouter()

_LOG = get_logger("tts-player.api")

STATUS_MAP: Dict[str, int] = {
    ErrorCode.VALIDATION: 400,
    ErrorCode.AUTH: 401,
    ErrorCode.RATE_LIMIT: 429,
    ErrorCode.NETWORK: 502,
    ErrorCode.ASSEMBLY: 500,
    ErrorCode.UNKNOWN: 502,
}

MEDIA_TYPES: Dict[str, str] = {
    "mp3": "audio/mpeg",
    "opus": "audio/ogg",
    "aac": "audio/aac",
    "flac": "audio/flac",
    "wav": "audio/wav",
    "pcm": "audio/L16",
}


def new_request_id() -> str:
    return str(uuid.uuid4())[:12]


def status_for(error: TTSError) -> int:
    return STATUS_MAP.get(error.code, 500)


def retry_after_header(error: TTSError) -> Optional[str]:
    if isinstance(error, RateLimitError):
        return str(max(1, int(math.ceil(error.retry_after_s))))
    return None


def _error_response(error: TTSError, request_id: str) -> JSONResponse:
    headers = {"X-Request-Id": request_id}
    retry_after = retry_after_header(error)
    if retry_after:
        headers["Retry-After"] = retry_after
    return JSONResponse(status_code=status_for(error), content=error.to_dict(), headers=headers)


def _internal_error(request_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={
            "ok": False,
            "error": "INTERNAL_ERROR",
            "message": "Internal server error",
            "request_id": request_id,
        },
    )


def audio_response(result: SpeechResult, response_format: str) -> Response:
    """
    Read the artifact into a response and delete the file.

    The HTTP caller receives the bytes, so the artifact is not kept on disk.
    """
    path = Path(result.artifact.path)
    content = path.read_bytes()
    path.unlink(missing_ok=True)
    headers = {
        "X-Request-Id": result.request_id,
        "X-Chunks": str(result.artifact.chunk_count),
        "X-Duration-Estimate": str(result.artifact.total_duration_estimate_s),
        "X-Characters": str(result.characters),
    }
    return Response(
        content=content,
        media_type=MEDIA_TYPES.get(response_format, "application/octet-stream"),
        headers=headers,
    )


@router.post("/v1/speech", response_class=Response)
def speech_v1(
    req: SpeechBody,
    service: SpeechService = Depends(get_speech_service),
):
    """
    Generate one audio file for the text.

    Returns:
        Response: Audio bytes with headers:
            - X-Request-Id: Request identifier for tracing
            - X-Chunks: Number of upstream requests used
            - X-Duration-Estimate: Estimated playback seconds
    """
    rid = new_request_id()
    set_request_id(rid)

    try:
        result = service.synthesize(
            SpeechRequest(text=req.text, voice_id=req.voice, model=req.model),
            request_id=rid,
        )
        return audio_response(result, service.config.api.response_format)

    except TTSError as e:
        return _error_response(e, rid)

    except Exception as e:
        fail(_LOG, "unhandled_error", error=str(e), error_type=type(e).__name__)
        return _internal_error(rid)


@router.get("/v1/voices", response_model=VoicesResponse)
def list_voices(service: SpeechService = Depends(get_speech_service)):
    return VoicesResponse(
        voices=[VoiceInfo(**v) for v in service.list_voices()],
        models=service.list_models(),
    )


@router.get("/v1/usage")
def usage(service: SpeechService = Depends(get_speech_service)):
    """Quota snapshot: tier, limit, used, remaining and reset dates."""
    return service.get_user_info().to_dict()


@router.get("/v1/usage/stats")
def usage_stats(
    days: int = Query(30, ge=1, le=3650),
    service: SpeechService = Depends(get_speech_service),
):
    return service.get_usage_stats(days).to_dict()


@router.get("/v1/usage/history")
def usage_history(
    limit: int = Query(50, ge=1, le=1000),
    days: Optional[int] = Query(None, ge=1, le=3650),
    service: SpeechService = Depends(get_speech_service),
):
    events = service.get_usage_history(limit=limit, days=days)
    return {"events": [e.to_dict() for e in events]}


@router.post("/v1/characters/count", response_model=CharacterCountResponse)
def characters_count(
    req: CharacterCountBody,
    service: SpeechService = Depends(get_speech_service),
):
    """Characters, chunk count and cost for a text; no upstream call."""
    model = req.model or service.config.api.default_model
    characters = service.count_characters(req.text)
    chunks = len(service.chunk(req.text).chunks) if req.text.strip() else 0
    return CharacterCountResponse(
        characters=characters,
        chunks=chunks,
        max_chars=service.config.chunking.max_chars,
        estimated_cost_usd=service.estimate_cost(characters, model),
    )


@router.get("/health")
def health(service: SpeechService = Depends(get_speech_service)):
    """
    Health check endpoint.

    Reports API key presence (never the key), ffmpeg availability, temp
    storage usage and the account quota.
    """
    return service.get_health_info()


@router.get("/metrics")
def prometheus_metrics():
    """Prometheus metrics in text exposition format."""
    content, content_type = metrics.get_metrics_response()
    return Response(content=content, media_type=content_type)

"""
OpenAI-Compatible Speech Endpoint.

``POST /v1/audio/speech`` accepts OpenAI's request body, so clients built
for OpenAI's TTS API can point at tts-player and get chunked generation of
inputs longer than the upstream 4096-character ceiling.

Compatibility Notes:
    - ``input`` has no length cap; it is chunked server-side
    - ``response_format`` must match the configured upstream format
    - ``speed`` is accepted and ignored (a warning is logged if != 1.0)

Error Responses:
    Errors use OpenAI's nested format:
    {
        "error": {
            "message": "Rate limit reached. Try again in 60 seconds.",
            "type": "rate_limit_error",
            "code": "rate_limit"
        }
    }

Example Usage:
    from openai import OpenAI
    client = OpenAI(base_url="http://localhost:8000/v1", api_key="unused")
    response = client.audio.speech.create(model="tts-1", voice="alloy", input=long_text)
    response.stream_to_file("speech.mp3")
"""
from __future__ import annotations

from enum import Enum

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from tts_player.api.dependencies import get_speech_service
from tts_player.api.routes import audio_response, new_request_id, retry_after_header, status_for
from tts_player.core.errors import ErrorCode, TTSError, ValidationError
from tts_player.core.logging import debug, fail, get_logger, info, set_request_id, warn
from tts_player.services.speech_service import SpeechRequest, SpeechService

router = APIRouter()

_LOG = get_logger("tts-player.openai")


class ResponseFormat(str, Enum):
    MP3 = "mp3"
    OPUS = "opus"
    AAC = "aac"
    FLAC = "flac"
    WAV = "wav"
    PCM = "pcm"


class OpenAISpeechRequest(BaseModel):
    """
    OpenAI-compatible speech request.

    Attributes:
        model: tts-1 or tts-1-hd.
        input: Text to speak.
        voice: alloy, echo, fable, onyx, nova or shimmer.
        response_format: Audio container; must match the configured format.
        speed: Accepted for compatibility, not applied.
    """
    model: str = Field(default="tts-1", description="Model to use")
    input: str = Field(..., min_length=1, description="The text to generate audio for")
    voice: str = Field(default="alloy", description="The voice to use")
    response_format: ResponseFormat = Field(default=ResponseFormat.MP3, description="Audio format")
    speed: float = Field(default=1.0, ge=0.25, le=4.0, description="Speaking speed (ignored)")


ERROR_TYPE_MAP = {
    ErrorCode.VALIDATION: "invalid_request_error",
    ErrorCode.AUTH: "authentication_error",
    ErrorCode.RATE_LIMIT: "rate_limit_error",
    ErrorCode.NETWORK: "api_connection_error",
    ErrorCode.ASSEMBLY: "server_error",
    ErrorCode.UNKNOWN: "api_error",
}


def _openai_error_response(error: TTSError) -> JSONResponse:
    headers = {}
    retry_after = retry_after_header(error)
    if retry_after:
        headers["Retry-After"] = retry_after
    return JSONResponse(
        status_code=status_for(error),
        content={
            "error": {
                "message": error.user_message,
                "type": ERROR_TYPE_MAP.get(error.code, "api_error"),
                "code": error.code.lower(),
            }
        },
        headers=headers,
    )


@router.post("/v1/audio/speech", response_class=Response)
def openai_speech(
    req: OpenAISpeechRequest,
    service: SpeechService = Depends(get_speech_service),
):
    """OpenAI-compatible text-to-speech endpoint."""
    rid = new_request_id()
    set_request_id(rid)

    try:
        info(_LOG, "openai_request", chars=len(req.input), voice=req.voice, model=req.model,
             format=req.response_format.value)
        debug(_LOG, "openai_request_full", text=req.input, speed=req.speed)

        configured_format = service.config.api.response_format
        if req.response_format.value != configured_format:
            raise ValidationError(
                f"response_format '{req.response_format.value}' is not available; "
                f"this server returns '{configured_format}'",
                "FORMAT_UNSUPPORTED",
            )
        if req.speed != 1.0:
            warn(_LOG, "speed_unsupported", speed=req.speed)

        result = service.synthesize(
            SpeechRequest(text=req.input, voice_id=req.voice, model=req.model),
            request_id=rid,
        )
        return audio_response(result, configured_format)

    except TTSError as e:
        return _openai_error_response(e)

    except Exception as e:
        fail(_LOG, "unhandled_error", error=str(e), error_type=type(e).__name__)
        return JSONResponse(
            status_code=500,
            content={"error": {"message": "Internal server error", "type": "server_error", "code": "internal_error"}},
        )

"""
API Request/Response Schemas.

Pydantic models for the native endpoints. Text length is not capped here:
long text is the point of the service and is chunked server-side.

Example Request (POST /v1/speech):
    {
        "text": "A long article ...",
        "voice": "nova",
        "model": "tts-1-hd"
    }
"""
from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


class SpeechBody(BaseModel):
    """
    Speech generation request.

    Attributes:
        text: Text to speak (any length; chunked server-side).
        voice: Voice id. If None, uses the configured default.
        model: Model id. If None, uses the configured default.
    """
    text: str = Field(
        ...,
        min_length=1,
        description="Text to speak",
    )
    voice: str | None = Field(
        default=None,
        description="Voice id (alloy, echo, fable, onyx, nova, shimmer)",
    )
    model: str | None = Field(
        default=None,
        description="Model id (tts-1, tts-1-hd)",
    )


class CharacterCountBody(BaseModel):
    text: str = Field(..., description="Text to measure")
    model: str | None = Field(default=None, description="Model used for the cost estimate")


class CharacterCountResponse(BaseModel):
    """Billing preview for a text, computed without any upstream call."""
    characters: int = Field(..., description="Characters billed")
    chunks: int = Field(..., description="Upstream requests the text needs")
    max_chars: int = Field(..., description="Per-request character ceiling")
    estimated_cost_usd: float = Field(..., description="Estimated cost in USD")


class VoiceInfo(BaseModel):
    id: str
    name: str
    default: bool = False


class VoicesResponse(BaseModel):
    voices: List[VoiceInfo]
    models: List[str]

"""
Input Validation for the Speech Service.

Requests are validated before chunking so invalid input never costs an
upstream call or quota.

Validation Rules:
    - Text: Required, not whitespace-only, optional maximum length
    - Voice: One of the supported voice ids
    - Model: One of the supported model ids

Error reasons follow the pattern ``{FIELD}_REQUIRED``, ``{FIELD}_TOO_LONG``
and ``{FIELD}_UNSUPPORTED`` and are carried in ``ValidationError.reason``.

Usage:
    text = validate_text(request.text)
    voice = validate_voice(request.voice or settings.default_voice)
"""
from __future__ import annotations

from typing import Optional, Sequence

from tts_player.core.config import Defaults
from tts_player.core.errors import ValidationError
from tts_player.core.logging import get_logger, verbose

_LOG = get_logger("tts-player.validators")


def validate_text(text: Optional[str]) -> str:
    """
    Validate text input.

    The text is returned unchanged (not stripped) so chunk offsets refer to
    what the caller sent. There is no length cap; long text is chunked.

    Raises:
        ValidationError: Missing or whitespace-only.
    """
    if not text or not text.strip():
        raise ValidationError("Text is required", "TEXT_REQUIRED")
    return text


def validate_voice(voice_id: Optional[str], supported: Sequence[str] = Defaults.SUPPORTED_VOICES) -> str:
    """
    Validate a voice id.

    Raises:
        ValidationError: Missing or not in ``supported``.
    """
    if not voice_id or not voice_id.strip():
        raise ValidationError("Voice is required", "VOICE_REQUIRED")

    voice_id = voice_id.strip()
    if voice_id not in supported:
        verbose(_LOG, "voice_rejected", voice=voice_id)
        raise ValidationError(
            f"Unsupported voice '{voice_id}'. Choose one of: {', '.join(supported)}",
            "VOICE_UNSUPPORTED",
            {"supported": list(supported)},
        )
    return voice_id


def validate_model(model: Optional[str], supported: Sequence[str] = Defaults.SUPPORTED_MODELS) -> str:
    """
    Validate a model id.

    Raises:
        ValidationError: Missing or not in ``supported``.
    """
    if not model or not model.strip():
        raise ValidationError("Model is required", "MODEL_REQUIRED")

    model = model.strip()
    if model not in supported:
        verbose(_LOG, "model_rejected", model=model)
        raise ValidationError(
            f"Unsupported model '{model}'. Choose one of: {', '.join(supported)}",
            "MODEL_UNSUPPORTED",
            {"supported": list(supported)},
        )
    return model

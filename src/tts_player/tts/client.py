"""
Upstream TTS API Client.

One authenticated ``POST /v1/audio/speech`` per chunk. The client does not
retry: transport errors propagate unchanged and HTTP failures are raised as
UpstreamHTTPError so the classifier can map them onto an error kind.

Usage:
    with TTSClient(base_url="https://api.openai.com", api_key=key) as client:
        audio = client.synthesize("Hello there.", voice_id="alloy", model="tts-1")

Tests pass an ``httpx.MockTransport`` as ``transport``.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from tts_player.core.config import Defaults
from tts_player.core.logging import debug, get_logger

_LOG = get_logger("tts-player.client")

SPEECH_PATH = "/v1/audio/speech"


class UpstreamHTTPError(Exception):
    """
    Non-2xx (or empty 2xx) response from the upstream API.

    str() is ``"HTTP <status>: <detail>"``.
    """

    def __init__(self, status_code: int, detail: str, retry_after: Optional[float] = None):
        self.status_code = status_code
        self.detail = detail
        self.retry_after = retry_after
        super().__init__(f"HTTP {status_code}: {detail}")


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        # HTTP-date form is not used by the upstream API
        return None


def _error_detail(response: httpx.Response) -> str:
    try:
        body: Any = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase

    if isinstance(body, dict):
        if body.get("detail"):
            return str(body["detail"])
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str) and err:
            return err
    return response.text.strip() or response.reason_phrase


class TTSClient:
    """
    Synchronous client for the upstream speech endpoint.

    Thread-safe: one instance is shared by all chunk workers of a request.
    """

    def __init__(
        self,
        base_url: str = Defaults.API_BASE_URL,
        api_key: str = "",
        timeout_s: float = Defaults.API_TIMEOUT_S,
        response_format: str = Defaults.API_RESPONSE_FORMAT,
        default_model: str = Defaults.API_DEFAULT_MODEL,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._api_key = api_key
        self.response_format = response_format
        self.default_model = default_model
        self._http = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_s),
            transport=transport,
        )

    def synthesize(self, text: str, voice_id: str, model: Optional[str] = None) -> bytes:
        """
        Generate audio for one chunk.

        Returns:
            Encoded audio bytes (never empty).

        Raises:
            UpstreamHTTPError: Missing API key (401), non-2xx status, or an
                empty 2xx body.
            httpx.TransportError: Connection failures and timeouts.
        """
        if not self._api_key:
            raise UpstreamHTTPError(401, "missing API key")

        payload: Dict[str, Any] = {
            "model": model or self.default_model,
            "input": text,
            "voice": voice_id,
            "response_format": self.response_format,
        }
        response = self._http.post(
            SPEECH_PATH,
            json=payload,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )

        if not response.is_success:
            raise UpstreamHTTPError(
                response.status_code,
                _error_detail(response),
                retry_after=_parse_retry_after(response.headers.get("retry-after")),
            )

        audio = response.content
        if not audio:
            raise UpstreamHTTPError(response.status_code, "empty audio payload")

        debug(_LOG, "upstream_ok", status=response.status_code, bytes=len(audio), chars=len(text))
        return audio

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "TTSClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

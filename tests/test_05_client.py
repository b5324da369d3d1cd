"""Tests for the upstream speech client (httpx.MockTransport, no network)."""
from __future__ import annotations

import json

import httpx
import pytest

from tts_player.tts.client import SPEECH_PATH, TTSClient, UpstreamHTTPError


def _client(handler, api_key="sk-test", **kwargs):
    return TTSClient(
        base_url="https://api.example.test",
        api_key=api_key,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestSynthesize:
    """Successful calls."""

    def test_request_shape(self):
        """One authenticated POST with model, input, voice and format."""
        captured = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, content=b"ID3fake-mp3")

        with _client(handler, default_model="tts-1") as client:
            audio = client.synthesize("Hello there.", voice_id="nova")

        assert audio == b"ID3fake-mp3"
        assert len(captured) == 1
        request = captured[0]
        assert request.method == "POST"
        assert request.url.path == SPEECH_PATH
        assert request.headers["authorization"] == "Bearer sk-test"
        assert json.loads(request.content) == {
            "model": "tts-1",
            "input": "Hello there.",
            "voice": "nova",
            "response_format": "mp3",
        }

    def test_explicit_model_wins(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, content=b"x")

        with _client(handler) as client:
            client.synthesize("Hi.", voice_id="alloy", model="tts-1-hd")
        assert bodies[0]["model"] == "tts-1-hd"


class TestFailures:
    """Non-2xx, empty bodies, missing key and transport errors."""

    def test_missing_api_key_fails_before_network(self):
        called = []

        def handler(request):
            called.append(request)
            return httpx.Response(200, content=b"x")

        with _client(handler, api_key="") as client:
            with pytest.raises(UpstreamHTTPError) as exc_info:
                client.synthesize("Hi.", voice_id="alloy")

        assert exc_info.value.status_code == 401
        assert called == []

    def test_429_with_retry_after(self):
        def handler(request):
            return httpx.Response(
                429,
                headers={"Retry-After": "12"},
                json={"error": {"message": "Rate limit reached for requests"}},
            )

        with _client(handler) as client:
            with pytest.raises(UpstreamHTTPError) as exc_info:
                client.synthesize("Hi.", voice_id="alloy")

        err = exc_info.value
        assert err.status_code == 429
        assert err.retry_after == 12.0
        assert err.detail == "Rate limit reached for requests"
        assert str(err) == "HTTP 429: Rate limit reached for requests"

    def test_401_detail_from_body(self):
        def handler(request):
            return httpx.Response(401, json={"detail": "Incorrect API key provided"})

        with _client(handler) as client:
            with pytest.raises(UpstreamHTTPError) as exc_info:
                client.synthesize("Hi.", voice_id="alloy")
        assert exc_info.value.status_code == 401
        assert exc_info.value.retry_after is None
        assert "Incorrect API key" in str(exc_info.value)

    def test_plain_text_error_body(self):
        def handler(request):
            return httpx.Response(502, text="bad gateway")

        with _client(handler) as client:
            with pytest.raises(UpstreamHTTPError) as exc_info:
                client.synthesize("Hi.", voice_id="alloy")
        assert exc_info.value.detail == "bad gateway"

    def test_empty_success_body_is_an_error(self):
        def handler(request):
            return httpx.Response(200, content=b"")

        with _client(handler) as client:
            with pytest.raises(UpstreamHTTPError) as exc_info:
                client.synthesize("Hi.", voice_id="alloy")
        assert exc_info.value.status_code == 200
        assert exc_info.value.detail == "empty audio payload"

    def test_transport_error_propagates(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with _client(handler) as client:
            with pytest.raises(httpx.ConnectError):
                client.synthesize("Hi.", voice_id="alloy")

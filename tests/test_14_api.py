"""Tests for the native HTTP API (TestClient with an injected service)."""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import ConcatAssembler, FakeClock, ScriptedClient, long_text
from tts_player.api.dependencies import get_speech_service
from tts_player.core.errors import AUTH_MESSAGE
from tts_player.core.metrics import PlayerMetrics
from tts_player.main import create_app
from tts_player.services.speech_service import SpeechService
from tts_player.tts.client import UpstreamHTTPError


@pytest.fixture
def make_api(make_settings):
    """TestClient whose SpeechService uses fakes for the upstream API and ffmpeg."""
    opened = []

    def factory(client=None, clock=None, **sections):
        kwargs = {"sleep": clock.sleep, "clock": clock} if clock is not None else {}
        service = SpeechService(
            make_settings(**sections),
            client=client or ScriptedClient(),
            assembler=ConcatAssembler(),
            metrics=PlayerMetrics(),
            **kwargs,
        )
        app = create_app()
        app.dependency_overrides[get_speech_service] = lambda: service
        http = TestClient(app)
        opened.append((http, service))
        return http, service

    yield factory
    for http, service in opened:
        http.close()
        service.close()


class TestSpeechEndpoint:
    """POST /v1/speech"""

    def test_returns_audio(self, make_api):
        http, service = make_api()
        r = http.post("/v1/speech", json={"text": long_text(200), "voice": "nova"})

        assert r.status_code == 200
        assert r.headers["content-type"] == "audio/mpeg"
        assert r.headers["X-Chunks"] == "3"
        assert r.headers["X-Characters"] == "9000"
        assert r.headers["X-Request-Id"]
        assert r.content.startswith(b"audio:")
        # The artifact was handed over and removed from disk
        assert list(service.store.artifacts_dir.iterdir()) == []

    def test_unsupported_voice_is_400(self, make_api):
        http, _ = make_api()
        r = http.post("/v1/speech", json={"text": "Hi.", "voice": "darth"})
        assert r.status_code == 400
        body = r.json()
        assert body["ok"] is False
        assert body["error"] == "VALIDATION"
        assert body["details"]["reason"] == "VOICE_UNSUPPORTED"

    def test_whitespace_text_is_400(self, make_api):
        http, _ = make_api()
        r = http.post("/v1/speech", json={"text": "   "})
        assert r.status_code == 400
        assert r.json()["details"]["reason"] == "TEXT_REQUIRED"

    def test_empty_text_rejected_by_schema(self, make_api):
        http, _ = make_api()
        assert http.post("/v1/speech", json={"text": ""}).status_code == 422

    def test_auth_failure_is_401(self, make_api):
        client = ScriptedClient({"Hello there.": [UpstreamHTTPError(401, "Incorrect API key provided")]})
        http, _ = make_api(client=client)
        r = http.post("/v1/speech", json={"text": "Hello there."})
        assert r.status_code == 401
        assert r.json()["error"] == "AUTH"
        assert r.json()["message"] == AUTH_MESSAGE

    def test_rate_limit_is_429_with_retry_after(self, make_api):
        clock = FakeClock()
        client = ScriptedClient(
            {"Hello there.": [UpstreamHTTPError(429, "Rate limit reached", retry_after=60)]},
            clock=clock,
        )
        http, _ = make_api(client=client, clock=clock, generation={"rate_limit_budget_s": 0})
        r = http.post("/v1/speech", json={"text": "Hello there."})
        assert r.status_code == 429
        assert r.headers["Retry-After"] == "60"
        assert r.json()["message"] == "Rate limit reached. Try again in 60 seconds."

    def test_network_failure_is_502(self, make_api):
        client = ScriptedClient({"Hello there.": [UpstreamHTTPError(503, "overloaded")] * 10})
        clock = FakeClock()
        http, _ = make_api(client=client, clock=clock, generation={"max_retries": 1})
        r = http.post("/v1/speech", json={"text": "Hello there."})
        assert r.status_code == 502
        assert r.json()["error"] == "NETWORK"


class TestInfoEndpoints:

    def test_voices(self, make_api):
        http, _ = make_api()
        body = http.get("/v1/voices").json()
        assert len(body["voices"]) == 6
        assert body["models"] == ["tts-1", "tts-1-hd"]
        assert [v["id"] for v in body["voices"] if v["default"]] == ["alloy"]

    def test_usage(self, make_api):
        http, _ = make_api(usage={"tier": "free"})
        http.post("/v1/speech", json={"text": "Hello there."})
        body = http.get("/v1/usage").json()
        assert body["tier"] == "free"
        assert body["characters_used"] == len("Hello there.")
        assert body["characters_remaining"] == 10_000 - len("Hello there.")

    def test_usage_stats_and_history(self, make_api):
        http, _ = make_api()
        http.post("/v1/speech", json={"text": "Hello there.", "voice": "onyx"})

        stats = http.get("/v1/usage/stats", params={"days": 7}).json()
        assert stats["window_days"] == 7
        assert stats["total_requests"] == 1
        assert stats["most_used_voice"] == "onyx"

        history = http.get("/v1/usage/history", params={"limit": 5}).json()
        assert len(history["events"]) == 1
        assert history["events"][0]["voice_id"] == "onyx"

    def test_usage_stats_rejects_bad_days(self, make_api):
        http, _ = make_api()
        assert http.get("/v1/usage/stats", params={"days": 0}).status_code == 422

    def test_character_count(self, make_api):
        http, _ = make_api()
        r = http.post("/v1/characters/count", json={"text": long_text(200), "model": "tts-1"})
        body = r.json()
        assert body["characters"] == 9000
        assert body["chunks"] == 3
        assert body["max_chars"] == 4000
        assert body["estimated_cost_usd"] == pytest.approx(0.135)

    def test_character_count_blank(self, make_api):
        http, _ = make_api()
        body = http.post("/v1/characters/count", json={"text": "   "}).json()
        assert body["chunks"] == 0

    def test_health(self, make_api):
        http, _ = make_api()
        body = http.get("/health").json()
        assert body["ok"] is True
        assert body["api_key_configured"] is True
        assert "storage" in body

    def test_metrics(self):
        http = TestClient(create_app())
        r = http.get("/metrics")
        assert r.status_code == 200
        assert "tts_player_requests_total" in r.text

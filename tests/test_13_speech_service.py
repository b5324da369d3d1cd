"""
Tests for SpeechService (validation, generation, assembly, usage).

The upstream client and ffmpeg are replaced with fakes; storage and the
usage ledger are real and live in tmp_path.
"""
from __future__ import annotations

from pathlib import Path

import pytest

from conftest import ConcatAssembler, FakeClock, ScriptedClient, long_text
from tts_player.core.errors import (
    AUTH_MESSAGE,
    AssemblyError,
    AuthError,
    ErrorCode,
    RateLimitError,
    UnknownError,
    ValidationError,
)
from tts_player.core.metrics import PlayerMetrics
from tts_player.services.speech_service import SpeechRequest, SpeechService, get_service, reset_service
from tts_player.tts.chunker import chunk_text
from tts_player.tts.client import UpstreamHTTPError


@pytest.fixture
def build(make_settings):
    services = []

    def factory(client=None, assembler=None, clock=None, **sections):
        kwargs = {}
        if clock is not None:
            kwargs = {"sleep": clock.sleep, "clock": clock}
        service = SpeechService(
            make_settings(**sections),
            client=client or ScriptedClient(),
            assembler=assembler or ConcatAssembler(),
            metrics=PlayerMetrics(),
            **kwargs,
        )
        services.append(service)
        return service

    yield factory
    for service in services:
        service.close()


def _leftover_work(service):
    return list(service.store.work_root.iterdir())


class TestSynthesize:
    """End-to-end generation."""

    def test_long_text_one_artifact(self, build):
        text = long_text(200)
        client = ScriptedClient()
        assembler = ConcatAssembler()
        service = build(client=client, assembler=assembler)

        result = service.synthesize(SpeechRequest(text=text, voice_id="nova", model="tts-1"))

        chunks = [c.content for c in chunk_text(text, max_chars=4000).chunks]
        assert len(chunks) == 3
        assert sorted(client.texts()) == sorted(chunks)
        assert result.artifact.chunk_count == 3
        assert result.artifact.path.exists()
        assert result.artifact.path.parent == service.store.artifacts_dir
        assert result.artifact.path.read_bytes() == b"".join(f"audio:{c}".encode() for c in chunks)
        assert result.artifact.byte_size == result.artifact.path.stat().st_size
        assert result.characters == 9000
        assert result.voice_id == "nova"
        assert result.model == "tts-1"
        assert _leftover_work(service) == []

    def test_usage_recorded_on_success(self, build):
        service = build()
        service.synthesize(SpeechRequest(text=long_text(200)))
        assert service.get_user_info().characters_used == 9000
        history = service.get_usage_history()
        assert len(history) == 1
        assert history[0].succeeded
        assert history[0].text_preview.endswith("...")

    def test_defaults_applied(self, build):
        client = ScriptedClient()
        service = build(client=client, api={"default_voice": "echo", "default_model": "tts-1"})
        result = service.synthesize(SpeechRequest(text="Hello there."))
        assert result.voice_id == "echo"
        assert client.calls[0]["voice"] == "echo"
        assert client.calls[0]["model"] == "tts-1"

    def test_single_chunk(self, build):
        assembler = ConcatAssembler()
        service = build(assembler=assembler)
        result = service.synthesize(SpeechRequest(text="Hello there."))
        assert result.artifact.chunk_count == 1
        assert result.artifact.path.read_bytes() == b"audio:Hello there."

    def test_generate_speech_returns_path(self, build):
        service = build()
        path = service.generate_speech("Hello there.", "alloy")
        assert Path(path).exists()

    def test_rate_limit_wait_reported(self, build):
        clock = FakeClock()
        client = ScriptedClient(
            {"Hello there.": [UpstreamHTTPError(429, "Rate limit reached", retry_after=60)]},
            clock=clock,
        )
        service = build(client=client, clock=clock)
        result = service.synthesize(SpeechRequest(text="Hello there."))
        assert result.rate_limit_wait_s == pytest.approx(60)
        assert result.retries == 1


class TestValidation:
    """Invalid input never reaches the upstream API."""

    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    def test_blank_text(self, build, text):
        client = ScriptedClient()
        service = build(client=client)
        with pytest.raises(ValidationError) as exc_info:
            service.synthesize(SpeechRequest(text=text))
        assert exc_info.value.reason == "TEXT_REQUIRED"
        assert client.calls == []

    def test_unsupported_voice(self, build):
        service = build()
        with pytest.raises(ValidationError) as exc_info:
            service.synthesize(SpeechRequest(text="Hi.", voice_id="darth"))
        assert exc_info.value.reason == "VOICE_UNSUPPORTED"

    def test_unsupported_model(self, build):
        service = build()
        with pytest.raises(ValidationError) as exc_info:
            service.synthesize(SpeechRequest(text="Hi.", model="tts-9"))
        assert exc_info.value.reason == "MODEL_UNSUPPORTED"


class TestQuota:

    def test_enforced_quota_blocks_request(self, build):
        client = ScriptedClient()
        service = build(client=client, usage={"tier": "free", "character_limit": 10_000, "enforce_quota": True})
        service.synthesize(SpeechRequest(text="x" * 9800))
        client.calls.clear()

        with pytest.raises(ValidationError) as exc_info:
            service.synthesize(SpeechRequest(text="y" * 500))
        assert exc_info.value.reason == "QUOTA_EXCEEDED"
        assert exc_info.value.details["would_exceed"] is True
        assert client.calls == []

    def test_advisory_quota_allows_request(self, build):
        service = build(usage={"tier": "free", "character_limit": 100})
        result = service.synthesize(SpeechRequest(text="z" * 500))
        assert result.quota.would_exceed is True
        assert service.get_user_info().characters_used == 500


class TestFailures:
    """Failures surface as TTSErrors, leave no files and are logged as failed events."""

    def test_auth_failure(self, build):
        client = ScriptedClient({"Hello there.": [UpstreamHTTPError(401, "Incorrect API key provided")]})
        service = build(client=client)

        with pytest.raises(AuthError) as exc_info:
            service.synthesize(SpeechRequest(text="Hello there."))

        assert exc_info.value.user_message == AUTH_MESSAGE
        assert exc_info.value.details["failed_chunks"] == [0]
        assert service.get_user_info().characters_used == 0
        history = service.get_usage_history()
        assert len(history) == 1
        assert not history[0].succeeded
        assert history[0].error_message.startswith("AUTH")
        assert _leftover_work(service) == []

    def test_missing_api_key_with_real_client(self, make_settings):
        """No key configured: AUTH before any network call."""
        service = SpeechService(
            make_settings(api={"api_key": ""}),
            assembler=ConcatAssembler(),
            metrics=PlayerMetrics(),
        )
        try:
            with pytest.raises(AuthError):
                service.synthesize(SpeechRequest(text="Hello there."))
        finally:
            service.close()

    def test_rate_limit_budget_exhausted(self, build):
        clock = FakeClock()
        client = ScriptedClient(
            {"Hello there.": [UpstreamHTTPError(429, "Rate limit reached", retry_after=60)] * 3},
            clock=clock,
        )
        service = build(client=client, clock=clock, generation={"rate_limit_budget_s": 90})

        with pytest.raises(RateLimitError) as exc_info:
            service.synthesize(SpeechRequest(text="Hello there."))
        assert exc_info.value.user_message == "Rate limit reached. Try again in 60 seconds."

    def test_assembly_failure(self, build):
        service = build(assembler=ConcatAssembler(error=AssemblyError("ffmpeg not found: ffmpeg")))

        with pytest.raises(AssemblyError):
            service.synthesize(SpeechRequest(text=long_text(200)))
        assert _leftover_work(service) == []
        assert list(service.store.artifacts_dir.iterdir()) == []
        assert service.get_usage_history()[0].error_message.startswith(ErrorCode.ASSEMBLY)

    def test_unexpected_error_wrapped(self, build):
        service = build(assembler=ConcatAssembler(error=RuntimeError("disk on fire")))

        with pytest.raises(UnknownError) as exc_info:
            service.synthesize(SpeechRequest(text=long_text(200)))
        assert "disk on fire" in exc_info.value.message
        assert _leftover_work(service) == []


class TestInfo:

    def test_list_voices(self, build):
        service = build(api={"default_voice": "nova"})
        voices = service.list_voices()
        assert [v["id"] for v in voices] == ["alloy", "echo", "fable", "onyx", "nova", "shimmer"]
        assert [v["id"] for v in voices if v["default"]] == ["nova"]
        assert service.list_models() == ["tts-1", "tts-1-hd"]

    def test_health_info(self, build):
        info = build().get_health_info()
        assert info["ok"] is True
        assert info["api_key_configured"] is True
        assert info["ffmpeg_available"] is True
        assert "sk-test" not in str(info)
        assert info["usage"]["tier"] == "pay-per-use"

    def test_count_and_cost(self, build):
        service = build()
        assert service.count_characters("héllo") == 5
        assert service.estimate_cost(1000, "tts-1") == pytest.approx(0.015)

    def test_cleanup_usage_history(self, build):
        service = build()
        service.synthesize(SpeechRequest(text="Hello there."))
        assert service.cleanup_usage_history() == 0


class TestGlobalService:

    def test_singleton_and_reset(self, make_settings):
        reset_service()
        settings = make_settings()
        try:
            first = get_service(settings)
            assert get_service(settings) is first
        finally:
            reset_service()
        second = get_service(settings)
        try:
            assert second is not first
        finally:
            reset_service()

"""
SpeechService - Chunked Generation Pipeline.

Single entry point used by the HTTP API, the OpenAI-compatible endpoint and
the CLI. Turns text of any length into one audio artifact.

Architecture:
    Validate -> Chunk -> Quota check -> Generate chunks -> Assemble
             -> Keep artifact -> Record usage -> Cleanup

    Chunk files, the concat list and the merged output live in a per-request
    TempStore scope that is removed on every exit path. Only the final
    artifact is moved out and handed to the caller.

Error Handling:
    Every failure surfaces as a TTSError subclass (see core/errors.py).
    Failed generations are logged to the usage ledger as failed events and
    never count toward ``characters_used``.

Example:
    >>> from tts_player.core.config import Settings
    >>> service = SpeechService(Settings(raw={"api": {"api_key": "sk-..."}}))
    >>> path = service.generate_speech("Hello there. How are you?", "alloy")
"""
from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from tts_player.core.config import Defaults, PlayerConfig, Settings
from tts_player.core.errors import TTSError, UnknownError, ValidationError, error_from_info
from tts_player.core.logging import debug, fail, get_logger, info, set_request_id, success, verbose, warn
from tts_player.core.metrics import PlayerMetrics
from tts_player.core.metrics import metrics as default_metrics
from tts_player.services.validators import validate_model, validate_text, validate_voice
from tts_player.tts.assembler import AudioAssembler, estimate_duration
from tts_player.tts.chunker import ChunkingResult, chunk_text, count_characters
from tts_player.tts.client import TTSClient
from tts_player.tts.generator import ChunkGenerator, GenerationRequest, RequestState
from tts_player.tts.temp_store import TempStore
from tts_player.usage.models import QuotaCheck, UsageEvent, UsageRecord, UsageStats
from tts_player.usage.tracker import UsageTracker, estimate_cost, make_text_preview
from tts_player.utils.timeit import timeit

_LOG = get_logger("tts-player.service")


def new_request_id() -> str:
    return uuid.uuid4().hex[:12]


# =============================================================================
# Request/Response Dataclasses
# =============================================================================

@dataclass
class SpeechRequest:
    """
    Request for speech generation.

    Attributes:
        text: Text to speak (required, any length).
        voice_id: Voice id (optional, uses default).
        model: Model id (optional, uses default).
    """
    text: str
    voice_id: Optional[str] = None
    model: Optional[str] = None


@dataclass
class FinalArtifact:
    """The merged audio file handed to the caller; the caller owns it."""
    path: Path
    total_duration_estimate_s: float
    chunk_count: int
    byte_size: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "total_duration_estimate_s": self.total_duration_estimate_s,
            "chunk_count": self.chunk_count,
            "byte_size": self.byte_size,
        }


@dataclass
class SpeechResult:
    """
    Result of SpeechService.synthesize().

    Attributes:
        artifact: Final merged audio.
        request_id: Request ID for tracing.
        characters: Characters billed.
        voice_id: Voice used.
        model: Model used.
        total_seconds: End-to-end processing time.
        retries: Chunk retries (network and rate limit).
        rate_limit_wait_s: Seconds paused on upstream rate limits.
        quota: Quota check made before generation.
        timings: Per-stage timing breakdown.
    """
    artifact: FinalArtifact
    request_id: str
    characters: int
    voice_id: str
    model: str
    total_seconds: float
    retries: int = 0
    rate_limit_wait_s: float = 0.0
    quota: Optional[QuotaCheck] = None
    timings: Dict[str, float] = field(default_factory=dict)


# =============================================================================
# Main Service Class
# =============================================================================

class SpeechService:
    """
    Orchestrates chunking, generation, assembly, storage and usage.

    Collaborators can be injected (tests pass fakes); otherwise they are
    built from the validated PlayerConfig.

    Usage:
        service = SpeechService(load_settings())
        result = service.synthesize(SpeechRequest(text=long_text, voice_id="nova"))
        print(result.artifact.path, result.artifact.chunk_count)
    """

    def __init__(
        self,
        settings: Settings,
        client: Optional[TTSClient] = None,
        store: Optional[TempStore] = None,
        assembler: Optional[AudioAssembler] = None,
        tracker: Optional[UsageTracker] = None,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional[PlayerMetrics] = None,
    ):
        self._settings = settings
        self._config: PlayerConfig = settings.get_player_config()
        cfg = self._config
        self._metrics = metrics or default_metrics

        # ─────────────────────────────────────────────────────────────────────
        # Upstream client
        # ─────────────────────────────────────────────────────────────────────
        self._client = client or TTSClient(
            base_url=cfg.api.base_url,
            api_key=cfg.api.api_key,
            timeout_s=cfg.api.timeout_s,
            response_format=cfg.api.response_format,
            default_model=cfg.api.default_model,
        )

        # ─────────────────────────────────────────────────────────────────────
        # Temp storage (runs the startup sweep)
        # ─────────────────────────────────────────────────────────────────────
        self._store = store or TempStore(
            base_dir=cfg.storage.base_dir,
            stale_after_seconds=cfg.storage.stale_after_seconds,
            artifact_ttl_seconds=cfg.storage.artifact_ttl_seconds,
            sweep_interval_seconds=cfg.storage.sweep_interval_seconds,
            audio_suffix=f".{cfg.api.response_format}",
        )

        self._assembler = assembler or AudioAssembler(
            ffmpeg_path=cfg.assembly.ffmpeg_path,
            timeout_s=cfg.assembly.timeout_s,
            loglevel=cfg.assembly.loglevel,
        )

        # ─────────────────────────────────────────────────────────────────────
        # Usage ledger
        # ─────────────────────────────────────────────────────────────────────
        self._tracker = tracker or UsageTracker(
            db_path=cfg.usage.db_path,
            account_id=cfg.usage.account_id,
            tier=cfg.usage.tier,
            character_limit=cfg.usage.character_limit,
            billing_cycle_days=cfg.usage.billing_cycle_days,
        )

        self._generator = ChunkGenerator(
            self._client,
            cfg.generation,
            sleep=sleep,
            clock=clock,
            metrics=self._metrics,
        )

        self._text_preview_chars = cfg.logging.text_preview_chars

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def config(self) -> PlayerConfig:
        return self._config

    @property
    def store(self) -> TempStore:
        return self._store

    @property
    def tracker(self) -> UsageTracker:
        return self._tracker

    # =========================================================================
    # Helpers
    # =========================================================================

    def chunk(self, text: str) -> ChunkingResult:
        """Validate and chunk text without calling the upstream API."""
        text = validate_text(text)
        return chunk_text(text, max_chars=self._config.chunking.max_chars)

    def _record_failure(self, text: str, characters: int, voice_id: str, model: str, err: TTSError) -> None:
        self._tracker.record_usage(UsageEvent(
            characters=characters,
            voice_id=voice_id,
            model=model,
            succeeded=False,
            error_message=f"{err.code}: {err.message}",
            text_preview=make_text_preview(text),
        ))

    # =========================================================================
    # Public API: synthesize()
    # =========================================================================

    def synthesize(self, request: SpeechRequest, request_id: Optional[str] = None) -> SpeechResult:
        """
        Generate one audio artifact for the request.

        Pipeline:
            1. Validate voice, model and text
            2. Chunk text (zero chunks is a validation error)
            3. Check the quota (advisory unless enforce_quota)
            4. Generate every chunk into the request scope
            5. Assemble chunks in index order and keep the result
            6. Record usage and clean up

        Returns:
            SpeechResult with the FinalArtifact.

        Raises:
            ValidationError: Invalid input or (when enforced) quota exceeded.
            AuthError, RateLimitError, NetworkError, UnknownError: Generation failed.
            AssemblyError: ffmpeg missing or failed.
        """
        cfg = self._config
        request_id = request_id or new_request_id()
        set_request_id(request_id)
        timings: Dict[str, float] = {}

        voice_id = validate_voice(request.voice_id or cfg.api.default_voice)
        model = validate_model(request.model or cfg.api.default_model)
        text = validate_text(request.text)

        characters = count_characters(text)
        preview = text[:self._text_preview_chars] if self._text_preview_chars > 0 else ""
        info(_LOG, "request", chars=characters, voice=voice_id, model=model, text_preview=preview)
        debug(_LOG, "request_full", text=text)

        # ─────────────────────────────────────────────────────────────────────
        # Stage 1: Chunk text
        # ─────────────────────────────────────────────────────────────────────
        chunking = chunk_text(text, max_chars=cfg.chunking.max_chars)
        timings["chunk"] = chunking.timings_s.get("chunk", -1.0)
        if not chunking.chunks:
            raise ValidationError("Text is required", "TEXT_REQUIRED")

        # ─────────────────────────────────────────────────────────────────────
        # Stage 2: Quota check
        # ─────────────────────────────────────────────────────────────────────
        quota = self._tracker.check_quota(characters)
        if quota.would_exceed:
            if cfg.usage.enforce_quota:
                fail(_LOG, "quota_exceeded", requested=characters, used=quota.used, limit=quota.limit)
                raise ValidationError(
                    f"Character quota exceeded ({quota.used} + {characters} > {quota.limit})",
                    "QUOTA_EXCEEDED",
                    quota.to_dict(),
                )
            warn(_LOG, "quota_would_exceed", requested=characters, used=quota.used, limit=quota.limit)

        gen_request = GenerationRequest(
            request_id=request_id,
            voice_id=voice_id,
            model=model,
            chunks=tuple(chunking.chunks),
        )

        self._metrics.inc_active()
        t0 = time.perf_counter()
        try:
            with self._store.scope(request_id) as scope:
                # ─────────────────────────────────────────────────────────────
                # Stage 3: Generate chunks
                # ─────────────────────────────────────────────────────────────
                with timeit("generate") as t_gen:
                    outcome = self._generator.run(gen_request, scope)
                timings["generate"] = t_gen.seconds

                if outcome.state is not RequestState.COMPLETED:
                    failed = [r.chunk_index for r in outcome.results if not r.succeeded and not r.cancelled]
                    raise error_from_info(outcome.error, details={
                        "request_id": request_id,
                        "chunks": len(outcome.results),
                        "failed_chunks": failed,
                    })

                # ─────────────────────────────────────────────────────────────
                # Stage 4: Assemble and keep the artifact
                # ─────────────────────────────────────────────────────────────
                with timeit("assemble") as t_asm:
                    merged = self._assembler.assemble(
                        outcome.ordered_paths,
                        scope.work_path(f"merged{self._store.audio_suffix}"),
                    )
                    final_path = scope.keep(merged)
                timings["assemble"] = t_asm.seconds
                verbose(_LOG, "stage", event="assemble", seconds=round(timings["assemble"], 4))

        except TTSError as e:
            fail(_LOG, "request_failed", kind=e.code, error=e.message)
            self._metrics.record_request("error", time.perf_counter() - t0, kind=e.code)
            self._record_failure(text, characters, voice_id, model, e)
            raise
        except Exception as e:
            fail(_LOG, "request_failed", error=str(e), error_type=type(e).__name__)
            wrapped = UnknownError(f"Unexpected error: {e}", {"error_type": type(e).__name__})
            self._metrics.record_request("error", time.perf_counter() - t0, kind=wrapped.code)
            self._record_failure(text, characters, voice_id, model, wrapped)
            raise wrapped from e
        finally:
            self._metrics.dec_active()

        # ─────────────────────────────────────────────────────────────────────
        # Stage 5: Record usage, schedule cleanup
        # ─────────────────────────────────────────────────────────────────────
        byte_size = final_path.stat().st_size
        artifact = FinalArtifact(
            path=final_path,
            total_duration_estimate_s=estimate_duration(byte_size, cfg.assembly.bitrate_kbps),
            chunk_count=len(outcome.results),
            byte_size=byte_size,
        )

        self._tracker.record_usage(UsageEvent(
            characters=characters,
            voice_id=voice_id,
            model=model,
            succeeded=True,
            text_preview=make_text_preview(text),
        ))
        self._store.maybe_sweep()

        total_s = time.perf_counter() - t0
        self._metrics.record_request("success", total_s, characters=characters)
        success(_LOG, "done", chunks=artifact.chunk_count, bytes=byte_size,
                duration_s=artifact.total_duration_estimate_s, seconds=round(total_s, 3))

        return SpeechResult(
            artifact=artifact,
            request_id=request_id,
            characters=characters,
            voice_id=voice_id,
            model=model,
            total_seconds=total_s,
            retries=outcome.retries,
            rate_limit_wait_s=outcome.rate_limit_wait_s,
            quota=quota,
            timings=timings,
        )

    def generate_speech(self, text: str, voice_id: Optional[str] = None, model: Optional[str] = None) -> str:
        """Generate speech and return the path of the final artifact."""
        result = self.synthesize(SpeechRequest(text=text, voice_id=voice_id, model=model))
        return str(result.artifact.path)

    # =========================================================================
    # Usage and informational API
    # =========================================================================

    def get_user_info(self) -> UsageRecord:
        return self._tracker.get_user_info()

    def get_usage_stats(self, window_days: int = 30) -> UsageStats:
        return self._tracker.get_stats(window_days)

    def get_usage_history(self, limit: int = 50, days: Optional[int] = None) -> List[UsageEvent]:
        return self._tracker.get_history(limit=limit, days=days)

    def cleanup_usage_history(self) -> int:
        return self._tracker.cleanup_old_events(self._config.usage.history_retention_days)

    @staticmethod
    def count_characters(text: str) -> int:
        return count_characters(text)

    @staticmethod
    def estimate_cost(characters: int, model: str = Defaults.API_DEFAULT_MODEL) -> float:
        return estimate_cost(characters, model)

    def list_voices(self) -> List[Dict[str, Any]]:
        default = self._config.api.default_voice
        return [
            {"id": voice, "name": voice.capitalize(), "default": voice == default}
            for voice in Defaults.SUPPORTED_VOICES
        ]

    def list_models(self) -> List[str]:
        return list(Defaults.SUPPORTED_MODELS)

    def get_health_info(self) -> Dict[str, Any]:
        """Service status for /health and the CLI."""
        cfg = self._config
        return {
            "ok": True,
            "api_key_configured": cfg.api.has_api_key,
            "base_url": cfg.api.base_url,
            "default_voice": cfg.api.default_voice,
            "default_model": cfg.api.default_model,
            "max_chars": cfg.chunking.max_chars,
            "ffmpeg_available": self._assembler.resolve_ffmpeg() is not None,
            "storage": self._store.get_storage_info(),
            "usage": self._tracker.get_user_info().to_dict(),
        }

    def close(self) -> None:
        self._client.close()
        self._tracker.close()


# =============================================================================
# Global Service Instance
# =============================================================================

_service: Optional[SpeechService] = None
_service_lock = threading.Lock()


def get_service(settings: Settings) -> SpeechService:
    """
    Get or create the global SpeechService instance.

    Thread-safe lazy singleton shared by the API routes.
    """
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                _service = SpeechService(settings)
    return _service


def reset_service() -> None:
    """Reset the global service instance (for testing)."""
    global _service
    with _service_lock:
        if _service is not None:
            _service.close()
        _service = None

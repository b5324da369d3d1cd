"""
Chunk Generation Orchestrator.

Runs one upstream call per chunk of a GenerationRequest on a bounded thread
pool and returns a GenerationOutcome with exactly one ChunkResult per chunk,
sorted by index whatever the completion order.

Request State Machine:
    PENDING -> IN_PROGRESS -> COMPLETED
                           -> PARTIALLY_FAILED -> FAILED
                           -> FAILED

    PARTIALLY_FAILED is visited when a chunk fails for good after other
    chunks already succeeded; the request still settles on FAILED because
    partial audio is never returned.

Failure Policy (per error kind, see classifier.py):
    NETWORK     Retried up to ``max_retries`` times with exponential backoff
                min(backoff_max_s, backoff_base_s * 2 ** (retry - 1)).
                Exhaustion fails the request.
    RATE_LIMIT  The whole DispatchGate pauses for Retry-After seconds and the
                same chunk is tried again. Pauses do not use up network
                retries; their total is bounded by ``rate_limit_budget_s``.
    AUTH        Fatal at once: the gate is cancelled, queued chunks never
    UNKNOWN     start, in-flight calls drain.

Usage:
    generator = ChunkGenerator(client, config.generation)
    with store.scope(request.request_id) as scope:
        outcome = generator.run(request, scope)
        if outcome.state is RequestState.COMPLETED:
            merged = assembler.assemble(outcome.ordered_paths, scope.work_path("merged.mp3"))
"""
from __future__ import annotations

import contextvars
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from tts_player.core.config import GenerationConfig
from tts_player.core.errors import ErrorCode, ErrorInfo
from tts_player.core.logging import fail, get_logger, info, verbose, warn
from tts_player.core.metrics import PlayerMetrics
from tts_player.core.metrics import metrics as default_metrics
from tts_player.tts.chunker import TextChunk
from tts_player.tts.classifier import classify_error, is_retryable
from tts_player.tts.client import TTSClient
from tts_player.tts.dispatch import DispatchCancelled, DispatchGate
from tts_player.tts.temp_store import RequestScope
from tts_player.utils.timeit import timeit

_LOG = get_logger("tts-player.generator")


class RequestState(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    PARTIALLY_FAILED = "PARTIALLY_FAILED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class GenerationRequest:
    """Immutable description of one generation run."""
    request_id: str
    voice_id: str
    model: str
    chunks: Tuple[TextChunk, ...]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total_chars(self) -> int:
        return sum(c.char_length for c in self.chunks)


@dataclass
class ChunkResult:
    """
    Outcome for one chunk.

    Attributes:
        chunk_index: Index of the TextChunk.
        artifact_path: Chunk audio file inside the request scope.
        byte_size: Size of the audio payload.
        succeeded: True if audio was written.
        error: Classified failure (the request's fatal error for cancelled chunks).
        attempts: Upstream calls made for this chunk.
        cancelled: True if the chunk was stopped by another chunk's failure.
    """
    chunk_index: int
    artifact_path: Optional[Path] = None
    byte_size: int = 0
    succeeded: bool = False
    error: Optional[ErrorInfo] = None
    attempts: int = 0
    cancelled: bool = False


@dataclass
class GenerationOutcome:
    request_id: str
    state: RequestState
    results: List[ChunkResult]
    error: Optional[ErrorInfo] = None
    history: List[RequestState] = field(default_factory=list)
    rate_limit_wait_s: float = 0.0
    retries: int = 0

    @property
    def ordered_paths(self) -> List[Path]:
        """Chunk files in index order (only meaningful when COMPLETED)."""
        return [r.artifact_path for r in self.results if r.succeeded and r.artifact_path is not None]

    @property
    def attempts(self) -> int:
        return sum(r.attempts for r in self.results)


class _RunState:
    """Mutable state shared by the workers of one run."""

    def __init__(self, budget_s: float):
        self._lock = threading.Lock()
        self.budget_s = budget_s
        self.fatal: Optional[ErrorInfo] = None
        self.rate_limit_wait_s = 0.0
        self.retries = 0

    def set_fatal(self, err: ErrorInfo) -> bool:
        """Record the request's fatal error; the first one wins."""
        with self._lock:
            if self.fatal is None:
                self.fatal = err
                return True
            return False

    def add_retry(self) -> None:
        with self._lock:
            self.retries += 1

    def reserve_pause(self, gate: DispatchGate, seconds: float) -> Optional[float]:
        """
        Pause the gate if the wait budget allows it.

        The budget is charged with the full requested wait even when an
        overlapping pause already covers part of it.

        Returns:
            Seconds actually added to the pause, or None if the budget
            would be exceeded.
        """
        with self._lock:
            if self.rate_limit_wait_s + seconds > self.budget_s:
                return None
            added = gate.pause(seconds)
            self.rate_limit_wait_s += seconds
            return added


class ChunkGenerator:
    """
    Generates audio for every chunk of a request.

    ``sleep`` and ``clock`` are handed to the DispatchGate so tests can run
    rate-limit pauses and backoff without waiting in real time.
    """

    def __init__(
        self,
        client: TTSClient,
        config: Optional[GenerationConfig] = None,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional[PlayerMetrics] = None,
    ):
        self._client = client
        self.config = config or GenerationConfig()
        self._sleep = sleep
        self._clock = clock
        self._metrics = metrics or default_metrics

    def backoff_delay(self, retry: int) -> float:
        """Delay before network retry number ``retry`` (1-based)."""
        cfg = self.config
        return min(cfg.backoff_max_s, cfg.backoff_base_s * 2 ** (retry - 1))

    def run(self, request: GenerationRequest, scope: RequestScope) -> GenerationOutcome:
        """
        Generate all chunks of ``request`` into ``scope``.

        Never raises for upstream failures; they are reported in the
        outcome's ``state`` and ``error``.

        Raises:
            ValueError: If the request has no chunks.
        """
        if not request.chunks:
            raise ValueError("generation request has no chunks")

        cfg = self.config
        history = [RequestState.PENDING]
        workers = max(1, min(cfg.max_concurrent, len(request.chunks)))
        gate = DispatchGate(
            max_concurrent=workers,
            min_interval_s=cfg.dispatch_interval_s,
            clock=self._clock,
            sleep=self._sleep,
        )
        run = _RunState(budget_s=cfg.rate_limit_budget_s)
        results: Dict[int, ChunkResult] = {}
        partial_seen = False

        info(_LOG, "generate_start", request=request.request_id, chunks=len(request.chunks),
             chars=request.total_chars, voice=request.voice_id, model=request.model, workers=workers)
        history.append(RequestState.IN_PROGRESS)

        with timeit("generate") as t:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tts-chunk") as pool:
                futures: Dict[Future, int] = {}
                try:
                    for chunk in request.chunks:
                        # Fresh context per task so request_id reaches the worker's logs
                        ctx = contextvars.copy_context()
                        fut = pool.submit(ctx.run, self._generate_chunk, chunk, request, scope, gate, run)
                        futures[fut] = chunk.index

                    for fut in as_completed(futures):
                        if fut.cancelled():
                            continue
                        result = fut.result()
                        results[result.chunk_index] = result

                        if run.fatal is not None and not partial_seen:
                            partial_seen = True
                            for pending in futures:
                                pending.cancel()
                            if any(r.succeeded for r in results.values()):
                                history.append(RequestState.PARTIALLY_FAILED)
                except BaseException:
                    gate.cancel("generation aborted")
                    for pending in futures:
                        pending.cancel()
                    raise

        fatal = run.fatal
        ordered: List[ChunkResult] = []
        for chunk in request.chunks:
            result = results.get(chunk.index)
            if result is None:
                result = ChunkResult(chunk_index=chunk.index, cancelled=True)
            if result.cancelled:
                result.error = fatal
                self._metrics.record_chunk("cancelled")
            ordered.append(result)

        if fatal is None and not all(r.succeeded for r in ordered):
            fatal = ErrorInfo(kind=ErrorCode.UNKNOWN, message="chunk generation did not complete")

        state = RequestState.FAILED if fatal is not None else RequestState.COMPLETED
        history.append(state)

        if state is RequestState.COMPLETED:
            verbose(_LOG, "stage", event="generate", chunks=len(ordered), retries=run.retries,
                    rate_limit_wait_s=round(run.rate_limit_wait_s, 2), seconds=round(t.seconds, 4))
        else:
            fail(_LOG, "generate_failed", request=request.request_id, kind=fatal.kind,
                 error=fatal.message, succeeded=sum(r.succeeded for r in ordered),
                 chunks=len(ordered), seconds=round(t.seconds, 4))

        return GenerationOutcome(
            request_id=request.request_id,
            state=state,
            results=ordered,
            error=fatal,
            history=history,
            rate_limit_wait_s=run.rate_limit_wait_s,
            retries=run.retries,
        )

    def _generate_chunk(
        self,
        chunk: TextChunk,
        request: GenerationRequest,
        scope: RequestScope,
        gate: DispatchGate,
        run: _RunState,
    ) -> ChunkResult:
        cfg = self.config
        attempts = 0
        network_retries = 0

        while True:
            try:
                with gate.slot():
                    attempts += 1
                    with timeit("chunk") as t:
                        audio = self._client.synthesize(chunk.content, request.voice_id, request.model)
                path = scope.write_chunk(chunk.index, audio)
                self._metrics.record_chunk("succeeded")
                verbose(_LOG, "chunk_done", chunk=chunk.index, chars=chunk.char_length,
                        bytes=len(audio), attempt=attempts, seconds=round(t.seconds, 4))
                return ChunkResult(
                    chunk_index=chunk.index,
                    artifact_path=path,
                    byte_size=len(audio),
                    succeeded=True,
                    attempts=attempts,
                )
            except DispatchCancelled:
                return ChunkResult(chunk_index=chunk.index, attempts=attempts, cancelled=True)
            except Exception as exc:
                err = classify_error(exc, default_retry_after_s=cfg.rate_limit_default_s)

            if err.kind == ErrorCode.RATE_LIMIT:
                wait_s = err.retry_after_s
                if wait_s is None or wait_s <= 0:
                    wait_s = cfg.rate_limit_default_s
                added = run.reserve_pause(gate, wait_s)
                if added is None:
                    err = ErrorInfo(
                        kind=ErrorCode.RATE_LIMIT,
                        message=f"rate limit wait budget of {cfg.rate_limit_budget_s:g}s exceeded: {err.message}",
                        status_code=err.status_code,
                        retry_after_s=wait_s,
                    )
                else:
                    run.add_retry()
                    self._metrics.record_retry(ErrorCode.RATE_LIMIT)
                    self._metrics.record_rate_limit_wait(added)
                    warn(_LOG, "rate_limited", chunk=chunk.index, retry_after_s=wait_s,
                         waited_s=round(run.rate_limit_wait_s, 2), attempt=attempts)
                    continue

            elif is_retryable(err) and network_retries < cfg.max_retries:
                network_retries += 1
                delay = self.backoff_delay(network_retries)
                run.add_retry()
                self._metrics.record_retry(err.kind)
                warn(_LOG, "chunk_retry", chunk=chunk.index, retry=network_retries,
                     delay_s=delay, kind=err.kind, error=err.message)
                try:
                    gate.wait(delay)
                except DispatchCancelled:
                    return ChunkResult(chunk_index=chunk.index, attempts=attempts, cancelled=True)
                continue

            if run.set_fatal(err):
                gate.cancel(err.kind)
            self._metrics.record_chunk("failed")
            fail(_LOG, "chunk_failed", chunk=chunk.index, kind=err.kind,
                 status_code=err.status_code, attempt=attempts, error=err.message)
            return ChunkResult(
                chunk_index=chunk.index,
                succeeded=False,
                error=err,
                attempts=attempts,
            )

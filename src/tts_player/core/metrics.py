"""
Prometheus Metrics for tts-player.

Metrics Exposed:
    tts_player_requests_total             - Generation requests by status and error kind
    tts_player_request_duration_seconds   - End-to-end generation latency
    tts_player_chunks_total               - Chunk outcomes (succeeded/failed/cancelled)
    tts_player_chunk_retries_total        - Chunk retries by error kind
    tts_player_rate_limit_wait_seconds_total - Time spent paused on 429s
    tts_player_characters_total           - Characters sent upstream
    tts_player_active_requests            - Generations currently running

Usage:
    from tts_player.core.metrics import metrics

    metrics.record_request(status="success", duration=4.2, characters=9000)
    metrics.record_chunk("succeeded")
    content, content_type = metrics.get_metrics_response()

Each PlayerMetrics instance owns a private CollectorRegistry so tests can
create fresh instances without duplicate-registration errors.
"""
from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


class PlayerMetrics:
    """Prometheus collectors for the generation pipeline."""

    def __init__(self) -> None:
        self._registry = CollectorRegistry()

        self._requests_total = Counter(
            "tts_player_requests_total",
            "Total generation requests",
            ["status", "kind"],
            registry=self._registry,
        )
        self._request_duration = Histogram(
            "tts_player_request_duration_seconds",
            "Generation request duration in seconds",
            ["status"],
            buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
            registry=self._registry,
        )
        self._chunks_total = Counter(
            "tts_player_chunks_total",
            "Chunk outcomes",
            ["outcome"],
            registry=self._registry,
        )
        self._retries_total = Counter(
            "tts_player_chunk_retries_total",
            "Chunk retries by error kind",
            ["kind"],
            registry=self._registry,
        )
        self._rate_limit_wait = Counter(
            "tts_player_rate_limit_wait_seconds_total",
            "Seconds dispatch was paused by upstream rate limits",
            registry=self._registry,
        )
        self._characters_total = Counter(
            "tts_player_characters_total",
            "Characters sent to the upstream API",
            registry=self._registry,
        )
        self._active_requests = Gauge(
            "tts_player_active_requests",
            "Generation requests currently in progress",
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_request(self, status: str, duration: float, characters: int = 0, kind: str = "") -> None:
        """
        Record a finished generation request.

        Args:
            status: "success" or "error".
            duration: Wall time in seconds (negative values are not observed).
            characters: Characters billed for the request.
            kind: ErrorCode for failures, empty for successes.
        """
        self._requests_total.labels(status=status, kind=kind or "none").inc()
        if duration >= 0:
            self._request_duration.labels(status=status).observe(duration)
        if characters > 0:
            self._characters_total.inc(characters)

    def record_chunk(self, outcome: str) -> None:
        self._chunks_total.labels(outcome=outcome).inc()

    def record_retry(self, kind: str) -> None:
        self._retries_total.labels(kind=kind).inc()

    def record_rate_limit_wait(self, seconds: float) -> None:
        if seconds > 0:
            self._rate_limit_wait.inc(seconds)

    def inc_active(self) -> None:
        self._active_requests.inc()

    def dec_active(self) -> None:
        self._active_requests.dec()

    def get_metrics_response(self) -> tuple[bytes, str]:
        """Metrics in Prometheus text format as (content, content_type)."""
        return generate_latest(self._registry), CONTENT_TYPE_LATEST


# Process-wide instance used by the service and the /metrics endpoint
metrics = PlayerMetrics()

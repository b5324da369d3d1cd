"""Tests for Prometheus metrics."""
from __future__ import annotations

from prometheus_client import generate_latest

from tts_player.core.metrics import PlayerMetrics, metrics


class TestMetricsModule:

    def test_metrics_instance_exists(self):
        assert isinstance(metrics, PlayerMetrics)

    def test_record_request(self):
        m = PlayerMetrics()
        m.record_request(status="success", duration=0.5, characters=9000)
        m.record_request(status="error", duration=0.1, kind="AUTH")
        text = generate_latest(m.registry).decode()
        assert 'tts_player_requests_total{status="success",kind="none"} 1.0' in text
        assert 'tts_player_requests_total{status="error",kind="AUTH"} 1.0' in text
        assert "tts_player_characters_total 9000.0" in text

    def test_chunks_retries_and_waits(self):
        m = PlayerMetrics()
        m.record_chunk("succeeded")
        m.record_chunk("cancelled")
        m.record_retry("RATE_LIMIT")
        m.record_rate_limit_wait(60)
        m.record_rate_limit_wait(0)
        text = generate_latest(m.registry).decode()
        assert 'tts_player_chunks_total{outcome="succeeded"} 1.0' in text
        assert 'tts_player_chunks_total{outcome="cancelled"} 1.0' in text
        assert 'tts_player_chunk_retries_total{kind="RATE_LIMIT"} 1.0' in text
        assert "tts_player_rate_limit_wait_seconds_total 60.0" in text

    def test_active_gauge(self):
        m = PlayerMetrics()
        m.inc_active()
        m.inc_active()
        m.dec_active()
        assert "tts_player_active_requests 1.0" in generate_latest(m.registry).decode()

    def test_instances_are_isolated(self):
        """Each instance owns its registry; no duplicate registration."""
        a, b = PlayerMetrics(), PlayerMetrics()
        a.record_chunk("failed")
        assert 'outcome="failed"' not in generate_latest(b.registry).decode()

    def test_metrics_response(self):
        content, content_type = PlayerMetrics().get_metrics_response()
        assert isinstance(content, bytes)
        assert content_type.startswith("text/plain")

"""Tests for numeric log levels, request ids and the JSONL file handler."""
from __future__ import annotations

import contextvars
import json
import logging

from tts_player.core.logging import (
    JsonlFormatter,
    LogLevel,
    coerce_level,
    configure_logging,
    get_level,
    get_logger,
    get_request_id,
    info,
    set_level,
    set_request_id,
    verbose,
)


class TestLogLevel:
    """LogLevel values and coercion."""

    def test_level_enum_values(self):
        assert LogLevel.MINIMAL == 1
        assert LogLevel.NORMAL == 2
        assert LogLevel.VERBOSE == 3
        assert LogLevel.DEBUG == 4

    def test_coerce_from_int_and_names(self):
        assert coerce_level(3) == LogLevel.VERBOSE
        assert coerce_level("debug") == LogLevel.DEBUG
        assert coerce_level("TRACE") == LogLevel.DEBUG
        assert coerce_level("INFO") == LogLevel.NORMAL
        assert coerce_level("warning") == LogLevel.MINIMAL
        assert coerce_level("4") == LogLevel.DEBUG

    def test_coerce_from_stdlib_levels(self):
        """Integers above 4 are read as stdlib levels."""
        assert coerce_level(logging.WARNING) == LogLevel.MINIMAL
        assert coerce_level(logging.INFO) == LogLevel.NORMAL
        assert coerce_level(logging.DEBUG) == LogLevel.DEBUG

    def test_unparseable_falls_back_to_normal(self):
        assert coerce_level("loud") == LogLevel.NORMAL
        assert coerce_level(None) == LogLevel.NORMAL


class TestRequestId:
    """Request id correlation through contextvars."""

    def test_set_and_get(self):
        ctx = contextvars.copy_context()

        def run():
            set_request_id("rid-123")
            return get_request_id()

        assert ctx.run(run) == "rid-123"

    def test_copied_context_is_isolated(self):
        """A value set inside a copied context does not leak out."""
        outer = contextvars.copy_context()

        def run():
            set_request_id("outer")
            inner = contextvars.copy_context()
            inner.run(set_request_id, "inner")
            return get_request_id()

        assert outer.run(run) == "outer"


class TestLevelGate:
    """Messages above the configured level are dropped."""

    def test_verbose_suppressed_at_normal(self, caplog):
        previous = get_level()
        set_level(LogLevel.NORMAL)
        try:
            log = get_logger("tts-player.test")
            with caplog.at_level(1):
                verbose(log, "hidden_event")
                info(log, "shown_event")
        finally:
            set_level(previous)

        messages = [r.getMessage() for r in caplog.records]
        assert "shown_event" in messages
        assert "hidden_event" not in messages


class TestJsonl:
    """JSONL formatting and the rotating file handler."""

    def test_formatter_fields(self):
        record = logging.LogRecord("tts-player.test", logging.INFO, __file__, 1, "chunk_done", None, None)
        record.tag = "INFO"
        record.request_id = "abc"
        record.seconds = 1.5
        record.extra_data = {"chunk": 2}
        record.numeric_level = 3

        payload = json.loads(JsonlFormatter().format(record))
        assert payload["message"] == "chunk_done"
        assert payload["request_id"] == "abc"
        assert payload["seconds"] == 1.5
        assert payload["extra"] == {"chunk": 2}
        assert payload["level"] == 3

    def test_logging_jsonl_persistence(self, tmp_path, monkeypatch):
        """With TTS_PLAYER_LOG_DIR set, events land in the JSONL file."""
        monkeypatch.setenv("TTS_PLAYER_LOG_DIR", str(tmp_path))
        monkeypatch.setenv("TTS_PLAYER_JSONL_FILE", "test.jsonl")
        monkeypatch.setenv("TTS_PLAYER_LOG_LEVEL", "2")

        try:
            configure_logging(force=True)
            log = get_logger("tts-player.test")
            ctx = contextvars.copy_context()
            ctx.run(set_request_id, "rid-1")
            ctx.run(info, log, "hello", event="logging_test", foo="bar")

            for handler in logging.getLogger().handlers:
                handler.flush()

            line = (tmp_path / "test.jsonl").read_text(encoding="utf-8").strip().splitlines()[-1]
            payload = json.loads(line)
            assert payload["message"] == "hello"
            assert payload["request_id"] == "rid-1"
            assert payload["event"] == "logging_test"
            assert payload["extra"]["foo"] == "bar"
        finally:
            for handler in logging.getLogger().handlers:
                handler.close()
            monkeypatch.delenv("TTS_PLAYER_LOG_DIR")
            monkeypatch.delenv("TTS_PLAYER_LOG_LEVEL")
            configure_logging(force=True)

"""
Log Formatters and Terminal Colors.

Two formatters are provided:

    JsonlFormatter: one JSON object per line for the rotating log file
        {"ts": "...", "level": 2, "tag": "INFO", "message": "chunk_done",
         "request_id": "3f9c0a1b2c4d", "seconds": 1.84, "extra": {"chunk": 1}}

    ColoredConsoleFormatter: compact human-readable line
        14:30:05 [ INFO  ] (3f9c0a1b2c4d) chunk_done 1.840s chunk=1 bytes=48213

Colors are disabled when stdout is not a TTY, when NO_COLOR is set, or when
TTS_PLAYER_NO_COLOR=1.
"""
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime
from typing import Any, Dict


class Colors:
    """ANSI escape codes used by the console formatter."""
    RESET = "\033[0m"
    DIM = "\033[2m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"
    GRAY = "\033[90m"
    BRIGHT_RED = "\033[91m"
    BRIGHT_GREEN = "\033[92m"
    BRIGHT_YELLOW = "\033[93m"
    BRIGHT_CYAN = "\033[96m"


_TAG_COLORS = {
    "SUCCESS": Colors.BRIGHT_GREEN,
    "FAIL": Colors.BRIGHT_RED,
    "ERROR": Colors.BRIGHT_RED,
    "WARN": Colors.BRIGHT_YELLOW,
    "INFO": Colors.BRIGHT_CYAN,
    "DEBUG": Colors.GRAY,
    "TRACE": Colors.DIM,
}

# Fields that describe trouble in a generation run get a warm color
_ATTENTION_KEYS = {"attempt", "retry_after_s", "status_code", "kind", "error"}


def supports_color() -> bool:
    """Whether ANSI colors should be written to stdout."""
    if os.getenv("TTS_PLAYER_NO_COLOR", "0") == "1":
        return False
    if os.getenv("NO_COLOR"):
        return False
    isatty = getattr(sys.stdout, "isatty", None)
    if isatty is None or not isatty():
        return False
    return sys.platform != "win32" or "WT_SESSION" in os.environ


USE_COLORS = supports_color()


def get_tag_color(tag: str) -> str:
    return _TAG_COLORS.get(tag.upper(), Colors.WHITE)


def colorize(text: str, color: str) -> str:
    """Wrap text in a color when colors are enabled."""
    if not USE_COLORS:
        return text
    return f"{color}{text}{Colors.RESET}"


class JsonlFormatter(logging.Formatter):
    """Format records as single-line JSON for the log file."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created).astimezone().isoformat(),
            "level": getattr(record, "numeric_level", 2),
            "tag": getattr(record, "tag", record.levelname),
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
        }

        event = getattr(record, "event", None)
        if event:
            payload["event"] = event

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            payload["seconds"] = seconds

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            payload["extra"] = extra_data

        return json.dumps(payload, ensure_ascii=False, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """
    Format records for the terminal.

    Output Format:
        HH:MM:SS [ TAG   ] (rid) message event=... 0.123s key=value
    """

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tag = getattr(record, "tag", record.levelname)
        rid = getattr(record, "request_id", "-")

        parts = [colorize(ts, Colors.DIM), colorize(f"[{tag:^7}]", get_tag_color(tag))]
        if rid != "-":
            parts.append(colorize(f"({rid})", Colors.DIM + Colors.CYAN))
        parts.append(record.getMessage())

        event = getattr(record, "event", None)
        if event:
            parts.append(colorize(f"event={event}", Colors.BLUE))

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            parts.append(colorize(f"{seconds:.3f}s", self._timing_color(seconds)))

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            for key, value in extra_data.items():
                parts.append(colorize(f"{key}={value}", self._field_color(key)))

        return " ".join(parts)

    @staticmethod
    def _timing_color(seconds: float) -> str:
        # Upstream calls take seconds, so the thresholds are wider than usual
        if seconds < 1.0:
            return Colors.GREEN
        if seconds < 10.0:
            return Colors.YELLOW
        return Colors.RED

    @staticmethod
    def _field_color(key: str) -> str:
        if key in _ATTENTION_KEYS:
            return Colors.YELLOW
        if key in ("chunk", "chunks", "index"):
            return Colors.MAGENTA
        return Colors.DIM

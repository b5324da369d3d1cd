"""
Numeric Log Levels.

tts-player configures verbosity with four numbers instead of Python's
level names:

    1 = MINIMAL  -> logging.WARNING  (startup, shutdown, fatal request errors)
    2 = NORMAL   -> logging.INFO     (request lifecycle, usage records)
    3 = VERBOSE  -> logging.DEBUG    (stage timings, chunk dispatch, retries)
    4 = DEBUG    -> logging.DEBUG-5  (internal state, full tracing)

Usage:
    from tts_player.core.logging.levels import LogLevel, coerce_level

    coerce_level("VERBOSE")   # LogLevel.VERBOSE
    coerce_level("INFO")      # LogLevel.NORMAL
    coerce_level(3)           # LogLevel.VERBOSE
"""
from __future__ import annotations

import logging
from enum import IntEnum
from typing import Any


class LogLevel(IntEnum):
    """Verbosity levels, higher is chattier."""
    MINIMAL = 1
    NORMAL = 2
    VERBOSE = 3
    DEBUG = 4


TRACE = logging.DEBUG - 5

LEVEL_MAP = {
    LogLevel.MINIMAL: logging.WARNING,
    LogLevel.NORMAL: logging.INFO,
    LogLevel.VERBOSE: logging.DEBUG,
    LogLevel.DEBUG: TRACE,
}

LEVEL_NAMES = {level.value: level.name for level in LogLevel}

_NAME_ALIASES = {
    "MINIMAL": LogLevel.MINIMAL,
    "NORMAL": LogLevel.NORMAL,
    "VERBOSE": LogLevel.VERBOSE,
    "DEBUG": LogLevel.DEBUG,
    "TRACE": LogLevel.DEBUG,
    # stdlib names
    "CRITICAL": LogLevel.MINIMAL,
    "ERROR": LogLevel.MINIMAL,
    "WARNING": LogLevel.MINIMAL,
    "WARN": LogLevel.MINIMAL,
    "INFO": LogLevel.NORMAL,
}


def coerce_level(value: Any) -> LogLevel:
    """
    Convert an int, name or LogLevel into a LogLevel.

    Integers 1-4 are taken literally; larger integers are treated as stdlib
    levels (``logging.WARNING`` -> MINIMAL). Unparseable input falls back
    to NORMAL.

    Examples:
        >>> coerce_level("debug")
        <LogLevel.DEBUG: 4>
        >>> coerce_level(logging.INFO)
        <LogLevel.NORMAL: 2>
    """
    if isinstance(value, LogLevel):
        return value

    if isinstance(value, int):
        if 1 <= value <= 4:
            return LogLevel(value)
        if value >= logging.WARNING:
            return LogLevel.MINIMAL
        if value >= logging.INFO:
            return LogLevel.NORMAL
        return LogLevel.DEBUG

    if isinstance(value, str):
        text = value.strip().upper()
        if text.isdigit():
            return coerce_level(int(text))
        return _NAME_ALIASES.get(text, LogLevel.NORMAL)

    return LogLevel.NORMAL

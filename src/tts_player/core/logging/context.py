"""
Request Context and Logging State.

The request id lives in a ``contextvars.ContextVar`` so every log line
emitted while handling one generation carries the same id. Chunk workers run
in a thread pool; the generator submits them through
``contextvars.copy_context().run`` so the id follows them into the pool.

Module-level state holds the active numeric level and the resolved logging
configuration.

Environment Variables:
    - TTS_PLAYER_SETTINGS: Settings file to read the ``logging`` section from
    - TTS_PLAYER_LOG_LEVEL: Override log level (1-4 or name)
    - TTS_PLAYER_LOG_DIR: Enable the JSONL file handler in this directory
    - TTS_PLAYER_JSONL_FILE: JSONL filename (default tts-player.jsonl)
    - TTS_PLAYER_LOG_ROTATE_BYTES: Max log file size before rotation
    - TTS_PLAYER_LOG_ROTATE_BACKUP: Number of rotated files to keep
"""
from __future__ import annotations

import os
from contextvars import ContextVar
from typing import Any, Dict

import yaml

from .levels import LEVEL_NAMES, LogLevel

_request_id: ContextVar[str] = ContextVar("request_id", default="-")

_configured: bool = False
_log_config: Dict[str, Any] = {}
_current_level: LogLevel = LogLevel.NORMAL


def get_request_id() -> str:
    """Request id of the current context, or "-" outside a request."""
    return _request_id.get()


def set_request_id(rid: str) -> None:
    """Bind a request id to the current context for log correlation."""
    _request_id.set(rid)


def get_level() -> LogLevel:
    return _current_level


def set_level(level: LogLevel) -> None:
    global _current_level
    _current_level = level


def get_level_name() -> str:
    return LEVEL_NAMES.get(int(_current_level), "NORMAL")


def is_configured() -> bool:
    return _configured


def set_configured(value: bool) -> None:
    global _configured
    _configured = value


def get_log_config() -> Dict[str, Any]:
    return _log_config


def set_log_config(config: Dict[str, Any]) -> None:
    global _log_config
    _log_config = config


def _int_env(name: str) -> int | None:
    value = os.getenv(name)
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def read_logging_config() -> Dict[str, Any]:
    """
    Resolve logging configuration from the settings file and environment.

    Priority (highest first): environment variables, the ``logging`` section
    of the settings file, built-in defaults. A missing or unreadable settings
    file simply contributes nothing.

    Returns:
        Dictionary with keys such as level, log_dir, jsonl_file,
        rotate_max_bytes and rotate_backup_count.
    """
    cfg: Dict[str, Any] = {}

    settings_path = os.getenv("TTS_PLAYER_SETTINGS", "config/settings.yaml")
    if os.path.exists(settings_path):
        try:
            with open(settings_path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError):
            raw = {}
        if isinstance(raw, dict):
            cfg.update(raw.get("logging", {}) or {})

    if os.getenv("TTS_PLAYER_LOG_LEVEL"):
        cfg["level"] = os.environ["TTS_PLAYER_LOG_LEVEL"]
    if os.getenv("TTS_PLAYER_LOG_DIR"):
        cfg["log_dir"] = os.environ["TTS_PLAYER_LOG_DIR"]
    if os.getenv("TTS_PLAYER_JSONL_FILE"):
        cfg["jsonl_file"] = os.environ["TTS_PLAYER_JSONL_FILE"]

    rotate_bytes = _int_env("TTS_PLAYER_LOG_ROTATE_BYTES")
    if rotate_bytes is not None:
        cfg["rotate_max_bytes"] = rotate_bytes
    rotate_backup = _int_env("TTS_PLAYER_LOG_ROTATE_BACKUP")
    if rotate_backup is not None:
        cfg["rotate_backup_count"] = rotate_backup

    return cfg

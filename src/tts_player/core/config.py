"""
Configuration Management for tts-player.

This module provides centralized configuration handling with:
    - Default values (Defaults class)
    - Dataclass-based configuration sections
    - YAML file loading with environment variable overrides
    - Validation with meaningful error messages

Configuration Hierarchy (highest priority first):
    1. Environment variables (TTS_PLAYER_API_KEY, OPENAI_API_KEY, ...)
    2. YAML config file (config/settings.yaml)
    3. Defaults class values

Example settings.yaml:
    api:
      base_url: https://api.openai.com
      default_voice: alloy
      default_model: tts-1-hd

    chunking:
      max_chars: 3800

    generation:
      max_concurrent: 2
      max_retries: 3
      rate_limit_budget_s: 300

    logging:
      level: 2  # NORMAL
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


class ConfigValidationError(Exception):
    """
    Raised when configuration validation fails.

    The message always names the offending key, e.g.
    ``generation.max_concurrent must be between 1 and 4, got 8``.
    """
    pass


class Defaults:
    """
    Centralized default configuration values.

    Sections:
        - API: Upstream endpoint and request defaults
        - Chunking: Per-request character ceiling
        - Generation: Worker pool, retries and rate-limit budget
        - Storage: Working directories and sweep thresholds
        - Assembly: ffmpeg remux settings
        - Usage: Quota ledger and billing cycle
        - Logging: Log level and text previews
    """

    # ─────────────────────────────────────────────────────────────────────────
    # Upstream API
    # ─────────────────────────────────────────────────────────────────────────
    API_BASE_URL = "https://api.openai.com"
    API_DEFAULT_VOICE = "alloy"
    API_DEFAULT_MODEL = "tts-1-hd"
    API_RESPONSE_FORMAT = "mp3"
    API_TIMEOUT_S = 120.0

    SUPPORTED_VOICES = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")
    SUPPORTED_MODELS = ("tts-1", "tts-1-hd")

    # ─────────────────────────────────────────────────────────────────────────
    # Text Chunking
    # ─────────────────────────────────────────────────────────────────────────
    CHUNKING_MAX_CHARS = 3800           # Headroom under the 4096 API ceiling
    CHUNKING_API_CEILING = 4096

    # ─────────────────────────────────────────────────────────────────────────
    # Chunk Generation
    # ─────────────────────────────────────────────────────────────────────────
    GENERATION_MAX_CONCURRENT = 2       # Simultaneous upstream calls (1-4)
    GENERATION_MAX_RETRIES = 3          # Network retries per chunk
    GENERATION_BACKOFF_BASE_S = 1.0
    GENERATION_BACKOFF_MAX_S = 30.0
    GENERATION_RATE_LIMIT_DEFAULT_S = 60.0   # When Retry-After is missing
    GENERATION_RATE_LIMIT_BUDGET_S = 300.0   # Total pause allowed per request
    GENERATION_DISPATCH_INTERVAL_S = 0.2     # Spacing between chunk calls

    # ─────────────────────────────────────────────────────────────────────────
    # Temp Storage
    # ─────────────────────────────────────────────────────────────────────────
    STORAGE_BASE_DIR = str(Path(tempfile.gettempdir()) / "tts-player")
    STORAGE_STALE_AFTER_SECONDS = 3600      # Orphaned working files
    STORAGE_ARTIFACT_TTL_SECONDS = 86400    # Final artifacts (1 day)
    STORAGE_SWEEP_INTERVAL_SECONDS = 600

    # ─────────────────────────────────────────────────────────────────────────
    # Audio Assembly
    # ─────────────────────────────────────────────────────────────────────────
    ASSEMBLY_FFMPEG_PATH = "ffmpeg"
    ASSEMBLY_TIMEOUT_S = 120.0
    ASSEMBLY_LOGLEVEL = "error"
    ASSEMBLY_BITRATE_KBPS = 128

    # ─────────────────────────────────────────────────────────────────────────
    # Usage Tracking
    # ─────────────────────────────────────────────────────────────────────────
    USAGE_DB_PATH = str(Path.home() / ".tts-player" / "tts_usage.db")
    USAGE_ACCOUNT_ID = "default"
    USAGE_TIER = "pay-per-use"
    USAGE_BILLING_CYCLE_DAYS = 30
    USAGE_ENFORCE_QUOTA = False
    USAGE_HISTORY_RETENTION_DAYS = 90

    # -1 means unlimited
    USAGE_TIER_LIMITS = {
        "free": 10_000,
        "starter": 30_000,
        "creator": 100_000,
        "pro": 500_000,
        "pay-per-use": -1,
    }

    # USD per character
    MODEL_PRICE_PER_CHAR = {
        "tts-1": 0.000015,
        "tts-1-hd": 0.00003,
    }

    # ─────────────────────────────────────────────────────────────────────────
    # Logging
    # ─────────────────────────────────────────────────────────────────────────
    LOGGING_TEXT_PREVIEW_CHARS = 80
    LOGGING_LEVEL = 2                   # 1=MINIMAL, 2=NORMAL, 3=VERBOSE, 4=DEBUG


@dataclass
class ApiConfig:
    """
    Upstream TTS endpoint configuration.

    The API key is never logged; ``has_api_key`` is what health output shows.
    """
    base_url: str = Defaults.API_BASE_URL
    api_key: str = ""
    default_voice: str = Defaults.API_DEFAULT_VOICE
    default_model: str = Defaults.API_DEFAULT_MODEL
    response_format: str = Defaults.API_RESPONSE_FORMAT
    timeout_s: float = Defaults.API_TIMEOUT_S

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)


@dataclass
class ChunkingConfig:
    """Text chunking configuration."""
    max_chars: int = Defaults.CHUNKING_MAX_CHARS


@dataclass
class GenerationConfig:
    """
    Chunk generation policy.

    Controls the worker pool size, the bounded retry policy for transport
    failures and the total time a request may spend paused on rate limits.
    """
    max_concurrent: int = Defaults.GENERATION_MAX_CONCURRENT
    max_retries: int = Defaults.GENERATION_MAX_RETRIES
    backoff_base_s: float = Defaults.GENERATION_BACKOFF_BASE_S
    backoff_max_s: float = Defaults.GENERATION_BACKOFF_MAX_S
    rate_limit_default_s: float = Defaults.GENERATION_RATE_LIMIT_DEFAULT_S
    rate_limit_budget_s: float = Defaults.GENERATION_RATE_LIMIT_BUDGET_S
    dispatch_interval_s: float = Defaults.GENERATION_DISPATCH_INTERVAL_S


@dataclass
class StorageConfig:
    """
    Temp storage configuration.

    Per-request working directories live under ``{base_dir}/work`` and
    final artifacts under ``{base_dir}/artifacts``.
    """
    base_dir: str = Defaults.STORAGE_BASE_DIR
    stale_after_seconds: int = Defaults.STORAGE_STALE_AFTER_SECONDS
    artifact_ttl_seconds: int = Defaults.STORAGE_ARTIFACT_TTL_SECONDS
    sweep_interval_seconds: int = Defaults.STORAGE_SWEEP_INTERVAL_SECONDS


@dataclass
class AssemblyConfig:
    """ffmpeg remux configuration."""
    ffmpeg_path: str = Defaults.ASSEMBLY_FFMPEG_PATH
    timeout_s: float = Defaults.ASSEMBLY_TIMEOUT_S
    loglevel: str = Defaults.ASSEMBLY_LOGLEVEL
    bitrate_kbps: int = Defaults.ASSEMBLY_BITRATE_KBPS


@dataclass
class UsageConfig:
    """
    Usage ledger configuration.

    ``character_limit`` of None means "use the tier default" from
    Defaults.USAGE_TIER_LIMITS.
    """
    db_path: str = Defaults.USAGE_DB_PATH
    account_id: str = Defaults.USAGE_ACCOUNT_ID
    tier: str = Defaults.USAGE_TIER
    character_limit: Optional[int] = None
    billing_cycle_days: int = Defaults.USAGE_BILLING_CYCLE_DAYS
    enforce_quota: bool = Defaults.USAGE_ENFORCE_QUOTA
    history_retention_days: int = Defaults.USAGE_HISTORY_RETENTION_DAYS

    @property
    def effective_limit(self) -> int:
        if self.character_limit is not None:
            return self.character_limit
        return Defaults.USAGE_TIER_LIMITS.get(self.tier, -1)


@dataclass
class LoggingConfig:
    """
    Logging configuration.

    Log levels:
        1 = MINIMAL: Startup, shutdown, critical errors only
        2 = NORMAL: Request lifecycle, usage records (default)
        3 = VERBOSE: Per-stage timing, chunk dispatch
        4 = DEBUG: Internal state, full tracing
    """
    text_preview_chars: int = Defaults.LOGGING_TEXT_PREVIEW_CHARS
    level: int = Defaults.LOGGING_LEVEL


@dataclass
class PlayerConfig:
    """
    Validated configuration for SpeechService.

    Usage:
        settings = load_settings("config/settings.yaml")
        config = PlayerConfig.from_settings(settings)
        print(config.generation.max_retries)
    """
    api: ApiConfig = field(default_factory=ApiConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    assembly: AssemblyConfig = field(default_factory=AssemblyConfig)
    usage: UsageConfig = field(default_factory=UsageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "PlayerConfig":
        """
        Create PlayerConfig from Settings with validation.

        Args:
            settings: Raw Settings object loaded from YAML.

        Returns:
            Validated PlayerConfig instance.

        Raises:
            ConfigValidationError: If any value fails validation.
        """
        raw = settings.raw

        # ─────────────────────────────────────────────────────────────────────
        # API
        # ─────────────────────────────────────────────────────────────────────
        api_raw = raw.get("api", {}) or {}
        api = ApiConfig(
            base_url=str(api_raw.get("base_url", Defaults.API_BASE_URL)).rstrip("/"),
            api_key=str(api_raw.get("api_key") or ""),
            default_voice=str(api_raw.get("default_voice", Defaults.API_DEFAULT_VOICE)),
            default_model=str(api_raw.get("default_model", Defaults.API_DEFAULT_MODEL)),
            response_format=str(api_raw.get("response_format", Defaults.API_RESPONSE_FORMAT)),
            timeout_s=float(api_raw.get("timeout_s", Defaults.API_TIMEOUT_S)),
        )
        cls._validate_positive("api.timeout_s", api.timeout_s)
        cls._validate_choice("api.default_voice", api.default_voice, Defaults.SUPPORTED_VOICES)
        cls._validate_choice("api.default_model", api.default_model, Defaults.SUPPORTED_MODELS)

        # ─────────────────────────────────────────────────────────────────────
        # Chunking
        # ─────────────────────────────────────────────────────────────────────
        chunking_raw = raw.get("chunking", {}) or {}
        chunking = ChunkingConfig(
            max_chars=int(chunking_raw.get("max_chars", Defaults.CHUNKING_MAX_CHARS)),
        )
        cls._validate_range("chunking.max_chars", chunking.max_chars, 1, Defaults.CHUNKING_API_CEILING)

        # ─────────────────────────────────────────────────────────────────────
        # Generation
        # ─────────────────────────────────────────────────────────────────────
        gen_raw = raw.get("generation", {}) or {}
        generation = GenerationConfig(
            max_concurrent=int(gen_raw.get("max_concurrent", Defaults.GENERATION_MAX_CONCURRENT)),
            max_retries=int(gen_raw.get("max_retries", Defaults.GENERATION_MAX_RETRIES)),
            backoff_base_s=float(gen_raw.get("backoff_base_s", Defaults.GENERATION_BACKOFF_BASE_S)),
            backoff_max_s=float(gen_raw.get("backoff_max_s", Defaults.GENERATION_BACKOFF_MAX_S)),
            rate_limit_default_s=float(gen_raw.get("rate_limit_default_s", Defaults.GENERATION_RATE_LIMIT_DEFAULT_S)),
            rate_limit_budget_s=float(gen_raw.get("rate_limit_budget_s", Defaults.GENERATION_RATE_LIMIT_BUDGET_S)),
            dispatch_interval_s=float(gen_raw.get("dispatch_interval_s", Defaults.GENERATION_DISPATCH_INTERVAL_S)),
        )
        cls._validate_range("generation.max_concurrent", generation.max_concurrent, 1, 4)
        cls._validate_non_negative("generation.max_retries", generation.max_retries)
        cls._validate_non_negative("generation.backoff_base_s", generation.backoff_base_s)
        cls._validate_non_negative("generation.backoff_max_s", generation.backoff_max_s)
        cls._validate_positive("generation.rate_limit_default_s", generation.rate_limit_default_s)
        cls._validate_non_negative("generation.rate_limit_budget_s", generation.rate_limit_budget_s)
        cls._validate_non_negative("generation.dispatch_interval_s", generation.dispatch_interval_s)

        # ─────────────────────────────────────────────────────────────────────
        # Storage
        # ─────────────────────────────────────────────────────────────────────
        storage_raw = raw.get("storage", {}) or {}
        storage = StorageConfig(
            base_dir=str(storage_raw.get("base_dir", Defaults.STORAGE_BASE_DIR)),
            stale_after_seconds=int(storage_raw.get("stale_after_seconds", Defaults.STORAGE_STALE_AFTER_SECONDS)),
            artifact_ttl_seconds=int(storage_raw.get("artifact_ttl_seconds", Defaults.STORAGE_ARTIFACT_TTL_SECONDS)),
            sweep_interval_seconds=int(storage_raw.get("sweep_interval_seconds", Defaults.STORAGE_SWEEP_INTERVAL_SECONDS)),
        )
        cls._validate_positive("storage.stale_after_seconds", storage.stale_after_seconds)
        cls._validate_positive("storage.artifact_ttl_seconds", storage.artifact_ttl_seconds)
        cls._validate_non_negative("storage.sweep_interval_seconds", storage.sweep_interval_seconds)

        # ─────────────────────────────────────────────────────────────────────
        # Assembly
        # ─────────────────────────────────────────────────────────────────────
        assembly_raw = raw.get("assembly", {}) or {}
        assembly = AssemblyConfig(
            ffmpeg_path=str(assembly_raw.get("ffmpeg_path", Defaults.ASSEMBLY_FFMPEG_PATH)),
            timeout_s=float(assembly_raw.get("timeout_s", Defaults.ASSEMBLY_TIMEOUT_S)),
            loglevel=str(assembly_raw.get("loglevel", Defaults.ASSEMBLY_LOGLEVEL)),
            bitrate_kbps=int(assembly_raw.get("bitrate_kbps", Defaults.ASSEMBLY_BITRATE_KBPS)),
        )
        cls._validate_positive("assembly.timeout_s", assembly.timeout_s)
        cls._validate_positive("assembly.bitrate_kbps", assembly.bitrate_kbps)

        # ─────────────────────────────────────────────────────────────────────
        # Usage
        # ─────────────────────────────────────────────────────────────────────
        usage_raw = raw.get("usage", {}) or {}
        limit_raw = usage_raw.get("character_limit")
        usage = UsageConfig(
            db_path=str(usage_raw.get("db_path", Defaults.USAGE_DB_PATH)),
            account_id=str(usage_raw.get("account_id", Defaults.USAGE_ACCOUNT_ID)),
            tier=str(usage_raw.get("tier", Defaults.USAGE_TIER)),
            character_limit=int(limit_raw) if limit_raw is not None else None,
            billing_cycle_days=int(usage_raw.get("billing_cycle_days", Defaults.USAGE_BILLING_CYCLE_DAYS)),
            enforce_quota=bool(usage_raw.get("enforce_quota", Defaults.USAGE_ENFORCE_QUOTA)),
            history_retention_days=int(usage_raw.get("history_retention_days", Defaults.USAGE_HISTORY_RETENTION_DAYS)),
        )
        cls._validate_choice("usage.tier", usage.tier, tuple(Defaults.USAGE_TIER_LIMITS))
        if usage.character_limit is not None and usage.character_limit < -1:
            raise ConfigValidationError(
                f"usage.character_limit must be -1 (unlimited) or non-negative, got {usage.character_limit}"
            )
        cls._validate_positive("usage.billing_cycle_days", usage.billing_cycle_days)
        cls._validate_positive("usage.history_retention_days", usage.history_retention_days)

        # ─────────────────────────────────────────────────────────────────────
        # Logging
        # ─────────────────────────────────────────────────────────────────────
        logging_raw = raw.get("logging", {}) or {}
        log_level_raw = logging_raw.get("level", Defaults.LOGGING_LEVEL)

        # String levels ("INFO", "VERBOSE") are accepted as well as 1-4
        if isinstance(log_level_raw, str):
            level_map = {
                "MINIMAL": 1, "1": 1,
                "NORMAL": 2, "INFO": 2, "2": 2,
                "VERBOSE": 3, "3": 3,
                "DEBUG": 4, "TRACE": 4, "4": 4,
            }
            log_level = level_map.get(log_level_raw.upper(), Defaults.LOGGING_LEVEL)
        else:
            log_level = int(log_level_raw)

        logging_cfg = LoggingConfig(
            text_preview_chars=int(logging_raw.get("text_preview_chars", Defaults.LOGGING_TEXT_PREVIEW_CHARS)),
            level=log_level,
        )
        cls._validate_non_negative("logging.text_preview_chars", logging_cfg.text_preview_chars)
        cls._validate_range("logging.level", logging_cfg.level, 1, 4)

        return cls(
            api=api,
            chunking=chunking,
            generation=generation,
            storage=storage,
            assembly=assembly,
            usage=usage,
            logging=logging_cfg,
        )

    @staticmethod
    def _validate_positive(name: str, value: int | float) -> None:
        """Validate that a value is positive (> 0)."""
        if value <= 0:
            raise ConfigValidationError(f"{name} must be positive, got {value}")

    @staticmethod
    def _validate_non_negative(name: str, value: int | float) -> None:
        """Validate that a value is non-negative (>= 0)."""
        if value < 0:
            raise ConfigValidationError(f"{name} must be non-negative, got {value}")

    @staticmethod
    def _validate_range(name: str, value: int | float, min_val: int | float, max_val: int | float) -> None:
        """Validate that a value is within a range [min_val, max_val]."""
        if not (min_val <= value <= max_val):
            raise ConfigValidationError(f"{name} must be between {min_val} and {max_val}, got {value}")

    @staticmethod
    def _validate_choice(name: str, value: str, choices: tuple) -> None:
        """Validate that a value is one of the allowed choices."""
        if value not in choices:
            raise ConfigValidationError(f"{name} must be one of {', '.join(choices)}, got {value!r}")


@dataclass(frozen=True)
class Settings:
    """
    Immutable settings container loaded from YAML.

    This is the raw settings object before validation. Use
    get_player_config() to get a validated PlayerConfig.

    Attributes:
        raw: Dictionary of raw configuration values.
    """
    raw: Dict[str, Any]

    @property
    def default_voice(self) -> str:
        """Voice used when a request does not name one."""
        return str(self.raw.get("api", {}).get("default_voice", Defaults.API_DEFAULT_VOICE))

    @property
    def default_model(self) -> str:
        """Model used when a request does not name one."""
        return str(self.raw.get("api", {}).get("default_model", Defaults.API_DEFAULT_MODEL))

    @property
    def max_chars(self) -> int:
        """Per-chunk character ceiling."""
        return int(self.raw.get("chunking", {}).get("max_chars", Defaults.CHUNKING_MAX_CHARS))

    def get_player_config(self) -> PlayerConfig:
        """
        Get validated PlayerConfig from these settings.

        Raises:
            ConfigValidationError: If validation fails.
        """
        return PlayerConfig.from_settings(self)


def _apply_env_overrides(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay environment variables onto the raw settings dict."""
    api_key = os.getenv("TTS_PLAYER_API_KEY") or os.getenv("OPENAI_API_KEY")
    if api_key:
        raw.setdefault("api", {})["api_key"] = api_key

    base_url = os.getenv("TTS_PLAYER_BASE_URL")
    if base_url:
        raw.setdefault("api", {})["base_url"] = base_url

    storage_dir = os.getenv("TTS_PLAYER_STORAGE_DIR")
    if storage_dir:
        raw.setdefault("storage", {})["base_dir"] = storage_dir

    db_path = os.getenv("TTS_PLAYER_USAGE_DB")
    if db_path:
        raw.setdefault("usage", {})["db_path"] = db_path

    return raw


def default_settings() -> Settings:
    """Settings with no YAML file: Defaults plus environment overrides."""
    return Settings(raw=_apply_env_overrides({}))


def load_settings(path: str = "config/settings.yaml") -> Settings:
    """
    Load settings from a YAML configuration file.

    Environment variable overrides:
        - TTS_PLAYER_API_KEY / OPENAI_API_KEY: api.api_key
        - TTS_PLAYER_BASE_URL: api.base_url
        - TTS_PLAYER_STORAGE_DIR: storage.base_dir
        - TTS_PLAYER_USAGE_DB: usage.db_path

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Settings object with loaded configuration.

    Raises:
        FileNotFoundError: If the settings file doesn't exist.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"settings file not found: {p.resolve()}")

    with p.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    return Settings(raw=_apply_env_overrides(raw))

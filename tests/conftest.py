"""Shared fakes for the generation pipeline tests."""
from __future__ import annotations

import copy
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest

from tts_player.core.errors import AssemblyError
from tts_player.core.logging import get_request_id


class FakeClock:
    """
    Monotonic clock that only moves when ``sleep`` is called.

    Passed as both ``clock`` and ``sleep`` so rate-limit pauses and backoff
    run instantly while still being measurable.
    """

    def __init__(self, start: float = 1000.0):
        self._lock = threading.Lock()
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        with self._lock:
            return self.now

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps.append(seconds)
            self.now += seconds


class ScriptedClient:
    """
    Stands in for TTSClient.

    ``script`` maps chunk text to a list of outcomes consumed one per call:
    an exception is raised, bytes are returned, a callable is invoked and
    then the default audio is returned. Texts without a script (or with an
    exhausted one) get ``b"audio:<text>"``.
    """

    def __init__(self, script: Optional[Dict[str, List[Any]]] = None, clock: Optional[Callable[[], float]] = None):
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.clock = clock
        self.calls: List[Dict[str, Any]] = []
        self.closed = False
        self._lock = threading.Lock()

    def synthesize(self, text: str, voice_id: str, model: Optional[str] = None) -> bytes:
        with self._lock:
            self.calls.append({
                "text": text,
                "voice": voice_id,
                "model": model,
                "time": self.clock() if self.clock else None,
                "request_id": get_request_id(),
            })
            queue = self.script.get(text)
            outcome = queue.pop(0) if queue else None

        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            outcome()
            outcome = None
        if outcome is None:
            return f"audio:{text}".encode("utf-8")
        return outcome

    def texts(self) -> List[str]:
        return [c["text"] for c in self.calls]

    def close(self) -> None:
        self.closed = True


class ConcatAssembler:
    """Byte-concatenating stand-in for AudioAssembler (no ffmpeg needed)."""

    def __init__(self, ffmpeg: Optional[str] = "/usr/bin/ffmpeg", error: Optional[BaseException] = None):
        self.ffmpeg = ffmpeg
        self.error = error
        self.calls: List[List[Path]] = []

    def resolve_ffmpeg(self) -> Optional[str]:
        return self.ffmpeg

    def assemble(self, paths: Sequence[Path], output_path: Path) -> Path:
        self.calls.append([Path(p) for p in paths])
        if self.error is not None:
            raise self.error
        if not paths:
            raise AssemblyError("no audio chunks to assemble")
        if len(paths) == 1:
            return Path(paths[0])
        output = Path(output_path)
        output.write_bytes(b"".join(Path(p).read_bytes() for p in paths))
        return output


def _merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


@pytest.fixture
def make_raw_settings(tmp_path) -> Callable[..., Dict[str, Any]]:
    """Raw settings dict pointing storage and the usage DB into tmp_path."""

    def factory(**sections: Any) -> Dict[str, Any]:
        raw: Dict[str, Any] = {
            "api": {"api_key": "sk-test", "base_url": "http://127.0.0.1:9"},
            "chunking": {"max_chars": 4000},
            "generation": {
                "max_concurrent": 2,
                "dispatch_interval_s": 0,
                "backoff_base_s": 1.0,
                "backoff_max_s": 30.0,
            },
            "storage": {"base_dir": str(tmp_path / "store")},
            "usage": {"db_path": str(tmp_path / "usage.db")},
        }
        return _merge(raw, copy.deepcopy(sections))

    return factory


@pytest.fixture
def make_settings(make_raw_settings):
    from tts_player.core.config import Settings

    def factory(**sections: Any):
        return Settings(raw=make_raw_settings(**sections))

    return factory


def long_text(sentences: int = 200) -> str:
    """45 characters per sentence, 9000 characters for the default count."""
    return "".join("The quick brown fox jumps over the lazy dog. " for _ in range(sentences))

"""
Temp Storage for Generation Requests.

Every request gets an exclusive working directory that holds its chunk
files, the concat list and the merged output. The directory is removed on
every exit path of ``TempStore.scope()``; only the final artifact survives,
moved out with ``RequestScope.keep()``.

Layout:
    {base_dir}/
        work/
            <request_id>/
                chunk_0000.mp3
                chunk_0001.mp3
                concat.txt
                merged.mp3
        artifacts/
            <request_id>-<uuid>.mp3

Stale-File Sweep:
    Working directories left behind by a crashed process are removed by
    StaleFileSweeper once older than ``stale_after_seconds``; artifacts
    are removed once older than ``artifact_ttl_seconds``. A blocking sweep
    runs when the store is created; after that ``maybe_sweep()`` runs one
    in a background thread at most once per ``sweep_interval_seconds``.
    Directories of active scopes are never swept.

Usage:
    store = TempStore(base_dir="/tmp/tts-player")

    with store.scope(request_id) as scope:
        scope.write_chunk(0, audio_bytes)
        merged = assembler.assemble(paths, scope.work_path("merged.mp3"))
        final = scope.keep(merged)
    # working directory is gone here; `final` lives under artifacts/
"""
from __future__ import annotations

import os
import shutil
import threading
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional, Set

from tts_player.core.config import Defaults
from tts_player.core.logging import get_logger, info, verbose, warn
from tts_player.utils.timeit import timeit

_LOG = get_logger("tts-player.storage")


def _entry_size(path: Path) -> int:
    if path.is_file():
        return path.stat().st_size
    total = 0
    for child in path.rglob("*"):
        try:
            if child.is_file():
                total += child.stat().st_size
        except OSError:
            continue
    return total


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


class StaleFileSweeper:
    """
    Removes direct children of ``root`` older than ``max_age_seconds``.

    Thread-safe; at most one sweep runs at a time.
    """

    def __init__(
        self,
        root: str | Path,
        max_age_seconds: int,
        interval_seconds: int = Defaults.STORAGE_SWEEP_INTERVAL_SECONDS,
        exclude: Optional[Callable[[Path], bool]] = None,
    ):
        self._root = Path(root)
        self._max_age = max_age_seconds
        self._interval = interval_seconds
        self._exclude = exclude or (lambda _p: False)
        self._last_sweep = 0.0
        self._lock = threading.Lock()
        self._sweep_running = False

        self._stats_lock = threading.Lock()
        self._total_removed = 0
        self._total_bytes_freed = 0

    @property
    def root(self) -> Path:
        return self._root

    @property
    def max_age_seconds(self) -> int:
        return self._max_age

    def maybe_sweep(self) -> bool:
        """
        Start a background sweep if the interval has elapsed.

        Returns:
            True if a sweep thread was started.
        """
        now = time.time()
        with self._lock:
            if now - self._last_sweep < self._interval or self._sweep_running:
                return False
            self._sweep_running = True
            self._last_sweep = now

        threading.Thread(
            target=self._do_sweep,
            daemon=True,
            name="tts-player-sweep",
        ).start()
        return True

    def force_sweep(self) -> Dict[str, int]:
        """Sweep now (blocking). Returns 'removed' and 'bytes_freed'."""
        with self._lock:
            self._sweep_running = True
            self._last_sweep = time.time()
        return self._do_sweep()

    def _do_sweep(self) -> Dict[str, int]:
        try:
            if not self._root.exists():
                return {"removed": 0, "bytes_freed": 0}

            cutoff = time.time() - self._max_age
            removed = 0
            bytes_freed = 0
            errors = 0

            for entry in self._root.iterdir():
                if self._exclude(entry):
                    continue
                try:
                    st = entry.stat()
                    if st.st_mtime >= cutoff:
                        continue
                    size = _entry_size(entry)
                    _remove(entry)
                    removed += 1
                    bytes_freed += size
                except OSError as e:
                    errors += 1
                    verbose(_LOG, "sweep_entry_error", path=str(entry), error=str(e))

            with self._stats_lock:
                self._total_removed += removed
                self._total_bytes_freed += bytes_freed

            if removed > 0 or errors > 0:
                info(_LOG, "stale_sweep", root=str(self._root), removed=removed,
                     bytes_freed=bytes_freed, errors=errors)

            return {"removed": removed, "bytes_freed": bytes_freed}

        finally:
            with self._lock:
                self._sweep_running = False

    def get_stats(self) -> Dict[str, int]:
        with self._stats_lock:
            return {
                "total_removed": self._total_removed,
                "total_bytes_freed": self._total_bytes_freed,
            }

    def get_storage_info(self) -> Dict[str, Any]:
        """File count, total bytes and oldest entry age under root."""
        if not self._root.exists():
            return {"entries": 0, "total_bytes": 0, "oldest_age_s": 0}

        entries = 0
        total_bytes = 0
        oldest_mtime = time.time()
        try:
            for entry in self._root.iterdir():
                try:
                    st = entry.stat()
                except OSError:
                    continue
                entries += 1
                total_bytes += _entry_size(entry)
                oldest_mtime = min(oldest_mtime, st.st_mtime)
        except OSError as e:
            warn(_LOG, "storage_info_error", root=str(self._root), error=str(e))

        return {
            "entries": entries,
            "total_bytes": total_bytes,
            "oldest_age_s": int(time.time() - oldest_mtime) if entries else 0,
        }


class RequestScope:
    """Working directory of one generation request."""

    def __init__(self, request_id: str, work_dir: Path, artifacts_dir: Path, audio_suffix: str):
        self.request_id = request_id
        self.work_dir = work_dir
        self._artifacts_dir = artifacts_dir
        self._suffix = audio_suffix

    def chunk_path(self, index: int) -> Path:
        return self.work_dir / f"chunk_{index:04d}{self._suffix}"

    def work_path(self, name: str) -> Path:
        """Path for an intermediate file inside the working directory."""
        return self.work_dir / name

    def write_chunk(self, index: int, data: bytes) -> Path:
        """
        Write one chunk's audio atomically.

        Write to a temp file then rename, so a reader never sees a partial
        chunk file.
        """
        path = self.chunk_path(index)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_bytes(data)
        os.replace(tmp, path)
        return path

    def keep(self, path: str | Path) -> Path:
        """
        Move the final artifact out of the working directory.

        The returned path is owned by the caller and survives scope exit
        (until the artifact TTL sweep).
        """
        src = Path(path)
        self._artifacts_dir.mkdir(parents=True, exist_ok=True)
        dest = self._artifacts_dir / f"{self.request_id}-{uuid.uuid4().hex[:8]}{src.suffix or self._suffix}"
        try:
            os.replace(src, dest)
        except OSError:
            # Cross-device move
            shutil.move(str(src), str(dest))
        return dest


class TempStore:
    """
    Scoped lifecycle manager for intermediate and final audio files.

    Thread-safe; scopes of concurrent requests never share a directory.
    """

    def __init__(
        self,
        base_dir: str | Path = Defaults.STORAGE_BASE_DIR,
        stale_after_seconds: int = Defaults.STORAGE_STALE_AFTER_SECONDS,
        artifact_ttl_seconds: int = Defaults.STORAGE_ARTIFACT_TTL_SECONDS,
        sweep_interval_seconds: int = Defaults.STORAGE_SWEEP_INTERVAL_SECONDS,
        audio_suffix: str = ".mp3",
    ):
        self.base_dir = Path(base_dir)
        self.work_root = self.base_dir / "work"
        self.artifacts_dir = self.base_dir / "artifacts"
        self.audio_suffix = audio_suffix if audio_suffix.startswith(".") else f".{audio_suffix}"

        self.work_root.mkdir(parents=True, exist_ok=True)
        self.artifacts_dir.mkdir(parents=True, exist_ok=True)

        self._active_lock = threading.Lock()
        self._active: Set[Path] = set()

        self._work_sweeper = StaleFileSweeper(
            self.work_root,
            max_age_seconds=stale_after_seconds,
            interval_seconds=sweep_interval_seconds,
            exclude=self._is_active,
        )
        self._artifact_sweeper = StaleFileSweeper(
            self.artifacts_dir,
            max_age_seconds=artifact_ttl_seconds,
            interval_seconds=sweep_interval_seconds,
        )

        self.startup_sweep()

    def _is_active(self, path: Path) -> bool:
        with self._active_lock:
            return path in self._active

    @property
    def active_scopes(self) -> int:
        with self._active_lock:
            return len(self._active)

    def startup_sweep(self) -> Dict[str, int]:
        """Blocking sweep of orphaned working dirs and expired artifacts."""
        with timeit("startup_sweep") as t:
            work = self._work_sweeper.force_sweep()
            artifacts = self._artifact_sweeper.force_sweep()
        verbose(_LOG, "stage", event="startup_sweep", seconds=round(t.seconds, 4),
                work_removed=work["removed"], artifacts_removed=artifacts["removed"])
        return {
            "removed": work["removed"] + artifacts["removed"],
            "bytes_freed": work["bytes_freed"] + artifacts["bytes_freed"],
        }

    def maybe_sweep(self) -> None:
        """Non-blocking; each sweeper runs at most once per interval."""
        self._work_sweeper.maybe_sweep()
        self._artifact_sweeper.maybe_sweep()

    @contextmanager
    def scope(self, request_id: str) -> Iterator[RequestScope]:
        """
        Exclusive working directory for one request.

        Raises:
            FileExistsError: If the request id already has a directory.
        """
        work_dir = self.work_root / request_id
        work_dir.mkdir(parents=True, exist_ok=False)
        with self._active_lock:
            self._active.add(work_dir)
        verbose(_LOG, "scope_open", request=request_id)
        try:
            yield RequestScope(request_id, work_dir, self.artifacts_dir, self.audio_suffix)
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)
            with self._active_lock:
                self._active.discard(work_dir)
            if work_dir.exists():
                warn(_LOG, "scope_cleanup_incomplete", request=request_id, path=str(work_dir))
            else:
                verbose(_LOG, "scope_closed", request=request_id)

    def get_storage_info(self) -> Dict[str, Any]:
        return {
            "base_dir": str(self.base_dir),
            "active_scopes": self.active_scopes,
            "work": self._work_sweeper.get_storage_info(),
            "artifacts": self._artifact_sweeper.get_storage_info(),
            "swept": {
                "work": self._work_sweeper.get_stats(),
                "artifacts": self._artifact_sweeper.get_stats(),
            },
        }

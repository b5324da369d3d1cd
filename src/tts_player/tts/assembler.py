"""
Audio Assembly via ffmpeg Remux.

Chunk files are compressed frames in a container, so they are merged with
the ffmpeg concat demuxer and stream copy rather than by byte
concatenation:

    ffmpeg -hide_banner -loglevel error -f concat -safe 0 -i concat.txt -c copy -y merged.mp3

A single chunk is returned unchanged. There is no fallback: if ffmpeg is
missing or fails, the request fails with AssemblyError.

Usage:
    assembler = AudioAssembler(ffmpeg_path="ffmpeg", timeout_s=120)
    merged = assembler.assemble([chunk0, chunk1, chunk2], scope.work_path("merged.mp3"))
    seconds = estimate_duration(merged, bitrate_kbps=128)
"""
from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

from tts_player.core.config import Defaults
from tts_player.core.errors import AssemblyError
from tts_player.core.logging import fail, get_logger, verbose
from tts_player.utils.timeit import timeit

_LOG = get_logger("tts-player.assembler")

CONCAT_LIST_NAME = "concat.txt"


def _ffconcat_line(path: str) -> str:
    """One ffconcat input line with the path quoted for the demuxer."""
    escaped = path.replace("\\", "\\\\").replace("'", "'\\''")
    return f"file '{escaped}'\n"


def estimate_duration(path_or_size: str | Path | int, bitrate_kbps: int = Defaults.ASSEMBLY_BITRATE_KBPS) -> float:
    """
    Estimate playback seconds of a constant-bitrate file from its size.

    Args:
        path_or_size: Audio file path or its size in bytes.
        bitrate_kbps: Encoding bitrate (upstream MP3 is 128 kbps).
    """
    if bitrate_kbps <= 0:
        raise ValueError(f"bitrate_kbps must be positive, got {bitrate_kbps}")
    size = path_or_size if isinstance(path_or_size, int) else Path(path_or_size).stat().st_size
    return round(size * 8 / (bitrate_kbps * 1000), 2)


class AudioAssembler:
    """Merges ordered chunk files into one artifact."""

    def __init__(
        self,
        ffmpeg_path: str = Defaults.ASSEMBLY_FFMPEG_PATH,
        timeout_s: float = Defaults.ASSEMBLY_TIMEOUT_S,
        loglevel: str = Defaults.ASSEMBLY_LOGLEVEL,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.timeout_s = timeout_s
        self.loglevel = loglevel

    def resolve_ffmpeg(self) -> Optional[str]:
        """Absolute ffmpeg path, or None if it is not installed."""
        return shutil.which(self.ffmpeg_path)

    def build_command(self, ffmpeg: str, list_path: Path, output_path: Path) -> List[str]:
        return [
            ffmpeg,
            "-hide_banner",
            "-loglevel", self.loglevel,
            "-f", "concat",
            "-safe", "0",
            "-i", str(list_path),
            "-c", "copy",
            "-y",
            str(output_path),
        ]

    def assemble(self, paths: Sequence[str | Path], output_path: str | Path) -> Path:
        """
        Merge chunk files in the given order.

        Args:
            paths: Chunk files ordered by chunk index.
            output_path: Where to write the merged file.

        Returns:
            The merged file, or the only input when there is one chunk.

        Raises:
            AssemblyError: No inputs, ffmpeg missing, non-zero exit,
                timeout, or missing/empty output.
        """
        if not paths:
            raise AssemblyError("no audio chunks to assemble")

        if len(paths) == 1:
            return Path(paths[0])

        ffmpeg = self.resolve_ffmpeg()
        if ffmpeg is None:
            fail(_LOG, "ffmpeg_missing", ffmpeg_path=self.ffmpeg_path)
            raise AssemblyError(f"ffmpeg not found: {self.ffmpeg_path}")

        output = Path(output_path)
        list_path = output.parent / CONCAT_LIST_NAME
        list_path.write_text(
            "".join(_ffconcat_line(str(Path(p).resolve())) for p in paths),
            encoding="utf-8",
        )

        cmd = self.build_command(ffmpeg, list_path, output)
        with timeit("assemble") as t:
            try:
                proc = subprocess.run(
                    cmd,
                    capture_output=True,
                    text=True,
                    timeout=self.timeout_s,
                    check=False,
                )
            except subprocess.TimeoutExpired as e:
                fail(_LOG, "ffmpeg_timeout", timeout_s=self.timeout_s)
                raise AssemblyError(f"ffmpeg timed out after {self.timeout_s}s") from e
            except OSError as e:
                fail(_LOG, "ffmpeg_exec_error", error=str(e))
                raise AssemblyError(f"ffmpeg could not be started: {e}") from e

        if proc.returncode != 0:
            stderr = (proc.stderr or "").strip()[-1000:]
            fail(_LOG, "ffmpeg_failed", returncode=proc.returncode, stderr=stderr)
            raise AssemblyError(
                f"ffmpeg exited with code {proc.returncode}",
                details={"returncode": proc.returncode, "stderr": stderr},
            )

        if not output.exists() or output.stat().st_size == 0:
            fail(_LOG, "ffmpeg_empty_output", output=str(output))
            raise AssemblyError("ffmpeg produced no output")

        verbose(_LOG, "stage", event="assemble", chunks=len(paths),
                bytes=output.stat().st_size, seconds=round(t.seconds, 4))
        return output

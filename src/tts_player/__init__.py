"""
tts-player: Chunked Text-to-Speech Generation.

Turns text of any length into one playable audio file by splitting it into
request-sized chunks, generating each chunk against a rate-limited,
authenticated TTS API and remuxing the pieces with ffmpeg.

Key Features:
    - Sentence-aligned chunking under the upstream character ceiling
    - Bounded concurrent generation with retry, backoff and shared 429 pauses
    - Ordered, container-aware assembly (ffmpeg concat demuxer)
    - Character quota ledger in SQLite
    - Scoped temp storage with stale-file sweeps
    - HTTP API (native + OpenAI-compatible), CLI and Prometheus metrics

Example Usage:
    >>> from tts_player.core.config import load_settings
    >>> from tts_player.services import SpeechService
    >>>
    >>> service = SpeechService(load_settings())
    >>> path = service.generate_speech(open("article.txt").read(), "nova")
"""

__version__ = "0.1.0"
__all__ = ["__version__"]

"""
Text Chunking for the Upstream Character Ceiling.

The upstream API rejects requests above a fixed character count, so long
text is split into chunks that are each sent as one request.

Strategy:
    1. Cut the text after every sentence terminator (. ! ? …) that is
       followed by whitespace, and after every newline. Whitespace after a
       terminator stays with the sentence before it.
    2. Pack sentences greedily into the current chunk while it stays within
       max_chars; otherwise close it and start a new one.
    3. A sentence longer than max_chars is hard-split at the last whitespace
       at or below the limit. An unbroken token longer than the limit is cut
       at the limit, moved back so combining marks stay with their base.
    4. Seam whitespace is trimmed from each chunk; blank chunks are dropped.

Every chunk records ``start``/``end`` offsets with
``text[start:end] == chunk.content``; only whitespace lies between
consecutive chunks, so joining the chunks reproduces the text up to that
seam whitespace.

Example:
    >>> result = chunk_text("First sentence. Second one! Third?", max_chars=20)
    >>> [c.content for c in result.chunks]
    ['First sentence.', 'Second one! Third?']
"""
from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Dict, List, Tuple

from tts_player.core.config import Defaults
from tts_player.core.logging import get_logger, verbose
from tts_player.utils.timeit import timeit

_LOG = get_logger("tts-player.chunker")

# Sentence terminator run followed by whitespace/end, or a bare newline,
# plus any whitespace that follows
_SENTENCE_END = re.compile(r"(?:[.!?…]+(?=\s|$)|\n)\s*", re.UNICODE)

# Characters that must not start a chunk in a hard cut
_JOINERS = {"\u200d", "\ufe0f", "\ufe0e"}

Span = Tuple[int, int]


@dataclass(frozen=True)
class TextChunk:
    """
    One request-sized piece of the input text.

    Attributes:
        index: 0-based position; indices are contiguous.
        content: Chunk text with seam whitespace trimmed.
        char_length: len(content), always <= max_chars.
        start: Offset of content in the source text.
        end: End offset (exclusive) of content in the source text.
    """
    index: int
    content: str
    char_length: int
    start: int
    end: int


@dataclass
class ChunkingResult:
    """
    Result of chunk_text().

    Attributes:
        chunks: Ordered chunks ready for generation.
        timings_s: Timing measurements in seconds.
    """
    chunks: List[TextChunk]
    timings_s: Dict[str, float]

    @property
    def total_chars(self) -> int:
        return sum(c.char_length for c in self.chunks)


def count_characters(text: str) -> int:
    """Characters as billed by the upstream API (code points)."""
    return len(text)


def _trim(text: str, start: int, end: int) -> Span:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return start, end


def _sentence_spans(text: str) -> List[Span]:
    spans: List[Span] = []
    start = 0
    for match in _SENTENCE_END.finditer(text):
        end = match.end()
        if end > start:
            spans.append((start, end))
            start = end
    if start < len(text):
        spans.append((start, len(text)))
    return spans


def _is_unsafe_cut(text: str, pos: int) -> bool:
    ch = text[pos]
    return bool(unicodedata.combining(ch)) or ch in _JOINERS or text[pos - 1] == "\u200d"


def _hard_split(text: str, start: int, end: int, max_chars: int) -> List[Span]:
    """Split an over-long trimmed span; the last piece may still grow."""
    pieces: List[Span] = []
    while end - start > max_chars:
        limit = start + max_chars
        cut = None
        for i in range(limit, start, -1):
            if text[i].isspace():
                cut = i
                break
        if cut is None:
            cut = limit
            while cut > start + 1 and _is_unsafe_cut(text, cut):
                cut -= 1
        pieces.append((start, cut))
        start = cut
        while start < end and text[start].isspace():
            start += 1
    pieces.append((start, end))
    return pieces


def chunk_text(text: str, max_chars: int = Defaults.CHUNKING_MAX_CHARS) -> ChunkingResult:
    """
    Split text into sentence-aligned chunks of at most max_chars characters.

    Args:
        text: Input text. Blank text yields zero chunks.
        max_chars: Maximum characters per chunk.

    Returns:
        ChunkingResult with ordered TextChunks.

    Raises:
        ValueError: If max_chars is not positive.
    """
    if max_chars <= 0:
        raise ValueError(f"max_chars must be positive, got {max_chars}")

    timings: Dict[str, float] = {}

    with timeit("chunk") as t:
        packed: List[Span] = []
        current: Span | None = None

        for start, end in _sentence_spans(text):
            if current is not None:
                ts, te = _trim(text, current[0], end)
                if te - ts <= max_chars:
                    current = (current[0], end)
                    continue
                packed.append(current)
                current = None

            ts, te = _trim(text, start, end)
            if te - ts <= max_chars:
                current = (start, end)
            else:
                pieces = _hard_split(text, ts, te, max_chars)
                packed.extend(pieces[:-1])
                current = pieces[-1]

        if current is not None:
            packed.append(current)

        chunks: List[TextChunk] = []
        for start, end in packed:
            ts, te = _trim(text, start, end)
            if te <= ts:
                continue
            content = text[ts:te]
            chunks.append(TextChunk(
                index=len(chunks),
                content=content,
                char_length=len(content),
                start=ts,
                end=te,
            ))

    timings["chunk"] = t.seconds
    verbose(_LOG, "chunked", chunks=len(chunks), chars=len(text), max_chars=max_chars,
            seconds=round(timings["chunk"], 4))

    return ChunkingResult(chunks=chunks, timings_s=timings)

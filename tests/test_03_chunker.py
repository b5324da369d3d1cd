"""Tests for sentence-aligned chunking under the character ceiling."""
from __future__ import annotations

import unicodedata

import pytest

from conftest import long_text
from tts_player.tts.chunker import chunk_text, count_characters


def _assert_offsets(text, result):
    for chunk in result.chunks:
        assert text[chunk.start:chunk.end] == chunk.content
        assert chunk.char_length == len(chunk.content)
    for prev, nxt in zip(result.chunks, result.chunks[1:]):
        # Only seam whitespace lies between consecutive chunks
        assert text[prev.end:nxt.start].strip() == ""


class TestChunkBasics:
    """Packing, ceilings and indices."""

    def test_short_text_single_chunk(self):
        result = chunk_text("Hello there. How are you?", max_chars=3800)
        assert len(result.chunks) == 1
        assert result.chunks[0].content == "Hello there. How are you?"
        assert result.chunks[0].index == 0

    def test_sentences_packed_greedily(self):
        """Sentences are joined while the chunk stays within max_chars."""
        result = chunk_text("First sentence. Second one! Third?", max_chars=20)
        assert [c.content for c in result.chunks] == ["First sentence.", "Second one! Third?"]

    def test_9000_chars_make_three_chunks(self):
        """A 9000-character article under a 4000 ceiling needs three requests."""
        text = long_text(200)
        assert count_characters(text) == 9000

        result = chunk_text(text, max_chars=4000)
        assert len(result.chunks) == 3
        assert [c.index for c in result.chunks] == [0, 1, 2]
        assert all(c.char_length <= 4000 for c in result.chunks)
        # Chunks end on sentence boundaries
        assert all(c.content.endswith(".") for c in result.chunks)

    def test_round_trip_up_to_seam_whitespace(self):
        text = long_text(200)
        result = chunk_text(text, max_chars=4000)
        assert " ".join(c.content for c in result.chunks) == text.strip()
        _assert_offsets(text, result)

    def test_deterministic(self):
        text = long_text(120) + "\nA closing line without a full stop"
        first = chunk_text(text, max_chars=500)
        second = chunk_text(text, max_chars=500)
        assert first.chunks == second.chunks

    def test_newline_is_a_boundary(self):
        result = chunk_text("Line one\nLine two", max_chars=10)
        assert [c.content for c in result.chunks] == ["Line one", "Line two"]

    def test_blank_text_yields_no_chunks(self):
        assert chunk_text("   \n\t ").chunks == []
        assert chunk_text("").chunks == []

    def test_invalid_max_chars(self):
        with pytest.raises(ValueError):
            chunk_text("Hello.", max_chars=0)

    def test_total_chars_and_timing(self):
        result = chunk_text("One. Two. Three.", max_chars=5)
        assert result.total_chars == sum(len(c.content) for c in result.chunks)
        assert result.timings_s["chunk"] >= 0


class TestHardSplit:
    """Sentences longer than the ceiling."""

    def test_long_sentence_split_at_whitespace(self):
        text = "alpha beta gamma delta epsilon zeta eta theta"
        result = chunk_text(text, max_chars=12)
        assert all(c.char_length <= 12 for c in result.chunks)
        # No word is cut in half
        assert " ".join(c.content for c in result.chunks).split() == text.split()
        _assert_offsets(text, result)

    def test_unbroken_token_cut_at_limit(self):
        result = chunk_text("a" * 25, max_chars=10)
        assert [c.char_length for c in result.chunks] == [10, 10, 5]

    def test_combining_marks_stay_with_base(self):
        """A hard cut never separates a combining accent from its letter."""
        text = "e\u0301" * 10
        result = chunk_text(text, max_chars=5)
        assert "".join(c.content for c in result.chunks) == text
        for chunk in result.chunks:
            assert chunk.char_length <= 5
            assert not unicodedata.combining(chunk.content[0])

    def test_zwj_sequence_kept_whole(self):
        """A hard cut never lands right after a zero-width joiner."""
        family = "\U0001F468\u200d\U0001F469\u200d\U0001F467"
        text = family * 4
        result = chunk_text(text, max_chars=6)
        assert [c.content for c in result.chunks] == [family] * 4

    def test_multibyte_counted_as_code_points(self):
        text = "日本語のテキストです" * 3
        result = chunk_text(text, max_chars=8)
        assert all(c.char_length <= 8 for c in result.chunks)
        assert "".join(c.content for c in result.chunks) == text


class TestCountCharacters:

    def test_code_points(self):
        assert count_characters("héllo") == 5
        assert count_characters("日本語") == 3
        assert count_characters("") == 0

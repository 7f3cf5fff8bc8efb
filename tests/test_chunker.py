"""Tests for gemrelay/proxy/chunker.py: fake-stream text splitting."""

import unicodedata

import pytest

from gemrelay.proxy.chunker import ZWJ, split_text


SAMPLE = (
    "The quick brown fox jumps over the lazy dog. Pack my box with five dozen "
    "liquor jugs! How vexingly quick daft zebras jump; sphinx of black quartz, "
    "judge my vow."
)


class TestSplitText:

    @pytest.mark.parametrize("text", [
        SAMPLE,
        "ab",
        "x" * 500,
        "日本語のテキストを分割します。これは二つ目の文です。",
        "emoji \U0001F469\u200d\U0001F469\u200d\U0001F467 family and more words after it to split",
    ])
    def test_join_reproduces_input(self, text):
        assert "".join(split_text(text)) == text

    def test_empty(self):
        assert split_text("") == []

    def test_single_char(self):
        assert split_text("a") == ["a"]

    def test_at_least_two_chunks(self):
        assert len(split_text("hello there")) >= 2

    def test_respects_max_chunks(self):
        assert len(split_text("word " * 200, max_chunks=8)) <= 8

    def test_chunk_count_from_min_size(self):
        text = "word " * 20  # 100 chars
        assert len(split_text(text, max_chunks=8, min_chunk_chars=20)) == 5

    def test_prefers_whitespace_boundaries(self):
        pieces = split_text(SAMPLE, max_chunks=4)
        for piece in pieces[:-1]:
            last = piece[-1]
            assert last.isspace() or unicodedata.category(last).startswith("P")

    def test_never_splits_combining_marks(self):
        text = "e\u0301" * 60
        for piece in split_text(text, max_chunks=8, min_chunk_chars=10)[1:]:
            assert not unicodedata.category(piece[0]).startswith("M")

    def test_never_splits_zwj_sequence(self):
        family = f"\U0001F469{ZWJ}\U0001F469{ZWJ}\U0001F467"
        text = family * 30
        for piece in split_text(text, max_chunks=8, min_chunk_chars=5):
            assert not piece.startswith(ZWJ)
            assert not piece.endswith(ZWJ)

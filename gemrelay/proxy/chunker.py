"""Split buffered text into paced pieces for fake streaming.

Cuts are made on code points (never inside a UTF-8 sequence), prefer a
position just after whitespace or punctuation, and never separate a base
character from combining marks or a zero-width-joiner sequence.
"""

import unicodedata

ZWJ = "\u200d"


def _is_boundary(char: str) -> bool:
    return char.isspace() or unicodedata.category(char).startswith("P")


def _splits_cluster(text: str, pos: int) -> bool:
    """True if cutting before text[pos] would break a grapheme-like cluster."""
    char = text[pos]
    return (
        unicodedata.category(char).startswith("M")
        or char == ZWJ
        or text[pos - 1] == ZWJ
    )


def _find_cut(text: str, ideal: int, lo: int, hi: int, window: int) -> int | None:
    """Pick a cut position in [lo, hi] near ideal, or None if there is none."""
    # Backward first: the cut lands right after a boundary character
    for pos in range(ideal, max(lo, ideal - window) - 1, -1):
        if _is_boundary(text[pos - 1]) and not _splits_cluster(text, pos):
            return pos
    for pos in range(ideal + 1, min(hi, ideal + window) + 1):
        if _is_boundary(text[pos - 1]) and not _splits_cluster(text, pos):
            return pos

    # No boundary nearby: cut at the ideal point, nudged off any cluster
    for pos in range(ideal, hi + 1):
        if not _splits_cluster(text, pos):
            return pos
    for pos in range(ideal - 1, lo - 1, -1):
        if not _splits_cluster(text, pos):
            return pos
    return None


def split_text(text: str, max_chunks: int = 8, min_chunk_chars: int = 20) -> list[str]:
    """Split text into roughly even pieces; "".join(result) == text.

    Produces min(max_chunks, len(text) // min_chunk_chars) pieces, but at
    least two whenever the text has two or more code points and a safe cut
    exists.
    """
    length = len(text)
    if length < 2:
        return [text] if text else []

    count = max(2, min(max_chunks, length // max(1, min_chunk_chars)))
    count = min(count, length)
    target = length / count
    window = max(1, int(target // 2))

    cuts: list[int] = []
    prev = 0
    for i in range(1, count):
        ideal = min(max(round(i * target), prev + 1), length - 1)
        cut = _find_cut(text, ideal, lo=prev + 1, hi=length - 1, window=window)
        if cut is None or cut <= prev:
            continue
        cuts.append(cut)
        prev = cut

    bounds = [0, *cuts, length]
    return [text[start:end] for start, end in zip(bounds, bounds[1:])]

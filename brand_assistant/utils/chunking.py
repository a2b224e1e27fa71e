"""Utilities for splitting documents into overlapping, sentence-aligned chunks."""

from __future__ import annotations

from typing import List

from ..models import Chunk

DEFAULT_CHUNK_SIZE = 500
DEFAULT_CHUNK_OVERLAP = 50
LOOKAHEAD = 50
MIN_CUT_RATIO = 0.5

SENTENCE_ENDINGS = (". ", "! ", "? ", ".\n", "!\n", "?\n")


def _find_sentence_end(window: str, max_length: int) -> int:
    """Return the cut position just after the last sentence terminator.

    Only terminators starting at or before ``max_length`` are considered. When
    none is found ``max_length`` is returned unchanged.
    """

    last_end = -1
    for ending in SENTENCE_ENDINGS:
        pos = window.rfind(ending, 0, max_length + len(ending))
        if pos != -1 and pos + 1 > last_end:
            last_end = pos + 1  # keep the punctuation
    return last_end if last_end > 0 else max_length


def chunk_text(
    text: str,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> List[Chunk]:
    """Split ``text`` into overlapping chunks for embedding.

    Whitespace is collapsed first. Windows of ``chunk_size`` characters are
    shortened to the nearest sentence boundary within a small lookahead as long
    as the chunk keeps at least half its nominal size, and every window starts
    ``overlap`` characters before the end of the previous one.
    """

    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if overlap < 0 or overlap >= chunk_size:
        raise ValueError("overlap must be in the range [0, chunk_size)")

    cleaned = " ".join(text.split())
    if not cleaned:
        return []
    if len(cleaned) <= chunk_size:
        return [Chunk(content=cleaned, index=0)]

    chunks: List[Chunk] = []
    start = 0
    while start < len(cleaned):
        end = start + chunk_size

        if end < len(cleaned):
            window = cleaned[start : end + LOOKAHEAD]
            sentence_end = _find_sentence_end(window, chunk_size)
            if sentence_end > chunk_size * MIN_CUT_RATIO:
                end = start + sentence_end

        content = cleaned[start:end].strip()
        if content:
            chunks.append(Chunk(content=content, index=len(chunks)))

        start = max(end - overlap, start + 1)
        if start >= len(cleaned) - overlap:
            break

    return chunks


def generate_chunk_id(source_id: str, chunk_index: int) -> str:
    """Build the storage identifier of one chunk of a source document."""

    return f"{source_id}_chunk_{chunk_index}"

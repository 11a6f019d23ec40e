"""
Text Chunker
-------------
Splits a document (DDL file, markdown notes, plain text) into overlapping
character windows ready for embedding.

Window selection:
  - Whitespace is collapsed first, so offsets refer to the normalised text.
  - A window is at most `chunk_size` characters.  It ends right after the
    last sentence terminator (. ! ?) inside the window when that terminator
    lies past the window midpoint; otherwise at the last space; otherwise
    it is cut hard at `chunk_size`.
  - The next window starts `chunk_overlap` characters before the previous
    end so that statements spanning a boundary appear in both chunks.

The cursor is tracked as an offset, never recovered by searching for chunk
text, so repeated passages in a document cannot stall the scan.
"""
from __future__ import annotations

from typing import Iterator

from loguru import logger

from codegen_rag.utils.helpers import normalize_whitespace

# ── Constants ─────────────────────────────────────────────────────────────────

CHUNK_SIZE = 1000            # Characters per chunk
CHUNK_OVERLAP = 200          # Characters shared by adjacent chunks
SENTENCE_TERMINATORS = ".!?"


class TextChunker:
    """
    Deterministic character-window chunker.

    Usage:
        chunker = TextChunker()
        chunks = chunker.chunk(ddl_text)
    """

    def __init__(self, chunk_size: int = CHUNK_SIZE, chunk_overlap: int = CHUNK_OVERLAP) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if not 0 <= chunk_overlap < chunk_size:
            raise ValueError(
                f"chunk_overlap must be in [0, chunk_size), got {chunk_overlap}"
            )
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def chunk(self, text: str) -> list[str]:
        """Return the chunk strings for `text` in document order."""
        normalized = normalize_whitespace(text)
        chunks = [
            piece
            for piece in (normalized[start:end].strip() for start, end in self._spans(normalized))
            if piece
        ]
        logger.debug(
            f"[Chunker] {len(normalized)} chars -> {len(chunks)} chunk(s) "
            f"(size={self.chunk_size}, overlap={self.chunk_overlap})"
        )
        return chunks

    def spans(self, text: str) -> list[tuple[int, int]]:
        """(start, end) offsets of every window, relative to the normalised text."""
        return list(self._spans(normalize_whitespace(text)))

    def _spans(self, normalized: str) -> Iterator[tuple[int, int]]:
        length = len(normalized)
        if length == 0:
            return
        if length <= self.chunk_size:
            yield 0, length
            return

        start = 0
        while start < length:
            end = min(start + self.chunk_size, length)
            if end < length:
                end = self._break_point(normalized, start, end)

            yield start, end
            if end >= length:
                break

            # Always advance past the current start
            next_start = end - self.chunk_overlap
            start = next_start if next_start > start else end

    def _break_point(self, text: str, start: int, end: int) -> int:
        window = text[start:end]

        sentence_end = max(window.rfind(ch) for ch in SENTENCE_TERMINATORS)
        if sentence_end > self.chunk_size / 2:
            return start + sentence_end + 1

        space = window.rfind(" ")
        if space > 0:
            return start + space

        return end

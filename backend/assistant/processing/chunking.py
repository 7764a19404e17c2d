"""
Sentence Chunker  —  Token-Bounded Segmentation with Word Overlap
══════════════════════════════════════════════════════════════════

Algorithm
─────────
  1. Split the text into sentence-like units on runs of `.`, `!` or `?`
     and drop units that are blank.
  2. Append units to a running buffer (each prefixed with one space) while
     the running token estimate stays within `chunk_size_tokens`.
  3. When the next unit would overflow a non-empty buffer, emit the
     buffer (stripped) and start the next buffer with the last
     `overlap_tokens` space-separated words of the emitted buffer,
     followed by the new unit.
  4. Emit whatever remains at the end.

Token estimate
──────────────
  ceil(len(text) / 4). This is the same heuristic used for every token
  count in the ingestion path and is intentionally not a real tokenizer,
  so chunk boundaries stay reproducible across model changes.

Known limitation
────────────────
  A single unit larger than `chunk_size_tokens` is emitted whole as its own
  chunk. Units are never split mid-sentence.

The chunker is pure and deterministic: the same input and parameters always
produce the same boundaries and indices.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration constants
# ---------------------------------------------------------------------------

DEFAULT_CHUNK_SIZE_TOKENS   = 500
DEFAULT_CHUNK_OVERLAP_TOKENS = 50
CHARS_PER_TOKEN_EST = 4

_SENTENCE_BOUNDARY_RE = re.compile(r"[.!?]+")


def estimate_tokens(text: str) -> int:
    """Estimated token count: ceil(len(text) / 4)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN_EST)


def _split_sentences(text: str) -> list[str]:
    return [unit for unit in _SENTENCE_BOUNDARY_RE.split(text) if unit.strip()]


def _overlap_words(buffer: str, overlap_tokens: int) -> str:
    """Trailing `overlap_tokens` space-separated words of the buffer."""
    if overlap_tokens <= 0:
        return ""
    words = buffer.split(" ")
    return " ".join(words[-min(overlap_tokens, len(words)):])


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------

@dataclass
class ChunkResult:
    """
    One chunk ready for embedding and persistence.

    tokens is the running estimate accumulated while the chunk was built.
    embedding stays None until the embedding step fills it in.
    """
    chunk_index: int
    content:     str
    tokens:      int
    metadata:    dict = field(default_factory=dict)
    embedding:   list[float] | None = None


# ---------------------------------------------------------------------------
# Chunker
# ---------------------------------------------------------------------------

class TextChunker:
    """
    Stateless sentence chunker.

    Usage:
        chunker = TextChunker(chunk_size_tokens=500, overlap_tokens=50)
        chunks  = chunker.chunk(text, metadata={"document_id": "..."})
    """

    def __init__(
        self,
        chunk_size_tokens: int = DEFAULT_CHUNK_SIZE_TOKENS,
        overlap_tokens:    int = DEFAULT_CHUNK_OVERLAP_TOKENS,
    ) -> None:
        if chunk_size_tokens <= 0:
            raise ValueError("chunk_size_tokens must be positive")
        if overlap_tokens < 0:
            raise ValueError("overlap_tokens must not be negative")
        self.chunk_size_tokens = chunk_size_tokens
        self.overlap_tokens    = overlap_tokens

    def chunk(
        self,
        text: str,
        chunk_size_tokens: int | None = None,
        overlap_tokens:    int | None = None,
        metadata:          dict | None = None,
    ) -> list[ChunkResult]:
        """
        Split text into ordered chunks with contiguous 0-based indices.

        Returns an empty list for empty or whitespace-only text; callers
        treat that as an ingestion failure.
        """
        size    = chunk_size_tokens if chunk_size_tokens is not None else self.chunk_size_tokens
        overlap = overlap_tokens if overlap_tokens is not None else self.overlap_tokens

        chunks: list[ChunkResult] = []
        buffer = ""
        buffer_tokens = 0

        for sentence in _split_sentences(text):
            sentence_tokens = estimate_tokens(sentence)

            if buffer_tokens + sentence_tokens > size and len(buffer) > 0:
                chunks.append(self._make_chunk(len(chunks), buffer, buffer_tokens, metadata))
                buffer = _overlap_words(buffer, overlap) + " " + sentence
                buffer_tokens = estimate_tokens(buffer)
            else:
                buffer += " " + sentence
                buffer_tokens += sentence_tokens

        if buffer.strip():
            chunks.append(self._make_chunk(len(chunks), buffer, buffer_tokens, metadata))

        logger.debug(
            "Chunked text | chars=%d chunks=%d size=%d overlap=%d",
            len(text), len(chunks), size, overlap,
        )
        return chunks

    @staticmethod
    def _make_chunk(
        index: int,
        buffer: str,
        tokens: int,
        metadata: dict | None,
    ) -> ChunkResult:
        return ChunkResult(
            chunk_index=index,
            content=buffer.strip(),
            tokens=tokens,
            metadata=dict(metadata or {}),
        )

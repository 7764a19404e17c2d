"""
Embedding Generator  —  Per-Chunk Embeddings with Partial-Failure Tolerance
═══════════════════════════════════════════════════════════════════════════

Design goals:
  • Chunk-granular best effort: one failing chunk never aborts the batch.
    The chunk is kept without a vector and its index is recorded.
  • Bounded calls: every request carries an explicit timeout and a small
    retry budget (handled by the OpenAI client).
  • Shape check: a vector of the wrong dimensionality counts as a failure
    rather than being written to the store.

Model:
  text-embedding-ada-002 → 1536 dims (default)
  text-embedding-3-*     → configurable dims (passed through to the API)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Protocol, Sequence

from langchain_openai import OpenAIEmbeddings

from assistant.core.config import Settings
from assistant.core.errors import UpstreamServiceError
from assistant.processing.chunking import ChunkResult

logger = logging.getLogger(__name__)


class EmbeddingsClient(Protocol):
    async def aembed_query(self, text: str) -> list[float]: ...


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------

@dataclass
class EmbeddingBatchResult:
    """
    Output of embed_batch().

    chunks         : every input chunk, in order; failed ones have embedding=None
    failed_indices : chunk_index values whose embedding call failed
    elapsed_ms     : wall time for the whole batch
    """
    chunks:         list[ChunkResult]
    failed_indices: list[int] = field(default_factory=list)
    elapsed_ms:     float = 0.0

    @property
    def success_rate(self) -> float:
        if not self.chunks:
            return 1.0
        return (len(self.chunks) - len(self.failed_indices)) / len(self.chunks)


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

def build_openai_embeddings(settings: Settings) -> OpenAIEmbeddings:
    """OpenAIEmbeddings configured from settings (timeout + retries)."""
    kwargs: dict = {
        "model":       settings.embedding_model,
        "api_key":     settings.openai_api_key,
        "timeout":     settings.embedding_timeout_seconds,
        "max_retries": settings.openai_max_retries,
    }
    # the dimensions parameter is only accepted by text-embedding-3 models
    if settings.embedding_model.startswith("text-embedding-3"):
        kwargs["dimensions"] = settings.embedding_dimensions
    return OpenAIEmbeddings(**kwargs)


class EmbeddingGenerator:
    """
    Thin wrapper over an embeddings client.

    Usage:
        generator = EmbeddingGenerator(build_openai_embeddings(settings), 1536)
        vector    = await generator.embed("query text")
        result    = await generator.embed_batch(chunks)
    """

    def __init__(self, client: EmbeddingsClient, dimensions: int) -> None:
        self._client     = client
        self._dimensions = dimensions

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmbeddingGenerator":
        return cls(build_openai_embeddings(settings), settings.embedding_dimensions)

    async def embed(self, text: str) -> list[float]:
        """
        Embed one string.

        Raises:
            UpstreamServiceError: on client failure or an unexpected vector shape.
        """
        try:
            vector = await self._client.aembed_query(text)
        except Exception as exc:
            raise UpstreamServiceError(
                "Embedding service unavailable.",
                detail=f"{type(exc).__name__}: {exc}",
            ) from exc

        if not vector or len(vector) != self._dimensions:
            raise UpstreamServiceError(
                "Embedding service returned an invalid vector.",
                detail=f"expected {self._dimensions} dims, got {len(vector or [])}",
            )
        return [float(v) for v in vector]

    async def embed_batch(self, chunks: Sequence[ChunkResult]) -> EmbeddingBatchResult:
        """
        Embed each chunk in order. Failures are logged and recorded; the
        failing chunk is returned with embedding=None.
        """
        t0 = time.monotonic()
        annotated: list[ChunkResult] = []
        failed:    list[int] = []

        for chunk in chunks:
            try:
                chunk.embedding = await self.embed(chunk.content)
            except UpstreamServiceError as exc:
                chunk.embedding = None
                failed.append(chunk.chunk_index)
                logger.warning(
                    "Embedding failed, keeping chunk without vector | chunk=%d error=%s",
                    chunk.chunk_index, exc.detail,
                )
            annotated.append(chunk)

        elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "Embedding batch done | chunks=%d failed=%d elapsed_ms=%.0f",
            len(annotated), len(failed), elapsed_ms,
        )
        return EmbeddingBatchResult(
            chunks=annotated,
            failed_indices=failed,
            elapsed_ms=elapsed_ms,
        )

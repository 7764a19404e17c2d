"""
Unit Tests — EmbeddingGenerator
════════════════════════════════
  ✅ embed() returns floats of the configured dimension
  ✅ Client errors and wrong-sized vectors → UpstreamServiceError (detail kept)
  ✅ embed_batch() keeps order, tolerates per-chunk failures
  ✅ build_openai_embeddings passes `dimensions` only for text-embedding-3
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from assistant.core.config import Settings
from assistant.core.errors import UpstreamServiceError
from assistant.processing.chunking import ChunkResult
from assistant.processing.embeddings import EmbeddingGenerator, build_openai_embeddings


def _chunks(*texts: str) -> list[ChunkResult]:
    return [ChunkResult(chunk_index=i, content=t, tokens=1) for i, t in enumerate(texts)]


@pytest.mark.unit
class TestEmbed:

    async def test_returns_vector_of_configured_size(self):
        client = MagicMock()
        client.aembed_query = AsyncMock(return_value=[1, 2, 3])

        vector = await EmbeddingGenerator(client, 3).embed("pomp")

        assert vector == [1.0, 2.0, 3.0]
        client.aembed_query.assert_awaited_once_with("pomp")

    async def test_client_error_wrapped(self):
        client = MagicMock()
        client.aembed_query = AsyncMock(side_effect=TimeoutError("read timed out"))

        with pytest.raises(UpstreamServiceError) as exc_info:
            await EmbeddingGenerator(client, 3).embed("pomp")

        assert "read timed out" in exc_info.value.detail
        assert "timed out" not in exc_info.value.message

    @pytest.mark.parametrize("vector", [[], [0.1, 0.2]])
    async def test_wrong_dimension_rejected(self, vector):
        client = MagicMock()
        client.aembed_query = AsyncMock(return_value=vector)

        with pytest.raises(UpstreamServiceError):
            await EmbeddingGenerator(client, 3).embed("pomp")


@pytest.mark.unit
class TestEmbedBatch:

    async def test_all_chunks_embedded_in_order(self, embedder):
        result = await embedder.embed_batch(_chunks("pomp", "filter", "prijs"))

        assert [c.chunk_index for c in result.chunks] == [0, 1, 2]
        assert all(c.embedding is not None for c in result.chunks)
        assert result.failed_indices == []
        assert result.success_rate == 1.0

    async def test_partial_failure_keeps_chunk_without_vector(self):
        client = MagicMock()
        client.aembed_query = AsyncMock(side_effect=[
            [1.0, 0.0],
            RuntimeError("rate limited"),
            [0.0, 1.0],
        ])

        result = await EmbeddingGenerator(client, 2).embed_batch(_chunks("a", "b", "c"))

        assert len(result.chunks) == 3
        assert result.chunks[0].embedding == [1.0, 0.0]
        assert result.chunks[1].embedding is None
        assert result.chunks[2].embedding == [0.0, 1.0]
        assert result.failed_indices == [1]
        assert result.success_rate == pytest.approx(2 / 3)

    async def test_every_call_failing_still_returns_all_chunks(self):
        client = MagicMock()
        client.aembed_query = AsyncMock(side_effect=RuntimeError("down"))

        result = await EmbeddingGenerator(client, 2).embed_batch(_chunks("a", "b"))

        assert [c.embedding for c in result.chunks] == [None, None]
        assert result.failed_indices == [0, 1]
        assert result.success_rate == 0.0

    async def test_empty_batch(self, embedder):
        result = await embedder.embed_batch([])

        assert result.chunks == []
        assert result.success_rate == 1.0


@pytest.mark.unit
class TestOpenAIEmbeddingsConfig:

    def test_ada_model_has_no_dimensions_argument(self):
        settings = Settings(openai_api_key="sk-test", embedding_model="text-embedding-ada-002")

        client = build_openai_embeddings(settings)

        assert client.model == "text-embedding-ada-002"
        assert client.dimensions is None

    def test_v3_model_gets_dimensions(self):
        settings = Settings(
            openai_api_key="sk-test",
            embedding_model="text-embedding-3-small",
            embedding_dimensions=512,
        )

        client = build_openai_embeddings(settings)

        assert client.dimensions == 512

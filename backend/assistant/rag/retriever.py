"""
Retrieval Service — top-K relevant chunks for a chat message.

Flow:
  1. Embed the query.
       ok     → nearest neighbours from the vector index (ranking + cut in
                the backend), then one lookup of just those chunk rows,
                restricted to PROCESSED documents
       failed → BM25 over embedded chunks of PROCESSED documents (terms
                shared with the query only), scored in a worker thread
  2. Sort by (score desc, document_id, chunk_index) and cap at `limit`.

Retrieval is advisory. Any failure is logged and audited and the caller
gets an empty list, so a broken index never blocks a chat response.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assistant.core.errors import UpstreamServiceError
from assistant.models.documents import Document, DocumentChunk
from assistant.models.enums import DocumentStatus
from assistant.processing.embeddings import EmbeddingGenerator
from assistant.rag.lexical import LexicalIndex
from assistant.services.audit import AuditLogger
from assistant.vectorstore.base import VectorStoreBase

logger = logging.getLogger(__name__)

# Index hits of documents that are not PROCESSED are dropped after the row
# lookup, so the index is asked for more than `limit`.
OVERFETCH_FACTOR = 4


@dataclass(frozen=True)
class RetrievedChunk:
    chunk_id:    uuid.UUID
    document_id: uuid.UUID
    filename:    str          # original file name of the parent document
    content:     str
    chunk_index: int
    score:       float


def _rank(scored: list[tuple[DocumentChunk, str, float]], limit: int) -> list[RetrievedChunk]:
    scored.sort(key=lambda item: (-item[2], str(item[0].document_id), item[0].chunk_index))
    return [
        RetrievedChunk(
            chunk_id=chunk.id,
            document_id=chunk.document_id,
            filename=original_name,
            content=chunk.content,
            chunk_index=chunk.chunk_index,
            score=score,
        )
        for chunk, original_name, score in scored[:limit]
    ]


def _bm25_hits(contents: list[str], query: str) -> list[tuple[int, float]]:
    index = LexicalIndex.build(contents)
    return [(hit.index, hit.score) for hit in index.search(query)]


class RetrievalService:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        embedder:        EmbeddingGenerator,
        vector_store:    VectorStoreBase,
        audit:           AuditLogger,
    ) -> None:
        self._session_factory = session_factory
        self._embedder        = embedder
        self._vector_store    = vector_store
        self._audit           = audit

    async def search(
        self,
        query: str,
        limit: int,
        requesting_user_id: str | None = None,
    ) -> list[RetrievedChunk]:
        """
        Return at most `limit` chunks of PROCESSED documents, most relevant
        first. Never raises.
        """
        if limit <= 0 or not query.strip():
            return []

        try:
            try:
                query_vector = await self._embedder.embed(query)
            except UpstreamServiceError as exc:
                logger.warning("Query embedding failed, using BM25 | error=%s", exc.detail)
                results = await self._lexical_search(query, limit)
                mode = "bm25"
            else:
                results = await self._vector_search(query_vector, limit)
                mode = "vector"

            logger.info(
                "Retrieval | user=%s returned=%d mode=%s",
                requesting_user_id, len(results), mode,
            )
            return results

        except Exception as exc:
            logger.exception("Retrieval failed, continuing without context | user=%s", requesting_user_id)
            await self._audit.log_error(exc, "retrieval.search", user_id=requesting_user_id)
            return []

    async def _vector_search(self, query_vector: list[float], limit: int) -> list[RetrievedChunk]:
        hits = await self._vector_store.query(query_vector, top_k=limit * OVERFETCH_FACTOR)
        if not hits:
            return []

        rows = await self._load_chunks([uuid.UUID(hit.id) for hit in hits])
        scored = []
        for hit in hits:
            row = rows.get(uuid.UUID(hit.id))
            if row is not None:
                # rounded so equal vectors tie exactly and fall back to the id order
                scored.append((row[0], row[1], round(hit.score, 6)))
        return _rank(scored, limit)

    async def _lexical_search(self, query: str, limit: int) -> list[RetrievedChunk]:
        candidates = await self._load_candidates()
        if not candidates:
            return []

        hits = await asyncio.to_thread(_bm25_hits, [chunk.content for chunk, _ in candidates], query)
        scored = [(candidates[i][0], candidates[i][1], score) for i, score in hits]
        return _rank(scored, limit)

    async def _load_chunks(self, chunk_ids: list[uuid.UUID]) -> dict[uuid.UUID, tuple[DocumentChunk, str]]:
        stmt = (
            select(DocumentChunk, Document.original_name)
            .join(Document, DocumentChunk.document_id == Document.id)
            .where(
                DocumentChunk.id.in_(chunk_ids),
                Document.status == DocumentStatus.PROCESSED,
            )
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return {chunk.id: (chunk, name) for chunk, name in result.all()}

    async def _load_candidates(self) -> list[tuple[DocumentChunk, str]]:
        stmt = (
            select(DocumentChunk, Document.original_name)
            .join(Document, DocumentChunk.document_id == Document.id)
            .where(
                Document.status == DocumentStatus.PROCESSED,
                DocumentChunk.embedding.is_not(None),
            )
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [(chunk, name) for chunk, name in result.all()]

"""
Chroma Vector Store

One collection holds the vector of every embedded chunk. Chroma ranks by
cosine distance (hnsw:space = cosine) and applies top_k itself; the score
handed back is 1 - distance.

The chromadb client is synchronous, so every call runs in a worker thread
and the event loop only ever waits on the final hits.

Client selection (create_chroma_client):
  chroma_host set          HttpClient        shared server; required when a
                                             Celery worker writes vectors
  chroma_persist_dir set   PersistentClient  on-disk, single host
  neither                  EphemeralClient   in-memory, gone on restart
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING

import chromadb
from chromadb.config import Settings as ChromaSettings

from assistant.core.config import Settings
from assistant.vectorstore.base import QueryResult, VectorRecord, VectorStoreBase

if TYPE_CHECKING:
    from chromadb.api import ClientAPI

logger = logging.getLogger(__name__)


def create_chroma_client(settings: Settings) -> "ClientAPI":
    chroma_settings = ChromaSettings(anonymized_telemetry=False)

    if settings.chroma_host:
        logger.info("Chroma | http %s:%d", settings.chroma_host, settings.chroma_port)
        return chromadb.HttpClient(
            host=settings.chroma_host,
            port=settings.chroma_port,
            settings=chroma_settings,
        )
    if settings.chroma_persist_dir:
        logger.info("Chroma | persistent path=%s", settings.chroma_persist_dir)
        return chromadb.PersistentClient(path=settings.chroma_persist_dir, settings=chroma_settings)

    logger.warning("Chroma | in-memory index, vectors are lost on restart")
    return chromadb.EphemeralClient(settings=chroma_settings)


class ChromaVectorStore(VectorStoreBase):

    def __init__(self, client: "ClientAPI", collection_name: str) -> None:
        self._client = client
        # Vectors always arrive precomputed, so no embedding function is attached
        self._collection = client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
            embedding_function=None,
        )

    async def upsert(self, records: list[VectorRecord], batch_size: int = 500) -> int:
        if not records:
            return 0

        for start in range(0, len(records), batch_size):
            batch = records[start:start + batch_size]
            await asyncio.to_thread(
                self._collection.upsert,
                ids=[r.id for r in batch],
                embeddings=[r.vector for r in batch],
                metadatas=[r.metadata for r in batch],
            )

        logger.info("Chroma upsert | records=%d", len(records))
        return len(records)

    async def query(
        self,
        vector: list[float],
        top_k: int = 5,
        filter: dict | None = None,
    ) -> list[QueryResult]:
        if top_k <= 0:
            return []
        return await asyncio.to_thread(self._query_sync, vector, top_k, filter)

    def _query_sync(self, vector: list[float], top_k: int, filter: dict | None) -> list[QueryResult]:
        available = self._collection.count()
        if available == 0:
            return []

        kwargs: dict = {
            "query_embeddings": [vector],
            "n_results":        min(top_k, available),
            "include":          ["metadatas", "distances"],
        }
        if filter:
            kwargs["where"] = filter

        raw = self._collection.query(**kwargs)
        ids = raw["ids"][0] if raw["ids"] else []
        metadatas = raw["metadatas"][0] if raw["metadatas"] else [{}] * len(ids)
        distances = raw["distances"][0] if raw["distances"] else [1.0] * len(ids)

        return [
            QueryResult(id=record_id, score=1.0 - float(distance), metadata=dict(meta or {}))
            for record_id, meta, distance in zip(ids, metadatas, distances)
        ]

    async def delete_by_document(self, document_id: uuid.UUID) -> None:
        await asyncio.to_thread(self._collection.delete, where={"document_id": str(document_id)})
        logger.info("Chroma delete | doc=%s", document_id)

    async def count(self) -> int:
        return await asyncio.to_thread(self._collection.count)

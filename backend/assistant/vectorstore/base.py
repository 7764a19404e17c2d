"""
Vector Store — Abstract Base

The retriever and the ingestion pipeline only speak this interface; the
backend (Chroma today) is picked by assistant.vectorstore.factory.

Record contract:
  - id        = DocumentChunk.id as a string
  - metadata  = {"document_id": str, "chunk_index": int}
The relational chunk row stays the source of truth for content and
document status. The index only ranks.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class VectorRecord:
    """A single embedding record to upsert into the vector store."""
    id:       str
    vector:   list[float]
    metadata: dict = field(default_factory=dict)


@dataclass
class QueryResult:
    """One nearest-neighbour hit."""
    id:       str
    score:    float          # cosine similarity, higher is closer
    metadata: dict = field(default_factory=dict)


class VectorStoreBase(ABC):

    @abstractmethod
    async def upsert(self, records: list[VectorRecord], batch_size: int = 500) -> int:
        """Insert or replace records. Returns the number written."""

    @abstractmethod
    async def query(
        self,
        vector: list[float],
        top_k: int = 5,
        filter: dict | None = None,
    ) -> list[QueryResult]:
        """
        At most top_k nearest records, closest first. Ranking and the cut
        happen inside the backend.
        """

    @abstractmethod
    async def delete_by_document(self, document_id: uuid.UUID) -> None:
        """Remove every record of one document."""

    @abstractmethod
    async def count(self) -> int:
        """Total records in the index."""

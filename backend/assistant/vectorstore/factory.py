"""
Vector Store Factory

Selects the backend from settings.vector_store_backend. The rest of the
app receives a VectorStoreBase and never touches the concrete classes.
"""

from __future__ import annotations

from assistant.core.config import Settings
from assistant.vectorstore.base import VectorStoreBase


def build_vector_store(settings: Settings) -> VectorStoreBase:
    backend = settings.vector_store_backend.lower()

    if backend == "chroma":
        from assistant.vectorstore.chroma_store import ChromaVectorStore, create_chroma_client
        return ChromaVectorStore(create_chroma_client(settings), settings.chroma_collection)

    raise ValueError(
        f"Unknown vector store backend: '{backend}'. "
        f"Valid options: 'chroma'"
    )

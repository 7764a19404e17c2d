"""
Service Factory

Builds the object graph once per process (API lifespan or Celery task):

    settings ─┬─ BlobStorageService
              ├─ AuditLogger ──────────────┐
              ├─ EmbeddingGenerator ───────┤
              ├─ CompletionService         │
              ├─ VectorStoreBase ──────────┤
              ├─ RetrievalService ◄────────┤
              ├─ DocumentLifecycleManager ◄┤◄── TaskPublisher
              └─ ChatOrchestrator ◄────────┘

External clients (storage, embeddings, completion, vector store, publisher)
can be passed in, which is how tests swap in fakes. The rest of the app only
imports build_services() and never constructs the concrete classes itself.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assistant.core.config import Settings
from assistant.llm.client import CompletionService
from assistant.processing.chunking import TextChunker
from assistant.processing.embeddings import EmbeddingGenerator
from assistant.rag.retriever import RetrievalService
from assistant.services.audit import AuditLogger
from assistant.services.chat import ChatOrchestrator
from assistant.services.documents import DocumentLifecycleManager
from assistant.storage.blob import BlobStorageService
from assistant.vectorstore import VectorStoreBase, build_vector_store
from assistant.workers.publisher import TaskPublisher


@dataclass
class Services:
    settings:        Settings
    session_factory: async_sessionmaker[AsyncSession]
    storage:         BlobStorageService
    audit:           AuditLogger
    embedder:        EmbeddingGenerator
    completion:      CompletionService
    vector_store:    VectorStoreBase
    retriever:       RetrievalService
    documents:       DocumentLifecycleManager
    chat:            ChatOrchestrator
    publisher:       TaskPublisher


def build_publisher(settings: Settings, services_ref: list) -> TaskPublisher:
    """
    Select the processing backend from settings.processing_backend.
    The in-process publisher resolves the manager lazily through
    `services_ref` because the manager itself needs the publisher.
    """
    backend = settings.processing_backend.lower()

    if backend == "celery":
        from assistant.workers.publisher import CeleryTaskPublisher
        return CeleryTaskPublisher()

    if backend == "inprocess":
        from assistant.workers.publisher import InProcessTaskPublisher
        return InProcessTaskPublisher(lambda: services_ref[0].documents)

    raise ValueError(
        f"Unknown processing backend: '{backend}'. "
        f"Valid options: 'inprocess', 'celery'"
    )


def build_services(
    settings:        Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    storage:      BlobStorageService | None = None,
    embedder:     EmbeddingGenerator | None = None,
    completion:   CompletionService | None = None,
    vector_store: VectorStoreBase | None = None,
    publisher:    TaskPublisher | None = None,
) -> Services:
    services_ref: list[Services] = []

    storage      = storage or BlobStorageService(settings)
    embedder     = embedder or EmbeddingGenerator.from_settings(settings)
    completion   = completion or CompletionService(settings)
    vector_store = vector_store or build_vector_store(settings)
    publisher    = publisher or build_publisher(settings, services_ref)

    audit     = AuditLogger(session_factory, enabled=settings.audit_logging_enabled)
    retriever = RetrievalService(session_factory, embedder, vector_store, audit)
    documents = DocumentLifecycleManager(
        session_factory=session_factory,
        storage=storage,
        chunker=TextChunker(settings.chunk_size_tokens, settings.chunk_overlap_tokens),
        embedder=embedder,
        vector_store=vector_store,
        audit=audit,
        publisher=publisher,
        settings=settings,
    )
    chat = ChatOrchestrator(
        session_factory=session_factory,
        retriever=retriever,
        completion=completion,
        audit=audit,
        settings=settings,
    )

    services = Services(
        settings=settings,
        session_factory=session_factory,
        storage=storage,
        audit=audit,
        embedder=embedder,
        completion=completion,
        vector_store=vector_store,
        retriever=retriever,
        documents=documents,
        chat=chat,
        publisher=publisher,
    )
    services_ref.append(services)
    return services

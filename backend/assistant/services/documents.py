"""
Document Lifecycle Manager

Owns the document state machine and the ingestion pipeline:

    upload   → PENDING
    approve  PENDING → APPROVED            (+ approval record, processing queued)
    reject   PENDING → REJECTED            (+ approval record, blob removed)
    process  APPROVED → PROCESSING → PROCESSED | ERROR

Consistency model:
  - Every status change is one conditional UPDATE
    (… WHERE id = :id AND status = :expected). Zero rows affected means the
    document is missing (NotFoundError) or in another state
    (StateConflictError). Two admins approving at once: exactly one wins.
  - Blob store and relational store are not transactional together. upload
    stores the blob first and deletes it again if the metadata insert fails;
    that compensating delete is best effort.
  - process never leaves a document in PROCESSING: any failure after the
    PROCESSING transition moves it to ERROR. The stored message is the
    sanitized one from public_processing_error(); raw error text goes to
    the ERROR audit entry only.
  - Vectors are written to the index before the chunk rows commit. If the
    commit (or the upsert itself) fails, the document's vectors are
    deleted again; retrieval also ignores hits of non-PROCESSED documents.

Audit events written:
  DOCUMENT_UPLOADED, DOCUMENT_APPROVED, DOCUMENT_REJECTED,
  DOCUMENT_PROCESSING_STARTED, DOCUMENT_PROCESSING_COMPLETED, ERROR
"""

from __future__ import annotations

import asyncio
import logging
import math
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assistant.core.config import Settings
from assistant.core.errors import (
    AssistantError,
    NotFoundError,
    StateConflictError,
    UpstreamServiceError,
    ValidationError,
)
from assistant.models.documents import Document, DocumentApproval, DocumentChunk, utcnow
from assistant.models.enums import ApprovalAction, DocumentStatus, can_transition
from assistant.processing.chunking import TextChunker
from assistant.processing.embeddings import EmbeddingGenerator
from assistant.processing.extractor import (
    MIME_DOC,
    MIME_DOCX,
    MIME_MARKDOWN,
    MIME_PDF,
    MIME_TEXT,
    extract_text,
)
from assistant.services.audit import AuditLogger
from assistant.storage.blob import BlobStorageService, generate_key
from assistant.vectorstore.base import VectorRecord, VectorStoreBase

if TYPE_CHECKING:
    from assistant.workers.publisher import TaskPublisher

logger = logging.getLogger(__name__)

NO_TEXT_MESSAGE      = "No text content extracted from document"
MAX_PAGE_LIMIT       = 100
MISSING_BLOB_MESSAGE = "The uploaded file was not found in storage."


def public_processing_error(exc: BaseException) -> str:
    """
    Text stored on the document and shown to admins. Raw storage or
    provider errors stay in the ERROR audit entry.
    """
    if isinstance(exc, AssistantError):
        return exc.message
    if isinstance(exc, FileNotFoundError):
        return MISSING_BLOB_MESSAGE
    return f"Processing failed ({type(exc).__name__})."


# ---------------------------------------------------------------------------
# File type helpers
# ---------------------------------------------------------------------------

# Checked against the first 8 bytes of the upload
_MAGIC_BYTES: dict[bytes, str] = {
    b"%PDF":                             MIME_PDF,
    b"PK\x03\x04":                       MIME_DOCX,
    b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1": MIME_DOC,   # legacy .doc (OLE2)
}

_EXTENSION_MIME: dict[str, str] = {
    ".pdf":  MIME_PDF,
    ".docx": MIME_DOCX,
    ".doc":  MIME_DOC,
    ".txt":  MIME_TEXT,
    ".md":   MIME_MARKDOWN,
}


def _get_extension(filename: str) -> str:
    """Return lowercased file extension including the dot."""
    parts = filename.rsplit(".", 1)
    return f".{parts[-1].lower()}" if len(parts) == 2 else ""


def detect_mime_type(filename: str, head: bytes) -> str:
    """Magic bytes first, then the extension. Client Content-Type is ignored."""
    for magic, mime in _MAGIC_BYTES.items():
        if head.startswith(magic):
            return mime
    return _EXTENSION_MIME.get(_get_extension(filename), "application/octet-stream")


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class DocumentPage:
    documents: list[Document]
    page:      int
    limit:     int
    total:     int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------

class DocumentLifecycleManager:
    """
    All dependencies are injected; the manager holds no per-request state
    and one instance can serve the whole process.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        storage:         BlobStorageService,
        chunker:         TextChunker,
        embedder:        EmbeddingGenerator,
        vector_store:    VectorStoreBase,
        audit:           AuditLogger,
        publisher:       "TaskPublisher",
        settings:        Settings,
    ) -> None:
        self._session_factory = session_factory
        self._storage   = storage
        self._chunker   = chunker
        self._embedder  = embedder
        self._vectors   = vector_store
        self._audit     = audit
        self._publisher = publisher
        self._settings  = settings

    # ------------------------------------------------------------------
    # upload
    # ------------------------------------------------------------------

    async def upload(self, data: bytes, original_name: str, uploaded_by: str) -> Document:
        """
        Validate, store the blob, then insert the PENDING document.

        Raises:
            ValidationError:      empty file, too large, or extension not allowed.
            UpstreamServiceError: blob store or metadata insert failed.
        """
        original_name = (original_name or "").strip()
        self._validate_upload(data, original_name)

        mime_type = detect_mime_type(original_name, data[:8])
        key = generate_key(original_name)

        logger.info(
            "Upload start | user=%s file=%s size=%d mime=%s",
            uploaded_by, original_name, len(data), mime_type,
        )

        try:
            await self._storage.upload(key, data, mime_type)
        except Exception as exc:
            logger.exception("Blob upload failed | key=%s", key)
            await self._audit.log_error(exc, "document.upload.storage", user_id=uploaded_by)
            raise UpstreamServiceError("Failed to store the uploaded file.", detail=str(exc)) from exc

        try:
            document = Document(
                id=uuid.uuid4(),
                filename=key,
                original_name=original_name,
                mime_type=mime_type,
                size=len(data),
                uploaded_by=uploaded_by,
                status=DocumentStatus.PENDING,
            )
            async with self._session_factory() as session, session.begin():
                session.add(document)
        except Exception as exc:
            logger.exception("Document insert failed, removing blob | key=%s", key)
            await self._delete_blob(key)
            await self._audit.log_error(exc, "document.upload.metadata", user_id=uploaded_by)
            raise UpstreamServiceError("Failed to save document metadata.", detail=str(exc)) from exc

        await self._audit.log_document(
            "UPLOADED",
            document.id,
            user_id=uploaded_by,
            metadata={"filename": original_name, "size": len(data), "mime_type": mime_type},
        )
        logger.info("Upload ok | doc=%s key=%s", document.id, key)
        return document

    def _validate_upload(self, data: bytes, original_name: str) -> None:
        if not original_name:
            raise ValidationError("A file name is required.", field="file")
        if not data:
            raise ValidationError("The uploaded file is empty.", field="file")

        max_bytes = self._settings.max_file_size_bytes
        if len(data) > max_bytes:
            raise ValidationError(
                f"File exceeds the maximum size of {max_bytes // (1024 * 1024)} MB.",
                field="file",
            )

        allowed = self._settings.allowed_extensions
        if _get_extension(original_name) not in allowed:
            raise ValidationError(
                "File type not allowed. Allowed types: "
                + ", ".join(sorted(ext.lstrip(".") for ext in allowed)),
                field="file",
            )

    # ------------------------------------------------------------------
    # approve / reject
    # ------------------------------------------------------------------

    async def approve(
        self,
        document_id:    uuid.UUID,
        acting_user_id: str,
        reason:         str | None = None,
    ) -> Document:
        """
        PENDING → APPROVED, then queue processing without waiting for it.

        Raises:
            NotFoundError, StateConflictError
        """
        reason = reason.strip() if reason and reason.strip() else None

        async with self._session_factory() as session, session.begin():
            await self._transition(
                session, document_id,
                DocumentStatus.PENDING, DocumentStatus.APPROVED,
                approved_by=acting_user_id,
                approved_at=utcnow(),
            )
            session.add(DocumentApproval(
                document_id=document_id,
                user_id=acting_user_id,
                action=ApprovalAction.APPROVE,
                reason=reason,
            ))
            document = await session.get(Document, document_id)

        await self._audit.log_document(
            "APPROVED", document_id, user_id=acting_user_id, metadata={"reason": reason},
        )
        logger.info("Document approved | doc=%s by=%s", document_id, acting_user_id)

        try:
            await self._publisher.publish_processing(document_id, acting_user_id)
        except Exception as exc:
            # the approval stands; the document stays APPROVED
            logger.error("Failed to queue processing | doc=%s error=%s", document_id, exc)
            await self._audit.log_error(
                exc, "document.approve.publish",
                user_id=acting_user_id, resource="document", resource_id=document_id,
            )

        return document

    async def reject(self, document_id: uuid.UUID, acting_user_id: str, reason: str) -> Document:
        """
        PENDING → REJECTED with a mandatory reason; the blob is deleted best effort.

        Raises:
            ValidationError, NotFoundError, StateConflictError
        """
        if reason is None or not reason.strip():
            raise ValidationError("A rejection reason is required.", field="reason")
        reason = reason.strip()

        async with self._session_factory() as session, session.begin():
            await self._transition(
                session, document_id,
                DocumentStatus.PENDING, DocumentStatus.REJECTED,
                rejected_reason=reason,
            )
            session.add(DocumentApproval(
                document_id=document_id,
                user_id=acting_user_id,
                action=ApprovalAction.REJECT,
                reason=reason,
            ))
            document = await session.get(Document, document_id)

        await self._audit.log_document(
            "REJECTED", document_id, user_id=acting_user_id, metadata={"reason": reason},
        )
        await self._delete_blob(document.filename)
        logger.info("Document rejected | doc=%s by=%s", document_id, acting_user_id)
        return document

    # ------------------------------------------------------------------
    # process
    # ------------------------------------------------------------------

    async def process(
        self,
        document_id:    uuid.UUID,
        acting_user_id: str | None = None,
    ) -> DocumentStatus:
        """
        APPROVED → PROCESSING → PROCESSED | ERROR.

        Pipeline failures are recorded on the document and reported through
        the return value. Only the entry guard raises: NotFoundError or
        StateConflictError when the document is not APPROVED.
        """
        async with self._session_factory() as session, session.begin():
            await self._transition(
                session, document_id,
                DocumentStatus.APPROVED, DocumentStatus.PROCESSING,
                processing_error=None,
            )
            document = await session.get(Document, document_id)

        await self._audit.log_document("PROCESSING_STARTED", document_id, user_id=acting_user_id)
        logger.info("Processing | doc=%s file=%s", document_id, document.original_name)

        try:
            chunk_count, failed = await self._run_pipeline(document)
        except asyncio.CancelledError:
            await self._mark_error(document_id, "Processing was cancelled")
            raise
        except Exception as exc:
            logger.exception("Processing failed | doc=%s", document_id)
            await self._mark_error(document_id, public_processing_error(exc))
            await self._audit.log_error(
                exc, "document.process",
                user_id=acting_user_id, resource="document", resource_id=document_id,
            )
            return DocumentStatus.ERROR

        await self._audit.log_document(
            "PROCESSING_COMPLETED",
            document_id,
            user_id=acting_user_id,
            metadata={"chunks": chunk_count, "failed_embeddings": failed},
        )
        logger.info(
            "Processing complete | doc=%s chunks=%d failed_embeddings=%d",
            document_id, chunk_count, failed,
        )
        return DocumentStatus.PROCESSED

    async def _run_pipeline(self, document: Document) -> tuple[int, int]:
        data = await self._storage.download(document.filename)
        text = await asyncio.to_thread(extract_text, data, document.mime_type)
        if not text.strip():
            raise ValidationError(NO_TEXT_MESSAGE)

        chunks = self._chunker.chunk(
            text,
            self._settings.chunk_size_tokens,
            self._settings.chunk_overlap_tokens,
            metadata={
                "document_id": str(document.id),
                "filename":    document.original_name,
                "mime_type":   document.mime_type,
            },
        )
        if not chunks:
            raise ValidationError(NO_TEXT_MESSAGE)

        batch = await self._embedder.embed_batch(chunks)

        rows = [
            DocumentChunk(
                id=uuid.uuid4(),
                document_id=document.id,
                chunk_index=chunk.chunk_index,
                content=chunk.content,
                embedding=chunk.embedding,
                tokens=chunk.tokens,
                doc_metadata=chunk.metadata,
            )
            for chunk in batch.chunks
        ]
        # Chunks without an embedding are stored but never indexed
        records = [
            VectorRecord(
                id=str(row.id),
                vector=row.embedding,
                metadata={"document_id": str(document.id), "chunk_index": row.chunk_index},
            )
            for row in rows
            if row.embedding is not None
        ]

        try:
            await self._vectors.upsert(records)
            async with self._session_factory() as session, session.begin():
                session.add_all(rows)
                await self._transition(
                    session, document.id,
                    DocumentStatus.PROCESSING, DocumentStatus.PROCESSED,
                    is_processed=True,
                    processing_error=None,
                )
        except BaseException:
            await self._discard_vectors(document.id)
            raise

        return len(batch.chunks), len(batch.failed_indices)

    async def _discard_vectors(self, document_id: uuid.UUID) -> None:
        try:
            await self._vectors.delete_by_document(document_id)
        except Exception:
            logger.exception("Could not remove indexed vectors | doc=%s", document_id)

    async def _mark_error(self, document_id: uuid.UUID, message: str) -> None:
        try:
            async with self._session_factory() as session, session.begin():
                await self._transition(
                    session, document_id,
                    DocumentStatus.PROCESSING, DocumentStatus.ERROR,
                    processing_error=message[:2000],
                )
        except Exception:
            logger.exception("Could not record processing error | doc=%s", document_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_my_documents(self, user_id: str) -> list[Document]:
        stmt = (
            select(Document)
            .where(Document.uploaded_by == user_id)
            .order_by(Document.created_at.desc(), Document.id)
        )
        async with self._session_factory() as session:
            return list((await session.scalars(stmt)).all())

    async def list_by_status(
        self,
        status: DocumentStatus = DocumentStatus.PENDING,
        page:   int = 1,
        limit:  int = 20,
    ) -> DocumentPage:
        """Newest-first page of documents in `status`, plus the total count."""
        if page < 1:
            raise ValidationError("page must be 1 or greater.", field="page")
        if not 1 <= limit <= MAX_PAGE_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_LIMIT}.", field="limit")

        async def _rows() -> list[Document]:
            stmt = (
                select(Document)
                .where(Document.status == status)
                .order_by(Document.created_at.desc(), Document.id)
                .offset((page - 1) * limit)
                .limit(limit)
            )
            async with self._session_factory() as session:
                return list((await session.scalars(stmt)).all())

        async def _count() -> int:
            stmt = select(func.count()).select_from(Document).where(Document.status == status)
            async with self._session_factory() as session:
                return int(await session.scalar(stmt) or 0)

        # independent read-only queries, separate sessions
        documents, total = await asyncio.gather(_rows(), _count())
        return DocumentPage(documents=documents, page=page, limit=limit, total=total)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _transition(
        self,
        session:     AsyncSession,
        document_id: uuid.UUID,
        expected:    DocumentStatus,
        target:      DocumentStatus,
        **values:    Any,
    ) -> None:
        if not can_transition(expected, target):
            raise StateConflictError(
                f"Transition {expected.value} → {target.value} is not allowed."
            )

        stmt = (
            update(Document)
            .where(Document.id == document_id, Document.status == expected)
            .values(status=target, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount == 1:
            return

        current = await session.scalar(select(Document.status).where(Document.id == document_id))
        if current is None:
            raise NotFoundError(f"Document {document_id} not found.")
        raise StateConflictError(
            f"Document is {current.value}; expected {expected.value} to move to {target.value}."
        )

    async def _delete_blob(self, key: str) -> None:
        try:
            await self._storage.delete(key)
        except Exception as exc:
            logger.warning("Blob delete failed, leaving orphan | key=%s error=%s", key, exc)

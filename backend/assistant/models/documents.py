"""
SQLAlchemy ORM Models — Documents, Chunks, Approvals & Audit Logs

Using SQLAlchemy 2.x mapped classes for full async support. Column types are
chosen to run unchanged on PostgreSQL (production, asyncpg) and SQLite
(tests, aiosqlite): Uuid, JSON with a JSONB variant, and non-native enums.

Ownership:
    Document 1 ── * DocumentChunk      (cascade delete)
    Document 1 ── * DocumentApproval   (insert-only decision trail)
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from assistant.models.enums import ApprovalAction, DocumentStatus, LogSeverity

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")

# SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Declarative base — shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Document model — documents
# ---------------------------------------------------------------------------

class Document(Base):
    """
    One uploaded file, from upload through admin review to retrieval.

    Status column follows DocumentStatus; transitions are applied with
    conditional UPDATEs in DocumentLifecycleManager, never by assigning
    the attribute on a loaded instance.

    approved_by / approved_at are set only on PENDING → APPROVED and are
    kept through PROCESSING, PROCESSED and ERROR. rejected_reason is set
    only on PENDING → REJECTED.
    """

    __tablename__ = "documents"
    __table_args__ = (
        Index("idx_documents_status_created", "status", "created_at"),
        Index("idx_documents_uploaded_by",    "uploaded_by"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Blob reference
    filename: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Storage key: {unix_millis}-{sanitized original name}",
    )
    original_name: Mapped[str] = mapped_column(Text, nullable=False)
    mime_type:     Mapped[str] = mapped_column(String(255), nullable=False)
    size:          Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Identity provider user id (JWT sub)
    uploaded_by: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus, native_enum=False, length=20, name="document_status"),
        nullable=False,
        default=DocumentStatus.PENDING,
    )

    approved_by:      Mapped[Optional[str]]      = mapped_column(String(255), nullable=True)
    approved_at:      Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_reason:  Mapped[Optional[str]]      = mapped_column(Text, nullable=True)
    processing_error: Mapped[Optional[str]]      = mapped_column(Text, nullable=True)
    is_processed:     Mapped[bool]               = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    chunks: Mapped[list["DocumentChunk"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="DocumentChunk.chunk_index",
    )

    def __repr__(self) -> str:
        return (
            f"<Document id={self.id} status={self.status} "
            f"file={self.original_name!r}>"
        )


# ---------------------------------------------------------------------------
# Chunk model — document_chunks
# ---------------------------------------------------------------------------

class DocumentChunk(Base):
    """
    One text chunk of a Document.

    `embedding` is NULL when the embedding call for this chunk failed; such
    chunks are stored for provenance but never returned by retrieval.
    """

    __tablename__ = "document_chunks"
    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_document_chunks_position"),
        Index("idx_document_chunks_document_id", "document_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    content:     Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[Optional[list[float]]] = mapped_column(
        JSON(none_as_null=True),
        nullable=True,
    )
    tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    doc_metadata: Mapped[dict] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
        comment="{document_id, filename, mime_type} for provenance",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    document: Mapped[Document] = relationship(back_populates="chunks")

    def __repr__(self) -> str:
        return (
            f"<DocumentChunk doc={self.document_id} idx={self.chunk_index} "
            f"embedded={self.embedding is not None}>"
        )


# ---------------------------------------------------------------------------
# Approval trail — document_approvals
# ---------------------------------------------------------------------------

class DocumentApproval(Base):
    """Immutable record of one admin decision. Rows are never updated."""

    __tablename__ = "document_approvals"
    __table_args__ = (
        Index("idx_document_approvals_document_id", "document_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[ApprovalAction] = mapped_column(
        Enum(ApprovalAction, native_enum=False, length=10, name="approval_action"),
        nullable=False,
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<DocumentApproval doc={self.document_id} action={self.action}>"


# ---------------------------------------------------------------------------
# AuditLog model — audit_logs
# ---------------------------------------------------------------------------

class AuditLog(Base):
    """
    Append-only audit trail written by AuditLogger.

    Each entry is committed in its own short transaction so an audit write
    can never roll back, or be rolled back with, the business operation.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_logs_user_id",    "user_id"),
        Index("idx_audit_logs_created_at", "created_at"),
        Index("idx_audit_logs_resource",   "resource", "resource_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    user_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # What happened
    action: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="e.g. DOCUMENT_APPROVED, CHAT_MESSAGE_EXCHANGED, ERROR",
    )
    resource:    Mapped[str]           = mapped_column(String(64), nullable=False)
    resource_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    log_metadata: Mapped[dict] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
    )
    severity: Mapped[LogSeverity] = mapped_column(
        Enum(LogSeverity, native_enum=False, length=10, name="log_severity"),
        nullable=False,
        default=LogSeverity.INFO,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<AuditLog id={self.id} action={self.action!r} "
            f"severity={self.severity}>"
        )

"""
Document API — Pydantic Request/Response Schemas

Covers:
  - POST /api/v1/documents/upload                     (201)
  - GET  /api/v1/documents                            (caller's uploads)
  - GET  /api/v1/admin/documents                      (paged review queue)
  - POST /api/v1/admin/documents/{id}/approve|reject
  - The uniform error envelope used by every 4xx/5xx response

All timestamps serialize as ISO-8601 UTC strings.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from assistant.models.enums import DocumentStatus


# ---------------------------------------------------------------------------
# Upload — 201 Created
# ---------------------------------------------------------------------------

class UploadedDocument(BaseModel):
    id:          UUID
    filename:    str            = Field(..., description="Original file name as uploaded")
    status:      DocumentStatus
    uploaded_at: datetime


class DocumentUploadResponse(BaseModel):
    success:  bool = True
    document: UploadedDocument


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------

class DocumentSummary(BaseModel):
    """Row shown to the uploader."""
    model_config = ConfigDict(from_attributes=True)

    id:            UUID
    original_name: str
    mime_type:     str
    size:          int
    status:        DocumentStatus
    created_at:    datetime


class AdminDocument(DocumentSummary):
    """Row shown in the admin review queue."""
    uploaded_by:      str
    approved_by:      str | None      = None
    approved_at:      datetime | None = None
    rejected_reason:  str | None      = None
    processing_error: str | None      = None
    is_processed:     bool            = False


class DocumentListResponse(BaseModel):
    documents: list[DocumentSummary]


class Pagination(BaseModel):
    page:        int
    limit:       int
    total:       int
    total_pages: int


class AdminDocumentListResponse(BaseModel):
    documents:  list[AdminDocument]
    pagination: Pagination


# ---------------------------------------------------------------------------
# Approval actions
# ---------------------------------------------------------------------------

class ApproveRequest(BaseModel):
    reason: str | None = Field(None, max_length=2000)


class RejectRequest(BaseModel):
    # blank reasons are rejected by the lifecycle manager with field="reason"
    reason: str = Field(..., max_length=2000)


class ActionResponse(BaseModel):
    success: bool = True
    message: str


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error — may appear in a list."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str        = Field(..., description="Machine-readable error code for client handling")


class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling.
    """
    error_code: str               = Field(..., description="Stable machine-readable code")
    message:    str               = Field(..., description="Human-readable summary")
    details:    list[ErrorDetail] = Field(default_factory=list)
    request_id: str | None        = Field(None, description="Trace ID for log correlation")

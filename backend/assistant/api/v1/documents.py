"""
Document API Router

POST /api/v1/documents/upload   multipart `file` → PENDING document (201)
GET  /api/v1/documents          the caller's uploads, newest first

Request lifecycle (upload):
  ┌─────────────────────────────────────────────────────────┐
  │ 1. JWT verification → uploader id from `sub` only       │
  │ 2. Content-Length guard before the body is read         │
  │ 3. Lifecycle manager: size + extension validation,      │
  │    magic-byte MIME detection, blob store, DB insert     │
  │ 4. 201 with the PENDING document; processing waits for  │
  │    an admin approval                                     │
  └─────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, File, Request, UploadFile, status

from assistant.api.deps import AppServices
from assistant.auth.token import CurrentUser
from assistant.core.errors import ValidationError
from assistant.schemas.documents import (
    DocumentListResponse,
    DocumentSummary,
    DocumentUploadResponse,
    ErrorResponse,
    UploadedDocument,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["Documents"])

# multipart framing overhead allowed on top of max_file_size_bytes
_FORM_OVERHEAD_BYTES = 4096


@router.post(
    "/upload",
    response_model=DocumentUploadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a document for admin review",
    responses={
        400: {"model": ErrorResponse, "description": "Empty file, too large, or type not allowed"},
        401: {"model": ErrorResponse, "description": "Missing or invalid JWT"},
        502: {"model": ErrorResponse, "description": "Blob or metadata store unavailable"},
    },
)
async def upload_document(
    request:  Request,
    user:     CurrentUser,
    services: AppServices,
    file:     UploadFile = File(..., description="PDF, DOC, DOCX, TXT or MD"),
) -> DocumentUploadResponse:
    max_bytes = services.settings.max_file_size_bytes

    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > max_bytes + _FORM_OVERHEAD_BYTES:
        raise ValidationError(
            f"File exceeds the maximum size of {max_bytes // (1024 * 1024)} MB.",
            field="file",
        )

    data = await file.read()
    document = await services.documents.upload(data, file.filename or "", user.sub)

    return DocumentUploadResponse(
        document=UploadedDocument(
            id=document.id,
            filename=document.original_name,
            status=document.status,
            uploaded_at=document.created_at,
        ),
    )


@router.get(
    "",
    response_model=DocumentListResponse,
    summary="List the caller's uploaded documents",
)
async def list_my_documents(user: CurrentUser, services: AppServices) -> DocumentListResponse:
    documents = await services.documents.list_my_documents(user.sub)
    return DocumentListResponse(
        documents=[DocumentSummary.model_validate(doc) for doc in documents],
    )

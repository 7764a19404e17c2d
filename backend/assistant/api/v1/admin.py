"""
Admin Review API Router (ADMIN or SUPER_ADMIN)

GET  /api/v1/admin/documents?status=PENDING&page=1&limit=20
POST /api/v1/admin/documents/{document_id}/approve   body {reason?}
POST /api/v1/admin/documents/{document_id}/reject    body {reason}

Approval returns as soon as the APPROVED state is committed; processing
runs in the background and its outcome is visible on the document row.
"""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Body, Query

from assistant.api.deps import AppServices
from assistant.auth.rbac import AdminUser
from assistant.models.enums import DocumentStatus
from assistant.schemas.documents import (
    ActionResponse,
    AdminDocument,
    AdminDocumentListResponse,
    ApproveRequest,
    ErrorResponse,
    Pagination,
    RejectRequest,
)
from assistant.services.documents import MAX_PAGE_LIMIT

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin/documents",
    tags=["Admin"],
    responses={
        401: {"model": ErrorResponse, "description": "Missing or invalid JWT"},
        403: {"model": ErrorResponse, "description": "Requires ADMIN or SUPER_ADMIN"},
    },
)


@router.get(
    "",
    response_model=AdminDocumentListResponse,
    summary="Page through documents in one status",
)
async def list_documents(
    user:     AdminUser,
    services: AppServices,
    status:   DocumentStatus = Query(DocumentStatus.PENDING),
    page:     int = Query(1, ge=1),
    limit:    int = Query(20, ge=1, le=MAX_PAGE_LIMIT),
) -> AdminDocumentListResponse:
    result = await services.documents.list_by_status(status, page, limit)

    await services.audit.log_admin(
        "DOCUMENTS_VIEWED",
        user.sub,
        metadata={"status": status.value, "page": page, "count": len(result.documents)},
    )

    return AdminDocumentListResponse(
        documents=[AdminDocument.model_validate(doc) for doc in result.documents],
        pagination=Pagination(
            page=result.page,
            limit=result.limit,
            total=result.total,
            total_pages=result.total_pages,
        ),
    )


@router.post(
    "/{document_id}/approve",
    response_model=ActionResponse,
    summary="Approve a pending document and start processing",
    responses={
        404: {"model": ErrorResponse, "description": "Unknown document"},
        409: {"model": ErrorResponse, "description": "Document is not PENDING"},
    },
)
async def approve_document(
    document_id: UUID,
    user:        AdminUser,
    services:    AppServices,
    body:        ApproveRequest | None = Body(None),
) -> ActionResponse:
    reason = body.reason if body is not None else None
    await services.documents.approve(document_id, user.sub, reason)
    return ActionResponse(message="Document approved and processing started")


@router.post(
    "/{document_id}/reject",
    response_model=ActionResponse,
    summary="Reject a pending document",
    responses={
        400: {"model": ErrorResponse, "description": "Missing rejection reason"},
        404: {"model": ErrorResponse, "description": "Unknown document"},
        409: {"model": ErrorResponse, "description": "Document is not PENDING"},
    },
)
async def reject_document(
    document_id: UUID,
    body:        RejectRequest,
    user:        AdminUser,
    services:    AppServices,
) -> ActionResponse:
    await services.documents.reject(document_id, user.sub, body.reason)
    return ActionResponse(message="Document rejected")

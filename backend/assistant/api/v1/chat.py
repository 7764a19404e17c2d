"""
Chat API — POST /api/v1/chat

Any authenticated user. One call = one exchange: the user message is
stored, answered with retrieved document context, and the reply returned
with its sources. Omitting session_id (or passing one the caller does not
own) starts a new session in `mode`.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter

from assistant.api.deps import AppServices
from assistant.auth.token import CurrentUser
from assistant.schemas.chat import ChatRequest, ChatResponse, ChatSource
from assistant.schemas.documents import ErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["Chat"])


@router.post(
    "",
    response_model=ChatResponse,
    summary="Send a chat message",
    responses={
        400: {"model": ErrorResponse, "description": "Empty message"},
        401: {"model": ErrorResponse, "description": "Missing or invalid JWT"},
        409: {"model": ErrorResponse, "description": "Session updated concurrently"},
        502: {"model": ErrorResponse, "description": "Language model unavailable"},
    },
)
async def send_message(
    body:     ChatRequest,
    user:     CurrentUser,
    services: AppServices,
) -> ChatResponse:
    result = await services.chat.send_message(
        user.sub,
        body.message,
        session_id=body.session_id,
        mode=body.mode,
    )
    return ChatResponse(
        response=result.response_text,
        session_id=result.session_id,
        sources=[ChatSource(filename=s.filename, content=s.content) for s in result.sources],
    )

"""
Chat API schemas — POST /api/v1/chat
"""

from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    message:    str         = Field(..., max_length=8000)
    session_id: UUID | None = Field(None, description="Omit to start a new session")
    # only consulted when a session is created; unrecognised values get GENERAL
    mode:       str         = Field("TECHNICAL", description="TECHNICAL | INKOOP")


class ChatSource(BaseModel):
    filename: str
    content:  str = Field(..., description="First 200 characters of the chunk")


class ChatResponse(BaseModel):
    response:   str
    session_id: UUID
    sources:    list[ChatSource] = Field(default_factory=list)

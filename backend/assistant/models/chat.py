"""
SQLAlchemy ORM Models — Chat Sessions & Messages

A ChatSession is owned by one user and has an immutable persona mode.
Messages are append-only; `sequence` is assigned per session and guarded by
a unique constraint, so two writers racing on the same session cannot both
claim the same position.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
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
from sqlalchemy.orm import Mapped, mapped_column, relationship

from assistant.models.documents import Base, JSONType, utcnow
from assistant.models.enums import ChatMode, MessageRole


class ChatSession(Base):
    __tablename__ = "chat_sessions"
    __table_args__ = (
        Index("idx_chat_sessions_user_id", "user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    mode: Mapped[ChatMode] = mapped_column(
        Enum(ChatMode, native_enum=False, length=20, name="chat_mode"),
        nullable=False,
    )
    title:     Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool]          = mapped_column(Boolean, nullable=False, default=True)

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

    messages: Mapped[list["Message"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="Message.sequence",
    )

    def __repr__(self) -> str:
        return f"<ChatSession id={self.id} user={self.user_id} mode={self.mode}>"


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("session_id", "sequence", name="uq_messages_session_sequence"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("chat_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[MessageRole] = mapped_column(
        Enum(MessageRole, native_enum=False, length=10, name="message_role"),
        nullable=False,
    )
    content: Mapped[str]           = mapped_column(Text, nullable=False)
    tokens:  Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    msg_metadata: Mapped[Optional[dict]] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        comment="{model, relevant_documents} on assistant replies",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    session: Mapped[ChatSession] = relationship(back_populates="messages")

    def __repr__(self) -> str:
        return f"<Message session={self.session_id} seq={self.sequence} role={self.role}>"

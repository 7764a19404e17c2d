"""
Chat Orchestrator

One call of send_message():

  1. Reject a blank message.
  2. Resolve the session: reuse `session_id` if it exists and belongs to the
     caller, otherwise open a new session in `mode` (mode is fixed from
     then on; an unrecognised mode opens a GENERAL session).
  3. Persist the USER message.
  4. Load the newest 20 messages, oldest first.
  5. Retrieve top-5 chunks (advisory, may be empty) and keep those that
     fit the context budget. Only these count as used documents.
  6. Prompt = one system message (persona + optional context block)
     followed by the history as user/assistant turns. Stored SYSTEM
     messages are not replayed.
  7. Complete, persist the ASSISTANT reply with {model, relevant_documents}.
  8. Title an untitled session from its first user message; failures fall
     back to the placeholder and never fail the reply.
  9. Return reply text, session id and filename + snippet per source.

Ordering: each message takes the next per-session `sequence` under a
unique constraint. Two concurrent sends on one session cannot interleave
silently; the loser retries and, if still contended, gets a
StateConflictError.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assistant.core.config import Settings
from assistant.core.errors import StateConflictError, UpstreamServiceError, ValidationError
from assistant.llm.client import CompletionService
from assistant.models.chat import ChatSession, Message
from assistant.models.enums import ChatMode, MessageRole
from assistant.processing.chunking import estimate_tokens
from assistant.rag import prompt_manager
from assistant.rag.retriever import RetrievalService, RetrievedChunk
from assistant.services.audit import AuditLogger

logger = logging.getLogger(__name__)

HISTORY_LIMIT          = 20
SOURCE_SNIPPET_CHARS   = 200
SEQUENCE_RETRIES       = 3
CHAT_FAILURE_MESSAGE   = "Failed to process chat message. Please try again."


@dataclass(frozen=True)
class SourceSnippet:
    filename: str
    content:  str


@dataclass
class ChatResult:
    response_text: str
    session_id:    uuid.UUID
    sources:       list[SourceSnippet] = field(default_factory=list)


def _snippet(content: str) -> str:
    if len(content) <= SOURCE_SNIPPET_CHARS:
        return content
    return content[:SOURCE_SNIPPET_CHARS] + "..."


def _to_langchain(history: Sequence[Message]) -> list[BaseMessage]:
    turns: list[BaseMessage] = []
    for msg in history:
        if msg.role == MessageRole.USER:
            turns.append(HumanMessage(content=msg.content))
        elif msg.role == MessageRole.ASSISTANT:
            turns.append(AIMessage(content=msg.content))
        # SYSTEM rows are never replayed
    return turns


class ChatOrchestrator:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        retriever:       RetrievalService,
        completion:      CompletionService,
        audit:           AuditLogger,
        settings:        Settings,
    ) -> None:
        self._session_factory = session_factory
        self._retriever  = retriever
        self._completion = completion
        self._audit      = audit
        self._settings   = settings

    async def send_message(
        self,
        user_id:    str,
        message:    str,
        session_id: uuid.UUID | None = None,
        mode:       ChatMode | str = ChatMode.TECHNICAL,
    ) -> ChatResult:
        """
        Raises:
            ValidationError:      blank message.
            UpstreamServiceError: the completion call failed (generic message).
            StateConflictError:   the session is being written concurrently.
        """
        if message is None or not message.strip():
            raise ValidationError("Message cannot be empty.", field="message")

        chat_session = await self._resolve_session(user_id, session_id, mode)

        await self._append_message(
            chat_session.id, MessageRole.USER, message, tokens=estimate_tokens(message),
        )

        history = await self._load_history(chat_session.id)
        retrieved = await self._retriever.search(
            message, self._settings.retrieval_top_k, requesting_user_id=user_id,
        )
        chunks = prompt_manager.fit_context(retrieved, self._settings.context_token_budget)

        prompt: list[BaseMessage] = [
            prompt_manager.build_system_message(
                chat_session.mode, chunks, self._settings.context_token_budget,
            ),
            *_to_langchain(history),
        ]

        try:
            reply = await self._completion.complete(
                prompt,
                model=self._settings.llm_model,
                max_tokens=self._settings.llm_max_tokens,
                temperature=self._settings.llm_temperature,
            )
        except UpstreamServiceError as exc:
            logger.error("Chat completion failed | session=%s error=%s", chat_session.id, exc.detail)
            await self._audit.log_error(
                exc, "chat.completion",
                user_id=user_id, resource="chat_session", resource_id=chat_session.id,
            )
            raise UpstreamServiceError(CHAT_FAILURE_MESSAGE, detail=exc.detail) from exc

        await self._append_message(
            chat_session.id,
            MessageRole.ASSISTANT,
            reply.text,
            tokens=reply.token_count,
            metadata={"model": reply.model_name, "relevant_documents": len(chunks)},
        )

        if chat_session.title is None:
            await self._assign_title(chat_session.id)

        await self._audit.log_chat(
            "MESSAGE_EXCHANGED",
            chat_session.id,
            user_id=user_id,
            metadata={
                "mode":               chat_session.mode.value,
                "model":              reply.model_name,
                "tokens":             reply.token_count,
                "relevant_documents": len(chunks),
            },
        )
        logger.info(
            "Chat exchange | session=%s user=%s history=%d retrieved=%d used=%d",
            chat_session.id, user_id, len(history), len(retrieved), len(chunks),
        )

        return ChatResult(
            response_text=reply.text,
            session_id=chat_session.id,
            sources=[_source(chunk) for chunk in chunks],
        )

    # ------------------------------------------------------------------
    # Session + messages
    # ------------------------------------------------------------------

    async def _resolve_session(
        self,
        user_id:    str,
        session_id: uuid.UUID | None,
        mode:       ChatMode | str,
    ) -> ChatSession:
        if session_id is not None:
            async with self._session_factory() as session:
                existing = await session.get(ChatSession, session_id)
            if existing is not None and existing.user_id == user_id:
                return existing
            logger.info("Session not reusable, opening new one | requested=%s user=%s", session_id, user_id)

        try:
            resolved_mode = ChatMode(mode)
        except ValueError:
            logger.warning("Unknown chat mode, opening GENERAL session | mode=%r user=%s", mode, user_id)
            resolved_mode = ChatMode.GENERAL

        chat_session = ChatSession(id=uuid.uuid4(), user_id=user_id, mode=resolved_mode, is_active=True)
        async with self._session_factory() as session, session.begin():
            session.add(chat_session)
        logger.info("Chat session created | session=%s mode=%s", chat_session.id, resolved_mode.value)
        return chat_session

    async def _append_message(
        self,
        session_id: uuid.UUID,
        role:       MessageRole,
        content:    str,
        tokens:     int | None = None,
        metadata:   dict | None = None,
    ) -> Message:
        for attempt in range(SEQUENCE_RETRIES):
            try:
                async with self._session_factory() as session, session.begin():
                    last = await session.scalar(
                        select(func.max(Message.sequence)).where(Message.session_id == session_id)
                    )
                    msg = Message(
                        session_id=session_id,
                        sequence=(last or 0) + 1,
                        role=role,
                        content=content,
                        tokens=tokens,
                        msg_metadata=metadata,
                    )
                    session.add(msg)
                return msg
            except IntegrityError:
                logger.warning(
                    "Message sequence contended | session=%s attempt=%d", session_id, attempt + 1,
                )
        raise StateConflictError("The chat session was updated concurrently. Please retry.")

    async def _load_history(self, session_id: uuid.UUID) -> list[Message]:
        stmt = (
            select(Message)
            .where(Message.session_id == session_id)
            .order_by(Message.sequence.desc())
            .limit(HISTORY_LIMIT)
        )
        async with self._session_factory() as session:
            newest_first = list((await session.scalars(stmt)).all())
        return list(reversed(newest_first))

    # ------------------------------------------------------------------
    # Title
    # ------------------------------------------------------------------

    async def _assign_title(self, session_id: uuid.UUID) -> None:
        try:
            async with self._session_factory() as session:
                first = await session.scalar(
                    select(Message.content)
                    .where(Message.session_id == session_id, Message.role == MessageRole.USER)
                    .order_by(Message.sequence)
                    .limit(1)
                )
            title = await self._generate_title(first or "")

            async with self._session_factory() as session, session.begin():
                await session.execute(
                    update(ChatSession)
                    .where(ChatSession.id == session_id, ChatSession.title.is_(None))
                    .values(title=title)
                    .execution_options(synchronize_session=False)
                )
            logger.debug("Session titled | session=%s title=%r", session_id, title)
        except Exception as exc:
            logger.warning("Session title not stored | session=%s error=%s", session_id, exc)

    async def _generate_title(self, first_user_message: str) -> str:
        if not first_user_message.strip():
            return prompt_manager.DEFAULT_TITLE
        try:
            result = await self._completion.complete(
                prompt_manager.title_messages(first_user_message),
                model=self._settings.title_model,
                max_tokens=self._settings.title_max_tokens,
                temperature=self._settings.title_temperature,
            )
        except UpstreamServiceError as exc:
            logger.warning("Title generation failed, using placeholder | error=%s", exc.detail)
            return prompt_manager.DEFAULT_TITLE
        return prompt_manager.normalize_title(result.text)


def _source(chunk: RetrievedChunk) -> SourceSnippet:
    return SourceSnippet(filename=chunk.filename, content=_snippet(chunk.content))

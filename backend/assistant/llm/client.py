"""
Completion Service — single call site for chat-model requests.

    complete(messages, model, max_tokens, temperature)
        → CompletionResult(text, token_count, model_name)

Used twice per chat exchange: once for the answer (settings.llm_*) and,
for untitled sessions, once for the title (settings.title_*). Every request
carries an explicit timeout; provider errors surface as UpstreamServiceError
with the raw text kept in `detail` for the logs.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Sequence

from langchain_core.messages import BaseMessage
from langchain_openai import ChatOpenAI

from assistant.core.config import Settings
from assistant.core.errors import UpstreamServiceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionResult:
    text:        str
    token_count: int
    model_name:  str


def _estimate_tokens(messages: Sequence[BaseMessage], reply: str) -> int:
    """4 chars ≈ 1 token, used when the provider reports no usage."""
    chars = sum(len(m.content) for m in messages if isinstance(m.content, str))
    return math.ceil((chars + len(reply)) / 4)


class CompletionService:
    """
    Provider wrapper around ChatOpenAI.

    Clients are cached per (model, max_tokens, temperature); ChatOpenAI is
    safe to share across concurrent requests.
    """

    def __init__(self, settings: Settings) -> None:
        self._api_key     = settings.openai_api_key
        self._timeout     = settings.llm_timeout_seconds
        self._max_retries = settings.openai_max_retries
        self._clients: dict[tuple[str, int, float], ChatOpenAI] = {}

    def _llm(self, model: str, max_tokens: int, temperature: float) -> ChatOpenAI:
        key = (model, max_tokens, temperature)
        if key not in self._clients:
            self._clients[key] = ChatOpenAI(
                model=model,
                api_key=self._api_key,
                temperature=temperature,
                max_tokens=max_tokens,
                timeout=self._timeout,
                max_retries=self._max_retries,
            )
        return self._clients[key]

    async def complete(
        self,
        messages:    Sequence[BaseMessage],
        model:       str,
        max_tokens:  int,
        temperature: float,
    ) -> CompletionResult:
        """
        Run one completion.

        Raises:
            UpstreamServiceError: on any provider failure.
        """
        t0 = time.perf_counter()
        try:
            reply = await self._llm(model, max_tokens, temperature).ainvoke(list(messages))
        except Exception as exc:
            logger.warning("Completion failed | model=%s error=%s", model, exc)
            raise UpstreamServiceError(
                "Completion service unavailable.",
                detail=f"{type(exc).__name__}: {exc}",
            ) from exc

        text = reply.content if isinstance(reply.content, str) else str(reply.content)

        usage = getattr(reply, "usage_metadata", None) or {}
        token_count = usage.get("total_tokens") or _estimate_tokens(messages, text)
        model_name  = (reply.response_metadata or {}).get("model_name", model)

        logger.info(
            "Completion ok | model=%s tokens=%d latency_ms=%.0f",
            model_name, token_count, (time.perf_counter() - t0) * 1000,
        )
        return CompletionResult(text=text, token_count=token_count, model_name=model_name)

"""
Audit Logger — fire-and-forget audit trail.

Every call writes one AuditLog row in its own short transaction. The sink
never raises: if the write fails (or auditing is disabled) the entry goes
to the process logger instead, so an audit problem can never fail the
operation being audited.

Actions written by the services:
  DOCUMENT_UPLOADED, DOCUMENT_APPROVED, DOCUMENT_REJECTED,
  DOCUMENT_PROCESSING_STARTED, DOCUMENT_PROCESSING_COMPLETED,
  CHAT_MESSAGE_EXCHANGED, ADMIN_DOCUMENTS_VIEWED,
  SECURITY_UNAUTHORIZED_ADMIN_ACCESS, ERROR
"""

from __future__ import annotations

import logging
import traceback
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assistant.models.documents import AuditLog
from assistant.models.enums import LogSeverity

logger = logging.getLogger(__name__)

_PY_LEVELS: dict[LogSeverity, int] = {
    LogSeverity.DEBUG:    logging.DEBUG,
    LogSeverity.INFO:     logging.INFO,
    LogSeverity.WARN:     logging.WARNING,
    LogSeverity.ERROR:    logging.ERROR,
    LogSeverity.CRITICAL: logging.CRITICAL,
}


class AuditLogger:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        enabled: bool = True,
    ) -> None:
        self._session_factory = session_factory
        self._enabled = enabled

    async def log(
        self,
        action:      str,
        resource:    str,
        resource_id: str | None = None,
        user_id:     str | None = None,
        metadata:    dict[str, Any] | None = None,
        severity:    LogSeverity = LogSeverity.INFO,
    ) -> None:
        if not self._enabled:
            self._fallback(action, resource, resource_id, user_id, metadata, severity)
            return

        try:
            async with self._session_factory() as session, session.begin():
                session.add(AuditLog(
                    user_id=user_id,
                    action=action,
                    resource=resource,
                    resource_id=resource_id,
                    log_metadata=metadata or {},
                    severity=severity,
                ))
        except Exception as exc:
            logger.warning("Audit write failed, logging locally | action=%s error=%s", action, exc)
            self._fallback(action, resource, resource_id, user_id, metadata, severity)

    # ------------------------------------------------------------------
    # Convenience helpers
    # ------------------------------------------------------------------

    async def log_document(
        self,
        action:      str,
        document_id: Any,
        user_id:     str | None = None,
        metadata:    dict[str, Any] | None = None,
        severity:    LogSeverity = LogSeverity.INFO,
    ) -> None:
        await self.log(
            f"DOCUMENT_{action}",
            "document",
            resource_id=str(document_id),
            user_id=user_id,
            metadata=metadata,
            severity=severity,
        )

    async def log_chat(
        self,
        action:     str,
        session_id: Any,
        user_id:    str | None = None,
        metadata:   dict[str, Any] | None = None,
    ) -> None:
        await self.log(
            f"CHAT_{action}",
            "chat_session",
            resource_id=str(session_id),
            user_id=user_id,
            metadata=metadata,
        )

    async def log_admin(
        self,
        action:   str,
        user_id:  str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self.log(f"ADMIN_{action}", "admin", user_id=user_id, metadata=metadata)

    async def log_security(
        self,
        action:   str,
        severity: LogSeverity = LogSeverity.WARN,
        user_id:  str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self.log(
            f"SECURITY_{action}", "security",
            user_id=user_id, metadata=metadata, severity=severity,
        )

    async def log_error(
        self,
        error:       BaseException,
        context:     str,
        user_id:     str | None = None,
        resource:    str = "system",
        resource_id: Any = None,
    ) -> None:
        detail = getattr(error, "detail", None) or str(error)
        await self.log(
            "ERROR",
            resource,
            resource_id=str(resource_id) if resource_id is not None else None,
            user_id=user_id,
            metadata={
                "context":    context,
                "error_type": type(error).__name__,
                "error":      detail,
                "stack":      "".join(traceback.format_exception(error))[-4000:],
            },
            severity=LogSeverity.ERROR,
        )

    # ------------------------------------------------------------------

    @staticmethod
    def _fallback(action, resource, resource_id, user_id, metadata, severity) -> None:
        logger.log(
            _PY_LEVELS[severity],
            "AUDIT %s | resource=%s id=%s user=%s metadata=%s",
            action, resource, resource_id, user_id, metadata,
        )

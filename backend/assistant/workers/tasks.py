"""
Celery Tasks — Document Processing

Task: process_document
  Runs DocumentLifecycleManager.process() for one approved document:
  APPROVED → PROCESSING → download → extract → chunk → embed → persist
  → PROCESSED (or ERROR with the message recorded).

There is no Celery-level retry: ERROR is terminal for the pipeline and a
new upload is the recovery path. A document that is no longer APPROVED
when the task starts (duplicate delivery, manual change) is skipped.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

from celery import Task

from assistant.core.config import get_settings
from assistant.core.errors import NotFoundError, StateConflictError
from assistant.db.session import build_engine, build_session_factory
from assistant.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Async task helper
# Run async coroutines inside Celery's synchronous task context.
# ---------------------------------------------------------------------------

def run_async(coro):
    """Execute an async coroutine from a synchronous Celery task."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    import concurrent.futures
    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, coro).result()


# ---------------------------------------------------------------------------
# Main processing task
# ---------------------------------------------------------------------------

@celery_app.task(
    name="assistant.workers.tasks.process_document",
    bind=True,
    acks_late=True,
    reject_on_worker_lost=True,
    soft_time_limit=270,
    time_limit=330,
)
def process_document(
    self: Task,
    *,
    document_id:    str,
    acting_user_id: str | None = None,
) -> dict[str, Any]:
    return run_async(_process_document_async(uuid.UUID(document_id), acting_user_id))


async def _process_document_async(
    document_id:    uuid.UUID,
    acting_user_id: str | None,
) -> dict[str, Any]:
    from assistant.services.factory import build_services
    from assistant.workers.publisher import CeleryTaskPublisher

    settings = get_settings()
    # each task runs on a fresh event loop, so no pooled connections
    engine = build_engine(settings, null_pool=True)
    try:
        services = build_services(
            settings,
            build_session_factory(engine),
            publisher=CeleryTaskPublisher(),
        )
        try:
            status = await services.documents.process(document_id, acting_user_id)
        except (NotFoundError, StateConflictError) as exc:
            logger.warning("Skipping document | doc=%s reason=%s", document_id, exc.message)
            return {"status": "skipped", "document_id": str(document_id), "reason": exc.message}

        return {"status": status.value, "document_id": str(document_id)}
    finally:
        await engine.dispose()

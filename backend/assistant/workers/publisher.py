"""
Task publishers — hand document processing off the request path.

Approval calls publish_processing() and returns without waiting for the
pipeline. Two backends, selected by settings.processing_backend:

  InProcessTaskPublisher  asyncio task on the API's own event loop.
                          References are kept until the task finishes and
                          escaped exceptions are logged. drain() waits for
                          outstanding work (shutdown, tests).
  CeleryTaskPublisher     process_document task on the documents.process
                          queue; a worker process runs the pipeline.

Either way the pipeline records its own outcome on the document row
(PROCESSED or ERROR), so nothing here needs a result channel.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from assistant.services.documents import DocumentLifecycleManager

logger = logging.getLogger(__name__)


class TaskPublisher:
    """Interface injected into DocumentLifecycleManager; mocked in tests."""

    async def publish_processing(self, document_id: uuid.UUID, acting_user_id: str | None) -> None:
        raise NotImplementedError

    async def drain(self) -> None:
        """Wait for locally running work. No-op for remote backends."""


class InProcessTaskPublisher(TaskPublisher):

    def __init__(self, manager_factory: Callable[[], "DocumentLifecycleManager"]) -> None:
        self._manager_factory = manager_factory
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def publish_processing(self, document_id: uuid.UUID, acting_user_id: str | None) -> None:
        task = asyncio.create_task(
            self._run(document_id, acting_user_id),
            name=f"process-document-{document_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.info("Processing scheduled in-process | doc=%s", document_id)

    async def _run(self, document_id: uuid.UUID, acting_user_id: str | None):
        return await self._manager_factory().process(document_id, acting_user_id)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Processing task cancelled | task=%s", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Processing task failed | task=%s error=%s", task.get_name(), exc, exc_info=exc)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class CeleryTaskPublisher(TaskPublisher):
    """
    Sends process_document to the Celery broker.
    apply_async() blocks on the broker connection, so it runs in an executor.
    """

    async def publish_processing(self, document_id: uuid.UUID, acting_user_id: str | None) -> None:
        from assistant.workers.tasks import process_document

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            lambda: process_document.apply_async(
                kwargs={
                    "document_id":    str(document_id),
                    "acting_user_id": acting_user_id,
                },
            ),
        )
        logger.info("Processing task published | doc=%s", document_id)

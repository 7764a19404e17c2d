"""
Unit Tests — DocumentLifecycleManager
══════════════════════════════════════
Runs against a real SQLite schema (conftest) with fake storage, fake
embeddings and a mocked publisher.

Coverage targets:
  ✅ upload: PENDING row, blob stored under {millis}-{sanitized name}, audit
  ✅ upload: empty / too large / disallowed extension → ValidationError
  ✅ upload: blob failure → UpstreamServiceError, no row
  ✅ upload: metadata insert failure → blob removed again
  ✅ approve: PENDING → APPROVED, approval record, processing published
  ✅ approve: publisher failure does not undo the approval
  ✅ approve/reject on non-PENDING → StateConflictError; unknown id → NotFoundError
  ✅ concurrent approvals: exactly one wins
  ✅ reject: reason required, REJECTED with reason, blob deleted
  ✅ process: chunks + embeddings persisted and indexed, PROCESSED, is_processed
  ✅ process: partial embedding failure still PROCESSED, only embedded chunks indexed
  ✅ process: empty text / unsupported type / missing blob → ERROR with message
  ✅ process: index or commit failure → ERROR, no chunks, vectors removed
  ✅ process: raw storage error text only in the audit entry
  ✅ process: not APPROVED → StateConflictError, status untouched
  ✅ listings: own documents, paged admin listing with totals
"""

from __future__ import annotations

import asyncio
import re
import uuid
from unittest.mock import AsyncMock, patch

import pytest
from botocore.exceptions import ClientError
from sqlalchemy import select

from assistant.core.errors import (
    NotFoundError,
    StateConflictError,
    UpstreamServiceError,
    ValidationError,
)
from assistant.models.documents import AuditLog, Document, DocumentApproval, DocumentChunk
from assistant.models.enums import ApprovalAction, DocumentStatus
from assistant.services.documents import MAX_PAGE_LIMIT, MISSING_BLOB_MESSAGE, NO_TEXT_MESSAGE

MANUAL = (
    "De hydraulische pomp moet elk jaar worden gecontroleerd. "
    "Vervang het filter na 500 draaiuren. "
    "Controleer de oliedruk voor elke inzet."
)


async def _get(session_factory, document_id) -> Document:
    async with session_factory() as session:
        return await session.get(Document, document_id)


async def _chunks(session_factory, document_id) -> list[DocumentChunk]:
    async with session_factory() as session:
        rows = await session.scalars(
            select(DocumentChunk)
            .where(DocumentChunk.document_id == document_id)
            .order_by(DocumentChunk.chunk_index)
        )
        return list(rows.all())


async def _audit_actions(session_factory) -> list[str]:
    async with session_factory() as session:
        rows = await session.scalars(select(AuditLog.action).order_by(AuditLog.id))
        return list(rows.all())


# ─────────────────────────────────────────────────────────────────────────────
# upload
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestUpload:

    async def test_creates_pending_document(self, manager, session_factory, fake_storage, user_id):
        document = await manager.upload(MANUAL.encode(), "Pomp handleiding.txt", user_id)

        stored = await _get(session_factory, document.id)
        assert stored.status == DocumentStatus.PENDING
        assert stored.original_name == "Pomp handleiding.txt"
        assert stored.uploaded_by == user_id
        assert stored.size == len(MANUAL.encode())
        assert stored.mime_type == "text/plain"
        assert stored.is_processed is False
        assert re.fullmatch(r"\d{13}-Pomp_handleiding\.txt", stored.filename)
        assert fake_storage.objects[stored.filename] == MANUAL.encode()

    async def test_upload_is_audited(self, manager, session_factory, user_id):
        await manager.upload(b"tekst.", "a.txt", user_id)

        assert "DOCUMENT_UPLOADED" in await _audit_actions(session_factory)

    async def test_empty_file_rejected(self, manager, fake_storage, user_id):
        with pytest.raises(ValidationError) as exc_info:
            await manager.upload(b"", "leeg.txt", user_id)

        assert exc_info.value.field == "file"
        fake_storage.upload.assert_not_awaited()

    async def test_too_large_rejected(self, manager, test_settings, user_id):
        with pytest.raises(ValidationError):
            await manager.upload(b"x" * (test_settings.max_file_size_bytes + 1), "groot.txt", user_id)

    @pytest.mark.parametrize("name", ["virus.exe", "geen_extensie", "foto.png"])
    async def test_disallowed_extension_rejected(self, manager, fake_storage, name, user_id):
        with pytest.raises(ValidationError):
            await manager.upload(b"data", name, user_id)

        fake_storage.upload.assert_not_awaited()

    async def test_storage_failure_leaves_no_row(self, manager, session_factory, fake_storage, user_id):
        fake_storage.upload.side_effect = ConnectionError("bucket unreachable")

        with pytest.raises(UpstreamServiceError) as exc_info:
            await manager.upload(b"tekst.", "a.txt", user_id)

        assert "bucket unreachable" not in exc_info.value.message
        async with session_factory() as session:
            assert (await session.scalars(select(Document))).all() == []

    async def test_metadata_failure_removes_blob(self, manager, fake_storage, user_id):
        with patch("assistant.services.documents.Document", side_effect=RuntimeError("insert failed")):
            with pytest.raises(UpstreamServiceError):
                await manager.upload(b"tekst.", "a.txt", user_id)

        fake_storage.delete.assert_awaited_once()
        assert fake_storage.objects == {}


# ─────────────────────────────────────────────────────────────────────────────
# approve / reject
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestApproveReject:

    async def test_approve_sets_status_and_records_decision(
        self, manager, session_factory, mock_publisher, user_id, admin_id,
    ):
        document = await manager.upload(MANUAL.encode(), "a.txt", user_id)

        approved = await manager.approve(document.id, admin_id, reason="  Relevant  ")

        assert approved.status == DocumentStatus.APPROVED
        assert approved.approved_by == admin_id
        assert approved.approved_at is not None
        mock_publisher.publish_processing.assert_awaited_once_with(document.id, admin_id)

        async with session_factory() as session:
            decision = (await session.scalars(select(DocumentApproval))).one()
        assert decision.action == ApprovalAction.APPROVE
        assert decision.reason == "Relevant"
        assert decision.user_id == admin_id

    async def test_publisher_failure_keeps_approval(
        self, manager, session_factory, mock_publisher, user_id, admin_id,
    ):
        mock_publisher.publish_processing.side_effect = ConnectionError("broker down")
        document = await manager.upload(MANUAL.encode(), "a.txt", user_id)

        await manager.approve(document.id, admin_id)

        assert (await _get(session_factory, document.id)).status == DocumentStatus.APPROVED
        assert "ERROR" in await _audit_actions(session_factory)

    async def test_approve_twice_conflicts(self, manager, mock_publisher, user_id, admin_id):
        document = await manager.upload(MANUAL.encode(), "a.txt", user_id)
        await manager.approve(document.id, admin_id)

        with pytest.raises(StateConflictError):
            await manager.approve(document.id, admin_id)

        mock_publisher.publish_processing.assert_awaited_once()

    async def test_approve_unknown_document(self, manager, admin_id):
        with pytest.raises(NotFoundError):
            await manager.approve(uuid.uuid4(), admin_id)

    async def test_concurrent_approvals_one_winner(
        self, manager, session_factory, mock_publisher, user_id, admin_id,
    ):
        document = await manager.upload(MANUAL.encode(), "a.txt", user_id)

        results = await asyncio.gather(
            manager.approve(document.id, admin_id),
            manager.approve(document.id, "other-admin"),
            return_exceptions=True,
        )

        conflicts = [r for r in results if isinstance(r, StateConflictError)]
        assert len(conflicts) == 1
        assert mock_publisher.publish_processing.await_count == 1
        async with session_factory() as session:
            assert len((await session.scalars(select(DocumentApproval))).all()) == 1

    async def test_reject_requires_reason(self, manager, session_factory, user_id, admin_id):
        document = await manager.upload(MANUAL.encode(), "a.txt", user_id)

        with pytest.raises(ValidationError) as exc_info:
            await manager.reject(document.id, admin_id, "   ")

        assert exc_info.value.field == "reason"
        assert (await _get(session_factory, document.id)).status == DocumentStatus.PENDING
        assert "DOCUMENT_REJECTED" not in await _audit_actions(session_factory)

    async def test_reject_records_reason_and_deletes_blob(
        self, manager, session_factory, fake_storage, user_id, admin_id,
    ):
        document = await manager.upload(MANUAL.encode(), "a.txt", user_id)

        rejected = await manager.reject(document.id, admin_id, "Verouderd")

        assert rejected.status == DocumentStatus.REJECTED
        assert rejected.rejected_reason == "Verouderd"
        assert rejected.approved_by is None
        assert fake_storage.objects == {}
        assert "DOCUMENT_REJECTED" in await _audit_actions(session_factory)

    async def test_reject_survives_blob_delete_failure(
        self, manager, session_factory, fake_storage, user_id, admin_id,
    ):
        document = await manager.upload(MANUAL.encode(), "a.txt", user_id)
        fake_storage.delete.side_effect = ConnectionError("gone")

        await manager.reject(document.id, admin_id, "Dubbel")

        assert (await _get(session_factory, document.id)).status == DocumentStatus.REJECTED

    async def test_reject_after_approve_conflicts(self, manager, user_id, admin_id):
        document = await manager.upload(MANUAL.encode(), "a.txt", user_id)
        await manager.approve(document.id, admin_id)

        with pytest.raises(StateConflictError):
            await manager.reject(document.id, admin_id, "Te laat")


# ─────────────────────────────────────────────────────────────────────────────
# process
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestProcess:

    async def _approved(self, manager, data: bytes, name: str, user_id, admin_id) -> uuid.UUID:
        document = await manager.upload(data, name, user_id)
        await manager.approve(document.id, admin_id)
        return document.id

    async def test_success_persists_embedded_chunks(
        self, manager, session_factory, vector_store, user_id, admin_id,
    ):
        doc_id = await self._approved(manager, MANUAL.encode(), "pomp.txt", user_id, admin_id)

        status = await manager.process(doc_id, admin_id)

        assert status == DocumentStatus.PROCESSED
        stored = await _get(session_factory, doc_id)
        assert stored.status == DocumentStatus.PROCESSED
        assert stored.is_processed is True
        assert stored.processing_error is None

        chunks = await _chunks(session_factory, doc_id)
        assert len(chunks) == 1
        assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
        assert all(c.embedding is not None for c in chunks)
        assert chunks[0].doc_metadata == {
            "document_id": str(doc_id),
            "filename":    "pomp.txt",
            "mime_type":   "text/plain",
        }
        assert await vector_store.count() == 1

        actions = await _audit_actions(session_factory)
        assert "DOCUMENT_PROCESSING_STARTED" in actions
        assert "DOCUMENT_PROCESSING_COMPLETED" in actions

    async def test_partial_embedding_failure_still_processed(
        self, manager, session_factory, embeddings_client, vector_store, user_id, admin_id,
    ):
        text = " ".join(f"Zin nummer {i} over de pomp." for i in range(400))
        doc_id = await self._approved(manager, text.encode(), "lang.txt", user_id, admin_id)

        calls = {"n": 0}
        original = embeddings_client.aembed_query.side_effect

        async def _flaky(chunk_text):
            calls["n"] += 1
            if calls["n"] == 2:
                raise RuntimeError("rate limited")
            return original(chunk_text)

        embeddings_client.aembed_query.side_effect = _flaky

        status = await manager.process(doc_id, admin_id)

        assert status == DocumentStatus.PROCESSED
        chunks = await _chunks(session_factory, doc_id)
        assert len(chunks) > 2
        assert chunks[1].embedding is None
        assert sum(c.embedding is None for c in chunks) == 1
        assert await vector_store.count() == len(chunks) - 1

    async def test_whitespace_only_text_goes_to_error(
        self, manager, session_factory, user_id, admin_id,
    ):
        doc_id = await self._approved(manager, b"   \n\n   ", "leeg.txt", user_id, admin_id)

        status = await manager.process(doc_id, admin_id)

        assert status == DocumentStatus.ERROR
        stored = await _get(session_factory, doc_id)
        assert stored.status == DocumentStatus.ERROR
        assert stored.processing_error == NO_TEXT_MESSAGE
        assert await _chunks(session_factory, doc_id) == []

    async def test_punctuation_only_text_goes_to_error(
        self, manager, session_factory, user_id, admin_id,
    ):
        doc_id = await self._approved(manager, b"... !!! ???", "leeg.md", user_id, admin_id)

        assert await manager.process(doc_id, admin_id) == DocumentStatus.ERROR
        assert (await _get(session_factory, doc_id)).processing_error == NO_TEXT_MESSAGE

    async def test_legacy_doc_goes_to_error(self, manager, session_factory, user_id, admin_id):
        data = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 64
        doc_id = await self._approved(manager, data, "oud.doc", user_id, admin_id)

        status = await manager.process(doc_id, admin_id)

        assert status == DocumentStatus.ERROR
        stored = await _get(session_factory, doc_id)
        assert "application/msword" in stored.processing_error
        assert "ERROR" in await _audit_actions(session_factory)

    async def test_missing_blob_goes_to_error(
        self, manager, session_factory, fake_storage, user_id, admin_id,
    ):
        doc_id = await self._approved(manager, MANUAL.encode(), "pomp.txt", user_id, admin_id)
        fake_storage.objects.clear()

        assert await manager.process(doc_id, admin_id) == DocumentStatus.ERROR
        assert (await _get(session_factory, doc_id)).processing_error == MISSING_BLOB_MESSAGE

    async def test_index_failure_goes_to_error_without_chunks(
        self, manager, session_factory, vector_store, monkeypatch, user_id, admin_id,
    ):
        doc_id = await self._approved(manager, MANUAL.encode(), "pomp.txt", user_id, admin_id)
        monkeypatch.setattr(vector_store, "upsert", AsyncMock(side_effect=RuntimeError("chroma unavailable")))

        assert await manager.process(doc_id, admin_id) == DocumentStatus.ERROR

        stored = await _get(session_factory, doc_id)
        assert stored.processing_error == "Processing failed (RuntimeError)."
        assert await _chunks(session_factory, doc_id) == []

    async def test_commit_failure_removes_indexed_vectors(
        self, manager, session_factory, vector_store, user_id, admin_id,
    ):
        doc_id = await self._approved(manager, MANUAL.encode(), "pomp.txt", user_id, admin_id)
        # occupies chunk_index 0, so the chunk insert violates the unique position
        async with session_factory() as session, session.begin():
            session.add(DocumentChunk(document_id=doc_id, chunk_index=0, content="oud", tokens=1))

        assert await manager.process(doc_id, admin_id) == DocumentStatus.ERROR

        assert await vector_store.count() == 0
        assert (await _get(session_factory, doc_id)).processing_error == "Processing failed (IntegrityError)."

    async def test_raw_storage_error_kept_out_of_document(
        self, manager, session_factory, fake_storage, user_id, admin_id,
    ):
        doc_id = await self._approved(manager, MANUAL.encode(), "pomp.txt", user_id, admin_id)
        fake_storage.download = AsyncMock(side_effect=ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "arn:aws:s3:::interne-bucket denied"}},
            "GetObject",
        ))

        assert await manager.process(doc_id, admin_id) == DocumentStatus.ERROR

        stored = await _get(session_factory, doc_id)
        assert stored.processing_error == "Processing failed (ClientError)."
        async with session_factory() as session:
            entry = (await session.scalars(select(AuditLog).where(AuditLog.action == "ERROR"))).one()
        assert "arn:aws:s3:::interne-bucket" in entry.log_metadata["error"]
        assert entry.log_metadata["error_type"] == "ClientError"

    async def test_pending_document_not_processed(self, manager, session_factory, user_id):
        document = await manager.upload(MANUAL.encode(), "a.txt", user_id)

        with pytest.raises(StateConflictError):
            await manager.process(document.id)

        assert (await _get(session_factory, document.id)).status == DocumentStatus.PENDING

    async def test_processed_document_not_reprocessed(self, manager, user_id, admin_id):
        doc_id = await self._approved(manager, MANUAL.encode(), "pomp.txt", user_id, admin_id)
        await manager.process(doc_id, admin_id)

        with pytest.raises(StateConflictError):
            await manager.process(doc_id, admin_id)

    async def test_unknown_document(self, manager):
        with pytest.raises(NotFoundError):
            await manager.process(uuid.uuid4())

    async def test_cancellation_marks_error_and_propagates(
        self, manager, session_factory, fake_storage, user_id, admin_id,
    ):
        doc_id = await self._approved(manager, MANUAL.encode(), "pomp.txt", user_id, admin_id)
        fake_storage.download = AsyncMock(side_effect=asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            await manager.process(doc_id, admin_id)

        assert (await _get(session_factory, doc_id)).status == DocumentStatus.ERROR


# ─────────────────────────────────────────────────────────────────────────────
# listings
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestListings:

    async def test_list_my_documents_newest_first(self, manager, user_id):
        first  = await manager.upload(b"een.", "een.txt", user_id)
        second = await manager.upload(b"twee.", "twee.txt", user_id)
        await manager.upload(b"ander.", "ander.txt", "someone-else")

        documents = await manager.list_my_documents(user_id)

        assert [d.id for d in documents] == [second.id, first.id]

    async def test_list_by_status_pages_and_counts(self, manager, user_id, admin_id):
        ids = [(await manager.upload(f"doc {i}.".encode(), f"d{i}.txt", user_id)).id for i in range(5)]
        await manager.approve(ids[0], admin_id)

        page1 = await manager.list_by_status(DocumentStatus.PENDING, page=1, limit=3)
        page2 = await manager.list_by_status(DocumentStatus.PENDING, page=2, limit=3)

        assert page1.total == 4
        assert page1.total_pages == 2
        assert len(page1.documents) == 3
        assert len(page2.documents) == 1
        assert ids[0] not in {d.id for d in page1.documents + page2.documents}
        assert [d.id for d in page1.documents] == [ids[4], ids[3], ids[2]]

    async def test_list_by_status_empty(self, manager):
        page = await manager.list_by_status(DocumentStatus.ERROR)

        assert page.documents == []
        assert page.total == 0
        assert page.total_pages == 0

    @pytest.mark.parametrize("page,limit", [(0, 20), (1, 0), (1, MAX_PAGE_LIMIT + 1)])
    async def test_list_by_status_bounds(self, manager, page, limit):
        with pytest.raises(ValidationError):
            await manager.list_by_status(DocumentStatus.PENDING, page=page, limit=limit)

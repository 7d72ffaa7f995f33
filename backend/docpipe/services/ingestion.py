"""
Ingestion Coordinator

Creates a document and starts the pipeline:
  1. Validate title and content (size, non-empty)
  2. Upload bytes to the content store under documents/<document_id><ext>
  3. Insert the document record (status=NEW, version=0)
  4. Publish document.created — only after the insert committed
  5. Advance the record to EXTRACTING (best effort)

Failure handling:
  - Publish fails → the record is marked FAILED with the reason and
    EventPublishError propagates; no NEW record is left without an event.
  - A version conflict in step 5 means a later stage already moved the
    record on; it is logged, never raised.

No idempotency check here: every call mints a fresh document id.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import re
import uuid
from typing import Any

from docpipe.core.exceptions import (
    EventPublishError,
    InvalidDocumentError,
    PipelineError,
    StaleRecordError,
)
from docpipe.models.documents import Document, DocumentStatus
from docpipe.resilience.envelope import CONTENT_STORE, ResilienceRegistry
from docpipe.schemas.events import (
    DocumentCreatedEvent,
    ExtractionCompletedEvent,
    StageEvent,
    SummaryResultEvent,
)
from docpipe.storage.s3 import document_key

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 255


def _sanitize_filename(filename: str) -> str:
    """
    Strip path components and replace unsafe characters.
    Returns only the basename with OS-safe characters.
    """
    basename = filename.replace("\\", "/").rsplit("/", 1)[-1]
    safe = re.sub(r"[^a-zA-Z0-9._\-]", "_", basename)
    return safe[:200] or "upload"


class IngestionCoordinator:
    """All collaborators injected; one instance can serve many requests."""

    def __init__(
        self,
        storage: Any,
        store: Any,
        publisher: "EventPublisher",
        registry: ResilienceRegistry,
        settings: Any,
    ) -> None:
        self._storage = storage
        self._store = store
        self._publisher = publisher
        self._registry = registry
        self._settings = settings

    async def create_document(
        self,
        title: str,
        filename: str,
        content: bytes,
        content_type: str | None = None,
        language: str | None = None,
    ) -> Document:
        # ---- Step 1: Validate ----------------------------------------------
        title = (title or "").strip()
        if not title:
            raise InvalidDocumentError("Title must not be empty")
        if len(title) > MAX_TITLE_LENGTH:
            raise InvalidDocumentError(f"Title exceeds {MAX_TITLE_LENGTH} characters")
        if not content:
            raise InvalidDocumentError("Document content must not be empty")
        max_size = self._settings.max_file_size_bytes
        if len(content) > max_size:
            raise InvalidDocumentError(
                f"Received {len(content):,} bytes; limit is {max_size:,} bytes"
            )

        safe_filename = _sanitize_filename(filename or "upload")
        ct = content_type or mimetypes.guess_type(safe_filename)[0] or "application/octet-stream"
        document_id = uuid.uuid4()

        logger.info(
            "Ingest start | doc=%s file=%s size=%d content_type=%s",
            document_id, safe_filename, len(content), ct,
        )

        # ---- Step 2: Upload ------------------------------------------------
        key = document_key(document_id, safe_filename)
        ref = await self._registry.get(CONTENT_STORE).call(
            self._storage.put_object, key, content, ct,
        )

        # ---- Step 3: Persist -----------------------------------------------
        doc = Document(
            id=document_id,
            title=title,
            filename=safe_filename,
            bucket=ref.bucket,
            object_key=ref.key,
            content_type=ref.content_type,
            size_bytes=ref.size_bytes,
            status=DocumentStatus.NEW.value,
            summary_degraded=False,
            version=0,
        )
        await self._store.create(doc)

        # ---- Step 4: Publish -----------------------------------------------
        event = DocumentCreatedEvent.for_document(document_id, title, ref, language=language)
        try:
            await self._publisher.publish_document_created(event)
        except EventPublishError as exc:
            logger.error("Publish failed, marking document failed | doc=%s error=%s", document_id, exc)
            await self._mark_failed(doc, f"Could not queue document for processing: {exc}")
            raise

        # ---- Step 5: Advance -----------------------------------------------
        try:
            doc.version = await self._store.update(
                document_id, doc.version, status=DocumentStatus.EXTRACTING.value,
            )
            doc.status = DocumentStatus.EXTRACTING.value
        except StaleRecordError:
            logger.info("Document already advanced by a later stage | doc=%s", document_id)

        logger.info("Ingest done | doc=%s key=%s", document_id, key)
        return doc

    async def _mark_failed(self, doc: Document, reason: str) -> None:
        try:
            doc.version = await self._store.update(
                doc.id, doc.version, status=DocumentStatus.FAILED.value, error_message=reason,
            )
            doc.status = DocumentStatus.FAILED.value
            doc.error_message = reason
        except PipelineError:
            logger.exception("Could not mark document failed | doc=%s", doc.id)


# ---------------------------------------------------------------------------
# Event publisher: thin abstraction over Celery apply_async()
# Injected into the coordinator and stages so it can be mocked in tests.
# ---------------------------------------------------------------------------

_PUBLISH_RETRY_POLICY = {
    "max_retries":    3,
    "interval_start": 0,
    "interval_step":  0.5,
    "interval_max":   2,
}


class EventPublisher:
    """
    Sends stage events to the broker as Celery tasks.

    The task id is the event's message_id, so a re-published event is
    recognisable in broker and worker logs. Publisher confirms are enabled on
    the broker transport; any publish error surfaces as EventPublishError.
    Imports are deferred so the broker is not needed at module load time.
    """

    async def publish_document_created(self, event: DocumentCreatedEvent) -> None:
        from docpipe.workers.tasks import extract_document

        await self._send(extract_document, event, event.message_id)

    async def publish_extraction_completed(self, event: ExtractionCompletedEvent) -> None:
        from docpipe.workers.tasks import record_extraction_result, summarize_document

        await self._send(summarize_document, event, event.message_id)
        # Fan-out copy for the result sink
        await self._send(record_extraction_result, event, f"{event.message_id}.sink")

    async def publish_summary_result(self, event: SummaryResultEvent) -> None:
        from docpipe.workers.tasks import record_summary_result

        await self._send(record_summary_result, event, event.message_id)

    async def _send(self, task: Any, event: StageEvent, task_id: str) -> None:
        payload = event.model_dump(mode="json")
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None,
                lambda: task.apply_async(
                    kwargs={"event": payload},
                    task_id=task_id,
                    retry=True,
                    retry_policy=_PUBLISH_RETRY_POLICY,
                ),
            )
        except Exception as exc:
            raise EventPublishError(f"Publishing {task.name} failed: {exc}") from exc

        logger.info("Event published | task=%s doc=%s task_id=%s", task.name, event.document_id, task_id)

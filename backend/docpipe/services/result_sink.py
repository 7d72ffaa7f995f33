"""
Result Sink — the only consumer that writes stage outcomes to the record store

  summary.result                 claim "result-<doc_id>"
    SUCCESS → summary, degraded flag, status COMPLETED
    FAILURE → status FAILED with the reason

  extraction.completed (fan-out) claim "extracted-<doc_id>"
    SUCCESS → text length, pages, confidence, language;
              status SUMMARIZING when the text is long enough to summarize,
              EXTRACTED otherwise
    FAILURE → status FAILED with the reason

Rules:
  - Status only moves forward; COMPLETED and FAILED are never left. An
    outcome that would move a record backwards is logged and dropped.
  - A result for a document that does not exist is logged and acknowledged.
  - Writes are versioned. On a conflict the record is re-read and the
    decision re-made, up to `max_attempts` times; after that StaleRecordError
    propagates and the broker redelivers.
"""

from __future__ import annotations

import logging
from typing import Any, Callable
from uuid import UUID

from docpipe.core.exceptions import StaleRecordError
from docpipe.idempotency.guard import IdempotencyGuard
from docpipe.models.documents import Document, DocumentStatus
from docpipe.schemas.events import (
    STAGE_EXTRACTED,
    STAGE_RESULT,
    ExtractionCompletedEvent,
    SummaryResultEvent,
    message_id_for,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3

# (target status, column values) or None to skip
Decision = tuple[DocumentStatus, dict[str, Any]] | None


class ResultSink:

    def __init__(
        self,
        store: Any,
        guard: IdempotencyGuard,
        settings: Any,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        self._store = store
        self._guard = guard
        self._settings = settings
        self._max_attempts = max_attempts

    # ------------------------------------------------------------------
    # summary.result
    # ------------------------------------------------------------------

    async def handle_summary_result(self, event: SummaryResultEvent) -> bool:
        """True when the record was updated."""
        key = message_id_for(STAGE_RESULT, event.document_id)
        if not self._guard.try_claim(key):
            return False

        def decide(doc: Document) -> Decision:
            if event.succeeded:
                return DocumentStatus.COMPLETED, {
                    "summary":          event.summary,
                    "summary_degraded": event.degraded,
                    "error_message":    event.error_message if event.degraded else None,
                }
            return DocumentStatus.FAILED, {
                "error_message": event.error_message or "Summarization failed",
            }

        try:
            return await self._apply(event.document_id, decide, "summary")
        except BaseException:
            self._guard.release(key)
            raise

    # ------------------------------------------------------------------
    # extraction.completed (fan-out copy)
    # ------------------------------------------------------------------

    async def handle_extraction_completed(self, event: ExtractionCompletedEvent) -> bool:
        key = message_id_for(STAGE_EXTRACTED, event.document_id)
        if not self._guard.try_claim(key):
            return False

        min_length = self._settings.summary_min_text_length

        def decide(doc: Document) -> Decision:
            if not event.succeeded:
                return DocumentStatus.FAILED, {
                    "error_message": f"Extraction failed: {event.error_message or 'unknown error'}",
                }
            target = (
                DocumentStatus.SUMMARIZING
                if event.has_valid_text(min_length)
                else DocumentStatus.EXTRACTED
            )
            return target, {
                "extracted_text_length": event.total_characters,
                "page_count":            event.total_pages,
                "ocr_confidence":        event.overall_confidence,
                "language":              event.language,
            }

        try:
            return await self._apply(event.document_id, decide, "extraction")
        except BaseException:
            self._guard.release(key)
            raise

    # ------------------------------------------------------------------
    # Versioned write
    # ------------------------------------------------------------------

    async def _apply(
        self,
        document_id: UUID,
        decide: Callable[[Document], Decision],
        kind: str,
    ) -> bool:
        last_conflict: StaleRecordError | None = None

        for attempt in range(1, self._max_attempts + 1):
            doc = await self._store.get(document_id)
            if doc is None:
                logger.warning("Result for unknown document, dropping | doc=%s kind=%s", document_id, kind)
                return False

            decision = decide(doc)
            if decision is None:
                return False
            target, values = decision

            current = doc.lifecycle
            if not current.can_transition_to(target):
                logger.info(
                    "Stale %s result ignored | doc=%s current=%s target=%s",
                    kind, document_id, current.value, target.value,
                )
                return False

            try:
                await self._store.update(document_id, doc.version, status=target.value, **values)
            except StaleRecordError as exc:
                last_conflict = exc
                logger.info(
                    "Retrying after version conflict | doc=%s attempt=%d/%d",
                    document_id, attempt, self._max_attempts,
                )
                continue

            log = logger.error if target is DocumentStatus.FAILED else logger.info
            log(
                "Document %s | doc=%s %s -> %s",
                kind, document_id, current.value, target.value,
            )
            return True

        assert last_conflict is not None
        raise last_conflict

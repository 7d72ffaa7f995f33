"""
Extraction Stage — document.created → extraction.completed
══════════════════════════════════════════════════════════

  1. Claim "extract-<doc_id>"        duplicate delivery → ack, no side effects
  2. Fetch bytes from the content store           (envelope: content-store)
  3. Resolve the file type by magic number        (declared type is a hint)
  4. PDF → one PNG per page at the configured DPI; image → one page
  5. OCR every page on the thread pool            (envelope: ocr-engine)
       a page that fails to render or recognise becomes an empty,
       zero-confidence, success=False PageResult; the others carry on
  6. Aggregate: non-empty pages joined with "\\n\\n--- Page N ---\\n", overall
     confidence = mean over all attempted pages (failed pages count as 0);
     text length is the sum of page character counts, markers excluded
  7. Publish extraction.completed — SUCCESS, or FAILURE with a reason

Every outcome the stage can explain (missing object, unsupported type,
corrupt PDF, store unavailable after retries, all pages failed) becomes a
FAILURE event. Only a failed publish escapes: the claim is released and the
error propagates so the broker redelivers.
"""

from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import Executor
from typing import Any

from docpipe.core.exceptions import (
    CircuitOpenError,
    ContentNotFoundError,
    PermanentError,
    RateLimitExceededError,
    RetryExhaustedError,
)
from docpipe.idempotency.guard import IdempotencyGuard
from docpipe.processing.detection import SUPPORTED_TYPES_LABEL, FileType, resolve_file_type
from docpipe.processing.ocr import OcrOutput, TesseractOcrEngine
from docpipe.processing.rendering import render_pdf_pages
from docpipe.resilience.envelope import CONTENT_STORE, OCR_ENGINE, ResilienceRegistry
from docpipe.schemas.events import (
    STAGE_EXTRACT,
    DocumentCreatedEvent,
    ExtractionCompletedEvent,
    PageResult,
    message_id_for,
)

logger = logging.getLogger(__name__)

_UNAVAILABLE = (CircuitOpenError, RetryExhaustedError, RateLimitExceededError)


def page_separator(page_number: int) -> str:
    return f"\n\n--- Page {page_number} ---\n"


def aggregate_pages(pages: list[PageResult]) -> tuple[str, float]:
    """
    Join non-empty page texts, marking each page boundary after the first
    text written. Confidence is the mean over all pages, empty ones included.
    """
    parts: list[str] = []
    for page in pages:
        if not page.text:
            continue
        if parts:
            parts.append(page_separator(page.page_number))
        parts.append(page.text)

    confidence = sum(p.confidence for p in pages) / len(pages) if pages else 0.0
    return "".join(parts), round(confidence, 2)


def _elapsed_ms(t0: float) -> int:
    return int((time.monotonic() - t0) * 1000)


class ExtractionStage:

    def __init__(
        self,
        storage: Any,
        ocr_engine: TesseractOcrEngine,
        publisher: Any,
        guard: IdempotencyGuard,
        registry: ResilienceRegistry,
        settings: Any,
        executor: Executor | None = None,
    ) -> None:
        self._storage = storage
        self._ocr = ocr_engine
        self._publisher = publisher
        self._guard = guard
        self._registry = registry
        self._settings = settings
        self._executor = executor

    # ------------------------------------------------------------------
    # Consumer entry point
    # ------------------------------------------------------------------

    async def handle(self, event: DocumentCreatedEvent) -> ExtractionCompletedEvent | None:
        """Returns the published event, or None for a duplicate delivery."""
        key = message_id_for(STAGE_EXTRACT, event.document_id)
        if not self._guard.try_claim(key):
            return None

        try:
            result = await self.extract(event)
            await self._publisher.publish_extraction_completed(result)
        except BaseException:
            self._guard.release(key)
            raise

        logger.info(
            "Extraction published | doc=%s status=%s pages=%d chars=%d confidence=%.1f",
            event.document_id, result.status.value, result.total_pages,
            result.total_characters, result.overall_confidence,
        )
        return result

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    async def extract(self, event: DocumentCreatedEvent) -> ExtractionCompletedEvent:
        doc_id, title = event.document_id, event.title
        t0 = time.monotonic()
        logger.info("Extraction start | doc=%s key=%s", doc_id, event.content.key)

        def failure(reason: str, pages: list[PageResult] | None = None) -> ExtractionCompletedEvent:
            logger.error("Extraction failed | doc=%s reason=%s", doc_id, reason)
            return ExtractionCompletedEvent.failure(
                doc_id, title, reason, _elapsed_ms(t0), page_results=pages,
            )

        # ---- Fetch ------------------------------------------------------
        try:
            data: bytes = await self._registry.get(CONTENT_STORE).call(
                self._storage.get_object, event.content.key,
            )
        except ContentNotFoundError as exc:
            return failure(f"Document content not found: {exc.key}")
        except _UNAVAILABLE as exc:
            return failure(f"Content store unavailable: {exc}")
        except PermanentError as exc:
            return failure(f"Content store rejected request: {exc}")

        if not data:
            return failure("Document content is empty")
        if len(data) > self._settings.max_file_size_bytes:
            return failure(
                f"File size {len(data)} bytes exceeds limit of "
                f"{self._settings.max_file_size_bytes} bytes"
            )

        # ---- Detect -----------------------------------------------------
        file_type = resolve_file_type(data, event.content.content_type, doc_id)
        if not file_type.is_supported:
            return failure(
                f"Unsupported file type: {event.content.content_type}. "
                f"Supported types: {SUPPORTED_TYPES_LABEL}"
            )

        # ---- Rasterise --------------------------------------------------
        loop = asyncio.get_running_loop()
        if file_type is FileType.PDF:
            try:
                images = await loop.run_in_executor(
                    self._executor, render_pdf_pages, data, self._settings.ocr_pdf_rendering_dpi,
                )
            except PermanentError as exc:
                return failure(f"Invalid PDF: {exc}")
        else:
            images = [data]

        # ---- OCR --------------------------------------------------------
        language = self._ocr.resolve_language(event.language)
        pages = list(
            await asyncio.gather(
                *(self._ocr_page(doc_id, n, image, language) for n, image in enumerate(images, start=1))
            )
        )

        failed = sum(1 for p in pages if not p.success)
        if failed == len(pages):
            return failure(f"OCR failed on all {len(pages)} pages", pages)
        if failed:
            logger.warning(
                "Partial OCR failure | doc=%s failed_pages=%d total_pages=%d",
                doc_id, failed, len(pages),
            )

        text, confidence = aggregate_pages(pages)
        return ExtractionCompletedEvent.success(
            doc_id,
            title,
            extracted_text=text,
            page_results=pages,
            language=language,
            overall_confidence=confidence,
            processing_time_ms=_elapsed_ms(t0),
        )

    async def _ocr_page(
        self, doc_id: object, page_number: int, image: bytes | None, language: str,
    ) -> PageResult:
        t0 = time.monotonic()
        if image is None:
            return PageResult.failed(page_number, _elapsed_ms(t0))

        try:
            output: OcrOutput = await self._registry.get(OCR_ENGINE).call(
                self._recognize, image, language,
            )
        except Exception as exc:
            logger.warning(
                "Page OCR failed | doc=%s page=%d error=%s: %s",
                doc_id, page_number, type(exc).__name__, exc,
            )
            return PageResult.failed(page_number, _elapsed_ms(t0))

        text = output.text.strip()
        return PageResult(
            page_number=page_number,
            text=text,
            character_count=len(text),
            confidence=output.confidence,
            success=True,
            processing_time_ms=_elapsed_ms(t0),
        )

    async def _recognize(self, image: bytes, language: str) -> OcrOutput:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._ocr.recognize, image, language)

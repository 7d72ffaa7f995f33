"""
Summarization Stage — extraction.completed → summary.result

  1. Claim "summarize-<doc_id>"; duplicate delivery → ack, no side effects
  2. Preconditions, checked without calling the API:
       extraction succeeded · text longer than the minimum · API key present
  3. Truncate the text to the configured input limit
  4. Call the summarizer through the "summarizer" envelope
  5. Publish summary.result

When the summarizer is unavailable (open circuit, retries exhausted,
rate-limit timeout) the outcome follows SUMMARY_FALLBACK_POLICY:
  failure  → FAILURE "Summarization service unavailable: ..."
  degraded → SUCCESS, degraded=True, placeholder summary
A permanent API error (4xx) is never retried and always yields FAILURE.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from docpipe.core.exceptions import PermanentError
from docpipe.idempotency.guard import IdempotencyGuard
from docpipe.llm.summarizer import Summarizer
from docpipe.resilience.envelope import SUMMARIZER, ResilienceRegistry
from docpipe.schemas.events import (
    STAGE_SUMMARIZE,
    ExtractionCompletedEvent,
    SummaryResultEvent,
    message_id_for,
)

logger = logging.getLogger(__name__)

ELLIPSIS = "..."
_BOUNDARIES = (".", "!", "?", "\n")

PLACEHOLDER_SUMMARY = (
    "Summary temporarily unavailable. The document text was extracted "
    "successfully; a summary can be generated later."
)


def truncate_text(text: str, max_length: int) -> str:
    """
    Shorten `text` to at most `max_length` characters.

    Cuts after the last sentence or line boundary when that boundary lies
    past the midpoint; otherwise hard-truncates and appends "...".
    """
    if len(text) <= max_length:
        return text

    head = text[:max_length]
    boundary = max(head.rfind(ch) for ch in _BOUNDARIES)
    if boundary > max_length // 2:
        return head[: boundary + 1]
    return text[: max(0, max_length - len(ELLIPSIS))] + ELLIPSIS


def _elapsed_ms(t0: float) -> int:
    return int((time.monotonic() - t0) * 1000)


class SummarizationStage:

    def __init__(
        self,
        summarizer: Summarizer,
        publisher: Any,
        guard: IdempotencyGuard,
        registry: ResilienceRegistry,
        settings: Any,
    ) -> None:
        self._summarizer = summarizer
        self._publisher = publisher
        self._guard = guard
        self._registry = registry
        self._settings = settings

    async def handle(self, event: ExtractionCompletedEvent) -> SummaryResultEvent | None:
        """Returns the published event, or None for a duplicate delivery."""
        key = message_id_for(STAGE_SUMMARIZE, event.document_id)
        if not self._guard.try_claim(key):
            return None

        try:
            result = await self.summarize(event)
            await self._publisher.publish_summary_result(result)
        except BaseException:
            self._guard.release(key)
            raise

        logger.info(
            "Summary published | doc=%s status=%s degraded=%s elapsed_ms=%d",
            event.document_id, result.status.value, result.degraded, result.processing_time_ms,
        )
        return result

    async def summarize(self, event: ExtractionCompletedEvent) -> SummaryResultEvent:
        doc_id, title = event.document_id, event.title
        t0 = time.monotonic()
        min_length = self._settings.summary_min_text_length

        def failure(reason: str) -> SummaryResultEvent:
            logger.error("Summarization failed | doc=%s reason=%s", doc_id, reason)
            return SummaryResultEvent.failure(doc_id, title, reason, _elapsed_ms(t0))

        # ---- Preconditions (no API call) --------------------------------
        if not event.succeeded:
            return failure(f"OCR extraction failed: {event.error_message or 'unknown error'}")
        if not event.has_valid_text(min_length):
            return failure(
                f"Extracted text too short for summarization "
                f"({len(event.extracted_text.strip())} characters, minimum {min_length + 1})"
            )
        if not self._summarizer.is_configured:
            return failure("Summarization service is not configured")

        text = truncate_text(event.extracted_text, self._settings.summary_max_input_length)
        if len(text) < len(event.extracted_text):
            logger.info(
                "Input truncated | doc=%s original=%d truncated=%d",
                doc_id, len(event.extracted_text), len(text),
            )

        # ---- Call -------------------------------------------------------
        async def attempt() -> SummaryResultEvent:
            summary = await self._summarizer.summarize(text)
            return SummaryResultEvent.success(doc_id, title, summary, _elapsed_ms(t0))

        async def on_unavailable(exc: Exception) -> SummaryResultEvent:
            reason = f"Summarization service unavailable: {exc}"
            if self._settings.summary_fallback_policy == "degraded":
                logger.warning("Degraded summary | doc=%s reason=%s", doc_id, reason)
                return SummaryResultEvent.degraded_success(
                    doc_id, title, PLACEHOLDER_SUMMARY, reason, _elapsed_ms(t0),
                )
            return failure(reason)

        logger.info("Summarization start | doc=%s chars=%d", doc_id, len(text))
        try:
            return await self._registry.get(SUMMARIZER).call(attempt, fallback=on_unavailable)
        except PermanentError as exc:
            return failure(f"Summarization rejected: {exc}")

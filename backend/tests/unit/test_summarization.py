"""
Unit Tests — SummarizationStage and input truncation
════════════════════════════════════════════════════

Coverage targets:
  ✅ Truncation at the last sentence boundary past the midpoint
  ✅ Hard truncation with "..." when no usable boundary exists
  ✅ Failed extraction / short text / missing API key → FAILURE, no API call
  ✅ Transient errors retried, then fallback policy applies
       failure  → FAILURE "Summarization service unavailable: ..."
       degraded → SUCCESS, degraded=True, placeholder summary
  ✅ Open circuit → fallback without calling the API
  ✅ Permanent API error → FAILURE after exactly one call
  ✅ Duplicate delivery → nothing published
"""

from __future__ import annotations

import uuid

import pytest

from docpipe.core.exceptions import (
    EmptySummaryError,
    EventPublishError,
    SummarizationRejectedError,
    SummarizationUnavailableError,
)
from docpipe.resilience import (
    SUMMARIZER,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    ResilienceEnvelope,
    RetryPolicy,
)
from docpipe.schemas.events import ExtractionCompletedEvent, PageResult, StageStatus
from docpipe.services.summarization import (
    PLACEHOLDER_SUMMARY,
    SummarizationStage,
    truncate_text,
)

LONG_TEXT = (
    "The quarterly report shows revenue growth across all regions. "
    "Operating costs fell for the third consecutive quarter."
)


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def stage(summarizer, publisher, guard, registry, test_settings) -> SummarizationStage:
    return SummarizationStage(summarizer, publisher, guard, registry, test_settings)


def _extraction(text: str = LONG_TEXT, document_id: uuid.UUID | None = None) -> ExtractionCompletedEvent:
    return ExtractionCompletedEvent.success(
        document_id or uuid.uuid4(),
        "Quarterly Report",
        extracted_text=text,
        page_results=[
            PageResult(page_number=1, text=text, character_count=len(text), confidence=88.0),
        ],
        language="eng",
        overall_confidence=88.0,
        processing_time_ms=12,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Truncation
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.summarization
class TestTruncation:

    def test_short_text_untouched(self):
        assert truncate_text("Hello.", 100) == "Hello."

    def test_cuts_at_sentence_boundary(self):
        text = "a" * 29_999 + "." + "b" * 30_000

        result = truncate_text(text, 30_000)

        assert len(result) == 30_000
        assert result.endswith(".")

    def test_default_limit_cuts_at_boundary_past_midpoint(self):
        text = "a" * 30_000 + "." + "b" * 29_999
        assert len(text) == 60_000

        result = truncate_text(text, 50_000)

        assert result == text[:30_001]
        assert len(result) == 30_001
        assert result.endswith(".")

    def test_newline_counts_as_boundary(self):
        text = "x" * 70 + "\n" + "y" * 100

        assert truncate_text(text, 100) == "x" * 70 + "\n"

    def test_hard_truncate_when_boundary_too_early(self):
        text = "Hi. " + "z" * 200

        result = truncate_text(text, 50)

        assert result.endswith("...")
        assert len(result) == 50

    def test_hard_truncate_without_any_boundary(self):
        result = truncate_text("w" * 1000, 100)
        assert result == "w" * 97 + "..."


# ─────────────────────────────────────────────────────────────────────────────
# Preconditions
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.summarization
class TestPreconditions:

    async def test_failed_extraction(self, stage, summarizer):
        event = ExtractionCompletedEvent.failure(uuid.uuid4(), "Scan", "OCR failed on all 2 pages")

        result = await stage.summarize(event)

        assert result.status is StageStatus.FAILURE
        assert result.error_message == "OCR extraction failed: OCR failed on all 2 pages"
        assert summarizer.calls == []

    async def test_text_too_short(self, stage, summarizer):
        result = await stage.summarize(_extraction("Too short."))

        assert result.status is StageStatus.FAILURE
        assert result.error_message.startswith("Extracted text too short for summarization")
        assert summarizer.calls == []

    async def test_text_exactly_at_minimum_is_too_short(self, stage, summarizer, test_settings):
        text = "x" * test_settings.summary_min_text_length

        result = await stage.summarize(_extraction(text))

        assert result.status is StageStatus.FAILURE
        assert summarizer.calls == []

    async def test_not_configured(self, stage, summarizer):
        summarizer.configured = False

        result = await stage.summarize(_extraction())

        assert result.status is StageStatus.FAILURE
        assert result.error_message == "Summarization service is not configured"
        assert summarizer.calls == []


# ─────────────────────────────────────────────────────────────────────────────
# API outcomes
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.summarization
class TestSummarizerCalls:

    async def test_success(self, stage, summarizer, publisher):
        event = _extraction()

        result = await stage.handle(event)

        assert result.status is StageStatus.SUCCESS
        assert result.summary == "A concise summary of the document."
        assert result.degraded is False
        assert result.message_id == f"summarize-{event.document_id}"
        assert summarizer.calls == [LONG_TEXT]
        assert publisher.summaries == [result]

    async def test_input_is_truncated_before_call(self, stage, summarizer, test_settings):
        test_settings.summary_max_input_length = 100

        await stage.summarize(_extraction(LONG_TEXT * 3))

        assert len(summarizer.calls[0]) <= 100

    async def test_transient_then_success(self, stage, summarizer):
        summarizer.responses = [SummarizationUnavailableError("502"), "Recovered summary."]

        result = await stage.summarize(_extraction())

        assert result.status is StageStatus.SUCCESS
        assert result.summary == "Recovered summary."
        assert len(summarizer.calls) == 2

    async def test_empty_answer_is_retried(self, stage, summarizer):
        summarizer.responses = [EmptySummaryError("empty"), "Second try."]

        result = await stage.summarize(_extraction())

        assert result.summary == "Second try."

    async def test_unavailable_with_failure_policy(self, stage, summarizer):
        summarizer.responses = [SummarizationUnavailableError("503")] * 3

        result = await stage.summarize(_extraction())

        assert result.status is StageStatus.FAILURE
        assert result.error_message.startswith("Summarization service unavailable:")
        assert len(summarizer.calls) == 3

    async def test_unavailable_with_degraded_policy(self, stage, summarizer, test_settings):
        test_settings.summary_fallback_policy = "degraded"
        summarizer.responses = [SummarizationUnavailableError("503")] * 3

        result = await stage.summarize(_extraction())

        assert result.status is StageStatus.SUCCESS
        assert result.degraded is True
        assert result.summary == PLACEHOLDER_SUMMARY
        assert result.error_message.startswith("Summarization service unavailable:")

    async def test_permanent_error_not_retried(self, stage, summarizer):
        summarizer.responses = [SummarizationRejectedError("400 context length exceeded")]

        result = await stage.summarize(_extraction())

        assert result.status is StageStatus.FAILURE
        assert result.error_message == "Summarization rejected: 400 context length exceeded"
        assert len(summarizer.calls) == 1

    async def test_open_circuit_skips_api(self, stage, summarizer, registry):
        breaker = CircuitBreaker(SUMMARIZER, CircuitBreakerConfig(window_size=1, minimum_calls=1))
        registry.register(ResilienceEnvelope(SUMMARIZER, breaker, RetryPolicy(max_attempts=1)))
        summarizer.responses = [SummarizationUnavailableError("503")]

        first = await stage.summarize(_extraction())
        assert breaker.state is CircuitState.OPEN

        second = await stage.summarize(_extraction())

        assert first.status is StageStatus.FAILURE
        assert second.status is StageStatus.FAILURE
        assert "is open" in second.error_message
        assert len(summarizer.calls) == 1


# ─────────────────────────────────────────────────────────────────────────────
# Idempotency and publish failures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.summarization
class TestSummarizationDelivery:

    async def test_duplicate_delivery_is_noop(self, stage, summarizer, publisher):
        event = _extraction()

        assert await stage.handle(event) is not None
        assert await stage.handle(event) is None
        assert len(summarizer.calls) == 1
        assert len(publisher.summaries) == 1

    async def test_publish_failure_releases_claim(self, stage, publisher, guard):
        event = _extraction()
        publisher.fail_with = EventPublishError("no confirm")

        with pytest.raises(EventPublishError):
            await stage.handle(event)

        assert guard.is_claimed(f"summarize-{event.document_id}") is False

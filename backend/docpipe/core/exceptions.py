"""
Pipeline error taxonomy.

  TransientError  — infrastructure hiccup (network, 5xx, timeout, version
                    conflict). Retried by the resilience envelope; surfaced to
                    the broker for redelivery when it escapes a stage.
  PermanentError  — bad input or a 4xx-equivalent answer. Never retried;
                    turned into a terminal FAILURE event with a reason.

Resilience outcomes (CircuitOpenError, RateLimitExceededError,
RetryExhaustedError) are what the envelope hands to a fallback.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for every error raised by docpipe."""


class TransientError(PipelineError):
    """A failure worth retrying."""


class PermanentError(PipelineError):
    """A failure that will not go away by retrying."""


# ---------------------------------------------------------------------------
# Content store
# ---------------------------------------------------------------------------

class ContentStoreError(TransientError):
    """Object store unreachable or returned a server-side error."""


class ContentNotFoundError(PermanentError):
    def __init__(self, key: str) -> None:
        super().__init__(f"Object not found: {key}")
        self.key = key


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------

class InvalidDocumentError(PermanentError):
    """Rejected by the ingestion coordinator before anything was stored."""


class CorruptContentError(PermanentError):
    pass


# ---------------------------------------------------------------------------
# OCR engine
# ---------------------------------------------------------------------------

class OcrEngineError(TransientError):
    """Tesseract crashed or timed out on a page."""


# ---------------------------------------------------------------------------
# Summarizer
# ---------------------------------------------------------------------------

class SummarizerNotConfiguredError(PermanentError):
    pass


class SummarizationUnavailableError(TransientError):
    """Summarization API returned 5xx / 429 or could not be reached."""


class SummarizationRejectedError(PermanentError):
    """Summarization API refused the request (4xx)."""


class EmptySummaryError(TransientError):
    """The model answered with an empty body."""


# ---------------------------------------------------------------------------
# Messaging / record store
# ---------------------------------------------------------------------------

class EventPublishError(TransientError):
    """The broker did not confirm a publish."""


class RecordStoreError(TransientError):
    """Record database unreachable or the connection dropped mid-statement."""


class StaleRecordError(TransientError):
    """Optimistic version check failed — someone else updated the record."""

    def __init__(self, document_id: object, expected_version: int) -> None:
        super().__init__(
            f"Version conflict on document {document_id} (expected version {expected_version})"
        )
        self.document_id = document_id
        self.expected_version = expected_version


# ---------------------------------------------------------------------------
# Resilience outcomes
# ---------------------------------------------------------------------------

class CircuitOpenError(PipelineError):
    def __init__(self, name: str, retry_after: float) -> None:
        super().__init__(f"Circuit '{name}' is open (retry in {retry_after:.1f}s)")
        self.name = name
        self.retry_after = retry_after


class RateLimitExceededError(PipelineError):
    def __init__(self, name: str, timeout: float) -> None:
        super().__init__(f"Rate limit for '{name}' not acquired within {timeout:.1f}s")
        self.name = name
        self.timeout = timeout


class RetryExhaustedError(PipelineError):
    def __init__(self, name: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(
            f"'{name}' failed after {attempts} attempt(s): "
            f"{type(last_error).__name__}: {last_error}"
        )
        self.name = name
        self.attempts = attempts
        self.last_error = last_error

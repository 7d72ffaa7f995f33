"""
Stage Events — immutable payloads exchanged between pipeline stages

  document.created      Coordinator  → Extraction
  extraction.completed  Extraction   → Summarization (+ fan-out copy → Result Sink)
  summary.result        Summarization → Result Sink

Design decisions:
  - message_id is deterministic: "<stage>-<document_id>". A redelivered or
    re-published event carries the same key, which is what the idempotency
    guard keys on.
  - Events are frozen; a stage never mutates an event it received.
  - Events travel as JSON (model_dump(mode="json")); raw file bytes never do.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Idempotency keys
# ---------------------------------------------------------------------------

STAGE_CREATED   = "created"      # Coordinator publishes document.created
STAGE_EXTRACT   = "extract"      # Extraction claims document.created
STAGE_SUMMARIZE = "summarize"    # Summarization claims extraction.completed
STAGE_RESULT    = "result"       # Result Sink claims summary.result
STAGE_EXTRACTED = "extracted"    # Result Sink claims the extraction fan-out copy


def message_id_for(stage: str, document_id: UUID | str) -> str:
    return f"{stage}-{document_id}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StageStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


# ---------------------------------------------------------------------------
# Base envelope
# ---------------------------------------------------------------------------

class StageEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    message_id:  str      = Field(..., min_length=1)
    document_id: UUID
    title:       str
    occurred_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# document.created
# ---------------------------------------------------------------------------

class ContentReference(BaseModel):
    """Where the raw bytes live. Extraction fetches them from the content store."""
    model_config = ConfigDict(frozen=True)

    bucket:       str
    key:          str
    content_type: str
    size_bytes:   int = Field(0, ge=0)


class DocumentCreatedEvent(StageEvent):
    content:  ContentReference
    language: str | None = None   # OCR language hint; engine default when None

    @classmethod
    def for_document(
        cls, document_id: UUID, title: str, content: ContentReference, language: str | None = None,
    ) -> "DocumentCreatedEvent":
        return cls(
            message_id=message_id_for(STAGE_CREATED, document_id),
            document_id=document_id,
            title=title,
            content=content,
            language=language,
        )


# ---------------------------------------------------------------------------
# extraction.completed
# ---------------------------------------------------------------------------

class PageResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    page_number:        int   = Field(..., ge=1)
    text:               str   = ""
    character_count:    int   = Field(0, ge=0)
    confidence:         float = Field(0.0, ge=0.0, le=100.0)
    success:            bool  = True
    processing_time_ms: int   = Field(0, ge=0)

    @classmethod
    def failed(cls, page_number: int, processing_time_ms: int = 0) -> "PageResult":
        return cls(
            page_number=page_number,
            text="",
            character_count=0,
            confidence=0.0,
            success=False,
            processing_time_ms=processing_time_ms,
        )


class ExtractionCompletedEvent(StageEvent):
    status:             StageStatus
    extracted_text:     str              = ""
    total_characters:   int              = 0
    total_pages:        int              = 0
    page_results:       list[PageResult] = Field(default_factory=list)
    language:           str | None       = None
    overall_confidence: float            = 0.0
    processing_time_ms: int              = 0
    error_message:      str | None       = None

    @property
    def succeeded(self) -> bool:
        return self.status is StageStatus.SUCCESS

    def has_valid_text(self, min_length: int) -> bool:
        """
        True when extraction succeeded and the pages yielded more than
        `min_length` characters of recognised text. Page markers do not count.
        """
        return self.succeeded and self.total_characters > min_length

    @classmethod
    def success(
        cls,
        document_id: UUID,
        title: str,
        *,
        extracted_text: str,
        page_results: list[PageResult],
        language: str,
        overall_confidence: float,
        processing_time_ms: int,
    ) -> "ExtractionCompletedEvent":
        return cls(
            message_id=message_id_for(STAGE_EXTRACT, document_id),
            document_id=document_id,
            title=title,
            status=StageStatus.SUCCESS,
            extracted_text=extracted_text,
            total_characters=sum(p.character_count for p in page_results),
            total_pages=len(page_results),
            page_results=page_results,
            language=language,
            overall_confidence=overall_confidence,
            processing_time_ms=processing_time_ms,
        )

    @classmethod
    def failure(
        cls,
        document_id: UUID,
        title: str,
        error_message: str,
        processing_time_ms: int = 0,
        page_results: list[PageResult] | None = None,
    ) -> "ExtractionCompletedEvent":
        pages = page_results or []
        return cls(
            message_id=message_id_for(STAGE_EXTRACT, document_id),
            document_id=document_id,
            title=title,
            status=StageStatus.FAILURE,
            total_pages=len(pages),
            page_results=pages,
            processing_time_ms=processing_time_ms,
            error_message=error_message,
        )


# ---------------------------------------------------------------------------
# summary.result
# ---------------------------------------------------------------------------

class SummaryResultEvent(StageEvent):
    status:             StageStatus
    summary:            str | None = None
    degraded:           bool       = False
    processing_time_ms: int        = 0
    error_message:      str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is StageStatus.SUCCESS

    @classmethod
    def success(
        cls, document_id: UUID, title: str, summary: str, processing_time_ms: int,
    ) -> "SummaryResultEvent":
        return cls(
            message_id=message_id_for(STAGE_SUMMARIZE, document_id),
            document_id=document_id,
            title=title,
            status=StageStatus.SUCCESS,
            summary=summary,
            processing_time_ms=processing_time_ms,
        )

    @classmethod
    def degraded_success(
        cls, document_id: UUID, title: str, summary: str, reason: str, processing_time_ms: int,
    ) -> "SummaryResultEvent":
        return cls(
            message_id=message_id_for(STAGE_SUMMARIZE, document_id),
            document_id=document_id,
            title=title,
            status=StageStatus.SUCCESS,
            summary=summary,
            degraded=True,
            error_message=reason,
            processing_time_ms=processing_time_ms,
        )

    @classmethod
    def failure(
        cls, document_id: UUID, title: str, error_message: str, processing_time_ms: int = 0,
    ) -> "SummaryResultEvent":
        return cls(
            message_id=message_id_for(STAGE_SUMMARIZE, document_id),
            document_id=document_id,
            title=title,
            status=StageStatus.FAILURE,
            error_message=error_message,
            processing_time_ms=processing_time_ms,
        )

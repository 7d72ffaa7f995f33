"""
SQLAlchemy ORM Models — Document records

One row per uploaded document, tracking it from upload → OCR → summary.
Declared with 2.x typed mappings; read and written only through AsyncSession.

Writers:
  - IngestionCoordinator  creates the row (NEW) and advances it to EXTRACTING
  - ResultSink            records extraction and summary outcomes

Every write goes through DocumentStore.update(), which bumps `version` and
only succeeds when the caller saw the current version (optimistic locking).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class DocumentStatus(str, Enum):
    """
    Maps to documents.status.
    Transitions: NEW → EXTRACTING → EXTRACTED → SUMMARIZING → COMPLETED
                 any non-terminal state → FAILED
    """
    NEW         = "NEW"
    EXTRACTING  = "EXTRACTING"
    EXTRACTED   = "EXTRACTED"
    SUMMARIZING = "SUMMARIZING"
    COMPLETED   = "COMPLETED"
    FAILED      = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (DocumentStatus.COMPLETED, DocumentStatus.FAILED)

    def can_transition_to(self, target: "DocumentStatus") -> bool:
        """Forward-only; COMPLETED and FAILED are never left."""
        if self.is_terminal:
            return False
        if target is DocumentStatus.FAILED:
            return True
        return _ORDER[target] > _ORDER[self]


_ORDER = {
    DocumentStatus.NEW:         0,
    DocumentStatus.EXTRACTING:  1,
    DocumentStatus.EXTRACTED:   2,
    DocumentStatus.SUMMARIZING: 3,
    DocumentStatus.COMPLETED:   4,
}


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Document model (table: documents)
# ---------------------------------------------------------------------------

class Document(Base):

    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint(
            "status IN ('NEW', 'EXTRACTING', 'EXTRACTED', 'SUMMARIZING', 'COMPLETED', 'FAILED')",
            name="documents_status_check",
        ),
        CheckConstraint("version >= 0", name="documents_version_check"),
        Index("idx_documents_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    title: Mapped[str]    = mapped_column(String(255), nullable=False)
    filename: Mapped[str] = mapped_column(Text, nullable=False)

    # Object store reference
    bucket: Mapped[str]     = mapped_column(Text, nullable=False)
    object_key: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="documents/<doc_id><ext>",
    )
    content_type: Mapped[str] = mapped_column(Text, nullable=False)
    size_bytes: Mapped[int]   = mapped_column(BigInteger, nullable=False)

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=DocumentStatus.NEW.value,
        server_default=DocumentStatus.NEW.value,
    )
    error_message: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Populated when status='FAILED' or the summary is degraded",
    )

    # Extraction outcome, written by the result sink
    extracted_text_length: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    page_count: Mapped[Optional[int]]             = mapped_column(Integer, nullable=True)
    ocr_confidence: Mapped[Optional[float]]       = mapped_column(Float, nullable=True)
    language: Mapped[Optional[str]]               = mapped_column(String(16), nullable=True)

    # Summary outcome
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    summary_degraded: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false",
    )

    # Optimistic concurrency
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    @property
    def lifecycle(self) -> DocumentStatus:
        return DocumentStatus(self.status)

    def __repr__(self) -> str:
        return (
            f"<Document id={self.id} status={self.status} "
            f"version={self.version} file={self.filename!r}>"
        )

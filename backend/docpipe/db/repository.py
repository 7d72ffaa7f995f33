"""
Document record store — get / create / versioned update.

Optimistic concurrency:
    UPDATE documents SET ..., version = version + 1
    WHERE id = :id AND version = :expected_version

A zero row count means another writer got there first (or the row is gone);
update() raises StaleRecordError and the caller re-reads.
"""

from __future__ import annotations

import logging
from contextlib import AbstractAsyncContextManager
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from docpipe.core.exceptions import RecordStoreError, StaleRecordError
from docpipe.db.session import get_session
from docpipe.models.documents import Document

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

# Connection-level failures; constraint violations are not retried
_UNAVAILABLE = (OperationalError, InterfaceError, OSError)

_UPDATABLE_COLUMNS = frozenset(
    {
        "status",
        "error_message",
        "extracted_text_length",
        "page_count",
        "ocr_confidence",
        "language",
        "summary",
        "summary_degraded",
    }
)


class DocumentStore:

    def __init__(self, session_factory: SessionFactory = get_session) -> None:
        self._session_factory = session_factory

    async def create(self, document: Document) -> Document:
        try:
            async with self._session_factory() as db:
                db.add(document)
                await db.flush()
        except _UNAVAILABLE as exc:
            raise RecordStoreError(f"Could not persist document: {exc}") from exc

        logger.info("Document persisted | doc=%s status=%s", document.id, document.status)
        return document

    async def get(self, document_id: UUID) -> Document | None:
        try:
            async with self._session_factory() as db:
                result = await db.execute(select(Document).where(Document.id == document_id))
                return result.scalars().first()
        except _UNAVAILABLE as exc:
            raise RecordStoreError(f"Could not load document: {exc}") from exc

    async def update(self, document_id: UUID, expected_version: int, **values: Any) -> int:
        """
        Apply `values` if the row is still at `expected_version`.

        Returns the new version. Raises StaleRecordError on a version conflict.
        """
        unknown = set(values) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Columns not updatable: {sorted(unknown)}")

        stmt = (
            update(Document)
            .where(Document.id == document_id, Document.version == expected_version)
            .values(**values, version=Document.version + 1)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._session_factory() as db:
                result = await db.execute(stmt)
        except _UNAVAILABLE as exc:
            raise RecordStoreError(f"Could not update document: {exc}") from exc

        if result.rowcount != 1:
            logger.info(
                "Version conflict | doc=%s expected_version=%d", document_id, expected_version,
            )
            raise StaleRecordError(document_id, expected_version)

        logger.debug(
            "Document updated | doc=%s version=%d fields=%s",
            document_id, expected_version + 1, ",".join(sorted(values)),
        )
        return expected_version + 1

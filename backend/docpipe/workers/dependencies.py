"""
Process-wide collaborators for the worker tasks.

Each factory is cached so every consumer thread of a worker shares the same
guard, registry, OCR thread pool and stage objects. Tests patch the
get_*_stage / get_result_sink factories in docpipe.workers.tasks.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from functools import lru_cache

from docpipe.core.config import get_settings
from docpipe.db.repository import DocumentStore
from docpipe.idempotency.guard import get_idempotency_guard
from docpipe.llm.summarizer import Summarizer
from docpipe.processing.extraction import ExtractionStage
from docpipe.processing.ocr import TesseractOcrEngine
from docpipe.resilience.envelope import get_resilience_registry
from docpipe.services.ingestion import EventPublisher, IngestionCoordinator
from docpipe.services.result_sink import ResultSink
from docpipe.services.summarization import SummarizationStage
from docpipe.storage.s3 import ContentStore


@lru_cache(maxsize=1)
def get_content_store() -> ContentStore:
    return ContentStore.from_settings(get_settings())


@lru_cache(maxsize=1)
def get_document_store() -> DocumentStore:
    return DocumentStore()


@lru_cache(maxsize=1)
def get_event_publisher() -> EventPublisher:
    return EventPublisher()


@lru_cache(maxsize=1)
def get_ocr_executor() -> ThreadPoolExecutor:
    return ThreadPoolExecutor(
        max_workers=get_settings().ocr_max_workers,
        thread_name_prefix="ocr",
    )


@lru_cache(maxsize=1)
def get_extraction_stage() -> ExtractionStage:
    settings = get_settings()
    return ExtractionStage(
        storage=get_content_store(),
        ocr_engine=TesseractOcrEngine.from_settings(settings),
        publisher=get_event_publisher(),
        guard=get_idempotency_guard(),
        registry=get_resilience_registry(),
        settings=settings,
        executor=get_ocr_executor(),
    )


@lru_cache(maxsize=1)
def get_summarization_stage() -> SummarizationStage:
    settings = get_settings()
    return SummarizationStage(
        summarizer=Summarizer.from_settings(settings),
        publisher=get_event_publisher(),
        guard=get_idempotency_guard(),
        registry=get_resilience_registry(),
        settings=settings,
    )


@lru_cache(maxsize=1)
def get_result_sink() -> ResultSink:
    return ResultSink(
        store=get_document_store(),
        guard=get_idempotency_guard(),
        settings=get_settings(),
    )


@lru_cache(maxsize=1)
def get_ingestion_coordinator() -> IngestionCoordinator:
    return IngestionCoordinator(
        storage=get_content_store(),
        store=get_document_store(),
        publisher=get_event_publisher(),
        registry=get_resilience_registry(),
        settings=get_settings(),
    )

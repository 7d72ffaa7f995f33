"""
Celery Tasks — one consumer per stage queue

  extract_document          document.created           → ExtractionStage
  summarize_document        extraction.completed       → SummarizationStage
  record_extraction_result  extraction.completed.sink  → ResultSink
  record_summary_result     summary.result             → ResultSink

Every task receives a single `event` kwarg: the stage event as JSON.

Outcome → broker action:
  handled (incl. duplicate, FAILURE event published)   ack
  undecodable payload / unknown document                ack, logged
  TransientError escaping the stage                     self.retry() (republish)
  retries exhausted or unexpected exception             reject → <queue>.dlq
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from celery import Task
from pydantic import ValidationError

from docpipe.core.exceptions import TransientError
from docpipe.schemas.events import (
    DocumentCreatedEvent,
    ExtractionCompletedEvent,
    SummaryResultEvent,
)
from docpipe.workers.celery_app import celery_app
from docpipe.workers.dependencies import (
    get_extraction_stage,
    get_result_sink,
    get_summarization_stage,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Bridging sync Celery tasks to the async stages
# ---------------------------------------------------------------------------

def run_async(coro):
    """Drive a stage coroutine to completion on a loop owned by this call."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    # Called from inside a loop (eager mode under an async caller)
    import concurrent.futures
    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, coro).result()


def _decode(task: Task, model: type, event: dict) -> Any:
    try:
        return model.model_validate(event)
    except ValidationError as exc:
        logger.error(
            "Undecodable event, dropping | task=%s errors=%d detail=%s",
            task.name, exc.error_count(), exc,
        )
        return None


def _run_stage(task: Task, coro) -> Any:
    try:
        return run_async(coro)
    except TransientError as exc:
        logger.warning(
            "Transient failure, retrying | task=%s retries=%d error=%s",
            task.name, task.request.retries, exc,
        )
        raise task.retry(exc=exc)


_TASK_OPTIONS: dict[str, Any] = dict(
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    acks_late=True,
    reject_on_worker_lost=True,
)


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

@celery_app.task(
    name="docpipe.workers.tasks.extract_document",
    **_TASK_OPTIONS,
)
def extract_document(self: Task, *, event: dict) -> dict[str, Any]:
    created = _decode(self, DocumentCreatedEvent, event)
    if created is None:
        return {"status": "rejected"}

    result = _run_stage(self, get_extraction_stage().handle(created))
    if result is None:
        return {"status": "duplicate", "document_id": str(created.document_id)}
    return {"status": result.status.value, "document_id": str(created.document_id)}


# ---------------------------------------------------------------------------
# Summarization
# ---------------------------------------------------------------------------

@celery_app.task(
    name="docpipe.workers.tasks.summarize_document",
    **_TASK_OPTIONS,
)
def summarize_document(self: Task, *, event: dict) -> dict[str, Any]:
    extracted = _decode(self, ExtractionCompletedEvent, event)
    if extracted is None:
        return {"status": "rejected"}

    result = _run_stage(self, get_summarization_stage().handle(extracted))
    if result is None:
        return {"status": "duplicate", "document_id": str(extracted.document_id)}
    return {
        "status":      result.status.value,
        "degraded":    result.degraded,
        "document_id": str(extracted.document_id),
    }


# ---------------------------------------------------------------------------
# Result sink
# ---------------------------------------------------------------------------

@celery_app.task(
    name="docpipe.workers.tasks.record_extraction_result",
    **_TASK_OPTIONS,
)
def record_extraction_result(self: Task, *, event: dict) -> dict[str, Any]:
    extracted = _decode(self, ExtractionCompletedEvent, event)
    if extracted is None:
        return {"status": "rejected"}

    updated = _run_stage(self, get_result_sink().handle_extraction_completed(extracted))
    return {"status": "updated" if updated else "skipped", "document_id": str(extracted.document_id)}


@celery_app.task(
    name="docpipe.workers.tasks.record_summary_result",
    **_TASK_OPTIONS,
)
def record_summary_result(self: Task, *, event: dict) -> dict[str, Any]:
    summary = _decode(self, SummaryResultEvent, event)
    if summary is None:
        return {"status": "rejected"}

    updated = _run_stage(self, get_result_sink().handle_summary_result(summary))
    return {"status": "updated" if updated else "skipped", "document_id": str(summary.document_id)}

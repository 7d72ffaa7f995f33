"""
Idempotency Guard — duplicate-delivery suppression for stage consumers

RabbitMQ delivers at least once. Every consumer derives a deterministic key
(`"<stage>-<document_id>"`) and claims it here before doing any work:

    if not guard.try_claim(message_id):
        return            # duplicate: ack and move on

Claim semantics:
  - try_claim() is a single check-and-set under one lock; two threads racing
    on the same key can never both win.
  - A record lives for `ttl` seconds (24 h by default). An expired record is
    treated as absent and replaced by the next claim.
  - release() undoes a claim. Consumers call it when they are about to hand
    the message back to the broker for redelivery, so the retry is not
    mistaken for a duplicate.

Storage is in-process memory. Workers run Celery's thread pool, so every
consumer thread of a worker shares one guard. A daemon sweeper thread drops
expired records to bound memory.
"""

from __future__ import annotations

import logging
import threading
import time
from functools import lru_cache
from typing import Callable

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 3600


class IdempotencyGuard:
    """Thread-safe keyed claim store with expiry."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._records: dict[str, float] = {}   # message_id -> processed_at

        self._sweeper: threading.Thread | None = None
        self._stop_event = threading.Event()

    # ------------------------------------------------------------------
    # Claim API
    # ------------------------------------------------------------------

    def try_claim(self, message_id: str) -> bool:
        """
        Claim a message id.

        Returns True when this call inserted the record (caller proceeds),
        False when a live record already existed (caller must skip).
        """
        _validate(message_id)
        now = self._clock()

        with self._lock:
            processed_at = self._records.get(message_id)
            if processed_at is not None and not self._is_expired(processed_at, now):
                logger.info("Duplicate message rejected | message_id=%s", message_id)
                return False
            if processed_at is not None:
                logger.info("Replacing expired idempotency record | message_id=%s", message_id)
            self._records[message_id] = now

        logger.debug("Message claimed | message_id=%s", message_id)
        return True

    def is_claimed(self, message_id: str) -> bool:
        _validate(message_id)
        with self._lock:
            processed_at = self._records.get(message_id)
        return processed_at is not None and not self._is_expired(processed_at, self._clock())

    def release(self, message_id: str) -> None:
        """Forget a claim so a redelivered message is processed again."""
        _validate(message_id)
        with self._lock:
            removed = self._records.pop(message_id, None)
        if removed is not None:
            logger.info("Idempotency claim released | message_id=%s", message_id)

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def sweep(self) -> int:
        """Remove expired records. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, ts in self._records.items() if self._is_expired(ts, now)]
            for key in expired:
                del self._records[key]
            remaining = len(self._records)

        if expired:
            logger.info(
                "Idempotency sweep | removed=%d remaining=%d", len(expired), remaining,
            )
        return len(expired)

    def start_sweeper(self, interval_seconds: float = 3600) -> None:
        """Run sweep() every `interval_seconds` on a daemon thread."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return

        self._stop_event.clear()

        def _run() -> None:
            while not self._stop_event.wait(interval_seconds):
                try:
                    self.sweep()
                except Exception:
                    logger.exception("Idempotency sweep failed")

        self._sweeper = threading.Thread(
            target=_run, name="idempotency-sweeper", daemon=True,
        )
        self._sweeper.start()
        logger.info("Idempotency sweeper started | interval_s=%.0f", interval_seconds)

    def stop_sweeper(self, timeout: float | None = 5.0) -> None:
        self._stop_event.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout)
            self._sweeper = None

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
        logger.warning("Idempotency cache cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def _is_expired(self, processed_at: float, now: float) -> bool:
        return processed_at + self._ttl <= now


def _validate(message_id: str) -> None:
    if not message_id or not message_id.strip():
        raise ValueError("Message ID cannot be empty")


@lru_cache(maxsize=1)
def get_idempotency_guard() -> IdempotencyGuard:
    """Process-wide guard shared by every consumer thread of this worker."""
    from docpipe.core.config import get_settings

    return IdempotencyGuard(ttl_seconds=get_settings().idempotency_ttl_seconds)

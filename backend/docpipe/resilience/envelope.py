"""
Resilience Envelope — one wrapper for every outbound call

    envelope = get_resilience_registry().get("summarizer")
    summary  = await envelope.call(summarizer.summarize, text, fallback=on_unavailable)

Composition per logical call:

  1. rate limiter   — one permit per logical call (blocks up to its timeout)
  2. for each attempt up to RetryPolicy.max_attempts:
       a. circuit breaker permission  — open circuit fails fast
       b. optional per-attempt timeout (asyncio.wait_for)
       c. outcome recorded on the breaker (transient failures only)
       d. transient → back off and retry; permanent → raise immediately
  3. terminal outcome (CircuitOpenError, RetryExhaustedError,
     RateLimitExceededError) goes to `fallback(exc)` if given, else raised.

Permanent errors are never passed to the fallback.

Envelopes are keyed by dependency name in a registry so breaker and limiter
state is shared by every caller of the same dependency in this process.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from functools import lru_cache
from typing import Any, Awaitable, Callable, TypeVar

from docpipe.core.exceptions import (
    CircuitOpenError,
    RateLimitExceededError,
    RetryExhaustedError,
)
from docpipe.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from docpipe.resilience.rate_limiter import RateLimiter
from docpipe.resilience.retry import RetryPolicy, is_transient

logger = logging.getLogger(__name__)

T = TypeVar("T")

Fallback = Callable[[Exception], Awaitable[T]]

# Dependency names
CONTENT_STORE = "content-store"
OCR_ENGINE    = "ocr-engine"
SUMMARIZER    = "summarizer"


class ResilienceEnvelope:

    def __init__(
        self,
        name: str,
        breaker: CircuitBreaker | None = None,
        retry_policy: RetryPolicy | None = None,
        rate_limiter: RateLimiter | None = None,
        timeout: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.name = name
        self.breaker = breaker or CircuitBreaker(name)
        self.retry_policy = retry_policy or RetryPolicy()
        self.rate_limiter = rate_limiter
        self.timeout = timeout
        self._sleep = sleep

    async def call(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        fallback: Fallback | None = None,
        **kwargs: Any,
    ) -> T:
        try:
            return await self._call(fn, *args, **kwargs)
        except (CircuitOpenError, RetryExhaustedError, RateLimitExceededError) as exc:
            if fallback is None:
                raise
            logger.warning("Envelope fallback | name=%s reason=%s", self.name, exc)
            return await fallback(exc)

    async def _call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()

        policy = self.retry_policy
        last_error: Exception | None = None

        for attempt in range(1, policy.max_attempts + 1):
            if not self.breaker.acquire_permission():
                raise CircuitOpenError(self.name, self.breaker.retry_after())

            try:
                if self.timeout is not None:
                    result = await asyncio.wait_for(fn(*args, **kwargs), timeout=self.timeout)
                else:
                    result = await fn(*args, **kwargs)
            except Exception as exc:
                if not is_transient(exc):
                    self.breaker.record_ignored()
                    raise   # 4xx-equivalent, surface immediately
                self.breaker.record_failure()
                last_error = exc
                logger.warning(
                    "Envelope attempt failed | name=%s attempt=%d/%d error=%s: %s",
                    self.name, attempt, policy.max_attempts, type(exc).__name__, exc,
                )
            else:
                self.breaker.record_success()
                return result

            if attempt < policy.max_attempts:
                await self._sleep(policy.delay_for(attempt))

        assert last_error is not None
        raise RetryExhaustedError(self.name, policy.max_attempts, last_error) from last_error


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class ResilienceRegistry:
    """Per-dependency envelopes built from Settings, created on first use."""

    def __init__(self, settings: Any) -> None:
        self._settings = settings
        self._lock = threading.Lock()
        self._envelopes: dict[str, ResilienceEnvelope] = {}

    def get(self, name: str) -> ResilienceEnvelope:
        with self._lock:
            envelope = self._envelopes.get(name)
            if envelope is None:
                envelope = self._build(name)
                self._envelopes[name] = envelope
            return envelope

    def register(self, envelope: ResilienceEnvelope) -> None:
        with self._lock:
            self._envelopes[envelope.name] = envelope

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._envelopes)

    def _build(self, name: str) -> ResilienceEnvelope:
        s = self._settings
        breaker = CircuitBreaker(
            name,
            CircuitBreakerConfig(
                window_size=s.breaker_window_size,
                minimum_calls=s.breaker_minimum_calls,
                failure_rate_threshold=s.breaker_failure_rate_threshold,
                open_seconds=s.breaker_open_seconds,
                half_open_max_calls=s.breaker_half_open_max_calls,
            ),
        )
        retry = RetryPolicy(
            max_attempts=s.retry_max_attempts,
            base_delay=s.retry_base_delay_seconds,
            max_delay=s.retry_max_delay_seconds,
        )

        if name == OCR_ENGINE:
            # Local engine: time-bounded per page, a failed page is not retried
            return ResilienceEnvelope(
                name, breaker,
                RetryPolicy(max_attempts=1),
                timeout=s.ocr_page_timeout_seconds,
            )
        if name == CONTENT_STORE:
            return ResilienceEnvelope(
                name, breaker, retry, timeout=s.content_store_timeout_seconds,
            )

        limiter = RateLimiter(
            name,
            limit_for_period=s.rate_limit_calls,
            refresh_period=s.rate_limit_period_seconds,
            timeout=s.rate_limit_timeout_seconds,
        )
        timeout = s.summary_request_timeout_seconds if name == SUMMARIZER else None
        return ResilienceEnvelope(name, breaker, retry, limiter, timeout=timeout)


@lru_cache(maxsize=1)
def get_resilience_registry() -> ResilienceRegistry:
    from docpipe.core.config import get_settings

    return ResilienceRegistry(get_settings())

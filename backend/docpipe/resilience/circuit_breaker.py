"""
Sliding-window circuit breaker

  CLOSED     calls flow; outcomes recorded in a window of the last N calls.
             Once `minimum_calls` outcomes exist and the failure rate reaches
             the threshold, the circuit OPENS.
  OPEN       calls fail fast for `open_seconds`.
  HALF_OPEN  up to `half_open_max_calls` trial calls are let through;
             a success CLOSES the circuit (window reset), a failure re-OPENS it.

Only transient failures are recorded as failures. A permanent error says the
dependency answered, so it is neither a success nor a failure; it only gives
back a half-open permit (record_ignored).

All state lives behind one lock; instances are shared across worker threads.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED    = "closed"
    OPEN      = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    window_size: int = 10
    minimum_calls: int = 5
    failure_rate_threshold: float = 50.0   # percent
    open_seconds: float = 30.0
    half_open_max_calls: int = 3


class CircuitBreaker:

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self._cfg = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._outcomes: deque[bool] = deque(maxlen=self._cfg.window_size)  # True = failure
        self._opened_at = 0.0
        self._half_open_in_flight = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    @property
    def failure_rate(self) -> float:
        with self._lock:
            return self._failure_rate()

    def retry_after(self) -> float:
        """Seconds until an OPEN circuit admits trial calls (0 if not open)."""
        with self._lock:
            if self._state is not CircuitState.OPEN:
                return 0.0
            return max(0.0, self._opened_at + self._cfg.open_seconds - self._clock())

    # ------------------------------------------------------------------
    # Call gating
    # ------------------------------------------------------------------

    def acquire_permission(self) -> bool:
        """Ask whether a call may be attempted now."""
        with self._lock:
            self._maybe_half_open()

            if self._state is CircuitState.CLOSED:
                return True
            if self._state is CircuitState.OPEN:
                return False

            if self._half_open_in_flight >= self._cfg.half_open_max_calls:
                return False
            self._half_open_in_flight += 1
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._transition(CircuitState.CLOSED)
                return
            self._outcomes.append(False)

    def record_failure(self) -> None:
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
                return
            if self._state is CircuitState.OPEN:
                return

            self._outcomes.append(True)
            if (
                len(self._outcomes) >= self._cfg.minimum_calls
                and self._failure_rate() >= self._cfg.failure_rate_threshold
            ):
                self._transition(CircuitState.OPEN)

    def record_ignored(self) -> None:
        with self._lock:
            if self._state is CircuitState.HALF_OPEN and self._half_open_in_flight > 0:
                self._half_open_in_flight -= 1

    def reset(self) -> None:
        with self._lock:
            self._transition(CircuitState.CLOSED)

    # ------------------------------------------------------------------
    # Internals (caller holds the lock)
    # ------------------------------------------------------------------

    def _failure_rate(self) -> float:
        if not self._outcomes:
            return 0.0
        return 100.0 * sum(self._outcomes) / len(self._outcomes)

    def _maybe_half_open(self) -> None:
        if (
            self._state is CircuitState.OPEN
            and self._clock() >= self._opened_at + self._cfg.open_seconds
        ):
            self._transition(CircuitState.HALF_OPEN)

    def _transition(self, target: CircuitState) -> None:
        previous = self._state
        self._state = target
        self._half_open_in_flight = 0

        if target is CircuitState.OPEN:
            self._opened_at = self._clock()
            logger.warning(
                "Circuit breaker | name=%s %s -> open failure_rate=%.0f%% open_for=%ss",
                self.name, previous.value, self._failure_rate(), self._cfg.open_seconds,
            )
        elif target is CircuitState.CLOSED:
            self._outcomes.clear()
            if previous is not CircuitState.CLOSED:
                logger.info("Circuit breaker | name=%s %s -> closed", self.name, previous.value)
        else:
            logger.info("Circuit breaker | name=%s open -> half_open", self.name)

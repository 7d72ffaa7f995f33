"""
Retry policy and transient-error classification.

Retryable:     network errors, timeouts, HTTP 5xx, HTTP 429, TransientError
Non-retryable: HTTP 4xx (bad request, auth failure), PermanentError — fail immediately
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from docpipe.core.exceptions import PermanentError, TransientError

# ---------------------------------------------------------------------------
# Retryable exception detection
# ---------------------------------------------------------------------------

_RETRYABLE_EXCEPTION_TYPES = (
    # openai
    "RateLimitError",
    "ServiceUnavailableError",
    "APITimeoutError",
    "APIConnectionError",
    "InternalServerError",
    # httpx / generic
    "ConnectTimeout",
    "ReadTimeout",
    "RemoteProtocolError",
    # botocore
    "EndpointConnectionError",
    "ConnectTimeoutError",
    "ReadTimeoutError",
)


def _status_code(exc: BaseException) -> int | None:
    """Best-effort HTTP status extraction (openai / httpx / botocore shapes)."""
    code = getattr(exc, "status_code", None)
    if isinstance(code, int):
        return code
    response = getattr(exc, "response", None)
    if isinstance(response, dict):   # botocore ClientError
        code = response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        return code if isinstance(code, int) else None
    code = getattr(response, "status_code", None)
    return code if isinstance(code, int) else None


def is_transient(exc: BaseException) -> bool:
    """True if retrying `exc` has a realistic chance of succeeding."""
    if isinstance(exc, TransientError):
        return True
    if isinstance(exc, PermanentError):
        return False
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True

    code = _status_code(exc)
    if code is not None:
        return code >= 500 or code == 429

    name = type(exc).__name__
    return any(name.endswith(r) for r in _RETRYABLE_EXCEPTION_TYPES)


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RetryPolicy:
    """
    max_attempts : total attempts per logical call (1 = no retry)
    base_delay   : seconds before the 2nd attempt
    multiplier   : backoff factor between consecutive attempts
    max_delay    : cap on a single wait
    """
    max_attempts: int = 3
    base_delay: float = 2.0
    multiplier: float = 2.0
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def delay_for(self, attempt: int) -> float:
        """Wait after failed attempt number `attempt` (1-based)."""
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)

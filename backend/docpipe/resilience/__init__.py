from docpipe.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from docpipe.resilience.envelope import (
    CONTENT_STORE,
    OCR_ENGINE,
    SUMMARIZER,
    ResilienceEnvelope,
    ResilienceRegistry,
    get_resilience_registry,
)
from docpipe.resilience.rate_limiter import RateLimiter
from docpipe.resilience.retry import RetryPolicy, is_transient

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "CONTENT_STORE",
    "OCR_ENGINE",
    "SUMMARIZER",
    "ResilienceEnvelope",
    "ResilienceRegistry",
    "RateLimiter",
    "RetryPolicy",
    "get_resilience_registry",
    "is_transient",
]

"""Retry classification and circuit breaker for the OpenAI-compatible embedder.

Private module - import from _retry package.
"""

from __future__ import annotations

import circuitbreaker
import httpx

from code_index.clients._retry.httpx_errors import is_retryable_httpx_error

__all__ = [
    'is_retryable_openai_error',
    'openai_breaker',
]

# 429 rate limit, 5xx server/gateway failures
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

# Circuit breaker - opens after consecutive failures, hard fails until recovery
OPENAI_FAILURE_THRESHOLD = 10
OPENAI_RECOVERY_TIMEOUT = 60


def is_retryable_openai_error(exc: BaseException | None) -> bool:
    """Check if exception is a transient failure from the embeddings endpoint."""
    if is_retryable_httpx_error(exc):
        return True

    return isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code in RETRYABLE_STATUS_CODES


def _openai_circuit_filter(thrown_type: type, thrown_value: BaseException) -> bool:  # noqa: ARG001
    """Only count transient errors toward the circuit breaker."""
    return is_retryable_openai_error(thrown_value)


openai_breaker = circuitbreaker.CircuitBreaker(
    failure_threshold=OPENAI_FAILURE_THRESHOLD,
    recovery_timeout=OPENAI_RECOVERY_TIMEOUT,
    expected_exception=_openai_circuit_filter,
    name='openai',
)

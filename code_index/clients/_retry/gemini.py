"""Retry classification and circuit breaker for Gemini.

Private module - import from _retry package.
"""

from __future__ import annotations

import circuitbreaker
import google.genai.errors

from code_index.clients._retry.httpx_errors import is_retryable_httpx_error

__all__ = [
    'gemini_breaker',
    'is_retryable_gemini_error',
]

# 429 RESOURCE_EXHAUSTED, 5xx server errors
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

GEMINI_FAILURE_THRESHOLD = 10
GEMINI_RECOVERY_TIMEOUT = 60


def is_retryable_gemini_error(exc: BaseException | None) -> bool:
    """Check if exception is a transient failure from Gemini.

    google-genai raises httpx exceptions directly for transport failures and
    APIError subclasses (ClientError/ServerError) carrying the HTTP status.
    """
    if is_retryable_httpx_error(exc):
        return True

    return isinstance(exc, google.genai.errors.APIError) and exc.code in RETRYABLE_STATUS_CODES


def _gemini_circuit_filter(thrown_type: type, thrown_value: BaseException) -> bool:  # noqa: ARG001
    """Only count transient errors toward the circuit breaker."""
    return is_retryable_gemini_error(thrown_value)


gemini_breaker = circuitbreaker.CircuitBreaker(
    failure_threshold=GEMINI_FAILURE_THRESHOLD,
    recovery_timeout=GEMINI_RECOVERY_TIMEOUT,
    expected_exception=_gemini_circuit_filter,
    name='gemini',
)

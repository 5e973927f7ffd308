"""Transient-error classification, retry logging, and circuit breakers per service.

Private submodule - not exported by the clients package.

Retry Policy
------------
- **RETRY** = transient network issues and overload statuses (timeouts, resets,
  429, 502/503/504), worth retrying with backoff
- **PROPAGATE** = bugs, config errors, or permanent failures (fail-fast)

Embedding retries are owned by the EmbeddingBatcher, which retries every batch
failure. The embedding breakers here only stop hammering a provider that keeps
failing transiently. Qdrant upserts retry transient errors at the client.

Client-Specific Notes
---------------------
- **OpenAI-compatible (httpx)**: HTTPStatusError carries the status code.
- **Gemini (google-genai)**: Throws httpx exceptions directly, plus APIError
  with `.code`.
- **Qdrant (qdrant-client)**: Wraps httpx in ResponseHandlingException.
  Check exc.source for the underlying error.
"""

from __future__ import annotations

from code_index.clients._retry.gemini import gemini_breaker, is_retryable_gemini_error
from code_index.clients._retry.httpx_errors import is_retryable_httpx_error
from code_index.clients._retry.openai import is_retryable_openai_error, openai_breaker
from code_index.clients._retry.qdrant import is_retryable_qdrant_error, log_qdrant_retry, qdrant_breaker

__all__ = [
    'gemini_breaker',
    'is_retryable_gemini_error',
    'is_retryable_httpx_error',
    'is_retryable_openai_error',
    'is_retryable_qdrant_error',
    'log_qdrant_retry',
    'openai_breaker',
    'qdrant_breaker',
]

"""Low-level Gemini API client.

Thin wrapper around google-genai. Handles API calls only - no batching or retry.

Uses native async API (client.aio) for concurrent requests.
Rate limiting via pyrate_limiter to respect API quotas.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from typing import Literal

import httpx
import pyrate_limiter
from google import genai
from google.genai.types import EmbedContentConfig, HttpOptions

from code_index.clients import _retry
from code_index.schemas.embeddings import TaskIntent

__all__ = [
    'GeminiClient',
]

type GeminiTaskType = Literal['RETRIEVAL_DOCUMENT', 'CODE_RETRIEVAL_QUERY']


class GeminiClient:
    """Low-level Gemini API client with rate limiting.

    Rate limited via pyrate_limiter, concurrency controlled via semaphore.
    """

    DEFAULT_REQUESTS_PER_MINUTE = 3000
    DEFAULT_TOKENS_PER_MINUTE = 1_000_000

    DEFAULT_MAX_CONCURRENT = 50

    DEFAULT_TIMEOUT_MS = 30_000
    DEFAULT_MAX_CONNECTIONS = 50
    DEFAULT_KEEPALIVE_EXPIRY = 30

    # Code search pairs document embeddings with the code-specific query task
    INTENT_TO_GEMINI_TASK: Mapping[TaskIntent, GeminiTaskType] = {
        'document': 'RETRIEVAL_DOCUMENT',
        'query': 'CODE_RETRIEVAL_QUERY',
    }

    def __init__(
        self,
        model: str,
        output_dimensionality: int,
        api_key: str,
        *,
        requests_per_minute: int = DEFAULT_REQUESTS_PER_MINUTE,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        """Initialize client.

        Args:
            model: Embedding model name (e.g., 'gemini-embedding-001').
            output_dimensionality: Output vector dimensions (e.g., 768).
            api_key: Gemini API key.
            requests_per_minute: Request quota (default 3000 for Tier 1).
            max_concurrent: Max concurrent API requests (semaphore limit).
            timeout_ms: Request timeout in milliseconds.
        """
        self._model = model
        self._output_dimensionality = output_dimensionality

        self._rpm_limiter = pyrate_limiter.Limiter(
            pyrate_limiter.Rate(requests_per_minute, pyrate_limiter.Duration.MINUTE),
        )
        # TPM budget over a 12-second window (1/5 of a minute)
        self._tpm_limiter = pyrate_limiter.Limiter(
            pyrate_limiter.Rate(self.DEFAULT_TOKENS_PER_MINUTE // 5, 12 * pyrate_limiter.Duration.SECOND),
        )

        limits = httpx.Limits(
            max_connections=self.DEFAULT_MAX_CONNECTIONS,
            max_keepalive_connections=self.DEFAULT_MAX_CONNECTIONS,
            keepalive_expiry=self.DEFAULT_KEEPALIVE_EXPIRY,
        )
        http_options = HttpOptions(
            timeout=timeout_ms,
            async_client_args={'limits': limits},
        )
        self._client = genai.Client(api_key=api_key, http_options=http_options)

        self._semaphore = asyncio.Semaphore(max_concurrent)

    @_retry.gemini_breaker
    async def embed(
        self,
        texts: Sequence[str],
        *,
        intent: TaskIntent,
    ) -> Sequence[Sequence[float]]:
        """Embed texts using Gemini API.

        Args:
            texts: Texts to embed (max 100 per API call).
            intent: 'document' for indexing, 'query' for search.

        Returns:
            List of embedding vectors.

        Raises:
            google.genai.errors.APIError: On API errors.
        """
        # ~4 chars per token, same proxy as the batcher
        estimated_tokens = max(1, sum(len(t) for t in texts) // 4)

        await self._rpm_limiter.try_acquire_async('rpm', weight=1)
        await self._tpm_limiter.try_acquire_async('tpm', weight=estimated_tokens)

        async with self._semaphore:
            result = await self._client.aio.models.embed_content(
                model=self._model,
                contents=list(texts),
                config=EmbedContentConfig(
                    task_type=self.INTENT_TO_GEMINI_TASK[intent],
                    output_dimensionality=self._output_dimensionality,
                ),
            )
        return [list(e.values or ()) for e in result.embeddings or ()]

    async def close(self) -> None:
        """No-op: google-genai Client manages its own HTTP lifecycle."""

"""OpenAI-compatible embedding client.

Thin wrapper around the /embeddings endpoint. Handles API calls only - no
batching or retry. Works with OpenAI and any server exposing the same API.

API Reference: https://platform.openai.com/docs/api-reference/embeddings/create
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

import httpx

from code_index.clients import _retry
from code_index.schemas.embeddings import TaskIntent

__all__ = [
    'OpenAIClient',
]

logger = logging.getLogger(__name__)


class OpenAIClient:
    """Low-level OpenAI-compatible embedding client.

    Uses native async httpx with connection pooling.
    Concurrency controlled via semaphore.
    """

    DEFAULT_BASE_URL = 'https://api.openai.com/v1'

    DEFAULT_MAX_CONCURRENT = 16

    # HTTP client configuration
    DEFAULT_TIMEOUT_MS = 60_000  # Large batches take a while server-side
    DEFAULT_MAX_CONNECTIONS = 16
    DEFAULT_MAX_KEEPALIVE = 16
    DEFAULT_KEEPALIVE_EXPIRY = 30  # Seconds before idle close

    def __init__(
        self,
        model: str,
        api_key: str,
        *,
        dimensions: int | None = None,
        base_url: str = DEFAULT_BASE_URL,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize client.

        Args:
            model: Model identifier (e.g., 'text-embedding-3-small').
            api_key: Bearer token for the endpoint.
            dimensions: Output vector dimensions. If None, uses model's native dimensions.
            base_url: API root, without the trailing /embeddings.
            max_concurrent: Max concurrent API requests (semaphore limit).
            timeout_ms: Request timeout in milliseconds.
            transport: Optional httpx transport (e.g. httpx.MockTransport).
        """
        self._model = model
        self._dimensions = dimensions

        limits = httpx.Limits(
            max_connections=self.DEFAULT_MAX_CONNECTIONS,
            max_keepalive_connections=self.DEFAULT_MAX_KEEPALIVE,
            keepalive_expiry=self.DEFAULT_KEEPALIVE_EXPIRY,
        )
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                'Authorization': f'Bearer {api_key}',
                'Content-Type': 'application/json',
            },
            timeout=timeout_ms / 1000,  # Convert to seconds for httpx
            limits=limits,
            transport=transport,
        )

        self._semaphore = asyncio.Semaphore(max_concurrent)

    @_retry.openai_breaker
    async def embed(
        self,
        texts: Sequence[str],
        *,
        intent: TaskIntent,  # noqa: ARG002 - symmetric model, same embedding for both
    ) -> Sequence[Sequence[float]]:
        """Embed texts using the /embeddings endpoint.

        Args:
            texts: Texts to embed.
            intent: Unused; OpenAI embeddings are symmetric.

        Returns:
            List of embedding vectors, in input order.

        Raises:
            httpx.HTTPStatusError: On API errors.
        """
        body: dict[str, object] = {
            'model': self._model,
            'input': list(texts),
            'encoding_format': 'float',
        }
        if self._dimensions is not None:
            body['dimensions'] = self._dimensions

        async with self._semaphore:
            response = await self._client.post('/embeddings', json=body)
            response.raise_for_status()
            data = response.json()

        # Sort by index to ensure order matches input
        embeddings = sorted(data['data'], key=lambda x: x['index'])
        logger.debug(f'[EMBED] OpenAI returned {len(embeddings)} vectors for {len(texts)} texts')
        return [e['embedding'] for e in embeddings]

    async def close(self) -> None:
        """Close HTTP client and release resources."""
        await self._client.aclose()

    async def __aenter__(self) -> OpenAIClient:
        """Async context manager entry."""
        return self

    async def __aexit__(self, *_: object) -> None:
        """Async context manager exit."""
        await self.close()

"""Protocol definitions for embedding clients.

All embedding providers implement this protocol. Batching, token ceilings,
and retry live in the EmbeddingBatcher; clients send exactly what they're given.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from code_index.schemas.embeddings import TaskIntent

__all__ = [
    'EmbeddingClient',
]


class EmbeddingClient(Protocol):
    """Protocol for embedding clients.

    Any client with compatible `embed` and `close` methods satisfies this protocol.
    """

    async def embed(self, texts: Sequence[str], *, intent: TaskIntent) -> Sequence[Sequence[float]]:
        """Embed texts into vectors.

        Args:
            texts: Texts to embed, all within the provider's per-item limit.
            intent: 'document' for indexing, 'query' for search.
                Each provider translates to their specific format.

        Returns:
            One vector per input text, in input order.
        """
        ...

    async def close(self) -> None:
        """Release resources. No-op for clients without external connections."""
        ...

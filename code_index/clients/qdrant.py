"""Low-level Qdrant vector database client.

Thin wrapper around qdrant-client. Handles API calls only - no business logic.
Type translation happens in the repository layer.

Uses AsyncQdrantClient for non-blocking I/O in async contexts.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, TypedDict
from uuid import UUID

import tenacity
from qdrant_client import AsyncQdrantClient
from qdrant_client.http.models import (
    Distance,
    ExtendedPointId,
    FieldCondition,
    Filter,
    FilterSelector,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    VectorParams,
)

from code_index.clients import _retry

logger = logging.getLogger(__name__)

__all__ = [
    'CollectionInfoDict',
    'QdrantClient',
    'ScoredPointDict',
]


class CollectionInfoDict(TypedDict):
    """Raw collection metadata from Qdrant."""

    name: str
    vector_dimension: int
    points_count: int
    status: str


class ScoredPointDict(TypedDict):
    """Raw search hit from Qdrant."""

    id: str
    score: float
    payload: Mapping[str, Any]  # Qdrant payload


class QdrantClient:
    """Low-level async Qdrant client for vector operations.

    Collection name is passed explicitly to each method - no default collection.
    Collections hold a single unnamed dense vector with cosine distance.
    """

    DEFAULT_URL = 'http://localhost:6333'
    DEFAULT_TIMEOUT = 10

    def __init__(
        self,
        url: str = DEFAULT_URL,
        *,
        location: str | None = None,
        api_key: str | None = None,
        timeout: int = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize client.

        Args:
            url: Qdrant server URL. Ignored when location is given.
            location: qdrant-client location, e.g. ':memory:' for embedded local mode.
            api_key: Optional Qdrant Cloud API key.
            timeout: HTTP timeout in seconds.
        """
        if location is not None:
            self._client = AsyncQdrantClient(location=location)
        else:
            self._client = AsyncQdrantClient(url=url, api_key=api_key, timeout=timeout)

    async def create_collection(
        self,
        collection_name: str,
        vector_dimension: int,
        keyword_fields: Sequence[str] = (),
    ) -> None:
        """Create a cosine-distance collection with keyword payload indexes.

        Args:
            collection_name: Collection name.
            vector_dimension: Size of embedding vectors (e.g., 1536).
            keyword_fields: Payload fields to index for exact-match filtering.
        """
        await self._client.create_collection(
            collection_name=collection_name,
            vectors_config=VectorParams(size=vector_dimension, distance=Distance.COSINE),
        )
        for field_name in keyword_fields:
            await self._client.create_payload_index(
                collection_name=collection_name,
                field_name=field_name,
                field_schema=PayloadSchemaType.KEYWORD,
            )
        logger.info(
            f'[QDRANT] Created collection {collection_name} (dim={vector_dimension}, indexes={list(keyword_fields)})'
        )

    async def delete_collection(self, collection_name: str) -> None:
        """Delete the entire collection."""
        await self._client.delete_collection(collection_name)

    @_retry.qdrant_breaker
    @tenacity.retry(
        retry=tenacity.retry_if_exception(_retry.is_retryable_qdrant_error),
        stop=tenacity.stop_after_attempt(3),
        wait=tenacity.wait_exponential(multiplier=0.5, max=5),
        before_sleep=_retry.log_qdrant_retry,
        reraise=True,
    )
    async def upsert(
        self,
        collection_name: str,
        points: Sequence[tuple[UUID, Sequence[float], Mapping[str, Any]]],
    ) -> int:
        """Insert or replace points by id.

        Retries on transient network errors. Waits for the write to be applied
        so a following search observes it.

        Args:
            collection_name: Collection name.
            points: Sequence of (id, vector, payload) tuples.

        Returns:
            Number of points upserted.
        """
        point_structs = [
            PointStruct(
                id=str(point_id),
                vector=list(vector),
                payload=dict(payload),
            )
            for point_id, vector, payload in points
        ]

        await self._client.upsert(
            collection_name=collection_name,
            points=point_structs,
            wait=True,
        )
        return len(point_structs)

    @_retry.qdrant_breaker
    @tenacity.retry(
        retry=tenacity.retry_if_exception(_retry.is_retryable_qdrant_error),
        stop=tenacity.stop_after_attempt(3),
        wait=tenacity.wait_exponential(multiplier=0.5, max=5),
        before_sleep=_retry.log_qdrant_retry,
        reraise=True,
    )
    async def delete_by_field(self, collection_name: str, key: str, value: str) -> None:
        """Delete every point whose payload `key` equals `value`, in one request."""
        await self._client.delete(
            collection_name=collection_name,
            points_selector=FilterSelector(
                filter=Filter(must=[FieldCondition(key=key, match=MatchValue(value=value))]),
            ),
            wait=True,
        )

    async def search(
        self,
        collection_name: str,
        vector: Sequence[float],
        limit: int = 10,
        score_threshold: float | None = None,
    ) -> Sequence[ScoredPointDict]:
        """Dense similarity search.

        Args:
            collection_name: Collection name.
            vector: Query embedding.
            limit: Maximum results.
            score_threshold: Minimum cosine similarity.

        Returns:
            Hits ordered by descending score.
        """
        results = await self._client.query_points(
            collection_name=collection_name,
            query=list(vector),
            limit=limit,
            score_threshold=score_threshold,
            with_payload=True,
        )
        return [
            ScoredPointDict(id=str(hit.id), score=hit.score, payload=hit.payload)
            for hit in results.points
            if hit.payload is not None
        ]

    async def count(self, collection_name: str, key: str | None = None, value: str | None = None) -> int:
        """Exact point count, optionally restricted to payload `key` == `value`."""
        count_filter = None
        if key is not None and value is not None:
            count_filter = Filter(must=[FieldCondition(key=key, match=MatchValue(value=value))])
        result = await self._client.count(
            collection_name=collection_name,
            count_filter=count_filter,
            exact=True,
        )
        return result.count

    async def scroll_field_values(self, collection_name: str, key: str, batch_size: int = 512) -> set[str]:
        """Distinct string values of payload `key` across every point."""
        values: set[str] = set()
        offset: ExtendedPointId | None = None
        while True:
            points, offset = await self._client.scroll(
                collection_name=collection_name,
                limit=batch_size,
                offset=offset,
                with_payload=[key],
                with_vectors=False,
            )
            for point in points:
                value = (point.payload or {}).get(key)
                if isinstance(value, str):
                    values.add(value)
            if offset is None:
                return values

    async def collection_exists(self, collection_name: str) -> bool:
        """Check if collection exists."""
        collections = await self._client.get_collections()
        return any(c.name == collection_name for c in collections.collections)

    async def get_collection_info(self, collection_name: str) -> CollectionInfoDict | None:
        """Get collection metadata.

        Args:
            collection_name: Collection name.

        Returns:
            Typed dict with name, vector_dimension, points_count, status.
            None if collection doesn't exist.
        """
        if not await self.collection_exists(collection_name):
            return None

        info = await self._client.get_collection(collection_name)

        # Handle both named vectors (dict) and single vector config
        vectors_config = info.config.params.vectors
        if isinstance(vectors_config, dict):
            first = next(iter(vectors_config.values()), None)
            vector_dimension = first.size if first else 0
        elif vectors_config is not None:
            vector_dimension = vectors_config.size
        else:
            vector_dimension = 0

        return CollectionInfoDict(
            name=collection_name,
            vector_dimension=vector_dimension,
            points_count=info.points_count or 0,
            status=str(info.status),
        )

    async def close(self) -> None:
        """Close the underlying client."""
        await self._client.close()

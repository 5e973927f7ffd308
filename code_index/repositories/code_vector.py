"""Code vector repository: keeps one Qdrant collection in sync with the chunker.

Typed interface over the Qdrant client. All public methods accept and return
strict Pydantic models from schemas.vectors. Every operation is idempotent:
upserts replace by deterministic block id, deletes by file path remove all of
a file's points in one filter request.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Sequence

from code_index.clients.qdrant import CollectionInfoDict, QdrantClient
from code_index.schemas.blocks import CodeBlock
from code_index.schemas.vectors import VectorPoint, VectorSearchHit

__all__ = [
    'CodeVectorRepository',
]

logger = logging.getLogger(__name__)

# Payload fields with keyword indexes
FILE_PATH_KEY = 'file_path'
INDEXED_PAYLOAD_FIELDS = (FILE_PATH_KEY, 'language', 'type')


class CodeVectorRepository:
    """Vector storage and retrieval for code blocks.

    Each repository instance is bound to a specific collection. Points carry the
    full CodeBlock as payload; the index holds no local copy.
    """

    def __init__(self, client: QdrantClient, collection_name: str) -> None:
        """Initialize repository for a specific collection.

        Args:
            client: Qdrant client instance.
            collection_name: Name of the collection to operate on.
        """
        self._client = client
        self._collection_name = collection_name

    @property
    def collection_name(self) -> str:
        return self._collection_name

    async def ensure_collection(self, vector_dimension: int) -> None:
        """Create the collection if absent; recreate it if the dimension changed.

        Vectors from a different model or dimension are not comparable, so a
        mismatched collection is dropped with all its points.

        Args:
            vector_dimension: Size of embedding vectors (e.g., 1536).
        """
        info = await self._client.get_collection_info(self._collection_name)
        if info is not None and info['vector_dimension'] == vector_dimension:
            return

        if info is not None:
            logger.warning(
                f'[QDRANT] Collection {self._collection_name} has dimension {info["vector_dimension"]}, '
                f'expected {vector_dimension}. Recreating ({info["points_count"]} points dropped)'
            )
            await self._client.delete_collection(self._collection_name)

        await self._client.create_collection(
            self._collection_name,
            vector_dimension,
            keyword_fields=INDEXED_PAYLOAD_FIELDS,
        )

    async def upsert(self, points: Sequence[VectorPoint]) -> int:
        """Insert or replace points keyed by block id.

        Args:
            points: Blocks with their vectors.

        Returns:
            Number of points upserted.
        """
        if not points:
            return 0
        return await self._client.upsert(
            self._collection_name,
            [(point.id, point.vector, point.block.model_dump(mode='json')) for point in points],
        )

    async def delete_by_path(self, file_path: str) -> None:
        """Remove every point whose payload file_path equals `file_path`."""
        await self._client.delete_by_field(self._collection_name, FILE_PATH_KEY, file_path)
        logger.debug(f'[QDRANT] Deleted points for {file_path}')

    async def file_paths_under(self, directory: str) -> Sequence[str]:
        """Indexed file paths inside `directory`, at any depth."""
        prefix = directory.rstrip(os.sep) + os.sep
        paths = await self._client.scroll_field_values(self._collection_name, FILE_PATH_KEY)
        return sorted(path for path in paths if path.startswith(prefix))

    async def delete_collection(self) -> None:
        """Delete the collection. No-op if it doesn't exist."""
        if not await self._client.collection_exists(self._collection_name):
            return
        await self._client.delete_collection(self._collection_name)
        logger.info(f'[QDRANT] Deleted collection {self._collection_name}')

    async def exists(self) -> bool:
        """Check whether the backing collection exists."""
        return await self._client.collection_exists(self._collection_name)

    async def search(
        self,
        vector: Sequence[float],
        limit: int,
        min_score: float | None = None,
    ) -> Sequence[VectorSearchHit]:
        """Rank blocks by cosine similarity to `vector`.

        Args:
            vector: Query embedding.
            limit: Maximum results.
            min_score: Minimum similarity; lower-scoring hits are dropped by the store.

        Returns:
            Typed hits, best first.
        """
        raw_results = await self._client.search(
            self._collection_name,
            vector=vector,
            limit=limit,
            score_threshold=min_score,
        )
        hits = []
        for result in raw_results:
            block = _block_from_payload(result['payload'])
            hits.append(VectorSearchHit(id=block.id, score=result['score'], block=block))
        return hits

    async def count(self, file_path: str | None = None) -> int:
        """Count points, optionally only those for one file."""
        if file_path is None:
            return await self._client.count(self._collection_name)
        return await self._client.count(self._collection_name, FILE_PATH_KEY, file_path)

    async def collection_info(self) -> CollectionInfoDict | None:
        """Collection metadata, or None if the collection doesn't exist."""
        return await self._client.get_collection_info(self._collection_name)

    async def close(self) -> None:
        """Close the underlying client."""
        await self._client.close()


def _block_from_payload(payload: object) -> CodeBlock:
    # Payload round-trips through JSON, where strict mode accepts UUID strings
    return CodeBlock.model_validate_json(json.dumps(payload))

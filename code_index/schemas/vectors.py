"""Vector storage schemas for Qdrant operations.

Typed models for the boundary between the index manager and the vector
repository. The full CodeBlock travels as point payload.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Annotated
from uuid import UUID

import pydantic

from code_index.schemas.base import StrictModel
from code_index.schemas.blocks import CodeBlock

__all__ = [
    'SNIPPET_LENGTH',
    'SearchOptions',
    'SearchResult',
    'VectorPoint',
    'VectorSearchHit',
]

SNIPPET_LENGTH = 200


class VectorPoint(StrictModel):
    """A block paired with its embedding, ready for upsert."""

    id: UUID
    vector: Sequence[float]
    block: CodeBlock

    @classmethod
    def from_block(cls, block: CodeBlock, vector: Sequence[float]) -> VectorPoint:
        """Create VectorPoint keyed by the block's deterministic id."""
        return cls(id=block.id, vector=vector, block=block)


class VectorSearchHit(StrictModel):
    """Raw similarity hit from the store."""

    id: UUID
    score: float
    block: CodeBlock


class SearchOptions(StrictModel):
    """Per-request search overrides. None falls back to SearchConfig."""

    min_score: float | None = None
    max_results: Annotated[int, pydantic.Field(ge=1, le=1000)] | None = None
    include_snippet: bool | None = None
    # Glob post-filters on file path
    file_patterns: Sequence[str] = ()
    exclude_patterns: Sequence[str] = ()


class SearchResult(StrictModel):
    """A ranked search result."""

    block: CodeBlock
    score: float
    file_path: str
    snippet: str

    @classmethod
    def from_hit(cls, hit: VectorSearchHit, *, include_snippet: bool) -> SearchResult:
        """Build a result; snippet is truncated content when include_snippet, else full content."""
        content = hit.block.content
        if include_snippet and len(content) > SNIPPET_LENGTH:
            snippet = content[:SNIPPET_LENGTH] + '...'
        else:
            snippet = content
        return cls(block=hit.block, score=hit.score, file_path=hit.block.file_path, snippet=snippet)

"""Tests for CodeVectorRepository against qdrant-client's in-memory mode."""

from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
import pytest
from qdrant_client.http.exceptions import ResponseHandlingException

from code_index.clients._retry import is_retryable_qdrant_error
from code_index.clients.qdrant import QdrantClient
from code_index.repositories.code_vector import CodeVectorRepository
from code_index.schemas.blocks import CodeBlock, compute_block_id
from code_index.schemas.vectors import VectorPoint

DIMENSION = 4


def make_block(file_path: str, start_line: int, content: str = 'def handler():\n    return 42') -> CodeBlock:
    end_line = start_line + content.count('\n')
    return CodeBlock(
        id=compute_block_id(file_path, start_line, end_line, content),
        file_path=file_path,
        content=content,
        language='python',
        start_line=start_line,
        end_line=end_line,
        type='function',
        name='handler',
    )


def make_point(block: CodeBlock, vector: list[float] | None = None) -> VectorPoint:
    return VectorPoint.from_block(block, vector or [1.0, 0.0, 0.0, 0.0])


@pytest.fixture
async def repository() -> AsyncIterator[CodeVectorRepository]:
    repo = CodeVectorRepository(QdrantClient(location=':memory:'), 'codebase-test')
    yield repo
    await repo.close()


class TestCollectionLifecycle:
    """ensure_collection / delete_collection."""

    async def test_ensure_creates_once(self, repository: CodeVectorRepository) -> None:
        assert not await repository.exists()

        await repository.ensure_collection(DIMENSION)
        await repository.upsert([make_point(make_block('/repo/a.py', 1))])
        await repository.ensure_collection(DIMENSION)

        assert await repository.exists()
        assert await repository.count() == 1

    async def test_dimension_mismatch_recreates(self, repository: CodeVectorRepository) -> None:
        await repository.ensure_collection(DIMENSION)
        await repository.upsert([make_point(make_block('/repo/a.py', 1))])

        await repository.ensure_collection(8)

        info = await repository.collection_info()
        assert info is not None
        assert info['vector_dimension'] == 8
        assert await repository.count() == 0

    async def test_delete_collection_idempotent(self, repository: CodeVectorRepository) -> None:
        await repository.delete_collection()
        await repository.ensure_collection(DIMENSION)

        await repository.delete_collection()
        await repository.delete_collection()

        assert not await repository.exists()
        assert await repository.collection_info() is None


class TestPoints:
    """Upsert, delete by path, search."""

    async def test_upsert_replaces_by_id(self, repository: CodeVectorRepository) -> None:
        await repository.ensure_collection(DIMENSION)
        block = make_block('/repo/a.py', 1)

        await repository.upsert([make_point(block)])
        await repository.upsert([make_point(block)])

        assert await repository.count() == 1

    async def test_upsert_empty_is_noop(self, repository: CodeVectorRepository) -> None:
        await repository.ensure_collection(DIMENSION)

        assert await repository.upsert([]) == 0

    async def test_delete_by_path_removes_only_that_file(self, repository: CodeVectorRepository) -> None:
        await repository.ensure_collection(DIMENSION)
        await repository.upsert(
            [
                make_point(make_block('/repo/a.py', 1)),
                make_point(make_block('/repo/a.py', 10)),
                make_point(make_block('/repo/b.py', 1)),
            ]
        )

        await repository.delete_by_path('/repo/a.py')

        assert await repository.count(file_path='/repo/a.py') == 0
        assert await repository.count(file_path='/repo/b.py') == 1

    async def test_file_paths_under_directory(self, repository: CodeVectorRepository) -> None:
        await repository.ensure_collection(DIMENSION)
        await repository.upsert(
            [
                make_point(make_block('/repo/pkg/a.py', 1)),
                make_point(make_block('/repo/pkg/a.py', 10)),
                make_point(make_block('/repo/pkg/sub/b.py', 1)),
                make_point(make_block('/repo/pkg2/c.py', 1)),
                make_point(make_block('/repo/main.py', 1)),
            ]
        )

        assert await repository.file_paths_under('/repo/pkg') == ['/repo/pkg/a.py', '/repo/pkg/sub/b.py']
        assert await repository.file_paths_under('/repo/pkg/') == ['/repo/pkg/a.py', '/repo/pkg/sub/b.py']
        assert await repository.file_paths_under('/repo/missing') == []

    async def test_search_returns_typed_blocks(self, repository: CodeVectorRepository) -> None:
        await repository.ensure_collection(DIMENSION)
        near = make_block('/repo/near.py', 1)
        far = make_block('/repo/far.py', 1)
        await repository.upsert([make_point(near, [1.0, 0.0, 0.0, 0.0]), make_point(far, [0.0, 1.0, 0.0, 0.0])])

        hits = await repository.search([1.0, 0.1, 0.0, 0.0], limit=10, min_score=0.7)

        assert [hit.block for hit in hits] == [near]
        assert hits[0].id == near.id
        assert hits[0].score > 0.9


class TestQdrantRetryClassification:
    def test_transport_failure_retryable(self) -> None:
        exc = ResponseHandlingException(httpx.ConnectError('connection refused'))

        assert is_retryable_qdrant_error(exc)

    def test_non_transport_failures_not_retryable(self) -> None:
        assert not is_retryable_qdrant_error(ResponseHandlingException(ValueError('bad payload')))
        assert not is_retryable_qdrant_error(KeyError('vector'))

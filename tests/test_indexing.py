"""Tests for IndexManager: state machine, indexing, search, change handling."""

from __future__ import annotations

import asyncio
import shutil
from collections.abc import AsyncIterator, Sequence
from pathlib import Path

import pytest

from code_index.clients.qdrant import QdrantClient
from code_index.exceptions import EmbeddingBatchError, NotIndexedError, ReentrancyError
from code_index.schemas.config import (
    CodeIndexConfig,
    IndexingConfig,
    OpenAIEmbedderConfig,
    QdrantConfig,
    WatcherConfig,
)
from code_index.schemas.embeddings import TaskIntent
from code_index.schemas.indexing import IndexingProgress, IndexingStage
from code_index.schemas.vectors import SearchOptions
from code_index.services.indexing import IndexManager, create_index_manager

from tests.fakes import FAKE_DIMENSION, FakeEmbeddingClient

JS_FOO = """function foo(a, b) {
  const sum = a + b;
  const doubled = sum * 2;
  return doubled + 1;
}
"""

PY_SHORT = """def bar():
    return 1
"""

PY_TWO_FUNCTIONS = """def load_settings(path):
    with open(path) as f:
        raw = f.read()
    return parse_settings(raw)


def parse_settings(raw):
    lines = raw.splitlines()
    pairs = [line.split('=', 1) for line in lines]
    return dict(pairs)
"""

PY_ONE_FUNCTION = """def load_settings(path):
    with open(path) as f:
        raw = f.read()
    return parse_settings(raw)
"""


class GatedEmbeddingClient(FakeEmbeddingClient):
    """Blocks every embed call until released."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def embed(self, texts: Sequence[str], *, intent: TaskIntent) -> Sequence[Sequence[float]]:
        self.entered.set()
        await self.release.wait()
        return await super().embed(texts, intent=intent)


def make_config(embedder: OpenAIEmbedderConfig | None = None, debounce_seconds: float = 1.0) -> CodeIndexConfig:
    return CodeIndexConfig(
        embedder=embedder or OpenAIEmbedderConfig(dimensions=FAKE_DIMENSION),
        vector_store=QdrantConfig(location=':memory:'),
        indexing=IndexingConfig(initial_retry_delay=0.0),
        watcher=WatcherConfig(debounce_seconds=debounce_seconds),
    )


def build_manager(workspace: Path, client: FakeEmbeddingClient, config: CodeIndexConfig | None = None) -> IndexManager:
    return create_index_manager(
        config or make_config(),
        workspace,
        embedding_client=client,
        vector_store_client=QdrantClient(location=':memory:'),
    )


def write(root: Path, relative: str, content: str) -> str:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return str(path.resolve())


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    return tmp_path.resolve()


@pytest.fixture
def client() -> FakeEmbeddingClient:
    return FakeEmbeddingClient()


@pytest.fixture
async def manager(workspace: Path, client: FakeEmbeddingClient) -> AsyncIterator[IndexManager]:
    index_manager = build_manager(workspace, client)
    yield index_manager
    await index_manager.close()


# ---------------------------------------------------------------------------
# Indexing
# ---------------------------------------------------------------------------


class TestIndexDirectory:
    """Full scan, embed, and store runs."""

    async def test_end_to_end(self, workspace: Path, manager: IndexManager, client: FakeEmbeddingClient) -> None:
        a_js = write(workspace, 'a.js', JS_FOO)
        write(workspace, 'b.py', PY_SHORT)

        result = await manager.index_directory(workspace)

        assert [len(texts) for texts, _intent in client.calls] == [1]
        assert result.batches == 1

        assert manager.state == 'indexed'
        assert result.files_total == 2
        assert result.files_processed == 2
        assert result.blocks_created == 1
        assert result.points_upserted == 1
        assert result.errors == []
        assert await manager.repository.count() == 1

        [hit] = await manager.search('foo')
        assert hit.file_path == a_js
        assert hit.block.name == 'foo'
        assert hit.block.start_line == 1
        assert hit.block.end_line == 5
        assert hit.score >= 0.7

    async def test_reindex_is_idempotent(self, workspace: Path, manager: IndexManager) -> None:
        write(workspace, 'a.js', JS_FOO)

        await manager.index_directory(workspace)
        await manager.index_directory(workspace)

        assert await manager.repository.count() == 1

    async def test_progress_stages(self, workspace: Path, manager: IndexManager) -> None:
        write(workspace, 'a.js', JS_FOO)
        stages: list[IndexingStage] = []
        records: list[IndexingProgress] = []

        def on_progress(progress: IndexingProgress) -> None:
            stages.append(progress.stage)
            records.append(progress)

        await manager.index_directory(workspace, on_progress)

        for stage in ('scanning', 'parsing', 'embedding', 'storing'):
            assert stage in stages
        assert stages[-1] == 'completed'
        assert all(r is records[0] for r in records)

    async def test_oversized_blocks_skipped(self, workspace: Path) -> None:
        config = make_config(OpenAIEmbedderConfig(dimensions=FAKE_DIMENSION, max_item_tokens=10, max_batch_tokens=100))
        index_manager = build_manager(workspace, FakeEmbeddingClient(), config)
        write(workspace, 'a.js', JS_FOO)

        result = await index_manager.index_directory(workspace)

        assert result.blocks_created == 1
        assert result.blocks_skipped == 1
        assert result.points_upserted == 0
        assert index_manager.state == 'indexed'
        await index_manager.close()

    async def test_embedding_failure_sets_error(self, workspace: Path) -> None:
        index_manager = build_manager(workspace, FakeEmbeddingClient(failures=10))
        write(workspace, 'a.js', JS_FOO)

        with pytest.raises(EmbeddingBatchError):
            await index_manager.index_directory(workspace)

        assert index_manager.state == 'error'
        await index_manager.close()

    async def test_empty_directory(self, workspace: Path, manager: IndexManager) -> None:
        result = await manager.index_directory(workspace)

        assert result.blocks_created == 0
        assert result.batches == 0
        assert manager.state == 'indexed'
        assert await manager.search('anything') == []


class TestReentrancy:
    """Only one indexing run at a time."""

    async def test_second_run_rejected(self, workspace: Path) -> None:
        client = GatedEmbeddingClient()
        index_manager = build_manager(workspace, client)
        write(workspace, 'a.js', JS_FOO)

        first = asyncio.create_task(index_manager.index_directory(workspace))
        await client.entered.wait()

        assert index_manager.state == 'indexing'
        with pytest.raises(ReentrancyError):
            await index_manager.index_directory(workspace)
        with pytest.raises(ReentrancyError):
            index_manager.start_watching(workspace)

        client.release.set()
        await first
        assert index_manager.state == 'indexed'
        await index_manager.close()


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


class TestSearch:
    """Query embedding, thresholds, and post-filters."""

    async def test_not_indexed(self, manager: IndexManager) -> None:
        with pytest.raises(NotIndexedError):
            await manager.search('anything')

    async def test_file_pattern_filter(self, workspace: Path, manager: IndexManager) -> None:
        write(workspace, 'a.js', JS_FOO)
        py_path = write(workspace, 'settings.py', PY_TWO_FUNCTIONS)
        await manager.index_directory(workspace)

        results = await manager.search('settings', SearchOptions(file_patterns=['*.py']))

        assert {r.file_path for r in results} == {py_path}
        assert len(results) == 2

    async def test_exclude_pattern_filter(self, workspace: Path, manager: IndexManager) -> None:
        a_js = write(workspace, 'a.js', JS_FOO)
        write(workspace, 'settings.py', PY_TWO_FUNCTIONS)
        await manager.index_directory(workspace)

        results = await manager.search('settings', SearchOptions(exclude_patterns=['*.py']))

        assert [r.file_path for r in results] == [a_js]

    async def test_max_results(self, workspace: Path, manager: IndexManager) -> None:
        write(workspace, 'a.js', JS_FOO)
        write(workspace, 'settings.py', PY_TWO_FUNCTIONS)
        await manager.index_directory(workspace)

        assert len(await manager.search('settings', SearchOptions(max_results=1))) == 1

    async def test_min_score_above_all_hits(self, workspace: Path, manager: IndexManager) -> None:
        write(workspace, 'a.js', JS_FOO)
        await manager.index_directory(workspace)
        # Every fake vector is identical, so all hits score 1.0
        results = await manager.search('foo', SearchOptions(min_score=1.01))

        assert results == []

    async def test_snippet_truncation(self, workspace: Path, manager: IndexManager) -> None:
        body = '\n'.join(f'    total += item_{i}.weight * item_{i}.count' for i in range(8))
        write(workspace, 'long.py', f'def accumulate(items):\n    total = 0\n{body}\n    return total\n')
        await manager.index_directory(workspace)

        [truncated] = await manager.search('accumulate')
        [full] = await manager.search('accumulate', SearchOptions(include_snippet=False))

        assert truncated.snippet.endswith('...')
        assert len(truncated.snippet) == 203
        assert full.snippet == full.block.content

    async def test_oversized_query_returns_nothing(self, workspace: Path, manager: IndexManager) -> None:
        write(workspace, 'a.js', JS_FOO)
        await manager.index_directory(workspace)

        assert await manager.search('x' * 100_000) == []


# ---------------------------------------------------------------------------
# Change handling
# ---------------------------------------------------------------------------


class TestFileChanges:
    """Incremental updates for one file."""

    async def test_shrunk_file_leaves_no_orphans(self, workspace: Path, manager: IndexManager) -> None:
        path = write(workspace, 'settings.py', PY_TWO_FUNCTIONS)
        await manager.index_directory(workspace)
        assert await manager.repository.count(file_path=path) == 2

        write(workspace, 'settings.py', PY_ONE_FUNCTION)
        await manager.handle_file_change(path, 'change')

        assert await manager.repository.count(file_path=path) == 1

    async def test_unlink_removes_points(self, workspace: Path, manager: IndexManager) -> None:
        path = write(workspace, 'a.js', JS_FOO)
        await manager.index_directory(workspace)

        Path(path).unlink()
        await manager.handle_file_change(path, 'unlink')

        assert await manager.repository.count(file_path=path) == 0

    async def test_vanished_file_treated_as_removed(self, workspace: Path, manager: IndexManager) -> None:
        path = write(workspace, 'a.js', JS_FOO)
        await manager.index_directory(workspace)

        Path(path).unlink()
        await manager.handle_file_change(path, 'change')

        assert await manager.repository.count(file_path=path) == 0

    async def test_added_file_indexed(self, workspace: Path, manager: IndexManager) -> None:
        await manager.index_directory(workspace)

        path = write(workspace, 'a.js', JS_FOO)
        await manager.handle_file_change(path, 'add')

        assert await manager.repository.count(file_path=path) == 1

    async def test_removed_directory_takes_its_files(self, workspace: Path, manager: IndexManager) -> None:
        nested = [write(workspace, 'pkg/a.js', JS_FOO), write(workspace, 'pkg/sub/b.js', JS_FOO)]
        sibling = write(workspace, 'pkg2/c.js', JS_FOO)
        await manager.index_directory(workspace)

        shutil.rmtree(workspace / 'pkg')
        await manager.handle_file_change(str(workspace / 'pkg'), 'unlink')

        for path in nested:
            assert await manager.repository.count(file_path=path) == 0
        assert await manager.repository.count(file_path=sibling) == 1

    async def test_change_without_index_is_ignored(self, workspace: Path, manager: IndexManager) -> None:
        path = write(workspace, 'a.js', JS_FOO)

        await manager.handle_file_change(path, 'add')

        assert not await manager.repository.exists()

    async def test_change_after_clear_does_not_recreate_index(self, workspace: Path, manager: IndexManager) -> None:
        path = write(workspace, 'a.js', JS_FOO)
        await manager.index_directory(workspace)
        await manager.clear_index()

        write(workspace, 'a.js', JS_FOO + '\n// edited\n')
        await manager.handle_file_change(path, 'change')

        assert not await manager.repository.exists()
        with pytest.raises(NotIndexedError):
            await manager.search('foo')

    async def test_embedding_failure_keeps_old_points(self, workspace: Path, client: FakeEmbeddingClient) -> None:
        index_manager = build_manager(workspace, client)
        path = write(workspace, 'settings.py', PY_TWO_FUNCTIONS)
        await index_manager.index_directory(workspace)

        write(workspace, 'settings.py', PY_ONE_FUNCTION)
        client.failures = 10
        with pytest.raises(EmbeddingBatchError):
            await index_manager.handle_file_change(path, 'change')

        assert await index_manager.repository.count(file_path=path) == 2
        await index_manager.close()


# ---------------------------------------------------------------------------
# Watching and clearing
# ---------------------------------------------------------------------------


class TestWatchingState:
    """start_watching / stop_watching / clear_index transitions."""

    async def test_watch_and_stop(self, workspace: Path, manager: IndexManager) -> None:
        manager.start_watching(workspace)
        assert manager.state == 'watching'
        assert manager.watch_root == workspace

        manager.stop_watching()
        assert manager.state == 'idle'
        assert manager.watch_root is None

    async def test_index_while_watching_stays_watching(self, workspace: Path, manager: IndexManager) -> None:
        write(workspace, 'a.js', JS_FOO)
        manager.start_watching(workspace)

        await manager.index_directory(workspace)

        assert manager.state == 'watching'

    async def test_watched_change_reaches_store(self, workspace: Path, client: FakeEmbeddingClient) -> None:
        index_manager = build_manager(workspace, client, make_config(debounce_seconds=0.05))
        await index_manager.index_directory(workspace)
        index_manager.start_watching(workspace)

        path = write(workspace, 'a.js', JS_FOO)
        for _ in range(100):
            await index_manager.drain_changes()
            if await index_manager.repository.count(file_path=path) == 1:
                break
            await asyncio.sleep(0.05)

        assert await index_manager.repository.count(file_path=path) == 1
        await index_manager.close()

    async def test_directory_moved_out_of_root(self, tmp_path: Path, client: FakeEmbeddingClient) -> None:
        root = (tmp_path / 'ws').resolve()
        outside = (tmp_path / 'outside').resolve()
        outside.mkdir()
        nested = [write(root, 'pkg/a.js', JS_FOO), write(root, 'pkg/sub/b.js', JS_FOO)]
        kept = write(root, 'main.js', JS_FOO)
        index_manager = build_manager(root, client, make_config(debounce_seconds=0.05))
        await index_manager.index_directory(root)
        index_manager.start_watching(root)

        shutil.move(str(root / 'pkg'), str(outside))
        for _ in range(100):
            await index_manager.drain_changes()
            counts = [await index_manager.repository.count(file_path=path) for path in nested]
            if counts == [0, 0]:
                break
            await asyncio.sleep(0.05)

        for path in nested:
            assert await index_manager.repository.count(file_path=path) == 0
        assert await index_manager.repository.count(file_path=kept) == 1
        await index_manager.close()

    async def test_clear_index(self, workspace: Path, manager: IndexManager) -> None:
        write(workspace, 'a.js', JS_FOO)
        await manager.index_directory(workspace)
        manager.start_watching(workspace)

        await manager.clear_index()

        assert manager.state == 'idle'
        assert manager.watch_root is None
        assert not await manager.repository.exists()
        with pytest.raises(NotIndexedError):
            await manager.search('foo')

    async def test_clear_when_nothing_indexed(self, manager: IndexManager) -> None:
        await manager.clear_index()

        assert manager.state == 'idle'

    async def test_close_releases_embedding_client(self, workspace: Path, client: FakeEmbeddingClient) -> None:
        index_manager = build_manager(workspace, client)

        await index_manager.close()

        assert client.closed

"""IndexManager - the top-level indexing state machine.

Composes scanner, embedding batcher, vector repository and file watcher into
the public operations: index_directory, search, start_watching/stop_watching,
and clear_index.

States:
    idle --index_directory--> indexing --success--> indexed (or watching, if a watch is active)
                                       --failure--> error
    idle|indexed|error --start_watching--> watching --stop_watching--> idle
    any --clear_index--> idle

search is allowed in every state. Availability is decided by the vector store,
not by in-memory state, so a fresh process can search an index built earlier.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import time
from collections.abc import Sequence
from pathlib import Path, PurePath

from code_index.clients import EmbeddingClient, QdrantClient, create_embedding_client, create_vector_store_client
from code_index.exceptions import NotIndexedError, ReentrancyError
from code_index.repositories.code_vector import CodeVectorRepository
from code_index.schemas.blocks import CodeBlock
from code_index.schemas.config import CodeIndexConfig, SearchConfig
from code_index.schemas.embeddings import EmbeddedText
from code_index.schemas.indexing import (
    ChangeType,
    IndexingProgress,
    IndexingResult,
    IndexingState,
    ProgressCallback,
)
from code_index.schemas.vectors import SearchOptions, SearchResult, VectorPoint
from code_index.services.chunking import Chunker
from code_index.services.embedding import EmbeddingBatcher
from code_index.services.scanning import Scanner
from code_index.services.watching import WatchCoordinator

__all__ = [
    'DEFAULT_BATCH_SIZE',
    'IndexManager',
    'create_index_manager',
]

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 60  # Blocks per embed + upsert round

# Over-fetch factor when search results are post-filtered by file globs
FILTERED_FETCH_MULTIPLIER = 3


class IndexManager:
    """Owns the indexing state and the operations that change it."""

    def __init__(
        self,
        *,
        scanner: Scanner,
        batcher: EmbeddingBatcher,
        repository: CodeVectorRepository,
        watcher: WatchCoordinator,
        vector_dimension: int,
        batch_size: int = DEFAULT_BATCH_SIZE,
        search_config: SearchConfig = SearchConfig(),
    ) -> None:
        """Initialize manager. Use create_index_manager() to build from config.

        Args:
            scanner: Walks and chunks directories.
            batcher: Embeds block content and queries.
            repository: Collection the index lives in.
            watcher: Debounced file change source.
            vector_dimension: Embedding dimension the collection must have.
            batch_size: Blocks per embed + upsert round.
            search_config: Defaults for search options.
        """
        self._scanner = scanner
        self._batcher = batcher
        self._repository = repository
        self._watcher = watcher
        self._vector_dimension = vector_dimension
        self._batch_size = batch_size
        self._search_config = search_config

        self._state: IndexingState = 'idle'
        # Bumped by clear_index so an in-flight run doesn't overwrite the reset state
        self._generation = 0
        self._watch_root: Path | None = None
        self._change_lock = asyncio.Lock()
        self._change_tasks: set[asyncio.Task[None]] = set()

    @property
    def state(self) -> IndexingState:
        return self._state

    @property
    def repository(self) -> CodeVectorRepository:
        return self._repository

    @property
    def watch_root(self) -> Path | None:
        return self._watch_root

    async def index_directory(self, directory: Path, on_progress: ProgressCallback | None = None) -> IndexingResult:
        """Scan, embed and store every indexable file under `directory`.

        Unchanged files produce the same block ids, so re-indexing overwrites
        points in place.

        Args:
            directory: Root of the source tree.
            on_progress: Receives the run's single, mutable progress record.

        Returns:
            Summary of the run. Per-file failures are listed in `errors`.

        Raises:
            ReentrancyError: Another index_directory run is in progress.
            EmbeddingBatchError: A batch failed on every retry; state becomes 'error'.
        """
        if self._state == 'indexing':
            raise ReentrancyError('Indexing is already in progress. Wait for it to finish before starting another run.')

        generation = self._generation
        self._state = 'indexing'
        t0 = time.perf_counter()
        progress = IndexingProgress()
        blocks: list[CodeBlock] = []
        batch_count = 0
        upserted = 0
        skipped = 0

        try:
            await self._repository.ensure_collection(self._vector_dimension)
            blocks = await self._scanner.scan(directory, on_progress, progress=progress)

            if blocks:
                batches = [blocks[i : i + self._batch_size] for i in range(0, len(blocks), self._batch_size)]
                batch_count = len(batches)
                progress.stage = 'embedding'
                for number, batch in enumerate(batches, start=1):
                    progress.current_file = f'Processing batch {number}/{batch_count}'
                    _notify(on_progress, progress)
                    batch_upserted, batch_skipped = await self._embed_and_store(batch, progress, on_progress)
                    upserted += batch_upserted
                    skipped += batch_skipped
            else:
                logger.info(f'[INDEX] No blocks found under {directory}')

            progress.current_file = None
            progress.stage = 'completed'
            _notify(on_progress, progress)
        except Exception:
            if generation == self._generation:
                self._state = 'error'
            raise

        if generation == self._generation:
            self._state = 'watching' if self._watcher.is_running else 'indexed'

        result = IndexingResult(
            files_total=progress.total_files,
            files_processed=progress.processed_files,
            blocks_created=len(blocks),
            blocks_skipped=skipped,
            points_upserted=upserted,
            batches=batch_count,
            elapsed_seconds=time.perf_counter() - t0,
            errors=list(progress.errors),
        )
        logger.info(
            f'[INDEX] Indexed {directory}: {result.blocks_created:,} blocks, {result.points_upserted:,} points '
            f'in {result.batches} batches, {len(result.errors)} file errors, {result.elapsed_seconds:.2f}s'
        )
        return result

    async def search(self, query: str, options: SearchOptions | None = None) -> Sequence[SearchResult]:
        """Semantic search over the indexed blocks.

        Raises:
            NotIndexedError: The collection has never been created (or was cleared).
        """
        options = options if options is not None else SearchOptions()
        min_score = options.min_score if options.min_score is not None else self._search_config.min_score
        max_results = options.max_results if options.max_results is not None else self._search_config.max_results
        include_snippet = (
            options.include_snippet if options.include_snippet is not None else self._search_config.include_snippet
        )

        if not await self._repository.exists():
            raise NotIndexedError(
                f'Collection {self._repository.collection_name!r} does not exist. Run index_directory first.'
            )

        vector = await self._batcher.embed_query(query)
        if vector is None:
            logger.warning(f'[SEARCH] Query too long to embed ({len(query):,} chars), returning no results')
            return []

        filtering = bool(options.file_patterns or options.exclude_patterns)
        fetch_limit = max_results * FILTERED_FETCH_MULTIPLIER if filtering else max_results
        hits = await self._repository.search(vector, fetch_limit, min_score)

        results = [
            SearchResult.from_hit(hit, include_snippet=include_snippet)
            for hit in hits
            if _path_selected(hit.block.file_path, options.file_patterns, options.exclude_patterns)
        ][:max_results]
        logger.debug(f'[SEARCH] {query[:50]!r}: {len(results)} results (min_score={min_score})')
        return results

    def start_watching(self, directory: Path) -> None:
        """Keep the index in sync with changes under `directory`.

        Must be called from the event loop. Replaces any active watch.

        Raises:
            ReentrancyError: An indexing run is in progress.
        """
        if self._state == 'indexing':
            raise ReentrancyError('Cannot start watching while indexing is in progress.')
        if self._watcher.is_running:
            self.stop_watching()

        self._watcher.start(directory, self._schedule_change)
        self._watch_root = directory
        self._state = 'watching'

    def stop_watching(self) -> None:
        """Stop the active watch. Pending debounced changes are dropped.

        Changes whose callback already fired still run to completion; await
        drain_changes() to wait for them.
        """
        self._watcher.stop()
        self._watch_root = None
        if self._state == 'watching':
            self._state = 'idle'

    async def clear_index(self) -> None:
        """Delete the backing collection and return to idle.

        Stops an active watch first. If the delete fails, state becomes 'error'.
        """
        self._generation += 1
        if self._watcher.is_running:
            self._watcher.stop()
            self._watch_root = None

        try:
            await self._repository.delete_collection()
        except Exception:
            self._state = 'error'
            raise
        self._state = 'idle'

    async def handle_file_change(self, file_path: str, change_type: ChangeType) -> None:
        """Bring the store in line with one path's current contents.

        `unlink` removes the file's points; a path with no points of its own is
        treated as a removed directory and everything indexed beneath it goes.
        `add`/`change` re-chunks the file, then deletes its old points and
        upserts the new ones, so a file that shrank leaves no orphans. Changes
        are applied one at a time, and only to an existing index: a change
        never creates the collection.
        """
        async with self._change_lock:
            generation = self._generation
            if not await self._repository.exists():
                logger.info(f'[CHANGE] Ignoring {change_type} {file_path}: no index to update')
                return

            if change_type == 'unlink':
                await self._remove_path(file_path)
                return

            try:
                blocks = await self._scanner.chunk_file(Path(file_path))
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f'[CHANGE] Cannot read {file_path}, removing from index: {type(e).__name__}: {e}')
                blocks = []

            # Embed before deleting so an embedding failure leaves the old points in place
            points, skipped = await self._embed(blocks)
            if generation != self._generation:
                logger.info(f'[CHANGE] Dropping {change_type} {file_path}: index was cleared')
                return
            await self._repository.delete_by_path(file_path)
            await self._repository.upsert(points)
            logger.info(
                f'[CHANGE] {change_type} {file_path}: {len(points)} points'
                + (f' ({skipped} too large to embed)' if skipped else '')
            )

    async def drain_changes(self) -> None:
        """Wait for every change already dispatched by the watcher."""
        while self._change_tasks:
            await asyncio.gather(*self._change_tasks, return_exceptions=True)

    async def close(self) -> None:
        """Stop watching, finish outstanding changes, and close clients."""
        self.stop_watching()
        await self.drain_changes()
        await self._batcher.client.close()
        await self._repository.close()

    async def _remove_path(self, path: str) -> None:
        if await self._repository.count(file_path=path):
            await self._repository.delete_by_path(path)
            logger.info(f'[CHANGE] Removed {path}')
            return

        nested = await self._repository.file_paths_under(path)
        for file_path in nested:
            await self._repository.delete_by_path(file_path)
        if nested:
            logger.info(f'[CHANGE] Removed directory {path} ({len(nested)} files)')

    async def _embed_and_store(
        self,
        blocks: Sequence[CodeBlock],
        progress: IndexingProgress,
        on_progress: ProgressCallback | None,
    ) -> tuple[int, int]:
        points, skipped = await self._embed(blocks)
        progress.stage = 'storing'
        _notify(on_progress, progress)
        upserted = await self._repository.upsert(points)
        progress.stage = 'embedding'
        return upserted, skipped

    async def _embed(self, blocks: Sequence[CodeBlock]) -> tuple[Sequence[VectorPoint], int]:
        """Embed blocks; returns points for the embedded ones and the skipped count."""
        if not blocks:
            return [], 0
        outcomes = await self._batcher.embed([block.content for block in blocks])
        points = [
            VectorPoint.from_block(block, outcome.vector)
            for block, outcome in zip(blocks, outcomes, strict=True)
            if isinstance(outcome, EmbeddedText)
        ]
        return points, len(blocks) - len(points)

    def _schedule_change(self, file_path: str, change_type: ChangeType) -> None:
        """Watcher callback: run the change in a tracked task."""
        task = asyncio.create_task(self.handle_file_change(file_path, change_type))
        self._change_tasks.add(task)
        task.add_done_callback(self._on_change_done)

    def _on_change_done(self, task: asyncio.Task[None]) -> None:
        self._change_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f'[CHANGE] Failed to apply file change: {type(exc).__name__}: {exc}', exc_info=exc)


def create_index_manager(
    config: CodeIndexConfig,
    workspace: Path,
    *,
    embedding_client: EmbeddingClient | None = None,
    vector_store_client: QdrantClient | None = None,
) -> IndexManager:
    """Factory function to create IndexManager from configuration.

    Args:
        config: Full configuration.
        workspace: Project root; names the collection unless one is configured.
        embedding_client: Overrides the configured embedder (e.g. for tests).
        vector_store_client: Overrides the configured vector store client.

    Returns:
        Configured IndexManager in the 'idle' state.

    Raises:
        ConfigurationError: Unknown provider or missing API key.
    """
    if embedding_client is None:
        embedding_client = create_embedding_client(config.embedder)
    if vector_store_client is None:
        vector_store_client = create_vector_store_client(config.vector_store)

    scanner = Scanner(
        Chunker(config.parser),
        exclude_patterns=config.indexing.exclude_patterns,
        max_file_size=config.parser.max_file_size,
        concurrency=config.indexing.parsing_concurrency,
    )
    batcher = EmbeddingBatcher(
        embedding_client,
        max_item_tokens=config.embedder.max_item_tokens,
        max_batch_tokens=config.embedder.max_batch_tokens,
        max_batch_items=config.embedder.max_batch_items,
        max_attempts=config.indexing.max_batch_retries,
        initial_retry_delay=config.indexing.initial_retry_delay,
    )
    repository = CodeVectorRepository(vector_store_client, config.vector_store.collection_for(workspace))
    watcher = WatchCoordinator(
        debounce_seconds=config.watcher.debounce_seconds,
        exclude_patterns=config.indexing.exclude_patterns,
    )
    logger.info(
        f'[INDEX] Created index manager: collection={repository.collection_name}, '
        f'embedder={config.embedder.provider}/{config.embedder.model}'
    )
    return IndexManager(
        scanner=scanner,
        batcher=batcher,
        repository=repository,
        watcher=watcher,
        vector_dimension=config.embedder.dimensions,
        batch_size=config.indexing.batch_size,
        search_config=config.search,
    )


def _notify(on_progress: ProgressCallback | None, progress: IndexingProgress) -> None:
    if on_progress is not None:
        on_progress(progress)


def _path_selected(file_path: str, include: Sequence[str], exclude: Sequence[str]) -> bool:
    """Apply search glob filters against the full path and the file name."""
    name = PurePath(file_path).name

    def matches(pattern: str) -> bool:
        return fnmatch.fnmatchcase(file_path, pattern) or fnmatch.fnmatchcase(name, pattern)

    if include and not any(matches(p) for p in include):
        return False
    return not any(matches(p) for p in exclude)

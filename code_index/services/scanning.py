"""Scanner - walks a source tree and chunks every indexable file.

Per-file work (stat, read, chunk) runs under a fixed number of permits. A
failure in one file is recorded in the shared progress record and never
affects the others.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Iterator, Sequence
from pathlib import Path

from code_index.schemas.blocks import CodeBlock
from code_index.schemas.indexing import IndexingProgress, ProgressCallback
from code_index.services.chunking import Chunker
from code_index.services.filtering import PathFilter

__all__ = [
    'DEFAULT_CONCURRENCY',
    'Scanner',
]

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 10
DEFAULT_MAX_FILE_SIZE = 1024 * 1024


class Scanner:
    """Turns a directory into code blocks.

    Output order across files is unspecified; blocks of one file keep the
    chunker's order.
    """

    def __init__(
        self,
        chunker: Chunker,
        *,
        exclude_patterns: Sequence[str] = (),
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        """Initialize scanner.

        Args:
            chunker: Splits each file's content into blocks.
            exclude_patterns: Globs relative to the scanned root (see PathFilter).
            max_file_size: Files larger than this many bytes are skipped.
            concurrency: Max files being read/chunked at once.
        """
        self._chunker = chunker
        self._exclude_patterns = tuple(exclude_patterns)
        self._max_file_size = max_file_size
        self._concurrency = concurrency

    @property
    def chunker(self) -> Chunker:
        return self._chunker

    @property
    def max_file_size(self) -> int:
        return self._max_file_size

    def path_filter(self, root: Path) -> PathFilter:
        """Filter applying this scanner's excludes under `root`."""
        return PathFilter(root, self._exclude_patterns)

    async def scan(
        self,
        root: Path,
        on_progress: ProgressCallback | None = None,
        *,
        progress: IndexingProgress | None = None,
    ) -> list[CodeBlock]:
        """Chunk every indexable file under `root`.

        `on_progress` receives the same mutable IndexingProgress on every call:
        it is updated in place at each stage change and file completion.

        Args:
            root: Directory to scan.
            on_progress: Optional progress callback.
            progress: Record to update. A new one is created when None.

        Returns:
            All blocks from all files.
        """
        root = root.resolve()
        progress = progress if progress is not None else IndexingProgress()
        path_filter = self.path_filter(root)

        progress.stage = 'scanning'
        _notify(on_progress, progress)

        logger.debug(f'[SCAN] Starting file discovery under {root}')
        files = await asyncio.to_thread(lambda: list(_walk_files(path_filter)))
        progress.total_files = len(files)
        logger.info(f'[SCAN] Discovered {len(files):,} indexable files under {root}')
        _notify(on_progress, progress)

        t0 = time.perf_counter()
        semaphore = asyncio.Semaphore(self._concurrency)
        blocks: list[CodeBlock] = []

        async def process_file(path: Path) -> None:
            async with semaphore:
                progress.current_file = str(path)
                progress.stage = 'parsing'
                _notify(on_progress, progress)
                try:
                    file_blocks = await self.chunk_file(path)
                    blocks.extend(file_blocks)
                    logger.debug(f'[SCAN] {path.name}: {len(file_blocks)} blocks')
                except Exception as e:
                    message = f'Error processing {path}: {type(e).__name__}: {e}'
                    progress.errors.append(message)
                    logger.warning(f'[SCAN] {message}', exc_info=True)
                progress.processed_files += 1
                _notify(on_progress, progress)

        await asyncio.gather(*(process_file(path) for path in files))

        progress.current_file = None
        progress.stage = 'completed'
        _notify(on_progress, progress)
        logger.info(
            f'[SCAN] {len(blocks):,} blocks from {progress.processed_files:,} files '
            f'in {time.perf_counter() - t0:.2f}s ({len(progress.errors)} errors)'
        )
        return blocks

    async def chunk_file(self, path: Path) -> Sequence[CodeBlock]:
        """Read and chunk one file. Oversized files yield no blocks.

        Raises:
            OSError: If the file can't be read.
            UnicodeDecodeError: If the file isn't UTF-8.
        """
        content = await asyncio.to_thread(_read_source, path, self._max_file_size)
        if content is None:
            logger.warning(f'[SCAN] Skipping {path}: larger than {self._max_file_size:,} bytes')
            return []
        return self._chunker.chunk(str(path), content)


def _notify(on_progress: ProgressCallback | None, progress: IndexingProgress) -> None:
    if on_progress is not None:
        on_progress(progress)


def _read_source(path: Path, max_file_size: int) -> str | None:
    """Read UTF-8 text, or None if the file exceeds the size limit."""
    if path.stat().st_size > max_file_size:
        return None
    return path.read_text(encoding='utf-8')


def _walk_files(path_filter: PathFilter) -> Iterator[Path]:
    """Walk the root, pruning excluded directories, yielding indexable files."""
    root = path_filter.root
    for directory, dirnames, filenames in os.walk(root):
        directory_path = Path(directory)
        dirnames[:] = [
            d
            for d in dirnames
            if not path_filter.is_excluded((directory_path / d).relative_to(root).as_posix(), is_dir=True)
        ]
        for filename in filenames:
            file_path = directory_path / filename
            if path_filter.is_indexable(file_path):
                yield file_path

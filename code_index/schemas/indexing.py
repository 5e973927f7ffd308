"""Indexing operation schemas.

Models for tracking indexing state, progress, and results.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Sequence
from typing import Literal

from code_index.schemas.base import StrictModel

__all__ = [
    'ChangeCallback',
    'ChangeType',
    'IndexingProgress',
    'IndexingResult',
    'IndexingStage',
    'IndexingState',
    'ProgressCallback',
]

type IndexingState = Literal['idle', 'indexing', 'indexed', 'error', 'watching']

type IndexingStage = Literal['scanning', 'parsing', 'embedding', 'storing', 'completed']

type ChangeType = Literal['add', 'change', 'unlink']


@dataclasses.dataclass
class IndexingProgress:
    """Live progress of one scan/index run.

    Mutated in place by the run that created it. Progress callbacks receive this
    same object on every call, so a callback that holds on to it will observe
    later mutations too. Copy it (dataclasses.replace) to keep a snapshot.
    """

    total_files: int = 0
    processed_files: int = 0
    current_file: str | None = None
    stage: IndexingStage = 'scanning'
    errors: list[str] = dataclasses.field(default_factory=list)


# Callback type for progress updates
type ProgressCallback = Callable[[IndexingProgress], None]

# Callback type for debounced file changes: (absolute path, last change type)
type ChangeCallback = Callable[[str, ChangeType], None]


class IndexingResult(StrictModel):
    """Summary of an index_directory run."""

    files_total: int
    files_processed: int
    blocks_created: int
    blocks_skipped: int  # Exceeded the per-item token ceiling
    points_upserted: int
    batches: int
    elapsed_seconds: float
    errors: Sequence[str]

    @property
    def error_summary(self) -> str:
        """Human-readable error summary."""
        if not self.errors:
            return 'All files indexed successfully'
        return '\n'.join([f'{len(self.errors)} errors:', *(f'  {e}' for e in self.errors)])

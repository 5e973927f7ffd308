"""Domain services for the code index."""

from __future__ import annotations

from code_index.services.chunking import Chunker
from code_index.services.embedding import EmbeddingBatcher
from code_index.services.extraction import TreeSitterExtractor
from code_index.services.filtering import PathFilter
from code_index.services.indexing import IndexManager, create_index_manager
from code_index.services.scanning import Scanner
from code_index.services.watching import WatchCoordinator

__all__ = [
    'Chunker',
    'EmbeddingBatcher',
    'IndexManager',
    'PathFilter',
    'Scanner',
    'TreeSitterExtractor',
    'WatchCoordinator',
    'create_index_manager',
]

"""Pydantic schemas for code index operations."""

from __future__ import annotations

from code_index.schemas.base import StrictModel
from code_index.schemas.blocks import (
    EXTENSION_TO_LANGUAGE,
    AstSpan,
    BlockMetadata,
    BlockType,
    CodeBlock,
    ParsingMethod,
    Position,
    compute_block_id,
    get_language,
    is_markdown,
)
from code_index.schemas.config import (
    CodeIndexConfig,
    EmbedderConfig,
    GeminiEmbedderConfig,
    IndexingConfig,
    OpenAIEmbedderConfig,
    ParserConfig,
    QdrantConfig,
    SearchConfig,
    WatcherConfig,
    load_config,
    parse_config,
    save_config,
)
from code_index.schemas.embeddings import EmbeddedText, EmbedOutcome, SkippedText, TaskIntent
from code_index.schemas.indexing import (
    ChangeCallback,
    ChangeType,
    IndexingProgress,
    IndexingResult,
    IndexingStage,
    IndexingState,
    ProgressCallback,
)
from code_index.schemas.vectors import SearchOptions, SearchResult, VectorPoint, VectorSearchHit

__all__ = [
    'EXTENSION_TO_LANGUAGE',
    'AstSpan',
    'BlockMetadata',
    'BlockType',
    'ChangeCallback',
    'ChangeType',
    'CodeBlock',
    'CodeIndexConfig',
    'EmbedOutcome',
    'EmbeddedText',
    'EmbedderConfig',
    'GeminiEmbedderConfig',
    'IndexingConfig',
    'IndexingProgress',
    'IndexingResult',
    'IndexingStage',
    'IndexingState',
    'OpenAIEmbedderConfig',
    'ParserConfig',
    'ParsingMethod',
    'Position',
    'ProgressCallback',
    'QdrantConfig',
    'SearchConfig',
    'SearchOptions',
    'SearchResult',
    'SkippedText',
    'StrictModel',
    'TaskIntent',
    'VectorPoint',
    'VectorSearchHit',
    'WatcherConfig',
    'compute_block_id',
    'get_language',
    'is_markdown',
    'load_config',
    'parse_config',
    'save_config',
]

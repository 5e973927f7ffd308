"""Code index configuration schema.

One JSON document holds the embedder, vector store, and pipeline tunables.
Every section has defaults, so an empty object is a valid configuration.
Switching embedding model or dimensions requires re-indexing: the vector store
recreates a collection whose dimension no longer matches.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from collections.abc import Sequence
from pathlib import Path
from typing import Annotated, Literal

import pydantic
from pydantic import Field, TypeAdapter

from code_index.exceptions import ConfigurationError
from code_index.paths import CONFIG_PATH
from code_index.schemas.base import StrictModel

__all__ = [
    'DEFAULT_EXCLUDE_PATTERNS',
    'CodeIndexConfig',
    'EmbedderConfig',
    'EmbeddingProvider',
    'GeminiEmbedderConfig',
    'IndexingConfig',
    'OpenAIEmbedderConfig',
    'ParserConfig',
    'QdrantConfig',
    'SearchConfig',
    'VectorStoreConfig',
    'WatcherConfig',
    'load_config',
    'parse_config',
    'save_config',
]

logger = logging.getLogger(__name__)

type EmbeddingProvider = Literal['openai', 'gemini']

DEFAULT_EXCLUDE_PATTERNS: Sequence[str] = (
    'node_modules/**',
    '.git/**',
    'dist/**',
    'build/**',
    '*.min.js',
    '*.bundle.js',
    '*.map',
)


class OpenAIEmbedderConfig(StrictModel):
    """OpenAI-compatible /embeddings endpoint."""

    provider: Literal['openai'] = 'openai'
    model: str = 'text-embedding-3-small'
    dimensions: int = 1536
    base_url: str = 'https://api.openai.com/v1'
    api_key: str | None = None  # Falls back to OPENAI_API_KEY
    max_item_tokens: int = 8191
    max_batch_tokens: int = 100_000
    max_batch_items: int = 2048

    def resolve_api_key(self) -> str:
        """Return the configured key, else OPENAI_API_KEY."""
        return _resolve_api_key(self.api_key, 'OPENAI_API_KEY')


class GeminiEmbedderConfig(StrictModel):
    """Gemini embedding API via google-genai.

    Requires requests_per_minute for API quota enforcement.
    """

    provider: Literal['gemini'] = 'gemini'
    model: str = 'gemini-embedding-001'
    dimensions: int = 768
    api_key: str | None = None  # Falls back to GEMINI_API_KEY
    max_item_tokens: int = 2048
    max_batch_tokens: int = 100_000
    max_batch_items: int = 100  # Max per Gemini API call
    requests_per_minute: int = 3000

    def resolve_api_key(self) -> str:
        """Return the configured key, else GEMINI_API_KEY."""
        return _resolve_api_key(self.api_key, 'GEMINI_API_KEY')


# Discriminated union - type alias for annotations
type EmbedderConfig = OpenAIEmbedderConfig | GeminiEmbedderConfig


class QdrantConfig(StrictModel):
    """Qdrant vector store connection.

    `location=':memory:'` runs qdrant-client's embedded local mode instead of
    connecting to `url`.
    """

    provider: Literal['qdrant'] = 'qdrant'
    url: str = 'http://localhost:6333'
    location: str | None = None
    api_key: str | None = None
    collection_name: str | None = None  # Derived from workspace path when None
    timeout: int = 10

    def collection_for(self, workspace: Path) -> str:
        """Collection name for a workspace: configured name, else codebase-<hash>."""
        if self.collection_name:
            return self.collection_name
        digest = hashlib.sha256(str(workspace.resolve()).encode('utf-8')).hexdigest()
        return f'codebase-{digest[:16]}'


type VectorStoreConfig = QdrantConfig


class ParserConfig(StrictModel):
    """Chunker and file-size tunables."""

    max_block_chars: Annotated[int, Field(gt=0)] = 1000
    min_block_chars: Annotated[int, Field(ge=0)] = 50
    min_block_lines: Annotated[int, Field(ge=1)] = 4
    max_file_size: Annotated[int, Field(gt=0)] = 1024 * 1024


class IndexingConfig(StrictModel):
    """Pipeline tunables for scanning, batching, and retry."""

    batch_size: Annotated[int, Field(gt=0)] = 60  # Blocks per embed+upsert round
    parsing_concurrency: Annotated[int, Field(gt=0)] = 10
    max_batch_retries: Annotated[int, Field(gt=0)] = 3
    initial_retry_delay: Annotated[float, Field(ge=0)] = 0.5  # Seconds, doubled per attempt
    exclude_patterns: Sequence[str] = DEFAULT_EXCLUDE_PATTERNS


class SearchConfig(StrictModel):
    """Defaults for search requests that don't override them."""

    min_score: float = 0.7
    max_results: Annotated[int, Field(ge=1)] = 20
    include_snippet: bool = True


class WatcherConfig(StrictModel):
    """File watch debounce."""

    debounce_seconds: Annotated[float, Field(ge=0)] = 1.0


class CodeIndexConfig(StrictModel):
    """Complete configuration."""

    embedder: Annotated[
        OpenAIEmbedderConfig | GeminiEmbedderConfig,
        Field(discriminator='provider'),
    ] = OpenAIEmbedderConfig()
    vector_store: QdrantConfig = QdrantConfig()
    parser: ParserConfig = ParserConfig()
    indexing: IndexingConfig = IndexingConfig()
    search: SearchConfig = SearchConfig()
    watcher: WatcherConfig = WatcherConfig()


_config_adapter: TypeAdapter[CodeIndexConfig] = TypeAdapter(CodeIndexConfig)


def parse_config(raw: str) -> CodeIndexConfig:
    """Parse a JSON config document.

    Raises:
        ConfigurationError: If the document is not valid JSON or fails validation
            (including an unknown embedder provider).
    """
    try:
        return _config_adapter.validate_json(raw)
    except pydantic.ValidationError as e:
        raise ConfigurationError(f'Invalid configuration: {e}') from e


def load_config(path: Path = CONFIG_PATH) -> CodeIndexConfig:
    """Load config from file, or defaults if the file doesn't exist.

    Raises:
        ConfigurationError: If the file exists but is unreadable or invalid.
    """
    if not path.exists():
        logger.info(f'No config at {path}, using defaults')
        return CodeIndexConfig()

    try:
        raw = path.read_text()
    except OSError as e:
        raise ConfigurationError(f'Cannot read config file at {path}: {e}') from e

    try:
        return _config_adapter.validate_json(raw)
    except pydantic.ValidationError as e:
        raise ConfigurationError(f'Invalid config file at {path}: {e}') from e


def save_config(config: CodeIndexConfig, path: Path = CONFIG_PATH) -> None:
    """Save config to file, creating parent directories if needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(
            config.model_dump(mode='json'),
            indent=2,
        )
        + '\n'
    )
    logger.info(
        f'Saved config: provider={config.embedder.provider}, model={config.embedder.model}, '
        f'dimensions={config.embedder.dimensions}'
    )


def _resolve_api_key(configured: str | None, env_var: str) -> str:
    if configured:
        return configured
    key = os.environ.get(env_var)
    if not key:
        raise ConfigurationError(f'No API key configured. Set "api_key" in the embedder config or export {env_var}.')
    return key

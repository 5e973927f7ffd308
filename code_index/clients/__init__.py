"""API clients for external services.

Providers are resolved by their config tag through a registry. Adding a
provider means adding a config variant and one registry entry.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from code_index.clients.gemini import GeminiClient
from code_index.clients.openai import OpenAIClient
from code_index.clients.protocols import EmbeddingClient
from code_index.clients.qdrant import QdrantClient
from code_index.exceptions import ConfigurationError
from code_index.schemas.config import (
    EmbedderConfig,
    GeminiEmbedderConfig,
    OpenAIEmbedderConfig,
    QdrantConfig,
    VectorStoreConfig,
)

__all__ = [
    'EMBEDDING_CLIENT_FACTORIES',
    'VECTOR_STORE_CLIENT_FACTORIES',
    'EmbeddingClient',
    'GeminiClient',
    'OpenAIClient',
    'QdrantClient',
    'create_embedding_client',
    'create_vector_store_client',
]


def _create_openai_client(config: OpenAIEmbedderConfig) -> EmbeddingClient:
    return OpenAIClient(
        model=config.model,
        api_key=config.resolve_api_key(),
        dimensions=config.dimensions,
        base_url=config.base_url,
    )


def _create_gemini_client(config: GeminiEmbedderConfig) -> EmbeddingClient:
    return GeminiClient(
        model=config.model,
        output_dimensionality=config.dimensions,
        api_key=config.resolve_api_key(),
        requests_per_minute=config.requests_per_minute,
    )


def _create_qdrant_client(config: QdrantConfig) -> QdrantClient:
    return QdrantClient(
        url=config.url,
        location=config.location,
        api_key=config.api_key,
        timeout=config.timeout,
    )


EMBEDDING_CLIENT_FACTORIES: Mapping[str, Callable[[Any], EmbeddingClient]] = {
    'openai': _create_openai_client,
    'gemini': _create_gemini_client,
}

VECTOR_STORE_CLIENT_FACTORIES: Mapping[str, Callable[[Any], QdrantClient]] = {
    'qdrant': _create_qdrant_client,
}


def create_embedding_client(config: EmbedderConfig) -> EmbeddingClient:
    """Create embedding client based on configuration.

    Raises:
        ConfigurationError: If no factory is registered for the provider, or
            the provider's API key is missing.
    """
    factory = EMBEDDING_CLIENT_FACTORIES.get(config.provider)
    if factory is None:
        raise ConfigurationError(
            f'Unsupported embedder provider: {config.provider!r}. '
            f'Supported: {", ".join(sorted(EMBEDDING_CLIENT_FACTORIES))}'
        )
    return factory(config)


def create_vector_store_client(config: VectorStoreConfig) -> QdrantClient:
    """Create vector store client based on configuration.

    Raises:
        ConfigurationError: If no factory is registered for the provider.
    """
    factory = VECTOR_STORE_CLIENT_FACTORIES.get(config.provider)
    if factory is None:
        raise ConfigurationError(
            f'Unsupported vector store: {config.provider!r}. '
            f'Supported: {", ".join(sorted(VECTOR_STORE_CLIENT_FACTORIES))}'
        )
    return factory(config)

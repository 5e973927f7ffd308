"""Error taxonomy for the code index.

Per-file read/chunk failures are never raised: they are recorded as text in
IndexingProgress.errors. Everything here reaches the caller.
"""

from __future__ import annotations

__all__ = [
    'CodeIndexError',
    'ConfigurationError',
    'EmbeddingBatchError',
    'EmbeddingResponseError',
    'NotIndexedError',
    'ReentrancyError',
]


class CodeIndexError(Exception):
    """Base class for all code index errors."""


class ReentrancyError(CodeIndexError):
    """An indexing run is already in progress."""


class NotIndexedError(CodeIndexError):
    """Search requested but the backing collection does not exist."""


class ConfigurationError(CodeIndexError):
    """Unsupported provider, invalid config file, or missing credentials."""


class EmbeddingResponseError(CodeIndexError):
    """Provider returned a response that does not line up with the request."""


class EmbeddingBatchError(CodeIndexError):
    """Embedding a batch failed after all retry attempts.

    Aborts the whole indexing run. The last underlying failure is chained
    as __cause__.
    """

    def __init__(self, attempts: int, batch_size: int, last_error: BaseException | None) -> None:
        self.attempts = attempts
        self.batch_size = batch_size
        self.last_error = last_error
        cause = f'{type(last_error).__name__}: {last_error}' if last_error is not None else 'unknown error'
        super().__init__(f'Failed to embed batch of {batch_size} texts after {attempts} attempts. Last error: {cause}')

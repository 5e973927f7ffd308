"""EmbeddingBatcher - token-bounded batching with retry over an embedding client.

Texts are packed greedily, in order, into batches bounded by an estimated
token budget per batch and per item. Oversized items are never sent; they get
an explicit SkippedText outcome so the result stays aligned with the input.

Batches go out one at a time. Each is retried with exponential backoff; once
the attempts are exhausted the whole call fails with EmbeddingBatchError and
no partial result is returned.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import time
from collections.abc import Sequence

import tenacity

from code_index.clients.protocols import EmbeddingClient
from code_index.exceptions import EmbeddingBatchError, EmbeddingResponseError
from code_index.schemas.embeddings import EmbeddedText, EmbedOutcome, SkippedText, TaskIntent

__all__ = [
    'BatchPlan',
    'EmbeddingBatcher',
    'estimate_tokens',
    'plan_batches',
]

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITEM_TOKENS = 8191
DEFAULT_MAX_BATCH_TOKENS = 100_000
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_INITIAL_RETRY_DELAY = 0.5  # Seconds; 0.5, 1.0, 2.0, ...


def estimate_tokens(text: str) -> int:
    """Approximate token count: ~4 characters per token."""
    return math.ceil(len(text) / 4)


@dataclasses.dataclass(frozen=True)
class BatchPlan:
    """Input indices grouped into batches, plus the indices never sent."""

    batches: Sequence[Sequence[int]]
    skipped: Sequence[int]


def plan_batches(
    texts: Sequence[str],
    *,
    max_item_tokens: int = DEFAULT_MAX_ITEM_TOKENS,
    max_batch_tokens: int = DEFAULT_MAX_BATCH_TOKENS,
    max_batch_items: int | None = None,
) -> BatchPlan:
    """Greedily pack texts into batches, preserving input order.

    Every text within max_item_tokens lands in exactly one batch, and no
    batch's estimated total exceeds max_batch_tokens.
    """
    if max_item_tokens > max_batch_tokens:
        raise ValueError(f'max_item_tokens ({max_item_tokens}) exceeds max_batch_tokens ({max_batch_tokens})')

    batches: list[list[int]] = []
    skipped: list[int] = []
    current: list[int] = []
    current_tokens = 0

    for index, text in enumerate(texts):
        tokens = estimate_tokens(text)
        if tokens > max_item_tokens:
            skipped.append(index)
            continue
        batch_full = max_batch_items is not None and len(current) >= max_batch_items
        if current and (current_tokens + tokens > max_batch_tokens or batch_full):
            batches.append(current)
            current = []
            current_tokens = 0
        current.append(index)
        current_tokens += tokens

    if current:
        batches.append(current)
    return BatchPlan(batches=batches, skipped=skipped)


class EmbeddingBatcher:
    """Embeds arbitrary text lists through one provider client."""

    def __init__(
        self,
        client: EmbeddingClient,
        *,
        max_item_tokens: int = DEFAULT_MAX_ITEM_TOKENS,
        max_batch_tokens: int = DEFAULT_MAX_BATCH_TOKENS,
        max_batch_items: int | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        initial_retry_delay: float = DEFAULT_INITIAL_RETRY_DELAY,
    ) -> None:
        """Initialize batcher.

        Args:
            client: Embedding provider client.
            max_item_tokens: Texts estimated above this are skipped.
            max_batch_tokens: Estimated token budget per request.
            max_batch_items: Optional cap on texts per request (provider limit).
            max_attempts: Total attempts per batch before failing.
            initial_retry_delay: Backoff before the second attempt, doubled each retry.
        """
        if max_item_tokens > max_batch_tokens:
            raise ValueError(f'max_item_tokens ({max_item_tokens}) exceeds max_batch_tokens ({max_batch_tokens})')
        self._client = client
        self._max_item_tokens = max_item_tokens
        self._max_batch_tokens = max_batch_tokens
        self._max_batch_items = max_batch_items
        self._max_attempts = max_attempts
        self._initial_retry_delay = initial_retry_delay

    @property
    def client(self) -> EmbeddingClient:
        return self._client

    async def embed(self, texts: Sequence[str], *, intent: TaskIntent = 'document') -> Sequence[EmbedOutcome]:
        """Embed texts, returning one outcome per input in input order.

        Raises:
            EmbeddingBatchError: A batch failed on every attempt.
        """
        plan = plan_batches(
            texts,
            max_item_tokens=self._max_item_tokens,
            max_batch_tokens=self._max_batch_tokens,
            max_batch_items=self._max_batch_items,
        )

        outcomes: list[EmbedOutcome | None] = [None] * len(texts)
        for index in plan.skipped:
            tokens = estimate_tokens(texts[index])
            logger.warning(
                f'[EMBED] Skipping text {index}: ~{tokens:,} tokens exceeds per-item limit {self._max_item_tokens:,}'
            )
            outcomes[index] = SkippedText(reason='too_large', estimated_tokens=tokens)

        for batch_number, batch in enumerate(plan.batches, start=1):
            batch_texts = [texts[i] for i in batch]
            t0 = time.perf_counter()
            vectors = await self._embed_batch(batch_texts, intent=intent)
            logger.debug(
                f'[EMBED] Batch {batch_number}/{len(plan.batches)}: {len(batch_texts)} texts '
                f'(~{sum(estimate_tokens(t) for t in batch_texts):,} tokens) in {time.perf_counter() - t0:.3f}s'
            )
            for i, vector in zip(batch, vectors, strict=True):
                outcomes[i] = EmbeddedText(vector=list(vector))

        return [outcome for outcome in outcomes if outcome is not None]

    async def embed_query(self, text: str) -> Sequence[float] | None:
        """Embed a search query. None if the query exceeds the per-item limit."""
        [outcome] = await self.embed([text], intent='query')
        if isinstance(outcome, SkippedText):
            return None
        return outcome.vector

    async def _embed_batch(self, texts: Sequence[str], *, intent: TaskIntent) -> Sequence[Sequence[float]]:
        retrying = tenacity.AsyncRetrying(
            retry=tenacity.retry_if_exception_type(Exception),
            stop=tenacity.stop_after_attempt(self._max_attempts),
            wait=tenacity.wait_exponential(multiplier=self._initial_retry_delay),
            before_sleep=_log_embed_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    vectors = await self._client.embed(texts, intent=intent)
                    if len(vectors) != len(texts):
                        raise EmbeddingResponseError(f'Expected {len(texts)} vectors, got {len(vectors)}')
        except Exception as e:
            raise EmbeddingBatchError(self._max_attempts, len(texts), e) from e
        return vectors


def _log_embed_retry(retry_state: tenacity.RetryCallState) -> None:
    """Log embedding retry attempt with exception details."""
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    if exc is None:
        return

    wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.warning(
        f'[RETRY] Embed attempt {retry_state.attempt_number} failed: {type(exc).__name__}: {exc}. '
        f'Retrying in {wait:.2f}s'
    )

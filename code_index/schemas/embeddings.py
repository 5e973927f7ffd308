"""Embedding schemas.

The batcher reports one outcome per input text, in input order. Oversized texts
get an explicit SkippedText instead of disappearing from the output, so callers
pair outcomes with their blocks by position without length mismatches.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Literal

from code_index.schemas.base import StrictModel

__all__ = [
    'EmbedOutcome',
    'EmbeddedText',
    'SkipReason',
    'SkippedText',
    'TaskIntent',
]

# Generic intent, translated by each provider (e.g. Gemini task types)
type TaskIntent = Literal['document', 'query']

type SkipReason = Literal['too_large']


class EmbeddedText(StrictModel):
    """Text embedded successfully."""

    status: Literal['embedded'] = 'embedded'
    vector: Sequence[float]


class SkippedText(StrictModel):
    """Text that was not sent to the provider."""

    status: Literal['skipped'] = 'skipped'
    reason: SkipReason
    estimated_tokens: int


type EmbedOutcome = EmbeddedText | SkippedText

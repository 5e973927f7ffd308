"""Shared pydantic base for code index schemas."""

from __future__ import annotations

import pydantic

__all__ = [
    'StrictModel',
]


class StrictModel(pydantic.BaseModel):
    """Immutable, strictly validated model.

    Config:
    - extra='forbid': Unknown fields are a bug, not data
    - strict=True: No implicit type coercion
    - frozen=True: Code blocks and config never change after construction
    """

    model_config = pydantic.ConfigDict(
        extra='forbid',
        strict=True,
        frozen=True,
    )

"""Repositories for data persistence."""

from __future__ import annotations

from code_index.repositories.code_vector import CodeVectorRepository

__all__ = ['CodeVectorRepository']

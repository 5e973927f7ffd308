"""Code block schemas.

A code block is the unit of embedding and retrieval: a contiguous, semantically
bounded excerpt of one source file. Blocks are immutable; re-chunking a changed
file produces a fresh set that supersedes the old one for that path.
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from pathlib import Path
from typing import Literal
from uuid import UUID

from code_index.schemas.base import StrictModel

__all__ = [
    'EXTENSION_TO_LANGUAGE',
    'FILENAME_TO_LANGUAGE',
    'AstSpan',
    'BlockMetadata',
    'BlockType',
    'CodeBlock',
    'ParsingMethod',
    'Position',
    'compute_block_id',
    'get_language',
    'is_markdown',
    'sha256_hex',
]

type BlockType = Literal['function', 'class', 'interface', 'variable', 'comment', 'other']

type ParsingMethod = Literal['tree-sitter', 'line-based', 'markdown']

# Extension to language mapping. Languages without a structural extractor are
# still indexed, via line-based chunking.
EXTENSION_TO_LANGUAGE: Mapping[str, str] = {
    # JavaScript / TypeScript
    '.js': 'javascript',
    '.jsx': 'javascript',
    '.mjs': 'javascript',
    '.cjs': 'javascript',
    '.ts': 'typescript',
    '.mts': 'typescript',
    '.cts': 'typescript',
    '.tsx': 'tsx',
    # Python
    '.py': 'python',
    '.pyi': 'python',
    # JVM
    '.java': 'java',
    '.kt': 'kotlin',
    '.kts': 'kotlin',
    '.scala': 'scala',
    # C family
    '.c': 'c',
    '.h': 'c',
    '.cpp': 'cpp',
    '.cc': 'cpp',
    '.cxx': 'cpp',
    '.hpp': 'cpp',
    '.hh': 'cpp',
    '.cs': 'csharp',
    # Systems
    '.go': 'go',
    '.rs': 'rust',
    '.swift': 'swift',
    # Scripting
    '.php': 'php',
    '.rb': 'ruby',
    '.sh': 'shell',
    '.bash': 'shell',
    '.zsh': 'shell',
    # Web
    '.vue': 'vue',
    '.svelte': 'svelte',
    '.html': 'html',
    '.htm': 'html',
    '.css': 'css',
    '.scss': 'scss',
    '.sass': 'sass',
    '.less': 'less',
    # Data / config
    '.json': 'json',
    '.yaml': 'yaml',
    '.yml': 'yaml',
    '.toml': 'toml',
    '.xml': 'xml',
    '.sql': 'sql',
    # Docs
    '.md': 'markdown',
    '.markdown': 'markdown',
}

# Extensionless files recognized by exact name
FILENAME_TO_LANGUAGE: Mapping[str, str] = {
    'Dockerfile': 'dockerfile',
}


def get_language(path: str | Path) -> str | None:
    """Get language for a path, or None if unsupported."""
    path = Path(path)
    if path.name in FILENAME_TO_LANGUAGE:
        return FILENAME_TO_LANGUAGE[path.name]
    return EXTENSION_TO_LANGUAGE.get(path.suffix.lower())


def is_markdown(path: str | Path) -> bool:
    """Check whether a path is chunked by heading boundaries."""
    return get_language(path) == 'markdown'


def sha256_hex(text: str) -> str:
    """SHA-256 hex digest of UTF-8 text."""
    return hashlib.sha256(text.encode('utf-8')).hexdigest()


def compute_block_id(file_path: str, start_line: int, end_line: int, content: str) -> UUID:
    """Derive a block id from its identifying fields.

    Same inputs always produce the same UUID, so re-indexing unchanged code
    overwrites points in place instead of duplicating them.
    """
    key = f'{file_path}:{start_line}:{end_line}:{content}'
    digest = hashlib.sha256(key.encode('utf-8')).digest()
    return UUID(bytes=digest[:16])


class Position(StrictModel):
    """Zero-based (row, column) point in source text."""

    row: int
    column: int


class AstSpan(StrictModel):
    """Source range reported by the structural extractor."""

    node_type: str
    start: Position
    end: Position


class BlockMetadata(StrictModel):
    """Provenance for how a block was produced."""

    parsing_method: ParsingMethod
    file_extension: str
    line_count: int
    char_count: int
    file_hash: str  # SHA-256 of the whole file
    segment_hash: str  # SHA-256 of this block's content
    capture_name: str | None = None  # e.g. 'definition.function'
    ast_span: AstSpan | None = None


class CodeBlock(StrictModel):
    """Code excerpt ready for embedding.

    Line numbers are 1-based and inclusive. `id` is derived from
    (file_path, start_line, end_line, content) via compute_block_id.
    """

    id: UUID
    file_path: str
    content: str
    language: str
    start_line: int
    end_line: int
    type: BlockType
    name: str | None = None
    metadata: BlockMetadata | None = None

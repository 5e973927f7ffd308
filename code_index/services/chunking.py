"""Chunker - splits one source file into embeddable code blocks.

Strategy per file:
- Markdown: one block per heading section
- Languages with a structural extractor: one block per definition span
- Everything else, or when extraction fails or finds nothing: greedy
  line-based packing under a character ceiling

Pure transformation of (path, content). No I/O.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from collections.abc import Mapping, Sequence
from pathlib import Path

from code_index.schemas.blocks import (
    AstSpan,
    BlockMetadata,
    BlockType,
    CodeBlock,
    ParsingMethod,
    compute_block_id,
    get_language,
    sha256_hex,
)
from code_index.schemas.config import ParserConfig
from code_index.services.extraction import CaptureSpan, StructuralExtractor, TreeSitterExtractor

__all__ = [
    'Chunker',
    'infer_block_type',
]

logger = logging.getLogger(__name__)

MARKDOWN_HEADING = re.compile(r'^(#{1,6})\s+(.+)$')
MARKDOWN_FENCE = re.compile(r'^\s*(```|~~~)')

# Fallback name: first declaration keyword on the block's first line
FIRST_LINE_NAME = re.compile(
    r'(?:function|class|interface|const|let|var|def|fn|func|struct|type)\s+([A-Za-z_$][A-Za-z0-9_$]*)'
)

# Capture kind (suffix after 'definition.') to block type
CAPTURE_KIND_TO_TYPE: Mapping[str, BlockType] = {
    'function': 'function',
    'method': 'function',
    'class': 'class',
    'struct': 'class',
    'module': 'class',
    'impl': 'class',
    'enum': 'class',
    'interface': 'interface',
    'trait': 'interface',
    'type': 'interface',
    'variable': 'variable',
    'constant': 'variable',
}

COMMENT_PREFIXES = ('//', '/*', '*', '#', '--', '"""', "'''")

# Checked in order; first match wins
TYPE_HEURISTICS: Sequence[tuple[BlockType, re.Pattern[str]]] = (
    ('class', re.compile(r'^\s*(?:export\s+)?(?:default\s+)?(?:abstract\s+)?(?:public\s+)?class\s+\w', re.MULTILINE)),
    ('interface', re.compile(r'^\s*(?:export\s+)?(?:interface|trait|protocol)\s+\w', re.MULTILINE)),
    (
        'function',
        re.compile(r'^\s*(?:export\s+)?(?:async\s+)?(?:function\b|def\s+\w|fn\s+\w|func\s+\w)|=>', re.MULTILINE),
    ),
    ('variable', re.compile(r'^\s*(?:export\s+)?(?:const|let|var)\s+\w', re.MULTILINE)),
)


def infer_block_type(content: str) -> BlockType:
    """Guess a block's type from keywords. Lowest priority is 'other'."""
    code_lines = [line.strip() for line in content.splitlines() if line.strip()]
    if code_lines and all(line.startswith(COMMENT_PREFIXES) for line in code_lines):
        return 'comment'
    for block_type, pattern in TYPE_HEURISTICS:
        if pattern.search(content):
            return block_type
    return 'other'


class Chunker:
    """Splits files into code blocks.

    Thresholds come from ParserConfig at construction, so concurrent chunkers
    with different settings don't interfere.
    """

    def __init__(self, config: ParserConfig, extractor: StructuralExtractor | None = None) -> None:
        """Initialize chunker.

        Args:
            config: Block size thresholds.
            extractor: Definition extractor. Defaults to tree-sitter.
        """
        self._max_chars = config.max_block_chars
        self._min_chars = config.min_block_chars
        self._min_lines = config.min_block_lines
        self._extractor = extractor if extractor is not None else TreeSitterExtractor()

    def chunk(self, file_path: str, content: str) -> Sequence[CodeBlock]:
        """Split one file into blocks, ordered by position.

        Args:
            file_path: Path recorded on every block (and hashed into its id).
            content: Full file text.

        Returns:
            Blocks for the file; empty for unsupported files or files with
            nothing above the minimum size.
        """
        language = get_language(file_path)
        if language is None:
            return []

        file = _FileContext(
            path=file_path,
            language=language,
            extension=Path(file_path).suffix.lower() or Path(file_path).name,
            file_hash=sha256_hex(content),
            lines=_split_lines(content),
        )

        if language == 'markdown':
            return self._chunk_markdown(file)

        if self._extractor.supports(language):
            try:
                blocks = self._chunk_structural(file, self._extractor.extract(language, content))
            except Exception:
                logger.warning(f'[CHUNK] Structural extraction failed for {file_path}, using lines', exc_info=True)
                blocks = []
            if blocks:
                return blocks
            logger.debug(f'[CHUNK] No definitions kept for {file_path}, using lines')

        return self._chunk_lines(file)

    def _chunk_structural(self, file: _FileContext, spans: Sequence[CaptureSpan]) -> Sequence[CodeBlock]:
        ordered = sorted(spans, key=lambda s: (s.span.start.row, s.span.start.column))

        blocks: list[CodeBlock] = []
        seen: set[tuple[int, int]] = set()
        for capture in ordered:
            line_range = (capture.span.start.row, capture.span.end.row)
            if line_range in seen:
                continue
            seen.add(line_range)

            start_row, end_row = line_range
            if end_row - start_row + 1 < self._min_lines:
                continue

            content = '\n'.join(file.lines[start_row : end_row + 1])
            if len(content.strip()) < self._min_chars:
                continue

            kind = capture.capture_name.removeprefix('definition.')
            blocks.append(
                self._make_block(
                    file,
                    content,
                    start_line=start_row + 1,
                    end_line=end_row + 1,
                    block_type=CAPTURE_KIND_TO_TYPE.get(kind) or infer_block_type(content),
                    name=capture.name or _name_from_first_line(content),
                    parsing_method='tree-sitter',
                    capture_name=capture.capture_name,
                    ast_span=capture.span,
                )
            )
        return blocks

    def _chunk_lines(self, file: _FileContext) -> Sequence[CodeBlock]:
        """Greedy line packing: never split a line, seal before exceeding max chars."""
        blocks: list[CodeBlock] = []
        chunk: list[str] = []
        chunk_chars = 0
        chunk_start = 0

        for index, line in enumerate(file.lines):
            line_chars = len(line) + 1  # Newline counts toward the ceiling
            if chunk and chunk_chars + line_chars > self._max_chars:
                self._seal_lines(file, chunk, chunk_start, blocks)
                chunk = []
                chunk_chars = 0
                chunk_start = index
            chunk.append(line)
            chunk_chars += line_chars

        if chunk:
            self._seal_lines(file, chunk, chunk_start, blocks)
        return blocks

    def _seal_lines(self, file: _FileContext, chunk: Sequence[str], start: int, blocks: list[CodeBlock]) -> None:
        content = '\n'.join(chunk)
        if len(content.strip()) < self._min_chars:
            return
        blocks.append(
            self._make_block(
                file,
                content,
                start_line=start + 1,
                end_line=start + len(chunk),
                block_type=infer_block_type(content),
                name=_name_from_first_line(content),
                parsing_method='line-based',
            )
        )

    def _chunk_markdown(self, file: _FileContext) -> Sequence[CodeBlock]:
        """One block per heading, running to the next heading of any level."""
        blocks: list[CodeBlock] = []
        section: list[str] = []
        section_start = 0
        section_name: str | None = None
        in_fence = False

        for index, line in enumerate(file.lines):
            if MARKDOWN_FENCE.match(line):
                in_fence = not in_fence
            heading = None if in_fence else MARKDOWN_HEADING.match(line)
            if heading and section:
                self._seal_section(file, section, section_start, section_name, blocks)
                section = []
            if heading:
                section_start = index
                section_name = heading.group(2).strip()
            section.append(line)

        if section:
            self._seal_section(file, section, section_start, section_name, blocks)
        return blocks

    def _seal_section(
        self,
        file: _FileContext,
        section: Sequence[str],
        start: int,
        name: str | None,
        blocks: list[CodeBlock],
    ) -> None:
        content = '\n'.join(section)
        if len(content.strip()) < self._min_chars:
            return
        blocks.append(
            self._make_block(
                file,
                content,
                start_line=start + 1,
                end_line=start + len(section),
                block_type='other',
                name=name,
                parsing_method='markdown',
            )
        )

    def _make_block(
        self,
        file: _FileContext,
        content: str,
        *,
        start_line: int,
        end_line: int,
        block_type: BlockType,
        name: str | None,
        parsing_method: ParsingMethod,
        capture_name: str | None = None,
        ast_span: AstSpan | None = None,
    ) -> CodeBlock:
        return CodeBlock(
            id=compute_block_id(file.path, start_line, end_line, content),
            file_path=file.path,
            content=content,
            language=file.language,
            start_line=start_line,
            end_line=end_line,
            type=block_type,
            name=name,
            metadata=BlockMetadata(
                parsing_method=parsing_method,
                file_extension=file.extension,
                line_count=end_line - start_line + 1,
                char_count=len(content),
                file_hash=file.file_hash,
                segment_hash=sha256_hex(content),
                capture_name=capture_name,
                ast_span=ast_span,
            ),
        )


@dataclasses.dataclass(frozen=True)
class _FileContext:
    """Per-call file facts shared by every block of one file."""

    path: str
    language: str
    extension: str
    file_hash: str
    lines: Sequence[str]


def _split_lines(content: str) -> Sequence[str]:
    # Split on '\n' only so line numbers agree with tree-sitter rows
    lines = content.split('\n')
    if lines and lines[-1] == '':
        lines.pop()
    return lines


def _name_from_first_line(content: str) -> str | None:
    first_line = next((line for line in content.split('\n') if line.strip()), '')
    match = FIRST_LINE_NAME.search(first_line)
    return match.group(1) if match else None

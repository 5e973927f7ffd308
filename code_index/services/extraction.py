"""Structural extraction of definition spans via tree-sitter.

Each language is described by an explicit capability: the grammar package that
provides it and a query that tags definitions. Languages with no capability
entry have no structural extractor and are chunked line by line.

Queries tag each definition node as `@definition.<kind>` and its name token as
`@name`. Both captures come from the same query match, so a definition is
paired with its own name.
"""

from __future__ import annotations

import dataclasses
import importlib
import logging
from collections.abc import Mapping, Sequence
from typing import Protocol

from tree_sitter import Language, Node, Parser, Query, QueryCursor

from code_index.schemas.base import StrictModel
from code_index.schemas.blocks import AstSpan, Position

__all__ = [
    'LANGUAGE_CAPABILITIES',
    'CaptureSpan',
    'LanguageCapability',
    'StructuralExtractor',
    'TreeSitterExtractor',
]

logger = logging.getLogger(__name__)

DEFINITION_PREFIX = 'definition.'
NAME_CAPTURE = 'name'

# Node types that hold a symbol name, searched depth-first when a match has no @name
IDENTIFIER_NODE_TYPES = frozenset(
    {'identifier', 'type_identifier', 'property_identifier', 'field_identifier', 'constant'}
)


class CaptureSpan(StrictModel):
    """A definition reported by the extractor."""

    capture_name: str  # e.g. 'definition.function'
    span: AstSpan
    name: str | None = None


@dataclasses.dataclass(frozen=True)
class LanguageCapability:
    """How to extract definitions for one language."""

    module: str  # Grammar package import name
    function: str  # Function in the module returning the language pointer
    query: str


class StructuralExtractor(Protocol):
    """Anything that can report definition spans for source text."""

    def supports(self, language: str) -> bool: ...

    def extract(self, language: str, source: str) -> Sequence[CaptureSpan]: ...


_JAVASCRIPT_QUERY = """
(function_declaration name: (identifier) @name) @definition.function
(generator_function_declaration name: (identifier) @name) @definition.function
(class_declaration name: (identifier) @name) @definition.class
(method_definition name: (property_identifier) @name) @definition.method
(variable_declarator
  name: (identifier) @name
  value: [(arrow_function) (function_expression)]) @definition.function
"""

_TYPESCRIPT_QUERY = """
(function_declaration name: (identifier) @name) @definition.function
(class_declaration name: (type_identifier) @name) @definition.class
(abstract_class_declaration name: (type_identifier) @name) @definition.class
(interface_declaration name: (type_identifier) @name) @definition.interface
(type_alias_declaration name: (type_identifier) @name) @definition.type
(enum_declaration name: (identifier) @name) @definition.enum
(method_definition name: (property_identifier) @name) @definition.method
(variable_declarator
  name: (identifier) @name
  value: [(arrow_function) (function_expression)]) @definition.function
"""

LANGUAGE_CAPABILITIES: Mapping[str, LanguageCapability] = {
    'python': LanguageCapability(
        'tree_sitter_python',
        'language',
        """
        (function_definition name: (identifier) @name) @definition.function
        (class_definition name: (identifier) @name) @definition.class
        """,
    ),
    'javascript': LanguageCapability('tree_sitter_javascript', 'language', _JAVASCRIPT_QUERY),
    'typescript': LanguageCapability('tree_sitter_typescript', 'language_typescript', _TYPESCRIPT_QUERY),
    'tsx': LanguageCapability('tree_sitter_typescript', 'language_tsx', _TYPESCRIPT_QUERY),
    'go': LanguageCapability(
        'tree_sitter_go',
        'language',
        """
        (function_declaration name: (identifier) @name) @definition.function
        (method_declaration name: (field_identifier) @name) @definition.method
        (type_declaration (type_spec name: (type_identifier) @name)) @definition.type
        """,
    ),
    'rust': LanguageCapability(
        'tree_sitter_rust',
        'language',
        """
        (function_item name: (identifier) @name) @definition.function
        (struct_item name: (type_identifier) @name) @definition.struct
        (enum_item name: (type_identifier) @name) @definition.enum
        (trait_item name: (type_identifier) @name) @definition.trait
        (impl_item type: (type_identifier) @name) @definition.impl
        """,
    ),
    'java': LanguageCapability(
        'tree_sitter_java',
        'language',
        """
        (class_declaration name: (identifier) @name) @definition.class
        (interface_declaration name: (identifier) @name) @definition.interface
        (enum_declaration name: (identifier) @name) @definition.enum
        (method_declaration name: (identifier) @name) @definition.method
        """,
    ),
    'c': LanguageCapability(
        'tree_sitter_c',
        'language',
        """
        (function_definition
          declarator: (function_declarator declarator: (identifier) @name)) @definition.function
        (struct_specifier name: (type_identifier) @name body: (_)) @definition.struct
        """,
    ),
    'cpp': LanguageCapability(
        'tree_sitter_cpp',
        'language',
        """
        (function_definition
          declarator: (function_declarator declarator: (identifier) @name)) @definition.function
        (class_specifier name: (type_identifier) @name body: (_)) @definition.class
        (struct_specifier name: (type_identifier) @name body: (_)) @definition.struct
        """,
    ),
    'ruby': LanguageCapability(
        'tree_sitter_ruby',
        'language',
        """
        (method name: (identifier) @name) @definition.method
        (class name: (constant) @name) @definition.class
        (module name: (constant) @name) @definition.module
        """,
    ),
}


class TreeSitterExtractor:
    """Definition extractor backed by pre-compiled tree-sitter grammar packages.

    Grammars and compiled queries are loaded lazily and cached per language.
    Not thread-safe: call from one thread (the event loop).
    """

    def __init__(self, capabilities: Mapping[str, LanguageCapability] = LANGUAGE_CAPABILITIES) -> None:
        self._capabilities = capabilities
        self._parsers: dict[str, Parser] = {}
        self._queries: dict[str, Query] = {}

    def supports(self, language: str) -> bool:
        return language in self._capabilities

    def extract(self, language: str, source: str) -> Sequence[CaptureSpan]:
        """Report every definition match in `source`.

        Raises:
            ValueError: If the language has no capability entry.
            ImportError: If the grammar package is missing.
        """
        parser, query = self._load(language)
        tree = parser.parse(source.encode('utf-8'))

        spans: list[CaptureSpan] = []
        for _pattern_index, captures in QueryCursor(query).matches(tree.root_node):
            name_nodes = captures.get(NAME_CAPTURE, [])
            for capture_name, nodes in captures.items():
                if not capture_name.startswith(DEFINITION_PREFIX):
                    continue
                for node in nodes:
                    name = _node_text(name_nodes[0]) if name_nodes else _first_identifier(node)
                    spans.append(
                        CaptureSpan(
                            capture_name=capture_name,
                            span=AstSpan(
                                node_type=node.type,
                                start=Position(row=node.start_point.row, column=node.start_point.column),
                                end=Position(row=node.end_point.row, column=node.end_point.column),
                            ),
                            name=name,
                        )
                    )
        return spans

    def _load(self, language: str) -> tuple[Parser, Query]:
        if language in self._parsers:
            return self._parsers[language], self._queries[language]

        capability = self._capabilities.get(language)
        if capability is None:
            raise ValueError(f'No structural extractor for language: {language}')

        module = importlib.import_module(capability.module)
        ts_language = Language(getattr(module, capability.function)())

        self._parsers[language] = Parser(ts_language)
        self._queries[language] = Query(ts_language, capability.query)
        logger.debug(f'[CHUNK] Loaded tree-sitter grammar for {language}')
        return self._parsers[language], self._queries[language]


def _node_text(node: Node) -> str | None:
    if node.text is None:
        return None
    return node.text.decode('utf-8', errors='replace')


def _first_identifier(node: Node) -> str | None:
    """Depth-first search for the first identifier-like descendant."""
    stack = [node]
    while stack:
        current = stack.pop()
        if current.type in IDENTIFIER_NODE_TYPES:
            return _node_text(current)
        stack.extend(reversed(current.children))
    return None

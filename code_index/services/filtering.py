"""Path filtering shared by the scanner and the file watcher.

Exclude patterns are gitignore lines, matched by pathspec against the path
relative to the indexed root with '/' separators. Directories are matched with
a trailing '/', so 'build/' excludes the directory and everything below it,
and '*.min.js' matches at any depth.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import pathspec

from code_index.schemas.blocks import get_language

__all__ = [
    'PathFilter',
]


class PathFilter:
    """Decides which paths under a root are indexable."""

    def __init__(self, root: Path, exclude_patterns: Sequence[str]) -> None:
        self._root = root
        self._spec = pathspec.GitIgnoreSpec.from_lines(exclude_patterns)

    @property
    def root(self) -> Path:
        return self._root

    def relative(self, path: Path) -> str | None:
        """Path relative to root in posix form, or None if outside the root."""
        if not path.is_relative_to(self._root):
            return None
        return path.relative_to(self._root).as_posix()

    def is_excluded(self, relative_path: str, *, is_dir: bool = False) -> bool:
        """Check a root-relative posix path against the exclude patterns."""
        if is_dir and not relative_path.endswith('/'):
            relative_path += '/'
        return self._spec.match_file(relative_path)

    def is_indexable(self, path: Path) -> bool:
        """Supported language, inside the root, and not excluded."""
        if get_language(path) is None:
            return False
        relative_path = self.relative(path)
        return relative_path is not None and not self.is_excluded(relative_path)

    def is_watched_dir(self, path: Path) -> bool:
        """Directory strictly inside the root and not excluded."""
        relative_path = self.relative(path)
        if not relative_path or relative_path == '.':
            return False
        return not self.is_excluded(relative_path, is_dir=True)

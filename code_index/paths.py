"""Centralized file paths for code index.

All persistent file locations in one place for consistency.
"""

from __future__ import annotations

from pathlib import Path

__all__ = [
    'CODE_INDEX_DIR',
    'CONFIG_PATH',
    'DEBUG_LOG_PATH',
]

# Base directory
CODE_INDEX_DIR = Path.home() / '.code-index'

# Persistent configuration (embedder, vector store, tunables)
CONFIG_PATH = CODE_INDEX_DIR / 'config.json'

# Debug logging (enable detailed logs for troubleshooting)
DEBUG_LOG_PATH = CODE_INDEX_DIR / 'code_index.log'

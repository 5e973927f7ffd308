"""Logging setup for processes embedding the code index."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

__all__ = [
    'configure_logging',
]

LOG_FORMAT = '%(asctime)s.%(msecs)03d [%(levelname)s] %(name)s: %(message)s'
LOG_DATE_FORMAT = '%H:%M:%S'

# Third-party loggers that drown out pipeline logs at DEBUG
NOISY_LOGGERS = ('httpx', 'httpcore', 'google', 'watchdog', 'qdrant_client')


def configure_logging(level: int = logging.INFO, log_file: Path | None = None) -> None:
    """Configure root logging with timestamps to stderr (and optionally a file).

    Replaces any handlers already installed on the root logger.

    Args:
        level: Root log level.
        log_file: Optional path for a debug log. Parent directories are created.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,
    )
    # Silence noisy third-party loggers
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

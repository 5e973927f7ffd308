"""WatchCoordinator - debounced file change notifications.

watchdog delivers raw events on its observer thread. They are marshalled onto
the asyncio loop, where each path owns at most one pending loop timer. Every
event for a path cancels that path's timer and starts a new one; the callback
fires once the path has been quiet for the debounce window, carrying the last
change type seen.

A directory that is deleted, or moved out of the root, produces no per-file
events. It is reported as one `unlink` for the directory path, and the
consumer removes everything indexed beneath it.

All timer bookkeeping happens on the loop thread, so no lock is needed.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import os
from collections.abc import Callable, Sequence
from pathlib import Path

from watchdog.events import (
    FileSystemEvent,
    FileSystemEventHandler,
    FileSystemMovedEvent,
)
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from code_index.schemas.indexing import ChangeCallback, ChangeType
from code_index.services.filtering import PathFilter

__all__ = [
    'DEFAULT_DEBOUNCE_SECONDS',
    'WatchCoordinator',
]

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 1.0
OBSERVER_JOIN_TIMEOUT = 5.0

type EventSink = Callable[[str, ChangeType, bool], None]


@dataclasses.dataclass
class _PendingChange:
    handle: asyncio.TimerHandle
    change_type: ChangeType


class _LoopForwardingHandler(FileSystemEventHandler):
    """Forwards file events from the observer thread to the event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop, sink: EventSink) -> None:
        super().__init__()
        self._loop = loop
        self._sink = sink

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.src_path, 'add')

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.src_path, 'change')

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._forward(event.src_path, 'unlink', is_dir=event.is_directory)

    def on_moved(self, event: FileSystemEvent) -> None:
        # Children of a moved directory arrive as their own moved events
        self._forward(event.src_path, 'unlink', is_dir=event.is_directory)
        if event.is_directory:
            return
        if isinstance(event, FileSystemMovedEvent):
            self._forward(event.dest_path, 'add')

    def _forward(self, path: str | bytes, change_type: ChangeType, *, is_dir: bool = False) -> None:
        try:
            self._loop.call_soon_threadsafe(self._sink, os.fsdecode(path), change_type, is_dir)
        except RuntimeError:
            # Loop already closed during shutdown
            logger.debug(f'[WATCH] Dropped {change_type} for {os.fsdecode(path)}: event loop closed')


class WatchCoordinator:
    """Per-path debounce over a recursive watchdog observer."""

    def __init__(
        self,
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        exclude_patterns: Sequence[str] = (),
        observer_factory: Callable[[], BaseObserver] = Observer,
    ) -> None:
        """Initialize coordinator.

        Args:
            debounce_seconds: Quiet period before a path's callback fires.
            exclude_patterns: Globs relative to the watched root (see PathFilter).
            observer_factory: Creates the watchdog observer.
        """
        self._debounce_seconds = debounce_seconds
        self._exclude_patterns = tuple(exclude_patterns)
        self._observer_factory = observer_factory

        self._loop: asyncio.AbstractEventLoop | None = None
        self._observer: BaseObserver | None = None
        self._filter: PathFilter | None = None
        self._on_change: ChangeCallback | None = None
        self._pending: dict[str, _PendingChange] = {}

    @property
    def is_running(self) -> bool:
        return self._on_change is not None

    @property
    def pending_count(self) -> int:
        """Paths with a debounce timer still armed."""
        return len(self._pending)

    def start(self, root: Path, on_change: ChangeCallback) -> None:
        """Watch `root` recursively. Must be called from the event loop thread.

        A running watch is stopped first.
        """
        if self.is_running:
            self.stop()

        root = root.resolve()
        self._loop = asyncio.get_running_loop()
        self._filter = PathFilter(root, self._exclude_patterns)
        self._on_change = on_change

        observer = self._observer_factory()
        observer.schedule(_LoopForwardingHandler(self._loop, self.record_event), str(root), recursive=True)
        observer.start()
        self._observer = observer
        logger.info(f'[WATCH] Watching {root} (debounce={self._debounce_seconds}s)')

    def record_event(self, path: str, change_type: ChangeType, is_dir: bool = False) -> None:
        """Register one raw event. Runs on the loop thread.

        Restarts the path's debounce timer and remembers the latest change type.
        Directory events only matter as removals.
        """
        if self._on_change is None or self._loop is None or self._filter is None:
            return
        if is_dir:
            if change_type != 'unlink' or not self._filter.is_watched_dir(Path(path)):
                return
        elif not self._filter.is_indexable(Path(path)):
            return

        previous = self._pending.pop(path, None)
        if previous is not None:
            previous.handle.cancel()

        handle = self._loop.call_later(self._debounce_seconds, self._fire, path)
        self._pending[path] = _PendingChange(handle=handle, change_type=change_type)

    def stop(self) -> None:
        """Stop watching. No callback fires after this returns.

        Pending timers are cancelled before the observer is torn down.
        """
        for pending in self._pending.values():
            pending.handle.cancel()
        cancelled = len(self._pending)
        self._pending.clear()
        self._on_change = None

        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=OBSERVER_JOIN_TIMEOUT)
            self._observer = None
            logger.info(f'[WATCH] Stopped ({cancelled} pending changes cancelled)')

    def _fire(self, path: str) -> None:
        pending = self._pending.pop(path, None)
        on_change = self._on_change
        if pending is None or on_change is None:
            return

        logger.debug(f'[WATCH] {pending.change_type}: {path}')
        try:
            on_change(path, pending.change_type)
        except Exception:
            logger.warning(f'[WATCH] Change callback failed for {path}', exc_info=True)

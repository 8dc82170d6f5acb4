"""
Watcher - File change notifications for watch mode.

Uses watchdog for cross-platform monitoring with debouncing. Changes only
say *which* roots to re-crawl; the crawl itself decides what changed by
comparing against committed state, so dropped or duplicated events are
harmless.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import get_config, CrawlerConfig
from .scanner import SYSTEM_FILES


logger = logging.getLogger(__name__)


class ChangeType(Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    MOVED = "moved"


@dataclass
class FileChange:
    """A pending file change event."""
    path: Path
    change_type: ChangeType
    timestamp: float
    old_path: Optional[Path] = None  # For MOVED events


class _EventHandler(FileSystemEventHandler):
    def __init__(self, watcher: "Watcher"):
        self.watcher = watcher

    def on_created(self, event: FileSystemEvent):
        if not event.is_directory:
            self.watcher._queue_change(Path(event.src_path), ChangeType.ADDED)

    def on_modified(self, event: FileSystemEvent):
        if not event.is_directory:
            self.watcher._queue_change(Path(event.src_path), ChangeType.MODIFIED)

    def on_deleted(self, event: FileSystemEvent):
        if not event.is_directory:
            self.watcher._queue_change(Path(event.src_path), ChangeType.DELETED)

    def on_moved(self, event: FileSystemEvent):
        if not event.is_directory:
            self.watcher._queue_change(
                Path(event.dest_path), ChangeType.MOVED, old_path=Path(event.src_path)
            )


class Watcher:
    """
    File system watcher with debouncing.

    Rapid changes within debounce_ms are merged into one batch; a later
    event for the same path replaces the earlier one.
    """

    def __init__(
        self,
        config: CrawlerConfig | None = None,
        on_changes: Optional[Callable[[List[FileChange]], None]] = None,
    ):
        self.config = config or get_config()
        self.on_changes = on_changes

        self._observer: Optional[Observer] = None
        self._pending_changes: Dict[str, FileChange] = {}
        self._debounce_handle: Optional[asyncio.TimerHandle] = None
        self._running = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def start(self, roots: List[Path] | None = None):
        """Start watching directories (must be called from the event loop)."""
        roots = roots or self.config.roots
        self._loop = asyncio.get_running_loop()

        self._observer = Observer()
        handler = _EventHandler(self)

        for root in roots:
            if root.exists():
                self._observer.schedule(handler, str(root), recursive=True)
                logger.info(f"Watching: {root}")
            else:
                logger.warning(f"Watch root not found: {root}")

        self._running = True
        self._observer.start()

    def stop(self):
        self._running = False

        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=2)
            self._observer = None

        if self._debounce_handle:
            self._debounce_handle.cancel()
            self._debounce_handle = None

    def _queue_change(
        self,
        path: Path,
        change_type: ChangeType,
        old_path: Optional[Path] = None,
    ):
        """Queue a change; called from the observer thread."""
        if self._should_skip(path):
            return

        change = FileChange(
            path=path,
            change_type=change_type,
            timestamp=time.monotonic(),
            old_path=old_path,
        )
        if self._loop:
            self._loop.call_soon_threadsafe(self._record, change)
        else:
            self._record(change)

    def _record(self, change: FileChange):
        # Later events override earlier ones for the same path
        self._pending_changes[str(change.path)] = change
        if self._loop:
            self._schedule_flush()

    def _schedule_flush(self):
        if self._debounce_handle is not None:
            return
        self._debounce_handle = self._loop.call_later(
            self.config.debounce_ms / 1000.0, self._flush_changes
        )

    def _flush_changes(self):
        self._debounce_handle = None
        if not self._pending_changes:
            return

        changes = list(self._pending_changes.values())
        self._pending_changes.clear()

        logger.info(f"Detected {len(changes)} file changes")

        if self.on_changes:
            self.on_changes(changes)

    def _should_skip(self, path: Path) -> bool:
        name = path.name
        if name in SYSTEM_FILES or name.startswith("."):
            return True
        if any(part in self.config.skip_dirs for part in path.parts):
            return True
        return path.suffix.lower() in self.config.skip_extensions

    def get_pending_count(self) -> int:
        return len(self._pending_changes)


class AsyncWatcher(Watcher):
    """
    Async-friendly watcher.

    Provides an async generator of change batches.
    """

    def __init__(self, config: CrawlerConfig | None = None):
        super().__init__(config)
        self._change_queue: asyncio.Queue[List[FileChange]] = asyncio.Queue()
        self.on_changes = self._change_queue.put_nowait

    async def changes(self):
        """
        Yield batches of changes until stop() is called.

        Usage:
            watcher = AsyncWatcher()
            watcher.start()

            async for batch in watcher.changes():
                for change in batch:
                    print(f"{change.change_type}: {change.path}")
        """
        while self._running:
            try:
                batch = await asyncio.wait_for(self._change_queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            yield batch

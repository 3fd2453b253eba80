# downloads_sorter/core/watcher.py

import logging
import os
from pathlib import Path
from typing import Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .path_resolver import same_directory
from .settle_gate import EventKind

logger = logging.getLogger(__name__)


class SortEventHandler(FileSystemEventHandler):
    """
    Forwards top-level file events of the watched folder as sort candidates.

    Only direct children are reported, so the category folders the sorter
    fills are never treated as new input. A file renamed into the folder
    (a browser finishing a '.part' download) counts as created.
    """

    def __init__(self, watched_dir: Path,
                 on_candidate: Callable[[Path, EventKind], None],
                 on_watch_lost: Callable[[], None]):
        super().__init__()
        self.watched_dir = watched_dir
        self._on_candidate = on_candidate
        self._on_watch_lost = on_watch_lost

    def _forward(self, raw_path, kind: EventKind):
        path = Path(os.fsdecode(raw_path))
        if same_directory(path.parent, self.watched_dir):
            self._on_candidate(path, kind)

    def on_created(self, event: FileSystemEvent):
        if not event.is_directory:
            self._forward(event.src_path, EventKind.CREATED)

    def on_modified(self, event: FileSystemEvent):
        if not event.is_directory:
            self._forward(event.src_path, EventKind.MODIFIED)

    def on_moved(self, event: FileSystemEvent):
        if not event.is_directory:
            self._forward(event.dest_path, EventKind.CREATED)

    def on_deleted(self, event: FileSystemEvent):
        deleted = Path(os.fsdecode(event.src_path))
        if same_directory(deleted, self.watched_dir):
            self._on_watch_lost()


class FolderWatcher:
    """Owns the watchdog observer for a single, non-recursive folder."""

    def __init__(self, path: Path, handler: FileSystemEventHandler):
        self.path = path
        self.observer = Observer()
        self.observer.schedule(handler, str(path), recursive=False)

    def start(self):
        self.observer.start()
        logger.debug(f"Watching '{self.path}'.")

    def stop(self):
        # Must not be called from a watchdog thread: a thread cannot join itself.
        self.observer.stop()
        if self.observer.is_alive():
            self.observer.join(timeout=5)
        logger.debug(f"Stopped watching '{self.path}'.")

"""File-system watching for the diagram pipeline."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[Path], None]


def is_hidden(path: Path, root: Path) -> bool:
    """True if any segment of *path* below *root* starts with a dot."""
    try:
        parts = path.relative_to(root).parts
    except ValueError:
        parts = path.parts
    return any(part.startswith(".") for part in parts)


class CodeChangeHandler(FileSystemEventHandler):
    """Forward modifications of regular, non-hidden files to a callback.

    No debouncing happens here: every modified event that survives the
    filter produces one callback.
    """

    def __init__(self, root: Path, on_change: ChangeCallback) -> None:
        super().__init__()
        self.root = root
        self.on_change = on_change

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        src_path = event.src_path
        if isinstance(src_path, bytes):
            src_path = src_path.decode("utf-8", errors="replace")
        file_path = Path(src_path)
        if is_hidden(file_path, self.root):
            return
        logger.info("File changed: %s", file_path)
        self.on_change(file_path)


class ChangeWatcher:
    """Recursive watchdog observer over one directory tree.

    *on_change* is invoked on the observer's thread; callers that live on an
    event loop must hand the path over themselves.
    """

    def __init__(self, root: Path, on_change: ChangeCallback) -> None:
        self.root = Path(root).resolve()
        self.handler = CodeChangeHandler(self.root, on_change)
        self._observer: Optional[Observer] = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        if self._observer is not None:
            return
        observer = Observer()
        observer.schedule(self.handler, str(self.root), recursive=True)
        observer.start()
        self._observer = observer
        logger.info("Watching %s for changes", self.root)

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join()
        self._observer = None
        logger.info("Stopped watching %s", self.root)

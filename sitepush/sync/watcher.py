"""Filesystem watcher feeding the change queue.

Uses the ``watchdog`` library (inotify on Linux) to observe the watched tree
recursively. Observer callbacks run on a background thread and only ever
touch the thread-safe ``ChangeQueue`` and the one-shot exit event; the
scheduler loop is the single consumer of the queue.
"""

import logging
import os
import threading
from collections import deque
from collections.abc import Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from sitepush.schemas.sync import ChangeEvent, ChangeKind
from sitepush.sync.ignore import IgnoreFilter
from sitepush.sync.paths import same_directory, same_filename

logger = logging.getLogger(__name__)


class ChangeQueue:
    """FIFO of change events, safe for many producers and one consumer.

    Create/modify events for the same path are coalesced at enqueue time:
    a later one replaces the kind of the queued entry in place. Deletions
    are always appended and never coalesced.
    """

    def __init__(self) -> None:
        self._items: deque[ChangeEvent] = deque()
        self._lock = threading.Lock()

    def enqueue(self, event: ChangeEvent) -> bool:
        """Add an event; return False if it was merged into a queued one."""
        with self._lock:
            if event.is_upload:
                for index in range(len(self._items) - 1, -1, -1):
                    queued = self._items[index]
                    if queued.path != event.path:
                        continue
                    if not queued.is_upload:
                        # A deletion sits between, keep the new event separate
                        break
                    if queued.kind != event.kind:
                        self._items[index] = event
                    return False
            self._items.append(event)
            return True

    def try_dequeue(self) -> ChangeEvent | None:
        with self._lock:
            return self._items.popleft() if self._items else None

    def snapshot(self) -> list[ChangeEvent]:
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class ChangeHandler(FileSystemEventHandler):
    """Turns raw watchdog events into queued change events."""

    def __init__(
        self,
        root: str,
        queue: ChangeQueue,
        *,
        ignore_filter: IgnoreFilter | None = None,
        exit_request_file: str = "",
        on_exit_request: Callable[[], None] | None = None,
    ) -> None:
        super().__init__()
        self._root = root
        self._queue = queue
        self._ignore_filter = ignore_filter
        self._exit_request_file = exit_request_file
        self._on_exit_request = on_exit_request

    def _is_exit_request(self, path: str) -> bool:
        if not self._exit_request_file:
            return False
        directory, filename = os.path.split(path)
        return same_directory(directory, self._root) and same_filename(
            filename, self._exit_request_file
        )

    def _ignore(self, path: str) -> bool:
        return self._ignore_filter is not None and self._ignore_filter.should_ignore(path)

    def _handle_upload(self, path: str, kind: ChangeKind) -> None:
        if self._is_exit_request(path):
            if kind == ChangeKind.CREATED:
                self._handle_exit_request(path)
            return

        if self._ignore(path):
            return

        if self._queue.enqueue(ChangeEvent(path=path, kind=kind)):
            logger.debug("Queued %s: %s", kind, path)

    def _handle_exit_request(self, path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        logger.info("Exit requested via %s", path)
        if self._on_exit_request is not None:
            self._on_exit_request()

    def on_created(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._handle_upload(os.fsdecode(event.src_path), ChangeKind.CREATED)

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._handle_upload(os.fsdecode(event.src_path), ChangeKind.MODIFIED)

    def on_moved(self, event: FileSystemEvent) -> None:
        """A rename into or within the tree counts as a new file at the destination."""
        if event.is_directory:
            return
        self._handle_upload(os.fsdecode(event.dest_path), ChangeKind.CREATED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        path = os.fsdecode(event.src_path)
        if self._is_exit_request(path) or self._ignore(path):
            return
        self._queue.enqueue(ChangeEvent(path=path, kind=ChangeKind.DELETED))


class ChangeWatcher:
    """Observes a directory subtree and fills a change queue.

    Usage::

        queue = ChangeQueue()
        watcher = ChangeWatcher("/home/user/site/", queue, exit_request_file="sitepush.exit")
        watcher.start()
        ...
        if watcher.exit_requested.is_set():
            watcher.stop()
    """

    def __init__(
        self,
        directory: str,
        queue: ChangeQueue,
        *,
        ignore_filter: IgnoreFilter | None = None,
        exit_request_file: str = "",
    ) -> None:
        self._directory = directory
        self._queue = queue
        self.exit_requested = threading.Event()
        self.handler = ChangeHandler(
            directory,
            queue,
            ignore_filter=ignore_filter,
            exit_request_file=exit_request_file,
            on_exit_request=self._request_exit,
        )
        self._observer: Observer | None = None
        self._lock = threading.Lock()

    @property
    def queue(self) -> ChangeQueue:
        return self._queue

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def _request_exit(self) -> None:
        if not self.exit_requested.is_set():
            self.exit_requested.set()

    def start(self) -> None:
        with self._lock:
            if self._observer is not None:
                return
            observer = Observer()
            observer.schedule(self.handler, self._directory, recursive=True)
            observer.start()
            self._observer = observer
        logger.info("Watching %s for changes…", self._directory)

    def stop(self) -> None:
        with self._lock:
            observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        observer.join()
        logger.info("Watcher stopped.")

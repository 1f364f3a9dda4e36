"""Filesystem watcher for one inbound root.

Uses the ``watchdog`` library (inotify on Linux, ReadDirectoryChangesW on
Windows) to detect new files. The Observer runs in a background thread and
hands a ``WatchEvent`` per matching file to the asyncio loop with
``call_soon_threadsafe``.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from courier.schemas.pipeline import WatchEvent

logger = logging.getLogger(__name__)

# Debounce window: ignore events for the same file within this period
DEBOUNCE_SECONDS = 2.0
STOP_JOIN_TIMEOUT = 5.0


def matches_extension(path: Path, extension: str) -> bool:
    """True for non-hidden files whose suffix equals ``extension`` (any case)."""
    if path.name.startswith("."):
        return False
    return path.suffix.lower() == extension.lower()


class InboundHandler(FileSystemEventHandler):
    """Handles filesystem events in one inbound directory.

    Files can arrive by creation, by a writer closing its handle (inotify
    IN_CLOSE_WRITE) or by an atomic rename into the directory. All three
    funnel through ``_schedule``, which never lets an error escape into the
    observer thread.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        extension: str,
        on_file: Callable[[WatchEvent], None],
    ) -> None:
        super().__init__()
        self._loop = loop
        self._extension = extension
        self._on_file = on_file
        self._last_seen: dict[str, float] = {}

    def _should_debounce(self, path_str: str) -> bool:
        """Return True if this file was seen too recently."""
        now = time.monotonic()
        last = self._last_seen.get(path_str)
        if last is not None and now - last < DEBOUNCE_SECONDS:
            return True
        self._prune(now)
        self._last_seen[path_str] = now
        return False

    def _prune(self, now: float) -> None:
        expired = [p for p, seen in self._last_seen.items() if now - seen >= DEBOUNCE_SECONDS]
        for path_str in expired:
            del self._last_seen[path_str]

    def _schedule(self, src_path: str | bytes) -> None:
        try:
            path = Path(src_path.decode() if isinstance(src_path, bytes) else src_path)
            if not matches_extension(path, self._extension):
                return
            if not path.is_file():
                return
            if self._should_debounce(str(path)):
                return

            logger.info("Detected file: %s", path.name)
            event = WatchEvent(path=path, extension=self._extension)
            self._loop.call_soon_threadsafe(self._on_file, event)
        except (OSError, RuntimeError) as exc:
            # RuntimeError: the loop was closed under us during shutdown
            logger.warning("File Watcher caught an error for %s: %s", src_path, exc)

    def on_created(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._schedule(event.src_path)

    def on_closed(self, event: FileSystemEvent) -> None:
        """Triggered when a file is closed after writing (inotify)."""
        if event.is_directory:
            return
        self._schedule(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        """Files renamed into the root count as new arrivals."""
        if event.is_directory:
            return
        self._schedule(event.dest_path)


class DirectoryWatcher:
    """Watch one root for files with a given extension.

    Usage::

        watcher = DirectoryWatcher(root, ".pdf", dispatcher.submit)
        watcher.start()   # must be called from the event loop
        ...
        await watcher.stop()    # safe to call repeatedly
    """

    def __init__(
        self,
        root: Path,
        extension: str,
        on_file: Callable[[WatchEvent], None],
        *,
        observer_factory: Callable[[], Observer] = Observer,
    ) -> None:
        self.root = root
        self.extension = extension.lower()
        self._on_file = on_file
        self._observer_factory = observer_factory
        self._observer = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    @property
    def is_alive(self) -> bool:
        """True while events from the root can still be delivered."""
        return self.fault() is None

    def fault(self) -> str | None:
        """Describe why the watcher can no longer see new files, or None.

        The observer thread outlives its emitters: when the root is removed
        or its drive unmapped, only the emitter thread exits.
        """
        observer = self._observer
        if observer is None:
            return "not started"
        if not self.root.is_dir():
            return f"{self.root} is no longer available"
        if not observer.is_alive():
            return "observer thread exited"
        if not all(emitter.is_alive() for emitter in observer.emitters):
            return "event emitter exited"
        return None

    def start(self) -> int:
        """Start observing and replay existing files.

        Returns the number of backlog files replayed. Raises ``OSError`` if
        the root cannot be watched.
        """
        if self._observer is not None:
            logger.debug("Watcher for %s already running", self.root)
            return 0

        handler = InboundHandler(
            loop=asyncio.get_running_loop(),
            extension=self.extension,
            on_file=self._on_file,
        )
        observer = self._observer_factory()
        observer.schedule(handler, str(self.root), recursive=False)
        observer.start()
        self._observer = observer
        logger.info("Watching changes in %s", self.root)
        return self.scan_backlog()

    def scan_backlog(self) -> int:
        """Emit one event per matching file already present in the root."""
        try:
            items = sorted(self.root.iterdir())
        except OSError as exc:
            logger.error("Error reading directory %s: %s", self.root, exc)
            return 0

        count = 0
        for item in items:
            if matches_extension(item, self.extension) and item.is_file():
                self._on_file(WatchEvent(path=item, extension=self.extension))
                count += 1
        logger.info("Initial scan of %s complete: %d file(s)", self.root, count)
        return count

    async def stop(self) -> bool:
        """Release the observer. Returns False if it was not running.

        The observer thread is joined off the event loop so that other
        pipelines keep running while it winds down.
        """
        observer, self._observer = self._observer, None
        if observer is None:
            logger.debug("Watcher for %s is not running", self.root)
            return False

        observer.stop()
        await asyncio.to_thread(observer.join, STOP_JOIN_TIMEOUT)
        logger.info("Watcher for %s stopped", self.root)
        return True

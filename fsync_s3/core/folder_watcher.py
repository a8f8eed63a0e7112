"""Folder watcher for real-time file changes."""

import asyncio
import logging
import os
from typing import Optional, Union

from watchdog.events import EVENT_TYPE_MOVED, FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from fsync_s3.core.errors import WatchInitError, WatchRuntimeError
from fsync_s3.core.handoff_queue import HandoffQueue, until_stopped
from fsync_s3.models.events import FileChangeEvent

logger = logging.getLogger(__name__)

END_OF_STREAM = object()

StreamItem = Union[FileChangeEvent, WatchRuntimeError, object]


class FileChangeHandler(FileSystemEventHandler):
    """Converts watchdog events on the observer thread and hands them to the event source."""

    def __init__(self, source: "DirectoryEventSource"):
        """Initialize file change handler.

        Args:
            source: Event source that owns the ordered event stream
        """
        super().__init__()
        self.source = source

    def on_any_event(self, event: FileSystemEvent) -> None:
        """Handle any file system event."""
        # Only files are replicated
        if event.is_directory:
            return

        try:
            change = FileChangeEvent.from_watchdog(event)
        except (TypeError, ValueError) as e:
            self.source.report_error(WatchRuntimeError(f"Unreadable event {event!r}: {e}"))
            return

        self.source.publish(change)

        # A move into the watched directory leaves a new file under the destination name
        if event.event_type == EVENT_TYPE_MOVED and event.dest_path:
            destination = FileChangeEvent.from_move_destination(event)
            if self.source.contains(destination.path):
                self.source.publish(destination)


class DirectoryEventSource:
    """Single non-recursive watchdog watch exposed as an ordered async stream.

    Events and watch errors share one stream so their relative order is kept.
    The stream ends once close() releases the watch.
    """

    def __init__(self, directory: str, observer: Optional[Observer] = None):
        """Initialize the event source.

        Args:
            directory: Directory to watch, used exactly as given
            observer: Observer to schedule on (a new watchdog Observer by default)
        """
        self.directory = directory
        self.observer = observer if observer is not None else Observer()
        self.event_loop: Optional[asyncio.AbstractEventLoop] = None
        self._stream: asyncio.Queue = asyncio.Queue()
        self.running = False
        self._closed = False

    def contains(self, path: str) -> bool:
        """True when `path` names an entry directly inside the watched directory."""
        return os.path.normpath(os.path.dirname(path)) == os.path.normpath(self.directory)

    def start(self, event_loop: asyncio.AbstractEventLoop) -> None:
        """Register the watch and start the observer thread.

        Args:
            event_loop: Loop that consumes the stream

        Raises:
            WatchInitError: If the directory cannot be watched
        """
        if self.running:
            logger.warning("Event source is already running")
            return

        if not os.path.isdir(self.directory):
            raise WatchInitError(self.directory, "not an existing directory")

        self.event_loop = event_loop
        handler = FileChangeHandler(self)

        try:
            self.observer.schedule(handler, self.directory, recursive=False)
            self.observer.start()
        except (OSError, RuntimeError) as e:
            raise WatchInitError(self.directory, e) from e

        self.running = True
        logger.info(f"Added watch for folder: {self.directory}")

    def publish(self, item: StreamItem) -> None:
        """Append an item to the stream. Safe to call from the observer thread."""
        if self.event_loop is None:
            raise RuntimeError("Event loop not available. Call start() first.")
        try:
            self.event_loop.call_soon_threadsafe(self._stream.put_nowait, item)
        except RuntimeError:
            # Loop already closed during process shutdown
            logger.debug(f"Dropped event after loop shutdown: {item!r}")

    def report_error(self, error: WatchRuntimeError) -> None:
        """Append a watch error to the stream."""
        self.publish(error)

    async def next(self) -> StreamItem:
        """Wait for the next event, watch error, or END_OF_STREAM."""
        item = await self._stream.get()
        if item is END_OF_STREAM:
            # Every later call sees the end too
            self._stream.put_nowait(END_OF_STREAM)
        return item

    def close(self) -> None:
        """Release the watch and end the stream."""
        if self._closed:
            return
        self._closed = True

        if self.running:
            logger.info(f"Releasing watch for folder: {self.directory}")
            self.observer.stop()
            self.observer.join(timeout=5)
            self.running = False

        # Queued behind any event the observer thread has already handed over
        if self.event_loop is not None:
            self.publish(END_OF_STREAM)
        else:
            self._stream.put_nowait(END_OF_STREAM)


class FolderWatcher:
    """Filters the event stream down to creates and writes and feeds the handoff queue."""

    def __init__(self, source: DirectoryEventSource, queue: HandoffQueue):
        """Initialize folder watcher.

        Args:
            source: Event stream to consume
            queue: Handoff queue read by the uploader
        """
        self.source = source
        self.queue = queue
        self.running = False

        # Statistics
        self._stats = {
            "events_seen": 0,
            "events_forwarded": 0,
            "events_dropped": 0,
            "watch_errors": 0,
        }

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Forward events until the stream ends or stop_event is set."""
        self.running = True
        logger.info("Folder watcher started")
        try:
            while True:
                completed, item = await until_stopped(self.source.next(), stop_event)
                if not completed:
                    logger.info("Folder watcher stop requested")
                    return

                if item is END_OF_STREAM:
                    logger.info("Event stream closed, folder watcher exiting")
                    return

                if isinstance(item, WatchRuntimeError):
                    self._stats["watch_errors"] += 1
                    logger.error(f"Watch error: {item}")
                    continue

                self._stats["events_seen"] += 1
                if not item.triggers_upload:
                    self._stats["events_dropped"] += 1
                    continue

                logger.info(f"📁 created or modified file: {item.path}")
                completed, _ = await until_stopped(self.queue.send(item.path), stop_event)
                if not completed:
                    logger.info(f"Folder watcher stop requested, not forwarding {item.path}")
                    return
                self._stats["events_forwarded"] += 1
        finally:
            self.running = False

    def get_statistics(self) -> dict:
        """Get watcher statistics.

        Returns:
            Dictionary with watcher statistics
        """
        return {
            "running": self.running,
            "watching": self.source.directory,
            **self._stats,
        }

    def is_running(self) -> bool:
        return self.running

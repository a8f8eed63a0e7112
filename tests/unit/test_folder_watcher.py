"""
Tests for DirectoryEventSource, FileChangeHandler and FolderWatcher.
The watchdog observer is mocked except in the final integration test.
"""

import asyncio
import logging
from unittest.mock import MagicMock

import pytest
from watchdog.events import (
    DirCreatedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from fsync_s3.core.errors import WatchInitError, WatchRuntimeError
from fsync_s3.core.folder_watcher import (
    END_OF_STREAM,
    DirectoryEventSource,
    FileChangeHandler,
    FolderWatcher,
)
from fsync_s3.core.handoff_queue import HandoffQueue, QueueClosed
from fsync_s3.models.events import FileChangeEvent, Op


class FakeEventSource:
    """Replays a fixed list of stream items, then reports end of stream."""

    def __init__(self, items, directory="/data/in"):
        self.directory = directory
        self.items = list(items)

    async def next(self):
        if self.items:
            return self.items.pop(0)
        return END_OF_STREAM


async def drain(queue):
    """Receive until the queue closes."""
    received = []
    try:
        while True:
            received.append(await queue.receive())
    except QueueClosed:
        return received


async def run_watcher(items):
    """Run a watcher over `items` with a consumer attached."""
    queue = HandoffQueue()
    watcher = FolderWatcher(FakeEventSource(items), queue)
    consumer = asyncio.create_task(drain(queue))

    await asyncio.wait_for(watcher.run(), timeout=2)
    queue.close()
    received = await asyncio.wait_for(consumer, timeout=2)
    return watcher, received


@pytest.fixture
def mock_observer():
    return MagicMock()


class TestFileChangeEvent:
    """Test conversion from watchdog events."""

    @pytest.mark.parametrize(
        "event,op",
        [
            (FileCreatedEvent("/data/in/a.txt"), Op.CREATE),
            (FileModifiedEvent("/data/in/a.txt"), Op.WRITE),
            (FileDeletedEvent("/data/in/a.txt"), Op.REMOVE),
            (FileMovedEvent("/data/in/a.txt", "/data/in/b.txt"), Op.RENAME),
        ],
    )
    def test_from_watchdog_op(self, event, op):
        """Test each watchdog event type maps to its operation kind."""
        change = FileChangeEvent.from_watchdog(event)

        assert change.op == op
        assert change.path == "/data/in/a.txt"

    def test_from_move_destination(self):
        """Test the destination of a move is reported as a create of the new name."""
        change = FileChangeEvent.from_move_destination(FileMovedEvent("/data/in/.a.tmp", "/data/in/a.txt"))

        assert change == FileChangeEvent("/data/in/a.txt", Op.CREATE)
        assert change.triggers_upload

    def test_from_watchdog_bytes_path(self):
        """Test byte paths are decoded."""
        change = FileChangeEvent.from_watchdog(FileCreatedEvent(b"/data/in/a.txt"))

        assert change.path == "/data/in/a.txt"

    def test_triggers_upload(self):
        """Test only create and write trigger uploads."""
        assert FileChangeEvent("/p", Op.CREATE).triggers_upload
        assert FileChangeEvent("/p", Op.WRITE).triggers_upload
        assert FileChangeEvent("/p", Op.CREATE | Op.WRITE).triggers_upload
        assert FileChangeEvent("/p", Op.WRITE | Op.CHMOD).triggers_upload
        assert not FileChangeEvent("/p", Op.REMOVE).triggers_upload
        assert not FileChangeEvent("/p", Op.RENAME).triggers_upload
        assert not FileChangeEvent("/p", Op.CHMOD).triggers_upload
        assert not FileChangeEvent("/p", Op(0)).triggers_upload


class TestFileChangeHandler:
    """Test the observer-thread handler."""

    @pytest.fixture
    def source(self):
        return MagicMock()

    @pytest.fixture
    def handler(self, source):
        return FileChangeHandler(source)

    def test_file_created_published(self, handler, source):
        """Test file creation is handed to the source."""
        handler.on_any_event(FileCreatedEvent("/data/in/img1.jpg"))

        source.publish.assert_called_once_with(FileChangeEvent("/data/in/img1.jpg", Op.CREATE))

    def test_file_deleted_published_unfiltered(self, handler, source):
        """Test filtering is left to the watcher."""
        handler.on_any_event(FileDeletedEvent("/data/in/img1.jpg"))

        source.publish.assert_called_once_with(FileChangeEvent("/data/in/img1.jpg", Op.REMOVE))

    def test_move_into_directory_publishes_destination(self, handler, source):
        """Test an atomic save (temp file renamed into place) uploads the final name."""
        source.contains.return_value = True

        handler.on_any_event(FileMovedEvent("/data/in/.report.tmp", "/data/in/report.csv"))

        source.contains.assert_called_once_with("/data/in/report.csv")
        assert [c.args[0] for c in source.publish.call_args_list] == [
            FileChangeEvent("/data/in/.report.tmp", Op.RENAME),
            FileChangeEvent("/data/in/report.csv", Op.CREATE),
        ]

    def test_move_out_of_directory_publishes_rename_only(self, handler, source):
        source.contains.return_value = False

        handler.on_any_event(FileMovedEvent("/data/in/report.csv", "/data/archive/report.csv"))

        source.publish.assert_called_once_with(FileChangeEvent("/data/in/report.csv", Op.RENAME))

    def test_directory_event_ignored(self, handler, source):
        """Test directory events are not published."""
        handler.on_any_event(DirCreatedEvent("/data/in/subdir"))

        source.publish.assert_not_called()
        source.report_error.assert_not_called()

    def test_unreadable_event_reported(self, handler, source):
        """Test an event that cannot be converted becomes a watch error."""
        event = MagicMock(is_directory=False, event_type="created", src_path=None)

        handler.on_any_event(event)

        source.publish.assert_not_called()
        error = source.report_error.call_args.args[0]
        assert isinstance(error, WatchRuntimeError)


class TestDirectoryEventSource:
    """Test watch registration and the event stream."""

    async def test_start_registers_exact_directory(self, tmp_path, mock_observer):
        """Test the configured string reaches the observer unchanged and non-recursive."""
        directory = f"{tmp_path}/./"
        source = DirectoryEventSource(directory, observer=mock_observer)

        source.start(asyncio.get_running_loop())

        handler, path = mock_observer.schedule.call_args.args
        assert isinstance(handler, FileChangeHandler)
        assert path == directory
        assert mock_observer.schedule.call_args.kwargs == {"recursive": False}
        mock_observer.start.assert_called_once()
        assert source.running is True

    async def test_start_missing_directory(self, tmp_path, mock_observer):
        """Test a missing directory fails registration."""
        source = DirectoryEventSource(str(tmp_path / "missing"), observer=mock_observer)

        with pytest.raises(WatchInitError, match="missing"):
            source.start(asyncio.get_running_loop())

        mock_observer.schedule.assert_not_called()

    async def test_start_file_not_directory(self, tmp_path, mock_observer):
        """Test a regular file cannot be watched."""
        target = tmp_path / "file.txt"
        target.write_text("x")
        source = DirectoryEventSource(str(target), observer=mock_observer)

        with pytest.raises(WatchInitError):
            source.start(asyncio.get_running_loop())

    async def test_start_observer_failure(self, tmp_path, mock_observer):
        """Test an OS error from the observer becomes WatchInitError."""
        mock_observer.start.side_effect = OSError("inotify watch limit reached")
        source = DirectoryEventSource(str(tmp_path), observer=mock_observer)

        with pytest.raises(WatchInitError, match="inotify watch limit"):
            source.start(asyncio.get_running_loop())
        assert source.running is False

    async def test_publish_and_next(self, tmp_path, mock_observer):
        """Test published items come out of next() in order."""
        source = DirectoryEventSource(str(tmp_path), observer=mock_observer)
        source.start(asyncio.get_running_loop())
        first = FileChangeEvent(str(tmp_path / "a"), Op.CREATE)
        error = WatchRuntimeError("overflow")

        source.publish(first)
        source.report_error(error)

        assert await asyncio.wait_for(source.next(), timeout=1) == first
        assert await asyncio.wait_for(source.next(), timeout=1) is error

    @pytest.mark.parametrize(
        "path,expected",
        [
            ("/data/in/a.txt", True),
            ("/data/in/./a.txt", True),
            ("/data/in/sub/a.txt", False),
            ("/data/archive/a.txt", False),
        ],
    )
    def test_contains(self, mock_observer, path, expected):
        """Test only direct children of the watched directory are inside it."""
        source = DirectoryEventSource("/data/in/", observer=mock_observer)

        assert source.contains(path) is expected

    async def test_publish_before_start(self, tmp_path, mock_observer):
        source = DirectoryEventSource(str(tmp_path), observer=mock_observer)

        with pytest.raises(RuntimeError, match="Event loop not available"):
            source.publish(FileChangeEvent("/p", Op.CREATE))

    async def test_close_releases_watch_and_ends_stream(self, tmp_path, mock_observer):
        """Test close stops the observer and ends the stream after pending events."""
        source = DirectoryEventSource(str(tmp_path), observer=mock_observer)
        source.start(asyncio.get_running_loop())
        pending = FileChangeEvent(str(tmp_path / "a"), Op.WRITE)
        source.publish(pending)

        source.close()
        source.close()

        mock_observer.stop.assert_called_once()
        mock_observer.join.assert_called_once()
        assert await asyncio.wait_for(source.next(), timeout=1) == pending
        assert await asyncio.wait_for(source.next(), timeout=1) is END_OF_STREAM
        assert await asyncio.wait_for(source.next(), timeout=1) is END_OF_STREAM

    async def test_close_without_start(self, tmp_path, mock_observer):
        source = DirectoryEventSource(str(tmp_path), observer=mock_observer)

        source.close()

        mock_observer.stop.assert_not_called()
        assert await asyncio.wait_for(source.next(), timeout=1) is END_OF_STREAM


class TestFolderWatcher:
    """Test filtering, error tolerance and backpressure."""

    async def test_forwards_only_create_and_write(self):
        """Test non create/write events never produce tasks."""
        items = [
            FileChangeEvent("/data/in/a.txt", Op.CREATE),
            FileChangeEvent("/data/in/b.txt", Op.REMOVE),
            FileChangeEvent("/data/in/c.txt", Op.RENAME),
            FileChangeEvent("/data/in/d.txt", Op.CHMOD),
            FileChangeEvent("/data/in/e.txt", Op.WRITE),
            FileChangeEvent("/data/in/f.txt", Op.CREATE | Op.WRITE),
        ]

        watcher, received = await run_watcher(items)

        assert received == ["/data/in/a.txt", "/data/in/e.txt", "/data/in/f.txt"]
        stats = watcher.get_statistics()
        assert stats["events_seen"] == 6
        assert stats["events_forwarded"] == 3
        assert stats["events_dropped"] == 3

    async def test_watch_error_is_not_fatal(self, caplog):
        """Test an error between two events is logged and both events are forwarded."""
        items = [
            FileChangeEvent("/data/in/a.txt", Op.CREATE),
            WatchRuntimeError("event buffer overflow"),
            FileChangeEvent("/data/in/b.txt", Op.WRITE),
        ]

        with caplog.at_level(logging.ERROR):
            watcher, received = await run_watcher(items)

        assert received == ["/data/in/a.txt", "/data/in/b.txt"]
        assert watcher.get_statistics()["watch_errors"] == 1
        assert "event buffer overflow" in caplog.text

    async def test_repeated_writes_forwarded_each_time(self):
        """Test two writes to one file produce two tasks."""
        items = [
            FileChangeEvent("/data/in/img1.jpg", Op.WRITE),
            FileChangeEvent("/data/in/img1.jpg", Op.WRITE),
        ]

        _, received = await run_watcher(items)

        assert received == ["/data/in/img1.jpg", "/data/in/img1.jpg"]

    async def test_logs_forwarded_path(self, caplog):
        with caplog.at_level(logging.INFO):
            await run_watcher([FileChangeEvent("/data/in/img1.jpg", Op.CREATE)])

        assert "created or modified file: /data/in/img1.jpg" in caplog.text

    async def test_send_blocks_event_consumption(self):
        """Test the watcher stops reading events while the uploader is not receiving."""
        source = FakeEventSource(
            [
                FileChangeEvent("/data/in/a.txt", Op.CREATE),
                FileChangeEvent("/data/in/b.txt", Op.CREATE),
            ]
        )
        queue = HandoffQueue()
        watcher = FolderWatcher(source, queue)
        stop_event = asyncio.Event()

        run_task = asyncio.create_task(watcher.run(stop_event))
        await asyncio.sleep(0.05)

        assert not run_task.done()
        assert len(source.items) == 1
        assert watcher.is_running()

        assert await queue.receive() == "/data/in/a.txt"
        stop_event.set()
        await asyncio.wait_for(run_task, timeout=1)
        assert watcher.is_running() is False

    async def test_stop_event_ends_idle_watcher(self):
        """Test stop is honoured while waiting for the next event."""

        class IdleSource(FakeEventSource):
            async def next(self):
                await asyncio.Event().wait()

        watcher = FolderWatcher(IdleSource([]), HandoffQueue())
        stop_event = asyncio.Event()
        run_task = asyncio.create_task(watcher.run(stop_event))
        await asyncio.sleep(0.01)

        stop_event.set()

        await asyncio.wait_for(run_task, timeout=1)
        assert watcher.get_statistics()["events_seen"] == 0


class TestFolderWatcherIntegration:
    """Exercise a real watchdog observer."""

    async def test_real_file_creation_forwarded(self, tmp_path):
        """Test creating a file in the watched directory reaches the queue."""
        source = DirectoryEventSource(str(tmp_path))
        queue = HandoffQueue()
        watcher = FolderWatcher(source, queue)
        source.start(asyncio.get_running_loop())
        run_task = asyncio.create_task(watcher.run())

        try:
            await asyncio.sleep(0.1)
            (tmp_path / "img1.jpg").write_bytes(b"\xff\xd8\xff")

            path = await asyncio.wait_for(queue.receive(), timeout=5)
            assert path.endswith("img1.jpg")
        finally:
            source.close()
            run_task.cancel()
            await asyncio.gather(run_task, return_exceptions=True)

    async def test_real_rename_into_place_forwarded(self, tmp_path):
        """Test a temp file renamed to its final name uploads the final name."""
        source = DirectoryEventSource(str(tmp_path))
        queue = HandoffQueue()
        watcher = FolderWatcher(source, queue)
        source.start(asyncio.get_running_loop())
        run_task = asyncio.create_task(watcher.run())

        try:
            await asyncio.sleep(0.1)
            temp = tmp_path / ".report.tmp"
            temp.write_text("id,total\n1,10\n")
            temp.rename(tmp_path / "report.csv")

            async def receive_final():
                while True:
                    path = await queue.receive()
                    if path.endswith("report.csv"):
                        return path

            path = await asyncio.wait_for(receive_final(), timeout=5)
            assert path == str(tmp_path / "report.csv")
        finally:
            source.close()
            run_task.cancel()
            await asyncio.gather(run_task, return_exceptions=True)

"""Supervisor running the folder watcher and the uploader."""

import asyncio
import logging
from typing import Optional

from fsync_s3.core.failure_policy import FailurePolicy
from fsync_s3.core.folder_watcher import DirectoryEventSource, FolderWatcher
from fsync_s3.core.handoff_queue import HandoffQueue
from fsync_s3.core.s3_uploader import S3Uploader
from fsync_s3.models.sync_config import SyncConfig

logger = logging.getLogger(__name__)


class SyncPipeline:
    """Wires event source, watcher, handoff queue and uploader for one configuration.

    run() returns when the event stream ends or stop() is called, and raises
    the first error that the failure policy did not absorb. Either way the
    watch and the S3 client are released before it returns.
    """

    def __init__(
        self,
        config: SyncConfig,
        event_source: Optional[DirectoryEventSource] = None,
        policy: Optional[FailurePolicy] = None,
    ):
        self.config = config
        self.policy = policy if policy is not None else FailurePolicy.from_config(config)
        self.queue = HandoffQueue()
        self.event_source = event_source if event_source is not None else DirectoryEventSource(config.local_directory)
        self.watcher = FolderWatcher(self.event_source, self.queue)
        self.uploader = S3Uploader(config, self.queue, self.policy)
        self.stop_event = asyncio.Event()

    async def run(self) -> None:
        """Initialize both sides and supervise them until they finish."""
        await self.uploader.initialize()
        try:
            self.event_source.start(asyncio.get_running_loop())
            logger.info(f"Replicating {self.config.local_directory} to s3://{self.config.bucket}")

            watcher_task = asyncio.create_task(self.watcher.run(self.stop_event), name="folder-watcher")
            uploader_task = asyncio.create_task(self.uploader.run(self.stop_event), name="s3-uploader")
            await self._supervise(watcher_task, uploader_task)
        finally:
            self.event_source.close()
            await self.uploader.close()

    async def _supervise(self, watcher_task: asyncio.Task, uploader_task: asyncio.Task) -> None:
        pending = {watcher_task, uploader_task}
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    error = task.exception()
                    if error is not None:
                        logger.error(f"{task.get_name()} failed: {error}")
                        raise error
                    if task is watcher_task:
                        # Nothing more will be sent; let the uploader drain and exit
                        self.queue.close()
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    def stop(self) -> None:
        """Request a graceful stop. An upload in progress is allowed to finish."""
        logger.info("Stop requested")
        self.stop_event.set()

    def get_statistics(self) -> dict:
        return {
            "watcher": self.watcher.get_statistics(),
            "queue": self.queue.get_statistics(),
            "uploader": self.uploader.get_statistics(),
        }

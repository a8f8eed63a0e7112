"""Sequential S3 uploader using aiobotocore."""

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from typing import List, Optional

import aiofiles
from aiobotocore.config import AioConfig
from aiobotocore.session import get_session
from botocore.exceptions import BotoCoreError, ClientError

from fsync_s3.core.errors import FileOpenError, SessionError, UploadError
from fsync_s3.core.failure_policy import FailureAction, FailurePolicy
from fsync_s3.core.handoff_queue import HandoffQueue, QueueClosed, until_stopped
from fsync_s3.models.sync_config import SyncConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadResult:
    bucket: str
    key: str
    size: int
    elapsed: float
    parts: int = 1


class S3Uploader:
    """Owns one S3 client and uploads queued files one at a time, in queue order."""

    def __init__(self, config: SyncConfig, queue: HandoffQueue, policy: Optional[FailurePolicy] = None):
        """Initialize the uploader.

        Args:
            config: Application configuration
            queue: Handoff queue written by the folder watcher
            policy: Failure policy chosen by the supervisor (fail-fast by default)
        """
        self.config = config
        self.queue = queue
        self.policy = policy if policy is not None else FailurePolicy()
        self.part_size = config.part_size
        self._exit_stack = contextlib.AsyncExitStack()
        self._session = get_session()
        self._s3_client = None
        self._client_config = AioConfig(max_pool_connections=1)

        # Statistics
        self._stats = {
            "uploads": 0,
            "bytes_uploaded": 0,
            "failures": 0,
            "skipped": 0,
            "retries": 0,
        }

    async def initialize(self) -> None:
        """Create the S3 client used for every upload.

        Raises:
            SessionError: If the client cannot be created or the bucket check fails
        """
        try:
            self._s3_client = await self._exit_stack.enter_async_context(
                self._session.create_client(
                    "s3",
                    aws_access_key_id=self.config.access_key,
                    aws_secret_access_key=self.config.secret,
                    region_name=self.config.region,
                    config=self._client_config,
                )
            )
            if self.config.verify_bucket:
                await self._s3_client.head_bucket(Bucket=self.config.bucket)
        except (BotoCoreError, ClientError, ValueError) as e:
            await self.close()
            raise SessionError(self.config.region, self.config.bucket, e) from e

        logger.info(f"S3 session ready for bucket: {self.config.bucket} ({self.config.region})")

    async def close(self) -> None:
        """Release the S3 client."""
        self._s3_client = None
        await self._exit_stack.aclose()
        logger.debug("S3Uploader closed")

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Consume tasks until the queue closes or stop_event is set.

        A task is only received after the previous upload has finished.
        Errors the failure policy does not absorb propagate to the caller.
        """
        if self._s3_client is None:
            raise RuntimeError("S3 client not available. Call initialize() first.")

        logger.info("Uploader waiting for files")
        while True:
            try:
                completed, path = await until_stopped(self.queue.receive(), stop_event)
            except QueueClosed:
                logger.info("Handoff queue closed, uploader exiting")
                return
            if not completed:
                logger.info("Uploader stop requested")
                return

            await self.process(path)

    async def process(self, path: str) -> Optional[UploadResult]:
        """Upload one task, applying the failure policy.

        Returns:
            UploadResult, or None when the policy skipped the file
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self.upload_file(path)
            except (FileOpenError, UploadError) as e:
                self._stats["failures"] += 1
                action = self.policy.decide(e, attempt)

                if action is FailureAction.RETRY:
                    self._stats["retries"] += 1
                    delay = self.policy.retry_delay_for(attempt)
                    logger.warning(f"{e} (attempt {attempt}, retrying in {delay:g}s)")
                    await asyncio.sleep(delay)
                    continue
                if action is FailureAction.SKIP:
                    self._stats["skipped"] += 1
                    logger.error(f"{e} (skipped)")
                    return None
                raise

    async def upload_file(self, path: str) -> UploadResult:
        """Stream a file to the configured bucket under its path.

        Args:
            path: Path string from the task, used verbatim as the object key

        Returns:
            UploadResult describing the completed upload

        Raises:
            FileOpenError: If the file cannot be opened
            UploadError: If reading or transferring the content fails
        """
        if self._s3_client is None:
            raise RuntimeError("S3 client not available. Call initialize() first.")

        bucket = self.config.bucket
        key = path
        started = time.monotonic()

        try:
            f = await aiofiles.open(path, "rb")
        except OSError as e:
            raise FileOpenError(path, e) from e

        try:
            first = await f.read(self.part_size)
            second = await f.read(self.part_size) if len(first) == self.part_size else b""

            if not second:
                await self._s3_client.put_object(Bucket=bucket, Key=key, Body=first)
                size, parts = len(first), 1
            else:
                size, parts = await self._upload_multipart(f, key, [first, second])
        except (BotoCoreError, ClientError, OSError) as e:
            raise UploadError(path, bucket, e, key=key) from e
        finally:
            await f.close()

        elapsed = time.monotonic() - started
        self._stats["uploads"] += 1
        self._stats["bytes_uploaded"] += size
        logger.info(f"Uploaded {path} to s3://{bucket}/{key} ({size} bytes) in {elapsed:.3f}s")
        return UploadResult(bucket=bucket, key=key, size=size, elapsed=elapsed, parts=parts)

    async def _upload_multipart(self, f, key: str, chunks: List[bytes]) -> tuple:
        """Upload content larger than one part.

        Args:
            f: Open aiofiles handle positioned after `chunks`
            key: Object key
            chunks: Parts already read from the file

        Returns:
            (total bytes, number of parts)
        """
        bucket = self.config.bucket
        response = await self._s3_client.create_multipart_upload(Bucket=bucket, Key=key)
        upload_id = response["UploadId"]

        parts = []
        size = 0
        try:
            part_number = 1
            while chunks:
                chunk = chunks.pop(0)
                part_response = await self._s3_client.upload_part(
                    Bucket=bucket,
                    Key=key,
                    PartNumber=part_number,
                    UploadId=upload_id,
                    Body=chunk,
                )
                parts.append({"ETag": part_response["ETag"], "PartNumber": part_number})
                size += len(chunk)
                part_number += 1

                if part_number % 10 == 0:
                    logger.info(f"Uploaded {part_number - 1} parts for {key}")

                if not chunks:
                    next_chunk = await f.read(self.part_size)
                    if next_chunk:
                        chunks.append(next_chunk)

            await self._s3_client.complete_multipart_upload(
                Bucket=bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
        except (BotoCoreError, ClientError, OSError):
            try:
                await self._s3_client.abort_multipart_upload(Bucket=bucket, Key=key, UploadId=upload_id)
            except (BotoCoreError, ClientError) as abort_error:
                logger.warning(f"Could not abort multipart upload {upload_id} for {key}: {abort_error}")
            raise

        return size, len(parts)

    def get_statistics(self) -> dict:
        """Get uploader statistics.

        Returns:
            Statistics dictionary
        """
        return {
            "bucket": self.config.bucket,
            "connected": self._s3_client is not None,
            **self._stats,
        }

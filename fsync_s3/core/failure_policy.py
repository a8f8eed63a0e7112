"""Decides what the pipeline does when a file cannot be uploaded."""

import logging
from enum import Enum

from fsync_s3.core.errors import FileOpenError, SyncError, UploadError
from fsync_s3.models.sync_config import SyncConfig

logger = logging.getLogger(__name__)


class FailureAction(Enum):
    """What the uploader does after a failed attempt."""

    FAIL = "fail"
    SKIP = "skip"
    RETRY = "retry"


class FailurePolicy:
    """Maps a per-file error to fail, skip or retry.

    The defaults are fail-fast: any file or upload error stops the pipeline.
    """

    def __init__(
        self,
        on_file_error: FailureAction = FailureAction.FAIL,
        on_upload_error: FailureAction = FailureAction.FAIL,
        upload_retries: int = 0,
        retry_delay: float = 1.0,
    ):
        if on_file_error is FailureAction.RETRY or on_upload_error is FailureAction.RETRY:
            raise ValueError("retry is configured through upload_retries")
        self.on_file_error = on_file_error
        self.on_upload_error = on_upload_error
        self.upload_retries = upload_retries
        self.retry_delay = retry_delay

    @classmethod
    def from_config(cls, config: SyncConfig) -> "FailurePolicy":
        """Build the policy from the on-file-error, on-upload-error and retry settings."""
        return cls(
            on_file_error=FailureAction(config.on_file_error),
            on_upload_error=FailureAction(config.on_upload_error),
            upload_retries=config.upload_retries,
            retry_delay=config.retry_delay_seconds,
        )

    def decide(self, error: SyncError, attempt: int) -> FailureAction:
        """Choose the action for a failed attempt.

        Args:
            error: Error raised by the attempt
            attempt: 1-based number of the attempt that failed

        Returns:
            The action the uploader must take
        """
        if isinstance(error, FileOpenError):
            return self.on_file_error
        if isinstance(error, UploadError):
            if attempt <= self.upload_retries:
                return FailureAction.RETRY
            return self.on_upload_error
        return FailureAction.FAIL

    def retry_delay_for(self, attempt: int) -> float:
        """Seconds to wait before retrying after failed attempt `attempt` (doubles each time)."""
        return self.retry_delay * 2 ** (attempt - 1)

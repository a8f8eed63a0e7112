"""Error types raised by the sync pipeline."""

from typing import Optional


class SyncError(Exception):
    """Base class for every error the pipeline raises."""


class ConfigurationError(SyncError):
    """Configuration file is missing, unparseable or incomplete."""


class WatchInitError(SyncError):
    """The watch could not be bound to the configured directory."""

    def __init__(self, directory: str, reason: object):
        self.directory = directory
        self.reason = reason
        super().__init__(f"Unable to watch directory {directory!r}: {reason}")


class WatchRuntimeError(SyncError):
    """Error surfaced by the event source while running. Never fatal."""


class SessionError(SyncError):
    """The authenticated S3 client could not be established."""

    def __init__(self, region: str, bucket: str, reason: object):
        self.region = region
        self.bucket = bucket
        self.reason = reason
        super().__init__(f"Unable to create S3 session for bucket {bucket!r} in {region!r}: {reason}")


class FileOpenError(SyncError):
    """A file named by an upload task could not be opened."""

    def __init__(self, path: str, reason: object):
        self.path = path
        self.reason = reason
        super().__init__(f"Unable to open file {path!r}: {reason}")


class UploadError(SyncError):
    """Transferring a file to the bucket failed."""

    def __init__(self, path: str, bucket: str, reason: object, key: Optional[str] = None):
        self.path = path
        self.bucket = bucket
        self.key = key if key is not None else path
        self.reason = reason
        super().__init__(f"Unable to upload {path!r} to {bucket!r}: {reason}")

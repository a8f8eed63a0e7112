"""fsync-s3 - watch a local directory and replicate new or modified files to AWS S3."""

__version__ = "0.1.0"
__description__ = "Directory watcher that streams created and modified files to an S3 bucket"

# Simple imports only - components imported on demand
__all__ = []

"""S3-compatible upload storage and in-memory locking for resumable uploads."""

__version__ = "0.1.0"
"""Task and blob storage contracts with in-process implementations."""

from transcript_review.storage.blobs import BlobStore, LocalBlobStore, resolve_storage_path
from transcript_review.storage.tasks import InMemoryTaskStore, TaskStore

__all__ = [
    "BlobStore",
    "InMemoryTaskStore",
    "LocalBlobStore",
    "TaskStore",
    "resolve_storage_path",
]

"""Object storage backends for sharedmailbox."""

from ..common.config import StorageSettings
from .backend import ObjectInfo, ObjectStorageBackend, StoredObject
from .memory import InMemoryBackend
from .s3 import S3Backend


def create_backend(settings: StorageSettings) -> ObjectStorageBackend:
    """
    Build the storage backend named by the settings.

    Args:
        settings: Storage configuration.

    Returns:
        A ready-to-use backend instance.
    """
    if settings.backend == "memory":
        return InMemoryBackend()
    return S3Backend(
        bucket=settings.bucket,
        region=settings.region,
        endpoint_url=settings.endpoint_url,
    )


__all__ = [
    "InMemoryBackend",
    "ObjectInfo",
    "ObjectStorageBackend",
    "S3Backend",
    "StoredObject",
    "create_backend",
]

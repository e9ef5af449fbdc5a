"""
Object storage interface for sharedmailbox.

The lock and the inbox only need five operations from the storage
service. Conditional create is the sole atomic primitive; everything
else is a plain read or delete.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class ObjectInfo:
    """Metadata for a stored object."""

    key: str
    last_modified: datetime
    size: int = 0


@dataclass(frozen=True)
class StoredObject:
    """A stored object's body together with its metadata."""

    key: str
    body: bytes
    last_modified: datetime

    def text(self, encoding: str = "utf-8") -> str:
        """Decode the body as text."""
        return self.body.decode(encoding, errors="replace")


class ObjectStorageBackend(ABC):
    """Async key/value blob store consumed by the lock and the inbox."""

    @abstractmethod
    async def put_if_absent(self, key: str, body: bytes) -> bool:
        """
        Create an object only if the key does not exist yet.

        Args:
            key: Object key.
            body: Object content.

        Returns:
            True if the object was created, False if the key already existed.

        Raises:
            StorageError: If the write failed for any other reason.
        """

    @abstractmethod
    async def head(self, key: str) -> ObjectInfo | None:
        """Return object metadata, or None when the key does not exist."""

    @abstractmethod
    async def get(self, key: str) -> StoredObject:
        """
        Fetch an object.

        Raises:
            ObjectNotFoundError: If the key does not exist.
            StorageError: If the read failed.
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete an object. Deleting a missing key is not an error."""

    @abstractmethod
    async def list_prefix(self, prefix: str, max_keys: int = 1000) -> list[ObjectInfo]:
        """List up to ``max_keys`` objects whose key starts with ``prefix``."""

"""
In-process object storage for sharedmailbox.

Implements the same contract as the S3 backend, including conditional
create, so the lock and inbox can run without network access. Every
operation may be delayed by a configurable latency to interleave
concurrent callers; the state change itself happens in one step after
the delay, so check-and-set stays atomic on the event loop.
"""

import asyncio
import logging
import random
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from ..common.exceptions import ObjectNotFoundError
from .backend import ObjectInfo, ObjectStorageBackend, StoredObject

logger = logging.getLogger(__name__)

DEFAULT_HISTORY = 1000


class InMemoryBackend(ObjectStorageBackend):
    """Dictionary-backed storage with optional simulated latency."""

    def __init__(
        self,
        latency: float | tuple[float, float] = 0.0,
        clock: Optional[Callable[[], datetime]] = None,
        rng: Optional[random.Random] = None,
        history: int = DEFAULT_HISTORY,
    ) -> None:
        """
        Initialize the in-memory backend.

        Args:
            latency: Fixed delay in seconds, or a (min, max) range drawn per call.
            clock: Source of "now" for last-modified timestamps.
            rng: Random source used for ranged latency.
            history: Number of recent operations kept in ``operations``.
        """
        self._objects: dict[str, StoredObject] = {}
        self._latency = latency
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._rng = rng or random.Random()
        self.operations: deque[tuple[str, str]] = deque(maxlen=history)

    async def _delay(self, operation: str, key: str) -> None:
        self.operations.append((operation, key))
        if isinstance(self._latency, tuple):
            delay = self._rng.uniform(*self._latency)
        else:
            delay = self._latency
        # Always yield so callers interleave even with zero latency
        await asyncio.sleep(delay)

    async def put_if_absent(self, key: str, body: bytes) -> bool:
        await self._delay("put_if_absent", key)
        if key in self._objects:
            logger.debug("Conditional create rejected, key exists: %s", key)
            return False
        self._objects[key] = StoredObject(key=key, body=bytes(body), last_modified=self._clock())
        return True

    async def head(self, key: str) -> ObjectInfo | None:
        await self._delay("head", key)
        obj = self._objects.get(key)
        if obj is None:
            return None
        return ObjectInfo(key=key, last_modified=obj.last_modified, size=len(obj.body))

    async def get(self, key: str) -> StoredObject:
        await self._delay("get", key)
        obj = self._objects.get(key)
        if obj is None:
            raise ObjectNotFoundError(key)
        return obj

    async def delete(self, key: str) -> None:
        await self._delay("delete", key)
        self._objects.pop(key, None)

    async def list_prefix(self, prefix: str, max_keys: int = 1000) -> list[ObjectInfo]:
        await self._delay("list_prefix", prefix)
        # S3 lists keys in lexicographic order
        keys = sorted(k for k in self._objects if k.startswith(prefix))[:max_keys]
        return [
            ObjectInfo(
                key=k,
                last_modified=self._objects[k].last_modified,
                size=len(self._objects[k].body),
            )
            for k in keys
        ]

    # Helpers for seeding and inspecting state directly, without latency

    def put(self, key: str, body: bytes | str, last_modified: Optional[datetime] = None) -> None:
        """Store an object unconditionally."""
        if isinstance(body, str):
            body = body.encode("utf-8")
        self._objects[key] = StoredObject(
            key=key, body=body, last_modified=last_modified or self._clock()
        )

    def touch(self, key: str, age: timedelta) -> None:
        """Backdate an object's last-modified time by ``age``."""
        obj = self._objects[key]
        self._objects[key] = StoredObject(
            key=key, body=obj.body, last_modified=self._clock() - age
        )

    def contains(self, key: str) -> bool:
        """Return True if the key is stored."""
        return key in self._objects

    def read(self, key: str) -> bytes:
        """Return the stored body for a key."""
        return self._objects[key].body

    def keys(self) -> list[str]:
        """Return all stored keys in order."""
        return sorted(self._objects)

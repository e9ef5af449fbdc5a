"""
Cross-process mailbox lock for sharedmailbox.

Concurrent test runs share one inbox, so only one of them may wait for
"the next email" at a time. The lock is a small JSON object in the same
bucket as the inbox, created with a conditional write that fails when
the object already exists.

A holder can crash mid-hold and no storage-side expiry is assumed, so an
acquirer that collides with an existing lock checks whether it is stale:

- older than ``stale_after`` seconds, or
- owned by a process on this host that no longer exists.

Stale locks are deleted and creation is retried exactly once. The
staleness decision is a check-then-act sequence and is not atomic: two
acquirers can both judge the same lock stale, and one may delete the
other's fresh lock before recreating its own. Exclusion is therefore
best-effort once forced reclamation is involved. The liveness probe
(signal 0 to the recorded PID) is a heuristic only.
"""

import asyncio
import json
import logging
import os
import socket
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .common.config import LockSettings
from .common.exceptions import LockTimeoutError, ObjectNotFoundError
from .shutdown import ShutdownHandlers
from .storage.backend import ObjectStorageBackend

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_LOCK_KEY = "locks/myott-e2e.lock"
DEFAULT_MAX_WAIT = 60.0
DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_STALE_AFTER = 5 * 60.0


def process_exists(pid: int) -> bool:
    """
    Check whether a process with the given PID exists on this host.

    Sends signal 0, which performs the permission and existence checks
    without delivering a signal.

    Raises:
        OSError: If the check cannot be performed on this platform.
    """
    if os.name != "posix":
        # Signal 0 is CTRL_C_EVENT on Windows
        raise OSError("process liveness check is only supported on POSIX")
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by another user
        return True
    return True


@dataclass(frozen=True)
class LockRecord:
    """Contents of the lock object."""

    locked_at: datetime
    owner_id: str
    pid: Optional[int] = None
    host: Optional[str] = None

    def to_json(self) -> bytes:
        """Serialize the record for storage."""
        return json.dumps(
            {
                "lockedAt": self.locked_at.isoformat(),
                "ownerId": self.owner_id,
                "pid": self.pid,
                "host": self.host,
            }
        ).encode("utf-8")

    @classmethod
    def from_json(cls, raw: bytes | str) -> "LockRecord":
        """
        Deserialize a stored record.

        Raises:
            ValueError: If the content is not a lock record.
        """
        data = json.loads(raw)
        if not isinstance(data, dict) or "lockedAt" not in data:
            raise ValueError("not a lock record")

        pid = data.get("pid")
        if pid is not None and not isinstance(pid, int):
            raise ValueError(f"invalid pid: {pid!r}")

        owner_id = data.get("ownerId") or (str(pid) if pid is not None else "")
        return cls(
            locked_at=datetime.fromisoformat(data["lockedAt"].replace("Z", "+00:00")),
            owner_id=owner_id,
            pid=pid,
            host=data.get("host"),
        )


class LockGuard:
    """
    Scoped handle for a held lock.

    Returned by ``LockCoordinator.try_acquire``. Use it as an async
    context manager so the lock is released on every exit path.
    """

    def __init__(self, coordinator: "LockCoordinator") -> None:
        self._coordinator = coordinator
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    async def release(self) -> None:
        """Release the lock. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        await self._coordinator.release()

    async def __aenter__(self) -> "LockGuard":
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.release()


class LockCoordinator:
    """
    Mutual-exclusion lock keyed by a fixed storage path.

    Example:
        coordinator = LockCoordinator(storage, "locks/e2e.lock")
        link = await coordinator.with_lock(fetch_login_link)
    """

    def __init__(
        self,
        storage: ObjectStorageBackend,
        lock_key: str = DEFAULT_LOCK_KEY,
        max_wait: float = DEFAULT_MAX_WAIT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        stale_after: float = DEFAULT_STALE_AFTER,
        owner_id: Optional[str] = None,
        liveness_probe: Callable[[int], bool] = process_exists,
    ) -> None:
        """
        Initialize the lock coordinator.

        Args:
            storage: Backend holding the lock object.
            lock_key: Key of the lock object.
            max_wait: Seconds ``with_lock`` keeps trying before giving up.
            poll_interval: Seconds between acquisition attempts.
            stale_after: Lock age in seconds after which it is reclaimable.
            owner_id: Identifier written into the record; defaults to host:pid.
            liveness_probe: Callable telling whether a local PID is running.
        """
        self._storage = storage
        self._lock_key = lock_key
        self.max_wait = max_wait
        self.poll_interval = poll_interval
        self.stale_after = stale_after
        self._pid = os.getpid()
        self._host = socket.gethostname()
        self._owner_id = owner_id or f"{self._host}:{self._pid}"
        self._liveness_probe = liveness_probe
        self._held = False
        self._reclaimed = False
        self._shutdown_registered = False

    @classmethod
    def from_settings(
        cls, storage: ObjectStorageBackend, settings: LockSettings, **kwargs: Any
    ) -> "LockCoordinator":
        """Create a coordinator from lock settings."""
        return cls(
            storage,
            lock_key=settings.key,
            max_wait=settings.max_wait,
            poll_interval=settings.poll_interval,
            stale_after=settings.stale_after,
            **kwargs,
        )

    @property
    def lock_key(self) -> str:
        return self._lock_key

    @property
    def owner_id(self) -> str:
        return self._owner_id

    @property
    def is_held(self) -> bool:
        """True while this instance believes it holds the lock."""
        return self._held

    def register_shutdown_release(self, handlers: ShutdownHandlers) -> bool:
        """
        Have ``handlers`` release this lock on termination signals.

        Registration happens at most once per instance.

        Returns:
            True if this call registered the coordinator.
        """
        if self._shutdown_registered:
            return False
        registered = handlers.track(self)
        self._shutdown_registered = True
        return registered

    async def _create(self) -> bool:
        record = LockRecord(
            locked_at=datetime.now(timezone.utc),
            owner_id=self._owner_id,
            pid=self._pid,
            host=self._host,
        )
        created = await self._storage.put_if_absent(self._lock_key, record.to_json())
        if created:
            self._held = True
        return created

    async def acquire(self) -> bool:
        """
        Try once to take the lock.

        Returns:
            True if this instance now holds the lock, False if another
            holder has it.

        Raises:
            StorageError: If the storage write fails for a reason other
                than the key already existing.
        """
        self._reclaimed = False
        if await self._create():
            logger.debug("Lock %s acquired by %s", self._lock_key, self._owner_id)
            return True

        if not await self.is_stale():
            return False

        logger.info("Detected stale lock %s, attempting to remove it", self._lock_key)
        await self._force_release()

        if await self._create():
            logger.info("Reclaimed stale lock %s for %s", self._lock_key, self._owner_id)
            self._reclaimed = True
            return True

        logger.info("Another acquirer recreated %s first", self._lock_key)
        return False

    async def try_acquire(self) -> Optional[LockGuard]:
        """Try once to take the lock, returning a guard on success."""
        if await self.acquire():
            return LockGuard(self)
        return None

    async def is_stale(self) -> bool:
        """
        Decide whether the existing lock may be forcibly removed.

        Any failure while inspecting the lock counts as not stale.
        """
        try:
            info = await self._storage.head(self._lock_key)
        except Exception as e:
            logger.warning("Could not inspect lock %s: %s", self._lock_key, e)
            return False

        if info is None:
            return False

        age = (datetime.now(timezone.utc) - info.last_modified).total_seconds()
        if age > self.stale_after:
            logger.info(
                "Lock %s is %.0fs old (threshold %.0fs)",
                self._lock_key,
                age,
                self.stale_after,
            )
            return True

        try:
            stored = await self._storage.get(self._lock_key)
            record = LockRecord.from_json(stored.body)
        except Exception as e:
            logger.debug("Could not read lock record %s: %s", self._lock_key, e)
            return False

        if record.pid is None:
            return False

        if record.host and record.host != self._host:
            # PIDs from another machine cannot be probed
            return False

        try:
            alive = self._liveness_probe(record.pid)
        except Exception as e:
            logger.debug("Liveness probe for pid %s failed: %s", record.pid, e)
            return False

        if not alive:
            logger.info(
                "Lock %s owner %s (pid %s) is no longer running",
                self._lock_key,
                record.owner_id,
                record.pid,
            )
            return True

        return False

    async def _owned_by_someone_else(self) -> bool:
        try:
            stored = await self._storage.get(self._lock_key)
            record = LockRecord.from_json(stored.body)
        except ObjectNotFoundError:
            return False
        except Exception as e:
            logger.debug("Could not verify owner of %s: %s", self._lock_key, e)
            return False
        return record.owner_id != self._owner_id

    async def confirm(self) -> bool:
        """
        Re-read the lock record and check this instance still owns it.

        Clears the held flag when the record is gone or names another
        owner, which happens when two acquirers reclaim the same stale
        lock.
        """
        if not self._held:
            return False

        try:
            stored = await self._storage.get(self._lock_key)
            record = LockRecord.from_json(stored.body)
        except ObjectNotFoundError:
            record = None
        except Exception as e:
            logger.debug("Could not confirm lock %s: %s", self._lock_key, e)
            return True

        if record is None or record.owner_id != self._owner_id:
            logger.warning("Lock %s was lost to another acquirer", self._lock_key)
            self._held = False
            return False
        return True

    async def release(self) -> None:
        """
        Delete the lock object if this instance holds it.

        Errors are logged and swallowed: the lock may already have been
        cleared by stale-lock recovery or by hand.
        """
        if not self._held:
            return

        try:
            if await self._owned_by_someone_else():
                logger.warning(
                    "Lock %s was taken over by another holder; leaving it in place",
                    self._lock_key,
                )
                return
            await self._storage.delete(self._lock_key)
            logger.debug("Lock %s released by %s", self._lock_key, self._owner_id)
        except Exception as e:
            logger.warning(
                "Error releasing lock %s (may have been released already): %s",
                self._lock_key,
                e,
            )
        finally:
            self._held = False

    async def _force_release(self) -> None:
        try:
            await self._storage.delete(self._lock_key)
        except Exception as e:
            logger.warning("Error force releasing lock %s: %s", self._lock_key, e)
        self._held = False

    async def with_lock(
        self,
        action: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """
        Run ``action`` while holding the lock.

        Acquisition is retried every ``poll_interval`` seconds for up to
        ``max_wait`` seconds. A lock obtained by reclaiming a stale one is
        confirmed before the action runs. The lock is released after the
        action finishes, whether it returns or raises.

        Raises:
            LockTimeoutError: If the lock could not be acquired in time.
        """
        start = time.monotonic()
        attempts = 0

        while time.monotonic() - start < self.max_wait:
            attempts += 1
            guard = await self.try_acquire()
            if guard is not None and self._reclaimed and not await self.confirm():
                guard = None
            if guard is not None:
                logger.info(
                    "Acquired lock %s after %d attempt(s)", self._lock_key, attempts
                )
                async with guard:
                    return await action(*args, **kwargs)

            if time.monotonic() - start < self.max_wait:
                await asyncio.sleep(self.poll_interval)

        waited = time.monotonic() - start
        raise LockTimeoutError(self._lock_key, attempts, waited)

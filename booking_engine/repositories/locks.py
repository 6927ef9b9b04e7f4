"""Per-builder locks shared by the in-memory and SQL stores."""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from booking_engine.config import settings
from booking_engine.errors import StorageFailure

logger = logging.getLogger(__name__)


class BuilderLocks:
    """Registry of per-builder locks with timeout-aware acquisition.

    Locks are created on first use and never shared between builders, so
    booking traffic for one builder cannot block another.
    """

    def __init__(self, default_timeout: Optional[float] = None) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._default_timeout = (
            default_timeout if default_timeout is not None else settings.storage.repository_timeout_sec
        )

    def _lock_for(self, builder_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(builder_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[builder_id] = lock
            return lock

    def effective_timeout(self, timeout: Optional[float]) -> float:
        return timeout if timeout is not None else self._default_timeout

    @contextmanager
    def hold(self, builder_id: str, timeout: Optional[float] = None) -> Iterator[None]:
        """Hold the builder's lock, raising StorageFailure if it can't be had in time."""
        wait = self.effective_timeout(timeout)
        lock = self._lock_for(builder_id)
        if not lock.acquire(timeout=wait):
            logger.warning("Timed out after %.2fs waiting for builder %s", wait, builder_id)
            raise StorageFailure(
                f"Timed out waiting for booking store (builder {builder_id})",
                details={"builder_id": builder_id, "timeout": wait},
            )
        try:
            yield
        finally:
            lock.release()

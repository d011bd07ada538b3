from __future__ import annotations

import threading
from typing import Iterable

from .logger import get_logger
from .models import StoredFile
from .store import TempFileStore

logger = get_logger(__name__)


class CleanupCoordinator:
    """Owns every stored file of one request and deletes them exactly once.

    release() is idempotent; the first call deletes, later calls are no-ops.
    Tracking a file twice is a no-op. Files tracked after release (a worker
    that outlived the request deadline) are deleted on the spot.
    """

    def __init__(self, store: TempFileStore) -> None:
        self.store = store
        self._tracked: list[StoredFile] = []
        self._released = False
        self._lock = threading.Lock()

    @property
    def released(self) -> bool:
        return self._released

    @property
    def tracked(self) -> tuple[StoredFile, ...]:
        with self._lock:
            return tuple(self._tracked)

    def track(self, stored: StoredFile) -> StoredFile:
        with self._lock:
            late = self._released
            if not late and all(item.id != stored.id for item in self._tracked):
                self._tracked.append(stored)
        if late:
            logger.info("Request already cleaned up; deleting late file %s", stored.id)
            self._delete(stored)
        return stored

    def track_all(self, stored: Iterable[StoredFile]) -> None:
        for item in stored:
            self.track(item)

    def release(self) -> list[StoredFile]:
        """Delete all tracked files. Returns the ones whose deletion failed."""
        with self._lock:
            if self._released:
                return []
            self._released = True
            pending, self._tracked = self._tracked, []

        failed = [item for item in pending if not self._delete(item)]
        logger.debug("Released %d stored file(s), %d failed", len(pending), len(failed))
        return failed

    def _delete(self, stored: StoredFile) -> bool:
        try:
            self.store.delete(stored)
        except Exception as exc:
            # The response is already on its way; a leftover file is swept by TTL.
            logger.warning("Cleanup failed for %s: %s", stored.id, exc)
            return False
        return True

    def __enter__(self) -> "CleanupCoordinator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

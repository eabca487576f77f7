# lfsbridge/integrations/LockCache.py
"""LockCache.py
============
TTL cache of Git LFS locks (``path -> owner``).

Querying ``git lfs locks`` hits the LFS server, so the result is kept for
``ttl`` seconds. Whenever an entry owned by the configured lock user
appears or disappears, the on-disk read-only flag of the file is flipped:
files we hold the lock on become writable, the others read-only.
"""

import logging
import threading
import time
from typing import Callable, Optional

from lfsbridge.utils.utils import set_read_only


logger = logging.getLogger("lfsbridge")

DEFAULT_LOCK_TTL = 30.0


# ================= LockCache Class ==============================
class LockCache:
    """Class LockCache
    ===============
    Thread-safe map of locked files with a refresh timestamp.

    Attributes:
        ttl (float): Seconds during which a successful remote query is reused.
        last_updated (float | None): Clock time of the last successful remote query, None before the first.
        clock (Callable[[], float]): Time source, replaceable in tests.

    Methods:
        get_locked_files(): Snapshot of the cache.
        set_locked_files(new, lock_user): Replaces the cache, announcing only real changes.
        add_locked_file(path, owner, lock_user) / remove_locked_file(path, lock_user)
        is_expired(): True when the next query must go to the server.
    """

    def __init__(self, ttl: float = DEFAULT_LOCK_TTL, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self.clock = clock
        self.last_updated: Optional[float] = None
        self._locked_files: dict[str, str] = {}
        self._lock = threading.RLock()

    def get_locked_files(self) -> dict[str, str]:
        with self._lock:
            return dict(self._locked_files)

    def is_expired(self) -> bool:
        with self._lock:
            if self.last_updated is None:
                return True
            return self.clock() - self.last_updated > self.ttl

    def mark_updated(self) -> None:
        with self._lock:
            self.last_updated = self.clock()

    def set_locked_files(self, new_locks: dict[str, str], lock_user: str) -> None:
        """Replaces the cache; removals are announced before additions."""
        with self._lock:
            old_locks = self._locked_files
            for path, owner in old_locks.items():
                if path not in new_locks:
                    self.on_file_lock_changed(path, owner, lock_user, False)
            for path, owner in new_locks.items():
                if path not in old_locks:
                    self.on_file_lock_changed(path, owner, lock_user, True)
            self._locked_files = dict(new_locks)

    def add_locked_file(self, path: str, owner: str, lock_user: str) -> None:
        with self._lock:
            self._locked_files[path] = owner
        self.on_file_lock_changed(path, owner, lock_user, True)

    def remove_locked_file(self, path: str, lock_user: str) -> Optional[str]:
        with self._lock:
            owner = self._locked_files.pop(path, None)
        if owner is not None:
            self.on_file_lock_changed(path, owner, lock_user, False)
        return owner

    def on_file_lock_changed(self, path: str, owner: str, lock_user: str, locked: bool) -> None:
        # Files locked by others keep their attributes
        if owner != lock_user:
            return
        logger.debug("Lock %s for '%s' by %s", "acquired" if locked else "released", path, owner)
        set_read_only(path, not locked)

    def clear(self) -> None:
        with self._lock:
            self._locked_files = {}
            self.last_updated = None

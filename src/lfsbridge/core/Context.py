# lfsbridge/core/Context.py
"""Context Module
==============
Explicit context objects threaded through helpers, parsers and workers
instead of process-wide globals.

- ``SharedContext``: provider-wide mutable state (lockable extensions,
  pending-restart flag, warn-once flags, cached branch names, the lock
  cache, the host, pending reload requests). Owned by the Provider.
- ``RepositoryContext``: immutable per-command snapshot of the repository
  settings, carrying a reference to the shared context.
"""

import dataclasses
import queue
import threading
from dataclasses import dataclass, field
from typing import Optional

from lfsbridge.core.Host import Host, NullHost
from lfsbridge.integrations.LockCache import LockCache


# ================= SharedContext Class ==============================
class SharedContext:
    """Class SharedContext
    ===================
    Provider-wide state shared by every command.

    Attributes:
        host (Host): Capability interface of the embedding application.
        lock_cache (LockCache): TTL cache of LFS locks.
        lockable_extensions (set[str]): Suffixes whose ``lockable`` attribute is set.
        pending_restart (bool): Binaries changed upstream; pulls are refused.
        branch_name (str): Cached current branch ("" when unknown).
        remote_branch_name (str): Cached upstream branch ("" when unknown).
        status_branch_patterns (list[str]): Remote branch globs compared by the remote diff.
        content_dir (str): Project content directory, relative to the repository root.
        project_paths (list[str]): Absolute project dirs and file refreshed when no file is given.
        batch_size (int): Maximum number of files per git invocation.
        bundled_lfs_path (str): Path of a bundled ``git-lfs`` binary, "" to use ``git lfs``.
        pending_reloads (queue.Queue): Paths touched by a pull, reloaded by the foreground tick.
    """

    def __init__(
        self,
        host: Optional[Host] = None,
        lock_cache: Optional[LockCache] = None,
        batch_size: int = 50,
        content_dir: str = "Content/",
        bundled_lfs_path: str = "",
    ) -> None:
        self.host: Host = host if host is not None else NullHost()
        self.lock_cache = lock_cache if lock_cache is not None else LockCache()
        self._lock = threading.RLock()
        self._lockable_extensions: set[str] = set()
        self.pending_restart = False
        self.branch_name = ""
        self.remote_branch_name = ""
        self.status_branch_patterns: list[str] = []
        self.content_dir = content_dir
        self.project_paths: list[str] = []
        self.batch_size = batch_size
        self.bundled_lfs_path = bundled_lfs_path
        self.warned_remote_branch = False
        self.warned_remote_branches_wildcard = False
        self.pending_reloads: queue.Queue[list[str]] = queue.Queue()

    @property
    def lockable_extensions(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._lockable_extensions)

    def add_lockable_extension(self, extension: str) -> None:
        with self._lock:
            self._lockable_extensions.add(extension)

    def is_file_lfs_lockable(self, path: str) -> bool:
        with self._lock:
            return any(path.endswith(ext) for ext in self._lockable_extensions)


@dataclass(frozen=True)
class RepositoryContext:
    """Snapshot of the repository settings taken when a command is created."""

    git_binary_path: str
    repository_root: str
    git_root: str
    uses_lfs_locking: bool
    lock_user: str
    shared: SharedContext = field(default_factory=SharedContext, compare=False, repr=False)

    def with_repository_root(self, repository_root: str) -> "RepositoryContext":
        return dataclasses.replace(self, repository_root=repository_root)

    def without_repository_root(self) -> "RepositoryContext":
        return dataclasses.replace(self, repository_root="")

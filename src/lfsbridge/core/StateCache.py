# lfsbridge/core/StateCache.py
"""StateCache Module
=================
The provider's map of ``absolute path -> FileSourceState`` and the two
changelist buckets.

Mutations happen on the foreground tick only (``update_cached_states``
and ``apply_changelist_status``); reads may come from any thread and are
guarded by a re-entrant lock.

The *ignore-force* set records paths whose state was just refreshed, so
that the next forced refresh requested by the host for the same path can
be skipped once.
"""

import logging
import os
import threading
from datetime import datetime
from typing import Callable, Iterable, Optional, Sequence

from lfsbridge.core.State import (
    Changelist,
    ChangelistState,
    FileSourceState,
    FileState,
    LockState,
    RemoteState,
    TreeState,
)
from lfsbridge.integrations.StatusParser import filename_from_git_status
from lfsbridge.utils.utils import normalize_path


logger = logging.getLogger("lfsbridge")


# ================= StateCache Class ==============================
class StateCache:
    """Class StateCache
    ================
    Thread-safe store of file and changelist states.

    Methods:
        get_state(path): Cached state, creating an unknown one on first access.
        update_cached_states(deltas): Merges worker deltas, field by field.
        apply_changelist_status(lines, root): Rebuilds the Staged/Working buckets.
        remove_file(path) / get_files() / find_states(predicate)
        add_to_ignore_force(path) / remove_from_ignore_force(path)
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._states: dict[str, FileSourceState] = {}
        self._ignore_force: set[str] = set()
        self._changelists: dict[Changelist, ChangelistState] = {
            changelist: ChangelistState(changelist) for changelist in Changelist
        }

    # --- file states ---
    def get_state(self, path: str) -> FileSourceState:
        with self._lock:
            state = self._states.get(path)
            if state is None:
                state = FileSourceState(path)
                self._states[path] = state
            return state

    def find_state(self, path: str) -> Optional[FileSourceState]:
        with self._lock:
            return self._states.get(path)

    def get_files(self) -> list[str]:
        with self._lock:
            return list(self._states)

    def find_states(self, predicate: Callable[[FileSourceState], bool]) -> list[FileSourceState]:
        with self._lock:
            return [s for s in self._states.values() if predicate(s)]

    def remove_file(self, path: str) -> bool:
        with self._lock:
            return self._states.pop(path, None) is not None

    def remove_files(self, paths: Iterable[str]) -> None:
        with self._lock:
            for path in paths:
                self._states.pop(path, None)

    def add_to_ignore_force(self, path: str) -> bool:
        with self._lock:
            if path in self._ignore_force:
                return False
            self._ignore_force.add(path)
            return True

    def remove_from_ignore_force(self, path: str) -> bool:
        with self._lock:
            if path in self._ignore_force:
                self._ignore_force.discard(path)
                return True
            return False

    def update_cached_states(self, deltas: dict[str, FileSourceState], uses_checkout: bool = True) -> bool:
        """Merges every non-UNSET field of each delta into the cache.

        Returns False when there was nothing to merge.
        """
        if not deltas:
            return False
        # Without checkout the host compares timestamps to notice plain saves
        now = datetime.now() if uses_checkout else datetime.min

        with self._lock:
            for path, delta in deltas.items():
                cached = self.get_state(path)
                new = delta.state
                current = cached.state

                if new.file_state != FileState.UNSET:
                    if new.file_state == FileState.ADDED and not cached.is_unknown() and not cached.can_add():
                        # Invalid transition
                        continue
                    current.file_state = new.file_state
                if new.tree_state != TreeState.UNSET:
                    current.tree_state = new.tree_state
                if new.lock_state != LockState.UNSET:
                    current.lock_state = new.lock_state
                    current.lock_user = new.lock_user
                if new.remote_state != RemoteState.UNSET:
                    current.remote_state = new.remote_state
                    current.head_branch = "" if new.remote_state == RemoteState.UP_TO_DATE else new.head_branch

                if delta.pending_resolve_info.is_valid():
                    cached.pending_resolve_info = delta.pending_resolve_info
                    cached.pending_merge_base_file_hash = delta.pending_merge_base_file_hash

                cached.time_stamp = now
                self._ignore_force.add(path)
        return True

    def set_history(self, path: str, history: list, uses_checkout: bool = True) -> None:
        with self._lock:
            state = self.get_state(path)
            state.history = history
            state.time_stamp = datetime.now() if uses_checkout else datetime.min

    # --- changelists ---
    def get_changelist_state(self, changelist: Changelist) -> ChangelistState:
        with self._lock:
            return self._changelists[changelist]

    def get_changelists(self) -> list[Changelist]:
        return list(Changelist)

    def apply_changelist_status(self, lines: Sequence[str], repository_root: str) -> None:
        """Rebuilds both buckets from ``status --porcelain`` lines.

        Column X (index) non-blank puts the file in Staged, else column Y
        non-blank puts it in Working. A file ends up in exactly one bucket.
        """
        with self._lock:
            staged = self._changelists[Changelist.STAGED]
            working = self._changelists[Changelist.WORKING]
            staged.files.clear()
            working.files.clear()

            for line in lines:
                if len(line) < 3:
                    continue
                path = normalize_path(os.path.join(repository_root, filename_from_git_status(line)))
                state = self.get_state(path)
                if not line[0].isspace():
                    working.files.pop(path, None)
                    state.changelist = Changelist.STAGED
                    staged.files[path] = state
                elif not line[1].isspace():
                    staged.files.pop(path, None)
                    state.changelist = Changelist.WORKING
                    working.files[path] = state

            now = datetime.now()
            staged.time_stamp = now
            working.time_stamp = now

    def clear(self) -> None:
        with self._lock:
            self._states.clear()
            self._ignore_force.clear()
            for changelist_state in self._changelists.values():
                changelist_state.files.clear()

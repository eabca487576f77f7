# lfsbridge/core/State.py
"""State Module
============
Per-file revision control state for lfsbridge.

A file's state is a composite of four orthogonal dimensions (file, tree,
lock and remote). Every dimension carries an explicit ``UNSET`` member so
that a worker can describe a *partial* update, which the state cache then
merges into the stored value.

Key Features:
-------------
- ``FileState`` / ``TreeState`` / ``LockState`` / ``RemoteState`` enums.
- ``GitLFSState``: the mutable composite tuple plus lock owner and head branch.
- ``FileSourceState``: everything the host can ask about one file
  (history, resolve info, query predicates, the presentation cascade).
- ``Changelist`` / ``ChangelistState``: the two fixed buckets, Staged and Working.

Classes:
--------
- GitState: Derived presentation state.
- FileSourceState: Cached state of a single file.
- ChangelistState: Files currently in a changelist bucket.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Optional, Union


if TYPE_CHECKING:
    from lfsbridge.core.Revision import Revision


class FileState(StrEnum):
    """What diff reports for the file."""

    UNSET = "unset"
    UNKNOWN = "unknown"
    ADDED = "added"
    COPIED = "copied"
    DELETED = "deleted"
    MODIFIED = "modified"
    RENAMED = "renamed"
    MISSING = "missing"
    UNMERGED = "unmerged"


class TreeState(StrEnum):
    """Where in the working tree or index the file lives."""

    UNSET = "unset"
    UNMODIFIED = "unmodified"
    WORKING = "working"
    STAGED = "staged"
    UNTRACKED = "untracked"
    IGNORED = "ignored"
    NOT_IN_REPO = "not_in_repo"


class LockState(StrEnum):
    """LFS lock status relative to the configured lock user."""

    UNSET = "unset"
    UNKNOWN = "unknown"
    UNLOCKABLE = "unlockable"
    NOT_LOCKED = "not_locked"
    LOCKED = "locked"
    LOCKED_OTHER = "locked_other"


class RemoteState(StrEnum):
    """What the file is doing at the current upstream or tracked status branches."""

    UNSET = "unset"
    UP_TO_DATE = "up_to_date"
    NOT_AT_HEAD = "not_at_head"
    NOT_LATEST = "not_latest"


class GitState(StrEnum):
    """Presentation state derived from the composite by ``FileSourceState.get_git_state``."""

    NOT_AT_HEAD = "NotAtHead"
    LOCKED_OTHER = "LockedOther"
    NOT_LATEST = "NotLatest"
    UNMERGED = "Unmerged"
    ADDED = "Added"
    DELETED = "Deleted"
    MODIFIED = "Modified"
    CHECKED_OUT = "CheckedOut"
    UNTRACKED = "Untracked"
    LOCKABLE = "Lockable"
    UNMODIFIED = "Unmodified"
    IGNORED = "Ignored"
    NONE = "None"


class Changelist(StrEnum):
    """The two fixed changelist buckets."""

    STAGED = "Staged"
    WORKING = "Working"


@dataclass
class GitLFSState:
    """Composite state tuple; also used as a partial delta when fields are UNSET."""

    file_state: FileState = FileState.UNKNOWN
    tree_state: TreeState = TreeState.NOT_IN_REPO
    lock_state: LockState = LockState.UNKNOWN
    lock_user: str = ""
    remote_state: RemoteState = RemoteState.UP_TO_DATE
    head_branch: str = ""

    @classmethod
    def unset(cls) -> "GitLFSState":
        """A delta that changes nothing until fields are assigned."""
        return cls(FileState.UNSET, TreeState.UNSET, LockState.UNSET, "", RemoteState.UNSET, "")


@dataclass
class ResolveInfo:
    """Base and remote sides of a conflicted file, from ``ls-files --unmerged``."""

    base_file: str = ""
    base_revision: str = ""
    remote_file: str = ""
    remote_revision: str = ""

    def is_valid(self) -> bool:
        return bool(self.base_revision and self.remote_revision)


_DISPLAY_NAMES = {
    GitState.NOT_AT_HEAD: "Not current",
    GitState.UNMERGED: "Conflicted",
    GitState.ADDED: "Opened for add",
    GitState.UNTRACKED: "Not Under Revision Control",
    GitState.DELETED: "Marked for delete",
    GitState.MODIFIED: "Checked out",
    GitState.CHECKED_OUT: "Checked out",
    GitState.IGNORED: "Ignore",
    GitState.LOCKABLE: "Read only",
    GitState.NONE: "Unknown",
}

_TOOLTIPS = {
    GitState.NOT_AT_HEAD: "The file(s) are not at the head revision",
    GitState.UNMERGED: "The contents of the item conflict with updates received from the repository.",
    GitState.ADDED: "The file(s) are opened for add",
    GitState.UNTRACKED: "Item is not under revision control.",
    GitState.DELETED: "The file(s) are marked for delete",
    GitState.MODIFIED: "The file(s) are checked out",
    GitState.CHECKED_OUT: "The file(s) are checked out",
    GitState.IGNORED: "Item is being ignored.",
    GitState.LOCKABLE: "The file(s) are marked locally as read-only",
    GitState.NONE: "Unknown revision control state",
}


# ================= FileSourceState Class ==============================
class FileSourceState:
    """Class FileSourceState
    =====================
    Cached revision control state of one file.

    Attributes:
        local_filename (str): Absolute, normalised path of the file.
        state (GitLFSState): The composite state tuple.
        history (list[Revision]): Newest first; filled by UpdateStatus with history.
        pending_resolve_info (ResolveInfo): Conflict metadata for Unmerged files.
        pending_merge_base_file_hash (str): Blob sha of the merge base.
        head_action (str): Action on the head branch when modified elsewhere.
        head_commit (str): Commit on the head branch when modified elsewhere.
        time_stamp (datetime): Last time the state was refreshed.
        changelist (Changelist | None): Bucket the file was last seen in.
    """

    def __init__(self, local_filename: str, state: Optional[GitLFSState] = None) -> None:
        self.local_filename = local_filename
        self.state: GitLFSState = state if state is not None else GitLFSState()
        self.history: list["Revision"] = []
        self.pending_resolve_info = ResolveInfo()
        self.pending_merge_base_file_hash = ""
        self.head_action = "Changed"
        self.head_commit = "Unknown"
        self.time_stamp = datetime.now()
        self.changelist: Optional[Changelist] = None

    def __repr__(self) -> str:
        s = self.state
        return (
            f"FileSourceState({self.local_filename!r}, {s.file_state}, {s.tree_state}, "
            f"{s.lock_state}, {s.remote_state})"
        )

    # --- History ---
    def get_history_size(self) -> int:
        return len(self.history)

    def get_history_item(self, index: int) -> "Revision":
        return self.history[index]

    def find_history_revision(self, revision: Union[int, str]) -> Optional["Revision"]:
        """Looks a revision up by its number, or by its short commit id when given a string."""
        for rev in self.history:
            if isinstance(revision, int):
                if rev.revision_number == revision:
                    return rev
            elif rev.revision == revision:
                return rev
        return None

    def get_base_rev_for_merge(self) -> Optional["Revision"]:
        # Matches on the blob sha of the file, not on the commit id
        for rev in self.history:
            if rev.file_hash == self.pending_merge_base_file_hash:
                return rev
        return None

    def get_current_revision(self) -> Optional["Revision"]:
        return None

    def get_resolve_info(self) -> ResolveInfo:
        return self.pending_resolve_info

    # --- Queries ---
    def can_check_in(self) -> bool:
        if self.is_added():
            return True
        if not self.is_current() or self.is_conflicted():
            return False
        if self.state.lock_state == LockState.LOCKED:
            return True
        return (
            self.state.lock_state != LockState.LOCKED_OTHER
            and self.is_modified()
            and self.is_source_controlled()
        )

    def can_checkout(self) -> bool:
        if self.state.lock_state == LockState.UNLOCKABLE:
            return False
        # Checking out an out-of-date binary would almost certainly end in a conflict
        return self.state.lock_state == LockState.NOT_LOCKED and self.is_current()

    def is_checked_out(self) -> bool:
        if self.state.lock_state == LockState.UNLOCKABLE:
            return self.is_source_controlled()
        return self.state.lock_state == LockState.LOCKED or (
            self.state.file_state == FileState.MODIFIED
            and self.state.lock_state != LockState.LOCKED_OTHER
        )

    def is_checked_out_other(self) -> bool:
        return self.state.lock_state == LockState.LOCKED_OTHER

    def checked_out_by(self) -> str:
        """Lock owner to display, or "" when the file is modified on another branch."""
        if self.state.lock_state == LockState.LOCKED_OTHER or (
            self.state.lock_state == LockState.LOCKED and not self.is_modified_in_other_branch()
        ):
            return self.state.lock_user
        return ""

    def is_checked_out_in_other_branch(self) -> bool:
        # Locks are not per branch
        return False

    def is_modified_in_other_branch(self) -> bool:
        return self.state.remote_state == RemoteState.NOT_LATEST

    def get_other_branch_head_modification(self) -> Optional[tuple[str, str, int]]:
        """Returns ``(head_branch, action, head_change_list)`` when modified on a status branch."""
        if not self.is_modified_in_other_branch():
            return None
        return self.state.head_branch, self.head_action, 0

    def is_current(self) -> bool:
        return self.state.remote_state not in (RemoteState.NOT_AT_HEAD, RemoteState.NOT_LATEST)

    def is_source_controlled(self) -> bool:
        return self.state.tree_state not in (
            TreeState.UNTRACKED, TreeState.IGNORED, TreeState.NOT_IN_REPO
        )

    def is_added(self) -> bool:
        return self.state.file_state == FileState.ADDED

    def is_deleted(self) -> bool:
        return self.state.file_state == FileState.DELETED

    def is_ignored(self) -> bool:
        return self.state.tree_state == TreeState.IGNORED

    def can_edit(self) -> bool:
        return self.is_checked_out() or self.is_added()

    def can_delete(self) -> bool:
        if not self.is_current():
            return False
        return not self.is_checked_out_other() and self.is_source_controlled()

    def is_unknown(self) -> bool:
        return (
            self.state.file_state == FileState.UNKNOWN
            and self.state.tree_state == TreeState.NOT_IN_REPO
        )

    def is_modified(self) -> bool:
        return self.state.tree_state in (TreeState.WORKING, TreeState.STAGED)

    def can_add(self) -> bool:
        return self.state.tree_state == TreeState.UNTRACKED

    def is_conflicted(self) -> bool:
        return self.state.file_state == FileState.UNMERGED

    def can_revert(self) -> bool:
        # Also true when someone else holds the lock but we changed the file locally
        return self.can_check_in() or self.is_modified()

    # --- Presentation ---
    def get_git_state(self) -> GitState:
        """Collapses the composite into the single state the host displays."""
        s = self.state
        if s.remote_state == RemoteState.NOT_AT_HEAD:
            return GitState.NOT_AT_HEAD
        if s.lock_state == LockState.LOCKED_OTHER:
            return GitState.LOCKED_OTHER
        if s.remote_state == RemoteState.NOT_LATEST:
            return GitState.NOT_LATEST

        if s.file_state == FileState.UNMERGED:
            return GitState.UNMERGED
        if s.file_state == FileState.ADDED:
            return GitState.ADDED
        if s.file_state == FileState.DELETED:
            return GitState.DELETED
        if s.file_state == FileState.MODIFIED:
            return GitState.MODIFIED

        if s.tree_state == TreeState.UNTRACKED:
            return GitState.UNTRACKED
        if s.lock_state == LockState.LOCKED:
            return GitState.CHECKED_OUT

        if self.is_source_controlled():
            if self.can_checkout():
                return GitState.LOCKABLE
            return GitState.UNMODIFIED
        return GitState.NONE

    def get_display_name(self) -> str:
        git_state = self.get_git_state()
        if git_state == GitState.LOCKED_OTHER:
            return f"Checked out by: {self.state.lock_user}"
        if git_state == GitState.NOT_LATEST:
            return f"Modified in branch: {self.state.head_branch}"
        return _DISPLAY_NAMES.get(git_state, "")

    def get_display_tooltip(self) -> str:
        git_state = self.get_git_state()
        if git_state == GitState.LOCKED_OTHER:
            return f"Checked out by: {self.state.lock_user}"
        if git_state == GitState.NOT_LATEST:
            return (
                f"Modified in branch: {self.state.head_branch} "
                f"CL:{self.head_commit} ({self.head_action})"
            )
        return _TOOLTIPS.get(git_state, "")


@dataclass
class ChangelistState:
    """Files currently sitting in one of the two changelist buckets."""

    changelist: Changelist
    files: dict[str, FileSourceState] = field(default_factory=dict)
    time_stamp: datetime = field(default_factory=datetime.now)

    def get_display_text(self) -> str:
        return self.changelist.value

    def get_description_text(self) -> str:
        return self.changelist.value

    def get_files_states_num(self) -> int:
        return len(self.files)

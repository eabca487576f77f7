# lfsbridge/core/Workers.py
"""Workers Module
==============
Operations the host can request and the workers that carry them out.

An *operation* is a small record naming what the host wants (``CheckIn``
with a description, ``UpdateStatus`` with or without history...) and
collecting the messages produced for it. A *worker* executes one
operation on a worker thread (``execute``) and later, on the foreground
tick, merges the state deltas it staged into the state cache
(``update_states``).

Key Features:
-------------
- One worker class per verb, registered by operation name (``create_worker``).
- ``run_update_status``: the shared status refresh (porcelain status, lock
  enrichment, changelist lines and remote diff) used after every mutation.
- CheckIn: commit, push with fetch/pull/push retry on a stale remote, and
  LFS unlock only after a confirmed push.
- Revert: partition by cached state, ``rm``/``reset``/``checkout`` with
  retries for files still held open by the host.
"""

import logging
import os
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, ClassVar, Iterable, Optional, Sequence

from lfsbridge.core.Command import REDUNDANT_ERROR_FILTER, Command, Concurrency, InvalidChangelistError
from lfsbridge.core.Revision import Revision
from lfsbridge.core.State import (
    Changelist,
    FileSourceState,
    FileState,
    GitLFSState,
    LockState,
    RemoteState,
    TreeState,
)
from lfsbridge.integrations.GitHelpers import GitHelpers
from lfsbridge.integrations.RemoteDiff import check_remote
from lfsbridge.integrations.StatusParser import get_history, parse_status_results, status_results_by_path
from lfsbridge.utils.utils import ScopedTempFile, absolute_filenames, relative_filenames


if TYPE_CHECKING:
    from lfsbridge.core.StateCache import StateCache


logger = logging.getLogger("lfsbridge")

PUSH_PARAMS = ["-u", "origin", "HEAD"]
REVERT_CHECKOUT_ATTEMPTS = 10
REVERT_CHECKOUT_DELAY = 0.1

GIT_NOT_FOUND_MESSAGE = (
    "Failed to enable Git revision control. You need to install Git and ensure the plugin "
    "has a valid path to the git executable."
)
REMOTE_FAILED_MESSAGE = (
    "Failed Git remote connection. Ensure your repo is initialized, and check your connection to the Git host."
)
PULL_REQUIRED_TITLE = "Git Pull Required"
PULL_REQUIRED_MESSAGE = (
    "Git Push failed because there are changes you need to pull.\n\n"
    "An attempt was made to pull, but failed, because while the Unreal Editor is open, "
    "files cannot always be updated.\n\n"
    "Please exit the editor, and update the project again."
)


# ================= Operations ==============================

@dataclass
class Operation:
    """Base operation: a name plus the messages reported back to the host."""

    name: ClassVar[str] = ""

    info_messages: list[str] = field(default_factory=list)
    error_messages: list[str] = field(default_factory=list)
    success_message: str = ""
    error_text: str = ""

    def add_info_message(self, message: str) -> None:
        self.info_messages.append(message)

    def add_error_message(self, message: str) -> None:
        self.error_messages.append(message)

    def get_in_progress_string(self) -> str:
        return f"{self.name}..."


@dataclass
class Connect(Operation):
    name: ClassVar[str] = "Connect"

    def get_in_progress_string(self) -> str:
        return "Connecting to revision control..."


@dataclass
class CheckOut(Operation):
    name: ClassVar[str] = "CheckOut"


@dataclass
class CheckIn(Operation):
    name: ClassVar[str] = "CheckIn"

    description: str = ""

    def get_in_progress_string(self) -> str:
        return "Checking file(s) into revision control..."


@dataclass
class Revert(Operation):
    name: ClassVar[str] = "Revert"


@dataclass
class Sync(Operation):
    name: ClassVar[str] = "Sync"

    def get_in_progress_string(self) -> str:
        return "Syncing file(s)..."


@dataclass
class Fetch(Operation):
    name: ClassVar[str] = "Fetch"

    update_status: bool = False

    def get_in_progress_string(self) -> str:
        return "Fetching from remote origin..."


@dataclass
class FetchOperation(Fetch):
    """Fetch issued by the background runner; refreshes the project status by default."""

    update_status: bool = True


@dataclass
class UpdateStatus(Operation):
    name: ClassVar[str] = "UpdateStatus"

    update_history: bool = False
    update_modified_state: bool = False


@dataclass
class MarkForAdd(Operation):
    name: ClassVar[str] = "MarkForAdd"


@dataclass
class Delete(Operation):
    name: ClassVar[str] = "Delete"


@dataclass
class Copy(Operation):
    name: ClassVar[str] = "Copy"


@dataclass
class Resolve(Operation):
    name: ClassVar[str] = "Resolve"


@dataclass
class MoveToChangelist(Operation):
    name: ClassVar[str] = "MoveToChangelist"


@dataclass
class UpdateChangelistsStatus(Operation):
    name: ClassVar[str] = "UpdateChangelistsStatus"


# ================= Shared helpers ==============================

def collect_new_states(
    files: Iterable[str],
    states: dict[str, FileSourceState],
    file_state: FileState = FileState.UNSET,
    tree_state: TreeState = TreeState.UNSET,
    lock_state: LockState = LockState.UNSET,
    remote_state: RemoteState = RemoteState.UNSET,
    lock_user: str = "",
) -> bool:
    """Stages the same partial delta for every file, on top of any delta already staged."""
    any_file = False
    for file in files:
        any_file = True
        staged = states.get(file)
        if staged is None:
            staged = FileSourceState(file, GitLFSState.unset())
            states[file] = staged
        if file_state != FileState.UNSET:
            staged.state.file_state = file_state
        if tree_state != TreeState.UNSET:
            staged.state.tree_state = tree_state
        if lock_state != LockState.UNSET:
            staged.state.lock_state = lock_state
            staged.state.lock_user = lock_user
        if remote_state != RemoteState.UNSET:
            staged.state.remote_state = remote_state
    return any_file


def update_changelists(command: Command) -> bool:
    """Records the porcelain lines of the content dir; the buckets are rebuilt on tick."""
    ok, lines = command.helpers().get_status_no_locks(False, [command.ctx.shared.content_dir])
    if ok:
        command.changelist_status = lines
    return ok


def run_update_status(command: Command, files: Sequence[str]) -> tuple[bool, dict[str, FileSourceState]]:
    """Refreshes the state of ``files`` (files or directories) inside the repository.

    Paths outside the repository root are dropped; returns ``(False, {})``
    when nothing is left.
    """
    root = command.ctx.repository_root.rstrip("/")
    repo_files = [f for f in files if f == root or f.startswith(root + "/")]
    if not repo_files:
        return False, {}

    helpers = command.helpers()
    # Ignored files are not queried: nothing the host tracks lives in ignored paths
    ok, lines = helpers.get_status_no_locks(True, repo_files)
    results = status_results_by_path(lines, root)

    states: dict[str, FileSourceState] = {}
    if ok:
        states = parse_status_results(helpers, repo_files, results)

    update_changelists(command)
    check_remote(helpers, states)
    return ok, states


def _dedup(paths: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(paths))


# ================= Worker Base Class ==============================
class Worker:
    """Class Worker
    ============
    Base class of every worker.

    Attributes:
        name (str): Name of the operation the worker serves.
        states (dict[str, FileSourceState]): Deltas staged by ``execute``.

    Methods:
        execute(command): Runs on a worker thread; returns success.
        update_states(cache, uses_checkout): Runs on the foreground tick; returns
            whether the cache changed.
    """

    name: ClassVar[str] = ""

    def __init__(self) -> None:
        self.states: dict[str, FileSourceState] = {}

    def execute(self, command: Command) -> bool:
        raise NotImplementedError

    def update_states(self, cache: "StateCache", uses_checkout: bool = True) -> bool:
        return cache.update_cached_states(self.states, uses_checkout)

    def refresh(self, command: Command, files: Sequence[str]) -> bool:
        """Runs a status refresh and stages its result."""
        ok, states = run_update_status(command, files)
        if ok:
            self.states.update(states)
        return ok


class ConnectWorker(Worker):
    name = "Connect"

    def execute(self, command: Command) -> bool:
        # Git has no login: a synchronous connect is only the host probing for a connection
        if command.concurrency == Concurrency.SYNCHRONOUS:
            command.successful = True
            return True

        if not command.ctx.git_binary_path:
            command.result_info.error_messages.append(GIT_NOT_FOUND_MESSAGE)
            command.operation.error_text = GIT_NOT_FOUND_MESSAGE
            command.successful = False
            return False

        command.successful = command.helpers().run_ls_remote(print_url=False, heads_only=True)
        if not command.successful:
            command.result_info.error_messages.append(REMOTE_FAILED_MESSAGE)
            command.operation.error_text = REMOTE_FAILED_MESSAGE
        return command.successful

    def update_states(self, cache: "StateCache", uses_checkout: bool = True) -> bool:
        return False


class CheckOutWorker(Worker):
    name = "CheckOut"

    def execute(self, command: Command) -> bool:
        if not command.files:
            command.successful = True
            return True

        ctx = command.ctx
        if not ctx.uses_lfs_locking:
            command.successful = False
            return False

        helpers = command.helpers()
        lockable = [f for f in command.files if helpers.is_file_lfs_lockable(f)]
        if not lockable:
            command.successful = True
            return True

        # Files we already hold are not locked a second time
        to_lock = helpers.get_locked_files(lockable)
        to_lock = [f for f in lockable if f not in to_lock]
        if to_lock:
            command.successful = helpers.lock_files(to_lock)
            if not command.successful:
                return False
            for path in to_lock:
                ctx.shared.lock_cache.add_locked_file(path, ctx.lock_user, ctx.lock_user)

        collect_new_states(lockable, self.states, lock_state=LockState.LOCKED, lock_user=ctx.lock_user)
        command.successful = True
        return True


def _parse_commit_results(lines: Sequence[str]) -> str:
    if lines:
        return f"Commited {lines[0]}."
    return "Submitted revision."


def _is_push_out_of_date(errors: Iterable[str]) -> bool:
    for error in errors:
        if "[rejected]" in error and ("non-fast-forward" in error or "fetch first" in error):
            return True
        if "cannot lock ref" in error:
            return True
    return False


def _is_commit_empty(lines: Iterable[str]) -> bool:
    return any("nothing to commit" in line or "no changes added to commit" in line for line in lines)


class CheckInWorker(Worker):
    """Commit, push and unlock.

    A commit that advanced local history reports success even if nothing
    could be pushed; a push that failed for any reason other than a stale
    remote is a failure. Files are only unlocked after a push went through.
    """

    name = "CheckIn"

    def __init__(self) -> None:
        super().__init__()
        self.removed_files: list[str] = []

    def execute(self, command: Command) -> bool:
        ctx = command.ctx
        helpers = command.helpers()
        info = command.result_info.info_messages
        operation = command.operation
        do_commit = bool(command.files)

        with ScopedTempFile(operation.description if do_commit else "") as message_file:
            if do_commit:
                relative = relative_filenames(command.files, ctx.repository_root)
                first_line = len(info)
                committed = helpers.run_add(False, relative) and helpers.run_commit(message_file.filename, relative)
                if committed:
                    self._on_committed(command, info[first_line:])
                elif _is_commit_empty(info[first_line:]):
                    logger.info("Nothing to commit, pushing pending commits")
                else:
                    self.refresh(command, command.files)
                    command.successful = False
                    return False

        # Everything committed locally but not pushed, not only the commit we just made
        ok_remote, remote_branch = helpers.get_remote_branch_name()
        if ok_remote and remote_branch:
            diff_ok, committed_files = helpers.run_diff(["--name-only", f"{remote_branch}...HEAD", "--"])
        else:
            diff_ok, committed_files = helpers.get_log(["--branches", "--not", "--remotes", "--name-only", "--pretty="])
            committed_files = _dedup(committed_files)

        files_to_check_in = list(command.files)
        if diff_ok:
            unpushed = bool(committed_files)
            committed_files = absolute_filenames(committed_files, ctx.repository_root)
            files_to_check_in += [f for f in committed_files if helpers.is_file_lfs_lockable(f)]
        else:
            # Push anyway when we cannot tell
            unpushed = True
        files_to_check_in = _dedup(files_to_check_in)

        pulled_files: list[str] = []
        if unpushed:
            if command.is_cancelled:
                return False
            command.successful = helpers.run_push(PUSH_PARAMS)
            if not command.successful and _is_push_out_of_date(command.result_info.error_messages):
                if helpers.fetch_remote(False):
                    pulled, pulled_files = helpers.pull_origin()
                    if pulled:
                        command.successful = helpers.run_push(PUSH_PARAMS)
                if not command.successful and not ctx.shared.pending_restart:
                    ctx.shared.host.on_notify("error", f"{PULL_REQUIRED_TITLE}\n\n{PULL_REQUIRED_MESSAGE}")
                    logger.info("Push failed because we're out of date, prompting user to resolve manually")
        else:
            command.successful = True

        if ctx.uses_lfs_locking and command.successful:
            locked = helpers.get_locked_files(files_to_check_in)
            if locked:
                # Not required for the check-in to succeed
                helpers.unlock_files(locked)

        to_update = list(files_to_check_in)
        if unpushed:
            to_update += pulled_files
        to_update += committed_files if diff_ok else []
        ok, states = run_update_status(command, _dedup(to_update))
        if ok:
            self.states.update(states)
        command.remove_redundant_errors(REDUNDANT_ERROR_FILTER)
        return command.successful

    def _on_committed(self, command: Command, commit_output: Sequence[str]) -> None:
        cache = command.state_cache
        if cache is not None:
            for path in command.files:
                state = cache.find_state(path)
                if state is not None and state.is_deleted():
                    self.removed_files.append(path)

        message = commit_output[0] if commit_output else ""
        command.operation.success_message = _parse_commit_results(commit_output)
        logger.info(f"commit successful: {message}")
        _, command.commit_id, command.commit_summary = command.helpers().get_commit_info()

    def update_states(self, cache: "StateCache", uses_checkout: bool = True) -> bool:
        # Committed deletions are gone for good
        cache.remove_files(self.removed_files)
        self.states = {p: s for p, s in self.states.items() if p not in self.removed_files}
        return super().update_states(cache, uses_checkout) or bool(self.removed_files)


class MarkForAddWorker(Worker):
    """``git add``; shared by Copy, which only has to add the redirector left by a move."""

    name = "MarkForAdd"

    def execute(self, command: Command) -> bool:
        if not command.files:
            command.successful = True
            return True

        command.successful = command.helpers().run_add(False, command.files)
        if command.successful:
            collect_new_states(command.files, self.states, FileState.ADDED, TreeState.STAGED)
        else:
            self.refresh(command, command.files)
            command.remove_redundant_errors(REDUNDANT_ERROR_FILTER)
        return command.successful


class CopyWorker(MarkForAddWorker):
    name = "Copy"


class DeleteWorker(Worker):
    name = "Delete"

    def execute(self, command: Command) -> bool:
        if not command.files:
            command.successful = True
            return True

        command.successful = command.helpers().run_remove(command.files)
        if command.successful:
            collect_new_states(command.files, self.states, FileState.DELETED, TreeState.STAGED)
        else:
            self.refresh(command, command.files)
            command.remove_redundant_errors(REDUNDANT_ERROR_FILTER)
        return command.successful


def partition_for_revert(
    files: Sequence[str],
    cache: Optional["StateCache"],
) -> tuple[list[str], list[str], list[str]]:
    """Splits files by cached state into ``(missing, all_existing, other_than_added)``.

    ``all_existing`` holds present files that are added or modified,
    ``other_than_added`` the present files to restore from HEAD (modified, or
    locked but unmodified).
    """
    missing: list[str] = []
    all_existing: list[str] = []
    other_than_added: list[str] = []
    if cache is None:
        return missing, all_existing, other_than_added

    for path in files or cache.get_files():
        state = cache.find_state(path) or FileSourceState(path)
        if os.path.exists(path):
            if state.is_added():
                all_existing.append(path)
            elif state.is_modified():
                other_than_added.append(path)
                all_existing.append(path)
            elif state.can_revert():
                other_than_added.append(path)
        elif state.is_source_controlled() and not state.is_deleted():
            # Already queued for deletion otherwise
            missing.append(path)
    return missing, all_existing, other_than_added


class RevertWorker(Worker):
    name = "Revert"

    def execute(self, command: Command) -> bool:
        if not command.files and command.ignored_files:
            # Only ignored files were asked for; never turn that into a full revert
            command.successful = True
            return True

        helpers = command.helpers()
        ctx = command.ctx
        missing, all_existing, other_than_added = partition_for_revert(command.files, command.state_cache)
        success = True

        if not command.files:
            success &= helpers.run_reset(hard=True)
            success &= helpers.run_clean(force=True, remove_directories=True)
        else:
            if missing:
                # Added files deleted from disk must leave the index
                success &= helpers.run_remove(missing)
            if all_existing:
                success &= helpers.run_reset(False, all_existing)
            if other_than_added:
                if command.is_cancelled:
                    command.successful = False
                    return False
                success &= self._checkout_with_retries(helpers, other_than_added)

        # A file that could not be reverted keeps its lock
        if ctx.uses_lfs_locking and success:
            locked = helpers.get_locked_files(other_than_added)
            if locked:
                success &= helpers.unlock_files(locked)

        to_update = list(command.files)
        if not command.files:
            to_update = _dedup(missing + all_existing + other_than_added)
        command.successful = success
        ok, states = run_update_status(command, to_update)
        if ok:
            self.states.update(states)
        command.remove_redundant_errors(REDUNDANT_ERROR_FILTER)
        return command.successful

    @staticmethod
    def _checkout_with_retries(helpers: GitHelpers, files: Sequence[str]) -> bool:
        # The host may still hold the files open for a moment
        for attempt in range(REVERT_CHECKOUT_ATTEMPTS):
            if helpers.run_checkout(files):
                return True
            logger.debug(f"checkout attempt {attempt + 1} failed for {len(files)} file(s)")
            if attempt < REVERT_CHECKOUT_ATTEMPTS - 1:
                time.sleep(REVERT_CHECKOUT_DELAY)
        return False


class SyncWorker(Worker):
    name = "Sync"

    def execute(self, command: Command) -> bool:
        helpers = command.helpers()
        if not helpers.fetch_remote(False):
            command.successful = False
            return False

        command.successful, touched = helpers.pull_origin(command.files)

        to_update = list(command.files or command.ctx.shared.project_paths)
        ok, states = run_update_status(command, _dedup(to_update + touched))
        if ok:
            self.states.update(states)
        command.remove_redundant_errors(REDUNDANT_ERROR_FILTER)
        _, command.commit_id, command.commit_summary = helpers.get_commit_info()
        return command.successful


class FetchWorker(Worker):
    name = "Fetch"

    def execute(self, command: Command) -> bool:
        ctx = command.ctx
        command.successful = command.helpers().fetch_remote(ctx.uses_lfs_locking)
        if not command.successful:
            return False

        if getattr(command.operation, "update_status", False):
            ok, states = run_update_status(command, ctx.shared.project_paths)
            command.successful = ok
            command.remove_redundant_errors(REDUNDANT_ERROR_FILTER)
            if command.successful:
                self.states.update(states)
        return command.successful


class UpdateStatusWorker(Worker):
    name = "UpdateStatus"

    def __init__(self) -> None:
        super().__init__()
        self.histories: dict[str, list[Revision]] = {}

    def execute(self, command: Command) -> bool:
        helpers = command.helpers()
        operation = command.operation

        if command.files:
            ok, states = run_update_status(command, command.files)
            command.successful = ok
            command.remove_redundant_errors(REDUNDANT_ERROR_FILTER)
            if command.successful:
                self.states.update(states)
                if getattr(operation, "update_history", False):
                    for path, state in states.items():
                        if command.is_cancelled:
                            break
                        history: list[Revision] = []
                        if state.is_conflicted():
                            # The tip of the branch being merged comes first
                            _, merge_history = get_history(helpers, path, True)
                            history += merge_history
                        ok_history, head_history = get_history(helpers, path, False)
                        command.successful = command.successful and ok_history
                        history += head_history
                        self.histories[path] = history
        else:
            # Only the project directories and project file
            ok, states = run_update_status(command, command.ctx.shared.project_paths)
            command.successful = ok
            command.remove_redundant_errors(REDUNDANT_ERROR_FILTER)
            if command.successful:
                self.states.update(states)

        _, command.commit_id, command.commit_summary = helpers.get_commit_info()
        return command.successful

    def update_states(self, cache: "StateCache", uses_checkout: bool = True) -> bool:
        updated = super().update_states(cache, uses_checkout)
        for path, history in self.histories.items():
            cache.set_history(path, history, uses_checkout)
            updated = True
        return updated


class ResolveWorker(Worker):
    name = "Resolve"

    def execute(self, command: Command) -> bool:
        # Adding a conflicted file is how git marks it resolved
        command.successful = command.helpers().run_add(False, command.files)
        ok, states = run_update_status(command, command.files)
        if ok:
            self.states.update(states)
        command.remove_redundant_errors(REDUNDANT_ERROR_FILTER)
        return command.successful


class MoveToChangelistWorker(Worker):
    name = "MoveToChangelist"

    def execute(self, command: Command) -> bool:
        helpers = command.helpers()
        if command.changelist == Changelist.STAGED:
            success = helpers.run_add(False, command.files)
        elif command.changelist == Changelist.WORKING:
            success = helpers.run_restore(True, command.files)
        else:
            raise InvalidChangelistError(f"Cannot move files to changelist '{command.changelist}'")

        if success:
            ok, states = run_update_status(command, command.files)
            if ok:
                self.states.update(states)
        command.successful = success
        return success


class UpdateChangelistsStatusWorker(Worker):
    name = "UpdateChangelistsStatus"

    def execute(self, command: Command) -> bool:
        command.successful = update_changelists(command)
        return command.successful

    def update_states(self, cache: "StateCache", uses_checkout: bool = True) -> bool:
        return True


# ================= Registry ==============================

WORKERS: dict[str, type[Worker]] = {
    worker.name: worker
    for worker in (
        ConnectWorker,
        CheckOutWorker,
        CheckInWorker,
        MarkForAddWorker,
        DeleteWorker,
        RevertWorker,
        SyncWorker,
        FetchWorker,
        UpdateStatusWorker,
        CopyWorker,
        ResolveWorker,
        MoveToChangelistWorker,
        UpdateChangelistsStatusWorker,
    )
}


def create_worker(operation_name: str) -> Optional[Worker]:
    """New worker for ``operation_name``, or None when the operation is not supported."""
    worker_class = WORKERS.get(operation_name)
    return worker_class() if worker_class is not None else None

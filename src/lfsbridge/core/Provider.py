# lfsbridge/core/Provider.py
"""Provider Module
===============
The revision control provider: the single surface the host talks to.

The provider owns the state cache, the shared context (lock cache,
lockable extensions, pending-restart flag...), the work queue and the
background runner. The host asks it to ``execute`` operations, either
synchronously or asynchronously, and calls ``tick`` regularly on its
foreground thread; every cache mutation and every completion callback
happens inside ``tick``.

Key Features:
-------------
- Lifecycle: ``init`` (git discovery, repository probe, runner start) and ``close``.
- ``execute``: builds a Command for an operation and either waits on it or queues it.
- ``tick``: drains at most one completed command per call.
- State queries: ``get_state`` with forced refresh, changelists, status text.
- Settings: git binary path, LFS locking, LFS user name, persisted on change.
"""

import itertools
import logging
import os
import queue
import sys
import threading
import time
from typing import Any, Callable, Optional, Sequence

from lfsbridge.core.Command import Command, CommandResult, CompletionCallback, UnsupportedOperationError
from lfsbridge.core.Context import RepositoryContext, SharedContext
from lfsbridge.core.Host import Host
from lfsbridge.core.Runner import DEFAULT_REFRESH_INTERVAL, Runner
from lfsbridge.core.Settings import Settings
from lfsbridge.core.State import Changelist, ChangelistState, FileSourceState
from lfsbridge.core.StateCache import StateCache
from lfsbridge.core.WorkQueue import WorkQueue
from lfsbridge.core.Workers import Connect, Operation, UpdateStatus, create_worker, run_update_status
from lfsbridge.integrations.GitCommand import (
    GitVersion,
    check_git_availability,
    find_git_binary_path,
    find_root_directory,
    lfs_binary_name,
)
from lfsbridge.integrations.GitHelpers import GitHelpers
from lfsbridge.integrations.LockCache import LockCache
from lfsbridge.utils.utils import DEFAULT_CONFIG, absolute_filenames, normalize_path


logger = logging.getLogger("lfsbridge")

PROVIDER_NAME = "Git LFS"
SYNC_WAIT_INTERVAL = 0.01
COMMAND_FAILED_MESSAGE = (
    "Git command failed. Please check your connection and try again, "
    "or check the output log for more information."
)

StateChangedCallback = Callable[[], Any]


# ================= Provider Class ==============================
class Provider:
    """Class Provider
    ==============
    Git LFS revision control provider.

    Attributes:
        host (Host): Capabilities of the embedding application.
        settings (Settings): Persisted git_lfs settings.
        project_dir (str): Absolute project directory; the repository is searched from there.
        shared (SharedContext): Provider-wide state handed to every command.
        state_cache (StateCache): Cached file and changelist states.
        git_version (GitVersion | None): Version of the configured git binary.
        path_to_repository_root / path_to_git_root (str): Repository and ``.git`` roots.
        user_name / user_email (str): From ``git config``.
        commit_id / commit_summary (str): Head commit as of the last drained command.
        git_available (bool): The git binary answered ``git version``.
        git_repository_found (bool): The project lives in a git repository with a branch.

    Methods:
        init(force_connection): Discovers git and the repository.
        close(): Stops the runner and forgets everything cached.
        execute(operation, files, asynchronous, callback, changelist): Runs an operation.
        tick(): Drains one completed command.
        get_state(files, force_update): Cached states, optionally refreshed first.
    """

    def __init__(
        self,
        host: Host,
        settings: Optional[Settings] = None,
        config: Optional[dict[str, Any]] = None,
        project_dir: str = "",
    ) -> None:
        provider_config = dict(DEFAULT_CONFIG["provider"])
        provider_config.update((config or {}).get("provider", {}))
        self.config = provider_config

        self.host = host
        self.settings = settings if settings is not None else Settings()
        self.project_dir = normalize_path(project_dir or provider_config["project_root"] or os.getcwd())

        self.shared = SharedContext(
            host=host,
            lock_cache=LockCache(ttl=float(provider_config["lock_ttl"])),
            batch_size=int(provider_config["batch_size"]),
            content_dir=provider_config["content_dir"],
            bundled_lfs_path=lfs_binary_name(provider_config["bundled_lfs_dir"])
            if provider_config["bundled_lfs_dir"] else "",
        )
        self.shared.status_branch_patterns = list(provider_config["status_branches"])
        self.shared.project_paths = self._project_paths()

        self.state_cache = StateCache()
        self.work_queue = WorkQueue()
        self.runner: Optional[Runner] = None

        self.git_version: Optional[GitVersion] = None
        self.path_to_git_binary = self.settings.get_binary_path()
        self.path_to_repository_root = ""
        self.path_to_git_root = ""
        self.user_name = ""
        self.user_email = ""
        self.remote_url = ""
        self.commit_id = ""
        self.commit_summary = ""
        self.git_available = False
        self.git_repository_found = False
        self.uses_lfs_locking = False
        self.lock_user = ""

        self._last_errors: list[str] = []
        self._errors_lock = threading.Lock()
        self._state_changed_callbacks: dict[int, StateChangedCallback] = {}
        self._handles = itertools.count(1)

    def _project_paths(self) -> list[str]:
        paths = [normalize_path(os.path.join(self.project_dir, d)) + "/" for d in self.config["project_dirs"]]
        if self.config["project_file"]:
            paths.append(normalize_path(os.path.join(self.project_dir, self.config["project_file"])))
        return paths

    @property
    def name(self) -> str:
        return PROVIDER_NAME

    # --- lifecycle ---
    def init(self, force_connection: bool = False) -> None:
        if not self.git_available:
            self.check_git_availability()
        if self.git_available and (force_connection or not self.git_repository_found):
            self.check_repository_status()

    def close(self) -> None:
        self.state_cache.clear()
        self.shared.lock_cache.clear()
        if self.runner is not None:
            self.runner.stop()
            self.runner = None
        self.work_queue.shutdown(wait=False)
        self.work_queue = WorkQueue()
        self.git_available = False
        self.git_repository_found = False
        self.user_name = ""
        self.user_email = ""
        logger.info("Provider closed")

    def check_git_availability(self) -> bool:
        path = self.settings.get_binary_path()
        if not path:
            path = find_git_binary_path()
            if self.settings.set_binary_path(path):
                self.settings.save()
        self.path_to_git_binary = path

        self.git_version = check_git_availability(path)
        self.git_available = self.git_version is not None
        if not self.git_available:
            logger.warning(f"Git not found at '{path}'")
        return self.git_available

    def update_settings(self) -> None:
        self.uses_lfs_locking = self.settings.is_using_git_lfs_locking()
        self.lock_user = self.settings.get_lfs_user_name() or self.user_name

    def check_repository_status(self) -> bool:
        """Probes the repository and starts the background runner when one is found."""
        self.update_settings()
        found, root = find_root_directory(self.project_dir)
        self.path_to_repository_root = root
        self.path_to_git_root = root
        if not found:
            self.git_repository_found = False
            self.set_last_errors([f"Could not find a git repository above '{self.project_dir}'"])
            logger.error(f"'{self.project_dir}' is not part of a Git repository")
            return False

        self.git_version = check_git_availability(self.path_to_git_binary)
        self.git_available = self.git_version is not None
        if not self.git_available:
            return False

        helpers = GitHelpers(self.build_context())
        self.user_name = helpers.get_config("user.name")
        self.user_email = helpers.get_config("user.email")
        self.update_settings()

        helpers = GitHelpers(self.build_context())
        ok, branch = helpers.get_branch_name()
        if not ok:
            self.git_repository_found = False
            self.set_last_errors([branch or f"No branch checked out in '{root}'"])
            logger.error(f"'{root}' has no current branch")
            return False
        self.shared.branch_name = branch
        _, self.shared.remote_branch_name = helpers.get_remote_branch_name()
        _, self.remote_url = helpers.get_remote_url()

        helpers.check_lfs_lockable(list(self.config["lockable_probes"]))

        command = Command(
            UpdateStatus(), create_worker(UpdateStatus.name), self.build_context(), state_cache=self.state_cache
        )
        ok, states = run_update_status(command, self.shared.project_paths)
        if ok:
            self.state_cache.update_cached_states(states, self.uses_checkout())
        if command.changelist_status is not None:
            self.state_cache.apply_changelist_status(command.changelist_status, self.path_to_repository_root)
        _, self.commit_id, self.commit_summary = helpers.get_commit_info()

        self.git_repository_found = True
        self.set_last_errors([])
        self._start_runner()
        logger.info(f"Git repository found at '{root}' on branch '{branch}'")
        return True

    def _start_runner(self) -> None:
        if self.runner is not None:
            return
        interval = float(self.config.get("refresh_interval", DEFAULT_REFRESH_INTERVAL))
        if interval <= 0:
            return
        self.runner = Runner(self, interval)
        self.runner.start()

    def is_enabled(self) -> bool:
        return self.git_repository_found

    def is_available(self) -> bool:
        return self.git_repository_found

    def build_context(self) -> RepositoryContext:
        return RepositoryContext(
            git_binary_path=self.path_to_git_binary,
            repository_root=self.path_to_repository_root,
            git_root=self.path_to_git_root,
            uses_lfs_locking=self.uses_lfs_locking,
            lock_user=self.lock_user,
            shared=self.shared,
        )

    # --- settings ---
    def set_binary_path(self, path: str) -> None:
        if self.settings.set_binary_path(path):
            self.settings.save()
            self.path_to_git_binary = path
            self.git_available = False

    def set_using_git_lfs_locking(self, value: bool) -> None:
        if self.settings.set_using_git_lfs_locking(value):
            self.settings.save()
        self.update_settings()

    def set_lfs_user_name(self, value: str) -> None:
        if self.settings.set_lfs_user_name(value):
            self.settings.save()
        self.update_settings()

    # --- execution ---
    def execute(
        self,
        operation: Operation,
        files: Sequence[str] = (),
        asynchronous: bool = False,
        callback: Optional[CompletionCallback] = None,
        changelist: Optional[Changelist] = None,
    ) -> CommandResult:
        """Runs ``operation`` on ``files`` (absolute or relative to the project directory)."""
        if not self.is_enabled() and not isinstance(operation, Connect):
            if callback is not None:
                callback(operation, CommandResult.FAILED)
            return CommandResult.FAILED

        absolute_files = absolute_filenames(files, self.project_dir)

        worker = create_worker(operation.name)
        if worker is None:
            error = UnsupportedOperationError(operation.name, self.name)
            logger.error(str(error))
            operation.add_error_message(str(error))
            if callback is not None:
                callback(operation, CommandResult.FAILED)
            return CommandResult.FAILED

        command = Command(
            operation,
            worker,
            self.build_context(),
            changelist=changelist,
            callback=callback,
            state_cache=self.state_cache,
        )
        command.files = list(absolute_files)
        command.ignored_files = command.helpers().remove_ignored_files(command.files)
        command.update_repository_root_if_submodule(command.files)

        if not asynchronous:
            logger.debug(f"ExecuteSynchronousCommand: {operation.name}")
            return self._execute_synchronous_command(command)

        logger.debug(f"IssueAsynchronousCommand: {operation.name}")
        self.work_queue.issue(command)
        return CommandResult.SUCCEEDED

    def _execute_synchronous_command(self, command: Command) -> CommandResult:
        self.work_queue.issue(command, asynchronous=False)
        while self.work_queue.contains(command) and not command.is_cancelled:
            self.tick()
            time.sleep(SYNC_WAIT_INTERVAL)

        if command.is_cancelled:
            # Cancelled while waiting: drop it now, tick would skip it anyway
            self.work_queue.remove(command)
            result = CommandResult.CANCELLED
        elif command.successful:
            result = CommandResult.SUCCEEDED
        else:
            result = CommandResult.FAILED
            self.host.on_notify("error", COMMAND_FAILED_MESSAGE)

        if result != CommandResult.SUCCEEDED:
            logger.error("Command '%s' Failed!", command.operation.name)
        return result

    def tick(self) -> bool:
        """Drains one completed command; returns whether the cached states changed."""
        command = self.work_queue.pop_executed()
        if command is None:
            return False

        states_updated = False
        if not command.is_cancelled:
            if command.commit_id:
                self.commit_id = command.commit_id
                self.commit_summary = command.commit_summary
            self._process_pending_reloads()

            states_updated = command.worker.update_states(self.state_cache, self.uses_checkout())
            if command.changelist_status is not None:
                self.state_cache.apply_changelist_status(command.changelist_status, command.ctx.repository_root)
                states_updated = True

        self._output_command_messages(command)
        result = command.return_results()
        if result == CommandResult.FAILED:
            self.set_last_errors(command.result_info.error_messages)

        if states_updated:
            self._broadcast_state_changed()
        return states_updated

    def _process_pending_reloads(self) -> None:
        while not self.shared.pending_reloads.empty():
            try:
                paths = self.shared.pending_reloads.get_nowait()
            except queue.Empty:
                break
            if paths:
                self.host.on_reload(paths)

    def _output_command_messages(self, command: Command) -> None:
        for message in command.result_info.error_messages:
            logger.error(message)
        for message in command.result_info.info_messages:
            logger.info(message)

    def can_cancel_operation(self, operation: Operation) -> bool:
        return False

    def cancel_operation(self, operation: Operation) -> None:
        command = self.work_queue.find(operation)
        if command is not None:
            command.cancel()

    # --- state queries ---
    def get_state(self, files: Sequence[str], force_update: bool = False) -> list[FileSourceState]:
        absolute_files = absolute_filenames(files, self.project_dir)
        if force_update:
            to_refresh = [f for f in absolute_files if not self.state_cache.remove_from_ignore_force(f)]
            if to_refresh:
                self.execute(UpdateStatus(), to_refresh)
        return [self.state_cache.get_state(f) for f in absolute_files]

    def get_cached_states_by_predicate(self, predicate: Callable[[FileSourceState], bool]) -> list[FileSourceState]:
        return self.state_cache.find_states(predicate)

    def remove_file_from_cache(self, path: str) -> bool:
        return self.state_cache.remove_file(normalize_path(path))

    def get_files_in_cache(self) -> list[str]:
        return self.state_cache.get_files()

    def get_changelists(self) -> list[Changelist]:
        return self.state_cache.get_changelists()

    def get_changelist_state(self, changelist: Changelist) -> ChangelistState:
        return self.state_cache.get_changelist_state(changelist)

    def update_file_staging_on_saved(self, path: str) -> bool:
        state = self.state_cache.find_state(normalize_path(path))
        if state is None or state.changelist != Changelist.STAGED:
            return False
        return GitHelpers(self.build_context()).run_add(False, [normalize_path(path)])

    def uses_checkout(self) -> bool:
        return self.uses_lfs_locking

    def uses_changelists(self) -> bool:
        return True

    def uses_snapshots(self) -> bool:
        return False

    # --- state branches ---
    def register_state_branches(self, patterns: Sequence[str], content_root: str = "") -> None:
        self.shared.status_branch_patterns = list(patterns)
        if content_root:
            self.shared.content_dir = content_root

    def get_state_branch_index(self, branch_name: str) -> int:
        """Position of ``branch_name`` among the status branches; the current branch ranks last when absent."""
        helpers = GitHelpers(self.build_context())
        branches: list[str] = []
        for pattern in self.shared.status_branch_patterns:
            ok, matching = helpers.get_remote_branches_wildcard(pattern)
            if ok:
                branches.extend(b for b in matching if b not in branches)
        if branch_name in branches:
            return branches.index(branch_name)
        if branch_name == self.shared.branch_name:
            return sys.maxsize
        return -1

    # --- state changed callbacks ---
    def register_source_control_state_changed(self, callback: StateChangedCallback) -> int:
        handle = next(self._handles)
        self._state_changed_callbacks[handle] = callback
        return handle

    def unregister_source_control_state_changed(self, handle: int) -> None:
        self._state_changed_callbacks.pop(handle, None)

    def _broadcast_state_changed(self) -> None:
        for callback in list(self._state_changed_callbacks.values()):
            callback()

    # --- errors and status ---
    def get_last_errors(self) -> list[str]:
        with self._errors_lock:
            return list(self._last_errors)

    def set_last_errors(self, errors: Sequence[str]) -> None:
        with self._errors_lock:
            self._last_errors = list(errors)

    def get_status_text(self) -> str:
        lines: list[str] = []
        errors = self.get_last_errors()
        if errors:
            lines.append(f"Error: {errors[0]}\n")
        lines.append(f"Enabled: {'Yes' if self.is_enabled() else 'No'}")
        lines.append(f"Local repository: {self.path_to_repository_root}")
        lines.append(f"Remote: {self.remote_url}")
        lines.append(f"User: {self.user_name}")
        lines.append(f"E-mail: {self.user_email}")
        lines.append(f"[{self.shared.branch_name} {self.commit_id[:8]}] {self.commit_summary}")
        return "\n".join(lines)


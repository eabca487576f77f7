# lfsbridge/integrations/GitHelpers.py
"""GitHelpers.py
=============
Typed wrappers over individual git and git-lfs verbs.

A ``GitHelpers`` instance is bound to one ``RepositoryContext`` and to the
info/error message lists of the command using it: informational output
of mutating verbs (add, commit, push, pull...) lands in ``info``, stderr
of failed invocations lands in ``errors``. Query verbs return their
parsed output instead.
"""

import logging
import os
from typing import TYPE_CHECKING, Iterable, Optional, Sequence

from lfsbridge.integrations.GitCommand import GitResult, run_command
from lfsbridge.utils.utils import absolute_filenames, normalize_path, relative_filenames


if TYPE_CHECKING:
    from lfsbridge.core.Context import RepositoryContext


logger = logging.getLogger("lfsbridge")

PENDING_RESTART_TITLE = "Binaries Update Required"
PENDING_RESTART_MESSAGE = (
    "Refused to Git Pull because your editor binaries are out of date.\n\n"
    "Without a binaries update, new assets can become corrupted or cause crashes due to format differences.\n\n"
    "Please exit the editor, and update the project."
)


def parse_git_lock_line(repository_root: str, line: str, lock_user: str) -> tuple[str, str]:
    """Parses ``<filename>\\t<user>\\tID:<n>`` into ``(absolute filename, owner)``.

    When the user column is missing (or collapsed into the id column) the
    lock is attributed to ``lock_user``.
    """
    fields = [f.rstrip() for f in line.split("\t") if f]
    filename = normalize_path(os.path.join(repository_root, fields[0])) if fields else ""
    if len(fields) < 3 or not fields[1] or fields[1].startswith("ID:"):
        return filename, lock_user
    return filename, fields[1]


# ================= GitHelpers Class ==============================
class GitHelpers:
    """Class GitHelpers
    ================
    Per-command facade over the subprocess driver.

    Attributes:
        ctx (RepositoryContext): Repository snapshot of the command.
        info (list[str]): Sink for informational output.
        errors (list[str]): Sink for error output.
    """

    def __init__(
        self,
        ctx: "RepositoryContext",
        info: Optional[list[str]] = None,
        errors: Optional[list[str]] = None,
    ) -> None:
        self.ctx = ctx
        self.info: list[str] = info if info is not None else []
        self.errors: list[str] = errors if errors is not None else []

    # --- plumbing ---
    def _run(
        self,
        verb: str,
        params: Sequence[str] = (),
        files: Sequence[str] = (),
        keep_info: bool = True,
        keep_errors: bool = True,
    ) -> GitResult:
        result = run_command(self.ctx, verb, [p for p in params if p], files)
        if keep_info:
            self.info.extend(result.results)
        if keep_errors:
            self.errors.extend(result.errors)
        return result

    def _query(self, verb: str, params: Sequence[str] = (), files: Sequence[str] = (),
               keep_errors: bool = True) -> GitResult:
        return self._run(verb, params, files, keep_info=False, keep_errors=keep_errors)

    # --- configuration and branches ---
    def get_config(self, key: str) -> str:
        result = self._query("config", [key], keep_errors=False)
        if not result.success or not result.results:
            return ""
        return result.results[0]

    def get_branch_name(self) -> tuple[bool, str]:
        """Current branch. A detached HEAD yields ``(False, "HEAD detached at <sha>")``."""
        if self.ctx.shared.branch_name:
            return True, self.ctx.shared.branch_name
        result = self._query("symbolic-ref", ["--short", "--quiet", "HEAD"], keep_errors=False)
        if result.success and result.results:
            return True, result.results[0]
        ok, output = self.get_log(["-1", "--format=%h"], keep_errors=False)
        if ok and output:
            return False, f"HEAD detached at {output[0]}"
        return False, ""

    def get_remote_branch_name(self) -> tuple[bool, str]:
        if self.ctx.shared.remote_branch_name:
            return True, self.ctx.shared.remote_branch_name
        result = self._query(
            "rev-parse", ["--abbrev-ref", "--symbolic-full-name", "@{u}"], keep_errors=False
        )
        if not result.success:
            if not self.ctx.shared.warned_remote_branch:
                self.ctx.shared.warned_remote_branch = True
                logger.warning(
                    "Upstream branch not found for the current branch, skipping current branch "
                    "for remote check. Please push a remote branch."
                )
            return False, ""
        return True, result.results[0] if result.results else ""

    def get_remote_url(self) -> tuple[bool, str]:
        result = self._query("remote", ["get-url", "origin"], keep_errors=False)
        if result.success and result.results:
            return True, result.results[0]
        return False, ""

    def get_remote_branches_wildcard(self, pattern: str) -> tuple[bool, list[str]]:
        result = self._query("branch", ["--remotes", "--list"], [pattern], keep_errors=False)
        if result.success and result.results:
            return True, [line.strip() for line in result.results]
        if not self.ctx.shared.warned_remote_branches_wildcard:
            self.ctx.shared.warned_remote_branches_wildcard = True
            logger.warning('No remote branches matching pattern "%s" were found.', pattern)
        return False, []

    # --- LFS lockable attribute ---
    def check_lfs_lockable(self, files: Sequence[str]) -> bool:
        """Records the wildcard suffixes (``*.uasset`` -> ``.uasset``) whose ``lockable`` attribute is set."""
        result = self._query("check-attr", ["lockable"], files)
        if not result.success:
            return False
        for index, line in enumerate(result.results[:len(files)]):
            if line.endswith(": set"):
                self.ctx.shared.add_lockable_extension(files[index][1:])
        return True

    def is_file_lfs_lockable(self, path: str) -> bool:
        return self.ctx.shared.is_file_lfs_lockable(path)

    # --- locks ---
    def get_locks(self, params: Sequence[str] = (), user_filter: str = "") -> tuple[bool, dict[str, str]]:
        result = self._query("lfs locks", params)
        if not result.success:
            return False, {}
        locks: dict[str, str] = {}
        for line in result.results:
            filename, user = parse_git_lock_line(self.ctx.repository_root, line, self.ctx.lock_user)
            if not filename:
                continue
            if not user_filter or user == user_filter:
                locks[filename] = user
        return True, locks

    def get_all_locks(self, invalidate: bool = False) -> tuple[bool, dict[str, str]]:
        """Locks from the TTL cache, refreshing from the LFS server when expired.

        Falls back to ``--cached`` and ``--local`` queries, then to the
        in-memory cache, so the answer is always available.
        """
        cache = self.ctx.shared.lock_cache
        if invalidate or cache.is_expired():
            ok, locks = self.get_locks()
            if ok:
                cache.mark_updated()
                cache.set_locked_files(locks, self.ctx.lock_user)
                return True, locks
            ok_cached, cached = self.get_locks(["--cached"], self.ctx.lock_user)
            ok_local, local = self.get_locks(["--local"], self.ctx.lock_user)
            if ok_cached and ok_local:
                cached.update(local)
                return True, cached
        return True, cache.get_locked_files()

    def get_locked_files(self, files: Iterable[str]) -> list[str]:
        """Subset of ``files`` locked by the configured lock user."""
        locks = self.ctx.shared.lock_cache.get_locked_files()
        return [f for f in files if locks.get(f) == self.ctx.lock_user]

    def _run_at_git_root(self, verb: str, files: Sequence[str]) -> GitResult:
        # LFS lock paths are relative to the directory holding .git
        git_root = self.ctx.git_root or self.ctx.repository_root
        result = run_command(self.ctx.with_repository_root(git_root), verb, (), files)
        self.info.extend(result.results)
        self.errors.extend(result.errors)
        return result

    def lock_files(self, files: Sequence[str]) -> bool:
        """Locks absolute ``files``; they are passed to git-lfs relative to the git root."""
        if not files:
            return True
        git_root = self.ctx.git_root or self.ctx.repository_root
        return self._run_at_git_root("lfs lock", relative_filenames(files, git_root)).success

    def unlock_files(self, files: Sequence[str], absolute_paths: bool = True) -> bool:
        if not files:
            return True
        git_root = self.ctx.git_root or self.ctx.repository_root
        if absolute_paths:
            absolute = list(files)
            relative = relative_filenames(files, git_root)
        else:
            relative = list(files)
            absolute = absolute_filenames(files, git_root)
        success = self._run_at_git_root("lfs unlock", relative).success
        if success:
            for path in absolute:
                self.ctx.shared.lock_cache.remove_locked_file(path, self.ctx.lock_user)
        return success

    # --- remote synchronisation ---
    def fetch_remote(self, using_lfs: bool) -> bool:
        if using_lfs:
            self.get_all_locks(invalidate=True)
        return self._run("fetch", ["--no-tags", "--prune"]).success

    def pull_origin(self, already_reloaded: Iterable[str] = ()) -> tuple[bool, list[str]]:
        """Rebases onto the upstream branch; returns the absolute paths git touched."""
        shared = self.ctx.shared
        if shared.pending_restart:
            shared.host.on_notify("error", PENDING_RESTART_MESSAGE)
            self.errors.append(PENDING_RESTART_TITLE)
            logger.info("Pull failed because we need a binaries update")
            return False, []

        ok, remote_branch = self.get_remote_branch_name()
        if not ok or not remote_branch:
            return False, []

        ok, different = self.run_diff(["--name-only", remote_branch])
        if not ok:
            return False, []
        if not different:
            return True, []

        reloaded = set(already_reloaded)
        touched = [
            f for f in absolute_filenames(different, self.ctx.repository_root) if f not in reloaded
        ]
        to_reload = [f for f in touched if self.is_file_lfs_lockable(f)]
        if to_reload:
            shared.host.on_prepare_reload(to_reload)

        success = self._run("pull", ["--rebase", "--autostash"]).success

        if to_reload:
            shared.pending_reloads.put(to_reload)
        return success, touched

    # --- queries ---
    def get_status_no_locks(self, all_untracked: bool, files: Sequence[str]) -> tuple[bool, list[str]]:
        # status must never take the index lock
        result = self._query(
            "--no-optional-locks status", ["--porcelain", "-uall" if all_untracked else ""], files
        )
        return result.success, result.results

    def get_log(self, params: Sequence[str], files: Sequence[str] = (),
                keep_errors: bool = True) -> tuple[bool, list[str]]:
        result = self._query("log", params, files, keep_errors=keep_errors)
        return result.success, result.results

    def get_commit_info(self) -> tuple[bool, str, str]:
        ok, output = self.get_log(["-1", "--format=%H %s"], keep_errors=False)
        if not ok or not output:
            return False, "", ""
        return True, output[0][:40], output[0][41:]

    def run_diff(self, params: Sequence[str]) -> tuple[bool, list[str]]:
        result = self._query("diff", params)
        return result.success, result.results

    def run_ls_tree(self, params: Sequence[str], file: str) -> tuple[bool, list[str]]:
        result = self._query("ls-tree", params, [file])
        return result.success, result.results

    def run_ls_files(self, unmerged: bool, file: str) -> tuple[bool, list[str]]:
        result = self._query("ls-files", ["--unmerged" if unmerged else ""], [file], keep_errors=False)
        return result.success, result.results

    def run_ls_remote(self, print_url: bool = False, heads_only: bool = True) -> bool:
        params = []
        if not print_url:
            params.append("-q")
        if heads_only:
            params.append("-h")
        return self._run("ls-remote", params, keep_info=False).success

    def run_show(self, params: Sequence[str] = ()) -> tuple[bool, list[str]]:
        result = self._query("show", ["--date=raw", "--pretty=medium", *params])
        return result.success, result.results

    def run_git_version(self) -> tuple[bool, str]:
        result = run_command(self.ctx.without_repository_root(), "version")
        return result.success, result.raw_stdout.strip()

    # --- working tree and index ---
    def run_reset(self, hard: bool, files: Sequence[str] = ()) -> bool:
        params = ["--hard"] if hard else []
        if files:
            params.append("--")
        return self._run("reset", params, files).success

    def run_clean(self, force: bool, remove_directories: bool) -> bool:
        params = []
        if force:
            params.append("-f")
        if remove_directories:
            params.append("-d")
        return self._run("clean", params).success

    def run_remove(self, files: Sequence[str]) -> bool:
        if not files:
            return True
        return self._run("rm", (), files).success

    def run_checkout(self, files: Sequence[str]) -> bool:
        if not files:
            return True
        return self._run("checkout", (), files).success

    def run_restore(self, staged: bool, files: Sequence[str]) -> bool:
        return self._run("restore", ["--staged" if staged else ""], files).success

    def run_add(self, add_all: bool, files: Sequence[str]) -> bool:
        if not files and not add_all:
            return True
        return self._run("add", ["-A" if add_all else ""], files).success

    def run_commit(self, message_file: str, files: Sequence[str]) -> bool:
        return self._run("commit", [f"--file={os.path.abspath(message_file)}"], files).success

    def run_push(self, params: Sequence[str]) -> bool:
        return self._run("push", params).success

    def run_stash(self, save: bool) -> bool:
        params = ["save", "Stashed by lfsbridge"] if save else ["pop"]
        return self._run("stash", params, keep_info=False).success

    # --- repository setup ---
    def run_init(self) -> bool:
        return self._run("init", keep_info=False).success

    def run_add_origin(self, url: str) -> bool:
        return self._run("remote", ["add", "origin", url], keep_info=False).success

    def run_lfs_install(self) -> bool:
        return self._run("lfs install", keep_info=False).success

    def remove_ignored_files(self, files: list[str]) -> list[str]:
        """Moves ignored paths out of ``files`` (in place) and returns them.

        One ``check-ignore`` per file; exit code 0 means the path is ignored.
        """
        ignored = []
        for f in list(files):
            if self._query("check-ignore", (), [f], keep_errors=False).success:
                ignored.append(f)
                files.remove(f)
        return ignored

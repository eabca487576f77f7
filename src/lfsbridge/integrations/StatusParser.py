# lfsbridge/integrations/StatusParser.py
"""StatusParser.py
===============
Turns the output of ``git status --porcelain``, ``git ls-files --unmerged``,
``git log --name-status`` and ``git ls-tree --long`` into lfsbridge state
objects.

Key Features:
-------------
- The porcelain ``XY path`` decision table (``parse_git_status``).
- Per-file parsing with filesystem fallback for clean files and lock
  enrichment from the lock cache (``parse_file_status_result``).
- Directory inputs expanded through ``ls-files`` (``parse_status_results``).
- History parsing (``parse_log_results``, ``get_history``).

Every parser here is a total function: a line it does not recognise maps
to ``FileState.UNKNOWN`` rather than raising.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Optional, Sequence

from lfsbridge.core.Revision import Revision
from lfsbridge.core.State import (
    FileSourceState,
    FileState,
    GitLFSState,
    LockState,
    RemoteState,
    ResolveInfo,
    TreeState,
)
from lfsbridge.integrations.GitHelpers import GitHelpers
from lfsbridge.utils.utils import absolute_filenames, normalize_path


logger = logging.getLogger("lfsbridge")

_LOG_ACTIONS = {
    " ": "unmodified",
    "M": "modified",
    "A": "add",
    "D": "delete",
    "R": "branch",
    "C": "branch",
    "T": "type changed",
    "U": "unmerged",
    "X": "unknown",
    "B": "broken pairing",
}

HISTORY_MAX_COUNT = 250


def filename_from_git_status(line: str) -> str:
    """Path part of a porcelain line; for renames (``R  old -> new``) the new name."""
    arrow = line.rfind(">")
    if arrow >= 0:
        name = line[arrow + 2:]
    else:
        name = line[3:]
    if len(name) >= 2 and name.startswith('"') and name.endswith('"'):
        name = name[1:-1]
    return name


def parse_git_status(line: str) -> tuple[FileState, TreeState]:
    """Maps the two porcelain status columns to ``(FileState, TreeState)``."""
    index_state = line[0] if len(line) > 0 else " "
    wcopy_state = line[1] if len(line) > 1 else " "

    if (
        index_state == "U"
        or wcopy_state == "U"
        or (index_state == "A" and wcopy_state == "A")
        or (index_state == "D" and wcopy_state == "D")
    ):
        return FileState.UNMERGED, TreeState.WORKING

    if index_state == " ":
        tree_state = TreeState.WORKING
    elif wcopy_state == " ":
        tree_state = TreeState.STAGED
    else:
        # Changes on both sides; the working copy wins
        tree_state = TreeState.WORKING

    if index_state == "?" or wcopy_state == "?":
        return FileState.UNKNOWN, TreeState.UNTRACKED
    if index_state == "!" or wcopy_state == "!":
        return FileState.UNKNOWN, TreeState.IGNORED

    if index_state == "A":
        file_state = FileState.ADDED
    elif index_state == "D":
        file_state = FileState.DELETED
    elif wcopy_state == "D":
        file_state = FileState.MISSING
    elif index_state == "M" or wcopy_state == "M":
        file_state = FileState.MODIFIED
    elif index_state == "R":
        file_state = FileState.RENAMED
    elif index_state == "C":
        file_state = FileState.COPIED
    else:
        file_state = FileState.UNKNOWN
    return file_state, tree_state


def _parse_unmerged_line(line: str) -> tuple[str, str]:
    """``<mode> <sha> <stage>\\t<path>`` -> ``(sha, path)``."""
    tab = line.find("\t")
    filename = line[tab + 1:] if tab >= 0 else ""
    return line[7:47], filename


def parse_conflict_status(helpers: GitHelpers, state: FileSourceState) -> None:
    """Fills the resolve info of a conflicted file from its three index stages."""
    ok, lines = helpers.run_ls_files(True, state.local_filename)
    if not ok or len(lines) != 3:
        return
    base_revision, base_file = _parse_unmerged_line(lines[0])
    remote_revision, remote_file = _parse_unmerged_line(lines[2])
    state.pending_resolve_info = ResolveInfo(base_file, base_revision, remote_file, remote_revision)
    state.pending_merge_base_file_hash = base_revision


def fill_lock_state(
    helpers: GitHelpers,
    file: str,
    delta: GitLFSState,
    locks: Optional[dict[str, str]],
) -> Optional[dict[str, str]]:
    """Sets the lock dimension of ``delta``; returns the lock table for the next file.

    The table is queried on the first lockable file only.
    """
    ctx = helpers.ctx
    if not ctx.uses_lfs_locking or not helpers.is_file_lfs_lockable(file):
        delta.lock_state = LockState.UNLOCKABLE
        return locks
    if locks is None:
        _, locks = helpers.get_all_locks(invalidate=False)
    owner = locks.get(file)
    if owner is None:
        delta.lock_state = LockState.NOT_LOCKED
    else:
        delta.lock_state = LockState.LOCKED if owner == ctx.lock_user else LockState.LOCKED_OTHER
        delta.lock_user = owner
    return locks


def parse_file_status_result(
    helpers: GitHelpers,
    files: Sequence[str],
    results: dict[str, str],
) -> dict[str, FileSourceState]:
    """Builds a state delta for every requested file.

    Files missing from ``results`` are clean: their state comes from the
    filesystem. The remote dimension is reset to up-to-date so that a
    refresh clears any staleness until the next remote diff.
    """
    states: dict[str, FileSourceState] = {}
    locks: Optional[dict[str, str]] = None

    for file in files:
        delta = GitLFSState.unset()
        delta.remote_state = RemoteState.UP_TO_DATE
        state = FileSourceState(file, delta)

        line = results.get(file)
        if line is not None:
            delta.file_state, delta.tree_state = parse_git_status(line)
            if delta.file_state == FileState.UNMERGED:
                parse_conflict_status(helpers, state)
        elif os.path.exists(file):
            delta.file_state, delta.tree_state = FileState.UNKNOWN, TreeState.UNMODIFIED
        else:
            delta.file_state, delta.tree_state = FileState.UNKNOWN, TreeState.NOT_IN_REPO

        locks = fill_lock_state(helpers, file, delta, locks)
        states[file] = state

    parse_directory_status_result(helpers, results, states, locks)
    return states


def parse_directory_status_result(
    helpers: GitHelpers,
    results: dict[str, str],
    states: dict[str, FileSourceState],
    locks: Optional[dict[str, str]] = None,
) -> None:
    """Adds the files found under a directory input that only porcelain knows about:
    deleted, missing and untracked ones."""
    for file, line in results.items():
        if file in states:
            continue
        file_state, tree_state = parse_git_status(line)
        if file_state not in (FileState.DELETED, FileState.MISSING) and tree_state != TreeState.UNTRACKED:
            continue
        delta = GitLFSState.unset()
        delta.file_state = file_state
        delta.tree_state = tree_state
        locks = fill_lock_state(helpers, file, delta, locks)
        states[file] = FileSourceState(file, delta)


def parse_status_results(
    helpers: GitHelpers,
    files: Sequence[str],
    results: dict[str, str],
) -> dict[str, FileSourceState]:
    """Expands directory inputs with ``ls-files`` and parses every resulting file."""
    root = helpers.ctx.repository_root
    expanded: list[str] = []
    for file in files:
        if os.path.isdir(file):
            ok, tracked = helpers.run_ls_files(False, file)
            if ok:
                expanded.extend(absolute_filenames(tracked, root))
        else:
            expanded.append(file)
    return parse_file_status_result(helpers, expanded, results)


def status_results_by_path(lines: Sequence[str], repository_root: str) -> dict[str, str]:
    """Indexes porcelain lines by the absolute path they describe."""
    results: dict[str, str] = {}
    for line in lines:
        path = normalize_path(os.path.join(repository_root, filename_from_git_status(line)))
        results[path] = line
    return results


# ================= History ==============================

def parse_log_results(lines: Sequence[str]) -> list[Revision]:
    """Parses ``git log --pretty=medium --date=raw --name-status`` output, newest first."""
    history: list[Revision] = []
    revision: Optional[Revision] = None

    for line in lines:
        if line.startswith("commit "):
            if revision is not None:
                history.append(revision)
            revision = Revision()
            revision.commit_id = line[7:].split(" ")[0]
            revision.short_commit_id = revision.commit_id[:8]
            try:
                revision.commit_id_number = int(revision.short_commit_id, 16)
            except ValueError:
                revision.commit_id_number = 0
            continue
        if revision is None:
            continue

        if line.startswith("Author: "):
            author = line[8:]
            email_index = author.rfind("<")
            if email_index >= 0:
                revision.user_name = author[:email_index].rstrip()
                revision.user_email = author[email_index + 1:].rstrip(">")
            else:
                revision.user_name = author.strip()
        elif line.startswith("Date:   "):
            tokens = line[8:].split()
            if tokens and tokens[0].lstrip("-").isdigit():
                revision.date = datetime.fromtimestamp(int(tokens[0]), tz=timezone.utc)
        elif line.startswith("    "):
            revision.description += line[4:] + "\n"
        elif "\t" in line:
            revision.action = _LOG_ACTIONS.get(line[0], "")
            # Renames and copies list both names; the last one is the name at this revision
            revision.filename = line[line.rfind("\t") + 1:]

    if revision is not None:
        history.append(revision)

    count = len(history)
    for index, item in enumerate(history):
        item.revision_number = count - index
        if item.action == "branch" and index < count - 1:
            item.branch_source = history[index + 1]
    return history


def parse_ls_tree_output(lines: Sequence[str]) -> tuple[str, int]:
    """``<mode> blob <sha>  <size>\\t<path>`` -> ``(blob sha, size)``."""
    if not lines:
        return "", 0
    line = lines[0]
    file_hash = line[12:52]
    tab = line.find("\t")
    size_text = line[53:tab] if tab >= 0 else line[53:]
    try:
        file_size = int(size_text.strip())
    except ValueError:
        # Submodules and trees report "-"
        file_size = 0
    return file_hash, file_size


def get_history(helpers: GitHelpers, file: str, merge_conflict: bool) -> tuple[bool, list[Revision]]:
    """History of ``file`` with blob hash and size of each revision.

    For a conflicted file only the tip of ``MERGE_HEAD`` is returned.
    """
    params = ["--follow", "--date=raw", "--name-status", "--pretty=medium"]
    if merge_conflict:
        params += ["MERGE_HEAD", "--max-count=1"]
    else:
        params.append(f"--max-count={HISTORY_MAX_COUNT}")

    ok, lines = helpers.get_log(params, [file])
    if not ok:
        return False, []
    history = parse_log_results(lines)

    for revision in history:
        if ok:
            ok, tree = helpers.run_ls_tree(["--long", revision.revision], revision.filename)
            if ok:
                revision.file_hash, revision.file_size = parse_ls_tree_output(tree)
        revision.repo_root_override = helpers.ctx.repository_root
    return ok, history

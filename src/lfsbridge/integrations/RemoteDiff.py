# lfsbridge/integrations/RemoteDiff.py
"""RemoteDiff.py
=============
Compares the local branch with the current upstream and the tracked
status branches, marking files that changed there as ``NotAtHead`` or
``NotLatest``.

It also raises the provider-wide *pending restart* flag when editor
binaries (``.checksum``, ``Binaries/``, ``Plugins/``) changed upstream,
so that later pulls are refused until the user updates outside the editor.
"""

import logging
import os

from lfsbridge.core.State import FileSourceState, RemoteState
from lfsbridge.integrations.GitHelpers import GitHelpers
from lfsbridge.utils.utils import normalize_path


logger = logging.getLogger("lfsbridge")

CHECKSUM_FILE = ".checksum"
BINARY_DIRS = ("Binaries/", "Plugins/")


def _is_binary_path(path: str) -> bool:
    lowered = path.lower()
    if lowered == CHECKSUM_FILE:
        return True
    return any(lowered.startswith(d.lower()) for d in BINARY_DIRS)


def _comparison_branches(helpers: GitHelpers) -> tuple[list[str], str]:
    """Status branches matching the registered patterns, plus the current upstream."""
    branches: list[str] = []
    for pattern in helpers.ctx.shared.status_branch_patterns:
        ok, matching = helpers.get_remote_branches_wildcard(pattern)
        if ok:
            branches.extend(b for b in matching if b not in branches)

    current = ""
    ok, remote_branch = helpers.get_remote_branch_name()
    if ok and remote_branch:
        current = remote_branch
        if current not in branches:
            branches.append(current)
    return branches, current


def check_remote(helpers: GitHelpers, states: dict[str, FileSourceState]) -> bool:
    """Updates the remote dimension of ``states`` in place.

    A file newer on the current upstream wins over a file only newer on a
    status branch; between status branches the first one found wins.
    """
    branches, current = _comparison_branches(helpers)
    if not branches:
        return True

    ctx = helpers.ctx
    content_dir = os.path.abspath(os.path.join(ctx.repository_root, ctx.shared.content_dir))
    paths = [content_dir, CHECKSUM_FILE, *BINARY_DIRS]

    newer: dict[str, str] = {}
    success = True
    for branch in branches:
        ok, lines = helpers.get_log(["--pretty=", "--name-only", f"..{branch}", "--"], paths)
        if not ok:
            success = False
            continue
        is_current = branch == current
        for line in lines:
            if not helpers.is_file_lfs_lockable(line):
                if is_current and _is_binary_path(line):
                    if not ctx.shared.pending_restart:
                        logger.info(f"Binaries changed on {branch}, pulls are disabled until restart")
                    ctx.shared.pending_restart = True
                continue
            path = normalize_path(os.path.join(ctx.repository_root, line))
            if is_current or path not in newer:
                newer[path] = branch

    for path, branch in newer.items():
        state = states.get(path)
        if state is None:
            continue
        state.state.remote_state = RemoteState.NOT_AT_HEAD if branch == current else RemoteState.NOT_LATEST
        state.state.head_branch = branch
    return success

# lfsbridge/core/Revision.py
"""Revision Module
===============
One entry of a file's history, as reported by ``git log --name-status``,
and the means to materialise that version of the file on disk for diffing.
"""

import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from lfsbridge.integrations.GitCommand import run_dump_to_file


if TYPE_CHECKING:
    from lfsbridge.core.Context import RepositoryContext


logger = logging.getLogger("lfsbridge")

_diff_dir: Optional[str] = None


def get_diff_dir() -> str:
    """Per-process directory receiving ``temp-<commit>-<name>`` files."""
    global _diff_dir
    if _diff_dir is None:
        _diff_dir = tempfile.mkdtemp(prefix="lfsbridge-diff-")
    return _diff_dir


@dataclass
class Revision:
    """A file at a given commit.

    ``revision_number`` is assigned after the whole log is parsed so that the
    oldest entry is 1. ``branch_source`` points to the previous entry for
    renames and copies.
    """

    filename: str = ""
    commit_id: str = ""
    short_commit_id: str = ""
    commit_id_number: int = 0
    revision_number: int = 0
    description: str = ""
    user_name: str = ""
    user_email: str = ""
    date: datetime = field(default_factory=lambda: datetime.fromtimestamp(0, tz=timezone.utc))
    action: str = ""
    file_hash: str = ""
    file_size: int = 0
    repo_root_override: str = ""
    branch_source: Optional["Revision"] = field(default=None, repr=False)

    @property
    def revision(self) -> str:
        return self.short_commit_id

    def get_check_in_identifier(self) -> int:
        return self.commit_id_number

    def get(self, ctx: "RepositoryContext", filename: str = "", diff_dir: str = "") -> Optional[str]:
        """Writes this version of the file to ``filename`` (or a temp file) and returns its path.

        An existing file is reused as-is, since a commit's content never changes.
        """
        if self.repo_root_override:
            # Plugins may live in their own repository
            ctx = ctx.with_repository_root(self.repo_root_override)

        if not filename:
            directory = diff_dir or get_diff_dir()
            os.makedirs(directory, exist_ok=True)
            clean_name = os.path.basename(self.filename)
            filename = os.path.abspath(os.path.join(directory, f"temp-{self.commit_id}-{clean_name}"))

        if os.path.exists(filename):
            return filename

        if run_dump_to_file(ctx, ["cat-file", "--filters", f"{self.commit_id}:{self.filename}"], filename):
            return filename
        return None

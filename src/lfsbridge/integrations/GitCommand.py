# lfsbridge/integrations/GitCommand.py
"""GitCommand.py
=============
Subprocess driver for the ``git`` and ``git-lfs`` executables.

Every git invocation made by lfsbridge goes through ``run_command``. It
assembles the argument vector, splits large file lists into batches,
captures the output and maps the return code to a success flag. It never
raises: launch failures, timeouts and non-zero exit codes all come back
as a failed ``GitResult`` with stderr captured.

Also hosts the repository discovery helpers: locating the git binary,
finding the ``.git`` root of a path, and parsing ``git version``.
"""

import glob
import logging
import os
import platform
import sys
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Sequence

from lfsbridge.utils.utils import normalize_path, safe_run


if TYPE_CHECKING:
    from lfsbridge.core.Context import RepositoryContext


logger = logging.getLogger("lfsbridge")
trace_logger = logging.getLogger("lfsbridge.gitcommands")

DEFAULT_BATCH_SIZE = 50


@dataclass
class GitResult:
    """Outcome of one (possibly batched) git invocation."""

    success: bool
    return_code: int = 0
    results: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    raw_stdout: str = ""


@dataclass
class GitVersion:
    """Parsed ``git version`` output, including an optional fork suffix."""

    major: int = 0
    minor: int = 0
    patch: int = 0
    fork: str = ""
    fork_major: int = 0
    fork_minor: int = 0
    fork_patch: int = 0

    @property
    def is_fork(self) -> bool:
        return bool(self.fork)


def _split_lines(text: str) -> list[str]:
    return [line for line in text.split("\n") if line]


def lfs_binary_name(base_dir: str) -> str:
    """Name of the bundled git-lfs binary for the current platform."""
    if sys.platform.startswith("win"):
        return os.path.join(base_dir, "git-lfs.exe")
    if sys.platform == "darwin":
        if platform.machine() == "arm64":
            return os.path.join(base_dir, "git-lfs-mac-arm64")
        return os.path.join(base_dir, "git-lfs-mac-amd64")
    return os.path.join(base_dir, "git-lfs")


def _with_macos_path(argv: list[str], git_binary_path: str) -> list[str]:
    """Applications launched from the desktop do not inherit the shell PATH, so git-lfs
    next to the git binary would not be found."""
    if sys.platform != "darwin" or not os.path.isabs(git_binary_path):
        return argv
    git_dir = os.path.dirname(git_binary_path)
    path = os.environ.get("PATH", "")
    if git_dir in path.split(os.pathsep):
        return argv
    return ["/usr/bin/env", f"PATH={git_dir}{os.pathsep}{path}"] + argv


def _run_single(
    ctx: "RepositoryContext",
    verb: str,
    params: Sequence[str],
    files: Sequence[str],
    expected_rc: int,
    env: Optional[dict[str, str]],
) -> GitResult:
    repository_root = ctx.repository_root

    # Migrate case: files living in another repository run from that repository
    if files and os.path.isabs(files[0]) and repository_root:
        first = normalize_path(files[0])
        if not first.startswith(repository_root.rstrip("/") + "/"):
            found, root = find_root_directory(os.path.dirname(first))
            if found:
                repository_root = root

    verb_args = verb.split()
    cwd: Optional[str] = None
    if verb_args and verb_args[0] == "lfs" and ctx.shared.bundled_lfs_path:
        # git-lfs has no -C option
        argv = [ctx.shared.bundled_lfs_path] + verb_args[1:]
        cwd = repository_root or None
    else:
        argv = [ctx.git_binary_path]
        if repository_root:
            argv += ["-C", repository_root]
        argv += verb_args
    argv += list(params)
    argv += list(files)
    argv = _with_macos_path(argv, ctx.git_binary_path)

    trace_logger.debug("%s", " ".join(argv))
    run_env = None
    if env:
        run_env = dict(os.environ)
        run_env.update(env)
    proc = safe_run(argv, cwd=cwd, env=run_env)

    results = _split_lines(proc.stdout or "")
    errors = _split_lines(proc.stderr or "")
    success = proc.returncode == expected_rc
    if success and errors:
        # git reports progress on stderr
        results.extend(errors)
        errors = []
    if not success:
        logger.debug("git %s exited with %s (expected %s)", verb, proc.returncode, expected_rc)
    return GitResult(success, proc.returncode, results, errors, proc.stdout or "")


def run_command(
    ctx: "RepositoryContext",
    verb: str,
    params: Sequence[str] = (),
    files: Sequence[str] = (),
    expected_rc: int = 0,
    env: Optional[dict[str, str]] = None,
) -> GitResult:
    """Runs ``git [-C <root>] <verb> <params...> <files...>``.

    ``verb`` may hold several words (``"lfs locks"``); LFS verbs are routed to
    the bundled git-lfs binary when one is configured. File lists larger than
    the batch size are split into several invocations whose success is AND-ed.
    """
    batch_size = ctx.shared.batch_size or DEFAULT_BATCH_SIZE
    if len(files) <= batch_size:
        return _run_single(ctx, verb, params, files, expected_rc, env)

    combined = GitResult(True)
    for start in range(0, len(files), batch_size):
        batch = files[start:start + batch_size]
        part = _run_single(ctx, verb, params, batch, expected_rc, env)
        combined.success = combined.success and part.success
        combined.return_code = part.return_code if not part.success else combined.return_code
        combined.results.extend(part.results)
        combined.errors.extend(part.errors)
        combined.raw_stdout += part.raw_stdout
    return combined


def run_dump_to_file(ctx: "RepositoryContext", params: Sequence[str], dump_path: str) -> bool:
    """Runs ``git cat-file`` style commands and writes raw stdout bytes to ``dump_path``."""
    argv = [ctx.git_binary_path]
    if ctx.repository_root:
        argv += ["-C", ctx.repository_root]
    argv += list(params)
    argv = _with_macos_path(argv, ctx.git_binary_path)

    env = dict(os.environ)
    env["GIT_LFS_PROGRESS"] = "NUL" if sys.platform.startswith("win") else "/dev/null"
    trace_logger.debug("%s > %s", " ".join(argv), dump_path)
    proc = safe_run(argv, env=env, text=False)
    if proc.returncode != 0:
        stderr = proc.stderr.decode("utf-8", "replace") if isinstance(proc.stderr, bytes) else proc.stderr
        logger.error("DumpToFile: '%s' failed with %s: %s", " ".join(params), proc.returncode, stderr)
        return False
    try:
        with open(dump_path, "wb") as f:
            f.write(proc.stdout or b"")
    except OSError as e:
        logger.error("Could not write file '%s': %s", dump_path, e)
        return False
    return True


# ================= Repository discovery ==============================

def find_root_directory(path: str) -> tuple[bool, str]:
    """Walks up from ``path`` looking for a ``.git`` directory or file.

    Returns ``(True, root)`` on success, ``(False, path)`` otherwise.
    """
    start = path.replace("\\", "/")
    while len(start) > 1 and start.endswith("/"):
        start = start[:-1]
    current = start
    while current:
        if os.path.exists(os.path.join(current, ".git")):
            return True, current
        parent = os.path.dirname(current)
        if parent == current:
            break
        current = parent
    return False, start


def change_repository_root_if_submodule(files: Sequence[str], repository_root: str) -> str:
    """Uses the submodule root when every file lives under the same nested ``.git`` root."""
    if not files:
        return repository_root
    roots = set()
    for f in files:
        found, root = find_root_directory(os.path.dirname(normalize_path(f)))
        if not found:
            return repository_root
        roots.add(root)
    if len(roots) != 1:
        return repository_root
    root = roots.pop()
    base = repository_root.rstrip("/") + "/"
    if root != repository_root.rstrip("/") and root.startswith(base):
        return root
    return repository_root


def parse_git_version(output: str) -> Optional[GitVersion]:
    """Parses ``git version 2.31.1.vfs.0.3`` style output."""
    prefix = "git version "
    if not output.startswith(prefix):
        return None
    tokens = output[len(prefix):].strip().split(".")
    if len(tokens) < 3 or not all(t.isdigit() for t in tokens[:2]):
        return None
    patch = tokens[2]
    if not patch.isdigit():
        # "2.39.0 (Apple Git-143)" keeps only the leading number
        digits = "".join(c for c in patch.split(" ")[0] if c.isdigit())
        if not digits:
            return None
        patch = digits
    version = GitVersion(int(tokens[0]), int(tokens[1]), int(patch))
    if len(tokens) >= 5 and not tokens[3].isdigit():
        version.fork = tokens[3]
        version.fork_major = int(tokens[4]) if tokens[4].isdigit() else 0
        if len(tokens) >= 6 and tokens[5].isdigit():
            version.fork_minor = int(tokens[5])
        if len(tokens) >= 7 and tokens[6].isdigit():
            version.fork_patch = int(tokens[6])
    return version


def check_git_availability(git_binary_path: str) -> Optional[GitVersion]:
    """Runs ``<git> version``; returns the parsed version when it looks like git."""
    if not git_binary_path:
        return None
    proc = safe_run([git_binary_path, "version"], timeout=10)
    output = (proc.stdout or "").strip()
    if proc.returncode != 0 or not output.startswith("git version"):
        return None
    version = parse_git_version(output)
    return version if version is not None else GitVersion()


def _candidate_binaries() -> list[str]:
    if sys.platform.startswith("win"):
        local = os.environ.get("LOCALAPPDATA", "")
        candidates = [
            "C:/Program Files/Git/bin/git.exe",
            "C:/Program Files (x86)/Git/bin/git.exe",
            f"{local}/Programs/Git/cmd/git.exe",
            "C:/Program Files (x86)/SmartGit/git/bin/git.exe",
            "C:/Program Files (x86)/SmartGit/bin/git.exe",
            f"{local}/Atlassian/SourceTree/git_local/bin/git.exe",
        ]
        portable = sorted(glob.glob(f"{local}/GitHub/PortableGit_*"))
        if portable:
            candidates += [f"{portable[-1]}/cmd/git.exe", f"{portable[-1]}/bin/git.exe"]
        candidates.append("C:/Program Files (x86)/fournova/Tower/vendor/Git/bin/git.exe")
        fork = sorted(glob.glob(f"{local}/Fork/gitInstance/*"))
        if fork:
            candidates += [f"{fork[-1]}/cmd/git.exe", f"{fork[-1]}/bin/git.exe"]
        return candidates
    if sys.platform == "darwin":
        return [
            "/usr/local/git/bin/git",
            "/usr/local/bin/git",
            "/opt/local/bin/git",
            "/usr/bin/git",
            "/Applications/SmartGit.app/Contents/Resources/git/bin/git",
            "/Applications/SourceTree.app/Contents/Resources/git_local/bin/git",
            "/Applications/GitHub Desktop.app/Contents/Resources/app/git/bin/git",
            "/Applications/Tower.app/Contents/Resources/git/bin/git",
        ]
    return ["/usr/bin/git"]


def find_git_binary_path() -> str:
    """First standard install location that answers ``git version``, else "git"."""
    for candidate in _candidate_binaries():
        if check_git_availability(candidate) is not None:
            return candidate
    return "git"

# tests/conftest.py
"""Pytest configuration with shared fixtures for the lfsbridge tests.

Nothing here runs a real ``git``: ``safe_run`` in the subprocess driver is
replaced by ``FakeGit``, a scripted table of ``CompletedProcess`` results
keyed by the argv that follows ``git -C <root>``.
"""

from __future__ import annotations

import dataclasses
import subprocess
from pathlib import Path
from typing import Any, Callable, Generator, Iterable, Optional
from unittest import mock

import pytest

from lfsbridge.core.Context import RepositoryContext, SharedContext
from lfsbridge.core.Host import NullHost
from lfsbridge.core.StateCache import StateCache
from lfsbridge.integrations.LockCache import LockCache
from lfsbridge.utils.utils import normalize_path


class FakeClock:
    """Manually advanced time source for TTL tests."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGit:
    """Scripted stand-in for ``safe_run``.

    ``on(*prefix, ...)`` registers a response for every argv starting with
    ``prefix`` (after ``git -C <root>``); later registrations win. Passing
    ``responses=[(rc, stdout, stderr), ...]`` plays them in order, the last
    one repeating. Unmatched commands succeed with empty output, except
    ``check-ignore`` which reports "not ignored".
    """

    def __init__(self) -> None:
        self.rules: list[tuple[tuple[str, ...], list[tuple[int, Any, str]]]] = []
        self.calls: list[tuple[str, ...]] = []
        self.argvs: list[list[str]] = []
        self.kwargs: list[dict[str, Any]] = []
        self.on("check-ignore", rc=1)

    def on(self, *prefix: str, stdout: Any = "", stderr: str = "", rc: int = 0,
           responses: Optional[Iterable[tuple[int, Any, str]]] = None) -> None:
        played = list(responses) if responses is not None else [(rc, stdout, stderr)]
        self.rules.append((tuple(prefix), played))

    def __call__(self, cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
        args = list(cmd[1:])
        if args[:1] == ["-C"]:
            args = args[2:]
        self.argvs.append(list(cmd))
        self.kwargs.append(kwargs)
        self.calls.append(tuple(args))

        for prefix, played in reversed(self.rules):
            if tuple(args[:len(prefix)]) == prefix:
                rc, stdout, stderr = played.pop(0) if len(played) > 1 else played[0]
                return subprocess.CompletedProcess(cmd, rc, stdout, stderr)
        empty: Any = "" if kwargs.get("text", True) else b""
        return subprocess.CompletedProcess(cmd, 0, empty, "")

    def count(self, *prefix: str) -> int:
        return sum(1 for call in self.calls if call[:len(prefix)] == prefix)

    def index(self, *prefix: str) -> int:
        for i, call in enumerate(self.calls):
            if call[:len(prefix)] == prefix:
                return i
        raise ValueError(f"{prefix} was never called")


@pytest.fixture
def fake_git() -> Generator[FakeGit, None, None]:
    fake = FakeGit()
    with mock.patch("lfsbridge.integrations.GitCommand.safe_run", side_effect=fake):
        yield fake


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    """An empty repository layout: ``.git``, ``Content/`` and ``Config/``."""
    (tmp_path / ".git").mkdir()
    (tmp_path / "Content").mkdir()
    (tmp_path / "Config").mkdir()
    return tmp_path


@pytest.fixture
def root(repo: Path) -> str:
    return normalize_path(str(repo))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def host() -> mock.MagicMock:
    return mock.MagicMock(spec=NullHost)


@pytest.fixture
def shared(host: mock.MagicMock, clock: FakeClock) -> SharedContext:
    context = SharedContext(host=host, lock_cache=LockCache(ttl=30.0, clock=clock))
    context.add_lockable_extension(".uasset")
    return context


@pytest.fixture
def ctx(root: str, shared: SharedContext) -> RepositoryContext:
    return RepositoryContext(
        git_binary_path="git",
        repository_root=root,
        git_root=root,
        uses_lfs_locking=True,
        lock_user="alice",
        shared=shared,
    )


@pytest.fixture
def unlocked_ctx(ctx: RepositoryContext) -> RepositoryContext:
    """Same repository with LFS locking turned off."""
    return dataclasses.replace(ctx, uses_lfs_locking=False)


@pytest.fixture
def state_cache() -> StateCache:
    return StateCache()


@pytest.fixture
def make_file(root: str) -> Callable[..., str]:
    """Creates ``root/relative`` and returns its normalised absolute path."""

    def make(relative: str, content: str = "data") -> str:
        path = Path(root) / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return normalize_path(str(path))

    return make

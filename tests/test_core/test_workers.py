# tests/test_core/test_workers.py
"""Tests for the operation workers, driven through ``Command.do_work`` against a scripted git."""

import dataclasses
import os
import stat
from unittest import mock

import pytest

from lfsbridge.core.Command import Command
from lfsbridge.core.State import (
    Changelist,
    FileSourceState,
    FileState,
    GitLFSState,
    LockState,
    TreeState,
)
from lfsbridge.core.Workers import (
    GIT_NOT_FOUND_MESSAGE,
    PULL_REQUIRED_TITLE,
    REMOTE_FAILED_MESSAGE,
    CheckIn,
    CheckOut,
    Connect,
    Copy,
    Delete,
    Fetch,
    MarkForAdd,
    MoveToChangelist,
    Resolve,
    Revert,
    Sync,
    UpdateChangelistsStatus,
    UpdateStatus,
    create_worker,
    partition_for_revert,
)
from lfsbridge.integrations.GitHelpers import PENDING_RESTART_TITLE
from lfsbridge.utils.utils import set_read_only


SHA = "0123456789abcdef0123456789abcdef01234567"
REJECTED = " ! [rejected]        HEAD -> main (fetch first)"


def _command(operation, ctx, files=(), state_cache=None, changelist=None) -> Command:
    return Command(operation, create_worker(operation.name), ctx, files,
                   changelist=changelist, state_cache=state_cache)


def _seed(cache, path: str, **fields) -> None:
    delta = GitLFSState.unset()
    for name, value in fields.items():
        setattr(delta, name, value)
    cache.update_cached_states({path: FileSourceState(path, delta)})


def _writable(path: str) -> bool:
    return bool(os.stat(path).st_mode & stat.S_IWUSR)


def test_unknown_operation_has_no_worker() -> None:
    assert create_worker("Shelve") is None


# --- Connect ---

def test_synchronous_connect_does_not_touch_the_remote(fake_git, ctx) -> None:
    command = _command(Connect(), ctx)

    assert command.do_work()
    assert fake_git.calls == []


def test_asynchronous_connect_probes_the_remote(fake_git, ctx) -> None:
    fake_git.on("ls-remote", rc=128, stderr="fatal: could not read from remote")
    command = _command(Connect(), ctx)

    assert not command.do_threaded_work()
    assert fake_git.calls == [("ls-remote", "-q", "-h")]
    assert command.operation.error_text == REMOTE_FAILED_MESSAGE


def test_connect_without_git(fake_git, ctx) -> None:
    command = _command(Connect(), dataclasses.replace(ctx, git_binary_path=""))

    assert not command.do_threaded_work()
    assert command.operation.error_text == GIT_NOT_FOUND_MESSAGE


# --- CheckOut ---

def test_checkout_locks_once_and_makes_file_writable(fake_git, ctx, state_cache, make_file) -> None:
    path = make_file("Content/a.uasset")
    set_read_only(path, True)

    first = _command(CheckOut(), ctx, [path])
    assert first.do_work()
    first.worker.update_states(state_cache)

    assert fake_git.calls == [("lfs", "lock", "Content/a.uasset")]
    assert _writable(path)
    cached = state_cache.find_state(path)
    assert (cached.state.lock_state, cached.state.lock_user) == (LockState.LOCKED, "alice")
    assert cached.is_checked_out()

    second = _command(CheckOut(), ctx, [path])
    assert second.do_work()
    assert fake_git.count("lfs", "lock") == 1


def test_checkout_failure_keeps_file_read_only(fake_git, ctx, make_file) -> None:
    path = make_file("Content/a.uasset")
    set_read_only(path, True)
    fake_git.on("lfs", "lock", rc=2, stderr="Lock exists")
    command = _command(CheckOut(), ctx, [path])

    assert not command.do_work()
    assert not _writable(path)
    assert command.worker.states == {}
    assert command.result_info.error_messages == ["Lock exists"]


def test_checkout_needs_locking(fake_git, unlocked_ctx, root) -> None:
    assert not _command(CheckOut(), unlocked_ctx, [f"{root}/Content/a.uasset"]).do_work()
    assert fake_git.calls == []


def test_checkout_of_non_lockable_files_is_a_no_op(fake_git, ctx, root) -> None:
    assert _command(CheckOut(), ctx, [f"{root}/Config/Game.ini"]).do_work()
    assert fake_git.calls == []


# --- CheckIn ---

def _script_commit(fake_git) -> None:
    fake_git.on("commit", stdout="[main abc1234] Fix lighting\n 1 file changed\n")
    fake_git.on("log", "-1", "--format=%H %s", stdout=f"{SHA} Fix lighting\n")
    fake_git.on("rev-parse", stdout="origin/main\n")
    fake_git.on("diff", "--name-only", "origin/main...HEAD", stdout="Content/a.uasset\n")


def test_checkin_retries_a_stale_push_then_unlocks(fake_git, ctx, host, make_file) -> None:
    path = make_file("Content/a.uasset")
    ctx.shared.lock_cache.add_locked_file(path, "alice", "alice")
    _script_commit(fake_git)
    fake_git.on("diff", "--name-only", "origin/main", stdout="Config/Game.ini\n")
    fake_git.on("push", responses=[(1, "", REJECTED), (0, "", "")])
    command = _command(CheckIn(description="Fix lighting"), ctx, [path])

    assert command.do_work()

    assert fake_git.count("push") == 2
    assert fake_git.index("push") < fake_git.index("fetch") < fake_git.index("pull") < fake_git.index("lfs", "unlock")
    assert ("lfs", "unlock", "Content/a.uasset") in fake_git.calls
    assert path not in ctx.shared.lock_cache.get_locked_files()
    assert command.commit_id == SHA
    assert command.commit_summary == "Fix lighting"
    assert command.operation.success_message == "Commited [main abc1234] Fix lighting."
    host.on_notify.assert_not_called()


def test_checkin_commits_relative_paths_with_message_file(fake_git, ctx, make_file) -> None:
    path = make_file("Content/a.uasset")
    _script_commit(fake_git)
    command = _command(CheckIn(description="Fix lighting"), ctx, [path])

    command.do_work()

    assert ("add", "Content/a.uasset") in fake_git.calls
    commit = fake_git.calls[fake_git.index("commit")]
    assert commit[1].startswith("--file=")
    assert commit[2:] == ("Content/a.uasset",)


def test_checkin_commit_failure_skips_push(fake_git, ctx, make_file) -> None:
    path = make_file("Content/a.uasset")
    fake_git.on("commit", rc=1, stderr="error: pathspec did not match")
    command = _command(CheckIn(description="Fix"), ctx, [path])

    assert not command.do_work()
    assert fake_git.count("push") == 0
    assert fake_git.count("lfs", "unlock") == 0


def test_checkin_with_nothing_to_commit_pushes_pending_commits(fake_git, ctx, make_file) -> None:
    path = make_file("Content/a.uasset")
    fake_git.on("commit", rc=1, stdout="nothing to commit, working tree clean\n")
    fake_git.on("rev-parse", stdout="origin/main\n")
    fake_git.on("diff", "--name-only", "origin/main...HEAD", stdout="Content/b.uasset\n")
    command = _command(CheckIn(description="Fix"), ctx, [path])

    assert command.do_work()
    assert fake_git.count("push") == 1


def test_checkin_push_failure_keeps_locks(fake_git, ctx, make_file) -> None:
    path = make_file("Content/a.uasset")
    ctx.shared.lock_cache.add_locked_file(path, "alice", "alice")
    _script_commit(fake_git)
    fake_git.on("push", rc=128, stderr="fatal: unable to access remote")
    command = _command(CheckIn(description="Fix"), ctx, [path])

    assert not command.do_work()
    assert fake_git.count("fetch") == 0
    assert fake_git.count("lfs", "unlock") == 0
    assert path in ctx.shared.lock_cache.get_locked_files()


def test_checkin_asks_for_manual_pull_when_retry_fails(fake_git, ctx, host, make_file) -> None:
    path = make_file("Content/a.uasset")
    _script_commit(fake_git)
    fake_git.on("push", rc=1, stderr=REJECTED)
    command = _command(CheckIn(description="Fix"), ctx, [path])

    assert not command.do_work()
    assert fake_git.count("push") == 2
    level, text = host.on_notify.call_args.args
    assert level == "error"
    assert text.startswith(PULL_REQUIRED_TITLE)


def test_checkin_without_upstream_uses_unpushed_log(fake_git, ctx, make_file) -> None:
    path = make_file("Content/a.uasset")
    fake_git.on("rev-parse", rc=128)
    fake_git.on("log", "--branches", stdout="Content/a.uasset\nContent/a.uasset\n")
    command = _command(CheckIn(description="Fix"), ctx, [path])

    command.do_work()

    assert ("log", "--branches", "--not", "--remotes", "--name-only", "--pretty=") in fake_git.calls
    assert fake_git.count("push") == 1


def test_committed_deletions_leave_the_cache(fake_git, ctx, state_cache, root) -> None:
    path = f"{root}/Content/gone.uasset"
    _seed(state_cache, path, file_state=FileState.DELETED, tree_state=TreeState.STAGED)
    _script_commit(fake_git)
    command = _command(CheckIn(description="Remove"), ctx, [path], state_cache=state_cache)

    command.do_work()
    command.worker.update_states(state_cache)

    assert state_cache.find_state(path) is None


# --- Revert ---

def test_revert_retries_checkout_while_file_is_busy(fake_git, ctx, state_cache, make_file) -> None:
    path = make_file("Content/a.uasset")
    _seed(state_cache, path, tree_state=TreeState.WORKING, file_state=FileState.MODIFIED)
    ctx.shared.lock_cache.add_locked_file(path, "alice", "alice")
    busy = (1, "", "error: unable to unlink old 'Content/a.uasset'")
    fake_git.on("checkout", responses=[busy, busy, busy, (0, "", "")])

    with mock.patch("lfsbridge.core.Workers.time.sleep") as sleep:
        command = _command(Revert(), ctx, [path], state_cache=state_cache)
        assert command.do_work()

    assert fake_git.count("checkout") == 4
    assert sleep.call_count == 3
    assert ("lfs", "unlock", "Content/a.uasset") in fake_git.calls


def test_revert_gives_up_after_ten_attempts(fake_git, ctx, state_cache, make_file) -> None:
    path = make_file("Content/a.uasset")
    _seed(state_cache, path, tree_state=TreeState.WORKING, file_state=FileState.MODIFIED)
    ctx.shared.lock_cache.add_locked_file(path, "alice", "alice")
    fake_git.on("lfs", "locks", stdout="Content/a.uasset\talice\tID:1\n")
    fake_git.on("checkout", rc=1, stderr="error: unable to unlink")

    with mock.patch("lfsbridge.core.Workers.time.sleep") as sleep:
        command = _command(Revert(), ctx, [path], state_cache=state_cache)
        assert not command.do_work()

    assert fake_git.count("checkout") == 10
    assert sleep.call_count == 9
    assert fake_git.count("lfs", "unlock") == 0
    assert ctx.shared.lock_cache.get_locked_files() == {path: "alice"}


def test_revert_removes_resets_then_restores(fake_git, unlocked_ctx, state_cache, root, make_file) -> None:
    missing = f"{root}/Content/m.uasset"
    added = make_file("Content/n.uasset")
    modified = make_file("Content/o.uasset")
    _seed(state_cache, missing, file_state=FileState.UNKNOWN, tree_state=TreeState.UNMODIFIED)
    _seed(state_cache, added, file_state=FileState.ADDED, tree_state=TreeState.STAGED)
    _seed(state_cache, modified, file_state=FileState.MODIFIED, tree_state=TreeState.WORKING)

    command = _command(Revert(), unlocked_ctx, [missing, added, modified], state_cache=state_cache)
    assert command.do_work()

    assert fake_git.index("rm", missing) < fake_git.index("reset", "--", added, modified) < fake_git.index(
        "checkout", modified
    )


def test_partition_for_revert_keeps_locked_unmodified_files(state_cache, make_file) -> None:
    path = make_file("Content/a.uasset")
    _seed(state_cache, path, file_state=FileState.UNKNOWN, tree_state=TreeState.UNMODIFIED,
          lock_state=LockState.LOCKED, lock_user="alice")

    assert partition_for_revert([path], state_cache) == ([], [], [path])


def test_revert_everything(fake_git, unlocked_ctx, state_cache) -> None:
    command = _command(Revert(), unlocked_ctx, [], state_cache=state_cache)

    assert command.do_work()
    assert fake_git.index("reset", "--hard") < fake_git.index("clean", "-f", "-d")


def test_revert_of_ignored_files_only_does_nothing(fake_git, unlocked_ctx, state_cache, root) -> None:
    command = _command(Revert(), unlocked_ctx, [], state_cache=state_cache)
    command.ignored_files = [f"{root}/Saved/Logs/game.log"]

    assert command.do_work()
    assert fake_git.calls == []


# --- Fetch / Sync ---

def test_fetch_then_sync_refused_after_binaries_changed(fake_git, ctx, host, root) -> None:
    ctx.shared.project_paths = [f"{root}/Content"]
    fake_git.on("rev-parse", stdout="origin/main\n")
    fake_git.on("log", "--pretty=", "--name-only", "..origin/main", stdout=".checksum\n")

    fetch = _command(Fetch(update_status=True), ctx)
    assert fetch.do_work()
    assert ctx.shared.pending_restart

    sync = _command(Sync(), ctx)
    assert not sync.do_work()
    assert fake_git.count("pull") == 0
    assert PENDING_RESTART_TITLE in sync.result_info.error_messages
    assert host.on_notify.call_args.args[0] == "error"


def test_fetch_failure_skips_status(fake_git, ctx, root) -> None:
    ctx.shared.project_paths = [f"{root}/Content"]
    fake_git.on("fetch", rc=128, stderr="fatal: unable to access")

    assert not _command(Fetch(update_status=True), ctx).do_work()
    assert fake_git.count("--no-optional-locks") == 0


def test_sync_pulls_and_reports_head(fake_git, ctx, root) -> None:
    fake_git.on("rev-parse", stdout="origin/main\n")
    fake_git.on("diff", "--name-only", "origin/main", stdout="Content/a.uasset\n")
    fake_git.on("log", "-1", "--format=%H %s", stdout=f"{SHA} Merge\n")
    command = _command(Sync(), ctx, [f"{root}/Content/a.uasset"])

    assert command.do_work()
    assert ("pull", "--rebase", "--autostash") in fake_git.calls
    assert command.commit_id == SHA


# --- UpdateStatus ---

def test_update_status_with_history(fake_git, unlocked_ctx, state_cache, make_file) -> None:
    path = make_file("Content/a.uasset")
    fake_git.on("--no-optional-locks", "status", stdout=" M Content/a.uasset\n")
    fake_git.on("log", "--follow", stdout=(
        f"commit {SHA}\nAuthor: Alice <alice@example.com>\nDate:   1700000000 +0000\n"
        "    Fix lighting\nM\tContent/a.uasset\n"
    ))
    command = _command(UpdateStatus(update_history=True), unlocked_ctx, [path])

    assert command.do_work()
    assert command.worker.update_states(state_cache)

    cached = state_cache.find_state(path)
    assert cached.state.file_state == FileState.MODIFIED
    assert [r.commit_id for r in cached.history] == [SHA]


def test_update_status_without_files_refreshes_project(fake_git, unlocked_ctx, root) -> None:
    unlocked_ctx.shared.project_paths = [f"{root}/Content", f"{root}/Config"]

    assert _command(UpdateStatus(), unlocked_ctx).do_work()

    status = fake_git.calls[fake_git.index("--no-optional-locks", "status", "--porcelain", "-uall")]
    assert status[-2:] == (f"{root}/Content", f"{root}/Config")


def test_update_status_outside_repository_fails(fake_git, unlocked_ctx) -> None:
    assert not _command(UpdateStatus(), unlocked_ctx, ["/elsewhere/a.uasset"]).do_work()


def test_update_status_skips_sibling_directory_with_same_prefix(fake_git, unlocked_ctx, root) -> None:
    sibling = f"{root}2/Content/a.uasset"

    assert not _command(UpdateStatus(), unlocked_ctx, [sibling]).do_work()
    assert fake_git.count("--no-optional-locks", "status") == 0


# --- Add / Delete / Changelists ---

def test_mark_for_add(fake_git, unlocked_ctx, state_cache, root) -> None:
    path = f"{root}/Content/new.uasset"
    command = _command(MarkForAdd(), unlocked_ctx, [path])

    assert command.do_work()
    command.worker.update_states(state_cache)

    assert ("add", path) in fake_git.calls
    assert state_cache.find_state(path).is_added()


def test_delete(fake_git, unlocked_ctx, state_cache, root) -> None:
    path = f"{root}/Content/old.uasset"
    command = _command(Delete(), unlocked_ctx, [path])

    assert command.do_work()
    command.worker.update_states(state_cache)

    assert ("rm", path) in fake_git.calls
    assert state_cache.find_state(path).is_deleted()


@pytest.mark.parametrize(
    ("changelist", "expected"),
    [(Changelist.STAGED, ("add",)), (Changelist.WORKING, ("restore", "--staged"))],
)
def test_move_to_changelist(fake_git, unlocked_ctx, root, changelist, expected) -> None:
    path = f"{root}/Content/a.uasset"

    assert _command(MoveToChangelist(), unlocked_ctx, [path], changelist=changelist).do_work()
    assert (*expected, path) in fake_git.calls


def test_move_to_unknown_changelist_fails(fake_git, unlocked_ctx, root) -> None:
    command = _command(MoveToChangelist(), unlocked_ctx, [f"{root}/Content/a.uasset"])

    assert not command.do_work()
    assert "Cannot move files to changelist" in command.result_info.error_messages[0]
    assert fake_git.calls == []


def test_copy_adds_the_redirector(fake_git, unlocked_ctx, state_cache, root) -> None:
    path = f"{root}/Content/redirector.uasset"
    command = _command(Copy(), unlocked_ctx, [path])

    assert command.do_work()
    command.worker.update_states(state_cache)

    assert ("add", path) in fake_git.calls
    assert state_cache.find_state(path).is_added()


def test_resolve_adds_then_refreshes(fake_git, unlocked_ctx, state_cache, make_file) -> None:
    path = make_file("Content/a.uasset")
    fake_git.on("--no-optional-locks", "status", stdout="M  Content/a.uasset\n")
    command = _command(Resolve(), unlocked_ctx, [path], state_cache=state_cache)

    assert command.do_work()
    assert fake_git.index("add", path) < fake_git.index("--no-optional-locks", "status")
    command.worker.update_states(state_cache)
    assert state_cache.find_state(path).state.file_state == FileState.MODIFIED


def test_update_changelists_status_records_content_dir(fake_git, unlocked_ctx) -> None:
    fake_git.on("--no-optional-locks", "status", stdout="M  Content/a.uasset\n?? Content/b.uasset\n")
    command = _command(UpdateChangelistsStatus(), unlocked_ctx)

    assert command.do_work()
    assert command.changelist_status == ["M  Content/a.uasset", "?? Content/b.uasset"]
    assert fake_git.calls[-1][-1] == "Content/"

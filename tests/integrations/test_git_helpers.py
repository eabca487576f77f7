# tests/integrations/test_git_helpers.py
"""Tests for the typed git verb wrappers: locks, pull, branches, attributes."""

import logging

from lfsbridge.integrations.GitHelpers import (
    PENDING_RESTART_TITLE,
    GitHelpers,
    parse_git_lock_line,
)


LOCKS_OUTPUT = "Content/a.uasset\talice\tID:1\nContent/b.uasset\tbob\tID:2\n"


def test_parse_git_lock_line(root) -> None:
    assert parse_git_lock_line(root, "Content/a.uasset\tbob\tID:7", "alice") == (f"{root}/Content/a.uasset", "bob")
    # No user column: the lock belongs to us
    assert parse_git_lock_line(root, "Content/a.uasset\tID:7", "alice") == (f"{root}/Content/a.uasset", "alice")


def test_locks_are_served_from_cache_within_ttl(fake_git, ctx, clock, root) -> None:
    fake_git.on("lfs", "locks", stdout=LOCKS_OUTPUT)
    helpers = GitHelpers(ctx)

    ok, locks = helpers.get_all_locks()
    assert ok
    assert locks == {f"{root}/Content/a.uasset": "alice", f"{root}/Content/b.uasset": "bob"}
    assert fake_git.count("lfs", "locks") == 1

    clock.advance(10)
    _, cached = helpers.get_all_locks()
    assert cached == locks
    assert fake_git.count("lfs", "locks") == 1

    clock.advance(21)
    helpers.get_all_locks()
    assert fake_git.count("lfs", "locks") == 2


def test_invalidate_bypasses_ttl(fake_git, ctx) -> None:
    fake_git.on("lfs", "locks", stdout=LOCKS_OUTPUT)
    helpers = GitHelpers(ctx)

    helpers.get_all_locks()
    helpers.get_all_locks(invalidate=True)

    assert fake_git.count("lfs", "locks") == 2


def test_locks_fall_back_to_cached_and_local(fake_git, ctx, root) -> None:
    fake_git.on("lfs", "locks", rc=2, stderr="connection refused")
    fake_git.on("lfs", "locks", "--cached", stdout="Content/a.uasset\talice\tID:1\nContent/b.uasset\tbob\tID:2\n")
    fake_git.on("lfs", "locks", "--local", stdout="Content/c.uasset\talice\tID:3\n")

    ok, locks = GitHelpers(ctx).get_all_locks()

    assert ok
    assert locks == {f"{root}/Content/a.uasset": "alice", f"{root}/Content/c.uasset": "alice"}
    # The cache was not refreshed, the next call asks the server again
    assert ctx.shared.lock_cache.is_expired()


def test_locks_fall_back_to_memory_when_offline(fake_git, ctx, root) -> None:
    fake_git.on("lfs", "locks", rc=2)
    ctx.shared.lock_cache.add_locked_file(f"{root}/Content/z.uasset", "bob", "alice")

    ok, locks = GitHelpers(ctx).get_all_locks()

    assert ok
    assert locks == {f"{root}/Content/z.uasset": "bob"}


def test_lock_files_uses_paths_relative_to_git_root(fake_git, ctx, root) -> None:
    helpers = GitHelpers(ctx)

    assert helpers.lock_files([f"{root}/Content/a.uasset", f"{root}/Content/Maps/m.umap"])

    assert fake_git.calls == [("lfs", "lock", "Content/a.uasset", "Content/Maps/m.umap")]
    assert fake_git.argvs[0][:3] == ["git", "-C", root]


def test_lock_files_without_files_runs_nothing(fake_git, ctx) -> None:
    assert GitHelpers(ctx).lock_files([])
    assert fake_git.calls == []


def test_unlock_files_updates_cache(fake_git, ctx, make_file) -> None:
    path = make_file("Content/a.uasset")
    ctx.shared.lock_cache.add_locked_file(path, "alice", "alice")

    assert GitHelpers(ctx).unlock_files([path])

    assert fake_git.calls == [("lfs", "unlock", "Content/a.uasset")]
    assert path not in ctx.shared.lock_cache.get_locked_files()


def test_failed_unlock_keeps_cache(fake_git, ctx, root) -> None:
    path = f"{root}/Content/a.uasset"
    ctx.shared.lock_cache.add_locked_file(path, "alice", "alice")
    fake_git.on("lfs", "unlock", rc=2, stderr="Unable to unlock")
    helpers = GitHelpers(ctx)

    assert not helpers.unlock_files([path])
    assert path in ctx.shared.lock_cache.get_locked_files()
    assert helpers.errors == ["Unable to unlock"]


def test_get_locked_files_filters_on_lock_user(ctx, root) -> None:
    cache = ctx.shared.lock_cache
    cache.add_locked_file(f"{root}/Content/a.uasset", "alice", "alice")
    cache.add_locked_file(f"{root}/Content/b.uasset", "bob", "alice")

    locked = GitHelpers(ctx).get_locked_files([f"{root}/Content/a.uasset", f"{root}/Content/b.uasset"])

    assert locked == [f"{root}/Content/a.uasset"]


def test_pull_is_refused_while_restart_is_pending(fake_git, ctx, host) -> None:
    ctx.shared.pending_restart = True
    helpers = GitHelpers(ctx)

    ok, touched = helpers.pull_origin()

    assert not ok
    assert touched == []
    assert fake_git.count("pull") == 0
    assert helpers.errors == [PENDING_RESTART_TITLE]
    host.on_notify.assert_called_once()
    assert host.on_notify.call_args.args[0] == "error"


def test_pull_reloads_touched_lockable_files(fake_git, ctx, host, root) -> None:
    fake_git.on("rev-parse", stdout="origin/main\n")
    fake_git.on("diff", "--name-only", "origin/main", stdout="Content/a.uasset\nConfig/Game.ini\n")
    fake_git.on("pull", stdout="Updating 123..456\n")
    helpers = GitHelpers(ctx)

    ok, touched = helpers.pull_origin()

    assert ok
    assert touched == [f"{root}/Content/a.uasset", f"{root}/Config/Game.ini"]
    host.on_prepare_reload.assert_called_once_with([f"{root}/Content/a.uasset"])
    assert ctx.shared.pending_reloads.get_nowait() == [f"{root}/Content/a.uasset"]
    assert ("pull", "--rebase", "--autostash") in fake_git.calls
    assert helpers.info == ["Updating 123..456"]


def test_pull_is_skipped_when_up_to_date(fake_git, ctx, host) -> None:
    fake_git.on("rev-parse", stdout="origin/main\n")

    ok, touched = GitHelpers(ctx).pull_origin()

    assert ok
    assert touched == []
    assert fake_git.count("pull") == 0
    host.on_prepare_reload.assert_not_called()


def test_pull_without_upstream_fails(fake_git, ctx) -> None:
    fake_git.on("rev-parse", rc=128, stderr="fatal: no upstream configured")

    ok, _ = GitHelpers(ctx).pull_origin()

    assert not ok
    assert fake_git.count("diff") == 0


def test_branch_name_from_symbolic_ref(fake_git, ctx) -> None:
    fake_git.on("symbolic-ref", stdout="main\n")

    assert GitHelpers(ctx).get_branch_name() == (True, "main")


def test_detached_head(fake_git, ctx) -> None:
    fake_git.on("symbolic-ref", rc=1)
    fake_git.on("log", "-1", "--format=%h", stdout="abc1234\n")

    assert GitHelpers(ctx).get_branch_name() == (False, "HEAD detached at abc1234")


def test_cached_branch_name_skips_git(fake_git, ctx) -> None:
    ctx.shared.branch_name = "feature"

    assert GitHelpers(ctx).get_branch_name() == (True, "feature")
    assert fake_git.calls == []


def test_missing_upstream_warns_once(fake_git, ctx, caplog) -> None:
    caplog.set_level(logging.WARNING, logger="lfsbridge")
    fake_git.on("rev-parse", rc=128)
    helpers = GitHelpers(ctx)

    assert helpers.get_remote_branch_name() == (False, "")
    helpers.get_remote_branch_name()

    assert ctx.shared.warned_remote_branch
    assert sum("Upstream branch not found" in r.getMessage() for r in caplog.records) == 1


def test_remote_branches_wildcard(fake_git, ctx) -> None:
    fake_git.on("branch", "--remotes", "--list", stdout="  origin/release-1\n  origin/release-2\n")

    assert GitHelpers(ctx).get_remote_branches_wildcard("origin/release*") == (
        True, ["origin/release-1", "origin/release-2"],
    )


def test_check_lfs_lockable_records_set_extensions(fake_git, ctx) -> None:
    fake_git.on("check-attr", stdout="*.umap: lockable: set\n*.ini: lockable: unset\n")

    assert GitHelpers(ctx).check_lfs_lockable(["*.umap", "*.ini"])

    assert ".umap" in ctx.shared.lockable_extensions
    assert ".ini" not in ctx.shared.lockable_extensions
    assert fake_git.calls == [("check-attr", "lockable", "*.umap", "*.ini")]


def test_commit_info(fake_git, ctx) -> None:
    sha = "0123456789abcdef0123456789abcdef01234567"
    fake_git.on("log", "-1", "--format=%H %s", stdout=f"{sha} Fix lighting\n")

    assert GitHelpers(ctx).get_commit_info() == (True, sha, "Fix lighting")


def test_get_config_missing_key(fake_git, ctx) -> None:
    fake_git.on("config", rc=1)

    assert GitHelpers(ctx).get_config("user.email") == ""


def test_status_never_takes_the_index_lock(fake_git, ctx, root) -> None:
    GitHelpers(ctx).get_status_no_locks(True, [f"{root}/Content"])

    assert fake_git.calls == [("--no-optional-locks", "status", "--porcelain", "-uall", f"{root}/Content")]


def test_remove_ignored_files(fake_git, ctx, root) -> None:
    ignored = f"{root}/Saved/Logs/game.log"
    kept = f"{root}/Content/a.uasset"
    fake_git.on("check-ignore", ignored, rc=0)
    files = [kept, ignored]

    assert GitHelpers(ctx).remove_ignored_files(files) == [ignored]
    assert files == [kept]


def test_show_reads_raw_dates(fake_git, ctx) -> None:
    fake_git.on("show", stdout="commit abc\nAuthor: Alice <alice@example.com>\n")

    ok, lines = GitHelpers(ctx).run_show(["HEAD"])

    assert ok
    assert lines == ["commit abc", "Author: Alice <alice@example.com>"]
    assert fake_git.calls == [("show", "--date=raw", "--pretty=medium", "HEAD")]


def test_stash_save_and_pop(fake_git, ctx) -> None:
    helpers = GitHelpers(ctx)

    assert helpers.run_stash(True)
    assert helpers.run_stash(False)
    assert fake_git.calls == [("stash", "save", "Stashed by lfsbridge"), ("stash", "pop")]


def test_repository_setup_verbs(fake_git, ctx) -> None:
    fake_git.on("init", stdout="Initialized empty Git repository\n")
    info: list[str] = []
    helpers = GitHelpers(ctx, info, [])

    assert helpers.run_init()
    assert helpers.run_add_origin("https://example.com/game.git")
    assert helpers.run_lfs_install()

    assert fake_git.calls == [
        ("init",),
        ("remote", "add", "origin", "https://example.com/game.git"),
        ("lfs", "install"),
    ]
    # Setup chatter stays out of the operation messages
    assert info == []


def test_repository_setup_failure(fake_git, ctx) -> None:
    fake_git.on("remote", rc=3, stderr="error: remote origin already exists.")
    errors: list[str] = []

    assert not GitHelpers(ctx, [], errors).run_add_origin("https://example.com/game.git")
    assert errors == ["error: remote origin already exists."]

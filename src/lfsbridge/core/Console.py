# lfsbridge/core/Console.py
"""Console Module
==============
Developer harness: runs one provider operation from the command line and
prints the outcome.

Usage:
------
    python main.py status Content/a.uasset
    python main.py checkout Content/a.uasset
    python main.py checkin -m "Fix lighting" Content/a.uasset
    python main.py locks

Paths are taken relative to the project directory (``--project``,
defaulting to ``[provider] project_root`` then the current directory).
"""

import argparse
import logging
import sys
import time
from typing import Any, Callable, Optional, Sequence, TextIO

from lfsbridge.core.Command import CommandResult
from lfsbridge.core.Provider import Provider
from lfsbridge.core.Settings import Settings
from lfsbridge.core.State import Changelist, FileSourceState
from lfsbridge.core.Workers import (
    CheckIn,
    CheckOut,
    Connect,
    Delete,
    Fetch,
    MarkForAdd,
    MoveToChangelist,
    Operation,
    Resolve,
    Revert,
    Sync,
    UpdateStatus,
)
from lfsbridge.integrations.GitHelpers import GitHelpers


logger = logging.getLogger("lfsbridge")

ASYNC_WAIT_INTERVAL = 0.05


# ================= ConsoleHost Class ==============================
class ConsoleHost:
    """Host printing notifications to a stream and asking questions on stdin."""

    def __init__(self, stream: Optional[TextIO] = None, assume_yes: bool = False) -> None:
        self.stream = stream if stream is not None else sys.stderr
        self.assume_yes = assume_yes

    def on_notify(self, level: str, text: str) -> None:
        print(f"[{level}] {text}", file=self.stream)

    def on_confirm(self, title: str, body: str) -> bool:
        if self.assume_yes:
            return True
        print(f"{title}\n{body}", file=self.stream)
        try:
            return input("[y/N] ").strip().lower() in ("y", "yes")
        except EOFError:
            return False

    def on_prepare_reload(self, paths: list[str]) -> None:
        logger.debug(f"Releasing {len(paths)} file(s) before pull")

    def on_reload(self, paths: list[str]) -> None:
        for path in paths:
            print(f"updated: {path}", file=self.stream)


# ================= Commands ==============================

def _format_state(state: FileSourceState) -> str:
    text = f"{state.get_display_name():<18} {state.local_filename}"
    if state.is_checked_out_other():
        text += f"  (locked by {state.checked_out_by()})"
    elif state.is_checked_out():
        text += "  (locked)"
    if state.state.head_branch:
        text += f"  [{state.state.head_branch}]"
    return text


def _print_messages(operation: Operation, out: TextIO) -> None:
    for message in operation.info_messages:
        print(message, file=out)
    for message in operation.error_messages:
        print(f"error: {message}", file=out)
    if operation.success_message:
        print(operation.success_message, file=out)


def run_async(provider: Provider, operation: Operation, files: Sequence[str] = (),
              timeout: float = 300.0) -> CommandResult:
    """Issues ``operation`` asynchronously and ticks until its callback fired."""
    outcome: list[CommandResult] = []

    def on_complete(op: Operation, result: CommandResult) -> None:
        outcome.append(result)

    issued = provider.execute(operation, files, asynchronous=True, callback=on_complete)
    if issued != CommandResult.SUCCEEDED:
        return issued
    deadline = time.monotonic() + timeout
    while not outcome and time.monotonic() < deadline:
        provider.tick()
        time.sleep(ASYNC_WAIT_INTERVAL)
    return outcome[0] if outcome else CommandResult.CANCELLED


def _cmd_status(provider: Provider, args: argparse.Namespace, out: TextIO) -> CommandResult:
    result = provider.execute(UpdateStatus(update_history=args.history), args.files)
    if args.files:
        states = provider.get_state(args.files)
    else:
        states = provider.get_cached_states_by_predicate(lambda s: s.is_modified() or s.is_conflicted())
    for state in sorted(states, key=lambda s: s.local_filename):
        print(_format_state(state), file=out)
        if args.history:
            for revision in state.history:
                print(f"    {revision.short_commit_id} {revision.user_name}: {revision.description}", file=out)
    for changelist in provider.get_changelists():
        changelist_state = provider.get_changelist_state(changelist)
        print(f"{changelist_state.get_display_text()}: {changelist_state.get_files_states_num()} file(s)", file=out)
    return result


def _cmd_locks(provider: Provider, args: argparse.Namespace, out: TextIO) -> CommandResult:
    ok, locks = GitHelpers(provider.build_context()).get_all_locks(invalidate=True)
    for path, owner in sorted(locks.items()):
        print(f"{owner:<20} {path}", file=out)
    return CommandResult.SUCCEEDED if ok else CommandResult.FAILED


def _cmd_version(provider: Provider, args: argparse.Namespace, out: TextIO) -> CommandResult:
    version = provider.git_version
    if version is None:
        print("git not found", file=out)
        return CommandResult.FAILED
    text = f"git {version.major}.{version.minor}.{version.patch}"
    if version.is_fork:
        text += f" ({version.fork} {version.fork_major}.{version.fork_minor}.{version.fork_patch})"
    print(text, file=out)
    return CommandResult.SUCCEEDED


def _cmd_info(provider: Provider, args: argparse.Namespace, out: TextIO) -> CommandResult:
    print(provider.get_status_text(), file=out)
    return CommandResult.SUCCEEDED


def _operation_command(factory: Callable[[argparse.Namespace], Operation],
                       changelist: Optional[Changelist] = None,
                       asynchronous: bool = False) -> Callable[[Provider, argparse.Namespace, TextIO], CommandResult]:
    def run(provider: Provider, args: argparse.Namespace, out: TextIO) -> CommandResult:
        operation = factory(args)
        if asynchronous:
            result = run_async(provider, operation, args.files)
        else:
            result = provider.execute(operation, args.files, changelist=changelist)
        _print_messages(operation, out)
        return result
    return run


COMMANDS: dict[str, Callable[[Provider, argparse.Namespace, TextIO], CommandResult]] = {
    # A synchronous Connect never reaches the remote
    "connect": _operation_command(lambda a: Connect(), asynchronous=True),
    "status": _cmd_status,
    "checkout": _operation_command(lambda a: CheckOut()),
    "checkin": _operation_command(lambda a: CheckIn(description=a.message)),
    "revert": _operation_command(lambda a: Revert()),
    "sync": _operation_command(lambda a: Sync()),
    "fetch": _operation_command(lambda a: Fetch(update_status=True)),
    "add": _operation_command(lambda a: MarkForAdd()),
    "delete": _operation_command(lambda a: Delete()),
    "resolve": _operation_command(lambda a: Resolve()),
    "stage": _operation_command(lambda a: MoveToChangelist(), Changelist.STAGED),
    "unstage": _operation_command(lambda a: MoveToChangelist(), Changelist.WORKING),
    "locks": _cmd_locks,
    "version": _cmd_version,
    "info": _cmd_info,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lfsbridge", description="Git LFS revision control from the command line.")
    _ = parser.add_argument("--project", default="", help="Project directory (default: config or cwd)")
    _ = parser.add_argument("-y", "--yes", action="store_true", help="Answer yes to every question")
    _ = parser.add_argument("command", choices=sorted(COMMANDS), help="Operation to run")
    _ = parser.add_argument("files", nargs="*", help="Files, relative to the project directory")
    _ = parser.add_argument("-m", "--message", default="", help="Commit message (checkin)")
    _ = parser.add_argument("--history", action="store_true", help="Also print file history (status)")
    return parser


def run_console(argv: Sequence[str], config: dict[str, Any], out: Optional[TextIO] = None,
                provider: Optional[Provider] = None) -> int:
    """Runs one command; returns the process exit code."""
    out = out if out is not None else sys.stdout
    args = build_parser().parse_args(list(argv))
    if args.command == "checkin" and not args.message and args.files:
        print("checkin needs a message (-m)", file=sys.stderr)
        return 2

    if provider is None:
        provider = Provider(
            ConsoleHost(assume_yes=args.yes),
            Settings.from_config(config),
            config,
            project_dir=args.project,
        )
    provider.init(force_connection=True)
    try:
        if args.command != "version" and not provider.is_enabled():
            print(provider.get_status_text(), file=out)
            return 1
        result = COMMANDS[args.command](provider, args, out)
    finally:
        provider.close()

    if result != CommandResult.SUCCEEDED:
        logger.info(f"'{args.command}' finished with {result}")
        return 1
    return 0

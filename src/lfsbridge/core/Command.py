# lfsbridge/core/Command.py
"""Command Module
==============
One queued revision control request: the operation asked by the host, the
worker that executes it, the repository snapshot it runs against and the
messages it produced.

A Command is created on the foreground thread, executed on a worker thread
(``do_work``) and drained on the foreground tick, where its worker applies
its state deltas and the completion callback fires (``return_results``).

Classes:
--------
- Concurrency / CommandResult: Execution mode and outcome.
- ResultInfo: Accumulated info and error lines.
- Command: The request itself.
- LfsBridgeError, UnsupportedOperationError, InvalidChangelistError.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Callable, Optional, Sequence

from lfsbridge.core.Context import RepositoryContext
from lfsbridge.core.State import Changelist
from lfsbridge.integrations.GitCommand import change_repository_root_if_submodule
from lfsbridge.integrations.GitHelpers import GitHelpers


if TYPE_CHECKING:
    from lfsbridge.core.StateCache import StateCache
    from lfsbridge.core.Workers import Operation, Worker


logger = logging.getLogger("lfsbridge")

# git reports files of migrated assets that live in another repository this way
REDUNDANT_ERROR_FILTER = "' is outside repository"


class LfsBridgeError(Exception):
    """Base class of lfsbridge exceptions."""


class UnsupportedOperationError(LfsBridgeError):
    """No worker is registered for the requested operation."""

    def __init__(self, operation_name: str, provider_name: str = "Git LFS") -> None:
        self.operation_name = operation_name
        self.provider_name = provider_name
        super().__init__(
            f"Operation '{operation_name}' not supported by revision control provider '{provider_name}'"
        )


class InvalidChangelistError(LfsBridgeError):
    """MoveToChangelist was given something other than Staged or Working."""


class Concurrency(StrEnum):
    SYNCHRONOUS = "synchronous"
    ASYNCHRONOUS = "asynchronous"


class CommandResult(StrEnum):
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


@dataclass
class ResultInfo:
    info_messages: list[str] = field(default_factory=list)
    error_messages: list[str] = field(default_factory=list)


CompletionCallback = Callable[["Operation", CommandResult], Any]


# ================= Command Class ==============================
class Command:
    """Class Command
    =============
    A revision control request travelling from the host to a worker thread and back.

    Attributes:
        operation (Operation): What the host asked for; receives messages on completion.
        worker (Worker): Executes the operation and holds its state deltas.
        ctx (RepositoryContext): Repository snapshot, possibly promoted to a submodule root.
        files (list[str]): Absolute input paths, ignored ones removed.
        ignored_files (list[str]): Input paths git ignores.
        changelist (Changelist | None): Target bucket for MoveToChangelist.
        state_cache (StateCache | None): Read access to cached states for the worker.
        result_info (ResultInfo): Info and error lines.
        commit_id / commit_summary (str): Head commit after the operation, when queried.
        changelist_status (list[str] | None): Porcelain lines to rebuild the changelists on tick.
        successful (bool): Outcome of the worker.
    """

    def __init__(
        self,
        operation: "Operation",
        worker: "Worker",
        ctx: RepositoryContext,
        files: Sequence[str] = (),
        changelist: Optional[Changelist] = None,
        callback: Optional[CompletionCallback] = None,
        state_cache: Optional["StateCache"] = None,
    ) -> None:
        self.operation = operation
        self.worker = worker
        self.ctx = ctx
        self.files: list[str] = list(files)
        self.ignored_files: list[str] = []
        self.changelist = changelist
        self.callback = callback
        self.state_cache = state_cache
        self.result_info = ResultInfo()
        self.commit_id = ""
        self.commit_summary = ""
        self.changelist_status: Optional[list[str]] = None
        self.concurrency = Concurrency.SYNCHRONOUS
        self.successful = False
        self._executed = threading.Event()
        self._cancelled = threading.Event()

    def __repr__(self) -> str:
        return f"Command({self.operation.name!r}, files={len(self.files)})"

    def helpers(self) -> GitHelpers:
        """Helpers writing into this command's message lists."""
        return GitHelpers(self.ctx, self.result_info.info_messages, self.result_info.error_messages)

    def update_repository_root_if_submodule(self, files: Sequence[str]) -> None:
        root = change_repository_root_if_submodule(files, self.ctx.repository_root)
        if root != self.ctx.repository_root:
            logger.debug(f"Using submodule root '{root}' for {self.operation.name}")
            self.ctx = self.ctx.with_repository_root(root)

    # --- execution ---
    def do_work(self) -> bool:
        try:
            self.successful = bool(self.worker.execute(self))
        except LfsBridgeError as e:
            logger.error(f"{self.operation.name}: {e}")
            self.result_info.error_messages.append(str(e))
            self.successful = False
        except Exception as e:
            logger.exception(f"Worker '{self.worker.name}' crashed")
            self.result_info.error_messages.append(str(e))
            self.successful = False
        finally:
            self._executed.set()
        return self.successful

    def do_threaded_work(self) -> bool:
        self.concurrency = Concurrency.ASYNCHRONOUS
        return self.do_work()

    def abandon(self) -> None:
        self._executed.set()

    @property
    def is_executed(self) -> bool:
        return self._executed.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._executed.wait(timeout)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    # --- results ---
    def remove_redundant_errors(self, error_filter: str = REDUNDANT_ERROR_FILTER) -> None:
        """Demotes errors containing ``error_filter`` to infos.

        When that leaves no error at all, a failed command is upgraded to success.
        """
        errors = self.result_info.error_messages
        redundant = [e for e in errors if error_filter in e]
        if not redundant:
            return
        self.result_info.info_messages.extend(redundant)
        errors[:] = [e for e in errors if error_filter not in e]
        if not errors and not self.successful:
            self.successful = True

    def get_result(self) -> CommandResult:
        if self.is_cancelled:
            return CommandResult.CANCELLED
        return CommandResult.SUCCEEDED if self.successful else CommandResult.FAILED

    def return_results(self) -> CommandResult:
        """Hands the accumulated messages to the operation and fires the callback."""
        for message in self.result_info.info_messages:
            self.operation.add_info_message(message)
        for message in self.result_info.error_messages:
            self.operation.add_error_message(message)

        result = self.get_result()
        if self.callback is not None and result != CommandResult.CANCELLED:
            self.callback(self.operation, result)
        return result

# lfsbridge/core/WorkQueue.py
"""WorkQueue Module
================
Runs asynchronous commands on a small pool of worker threads and hands
them back, one at a time, to the foreground tick.

Commands stay in the queue from ``issue`` until the tick drains them,
which lets the provider find a command by its operation (to cancel it)
while it is still running.

Key Features:
-------------
- ``ThreadPoolExecutor`` backed; worker threads are named ``lfsbridge-worker-N``.
- ``pop_executed`` removes at most one executed command per call, in issue order.
- ``shutdown`` abandons queued commands so nobody waits on them forever.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING, Optional


if TYPE_CHECKING:
    from lfsbridge.core.Command import Command
    from lfsbridge.core.Workers import Operation


logger = logging.getLogger("lfsbridge")

DEFAULT_MAX_WORKERS = 4


# ================= WorkQueue Class ==============================
class WorkQueue:
    """Class WorkQueue
    ===============
    Pool of worker threads plus the list of commands not yet drained.

    Attributes:
        max_workers (int): Size of the thread pool.

    Methods:
        issue(command): Queues the command and submits it to the pool.
        add(command): Queues a command executed elsewhere (synchronous commands).
        remove(command): Drops a command from the queue.
        pop_executed(): Removes and returns the first executed command, if any.
        find(operation): The queued command serving ``operation``.
        contains(command): Whether ``command`` is still queued.
        shutdown(): Stops the pool and abandons what is still queued.
    """

    def __init__(self, max_workers: int = DEFAULT_MAX_WORKERS) -> None:
        self.max_workers = max_workers
        self._lock = threading.Lock()
        self._commands: list["Command"] = []
        self._executor: Optional[ThreadPoolExecutor] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._commands)

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="lfsbridge-worker"
            )
        return self._executor

    def add(self, command: "Command") -> None:
        with self._lock:
            self._commands.append(command)

    def issue(self, command: "Command", asynchronous: bool = True) -> Future:
        """Queues ``command`` and runs it on a worker thread.

        A synchronous command keeps its synchronous concurrency; the caller
        waits for it by ticking.
        """
        self.add(command)
        logger.debug(f"Issuing {command!r}")
        work = command.do_threaded_work if asynchronous else command.do_work
        return self._get_executor().submit(work)

    def remove(self, command: "Command") -> bool:
        with self._lock:
            if command in self._commands:
                self._commands.remove(command)
                return True
            return False

    def pop_executed(self) -> Optional["Command"]:
        """Removes the first executed command. Later executed commands wait for the next call."""
        with self._lock:
            for index, command in enumerate(self._commands):
                if command.is_executed:
                    return self._commands.pop(index)
        return None

    def find(self, operation: "Operation") -> Optional["Command"]:
        with self._lock:
            for command in self._commands:
                if command.operation is operation:
                    return command
        return None

    def contains(self, command: "Command") -> bool:
        with self._lock:
            return command in self._commands

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            pending = list(self._commands)
            self._commands.clear()
        for command in pending:
            command.cancel()
            command.abandon()
        if self._executor is not None:
            self._executor.shutdown(wait=wait, cancel_futures=True)
            self._executor = None

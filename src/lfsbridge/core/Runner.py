# lfsbridge/core/Runner.py
"""Background refresh of the repository status.

Every ``refresh_interval`` seconds the runner issues an asynchronous
fetch-with-status through the provider, unless the previous one has not
completed yet.
"""

import logging
import threading
import weakref
from typing import TYPE_CHECKING

from lfsbridge.core.Command import CommandResult
from lfsbridge.core.Workers import FetchOperation, Operation


if TYPE_CHECKING:
    from lfsbridge.core.Provider import Provider


logger = logging.getLogger("lfsbridge")

DEFAULT_REFRESH_INTERVAL = 30.0


class _AliveToken:
    """Owned by the runner; completion callbacks only hold a weak reference to it."""


# ================= Runner Class ==============================
class Runner:
    """Class Runner
    ============
    Daemon thread issuing periodic background fetches.

    Attributes:
        provider (Provider): Where the fetches are executed.
        refresh_interval (float): Seconds between two fetches.
        refresh_spawned (bool): A fetch is in flight.
    """

    def __init__(self, provider: "Provider", refresh_interval: float = DEFAULT_REFRESH_INTERVAL) -> None:
        self.provider = provider
        self.refresh_interval = refresh_interval
        self.refresh_spawned = False
        self._stop_event = threading.Event()
        self._stopped = False
        self._token = _AliveToken()
        self.thread = threading.Thread(target=self._run, daemon=True, name="lfsbridge-runner")

    def start(self) -> None:
        logger.info(f"Starting background refresh every {self.refresh_interval:g}s")
        self.thread.start()

    def _run(self) -> None:
        while not self._stop_event.wait(self.refresh_interval):
            if self._stopped:
                break
            if self.refresh_spawned:
                continue
            self.refresh()

    def refresh(self) -> None:
        """Issues one background fetch."""
        self.refresh_spawned = True
        token_ref = weakref.ref(self._token)
        runner_ref = weakref.ref(self)

        def on_complete(operation: Operation, result: CommandResult) -> None:
            # The runner may be gone by the time the fetch is drained
            runner = runner_ref()
            if token_ref() is not None and runner is not None:
                runner.refresh_spawned = False

        result = self.provider.execute(FetchOperation(), files=(), asynchronous=True, callback=on_complete)
        if result != CommandResult.SUCCEEDED:
            self.refresh_spawned = False

    def stop(self, timeout: float = 5.0) -> None:
        self._stopped = True
        self._stop_event.set()
        if self.thread.is_alive() and self.thread is not threading.current_thread():
            self.thread.join(timeout)
        self._token = _AliveToken()
        logger.info("Background refresh stopped")

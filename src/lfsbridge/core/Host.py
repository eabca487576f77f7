# lfsbridge/core/Host.py
"""Host capability interface.

The core never talks to a user interface directly. Everything it needs
from the embedding application goes through a ``Host``.
"""

import logging
from typing import Protocol, runtime_checkable


logger = logging.getLogger("lfsbridge")


@runtime_checkable
class Host(Protocol):
    """Capabilities the embedding application provides to the provider."""

    def on_notify(self, level: str, text: str) -> None:
        """Show a message to the user. ``level`` is "info", "warning" or "error"."""
        ...

    def on_confirm(self, title: str, body: str) -> bool:
        """Ask the user a yes/no question."""
        ...

    def on_prepare_reload(self, paths: list[str]) -> None:
        """Release any handles on ``paths`` before git rewrites them.

        Called from a worker thread, right before a pull.
        """
        ...

    def on_reload(self, paths: list[str]) -> None:
        """Reload ``paths`` after git rewrote them. Called on the foreground tick."""
        ...


class NullHost:
    """Host used when nothing is embedded: notifications go to the log."""

    def on_notify(self, level: str, text: str) -> None:
        log_level = {"error": logging.ERROR, "warning": logging.WARNING}.get(level, logging.INFO)
        logger.log(log_level, text)

    def on_confirm(self, title: str, body: str) -> bool:
        logger.warning("%s: %s", title, body)
        return False

    def on_prepare_reload(self, paths: list[str]) -> None:
        pass

    def on_reload(self, paths: list[str]) -> None:
        logger.debug("Reload requested for %d file(s)", len(paths))

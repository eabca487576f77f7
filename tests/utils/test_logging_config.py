# tests/utils/test_logging_config.py
"""Unit tests for logging configuration utility.
=================================================

Tests for the logging setup utility in `lfsbridge.utils.logging_config`.

This module verifies that `setup_logging`:
- Creates rotating file handlers for the main log and a separate error log
  when `separate_error_log` is enabled.
- Honors the configured levels for each handler.
- Attaches the git trace file only when `LFSBRIDGE_GITTRACE` is set.

The tests run in a temporary working directory to avoid touching real files.
"""

import logging
import logging.handlers

from lfsbridge.utils import logging_config


def test_setup_logging_creates_handlers(tmp_path, monkeypatch) -> None:
    """Main and error rotating file handlers are installed with their levels."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("LFSBRIDGE_GITTRACE", raising=False)

    logging_config.setup_logging(
        {
            "logging": {
                "file_level": "INFO",
                "console_level": "ERROR",
                "log_to_console": False,
                "separate_error_log": True,
            }
        }
    )

    root = logging.getLogger()
    names = {type(h).__name__ for h in root.handlers}
    assert "RotatingFileHandler" in names
    assert len(root.handlers) == 2
    assert root.handlers[0].level == logging.INFO
    assert root.handlers[1].level == logging.ERROR

    # Tracing is off: the git command logger stays silent
    assert logging.getLogger("lfsbridge.gitcommands").disabled


def test_git_trace_enabled_by_environment(tmp_path, monkeypatch) -> None:
    """`LFSBRIDGE_GITTRACE=1` attaches gittrace.log to the non-propagating trace logger."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("LFSBRIDGE_GITTRACE", "1")

    logging_config.setup_logging({"logging": {"log_to_console": False}})

    trace = logging.getLogger("lfsbridge.gitcommands")
    assert not trace.disabled
    assert not trace.propagate
    assert any(
        isinstance(h, logging.handlers.RotatingFileHandler) and h.baseFilename.endswith("gittrace.log")
        for h in trace.handlers
    )
    for handler in trace.handlers:
        handler.close()
    trace.handlers = []
    trace.disabled = True

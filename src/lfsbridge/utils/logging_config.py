# lfsbridge/utils/logging_config.py
"""lfsbridge.utils.logging_config
================================

This module provides the logging configuration utility for lfsbridge.
It defines global logger objects and a single setup function, `setup_logging`, which configures
application-wide logging handlers and log levels based on a supplied configuration dictionary.

Features:
    - Rotating file logging for provider events (lfsbridge.log).
    - Optional console logging to stderr with configurable log level.
    - Optional separate error log file (error.log) for ERROR and CRITICAL events.
    - Optional git command tracing (gittrace.log) enabled via the LFSBRIDGE_GITTRACE environment variable.
    - Automatic creation of log directories, with fallback to the system temp directory on failure.
    - Safe reconfiguration: clears existing handlers to avoid duplicate logs when called multiple times.
    - Never raises exceptions; all errors are reported to stderr and logging continues with best-effort.

Globals:
    logger: Main application logger ("lfsbridge").
    GIT_TRACE_LOGGER: Logger receiving every git argv ("lfsbridge.gitcommands").
"""

import logging
import logging.handlers
import os
import sys
import tempfile
from typing import Any, Optional


# ======================== Global loggers ========================
# Created at import-time, unconfigured until ``setup_logging()`` attaches handlers.
logger = logging.getLogger("lfsbridge")
GIT_TRACE_LOGGER = logging.getLogger("lfsbridge.gitcommands")


def setup_logging(config: Optional[dict[str, Any]] = None) -> None:
    """Configures application-wide logging handlers and log levels.

    Up to four independent handlers are installed:

    1. File handler – rotating lfsbridge.log capturing everything from
       the configured `file_level` (default DEBUG) upward.
    2. Console handler – optional `stderr` output whose threshold is
       `console_level` (default WARNING).
    3. Error-file handler – optional rotating error.log that stores
       only ERROR and CRITICAL events.
    4. Git trace handler – optional rotating gittrace.log enabled
       when ``LFSBRIDGE_GITTRACE`` is set to ``1/true/yes``; attached
       to the ``lfsbridge.gitcommands`` logger.

    Existing handlers on the root logger are cleared to avoid duplicate
    records when the function is invoked multiple times (e.g. in unit
    tests).

    Args:
        config (dict | None): Optional application configuration blob.
            Only the ``["logging"]`` sub-section is consulted; recognised
            keys are ``file_level``, ``console_level``, ``log_to_console``,
            ``separate_error_log`` and ``log_file``.

    Notes:
        The function never raises; all I/O or permission errors are
        reported to stderr and the logging subsystem continues with a
        best-effort configuration.
    """
    if config is None:
        config = {}
    logging_config = config.get("logging", {})
    log_filename = logging_config.get("log_file", "lfsbridge.log")
    log_file_level_str = logging_config.get("file_level", "DEBUG").upper()
    log_file_level = getattr(logging, log_file_level_str, logging.DEBUG)

    log_dir = os.path.dirname(log_filename)
    if log_dir and not os.path.exists(log_dir):
        try:
            os.makedirs(log_dir)
        except OSError as e_mkdir:
            print(
                f"Error creating log directory '{log_dir}': {e_mkdir}", file=sys.stderr
            )
            log_filename = os.path.join(tempfile.gettempdir(), "lfsbridge.log")
            print(f"Logging to temporary file: '{log_filename}'", file=sys.stderr)

    file_formatter = logging.Formatter(
        "%(asctime)s - %(levelname)-8s - %(threadName)-18s - %(name)-15s - %(message)s (%(filename)s:%(lineno)d)"
    )
    file_handler = None
    try:
        file_handler = logging.handlers.RotatingFileHandler(
            log_filename, maxBytes=2 * 1024 * 1024, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(file_formatter)
        file_handler.setLevel(log_file_level)
    except Exception as e_fh:
        print(
            f"Error setting up file logger for '{log_filename}': {e_fh}. File logging may be impaired.",
            file=sys.stderr,
        )

    console_handler = None
    if logging_config.get("log_to_console", True):
        console_level_str = logging_config.get("console_level", "WARNING").upper()
        console_log_level = getattr(logging, console_level_str, logging.WARNING)

        console_formatter = logging.Formatter(
            "%(levelname)-8s - %(name)-12s - %(message)s"
        )
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(console_formatter)
        console_handler.setLevel(console_log_level)

    error_file_handler = None
    if logging_config.get("separate_error_log", False):
        error_log_filename = "error.log"
        try:
            error_file_handler = logging.handlers.RotatingFileHandler(
                error_log_filename,
                maxBytes=1 * 1024 * 1024,
                backupCount=3,
                encoding="utf-8",
            )
            error_file_handler.setFormatter(file_formatter)
            error_file_handler.setLevel(logging.ERROR)
        except Exception as e_efh:
            print(
                f"Error setting up separate error log '{error_log_filename}': {e_efh}.",
                file=sys.stderr,
            )

    root_logger = logging.getLogger()
    root_logger.handlers = []  # Clear existing root handlers to avoid duplicates

    if file_handler:
        root_logger.addHandler(file_handler)
    if console_handler:
        root_logger.addHandler(console_handler)
    if error_file_handler:
        root_logger.addHandler(error_file_handler)

    root_logger.setLevel(log_file_level)

    # Git command trace
    trace_logger = logging.getLogger("lfsbridge.gitcommands")
    trace_logger.propagate = False
    trace_logger.setLevel(logging.DEBUG)
    trace_logger.handlers = []
    trace_logger.disabled = False

    if os.environ.get("LFSBRIDGE_GITTRACE", "").lower() in {"1", "true", "yes"}:
        try:
            trace_handler = logging.handlers.RotatingFileHandler(
                "gittrace.log",
                maxBytes=1 * 1024 * 1024,
                backupCount=3,
                encoding="utf-8",
            )
            trace_handler.setFormatter(logging.Formatter("%(asctime)s - %(threadName)s - %(message)s"))
            trace_logger.addHandler(trace_handler)
            logging.info("Git command tracing enabled, logging to 'gittrace.log'.")
        except Exception as e_trace:
            logging.error(f"Failed to set up git trace logging: {e_trace}", exc_info=True)
            trace_logger.disabled = True
    else:
        trace_logger.addHandler(logging.NullHandler())
        trace_logger.disabled = True
        logging.debug("Git command tracing is disabled.")

    logging.info(
        "Logging setup complete. Root logger level: %s.",
        logging.getLevelName(root_logger.level),
    )
    if file_handler:
        logging.info(
            f"File logging to '{log_filename}' at level: {logging.getLevelName(file_handler.level)}."
        )
    if console_handler:
        logging.info(
            f"Console logging to stderr at level: {logging.getLevelName(console_handler.level)}."
        )
    if error_file_handler:
        logging.info("Error logging to 'error.log' at level: ERROR.")

#!/usr/bin/env python3
# /lfsbridge/main.py
"""
lfsbridge Main Entry Point
==========================

Console harness for the Git LFS provider. It performs:
1) Environment Loading: reads ~/.config/lfsbridge/.env early (LFSBRIDGE_GITTRACE...).
2) Path Setup: ensures the lfsbridge package is importable from a source checkout.
3) Configuration & Logging: loads config and initializes logging ASAP.
4) Core Import: imports the console after logging is ready.
5) Command Run: runs one operation and exits with its status.

Example:
    python main.py status Content/a.uasset
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# --- Step 1: Load Environment Variables from the User's Config Directory ---
try:
    dotenv_path = Path.home() / ".config" / "lfsbridge" / ".env"
    load_dotenv(dotenv_path=dotenv_path)
except OSError:
    # HOME missing: the defaults apply
    pass

# --- Step 2: Set up the Python Path ---
src_root = os.path.join(os.path.dirname(os.path.abspath(__file__)), "src")
if src_root not in sys.path:
    sys.path.insert(0, src_root)

# --- Step 3: Immediate Logging and Configuration Setup ---
try:
    from lfsbridge.utils.logging_config import setup_logging
    from lfsbridge.utils.utils import load_config

    config: dict[str, Any] = load_config()
    setup_logging(config)
    logger = logging.getLogger("lfsbridge")
except Exception as e:
    # Logging is not ready; print to stderr and exit.
    print(f"FATAL: Could not initialize configuration or logging system: {e}", file=sys.stderr)
    import traceback
    traceback.print_exc()
    sys.exit(1)

# --- Step 4: Import the Console ---
try:
    from lfsbridge.core.Console import run_console
except ImportError as e:
    logger.critical("Failed to import a critical application component: %s", e, exc_info=True)
    sys.exit(1)


def start() -> None:
    """Runs the command given on the command line and exits with its status."""
    logger.info("lfsbridge starting: %s", " ".join(sys.argv[1:]))
    try:
        code = run_console(sys.argv[1:], config)
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")
        code = 130
    except Exception:
        logger.critical("Unhandled exception at the top level.", exc_info=True)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    start()

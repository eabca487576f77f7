# lfsbridge/utils/utils.py
"""
lfsbridge.utils.utils
=====================

This module provides a collection of core utility functions for lfsbridge.

Key functionalities include:
- Automatic User Configuration: Manages the creation and loading of user-specific
  configuration files (`config.toml`, `.env`) in `~/.config/lfsbridge`, ensuring a
  seamless first-run experience.
- Robust Configuration Loading: Loads a hardcoded, built-in default configuration,
  then recursively merges it with user-defined settings from
  `~/.config/lfsbridge/config.toml`.
- Safe Subprocess Execution: A wrapper around `subprocess.run` that never raises
  and always yields a `CompletedProcess`.
- Filesystem helpers: read-only attribute flipping for LFS locks, path
  normalisation, and a scoped temporary file for commit messages.

The application is always runnable, even if user configuration files are
missing or corrupted, by falling back to the embedded defaults.
"""

import logging
import os
import stat
import subprocess
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import toml

logger = logging.getLogger("lfsbridge")

ENV_TEMPLATE = """# Environment for lfsbridge
# Set LFSBRIDGE_GITTRACE=1 to record every git invocation in gittrace.log
LFSBRIDGE_GITTRACE=
"""

# Direct, hardcoded representation of the default config.toml.
# It serves as the ultimate fallback, ensuring the provider can ALWAYS start.
DEFAULT_CONFIG: Dict[str, Any] = {
    "logging": {
        "file_level": "DEBUG",
        "console_level": "WARNING",
        "log_to_console": True,
        "separate_error_log": False,
        "log_file": "lfsbridge.log",
    },
    "git_lfs": {
        "BinaryPath": "",
        "UsingGitLfsLocking": True,
        "LfsUserName": "",
    },
    "provider": {
        "project_root": "",
        "project_file": "",
        "project_dirs": ["Content", "Config"],
        "content_dir": "Content/",
        "status_branches": [],
        "lockable_probes": ["*.uasset", "*.umap"],
        "diff_dir": "",
        "refresh_interval": 30.0,
        "lock_ttl": 30.0,
        "batch_size": 50,
        "bundled_lfs_dir": "",
    },
}


# --- Helper Functions ---

def get_config_dir() -> Path:
    """Returns the per-user configuration directory."""
    return Path.home() / ".config" / "lfsbridge"


def ensure_user_config_exists() -> None:
    """Checks for user config files in `~/.config/lfsbridge` and creates them if missing."""
    try:
        config_dir = get_config_dir()
        user_config_path = config_dir / "config.toml"
        user_env_path = config_dir / ".env"

        config_dir.mkdir(parents=True, exist_ok=True)

        if not user_config_path.exists():
            with open(user_config_path, "w", encoding="utf-8") as f:
                toml.dump({"git_lfs": DEFAULT_CONFIG["git_lfs"]}, f)
            logger.info(f"Created user config template at: {user_config_path}")

        if not user_env_path.exists():
            user_env_path.write_text(ENV_TEMPLATE, encoding="utf-8")
            logger.info(f"Created user .env template at: {user_env_path}")

    except Exception as e:
        logger.critical(f"Could not create user configuration files: {e}", exc_info=True)


def load_config(user_config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Loads and merges configurations, ensuring the provider can always run.
    """
    final_config = deep_merge({}, DEFAULT_CONFIG)
    logger.debug("Loaded embedded default configuration.")

    if user_config_path is None:
        ensure_user_config_exists()
        user_config_path = get_config_dir() / "config.toml"

    if user_config_path.is_file():
        try:
            user_config = toml.load(user_config_path)
            final_config = deep_merge(final_config, user_config)
            logger.info(f"Successfully loaded and merged user config from {user_config_path}")
        except Exception as e:
            logger.error(f"Could not parse user config '{user_config_path}': {e}. Using defaults.")

    return final_config


def safe_run(cmd: List[str], **kwargs: Any) -> subprocess.CompletedProcess:
    """
    Executes a command safely, capturing output and handling common exceptions.

    Text mode is the default; pass ``text=False`` to capture raw bytes.
    """
    text_mode = kwargs.pop("text", True)
    if text_mode:
        kwargs.setdefault("encoding", "utf-8")
        kwargs.setdefault("errors", "replace")
    empty: Any = "" if text_mode else b""
    try:
        return subprocess.run(
            cmd, capture_output=True, text=text_mode, check=False, **kwargs,
        )
    except FileNotFoundError as e:
        logger.error(f"Command not found: {cmd[0]!r}", exc_info=True)
        return subprocess.CompletedProcess(cmd, 127, stdout=empty, stderr=str(e))
    except subprocess.TimeoutExpired as e:
        logger.warning(f"Command timed out: {' '.join(cmd)}")
        return subprocess.CompletedProcess(cmd, -9, stdout=e.stdout or empty, stderr=str(e.stderr or ""))
    except Exception as e:
        logger.exception(f"An unexpected error occurred while running command: {' '.join(cmd)}")
        return subprocess.CompletedProcess(cmd, -1, stdout=empty, stderr=str(e))


def deep_merge(base: Dict, override: Dict) -> Dict:
    """
    Recursively merges the `override` dictionary into the `base` dictionary.
    """
    result = base.copy()
    for key, value in override.items():
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def normalize_path(path: str) -> str:
    """Absolute path with forward slashes, the form used as cache keys."""
    return os.path.abspath(path).replace("\\", "/")


def relative_filenames(files: Iterable[str], root: str) -> List[str]:
    """Converts absolute paths to paths relative to `root` (kept as-is when outside)."""
    root = root.replace("\\", "/").rstrip("/") + "/"
    result = []
    for f in files:
        f = f.replace("\\", "/")
        result.append(f[len(root):] if f.startswith(root) else f)
    return result


def absolute_filenames(files: Iterable[str], root: str) -> List[str]:
    """Converts paths relative to `root` to absolute, normalised paths."""
    result = []
    for f in files:
        if os.path.isabs(f):
            result.append(normalize_path(f))
        else:
            result.append(normalize_path(os.path.join(root, f)))
    return result


def set_read_only(path: str, read_only: bool) -> bool:
    """Flips the write permission bits of `path`. Returns False if the file is gone."""
    try:
        mode = os.stat(path).st_mode
        if read_only:
            new_mode = mode & ~(stat.S_IWUSR | stat.S_IWGRP | stat.S_IWOTH)
        else:
            new_mode = mode | stat.S_IWUSR
        if new_mode != mode:
            os.chmod(path, new_mode)
        return True
    except OSError as e:
        logger.debug(f"Could not change read-only flag of '{path}': {e}")
        return False


# ================= ScopedTempFile Class ==============================
class ScopedTempFile:
    """Temporary UTF-8 text file that lives for the duration of a `with` block.

    Used to hand multi-line commit messages to ``git commit --file``.
    """

    def __init__(self, text: str) -> None:
        self.text = text
        self.filename: str = ""

    def __enter__(self) -> "ScopedTempFile":
        fd, self.filename = tempfile.mkstemp(prefix="lfsbridge-", suffix=".txt")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(self.text)
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if self.filename and os.path.exists(self.filename):
            try:
                os.remove(self.filename)
            except OSError as e:
                logger.warning(f"Could not delete temp file '{self.filename}': {e}")
        self.filename = ""

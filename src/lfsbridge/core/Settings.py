# lfsbridge/core/Settings.py
"""Persisted provider settings: the ``[git_lfs]`` section of the user config."""

import logging
import threading
from pathlib import Path
from typing import Any, Optional

import toml

from lfsbridge.utils.utils import DEFAULT_CONFIG, get_config_dir


logger = logging.getLogger("lfsbridge")

SECTION = "git_lfs"


# ================= Settings Class ==============================
class Settings:
    """Class Settings
    ==============
    Thread-safe holder of the git binary path, the LFS locking switch and
    the LFS user name.

    Every setter returns True when the stored value changed, so callers know
    when a ``save()`` is worth it.
    """

    def __init__(self, values: Optional[dict[str, Any]] = None, path: Optional[Path] = None) -> None:
        defaults = DEFAULT_CONFIG[SECTION]
        values = values or {}
        self._lock = threading.RLock()
        self._binary_path: str = str(values.get("BinaryPath", defaults["BinaryPath"]))
        self._using_lfs_locking: bool = bool(values.get("UsingGitLfsLocking", defaults["UsingGitLfsLocking"]))
        self._lfs_user_name: str = str(values.get("LfsUserName", defaults["LfsUserName"]))
        self.path = path if path is not None else get_config_dir() / "config.toml"

    @classmethod
    def from_config(cls, config: dict[str, Any], path: Optional[Path] = None) -> "Settings":
        return cls(config.get(SECTION, {}), path)

    def get_binary_path(self) -> str:
        with self._lock:
            return self._binary_path

    def set_binary_path(self, value: str) -> bool:
        with self._lock:
            changed = self._binary_path != value
            self._binary_path = value
            return changed

    def is_using_git_lfs_locking(self) -> bool:
        with self._lock:
            return self._using_lfs_locking

    def set_using_git_lfs_locking(self, value: bool) -> bool:
        with self._lock:
            changed = self._using_lfs_locking != value
            self._using_lfs_locking = value
            return changed

    def get_lfs_user_name(self) -> str:
        with self._lock:
            return self._lfs_user_name

    def set_lfs_user_name(self, value: str) -> bool:
        with self._lock:
            changed = self._lfs_user_name != value
            self._lfs_user_name = value
            return changed

    def as_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "BinaryPath": self._binary_path,
                "UsingGitLfsLocking": self._using_lfs_locking,
                "LfsUserName": self._lfs_user_name,
            }

    def save(self) -> bool:
        """Writes the section back, keeping every other section of the file.

        A file that does not parse is left untouched and nothing is saved.
        """
        data: dict[str, Any] = {}
        try:
            if self.path.is_file():
                data = toml.load(self.path)
        except (toml.TomlDecodeError, OSError) as e:
            logger.error(f"Could not read '{self.path}', settings not saved: {e}")
            return False
        data[SECTION] = self.as_dict()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                toml.dump(data, f)
        except OSError as e:
            logger.error(f"Could not save settings to '{self.path}': {e}")
            return False
        logger.debug(f"Saved settings to {self.path}")
        return True

# src/lfsbridge/core/__init__.py
"""Public facade for lfsbridge.core: re-export the state model from CamelCase modules.

Only modules that the integrations layer can import without cycles are
re-exported here; import Provider, Workers and Console from their own modules.
"""

# Re-export classes/symbols from CamelCase modules
from .Context import RepositoryContext, SharedContext  # noqa: F401
from .Host import Host, NullHost  # noqa: F401
from .Revision import Revision  # noqa: F401
from .Settings import Settings  # noqa: F401
from .State import (  # noqa: F401
    Changelist,
    ChangelistState,
    FileSourceState,
    FileState,
    GitLFSState,
    GitState,
    LockState,
    RemoteState,
    TreeState,
)


__all__ = [
    "Changelist",
    "ChangelistState",
    "FileSourceState",
    "FileState",
    "GitLFSState",
    "GitState",
    "Host",
    "LockState",
    "NullHost",
    "RemoteState",
    "RepositoryContext",
    "Revision",
    "Settings",
    "SharedContext",
    "TreeState",
]

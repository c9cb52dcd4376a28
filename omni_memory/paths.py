"""
Storage location resolution.

The database location comes from the environment:

    OMNI_MEMORY_DIR   storage directory (default: ~/.omni-memory)
    OMNI_MEMORY_DB    database file, or ":memory:" for a volatile store
                      (default: <OMNI_MEMORY_DIR>/omni-memory.db)

Both accept "~" shorthand and paths relative to the working directory.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

IN_MEMORY = ":memory:"

DEFAULT_MEMORY_DIR = Path.home() / ".omni-memory"
DEFAULT_DB_NAME = "omni-memory.db"

ENV_MEMORY_DIR = "OMNI_MEMORY_DIR"
ENV_MEMORY_DB = "OMNI_MEMORY_DB"


@dataclass(frozen=True)
class StoragePaths:
    """Resolved storage directory and database file."""
    data_dir: Path
    db_path: str

    @property
    def in_memory(self) -> bool:
        return self.db_path == IN_MEMORY


def expand_home_path(input_path: str) -> str:
    """Expand a leading "~", "~/" or "~\\" to the home directory."""
    if input_path == "~":
        return str(Path.home())
    if input_path.startswith("~/") or input_path.startswith("~\\"):
        return str(Path.home() / input_path[2:])
    return input_path


def normalize_user_path(input_path: str) -> str:
    """
    Turn a user-supplied path into an absolute, normalized path.

    Relative paths are resolved against the current working directory.
    Symlinks are left alone.
    """
    expanded = expand_home_path(input_path.strip())
    if not os.path.isabs(expanded):
        expanded = os.path.join(os.getcwd(), expanded)
    return os.path.normpath(expanded)


def resolve_storage_paths(environ: Optional[Mapping[str, str]] = None) -> StoragePaths:
    """Resolve the storage directory and database path from the environment."""
    if environ is None:
        environ = os.environ

    data_dir = Path(normalize_user_path(environ.get(ENV_MEMORY_DIR) or str(DEFAULT_MEMORY_DIR)))

    db_override = environ.get(ENV_MEMORY_DB)
    if not db_override:
        db_path = str(data_dir / DEFAULT_DB_NAME)
    elif db_override == IN_MEMORY:
        db_path = IN_MEMORY
    else:
        db_path = normalize_user_path(db_override)

    return StoragePaths(data_dir=data_dir, db_path=db_path)

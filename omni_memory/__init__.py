"""
Omni Memory Package
Local memory store with full-text search, and an MCP server exposing it.

Storage is a single SQLite database with an FTS5 index kept in sync by
triggers. Location comes from OMNI_MEMORY_DIR / OMNI_MEMORY_DB.

Usage:
    from omni_memory import MemoryStore

    with MemoryStore() as store:
        memory_id = store.add("Prefer pytest fixtures", area="preferences", tags=["testing"])
        results = store.search("pytest")
"""

from .backends import (
    AREAS,
    DEFAULT_AREA,
    UNSET,
    Memory,
    MemoryStats,
    SearchResult,
    SQLiteBackend,
)

from .errors import (
    OmniMemoryError,
    ValidationError,
    NotFoundError,
    SearchSyntaxError,
    StorageIOError,
)

from .memory import (
    MemoryStore,
    get_store,
    close_store,
    remember,
    recall,
)

from .paths import (
    StoragePaths,
    resolve_storage_paths,
    normalize_user_path,
)

__all__ = [
    # Core
    "Memory",
    "SearchResult",
    "MemoryStats",
    "MemoryStore",
    "get_store",
    "close_store",
    "remember",
    "recall",
    # Backend
    "SQLiteBackend",
    # Errors
    "OmniMemoryError",
    "ValidationError",
    "NotFoundError",
    "SearchSyntaxError",
    "StorageIOError",
    # Paths
    "StoragePaths",
    "resolve_storage_paths",
    "normalize_user_path",
    # Constants
    "AREAS",
    "DEFAULT_AREA",
    "UNSET",
]

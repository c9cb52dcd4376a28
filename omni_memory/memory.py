#!/usr/bin/env python3
"""
Omni Memory Store
Local memory store with structured filters and full-text search.

Search runs in two tiers:
- Index: SQLite FTS5, ranked by bm25
- Fallback: every query word must appear in the content (fixed score 0.5)

Usage:
    # Store location from OMNI_MEMORY_DIR / OMNI_MEMORY_DB
    store = MemoryStore()

    # Volatile store for tests
    store = MemoryStore(paths=StoragePaths(data_dir=Path("."), db_path=":memory:"))
"""

import logging
import re
from typing import Optional, Sequence

from .backends import (
    DEFAULT_AREA,
    UNASSIGNED_PROJECT,
    UNSET,
    Memory,
    MemoryStats,
    SearchResult,
    SQLiteBackend,
)
from .errors import NotFoundError, SearchSyntaxError
from .paths import StoragePaths

__all__ = [
    "MemoryStore",
    "get_store",
    "close_store",
    "remember",
    "recall",
    "sanitize_fts_query",
    "clamp_limit",
]

logger = logging.getLogger(__name__)

LIST_DEFAULT_LIMIT = 50
LIST_MAX_LIMIT = 100
SEARCH_DEFAULT_LIMIT = 10
SEARCH_MAX_LIMIT = 50
FALLBACK_SCORE = 0.5

# Characters with meaning in the FTS5 query grammar
_FTS_SPECIAL_CHARS = re.compile(r"[\^+\-*'\"~:()]")


def clamp_limit(limit: Optional[int], default: int, maximum: int) -> int:
    """Missing or non-positive limits use ``default``; larger ones are capped."""
    if not limit or limit < 1:
        return default
    return min(limit, maximum)


def sanitize_fts_query(raw_query: str) -> str:
    """
    Reduce a plain-text query to a single FTS5 phrase.

    Grammar characters are replaced by spaces and the remaining words are
    quoted, so AND/OR/NOT and column filters are matched literally. If
    nothing is left, the raw query is returned untouched rather than an
    empty query.
    """
    clean = " ".join(_FTS_SPECIAL_CHARS.sub(" ", raw_query).split())
    if not clean:
        return raw_query
    return f'"{clean}"'


class MemoryStore:
    """
    Memory store over a single SQLite database.

    Areas: general (default), snippets, solutions, preferences.

    Args:
        paths: Storage location (default: resolved from the environment)
        backend: Explicit backend, mainly for tests

    The store owns its connection; use it as a context manager or call
    close() when done:
        with MemoryStore() as store:
            store.add("Use uv for installs", area="preferences")
    """

    def __init__(
        self,
        paths: Optional[StoragePaths] = None,
        backend: Optional[SQLiteBackend] = None,
    ):
        self._backend = backend or SQLiteBackend(paths)

    @property
    def paths(self) -> StoragePaths:
        return self._backend.paths

    def __enter__(self) -> "MemoryStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # === RECORDS ===

    def add(
        self,
        content: str,
        area: Optional[str] = None,
        project: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
    ) -> str:
        """Add a memory. Example: store.add("Prefer pathlib", area="preferences")"""
        return self._backend.add(content, area=area, project=project, tags=tags)

    def get(self, memory_id: str) -> Optional[Memory]:
        return self._backend.get(memory_id)

    def require(self, memory_id: str) -> Memory:
        """Like get(), but raises NotFoundError for an unknown id."""
        memory = self._backend.get(memory_id)
        if memory is None:
            raise NotFoundError(memory_id)
        return memory

    def update(self, memory_id: str, content=UNSET, area=UNSET, project=UNSET, tags=UNSET) -> int:
        """
        Update the supplied fields of a memory.

        Pass project=None to clear the project; leave it out to keep it.
        Returns the number of changed rows (0 for an unknown id or a no-op).
        """
        return self._backend.update(memory_id, content=content, area=area, project=project, tags=tags)

    def delete(self, memory_id: str) -> int:
        return self._backend.delete(memory_id)

    def list_memories(
        self,
        area: Optional[str] = None,
        project: Optional[str] = None,
        tag: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Memory]:
        """
        List memories, newest first.

        Args:
            area: Only this area
            project: Only this project
            tag: Only memories carrying exactly this tag
            limit: Maximum results (default: 50, capped at 100)
        """
        limit = clamp_limit(limit, LIST_DEFAULT_LIMIT, LIST_MAX_LIMIT)
        return self._backend.list_memories(limit, area=area, project=project, tag=tag)

    # === SEARCH ===

    def search(
        self,
        query: str,
        area: Optional[str] = None,
        project: Optional[str] = None,
        limit: Optional[int] = None,
        enable_advanced_syntax: bool = False,
    ) -> list[SearchResult]:
        """
        Full-text search ranked by relevance.

        With enable_advanced_syntax the query goes to FTS5 verbatim
        (AND/OR/NOT, quoted phrases, prefixes) and a query FTS5 cannot parse
        raises SearchSyntaxError. Otherwise the query is sanitized into a
        phrase, and if the index still rejects it the substring fallback
        answers instead.

        Args:
            query: Search text
            area: Only this area
            project: Only this project
            limit: Maximum results (default: 10, capped at 50)
            enable_advanced_syntax: Pass the query to FTS5 unmodified
        """
        limit = clamp_limit(limit, SEARCH_DEFAULT_LIMIT, SEARCH_MAX_LIMIT)
        fts_query = query if enable_advanced_syntax else sanitize_fts_query(query)

        outcome = self._backend.match(fts_query, limit, area=area, project=project)
        if not outcome.failed:
            logger.debug(f"Index search {fts_query!r} returned {len(outcome.results)} results")
            return outcome.results

        if enable_advanced_syntax:
            raise SearchSyntaxError(query, outcome.error)

        logger.warning(f"Index search failed for {query!r} ({outcome.error}), using substring fallback")
        return self.fallback_search(query, area=area, project=project, limit=limit)

    def fallback_search(
        self,
        query: str,
        area: Optional[str] = None,
        project: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[SearchResult]:
        """
        Substring search used when the index cannot answer.

        Every whitespace-separated word must occur in the content, in any
        order. A query with no words is matched as a whole. All results get
        the same neutral score.
        """
        limit = clamp_limit(limit, SEARCH_DEFAULT_LIMIT, SEARCH_MAX_LIMIT)
        words = query.split()
        patterns = words if words else [query]

        memories = self._backend.substring_search(patterns, limit, area=area, project=project)
        return [SearchResult(**memory.to_dict(), score=FALLBACK_SCORE) for memory in memories]

    # === UTILITY ===

    def stats(self) -> MemoryStats:
        return MemoryStats(
            total_memories=self._backend.count(),
            by_area=self._backend.count_by("area", DEFAULT_AREA),
            by_project=self._backend.count_by("project", UNASSIGNED_PROJECT),
            total_size_bytes=self._backend.file_size(),
        )

    def close(self) -> None:
        self._backend.close()

    def reset(self) -> None:
        """Drop every memory and rebuild the schema. Test isolation only."""
        self._backend.reset()


# Convenience functions
_store: Optional[MemoryStore] = None


def get_store() -> MemoryStore:
    """
    Get or create the process-wide MemoryStore.

    The storage location is resolved from the environment on first call
    and kept for the life of the process.
    """
    global _store
    if _store is None:
        _store = MemoryStore()
    return _store


def close_store() -> None:
    """Close the process-wide store, if one was opened."""
    global _store
    if _store is not None:
        _store.close()
        _store = None


def remember(content: str, area: str = DEFAULT_AREA, **fields) -> str:
    """
    Add a memory to the process-wide store.

    Args:
        content: The memory content to store
        area: general, snippets, solutions or preferences
        **fields: project and tags

    Returns:
        The id of the new memory
    """
    return get_store().add(content, area=area, **fields)


def recall(query: str, area: Optional[str] = None, limit: int = SEARCH_DEFAULT_LIMIT) -> list[SearchResult]:
    return get_store().search(query, area=area, limit=limit)

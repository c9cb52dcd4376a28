#!/usr/bin/env python3
"""
Storage Backend for Omni Memory

Provides the SQLite record store:
- memories: canonical table, one row per memory
- memories_fts: FTS5 index over content, project and tags, kept in sync
  by triggers on every insert, update and delete

Usage:
    from omni_memory.backends import SQLiteBackend
    from omni_memory.paths import resolve_storage_paths

    backend = SQLiteBackend(resolve_storage_paths())
    memory_id = backend.add("User prefers tabs", area="preferences")
"""

import json
import logging
import os
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, asdict, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, Literal, Optional, Sequence

from .errors import StorageIOError, ValidationError
from .paths import StoragePaths, resolve_storage_paths

logger = logging.getLogger(__name__)

Area = Literal["general", "snippets", "solutions", "preferences"]
AREAS: tuple[str, ...] = ("general", "snippets", "solutions", "preferences")
DEFAULT_AREA = "general"
UNASSIGNED_PROJECT = "unassigned"

SCHEMA = """
CREATE TABLE IF NOT EXISTS memories (
    id TEXT PRIMARY KEY,
    content TEXT NOT NULL,
    area TEXT DEFAULT 'general',
    project TEXT,
    tags TEXT DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE VIRTUAL TABLE IF NOT EXISTS memories_fts USING fts5(
    content,
    project,
    tags,
    content='memories',
    content_rowid='rowid'
);

CREATE TRIGGER IF NOT EXISTS memories_ai AFTER INSERT ON memories BEGIN
    INSERT INTO memories_fts(rowid, content, project, tags)
    VALUES (new.rowid, new.content, COALESCE(new.project, ''), new.tags);
END;

CREATE TRIGGER IF NOT EXISTS memories_ad AFTER DELETE ON memories BEGIN
    INSERT INTO memories_fts(memories_fts, rowid, content, project, tags)
    VALUES ('delete', old.rowid, old.content, COALESCE(old.project, ''), old.tags);
END;

CREATE TRIGGER IF NOT EXISTS memories_au AFTER UPDATE ON memories BEGIN
    INSERT INTO memories_fts(memories_fts, rowid, content, project, tags)
    VALUES ('delete', old.rowid, old.content, COALESCE(old.project, ''), old.tags);
    INSERT INTO memories_fts(rowid, content, project, tags)
    VALUES (new.rowid, new.content, COALESCE(new.project, ''), new.tags);
END;
"""

DROP_SCHEMA = """
DROP TRIGGER IF EXISTS memories_ai;
DROP TRIGGER IF EXISTS memories_ad;
DROP TRIGGER IF EXISTS memories_au;
DROP TABLE IF EXISTS memories_fts;
DROP TABLE IF EXISTS memories;
"""

# Columns stats may group by
_GROUPABLE_COLUMNS = ("area", "project")


class _Unset:
    """Marker for "field not supplied", distinct from an explicit None."""

    def __repr__(self) -> str:
        return "UNSET"


UNSET = _Unset()


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def next_timestamp(previous: str) -> str:
    """Current time, bumped past ``previous`` so updated_at always advances."""
    now = datetime.now(timezone.utc)
    try:
        last = datetime.fromisoformat(previous)
    except (TypeError, ValueError):
        return now.isoformat(timespec="microseconds")
    if last.tzinfo is not None and now <= last:
        now = last + timedelta(microseconds=1)
    return now.isoformat(timespec="microseconds")


def encode_tags(tags: Sequence[str]) -> str:
    return json.dumps(list(tags), ensure_ascii=False)


# Engine messages for a MATCH expression FTS5 cannot parse
_QUERY_SYNTAX_MARKERS = (
    "fts5: syntax error",
    "unterminated string",
    "no such column",
    "unknown special query",
    "malformed match expression",
)


def is_query_syntax_error(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in _QUERY_SYNTAX_MARKERS)


def escape_like_pattern(pattern: str) -> str:
    """Escape LIKE pattern special characters to prevent pattern injection."""
    return pattern.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def normalize_area(area: Optional[str]) -> str:
    """Resolve an unset area to the default and reject unknown ones."""
    if not area:
        return DEFAULT_AREA
    if area not in AREAS:
        raise ValidationError(f"area must be one of {', '.join(AREAS)}, got {area!r}")
    return area


def validate_content(content) -> str:
    if not isinstance(content, str) or not content.strip():
        raise ValidationError("content must be a non-empty string")
    return content


def validate_tags(tags) -> list[str]:
    if tags is None:
        return []
    if isinstance(tags, str) or not all(isinstance(tag, str) for tag in tags):
        raise ValidationError("tags must be a list of strings")
    return list(tags)


@dataclass
class Memory:
    """Single stored memory."""
    id: str
    content: str
    area: Area
    project: Optional[str]
    tags: list[str] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Memory":
        return cls(
            id=row["id"],
            content=row["content"],
            area=row["area"] or DEFAULT_AREA,
            project=row["project"],
            tags=json.loads(row["tags"] or "[]"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class SearchResult(Memory):
    """Memory returned by a search, with its relevance score."""
    score: float = 0.0

    @classmethod
    def from_row(cls, row: sqlite3.Row, score: float = 0.0) -> "SearchResult":
        memory = Memory.from_row(row)
        return cls(**asdict(memory), score=score)


@dataclass
class MemoryStats:
    total_memories: int
    by_area: dict[str, int]
    by_project: dict[str, int]
    total_size_bytes: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class IndexQuery:
    """
    Outcome of a full-text index query.

    Exactly one of ``results`` or ``error`` is meaningful: a query the
    index grammar rejects comes back with ``error`` set instead of raising,
    so callers decide explicitly whether to degrade.
    """
    results: list[SearchResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class SQLiteBackend:
    """
    SQLite record store with an FTS5 search index.

    Features:
    - Index kept in sync by triggers, inside the same transaction as the row
    - WAL journal so readers are not blocked by a writer
    - Connection opened lazily and shared; calls serialized by a lock
    - ":memory:" database for tests and ephemeral runs

    Storage: ~/.omni-memory/omni-memory.db (see omni_memory.paths)

    Storage Format:
        memories(id, content, area, project, tags, created_at, updated_at)
        tags is a JSON array string, e.g. '["python", "testing"]'
    """

    def __init__(self, paths: Optional[StoragePaths] = None):
        self.paths = paths or resolve_storage_paths()
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    @property
    def db_path(self) -> str:
        return self.paths.db_path

    @property
    def connection(self) -> sqlite3.Connection:
        """Open the database on first use."""
        with self._lock:
            if self._connection is None:
                self._connection = self._connect()
            return self._connection

    def _ensure_storage(self):
        if self.paths.in_memory:
            return
        try:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageIOError(f"Failed to create storage directory for {self.db_path}: {e}") from e

    def _connect(self) -> sqlite3.Connection:
        self._ensure_storage()
        try:
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            raise StorageIOError(f"Failed to open memory database {self.db_path}: {e}") from e
        logger.info(f"Opened memory database at {self.db_path}")
        return conn

    @contextmanager
    def _guarded(self) -> Iterator[sqlite3.Connection]:
        """Serialize access to the connection and surface engine failures."""
        with self._lock:
            conn = self.connection
            try:
                yield conn
            except sqlite3.Error as e:
                raise StorageIOError(f"Database operation failed: {e}") from e

    # === RECORDS ===

    def add(
        self,
        content: str,
        area: Optional[str] = None,
        project: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
    ) -> str:
        """Insert a memory and return its new id."""
        content = validate_content(content)
        area = normalize_area(area)
        tags = validate_tags(tags)
        memory_id = str(uuid.uuid4())
        now = utc_now()

        with self._guarded() as conn:
            with conn:
                conn.execute(
                    """
                    INSERT INTO memories (id, content, area, project, tags, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (memory_id, content, area, project or None, encode_tags(tags), now, now),
                )
        logger.debug(f"Added memory {memory_id} [{area}]")
        return memory_id

    def get(self, memory_id: str) -> Optional[Memory]:
        with self._guarded() as conn:
            row = conn.execute("SELECT * FROM memories WHERE id = ?", (memory_id,)).fetchone()
        return Memory.from_row(row) if row else None

    def update(
        self,
        memory_id: str,
        content=UNSET,
        area=UNSET,
        project=UNSET,
        tags=UNSET,
    ) -> int:
        """
        Overwrite the supplied fields of a memory.

        ``content``, ``area`` and ``tags`` are kept when UNSET or None.
        ``project`` is kept when UNSET and cleared when None.

        Returns:
            1 if the row changed, 0 if the id is unknown or nothing differs.
        """
        with self._guarded() as conn:
            with conn:
                row = conn.execute("SELECT * FROM memories WHERE id = ?", (memory_id,)).fetchone()
                if row is None:
                    return 0
                existing = Memory.from_row(row)

                new_content = existing.content if content is UNSET or content is None else validate_content(content)
                new_area = existing.area if area is UNSET or area is None else normalize_area(area)
                new_project = existing.project if project is UNSET else (project or None)
                new_tags = existing.tags if tags is UNSET or tags is None else validate_tags(tags)

                if (new_content, new_area, new_project, new_tags) == (
                    existing.content, existing.area, existing.project, existing.tags
                ):
                    logger.debug(f"Update of memory {memory_id} changed nothing")
                    return 0

                cursor = conn.execute(
                    """
                    UPDATE memories
                    SET content = ?, area = ?, project = ?, tags = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        new_content,
                        new_area,
                        new_project,
                        encode_tags(new_tags),
                        next_timestamp(existing.updated_at),
                        memory_id,
                    ),
                )
        logger.debug(f"Updated memory {memory_id}")
        return cursor.rowcount

    def delete(self, memory_id: str) -> int:
        """Delete a memory by ID. Returns the number of rows removed."""
        with self._guarded() as conn:
            with conn:
                cursor = conn.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
        if cursor.rowcount:
            logger.debug(f"Deleted memory {memory_id}")
        return cursor.rowcount

    def list_memories(
        self,
        limit: int,
        area: Optional[str] = None,
        project: Optional[str] = None,
        tag: Optional[str] = None,
    ) -> list[Memory]:
        """Memories matching the filters, newest first."""
        sql = "SELECT * FROM memories WHERE 1=1"
        params: list = []

        if area:
            sql += " AND area = ?"
            params.append(area)
        if project:
            sql += " AND project = ?"
            params.append(project)
        if tag:
            # Match the JSON-encoded token, quotes included, so "import"
            # does not match "important".
            sql += " AND instr(tags, ?) > 0"
            params.append(json.dumps(tag, ensure_ascii=False))

        sql += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)

        with self._guarded() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [Memory.from_row(row) for row in rows]

    # === SEARCH ===

    def match(
        self,
        fts_query: str,
        limit: int,
        area: Optional[str] = None,
        project: Optional[str] = None,
    ) -> IndexQuery:
        """Run an FTS5 MATCH query, ordered by bm25 rank."""
        sql = """
            SELECT m.*, bm25(memories_fts) AS score
            FROM memories_fts
            JOIN memories m ON m.rowid = memories_fts.rowid
            WHERE memories_fts MATCH ?
        """
        params: list = [fts_query]

        if area:
            sql += " AND m.area = ?"
            params.append(area)
        if project:
            sql += " AND m.project = ?"
            params.append(project)

        sql += " ORDER BY score LIMIT ?"
        params.append(limit)

        with self._guarded() as conn:
            try:
                rows = conn.execute(sql, params).fetchall()
            except sqlite3.OperationalError as e:
                if not is_query_syntax_error(e):
                    raise
                logger.debug(f"FTS5 rejected query {fts_query!r}: {e}")
                return IndexQuery(error=str(e))

        return IndexQuery(
            results=[SearchResult.from_row(row, score=abs(row["score"] or 0.0)) for row in rows]
        )

    def substring_search(
        self,
        patterns: Sequence[str],
        limit: int,
        area: Optional[str] = None,
        project: Optional[str] = None,
    ) -> list[Memory]:
        """Memories whose content contains every pattern, newest first."""
        sql = "SELECT * FROM memories WHERE 1=1"
        params: list = []

        for pattern in patterns:
            sql += " AND content LIKE ? ESCAPE '\\'"
            params.append(f"%{escape_like_pattern(pattern)}%")
        if area:
            sql += " AND area = ?"
            params.append(area)
        if project:
            sql += " AND project = ?"
            params.append(project)

        sql += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)

        with self._guarded() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [Memory.from_row(row) for row in rows]

    # === AGGREGATES ===

    def count(self) -> int:
        with self._guarded() as conn:
            return conn.execute("SELECT count(*) FROM memories").fetchone()[0]

    def count_by(self, column: str, default: str) -> dict[str, int]:
        """Row counts grouped by ``column``, NULL or empty values under ``default``."""
        if column not in _GROUPABLE_COLUMNS:
            raise ValueError(f"Cannot group memories by {column!r}")
        sql = (
            f"SELECT COALESCE(NULLIF({column}, ''), ?) AS bucket, count(*) AS c "
            "FROM memories GROUP BY bucket ORDER BY c DESC, bucket"
        )
        with self._guarded() as conn:
            rows = conn.execute(sql, (default,)).fetchall()
        return {row["bucket"]: row["c"] for row in rows}

    def file_size(self) -> int:
        """Size of the database file in bytes, 0 for an in-memory store."""
        if self.paths.in_memory or not os.path.exists(self.db_path):
            return 0
        try:
            return os.path.getsize(self.db_path)
        except OSError as e:
            logger.warning(f"Failed to stat memory database {self.db_path}: {e}")
            return 0

    # === LIFECYCLE ===

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
                logger.info(f"Closed memory database at {self.db_path}")

    def reset(self) -> None:
        """Drop and recreate the schema. Test isolation only."""
        with self._guarded() as conn:
            conn.executescript(DROP_SCHEMA)
            conn.executescript(SCHEMA)
        logger.info(f"Reset memory database at {self.db_path}")

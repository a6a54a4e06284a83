"""Content-hash cache of parsed SourceUnits.

An entry is keyed by unit path and is only returned while its sha256 still
matches the file on disk; a stale hash drops the entry. Both caches are
shared by the evaluator's worker threads.
"""

# codepolicy:domain=engine

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from typing import TYPE_CHECKING, Protocol

from codepolicy.symbols.model import unit_from_dict

if TYPE_CHECKING:
    from pathlib import Path

    from codepolicy.symbols.model import SourceUnit

logger = logging.getLogger(__name__)

# Increment when the serialised SourceUnit shape changes.
CACHE_SCHEMA_VERSION = "1"

DEFAULT_CACHE_PATH = ".codepolicy/cache.db"

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS units (
    path         TEXT PRIMARY KEY,
    content_hash TEXT NOT NULL,
    language     TEXT NOT NULL,
    payload      TEXT NOT NULL
);
"""


class UnitCache(Protocol):
    """What the evaluator needs from a cache."""

    def get(self, path: str, content_hash: str) -> SourceUnit | None: ...

    def put(self, unit: SourceUnit) -> None: ...

    def close(self) -> None: ...


class MemoryCache:
    """In-process cache; lives as long as the object."""

    def __init__(self) -> None:
        self._store: dict[str, SourceUnit] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, path: str, content_hash: str) -> SourceUnit | None:
        with self._lock:
            unit = self._store.get(path)
            if unit is None or unit.content_hash != content_hash:
                if unit is not None:
                    del self._store[path]
                self.misses += 1
                return None
            self.hits += 1
            return unit

    def put(self, unit: SourceUnit) -> None:
        with self._lock:
            self._store[unit.path] = unit

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def close(self) -> None:
        """Nothing to release."""

    def stats(self) -> dict[str, int]:
        return {"entries": len(self._store), "hits": self.hits, "misses": self.misses}


class SqliteCache:
    """Persistent cache in a SQLite file (``.codepolicy/cache.db`` by default)."""

    def __init__(self, db_path: Path) -> None:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.path = db_path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA_SQL)
        self.hits = 0
        self.misses = 0
        self._check_version()

    def _check_version(self) -> None:
        row = self._conn.execute("SELECT value FROM meta WHERE key = 'schema_version'").fetchone()
        if row is not None and row["value"] == CACHE_SCHEMA_VERSION:
            return
        if row is not None:
            logger.info(
                "Cache schema changed (%s -> %s), clearing", row["value"], CACHE_SCHEMA_VERSION
            )
        self._conn.execute("DELETE FROM units")
        self._conn.execute(
            "INSERT OR REPLACE INTO meta (key, value) VALUES ('schema_version', ?)",
            (CACHE_SCHEMA_VERSION,),
        )
        self._conn.commit()

    def get(self, path: str, content_hash: str) -> SourceUnit | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT content_hash, payload FROM units WHERE path = ?", (path,)
            ).fetchone()
            if row is None:
                self.misses += 1
                return None
            if row["content_hash"] != content_hash:
                self._conn.execute("DELETE FROM units WHERE path = ?", (path,))
                self._conn.commit()
                self.misses += 1
                return None
            try:
                unit = unit_from_dict(json.loads(row["payload"]))
            except (ValueError, KeyError, TypeError) as exc:
                logger.warning("Dropping unreadable cache entry for %s: %s", path, exc)
                self._conn.execute("DELETE FROM units WHERE path = ?", (path,))
                self._conn.commit()
                self.misses += 1
                return None
            self.hits += 1
            return unit

    def put(self, unit: SourceUnit) -> None:
        payload = json.dumps(unit.to_dict(), separators=(",", ":"))
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO units (path, content_hash, language, payload) "
                "VALUES (?, ?, ?, ?)",
                (unit.path, unit.content_hash, unit.language, payload),
            )
            self._conn.commit()

    def clear(self) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM units")
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def stats(self) -> dict[str, int]:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) AS n FROM units").fetchone()
        return {"entries": int(row["n"]), "hits": self.hits, "misses": self.misses}


def open_cache(root: Path, *, persistent: bool = True) -> UnitCache:
    """Open the SQLite cache under *root*, or an in-memory one."""
    if not persistent:
        return MemoryCache()
    return SqliteCache(root / DEFAULT_CACHE_PATH)

"""Tests for the content-hash SourceUnit cache."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

import pytest

from codepolicy.engine.cache import (
    CACHE_SCHEMA_VERSION,
    DEFAULT_CACHE_PATH,
    MemoryCache,
    SqliteCache,
    open_cache,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from codepolicy.symbols.model import SourceUnit

_SOURCE = """\
import requests

RETRY_STATUSES = (429, 503)


def fetch(url, *, attempts=3):
    for attempt in range(attempts):
        try:
            return requests.get(url, timeout=5)
        except requests.RequestException:
            continue
    return None
"""


@pytest.fixture()
def unit(parse: Callable[..., SourceUnit]) -> SourceUnit:
    return parse(_SOURCE, "app/client.py")


class TestMemoryCache:
    def test_miss_then_hit(self, unit: SourceUnit) -> None:
        cache = MemoryCache()
        assert cache.get(unit.path, unit.content_hash) is None
        cache.put(unit)
        assert cache.get(unit.path, unit.content_hash) is unit
        assert cache.stats() == {"entries": 1, "hits": 1, "misses": 1}

    def test_stale_hash_drops_entry(self, unit: SourceUnit) -> None:
        cache = MemoryCache()
        cache.put(unit)
        assert cache.get(unit.path, "0" * 64) is None
        assert cache.stats()["entries"] == 0

    def test_clear(self, unit: SourceUnit) -> None:
        cache = MemoryCache()
        cache.put(unit)
        cache.clear()
        assert cache.get(unit.path, unit.content_hash) is None


class TestSqliteCache:
    def test_round_trip(self, tmp_path: Path, unit: SourceUnit) -> None:
        cache = SqliteCache(tmp_path / "cache.db")
        try:
            assert cache.get(unit.path, unit.content_hash) is None
            cache.put(unit)
            assert cache.get(unit.path, unit.content_hash) == unit
            assert cache.stats() == {"entries": 1, "hits": 1, "misses": 1}
        finally:
            cache.close()

    def test_persists_across_reopen(self, tmp_path: Path, unit: SourceUnit) -> None:
        db = tmp_path / "cache.db"
        first = SqliteCache(db)
        first.put(unit)
        first.close()

        second = SqliteCache(db)
        try:
            assert second.get(unit.path, unit.content_hash) == unit
        finally:
            second.close()

    def test_stale_hash_drops_entry(self, tmp_path: Path, unit: SourceUnit) -> None:
        cache = SqliteCache(tmp_path / "cache.db")
        try:
            cache.put(unit)
            assert cache.get(unit.path, "f" * 64) is None
            assert cache.stats()["entries"] == 0
        finally:
            cache.close()

    def test_schema_change_clears_entries(self, tmp_path: Path, unit: SourceUnit) -> None:
        db = tmp_path / "cache.db"
        cache = SqliteCache(db)
        cache.put(unit)
        cache.close()

        conn = sqlite3.connect(str(db))
        conn.execute("UPDATE meta SET value = 'old' WHERE key = 'schema_version'")
        conn.commit()
        conn.close()

        reopened = SqliteCache(db)
        try:
            assert reopened.stats()["entries"] == 0
            conn = sqlite3.connect(str(db))
            row = conn.execute(
                "SELECT value FROM meta WHERE key = 'schema_version'"
            ).fetchone()
            conn.close()
            assert row[0] == CACHE_SCHEMA_VERSION
        finally:
            reopened.close()

    def test_unreadable_payload_is_dropped(self, tmp_path: Path, unit: SourceUnit) -> None:
        db = tmp_path / "cache.db"
        cache = SqliteCache(db)
        try:
            cache.put(unit)
            cache._conn.execute("UPDATE units SET payload = '{}'")
            cache._conn.commit()
            assert cache.get(unit.path, unit.content_hash) is None
            assert cache.stats()["entries"] == 0
        finally:
            cache.close()


class TestOpenCache:
    def test_persistent_location(self, tmp_path: Path) -> None:
        cache = open_cache(tmp_path)
        try:
            assert isinstance(cache, SqliteCache)
            assert cache.path == tmp_path / DEFAULT_CACHE_PATH
            assert cache.path.exists()
        finally:
            cache.close()

    def test_in_memory(self, tmp_path: Path) -> None:
        assert isinstance(open_cache(tmp_path, persistent=False), MemoryCache)
        assert not (tmp_path / ".codepolicy").exists()

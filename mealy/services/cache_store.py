"""
mealy/services/cache_store.py

TTL cache of normalized POIs, partitioned by geographic bucket key.

Two backends:
  - SqliteCacheStore   : local dev / single instance (shared connection)
  - PostgresCacheStore : production (psycopg2 connection pool)

Factory function `create_cache_store()` auto-selects based on config.

One row per cached POI per bucket. `put` replaces a bucket's whole
generation inside a single transaction, so `lookup` sees either the old
rows or the new rows, never a mix.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

import psycopg2
from psycopg2 import pool as pg_pool

from mealy.core.contracts import CacheStats, POIRecord
from mealy.core.errors import StoreError
from mealy.core.time import from_iso, to_iso, utc_now

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


# ── Data ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CacheEntry:
    """One cached POI under one bucket."""
    bucket_key: str
    poi: POIRecord
    created_at: datetime
    expires_at: datetime

    def __post_init__(self) -> None:
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be later than created_at")

    def is_live(self, now: datetime) -> bool:
        return self.expires_at > now


def _entries(bucket_key: str, pois: Sequence[POIRecord], now: datetime, ttl_s: float) -> List[CacheEntry]:
    if ttl_s <= 0:
        raise ValueError("ttl_s must be positive")
    expires_at = now + timedelta(seconds=ttl_s)
    return [CacheEntry(bucket_key=bucket_key, poi=p, created_at=now, expires_at=expires_at) for p in pois]


# ── Abstract interface ───────────────────────────────────────────────

class PoiCacheStore(ABC):
    """Bucketed POI cache with per-row expiry."""

    @abstractmethod
    def lookup(self, bucket_key: str) -> List[POIRecord]:
        ...

    @abstractmethod
    def put(self, bucket_key: str, pois: Sequence[POIRecord], ttl_s: float) -> int:
        ...

    @abstractmethod
    def lookup_by_id(self, poi_id: str) -> Optional[POIRecord]:
        ...

    @abstractmethod
    def sweep_expired(self) -> int:
        ...

    @abstractmethod
    def stats(self) -> CacheStats:
        ...

    @abstractmethod
    def close(self) -> None:
        ...


# ── SQLite backend ───────────────────────────────────────────────────

_SQLITE_SCHEMA = """
CREATE TABLE IF NOT EXISTS poi_cache (
  bucket_key    TEXT NOT NULL,
  poi_id        TEXT NOT NULL,
  seq           INTEGER NOT NULL,   -- position in the fetch (source order)
  name          TEXT NOT NULL,
  lat           REAL NOT NULL,
  lng           REAL NOT NULL,
  cuisine       TEXT,
  address       TEXT,
  phone         TEXT,
  website       TEXT,
  opening_hours TEXT,
  source        TEXT NOT NULL,
  created_at    TEXT NOT NULL,
  expires_at    TEXT NOT NULL,
  PRIMARY KEY (bucket_key, poi_id)
);

CREATE INDEX IF NOT EXISTS idx_poi_cache_poi_id ON poi_cache(poi_id);
CREATE INDEX IF NOT EXISTS idx_poi_cache_expires ON poi_cache(expires_at);
"""

_POI_COLS = "poi_id, name, lat, lng, cuisine, address, phone, website, opening_hours, source"


def _row_to_poi(row: Sequence) -> POIRecord:
    return POIRecord(
        id=row[0],
        name=row[1],
        latitude=float(row[2]),
        longitude=float(row[3]),
        cuisine=row[4],
        address=row[5],
        phone=row[6],
        website=row[7],
        opening_hours=row[8],
        source=row[9],
    )


class SqliteCacheStore(PoiCacheStore):
    """
    Cache on a shared SQLite connection (check_same_thread=False).

    Timestamps are stored as fixed-width UTC ISO strings so that text
    comparison in SQL matches chronological order. All access goes through
    one lock: the connection is shared across request threads, and holding
    it across the delete+insert keeps readers off a half-written bucket.
    """

    def __init__(self, conn: sqlite3.Connection, *, clock: Clock = utc_now):
        self.conn = conn
        self.clock = clock
        self._lock = threading.RLock()

    def ensure_schema(self) -> None:
        with self._lock:
            self.conn.executescript(_SQLITE_SCHEMA)
            self.conn.commit()

    def _now_iso(self) -> str:
        return to_iso(self.clock())

    def lookup(self, bucket_key: str) -> List[POIRecord]:
        sql = f"""
        SELECT {_POI_COLS}
        FROM poi_cache
        WHERE bucket_key = ? AND expires_at > ?
        ORDER BY seq
        """
        try:
            with self._lock:
                rows = self.conn.execute(sql, (bucket_key, self._now_iso())).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"cache lookup failed for {bucket_key}: {e}") from e
        return [_row_to_poi(r) for r in rows]

    def put(self, bucket_key: str, pois: Sequence[POIRecord], ttl_s: float) -> int:
        entries = _entries(bucket_key, pois, self.clock(), ttl_s)
        rows = [
            (
                e.bucket_key,
                e.poi.id,
                seq,
                e.poi.name,
                e.poi.latitude,
                e.poi.longitude,
                e.poi.cuisine,
                e.poi.address,
                e.poi.phone,
                e.poi.website,
                e.poi.opening_hours,
                e.poi.source,
                to_iso(e.created_at),
                to_iso(e.expires_at),
            )
            for seq, e in enumerate(entries)
        ]

        sql = """
        INSERT INTO poi_cache (
          bucket_key, poi_id, seq, name, lat, lng, cuisine, address,
          phone, website, opening_hours, source, created_at, expires_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """

        try:
            with self._lock:
                with self.conn:
                    self.conn.execute("DELETE FROM poi_cache WHERE bucket_key = ?", (bucket_key,))
                    if rows:
                        self.conn.executemany(sql, rows)
        except sqlite3.Error as e:
            raise StoreError(f"cache put failed for {bucket_key}: {e}") from e
        return len(rows)

    def lookup_by_id(self, poi_id: str) -> Optional[POIRecord]:
        sql = f"""
        SELECT {_POI_COLS}
        FROM poi_cache
        WHERE poi_id = ? AND expires_at > ?
        ORDER BY expires_at DESC
        LIMIT 1
        """
        try:
            with self._lock:
                row = self.conn.execute(sql, (poi_id, self._now_iso())).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"cache lookup_by_id failed for {poi_id}: {e}") from e
        return _row_to_poi(row) if row else None

    def sweep_expired(self) -> int:
        try:
            with self._lock:
                with self.conn:
                    cur = self.conn.execute("DELETE FROM poi_cache WHERE expires_at <= ?", (self._now_iso(),))
        except sqlite3.Error as e:
            raise StoreError(f"cache sweep failed: {e}") from e
        return int(cur.rowcount or 0)

    def stats(self) -> CacheStats:
        sql = """
        SELECT
          COALESCE(SUM(CASE WHEN expires_at > ? THEN 1 ELSE 0 END), 0),
          COUNT(*)
        FROM poi_cache
        """
        try:
            with self._lock:
                valid, total = self.conn.execute(sql, (self._now_iso(),)).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"cache stats failed: {e}") from e
        return CacheStats(valid=int(valid), expired=int(total) - int(valid), total=int(total))

    def entries(self, bucket_key: str) -> List[CacheEntry]:
        """All rows for a bucket, expired or not (diagnostics)."""
        sql = f"""
        SELECT {_POI_COLS}, created_at, expires_at
        FROM poi_cache
        WHERE bucket_key = ?
        ORDER BY seq
        """
        try:
            with self._lock:
                rows = self.conn.execute(sql, (bucket_key,)).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"cache entries failed for {bucket_key}: {e}") from e
        return [
            CacheEntry(
                bucket_key=bucket_key,
                poi=_row_to_poi(r),
                created_at=from_iso(r[10]),
                expires_at=from_iso(r[11]),
            )
            for r in rows
        ]

    def close(self) -> None:
        with self._lock:
            self.conn.close()


# ── Postgres backend (production) ────────────────────────────────────

_PG_SCHEMA = """
CREATE TABLE IF NOT EXISTS poi_cache (
  bucket_key    TEXT NOT NULL,
  poi_id        TEXT NOT NULL,
  seq           INTEGER NOT NULL,
  name          TEXT NOT NULL,
  lat           DOUBLE PRECISION NOT NULL,
  lng           DOUBLE PRECISION NOT NULL,
  cuisine       TEXT,
  address       TEXT,
  phone         TEXT,
  website       TEXT,
  opening_hours TEXT,
  source        TEXT NOT NULL,
  created_at    TIMESTAMPTZ NOT NULL,
  expires_at    TIMESTAMPTZ NOT NULL,
  PRIMARY KEY (bucket_key, poi_id),
  CHECK (expires_at > created_at)
);

CREATE INDEX IF NOT EXISTS idx_poi_cache_poi_id ON poi_cache(poi_id);
CREATE INDEX IF NOT EXISTS idx_poi_cache_expires ON poi_cache(expires_at);
"""


class PostgresCacheStore(PoiCacheStore):
    """
    Cache in Postgres. Uses a connection pool for concurrent requests.

    `put` runs DELETE + INSERTs in one transaction; under READ COMMITTED a
    concurrent `lookup` sees the previous generation until commit.
    """

    def __init__(
        self,
        database_url: str | None = None,
        *,
        pool=None,
        min_conn: int = 1,
        max_conn: int = 5,
        clock: Clock = utc_now,
    ):
        self.clock = clock
        if pool is not None:
            self._pool = pool
        else:
            if not database_url:
                raise RuntimeError("CACHE_DATABASE_URL is required for the Postgres cache store")
            logger.info("[poi_cache] Connecting to Postgres (pool %d-%d)", min_conn, max_conn)
            self._pool = pg_pool.ThreadedConnectionPool(min_conn, max_conn, database_url)

    @contextmanager
    def _connection(self):
        conn = self._pool.getconn()
        try:
            yield conn
        finally:
            self._pool.putconn(conn)

    def _run(self, what: str, fn):
        # getconn raises PoolError (a psycopg2.Error) when the pool is exhausted
        try:
            with self._connection() as conn:
                try:
                    out = fn(conn)
                    conn.commit()
                    return out
                except psycopg2.Error:
                    conn.rollback()
                    raise
        except psycopg2.Error as e:
            raise StoreError(f"{what} failed: {e}") from e

    def ensure_schema(self) -> None:
        def _do(conn):
            with conn.cursor() as cur:
                cur.execute(_PG_SCHEMA)

        self._run("cache ensure_schema", _do)

    def lookup(self, bucket_key: str) -> List[POIRecord]:
        sql = f"""
            SELECT {_POI_COLS}
            FROM poi_cache
            WHERE bucket_key = %s AND expires_at > %s
            ORDER BY seq
        """

        def _do(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (bucket_key, self.clock()))
                return cur.fetchall()

        rows = self._run(f"cache lookup {bucket_key}", _do)
        return [_row_to_poi(r) for r in rows]

    def put(self, bucket_key: str, pois: Sequence[POIRecord], ttl_s: float) -> int:
        entries = _entries(bucket_key, pois, self.clock(), ttl_s)
        rows = [
            (
                e.bucket_key,
                e.poi.id,
                seq,
                e.poi.name,
                e.poi.latitude,
                e.poi.longitude,
                e.poi.cuisine,
                e.poi.address,
                e.poi.phone,
                e.poi.website,
                e.poi.opening_hours,
                e.poi.source,
                e.created_at,
                e.expires_at,
            )
            for seq, e in enumerate(entries)
        ]
        sql = """
            INSERT INTO poi_cache (
              bucket_key, poi_id, seq, name, lat, lng, cuisine, address,
              phone, website, opening_hours, source, created_at, expires_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """

        def _do(conn):
            with conn.cursor() as cur:
                cur.execute("DELETE FROM poi_cache WHERE bucket_key = %s", (bucket_key,))
                if rows:
                    cur.executemany(sql, rows)
            return len(rows)

        return self._run(f"cache put {bucket_key}", _do)

    def lookup_by_id(self, poi_id: str) -> Optional[POIRecord]:
        sql = f"""
            SELECT {_POI_COLS}
            FROM poi_cache
            WHERE poi_id = %s AND expires_at > %s
            ORDER BY expires_at DESC
            LIMIT 1
        """

        def _do(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (poi_id, self.clock()))
                return cur.fetchone()

        row = self._run(f"cache lookup_by_id {poi_id}", _do)
        return _row_to_poi(row) if row else None

    def sweep_expired(self) -> int:
        def _do(conn):
            with conn.cursor() as cur:
                cur.execute("DELETE FROM poi_cache WHERE expires_at <= %s", (self.clock(),))
                return int(cur.rowcount or 0)

        return self._run("cache sweep", _do)

    def stats(self) -> CacheStats:
        sql = """
            SELECT COUNT(*) FILTER (WHERE expires_at > %s), COUNT(*)
            FROM poi_cache
        """

        def _do(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (self.clock(),))
                return cur.fetchone()

        valid, total = self._run("cache stats", _do)
        return CacheStats(valid=int(valid), expired=int(total) - int(valid), total=int(total))

    def close(self) -> None:
        self._pool.closeall()


# ── Factory ──────────────────────────────────────────────────────────

def create_cache_store(
    *,
    database_url: str | None = None,
    sqlite_conn: sqlite3.Connection | None = None,
    clock: Clock = utc_now,
) -> PoiCacheStore:
    """
    Auto-select cache backend.

    Priority:
      1. database_url → Postgres
      2. sqlite_conn  → shared SQLite connection (schema ensured by caller)
    """
    if database_url:
        logger.info("[poi_cache] Using Postgres backend")
        store = PostgresCacheStore(database_url, clock=clock)
        store.ensure_schema()
        return store

    if sqlite_conn is not None:
        logger.info("[poi_cache] Using SQLite backend")
        return SqliteCacheStore(sqlite_conn, clock=clock)

    raise RuntimeError(
        "[poi_cache] No cache database configured. "
        "Set CACHE_DATABASE_URL for Postgres or CACHE_DB_PATH for local SQLite."
    )

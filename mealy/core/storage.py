from __future__ import annotations

import sqlite3
from pathlib import Path


# ──────────────────────────────────────────────────────────────
# Connections
# ──────────────────────────────────────────────────────────────

def connect_sqlite(path: str) -> sqlite3.Connection:
    """
    Open a RW SQLite connection with sane pragmas.

    IMPORTANT:
    - SQLite will NOT create parent directories.
    - WAL mode requires the directory to be writable (creates -wal/-shm).
    """
    if path != ":memory:":
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(path, check_same_thread=False)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


# ──────────────────────────────────────────────────────────────
# Schema
# ──────────────────────────────────────────────────────────────

_REVIEWS_SQL = """
CREATE TABLE IF NOT EXISTS reviews (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  restaurant_id TEXT NOT NULL,
  restaurant_name TEXT,
  user_id TEXT,
  rating INTEGER NOT NULL CHECK (rating BETWEEN 1 AND 5),
  comment TEXT,
  created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_reviews_restaurant ON reviews(restaurant_id);
"""


def ensure_schema(conn: sqlite3.Connection) -> None:
    # Local imports: the stores own their table definitions.
    from mealy.services.cache_store import SqliteCacheStore

    SqliteCacheStore(conn).ensure_schema()

    # Local review table (dev / tests). Production reads reviews from Supabase.
    conn.executescript(_REVIEWS_SQL)
    conn.commit()

#!/usr/bin/env python3
"""
scripts/clean_cache.py

Delete expired rows from the POI cache.

Run periodically (cron / scheduled machine):

    python -m scripts.clean_cache
    python -m scripts.clean_cache --stats
"""

from __future__ import annotations

import argparse
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from mealy.core.errors import StoreError
from mealy.core.settings import settings
from mealy.core.storage import connect_sqlite, ensure_schema
from mealy.services.cache_store import PoiCacheStore, create_cache_store

logger = logging.getLogger("clean_cache")


def open_store() -> PoiCacheStore:
    if settings.cache_database_url:
        return create_cache_store(database_url=settings.cache_database_url)
    conn = connect_sqlite(settings.cache_db_path)
    ensure_schema(conn)
    return create_cache_store(sqlite_conn=conn)


def run(store: PoiCacheStore, *, show_stats: bool) -> int:
    try:
        deleted = store.sweep_expired()
        print(f"deleted={deleted}")
        if show_stats:
            s = store.stats()
            print(f"valid={s.valid} expired={s.expired} total={s.total}")
    except StoreError as e:
        logger.error("cache cleanup failed: %s", e)
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Sweep expired POI cache rows")
    ap.add_argument("--stats", action="store_true", help="print valid/expired/total counts after the sweep")
    args = ap.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")

    store = open_store()
    try:
        return run(store, show_stats=args.stats)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())

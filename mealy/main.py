# mealy/main.py
from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware

# Load <repo>/.env (main.py is <repo>/mealy/main.py)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

from mealy.core.settings import settings
from mealy.core.storage import connect_sqlite, ensure_schema
from mealy.api import api_router

from mealy.services.cache_store import SqliteCacheStore, create_cache_store
from mealy.services.miss_guard import create_miss_guard
from mealy.services.overpass import OverpassFetcher
from mealy.services.poi_cache import PoiCache
from mealy.services.ratings import RatingAggregator
from mealy.services.reviews import create_review_source

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Midi-Mealy POI Service", version="1.0.0")

# ── Compression (must be added before CORS) ──
app.add_middleware(GZipMiddleware, minimum_size=1000)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ──────────────────────────────────────────────────────────────
# DB connections
# ──────────────────────────────────────────────────────────────

# Local DB (rw): SQLite POI cache in dev, local reviews table
_local_conn = connect_sqlite(settings.cache_db_path)
ensure_schema(_local_conn)

# POI cache: Postgres in production, SQLite for local dev
# Priority: CACHE_DATABASE_URL → CACHE_DB_PATH
_cache_store = create_cache_store(
    database_url=settings.cache_database_url,
    sqlite_conn=_local_conn,
)

_poi_cache = PoiCache(
    store=_cache_store,
    fetcher=OverpassFetcher(),
    guard=create_miss_guard(settings.poi_single_flight),
)

_ratings = RatingAggregator(create_review_source(sqlite_conn=_local_conn))

logger.info(
    "[app] poi cache ready ttl_s=%s guard=%s reviews=%s",
    settings.poi_cache_ttl_s,
    _poi_cache.guard.kind,
    settings.reviews_backend,
)

# ──────────────────────────────────────────────────────────────
# Dependency providers
# ──────────────────────────────────────────────────────────────

def provide_poi_cache() -> PoiCache:
    return _poi_cache


def provide_rating_aggregator() -> RatingAggregator:
    return _ratings


# ──────────────────────────────────────────────────────────────
# Dependency overrides
# ──────────────────────────────────────────────────────────────

from mealy.api import restaurants as restaurants_api
from mealy.api import ratings as ratings_api

app.dependency_overrides[restaurants_api.get_poi_cache] = provide_poi_cache
app.dependency_overrides[ratings_api.get_rating_aggregator] = provide_rating_aggregator

# Routes
app.include_router(api_router)

# ──────────────────────────────────────────────────────────────
# Shutdown
# ──────────────────────────────────────────────────────────────

@app.on_event("shutdown")
def shutdown():
    logger.info("[app] Shutting down, closing connections")
    # The SQLite store shares _local_conn, closed below
    if not isinstance(_cache_store, SqliteCacheStore):
        try:
            _cache_store.close()
        except Exception as e:
            logger.warning("[app] Error closing cache store: %s", e)
    _local_conn.close()

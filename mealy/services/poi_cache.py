from __future__ import annotations

import logging
from typing import Any, List, Optional

from mealy.core.contracts import CacheStats, POIRecord
from mealy.core.errors import StoreError
from mealy.core.keying import bucket_key
from mealy.core.settings import settings
from mealy.services.cache_store import PoiCacheStore
from mealy.services.miss_guard import MissGuard, Unlocked
from mealy.services.normalizer import normalize
from mealy.services.overpass import OverpassFetcher

logger = logging.getLogger(__name__)


class PoiCache:
    """
    Restaurants around a point, cache first.

    Read order:
      0) (optional) sweep expired rows
      1) bucket lookup in the TTL store  → hit returns as-is
      2) Overpass fetch → normalize → replace the bucket → return

    Fetch failures (validation, upstream, timeout) propagate unchanged; there
    is no stale fallback. Store failures never fail a read: a broken lookup
    counts as a miss and a broken put only costs the next caller a refetch.
    """

    def __init__(
        self,
        *,
        store: PoiCacheStore,
        fetcher: OverpassFetcher,
        guard: MissGuard | None = None,
        ttl_s: float | None = None,
        source: str | None = None,
        max_results: int | None = None,
        sweep_on_read: bool | None = None,
    ):
        self.store = store
        self.fetcher = fetcher
        self.guard = guard or Unlocked()
        self.ttl_s = float(ttl_s if ttl_s is not None else settings.poi_cache_ttl_s)
        if self.ttl_s <= 0:
            raise ValueError(f"ttl_s must be positive, got {self.ttl_s}")
        self.source = source or settings.poi_source
        self.max_results = int(max_results or settings.poi_max_results)
        self.sweep_on_read = settings.poi_sweep_on_read if sweep_on_read is None else bool(sweep_on_read)

    # ──────────────────────────────────────────────────────────
    # Store helpers
    # ──────────────────────────────────────────────────────────

    def _lookup(self, key: str) -> List[POIRecord]:
        try:
            return self.store.lookup(key)
        except StoreError as e:
            logger.warning("[PoiCache] lookup FAILED key=%s err=%s, treating as miss", key, e)
            return []

    def _put(self, key: str, pois: List[POIRecord]) -> None:
        try:
            n = self.store.put(key, pois, self.ttl_s)
            logger.info("[PoiCache] cached key=%s n=%d ttl_s=%s", key, n, self.ttl_s)
        except StoreError as e:
            logger.error("[PoiCache] put FAILED key=%s n=%d err=%s", key, len(pois), e)

    def _sweep_best_effort(self) -> None:
        try:
            self.store.sweep_expired()
        except StoreError as e:
            logger.warning("[PoiCache] sweep FAILED err=%s", e)

    # ──────────────────────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────────────────────

    def get_pois(self, lat: Any, lng: Any, radius: Any = None) -> List[POIRecord]:
        if radius is None:
            radius = settings.poi_default_radius_m

        # Validate first: an out-of-range input must not be served from a
        # bucket it happens to quantize into.
        lat_f, lng_f, radius_f = self.fetcher.validate(lat, lng, radius)

        if self.sweep_on_read:
            self._sweep_best_effort()

        key = bucket_key(lat_f, lng_f, radius_f)

        cached = self._lookup(key)
        if cached:
            logger.info("[PoiCache] hit key=%s n=%d", key, len(cached))
            return cached

        with self.guard.hold(key) as recheck:
            if recheck:
                cached = self._lookup(key)
                if cached:
                    logger.info("[PoiCache] hit after wait key=%s n=%d", key, len(cached))
                    return cached

            logger.info("[PoiCache] miss key=%s, fetching from Overpass", key)
            elements = self.fetcher.fetch(lat_f, lng_f, radius_f)
            pois = normalize(elements, source=self.source, limit=self.max_results)

            if pois:
                self._put(key, pois)

        logger.info("[PoiCache] fetched key=%s raw=%d kept=%d", key, len(elements), len(pois))
        return pois

    def get_poi_by_id(self, poi_id: str) -> Optional[POIRecord]:
        # No refetch on miss: an expired or evicted POI reports not-found.
        return self.store.lookup_by_id(poi_id)

    def sweep_expired(self) -> int:
        n = self.store.sweep_expired()
        logger.info("[PoiCache] sweep deleted=%d", n)
        return n

    def stats(self) -> CacheStats:
        return self.store.stats()

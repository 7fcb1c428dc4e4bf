from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from mealy.core.contracts import CacheStats, SweepResponse
from mealy.core.errors import StoreError, service_unavailable
from mealy.api.restaurants import get_poi_cache
from mealy.services.poi_cache import PoiCache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cache")


@router.post("/sweep", response_model=SweepResponse)
def cache_sweep(cache: PoiCache = Depends(get_poi_cache)) -> SweepResponse:
    try:
        return SweepResponse(deleted=cache.sweep_expired())
    except StoreError as e:
        logger.error("cache_sweep_failed err=%s", e)
        service_unavailable("cache_unavailable", "Cache maintenance failed")


@router.get("/stats", response_model=CacheStats)
def cache_stats(cache: PoiCache = Depends(get_poi_cache)) -> CacheStats:
    try:
        return cache.stats()
    except StoreError as e:
        logger.error("cache_stats_failed err=%s", e)
        service_unavailable("cache_unavailable", "Cache statistics unavailable")
